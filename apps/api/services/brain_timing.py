"""Publishing-time analysis and the retention/saves/duration/theme performance matrix."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from services.analytics_cache import analytics_cache
from services.brain_corpus import CorpusSnapshot, load_snapshot
from services.brain_scoring import as_utc
from services.vector_store import SqlVectorStore
from services.video_catalog import list_videos

logger = logging.getLogger(__name__)

MIN_VIEWS = 100
MIN_VIDEOS_PER_HOUR = 2
OPTIMAL_HOURS_LIMIT = 6
VELOCITY_WINDOW_DAYS = 30
WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

HIGH_RETENTION_PCT = 60.0
HIGH_SAVES_PER_1K = 20.0
DURATION_RANGES = (
    ("0-15s", 0.0, 15.0),
    ("15-30s", 15.0, 30.0),
    ("30-60s", 30.0, 60.0),
    ("1-2min", 60.0, 120.0),
    ("2-5min", 120.0, 300.0),
)
THEME_TREND_MARGIN = 0.15


def _avg(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def engagement_rate(video: Any) -> float:
    views = video.views or 0
    if views <= 0:
        return 0.0
    return ((video.likes or 0) + (video.comments or 0) + (video.shares or 0)) * 100.0 / views


def publishing_velocity(published_dates: Sequence[Optional[datetime]], now: datetime) -> Dict[str, Any]:
    window_start = now - timedelta(days=VELOCITY_WINDOW_DAYS)
    recent = [date for date in (as_utc(value) for value in published_dates) if date and window_start <= date <= now]
    current = len(recent) / VELOCITY_WINDOW_DAYS
    optimal = 1.0 if current < 1 else min(2.0, current * 1.2)
    if current < 0.8:
        recommendation = "Increase publishing frequency"
    elif current > 2:
        recommendation = "Publish less often and focus on quality"
    else:
        recommendation = "Keep the current publishing frequency"
    return {
        "current_frequency": round(current, 1),
        "optimal_frequency": round(optimal, 1),
        "videos_last_30_days": len(recent),
        "recommendation": recommendation,
    }


def timing_analysis(
    snapshot: CorpusSnapshot,
    published_dates: Sequence[Optional[datetime]],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    if not snapshot.has_enough_data():
        return snapshot.insufficient_data(optimal_hours=[], day_of_week_analysis=[], publishing_velocity=None)
    now = as_utc(now) or datetime.now(timezone.utc)

    hourly: Dict[int, List[Any]] = {}
    daily: Dict[int, List[Any]] = {}
    for video in snapshot.videos.values():
        published = as_utc(video.published_date)
        if published is None or (video.views or 0) < MIN_VIEWS:
            continue
        hourly.setdefault(published.hour, []).append(video)
        daily.setdefault(published.weekday(), []).append(video)

    optimal_hours = []
    for hour, videos in hourly.items():
        if len(videos) < MIN_VIDEOS_PER_HOUR:
            continue
        optimal_hours.append(
            {
                "hour": hour,
                "avg_performance": round(_avg([snapshot.performance.get(video.video_id, 0.0) for video in videos]), 4),
                "avg_views": round(_avg([float(video.views or 0) for video in videos]), 1),
                "video_count": len(videos),
                "confidence": min(90, 20 * len(videos)),
            }
        )
    optimal_hours.sort(key=lambda item: (-item["avg_performance"], item["hour"]))

    day_of_week = [
        {
            "day": WEEKDAYS[weekday],
            "avg_views": round(_avg([float(video.views or 0) for video in videos]), 1),
            "avg_engagement": round(_avg([engagement_rate(video) for video in videos]), 2),
            "video_count": len(videos),
        }
        for weekday, videos in daily.items()
    ]
    day_of_week.sort(key=lambda item: (-item["avg_views"], WEEKDAYS.index(item["day"])))

    return {
        "status": "ok",
        "corpus_version": snapshot.version,
        "optimal_hours": optimal_hours[:OPTIMAL_HOURS_LIMIT],
        "day_of_week_analysis": day_of_week,
        "publishing_velocity": publishing_velocity(published_dates, now),
    }


def quadrant(retention_pct: float, saves_per_1k: float) -> str:
    retention = "high_retention" if retention_pct >= HIGH_RETENTION_PCT else "low_retention"
    saves = "high_saves" if saves_per_1k >= HIGH_SAVES_PER_1K else "low_saves"
    return f"{retention}_{saves}"


def theme_trend(videos: Sequence[Any]) -> str:
    """Recent half vs older half average views, +/-15%."""
    ordered = sorted(videos, key=lambda video: (as_utc(video.published_date) or datetime.min.replace(tzinfo=timezone.utc), video.video_id))
    recent_size = (len(ordered) + 1) // 2
    recent = [float(video.views or 0) for video in ordered[-recent_size:]]
    older = [float(video.views or 0) for video in ordered[: len(ordered) // 2]]
    recent_avg = _avg(recent)
    older_avg = _avg(older) if older else recent_avg
    if recent_avg > older_avg * (1 + THEME_TREND_MARGIN):
        return "up"
    if recent_avg < older_avg * (1 - THEME_TREND_MARGIN):
        return "down"
    return "stable"


def performance_matrix(snapshot: CorpusSnapshot) -> Dict[str, Any]:
    if not snapshot.has_enough_data():
        return snapshot.insufficient_data(retention_vs_saves=[], duration_sweet_spot=None, content_theme_performance=[])

    measured = [
        video
        for video in snapshot.videos.values()
        if (video.views or 0) >= MIN_VIEWS and video.retention_pct is not None and video.saves_per_1k is not None
    ]

    retention_vs_saves = [
        {
            "video_id": video.video_id,
            "title": video.video_title,
            "retention": round(video.retention_pct, 2),
            "saves_per_1k": round(video.saves_per_1k, 2),
            "views": video.views or 0,
            "quadrant": quadrant(video.retention_pct, video.saves_per_1k),
        }
        for video in sorted(measured, key=lambda video: video.video_id)
    ]

    by_duration = []
    timed = [video for video in measured if video.duration_seconds and video.duration_seconds > 0]
    for label, low, high in DURATION_RANGES:
        members = [video for video in timed if low <= video.duration_seconds < high]
        if not members:
            continue
        by_duration.append(
            {
                "duration_range": label,
                "min_seconds": low,
                "max_seconds": high,
                "avg_performance": round(_avg([snapshot.performance.get(video.video_id, 0.0) for video in members]), 4),
                "avg_retention": round(_avg([video.retention_pct for video in members]), 2),
                "video_count": len(members),
            }
        )
    best = max(by_duration, key=lambda item: item["avg_performance"]) if by_duration else None
    duration_sweet_spot = {
        "optimal_range": {"min": best["min_seconds"], "max": best["max_seconds"]} if best else None,
        "current_avg": round(_avg([video.duration_seconds for video in timed]), 1),
        "performance_by_duration": by_duration,
    }

    themes: Dict[str, List[Any]] = {}
    for video in measured:
        themes.setdefault(video.video_theme or "Untagged", []).append(video)
    theme_rows = [
        {
            "theme": theme,
            "avg_views": round(_avg([float(video.views or 0) for video in videos]), 1),
            "avg_retention": round(_avg([video.retention_pct for video in videos]), 2),
            "avg_saves_per_1k": round(_avg([video.saves_per_1k for video in videos]), 2),
            "video_count": len(videos),
            "trend": theme_trend(videos),
        }
        for theme, videos in themes.items()
        if len(videos) >= 2
    ]
    theme_rows.sort(key=lambda item: (-item["avg_views"], item["theme"]))

    return {
        "status": "ok",
        "corpus_version": snapshot.version,
        "retention_vs_saves": retention_vs_saves,
        "duration_sweet_spot": duration_sweet_spot,
        "content_theme_performance": theme_rows,
    }


async def get_timing_analysis_service(user_id: str, db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = as_utc(now) or datetime.now(timezone.utc)
    store = SqlVectorStore(db)
    version = await store.corpus_version(user_id)

    async def compute() -> Dict[str, Any]:
        snapshot = await load_snapshot(db, user_id, store)
        videos = await list_videos(db, user_id)
        return timing_analysis(snapshot, [video.published_date for video in videos], now)

    # Velocity depends on the calendar day as well as the corpus.
    return await analytics_cache.get_or_compute("timing", user_id, version, compute, params=now.date().isoformat())


async def get_performance_matrix_service(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    store = SqlVectorStore(db)
    version = await store.corpus_version(user_id)

    async def compute() -> Dict[str, Any]:
        snapshot = await load_snapshot(db, user_id, store)
        return performance_matrix(snapshot)

    return await analytics_cache.get_or_compute("performance_matrix", user_id, version, compute)
