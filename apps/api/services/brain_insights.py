"""Automated insights: threshold scan over clusters, predictions, context and history."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.video import Video
from services.account_context import context_to_dict, load_account_context
from services.analytics_cache import analytics_cache
from services.brain_clusters import cluster_corpus
from services.brain_corpus import CorpusSnapshot, load_snapshot
from services.brain_scoring import SCORED_METRICS, as_utc, population_stats
from services.vector_store import SqlVectorStore
from services.viral_prediction import viral_predictions

logger = logging.getLogger(__name__)

INSIGHTS_LIMIT = 8
PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}

OPPORTUNITY_MIN_SCORE = 70.0
OPPORTUNITY_MAX_VECTORS = 6
OPPORTUNITY_MIN_VIDEOS = 2
VIRAL_MIN_PROBABILITY = 0.6
VIRAL_MIN_CONFIDENCE = 60.0
GAP_MAX_SHARE = 0.10
ANOMALY_RECENT_VIDEOS = 5
ANOMALY_MIN_HISTORY = 5

ANOMALY_METRICS = tuple(attr for attr, _ in SCORED_METRICS) + ("views",)
METRIC_NAMES = {
    "retention_pct": "retention",
    "saves_per_1k": "saves per 1k views",
    "follows_per_1k": "follows per 1k views",
    "for_you_pct": "For You share",
    "views": "views",
}


def _insight(
    insight_type: str,
    key: str,
    *,
    title: str,
    description: str,
    priority: str,
    confidence: float,
    action_items: List[str],
    data_source: str,
    affected_videos: Sequence[str],
    potential_impact: str,
) -> Dict[str, Any]:
    return {
        "id": f"{insight_type}:{key}",
        "type": insight_type,
        "title": title,
        "description": description,
        "priority": priority,
        "confidence": round(float(min(100.0, max(0.0, confidence))), 1),
        "action_items": action_items,
        "data_source": data_source,
        "affected_videos": list(affected_videos),
        "potential_impact": potential_impact,
    }


def cluster_opportunities(clusters: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    insights = []
    for cluster in clusters:
        score = cluster["optimization_score"]
        if score < OPPORTUNITY_MIN_SCORE or cluster["vector_count"] > OPPORTUNITY_MAX_VECTORS:
            continue
        # fragments of a single video are not a pattern
        if cluster.get("video_count", len(cluster["video_ids"])) < OPPORTUNITY_MIN_VIDEOS:
            continue
        top = cluster["top_videos"][0] if cluster["top_videos"] else None
        actions = [f"Publish 2-3 more videos on \"{cluster['name']}\"."]
        if top and top.get("title"):
            actions.append(f"Reuse the {cluster['dominant_content_type']} structure of \"{top['title']}\".")
        insights.append(
            _insight(
                "cluster_opportunity",
                cluster["id"],
                title=f"Under-used winning pattern: {cluster['name']}",
                description=(
                    f"This group outperforms {score:.0f}% of your catalog but only "
                    f"{cluster['vector_count']} fragments use it."
                ),
                priority="high" if score >= 85 else "medium",
                confidence=min(95.0, score),
                action_items=actions,
                data_source="clusters",
                affected_videos=cluster["video_ids"],
                potential_impact="high" if score >= 85 else "medium",
            )
        )
    return insights


def viral_candidates(predictions: Iterable[Dict[str, Any]], flagged: Set[str]) -> List[Dict[str, Any]]:
    insights = []
    for prediction in predictions:
        if prediction["video_id"] in flagged:
            continue
        if prediction["viral_probability"] < VIRAL_MIN_PROBABILITY or prediction["confidence_score"] < VIRAL_MIN_CONFIDENCE:
            continue
        probability = prediction["viral_probability"]
        label = prediction.get("title") or prediction["video_id"]
        insights.append(
            _insight(
                "viral_prediction",
                prediction["video_id"],
                title=f"High viral potential: {label}",
                description=(
                    f"{probability:.0%} of its closest matches cleared your top-10% view threshold; "
                    f"expected around {prediction['predicted_views']:,} views."
                ),
                priority="high" if probability >= 0.8 else "medium",
                confidence=prediction["confidence_score"],
                action_items=[
                    "Boost distribution while the topic is fresh.",
                    "Produce a follow-up that leans on: " + (", ".join(prediction["key_factors"]) or "the same hook"),
                ],
                data_source="viral_predictions",
                affected_videos=[prediction["video_id"]],
                potential_impact=f"~{prediction['predicted_views']:,} views",
            )
        )
    return insights


def content_gaps(snapshot: CorpusSnapshot, context: Dict[str, Any]) -> List[Dict[str, Any]]:
    terms = [(term, "content theme") for term in context.get("content_themes") or []]
    terms += [(term, "strategic bet") for term in context.get("strategic_bets") or []]
    total = snapshot.indexed_video_count
    if not terms or not total:
        return []

    text_by_video: Dict[str, str] = {}
    for vector in snapshot.vectors:
        text_by_video[vector.video_id] = f"{text_by_video.get(vector.video_id, '')} {vector.content or ''}".lower()

    insights = []
    seen = set()
    for term, origin in terms:
        needle = term.strip().lower()
        if not needle or needle in seen:
            continue
        seen.add(needle)
        matched = [
            video_id
            for video_id, video in snapshot.videos.items()
            if needle in (video.video_theme or "").lower() or needle in text_by_video.get(video_id, "")
        ]
        share = len(matched) / total
        if share >= GAP_MAX_SHARE:
            continue
        if not matched:
            priority = "high" if origin == "strategic bet" else "medium"
        else:
            priority = "low"
        insights.append(
            _insight(
                "content_gap",
                needle,
                title=f"Content gap: {term}",
                description=(
                    f"\"{term}\" is a {origin} but appears in {len(matched)} of {total} indexed videos ({share:.0%})."
                ),
                priority=priority,
                confidence=min(90.0, 70.0 + 20.0 * (1.0 - share / GAP_MAX_SHARE)),
                action_items=[f"Plan at least two videos around \"{term}\" this month."],
                data_source="account_context",
                affected_videos=sorted(matched),
                potential_impact="medium" if origin == "content theme" else "high",
            )
        )
    return insights


def performance_anomalies(snapshot: CorpusSnapshot, z_threshold: Optional[float] = None) -> List[Dict[str, Any]]:
    z_threshold = settings.ANOMALY_Z_THRESHOLD if z_threshold is None else z_threshold
    dated = sorted(
        (video for video in snapshot.videos.values() if video.published_date is not None),
        key=lambda video: (as_utc(video.published_date), video.video_id),
    )
    insights = []
    for position in range(max(len(dated) - ANOMALY_RECENT_VIDEOS, 0), len(dated)):
        history = dated[:position]
        if len(history) < ANOMALY_MIN_HISTORY:
            continue
        video = dated[position]
        strongest = None
        for attr in ANOMALY_METRICS:
            value = getattr(video, attr)
            stats = population_stats(getattr(item, attr) for item in history)
            if value is None or stats["count"] < ANOMALY_MIN_HISTORY or stats["std"] <= 1e-12:
                continue
            z = (float(value) - stats["mean"]) / stats["std"]
            if abs(z) > z_threshold and (strongest is None or abs(z) > abs(strongest[1])):
                strongest = (attr, z, stats["mean"], float(value))
        if strongest is None:
            continue

        attr, z, baseline, value = strongest
        direction = "spike" if z > 0 else "drop"
        name = METRIC_NAMES[attr]
        label = video.video_title or video.video_id
        insights.append(
            _insight(
                "performance_anomaly",
                f"{video.video_id}:{attr}",
                title=f"{name.capitalize()} {direction}: {label}",
                description=(
                    f"{name.capitalize()} of {value:,.2f} is {abs(z):.1f} standard deviations "
                    f"{'above' if z > 0 else 'below'} your earlier baseline of {baseline:,.2f}."
                ),
                priority="high" if abs(z) >= 3.0 else "medium",
                confidence=min(95.0, 50.0 + 10.0 * abs(z)),
                action_items=[
                    "Compare hook, topic and posting time with your baseline videos."
                    if z > 0
                    else "Check what changed versus your baseline before repeating this format."
                ],
                data_source="performance_history",
                affected_videos=[video.video_id],
                potential_impact="high" if z > 0 else "medium",
            )
        )
    return insights


def rank_insights(insights: Iterable[Dict[str, Any]], floor: Optional[float] = None) -> List[Dict[str, Any]]:
    floor = settings.INSIGHT_CONFIDENCE_FLOOR if floor is None else floor
    surfaced = [insight for insight in insights if insight["confidence"] >= floor]
    surfaced.sort(key=lambda insight: (PRIORITY_ORDER[insight["priority"]], -insight["confidence"], insight["id"]))
    return surfaced[:INSIGHTS_LIMIT]


def generate_insights(snapshot: CorpusSnapshot, context: Dict[str, Any], flagged: Set[str]) -> Dict[str, Any]:
    if not snapshot.has_enough_data():
        return snapshot.insufficient_data(insights=[], total_insights=0)

    clusters = cluster_corpus(snapshot)
    predictions = viral_predictions(snapshot)["predictions"]
    candidates = (
        cluster_opportunities(clusters)
        + viral_candidates(predictions, flagged)
        + content_gaps(snapshot, context)
        + performance_anomalies(snapshot)
    )
    insights = rank_insights(candidates)
    logger.info(f"Insights for user {snapshot.user_id}: {len(insights)} surfaced of {len(candidates)} candidates")
    return {
        "status": "ok",
        "corpus_version": snapshot.version,
        "insights": insights,
        "total_insights": len(insights),
    }


async def generate_insights_service(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    store = SqlVectorStore(db)
    version = await store.corpus_version(user_id)

    async def compute() -> Dict[str, Any]:
        snapshot = await load_snapshot(db, user_id, store)
        context = context_to_dict(await load_account_context(db, user_id))
        result = await db.execute(
            select(Video.id).where(Video.user_id == user_id, Video.is_viral_flagged.is_(True))
        )
        flagged = {row[0] for row in result.all()}
        return generate_insights(snapshot, context, flagged)

    return await analytics_cache.get_or_compute("insights", user_id, version, compute)
