"""Raw video catalog adapter: typed ingestion schema plus owner-scoped reads."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.video import Video
from services.brain_errors import NotFoundError
from services.vector_store import bump_corpus_version

logger = logging.getLogger(__name__)

TRAFFIC_SOURCES = ("for_you", "follow", "profile", "search", "sound", "hashtag")


class TrafficSources(BaseModel):
    for_you: int = Field(default=0, ge=0)
    follow: int = Field(default=0, ge=0)
    profile: int = Field(default=0, ge=0)
    search: int = Field(default=0, ge=0)
    sound: int = Field(default=0, ge=0)
    hashtag: int = Field(default=0, ge=0)


class VideoRecord(BaseModel):
    """One catalog row as accepted at the ingestion boundary."""

    id: Optional[str] = None
    title: Optional[str] = None
    hook: Optional[str] = None
    script: Optional[str] = None
    cta_text: Optional[str] = None
    views: int = Field(default=0, ge=0)
    likes: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)
    shares: int = Field(default=0, ge=0)
    saves: int = Field(default=0, ge=0)
    new_followers: int = Field(default=0, ge=0)
    avg_time_watched: Optional[float] = Field(default=None, ge=0)
    duration_seconds: Optional[float] = Field(default=None, ge=0)
    traffic_sources: TrafficSources = Field(default_factory=TrafficSources)
    published_date: Optional[datetime] = None
    video_theme: Optional[str] = None
    cta_type: Optional[str] = None
    editing_style: Optional[str] = None
    tone_style: Optional[str] = None
    is_viral_flagged: bool = False

    @field_validator(
        "title", "hook", "script", "cta_text", "video_theme", "cta_type", "editing_style", "tone_style",
        mode="before",
    )
    @classmethod
    def strip_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("published_date")
    @classmethod
    def ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @field_validator("traffic_sources", mode="before")
    @classmethod
    def default_traffic(cls, value: Any) -> Any:
        return value if value is not None else {}


def video_to_dict(video: Video) -> Dict[str, Any]:
    return {
        "id": video.id,
        "title": video.title,
        "hook": video.hook,
        "script": video.script,
        "cta_text": video.cta_text,
        "views": int(video.views or 0),
        "likes": int(video.likes or 0),
        "comments": int(video.comments or 0),
        "shares": int(video.shares or 0),
        "saves": int(video.saves or 0),
        "new_followers": int(video.new_followers or 0),
        "avg_time_watched": video.avg_time_watched,
        "duration_seconds": video.duration_seconds,
        "traffic_sources": dict(video.traffic_sources_json or {}),
        "published_date": video.published_date.isoformat() if video.published_date else None,
        "video_theme": video.video_theme,
        "cta_type": video.cta_type,
        "editing_style": video.editing_style,
        "tone_style": video.tone_style,
        "is_viral_flagged": bool(video.is_viral_flagged),
    }


async def get_video(db: AsyncSession, user_id: str, video_id: str) -> Video:
    result = await db.execute(select(Video).where(Video.id == video_id, Video.user_id == user_id))
    video = result.scalar_one_or_none()
    if video is None:
        raise NotFoundError(f"Video {video_id} not found.")
    return video


async def list_videos(db: AsyncSession, user_id: str) -> List[Video]:
    result = await db.execute(
        select(Video)
        .where(Video.user_id == user_id)
        .order_by(Video.published_date.asc().nulls_last(), Video.id)
    )
    return list(result.scalars().all())


async def upsert_videos_service(user_id: str, records: Sequence[VideoRecord], db: AsyncSession) -> Dict[str, Any]:
    """Insert new catalog rows or overwrite existing ones owned by ``user_id``."""
    created = 0
    updated = 0
    ids: List[str] = []
    for record in records:
        payload = record.model_dump(exclude={"id", "traffic_sources"})
        payload["traffic_sources_json"] = record.traffic_sources.model_dump()

        video = None
        if record.id:
            result = await db.execute(select(Video).where(Video.id == record.id))
            video = result.scalar_one_or_none()
            if video is not None and video.user_id != user_id:
                # Ids are global; never let one owner overwrite another's row.
                raise NotFoundError(f"Video {record.id} not found.")

        if video is None:
            video = Video(id=record.id or str(uuid.uuid4()), user_id=user_id, **payload)
            db.add(video)
            created += 1
        else:
            for key, value in payload.items():
                setattr(video, key, value)
            updated += 1
        ids.append(video.id)

    if ids:
        # Catalog edits can change flags that cached analytics read.
        await db.flush()
        await bump_corpus_version(db, user_id)
    await db.commit()
    logger.info(f"Catalog upsert for user {user_id}: {created} created, {updated} updated")
    return {"created": created, "updated": updated, "video_ids": ids}


async def list_videos_service(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    videos = await list_videos(db, user_id)
    return {"videos": [video_to_dict(video) for video in videos], "count": len(videos)}
