"""
Embedding indexer: catalog video -> embedded ContentVectors.

Fragments are embedded first and the video's vectors are swapped in a single
transaction afterwards, so a failed embedding never leaves a video without
its previous vectors.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models.video import Video
from services.brain_errors import PartialIndexFailure
from services.content_extractor import extract_fragments
from services.embeddings import EmbeddingProvider, ensure_embedding
from services.vector_store import SqlVectorStore
from services.video_catalog import get_video, list_videos

logger = logging.getLogger(__name__)

# user_id -> cancel flag of the bulk reindex currently running for that user
_active_reindex: Dict[str, asyncio.Event] = {}


def _field(video: Any, name: str) -> Any:
    if isinstance(video, dict):
        return video.get(name)
    return getattr(video, name, None)


def _detach(video: Video) -> Dict[str, Any]:
    # Plain values survive a session rollback; expired ORM rows would lazy-load.
    return {column.key: getattr(video, column.key) for column in Video.__table__.columns}


def _count(value: Any) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


def metrics_snapshot(video: Any) -> Dict[str, Any]:
    """Derived per-video metrics; ratios are None when their denominator is zero."""
    views = _count(_field(video, "views"))
    duration = _field(video, "duration_seconds")
    avg_watched = _field(video, "avg_time_watched")
    traffic = _field(video, "traffic_sources_json")
    if traffic is None:
        traffic = _field(video, "traffic_sources")
    if hasattr(traffic, "model_dump"):
        traffic = traffic.model_dump()
    traffic = traffic or {}

    retention_pct = None
    if duration and float(duration) > 0 and avg_watched is not None:
        retention_pct = round(min(100.0, float(avg_watched) / float(duration) * 100.0), 4)

    saves_per_1k = follows_per_1k = for_you_pct = None
    if views > 0:
        saves_per_1k = round(_count(_field(video, "saves")) * 1000.0 / views, 4)
        follows_per_1k = round(_count(_field(video, "new_followers")) * 1000.0 / views, 4)
        for_you_pct = round(min(100.0, _count(traffic.get("for_you")) * 100.0 / views), 4)

    return {
        "retention_pct": retention_pct,
        "saves_per_1k": saves_per_1k,
        "follows_per_1k": follows_per_1k,
        "for_you_pct": for_you_pct,
        "views": views,
        "likes": _count(_field(video, "likes")),
        "comments": _count(_field(video, "comments")),
        "shares": _count(_field(video, "shares")),
        "duration_seconds": float(duration) if duration is not None else None,
        "published_date": _field(video, "published_date"),
    }


@dataclass
class ReindexResult:
    indexed_count: int = 0
    skipped_count: int = 0
    cancelled: bool = False
    failures: List[Dict[str, str]] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    def raise_for_failures(self) -> "ReindexResult":
        if self.failures:
            raise PartialIndexFailure(self.failures, indexed_count=self.indexed_count)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "indexed_count": self.indexed_count,
            "failed_count": self.failed_count,
            "failures": list(self.failures),
            "cancelled": self.cancelled,
            "skipped_count": self.skipped_count,
        }


def request_cancel(user_id: str) -> bool:
    """Ask the user's running bulk reindex to stop before its next video."""
    event = _active_reindex.get(user_id)
    if event is None:
        return False
    event.set()
    return True


def is_reindex_running(user_id: str) -> bool:
    return user_id in _active_reindex


class BrainIndexer:
    def __init__(
        self,
        db: AsyncSession,
        provider: EmbeddingProvider,
        store: Optional[SqlVectorStore] = None,
        concurrency: Optional[int] = None,
    ):
        self.db = db
        self.provider = provider
        self.store = store or SqlVectorStore(db)
        self.concurrency = max(int(concurrency or settings.INDEX_CONCURRENCY), 1)
        self._embed_slots = asyncio.Semaphore(self.concurrency)

    async def _embed(self, text: str) -> List[float]:
        async with self._embed_slots:
            return await self.provider.embed(text)

    async def _build_records(self, video: Any) -> List[Dict[str, Any]]:
        fragments = extract_fragments(video)
        if not fragments:
            return []

        embeddings = await asyncio.gather(*(self._embed(fragment.content) for fragment in fragments))
        snapshot = metrics_snapshot(video)
        user_id = _field(video, "user_id")
        video_id = _field(video, "id")

        records = []
        for fragment, embedding in zip(fragments, embeddings):
            records.append(
                {
                    "user_id": user_id,
                    "video_id": video_id,
                    "content_type": fragment.content_type,
                    "section_tag": fragment.section_tag,
                    "content": fragment.content,
                    "language": fragment.language,
                    "embedding_json": ensure_embedding(embedding, self.provider),
                    "embedding_model": self.provider.model_name,
                    "video_title": _field(video, "title"),
                    "video_theme": _field(video, "video_theme"),
                    "cta_type": _field(video, "cta_type"),
                    "editing_style": _field(video, "editing_style"),
                    "tone_style": _field(video, "tone_style"),
                    **snapshot,
                }
            )
        return records

    async def reindex_video(self, video: Any) -> int:
        """Rebuild one video's vectors. Returns the number of vectors now stored."""
        records = await self._build_records(video)
        user_id = _field(video, "user_id")
        video_id = _field(video, "id")
        await self.store.replace_video_vectors(user_id, video_id, records)
        if not records:
            logger.info(f"Video {video_id} has no extractable text; cleared its vectors")
        return len(records)

    async def index_video(self, user_id: str, video_id: str) -> bool:
        video = await get_video(self.db, user_id, video_id)
        await self.reindex_video(video)
        return True

    async def reindex_all(self, user_id: str, cancel_event: Optional[asyncio.Event] = None) -> ReindexResult:
        """Reindex every video of ``user_id``; per-video failures are recorded, not raised."""
        videos = [_detach(video) for video in await list_videos(self.db, user_id)]
        cancel_event = cancel_event or asyncio.Event()
        _active_reindex[user_id] = cancel_event

        semaphore = asyncio.Semaphore(self.concurrency)
        result = ReindexResult()
        failures: Dict[int, Dict[str, str]] = {}

        async def run(position: int, video: Dict[str, Any]) -> None:
            video_id = video["id"]
            async with semaphore:
                if cancel_event.is_set():
                    result.skipped_count += 1
                    return
                try:
                    await self.reindex_video(video)
                    result.indexed_count += 1
                except Exception as exc:
                    logger.warning(f"Indexing video {video_id} failed: {type(exc).__name__}: {exc}")
                    failures[position] = {
                        "video_id": video_id,
                        "error": type(exc).__name__,
                        "message": str(exc),
                    }

        try:
            await asyncio.gather(*(run(position, video) for position, video in enumerate(videos)))
        finally:
            if _active_reindex.get(user_id) is cancel_event:
                del _active_reindex[user_id]

        result.failures = [failures[position] for position in sorted(failures)]
        result.cancelled = cancel_event.is_set()
        logger.info(
            f"Reindex for user {user_id}: {result.indexed_count} indexed, "
            f"{result.failed_count} failed, {result.skipped_count} skipped"
        )
        return result


async def index_video_service(
    user_id: str,
    video_id: str,
    db: AsyncSession,
    provider: EmbeddingProvider,
) -> Dict[str, Any]:
    indexer = BrainIndexer(db, provider)
    video = await get_video(db, user_id, video_id)
    vector_count = await indexer.reindex_video(video)
    return {"success": True, "video_id": video_id, "vector_count": vector_count}


async def reindex_all_service(user_id: str, db: AsyncSession, provider: EmbeddingProvider) -> Dict[str, Any]:
    indexer = BrainIndexer(db, provider)
    result = await indexer.reindex_all(user_id)
    return result.to_dict()
