"""
SQL-backed vector store for Brain content vectors.

Embeddings live in a JSON column; cosine similarity is computed with numpy over
the owner's filtered rows. When similarity cannot be computed the store serves
the most recent matching rows with a neutral score and flags the response as
degraded instead of failing.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import warnings
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

import numpy as np
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models.brain_corpus_state import BrainCorpusState
from models.content_vector import ContentVector
from services.brain_errors import DegradedModeWarning
from services.brain_scoring import normalize_rows
from services.retry_policy import RetryPolicy, store_retry_policy

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONTENT_TYPES = ("hook", "script", "cta")
NEUTRAL_SCORE = 0.5


@dataclass
class VectorFilter:
    user_id: str
    content_types: Optional[Sequence[str]] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    min_views: Optional[int] = None
    theme: Optional[str] = None
    video_id: Optional[str] = None
    exclude_video_id: Optional[str] = None


@dataclass
class ScoredVector:
    vector: ContentVector
    similarity: float


@dataclass
class SimilarityResult:
    matches: List[ScoredVector] = field(default_factory=list)
    # every row matching the filter, unranked
    population: List[ContentVector] = field(default_factory=list)
    candidate_count: int = 0
    degraded: bool = False
    reason: Optional[str] = None


class SimilarityUnavailable(Exception):
    """Similarity ranking cannot be computed for the stored rows."""


async def bump_corpus_version(db: AsyncSession, user_id: str) -> int:
    """Increment the owner's corpus version inside the caller's transaction."""
    result = await db.execute(select(BrainCorpusState).where(BrainCorpusState.user_id == user_id))
    state = result.scalar_one_or_none()
    if state is None:
        state = BrainCorpusState(user_id=user_id, version=1)
        db.add(state)
    else:
        state.version = int(state.version or 0) + 1
    await db.flush()
    return int(state.version)


def _apply_filter(statement, vector_filter: VectorFilter):
    statement = statement.where(ContentVector.user_id == vector_filter.user_id)
    if vector_filter.content_types:
        statement = statement.where(ContentVector.content_type.in_(list(vector_filter.content_types)))
    if vector_filter.date_from is not None:
        statement = statement.where(ContentVector.published_date >= vector_filter.date_from)
    if vector_filter.date_to is not None:
        statement = statement.where(ContentVector.published_date <= vector_filter.date_to)
    if vector_filter.min_views is not None:
        statement = statement.where(ContentVector.views >= int(vector_filter.min_views))
    if vector_filter.theme:
        statement = statement.where(ContentVector.video_theme.ilike(f"%{vector_filter.theme.strip()}%"))
    if vector_filter.video_id:
        statement = statement.where(ContentVector.video_id == vector_filter.video_id)
    if vector_filter.exclude_video_id:
        statement = statement.where(ContentVector.video_id != vector_filter.exclude_video_id)
    return statement


def rank_by_similarity(
    query_embedding: Sequence[float],
    rows: Sequence[ContentVector],
    k: int,
) -> List[ScoredVector]:
    """Top-k rows by cosine similarity. Raises SimilarityUnavailable on unusable data."""
    if not rows:
        return []
    query = np.asarray(query_embedding, dtype=np.float64)
    if query.ndim != 1 or query.size == 0 or not np.all(np.isfinite(query)):
        raise SimilarityUnavailable("query embedding is not a finite vector")
    query_norm = float(np.linalg.norm(query))
    if query_norm == 0:
        raise SimilarityUnavailable("query embedding has zero norm")

    usable = [row for row in rows if isinstance(row.embedding_json, list) and len(row.embedding_json) == query.size]
    if not usable:
        raise SimilarityUnavailable(
            f"no stored embeddings match query dimension {query.size}"
        )
    if len(usable) < len(rows):
        logger.warning(f"Skipping {len(rows) - len(usable)} vectors with mismatched embedding dimensions")

    try:
        matrix = np.asarray([row.embedding_json for row in usable], dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise SimilarityUnavailable(f"stored embeddings are malformed: {exc}") from exc
    if not np.all(np.isfinite(matrix)):
        raise SimilarityUnavailable("stored embeddings contain non-finite values")

    scores = normalize_rows(matrix) @ (query / query_norm)
    # Stable sort keeps insertion order for equal scores.
    order = np.argsort(-scores, kind="stable")[: max(int(k), 0)]
    return [ScoredVector(vector=usable[index], similarity=float(scores[index])) for index in order]


class SqlVectorStore:
    """Owner-scoped vector persistence and retrieval over one AsyncSession."""

    def __init__(self, db: AsyncSession, retry_policy: Optional[RetryPolicy] = None):
        self.db = db
        self.retry_policy = retry_policy or store_retry_policy()
        # AsyncSession is not safe for concurrent use.
        self._lock = asyncio.Lock()

    async def _read(self, operation: str, work: Callable[[], Awaitable[T]]) -> T:
        async def attempt() -> T:
            async with self._lock:
                try:
                    return await work()
                except SQLAlchemyError:
                    await self.db.rollback()
                    raise

        return await self.retry_policy.call(attempt, operation=operation)

    async def _write(self, operation: str, work: Callable[[], Awaitable[T]]) -> T:
        async def attempt() -> T:
            async with self._lock:
                try:
                    result = await work()
                    await self.db.commit()
                    return result
                except SQLAlchemyError:
                    await self.db.rollback()
                    raise

        return await self.retry_policy.call(attempt, operation=operation)

    # ── Writes ───────────────────────────────────────────────────────────

    async def upsert(self, records: Sequence[Dict[str, Any]]) -> int:
        """Insert vectors, replacing any live row with the same (video_id, content_type)."""
        if not records:
            return 0

        async def work() -> int:
            touched_users = set()
            for record in records:
                await self.db.execute(
                    delete(ContentVector).where(
                        ContentVector.user_id == record["user_id"],
                        ContentVector.video_id == record["video_id"],
                        ContentVector.content_type == record["content_type"],
                    )
                )
                touched_users.add(record["user_id"])
            self.db.add_all([ContentVector(id=record.get("id") or str(uuid.uuid4()), **_columns(record)) for record in records])
            await self.db.flush()
            for user_id in sorted(touched_users):
                await bump_corpus_version(self.db, user_id)
            return len(records)

        return await self._write("upsert", work)

    async def replace_video_vectors(self, user_id: str, video_id: str, records: Sequence[Dict[str, Any]]) -> int:
        """Atomically swap every vector of one video for ``records``."""

        async def work() -> int:
            await self.db.execute(
                delete(ContentVector).where(
                    ContentVector.user_id == user_id,
                    ContentVector.video_id == video_id,
                )
            )
            self.db.add_all([ContentVector(id=str(uuid.uuid4()), **_columns(record)) for record in records])
            await self.db.flush()
            await bump_corpus_version(self.db, user_id)
            return len(records)

        return await self._write("replace_video_vectors", work)

    async def delete(self, vector_filter: VectorFilter) -> int:
        async def work() -> int:
            ids_result = await self.db.execute(_apply_filter(select(ContentVector.id), vector_filter))
            ids = [row[0] for row in ids_result.all()]
            if not ids:
                return 0
            await self.db.execute(delete(ContentVector).where(ContentVector.id.in_(ids)))
            await bump_corpus_version(self.db, vector_filter.user_id)
            return len(ids)

        return await self._write("delete", work)

    # ── Reads ────────────────────────────────────────────────────────────

    async def fetch(self, vector_filter: VectorFilter, *, most_recent_first: bool = False, limit: Optional[int] = None) -> List[ContentVector]:
        async def work() -> List[ContentVector]:
            statement = _apply_filter(select(ContentVector), vector_filter)
            if most_recent_first:
                statement = statement.order_by(
                    ContentVector.published_date.desc().nulls_last(),
                    ContentVector.created_at.desc(),
                    ContentVector.id,
                )
            else:
                statement = statement.order_by(ContentVector.id)
            if limit is not None:
                statement = statement.limit(max(int(limit), 0))
            result = await self.db.execute(statement)
            return list(result.scalars().all())

        return await self._read("fetch", work)

    async def list_vectors(self, user_id: str) -> List[ContentVector]:
        return await self.fetch(VectorFilter(user_id=user_id))

    async def similarity_query(self, embedding: Sequence[float], vector_filter: VectorFilter, k: int) -> SimilarityResult:
        rows = await self.fetch(vector_filter)
        if not rows:
            return SimilarityResult(matches=[], candidate_count=0)

        try:
            matches = rank_by_similarity(embedding, rows, k)
            return SimilarityResult(matches=matches, population=rows, candidate_count=len(rows))
        except SimilarityUnavailable as exc:
            reason = str(exc)

        logger.warning(f"Similarity search unavailable for user {vector_filter.user_id}: {reason}. Serving recency fallback.")
        warnings.warn(f"Similarity search unavailable: {reason}", DegradedModeWarning, stacklevel=2)
        recent = await self.fetch(vector_filter, most_recent_first=True, limit=k)
        return SimilarityResult(
            matches=[ScoredVector(vector=row, similarity=NEUTRAL_SCORE) for row in recent],
            population=rows,
            candidate_count=len(rows),
            degraded=True,
            reason=reason,
        )

    async def corpus_version(self, user_id: str) -> int:
        async def work() -> int:
            result = await self.db.execute(select(BrainCorpusState.version).where(BrainCorpusState.user_id == user_id))
            version = result.scalar_one_or_none()
            return int(version or 0)

        return await self._read("corpus_version", work)

    async def count_indexed_videos(self, user_id: str) -> int:
        async def work() -> int:
            result = await self.db.execute(
                select(func.count(func.distinct(ContentVector.video_id))).where(ContentVector.user_id == user_id)
            )
            return int(result.scalar_one() or 0)

        return await self._read("count_indexed_videos", work)

    async def count_vectors(self, user_id: str) -> int:
        async def work() -> int:
            result = await self.db.execute(select(func.count(ContentVector.id)).where(ContentVector.user_id == user_id))
            return int(result.scalar_one() or 0)

        return await self._read("count_vectors", work)


_VECTOR_COLUMNS = {
    "user_id",
    "video_id",
    "content_type",
    "section_tag",
    "content",
    "language",
    "embedding_json",
    "embedding_model",
    "video_title",
    "video_theme",
    "cta_type",
    "editing_style",
    "tone_style",
    "retention_pct",
    "saves_per_1k",
    "follows_per_1k",
    "for_you_pct",
    "views",
    "likes",
    "comments",
    "shares",
    "duration_seconds",
    "published_date",
}


def _columns(record: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in record.items() if key in _VECTOR_COLUMNS}
