"""Per-user corpus snapshot shared by the analytics derivations."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models.content_vector import ContentVector
from services.account_context import load_context_weights
from services.brain_scoring import ScoreWeights, metric_z_scores, performance_from_z, resolve_weights
from services.vector_store import SqlVectorStore

logger = logging.getLogger(__name__)


@dataclass
class CorpusSnapshot:
    user_id: str
    version: int
    weights: ScoreWeights
    vectors: List[ContentVector] = field(default_factory=list)
    # video_id -> one representative vector (metrics are per video)
    videos: Dict[str, ContentVector] = field(default_factory=dict)
    # video_id -> weighted metric composite z-scored against the whole corpus
    performance: Dict[str, float] = field(default_factory=dict)

    @property
    def indexed_video_count(self) -> int:
        return len(self.videos)

    def has_enough_data(self, minimum: Optional[int] = None) -> bool:
        floor = settings.MIN_CORPUS_VIDEOS if minimum is None else minimum
        return self.indexed_video_count >= floor

    def embedding_dimension(self) -> Optional[int]:
        """Most common embedding length; vectors of other lengths are ignored by analytics."""
        lengths = Counter(len(vector.embedding_json or []) for vector in self.vectors if vector.embedding_json)
        if not lengths:
            return None
        return sorted(lengths.items(), key=lambda item: (-item[1], -item[0]))[0][0]

    def usable_vectors(self) -> List[ContentVector]:
        dimension = self.embedding_dimension()
        if dimension is None:
            return []
        usable = [vector for vector in self.vectors if len(vector.embedding_json or []) == dimension]
        if len(usable) < len(self.vectors):
            logger.warning(
                f"Ignoring {len(self.vectors) - len(usable)} vectors with a non-{dimension} embedding for user {self.user_id}"
            )
        return usable

    def video_centroids(self) -> Dict[str, np.ndarray]:
        grouped: Dict[str, List[List[float]]] = {}
        for vector in self.usable_vectors():
            grouped.setdefault(vector.video_id, []).append(vector.embedding_json)
        return {
            video_id: np.asarray(embeddings, dtype=np.float64).mean(axis=0)
            for video_id, embeddings in grouped.items()
        }

    def insufficient_data(self, **empty_payload: Any) -> Dict[str, Any]:
        return {
            "status": "insufficient_data",
            "indexed_videos": self.indexed_video_count,
            "min_required": settings.MIN_CORPUS_VIDEOS,
            "corpus_version": self.version,
            **empty_payload,
        }


def build_snapshot(
    user_id: str,
    version: int,
    vectors: List[ContentVector],
    context_weights: Optional[Dict[str, float]] = None,
) -> CorpusSnapshot:
    weights = resolve_weights(context_weights)
    ordered = sorted(vectors, key=lambda vector: vector.id)
    videos: Dict[str, ContentVector] = {}
    for vector in ordered:
        videos.setdefault(vector.video_id, vector)
    video_rows = list(videos.values())
    performance = {
        row.video_id: performance_from_z(z_scores, weights)
        for row, z_scores in zip(video_rows, metric_z_scores(video_rows))
    }
    return CorpusSnapshot(
        user_id=user_id,
        version=version,
        weights=weights,
        vectors=ordered,
        videos=videos,
        performance=performance,
    )


async def load_snapshot(db: AsyncSession, user_id: str, store: Optional[SqlVectorStore] = None) -> CorpusSnapshot:
    store = store or SqlVectorStore(db)
    version = await store.corpus_version(user_id)
    vectors = await store.list_vectors(user_id)
    context_weights = await load_context_weights(db, user_id)
    return build_snapshot(user_id, version, vectors, context_weights)
