"""
Thematic clustering of a user's content vectors.

Deterministic threshold linkage: vectors are ordered by id, every pair whose
cosine similarity reaches the threshold is joined (union-find), and connected
components below the minimum size are discarded as noise. No cluster count is
fixed in advance, and the same corpus always yields the same clusters.
"""

from __future__ import annotations

import hashlib
import logging
import math
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models.content_vector import ContentVector
from services.analytics_cache import analytics_cache
from services.brain_corpus import CorpusSnapshot, load_snapshot
from services.brain_scoring import as_utc, normalize_rows, percentile_rank
from services.vector_store import CONTENT_TYPES, SqlVectorStore

logger = logging.getLogger(__name__)

MIN_CLUSTER_SIZE = 3
TOP_VIDEOS_LIMIT = 5


class _UnionFind:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, item: int) -> int:
        while self.parent[item] != item:
            self.parent[item] = self.parent[self.parent[item]]
            item = self.parent[item]
        return item

    def union(self, left: int, right: int) -> None:
        root_left, root_right = self.find(left), self.find(right)
        if root_left == root_right:
            return
        # Lower index wins so roots do not depend on pair order.
        if root_left < root_right:
            self.parent[root_right] = root_left
        else:
            self.parent[root_left] = root_right


def threshold_linkage(embeddings: np.ndarray, threshold: float, min_size: int = MIN_CLUSTER_SIZE) -> List[List[int]]:
    """Connected components of the ``cosine >= threshold`` graph, noise removed."""
    count = embeddings.shape[0]
    if count == 0:
        return []
    normalized = normalize_rows(embeddings)
    similarity = normalized @ normalized.T
    groups = _UnionFind(count)
    left, right = np.nonzero(np.triu(similarity >= threshold, k=1))
    for i, j in zip(left.tolist(), right.tolist()):
        groups.union(i, j)

    components: Dict[int, List[int]] = {}
    for index in range(count):
        components.setdefault(groups.find(index), []).append(index)
    return [members for _, members in sorted(components.items()) if len(members) >= min_size]


def performance_trend(points: Sequence[tuple], margin: float) -> str:
    """
    Compare the recent half with the earlier half of (published_date, performance)
    points. Undated points are ignored; fewer than two dated points is stable.
    """
    dated = sorted((as_utc(published), value) for published, value in points if published is not None)
    if len(dated) < 2:
        return "stable"
    midpoint = math.ceil(len(dated) / 2)
    earlier = [value for _, value in dated[:midpoint]]
    recent = [value for _, value in dated[midpoint:]]
    if not recent:
        return "stable"
    delta = sum(recent) / len(recent) - sum(earlier) / len(earlier)
    if delta > margin:
        return "improving"
    if delta < -margin:
        return "declining"
    return "stable"


def _dominant(values: Sequence[Optional[str]], order: Sequence[str] = ()) -> Optional[str]:
    counts = Counter(value for value in values if value)
    if not counts:
        return None
    rank = {value: index for index, value in enumerate(order)}
    return sorted(counts.items(), key=lambda item: (-item[1], rank.get(item[0], len(rank)), item[0]))[0][0]


def _cluster_id(member_ids: Sequence[str]) -> str:
    digest = hashlib.sha1("|".join(sorted(member_ids)).encode("utf-8")).hexdigest()
    return f"cl_{digest[:12]}"


def describe_cluster(members: Sequence[ContentVector], snapshot: CorpusSnapshot, margin: float) -> Dict[str, Any]:
    video_ids = sorted({member.video_id for member in members})
    member_performance = [snapshot.performance.get(member.video_id, 0.0) for member in members]
    avg_performance = sum(member_performance) / len(member_performance)
    population = list(snapshot.performance.values())

    videos = [snapshot.videos[video_id] for video_id in video_ids if video_id in snapshot.videos]
    trend_points = [(video.published_date, snapshot.performance.get(video.video_id, 0.0)) for video in videos]
    top_videos = sorted(videos, key=lambda video: (-(video.views or 0), video.video_id))[:TOP_VIDEOS_LIMIT]

    return {
        "id": _cluster_id([member.id for member in members]),
        "theme": _dominant([member.video_theme for member in members]),
        "member_ids": sorted(member.id for member in members),
        "video_ids": video_ids,
        "vector_count": len(members),
        "video_count": len(video_ids),
        "dominant_content_type": _dominant([member.content_type for member in members], CONTENT_TYPES),
        "avg_performance": round(avg_performance, 4),
        "optimization_score": round(percentile_rank(avg_performance, population), 1),
        "performance_trend": performance_trend(trend_points, margin),
        "top_videos": [
            {
                "video_id": video.video_id,
                "title": video.video_title,
                "views": video.views or 0,
                "performance": round(snapshot.performance.get(video.video_id, 0.0), 4),
            }
            for video in top_videos
        ],
    }


def cluster_corpus(
    snapshot: CorpusSnapshot,
    threshold: Optional[float] = None,
    margin: Optional[float] = None,
) -> List[Dict[str, Any]]:
    threshold = settings.CLUSTER_SIMILARITY_THRESHOLD if threshold is None else threshold
    margin = settings.CLUSTER_TREND_MARGIN if margin is None else margin

    vectors = snapshot.usable_vectors()
    if not vectors:
        return []
    embeddings = np.asarray([vector.embedding_json for vector in vectors], dtype=np.float64)
    groups = threshold_linkage(embeddings, threshold)

    clusters = [describe_cluster([vectors[index] for index in group], snapshot, margin) for group in groups]
    clusters.sort(key=lambda cluster: (-cluster["avg_performance"], cluster["id"]))
    for position, cluster in enumerate(clusters, start=1):
        theme = cluster.pop("theme")
        cluster["name"] = theme or f"Cluster {position} ({cluster['dominant_content_type']})"
    return clusters


def cluster_analysis(snapshot: CorpusSnapshot) -> Dict[str, Any]:
    if not snapshot.has_enough_data():
        return snapshot.insufficient_data(clusters=[], total_clusters=0)
    clusters = cluster_corpus(snapshot)
    clustered = sum(cluster["vector_count"] for cluster in clusters)
    return {
        "status": "ok",
        "corpus_version": snapshot.version,
        "indexed_videos": snapshot.indexed_video_count,
        "clusters": clusters,
        "total_clusters": len(clusters),
        "clustered_vectors": clustered,
        "noise_vectors": len(snapshot.usable_vectors()) - clustered,
    }


async def get_cluster_analysis_service(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    store = SqlVectorStore(db)
    version = await store.corpus_version(user_id)

    async def compute() -> Dict[str, Any]:
        snapshot = await load_snapshot(db, user_id, store)
        return cluster_analysis(snapshot)

    return await analytics_cache.get_or_compute("clusters", user_id, version, compute)
