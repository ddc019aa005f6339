"""
Viral-potential prediction from nearest historical neighbors.

Each video is represented by the centroid of its fragment embeddings. A
target's neighbors are the most similar other videos; their outcomes against
the corpus p90 view threshold drive probability, expected views and
confidence.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from services.analytics_cache import analytics_cache
from services.brain_corpus import CorpusSnapshot, load_snapshot
from services.brain_errors import NotFoundError
from services.brain_scoring import SCORED_METRICS, population_stats
from services.vector_store import SqlVectorStore

logger = logging.getLogger(__name__)

SUCCESS_PERCENTILE = 90
FACTOR_Z_THRESHOLD = 0.5

FACTOR_LABELS = {
    "retention_pct": "High retention",
    "saves_per_1k": "High saves per 1k views",
    "follows_per_1k": "Strong follower conversion",
    "for_you_pct": "Strong For You distribution",
}


def confidence_score(neighbor_views: Sequence[float], floor: Optional[float] = None) -> float:
    """Grows with neighbor count, shrinks with the spread of neighbor outcomes (log10 views)."""
    floor = settings.VIRAL_CONFIDENCE_FLOOR if floor is None else floor
    count = len(neighbor_views)
    if count == 0:
        return 0.0
    spread = float(np.std(np.log10(np.asarray(neighbor_views, dtype=np.float64) + 1.0)))
    score = 100.0 * (1.0 - math.exp(-count / 4.0)) / (1.0 + spread)
    if count < 3:
        score = min(score, floor - 1.0)
    return float(min(100.0, max(0.0, score)))


def key_factors(neighbors: Sequence[Dict[str, Any]], snapshot: CorpusSnapshot) -> List[str]:
    successful = [neighbor for neighbor in neighbors if neighbor["successful"]]
    basis = successful or list(neighbors)
    if not basis:
        return []

    corpus = list(snapshot.videos.values())
    factors = []
    for attr, _ in SCORED_METRICS:
        stats = population_stats(getattr(video, attr) for video in corpus)
        if stats["std"] <= 1e-12:
            continue
        values = [getattr(snapshot.videos[item["video_id"]], attr) for item in basis]
        present = [float(value) for value in values if value is not None]
        if not present:
            continue
        lift = (sum(present) / len(present) - stats["mean"]) / stats["std"]
        if lift >= FACTOR_Z_THRESHOLD:
            factors.append(FACTOR_LABELS[attr])

    themes = [snapshot.videos[item["video_id"]].video_theme for item in basis]
    themes = [theme for theme in themes if theme]
    if themes:
        dominant = sorted(set(themes), key=lambda theme: (-themes.count(theme), theme))[0]
        factors.append(f"Theme: {dominant}")
    return factors


def predict_video(
    video_id: str,
    snapshot: CorpusSnapshot,
    centroids: Dict[str, np.ndarray],
    success_threshold: float,
    neighbor_count: Optional[int] = None,
) -> Dict[str, Any]:
    neighbor_count = neighbor_count or settings.VIRAL_NEIGHBOR_COUNT
    target = snapshot.videos[video_id]
    candidates: List[Dict[str, Any]] = []

    target_centroid = centroids.get(video_id)
    if target_centroid is not None and float(np.linalg.norm(target_centroid)) > 0:
        target_unit = target_centroid / np.linalg.norm(target_centroid)
        for other_id, centroid in centroids.items():
            if other_id == video_id:
                continue
            norm = float(np.linalg.norm(centroid))
            if norm == 0:
                continue
            similarity = float(np.dot(target_unit, centroid / norm))
            if similarity <= 0:
                continue
            views = int(snapshot.videos[other_id].views or 0)
            candidates.append(
                {
                    "video_id": other_id,
                    "similarity": similarity,
                    "views": views,
                    "successful": views > success_threshold,
                }
            )
    neighbors = sorted(candidates, key=lambda item: (-item["similarity"], item["video_id"]))[:neighbor_count]

    total_similarity = sum(item["similarity"] for item in neighbors)
    if total_similarity > 0:
        probability = sum(item["similarity"] for item in neighbors if item["successful"]) / total_similarity
        predicted_views = sum(item["similarity"] * item["views"] for item in neighbors) / total_similarity
    else:
        probability = 0.0
        predicted_views = 0.0

    return {
        "video_id": video_id,
        "title": target.video_title,
        "current_views": int(target.views or 0),
        "predicted_views": int(round(predicted_views)),
        "viral_probability": round(min(1.0, max(0.0, probability)), 4),
        "confidence_score": round(confidence_score([item["views"] for item in neighbors]), 1),
        "key_factors": key_factors(neighbors, snapshot),
        "similar_successful_videos": [
            {
                "video_id": item["video_id"],
                "title": snapshot.videos[item["video_id"]].video_title,
                "views": item["views"],
                "similarity": round(item["similarity"], 4),
            }
            for item in neighbors
            if item["successful"]
        ],
        "neighbor_count": len(neighbors),
    }


def viral_predictions(snapshot: CorpusSnapshot, video_ids: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    if not snapshot.has_enough_data():
        return snapshot.insufficient_data(predictions=[], total_predictions=0)

    targets = list(dict.fromkeys(video_ids)) if video_ids else sorted(snapshot.videos)
    unknown = [video_id for video_id in targets if video_id not in snapshot.videos]
    if unknown:
        raise NotFoundError(f"Video(s) not indexed: {', '.join(unknown[:5])}")

    all_views = [int(video.views or 0) for video in snapshot.videos.values()]
    success_threshold = float(np.percentile(np.asarray(all_views, dtype=np.float64), SUCCESS_PERCENTILE))
    centroids = snapshot.video_centroids()

    predictions = [predict_video(video_id, snapshot, centroids, success_threshold) for video_id in targets]
    predictions.sort(key=lambda item: (-item["viral_probability"], -item["confidence_score"], item["video_id"]))
    return {
        "status": "ok",
        "corpus_version": snapshot.version,
        "success_threshold_views": round(success_threshold, 2),
        "predictions": predictions,
        "total_predictions": len(predictions),
    }


async def get_viral_predictions_service(
    user_id: str,
    db: AsyncSession,
    video_ids: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    store = SqlVectorStore(db)
    version = await store.corpus_version(user_id)
    params = tuple(sorted(set(video_ids))) if video_ids else None

    async def compute() -> Dict[str, Any]:
        snapshot = await load_snapshot(db, user_id, store)
        return viral_predictions(snapshot, video_ids)

    return await analytics_cache.get_or_compute("predictions", user_id, version, compute, params=params)
