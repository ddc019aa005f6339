"""
Brain search: semantic retrieval re-ranked by performance, recency and diversity.

Candidates are oversampled by raw similarity, scored with a composite of
similarity, metric z-scores (against the candidate population) and time
decay, optionally diversified, then truncated. Facets describe the whole
filtered population, not just the returned hits.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models.content_vector import ContentVector
from services.account_context import load_context_weights
from services.brain_errors import ValidationError
from services.brain_scoring import (
    ScoreWeights,
    age_in_days,
    as_utc,
    composite_score,
    metric_z_scores,
    normalize_rows,
    percentile_cuts,
    performance_from_z,
    resolve_weights,
    time_decay,
)
from services.embeddings import EmbeddingProvider, ensure_embedding
from services.vector_store import CONTENT_TYPES, ScoredVector, SqlVectorStore, VectorFilter

logger = logging.getLogger(__name__)

DURATION_BUCKETS = ("<20s", "20-40s", ">40s")

CONTRIBUTOR_LABELS = {
    "similarity": "semantic similarity to the query",
    "retention": "retention above the candidate average",
    "saves": "saves per 1k views above the candidate average",
    "follows": "follows per 1k views above the candidate average",
    "fyp": "For You traffic share above the candidate average",
    "recency": "recent publication",
}


@dataclass
class SearchQuery:
    text: str
    top_k: int = 10
    content_types: List[str] = field(default_factory=list)
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    min_views: Optional[int] = None
    theme: Optional[str] = None
    diversity: bool = False
    diversity_threshold: Optional[float] = None

    def validate(self, max_top_k: int) -> None:
        if not str(self.text or "").strip():
            raise ValidationError("Search text must not be empty.")
        if not isinstance(self.top_k, int) or isinstance(self.top_k, bool) or not 1 <= self.top_k <= max_top_k:
            raise ValidationError(f"top_k must be between 1 and {max_top_k}.")
        unknown = sorted(set(self.content_types or []) - set(CONTENT_TYPES))
        if unknown:
            raise ValidationError(f"Unknown content type(s): {', '.join(unknown)}")
        if self.date_from and self.date_to and as_utc(self.date_from) > as_utc(self.date_to):
            raise ValidationError("date_from must not be after date_to.")
        if self.min_views is not None and self.min_views < 0:
            raise ValidationError("min_views must be non-negative.")
        if self.diversity_threshold is not None and not 0.0 < self.diversity_threshold <= 1.0:
            raise ValidationError("diversity_threshold must be in (0, 1].")

    def to_filter(self, user_id: str) -> VectorFilter:
        return VectorFilter(
            user_id=user_id,
            content_types=list(self.content_types or []) or None,
            date_from=as_utc(self.date_from),
            date_to=as_utc(self.date_to),
            min_views=self.min_views,
            theme=(self.theme or "").strip() or None,
        )

    def filters_applied(self) -> Dict[str, Any]:
        applied: Dict[str, Any] = {}
        if self.content_types:
            applied["content_types"] = list(self.content_types)
        if self.date_from:
            applied["date_from"] = as_utc(self.date_from).isoformat()
        if self.date_to:
            applied["date_to"] = as_utc(self.date_to).isoformat()
        if self.min_views is not None:
            applied["min_views"] = self.min_views
        if self.theme:
            applied["theme"] = self.theme.strip()
        if self.diversity:
            applied["diversity"] = True
        return applied


def explain(contributions: Mapping[str, float]) -> str:
    parts = {key: value for key, value in contributions.items() if key != "final_score"}
    top_key = max(parts, key=lambda key: (parts[key], key == "similarity"))
    return f"Ranked mainly by {CONTRIBUTOR_LABELS[top_key]} ({parts[top_key]:+.3f})."


def diversify(ranked: Sequence[Dict[str, Any]], embeddings: Sequence[Sequence[float]], threshold: float) -> List[int]:
    """
    Greedy MMR walk over ``ranked`` (best first).

    A candidate is kept only if its cosine similarity to every kept hit is
    below ``threshold``. Returns indices of kept candidates in rank order.
    """
    if not ranked:
        return []
    matrix = normalize_rows(np.asarray(embeddings, dtype=np.float64))
    chosen: List[int] = []
    for index in range(len(ranked)):
        if chosen:
            similarities = matrix[chosen] @ matrix[index]
            if float(np.max(similarities)) >= threshold:
                continue
        chosen.append(index)
    return chosen


def _metrics(row: ContentVector) -> Dict[str, Any]:
    return {
        "retention_pct": row.retention_pct,
        "saves_per_1k": row.saves_per_1k,
        "follows_per_1k": row.follows_per_1k,
        "for_you_pct": row.for_you_pct,
        "views": row.views,
        "likes": row.likes,
        "comments": row.comments,
        "shares": row.shares,
        "duration_seconds": row.duration_seconds,
        "published_date": as_utc(row.published_date).isoformat() if row.published_date else None,
    }


def vector_summary(row: ContentVector) -> Dict[str, Any]:
    return {
        "id": row.id,
        "video_id": row.video_id,
        "content_type": row.content_type,
        "section_tag": row.section_tag,
        "content": row.content,
        "language": row.language,
        "video_title": row.video_title,
        "video_theme": row.video_theme,
        "cta_type": row.cta_type,
        "editing_style": row.editing_style,
        "tone_style": row.tone_style,
        "metrics": _metrics(row),
    }


def duration_bucket(seconds: Optional[float]) -> Optional[str]:
    if seconds is None:
        return None
    if seconds < 20:
        return "<20s"
    if seconds <= 40:
        return "20-40s"
    return ">40s"


def _categorical_facet(rows: Sequence[ContentVector], attr: str) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    for row in rows:
        value = (getattr(row, attr) or "").strip()
        if value:
            counts[value] = counts.get(value, 0) + 1
    total = sum(counts.values())
    if not total:
        return []
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [
        {"value": value, "count": count, "percentage": round(count * 100.0 / total, 1)}
        for value, count in ordered
    ]


def _mean(values: Sequence[Optional[float]]) -> Optional[float]:
    present = [float(value) for value in values if value is not None]
    if not present:
        return None
    return round(sum(present) / len(present), 4)


def build_facets(population: Sequence[ContentVector], weights: ScoreWeights) -> Dict[str, Any]:
    """Facets over the filtered population, one row per video."""
    per_video: Dict[str, ContentVector] = {}
    for row in population:
        per_video.setdefault(row.video_id, row)
    rows = list(per_video.values())
    if not rows:
        return {
            "video_themes": [],
            "cta_types": [],
            "editing_styles": [],
            "duration_buckets": [],
            "percentiles": {},
        }

    performances = [performance_from_z(z, weights) for z in metric_z_scores(rows)]
    buckets = []
    for label in DURATION_BUCKETS:
        members = [
            (row, performance)
            for row, performance in zip(rows, performances)
            if duration_bucket(row.duration_seconds) == label
        ]
        buckets.append(
            {
                "range": label,
                "count": len(members),
                "avg_retention": _mean([row.retention_pct for row, _ in members]),
                "avg_performance": _mean([performance for _, performance in members]),
            }
        )

    return {
        "video_themes": _categorical_facet(rows, "video_theme"),
        "cta_types": _categorical_facet(rows, "cta_type"),
        "editing_styles": _categorical_facet(rows, "editing_style"),
        "duration_buckets": buckets,
        "percentiles": {
            "retention_pct": percentile_cuts(row.retention_pct for row in rows),
            "saves_per_1k": percentile_cuts(row.saves_per_1k for row in rows),
            "follows_per_1k": percentile_cuts(row.follows_per_1k for row in rows),
        },
    }


class BrainSearchEngine:
    def __init__(
        self,
        db: AsyncSession,
        provider: EmbeddingProvider,
        store: Optional[SqlVectorStore] = None,
        *,
        oversample: Optional[int] = None,
        halflife_days: Optional[float] = None,
        diversity_threshold: Optional[float] = None,
        max_top_k: Optional[int] = None,
    ):
        self.db = db
        self.provider = provider
        self.store = store or SqlVectorStore(db)
        self.oversample = max(int(oversample or settings.SEARCH_OVERSAMPLE), 1)
        self.halflife_days = float(halflife_days or settings.TIME_DECAY_HALFLIFE_DAYS)
        self.diversity_threshold = float(diversity_threshold or settings.SEARCH_DIVERSITY_THRESHOLD)
        self.max_top_k = int(max_top_k or settings.SEARCH_MAX_TOP_K)

    def score_candidates(
        self,
        matches: Sequence[ScoredVector],
        weights: ScoreWeights,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        now = now or datetime.now(timezone.utc)
        rows = [match.vector for match in matches]
        z_rows = metric_z_scores(rows)
        scored = []
        for match, z_scores in zip(matches, z_rows):
            decay = time_decay(age_in_days(match.vector.published_date, now), self.halflife_days)
            contributions = composite_score(match.similarity, z_scores, decay, weights)
            hit = vector_summary(match.vector)
            hit.update(
                {
                    "similarity": round(match.similarity, 6),
                    "z_scores": {key: round(value, 4) for key, value in z_scores.items()},
                    "time_decay": round(decay, 6),
                    "final_score": round(contributions["final_score"], 6),
                    "score_breakdown": {
                        key: round(value, 6) for key, value in contributions.items() if key != "final_score"
                    },
                    "explanation": explain(contributions),
                }
            )
            scored.append(hit)
        # Ties fall back to raw similarity, then id, for a stable order.
        scored.sort(key=lambda hit: (-hit["final_score"], -hit["similarity"], hit["id"]))
        return scored

    async def search(
        self,
        user_id: str,
        query: SearchQuery,
        context_weights: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        started = time.perf_counter()
        query.validate(self.max_top_k)

        embedding = ensure_embedding(await self.provider.embed(query.text.strip()), self.provider)
        if context_weights is None:
            context_weights = await load_context_weights(self.db, user_id)
        weights = resolve_weights(context_weights)

        result = await self.store.similarity_query(
            embedding,
            query.to_filter(user_id),
            k=query.top_k * self.oversample,
        )
        ranked = self.score_candidates(result.matches, weights)

        if query.diversity and not result.degraded and ranked:
            by_id = {match.vector.id: match.vector.embedding_json for match in result.matches}
            threshold = query.diversity_threshold or self.diversity_threshold
            kept = diversify(ranked, [by_id[hit["id"]] for hit in ranked], threshold)
            ranked = [ranked[index] for index in kept]

        hits = ranked[: query.top_k]
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.info(
            f"Brain search for user {user_id}: {len(hits)} hits from {result.candidate_count} candidates"
            f"{' (degraded)' if result.degraded else ''} in {elapsed_ms}ms"
        )
        return {
            "hits": hits,
            "facets": build_facets(result.population, weights),
            "total_results": len(hits),
            "search_time_ms": elapsed_ms,
            "degraded": result.degraded,
            "filters_applied": query.filters_applied(),
            "weights": weights.as_dict(),
        }


async def search_service(
    user_id: str,
    query: SearchQuery,
    db: AsyncSession,
    provider: EmbeddingProvider,
) -> Dict[str, Any]:
    engine = BrainSearchEngine(db, provider)
    return await engine.search(user_id, query)
