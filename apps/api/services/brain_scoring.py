"""
Scoring primitives shared by ranking and analytics.

Metric z-scores, recency decay, the weighted performance composite and a few
numeric helpers over embedding vectors.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

# (snapshot attribute, weight key)
SCORED_METRICS = (
    ("retention_pct", "retention"),
    ("saves_per_1k", "saves"),
    ("follows_per_1k", "follows"),
    ("for_you_pct", "fyp"),
)

DEFAULT_CONTEXT_WEIGHTS: Dict[str, float] = {"retention": 0.3, "saves": 0.5, "follows": 0.2}

SIMILARITY_WEIGHT = 0.6
FYP_WEIGHT = 0.05
RECENCY_WEIGHT = 0.1
# Recency is an additive bonus on top of the unit budget.
METRIC_BUDGET = 1.0 - SIMILARITY_WEIGHT - FYP_WEIGHT


@dataclass(frozen=True)
class ScoreWeights:
    similarity: float
    retention: float
    saves: float
    follows: float
    fyp: float
    recency: float

    def metric_weight(self, key: str) -> float:
        return float(getattr(self, key))

    def as_dict(self) -> Dict[str, float]:
        return {
            "similarity": round(self.similarity, 4),
            "retention": round(self.retention, 4),
            "saves": round(self.saves, 4),
            "follows": round(self.follows, 4),
            "fyp": round(self.fyp, 4),
            "recency": round(self.recency, 4),
        }


def normalize_context_weights(weights: Optional[Mapping[str, Any]]) -> Dict[str, float]:
    """Return {retention, saves, follows} with non-negative values summing to 1."""
    source = dict(weights or {})
    cleaned = {}
    for key, default in DEFAULT_CONTEXT_WEIGHTS.items():
        try:
            value = float(source.get(key, default))
        except (TypeError, ValueError):
            value = default
        cleaned[key] = value if math.isfinite(value) and value > 0 else 0.0
    total = sum(cleaned.values())
    if total <= 0:
        return dict(DEFAULT_CONTEXT_WEIGHTS)
    return {key: value / total for key, value in cleaned.items()}


def resolve_weights(context_weights: Optional[Mapping[str, Any]] = None) -> ScoreWeights:
    normalized = normalize_context_weights(context_weights)
    return ScoreWeights(
        similarity=SIMILARITY_WEIGHT,
        retention=METRIC_BUDGET * normalized["retention"],
        saves=METRIC_BUDGET * normalized["saves"],
        follows=METRIC_BUDGET * normalized["follows"],
        fyp=FYP_WEIGHT,
        recency=RECENCY_WEIGHT,
    )


def _finite(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def population_stats(values: Iterable[Any]) -> Dict[str, float]:
    present = [number for number in (_finite(value) for value in values) if number is not None]
    if not present:
        return {"mean": 0.0, "std": 0.0, "count": 0}
    array = np.asarray(present, dtype=np.float64)
    return {"mean": float(array.mean()), "std": float(array.std()), "count": len(present)}


def z_score(value: Any, mean: float, std: float) -> float:
    """(value - mean) / std; 0 for missing values or a zero-spread population."""
    number = _finite(value)
    if number is None or not std or not math.isfinite(std) or std <= 1e-12:
        return 0.0
    return (number - mean) / std


def metric_z_scores(rows: Sequence[Any]) -> List[Dict[str, float]]:
    """Per-row z-scores for every scored metric against the rows' own population."""
    stats = {
        attr: population_stats(_get(row, attr) for row in rows)
        for attr, _ in SCORED_METRICS
    }
    scores: List[Dict[str, float]] = []
    for row in rows:
        scores.append(
            {
                attr: z_score(_get(row, attr), stats[attr]["mean"], stats[attr]["std"])
                for attr, _ in SCORED_METRICS
            }
        )
    return scores


def _get(row: Any, attr: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(attr)
    return getattr(row, attr, None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def age_in_days(published: Optional[datetime], now: Optional[datetime] = None) -> Optional[float]:
    published_utc = as_utc(published)
    if published_utc is None:
        return None
    reference = as_utc(now) or datetime.now(timezone.utc)
    return max((reference - published_utc).total_seconds() / 86400.0, 0.0)


def time_decay(age_days: Optional[float], halflife_days: float = 30.0) -> float:
    """exp(-age/halflife): 1 at age 0, strictly decreasing, never 0 for finite ages."""
    halflife = halflife_days if halflife_days and halflife_days > 0 else 30.0
    if age_days is None:
        age_days = halflife
    return math.exp(-max(float(age_days), 0.0) / halflife)


def performance_from_z(z_scores: Mapping[str, float], weights: ScoreWeights) -> float:
    """Weighted metric part of the ranking composite (no similarity, no recency)."""
    return sum(weights.metric_weight(key) * float(z_scores.get(attr, 0.0)) for attr, key in SCORED_METRICS)


def performance_scores(rows: Sequence[Any], weights: ScoreWeights) -> List[float]:
    return [performance_from_z(scores, weights) for scores in metric_z_scores(rows)]


def composite_score(
    similarity: float,
    z_scores: Mapping[str, float],
    decay: float,
    weights: ScoreWeights,
) -> Dict[str, float]:
    """Return each weighted contribution plus ``final_score``."""
    contributions = {
        "similarity": weights.similarity * float(similarity),
        "retention": weights.retention * float(z_scores.get("retention_pct", 0.0)),
        "saves": weights.saves * float(z_scores.get("saves_per_1k", 0.0)),
        "follows": weights.follows * float(z_scores.get("follows_per_1k", 0.0)),
        "fyp": weights.fyp * float(z_scores.get("for_you_pct", 0.0)),
        "recency": weights.recency * float(decay),
    }
    contributions["final_score"] = sum(contributions.values())
    return contributions


def percentile_cuts(values: Iterable[Any], cuts: Sequence[int] = (50, 75, 90)) -> Dict[str, float]:
    present = [number for number in (_finite(value) for value in values) if number is not None]
    if not present:
        return {f"p{cut}": 0.0 for cut in cuts}
    array = np.asarray(present, dtype=np.float64)
    return {f"p{cut}": round(float(np.percentile(array, cut)), 2) for cut in cuts}


def percentile_rank(value: float, population: Sequence[float]) -> float:
    """Share of the population below ``value`` (ties count half), scaled 0-100."""
    if not population:
        return 50.0
    below = sum(1 for item in population if item < value - 1e-12)
    equal = sum(1 for item in population if abs(item - value) <= 1e-12)
    return 100.0 * (below + 0.5 * equal) / len(population)


def to_matrix(embeddings: Sequence[Sequence[float]]) -> np.ndarray:
    matrix = np.asarray(embeddings, dtype=np.float64)
    if matrix.ndim != 2:
        raise ValueError("Embeddings must share one dimension.")
    return matrix


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    if left.shape != right.shape:
        return 0.0
    denominator = float(np.linalg.norm(left) * np.linalg.norm(right))
    if denominator == 0:
        return 0.0
    return float(np.dot(left, right) / denominator)
