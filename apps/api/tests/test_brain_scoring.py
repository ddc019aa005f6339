import math
from datetime import datetime, timedelta, timezone

import pytest

from services.brain_scoring import (
    DEFAULT_CONTEXT_WEIGHTS,
    METRIC_BUDGET,
    age_in_days,
    composite_score,
    metric_z_scores,
    normalize_context_weights,
    percentile_rank,
    resolve_weights,
    time_decay,
    z_score,
)


def test_time_decay_is_one_at_zero_and_strictly_decreasing():
    assert time_decay(0.0, 30.0) == pytest.approx(1.0)
    values = [time_decay(age, 30.0) for age in (0, 1, 10, 30, 90, 365)]
    assert all(later < earlier for earlier, later in zip(values, values[1:]))
    assert values[-1] > 0
    assert time_decay(30.0, 30.0) == pytest.approx(math.exp(-1))


def test_undated_rows_decay_like_one_halflife():
    assert time_decay(None, 30.0) == pytest.approx(time_decay(30.0, 30.0))


def test_age_in_days_treats_naive_dates_as_utc():
    now = datetime(2026, 10, 1, tzinfo=timezone.utc)
    assert age_in_days(datetime(2026, 9, 21), now) == pytest.approx(10.0)
    assert age_in_days(now + timedelta(days=2), now) == 0.0


def test_z_score_handles_zero_spread_and_missing_values():
    assert z_score(10, 10, 0) == 0.0
    assert z_score(None, 10, 2) == 0.0
    assert z_score(14, 10, 2) == pytest.approx(2.0)


def test_metric_z_scores_use_the_rows_own_population():
    rows = [{"saves_per_1k": 10.0}, {"saves_per_1k": 20.0}, {"saves_per_1k": None}]
    scores = metric_z_scores(rows)

    assert scores[0]["saves_per_1k"] == pytest.approx(-1.0)
    assert scores[1]["saves_per_1k"] == pytest.approx(1.0)
    assert scores[2]["saves_per_1k"] == 0.0
    assert scores[0]["retention_pct"] == 0.0


def test_normalize_context_weights():
    assert normalize_context_weights(None) == DEFAULT_CONTEXT_WEIGHTS
    assert normalize_context_weights({"retention": 0, "saves": 0, "follows": 0}) == DEFAULT_CONTEXT_WEIGHTS

    normalized = normalize_context_weights({"retention": 2, "saves": 1, "follows": 1})
    assert sum(normalized.values()) == pytest.approx(1.0)
    assert normalized["retention"] == pytest.approx(0.5)

    negative = normalize_context_weights({"retention": -1, "saves": 1, "follows": "bad"})
    assert negative["retention"] == 0.0
    assert sum(negative.values()) == pytest.approx(1.0)


def test_resolve_weights_splits_metric_budget():
    weights = resolve_weights({"retention": 0.3, "saves": 0.5, "follows": 0.2})

    assert weights.similarity == pytest.approx(0.6)
    assert weights.retention + weights.saves + weights.follows == pytest.approx(METRIC_BUDGET)
    assert weights.saves == pytest.approx(METRIC_BUDGET * 0.5)
    assert weights.recency == pytest.approx(0.1)


def test_composite_is_monotonic_in_similarity_and_metrics():
    weights = resolve_weights(None)
    z_scores = {"retention_pct": 0.5, "saves_per_1k": 1.0, "follows_per_1k": 0.0, "for_you_pct": 0.0}

    low = composite_score(0.4, z_scores, 0.5, weights)["final_score"]
    high = composite_score(0.8, z_scores, 0.5, weights)["final_score"]
    assert high > low

    better_saves = composite_score(0.4, {**z_scores, "saves_per_1k": 2.0}, 0.5, weights)["final_score"]
    assert better_saves > low

    breakdown = composite_score(0.4, z_scores, 0.5, weights)
    assert breakdown["final_score"] == pytest.approx(sum(v for k, v in breakdown.items() if k != "final_score"))


def test_percentile_rank_counts_ties_half():
    population = [1.0] * 6 + [-1.0] * 4
    assert percentile_rank(1.0, population) == pytest.approx(70.0)
    assert percentile_rank(-1.0, population) == pytest.approx(20.0)
    assert percentile_rank(0.0, []) == 50.0
