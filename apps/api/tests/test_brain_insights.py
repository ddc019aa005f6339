from datetime import timedelta

from services.brain_corpus import build_snapshot
from services.brain_insights import (
    INSIGHTS_LIMIT,
    cluster_opportunities,
    content_gaps,
    generate_insights,
    performance_anomalies,
    rank_insights,
    viral_candidates,
)

from conftest import NOW, cluster_scenario_vectors, make_vector

CONTEXT = {"content_themes": ["budget travel", "cooking"], "strategic_bets": ["coding"]}


def _prediction(video_id, probability, confidence):
    return {
        "video_id": video_id,
        "title": f"Video {video_id}",
        "viral_probability": probability,
        "confidence_score": confidence,
        "predicted_views": 12000,
        "key_factors": ["High retention"],
    }


def test_generate_insights_surfaces_cluster_opportunity_and_gaps():
    payload = generate_insights(build_snapshot("analytics-user", 4, cluster_scenario_vectors()), CONTEXT, set())

    insights = payload["insights"]
    assert payload["status"] == "ok"
    assert 0 < len(insights) <= INSIGHTS_LIMIT
    assert insights[0]["id"] == "content_gap:coding"
    assert insights[0]["priority"] == "high"
    assert all(insight["confidence"] >= 60.0 for insight in insights)

    priorities = [insight["priority"] for insight in insights]
    assert priorities == sorted(priorities, key=["high", "medium", "low"].index)

    opportunity = next(insight for insight in insights if insight["type"] == "cluster_opportunity")
    assert opportunity["priority"] == "medium"
    assert opportunity["confidence"] == 70.0
    assert opportunity["affected_videos"] == [f"v{index}" for index in range(6)]


def _cluster(video_ids, vector_count=3, score=80.0):
    return {
        "id": "cl_test",
        "name": "budget travel",
        "video_ids": video_ids,
        "video_count": len(video_ids),
        "vector_count": vector_count,
        "dominant_content_type": "hook",
        "optimization_score": score,
        "top_videos": [{"video_id": video_ids[0], "title": "Cheap flights", "views": 9000}],
    }


def test_cluster_opportunity_needs_more_than_one_video():
    assert cluster_opportunities([_cluster(["v1"])]) == []

    opportunities = cluster_opportunities([_cluster(["v1", "v2"], vector_count=4)])
    assert len(opportunities) == 1
    assert opportunities[0]["affected_videos"] == ["v1", "v2"]


def test_content_gaps_ignore_well_covered_themes():
    gaps = content_gaps(build_snapshot("analytics-user", 1, cluster_scenario_vectors()), CONTEXT)
    by_id = {gap["id"]: gap for gap in gaps}

    assert "content_gap:budget travel" not in by_id
    assert by_id["content_gap:cooking"]["priority"] == "medium"
    assert by_id["content_gap:coding"]["priority"] == "high"
    assert by_id["content_gap:coding"]["affected_videos"] == []


def test_viral_candidates_skip_flagged_and_uncertain_videos():
    predictions = [
        _prediction("strong", 0.85, 72.0),
        _prediction("flagged", 0.9, 80.0),
        _prediction("unsure", 0.9, 30.0),
        _prediction("moderate", 0.65, 61.0),
    ]
    insights = viral_candidates(predictions, flagged={"flagged"})

    assert [insight["affected_videos"] for insight in insights] == [["strong"], ["moderate"]]
    assert insights[0]["priority"] == "high"
    assert insights[1]["priority"] == "medium"


def test_performance_anomaly_flags_recent_spike():
    views = [1000, 1010, 990, 1000, 1005, 5000]
    vectors = [
        make_vector(f"x{index}", [1.0, 0.0], views=value, published_date=NOW - timedelta(days=10 - index))
        for index, value in enumerate(views)
    ]
    anomalies = performance_anomalies(build_snapshot("analytics-user", 1, vectors))

    assert len(anomalies) == 1
    assert anomalies[0]["id"] == "performance_anomaly:x5:views"
    assert anomalies[0]["priority"] == "high"
    assert anomalies[0]["confidence"] == 95.0


def test_rank_insights_filters_by_confidence_and_caps_length():
    insights = [
        {"id": f"item-{index}", "priority": "low" if index % 2 else "high", "confidence": 60.0 + index}
        for index in range(12)
    ]
    insights.append({"id": "weak", "priority": "high", "confidence": 40.0})

    ranked = rank_insights(insights)

    assert len(ranked) == INSIGHTS_LIMIT
    assert all(item["id"] != "weak" for item in ranked)
    assert [item["priority"] for item in ranked[:6]] == ["high"] * 6
    assert ranked[0]["confidence"] == 70.0


def test_small_corpus_has_no_insights():
    payload = generate_insights(build_snapshot("analytics-user", 1, cluster_scenario_vectors()[:3]), CONTEXT, set())

    assert payload["status"] == "insufficient_data"
    assert payload["insights"] == []
