import pytest

from services.brain_corpus import build_snapshot
from services.brain_errors import NotFoundError
from services.viral_prediction import confidence_score, viral_predictions

from conftest import cluster_scenario_vectors, make_vector


def test_confidence_grows_with_neighbors_and_shrinks_with_spread():
    assert confidence_score([]) == 0.0
    few = confidence_score([1000, 1000])
    many = confidence_score([1000] * 8)
    scattered = confidence_score([10, 100000, 50, 900000, 20, 400000, 30, 700000])

    assert few <= 39.0
    assert many == pytest.approx(100.0 * (1 - 2.718281828 ** -2), abs=0.01)
    assert scattered < many
    assert 0.0 <= scattered <= 100.0


def test_predictions_stay_in_bounds_and_use_positive_neighbors():
    payload = viral_predictions(build_snapshot("analytics-user", 2, cluster_scenario_vectors()))

    assert payload["status"] == "ok"
    assert payload["total_predictions"] == 10
    for prediction in payload["predictions"]:
        assert 0.0 <= prediction["viral_probability"] <= 1.0
        assert 0.0 <= prediction["confidence_score"] <= 100.0
        assert prediction["predicted_views"] >= 0

    by_id = {prediction["video_id"]: prediction for prediction in payload["predictions"]}
    # Orthogonal or opposite videos never count as neighbors.
    assert by_id["v0"]["neighbor_count"] == 5
    assert by_id["v7"]["neighbor_count"] == 0
    assert by_id["v7"]["viral_probability"] == 0.0


def test_probability_follows_successful_neighbors():
    vectors = [make_vector(f"hit{index}", [1.0, 0.02 * index], views=100000 * (index + 1)) for index in range(2)]
    vectors += [make_vector(f"flop{index}", [0.0, 1.0 + index], views=100) for index in range(8)]
    payload = viral_predictions(build_snapshot("analytics-user", 1, vectors), video_ids=["hit0", "flop0"])

    by_id = {prediction["video_id"]: prediction for prediction in payload["predictions"]}
    assert by_id["hit0"]["viral_probability"] > by_id["flop0"]["viral_probability"]
    assert by_id["hit0"]["similar_successful_videos"][0]["video_id"] == "hit1"
    assert payload["predictions"][0]["video_id"] == "hit0"


def test_unknown_video_is_not_found():
    with pytest.raises(NotFoundError):
        viral_predictions(build_snapshot("analytics-user", 1, cluster_scenario_vectors()), video_ids=["nope"])


def test_small_corpus_reports_insufficient_data():
    payload = viral_predictions(build_snapshot("analytics-user", 1, cluster_scenario_vectors()[:2]))

    assert payload["status"] == "insufficient_data"
    assert payload["predictions"] == []
