from datetime import timedelta

import pytest

from routers.auth_scope import ensure_user
from services.brain_errors import ValidationError
from services.brain_indexer import BrainIndexer
from services.brain_scoring import resolve_weights
from services.brain_search import (
    BrainSearchEngine,
    SearchQuery,
    build_facets,
    diversify,
    duration_bucket,
    search_service,
)
from services.vector_store import ScoredVector
from services.video_catalog import VideoRecord, upsert_videos_service

from conftest import NOW, KeywordEmbeddingProvider, make_vector

USER_ID = "search-user"


async def _seed_indexed_catalog(db, provider):
    await ensure_user(db, USER_ID)
    records = [
        VideoRecord(
            id="budget-1",
            hook="budget travel hacks nobody tells you",
            script="budget flights and budget hostels\nFollow for more",
            views=20000,
            saves=600,
            new_followers=80,
            avg_time_watched=20.0,
            duration_seconds=25.0,
            video_theme="budget travel",
            published_date=NOW - timedelta(days=3),
        ),
        VideoRecord(
            id="budget-2",
            hook="budget grocery haul",
            script="budget meals for the week",
            views=3000,
            saves=20,
            new_followers=2,
            avg_time_watched=8.0,
            duration_seconds=35.0,
            video_theme="budget food",
            published_date=NOW - timedelta(days=40),
        ),
        VideoRecord(
            id="fitness-1",
            hook="fitness routine at home",
            script="fitness for beginners",
            views=9000,
            saves=100,
            new_followers=10,
            avg_time_watched=30.0,
            duration_seconds=55.0,
            video_theme="fitness",
            published_date=NOW - timedelta(days=10),
        ),
    ]
    await upsert_videos_service(USER_ID, records, db)
    await BrainIndexer(db, provider).reindex_all(USER_ID)


def test_search_query_validation():
    with pytest.raises(ValidationError):
        SearchQuery(text="   ").validate(50)
    with pytest.raises(ValidationError):
        SearchQuery(text="hooks", top_k=0).validate(50)
    with pytest.raises(ValidationError):
        SearchQuery(text="hooks", top_k=51).validate(50)
    with pytest.raises(ValidationError):
        SearchQuery(text="hooks", content_types=["thumbnail"]).validate(50)
    with pytest.raises(ValidationError):
        SearchQuery(text="hooks", date_from=NOW, date_to=NOW - timedelta(days=1)).validate(50)

    SearchQuery(text="hooks", content_types=["hook", "cta"]).validate(50)


def test_score_candidates_monotonic_in_similarity_and_saves():
    engine = BrainSearchEngine(None, KeywordEmbeddingProvider())
    weights = resolve_weights(None)
    shared = {"published_date": NOW - timedelta(days=5)}
    matches = [
        ScoredVector(make_vector("low-sim", [1.0], **shared), 0.4),
        ScoredVector(make_vector("high-sim", [1.0], **shared), 0.9),
        ScoredVector(make_vector("high-saves", [1.0], saves_per_1k=50.0, **shared), 0.4),
    ]

    ranked = engine.score_candidates(matches, weights, now=NOW)
    order = [hit["video_id"] for hit in ranked]

    assert order.index("high-sim") < order.index("low-sim")
    assert order.index("high-saves") < order.index("low-sim")
    for hit in ranked:
        assert hit["final_score"] == pytest.approx(sum(hit["score_breakdown"].values()), abs=1e-5)
        assert hit["explanation"].startswith("Ranked mainly by")


def test_diversify_drops_near_duplicates():
    ranked = [{"id": "a"}, {"id": "b"}, {"id": "c"}]
    embeddings = [[1.0, 0.0], [0.99, 0.01], [0.0, 1.0]]

    assert diversify(ranked, embeddings, threshold=0.92) == [0, 2]
    assert diversify([], [], threshold=0.92) == []


def test_duration_buckets():
    assert duration_bucket(10) == "<20s"
    assert duration_bucket(20) == "20-40s"
    assert duration_bucket(40) == "20-40s"
    assert duration_bucket(41) == ">40s"
    assert duration_bucket(None) is None


def test_facets_count_each_video_once():
    population = [
        make_vector("a", [1.0], content_type="hook", video_theme="budget", duration_seconds=15.0),
        make_vector("a", [1.0], content_type="script", video_theme="budget", duration_seconds=15.0),
        make_vector("b", [1.0], video_theme="fitness", duration_seconds=50.0),
    ]
    facets = build_facets(population, resolve_weights(None))

    assert facets["video_themes"] == [
        {"value": "budget", "count": 1, "percentage": 50.0},
        {"value": "fitness", "count": 1, "percentage": 50.0},
    ]
    buckets = {bucket["range"]: bucket["count"] for bucket in facets["duration_buckets"]}
    assert buckets == {"<20s": 1, "20-40s": 0, ">40s": 1}
    assert set(facets["percentiles"]) == {"retention_pct", "saves_per_1k", "follows_per_1k"}


def test_facet_percentages_tolerate_rounding():
    population = [
        make_vector(video_id, [1.0], cta_type=cta_type)
        for video_id, cta_type in (("a", "follow"), ("b", "comment"), ("c", "link"))
    ]
    facets = build_facets(population, resolve_weights(None))

    percentages = [item["percentage"] for item in facets["cta_types"]]
    assert percentages == [33.3, 33.3, 33.3]
    assert abs(sum(percentages) - 100.0) <= 0.5


@pytest.mark.asyncio
async def test_search_on_empty_corpus_returns_no_hits(db_session, keyword_provider):
    await ensure_user(db_session, USER_ID)
    payload = await search_service(USER_ID, SearchQuery(text="budget travel"), db_session, keyword_provider)

    assert payload["hits"] == []
    assert payload["total_results"] == 0
    assert payload["degraded"] is False
    assert payload["facets"]["video_themes"] == []


@pytest.mark.asyncio
async def test_search_ranks_related_content_and_applies_filters(db_session, keyword_provider):
    await _seed_indexed_catalog(db_session, keyword_provider)

    payload = await search_service(
        USER_ID,
        SearchQuery(text="budget travel ideas", top_k=3, content_types=["hook"]),
        db_session,
        keyword_provider,
    )

    assert payload["total_results"] == len(payload["hits"]) == 3
    assert payload["hits"][0]["video_id"] == "budget-1"
    assert all(hit["content_type"] == "hook" for hit in payload["hits"])
    assert payload["filters_applied"] == {"content_types": ["hook"]}
    assert payload["hits"][-1]["video_id"] == "fitness-1"

    filtered = await search_service(
        USER_ID,
        SearchQuery(text="budget", min_views=5000, theme="budget"),
        db_session,
        keyword_provider,
    )
    assert {hit["video_id"] for hit in filtered["hits"]} == {"budget-1"}


@pytest.mark.asyncio
async def test_search_diversity_removes_duplicate_fragments(db_session, keyword_provider):
    await _seed_indexed_catalog(db_session, keyword_provider)

    plain = await search_service(USER_ID, SearchQuery(text="fitness", top_k=10), db_session, keyword_provider)
    diverse = await search_service(
        USER_ID,
        SearchQuery(text="fitness", top_k=10, diversity=True, diversity_threshold=0.99),
        db_session,
        keyword_provider,
    )

    assert len(diverse["hits"]) < len(plain["hits"])
    assert diverse["filters_applied"]["diversity"] is True
