from datetime import datetime, timedelta, timezone

import pytest

from routers.auth_scope import ensure_user
from services.brain_errors import DegradedModeWarning
from services.vector_store import NEUTRAL_SCORE, SqlVectorStore, VectorFilter, rank_by_similarity
from services.video_catalog import VideoRecord, upsert_videos_service

from conftest import make_vector

USER_ID = "vector-store-user"
BASE_DATE = datetime(2026, 9, 1, tzinfo=timezone.utc)


def _record(video_id, content_type, embedding, **overrides):
    values = {
        "user_id": USER_ID,
        "video_id": video_id,
        "content_type": content_type,
        "content": f"{video_id} {content_type}",
        "embedding_json": embedding,
        "views": 1000,
        "published_date": BASE_DATE,
    }
    values.update(overrides)
    return values


async def _seed_catalog(db, count=3):
    await ensure_user(db, USER_ID)
    await upsert_videos_service(
        USER_ID,
        [VideoRecord(id=f"vid-{index}", hook=f"hook {index}") for index in range(count)],
        db,
    )


@pytest.mark.asyncio
async def test_upsert_replaces_same_video_and_type(db_session):
    await _seed_catalog(db_session)
    store = SqlVectorStore(db_session)

    await store.upsert([_record("vid-0", "hook", [1.0, 0.0]), _record("vid-0", "script", [0.0, 1.0])])
    await store.upsert([_record("vid-0", "hook", [0.5, 0.5], content="rewritten hook")])

    rows = await store.fetch(VectorFilter(user_id=USER_ID, video_id="vid-0"))
    assert sorted(row.content_type for row in rows) == ["hook", "script"]
    hook = next(row for row in rows if row.content_type == "hook")
    assert hook.content == "rewritten hook"


@pytest.mark.asyncio
async def test_every_mutation_bumps_corpus_version(db_session):
    await _seed_catalog(db_session)
    store = SqlVectorStore(db_session)
    start = await store.corpus_version(USER_ID)

    await store.upsert([_record("vid-1", "hook", [1.0, 0.0])])
    after_upsert = await store.corpus_version(USER_ID)
    await store.replace_video_vectors(USER_ID, "vid-1", [_record("vid-1", "script", [0.0, 1.0])])
    after_replace = await store.corpus_version(USER_ID)
    deleted = await store.delete(VectorFilter(user_id=USER_ID, video_id="vid-1"))
    after_delete = await store.corpus_version(USER_ID)

    assert start < after_upsert < after_replace < after_delete
    assert deleted == 1
    assert await store.count_vectors(USER_ID) == 0


@pytest.mark.asyncio
async def test_filters_scope_by_owner_type_views_and_date(db_session):
    await _seed_catalog(db_session)
    await ensure_user(db_session, "someone-else")
    store = SqlVectorStore(db_session)
    await store.upsert(
        [
            _record("vid-0", "hook", [1.0, 0.0], views=50, published_date=BASE_DATE - timedelta(days=10)),
            _record("vid-1", "hook", [1.0, 0.0], views=5000, video_theme="Budget Travel"),
            _record("vid-2", "cta", [1.0, 0.0], views=5000),
            _record("vid-2", "hook", [1.0, 0.0], user_id="someone-else"),
        ]
    )

    owned = await store.fetch(VectorFilter(user_id=USER_ID))
    hooks = await store.fetch(VectorFilter(user_id=USER_ID, content_types=["hook"]))
    popular = await store.fetch(VectorFilter(user_id=USER_ID, min_views=1000))
    recent = await store.fetch(VectorFilter(user_id=USER_ID, date_from=BASE_DATE - timedelta(days=1)))
    themed = await store.fetch(VectorFilter(user_id=USER_ID, theme="budget"))

    assert len(owned) == 3
    assert all(row.user_id == USER_ID for row in owned)
    assert {row.video_id for row in hooks} == {"vid-0", "vid-1"}
    assert {row.video_id for row in popular} == {"vid-1", "vid-2"}
    assert {row.video_id for row in recent} == {"vid-1", "vid-2"}
    assert [row.video_id for row in themed] == ["vid-1"]


@pytest.mark.asyncio
async def test_similarity_query_ranks_by_cosine(db_session):
    await _seed_catalog(db_session)
    store = SqlVectorStore(db_session)
    await store.upsert(
        [
            _record("vid-0", "hook", [1.0, 0.0]),
            _record("vid-1", "hook", [0.7, 0.7]),
            _record("vid-2", "hook", [0.0, 1.0]),
        ]
    )

    result = await store.similarity_query([1.0, 0.1], VectorFilter(user_id=USER_ID), k=2)

    assert not result.degraded
    assert result.candidate_count == 3
    assert [match.vector.video_id for match in result.matches] == ["vid-0", "vid-1"]
    assert result.matches[0].similarity > result.matches[1].similarity


@pytest.mark.asyncio
async def test_similarity_query_degrades_to_recency_on_dimension_mismatch(db_session):
    await _seed_catalog(db_session)
    store = SqlVectorStore(db_session)
    await store.upsert(
        [
            _record("vid-0", "hook", [1.0, 0.0], published_date=BASE_DATE - timedelta(days=5)),
            _record("vid-1", "hook", [0.0, 1.0], published_date=BASE_DATE),
        ]
    )

    with pytest.warns(DegradedModeWarning):
        result = await store.similarity_query([1.0, 0.0, 0.0], VectorFilter(user_id=USER_ID), k=5)

    assert result.degraded is True
    assert "dimension" in result.reason
    assert [match.vector.video_id for match in result.matches] == ["vid-1", "vid-0"]
    assert all(match.similarity == NEUTRAL_SCORE for match in result.matches)


@pytest.mark.asyncio
async def test_similarity_query_on_empty_corpus_is_not_degraded(db_session):
    store = SqlVectorStore(db_session)
    result = await store.similarity_query([1.0, 0.0], VectorFilter(user_id=USER_ID), k=5)

    assert result.matches == []
    assert result.degraded is False


def test_rank_by_similarity_skips_mismatched_rows():
    rows = [make_vector("a", [1.0, 0.0]), make_vector("b", [1.0, 0.0, 0.0]), make_vector("c", [0.0, 1.0])]
    ranked = rank_by_similarity([1.0, 0.0], rows, k=5)

    assert [match.vector.video_id for match in ranked] == ["a", "c"]
    assert ranked[0].similarity == pytest.approx(1.0)
