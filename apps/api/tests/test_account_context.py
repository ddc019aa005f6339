import pytest

from routers.auth_scope import ensure_user
from services.account_context import (
    MIN_WEIGHT,
    get_account_context,
    nudge_weights,
    record_idea_outcome,
    save_account_context,
)
from services.brain_errors import ValidationError
from services.brain_scoring import DEFAULT_CONTEXT_WEIGHTS
from services.vector_store import SqlVectorStore

USER_ID = "context-user"


def test_win_with_strong_saves_raises_saves_weight():
    weights = nudge_weights(DEFAULT_CONTEXT_WEIGHTS, {"outcome": "win", "actual_metrics": {"saves_per_1k": 3.5}})

    assert weights["saves"] > DEFAULT_CONTEXT_WEIGHTS["saves"]
    assert sum(weights.values()) == pytest.approx(1.0)


def test_losses_and_unmeasured_wins_leave_weights_alone():
    assert nudge_weights(DEFAULT_CONTEXT_WEIGHTS, {"outcome": "loss", "actual_metrics": {"saves_per_1k": 9}}) == pytest.approx(
        DEFAULT_CONTEXT_WEIGHTS
    )
    assert nudge_weights(DEFAULT_CONTEXT_WEIGHTS, {"outcome": "win"}) == pytest.approx(DEFAULT_CONTEXT_WEIGHTS)


def test_nudge_clamps_tiny_weights_and_accepts_legacy_follow_key():
    old = {"retention": 0.98, "saves": 0.01, "follows": 0.01}
    weights = nudge_weights(old, {"outcome": "win", "actual_metrics": {"f_per_1k": 2.0}})

    assert sum(weights.values()) == pytest.approx(1.0)
    assert weights["saves"] == pytest.approx(MIN_WEIGHT / 1.09)
    assert weights["follows"] > weights["saves"]


def test_repeated_wins_converge_without_leaving_bounds():
    weights = dict(DEFAULT_CONTEXT_WEIGHTS)
    for _ in range(200):
        weights = nudge_weights(weights, {"outcome": "win", "actual_metrics": {"retention_pct": 95}})

    assert sum(weights.values()) == pytest.approx(1.0)
    assert all(0.0 < value < 1.0 for value in weights.values())
    assert weights["retention"] == max(weights.values())


@pytest.mark.asyncio
async def test_missing_context_reports_defaults(db_session):
    await ensure_user(db_session, USER_ID)
    payload = await get_account_context(USER_ID, db_session)

    assert payload["exists"] is False
    assert payload["weights"] == DEFAULT_CONTEXT_WEIGHTS
    assert payload["content_themes"] == []


@pytest.mark.asyncio
async def test_partial_update_keeps_other_fields_and_bumps_version(db_session):
    await ensure_user(db_session, USER_ID)
    store = SqlVectorStore(db_session)

    await save_account_context(
        USER_ID,
        {"mission": "Help students travel cheap", "content_themes": ["budget travel", " budget travel ", "hostels"]},
        db_session,
    )
    version = await store.corpus_version(USER_ID)
    payload = await save_account_context(USER_ID, {"weights": {"retention": 1, "saves": 1, "follows": 2}}, db_session)

    assert payload["exists"] is True
    assert payload["mission"] == "Help students travel cheap"
    assert payload["content_themes"] == ["budget travel", "hostels"]
    assert payload["weights"] == pytest.approx({"retention": 0.25, "saves": 0.25, "follows": 0.5})
    assert await store.corpus_version(USER_ID) > version


@pytest.mark.asyncio
async def test_recorded_win_nudges_existing_context(db_session):
    await ensure_user(db_session, USER_ID)
    await save_account_context(USER_ID, {"mission": "x"}, db_session)

    result = await record_idea_outcome(
        USER_ID,
        {"idea_id": "idea-1", "outcome": "win", "actual_metrics": {"saves_per_1k": 4.0, "follows_per_1k": 2.5}},
        db_session,
    )

    assert result["recorded"] is True
    assert result["weights_updated"] is True
    assert result["weights"]["follows"] > DEFAULT_CONTEXT_WEIGHTS["follows"]
    stored = await get_account_context(USER_ID, db_session)
    assert stored["weights"] == pytest.approx(result["weights"])


@pytest.mark.asyncio
async def test_outcome_without_context_is_recorded_only(db_session):
    await ensure_user(db_session, USER_ID)
    result = await record_idea_outcome(
        USER_ID, {"idea_id": "idea-2", "outcome": "win", "actual_metrics": {"saves_per_1k": 4.0}}, db_session
    )

    assert result == {"recorded": True, "weights_updated": False, "weights": DEFAULT_CONTEXT_WEIGHTS}


@pytest.mark.asyncio
async def test_invalid_outcome_is_rejected(db_session):
    with pytest.raises(ValidationError):
        await record_idea_outcome(USER_ID, {"idea_id": "idea-3", "outcome": "maybe"}, db_session)
    with pytest.raises(ValidationError):
        await record_idea_outcome(USER_ID, {"idea_id": " ", "outcome": "win"}, db_session)
