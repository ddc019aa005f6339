"""Account context persistence and the outcome-driven weight nudge."""

from __future__ import annotations

import logging
import math
import uuid
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.account_context import AccountContext
from models.idea_outcome import IdeaOutcome
from services.brain_errors import ValidationError
from services.brain_scoring import DEFAULT_CONTEXT_WEIGHTS, normalize_context_weights
from services.vector_store import bump_corpus_version

logger = logging.getLogger(__name__)

LEARNING_RATE = 0.05
MIN_WEIGHT = 0.05
MAX_WEIGHT = 1.0

OUTCOMES = ("win", "loss", "neutral")

# actual-metric key -> (weight key, threshold)
NUDGE_RULES = (
    ("saves_per_1k", "saves", 2.0),
    ("follows_per_1k", "follows", 1.0),
    ("retention_pct", "retention", 70.0),
)

_LIST_FIELDS = {
    "brand_pillars": "brand_pillars_json",
    "content_themes": "content_themes_json",
    "strategic_bets": "strategic_bets_json",
    "do_not_do": "do_not_do_json",
    "negative_keywords": "negative_keywords_json",
}
_TEXT_FIELDS = ("mission", "positioning", "tone_guide", "north_star_metric")


def _metric(actual: Mapping[str, Any], key: str) -> Optional[float]:
    value = actual.get(key)
    if value is None and key == "follows_per_1k":
        value = actual.get("f_per_1k")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def nudge_weights(old_weights: Optional[Mapping[str, Any]], outcome: Mapping[str, Any]) -> Dict[str, float]:
    """
    Bounded weight update from one idea outcome.

    Only a ``win`` that carries actual metrics moves weights: each metric over
    its threshold gains LEARNING_RATE, every weight is clamped to
    [MIN_WEIGHT, MAX_WEIGHT], and the result is renormalized to sum 1.
    The floor applies before renormalizing, so a clamped weight can land
    slightly under MIN_WEIGHT (0.05 / 1.05 for a single nudge).
    """
    weights = normalize_context_weights(old_weights)
    actual = outcome.get("actual_metrics") or {}
    if outcome.get("outcome") != "win" or not actual:
        return weights

    adjusted = dict(weights)
    for metric_key, weight_key, threshold in NUDGE_RULES:
        value = _metric(actual, metric_key)
        if value is not None and value > threshold:
            adjusted[weight_key] += LEARNING_RATE

    clamped = {key: min(MAX_WEIGHT, max(MIN_WEIGHT, value)) for key, value in adjusted.items()}
    total = sum(clamped.values())
    return {key: value / total for key, value in clamped.items()}


def _clean_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    items = []
    for item in value:
        text = str(item or "").strip()
        if text and text not in items:
            items.append(text)
    return items


def context_to_dict(context: Optional[AccountContext]) -> Dict[str, Any]:
    if context is None:
        return {
            "exists": False,
            "weights": dict(DEFAULT_CONTEXT_WEIGHTS),
            **{name: [] for name in _LIST_FIELDS},
            **{name: None for name in _TEXT_FIELDS},
        }
    payload: Dict[str, Any] = {
        "exists": True,
        "weights": normalize_context_weights(context.weights_json),
        "updated_at": (context.updated_at or context.created_at).isoformat()
        if (context.updated_at or context.created_at)
        else None,
    }
    for name, column in _LIST_FIELDS.items():
        payload[name] = list(getattr(context, column) or [])
    for name in _TEXT_FIELDS:
        payload[name] = getattr(context, name)
    return payload


async def load_account_context(db: AsyncSession, user_id: str) -> Optional[AccountContext]:
    result = await db.execute(select(AccountContext).where(AccountContext.user_id == user_id))
    return result.scalar_one_or_none()


async def load_context_weights(db: AsyncSession, user_id: str) -> Dict[str, float]:
    context = await load_account_context(db, user_id)
    return normalize_context_weights(context.weights_json if context else None)


async def get_account_context(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    return context_to_dict(await load_account_context(db, user_id))


async def save_account_context(user_id: str, payload: Mapping[str, Any], db: AsyncSession) -> Dict[str, Any]:
    """Create or update the user's context. Omitted fields keep their stored value."""
    context = await load_account_context(db, user_id)
    if context is None:
        context = AccountContext(id=str(uuid.uuid4()), user_id=user_id, weights_json=dict(DEFAULT_CONTEXT_WEIGHTS))
        db.add(context)

    for name, column in _LIST_FIELDS.items():
        if name in payload:
            setattr(context, column, _clean_list(payload[name]))
    for name in _TEXT_FIELDS:
        if name in payload:
            text = str(payload[name] or "").strip()
            setattr(context, name, text or None)
    if payload.get("weights") is not None:
        context.weights_json = normalize_context_weights(payload["weights"])

    await db.flush()
    await bump_corpus_version(db, user_id)
    await db.commit()
    await db.refresh(context)
    return context_to_dict(context)


async def record_idea_outcome(user_id: str, outcome: Mapping[str, Any], db: AsyncSession) -> Dict[str, Any]:
    """Persist an idea outcome and nudge the context weights when it is a measured win."""
    verdict = str(outcome.get("outcome") or "").strip().lower()
    if verdict not in OUTCOMES:
        raise ValidationError(f"outcome must be one of {', '.join(OUTCOMES)}")
    if not str(outcome.get("idea_id") or "").strip():
        raise ValidationError("idea_id is required")

    normalized_outcome = {**outcome, "outcome": verdict}
    context = await load_account_context(db, user_id)
    weights_before = normalize_context_weights(context.weights_json) if context else None
    weights_after = weights_before
    weights_updated = False

    if context is not None:
        nudged = nudge_weights(weights_before, normalized_outcome)
        if any(abs(nudged[key] - weights_before[key]) > 1e-12 for key in nudged):
            context.weights_json = nudged
            weights_after = nudged
            weights_updated = True

    db.add(
        IdeaOutcome(
            id=str(uuid.uuid4()),
            user_id=user_id,
            idea_id=str(outcome["idea_id"]),
            idea_text=outcome.get("idea_text"),
            idea_type=outcome.get("idea_type"),
            idea_mode=outcome.get("idea_mode"),
            published_video_id=outcome.get("published_video_id"),
            expected_metrics_json=outcome.get("expected_metrics"),
            actual_metrics_json=outcome.get("actual_metrics"),
            outcome=verdict,
            feedback_notes=outcome.get("feedback_notes"),
            weights_before_json=weights_before,
            weights_after_json=weights_after,
        )
    )
    await db.flush()
    if weights_updated:
        await bump_corpus_version(db, user_id)
        logger.info(f"Nudged account weights for user {user_id}: {weights_before} -> {weights_after}")
    await db.commit()

    return {
        "recorded": True,
        "weights_updated": weights_updated,
        "weights": weights_after if weights_after is not None else dict(DEFAULT_CONTEXT_WEIGHTS),
    }
