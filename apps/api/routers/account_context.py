"""Account context router: strategy metadata, weights and idea outcome feedback."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, ensure_user, ensure_user_scope, get_auth_context
from routers.rate_limit import rate_limit
from services.account_context import get_account_context, record_idea_outcome, save_account_context

router = APIRouter()
logger = logging.getLogger(__name__)


class ContextWeights(BaseModel):
    retention: float = Field(ge=0)
    saves: float = Field(ge=0)
    follows: float = Field(ge=0)


class AccountContextRequest(BaseModel):
    mission: Optional[str] = None
    brand_pillars: Optional[List[str]] = None
    positioning: Optional[str] = None
    tone_guide: Optional[str] = None
    content_themes: Optional[List[str]] = None
    north_star_metric: Optional[str] = None
    strategic_bets: Optional[List[str]] = None
    do_not_do: Optional[List[str]] = None
    negative_keywords: Optional[List[str]] = None
    weights: Optional[ContextWeights] = None
    user_id: Optional[str] = None


class ActualMetrics(BaseModel):
    views: Optional[int] = Field(default=None, ge=0)
    retention_pct: Optional[float] = Field(default=None, ge=0)
    saves_per_1k: Optional[float] = Field(default=None, ge=0)
    follows_per_1k: Optional[float] = Field(default=None, ge=0)


class IdeaOutcomeRequest(BaseModel):
    idea_id: str = Field(min_length=1)
    idea_text: Optional[str] = None
    idea_type: Optional[Literal["hook", "script", "cta"]] = None
    idea_mode: Optional[str] = None
    published_video_id: Optional[str] = None
    expected_metrics: Optional[Dict[str, Any]] = None
    actual_metrics: Optional[ActualMetrics] = None
    outcome: Literal["win", "loss", "neutral"]
    feedback_notes: Optional[str] = None
    user_id: Optional[str] = None


@router.get("")
async def read_account_context(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    await ensure_user(db, scoped_user_id, auth.email)
    return await get_account_context(user_id=scoped_user_id, db=db)


@router.put("")
async def write_account_context(
    request: AccountContextRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    await ensure_user(db, scoped_user_id, auth.email)
    payload = request.model_dump(exclude_unset=True, exclude={"user_id"})
    return await save_account_context(user_id=scoped_user_id, payload=payload, db=db)


@router.post("/outcomes")
async def record_outcome(
    request: IdeaOutcomeRequest,
    _rate_limit: None = Depends(rate_limit("idea_outcomes", limit=240, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    await ensure_user(db, scoped_user_id, auth.email)
    payload = request.model_dump(exclude_none=True, exclude={"user_id"})
    return await record_idea_outcome(user_id=scoped_user_id, outcome=payload, db=db)
