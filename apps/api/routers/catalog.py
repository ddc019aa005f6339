"""Raw video catalog router: ingest and list the caller's videos."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, ensure_user, ensure_user_scope, get_auth_context
from routers.rate_limit import rate_limit
from services.video_catalog import VideoRecord, list_videos_service, upsert_videos_service

router = APIRouter()
logger = logging.getLogger(__name__)


class CatalogUpsertRequest(BaseModel):
    videos: List[VideoRecord] = Field(min_length=1, max_length=500)
    user_id: Optional[str] = None


@router.post("/videos")
async def upsert_catalog_videos(
    request: CatalogUpsertRequest,
    _rate_limit: None = Depends(rate_limit("catalog_upsert", limit=120, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    await ensure_user(db, scoped_user_id, auth.email)
    return await upsert_videos_service(user_id=scoped_user_id, records=request.videos, db=db)


@router.get("/videos")
async def list_catalog_videos(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    await ensure_user(db, scoped_user_id, auth.email)
    return await list_videos_service(user_id=scoped_user_id, db=db)
