"""Brain router: indexing, search and derived analytics over the caller's corpus."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import get_db
from models.video import Video
from routers.auth_scope import AuthContext, ensure_user, ensure_user_scope, get_auth_context
from routers.rate_limit import rate_limit
from services import brain_indexer
from services.brain_clusters import get_cluster_analysis_service
from services.brain_indexer import BrainIndexer, index_video_service
from services.brain_insights import generate_insights_service
from services.brain_search import SearchQuery, search_service
from services.brain_timing import get_performance_matrix_service, get_timing_analysis_service
from services.embeddings import EmbeddingProvider, get_embedding_provider
from services.vector_store import SqlVectorStore
from services.viral_prediction import get_viral_predictions_service

router = APIRouter()
logger = logging.getLogger(__name__)


class ScopedRequest(BaseModel):
    user_id: Optional[str] = None


class ReindexRequest(ScopedRequest):
    strict: bool = False


class SearchRequest(ScopedRequest):
    text: str
    top_k: int = 10
    content_types: List[str] = Field(default_factory=list)
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    min_views: Optional[int] = None
    theme: Optional[str] = None
    diversity: bool = False
    diversity_threshold: Optional[float] = None


class PredictionsRequest(ScopedRequest):
    video_ids: Optional[List[str]] = None


@router.post("/index/{video_id}")
async def index_video(
    video_id: str,
    request: Optional[ScopedRequest] = None,
    _rate_limit: None = Depends(rate_limit("brain_index", limit=600, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    provider: EmbeddingProvider = Depends(get_embedding_provider),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id if request else None)
    await ensure_user(db, scoped_user_id, auth.email)
    return await index_video_service(user_id=scoped_user_id, video_id=video_id, db=db, provider=provider)


@router.post("/reindex")
async def reindex_all(
    request: Optional[ReindexRequest] = None,
    _rate_limit: None = Depends(rate_limit("brain_reindex", limit=12, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    provider: EmbeddingProvider = Depends(get_embedding_provider),
):
    request = request or ReindexRequest()
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    await ensure_user(db, scoped_user_id, auth.email)

    result = await BrainIndexer(db, provider).reindex_all(scoped_user_id)
    if request.strict:
        result.raise_for_failures()
    return result.to_dict()


@router.post("/reindex/cancel")
async def cancel_reindex(
    request: Optional[ScopedRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id if request else None)
    return {"cancel_requested": brain_indexer.request_cancel(scoped_user_id)}


@router.post("/search")
async def search_brain(
    request: SearchRequest,
    _rate_limit: None = Depends(rate_limit("brain_search", limit=600, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    provider: EmbeddingProvider = Depends(get_embedding_provider),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    await ensure_user(db, scoped_user_id, auth.email)
    query = SearchQuery(**request.model_dump(exclude={"user_id"}))
    return await search_service(user_id=scoped_user_id, query=query, db=db, provider=provider)


@router.get("/clusters")
async def cluster_analysis(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    await ensure_user(db, scoped_user_id, auth.email)
    return await get_cluster_analysis_service(user_id=scoped_user_id, db=db)


@router.post("/predictions")
async def viral_predictions(
    request: Optional[PredictionsRequest] = None,
    _rate_limit: None = Depends(rate_limit("brain_predictions", limit=120, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    request = request or PredictionsRequest()
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    await ensure_user(db, scoped_user_id, auth.email)
    return await get_viral_predictions_service(user_id=scoped_user_id, db=db, video_ids=request.video_ids)


@router.get("/insights")
async def insights(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    await ensure_user(db, scoped_user_id, auth.email)
    return await generate_insights_service(user_id=scoped_user_id, db=db)


@router.get("/timing")
async def timing_analysis(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    await ensure_user(db, scoped_user_id, auth.email)
    return await get_timing_analysis_service(user_id=scoped_user_id, db=db)


@router.get("/performance-matrix")
async def performance_matrix(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    await ensure_user(db, scoped_user_id, auth.email)
    return await get_performance_matrix_service(user_id=scoped_user_id, db=db)


@router.get("/status")
async def brain_status(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    await ensure_user(db, scoped_user_id, auth.email)

    store = SqlVectorStore(db)
    indexed_videos = await store.count_indexed_videos(scoped_user_id)
    catalog_result = await db.execute(select(func.count(Video.id)).where(Video.user_id == scoped_user_id))
    return {
        "corpus_version": await store.corpus_version(scoped_user_id),
        "catalog_videos": int(catalog_result.scalar_one() or 0),
        "indexed_videos": indexed_videos,
        "vector_count": await store.count_vectors(scoped_user_id),
        "min_required": settings.MIN_CORPUS_VIDEOS,
        "status": "ok" if indexed_videos >= settings.MIN_CORPUS_VIDEOS else "insufficient_data",
        "reindex_running": brain_indexer.is_reindex_running(scoped_user_id),
    }
