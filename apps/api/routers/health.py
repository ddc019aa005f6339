"""
Health check endpoints.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import engine
from services.embeddings import get_embedding_provider

router = APIRouter()


async def _database_status() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "up"
    except Exception as e:
        return f"down: {str(e)}"


@router.get("/health")
async def health_check():
    """
    Health check endpoint.
    Reports database, Redis and embedding backend status.
    """
    provider = get_embedding_provider()
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": await _database_status(),
        "redis": "unknown",
        "embedding_model": provider.model_name,
        "embedding_dimensions": provider.dimensions,
    }
    if health_status["database"] != "up":
        health_status["status"] = "degraded"

    # Redis only backs rate limiting; limits fall back to in-process counters.
    try:
        r = redis.from_url(settings.REDIS_URL)
        await r.ping()
        await r.aclose()
        health_status["redis"] = "up"
    except Exception as e:
        health_status["redis"] = f"down: {str(e)}"

    return health_status


@router.get("/health/ready")
async def readiness_check():
    """Kubernetes-style readiness probe."""
    database = await _database_status()
    if database != "up":
        return JSONResponse(
            status_code=503,
            content={"ready": False, "database": database},
        )
    return {"ready": True, "embedding_model": get_embedding_provider().model_name}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
