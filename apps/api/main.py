"""
Content Brain - FastAPI Backend
Main application entry point with health check and API routing.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import account_context, brain, catalog, health
from services.brain_errors import BrainError, PartialIndexFailure, UpstreamServiceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Content Brain API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    yield
    # Shutdown
    await engine.dispose()
    print("👋 Shutting down API...")


app = FastAPI(
    title="Content Brain API",
    description="Index a creator's short-form catalog and mine it for patterns that predict performance",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BrainError)
async def brain_error_handler(request: Request, exc: BrainError):
    content = {"detail": exc.message}
    if isinstance(exc, UpstreamServiceError):
        content.update({"service": exc.service, "retryable": exc.retryable})
        logger.warning(f"{request.method} {request.url.path} upstream failure: {exc.message}")
    elif isinstance(exc, PartialIndexFailure):
        content.update({"failures": exc.failures, "indexed_count": exc.indexed_count})
    return JSONResponse(status_code=exc.status_code, content=content)


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(catalog.router, prefix="/catalog", tags=["Catalog"])
app.include_router(brain.router, prefix="/brain", tags=["Brain"])
app.include_router(account_context.router, prefix="/account-context", tags=["Account Context"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Content Brain API",
        "version": "0.1.0",
        "status": "running"
    }
