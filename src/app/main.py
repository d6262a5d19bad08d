"""
Document Submissions API - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Logging
- Database, Redis and blob storage connections
- Background job scheduler (orphaned document cleanup)
- CORS middleware
- API routing
- Health check endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.api import api_router
from app.core import redis as redis_module
from app.core.config import settings
from app.core.database import async_session_maker, close_db, init_db
from app.core.logging_config import setup_logging
from app.core.redis import close_redis, init_redis
from app.core.scheduler import (
    list_registered_jobs,
    start_scheduler,
    stop_scheduler,
    trigger_job_manually,
)
from app.core.storage import init_blob_store
from app.modules.document_submissions import register_document_submission_jobs

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan manager.

    Startup order: Redis, database, blob storage, scheduler.
    Failures are fatal only in production.
    """
    logger.info(f"Starting Document Submissions API in {settings.python_env} mode...")

    if not settings.telegram_auth_enabled:
        logger.warning("TELEGRAM_BOT_TOKEN not set: submissions are anonymous, lookups return nothing")

    try:
        await init_redis()
        logger.info("Redis connected")
    except Exception as e:
        logger.warning(f"Redis connection failed, rate limiting falls back to memory: {e}")
        if settings.is_production:
            raise

    try:
        await init_db()
        logger.info("Database connected")
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        if settings.is_production:
            raise

    init_blob_store(settings)

    try:
        register_document_submission_jobs()
        await start_scheduler()
        logger.info("Background scheduler started")
    except Exception as e:
        logger.error(f"Background scheduler failed to start: {e}")
        if settings.is_production:
            raise

    yield

    logger.info("Shutting down Document Submissions API...")
    await stop_scheduler()
    await close_redis()
    await close_db()
    logger.info("Cleanup complete")


app = FastAPI(
    title="Document Submissions API",
    description="Telegram Mini App document submission backend",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api/v1")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint - API welcome message."""
    return {
        "message": "Welcome to Document Submissions API",
        "status": "running",
        "environment": settings.python_env,
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict[str, str]:
    """Readiness check endpoint."""
    return {"status": "ready"}


# ============================================
# Debug Endpoints (development only)
# ============================================

if settings.is_development:

    @app.get("/debug/db", tags=["Debug"])
    async def debug_db():
        """Test database connection."""
        try:
            async with async_session_maker() as session:
                result = await session.execute(text("SELECT 1"))
                return {"database": "connected", "result": result.scalar()}
        except Exception as e:
            return {"database": "error", "message": str(e)}

    @app.get("/debug/redis", tags=["Debug"])
    async def debug_redis():
        """Test Redis connection."""
        client = redis_module.redis_client
        if client is None:
            return {"redis": "not initialized"}
        try:
            await client.ping()
            return {"redis": "connected"}
        except Exception as e:
            return {"redis": "error", "message": str(e)}

    @app.get("/debug/jobs", tags=["Debug"])
    async def list_jobs():
        """List registered background jobs and their next run time."""
        return {"jobs": list_registered_jobs()}

    @app.post("/debug/jobs/{job_id}/trigger", tags=["Debug"])
    async def trigger_job(job_id: str):
        """
        Run a background job immediately.

        Available jobs:
            - document_submissions_purge_orphaned_documents
        """
        try:
            return await trigger_job_manually(job_id)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
