"""Health check endpoint for infrastructure verification."""

import os
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from doculens.api.deps import get_db, get_redis
from doculens.core.config import settings
from doculens.core.logging import get_logger
from doculens.core.redis import check_redis_health

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    db: str
    redis: str
    analysis: str
    upload_dir: str
    environment: str


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> HealthResponse:
    """Check database, Redis, analysis provider and upload directory.

    Redis and the analysis provider are optional: without them the service
    still processes documents (in-process breaker state, OCR fallback), so
    only the database and upload directory decide between ok and degraded.
    """
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        logger.exception("database_health_check_failed", error=str(e))
        db_status = "disconnected"

    redis_pool = await get_redis(request)
    redis_healthy = await check_redis_health(redis_pool)
    redis_status = "connected" if redis_healthy else "disconnected"

    provider = getattr(request.app.state, "analysis_provider", None)
    is_configured = getattr(provider, "is_configured", None)
    analysis_status = (
        "configured" if provider is not None and (is_configured is None or is_configured())
        else "not_configured"
    )

    upload_dir_status = (
        "writable"
        if os.path.isdir(settings.upload_dir) and os.access(settings.upload_dir, os.W_OK)
        else "unavailable"
    )

    return HealthResponse(
        status="ok"
        if db_status == "connected" and upload_dir_status == "writable"
        else "degraded",
        db=db_status,
        redis=redis_status,
        analysis=analysis_status,
        upload_dir=upload_dir_status,
        environment=settings.environment,
    )
