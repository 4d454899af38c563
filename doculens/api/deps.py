"""FastAPI dependency injection for database, Redis and processing services."""

from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from doculens.documents.store import StatusStore

if TYPE_CHECKING:
    import redis.asyncio as redis

    from doculens.integrations.storage import BlobStore
    from doculens.orchestration.processor import DocumentProcessor
    from doculens.orchestration.scheduler import ProcessingScheduler


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session from the app's session factory.

    Commits after the handler returns and rolls back if it raises.
    """
    async with request.app.state.async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_redis(request: Request) -> "redis.Redis | None":
    """Redis pool from app state, or None when Redis is not configured."""
    return getattr(request.app.state, "redis", None)


def get_blob_store(request: Request) -> "BlobStore | None":
    return getattr(request.app.state, "blob_store", None)


def get_scheduler(request: Request) -> "ProcessingScheduler | None":
    return getattr(request.app.state, "scheduler", None)


def get_processor(request: Request) -> "DocumentProcessor":
    return request.app.state.processor


async def get_store(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> StatusStore:
    """Status store bound to the request's session."""
    return StatusStore(db, get_blob_store(request))
