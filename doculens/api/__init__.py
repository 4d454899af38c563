"""API module exports."""

from doculens.api.deps import get_db, get_redis
from doculens.api.documents import router as documents_router
from doculens.api.health import router as health_router

__all__ = [
    "documents_router",
    "get_db",
    "get_redis",
    "health_router",
]
