"""Redis connection pool for shared circuit breaker state."""

import redis.asyncio as redis

from doculens.core.config import settings
from doculens.core.logging import get_logger

logger = get_logger(__name__)


async def create_redis_pool(url: str | None = None) -> redis.Redis:
    """Create a Redis connection pool.

    Usage in lifespan:
        app.state.redis = await create_redis_pool()
        yield
        await app.state.redis.aclose()
    """
    return redis.Redis.from_url(
        url or settings.redis_url,
        decode_responses=True,
        max_connections=20,
    )


async def check_redis_health(pool: redis.Redis | None) -> bool:
    """Return True if Redis answers a PING."""
    if pool is None:
        return False
    try:
        await pool.ping()
        return True
    except Exception as e:
        logger.warning("redis_health_check_failed", error=str(e))
        return False
