from typing import Optional

import redis.asyncio as redis
import structlog
from redis.asyncio.lock import Lock
from redis.exceptions import LockError

from booking_engine.core.config import settings

logger = structlog.get_logger(__name__)


class RedisClient:
    """Redis client backing the shared schedule lock."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self.redis_pool = None

    @property
    def is_configured(self) -> bool:
        return bool(self.url)

    async def init_redis(self):
        """Initialize Redis connection pool."""
        try:
            self.redis_pool = redis.ConnectionPool.from_url(
                self.url,
                decode_responses=True,
                retry_on_timeout=True,
                socket_keepalive=True,
                socket_keepalive_options={},
            )

            # Test connection
            async with redis.Redis(connection_pool=self.redis_pool) as r:
                await r.ping()
                logger.info("Redis connection established")

        except Exception as e:
            logger.error("Failed to connect to Redis", exc_info=e)
            raise

    async def get_redis(self) -> redis.Redis:
        """Get Redis client instance."""
        if not self.redis_pool:
            await self.init_redis()
        return redis.Redis(connection_pool=self.redis_pool)

    async def acquire_lock(
        self, name: str, ttl_seconds: int, blocking_timeout: float
    ) -> Optional[Lock]:
        """Acquire a named lock; returns None when the wait times out."""
        client = await self.get_redis()
        lock = client.lock(
            name, timeout=ttl_seconds, blocking_timeout=blocking_timeout
        )
        if await lock.acquire():
            return lock
        return None

    async def release_lock(self, lock: Lock) -> None:
        try:
            await lock.release()
        except LockError as e:
            # The TTL expired before release; another worker may now hold it
            logger.warning("Redis lock already released", name=lock.name, error=str(e))

    async def close(self):
        if self.redis_pool:
            await self.redis_pool.disconnect()
            self.redis_pool = None


# Global Redis client instance
redis_client = RedisClient()
