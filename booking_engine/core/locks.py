import asyncio
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Optional

import structlog

from booking_engine.core.config import settings
from booking_engine.core.exceptions import AtomicityFailure
from booking_engine.core.redis import RedisClient, redis_client

logger = structlog.get_logger(__name__)


def schedule_lock_key(business_id: int, provider_id: int, day: date) -> str:
    return f"schedule_lock:{business_id}:{provider_id}:{day.isoformat()}"


class ScheduleLockManager:
    """Serialises slot generation and bookings per (business, provider, date).

    Uses in-process asyncio locks, or Redis locks when a Redis client is
    configured so that several API workers share the same critical sections.
    """

    def __init__(
        self,
        redis_client: Optional[RedisClient] = None,
        timeout_seconds: Optional[float] = None,
        ttl_seconds: Optional[int] = None,
    ):
        self.redis_client = (
            redis_client if redis_client and redis_client.is_configured else None
        )
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else settings.SCHEDULE_LOCK_TIMEOUT_SECONDS
        )
        self.ttl_seconds = ttl_seconds or settings.SCHEDULE_LOCK_TTL_SECONDS
        self._local_locks: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per key
        self._lock_users: dict[str, int] = {}

    @property
    def backend(self) -> str:
        return "redis" if self.redis_client else "local"

    @asynccontextmanager
    async def hold(
        self, business_id: int, provider_id: int, *days: date
    ) -> AsyncIterator[list[str]]:
        """Hold the locks for every given day of one provider.

        Keys are acquired in sorted order so that two multi-day operations
        cannot deadlock each other.
        """
        keys = sorted({schedule_lock_key(business_id, provider_id, d) for d in days})
        acquired = []
        try:
            for key in keys:
                acquired.append(await self._acquire(key))
            yield keys
        finally:
            for key, handle in reversed(list(zip(keys, acquired))):
                await self._release(key, handle)

    async def _acquire(self, key: str):
        if self.redis_client:
            lock = await self.redis_client.acquire_lock(
                key, ttl_seconds=self.ttl_seconds, blocking_timeout=self.timeout_seconds
            )
            if lock is None:
                logger.warning("Timed out waiting for schedule lock", key=key)
                raise AtomicityFailure()
            return lock

        lock = self._local_locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            self._forget(key)
            logger.warning("Timed out waiting for schedule lock", key=key)
            raise AtomicityFailure()
        except asyncio.CancelledError:
            self._forget(key)
            raise
        return lock

    async def _release(self, key: str, handle) -> None:
        if self.redis_client:
            await self.redis_client.release_lock(handle)
            return

        handle.release()
        self._forget(key)

    def _forget(self, key: str) -> None:
        """Drop a local lock once no task holds or waits for it."""
        remaining = self._lock_users.get(key, 0) - 1
        if remaining > 0:
            self._lock_users[key] = remaining
            return
        self._lock_users.pop(key, None)
        self._local_locks.pop(key, None)


# Shared by every request of this process
schedule_locks = ScheduleLockManager(redis_client)
