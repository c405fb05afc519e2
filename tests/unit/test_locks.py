import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from booking_engine.core.exceptions import AtomicityFailure
from booking_engine.core.locks import ScheduleLockManager, schedule_lock_key
from tests.fixtures.scheduling_fixtures import MONDAY, NEXT_MONDAY


def test_schedule_lock_key():
    assert schedule_lock_key(1, 2, MONDAY) == "schedule_lock:1:2:2030-01-07"


class TestLocalLocks:
    @pytest.mark.asyncio
    async def test_same_day_is_exclusive(self):
        manager = ScheduleLockManager(timeout_seconds=0.05)

        async with manager.hold(1, 2, MONDAY):
            with pytest.raises(AtomicityFailure):
                async with manager.hold(1, 2, MONDAY):
                    pass

    @pytest.mark.asyncio
    async def test_other_days_and_providers_are_independent(self):
        manager = ScheduleLockManager(timeout_seconds=0.05)

        async with manager.hold(1, 2, MONDAY):
            async with manager.hold(1, 2, NEXT_MONDAY):
                pass
            async with manager.hold(1, 3, MONDAY):
                pass

    @pytest.mark.asyncio
    async def test_multi_day_hold_yields_sorted_keys(self):
        manager = ScheduleLockManager(timeout_seconds=0.05)

        async with manager.hold(1, 2, NEXT_MONDAY, MONDAY, MONDAY) as keys:
            assert keys == [
                "schedule_lock:1:2:2030-01-07",
                "schedule_lock:1:2:2030-01-14",
            ]

        # Everything was released
        async with manager.hold(1, 2, MONDAY, NEXT_MONDAY):
            pass

    @pytest.mark.asyncio
    async def test_waiter_gets_lock_after_release(self):
        manager = ScheduleLockManager(timeout_seconds=1)
        order = []

        async def holder():
            async with manager.hold(1, 2, MONDAY):
                order.append("first")
                await asyncio.sleep(0.05)

        async def waiter():
            await asyncio.sleep(0.01)
            async with manager.hold(1, 2, MONDAY):
                order.append("second")

        await asyncio.gather(holder(), waiter())

        assert order == ["first", "second"]

    @pytest.mark.asyncio
    async def test_released_locks_are_dropped(self):
        manager = ScheduleLockManager(timeout_seconds=0.05)

        for day in (MONDAY, NEXT_MONDAY):
            async with manager.hold(1, 2, day):
                assert len(manager._local_locks) == 1

        assert manager._local_locks == {}
        assert manager._lock_users == {}

    @pytest.mark.asyncio
    async def test_lock_kept_while_a_task_waits(self):
        manager = ScheduleLockManager(timeout_seconds=1)
        key = "schedule_lock:1:2:2030-01-07"
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with manager.hold(1, 2, MONDAY):
                entered.set()
                await release.wait()

        async def waiter():
            await entered.wait()
            async with manager.hold(1, 2, MONDAY):
                pass

        tasks = [asyncio.create_task(holder()), asyncio.create_task(waiter())]
        await entered.wait()
        await asyncio.sleep(0.01)
        assert manager._lock_users[key] == 2

        release.set()
        await asyncio.gather(*tasks)
        assert manager._local_locks == {}

    @pytest.mark.asyncio
    async def test_timed_out_waiter_is_forgotten(self):
        manager = ScheduleLockManager(timeout_seconds=0.05)

        async with manager.hold(1, 2, MONDAY):
            with pytest.raises(AtomicityFailure):
                async with manager.hold(1, 2, MONDAY):
                    pass
            assert manager._lock_users == {"schedule_lock:1:2:2030-01-07": 1}

        assert manager._local_locks == {}


class TestRedisLocks:
    @pytest.fixture
    def redis_client(self):
        client = Mock(is_configured=True)
        client.acquire_lock = AsyncMock(return_value=Mock(name="lock"))
        client.release_lock = AsyncMock()
        return client

    def test_unconfigured_client_falls_back_to_local(self):
        manager = ScheduleLockManager(Mock(is_configured=False))
        assert manager.backend == "local"

    @pytest.mark.asyncio
    async def test_hold_acquires_and_releases(self, redis_client):
        manager = ScheduleLockManager(redis_client, timeout_seconds=2, ttl_seconds=20)
        assert manager.backend == "redis"

        async with manager.hold(1, 2, MONDAY):
            redis_client.acquire_lock.assert_awaited_once_with(
                "schedule_lock:1:2:2030-01-07", ttl_seconds=20, blocking_timeout=2
            )
            redis_client.release_lock.assert_not_awaited()

        redis_client.release_lock.assert_awaited_once_with(
            redis_client.acquire_lock.return_value
        )

    @pytest.mark.asyncio
    async def test_acquire_timeout(self, redis_client):
        redis_client.acquire_lock.return_value = None
        manager = ScheduleLockManager(redis_client, timeout_seconds=2)

        with pytest.raises(AtomicityFailure):
            async with manager.hold(1, 2, MONDAY):
                pass

        redis_client.release_lock.assert_not_awaited()
