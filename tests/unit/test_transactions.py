"""Retry, timeout and rollback behaviour of scheduling transactions."""

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from booking_engine.core.config import settings
from booking_engine.core.exceptions import AtomicityFailure, SlotUnavailable
from booking_engine.services.scheduling import is_transient_db_error
from tests.fixtures.scheduling_fixtures import MONDAY


class _PgError(Exception):
    def __init__(self, message, sqlstate):
        super().__init__(message)
        self.sqlstate = sqlstate


def deadlock() -> OperationalError:
    return OperationalError("UPDATE slots", {}, Exception("deadlock detected"))


class TestTransientErrors:
    def test_deadlock_message(self):
        assert is_transient_db_error(deadlock())

    def test_sqlite_busy(self):
        error = OperationalError("INSERT", {}, Exception("database is locked"))
        assert is_transient_db_error(error)

    @pytest.mark.parametrize("sqlstate", ["40001", "40P01"])
    def test_postgres_sqlstate(self, sqlstate):
        error = OperationalError("UPDATE", {}, _PgError("boom", sqlstate))
        assert is_transient_db_error(error)

    def test_invalidated_connection(self):
        error = OperationalError(
            "SELECT 1", {}, Exception("gone"), connection_invalidated=True
        )
        assert is_transient_db_error(error)

    def test_integrity_error_is_not_transient(self):
        error = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        assert not is_transient_db_error(error)


class TestRun:
    """Exercise SchedulingService._run with hand-written units of work."""

    @pytest.fixture(autouse=True)
    def no_backoff(self):
        with patch.object(settings, "BOOKING_RETRY_BACKOFF_SECONDS", 0):
            yield

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, scheduling_service, sample_provider):
        attempts = []

        async def work():
            attempts.append(1)
            if len(attempts) == 1:
                raise deadlock()
            return "booked"

        result = await scheduling_service._run("test", sample_provider.id, [MONDAY], work)

        assert result == "booked"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, scheduling_service, sample_provider):
        attempts = []

        async def work():
            attempts.append(1)
            raise deadlock()

        with patch.object(settings, "BOOKING_MAX_RETRIES", 2):
            with pytest.raises(AtomicityFailure):
                await scheduling_service._run("test", sample_provider.id, [MONDAY], work)

        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_permanent_database_error_is_not_retried(
        self, scheduling_service, sample_provider
    ):
        attempts = []

        async def work():
            attempts.append(1)
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(AtomicityFailure):
            await scheduling_service._run("test", sample_provider.id, [MONDAY], work)

        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_domain_errors_reach_the_caller(self, scheduling_service, sample_provider):
        async def work():
            raise SlotUnavailable(None, "taken")

        with pytest.raises(SlotUnavailable):
            await scheduling_service._run("test", sample_provider.id, [MONDAY], work)

    @pytest.mark.asyncio
    async def test_timeout_is_an_atomicity_failure(
        self, scheduling_service, sample_provider
    ):
        async def work():
            await asyncio.sleep(5)

        with patch.object(settings, "BOOKING_TRANSACTION_TIMEOUT_SECONDS", 0.05):
            with pytest.raises(AtomicityFailure):
                await scheduling_service._run("test", sample_provider.id, [MONDAY], work)

    @pytest.mark.asyncio
    async def test_lock_is_released_after_failure(
        self, scheduling_service, sample_provider
    ):
        provider_id = sample_provider.id

        async def failing():
            raise SlotUnavailable(None, "taken")

        async def succeeding():
            return "ok"

        with pytest.raises(SlotUnavailable):
            await scheduling_service._run("test", provider_id, [MONDAY], failing)

        assert (
            await scheduling_service._run("test", provider_id, [MONDAY], succeeding)
            == "ok"
        )
