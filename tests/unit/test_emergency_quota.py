from datetime import time

import pytest

from booking_engine.models.appointment import Appointment, AppointmentStatus
from booking_engine.models.availability_rule import AvailabilityRule, WeekDay
from booking_engine.services.availability import AvailabilityService
from booking_engine.services.emergency_quota import (
    EmergencyQuotaEnforcer,
    required_emergency_slots,
)
from booking_engine.services.repository import SchedulingRepository
from booking_engine.services.slot_generator import SlotGenerator
from tests.fixtures.scheduling_fixtures import MONDAY, at


@pytest.fixture
def repository(db, sample_business) -> SchedulingRepository:
    return SchedulingRepository(db, sample_business.id)


@pytest.fixture
def enforcer(repository) -> EmergencyQuotaEnforcer:
    return EmergencyQuotaEnforcer(repository)


async def generate(db, repository, provider):
    availability = AvailabilityService(
        db, provider.business_id, repository=repository
    )
    slots = await SlotGenerator(availability, repository).generate_slots(provider, MONDAY)
    await db.commit()
    return slots


@pytest.mark.parametrize(
    "total, fraction, expected",
    [
        (10, 0.3, 3),
        (6, 0.3, 2),
        (7, 0.3, 3),
        (3, 1.0, 3),
        (5, 0, 0),
        (0, 0.3, 0),
    ],
)
def test_required_emergency_slots(total, fraction, expected):
    assert required_emergency_slots(total, fraction) == expected


class TestEmergencyQuotaEnforcer:
    @pytest.mark.asyncio
    async def test_converts_earliest_slots(
        self, db, repository, enforcer, sample_business, sample_provider
    ):
        db.add(
            AvailabilityRule(
                provider_id=sample_provider.id,
                business_id=sample_business.id,
                weekday=WeekDay.MONDAY.value,
                start_time=time(9, 0),
                end_time=time(14, 0),
            )
        )
        await db.commit()
        await generate(db, repository, sample_provider)

        converted = await enforcer.enforce_quota(sample_provider.id, MONDAY, 0.3)
        await db.commit()

        slots = await repository.load_slots(sample_provider.id, MONDAY)
        assert converted == 3
        assert [s.start_time for s in slots if s.emergency_only] == [
            time(9, 0),
            time(9, 30),
            time(10, 0),
        ]

    @pytest.mark.asyncio
    async def test_nothing_to_do_when_quota_met(
        self, db, repository, enforcer, sample_provider, monday_rule
    ):
        await generate(db, repository, sample_provider)

        assert await enforcer.enforce_quota(sample_provider.id, MONDAY, 0.3) == 2
        await db.commit()
        assert await enforcer.enforce_quota(sample_provider.id, MONDAY, 0.3) == 0

    @pytest.mark.asyncio
    async def test_zero_fraction_converts_nothing(
        self, db, repository, enforcer, sample_provider, monday_rule
    ):
        await generate(db, repository, sample_provider)

        assert await enforcer.enforce_quota(sample_provider.id, MONDAY, 0) == 0

    @pytest.mark.asyncio
    async def test_slots_bound_to_appointments_are_skipped(
        self, db, repository, enforcer, sample_provider, monday_rule
    ):
        slots = await generate(db, repository, sample_provider)
        first = slots[0]
        db.add(
            Appointment(
                business_id=sample_provider.business_id,
                provider_id=sample_provider.id,
                slot_id=first.id,
                customer_id="customer-a",
                scheduled_start=at(MONDAY, 9),
                scheduled_end=at(MONDAY, 9, 30),
                duration_minutes=30,
                status=AppointmentStatus.CONFIRMED.value,
            )
        )
        await db.commit()

        converted = await enforcer.enforce_quota(sample_provider.id, MONDAY, 0.3)
        await db.commit()

        slots = await repository.load_slots(sample_provider.id, MONDAY)
        assert converted == 2
        assert [s.start_time for s in slots if s.emergency_only] == [
            time(9, 30),
            time(10, 0),
        ]

    @pytest.mark.asyncio
    async def test_unavailable_slots_do_not_count(
        self, db, repository, enforcer, sample_provider, monday_rule
    ):
        slots = await generate(db, repository, sample_provider)
        for slot in slots[:3]:
            slot.is_available = False
        await db.commit()

        # 3 free slots left, so a single emergency slot is enough
        converted = await enforcer.enforce_quota(sample_provider.id, MONDAY, 0.3)

        assert converted == 1
        assert [s.start_time for s in slots if s.emergency_only] == [time(10, 30)]
