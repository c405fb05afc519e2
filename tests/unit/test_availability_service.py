"""Test availability rules, blocked days and holiday handling."""

from datetime import date, time, timedelta
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.exceptions import (
    BlockedDayNotFound,
    NoRuleConfigured,
    ProviderNotFound,
)
from booking_engine.models.availability_rule import AvailabilityRule, WeekDay
from booking_engine.models.blocked_day import BlockType
from booking_engine.schemas.availability import (
    AvailabilityRuleCreate,
    AvailabilityRuleSupersede,
    BlockedDayCreate,
    BlockedRangeCreate,
    BreakWindow,
)
from booking_engine.schemas.scheduling import BookingPolicy, TimeWindow
from booking_engine.services.availability import AvailabilityService
from tests.fixtures.scheduling_fixtures import MONDAY, NEXT_MONDAY

NEW_YEARS_DAY = date(2030, 1, 1)  # Tuesday
NEW_YEARS_EVE = date(2029, 12, 31)  # Monday


def w(start: str, end: str) -> TimeWindow:
    return TimeWindow(start=time.fromisoformat(start), end=time.fromisoformat(end))


@pytest.fixture
def availability_service(db: AsyncSession, sample_business) -> AvailabilityService:
    return AvailabilityService(db, sample_business.id)


class TestResolveAvailability:
    """Test how rules, breaks and blocks combine into open windows."""

    @pytest.mark.asyncio
    async def test_single_rule(self, availability_service, sample_provider, monday_rule):
        windows = await availability_service.resolve_availability(
            sample_provider.id, MONDAY
        )

        assert windows == [w("09:00", "12:00")]

    @pytest.mark.asyncio
    async def test_rule_with_break(self, availability_service, sample_provider):
        await availability_service.create_rule(
            sample_provider.id,
            AvailabilityRuleCreate(
                weekday=WeekDay.MONDAY,
                start_time=time(9, 0),
                end_time=time(13, 0),
                breaks=[BreakWindow(start_time=time(11, 0), end_time=time(11, 30))],
            ),
        )

        windows = await availability_service.resolve_availability(
            sample_provider.id, MONDAY
        )

        assert windows == [w("09:00", "11:00"), w("11:30", "13:00")]

    @pytest.mark.asyncio
    async def test_split_shift(
        self, availability_service, sample_provider, monday_rule
    ):
        await availability_service.create_rule(
            sample_provider.id,
            AvailabilityRuleCreate(
                weekday=WeekDay.MONDAY, start_time=time(14, 0), end_time=time(17, 0)
            ),
        )

        windows = await availability_service.resolve_availability(
            sample_provider.id, MONDAY
        )

        assert windows == [w("09:00", "12:00"), w("14:00", "17:00")]

    @pytest.mark.asyncio
    async def test_overlapping_rules_are_merged(
        self, availability_service, sample_provider, monday_rule
    ):
        await availability_service.create_rule(
            sample_provider.id,
            AvailabilityRuleCreate(
                weekday=WeekDay.MONDAY, start_time=time(11, 0), end_time=time(13, 0)
            ),
        )

        windows = await availability_service.resolve_availability(
            sample_provider.id, MONDAY
        )

        assert windows == [w("09:00", "13:00")]

    @pytest.mark.asyncio
    async def test_no_rule_for_weekday(
        self, availability_service, sample_provider, monday_rule
    ):
        with pytest.raises(NoRuleConfigured) as exc_info:
            await availability_service.resolve_availability(
                sample_provider.id, MONDAY + timedelta(days=1)
            )

        assert exc_info.value.day == MONDAY + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_rule_outside_effective_range(
        self, availability_service, sample_provider
    ):
        await availability_service.create_rule(
            sample_provider.id,
            AvailabilityRuleCreate(
                weekday=WeekDay.MONDAY,
                start_time=time(9, 0),
                end_time=time(12, 0),
                effective_from=NEXT_MONDAY,
            ),
        )

        with pytest.raises(NoRuleConfigured):
            await availability_service.resolve_availability(sample_provider.id, MONDAY)
        assert await availability_service.resolve_availability(
            sample_provider.id, NEXT_MONDAY
        ) == [w("09:00", "12:00")]

    @pytest.mark.asyncio
    async def test_full_day_block(
        self, availability_service, sample_provider, monday_rule
    ):
        await availability_service.block_date(
            sample_provider.id,
            BlockedDayCreate(blocked_date=MONDAY, block_type=BlockType.SICK_LEAVE),
        )

        assert await availability_service.resolve_availability(
            sample_provider.id, MONDAY
        ) == []

    @pytest.mark.asyncio
    async def test_partial_block(
        self, availability_service, sample_provider, monday_rule
    ):
        await availability_service.block_date(
            sample_provider.id,
            BlockedDayCreate(
                blocked_date=MONDAY,
                start_time=time(10, 0),
                end_time=time(11, 0),
                block_type=BlockType.PERSONAL,
                reason="Conference call",
            ),
        )

        windows = await availability_service.resolve_availability(
            sample_provider.id, MONDAY
        )

        assert windows == [w("09:00", "10:00"), w("11:00", "12:00")]


class TestHolidays:
    @pytest.fixture
    async def tuesday_rule(self, db, sample_business, sample_provider):
        rule = AvailabilityRule(
            provider_id=sample_provider.id,
            business_id=sample_business.id,
            weekday=WeekDay.TUESDAY.value,
            start_time=time(9, 0),
            end_time=time(12, 0),
        )
        db.add(rule)
        await db.commit()
        return rule

    @pytest.mark.asyncio
    async def test_public_holiday_is_closed(
        self, db, sample_business, sample_provider, tuesday_rule
    ):
        service = AvailabilityService(
            db, sample_business.id, BookingPolicy(holiday_country="US")
        )

        assert await service.resolve_availability(sample_provider.id, NEW_YEARS_DAY) == []

    @pytest.mark.asyncio
    async def test_holidays_ignored_without_country(
        self, availability_service, sample_provider, tuesday_rule
    ):
        windows = await availability_service.resolve_availability(
            sample_provider.id, NEW_YEARS_DAY
        )

        assert windows == [w("09:00", "12:00")]

    @pytest.mark.asyncio
    async def test_holiday_eve_closes_early(
        self, db, sample_business, sample_provider, monday_rule
    ):
        service = AvailabilityService(
            db,
            sample_business.id,
            BookingPolicy(holiday_country="US", holiday_eve_closing_time=time(10, 0)),
        )

        windows = await service.resolve_availability(sample_provider.id, NEW_YEARS_EVE)

        assert windows == [w("09:00", "10:00")]


class TestRuleLifecycle:
    @pytest.mark.asyncio
    async def test_create_rule_for_unknown_provider(self, availability_service):
        with pytest.raises(ProviderNotFound):
            await availability_service.create_rule(
                999,
                AvailabilityRuleCreate(
                    weekday=WeekDay.MONDAY, start_time=time(9, 0), end_time=time(12, 0)
                ),
            )

    @pytest.mark.asyncio
    async def test_supersede_rule(
        self, availability_service, sample_provider, monday_rule
    ):
        replacement = await availability_service.supersede_rule(
            monday_rule.uuid,
            AvailabilityRuleSupersede(
                weekday=WeekDay.MONDAY,
                start_time=time(13, 0),
                end_time=time(17, 0),
                effective_from=NEXT_MONDAY,
            ),
        )

        assert monday_rule.effective_until == NEXT_MONDAY - timedelta(days=1)
        assert monday_rule.superseded_by_id == replacement.id
        assert monday_rule.is_active

        assert await availability_service.resolve_availability(
            sample_provider.id, MONDAY
        ) == [w("09:00", "12:00")]
        assert await availability_service.resolve_availability(
            sample_provider.id, NEXT_MONDAY
        ) == [w("13:00", "17:00")]

    @pytest.mark.asyncio
    async def test_supersede_before_rule_applied(
        self, availability_service, sample_provider
    ):
        future_rule = await availability_service.create_rule(
            sample_provider.id,
            AvailabilityRuleCreate(
                weekday=WeekDay.MONDAY,
                start_time=time(9, 0),
                end_time=time(12, 0),
                effective_from=NEXT_MONDAY,
            ),
        )

        await availability_service.supersede_rule(
            future_rule.uuid,
            AvailabilityRuleSupersede(
                weekday=WeekDay.MONDAY,
                start_time=time(8, 0),
                end_time=time(10, 0),
                effective_from=MONDAY,
            ),
        )

        assert not future_rule.is_active
        assert await availability_service.resolve_availability(
            sample_provider.id, NEXT_MONDAY
        ) == [w("08:00", "10:00")]

    @pytest.mark.asyncio
    async def test_supersede_inactive_rule(
        self, availability_service, sample_provider, monday_rule
    ):
        await availability_service.deactivate_rule(monday_rule.uuid)

        with pytest.raises(ValueError):
            await availability_service.supersede_rule(
                monday_rule.uuid,
                AvailabilityRuleSupersede(
                    weekday=WeekDay.MONDAY,
                    start_time=time(9, 0),
                    end_time=time(12, 0),
                    effective_from=NEXT_MONDAY,
                ),
            )

    @pytest.mark.asyncio
    async def test_deactivated_rule_no_longer_applies(
        self, availability_service, sample_provider, monday_rule
    ):
        await availability_service.deactivate_rule(monday_rule.uuid)

        with pytest.raises(NoRuleConfigured):
            await availability_service.resolve_availability(sample_provider.id, MONDAY)

        rules = await availability_service.list_rules(
            sample_provider.id, include_inactive=True
        )
        assert [r.id for r in rules] == [monday_rule.id]
        assert await availability_service.list_rules(sample_provider.id) == []


class TestBlockedDays:
    @pytest.mark.asyncio
    async def test_block_date_range(self, availability_service, sample_provider):
        blocks = await availability_service.block_dates(
            sample_provider.id,
            BlockedRangeCreate(
                start_date=MONDAY,
                end_date=MONDAY + timedelta(days=2),
                block_type=BlockType.VACATION,
                reason="Ski trip",
            ),
        )

        assert [b.blocked_date for b in blocks] == [
            MONDAY,
            MONDAY + timedelta(days=1),
            MONDAY + timedelta(days=2),
        ]
        assert all(b.is_full_day for b in blocks)

        listed = await availability_service.list_blocked_days(
            sample_provider.id, MONDAY, NEXT_MONDAY
        )
        assert len(listed) == 3

    @pytest.mark.asyncio
    async def test_lift_block_restores_availability(
        self, availability_service, sample_provider, monday_rule
    ):
        block = await availability_service.block_date(
            sample_provider.id, BlockedDayCreate(blocked_date=MONDAY)
        )

        await availability_service.lift_block(block.uuid)

        assert await availability_service.resolve_availability(
            sample_provider.id, MONDAY
        ) == [w("09:00", "12:00")]

    @pytest.mark.asyncio
    async def test_lift_unknown_block(self, availability_service):
        with pytest.raises(BlockedDayNotFound):
            await availability_service.lift_block(uuid4())
