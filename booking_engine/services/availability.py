from datetime import date, timedelta
from typing import Optional
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.exceptions import (
    BlockedDayNotFound,
    NoRuleConfigured,
    ProviderNotFound,
    RuleNotFound,
)
from booking_engine.models.availability_rule import AvailabilityBreak, AvailabilityRule
from booking_engine.models.blocked_day import BlockedDay
from booking_engine.models.provider import Provider
from booking_engine.schemas.availability import (
    AvailabilityRuleCreate,
    AvailabilityRuleSupersede,
    BlockedDayCreate,
    BlockedRangeCreate,
)
from booking_engine.schemas.scheduling import BookingPolicy, TimeWindow
from booking_engine.services.holidays import HolidayService
from booking_engine.services.repository import SchedulingRepository
from booking_engine.utils.intervals import subtract, truncate_after, union


logger = logging.getLogger(__name__)


class AvailabilityService:
    """Recurring rules and blocked days of a provider, resolved per date."""

    def __init__(
        self,
        db: AsyncSession,
        business_id: int,
        policy: Optional[BookingPolicy] = None,
        repository: Optional[SchedulingRepository] = None,
    ):
        self.db = db
        self.business_id = business_id
        self.policy = policy or BookingPolicy()
        self.repository = repository or SchedulingRepository(db, business_id)

    async def resolve_availability(
        self, provider_id: int, day: date
    ) -> list[TimeWindow]:
        """
        Resolve the open windows of a provider on a given date.

        Every active rule for the weekday contributes its hours minus its own
        breaks; the union of those is then reduced by partial blocks and, on a
        holiday eve, by the early closing time.

        Args:
            provider_id: ID of the provider
            day: Date to resolve

        Returns:
            Ordered, non-overlapping open windows; empty when the whole date is
            blocked or is a public holiday

        Raises:
            NoRuleConfigured: no rule is in force for that weekday
        """
        rules = [
            rule
            for rule in await self.repository.load_rules(
                provider_id, weekday=day.weekday()
            )
            if rule.applies_on(day)
        ]
        if not rules:
            logger.debug(f"No availability rule for provider {provider_id} on {day}")
            raise NoRuleConfigured(provider_id, day)

        blocked = await self.repository.load_blocked_days(provider_id, day)
        if any(block.is_full_day for block in blocked):
            logger.info(f"Provider {provider_id} is blocked for the whole of {day}")
            return []

        holiday_cutoff = None
        if self.policy.holiday_country:
            calendar = HolidayService(self.policy.holiday_country)
            if calendar.is_holiday(day):
                logger.info(
                    f"{day} is a public holiday ({calendar.get_holiday_name(day)}), "
                    f"provider {provider_id} closed"
                )
                return []
            holiday_cutoff = calendar.get_eve_cutoff(
                day, self.policy.holiday_eve_closing_time
            )

        open_windows = []
        for rule in rules:
            open_windows.extend(
                subtract(
                    [TimeWindow(start=rule.start_time, end=rule.end_time)],
                    [
                        TimeWindow(start=b.start_time, end=b.end_time)
                        for b in rule.breaks
                    ],
                )
            )

        partial_blocks = [
            TimeWindow(start=block.start_time, end=block.end_time)
            for block in blocked
        ]
        windows = subtract(union(open_windows), partial_blocks)

        if holiday_cutoff is not None:
            logger.info(f"{day} is a holiday eve, closing at {holiday_cutoff}")
            windows = truncate_after(windows, holiday_cutoff)

        logger.debug(
            f"Resolved availability for provider {provider_id} on {day}: "
            f"{', '.join(str(w) for w in windows) or 'closed'}"
        )
        return windows

    # Rule lifecycle

    async def _get_provider(self, provider_id: int) -> Provider:
        provider = await self.repository.get_provider(provider_id)
        if not provider:
            raise ProviderNotFound()
        return provider

    async def get_rule(self, rule_uuid: UUID) -> AvailabilityRule:
        rule = await self.repository.get_rule_by_uuid(rule_uuid)
        if not rule:
            raise RuleNotFound()
        return rule

    async def list_rules(
        self, provider_id: int, include_inactive: bool = False
    ) -> list[AvailabilityRule]:
        await self._get_provider(provider_id)
        return await self.repository.load_rules(
            provider_id, active_only=not include_inactive
        )

    def _build_rule(self, provider_id: int, data) -> AvailabilityRule:
        return AvailabilityRule(
            provider_id=provider_id,
            business_id=self.business_id,
            weekday=data.weekday.value,
            start_time=data.start_time,
            end_time=data.end_time,
            effective_from=data.effective_from,
            effective_until=data.effective_until,
            is_active=True,
            breaks=[
                AvailabilityBreak(start_time=b.start_time, end_time=b.end_time)
                for b in data.breaks
            ],
        )

    async def create_rule(
        self, provider_id: int, data: AvailabilityRuleCreate
    ) -> AvailabilityRule:
        await self._get_provider(provider_id)
        rule = self._build_rule(provider_id, data)
        self.db.add(rule)
        await self.db.commit()
        await self.db.refresh(rule)
        logger.info(f"Created availability rule {rule.uuid} for provider {provider_id}")
        return rule

    async def supersede_rule(
        self, rule_uuid: UUID, data: AvailabilityRuleSupersede
    ) -> AvailabilityRule:
        """Replace a rule from ``data.effective_from`` onwards.

        The old rule stays in the history with its range closed the day before
        the replacement starts. If the replacement starts before the old rule
        ever applied, the old rule is deactivated instead.
        """
        old = await self.get_rule(rule_uuid)
        if not old.is_active:
            raise ValueError("Only active rules can be superseded")

        replacement = self._build_rule(old.provider_id, data)
        self.db.add(replacement)
        await self.db.flush()

        closing_day = data.effective_from - timedelta(days=1)
        if old.effective_from and closing_day < old.effective_from:
            old.is_active = False
        elif old.effective_until is None or old.effective_until > closing_day:
            old.effective_until = closing_day
        old.superseded_by_id = replacement.id

        await self.db.commit()
        await self.db.refresh(replacement)
        logger.info(
            f"Rule {old.uuid} superseded by {replacement.uuid} "
            f"from {data.effective_from}"
        )
        return replacement

    async def deactivate_rule(self, rule_uuid: UUID) -> AvailabilityRule:
        rule = await self.get_rule(rule_uuid)
        rule.is_active = False
        await self.db.commit()
        await self.db.refresh(rule)
        logger.info(f"Deactivated availability rule {rule.uuid}")
        return rule

    # Blocked days

    async def list_blocked_days(
        self, provider_id: int, start: date, end: date
    ) -> list[BlockedDay]:
        await self._get_provider(provider_id)
        return await self.repository.load_blocked_days(provider_id, start, end)

    async def block_date(self, provider_id: int, data: BlockedDayCreate) -> BlockedDay:
        await self._get_provider(provider_id)
        block = BlockedDay(
            provider_id=provider_id,
            business_id=self.business_id,
            blocked_date=data.blocked_date,
            start_time=data.start_time,
            end_time=data.end_time,
            block_type=data.block_type.value,
            reason=data.reason,
        )
        self.db.add(block)
        await self.db.commit()
        await self.db.refresh(block)
        logger.info(
            f"Blocked {data.blocked_date} for provider {provider_id} "
            f"({data.block_type.value})"
        )
        return block

    async def block_dates(
        self, provider_id: int, data: BlockedRangeCreate
    ) -> list[BlockedDay]:
        """Block every date of an inclusive range, one BlockedDay per date."""
        await self._get_provider(provider_id)
        blocks = []
        current = data.start_date
        while current <= data.end_date:
            blocks.append(
                BlockedDay(
                    provider_id=provider_id,
                    business_id=self.business_id,
                    blocked_date=current,
                    block_type=data.block_type.value,
                    reason=data.reason,
                )
            )
            current += timedelta(days=1)

        self.db.add_all(blocks)
        await self.db.commit()
        for block in blocks:
            await self.db.refresh(block)
        logger.info(
            f"Blocked {len(blocks)} days for provider {provider_id} "
            f"from {data.start_date} to {data.end_date}"
        )
        return blocks

    async def lift_block(self, blocked_uuid: UUID) -> None:
        block = await self.repository.get_blocked_day_by_uuid(blocked_uuid)
        if not block:
            raise BlockedDayNotFound()
        await self.db.delete(block)
        await self.db.commit()
        logger.info(f"Lifted block {blocked_uuid} on {block.blocked_date}")
