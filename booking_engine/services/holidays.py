from datetime import date, datetime, time, timedelta
from functools import lru_cache
from typing import Optional, Union

import holidays


class HolidayService:
    """Public holiday calendar for a country.

    Uses the `holidays` library; ``country`` is an ISO 3166 code such as
    "IL", "US" or "GB".
    """

    def __init__(self, country: str):
        self.country = country.upper()

    @staticmethod
    @lru_cache(maxsize=32)
    def _country_holidays(country: str, year: int) -> holidays.HolidayBase:
        return holidays.country_holidays(country, years=year)

    def _calendar(self, year: int) -> holidays.HolidayBase:
        return self._country_holidays(self.country, year)

    @staticmethod
    def _as_date(value: Union[date, datetime]) -> date:
        return value.date() if isinstance(value, datetime) else value

    def is_holiday(self, value: Union[date, datetime]) -> bool:
        d = self._as_date(value)
        return d in self._calendar(d.year)

    def get_holiday_name(self, value: Union[date, datetime]) -> Optional[str]:
        d = self._as_date(value)
        return self._calendar(d.year).get(d)

    def is_day_before_holiday(self, value: Union[date, datetime]) -> bool:
        """Return True if the given date is the eve of a public holiday.

        This is used to apply early closing on holiday eves.
        """
        next_day = self._as_date(value) + timedelta(days=1)
        return next_day in self._calendar(next_day.year)

    def get_eve_cutoff(
        self, value: Union[date, datetime], closing_time: Optional[time]
    ) -> Optional[time]:
        """Return the early closing time if this date is a holiday eve."""
        if closing_time is None or not self.is_day_before_holiday(value):
            return None
        return closing_time
