from datetime import date, datetime, time

from booking_engine.services.holidays import HolidayService


class TestHolidayService:
    def test_is_holiday(self):
        calendar = HolidayService("us")

        assert calendar.country == "US"
        assert calendar.is_holiday(date(2030, 1, 1))
        assert calendar.is_holiday(datetime(2030, 7, 4, 9, 30))
        assert not calendar.is_holiday(date(2030, 1, 7))

    def test_get_holiday_name(self):
        calendar = HolidayService("US")

        assert "New Year" in calendar.get_holiday_name(date(2030, 1, 1))
        assert calendar.get_holiday_name(date(2030, 1, 7)) is None

    def test_day_before_holiday_across_years(self):
        calendar = HolidayService("US")

        assert calendar.is_day_before_holiday(date(2029, 12, 31))
        assert not calendar.is_day_before_holiday(date(2030, 1, 1))

    def test_eve_cutoff(self):
        calendar = HolidayService("US")

        assert calendar.get_eve_cutoff(date(2029, 12, 31), time(13, 0)) == time(13, 0)
        assert calendar.get_eve_cutoff(date(2029, 12, 31), None) is None
        assert calendar.get_eve_cutoff(date(2030, 1, 7), time(13, 0)) is None
