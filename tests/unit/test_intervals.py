from datetime import time

import pytest
from pydantic import ValidationError

from booking_engine.schemas.scheduling import TimeWindow
from booking_engine.utils.intervals import contains, subtract, truncate_after, union


def w(start: str, end: str) -> TimeWindow:
    return TimeWindow(start=time.fromisoformat(start), end=time.fromisoformat(end))


class TestTimeWindow:
    def test_rejects_empty_or_inverted_window(self):
        with pytest.raises(ValidationError):
            w("10:00", "10:00")
        with pytest.raises(ValidationError):
            w("11:00", "10:00")

    def test_duration_minutes(self):
        assert w("09:00", "12:00").duration_minutes == 180
        assert w("09:15", "09:45").duration_minutes == 30


class TestUnion:
    def test_merges_overlapping_and_adjacent_windows(self):
        merged = union([w("13:00", "15:00"), w("09:00", "11:00"), w("11:00", "12:00")])
        assert merged == [w("09:00", "12:00"), w("13:00", "15:00")]

    def test_contained_window_is_absorbed(self):
        assert union([w("09:00", "17:00"), w("10:00", "11:00")]) == [w("09:00", "17:00")]

    def test_empty_input(self):
        assert union([]) == []


class TestSubtract:
    def test_break_in_the_middle_splits_window(self):
        result = subtract([w("09:00", "17:00")], [w("12:00", "13:00")])
        assert result == [w("09:00", "12:00"), w("13:00", "17:00")]

    def test_cut_at_the_edges(self):
        result = subtract([w("09:00", "17:00")], [w("08:00", "10:00"), w("16:00", "18:00")])
        assert result == [w("10:00", "16:00")]

    def test_cut_covering_everything_leaves_nothing(self):
        assert subtract([w("09:00", "12:00")], [w("08:00", "13:00")]) == []

    def test_cut_outside_leaves_window_untouched(self):
        assert subtract([w("09:00", "12:00")], [w("13:00", "14:00")]) == [w("09:00", "12:00")]

    def test_cut_spanning_two_windows(self):
        result = subtract(
            [w("09:00", "12:00"), w("13:00", "17:00")], [w("11:00", "14:00")]
        )
        assert result == [w("09:00", "11:00"), w("14:00", "17:00")]


class TestTruncateAndContains:
    def test_truncate_after_cutoff(self):
        result = truncate_after([w("09:00", "12:00"), w("13:00", "17:00")], time(14, 0))
        assert result == [w("09:00", "12:00"), w("13:00", "14:00")]

    def test_truncate_before_any_window(self):
        assert truncate_after([w("09:00", "12:00")], time(8, 0)) == []

    def test_contains_requires_single_covering_window(self):
        windows = [w("09:00", "12:00"), w("13:00", "17:00")]
        assert contains(windows, time(9, 0), time(12, 0))
        assert contains(windows, time(13, 30), time(14, 0))
        assert not contains(windows, time(11, 30), time(13, 30))
        assert not contains(windows, time(10, 0), time(10, 0))
