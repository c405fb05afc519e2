"""Interval arithmetic over same-day wall-clock windows.

All windows are half-open ``[start, end)``. Results are always sorted by start
and contain no overlapping or touching windows.
"""

from datetime import time
from typing import Iterable, List

from booking_engine.schemas.scheduling import TimeWindow


def union(windows: Iterable[TimeWindow]) -> List[TimeWindow]:
    """Merge overlapping and adjacent windows."""
    merged: List[TimeWindow] = []
    for window in sorted(windows, key=lambda w: (w.start, w.end)):
        if merged and window.start <= merged[-1].end:
            last = merged[-1]
            if window.end > last.end:
                merged[-1] = TimeWindow(start=last.start, end=window.end)
            continue
        merged.append(window)
    return merged


def subtract(
    windows: Iterable[TimeWindow], removed: Iterable[TimeWindow]
) -> List[TimeWindow]:
    """Return ``windows`` minus every window in ``removed``."""
    result = union(windows)
    for cut in union(removed):
        remaining: List[TimeWindow] = []
        for window in result:
            if cut.end <= window.start or cut.start >= window.end:
                remaining.append(window)
                continue
            if window.start < cut.start:
                remaining.append(TimeWindow(start=window.start, end=cut.start))
            if cut.end < window.end:
                remaining.append(TimeWindow(start=cut.end, end=window.end))
        result = remaining
    return result


def truncate_after(windows: Iterable[TimeWindow], cutoff: time) -> List[TimeWindow]:
    """Drop everything at or after ``cutoff``."""
    result: List[TimeWindow] = []
    for window in union(windows):
        if window.start >= cutoff:
            break
        if window.end > cutoff:
            result.append(TimeWindow(start=window.start, end=cutoff))
        else:
            result.append(window)
    return result


def contains(windows: Iterable[TimeWindow], start: time, end: time) -> bool:
    """True if a single window fully covers ``[start, end)``."""
    if end <= start:
        return False
    return any(w.start <= start and end <= w.end for w in union(windows))
