"""
Half-open time window arithmetic used by availability resolution.

All windows live inside a single calendar day and are handled as
``[start, end)`` minute offsets from midnight.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import time
from typing import Iterable, List, Optional, Sequence

MINUTES_PER_DAY = 24 * 60


def time_to_minutes(value: time) -> int:
    """Return minutes since midnight for a time value."""
    return value.hour * 60 + value.minute


def minutes_to_time(value: int) -> time:
    """Convert minutes since midnight back to a time (clamped to the day)."""
    clamped = max(0, min(value, MINUTES_PER_DAY - 1))
    return time(clamped // 60, clamped % 60)


@dataclass(frozen=True, order=True)
class TimeWindow:
    """A half-open ``[start, end)`` window measured in minutes since midnight."""

    start_minute: int
    end_minute: int
    buffer_minutes: int = 0

    def __post_init__(self) -> None:
        if self.start_minute < 0 or self.end_minute > MINUTES_PER_DAY:
            raise ValueError("Time window must stay within a single day")
        if self.start_minute >= self.end_minute:
            raise ValueError("Time window start must be before its end")

    @classmethod
    def from_times(cls, start: time, end: time, buffer_minutes: int = 0) -> "TimeWindow":
        return cls(time_to_minutes(start), time_to_minutes(end), buffer_minutes)

    @property
    def start(self) -> time:
        return minutes_to_time(self.start_minute)

    @property
    def end(self) -> time:
        return minutes_to_time(self.end_minute)

    @property
    def duration_minutes(self) -> int:
        return self.end_minute - self.start_minute

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start_minute < other.end_minute and other.start_minute < self.end_minute

    def contains(self, start_minute: int, end_minute: int) -> bool:
        return self.start_minute <= start_minute and end_minute <= self.end_minute

    def subtract(self, cut_start: int, cut_end: int) -> List["TimeWindow"]:
        """Remove ``[cut_start, cut_end)`` and return the 0, 1 or 2 remaining pieces."""
        if cut_end <= self.start_minute or cut_start >= self.end_minute:
            return [self]
        pieces: List[TimeWindow] = []
        if cut_start > self.start_minute:
            pieces.append(TimeWindow(self.start_minute, cut_start, self.buffer_minutes))
        if cut_end < self.end_minute:
            pieces.append(TimeWindow(cut_end, self.end_minute, self.buffer_minutes))
        return pieces

    def slots(self, duration_minutes: int) -> List["TimeWindow"]:
        """Cut the window into consecutive slots of ``duration_minutes``.

        Consecutive slots are separated by the window's buffer.
        """
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")
        step = duration_minutes + self.buffer_minutes
        result: List[TimeWindow] = []
        cursor = self.start_minute
        while cursor + duration_minutes <= self.end_minute:
            result.append(TimeWindow(cursor, cursor + duration_minutes, self.buffer_minutes))
            cursor += step
        return result

    def __str__(self) -> str:
        return f"{self.start.strftime('%H:%M')}-{self.end.strftime('%H:%M')}"


def subtract_all(
    windows: Iterable[TimeWindow],
    cuts: Sequence[tuple[int, int]],
    *,
    pad_with_buffer: bool = False,
) -> List[TimeWindow]:
    """Subtract every cut from every window.

    When ``pad_with_buffer`` is set, each cut is widened by the buffer of the
    window it is subtracted from, on both sides.
    """
    remaining = list(windows)
    for cut_start, cut_end in cuts:
        next_round: List[TimeWindow] = []
        for window in remaining:
            pad = window.buffer_minutes if pad_with_buffer else 0
            next_round.extend(window.subtract(cut_start - pad, cut_end + pad))
        remaining = next_round
    return remaining


def merge_overlapping(windows: Iterable[TimeWindow]) -> List[TimeWindow]:
    """Merge windows that strictly overlap; windows that only abut stay separate.

    A merged window keeps the larger of the two buffers.
    """
    ordered = sorted(windows)
    merged: List[TimeWindow] = []
    for window in ordered:
        if merged and window.start_minute < merged[-1].end_minute:
            last = merged[-1]
            merged[-1] = TimeWindow(
                last.start_minute,
                max(last.end_minute, window.end_minute),
                max(last.buffer_minutes, window.buffer_minutes),
            )
        else:
            merged.append(window)
    return merged


def find_containing(
    windows: Iterable[TimeWindow], start_minute: int, end_minute: int
) -> Optional[TimeWindow]:
    """Return the window that fully contains ``[start_minute, end_minute)``, if any."""
    for window in windows:
        if window.contains(start_minute, end_minute):
            return window
    return None
