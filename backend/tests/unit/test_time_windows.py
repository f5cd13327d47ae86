from datetime import time

import pytest

from lessonbook.utils.time_windows import (
    MINUTES_PER_DAY,
    TimeWindow,
    find_containing,
    merge_overlapping,
    minutes_to_time,
    subtract_all,
    time_to_minutes,
)


def w(start: str, end: str, buffer_minutes: int = 0) -> TimeWindow:
    sh, sm = (int(p) for p in start.split(":"))
    eh, em = (int(p) for p in end.split(":"))
    return TimeWindow(sh * 60 + sm, eh * 60 + em, buffer_minutes)


class TestConversions:
    def test_time_to_minutes(self):
        assert time_to_minutes(time(0, 0)) == 0
        assert time_to_minutes(time(9, 30)) == 570

    def test_end_of_day_is_clamped(self):
        assert minutes_to_time(MINUTES_PER_DAY) == time(23, 59)
        assert minutes_to_time(-5) == time(0, 0)


class TestTimeWindow:
    def test_rejects_empty_or_inverted(self):
        with pytest.raises(ValueError):
            TimeWindow(600, 600)
        with pytest.raises(ValueError):
            TimeWindow(700, 600)

    def test_rejects_crossing_midnight(self):
        with pytest.raises(ValueError):
            TimeWindow(1400, MINUTES_PER_DAY + 10)

    def test_window_may_end_at_midnight(self):
        window = TimeWindow(1380, MINUTES_PER_DAY)
        assert window.duration_minutes == 60

    def test_half_open_overlap(self):
        assert not w("09:00", "10:00").overlaps(w("10:00", "11:00"))
        assert w("09:00", "10:01").overlaps(w("10:00", "11:00"))

    def test_subtract_middle_splits(self):
        assert w("09:00", "17:00").subtract(600, 660) == [w("09:00", "10:00"), w("11:00", "17:00")]

    def test_subtract_disjoint_keeps_window(self):
        assert w("09:00", "10:00").subtract(600, 660) == [w("09:00", "10:00")]

    def test_subtract_covering_removes_window(self):
        assert w("10:00", "11:00").subtract(540, 720) == []

    def test_slots_without_buffer(self):
        slots = w("09:00", "17:00").slots(60)
        assert len(slots) == 8
        assert slots[0] == w("09:00", "10:00")
        assert slots[-1] == w("16:00", "17:00")

    def test_slots_separated_by_buffer(self):
        slots = w("09:00", "12:00", 15).slots(60)
        assert [str(s) for s in slots] == ["09:00-10:00", "10:15-11:15"]

    def test_slots_rejects_non_positive_duration(self):
        with pytest.raises(ValueError):
            w("09:00", "10:00").slots(0)


class TestWindowSets:
    def test_merge_overlapping_keeps_abutting_windows_separate(self):
        merged = merge_overlapping([w("12:00", "14:00"), w("09:00", "12:00"), w("13:00", "15:00", 10)])
        assert merged == [w("09:00", "12:00"), w("12:00", "15:00", 10)]

    def test_subtract_all_pads_with_window_buffer(self):
        remaining = subtract_all([w("09:00", "17:00", 15)], [(600, 660)], pad_with_buffer=True)
        assert [str(r) for r in remaining] == ["09:00-09:45", "11:15-17:00"]

    def test_subtract_all_without_padding(self):
        remaining = subtract_all([w("09:00", "17:00", 15)], [(600, 660)])
        assert [str(r) for r in remaining] == ["09:00-10:00", "11:00-17:00"]

    def test_find_containing(self):
        windows = [w("09:00", "10:00"), w("11:00", "17:00")]
        assert find_containing(windows, 660, 720) == w("11:00", "17:00")
        assert find_containing(windows, 570, 630) is None
