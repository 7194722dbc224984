"""
Tests for the shift calendar resolver (pure functions, no database).
"""
from datetime import datetime, timedelta

import pytest

from kitplan.errors import InvalidReference, ValidationError
from kitplan.scheduling.calendar import (
    productive_seconds_per_day,
    resolve_interval,
    select_shifts,
    shift_productive_seconds,
    validate_shift,
)
from kitplan.scheduling.snapshots import ShiftSnapshot

FIRST = ShiftSnapshot(id="first", name="First", start_time="07:00", end_time="15:00",
                      break_start="11:00", break_duration=30, order=1)
SECOND = ShiftSnapshot(id="second", name="Second", start_time="13:00", end_time="21:00", order=2)
NIGHT = ShiftSnapshot(id="night", name="Night", start_time="23:00", end_time="07:00", order=3)


def at(day, hour, minute=0):
    """2024-01-01 is a Monday; ``day`` counts from it."""
    return datetime(2024, 1, 1, hour, minute) + timedelta(days=day)


def assert_segment_properties(resolved, start, duration):
    segments = resolved.segments
    assert sum(segment.seconds for segment in segments) == duration
    for segment in segments:
        assert segment.start < segment.end
        assert segment.start >= start
    for previous, following in zip(segments, segments[1:]):
        assert previous.end <= following.start


class TestShiftValidation:

    def test_productive_seconds_excludes_break(self):
        assert shift_productive_seconds(FIRST) == int(7.5 * 3600)

    def test_overnight_shift_length_wraps_midnight(self):
        assert shift_productive_seconds(NIGHT) == 8 * 3600

    def test_productive_seconds_per_day_sums_shifts(self):
        assert productive_seconds_per_day([FIRST, NIGHT]) == int(15.5 * 3600)

    def test_break_outside_shift_rejected(self):
        shift = ShiftSnapshot(id="bad", name="Bad", start_time="07:00", end_time="15:00",
                              break_start="14:45", break_duration=30)
        with pytest.raises(ValidationError):
            validate_shift(shift)

    def test_overnight_break_after_midnight_accepted(self):
        shift = ShiftSnapshot(id="n", name="Night", start_time="23:00", end_time="07:00",
                              break_start="02:00", break_duration=30)
        validate_shift(shift)
        assert shift_productive_seconds(shift) == int(7.5 * 3600)

    def test_malformed_time_rejected(self):
        shift = ShiftSnapshot(id="bad", name="Bad", start_time="7am", end_time="15:00")
        with pytest.raises(ValidationError):
            validate_shift(shift)


class TestSelectShifts:

    def test_filters_inactive_and_orders(self):
        inactive = ShiftSnapshot(id="x", name="X", start_time="06:00", end_time="10:00", is_active=False, order=0)
        selected = select_shifts([SECOND, inactive, FIRST])
        assert [shift.id for shift in selected] == ["first", "second"]

    def test_ignore_active_status_keeps_inactive(self):
        inactive = ShiftSnapshot(id="x", name="X", start_time="06:00", end_time="10:00", is_active=False, order=0)
        selected = select_shifts([FIRST, inactive], ignore_active_status=True)
        assert [shift.id for shift in selected] == ["x", "first"]

    def test_allowed_shift_ids_restrict(self):
        selected = select_shifts([FIRST, SECOND, NIGHT], allowed_shift_ids=["night"])
        assert [shift.id for shift in selected] == ["night"]

    def test_unknown_allowed_shift_id(self):
        with pytest.raises(InvalidReference):
            select_shifts([FIRST], allowed_shift_ids=["missing"])


class TestResolveInterval:

    def test_monday_tuesday_first_shift_example(self):
        """8h of work from Monday 07:00 fills Monday around the break and ends Tuesday 07:30."""
        start = at(0, 7)
        resolved = resolve_interval(start, 8 * 3600, [FIRST])

        assert [(s.start, s.end) for s in resolved.segments] == [
            (at(0, 7), at(0, 11)),
            (at(0, 11, 30), at(0, 15)),
            (at(1, 7), at(1, 7, 30)),
        ]
        assert resolved.start == at(0, 7)
        assert resolved.end == at(1, 7, 30)
        assert_segment_properties(resolved, start, 8 * 3600)

    def test_zero_duration(self):
        resolved = resolve_interval(at(0, 9), 0, [FIRST])
        assert resolved.segments == ()
        assert resolved.start == resolved.end == at(0, 9)

    def test_start_inside_break_waits_for_break_end(self):
        resolved = resolve_interval(at(0, 11, 10), 600, [FIRST])
        assert resolved.start == at(0, 11, 30)
        assert resolved.end == at(0, 11, 40)

    def test_start_before_shift_advances(self):
        resolved = resolve_interval(at(0, 5), 3600, [FIRST])
        assert resolved.start == at(0, 7)
        assert resolved.end == at(0, 8)

    def test_weekend_skipped(self):
        # Friday 14:00, two hours: one hour Friday, one hour Monday
        start = at(4, 14)
        resolved = resolve_interval(start, 7200, [FIRST])
        assert [(s.start, s.end) for s in resolved.segments] == [
            (at(4, 14), at(4, 15)),
            (at(7, 7), at(7, 8)),
        ]
        assert_segment_properties(resolved, start, 7200)

    def test_weekend_included(self):
        resolved = resolve_interval(at(4, 14), 7200, [FIRST], include_weekends=True)
        assert resolved.end == at(5, 8)

    def test_friday_night_shift_stops_at_saturday_midnight(self):
        late = ShiftSnapshot(id="late", name="Late", start_time="22:00", end_time="06:00", order=1)
        start = at(4, 22)
        resolved = resolve_interval(start, 8 * 3600, [late])

        # 2h Friday night, then the Sunday-night shift's Monday part, then Monday night
        assert [(s.start, s.end) for s in resolved.segments] == [
            (at(4, 22), at(5, 0)),
            (at(7, 0), at(7, 6)),
        ]
        assert all(segment.start.weekday() < 5 for segment in resolved.segments)
        assert_segment_properties(resolved, start, 8 * 3600)

    def test_sunday_night_shift_keeps_monday_part(self):
        late = ShiftSnapshot(id="late", name="Late", start_time="22:00", end_time="06:00", order=1)
        resolved = resolve_interval(at(6, 23), 3 * 3600, [late])
        assert [(s.shift_id, s.start, s.end) for s in resolved.segments] == [("late", at(7, 0), at(7, 3))]

    def test_overnight_shift_with_weekends_included(self):
        late = ShiftSnapshot(id="late", name="Late", start_time="22:00", end_time="06:00", order=1)
        resolved = resolve_interval(at(4, 22), 8 * 3600, [late], include_weekends=True)
        assert [(s.start, s.end) for s in resolved.segments] == [(at(4, 22), at(5, 6))]

    def test_overnight_shift_from_previous_day_covers_start(self):
        resolved = resolve_interval(at(1, 2), 3600, [NIGHT])
        assert [(s.shift_id, s.start, s.end) for s in resolved.segments] == [("night", at(1, 2), at(1, 3))]

    def test_overnight_shift_spans_midnight(self):
        resolved = resolve_interval(at(0, 22), 4 * 3600, [NIGHT])
        assert resolved.start == at(0, 23)
        assert resolved.end == at(1, 3)
        assert len(resolved.segments) == 1

    def test_overlapping_shifts_counted_once(self):
        start = at(0, 7)
        resolved = resolve_interval(start, 10 * 3600, [
            ShiftSnapshot(id="a", name="A", start_time="07:00", end_time="15:00", order=1),
            ShiftSnapshot(id="b", name="B", start_time="13:00", end_time="21:00", order=2),
        ])
        assert [(s.shift_id, s.start, s.end) for s in resolved.segments] == [
            ("a", at(0, 7), at(0, 15)),
            ("b", at(0, 15), at(0, 17)),
        ]
        assert_segment_properties(resolved, start, 10 * 3600)

    def test_no_shifts_runs_round_the_clock(self):
        start = at(0, 10)
        resolved = resolve_interval(start, 30 * 3600, [])
        assert resolved.start == start
        assert resolved.end == at(1, 16)
        assert all(segment.shift_id is None for segment in resolved.segments)
        assert_segment_properties(resolved, start, 30 * 3600)

    def test_long_duration_spans_multiple_weeks(self):
        start = at(0, 7)
        duration = 12 * int(7.5 * 3600)  # twelve working days
        resolved = resolve_interval(start, duration, [FIRST])
        # Mon..Fri, Mon..Fri, Mon, Tue
        assert resolved.end == at(15, 15)
        assert_segment_properties(resolved, start, duration)

    @pytest.mark.parametrize("duration", [-1, 1.5, True, "60"])
    def test_invalid_durations_rejected(self, duration):
        with pytest.raises(ValidationError):
            resolve_interval(at(0, 7), duration, [FIRST])

    def test_deterministic(self):
        first = resolve_interval(at(2, 9, 17), 50000, [FIRST, SECOND])
        second = resolve_interval(at(2, 9, 17), 50000, [FIRST, SECOND])
        assert first == second
