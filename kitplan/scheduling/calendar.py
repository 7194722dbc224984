"""
Shift calendar resolver.

Maps a start instant plus a number of working seconds onto wall-clock time,
given a set of shifts (with optional breaks), the weekend policy and any
per-job shift restriction. Pure functions only: identical inputs always give
identical segments, and nothing here reads the clock.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from kitplan.datetime_utils import MINUTES_PER_DAY, day_start, parse_time_of_day
from kitplan.errors import InvalidReference, ValidationError
from kitplan.logging_config import get_logger
from kitplan.scheduling.config import SchedulingConfig
from kitplan.scheduling.snapshots import ShiftSnapshot

logger = get_logger(__name__)


@dataclass(frozen=True)
class CapacityWindow:
    """A stretch of productive time belonging to one shift (None = round-the-clock)."""
    shift_id: Optional[str]
    start: datetime
    end: datetime


@dataclass(frozen=True)
class Segment:
    shift_id: Optional[str]
    start: datetime
    end: datetime

    @property
    def seconds(self) -> int:
        return int((self.end - self.start).total_seconds())

    def to_dict(self) -> dict:
        return {
            'shift_id': self.shift_id,
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
        }


@dataclass(frozen=True)
class ResolvedInterval:
    start: datetime
    end: datetime
    segments: Tuple[Segment, ...]


def _shift_bounds(shift: ShiftSnapshot) -> Tuple[int, int]:
    """Start and end of a shift in minutes from its start day's midnight."""
    start_minutes = parse_time_of_day(shift.start_time)
    end_minutes = parse_time_of_day(shift.end_time)

    # Overnight shifts (e.g., 23:00 to 07:00) end on the following day
    if end_minutes <= start_minutes:
        end_minutes += MINUTES_PER_DAY
    return start_minutes, end_minutes


def _break_bounds(shift: ShiftSnapshot) -> Optional[Tuple[int, int]]:
    """Break window in minutes from the shift's start day midnight, or None."""
    if not shift.break_start or not shift.break_duration:
        return None

    start_minutes, _ = _shift_bounds(shift)
    break_start = parse_time_of_day(shift.break_start)
    # A break earlier on the clock than the shift start happens after midnight
    if break_start < start_minutes:
        break_start += MINUTES_PER_DAY
    return break_start, break_start + shift.break_duration


def validate_shift(shift: ShiftSnapshot) -> None:
    """
    Check that a shift definition is usable for scheduling.

    Raises:
        ValidationError: If times are malformed, the break falls outside the
            shift, or the shift has no productive time left
    """
    start_minutes, end_minutes = _shift_bounds(shift)

    if shift.break_duration is not None and shift.break_duration < 0:
        raise ValidationError(f"Shift '{shift.name}' has a negative break duration", shift_id=shift.id)

    break_bounds = _break_bounds(shift)
    if break_bounds is not None:
        break_start, break_end = break_bounds
        if break_start < start_minutes or break_end > end_minutes:
            raise ValidationError(
                f"Break of shift '{shift.name}' must fall within {shift.start_time}-{shift.end_time}",
                shift_id=shift.id,
            )

    if shift_productive_seconds(shift) <= 0:
        raise ValidationError(f"Shift '{shift.name}' has no productive time", shift_id=shift.id)


def shift_productive_seconds(shift: ShiftSnapshot) -> int:
    """Productive seconds in one occurrence of a shift (shift length minus break)."""
    start_minutes, end_minutes = _shift_bounds(shift)
    break_minutes = shift.break_duration or 0
    return (end_minutes - start_minutes - break_minutes) * 60


def productive_seconds_per_day(shifts: Iterable[ShiftSnapshot]) -> int:
    """Total productive seconds per working day across the given shifts."""
    return sum(shift_productive_seconds(shift) for shift in shifts)


def select_shifts(
    shifts: Iterable[ShiftSnapshot],
    allowed_shift_ids: Sequence[str] = (),
    ignore_active_status: bool = False,
) -> List[ShiftSnapshot]:
    """
    Candidate shifts for one job, ordered by ``order`` (then id).

    Args:
        shifts: Every known shift definition
        allowed_shift_ids: Per-job restriction; empty means all active shifts
        ignore_active_status: Scenario simulation only; lets deactivated
            shifts take part in a what-if run

    Returns:
        list: Filtered, ordered, validated shifts (may be empty)

    Raises:
        InvalidReference: If an allowed shift id names no known shift
    """
    shifts = list(shifts)
    if allowed_shift_ids:
        known_ids = {shift.id for shift in shifts}
        missing = [shift_id for shift_id in allowed_shift_ids if shift_id not in known_ids]
        if missing:
            raise InvalidReference(f"Unknown shift ids: {', '.join(missing)}", shift_ids=missing)
        allowed = set(allowed_shift_ids)
        shifts = [shift for shift in shifts if shift.id in allowed]

    if not ignore_active_status:
        shifts = [shift for shift in shifts if shift.is_active]

    shifts.sort(key=lambda shift: (shift.order, shift.id))
    for shift in shifts:
        validate_shift(shift)

    if not shifts:
        logger.warning(
            "No candidate shifts available, using round-the-clock scheduling",
            allowed_shift_ids=list(allowed_shift_ids),
            ignore_active_status=ignore_active_status,
        )
    return shifts


def _clip_to_weekdays(window: CapacityWindow) -> List[CapacityWindow]:
    """
    Drop the parts of a window that fall on a weekend day.

    Overnight windows cross midnight, so a Friday-night shift stops at
    Saturday 00:00 and a Sunday-night shift only keeps its Monday part.
    """
    pieces: List[CapacityWindow] = []
    cursor = window.start
    while cursor < window.end:
        next_midnight = day_start(cursor.date() + timedelta(days=1), cursor.tzinfo)
        piece_end = min(window.end, next_midnight)
        if not SchedulingConfig.is_weekend(cursor.weekday()):
            if pieces and pieces[-1].end == cursor:
                pieces[-1] = CapacityWindow(window.shift_id, pieces[-1].start, piece_end)
            else:
                pieces.append(CapacityWindow(window.shift_id, cursor, piece_end))
        cursor = piece_end
    return pieces


def day_capacity_windows(
    day: date,
    shifts: Sequence[ShiftSnapshot],
    include_weekends: bool,
    tzinfo=None,
) -> List[CapacityWindow]:
    """
    Productive windows for shifts that start on ``day``, in start order.

    With no shifts at all the whole day is one round-the-clock window. A
    shift with a break yields two windows, one on each side of the break.
    Without ``include_weekends`` every window is cut back to weekday time,
    whichever day its shift started on.
    """
    midnight = day_start(day, tzinfo)
    if not shifts:
        windows = [CapacityWindow(None, midnight, midnight + timedelta(days=1))]
    else:
        windows = []
        for shift in shifts:
            start_minutes, end_minutes = _shift_bounds(shift)
            shift_start = midnight + timedelta(minutes=start_minutes)
            shift_end = midnight + timedelta(minutes=end_minutes)

            break_bounds = _break_bounds(shift)
            if break_bounds is None:
                windows.append(CapacityWindow(shift.id, shift_start, shift_end))
                continue

            break_start = midnight + timedelta(minutes=break_bounds[0])
            break_end = midnight + timedelta(minutes=break_bounds[1])
            if break_start > shift_start:
                windows.append(CapacityWindow(shift.id, shift_start, break_start))
            if break_end < shift_end:
                windows.append(CapacityWindow(shift.id, break_end, shift_end))

    if not include_weekends:
        windows = [piece for window in windows for piece in _clip_to_weekdays(window)]

    # Stable sort keeps shift order as the tie-break for equal start times
    windows.sort(key=lambda window: window.start)
    return windows


def iter_capacity_windows(
    start: datetime,
    shifts: Sequence[ShiftSnapshot],
    include_weekends: bool,
) -> Iterator[CapacityWindow]:
    """
    Yield non-overlapping capacity windows ending after ``start``, in time order.

    Overlapping shift windows are clipped so no second of capacity is counted
    twice. Iteration starts one day early so an overnight shift that began
    yesterday can still cover ``start``.

    Raises:
        ValidationError: If no capacity appears for ``SchedulingConfig.MAX_IDLE_DAYS``
            consecutive days
    """
    day = start.date() - timedelta(days=1)
    covered_until = start
    idle_days = 0

    while True:
        produced = False
        for window in day_capacity_windows(day, shifts, include_weekends, start.tzinfo):
            window_start = max(window.start, covered_until)
            if window_start >= window.end:
                continue
            covered_until = window.end
            produced = True
            yield CapacityWindow(window.shift_id, window_start, window.end)

        idle_days = 0 if produced else idle_days + 1
        if idle_days > SchedulingConfig.MAX_IDLE_DAYS:
            raise ValidationError(
                f"No shift capacity found within {SchedulingConfig.MAX_IDLE_DAYS} days of {day.isoformat()}"
            )
        day += timedelta(days=1)


def resolve_interval(
    start: datetime,
    duration_seconds: int,
    shifts: Sequence[ShiftSnapshot],
    include_weekends: bool = False,
) -> ResolvedInterval:
    """
    Consume ``duration_seconds`` of shift capacity starting at ``start``.

    ``shifts`` must already be the job's candidate set (see ``select_shifts``).
    An empty candidate set schedules round-the-clock, still honouring the
    weekend rule.

    Args:
        start: Earliest instant work may begin
        duration_seconds: Non-negative whole seconds of work
        shifts: Ordered candidate shifts
        include_weekends: Whether Saturday/Sunday time contributes capacity

    Returns:
        ResolvedInterval: First productive instant, finishing instant and the
            ordered segments whose lengths sum exactly to ``duration_seconds``.
            A zero duration resolves to ``start`` with no segments.

    Raises:
        ValidationError: If the duration is negative or not a whole number
    """
    if isinstance(duration_seconds, bool) or not isinstance(duration_seconds, int):
        raise ValidationError(f"Duration must be whole seconds, got {duration_seconds!r}")
    if duration_seconds < 0:
        raise ValidationError(f"Duration cannot be negative, got {duration_seconds}")

    if duration_seconds == 0:
        return ResolvedInterval(start=start, end=start, segments=())

    remaining = duration_seconds
    segments: List[Segment] = []

    for window in iter_capacity_windows(start, shifts, include_weekends):
        if window.end <= start:
            continue
        segment_start = max(window.start, start)
        available = int((window.end - segment_start).total_seconds())
        if available <= 0:
            continue

        used = min(remaining, available)
        segments.append(Segment(window.shift_id, segment_start, segment_start + timedelta(seconds=used)))
        remaining -= used
        if remaining == 0:
            break

    return ResolvedInterval(start=segments[0].start, end=segments[-1].end, segments=tuple(segments))
