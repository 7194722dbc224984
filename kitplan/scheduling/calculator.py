"""
Base schedule computation.

Walks a job's extended step list (route steps with delays injected) through
the shift calendar resolver, chaining each item's end into the next item's
start. Used unchanged for the production view and for scenario views.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from kitplan.datetime_utils import combine_date_and_time
from kitplan.errors import ContractViolation, ValidationError
from kitplan.scheduling.calendar import Segment, resolve_interval, select_shifts
from kitplan.scheduling.config import SchedulingConfig
from kitplan.scheduling.delays import ExtendedStep, apply_delays
from kitplan.scheduling.snapshots import DelaySnapshot, JobSnapshot, RouteStepSnapshot, ShiftSnapshot


class ScheduleView(Enum):
    PRODUCTION = "production"
    SCENARIO = "scenario"


@dataclass(frozen=True)
class ScheduledItem:
    step: ExtendedStep
    start: datetime
    end: datetime
    segments: Tuple[Segment, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.step.to_dict(),
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'segments': [segment.to_dict() for segment in self.segments],
        }


@dataclass(frozen=True)
class Schedule:
    job_start: datetime
    job_end: datetime
    items: Tuple[ScheduledItem, ...]


@dataclass(frozen=True)
class Timeline:
    """A job's computed schedule together with what it was computed for."""
    job_id: str
    view: ScheduleView
    scenario_id: Optional[str]
    schedule: Schedule
    scenario_state: Optional[str] = None

    @property
    def job_start(self) -> datetime:
        return self.schedule.job_start

    @property
    def job_end(self) -> datetime:
        return self.schedule.job_end

    @property
    def items(self) -> Tuple[ScheduledItem, ...]:
        return self.schedule.items

    def to_dict(self) -> Dict[str, Any]:
        return {
            'job_id': self.job_id,
            'view': self.view.value,
            'scenario_id': self.scenario_id,
            'scenario_state': self.scenario_state,
            'job_start': self.job_start.isoformat(),
            'job_end': self.job_end.isoformat(),
            'items': [item.to_dict() for item in self.items],
        }


def compute_schedule(
    job_start: datetime,
    extended_steps: Sequence[ExtendedStep],
    shifts: Iterable[ShiftSnapshot],
    allowed_shift_ids: Sequence[str] = (),
    include_weekends: bool = False,
    ignore_active_status: bool = False,
) -> Schedule:
    """
    Compute absolute start/end instants for every extended step.

    Args:
        job_start: Instant the job may begin
        extended_steps: Output of ``apply_delays``
        shifts: All shift definitions (filtered here per job)
        allowed_shift_ids: Per-job restriction; empty means all active shifts
        include_weekends: Whether Saturday/Sunday contribute capacity
        ignore_active_status: Scenario simulation only

    Returns:
        Schedule: Per-item (start, end, segments) plus the overall job end.
            An empty step list gives ``job_end == job_start``.
    """
    candidates = select_shifts(shifts, allowed_shift_ids, ignore_active_status)

    cursor = job_start
    items: List[ScheduledItem] = []
    for step in extended_steps:
        resolved = resolve_interval(cursor, step.duration_seconds, candidates, include_weekends)
        items.append(ScheduledItem(step=step, start=resolved.start, end=resolved.end, segments=resolved.segments))
        cursor = resolved.end

    return Schedule(job_start=job_start, job_end=cursor, items=tuple(items))


def job_start_instant(job: JobSnapshot, reference_date: Optional[date] = None) -> datetime:
    """
    Instant a job starts: its scheduled date and start time.

    Jobs without a scheduled date start on ``reference_date``; jobs without a
    start time use ``SchedulingConfig.DEFAULT_START_TIME``.

    Raises:
        ValidationError: If neither a scheduled date nor a reference date is known
    """
    start_date = job.scheduled_date or reference_date
    if start_date is None:
        raise ValidationError(f"Job {job.id} has no scheduled date and no reference date was given", job_id=job.id)
    return combine_date_and_time(start_date, job.scheduled_start_time or SchedulingConfig.DEFAULT_START_TIME)


def compute_job_timeline(
    job: JobSnapshot,
    delays: Iterable[DelaySnapshot],
    shifts: Iterable[ShiftSnapshot],
    view: ScheduleView = ScheduleView.PRODUCTION,
    scenario_id: Optional[str] = None,
    reference_date: Optional[date] = None,
    ignore_active_status: Optional[bool] = None,
) -> Timeline:
    """
    Inject delays into a job's route and compute its timeline.

    ``ignore_active_status`` follows the view when left as None: scenario
    views may use deactivated shifts, production views never do.

    Raises:
        ContractViolation: If a production view is asked to ignore shift activation
    """
    if ignore_active_status is None:
        ignore_active_status = view is ScheduleView.SCENARIO
    if ignore_active_status and view is ScheduleView.PRODUCTION:
        raise ContractViolation("Production schedules must only use active shifts", job_id=job.id)

    extended = apply_delays(job.route_steps, delays)
    schedule = compute_schedule(
        job_start_instant(job, reference_date),
        extended,
        shifts,
        allowed_shift_ids=job.allowed_shift_ids,
        include_weekends=job.include_weekends,
        ignore_active_status=ignore_active_status,
    )
    return Timeline(
        job_id=job.id,
        view=view,
        scenario_id=scenario_id,
        schedule=schedule,
        scenario_state=job.scenario_state,
    )


def calculate_all_job_timelines(
    jobs: Iterable[JobSnapshot],
    delays_by_job: Mapping[str, Sequence[DelaySnapshot]],
    shifts: Sequence[ShiftSnapshot],
    view: ScheduleView = ScheduleView.PRODUCTION,
    scenario_id: Optional[str] = None,
    reference_date: Optional[date] = None,
) -> List[Timeline]:
    """
    Compute timelines for several jobs.

    Jobs are independent (no resource contention between them), so each
    timeline is computed on its own.
    """
    return [
        compute_job_timeline(
            job,
            delays_by_job.get(job.id, ()),
            shifts,
            view=view,
            scenario_id=scenario_id,
            reference_date=reference_date,
        )
        for job in jobs
    ]


def calculate_expected_kit_duration(route_steps: Iterable[RouteStepSnapshot]) -> int:
    """Seconds to build one kit: the sum of its route step durations."""
    return sum(step.expected_seconds for step in route_steps)


def calculate_expected_job_duration(
    expected_kit_duration: int,
    ordered_quantity: int,
    setup: int = 0,
    make_ready: int = 0,
    take_down: int = 0,
    station_count: int = 1,
) -> int:
    """
    Estimated working seconds for a whole job.

    Formula: ceil(kit_duration × quantity / station_count) + setup + make_ready + take_down

    Kits are split evenly across the planned stations; setup, make-ready and
    take-down happen once per job.
    """
    if station_count < 1:
        raise ValidationError(f"station_count must be >= 1, got {station_count}")
    kitting_seconds = math.ceil(expected_kit_duration * ordered_quantity / station_count)
    return kitting_seconds + setup + make_ready + take_down


def summarize_job_duration(job: JobSnapshot) -> Dict[str, int]:
    """Expected kit and job durations for a job snapshot."""
    kit_duration = calculate_expected_kit_duration(job.route_steps)
    return {
        'expected_kit_duration': kit_duration,
        'expected_job_duration': calculate_expected_job_duration(
            kit_duration,
            job.ordered_quantity,
            job.setup,
            job.make_ready,
            job.take_down,
            job.station_count,
        ),
    }
