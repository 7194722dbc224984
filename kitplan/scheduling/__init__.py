"""
Shift-based scheduling for kitting jobs.

Maps each job's route steps (plus injected delays) onto shift calendar time.
Everything exported here is pure; database loading lives in
``kitplan.scheduling.service``.
"""

from kitplan.scheduling.config import SchedulingConfig
from kitplan.scheduling.snapshots import DelaySnapshot, JobSnapshot, RouteStepSnapshot, ShiftSnapshot
from kitplan.scheduling.calendar import (
    Segment,
    ResolvedInterval,
    productive_seconds_per_day,
    resolve_interval,
    select_shifts,
    shift_productive_seconds,
    validate_shift,
)
from kitplan.scheduling.delays import ExtendedStep, StepKind, apply_delays
from kitplan.scheduling.calculator import (
    Schedule,
    ScheduledItem,
    ScheduleView,
    Timeline,
    calculate_all_job_timelines,
    calculate_expected_job_duration,
    calculate_expected_kit_duration,
    compute_job_timeline,
    compute_schedule,
)

__all__ = [
    'SchedulingConfig',
    'DelaySnapshot',
    'JobSnapshot',
    'RouteStepSnapshot',
    'ShiftSnapshot',
    'Segment',
    'ResolvedInterval',
    'productive_seconds_per_day',
    'resolve_interval',
    'select_shifts',
    'shift_productive_seconds',
    'validate_shift',
    'ExtendedStep',
    'StepKind',
    'apply_delays',
    'Schedule',
    'ScheduledItem',
    'ScheduleView',
    'Timeline',
    'calculate_all_job_timelines',
    'calculate_expected_job_duration',
    'calculate_expected_kit_duration',
    'compute_job_timeline',
    'compute_schedule',
]
