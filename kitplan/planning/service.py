"""
Shift and production job maintenance.

Every write is validated the same way a scenario change is: shift edits go
through ``validate_shift`` and job payloads through ``JobSnapshot`` coercion,
so the scheduler never meets a row it cannot schedule.
"""

from dataclasses import replace
from typing import Any, Dict, List, Optional

from kitplan.datetime_utils import parse_time_of_day
from kitplan.errors import InvalidOperationSequence, InvalidReference, ValidationError
from kitplan.logging_config import get_logger
from kitplan.models import KittingJob, Shift, db, generate_id
from kitplan.scheduling.calendar import validate_shift
from kitplan.scheduling.delays import apply_delays
from kitplan.scheduling.service import load_delay_snapshots
from kitplan.scheduling.snapshots import JobSnapshot

logger = get_logger(__name__)

# camelCase keys sent by the shift settings screen
SHIFT_FIELD_ALIASES = {
    'startTime': 'start_time',
    'endTime': 'end_time',
    'breakStart': 'break_start',
    'breakDuration': 'break_duration',
    'isActive': 'is_active',
}

SHIFT_FIELDS = ('name', 'start_time', 'end_time', 'break_start', 'break_duration', 'is_active', 'order', 'color')


def _get_shift(shift_id: str) -> Shift:
    shift = db.session.get(Shift, shift_id)
    if shift is None:
        raise InvalidReference(f"Shift {shift_id} not found", shift_id=shift_id)
    return shift


def _get_job(job_id: str) -> KittingJob:
    job = db.session.get(KittingJob, job_id)
    if job is None:
        raise InvalidReference(f"Job {job_id} not found", job_id=job_id)
    return job


def list_shifts(active_only: bool = False) -> List[Shift]:
    query = Shift.query
    if active_only:
        query = query.filter(Shift.is_active.is_(True))
    return query.order_by(Shift.order.asc(), Shift.id.asc()).all()


def toggle_shift(shift_id: str, is_active: Optional[bool] = None) -> Shift:
    """Flip a shift's active flag, or set it when ``is_active`` is given."""
    shift = _get_shift(shift_id)
    if is_active is not None and not isinstance(is_active, bool):
        raise ValidationError(f"is_active must be true or false, got {is_active!r}")
    shift.is_active = (not shift.is_active) if is_active is None else is_active
    db.session.commit()
    logger.info("Shift toggled", shift_id=shift_id, is_active=shift.is_active)
    return shift


def _coerce_shift_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    values = {SHIFT_FIELD_ALIASES.get(key, key): value for key, value in (data or {}).items()}
    values.pop('id', None)
    unknown = sorted(key for key in values if key not in SHIFT_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown shift fields: {', '.join(unknown)}", fields=unknown)

    if 'name' in values and not (isinstance(values['name'], str) and values['name'].strip()):
        raise ValidationError("Shift name is required")
    for key in ('break_start', 'color'):
        if values.get(key) == '':
            values[key] = None
    if values.get('break_start') is not None:
        parse_time_of_day(values['break_start'])
    for key, nullable in (('break_duration', True), ('order', False)):
        if key not in values or (nullable and values[key] is None):
            continue
        if isinstance(values[key], bool) or not isinstance(values[key], int):
            raise ValidationError(f"{key} must be a whole number, got {values[key]!r}")
    if 'is_active' in values and not isinstance(values['is_active'], bool):
        raise ValidationError(f"is_active must be true or false, got {values['is_active']!r}")
    return values


def update_shift(shift_id: str, data: Dict[str, Any]) -> Shift:
    """
    Update a shift's times, break, name, order, colour or active flag.

    The edited shift is validated as a whole before anything is written.

    Raises:
        InvalidReference: Unknown shift
        ValidationError: Unknown field, malformed value, or a shift that
            would have its break outside its hours or no productive time
    """
    shift = _get_shift(shift_id)
    values = _coerce_shift_fields(data)
    candidate = replace(shift.to_snapshot(), **values)
    validate_shift(candidate)

    for key, value in values.items():
        setattr(shift, key, value)
    db.session.commit()
    logger.info("Shift updated", shift_id=shift_id, fields=sorted(values))
    return shift


def _check_shift_ids(snapshot: JobSnapshot) -> None:
    if not snapshot.allowed_shift_ids:
        return
    known = {shift_id for (shift_id,) in db.session.query(Shift.id).all()}
    missing = [shift_id for shift_id in snapshot.allowed_shift_ids if shift_id not in known]
    if missing:
        raise InvalidReference(f"Unknown shift ids: {', '.join(missing)}", job_id=snapshot.id, shift_ids=missing)


def write_job_snapshot(row: KittingJob, snapshot: JobSnapshot, replace_steps: bool) -> None:
    """Copy a snapshot onto a job row, replacing its route steps when asked."""
    if replace_steps:
        # Old steps must be gone before the new ones hit the (job, order) unique constraint
        row.route_steps.clear()
        db.session.flush()
    row.apply_snapshot(snapshot, replace_steps=replace_steps)


def list_jobs(status: Optional[str] = None) -> List[KittingJob]:
    query = KittingJob.query
    if status:
        query = query.filter(KittingJob.status == status)
    return query.order_by(KittingJob.created_at.asc(), KittingJob.id.asc()).all()


def create_job(data: Dict[str, Any]) -> KittingJob:
    """
    Create a production job with its route steps.

    The payload accepts the same fields (snake_case or camelCase) as a
    scenario ADD; ``id`` is generated when absent.

    Raises:
        InvalidOperationSequence: A job with that id already exists
        InvalidReference: allowed_shift_ids names an unknown shift
        ValidationError: Unknown field or malformed value
    """
    data = data or {}
    job_id = str(data.get('id') or generate_id())
    if db.session.get(KittingJob, job_id) is not None:
        raise InvalidOperationSequence(f"Job {job_id} already exists", job_id=job_id)

    snapshot = JobSnapshot.from_dict(job_id, data)
    _check_shift_ids(snapshot)

    row = KittingJob(id=job_id)
    db.session.add(row)
    row.apply_snapshot(snapshot)
    db.session.commit()
    logger.info("Job created", job_id=job_id, job_number=snapshot.job_number, steps=len(snapshot.route_steps))
    return row


def update_job(job_id: str, data: Dict[str, Any]) -> KittingJob:
    """
    Patch a production job; only the fields present in ``data`` change.

    When the route steps are replaced, every production delay on the job must
    still find its step.

    Raises:
        InvalidReference: Unknown job or shift, or a delay left without its step
        ValidationError: Unknown field or malformed value
    """
    row = _get_job(job_id)
    normalized = JobSnapshot.normalize_keys(data)
    snapshot = row.to_snapshot().apply_changes(normalized)
    _check_shift_ids(snapshot)

    replace_steps = 'route_steps' in normalized
    if replace_steps:
        delays = [delay for delay in load_delay_snapshots() if delay.job_id == job_id]
        apply_delays(snapshot.route_steps, delays)

    write_job_snapshot(row, snapshot, replace_steps)
    db.session.commit()
    logger.info("Job updated", job_id=job_id, fields=sorted(normalized))
    return row


def update_route_steps(job_id: str, route_steps: List[Dict[str, Any]]) -> KittingJob:
    """Replace a job's whole route in one go."""
    if not isinstance(route_steps, list):
        raise ValidationError("route_steps must be a list")
    return update_job(job_id, {'route_steps': route_steps})
