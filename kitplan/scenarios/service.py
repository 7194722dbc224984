"""
Scenario service: records changes and delays, and commits or discards
scenarios against the production tables.

Commit replays every change inside a single session transaction and is
rolled back as a whole on any failure.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_

from kitplan.errors import CommitFailure, InvalidOperationSequence, InvalidReference, KitplanError, ValidationError
from kitplan.logging_config import OperationContext, get_logger
from kitplan.models import JobDelay, KittingJob, Scenario, ScenarioChange, db, generate_id
from kitplan.planning.service import write_job_snapshot
from kitplan.scenarios.engine import ChangeRecord, ScenarioEngine
from kitplan.scheduling.delays import apply_delays
from kitplan.scheduling.service import (
    get_scenario_or_404,
    load_change_records,
    load_delay_snapshots,
    load_production_jobs,
    materialize_scenario,
)
from kitplan.scheduling.snapshots import DelaySnapshot, JobSnapshot

logger = get_logger(__name__)


def create_scenario(name: str, description: Optional[str] = None) -> Scenario:
    name = (name or '').strip()
    if not name:
        raise ValidationError("Scenario name is required")

    scenario = Scenario(name=name, description=description, is_active=False)
    db.session.add(scenario)
    db.session.commit()
    logger.info("Scenario created", scenario_id=scenario.id, name=name)
    return scenario


def list_scenarios(include_committed: bool = False) -> List[Scenario]:
    query = Scenario.query
    if not include_committed:
        query = query.filter(Scenario.committed_at.is_(None))
    return query.order_by(Scenario.created_at.desc()).all()


def activate_scenario(scenario_id: str) -> Scenario:
    """
    Mark one scenario as the active one in the planning UI.

    Only a display preference: scheduling always takes the scenario id
    explicitly and never reads this flag.
    """
    scenario = get_scenario_or_404(scenario_id)
    if scenario.committed_at is not None:
        raise InvalidOperationSequence(f"Scenario {scenario_id} is already committed", scenario_id=scenario_id)

    Scenario.query.filter(Scenario.id != scenario_id).update({Scenario.is_active: False}, synchronize_session=False)
    scenario.is_active = True
    db.session.commit()
    logger.info("Scenario activated", scenario_id=scenario_id)
    return scenario


def deactivate_scenario(scenario_id: str) -> Scenario:
    scenario = get_scenario_or_404(scenario_id)
    scenario.is_active = False
    db.session.commit()
    return scenario


def record_change(
    scenario_id: str,
    operation: str,
    job_id: Optional[str] = None,
    change_data: Optional[Dict[str, Any]] = None,
) -> ScenarioChange:
    """
    Append a change to a scenario.

    The change gets the next ``sequence`` number and, for MODIFY/DELETE, the
    job's state just before it as ``original_data``. The scenario is replayed
    with the new change appended first, and every delay on the resulting
    jobs must still find its step, so a change that could never be
    committed is rejected here.

    Raises:
        InvalidReference: Unknown scenario or target job, or a delay left
            pointing at a step the change removes
        InvalidOperationSequence: Change after DELETE, duplicate ADD, or a
            committed scenario
        ValidationError: Malformed operation or change_data
    """
    scenario = get_scenario_or_404(scenario_id)
    if scenario.committed_at is not None:
        raise InvalidOperationSequence(f"Scenario {scenario_id} is already committed", scenario_id=scenario_id)

    operation = (operation or '').upper()
    existing = load_change_records(scenario_id)
    production = load_production_jobs()
    next_sequence = (existing[-1].sequence + 1) if existing else 1

    record = ChangeRecord(
        id=generate_id(),
        sequence=next_sequence,
        operation=operation,
        job_id=None if operation == 'ADD' else job_id,
        change_data=change_data or {},
    )
    ScenarioEngine.validate_change(record)

    before = {job.id: job for job in ScenarioEngine.materialize(existing, production)}
    working = ScenarioEngine.materialize(existing + [record], production)
    _validate_scenario_delays(working, scenario_id)

    original_data = None
    if operation in ('MODIFY', 'DELETE'):
        original_data = before[job_id].to_dict()

    change = ScenarioChange(
        id=record.id,
        scenario_id=scenario_id,
        sequence=next_sequence,
        job_id=record.job_id,
        operation=operation,
        change_data=change_data,
        original_data=original_data,
    )
    db.session.add(change)
    db.session.commit()
    logger.info(
        "Scenario change recorded",
        scenario_id=scenario_id,
        change_id=change.id,
        operation=operation,
        job_id=record.target_job_id,
        sequence=next_sequence,
    )
    return change


def list_changes(scenario_id: str) -> List[ScenarioChange]:
    get_scenario_or_404(scenario_id)
    return ScenarioChange.query.filter_by(scenario_id=scenario_id).order_by(ScenarioChange.sequence.asc()).all()


def _require_whole_seconds(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{label} must be non-negative whole seconds, got {value!r}")
    return value


def add_delay(
    job_id: str,
    name: str,
    duration: int,
    insert_after: int = 0,
    scenario_id: Optional[str] = None,
) -> JobDelay:
    """
    Add a delay to a job, in production (``scenario_id=None``) or in one scenario.

    ``insert_after`` is checked against the job's route as seen from where the
    delay lives, so a scenario delay may target a job the scenario added.

    Raises:
        InvalidReference: Unknown scenario or job, or ``insert_after`` names no step
        ValidationError: Empty name or malformed duration
    """
    name = (name or '').strip()
    if not name:
        raise ValidationError("Delay name is required")
    duration = _require_whole_seconds(duration, "Delay duration")
    if isinstance(insert_after, bool) or not isinstance(insert_after, int):
        raise ValidationError(f"insert_after must be a step order, got {insert_after!r}")

    if scenario_id is None:
        job = KittingJob.query.get(job_id)
        snapshot = job.to_snapshot() if job is not None else None
    else:
        snapshot = next((job for job in materialize_scenario(scenario_id) if job.id == job_id), None)
    if snapshot is None:
        raise InvalidReference(f"Job {job_id} not found", job_id=job_id, scenario_id=scenario_id)

    candidate = DelaySnapshot(
        id='pending',
        job_id=job_id,
        name=name,
        duration_seconds=duration,
        insert_after=insert_after,
        scenario_id=scenario_id,
    )
    apply_delays(snapshot.route_steps, [candidate])

    delay = JobDelay(
        scenario_id=scenario_id,
        job_id=job_id,
        name=name,
        duration=duration,
        insert_after=insert_after,
    )
    db.session.add(delay)
    db.session.commit()
    logger.info(
        "Delay added",
        delay_id=delay.id,
        job_id=job_id,
        scenario_id=scenario_id,
        insert_after=insert_after,
        duration=duration,
    )
    return delay


def list_delays(
    job_id: Optional[str] = None,
    scenario_id: Optional[str] = None,
    include_production: bool = True,
) -> List[JobDelay]:
    """
    Delays visible from production, or from a scenario.

    For a scenario, production delays are included unless
    ``include_production`` is False.
    """
    query = JobDelay.query
    if scenario_id is None:
        query = query.filter(JobDelay.scenario_id.is_(None))
    elif include_production:
        query = query.filter(or_(JobDelay.scenario_id.is_(None), JobDelay.scenario_id == scenario_id))
    else:
        query = query.filter(JobDelay.scenario_id == scenario_id)

    if job_id is not None:
        query = query.filter(JobDelay.job_id == job_id)
    return query.order_by(JobDelay.created_at.asc()).all()


def remove_delay(delay_id: str) -> None:
    delay = JobDelay.query.get(delay_id)
    if delay is None:
        raise InvalidReference(f"Delay {delay_id} not found", delay_id=delay_id)
    db.session.delete(delay)
    db.session.commit()
    logger.info("Delay removed", delay_id=delay_id, job_id=delay.job_id, scenario_id=delay.scenario_id)


def _validate_scenario_delays(working: List[JobSnapshot], scenario_id: str) -> None:
    """Every delay that survives the commit must still point at a real step."""
    production_delays = load_delay_snapshots()
    scenario_delays = load_delay_snapshots(scenario_id)
    for job in working:
        apply_delays(job.route_steps, ScenarioEngine.delays_for_job(job.id, production_delays, scenario_delays))


def _apply_change(change: ChangeRecord) -> None:
    job_id = change.target_job_id

    if change.operation == 'ADD':
        snapshot = JobSnapshot.from_dict(job_id, change.change_data)
        row = KittingJob(id=job_id)
        db.session.add(row)
        row.apply_snapshot(snapshot)
    elif change.operation == 'MODIFY':
        row = KittingJob.query.get(job_id)
        if row is None:
            raise InvalidReference(f"Job {job_id} not found", job_id=job_id)
        normalized = JobSnapshot.normalize_keys(change.change_data)
        write_job_snapshot(row, row.to_snapshot().apply_changes(normalized), 'route_steps' in normalized)
    else:
        row = KittingJob.query.get(job_id)
        if row is None:
            raise InvalidReference(f"Job {job_id} not found", job_id=job_id)
        JobDelay.query.filter(JobDelay.scenario_id.is_(None), JobDelay.job_id == job_id).delete(
            synchronize_session=False
        )
        db.session.delete(row)

    db.session.flush()


def commit_scenario(scenario_id: str) -> Dict[str, Any]:
    """
    Apply a scenario to production in one transaction.

    Steps:
        1. Replay the scenario in memory and validate every surviving delay;
           domain errors are raised before anything is written.
        2. Apply ADD/MODIFY/DELETE in sequence order.
        3. Turn scenario delays of surviving jobs into production delays and
           drop the rest.
        4. Delete the scenario's changes and mark it committed.

    Returns:
        dict: Summary with counts per operation

    Raises:
        InvalidReference / InvalidOperationSequence / ValidationError: From
            pre-validation; nothing was written
        CommitFailure: If applying failed; the transaction was rolled back
    """
    with OperationContext("scenario_commit", scenario_id=scenario_id):
        scenario = get_scenario_or_404(scenario_id)
        if scenario.committed_at is not None:
            raise InvalidOperationSequence(f"Scenario {scenario_id} is already committed", scenario_id=scenario_id)

        changes = load_change_records(scenario_id)
        working = ScenarioEngine.materialize(changes, load_production_jobs())
        _validate_scenario_delays(working, scenario_id)
        surviving_ids = [job.id for job in working]

        try:
            for change in changes:
                _apply_change(change)

            promoted = JobDelay.query.filter(
                JobDelay.scenario_id == scenario_id,
                JobDelay.job_id.in_(surviving_ids),
            ).update({JobDelay.scenario_id: None}, synchronize_session=False)
            dropped = JobDelay.query.filter(JobDelay.scenario_id == scenario_id).delete(synchronize_session=False)

            ScenarioChange.query.filter_by(scenario_id=scenario_id).delete(synchronize_session=False)
            scenario.committed_at = datetime.utcnow()
            scenario.is_active = False
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            logger.error("Scenario commit rolled back", scenario_id=scenario_id, error=str(exc))
            detail = exc.message if isinstance(exc, KitplanError) else str(exc)
            raise CommitFailure(f"Commit of scenario {scenario_id} failed: {detail}", scenario_id=scenario_id) from exc

        summary = {
            'scenario_id': scenario_id,
            'committed_at': scenario.committed_at.isoformat(),
            'changes_applied': len(changes),
            'added': sum(1 for c in changes if c.operation == 'ADD'),
            'modified': sum(1 for c in changes if c.operation == 'MODIFY'),
            'deleted': sum(1 for c in changes if c.operation == 'DELETE'),
            'delays_promoted': promoted,
            'delays_dropped': dropped,
        }
        logger.info("Scenario committed", **summary)
        return summary


def discard_scenario(scenario_id: str) -> Dict[str, Any]:
    """Delete a scenario together with its changes and its delays. Production is untouched."""
    with OperationContext("scenario_discard", scenario_id=scenario_id):
        scenario = get_scenario_or_404(scenario_id)
        summary = {
            'scenario_id': scenario_id,
            'changes_discarded': len(scenario.changes),
            'delays_discarded': len(scenario.delays),
        }
        db.session.delete(scenario)
        db.session.commit()
        logger.info("Scenario discarded", **summary)
        return summary
