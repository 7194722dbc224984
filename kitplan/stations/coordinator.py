"""
Station assignment coordinator.

Gives every execution station opened on a job a station number that no other
open station of that job holds, and keeps the job's shared kit count.

Counter updates are single ``UPDATE ... SET n = n +/- 1`` statements read
back inside the same transaction, serialised per job by ``job_lock_manager``.
Jobs never contend with each other.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError

from kitplan.errors import CounterUnderflow, InvalidReference, ValidationError
from kitplan.logging_config import OperationContext, get_logger
from kitplan.models import JobProgress, KitExecution, KittingJob, db
from kitplan.stations.config import StationConfig
from kitplan.stations.lock import job_lock_manager

logger = get_logger(__name__)


def _get_job(job_id: str) -> KittingJob:
    job = KittingJob.query.get(job_id)
    if job is None:
        raise InvalidReference(f"Job {job_id} not found", job_id=job_id)
    return job


def _ensure_progress(job: KittingJob) -> JobProgress:
    """Return the job's progress row, creating it the first time a station opens."""
    progress = JobProgress.query.filter_by(job_id=job.id).first()
    if progress is not None:
        return progress

    try:
        progress = JobProgress(
            job_id=job.id,
            next_station_number=0,
            completed_kits=0,
            remaining_kits=job.ordered_quantity or 0,
        )
        db.session.add(progress)
        db.session.commit()
    except IntegrityError:
        # Another worker created it first
        db.session.rollback()
        progress = JobProgress.query.filter_by(job_id=job.id).first()
    return progress


def _read_counter(job_id: str) -> int:
    return db.session.query(JobProgress.next_station_number).filter(JobProgress.job_id == job_id).scalar()


def assign_station(job_id: str) -> Dict[str, Any]:
    """
    Open a station on a job.

    Returns:
        dict: ``station_number`` (counter value after the increment) and
            ``station_name`` ("Station N")

    Raises:
        InvalidReference: If the job does not exist
    """
    with job_lock_manager.acquire(job_id, "assign_station"):
        job = _get_job(job_id)
        _ensure_progress(job)

        try:
            JobProgress.query.filter(JobProgress.job_id == job_id).update(
                {JobProgress.next_station_number: JobProgress.next_station_number + 1},
                synchronize_session=False,
            )
            station_number = _read_counter(job_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    station_name = StationConfig.station_name(station_number)
    logger.info("Station assigned", job_id=job_id, station_number=station_number, station_name=station_name)
    return {
        'job_id': job_id,
        'station_number': station_number,
        'station_name': station_name,
    }


def release_station(job_id: str, station_number: Optional[int] = None) -> Dict[str, Any]:
    """
    Close a station on a job.

    The counter is decremented regardless of which station number is passed;
    the number is only logged.

    Raises:
        CounterUnderflow: If no station is open on the job
        InvalidReference: If the job has no progress row
    """
    with job_lock_manager.acquire(job_id, "release_station"):
        try:
            updated = JobProgress.query.filter(
                JobProgress.job_id == job_id,
                JobProgress.next_station_number > 0,
            ).update(
                {JobProgress.next_station_number: JobProgress.next_station_number - 1},
                synchronize_session=False,
            )
            if not updated:
                db.session.rollback()
                if JobProgress.query.filter_by(job_id=job_id).first() is None:
                    raise InvalidReference(f"No progress found for job {job_id}", job_id=job_id)
                raise CounterUnderflow(
                    f"Release of station {station_number} on job {job_id} with no open stations",
                    job_id=job_id,
                    station_number=station_number,
                )
            open_stations = _read_counter(job_id)
            db.session.commit()
        except (InvalidReference, CounterUnderflow):
            raise
        except Exception:
            db.session.rollback()
            raise

    logger.info("Station released", job_id=job_id, station_number=station_number, open_stations=open_stations)
    return {
        'job_id': job_id,
        'released_station_number': station_number,
        'open_stations': open_stations,
    }


def reset_all_stations() -> int:
    """Force every job's station counter back to zero. Returns the number of rows reset."""
    with OperationContext("reset_all_stations"):
        reset = JobProgress.query.filter(JobProgress.next_station_number != 0).update(
            {JobProgress.next_station_number: 0},
            synchronize_session=False,
        )
        db.session.commit()
        logger.warning("All station counters reset", rows_reset=reset)
        return reset


def record_kit_start(job_id: str, station_number: Optional[int] = None) -> KitExecution:
    """
    Start building a kit at a station.

    The first kit started marks the job in progress.
    """
    with job_lock_manager.acquire(job_id, "record_kit_start"):
        job = _get_job(job_id)
        progress = _ensure_progress(job)

        last_kit = db.session.query(db.func.max(KitExecution.kit_number)).filter(
            KitExecution.job_progress_id == progress.id
        ).scalar()

        now = datetime.utcnow()
        execution = KitExecution(
            job_progress_id=progress.id,
            kit_number=(last_kit or 0) + 1,
            station_number=station_number,
            station_name=StationConfig.station_name(station_number) if station_number else None,
            start_time=now,
            completed=False,
        )
        db.session.add(execution)
        if not progress.is_active:
            progress.is_active = True
            progress.start_time = progress.start_time or now
            job.status = 'in_progress'
        db.session.commit()

    logger.info(
        "Kit started",
        job_id=job_id,
        kit_number=execution.kit_number,
        station_number=station_number,
    )
    return execution


def record_kit_completion(
    job_id: str,
    kit_execution_id: Optional[str] = None,
    station_number: Optional[int] = None,
    actual_duration: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Complete a kit and bump the job's shared completed count.

    Either closes a kit started with ``record_kit_start`` (``kit_execution_id``)
    or appends an already-completed execution. When no kits remain the job is
    marked completed.

    Raises:
        InvalidReference: Unknown job or kit execution
        ValidationError: Negative duration, or the kit was already completed
    """
    if actual_duration is not None and (isinstance(actual_duration, bool)
                                        or not isinstance(actual_duration, int) or actual_duration < 0):
        raise ValidationError(f"actual_duration must be non-negative whole seconds, got {actual_duration!r}")

    with job_lock_manager.acquire(job_id, "record_kit_completion"):
        job = _get_job(job_id)
        progress = _ensure_progress(job)
        now = datetime.utcnow()

        try:
            if kit_execution_id is not None:
                execution = KitExecution.query.filter_by(id=kit_execution_id, job_progress_id=progress.id).first()
                if execution is None:
                    raise InvalidReference(
                        f"Kit execution {kit_execution_id} not found for job {job_id}",
                        kit_execution_id=kit_execution_id,
                        job_id=job_id,
                    )
                if execution.completed:
                    raise ValidationError(f"Kit {execution.kit_number} is already completed", kit_execution_id=kit_execution_id)
            else:
                last_kit = db.session.query(db.func.max(KitExecution.kit_number)).filter(
                    KitExecution.job_progress_id == progress.id
                ).scalar()
                execution = KitExecution(
                    job_progress_id=progress.id,
                    kit_number=(last_kit or 0) + 1,
                    station_number=station_number,
                    station_name=StationConfig.station_name(station_number) if station_number else None,
                    start_time=now,
                )
                db.session.add(execution)

            if actual_duration is None and execution.start_time is not None:
                actual_duration = int((now - execution.start_time).total_seconds())
            execution.end_time = now
            execution.actual_duration = actual_duration
            execution.completed = True

            JobProgress.query.filter(JobProgress.id == progress.id).update(
                {JobProgress.completed_kits: JobProgress.completed_kits + 1},
                synchronize_session=False,
            )
            completed_kits = db.session.query(JobProgress.completed_kits).filter(
                JobProgress.id == progress.id
            ).scalar()
            remaining_kits = max((job.ordered_quantity or 0) - completed_kits, 0)

            values = {JobProgress.remaining_kits: remaining_kits}
            if remaining_kits == 0:
                values[JobProgress.is_active] = False
                values[JobProgress.end_time] = now
                job.status = 'completed'
            JobProgress.query.filter(JobProgress.id == progress.id).update(values, synchronize_session=False)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    logger.info(
        "Kit completed",
        job_id=job_id,
        kit_number=execution.kit_number,
        completed_kits=completed_kits,
        remaining_kits=remaining_kits,
    )
    return {
        'job_id': job_id,
        'kit_execution': execution.to_dict(),
        'completed_kits': completed_kits,
        'remaining_kits': remaining_kits,
        'job_completed': remaining_kits == 0,
    }


def get_progress(job_id: str) -> Dict[str, Any]:
    """Authoritative shared progress for a job, as polled by execution stations."""
    job = _get_job(job_id)
    progress = JobProgress.query.filter_by(job_id=job_id).first()
    if progress is None:
        return {
            'job_id': job_id,
            'next_station_number': 0,
            'completed_kits': 0,
            'remaining_kits': job.ordered_quantity or 0,
            'ordered_quantity': job.ordered_quantity or 0,
            'is_active': False,
            'start_time': None,
            'end_time': None,
        }

    data = progress.to_dict()
    data['ordered_quantity'] = job.ordered_quantity or 0
    return data
