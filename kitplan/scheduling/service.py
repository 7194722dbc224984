"""
Scheduling service for loading jobs, shifts and delays from the database and
computing production or scenario timelines.

Rows are converted to frozen snapshots before any calculation, so the pure
scheduling layer never sees (or writes to) the session.
"""

from datetime import date
from typing import Dict, List, Optional

from kitplan.errors import InvalidReference
from kitplan.logging_config import get_logger
from kitplan.models import JobDelay, KittingJob, Scenario, ScenarioChange, Shift
from kitplan.scenarios.engine import ChangeRecord, ScenarioEngine
from kitplan.scheduling.calculator import ScheduleView, Timeline, calculate_all_job_timelines, compute_job_timeline
from kitplan.scheduling.snapshots import DelaySnapshot, JobSnapshot, ShiftSnapshot

logger = get_logger(__name__)


def load_shift_snapshots() -> List[ShiftSnapshot]:
    """Every shift definition, active or not; filtering happens per job."""
    return [shift.to_snapshot() for shift in Shift.query.order_by(Shift.order.asc(), Shift.id.asc()).all()]


def load_production_jobs() -> List[JobSnapshot]:
    return [
        job.to_snapshot()
        for job in KittingJob.query.order_by(KittingJob.created_at.asc(), KittingJob.id.asc()).all()
    ]


def load_delay_snapshots(scenario_id: Optional[str] = None) -> List[DelaySnapshot]:
    """Production delays (``scenario_id=None``) or the delays owned by one scenario."""
    query = JobDelay.query.filter(JobDelay.scenario_id.is_(None)) if scenario_id is None \
        else JobDelay.query.filter(JobDelay.scenario_id == scenario_id)
    return [delay.to_snapshot() for delay in query.order_by(JobDelay.created_at.asc()).all()]


def load_change_records(scenario_id: str) -> List[ChangeRecord]:
    changes = ScenarioChange.query.filter_by(scenario_id=scenario_id).order_by(ScenarioChange.sequence.asc()).all()
    return [
        ChangeRecord(
            id=change.id,
            sequence=change.sequence,
            operation=change.operation,
            job_id=change.job_id,
            change_data=change.change_data or {},
            created_at=change.created_at,
        )
        for change in changes
    ]


def get_scenario_or_404(scenario_id: str) -> Scenario:
    scenario = Scenario.query.get(scenario_id)
    if scenario is None:
        raise InvalidReference(f"Scenario {scenario_id} not found", scenario_id=scenario_id)
    return scenario


def materialize_scenario(scenario_id: str) -> List[JobSnapshot]:
    """Scenario working set: production jobs with the scenario's changes replayed."""
    get_scenario_or_404(scenario_id)
    return ScenarioEngine.materialize(load_change_records(scenario_id), load_production_jobs())


def get_production_schedule(job_id: str, reference_date: Optional[date] = None) -> Timeline:
    """
    Compute the production timeline for one job.

    Uses active shifts only and production delays only.

    Args:
        job_id: KittingJob id
        reference_date: Start date for jobs without a scheduled date (defaults to today)

    Raises:
        InvalidReference: If the job does not exist
    """
    if reference_date is None:
        reference_date = date.today()

    job = KittingJob.query.get(job_id)
    if job is None:
        raise InvalidReference(f"Job {job_id} not found", job_id=job_id)

    delays = [delay for delay in load_delay_snapshots() if delay.job_id == job_id]
    timeline = compute_job_timeline(
        job.to_snapshot(),
        delays,
        load_shift_snapshots(),
        view=ScheduleView.PRODUCTION,
        reference_date=reference_date,
    )
    logger.info(
        "Computed production schedule",
        job_id=job_id,
        job_end=timeline.job_end.isoformat(),
        items=len(timeline.items),
    )
    return timeline


def get_scenario_schedule(scenario_id: str, job_id: str, reference_date: Optional[date] = None) -> Timeline:
    """
    Compute one job's timeline as it would look with the scenario applied.

    Production delays and the scenario's own delays are both injected, and
    deactivated shifts may take part (what-if simulation).

    Raises:
        InvalidReference: If the scenario is unknown, or the job is neither in
            production nor added by the scenario (or the scenario deletes it)
    """
    if reference_date is None:
        reference_date = date.today()

    jobs = {job.id: job for job in materialize_scenario(scenario_id)}
    job = jobs.get(job_id)
    if job is None:
        raise InvalidReference(
            f"Job {job_id} does not exist in scenario {scenario_id}",
            scenario_id=scenario_id,
            job_id=job_id,
        )

    delays = ScenarioEngine.delays_for_job(
        job_id,
        load_delay_snapshots(),
        load_delay_snapshots(scenario_id),
    )
    return compute_job_timeline(
        job,
        delays,
        load_shift_snapshots(),
        view=ScheduleView.SCENARIO,
        scenario_id=scenario_id,
        reference_date=reference_date,
    )


def get_all_schedules(scenario_id: Optional[str] = None, reference_date: Optional[date] = None) -> Dict[str, Timeline]:
    """
    Timelines for every job, keyed by job id.

    With a scenario id, jobs come from the scenario's working set and the
    scenario view is used; otherwise production.
    """
    if reference_date is None:
        reference_date = date.today()

    shifts = load_shift_snapshots()
    production_delays = load_delay_snapshots()

    if scenario_id is None:
        jobs = load_production_jobs()
        scenario_delays: List[DelaySnapshot] = []
        view = ScheduleView.PRODUCTION
    else:
        jobs = materialize_scenario(scenario_id)
        scenario_delays = load_delay_snapshots(scenario_id)
        view = ScheduleView.SCENARIO

    delays_by_job = {
        job.id: ScenarioEngine.delays_for_job(job.id, production_delays, scenario_delays) for job in jobs
    }
    timelines = calculate_all_job_timelines(
        jobs, delays_by_job, shifts, view=view, scenario_id=scenario_id, reference_date=reference_date
    )
    return {timeline.job_id: timeline for timeline in timelines}
