"""
Pure scenario overlay engine.
Contains no database dependencies - replays scenario changes over frozen
production job snapshots and returns the scenario's working set.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from kitplan.errors import InvalidOperationSequence, InvalidReference, ValidationError
from kitplan.scheduling.snapshots import DelaySnapshot, JobSnapshot

OPERATIONS = ('ADD', 'MODIFY', 'DELETE')

# JobSnapshot.scenario_state values
ADDED = 'added'
MODIFIED = 'modified'


@dataclass(frozen=True)
class ChangeRecord:
    """Value object for one recorded scenario change."""
    id: str
    sequence: int
    operation: str
    job_id: Optional[str] = None
    change_data: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None

    @property
    def target_job_id(self) -> Optional[str]:
        """Job the change applies to; ADD falls back to the change's own id."""
        if self.operation == 'ADD':
            return str((self.change_data or {}).get('id') or self.id)
        return self.job_id


class ScenarioEngine:
    """Pure business logic for replaying scenario changes."""

    @staticmethod
    def validate_change(change: ChangeRecord) -> None:
        """
        Check the shape of a change before it is recorded or replayed.

        Raises:
            ValidationError: On an unknown operation, a MODIFY/DELETE without
                a job id, or a non-object change_data
        """
        if change.operation not in OPERATIONS:
            raise ValidationError(
                f"operation must be one of: {', '.join(OPERATIONS)}",
                operation=change.operation,
            )
        if change.operation != 'ADD' and not change.job_id:
            raise ValidationError(f"{change.operation} requires a job_id", change_id=change.id)
        if change.change_data is not None and not isinstance(change.change_data, dict):
            raise ValidationError("change_data must be an object", change_id=change.id)

    @staticmethod
    def materialize(
        changes: Iterable[ChangeRecord],
        production_jobs: Iterable[JobSnapshot],
    ) -> List[JobSnapshot]:
        """
        Replay changes over production jobs.

        Production snapshots are never mutated; modified jobs are new frozen
        copies. Calling this twice with the same inputs gives equal results.

        Args:
            changes: Changes of one scenario (replayed in ``sequence`` order)
            production_jobs: Current production job snapshots

        Returns:
            list: Scenario working set. Surviving production jobs keep their
                input order; added jobs follow in the order they were added.

        Raises:
            InvalidOperationSequence: If a change targets a job deleted earlier
                in the replay, or an ADD reuses an existing job id
            InvalidReference: If MODIFY/DELETE targets an unknown job
            ValidationError: If change_data is malformed
        """
        working: Dict[str, JobSnapshot] = {job.id: job for job in production_jobs}
        deleted = set()

        for change in sorted(changes, key=lambda c: c.sequence):
            ScenarioEngine.validate_change(change)
            job_id = change.target_job_id

            if job_id in deleted:
                raise InvalidOperationSequence(
                    f"{change.operation} of job {job_id} after it was deleted",
                    change_id=change.id,
                    job_id=job_id,
                    sequence=change.sequence,
                )

            if change.operation == 'ADD':
                if job_id in working:
                    raise InvalidOperationSequence(
                        f"ADD of job {job_id}, which already exists",
                        change_id=change.id,
                        job_id=job_id,
                        sequence=change.sequence,
                    )
                added = JobSnapshot.from_dict(job_id, change.change_data or {})
                working[job_id] = replace(added, scenario_state=ADDED)
                continue

            current = working.get(job_id)
            if current is None:
                raise InvalidReference(
                    f"{change.operation} of unknown job {job_id}",
                    change_id=change.id,
                    job_id=job_id,
                )

            if change.operation == 'MODIFY':
                modified = current.apply_changes(change.change_data or {})
                state = ADDED if current.scenario_state == ADDED else MODIFIED
                working[job_id] = replace(modified, scenario_state=state)
            else:
                del working[job_id]
                deleted.add(job_id)

        return list(working.values())

    @staticmethod
    def delays_for_job(
        job_id: str,
        production_delays: Sequence[DelaySnapshot],
        scenario_delays: Sequence[DelaySnapshot] = (),
    ) -> List[DelaySnapshot]:
        """Production delays plus the scenario's delays for one job (injection orders them)."""
        return [
            delay for delay in list(production_delays) + list(scenario_delays)
            if delay.job_id == job_id
        ]
