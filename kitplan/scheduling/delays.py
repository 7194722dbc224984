"""
Delay injection.

Turns a job's route steps plus its delays into one extended step list. The
schedule computer only ever sees that list, so production delays and
scenario delays go through exactly the same timeline code.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from kitplan.errors import InvalidReference, ValidationError
from kitplan.scheduling.snapshots import DelaySnapshot, RouteStepSnapshot, validate_step_orders

# insert_after value meaning "before the first step"
BEFORE_FIRST_STEP = 0


class StepKind(Enum):
    STEP = "STEP"
    DELAY = "DELAY"


@dataclass(frozen=True)
class ExtendedStep:
    """One item of the extended step list fed to the schedule computer."""
    kind: StepKind
    name: str
    duration_seconds: int
    step_order: Optional[int] = None    # set for STEP items
    delay_id: Optional[str] = None      # set for DELAY items
    scenario_id: Optional[str] = None   # scenario that owns a DELAY, None for production

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'name': self.name,
            'duration_seconds': self.duration_seconds,
            'step_order': self.step_order,
            'delay_id': self.delay_id,
            'scenario_id': self.scenario_id,
        }


def _creation_key(delay: DelaySnapshot):
    return delay.created_at if delay.created_at is not None else datetime.min


def order_delays(delays: Iterable[DelaySnapshot]) -> List[DelaySnapshot]:
    """Delays in creation order; ties keep their input order (sorted() is stable)."""
    return sorted(delays, key=_creation_key)


def validate_delays(steps: Sequence[RouteStepSnapshot], delays: Iterable[DelaySnapshot]) -> None:
    """
    Check delays against the route they will be injected into.

    Raises:
        InvalidReference: If ``insert_after`` names no step of the route
        ValidationError: If a delay duration is negative or fractional
    """
    step_orders = {step.order for step in steps}
    for delay in delays:
        if isinstance(delay.duration_seconds, bool) or not isinstance(delay.duration_seconds, int) \
                or delay.duration_seconds < 0:
            raise ValidationError(
                f"Delay '{delay.name}' duration must be non-negative whole seconds",
                delay_id=delay.id,
            )
        if delay.insert_after != BEFORE_FIRST_STEP and delay.insert_after not in step_orders:
            raise InvalidReference(
                f"Delay '{delay.name}' is inserted after step {delay.insert_after}, "
                f"which does not exist in job {delay.job_id}",
                delay_id=delay.id,
                job_id=delay.job_id,
                insert_after=delay.insert_after,
            )


def apply_delays(
    steps: Sequence[RouteStepSnapshot],
    delays: Iterable[DelaySnapshot],
) -> List[ExtendedStep]:
    """
    Interleave delays with route steps.

    Delays at ``insert_after == 0`` come before the first step; every other
    delay follows the step whose order equals its ``insert_after``. Several
    delays at the same point are emitted one after another in creation order.

    Args:
        steps: Route steps in ascending order
        delays: Production and/or scenario delays for this job

    Returns:
        list: ExtendedStep items (STEP and DELAY) in execution order
    """
    validate_step_orders(steps)
    delays = order_delays(delays)
    validate_delays(steps, delays)

    by_anchor: Dict[int, List[DelaySnapshot]] = {}
    for delay in delays:
        by_anchor.setdefault(delay.insert_after, []).append(delay)

    def delay_items(anchor: int) -> List[ExtendedStep]:
        return [
            ExtendedStep(
                kind=StepKind.DELAY,
                name=delay.name,
                duration_seconds=delay.duration_seconds,
                delay_id=delay.id,
                scenario_id=delay.scenario_id,
            )
            for delay in by_anchor.get(anchor, [])
        ]

    extended = delay_items(BEFORE_FIRST_STEP)
    for step in steps:
        extended.append(ExtendedStep(
            kind=StepKind.STEP,
            name=step.name,
            duration_seconds=step.expected_seconds,
            step_order=step.order,
        ))
        extended.extend(delay_items(step.order))

    return extended
