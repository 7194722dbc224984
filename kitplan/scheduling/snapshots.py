"""
Immutable snapshots of shifts, jobs and delays.

The scheduling and scenario engines work on these frozen dataclasses instead
of ORM rows, so a computation can never write back into the session and the
same snapshot can be shared between threads. ``kitplan.models`` converts rows
with ``to_snapshot()``; scenario change payloads are converted with
``JobSnapshot.from_dict`` / ``JobSnapshot.apply_changes``.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional, Tuple

from kitplan.datetime_utils import parse_time_of_day
from kitplan.errors import ValidationError


@dataclass(frozen=True)
class ShiftSnapshot:
    id: str
    name: str
    start_time: str                       # "07:00" (24-hour format)
    end_time: str                         # "15:00"; <= start_time means overnight
    break_start: Optional[str] = None
    break_duration: Optional[int] = None  # minutes
    is_active: bool = True
    order: int = 0
    color: Optional[str] = None


@dataclass(frozen=True)
class RouteStepSnapshot:
    order: int
    name: str
    expected_seconds: int


@dataclass(frozen=True)
class DelaySnapshot:
    id: str
    job_id: str
    name: str
    duration_seconds: int
    insert_after: int
    scenario_id: Optional[str] = None
    created_at: Optional[datetime] = None


# camelCase keys sent by the planning UI -> snapshot field names
FIELD_ALIASES: Dict[str, str] = {
    'jobNumber': 'job_number',
    'customerName': 'customer_name',
    'dueDate': 'due_date',
    'orderedQuantity': 'ordered_quantity',
    'makeReady': 'make_ready',
    'takeDown': 'take_down',
    'scheduledDate': 'scheduled_date',
    'scheduledStartTime': 'scheduled_start_time',
    'routeSteps': 'route_steps',
    'allowedShiftIds': 'allowed_shift_ids',
    'includeWeekends': 'include_weekends',
    'stationCount': 'station_count',
}

STEP_ALIASES: Dict[str, str] = {
    'expectedSeconds': 'expected_seconds',
    'durationSeconds': 'expected_seconds',
    'duration_seconds': 'expected_seconds',
}


def _require_non_negative_int(value: Any, label: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be a whole number of seconds, got {value!r}")
    if value < 0:
        raise ValidationError(f"{label} cannot be negative, got {value}")
    return value


def _coerce_date(value: Any, label: str) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"{label} must be in YYYY-MM-DD format, got {value!r}")


def coerce_route_steps(raw_steps: Iterable[Any]) -> Tuple[RouteStepSnapshot, ...]:
    """
    Normalize route steps from snapshots or JSON dicts.

    Missing ``order`` values are numbered from 1 in list position order.

    Raises:
        ValidationError: If a step is malformed or orders are not strictly ascending
    """
    steps = []
    for index, raw in enumerate(raw_steps or ()):
        if isinstance(raw, RouteStepSnapshot):
            steps.append(raw)
            continue
        if not isinstance(raw, dict):
            raise ValidationError(f"Route step {index + 1} must be an object, got {raw!r}")

        data = {STEP_ALIASES.get(key, key): value for key, value in raw.items()}
        name = str(data.get('name') or '').strip()
        if not name:
            raise ValidationError(f"Route step {index + 1} name cannot be empty")

        order = data.get('order')
        if order is None:
            order = index + 1
        steps.append(RouteStepSnapshot(
            order=_require_non_negative_int(order, f"Route step '{name}' order"),
            name=name,
            expected_seconds=_require_non_negative_int(
                data.get('expected_seconds'), f"Route step '{name}' duration"
            ),
        ))

    validate_step_orders(steps)
    return tuple(steps)


def validate_step_orders(steps: Iterable[RouteStepSnapshot]) -> None:
    """
    Route step orders must be >= 1 and strictly ascending.

    Order 0 is reserved for delays inserted before the first step.
    """
    previous = None
    for step in steps:
        if step.order < 1:
            raise ValidationError(
                f"Route step '{step.name}' has order {step.order}; orders start at 1",
                step_order=step.order,
            )
        if previous is not None and step.order <= previous:
            raise ValidationError(
                f"Route step orders must be strictly ascending ({previous} then {step.order})",
                step_order=step.order,
            )
        previous = step.order


@dataclass(frozen=True)
class JobSnapshot:
    id: str
    job_number: Optional[str] = None
    customer_name: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[date] = None
    ordered_quantity: int = 1
    setup: int = 0              # seconds
    make_ready: int = 0         # seconds
    take_down: int = 0          # seconds
    scheduled_date: Optional[date] = None
    scheduled_start_time: Optional[str] = None
    route_steps: Tuple[RouteStepSnapshot, ...] = ()
    allowed_shift_ids: Tuple[str, ...] = ()
    include_weekends: bool = False
    station_count: int = 1
    status: str = 'scheduled'
    # Overlay marker: None for untouched production jobs, 'added' or 'modified'
    scenario_state: Optional[str] = field(default=None, compare=False)

    @classmethod
    def editable_fields(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls) if f.name not in ('id', 'scenario_state'))

    @staticmethod
    def normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
        """Map camelCase keys to snapshot field names."""
        return {FIELD_ALIASES.get(key, key): value for key, value in (data or {}).items()}

    @classmethod
    def coerce_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Validate and convert a (normalized) field mapping into snapshot values.

        Raises:
            ValidationError: On unknown fields or malformed values
        """
        allowed = set(cls.editable_fields())
        unknown = sorted(key for key in data if key not in allowed)
        if unknown:
            raise ValidationError(f"Unknown job fields: {', '.join(unknown)}", fields=unknown)

        values = dict(data)
        for key in ('due_date', 'scheduled_date'):
            if key in values:
                values[key] = _coerce_date(values[key], key)
        for key in ('setup', 'make_ready', 'take_down', 'ordered_quantity'):
            if key in values:
                values[key] = _require_non_negative_int(values[key], key)
        if 'scheduled_start_time' in values:
            if values['scheduled_start_time'] in (None, ''):
                values['scheduled_start_time'] = None
            else:
                parse_time_of_day(values['scheduled_start_time'])
        if 'route_steps' in values:
            values['route_steps'] = coerce_route_steps(values['route_steps'])
        if 'allowed_shift_ids' in values:
            values['allowed_shift_ids'] = tuple(str(s) for s in (values['allowed_shift_ids'] or ()))
        if 'include_weekends' in values:
            values['include_weekends'] = bool(values['include_weekends'])
        if 'station_count' in values:
            station_count = values['station_count']
            if isinstance(station_count, bool) or not isinstance(station_count, int) or station_count < 1:
                raise ValidationError(f"station_count must be an integer >= 1, got {station_count!r}")
        return values

    @classmethod
    def from_dict(cls, job_id: str, data: Dict[str, Any]) -> 'JobSnapshot':
        """Build a new job snapshot from a JSON payload (scenario ADD)."""
        values = cls.coerce_fields({k: v for k, v in cls.normalize_keys(data).items() if k != 'id'})
        return cls(id=str(job_id), **values)

    def apply_changes(self, data: Dict[str, Any]) -> 'JobSnapshot':
        """Return a copy with only the fields present in ``data`` overwritten."""
        values = self.coerce_fields({k: v for k, v in self.normalize_keys(data).items() if k != 'id'})
        return replace(self, **values)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (used for change_data / original_data)."""
        return {
            'id': self.id,
            'job_number': self.job_number,
            'customer_name': self.customer_name,
            'description': self.description,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'ordered_quantity': self.ordered_quantity,
            'setup': self.setup,
            'make_ready': self.make_ready,
            'take_down': self.take_down,
            'scheduled_date': self.scheduled_date.isoformat() if self.scheduled_date else None,
            'scheduled_start_time': self.scheduled_start_time,
            'route_steps': [
                {'order': s.order, 'name': s.name, 'expected_seconds': s.expected_seconds}
                for s in self.route_steps
            ],
            'allowed_shift_ids': list(self.allowed_shift_ids),
            'include_weekends': self.include_weekends,
            'station_count': self.station_count,
            'status': self.status,
        }
