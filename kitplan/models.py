from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
import uuid

from kitplan.scheduling.snapshots import DelaySnapshot, JobSnapshot, RouteStepSnapshot, ShiftSnapshot

db = SQLAlchemy()


def generate_id():
    return str(uuid.uuid4())


class Shift(db.Model):
    """Recurring daily work shift with an optional break."""
    __tablename__ = "shifts"

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    name = db.Column(db.String(128), nullable=False)
    start_time = db.Column(db.String(5), nullable=False)  # "07:00"
    end_time = db.Column(db.String(5), nullable=False)    # "15:00"; <= start_time means overnight
    break_start = db.Column(db.String(5), nullable=True)
    break_duration = db.Column(db.Integer, nullable=True)  # minutes
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    order = db.Column(db.Integer, nullable=False, default=0)
    color = db.Column(db.String(16), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Shift {self.name} {self.start_time}-{self.end_time}>"

    def to_snapshot(self) -> ShiftSnapshot:
        return ShiftSnapshot(
            id=self.id,
            name=self.name,
            start_time=self.start_time,
            end_time=self.end_time,
            break_start=self.break_start,
            break_duration=self.break_duration,
            is_active=bool(self.is_active),
            order=self.order or 0,
            color=self.color,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'break_start': self.break_start,
            'break_duration': self.break_duration,
            'is_active': self.is_active,
            'order': self.order,
            'color': self.color,
        }


class KittingJob(db.Model):
    __tablename__ = "kitting_jobs"

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    job_number = db.Column(db.String(64), nullable=True, index=True)
    customer_name = db.Column(db.String(256), nullable=True)
    description = db.Column(db.String(512), nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    ordered_quantity = db.Column(db.Integer, nullable=False, default=1)

    # Per-job overhead, seconds
    setup = db.Column(db.Integer, nullable=False, default=0)
    make_ready = db.Column(db.Integer, nullable=False, default=0)
    take_down = db.Column(db.Integer, nullable=False, default=0)

    scheduled_date = db.Column(db.Date, nullable=True)
    scheduled_start_time = db.Column(db.String(5), nullable=True)

    # Empty list means every active shift
    allowed_shift_ids = db.Column(db.JSON, nullable=False, default=list)
    include_weekends = db.Column(db.Boolean, nullable=False, default=False)
    station_count = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(32), nullable=False, default='scheduled')

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    route_steps = db.relationship(
        "RouteStep",
        backref="job",
        cascade="all, delete-orphan",
        order_by="RouteStep.order",
    )
    progress = db.relationship(
        "JobProgress",
        backref="job",
        cascade="all, delete-orphan",
        uselist=False,
    )

    def __repr__(self):
        return f"<KittingJob {self.job_number} - {self.customer_name}>"

    def to_snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            id=self.id,
            job_number=self.job_number,
            customer_name=self.customer_name,
            description=self.description,
            due_date=self.due_date,
            ordered_quantity=self.ordered_quantity if self.ordered_quantity is not None else 1,
            setup=self.setup or 0,
            make_ready=self.make_ready or 0,
            take_down=self.take_down or 0,
            scheduled_date=self.scheduled_date,
            scheduled_start_time=self.scheduled_start_time,
            route_steps=tuple(step.to_snapshot() for step in self.route_steps),
            allowed_shift_ids=tuple(self.allowed_shift_ids or ()),
            include_weekends=bool(self.include_weekends),
            station_count=self.station_count or 1,
            status=self.status or 'scheduled',
        )

    def apply_snapshot(self, snapshot: JobSnapshot, replace_steps: bool = True):
        """Copy snapshot values onto this row (used when a scenario is committed)."""
        self.job_number = snapshot.job_number
        self.customer_name = snapshot.customer_name
        self.description = snapshot.description
        self.due_date = snapshot.due_date
        self.ordered_quantity = snapshot.ordered_quantity
        self.setup = snapshot.setup
        self.make_ready = snapshot.make_ready
        self.take_down = snapshot.take_down
        self.scheduled_date = snapshot.scheduled_date
        self.scheduled_start_time = snapshot.scheduled_start_time
        self.allowed_shift_ids = list(snapshot.allowed_shift_ids)
        self.include_weekends = snapshot.include_weekends
        self.station_count = snapshot.station_count
        self.status = snapshot.status
        if replace_steps:
            self.route_steps = [
                RouteStep(order=step.order, name=step.name, expected_seconds=step.expected_seconds)
                for step in snapshot.route_steps
            ]

    def to_dict(self):
        data = self.to_snapshot().to_dict()
        data['created_at'] = self.created_at.isoformat() if self.created_at else None
        data['updated_at'] = self.updated_at.isoformat() if self.updated_at else None
        return data


class RouteStep(db.Model):
    __tablename__ = "route_steps"
    __table_args__ = (db.UniqueConstraint("kitting_job_id", "order", name="_job_step_order_uc"),)

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    kitting_job_id = db.Column(
        db.String(36), db.ForeignKey("kitting_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order = db.Column(db.Integer, nullable=False)  # >= 1, gaps allowed
    name = db.Column(db.String(256), nullable=False)
    expected_seconds = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<RouteStep {self.order}: {self.name}>"

    def to_snapshot(self) -> RouteStepSnapshot:
        return RouteStepSnapshot(order=self.order, name=self.name, expected_seconds=self.expected_seconds)


class Scenario(db.Model):
    """A named set of hypothetical changes layered over production."""
    __tablename__ = "scenarios"

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    name = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    committed_at = db.Column(db.DateTime, nullable=True)

    changes = db.relationship(
        "ScenarioChange",
        backref="scenario",
        cascade="all, delete-orphan",
        order_by="ScenarioChange.sequence",
    )
    delays = db.relationship(
        "JobDelay",
        backref="scenario",
        cascade="all, delete-orphan",
        order_by="JobDelay.created_at",
    )

    def __repr__(self):
        return f"<Scenario {self.name} active={self.is_active}>"

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'committed_at': self.committed_at.isoformat() if self.committed_at else None,
            'change_count': len(self.changes),
        }


class ScenarioChange(db.Model):
    __tablename__ = "scenario_changes"

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    scenario_id = db.Column(
        db.String(36), db.ForeignKey("scenarios.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Replay order within the scenario
    sequence = db.Column(db.Integer, nullable=False)
    job_id = db.Column(db.String(36), nullable=True)  # None for ADD
    operation = db.Column(db.String(16), nullable=False)  # ADD / MODIFY / DELETE
    change_data = db.Column(db.JSON, nullable=True)
    original_data = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("scenario_id", "sequence", name="_scenario_sequence_uc"),
    )

    def __repr__(self):
        return f"<ScenarioChange {self.sequence} {self.operation} {self.job_id}>"

    def to_dict(self):
        return {
            'id': self.id,
            'scenario_id': self.scenario_id,
            'sequence': self.sequence,
            'job_id': self.job_id,
            'operation': self.operation,
            'change_data': self.change_data,
            'original_data': self.original_data,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class JobDelay(db.Model):
    """Pseudo-step injected into a job's route; scenario_id None means production."""
    __tablename__ = "job_delays"

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    scenario_id = db.Column(
        db.String(36), db.ForeignKey("scenarios.id", ondelete="CASCADE"), nullable=True, index=True
    )
    # Not a foreign key: scenario delays may target jobs that only exist in the scenario
    job_id = db.Column(db.String(36), nullable=False, index=True)
    name = db.Column(db.String(256), nullable=False)
    duration = db.Column(db.Integer, nullable=False)  # seconds
    insert_after = db.Column(db.Integer, nullable=False, default=0)  # step order, 0 = before first step
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<JobDelay {self.name} job={self.job_id} after={self.insert_after}>"

    def to_snapshot(self) -> DelaySnapshot:
        return DelaySnapshot(
            id=self.id,
            job_id=self.job_id,
            name=self.name,
            duration_seconds=self.duration,
            insert_after=self.insert_after,
            scenario_id=self.scenario_id,
            created_at=self.created_at,
        )

    def to_dict(self):
        return {
            'id': self.id,
            'scenario_id': self.scenario_id,
            'job_id': self.job_id,
            'name': self.name,
            'duration': self.duration,
            'insert_after': self.insert_after,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class JobProgress(db.Model):
    """Shared execution state of one job across all of its stations."""
    __tablename__ = "job_progress"

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    job_id = db.Column(
        db.String(36), db.ForeignKey("kitting_jobs.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    # Counter of open stations; only ever changed by UPDATE ... SET n = n +/- 1
    next_station_number = db.Column(db.Integer, nullable=False, default=0)
    completed_kits = db.Column(db.Integer, nullable=False, default=0)
    remaining_kits = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    start_time = db.Column(db.DateTime, nullable=True)
    end_time = db.Column(db.DateTime, nullable=True)

    kit_executions = db.relationship(
        "KitExecution",
        backref="job_progress",
        cascade="all, delete-orphan",
        order_by="KitExecution.kit_number",
    )

    def __repr__(self):
        return f"<JobProgress {self.job_id} stations={self.next_station_number} done={self.completed_kits}>"

    def to_dict(self):
        return {
            'id': self.id,
            'job_id': self.job_id,
            'next_station_number': self.next_station_number,
            'completed_kits': self.completed_kits,
            'remaining_kits': self.remaining_kits,
            'is_active': self.is_active,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
        }


class KitExecution(db.Model):
    """One kit built at one station. Rows are append-only."""
    __tablename__ = "kit_executions"

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    job_progress_id = db.Column(
        db.String(36), db.ForeignKey("job_progress.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kit_number = db.Column(db.Integer, nullable=False)
    station_number = db.Column(db.Integer, nullable=True)
    station_name = db.Column(db.String(64), nullable=True)
    start_time = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    end_time = db.Column(db.DateTime, nullable=True)
    actual_duration = db.Column(db.Integer, nullable=True)  # seconds
    completed = db.Column(db.Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<KitExecution kit={self.kit_number} station={self.station_name} completed={self.completed}>"

    def to_dict(self):
        return {
            'id': self.id,
            'job_progress_id': self.job_progress_id,
            'kit_number': self.kit_number,
            'station_number': self.station_number,
            'station_name': self.station_name,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'actual_duration': self.actual_duration,
            'completed': self.completed,
        }
