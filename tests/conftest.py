"""
Shared fixtures: an application on in-memory SQLite plus small factories for
shifts and jobs.
"""
from datetime import date

import pytest

from kitplan import create_app
from kitplan.models import KittingJob, RouteStep, Shift, db

MONDAY = date(2024, 1, 1)


@pytest.fixture
def app():
    """Create Flask application for testing."""
    app = create_app(database_uri='sqlite:///:memory:')
    app.config['TESTING'] = True
    app.config['ADMIN_PIN'] = '4321'

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def make_shift(app):
    def _make_shift(name="First", start_time="07:00", end_time="15:00", break_start="11:00",
                    break_duration=30, is_active=True, order=1, shift_id=None):
        shift = Shift(
            id=shift_id or name.lower(),
            name=name,
            start_time=start_time,
            end_time=end_time,
            break_start=break_start,
            break_duration=break_duration,
            is_active=is_active,
            order=order,
        )
        db.session.add(shift)
        db.session.commit()
        return shift
    return _make_shift


@pytest.fixture
def make_job(app):
    def _make_job(job_id, steps=((1, "Pick", 3600), (2, "Pack", 3600), (3, "Label", 1800)),
                  scheduled_date=MONDAY, scheduled_start_time="07:00", **fields):
        job = KittingJob(
            id=job_id,
            job_number=fields.pop('job_number', job_id.upper()),
            customer_name=fields.pop('customer_name', "Acme"),
            scheduled_date=scheduled_date,
            scheduled_start_time=scheduled_start_time,
            ordered_quantity=fields.pop('ordered_quantity', 10),
            allowed_shift_ids=fields.pop('allowed_shift_ids', []),
            **fields,
        )
        job.route_steps = [RouteStep(order=order, name=name, expected_seconds=seconds) for order, name, seconds in steps]
        db.session.add(job)
        db.session.commit()
        return job
    return _make_job
