"""
Tests for the scenario overlay engine (pure replay, no database).
"""
from datetime import date

import pytest

from kitplan.errors import InvalidOperationSequence, InvalidReference, ValidationError
from kitplan.scenarios.engine import ADDED, MODIFIED, ChangeRecord, ScenarioEngine
from kitplan.scheduling.snapshots import DelaySnapshot, JobSnapshot, RouteStepSnapshot


@pytest.fixture
def production():
    return [
        JobSnapshot(
            id="job-1",
            job_number="J-1",
            ordered_quantity=10,
            scheduled_date=date(2024, 1, 1),
            route_steps=(RouteStepSnapshot(1, "Pick", 600), RouteStepSnapshot(2, "Pack", 900)),
        ),
        JobSnapshot(id="job-2", job_number="J-2", ordered_quantity=5),
    ]


def change(sequence, operation, job_id=None, **data):
    return ChangeRecord(id=f"chg-{sequence}", sequence=sequence, operation=operation, job_id=job_id, change_data=data)


class TestMaterialize:

    def test_no_changes_returns_production(self, production):
        assert ScenarioEngine.materialize([], production) == production

    def test_add_appends_new_job(self, production):
        result = ScenarioEngine.materialize(
            [change(1, 'ADD', id="job-3", jobNumber="J-3", routeSteps=[{"name": "Pick", "expectedSeconds": 300}])],
            production,
        )
        added = result[-1]
        assert [job.id for job in result] == ["job-1", "job-2", "job-3"]
        assert added.job_number == "J-3"
        assert added.route_steps == (RouteStepSnapshot(1, "Pick", 300),)
        assert added.scenario_state == ADDED

    def test_add_without_id_uses_change_id(self, production):
        result = ScenarioEngine.materialize([change(1, 'ADD', job_number="J-9")], production)
        assert result[-1].id == "chg-1"

    def test_modify_overwrites_only_present_fields(self, production):
        result = ScenarioEngine.materialize([change(1, 'MODIFY', "job-1", orderedQuantity=50)], production)
        modified = result[0]
        assert modified.ordered_quantity == 50
        assert modified.route_steps == production[0].route_steps
        assert modified.job_number == "J-1"
        assert modified.scenario_state == MODIFIED

    def test_later_change_wins(self, production):
        result = ScenarioEngine.materialize(
            [change(2, 'MODIFY', "job-1", ordered_quantity=30), change(1, 'MODIFY', "job-1", ordered_quantity=20)],
            production,
        )
        assert result[0].ordered_quantity == 30

    def test_modify_of_added_job_stays_added(self, production):
        result = ScenarioEngine.materialize(
            [change(1, 'ADD', id="job-3"), change(2, 'MODIFY', "job-3", station_count=2)],
            production,
        )
        assert result[-1].station_count == 2
        assert result[-1].scenario_state == ADDED

    def test_delete_removes_job(self, production):
        result = ScenarioEngine.materialize([change(1, 'DELETE', "job-2")], production)
        assert [job.id for job in result] == ["job-1"]

    def test_production_snapshots_untouched(self, production):
        original = list(production)
        ScenarioEngine.materialize(
            [change(1, 'MODIFY', "job-1", ordered_quantity=99), change(2, 'DELETE', "job-2")],
            production,
        )
        assert production == original
        assert production[0].ordered_quantity == 10

    def test_idempotent(self, production):
        changes = [
            change(1, 'ADD', id="job-3", ordered_quantity=4),
            change(2, 'MODIFY', "job-1", setup=120),
            change(3, 'DELETE', "job-2"),
        ]
        first = ScenarioEngine.materialize(changes, production)
        second = ScenarioEngine.materialize(changes, production)
        assert first == second


class TestMaterializeErrors:

    def test_modify_after_delete(self, production):
        with pytest.raises(InvalidOperationSequence):
            ScenarioEngine.materialize(
                [change(1, 'DELETE', "job-2"), change(2, 'MODIFY', "job-2", ordered_quantity=1)],
                production,
            )

    def test_add_after_delete_of_same_id(self, production):
        with pytest.raises(InvalidOperationSequence):
            ScenarioEngine.materialize([change(1, 'DELETE', "job-2"), change(2, 'ADD', id="job-2")], production)

    def test_add_existing_id(self, production):
        with pytest.raises(InvalidOperationSequence):
            ScenarioEngine.materialize([change(1, 'ADD', id="job-1")], production)

    def test_modify_unknown_job(self, production):
        with pytest.raises(InvalidReference):
            ScenarioEngine.materialize([change(1, 'MODIFY', "nope", ordered_quantity=1)], production)

    def test_unknown_field(self, production):
        with pytest.raises(ValidationError):
            ScenarioEngine.materialize([change(1, 'MODIFY', "job-1", colour="red")], production)

    def test_unknown_operation(self, production):
        with pytest.raises(ValidationError):
            ScenarioEngine.materialize([change(1, 'RENAME', "job-1")], production)

    def test_modify_requires_job_id(self, production):
        with pytest.raises(ValidationError):
            ScenarioEngine.materialize([change(1, 'MODIFY', None, ordered_quantity=1)], production)

    def test_bad_route_step_order(self, production):
        steps = [{"order": 2, "name": "Pack", "expected_seconds": 60}, {"order": 1, "name": "Pick", "expected_seconds": 60}]
        with pytest.raises(ValidationError):
            ScenarioEngine.materialize([change(1, 'MODIFY', "job-1", route_steps=steps)], production)

    def test_malformed_start_time(self, production):
        with pytest.raises(ValidationError):
            ScenarioEngine.materialize([change(1, 'MODIFY', "job-1", scheduledStartTime="9am")], production)

    def test_blank_start_time_clears_it(self, production):
        result = ScenarioEngine.materialize(
            [change(1, 'MODIFY', "job-1", scheduled_start_time="08:15"), change(2, 'MODIFY', "job-1", scheduled_start_time="")],
            production,
        )
        assert result[0].scheduled_start_time is None


def test_delays_for_job_merges_production_and_scenario():
    production_delay = DelaySnapshot(id="p", job_id="job-1", name="p", duration_seconds=60, insert_after=1)
    scenario_delay = DelaySnapshot(id="s", job_id="job-1", name="s", duration_seconds=60, insert_after=1,
                                   scenario_id="scn")
    other_job = DelaySnapshot(id="o", job_id="job-2", name="o", duration_seconds=60, insert_after=0)

    merged = ScenarioEngine.delays_for_job("job-1", [production_delay, other_job], [scenario_delay])
    assert [delay.id for delay in merged] == ["p", "s"]
