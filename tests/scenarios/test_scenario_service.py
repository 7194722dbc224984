"""
Tests for the scenario service: change recording, scenario schedules, commit
and discard against an in-memory database.
"""
from datetime import datetime
from unittest.mock import patch

import pytest

from kitplan.errors import CommitFailure, InvalidOperationSequence, InvalidReference, ValidationError
from kitplan.models import JobDelay, KittingJob, Scenario, ScenarioChange, db
from kitplan.scenarios import service
from kitplan.scenarios.engine import ScenarioEngine
from kitplan.scheduling.service import (
    get_production_schedule,
    get_scenario_schedule,
    load_change_records,
    load_production_jobs,
)


@pytest.fixture
def seeded(make_shift, make_job):
    make_shift()
    make_job("job-1")
    make_job("job-2", steps=((1, "Pick", 1800), (2, "Pack", 1800)))
    return service.create_scenario("Rush order", "What if the rush order lands Monday")


def jobs_by_id(snapshots):
    return {job.id: job for job in snapshots}


class TestScenarioManagement:

    def test_create_and_list(self, seeded):
        assert [scenario.id for scenario in service.list_scenarios()] == [seeded.id]

    def test_activate_deactivates_others(self, seeded):
        other = service.create_scenario("Other")
        service.activate_scenario(seeded.id)
        service.activate_scenario(other.id)

        assert db.session.get(Scenario, other.id).is_active is True
        assert db.session.get(Scenario, seeded.id).is_active is False

    def test_unknown_scenario(self, app):
        with pytest.raises(InvalidReference):
            service.record_change("missing", "DELETE", "job-1")


class TestRecordChange:

    def test_sequence_and_original_data(self, seeded):
        first = service.record_change(seeded.id, "MODIFY", "job-1", {"orderedQuantity": 40})
        second = service.record_change(seeded.id, "DELETE", "job-2")

        assert (first.sequence, second.sequence) == (1, 2)
        assert first.original_data['ordered_quantity'] == 10
        assert first.change_data == {"orderedQuantity": 40}
        assert second.original_data['id'] == "job-2"

    def test_add_has_no_job_id(self, seeded):
        change = service.record_change(seeded.id, "ADD", change_data={"job_number": "NEW"})
        assert change.job_id is None
        assert change.original_data is None

    def test_modify_after_delete_rejected_and_not_stored(self, seeded):
        service.record_change(seeded.id, "DELETE", "job-2")
        with pytest.raises(InvalidOperationSequence):
            service.record_change(seeded.id, "MODIFY", "job-2", {"setup": 60})
        assert ScenarioChange.query.filter_by(scenario_id=seeded.id).count() == 1

    def test_change_orphaning_production_delay_rejected(self, seeded):
        service.add_delay("job-1", "After label", 60, insert_after=3)
        with pytest.raises(InvalidReference):
            service.record_change(seeded.id, "MODIFY", "job-1", {
                "routeSteps": [{"order": 1, "name": "Pick", "expected_seconds": 60}],
            })

        assert ScenarioChange.query.filter_by(scenario_id=seeded.id).count() == 0
        assert get_scenario_schedule(seeded.id, "job-1").job_end == get_production_schedule("job-1").job_end

    def test_change_orphaning_scenario_delay_rejected(self, seeded):
        service.add_delay("job-2", "Hold", 60, insert_after=2, scenario_id=seeded.id)
        with pytest.raises(InvalidReference):
            service.record_change(seeded.id, "MODIFY", "job-2", {
                "route_steps": [{"order": 1, "name": "Pick", "expected_seconds": 60}],
            })

    def test_change_keeping_delay_step_accepted(self, seeded):
        service.add_delay("job-1", "After pick", 60, insert_after=1)
        change = service.record_change(seeded.id, "MODIFY", "job-1", {
            "route_steps": [{"order": 1, "name": "Pick", "expected_seconds": 60}],
        })
        assert change.sequence == 1

    @pytest.mark.parametrize("start_time", ["9am", "25:00", "7"])
    def test_malformed_start_time_rejected(self, seeded, start_time):
        with pytest.raises(ValidationError):
            service.record_change(seeded.id, "MODIFY", "job-1", {"scheduledStartTime": start_time})
        with pytest.raises(ValidationError):
            service.record_change(seeded.id, "ADD", change_data={"job_number": "NEW",
                                                                 "scheduled_start_time": start_time})
        assert ScenarioChange.query.filter_by(scenario_id=seeded.id).count() == 0

    def test_production_untouched_by_recording(self, seeded):
        service.record_change(seeded.id, "MODIFY", "job-1", {"ordered_quantity": 40})
        assert db.session.get(KittingJob, "job-1").ordered_quantity == 10


class TestScenarioSchedule:

    def test_scenario_delay_only_affects_scenario_view(self, seeded):
        service.add_delay("job-1", "Material late", 3600, insert_after=1, scenario_id=seeded.id)

        production = get_production_schedule("job-1")
        scenario = get_scenario_schedule(seeded.id, "job-1")

        assert [item.step.name for item in production.items] == ["Pick", "Pack", "Label"]
        assert [item.step.name for item in scenario.items] == ["Pick", "Material late", "Pack", "Label"]
        assert production.job_end == datetime(2024, 1, 1, 9, 30)
        assert scenario.job_end == datetime(2024, 1, 1, 10, 30)

    def test_production_delays_apply_to_both_views(self, seeded):
        service.add_delay("job-1", "Changeover", 600, insert_after=0)
        assert get_production_schedule("job-1").items[0].step.name == "Changeover"
        assert get_scenario_schedule(seeded.id, "job-1").items[0].step.name == "Changeover"

    def test_added_job_only_in_scenario(self, seeded):
        service.record_change(seeded.id, "ADD", change_data={
            "id": "job-3", "scheduledDate": "2024-01-02", "scheduledStartTime": "07:00",
            "routeSteps": [{"name": "Pick", "expectedSeconds": 600}],
        })
        timeline = get_scenario_schedule(seeded.id, "job-3")
        assert timeline.job_end == datetime(2024, 1, 2, 7, 10)
        with pytest.raises(InvalidReference):
            get_production_schedule("job-3")

    def test_deleted_job_missing_from_scenario(self, seeded):
        service.record_change(seeded.id, "DELETE", "job-2")
        with pytest.raises(InvalidReference):
            get_scenario_schedule(seeded.id, "job-2")

    def test_delay_with_unknown_step(self, seeded):
        with pytest.raises(InvalidReference):
            service.add_delay("job-1", "Lost", 60, insert_after=9)


class TestCommit:

    def record_mixed_changes(self, scenario_id):
        service.record_change(scenario_id, "ADD", change_data={
            "id": "job-3", "job_number": "J-3", "scheduled_date": "2024-01-03",
            "route_steps": [{"order": 1, "name": "Pick", "expected_seconds": 1200}],
        })
        service.record_change(scenario_id, "MODIFY", "job-1", {
            "ordered_quantity": 25,
            "route_steps": [{"order": 1, "name": "Pick", "expected_seconds": 900},
                            {"order": 2, "name": "Pack", "expected_seconds": 900}],
        })
        service.record_change(scenario_id, "DELETE", "job-2")
        service.add_delay("job-1", "QA", 300, insert_after=2, scenario_id=scenario_id)
        service.add_delay("job-3", "Setup", 120, insert_after=0, scenario_id=scenario_id)

    def test_commit_round_trip(self, seeded):
        self.record_mixed_changes(seeded.id)
        expected = jobs_by_id(ScenarioEngine.materialize(load_change_records(seeded.id), load_production_jobs()))
        expected_end = get_scenario_schedule(seeded.id, "job-1").job_end

        summary = service.commit_scenario(seeded.id)

        assert summary['changes_applied'] == 3
        assert summary['delays_promoted'] == 2
        assert jobs_by_id(load_production_jobs()) == expected
        assert get_production_schedule("job-1").job_end == expected_end

    def test_commit_promotes_delays_and_closes_scenario(self, seeded):
        self.record_mixed_changes(seeded.id)
        service.activate_scenario(seeded.id)
        service.commit_scenario(seeded.id)

        scenario = db.session.get(Scenario, seeded.id)
        assert scenario.committed_at is not None
        assert scenario.is_active is False
        assert ScenarioChange.query.filter_by(scenario_id=seeded.id).count() == 0
        assert JobDelay.query.filter(JobDelay.scenario_id.is_(None)).count() == 2
        assert db.session.get(KittingJob, "job-2") is None

    def test_delays_of_deleted_jobs_are_dropped(self, seeded):
        service.add_delay("job-2", "Production hold", 60, insert_after=1)
        service.add_delay("job-2", "Scenario hold", 60, insert_after=1, scenario_id=seeded.id)
        service.record_change(seeded.id, "DELETE", "job-2")

        summary = service.commit_scenario(seeded.id)

        assert summary['delays_dropped'] == 1
        assert JobDelay.query.filter_by(job_id="job-2").count() == 0

    def test_commit_twice_rejected(self, seeded):
        service.commit_scenario(seeded.id)
        with pytest.raises(InvalidOperationSequence):
            service.commit_scenario(seeded.id)

    def test_failure_rolls_back_everything(self, seeded):
        self.record_mixed_changes(seeded.id)
        real_apply = service._apply_change
        calls = []

        def fail_on_second(change):
            calls.append(change.sequence)
            if len(calls) == 2:
                raise RuntimeError("database went away")
            real_apply(change)

        with patch('kitplan.scenarios.service._apply_change', side_effect=fail_on_second):
            with pytest.raises(CommitFailure):
                service.commit_scenario(seeded.id)

        assert db.session.get(KittingJob, "job-3") is None
        assert db.session.get(KittingJob, "job-1").ordered_quantity == 10
        assert ScenarioChange.query.filter_by(scenario_id=seeded.id).count() == 3
        assert db.session.get(Scenario, seeded.id).committed_at is None

    def test_stale_delay_rejected_before_writing(self, seeded):
        service.record_change(seeded.id, "MODIFY", "job-1", {
            "route_steps": [{"order": 1, "name": "Pick", "expected_seconds": 60}],
        })
        # Valid against the three production steps, stale once the scenario lands
        service.add_delay("job-1", "After label", 60, insert_after=3)

        with pytest.raises(InvalidReference):
            service.commit_scenario(seeded.id)
        assert len(db.session.get(KittingJob, "job-1").route_steps) == 3


class TestDiscard:

    def test_discard_removes_scenario_changes_and_delays(self, seeded):
        service.record_change(seeded.id, "MODIFY", "job-1", {"setup": 30})
        service.add_delay("job-1", "Scenario hold", 60, insert_after=1, scenario_id=seeded.id)
        service.add_delay("job-1", "Production hold", 60, insert_after=1)

        summary = service.discard_scenario(seeded.id)

        assert summary == {'scenario_id': seeded.id, 'changes_discarded': 1, 'delays_discarded': 1}
        assert db.session.get(Scenario, seeded.id) is None
        assert ScenarioChange.query.count() == 0
        assert [delay.name for delay in JobDelay.query.all()] == ["Production hold"]
        assert db.session.get(KittingJob, "job-1").setup == 0
