"""
API routes for scheduling, scenarios and execution stations.

Thin JSON wrappers: every route parses its input, calls one service
operation and serialises the result. Domain errors are turned into
responses by the blueprint's error handler.
"""
from datetime import date

from flask import current_app, jsonify, request

from kitplan.api import api_bp
from kitplan.errors import InvalidReference, ValidationError
from kitplan.logging_config import get_logger
from kitplan.models import KittingJob
from kitplan.planning import service as planning_service
from kitplan.scenarios import service as scenario_service
from kitplan.scheduling.calculator import summarize_job_duration
from kitplan.scheduling.calendar import productive_seconds_per_day, select_shifts
from kitplan.scheduling.preview import preview_scenario, timeline_frame
from kitplan.scheduling.service import get_production_schedule, get_scenario_schedule, load_shift_snapshots
from kitplan.stations import coordinator
from kitplan.stations.lock import job_lock_manager

logger = get_logger(__name__)


def _reference_date():
    value = request.args.get('reference_date')
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"reference_date must be in YYYY-MM-DD format, got {value!r}")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _flag(name: str, default: str = '') -> bool:
    return request.args.get(name, default).lower() in ('1', 'true', 'yes')


@api_bp.route("/shifts", methods=["GET"])
def list_shifts():
    """
    Shifts plus the productive seconds per day of the active ones.

    Query params:
        active_only: only return active shifts
    """
    shifts = planning_service.list_shifts(active_only=_flag('active_only'))
    active = select_shifts(load_shift_snapshots())
    return jsonify({
        "shifts": [shift.to_dict() for shift in shifts],
        "productive_seconds_per_day": productive_seconds_per_day(active),
    }), 200


@api_bp.route("/shifts/<shift_id>/toggle", methods=["POST"])
def toggle_shift(shift_id):
    """Body (optional): {"is_active": bool}; without it the flag is flipped."""
    data = _json_body()
    is_active = data.get('is_active', data.get('isActive'))
    return jsonify(planning_service.toggle_shift(shift_id, is_active).to_dict()), 200


@api_bp.route("/shifts/<shift_id>", methods=["PATCH"])
def update_shift(shift_id):
    return jsonify(planning_service.update_shift(shift_id, _json_body()).to_dict()), 200


@api_bp.route("/jobs", methods=["GET"])
def list_jobs():
    jobs = planning_service.list_jobs(status=request.args.get('status'))
    return jsonify({"jobs": [job.to_dict() for job in jobs]}), 200


@api_bp.route("/jobs", methods=["POST"])
def create_job():
    return jsonify(planning_service.create_job(_json_body()).to_dict()), 201


@api_bp.route("/jobs/<job_id>", methods=["PATCH"])
def update_job(job_id):
    return jsonify(planning_service.update_job(job_id, _json_body()).to_dict()), 200


@api_bp.route("/jobs/<job_id>/route-steps", methods=["PUT"])
def update_route_steps(job_id):
    """Body: {"route_steps": [{"order", "name", "expected_seconds"}, ...]}"""
    data = _json_body()
    steps = data.get('route_steps', data.get('routeSteps'))
    job = planning_service.update_route_steps(job_id, steps)
    return jsonify({"job_id": job_id, "route_steps": job.to_dict()['route_steps']}), 200


@api_bp.route("/jobs/<job_id>/schedule", methods=["GET"])
def job_schedule(job_id):
    """
    Timeline for one job.

    Query params:
        scenario_id: compute the scenario view instead of production
        reference_date: start date for jobs without a scheduled date
        format: "records" returns the tabular export instead of items
    """
    scenario_id = request.args.get('scenario_id')
    reference_date = _reference_date()

    if scenario_id:
        timeline = get_scenario_schedule(scenario_id, job_id, reference_date=reference_date)
    else:
        timeline = get_production_schedule(job_id, reference_date=reference_date)

    if request.args.get('format') == 'records':
        frame = timeline_frame(timeline)
        for column in ("Start", "End"):
            frame[column] = frame[column].map(lambda value: value.isoformat())
        frame = frame.astype(object).where(frame.notna(), None)
        return jsonify({
            "job_id": job_id,
            "scenario_id": scenario_id,
            "rows": frame.to_dict(orient="records"),
        }), 200

    return jsonify(timeline.to_dict()), 200


@api_bp.route("/jobs/<job_id>/duration", methods=["GET"])
def job_duration(job_id):
    job = KittingJob.query.get(job_id)
    if job is None:
        raise InvalidReference(f"Job {job_id} not found", job_id=job_id)
    return jsonify({"job_id": job_id, **summarize_job_duration(job.to_snapshot())}), 200


@api_bp.route("/scenarios", methods=["GET"])
def list_scenarios():
    include_committed = _flag('include_committed')
    scenarios = scenario_service.list_scenarios(include_committed=include_committed)
    return jsonify({"scenarios": [scenario.to_dict() for scenario in scenarios]}), 200


@api_bp.route("/scenarios", methods=["POST"])
def create_scenario():
    data = _json_body()
    scenario = scenario_service.create_scenario(data.get('name'), data.get('description'))
    return jsonify(scenario.to_dict()), 201


@api_bp.route("/scenarios/<scenario_id>/activate", methods=["POST"])
def activate_scenario(scenario_id):
    scenario = scenario_service.activate_scenario(scenario_id)
    return jsonify(scenario.to_dict()), 200


@api_bp.route("/scenarios/<scenario_id>/deactivate", methods=["POST"])
def deactivate_scenario(scenario_id):
    scenario = scenario_service.deactivate_scenario(scenario_id)
    return jsonify(scenario.to_dict()), 200


@api_bp.route("/scenarios/<scenario_id>/changes", methods=["GET"])
def list_changes(scenario_id):
    changes = scenario_service.list_changes(scenario_id)
    return jsonify({"changes": [change.to_dict() for change in changes]}), 200


@api_bp.route("/scenarios/<scenario_id>/changes", methods=["POST"])
def record_change(scenario_id):
    """Body: {"operation": "ADD|MODIFY|DELETE", "job_id": ..., "change_data": {...}}"""
    data = _json_body()
    change = scenario_service.record_change(
        scenario_id,
        data.get('operation'),
        job_id=data.get('job_id'),
        change_data=data.get('change_data'),
    )
    return jsonify(change.to_dict()), 201


@api_bp.route("/scenarios/<scenario_id>/preview", methods=["GET"])
def scenario_preview(scenario_id):
    show_all = _flag('show_all')
    return jsonify(preview_scenario(scenario_id, reference_date=_reference_date(), show_all=show_all)), 200


@api_bp.route("/scenarios/<scenario_id>/commit", methods=["POST"])
def commit_scenario(scenario_id):
    return jsonify(scenario_service.commit_scenario(scenario_id)), 200


@api_bp.route("/scenarios/<scenario_id>", methods=["DELETE"])
def discard_scenario(scenario_id):
    return jsonify(scenario_service.discard_scenario(scenario_id)), 200


@api_bp.route("/delays", methods=["GET"])
def list_delays():
    include_production = request.args.get('include_production', 'true').lower() not in ('0', 'false', 'no')
    delays = scenario_service.list_delays(
        job_id=request.args.get('job_id'),
        scenario_id=request.args.get('scenario_id'),
        include_production=include_production,
    )
    return jsonify({"delays": [delay.to_dict() for delay in delays]}), 200


@api_bp.route("/delays", methods=["POST"])
def add_delay():
    """Body: {"job_id", "name", "duration" (seconds), "insert_after", "scenario_id"?}"""
    data = _json_body()
    delay = scenario_service.add_delay(
        job_id=data.get('job_id'),
        name=data.get('name'),
        duration=data.get('duration'),
        insert_after=data.get('insert_after', 0),
        scenario_id=data.get('scenario_id'),
    )
    return jsonify(delay.to_dict()), 201


@api_bp.route("/delays/<delay_id>", methods=["DELETE"])
def remove_delay(delay_id):
    scenario_service.remove_delay(delay_id)
    return jsonify({"success": True, "delay_id": delay_id}), 200


@api_bp.route("/jobs/<job_id>/assign-station", methods=["POST"])
def assign_station(job_id):
    return jsonify(coordinator.assign_station(job_id)), 200


@api_bp.route("/jobs/<job_id>/release-station", methods=["POST"])
def release_station(job_id):
    data = _json_body()
    return jsonify(coordinator.release_station(job_id, data.get('station_number'))), 200


@api_bp.route("/stations/reset", methods=["POST"])
def reset_stations():
    """Manual recovery for stations that closed without releasing. Requires the admin PIN."""
    data = _json_body()
    if str(data.get('pin', '')) != str(current_app.config.get('ADMIN_PIN')):
        logger.warning("Station reset rejected: bad admin PIN")
        return jsonify({"error": "Invalid admin PIN"}), 403
    reset = coordinator.reset_all_stations()
    return jsonify({"success": True, "rows_reset": reset}), 200


@api_bp.route("/stations/locks", methods=["GET"])
def station_lock_status():
    """Jobs whose station counter is being updated right now."""
    return jsonify(job_lock_manager.get_status(request.args.get('job_id'))), 200


@api_bp.route("/jobs/<job_id>/progress", methods=["GET"])
def job_progress(job_id):
    return jsonify(coordinator.get_progress(job_id)), 200


@api_bp.route("/jobs/<job_id>/kits", methods=["POST"])
def start_kit(job_id):
    data = _json_body()
    execution = coordinator.record_kit_start(job_id, station_number=data.get('station_number'))
    return jsonify(execution.to_dict()), 201


@api_bp.route("/jobs/<job_id>/kits/complete", methods=["POST"])
def complete_kit(job_id):
    data = _json_body()
    result = coordinator.record_kit_completion(
        job_id,
        kit_execution_id=data.get('kit_execution_id'),
        station_number=data.get('station_number'),
        actual_duration=data.get('actual_duration'),
    )
    return jsonify(result), 200
