"""
Loom Blueprint: rolling window, per-instance planning and rebalancing.

Endpoints:
  Window:       GET  /loom/window-size
                POST /loom/generate                 {weeks}
                POST /loom/resize                   {weeks}
  Settings:     GET/PUT /loom/settings
  Instances:    GET  /loom/instances?start_date=&end_date=
                GET  /loom/instances/<id>
                POST /loom/instances/<id>/allocate-participants
                POST /loom/instances/<id>/assign-staff
                POST /loom/instances/<id>/assign-vehicles
                POST /loom/instances/<id>/reoptimize
  Rebalancing:  POST /loom/allocations/<id>/cancel  {cancellation_type}
                POST /loom/shifts/<id>/sick
  Jobs:         GET  /loom/jobs
                POST /loom/jobs/<name>/run
                PUT  /loom/jobs/<name>              {is_enabled}

Engine operations answer with the ``{success, message, data}`` envelope.
Insufficient staff or vehicles is HTTP 200 with ``success: false``; rejected
input is 400/404 with an ``error`` code.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from rabs.core.exceptions import NotFoundError, ValidationError
from rabs.services import (
    loom_allocation,
    loom_generator,
    loom_queries,
    loom_rebalancer,
    loom_settings,
)
from rabs.services.loom_window import compute_window
from rabs.services.scheduler_service import SchedulerService
from rabs.utils.errors import E, api_error, status_for

logger = logging.getLogger(__name__)

loom_bp = Blueprint("loom", __name__, url_prefix="/api/v1/loom")


def _respond(result):
    return jsonify(result.to_dict()), status_for(result.error)


def _weeks_from_body():
    data = request.get_json(silent=True) or {}
    return data.get("weeks")


# ── Error handlers ────────────────────────────────────────────────────────────


@loom_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@loom_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


# ═════════════════════════════════════════════════════════════════════════════
# Window + settings
# ═════════════════════════════════════════════════════════════════════════════


@loom_bp.route("/window-size", methods=["GET"])
def get_window_size():
    weeks = loom_settings.get_loom_window_size()
    window = compute_window(weeks)
    return jsonify({"success": True, "data": {"weeks": weeks, **window.to_dict()}})


@loom_bp.route("/generate", methods=["POST"])
def generate_window():
    weeks = _weeks_from_body()
    if weeks is None:
        weeks = loom_settings.get_loom_window_size()
    return _respond(loom_generator.generate_loom_window(weeks))


@loom_bp.route("/resize", methods=["POST"])
def resize_window():
    weeks = _weeks_from_body()
    if weeks is None:
        return api_error(E.VALIDATION_REQUIRED, "weeks is required")
    return _respond(loom_generator.resize_loom_window(weeks))


@loom_bp.route("/settings", methods=["GET"])
def get_settings():
    settings = loom_settings.get_loom_settings()
    return jsonify({"success": True, "data": settings.to_dict()})


@loom_bp.route("/settings", methods=["PUT"])
def update_settings():
    data = request.get_json(silent=True) or {}
    settings = loom_settings.update_loom_settings(
        window_weeks=data.get("window_weeks"),
        staff_ratio=data.get("staff_ratio"),
    )
    return jsonify({"success": True, "message": "Settings updated", "data": settings.to_dict()})


# ═════════════════════════════════════════════════════════════════════════════
# Instances
# ═════════════════════════════════════════════════════════════════════════════


@loom_bp.route("/instances", methods=["GET"])
def list_instances():
    start = request.args.get("start_date")
    end = request.args.get("end_date")
    if not start or not end:
        return api_error(E.VALIDATION_REQUIRED, "start_date and end_date are required")
    return _respond(loom_queries.get_loom_instances(start, end))


@loom_bp.route("/instances/<int:instance_id>", methods=["GET"])
def instance_details(instance_id):
    return _respond(loom_queries.get_loom_instance_details(instance_id))


@loom_bp.route("/instances/<int:instance_id>/allocate-participants", methods=["POST"])
def allocate_participants(instance_id):
    return _respond(loom_allocation.allocate_participants(instance_id))


@loom_bp.route("/instances/<int:instance_id>/assign-staff", methods=["POST"])
def assign_staff(instance_id):
    return _respond(loom_allocation.assign_staff(instance_id))


@loom_bp.route("/instances/<int:instance_id>/assign-vehicles", methods=["POST"])
def assign_vehicles(instance_id):
    return _respond(loom_allocation.assign_vehicles(instance_id))


@loom_bp.route("/instances/<int:instance_id>/reoptimize", methods=["POST"])
def reoptimize(instance_id):
    return _respond(loom_allocation.reoptimize_instance(instance_id))


# ═════════════════════════════════════════════════════════════════════════════
# Rebalancing
# ═════════════════════════════════════════════════════════════════════════════


@loom_bp.route("/allocations/<int:allocation_id>/cancel", methods=["POST"])
def cancel_allocation(allocation_id):
    data = request.get_json(silent=True) or {}
    cancellation_type = data.get("cancellation_type", "normal")
    return _respond(loom_rebalancer.handle_participant_cancellation(allocation_id, cancellation_type))


@loom_bp.route("/shifts/<int:shift_id>/sick", methods=["POST"])
def report_sick(shift_id):
    return _respond(loom_rebalancer.handle_staff_sickness(shift_id))


# ═════════════════════════════════════════════════════════════════════════════
# Jobs
# ═════════════════════════════════════════════════════════════════════════════


@loom_bp.route("/jobs", methods=["GET"])
def list_jobs():
    return jsonify({"success": True, "data": SchedulerService.list_jobs()})


@loom_bp.route("/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    outcome = SchedulerService.run_job(job_name)
    if outcome["status"] == "error":
        return api_error(E.NOT_FOUND, outcome["error"])
    return jsonify({"success": outcome["status"] == "success", "data": outcome})


@loom_bp.route("/jobs/<job_name>", methods=["PUT"])
def toggle_job(job_name):
    data = request.get_json(silent=True) or {}
    if "is_enabled" not in data:
        return api_error(E.VALIDATION_REQUIRED, "is_enabled is required")
    record = SchedulerService.toggle_job(job_name, bool(data["is_enabled"]))
    if record is None:
        return api_error(E.NOT_FOUND, f"Job {job_name} not found")
    return jsonify({"success": True, "data": record})
