"""
Availability Blueprint.

Endpoints:
  GET  /availability/staff?date=&start_time=&end_time=
  GET  /availability/vehicles?date=&start_time=&end_time=
  POST /availability/staff/<id>/unavailability     {start_ts, end_ts, reason}
  POST /availability/vehicles/<id>/blackouts       {start_ts, end_ts, reason}

Recording a blackout flags the Loom instances it affects; the response lists
their ids.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import rabs.services.availability_service as avail
from rabs.core.exceptions import NotFoundError, ValidationError
from rabs.models import db
from rabs.utils.errors import E, api_error
from rabs.utils.helpers import parse_date, parse_time

logger = logging.getLogger(__name__)

availability_bp = Blueprint("availability", __name__, url_prefix="/api/v1/availability")


@availability_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@availability_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    db.session.rollback()
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


def _window_args():
    on_date = parse_date(request.args.get("date"))
    if not on_date:
        raise ValidationError("date is required (YYYY-MM-DD)")
    try:
        start = parse_time(request.args.get("start_time"))
        end = parse_time(request.args.get("end_time"))
    except ValueError as exc:
        raise ValidationError(str(exc)) from None
    if end <= start:
        raise ValidationError("end_time must be after start_time")
    return on_date, start, end


@availability_bp.route("/staff", methods=["GET"])
def available_staff():
    on_date, start, end = _window_args()
    staff = avail.get_available_staff(on_date, start, end)
    return jsonify({"items": [s.to_dict() for s in staff], "total": len(staff)})


@availability_bp.route("/vehicles", methods=["GET"])
def available_vehicles():
    on_date, start, end = _window_args()
    vehicles = avail.get_available_vehicles(on_date, start, end)
    return jsonify({"items": [v.to_dict() for v in vehicles], "total": len(vehicles)})


@availability_bp.route("/staff/<int:staff_id>/unavailability", methods=["POST"])
def add_staff_unavailability(staff_id):
    data = request.get_json(silent=True) or {}
    if not data.get("start_ts") or not data.get("end_ts"):
        return api_error(E.VALIDATION_REQUIRED, "start_ts and end_ts are required")
    result = avail.create_staff_unavailability(
        staff_id, data["start_ts"], data["end_ts"], reason=data.get("reason", ""),
    )
    return jsonify(result), 201


@availability_bp.route("/vehicles/<int:vehicle_id>/blackouts", methods=["POST"])
def add_vehicle_blackout(vehicle_id):
    data = request.get_json(silent=True) or {}
    if not data.get("start_ts") or not data.get("end_ts"):
        return api_error(E.VALIDATION_REQUIRED, "start_ts and end_ts are required")
    result = avail.create_vehicle_blackout(
        vehicle_id, data["start_ts"], data["end_ts"], reason=data.get("reason", ""),
    )
    return jsonify(result), 201
