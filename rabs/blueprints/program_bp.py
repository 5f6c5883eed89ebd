"""
Program Blueprint: program lifecycle and enrollments.

Endpoints:
  GET  /programs                       list (``?active=true|false``)
  POST /programs                       create (+ instances in the current window)
  GET  /programs/<id>
  PUT  /programs/<id>                  update (schedule changes regenerate future instances)
  POST /programs/<id>/deactivate
  POST /programs/<id>/enrollments      {participant_id, start_date, end_date, billing_codes}

Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import rabs.services.program_service as ps
from rabs.core.exceptions import NotFoundError, ValidationError
from rabs.models import db
from rabs.models.roster import Program
from rabs.utils.errors import E, api_error

logger = logging.getLogger(__name__)

program_bp = Blueprint("programs", __name__, url_prefix="/api/v1/programs")


@program_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@program_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    db.session.rollback()
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@program_bp.route("", methods=["GET"])
def list_programs():
    q = Program.query
    active = request.args.get("active")
    if active is not None:
        q = q.filter(Program.active.is_(active.lower() == "true"))
    items = q.order_by(Program.name).all()
    return jsonify({"items": [p.to_dict() for p in items], "total": len(items)})


@program_bp.route("", methods=["POST"])
def create_program():
    data = request.get_json(silent=True) or {}
    if not data.get("name"):
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    program = ps.create_program(data)
    return jsonify(program.to_dict()), 201


@program_bp.route("/<int:program_id>", methods=["GET"])
def get_program(program_id):
    program = db.session.get(Program, program_id)
    if not program:
        raise NotFoundError(resource="Program", resource_id=program_id)
    return jsonify(program.to_dict())


@program_bp.route("/<int:program_id>", methods=["PUT"])
def update_program(program_id):
    data = request.get_json(silent=True) or {}
    return jsonify(ps.update_program(program_id, data))


@program_bp.route("/<int:program_id>/deactivate", methods=["POST"])
def deactivate_program(program_id):
    return jsonify(ps.deactivate_program(program_id))


@program_bp.route("/<int:program_id>/enrollments", methods=["POST"])
def enroll(program_id):
    data = request.get_json(silent=True) or {}
    if not data.get("participant_id"):
        return api_error(E.VALIDATION_REQUIRED, "participant_id is required")
    enrollment = ps.enroll_participant(
        program_id,
        data["participant_id"],
        start_date=data.get("start_date"),
        end_date=data.get("end_date"),
        billing_codes=data.get("billing_codes"),
    )
    return jsonify(enrollment.to_dict()), 201
