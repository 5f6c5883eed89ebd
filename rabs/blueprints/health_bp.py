"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        liveness + app name
    GET /api/v1/health/ready  simple 200 for load balancers
    GET /api/v1/health/live   database check and Loom window summary
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select

from rabs.models import db
from rabs.models.loom import InstanceStatus, LoomInstance

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    return jsonify({"status": "ok", "app": "RABS Loom"}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe; always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Liveness check with database status and instance counts."""
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    if overall:
        counts = dict(db.session.execute(
            select(LoomInstance.status, func.count(LoomInstance.id)).group_by(LoomInstance.status)
        ).all())
        checks["loom"] = {
            "instances": sum(counts.values()),
            "needs_attention": counts.get(InstanceStatus.NEEDS_ATTENTION.value, 0),
        }

    checks["app"] = {
        "name": "RABS Loom",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
