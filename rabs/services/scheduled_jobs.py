"""
Scheduled Jobs.

Jobs:
    - loom_window_roll: keeps the Loom window full as days pass and
      plans every instance that is still pending.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from sqlalchemy import select

from rabs.models import db
from rabs.models.loom import InstanceStatus, LoomInstance
from rabs.services.loom_allocation import allocate_participants, assign_staff, assign_vehicles
from rabs.services.loom_generator import generate_loom_window
from rabs.services.loom_settings import get_loom_window_size
from rabs.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("loom_window_roll")
def roll_loom_window(app, today: date | None = None) -> dict[str, Any]:
    """Regenerate the Loom window and plan pending instances."""
    today = today or date.today()
    window = generate_loom_window(get_loom_window_size(), today)
    if not window.success:
        raise RuntimeError(window.message)

    pending_ids = db.session.execute(
        select(LoomInstance.id)
        .where(
            LoomInstance.status == InstanceStatus.PENDING.value,
            LoomInstance.instance_date >= today,
        )
        .order_by(LoomInstance.instance_date, LoomInstance.id)
    ).scalars().all()

    results = {
        "instances_created": window.data.get("instances_created", 0),
        "instances_planned": 0,
        "staffing_insufficient": 0,
        "vehicles_insufficient": 0,
        "errors": 0,
    }
    for instance_id in pending_ids:
        participants = allocate_participants(instance_id)
        if not participants.success:
            results["errors"] += 1
            logger.error("Instance %s: %s", instance_id, participants.message)
            continue
        staff = assign_staff(instance_id)
        if not staff.success:
            results["staffing_insufficient" if staff.error is None else "errors"] += 1
        vehicles = assign_vehicles(instance_id)
        if not vehicles.success:
            results["vehicles_insufficient" if vehicles.error is None else "errors"] += 1
        results["instances_planned"] += 1

    logger.info("Loom window roll: %s", results)
    return results
