"""Read-side projections of the Loom for dashboards and the instance drawer."""

import logging

from sqlalchemy import func, select

from rabs.core.exceptions import NotFoundError, ValidationError
from rabs.core.results import LoomResult
from rabs.models import db
from rabs.models.audit import LoomAuditLog
from rabs.models.loom import (
    AllocationStatus,
    LoomInstance,
    ParticipantAllocation,
    ShiftStatus,
    StaffShift,
    VehicleRun,
)
from rabs.utils.helpers import loom_step, parse_date

logger = logging.getLogger(__name__)


def _counts_by_instance(model, status_col, status, instance_ids) -> dict[int, int]:
    if not instance_ids:
        return {}
    stmt = (
        select(model.loom_instance_id, func.count(model.id))
        .where(model.loom_instance_id.in_(instance_ids))
        .group_by(model.loom_instance_id)
    )
    if status_col is not None:
        stmt = stmt.where(status_col == status)
    return dict(db.session.execute(stmt).all())


@loom_step("loading loom instances")
def get_loom_instances(start_date, end_date) -> LoomResult:
    """Instances dated between *start_date* and *end_date* inclusive, with counts."""
    start, end = parse_date(start_date), parse_date(end_date)
    if not start or not end:
        raise ValidationError("start_date and end_date are required (YYYY-MM-DD)")
    if end < start:
        raise ValidationError("end_date must not be before start_date")

    instances = db.session.execute(
        select(LoomInstance)
        .where(LoomInstance.instance_date.between(start, end))
        .order_by(LoomInstance.instance_date, LoomInstance.start_time, LoomInstance.id)
    ).scalars().all()

    ids = [i.id for i in instances]
    participants = _counts_by_instance(
        ParticipantAllocation, ParticipantAllocation.status, AllocationStatus.PLANNED.value, ids,
    )
    staff = _counts_by_instance(StaffShift, StaffShift.status, ShiftStatus.PLANNED.value, ids)
    vehicles = _counts_by_instance(VehicleRun, None, None, ids)

    rows = []
    for instance in instances:
        row = instance.to_dict()
        row["participant_count"] = participants.get(instance.id, 0)
        row["staff_count"] = staff.get(instance.id, 0)
        row["vehicle_count"] = vehicles.get(instance.id, 0)
        rows.append(row)

    return LoomResult.ok(
        f"Found {len(rows)} instances",
        instances=rows,
        start_date=start.isoformat(),
        end_date=end.isoformat(),
    )


@loom_step("loading loom instance details")
def get_loom_instance_details(instance_id) -> LoomResult:
    instance = db.session.get(LoomInstance, instance_id)
    if not instance:
        raise NotFoundError(resource="LoomInstance", resource_id=instance_id)

    audit = db.session.execute(
        select(LoomAuditLog)
        .where(LoomAuditLog.loom_instance_id == instance.id)
        .order_by(LoomAuditLog.timestamp.desc(), LoomAuditLog.id.desc())
    ).scalars().all()

    return LoomResult.ok(
        "Instance details",
        instance=instance.to_dict(),
        program=instance.program.to_dict() if instance.program else None,
        time_slots=[s.to_dict() for s in instance.time_slots],
        participants=[a.to_dict() for a in instance.allocations.order_by(ParticipantAllocation.id)],
        staff=[s.to_dict() for s in instance.shifts.order_by(StaffShift.id)],
        vehicles=[r.to_dict() for r in instance.vehicle_runs.order_by(VehicleRun.id)],
        audit_log=[entry.to_dict() for entry in audit],
    )
