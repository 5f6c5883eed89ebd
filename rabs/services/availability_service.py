"""
Availability service.

Answers "is this staff member / vehicle free for this time window?" and
records new staff unavailability and vehicle blackouts.

Every interval check, in Python and in SQL, uses the same half-open overlap
rule: ``a_start < b_end and a_end > b_start``.  Ranges that only touch at an
endpoint do not overlap.

Recording a blackout flags the Loom instances it hits (status
``needs_attention`` plus an ``instance_flagged`` audit row); it never
reassigns anything on its own.
"""

import logging
from datetime import datetime

from sqlalchemy import and_, select

from rabs.core.exceptions import NotFoundError, ValidationError
from rabs.models import db
from rabs.models.audit import write_loom_audit
from rabs.models.loom import LoomInstance, ShiftStatus, StaffShift, StepStatus, VehicleRun
from rabs.models.roster import Staff, StaffUnavailability, Vehicle, VehicleBlackout
from rabs.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Overlap predicate
# ═════════════════════════════════════════════════════════════════════════════


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    """True when half-open ranges [a_start, a_end) and [b_start, b_end) intersect."""
    return a_start < b_end and a_end > b_start


def overlap_clause(col_start, col_end, start, end):
    """SQL form of :func:`overlaps` for a row's ``[col_start, col_end)``."""
    return and_(col_start < end, col_end > start)


def _window(on_date, start_time, end_time):
    return datetime.combine(on_date, start_time), datetime.combine(on_date, end_time)


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


def is_staff_available(staff_id: int, on_date, start_time, end_time) -> bool:
    """False if the staff member has an unavailability overlapping the window."""
    start, end = _window(on_date, start_time, end_time)
    blocking = db.session.execute(
        select(StaffUnavailability.id).where(
            StaffUnavailability.staff_id == staff_id,
            overlap_clause(StaffUnavailability.start_ts, StaffUnavailability.end_ts, start, end),
        ).limit(1)
    ).first()
    return blocking is None


def is_vehicle_available(vehicle_id: int, on_date, start_time, end_time) -> bool:
    """False if the vehicle has a blackout overlapping the window."""
    start, end = _window(on_date, start_time, end_time)
    blocking = db.session.execute(
        select(VehicleBlackout.id).where(
            VehicleBlackout.vehicle_id == vehicle_id,
            overlap_clause(VehicleBlackout.start_ts, VehicleBlackout.end_ts, start, end),
        ).limit(1)
    ).first()
    return blocking is None


def has_overlapping_shift(staff_id: int, start_ts, end_ts) -> bool:
    """True if the staff member already holds a planned shift overlapping the range."""
    clash = db.session.execute(
        select(StaffShift.id).where(
            StaffShift.staff_id == staff_id,
            StaffShift.status == ShiftStatus.PLANNED.value,
            overlap_clause(StaffShift.start_ts, StaffShift.end_ts, start_ts, end_ts),
        ).limit(1)
    ).first()
    return clash is not None


def get_available_staff(on_date, start_time, end_time) -> list[Staff]:
    """Active staff with no unavailability overlapping the window."""
    start, end = _window(on_date, start_time, end_time)
    blocked = select(StaffUnavailability.staff_id).where(
        overlap_clause(StaffUnavailability.start_ts, StaffUnavailability.end_ts, start, end),
    )
    stmt = (
        select(Staff)
        .where(Staff.active.is_(True), Staff.id.not_in(blocked))
        .order_by(Staff.id)
    )
    return list(db.session.execute(stmt).scalars())


def get_available_vehicles(on_date, start_time, end_time) -> list[Vehicle]:
    """Active vehicles with no blackout overlapping the window."""
    start, end = _window(on_date, start_time, end_time)
    blocked = select(VehicleBlackout.vehicle_id).where(
        overlap_clause(VehicleBlackout.start_ts, VehicleBlackout.end_ts, start, end),
    )
    stmt = (
        select(Vehicle)
        .where(Vehicle.active.is_(True), Vehicle.id.not_in(blocked))
        .order_by(Vehicle.id)
    )
    return list(db.session.execute(stmt).scalars())


# ═════════════════════════════════════════════════════════════════════════════
# Recording blackouts
# ═════════════════════════════════════════════════════════════════════════════


def _parse_range(start_ts, end_ts):
    try:
        start, end = parse_datetime(start_ts), parse_datetime(end_ts)
    except ValueError as exc:
        raise ValidationError(f"Invalid datetime: {exc}") from None
    if end <= start:
        raise ValidationError("end_ts must be after start_ts",
                              details={"start_ts": str(start_ts), "end_ts": str(end_ts)})
    return start, end


def _flag_instance(instance: LoomInstance, *, field: str, reason: str, subject: dict):
    before = {"status": instance.status, field: getattr(instance, field)}
    setattr(instance, field, StepStatus.NEEDS_ATTENTION.value)
    instance.refresh_status()
    write_loom_audit(
        instance_id=instance.id,
        action="instance_flagged",
        before=before,
        after={"status": instance.status, field: getattr(instance, field),
               "reason": reason, **subject},
    )


def create_staff_unavailability(staff_id: int, start_ts, end_ts, reason: str = "") -> dict:
    """Record a staff blackout and flag instances where the staff member is rostered.

    Raises:
        NotFoundError: unknown staff member.
        ValidationError: bad range, or overlap with an existing unavailability.
    """
    staff = db.session.get(Staff, staff_id)
    if not staff:
        raise NotFoundError(resource="Staff", resource_id=staff_id)
    start, end = _parse_range(start_ts, end_ts)

    clash = db.session.execute(
        select(StaffUnavailability).where(
            StaffUnavailability.staff_id == staff_id,
            overlap_clause(StaffUnavailability.start_ts, StaffUnavailability.end_ts, start, end),
        ).limit(1)
    ).scalar_one_or_none()
    if clash:
        raise ValidationError(
            "Unavailability overlaps an existing record",
            details={"conflicting_id": clash.id},
        )

    record = StaffUnavailability(staff_id=staff_id, start_ts=start, end_ts=end, reason=reason or "")
    db.session.add(record)
    db.session.flush()

    affected = db.session.execute(
        select(StaffShift).where(
            StaffShift.staff_id == staff_id,
            StaffShift.status == ShiftStatus.PLANNED.value,
            overlap_clause(StaffShift.start_ts, StaffShift.end_ts, start, end),
        ).order_by(StaffShift.start_ts)
    ).scalars().all()

    flagged = []
    for shift in affected:
        instance = shift.instance
        if instance.id in flagged:
            continue
        _flag_instance(instance, field="staffing_status", reason="staff_unavailable",
                       subject={"staff_id": staff_id, "shift_id": shift.id})
        flagged.append(instance.id)

    db.session.commit()
    if flagged:
        logger.warning("Staff %s unavailability flagged %d instance(s)", staff_id, len(flagged))
    return {"unavailability": record.to_dict(), "flagged_instance_ids": flagged}


def create_vehicle_blackout(vehicle_id: int, start_ts, end_ts, reason: str = "") -> dict:
    """Record a vehicle blackout and flag instances with runs on that vehicle.

    Raises:
        NotFoundError: unknown vehicle.
        ValidationError: bad range, or overlap with an existing blackout.
    """
    vehicle = db.session.get(Vehicle, vehicle_id)
    if not vehicle:
        raise NotFoundError(resource="Vehicle", resource_id=vehicle_id)
    start, end = _parse_range(start_ts, end_ts)

    clash = db.session.execute(
        select(VehicleBlackout).where(
            VehicleBlackout.vehicle_id == vehicle_id,
            overlap_clause(VehicleBlackout.start_ts, VehicleBlackout.end_ts, start, end),
        ).limit(1)
    ).scalar_one_or_none()
    if clash:
        raise ValidationError(
            "Blackout overlaps an existing record",
            details={"conflicting_id": clash.id},
        )

    record = VehicleBlackout(vehicle_id=vehicle_id, start_ts=start, end_ts=end, reason=reason or "")
    db.session.add(record)
    db.session.flush()

    candidates = db.session.execute(
        select(LoomInstance)
        .join(VehicleRun, VehicleRun.loom_instance_id == LoomInstance.id)
        .where(
            VehicleRun.vehicle_id == vehicle_id,
            LoomInstance.instance_date.between(start.date(), end.date()),
        )
        .distinct()
        .order_by(LoomInstance.instance_date, LoomInstance.id)
    ).scalars().all()

    flagged = []
    for instance in candidates:
        if not overlaps(instance.start_datetime(), instance.end_datetime(), start, end):
            continue
        _flag_instance(instance, field="vehicle_status", reason="vehicle_blackout",
                       subject={"vehicle_id": vehicle_id})
        flagged.append(instance.id)

    db.session.commit()
    if flagged:
        logger.warning("Vehicle %s blackout flagged %d instance(s)", vehicle_id, len(flagged))
    return {"blackout": record.to_dict(), "flagged_instance_ids": flagged}
