"""
Loom Allocation Engine.

Per-instance steps, each its own transaction returning a ``LoomResult``:

    allocate_participants(id)   book every active enrollment covering the date
    assign_staff(id)            fill shifts by the ratio law from ranked candidates
    assign_vehicles(id)         bin-pack participants into free vehicles
    reoptimize_instance(id)     clear shifts + runs, then re-run the three steps

Resource shortages are not errors: the instance is marked ``insufficient`` /
``needs_attention``, an audit row is written, and the result comes back with
``success=False`` and no error code.
"""

import logging

from sqlalchemy import select

from rabs.core.exceptions import NotFoundError
from rabs.core.results import LoomResult
from rabs.models import db
from rabs.models.audit import write_loom_audit
from rabs.models.loom import (
    AllocationStatus,
    CardType,
    InstanceStatus,
    LoomInstance,
    ParticipantAllocation,
    RunStatus,
    ShiftStatus,
    StaffShift,
    StepStatus,
    VehicleRun,
)
from rabs.models.roster import Enrollment, StaffAssignmentMode, Vehicle
from rabs.services import staffing
from rabs.services.availability_service import is_vehicle_available
from rabs.services.loom_settings import get_staff_ratio
from rabs.utils.helpers import loom_step

logger = logging.getLogger(__name__)

MINUTES_PER_STOP = 10
KM_PER_STOP = 5


def _get_instance(instance_id) -> LoomInstance:
    instance = db.session.get(LoomInstance, instance_id)
    if not instance:
        raise NotFoundError(resource="LoomInstance", resource_id=instance_id)
    return instance


def _planned_allocations(instance: LoomInstance) -> list[ParticipantAllocation]:
    return (
        instance.allocations
        .filter(ParticipantAllocation.status == AllocationStatus.PLANNED.value)
        .order_by(ParticipantAllocation.id)
        .all()
    )


# ═════════════════════════════════════════════════════════════════════════════
# (a) Participants
# ═════════════════════════════════════════════════════════════════════════════


@loom_step("allocating participants")
def allocate_participants(instance_id) -> LoomResult:
    instance = _get_instance(instance_id)

    enrollments = db.session.execute(
        select(Enrollment)
        .where(Enrollment.program_id == instance.program_id, Enrollment.active.is_(True))
        .order_by(Enrollment.id)
    ).scalars().all()
    already = {a.participant_id for a in instance.allocations}

    allocated = []
    for enrollment in enrollments:
        if not enrollment.covers(instance.instance_date):
            continue
        if enrollment.participant_id in already:
            continue
        billing = enrollment.default_billing_code()
        allocation = ParticipantAllocation(
            loom_instance_id=instance.id,
            participant_id=enrollment.participant_id,
            billing_code=billing.code if billing else "DEFAULT",
            planned_rate=billing.hourly_rate if billing else 0,
            status=AllocationStatus.PLANNED.value,
        )
        db.session.add(allocation)
        db.session.flush()
        already.add(enrollment.participant_id)
        allocated.append(allocation)
        write_loom_audit(
            instance_id=instance.id,
            action="participant_allocated",
            after={
                "allocation_id": allocation.id,
                "participant_id": allocation.participant_id,
                "billing_code": allocation.billing_code,
            },
        )

    if instance.status == InstanceStatus.PENDING.value:
        instance.status = InstanceStatus.GENERATED.value
    instance.refresh_status()

    logger.info("Instance %s: %d participant(s) allocated", instance.id, len(allocated))
    return LoomResult.ok(
        f"Allocated {len(allocated)} participants",
        instance_id=instance.id,
        participants_allocated=len(allocated),
        allocations=[a.to_dict() for a in allocated],
    )


# ═════════════════════════════════════════════════════════════════════════════
# (b) Staff
# ═════════════════════════════════════════════════════════════════════════════


def _role_deficit(needed_roles, filled_shifts) -> list[str]:
    """Roles from *needed_roles* not already covered by a filled shift, in order."""
    filled = [s.role for s in filled_shifts]
    deficit = []
    for role in needed_roles:
        if role in filled:
            filled.remove(role)
        else:
            deficit.append(role)
    return deficit


@loom_step("assigning staff")
def assign_staff(instance_id) -> LoomResult:
    instance = _get_instance(instance_id)
    program = instance.program

    if program.staff_assignment_mode == StaffAssignmentMode.MANUAL.value:
        return LoomResult.ok(
            "Program uses manual staff assignment; no staff assigned",
            instance_id=instance.id, staff_assigned=0, manual=True,
        )

    participant_count = len(_planned_allocations(instance))
    roles = staffing.required_roles(
        participant_count, program.is_centre_based, get_staff_ratio(),
        program.additional_staff_count,
    )

    planned = (
        instance.shifts
        .filter(StaffShift.status == ShiftStatus.PLANNED.value)
        .order_by(StaffShift.id)
        .all()
    )
    filled = [s for s in planned if s.staff_id is not None]
    open_slots = [s for s in planned if s.staff_id is None]
    deficit = _role_deficit(roles, filled)
    stood_down = {
        s.staff_id for s in instance.shifts
        .filter(StaffShift.status.in_([ShiftStatus.FLAGGED.value, ShiftStatus.REPLACED.value]))
        if s.staff_id is not None
    }

    candidates = staffing.find_staff_candidates(
        instance.instance_date,
        instance.start_datetime(),
        instance.end_datetime(),
        exclude_staff_ids={s.staff_id for s in filled} | stood_down,
    )

    if len(candidates) < len(deficit):
        before = {"staffing_status": instance.staffing_status, "status": instance.status}
        instance.staffing_status = StepStatus.INSUFFICIENT.value
        instance.refresh_status()
        write_loom_audit(
            instance_id=instance.id,
            action="staffing_insufficient",
            before=before,
            after={
                "staffing_status": instance.staffing_status,
                "status": instance.status,
                "required": len(deficit),
                "available": len(candidates),
            },
        )
        logger.warning("Instance %s: insufficient staff (%d needed, %d available)",
                       instance.id, len(deficit), len(candidates))
        return LoomResult.negative(
            f"Insufficient staff: need {len(deficit)}, found {len(candidates)}",
            instance_id=instance.id,
            staff_needed=len(deficit),
            staff_available=len(candidates),
        )

    assigned = []
    for role, staff in zip(deficit, candidates):
        shift = next((s for s in open_slots if s.role == role), None)
        if shift is not None:
            open_slots.remove(shift)
        else:
            shift = StaffShift(
                loom_instance_id=instance.id,
                role=role,
                start_ts=instance.start_datetime(),
                end_ts=instance.end_datetime(),
            )
            db.session.add(shift)
        shift.staff_id = staff.id
        assigned.append((shift, staff))

    for surplus in open_slots:
        db.session.delete(surplus)
    db.session.flush()

    before = {"staffing_status": instance.staffing_status, "status": instance.status}
    instance.staffing_status = StepStatus.COMPLETE.value
    instance.refresh_status()
    write_loom_audit(
        instance_id=instance.id,
        action="staff_assigned",
        before=before,
        after={
            "staffing_status": instance.staffing_status,
            "shifts": [
                {"shift_id": s.id, "staff_id": st.id, "staff_name": st.full_name, "role": s.role}
                for s, st in assigned
            ],
        },
    )

    logger.info("Instance %s: %d staff assigned", instance.id, len(assigned))
    return LoomResult.ok(
        f"Assigned {len(assigned)} staff",
        instance_id=instance.id,
        staff_assigned=len(assigned),
        shifts=[s.to_dict() for s, _ in assigned],
    )


# ═════════════════════════════════════════════════════════════════════════════
# (c) Vehicles
# ═════════════════════════════════════════════════════════════════════════════


def _vehicle_candidates(instance: LoomInstance) -> list[Vehicle]:
    busy_same_day = (
        select(VehicleRun.vehicle_id)
        .join(LoomInstance, LoomInstance.id == VehicleRun.loom_instance_id)
        .where(
            LoomInstance.instance_date == instance.instance_date,
            LoomInstance.id != instance.id,
            VehicleRun.vehicle_id.is_not(None),
        )
    )
    vehicles = db.session.execute(
        select(Vehicle)
        .where(Vehicle.active.is_(True), Vehicle.id.not_in(busy_same_day))
        .order_by(Vehicle.id)
    ).scalars().all()
    return [
        v for v in vehicles
        if v.passenger_seats > 0
        and is_vehicle_available(v.id, instance.instance_date, instance.start_time, instance.end_time)
    ]


def _run_type(instance: LoomInstance):
    for slot in instance.time_slots:
        if slot.card_type in (CardType.PICKUP.value, CardType.DROPOFF.value):
            return slot.card_type
    return None


def _stop(allocation: ParticipantAllocation) -> dict:
    participant = allocation.participant
    return {
        "participant_id": participant.id,
        "name": participant.full_name,
        "address": participant.address,
        "suburb": participant.suburb,
        "latitude": participant.latitude,
        "longitude": participant.longitude,
    }


@loom_step("assigning vehicles")
def assign_vehicles(instance_id) -> LoomResult:
    instance = _get_instance(instance_id)

    if instance.program.is_centre_based:
        return LoomResult.ok(
            "Centre-based program; no vehicles needed",
            instance_id=instance.id, vehicles_assigned=0, is_centre_based=True,
        )

    allocations = _planned_allocations(instance)
    candidates = _vehicle_candidates(instance)

    # First-fit: take vehicles in order until their passenger seats cover everyone.
    chosen, remaining = [], len(allocations)
    for vehicle in candidates:
        if remaining <= 0:
            break
        chosen.append(vehicle)
        remaining -= vehicle.passenger_seats

    if remaining > 0:
        before = {"vehicle_status": instance.vehicle_status, "status": instance.status}
        instance.vehicle_status = StepStatus.INSUFFICIENT.value
        instance.refresh_status()
        seats = sum(v.passenger_seats for v in chosen)
        write_loom_audit(
            instance_id=instance.id,
            action="vehicles_insufficient",
            before=before,
            after={
                "vehicle_status": instance.vehicle_status,
                "status": instance.status,
                "participants": len(allocations),
                "seats_available": seats,
            },
        )
        logger.warning("Instance %s: insufficient vehicle seats (%d participants, %d seats)",
                       instance.id, len(allocations), seats)
        return LoomResult.negative(
            f"Insufficient vehicle capacity: {len(allocations)} participants, {seats} seats",
            instance_id=instance.id,
            participants=len(allocations),
            seats_available=seats,
        )

    for old_run in instance.vehicle_runs.all():
        db.session.delete(old_run)
    db.session.flush()

    run_type = _run_type(instance)
    runs, cursor = [], 0
    for vehicle in chosen:
        batch = allocations[cursor:cursor + vehicle.passenger_seats]
        cursor += len(batch)
        stops = [_stop(a) for a in batch]
        run = VehicleRun(
            loom_instance_id=instance.id,
            vehicle_id=vehicle.id,
            run_type=run_type,
            route_data={
                "stops": stops,
                "estimated_duration_min": len(stops) * MINUTES_PER_STOP,
                "estimated_distance_km": len(stops) * KM_PER_STOP,
            },
            seats_used=len(stops),
            status=RunStatus.PLANNED.value,
        )
        db.session.add(run)
        runs.append(run)
    db.session.flush()

    before = {"vehicle_status": instance.vehicle_status, "status": instance.status}
    instance.vehicle_status = StepStatus.COMPLETE.value
    instance.refresh_status()
    write_loom_audit(
        instance_id=instance.id,
        action="vehicles_assigned",
        before=before,
        after={
            "vehicle_status": instance.vehicle_status,
            "runs": [{"run_id": r.id, "vehicle_id": r.vehicle_id, "seats_used": r.seats_used}
                     for r in runs],
        },
    )

    logger.info("Instance %s: %d vehicle run(s) planned", instance.id, len(runs))
    return LoomResult.ok(
        f"Assigned {len(runs)} vehicles",
        instance_id=instance.id,
        vehicles_assigned=len(runs),
        runs=[r.to_dict() for r in runs],
    )


# ═════════════════════════════════════════════════════════════════════════════
# Reoptimisation
# ═════════════════════════════════════════════════════════════════════════════


@loom_step("clearing instance for reoptimization")
def _clear_for_reoptimization(instance_id) -> LoomResult:
    instance = _get_instance(instance_id)
    shift_count = instance.shifts.count()
    run_count = instance.vehicle_runs.count()

    write_loom_audit(
        instance_id=instance.id,
        action="reoptimization_started",
        before={
            "status": instance.status,
            "optimisation_state": instance.optimisation_state,
            "shifts": shift_count,
            "vehicle_runs": run_count,
        },
    )
    for shift in instance.shifts.all():
        db.session.delete(shift)
    for run in instance.vehicle_runs.all():
        db.session.delete(run)

    instance.staffing_status = None
    instance.vehicle_status = None
    instance.reoptimized = True
    instance.status = InstanceStatus.PENDING.value
    return LoomResult.ok("Instance cleared", shifts_removed=shift_count, runs_removed=run_count)


def reoptimize_instance(instance_id) -> LoomResult:
    """Clear staff and vehicle assignments, then re-run allocation.

    The clear is committed on its own; participant allocation failing makes
    the whole operation fail, while staff or vehicle shortages are reported
    in the sub-results.
    """
    cleared = _clear_for_reoptimization(instance_id)
    if not cleared.success:
        return cleared

    participants = allocate_participants(instance_id)
    if not participants.success:
        return LoomResult.failure(
            f"Failed to allocate participants during reoptimization: {participants.message}",
            participants.error,
            instance_id=instance_id,
        )

    staff = assign_staff(instance_id)
    vehicles = assign_vehicles(instance_id)
    logger.info("Instance %s reoptimized (staff=%s vehicles=%s)",
                instance_id, staff.success, vehicles.success)
    return LoomResult.ok(
        "Instance reoptimized",
        instance_id=instance_id,
        cleared=cleared.data,
        participant_result=participants.to_dict(),
        staff_result=staff.to_dict(),
        vehicle_result=vehicles.to_dict(),
    )
