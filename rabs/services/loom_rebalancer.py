"""
Loom Dynamic Rebalancer.

Reacts to events on an already-planned instance:

    handle_participant_cancellation   cancel an allocation, shed surplus support staff
    handle_staff_sickness             replace a sick staff member or flag the shift

Support staff are shed newest-first (last rostered, first released); the lead
is never removed.  Vehicle runs are not rebuilt on cancellation: a
reoptimisation does that.
"""

import logging

from sqlalchemy import select

from rabs.core.exceptions import NotFoundError, ValidationError
from rabs.core.results import LoomResult
from rabs.models import db
from rabs.models.audit import write_loom_audit
from rabs.models.loom import (
    AllocationStatus,
    CancellationType,
    ParticipantAllocation,
    ShiftRole,
    ShiftStatus,
    StaffShift,
    StepStatus,
    validate_allocation_transition,
    validate_shift_transition,
)
from rabs.services import staffing
from rabs.services.loom_settings import get_staff_ratio
from rabs.utils.helpers import loom_step

logger = logging.getLogger(__name__)

CANCELLATION_TYPES = [t.value for t in CancellationType]


# ═════════════════════════════════════════════════════════════════════════════
# Cancellation
# ═════════════════════════════════════════════════════════════════════════════


@loom_step("processing participant cancellation")
def handle_participant_cancellation(allocation_id, cancellation_type="normal") -> LoomResult:
    if cancellation_type not in CANCELLATION_TYPES:
        raise ValidationError(
            f"Invalid cancellation type {cancellation_type!r}",
            details={"allowed": CANCELLATION_TYPES},
        )

    allocation = db.session.get(ParticipantAllocation, allocation_id)
    if not allocation:
        raise NotFoundError(resource="ParticipantAllocation", resource_id=allocation_id)
    if not validate_allocation_transition(allocation.status, AllocationStatus.CANCELLED.value):
        raise ValidationError(
            f"Allocation {allocation_id} is already {allocation.status}",
            details={"status": allocation.status},
        )

    instance = allocation.instance
    allocation.status = AllocationStatus.CANCELLED.value
    allocation.cancellation_type = cancellation_type
    write_loom_audit(
        instance_id=instance.id,
        action="participant_cancelled",
        before={"allocation_id": allocation.id, "status": AllocationStatus.PLANNED.value},
        after={
            "allocation_id": allocation.id,
            "participant_id": allocation.participant_id,
            "status": allocation.status,
            "cancellation_type": cancellation_type,
            "billing_code": allocation.billing_code,
        },
    )

    remaining = instance.allocations.filter(
        ParticipantAllocation.status == AllocationStatus.PLANNED.value
    ).count()
    needed = staffing.required_staff(
        remaining, get_staff_ratio(), instance.program.additional_staff_count,
    )

    rostered = instance.shifts.filter(
        StaffShift.status == ShiftStatus.PLANNED.value,
        StaffShift.role.in_([ShiftRole.LEAD.value, ShiftRole.SUPPORT.value]),
    ).count()
    excess = max(rostered - needed, 0)

    removed = []
    if excess:
        newest_support = db.session.execute(
            select(StaffShift)
            .where(
                StaffShift.loom_instance_id == instance.id,
                StaffShift.status == ShiftStatus.PLANNED.value,
                StaffShift.role == ShiftRole.SUPPORT.value,
            )
            .order_by(StaffShift.created_at.desc(), StaffShift.id.desc())
            .limit(excess)
        ).scalars().all()
        for shift in newest_support:
            removed.append({"shift_id": shift.id, "staff_id": shift.staff_id})
            db.session.delete(shift)
        write_loom_audit(
            instance_id=instance.id,
            action="support_removed",
            before={"rostered": rostered},
            after={"rostered": rostered - len(removed), "needed": needed, "removed": removed},
        )

    logger.info("Allocation %s cancelled (%s); %d support shift(s) released",
                allocation.id, cancellation_type, len(removed))
    return LoomResult.ok(
        "Participant cancelled",
        allocation_id=allocation.id,
        instance_id=instance.id,
        cancellation_type=cancellation_type,
        participants_remaining=remaining,
        staff_needed=needed,
        staffing_changed=bool(removed),
        removed_shifts=removed,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Sickness
# ═════════════════════════════════════════════════════════════════════════════


@loom_step("handling staff sickness")
def handle_staff_sickness(shift_id) -> LoomResult:
    shift = db.session.get(StaffShift, shift_id)
    if not shift:
        raise NotFoundError(resource="StaffShift", resource_id=shift_id)
    if shift.staff_id is None:
        raise ValidationError(f"Shift {shift_id} has no staff member assigned")
    if not validate_shift_transition(shift.status, ShiftStatus.REPLACED.value):
        raise ValidationError(
            f"Shift {shift_id} is {shift.status}; only planned shifts can be reported sick",
            details={"status": shift.status},
        )

    instance = shift.instance
    sick = shift.staff
    rostered_ids = {s.staff_id for s in instance.shifts if s.staff_id is not None}
    candidates = staffing.find_staff_candidates(
        instance.instance_date, shift.start_ts, shift.end_ts,
        exclude_staff_ids=rostered_ids | {sick.id},
    )

    if candidates:
        replacement = candidates[0]
        shift.status = ShiftStatus.REPLACED.value
        shift.notes = f"Sick, replaced by {replacement.full_name}"
        new_shift = StaffShift(
            loom_instance_id=instance.id,
            staff_id=replacement.id,
            role=shift.role,
            start_ts=shift.start_ts,
            end_ts=shift.end_ts,
            status=ShiftStatus.PLANNED.value,
            notes=f"Replacement for {sick.full_name} (sick)",
        )
        db.session.add(new_shift)
        db.session.flush()
        write_loom_audit(
            instance_id=instance.id,
            action="staff_replaced",
            before={"shift_id": shift.id, "staff_id": sick.id, "staff_name": sick.full_name,
                    "role": shift.role},
            after={"shift_id": new_shift.id, "staff_id": replacement.id,
                   "staff_name": replacement.full_name, "role": new_shift.role},
        )
        logger.info("Shift %s: %s replaced by %s", shift.id, sick.full_name, replacement.full_name)
        return LoomResult.ok(
            f"{sick.full_name} replaced by {replacement.full_name}",
            outcome="replaced",
            instance_id=instance.id,
            original_shift_id=shift.id,
            replacement_shift=new_shift.to_dict(),
        )

    before = {"status": instance.status, "staffing_status": instance.staffing_status}
    shift.status = ShiftStatus.FLAGGED.value
    shift.notes = "Sick, no automatic replacement found"
    instance.staffing_status = StepStatus.NEEDS_ATTENTION.value
    instance.refresh_status()
    write_loom_audit(
        instance_id=instance.id,
        action="staff_flagged",
        before=before,
        after={"status": instance.status, "staffing_status": instance.staffing_status,
               "shift_id": shift.id, "staff_id": sick.id, "role": shift.role},
    )
    logger.warning("Shift %s: no replacement for %s; instance %s needs attention",
                   shift.id, sick.full_name, instance.id)
    return LoomResult.negative(
        f"No replacement found for {sick.full_name}",
        outcome="flagged",
        instance_id=instance.id,
        shift_id=shift.id,
    )
