"""
Program service: program lifecycle and enrollments.

Changing any schedule field of an active program removes its future
instances (dated today or later) and regenerates them inside the current
window.  Past instances are never rewritten.  Deactivation stops generation
and drops future instances that hold no planned participants.
"""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation

from sqlalchemy import select

from rabs.core.exceptions import NotFoundError, ValidationError
from rabs.models import db
from rabs.models.loom import AllocationStatus, LoomInstance, ParticipantAllocation
from rabs.models.roster import (
    SCHEDULE_FIELDS,
    Enrollment,
    EnrollmentBillingCode,
    Participant,
    Program,
    RepeatPattern,
    StaffAssignmentMode,
    Venue,
)
from rabs.services.loom_generator import (
    generate_instances,
    regenerate_future_instances,
    remove_instance,
)
from rabs.services.loom_settings import get_loom_settings
from rabs.services.loom_window import compute_window
from rabs.utils.helpers import parse_date, parse_time

logger = logging.getLogger(__name__)

REPEAT_PATTERNS = [p.value for p in RepeatPattern]
ASSIGNMENT_MODES = [m.value for m in StaffAssignmentMode]

_SIMPLE_FIELDS = ("name", "program_type", "description", "is_centre_based")


def _get_program(program_id) -> Program:
    program = db.session.get(Program, program_id)
    if not program:
        raise NotFoundError(resource="Program", resource_id=program_id)
    return program


def _clean_days(days) -> list[int]:
    if not isinstance(days, (list, tuple)):
        raise ValidationError("days_of_week must be a list of weekday numbers (0=Sunday)")
    cleaned = []
    for day in days:
        try:
            value = int(day)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid weekday {day!r}") from None
        if not 0 <= value <= 6:
            raise ValidationError(f"Weekday {value} out of range 0-6")
        if value not in cleaned:
            cleaned.append(value)
    return sorted(cleaned)


def _clean_time_slots(slots) -> list[dict]:
    if not isinstance(slots, list):
        raise ValidationError("time_slots must be a list")
    cleaned = []
    for slot in slots:
        try:
            start = parse_time(slot.get("start_time"))
            end = parse_time(slot.get("end_time"))
        except (AttributeError, ValueError) as exc:
            raise ValidationError(f"Invalid time slot: {exc}") from None
        if end <= start:
            raise ValidationError("Time slot end_time must be after start_time")
        cleaned.append({
            "start_time": start.strftime("%H:%M"),
            "end_time": end.strftime("%H:%M"),
            "label": str(slot.get("label") or ""),
        })
    return cleaned


def _clean_amount(line: dict, field: str, idx: int) -> Decimal:
    raw = line.get(field, 0)
    try:
        value = Decimal(str(raw if raw is not None else 0))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number", details={"index": idx, field: raw}) from None
    if not value.is_finite() or value < 0:
        raise ValidationError(f"{field} must be a non-negative number", details={"index": idx, field: raw})
    return value


def _apply_payload(program: Program, data: dict) -> None:
    """Validate *data* and copy it onto *program* (fields absent are kept)."""
    for field in _SIMPLE_FIELDS:
        if field in data:
            setattr(program, field, data[field])

    if "start_date" in data:
        program.start_date = parse_date(data["start_date"])
        if not program.start_date:
            raise ValidationError("start_date is invalid (YYYY-MM-DD)")
    if "end_date" in data:
        program.end_date = parse_date(data["end_date"]) if data["end_date"] else None

    for field in ("start_time", "end_time"):
        if field in data:
            try:
                setattr(program, field, parse_time(data[field]))
            except ValueError as exc:
                raise ValidationError(str(exc), details={field: data[field]}) from None

    if "repeat_pattern" in data:
        if data["repeat_pattern"] not in REPEAT_PATTERNS:
            raise ValidationError(
                f"Invalid repeat_pattern {data['repeat_pattern']!r}",
                details={"allowed": REPEAT_PATTERNS},
            )
        program.repeat_pattern = data["repeat_pattern"]
    if "days_of_week" in data:
        program.days_of_week = _clean_days(data["days_of_week"])
    if "time_slots" in data:
        program.time_slots = _clean_time_slots(data["time_slots"])

    if "staff_assignment_mode" in data:
        if data["staff_assignment_mode"] not in ASSIGNMENT_MODES:
            raise ValidationError(
                f"Invalid staff_assignment_mode {data['staff_assignment_mode']!r}",
                details={"allowed": ASSIGNMENT_MODES},
            )
        program.staff_assignment_mode = data["staff_assignment_mode"]
    if "additional_staff_count" in data:
        try:
            count = int(data["additional_staff_count"] or 0)
        except (TypeError, ValueError):
            raise ValidationError(
                "additional_staff_count must be a whole number",
                details={"additional_staff_count": data["additional_staff_count"]},
            ) from None
        if count < 0:
            raise ValidationError("additional_staff_count must not be negative")
        program.additional_staff_count = count
    if "venue_id" in data:
        if data["venue_id"] is not None and not db.session.get(Venue, data["venue_id"]):
            raise NotFoundError(resource="Venue", resource_id=data["venue_id"])
        program.venue_id = data["venue_id"]

    if not (program.name or "").strip():
        raise ValidationError("name is required")
    if not program.start_date or not program.start_time or not program.end_time:
        raise ValidationError("start_date, start_time and end_time are required")
    if program.end_time <= program.start_time:
        raise ValidationError("end_time must be after start_time")
    if program.end_date and program.end_date < program.start_date:
        raise ValidationError("end_date must not be before start_date")
    if program.repeat_pattern != RepeatPattern.NONE.value and not program.days_of_week:
        raise ValidationError("days_of_week is required for repeating programs")


def create_program(data: dict, today=None) -> Program:
    """Create a program and generate its instances inside the current window."""
    program = Program(
        repeat_pattern=RepeatPattern.WEEKLY.value,
        days_of_week=[],
        time_slots=[],
        is_centre_based=True,
        staff_assignment_mode=StaffAssignmentMode.AUTO.value,
        additional_staff_count=0,
        active=True,
    )
    _apply_payload(program, data)
    db.session.add(program)
    db.session.flush()

    start = today or date.today()
    window = compute_window(get_loom_settings().window_weeks, start)
    created = generate_instances(program, window.start_date, window.end_date)
    db.session.commit()

    logger.info("Program %s created with %d instance(s)", program.id, len(created))
    return program


def update_program(program_id, data: dict, today=None) -> dict:
    """Update a program; schedule changes regenerate its future instances."""
    program = _get_program(program_id)
    before = {field: getattr(program, field) for field in SCHEDULE_FIELDS}
    try:
        _apply_payload(program, data)
    except (ValidationError, NotFoundError):
        db.session.rollback()
        raise
    changed = [f for f in SCHEDULE_FIELDS if getattr(program, f) != before[f]]

    regeneration = None
    if changed and program.active:
        db.session.flush()
        regeneration = regenerate_future_instances(program, today)
    db.session.commit()

    logger.info("Program %s updated (schedule fields changed: %s)", program.id, changed or "none")
    return {"program": program.to_dict(), "schedule_changed": changed, "regeneration": regeneration}


def deactivate_program(program_id, today=None) -> dict:
    """Stop generating a program.  Past instances are kept."""
    program = _get_program(program_id)
    program.active = False

    start = today or date.today()
    future = db.session.execute(
        select(LoomInstance).where(
            LoomInstance.program_id == program.id,
            LoomInstance.instance_date >= start,
        ).order_by(LoomInstance.instance_date)
    ).scalars().all()

    removed, kept = [], []
    for instance in future:
        booked = instance.allocations.filter(
            ParticipantAllocation.status == AllocationStatus.PLANNED.value
        ).count()
        if booked:
            kept.append(instance.id)
        else:
            removed.append(instance.id)
            remove_instance(instance, reason="program_deactivated")
    db.session.commit()

    if kept:
        logger.warning("Program %s deactivated; %d future instance(s) still hold participants",
                       program.id, len(kept))
    return {"program": program.to_dict(), "instances_removed": removed, "instances_kept": kept}


def enroll_participant(program_id, participant_id, start_date=None, end_date=None,
                       billing_codes=None) -> Enrollment:
    """Enroll a participant; takes effect from the next allocation run."""
    program = _get_program(program_id)
    participant = db.session.get(Participant, participant_id)
    if not participant:
        raise NotFoundError(resource="Participant", resource_id=participant_id)

    existing = db.session.execute(
        select(Enrollment).where(
            Enrollment.program_id == program.id,
            Enrollment.participant_id == participant.id,
            Enrollment.active.is_(True),
        )
    ).scalar_one_or_none()
    if existing:
        raise ValidationError(
            f"Participant {participant.id} is already enrolled in program {program.id}",
            details={"enrollment_id": existing.id},
        )

    enrollment = Enrollment(
        program_id=program.id,
        participant_id=participant.id,
        start_date=parse_date(start_date),
        end_date=parse_date(end_date),
        active=True,
    )
    if enrollment.start_date and enrollment.end_date and enrollment.end_date < enrollment.start_date:
        raise ValidationError("end_date must not be before start_date")

    for idx, line in enumerate(billing_codes or []):
        if not line.get("code"):
            raise ValidationError("billing code is required", details={"index": idx})
        enrollment.billing_codes.append(EnrollmentBillingCode(
            code=line["code"],
            hourly_rate=_clean_amount(line, "hourly_rate", idx),
            hours=_clean_amount(line, "hours", idx),
            is_default=bool(line.get("is_default", idx == 0)),
        ))

    db.session.add(enrollment)
    db.session.commit()
    logger.info("Participant %s enrolled in program %s", participant.id, program.id)
    return enrollment
