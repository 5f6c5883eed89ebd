"""
Loom Instance Generator.

Materialises program instances inside the rolling window:

    generate_loom_window(weeks)     build every active program's instances for [today, today+weeks)
    resize_loom_window(new_weeks)   grow (generate the tail only) or shrink (remove beyond new end)
    generate_instances(program, …)  one program, one date range; idempotent
    regenerate_future_instances()   used when a program's schedule fields change

Each new instance gets its time-slot cards, placeholder staff shifts sized by
the ratio law and placeholder vehicle runs for every bus slot.  An instance
that already exists for (program, date) is left untouched; the unique
constraint backs this up when two generators race.
"""

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from rabs.core.results import LoomResult
from rabs.models import db
from rabs.models.audit import write_loom_audit
from rabs.models.loom import (
    CardType,
    InstanceStatus,
    LoomInstance,
    LoomTimeSlot,
    RunStatus,
    StaffShift,
    VehicleRun,
)
from rabs.models.roster import Enrollment, Program
from rabs.services import staffing
from rabs.services.loom_settings import get_loom_settings, validate_window_weeks
from rabs.services.loom_window import compute_window, expand_rule
from rabs.utils.helpers import loom_step, parse_time

logger = logging.getLogger(__name__)

BUS_CARD_TYPES = (CardType.PICKUP.value, CardType.DROPOFF.value)


def classify_slot(label) -> str:
    """Card type for a time-slot label: 'pick…' → PICKUP, 'drop…' → DROPOFF."""
    text = (label or "").lower()
    if "pick" in text:
        return CardType.PICKUP.value
    if "drop" in text:
        return CardType.DROPOFF.value
    return CardType.ACTIVITY.value


def _active_enrollment_count(program_id: int, on_date: date) -> int:
    enrollments = db.session.execute(
        select(Enrollment).where(Enrollment.program_id == program_id, Enrollment.active.is_(True))
    ).scalars()
    return sum(1 for e in enrollments if e.covers(on_date))


def _instance_exists(program_id: int, on_date: date) -> bool:
    return db.session.execute(
        select(LoomInstance.id).where(
            LoomInstance.program_id == program_id,
            LoomInstance.instance_date == on_date,
        )
    ).first() is not None


def _build_instance(program: Program, on_date: date, ratio: int) -> LoomInstance:
    capacity = _active_enrollment_count(program.id, on_date)
    instance = LoomInstance(
        program_id=program.id,
        instance_date=on_date,
        start_time=program.start_time,
        end_time=program.end_time,
        venue_id=program.venue_id,
        status=InstanceStatus.PENDING.value,
        capacity=capacity,
        reoptimized=False,
    )
    db.session.add(instance)
    db.session.flush()

    for slot in program.time_slots or []:
        card_type = classify_slot(slot.get("label"))
        db.session.add(LoomTimeSlot(
            loom_instance_id=instance.id,
            start_time=parse_time(slot.get("start_time")),
            end_time=parse_time(slot.get("end_time")),
            label=slot.get("label") or "",
            card_type=card_type,
        ))
        if card_type in BUS_CARD_TYPES:
            db.session.add(VehicleRun(
                loom_instance_id=instance.id,
                run_type=card_type,
                route_data={},
                seats_used=0,
                status=RunStatus.PLACEHOLDER.value,
            ))

    roles = staffing.required_roles(
        capacity, program.is_centre_based, ratio, program.additional_staff_count,
    )
    for role in roles:
        db.session.add(StaffShift(
            loom_instance_id=instance.id,
            staff_id=None,
            role=role,
            start_ts=instance.start_datetime(),
            end_ts=instance.end_datetime(),
        ))

    write_loom_audit(
        instance_id=instance.id,
        action="instance_created",
        after={
            "program_id": program.id,
            "instance_date": on_date.isoformat(),
            "capacity": capacity,
            "placeholder_shifts": len(roles),
        },
    )
    return instance


def generate_instances(program: Program, range_start: date, range_end: date) -> list[LoomInstance]:
    """Create missing instances of *program* in ``[range_start, range_end)``.

    Runs inside the caller's transaction; each insert sits in a savepoint so a
    concurrent duplicate only skips that date.
    """
    ratio = get_loom_settings().staff_ratio
    created = []
    for on_date in expand_rule(program, range_start, range_end):
        if _instance_exists(program.id, on_date):
            continue
        try:
            with db.session.begin_nested():
                created.append(_build_instance(program, on_date, ratio))
        except IntegrityError:
            logger.info("Instance for program %s on %s already exists; skipped",
                        program.id, on_date)
    return created


def _active_programs() -> list[Program]:
    return list(db.session.execute(
        select(Program).where(Program.active.is_(True)).order_by(Program.id)
    ).scalars())


def remove_instance(instance: LoomInstance, reason: str):
    write_loom_audit(
        instance_id=instance.id,
        action="instance_removed",
        before={
            "program_id": instance.program_id,
            "instance_date": instance.instance_date.isoformat(),
            "status": instance.status,
        },
        after={"reason": reason},
    )
    db.session.delete(instance)


@loom_step("generating loom window")
def generate_loom_window(week_count, today=None) -> LoomResult:
    """Generate instances for every active program across the window."""
    weeks = validate_window_weeks(week_count)
    settings = get_loom_settings()
    settings.window_weeks = weeks
    window = compute_window(weeks, today)

    programs = _active_programs()
    total = 0
    for program in programs:
        total += len(generate_instances(program, window.start_date, window.end_date))

    logger.info("Loom window %s → %s: %d instance(s) created for %d program(s)",
                window.start_date, window.end_date, total, len(programs))
    return LoomResult.ok(
        f"Generated {total} instances",
        instances_created=total,
        programs=len(programs),
        window_weeks=weeks,
        **window.to_dict(),
    )


@loom_step("resizing loom window")
def resize_loom_window(new_week_count, today=None) -> LoomResult:
    """Change the window size without disturbing instances inside the retained range."""
    new_weeks = validate_window_weeks(new_week_count)
    settings = get_loom_settings()
    old_weeks = settings.window_weeks
    old_window = compute_window(old_weeks, today)
    new_window = compute_window(new_weeks, today)
    settings.window_weeks = new_weeks

    created = removed = 0
    if new_weeks > old_weeks:
        for program in _active_programs():
            created += len(generate_instances(program, old_window.end_date, new_window.end_date))
    elif new_weeks < old_weeks:
        beyond = db.session.execute(
            select(LoomInstance)
            .where(LoomInstance.instance_date >= new_window.end_date)
            .order_by(LoomInstance.instance_date, LoomInstance.id)
        ).scalars().all()
        for instance in beyond:
            remove_instance(instance, reason="window_shrunk")
        removed = len(beyond)

    logger.info("Loom window resized %d → %d weeks (+%d / -%d instances)",
                old_weeks, new_weeks, created, removed)
    return LoomResult.ok(
        f"Window resized from {old_weeks} to {new_weeks} weeks",
        old_weeks=old_weeks,
        new_weeks=new_weeks,
        instances_created=created,
        instances_removed=removed,
        **new_window.to_dict(),
    )


def regenerate_future_instances(program: Program, today=None) -> dict:
    """Replace *program*'s instances dated today or later.

    Runs inside the caller's transaction.  Past instances are never touched.
    """
    start = today or date.today()
    future = db.session.execute(
        select(LoomInstance).where(
            LoomInstance.program_id == program.id,
            LoomInstance.instance_date >= start,
        ).order_by(LoomInstance.instance_date)
    ).scalars().all()
    for instance in future:
        remove_instance(instance, reason="program_schedule_changed")
    db.session.flush()

    created = []
    if program.active:
        window = compute_window(get_loom_settings().window_weeks, start)
        created = generate_instances(program, window.start_date, window.end_date)

    logger.info("Program %s regenerated: %d removed, %d created",
                program.id, len(future), len(created))
    return {"instances_removed": len(future), "instances_created": len(created)}
