"""
Staffing rules shared by generation, allocation and rebalancing.

Ratio law (ratio defaults to 5 participants per support worker):

    lead    = 1
    support = ceil(participants / ratio)
    driver  = 1 unless the program is centre-based

Candidate order: staff with the most contracted hours left in the instance's
ISO week (Monday to Sunday) come first; ties keep staff-id order.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from sqlalchemy import select

from rabs.models import db
from rabs.models.loom import ShiftRole, ShiftStatus, StaffShift
from rabs.models.roster import Staff, StaffAvailability
from rabs.services.availability_service import has_overlapping_shift, is_staff_available
from rabs.services.loom_window import rabs_weekday


def required_support(participant_count: int, ratio: int = 5) -> int:
    return math.ceil(max(participant_count, 0) / ratio)


def required_staff(participant_count: int, ratio: int = 5, additional: int = 0) -> int:
    """Lead plus support workers (drivers excluded)."""
    return 1 + required_support(participant_count, ratio) + (additional or 0)


def required_roles(
    participant_count: int,
    centre_based: bool,
    ratio: int = 5,
    additional: int = 0,
) -> list[str]:
    """Ordered role list: lead, support…, driver."""
    roles = [ShiftRole.LEAD.value]
    roles += [ShiftRole.SUPPORT.value] * (required_support(participant_count, ratio) + (additional or 0))
    if not centre_based:
        roles.append(ShiftRole.DRIVER.value)
    return roles


def _planned_hours_in_week(staff_ids, on_date) -> dict[int, float]:
    week_start = datetime.combine(on_date - timedelta(days=on_date.weekday()), datetime.min.time())
    week_end = week_start + timedelta(days=7)
    rows = db.session.execute(
        select(StaffShift).where(
            StaffShift.staff_id.in_(staff_ids),
            StaffShift.status == ShiftStatus.PLANNED.value,
            StaffShift.start_ts >= week_start,
            StaffShift.start_ts < week_end,
        )
    ).scalars()
    hours: dict[int, float] = {}
    for shift in rows:
        hours[shift.staff_id] = hours.get(shift.staff_id, 0.0) + shift.hours
    return hours


def find_staff_candidates(on_date, start_ts, end_ts, exclude_staff_ids=()) -> list[Staff]:
    """Staff who can work ``[start_ts, end_ts)`` on *on_date*.

    A candidate is active, has a weekly availability window on that weekday
    containing the whole shift, no overlapping unavailability and no
    overlapping planned shift.
    """
    excluded = set(exclude_staff_ids)
    rows = db.session.execute(
        select(Staff, StaffAvailability)
        .join(StaffAvailability, StaffAvailability.staff_id == Staff.id)
        .where(Staff.active.is_(True), StaffAvailability.day_of_week == rabs_weekday(on_date))
        .order_by(Staff.id, StaffAvailability.id)
    ).all()

    start_time, end_time = start_ts.time(), end_ts.time()
    candidates, seen = [], set()
    for staff, window in rows:
        if staff.id in seen or staff.id in excluded:
            continue
        if not window.contains(start_time, end_time):
            continue
        if not is_staff_available(staff.id, on_date, start_time, end_time):
            continue
        if has_overlapping_shift(staff.id, start_ts, end_ts):
            continue
        seen.add(staff.id)
        candidates.append(staff)

    if not candidates:
        return []

    planned = _planned_hours_in_week([s.id for s in candidates], on_date)
    candidates.sort(key=lambda s: (s.contracted_hours or 0) - planned.get(s.id, 0.0), reverse=True)
    return candidates
