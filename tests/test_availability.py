"""Tests for the availability service.

Coverage:
  1. overlaps(): symmetric, half-open, touching ranges do not overlap
  2. staff / vehicle availability checks against recorded blackouts
  3. get_available_staff / get_available_vehicles filtering
  4. recording unavailability flags affected instances and writes an audit row
  5. overlapping blackout records are rejected
"""

from datetime import date, datetime, time

import pytest

from rabs.core.exceptions import NotFoundError, ValidationError
from rabs.models import db
from rabs.models.audit import LoomAuditLog
from rabs.models.loom import LoomInstance, StaffShift, VehicleRun
from rabs.models.roster import StaffUnavailability
from rabs.services import availability_service as avail

D = date(2025, 1, 7)


def _dt(hour, minute=0, day=D):
    return datetime.combine(day, time(hour, minute))


def _make_instance(program, on_date=D):
    instance = LoomInstance(
        program_id=program.id, instance_date=on_date,
        start_time=program.start_time, end_time=program.end_time,
    )
    db.session.add(instance)
    db.session.flush()
    return instance


class TestOverlaps:
    @pytest.mark.parametrize("a, b, expected", [
        ((9, 12), (11, 14), True),
        ((9, 12), (12, 14), False),   # touching at an endpoint
        ((9, 12), (6, 9), False),
        ((9, 17), (10, 11), True),    # containment
        ((9, 10), (13, 14), False),
    ])
    def test_symmetric(self, a, b, expected):
        assert avail.overlaps(a[0], a[1], b[0], b[1]) is expected
        assert avail.overlaps(b[0], b[1], a[0], a[1]) is expected


class TestAvailabilityQueries:
    def test_staff_blocked_by_overlapping_unavailability(self, make_staff):
        staff = make_staff()
        db.session.add(StaffUnavailability(staff_id=staff.id, start_ts=_dt(8), end_ts=_dt(10)))
        db.session.flush()
        assert avail.is_staff_available(staff.id, D, time(9), time(15)) is False

    def test_staff_free_when_blackout_ends_at_start(self, make_staff):
        staff = make_staff()
        db.session.add(StaffUnavailability(staff_id=staff.id, start_ts=_dt(6), end_ts=_dt(9)))
        db.session.flush()
        assert avail.is_staff_available(staff.id, D, time(9), time(15)) is True

    def test_get_available_staff_excludes_blocked(self, make_staff):
        free, blocked = make_staff(), make_staff()
        db.session.add(StaffUnavailability(staff_id=blocked.id, start_ts=_dt(0), end_ts=_dt(23)))
        db.session.flush()
        ids = [s.id for s in avail.get_available_staff(D, time(9), time(15))]
        assert ids == [free.id]

    def test_get_available_vehicles_excludes_blackout(self, make_vehicle):
        ok, serviced = make_vehicle(), make_vehicle()
        avail.create_vehicle_blackout(serviced.id, _dt(7), _dt(18), reason="service")
        ids = [v.id for v in avail.get_available_vehicles(D, time(9), time(15))]
        assert ids == [ok.id]
        assert avail.is_vehicle_available(serviced.id, D, time(9), time(15)) is False

    def test_inactive_staff_not_available(self, make_staff):
        make_staff(active=False)
        assert avail.get_available_staff(D, time(9), time(15)) == []


class TestRecordingBlackouts:
    def test_unavailability_flags_rostered_instance(self, make_program, make_staff):
        program = make_program()
        staff = make_staff()
        instance = _make_instance(program)
        db.session.add(StaffShift(
            loom_instance_id=instance.id, staff_id=staff.id, role="lead",
            start_ts=instance.start_datetime(), end_ts=instance.end_datetime(),
        ))
        db.session.commit()

        result = avail.create_staff_unavailability(staff.id, "2025-01-07T08:00", "2025-01-07T12:00", "sick")

        assert result["flagged_instance_ids"] == [instance.id]
        refreshed = db.session.get(LoomInstance, instance.id)
        assert refreshed.status == "needs_attention"
        assert refreshed.staffing_status == "needs_attention"
        log = LoomAuditLog.query.filter_by(loom_instance_id=instance.id, action="instance_flagged").one()
        assert log.after_state["staff_id"] == staff.id

    def test_unavailability_elsewhere_flags_nothing(self, make_program, make_staff):
        program = make_program()
        staff = make_staff()
        instance = _make_instance(program)
        db.session.add(StaffShift(
            loom_instance_id=instance.id, staff_id=staff.id, role="lead",
            start_ts=instance.start_datetime(), end_ts=instance.end_datetime(),
        ))
        db.session.commit()

        result = avail.create_staff_unavailability(staff.id, _dt(15), _dt(18))
        assert result["flagged_instance_ids"] == []
        assert db.session.get(LoomInstance, instance.id).status == "pending"

    def test_vehicle_blackout_flags_instance_with_run(self, make_program, make_vehicle):
        program = make_program(is_centre_based=False)
        vehicle = make_vehicle()
        instance = _make_instance(program)
        db.session.add(VehicleRun(loom_instance_id=instance.id, vehicle_id=vehicle.id, seats_used=3))
        db.session.commit()

        result = avail.create_vehicle_blackout(vehicle.id, _dt(12), _dt(20), "repair")
        assert result["flagged_instance_ids"] == [instance.id]
        assert db.session.get(LoomInstance, instance.id).vehicle_status == "needs_attention"

    def test_overlapping_unavailability_rejected(self, make_staff):
        staff = make_staff()
        avail.create_staff_unavailability(staff.id, _dt(8), _dt(12))
        with pytest.raises(ValidationError):
            avail.create_staff_unavailability(staff.id, _dt(11), _dt(14))

    def test_adjacent_unavailability_allowed(self, make_staff):
        staff = make_staff()
        avail.create_staff_unavailability(staff.id, _dt(8), _dt(12))
        avail.create_staff_unavailability(staff.id, _dt(12), _dt(14))
        assert StaffUnavailability.query.filter_by(staff_id=staff.id).count() == 2

    def test_inverted_range_rejected(self, make_staff):
        staff = make_staff()
        with pytest.raises(ValidationError):
            avail.create_staff_unavailability(staff.id, _dt(12), _dt(8))

    def test_unknown_vehicle(self):
        with pytest.raises(NotFoundError):
            avail.create_vehicle_blackout(999, _dt(8), _dt(9))
