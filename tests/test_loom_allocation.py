"""Tests for the Loom allocation engine.

Coverage:
  1. allocate_participants books covering enrollments with billing intent
  2. assign_staff fills placeholders by the ratio law, ranked by remaining hours
  3. insufficient staff marks the instance without touching shifts
  4. candidate filtering: weekday window, unavailability, overlapping shifts
  5. assign_vehicles packs passengers into free vehicles
  6. reoptimize_instance clears and re-plans
"""

from datetime import date, datetime, time

import pytest

from rabs.models import db
from rabs.models.audit import LoomAuditLog
from rabs.models.loom import LoomInstance, ParticipantAllocation, StaffShift, VehicleRun
from rabs.models.roster import StaffUnavailability
from rabs.services.loom_allocation import (
    allocate_participants,
    assign_staff,
    assign_vehicles,
    reoptimize_instance,
)
from rabs.services.loom_generator import generate_loom_window
from rabs.utils.errors import E

TODAY = date(2025, 1, 6)  # Monday; the generated instance falls on Tuesday 2025-01-07

BUS_SLOTS = [
    {"start_time": "08:00", "end_time": "09:00", "label": "Pickup"},
    {"start_time": "09:00", "end_time": "14:00", "label": "Art class"},
    {"start_time": "14:00", "end_time": "15:00", "label": "Dropoff"},
]


@pytest.fixture()
def planned_instance(populated_program):
    """Program with N enrolled participants and its single generated instance."""

    def _make(participants=0, **overrides):
        program = populated_program(participants=participants, **overrides)
        generate_loom_window(1, today=TODAY)
        return LoomInstance.query.filter_by(program_id=program.id).one()

    return _make


def _shifts(instance_id):
    return StaffShift.query.filter_by(loom_instance_id=instance_id).order_by(StaffShift.id).all()


class TestAllocateParticipants:
    def test_allocates_every_enrolled_participant(self, make_program, make_participant, enroll):
        program = make_program()
        for rate in (65.47, 70.00):
            enroll(program, make_participant(), billing_code="04_104_0125_6_1", hourly_rate=rate)
        generate_loom_window(1, today=TODAY)
        instance = LoomInstance.query.filter_by(program_id=program.id).one()

        result = allocate_participants(instance.id)

        assert result.success is True
        assert result.data["participants_allocated"] == 2
        allocations = ParticipantAllocation.query.filter_by(loom_instance_id=instance.id).all()
        assert {a.billing_code for a in allocations} == {"04_104_0125_6_1"}
        assert sorted(float(a.planned_rate) for a in allocations) == [65.47, 70.00]
        assert db.session.get(LoomInstance, instance.id).status == "generated"
        assert LoomAuditLog.query.filter_by(action="participant_allocated").count() == 2

    def test_default_billing_when_no_code(self, planned_instance):
        instance = planned_instance(participants=1)
        allocate_participants(instance.id)
        allocation = ParticipantAllocation.query.filter_by(loom_instance_id=instance.id).one()
        assert allocation.billing_code == "DEFAULT"
        assert float(allocation.planned_rate) == 0

    def test_second_run_adds_nothing(self, planned_instance):
        instance = planned_instance(participants=3)
        allocate_participants(instance.id)
        again = allocate_participants(instance.id)
        assert again.data["participants_allocated"] == 0
        assert ParticipantAllocation.query.count() == 3

    def test_inactive_enrollment_skipped(self, make_program, make_participant, enroll):
        program = make_program()
        enroll(program, make_participant())
        enroll(program, make_participant(), active=False)
        generate_loom_window(1, today=TODAY)
        instance = LoomInstance.query.filter_by(program_id=program.id).one()
        assert allocate_participants(instance.id).data["participants_allocated"] == 1

    def test_unknown_instance(self):
        result = allocate_participants(999)
        assert result.success is False
        assert result.error == E.NOT_FOUND


class TestAssignStaff:
    def test_fills_placeholders_by_ratio(self, planned_instance, make_staff):
        instance = planned_instance(participants=6)
        for _ in range(4):
            make_staff()
        allocate_participants(instance.id)

        result = assign_staff(instance.id)

        assert result.success is True
        assert result.data["staff_assigned"] == 3
        shifts = _shifts(instance.id)
        assert [s.role for s in shifts] == ["lead", "support", "support"]
        assert all(s.staff_id is not None and s.status == "planned" for s in shifts)
        assert len({s.staff_id for s in shifts}) == 3
        refreshed = db.session.get(LoomInstance, instance.id)
        assert refreshed.staffing_status == "complete"
        assert refreshed.status == "generated"

    def test_driver_added_for_bus_program(self, planned_instance, make_staff):
        instance = planned_instance(participants=2, is_centre_based=False, time_slots=BUS_SLOTS)
        for _ in range(3):
            make_staff()
        allocate_participants(instance.id)
        assign_staff(instance.id)
        assert [s.role for s in _shifts(instance.id)] == ["lead", "support", "driver"]

    def test_surplus_placeholders_removed(self, planned_instance, make_staff):
        instance = planned_instance(participants=6)  # 3 placeholders at generation
        make_staff()
        make_staff()
        # two enrollments dropped after generation: only 4 planned participants
        for enrollment in instance.program.enrollments.limit(2).all():
            enrollment.active = False
        db.session.commit()
        allocate_participants(instance.id)

        assign_staff(instance.id)

        shifts = _shifts(instance.id)
        assert [s.role for s in shifts] == ["lead", "support"]
        assert all(s.staff_id is not None for s in shifts)

    def test_most_remaining_hours_first(self, planned_instance, make_staff):
        instance = planned_instance(participants=1)
        low = make_staff(contracted_hours=10)
        high = make_staff(contracted_hours=38)
        mid = make_staff(contracted_hours=20)
        allocate_participants(instance.id)

        assign_staff(instance.id)

        by_role = {s.role: s.staff_id for s in _shifts(instance.id)}
        assert by_role == {"lead": high.id, "support": mid.id}
        assert low.id not in by_role.values()

    def test_planned_hours_this_week_reduce_rank(self, planned_instance, make_program, make_staff):
        instance = planned_instance(participants=1)
        low = make_staff(contracted_hours=10)
        busy = make_staff(contracted_hours=38)
        mid = make_staff(contracted_hours=20)
        other = make_program(name="Wednesday Club", days_of_week=[3])
        generate_loom_window(1, today=TODAY)
        wednesday = LoomInstance.query.filter_by(program_id=other.id).one()
        db.session.add(StaffShift(
            loom_instance_id=wednesday.id, staff_id=busy.id, role="support",
            start_ts=datetime(2025, 1, 8, 0, 0), end_ts=datetime(2025, 1, 9, 6, 0),  # 30h
        ))
        db.session.commit()
        allocate_participants(instance.id)

        assign_staff(instance.id)

        by_role = {s.role: s.staff_id for s in _shifts(instance.id)}
        assert by_role == {"lead": mid.id, "support": low.id}

    def test_insufficient_staff(self, planned_instance, make_staff):
        instance = planned_instance(participants=20, is_centre_based=False, time_slots=BUS_SLOTS)
        for _ in range(3):
            make_staff()
        allocate_participants(instance.id)
        before = [(s.id, s.staff_id) for s in _shifts(instance.id)]

        result = assign_staff(instance.id)

        assert result.success is False
        assert result.error is None
        assert result.data["staff_needed"] == 6
        assert result.data["staff_available"] == 3
        refreshed = db.session.get(LoomInstance, instance.id)
        assert refreshed.staffing_status == "insufficient"
        assert refreshed.status == "needs_attention"
        assert [(s.id, s.staff_id) for s in _shifts(instance.id)] == before
        assert ParticipantAllocation.query.filter_by(loom_instance_id=instance.id).count() == 20
        assert LoomAuditLog.query.filter_by(action="staffing_insufficient").count() == 1

    def test_retry_succeeds_once_staff_added(self, planned_instance, make_staff):
        instance = planned_instance(participants=1)
        make_staff()
        allocate_participants(instance.id)
        assert assign_staff(instance.id).success is False

        make_staff()
        db.session.commit()
        result = assign_staff(instance.id)

        assert result.success is True
        refreshed = db.session.get(LoomInstance, instance.id)
        assert refreshed.staffing_status == "complete"
        assert refreshed.status == "generated"
        assert len(_shifts(instance.id)) == 2

    def test_manual_mode_assigns_nobody(self, planned_instance, make_staff):
        instance = planned_instance(participants=3, staff_assignment_mode="manual")
        make_staff()
        make_staff()
        allocate_participants(instance.id)

        result = assign_staff(instance.id)

        assert result.success is True
        assert result.data["manual"] is True
        assert all(s.staff_id is None for s in _shifts(instance.id))

    def test_candidate_filters(self, planned_instance, make_staff):
        instance = planned_instance(participants=0)
        make_staff(days=[1, 3])                                 # not on Tuesdays
        make_staff(start=time(10, 0), end=time(17, 0))          # starts too late
        away = make_staff()
        db.session.add(StaffUnavailability(
            staff_id=away.id, start_ts=datetime(2025, 1, 7, 14), end_ts=datetime(2025, 1, 7, 18),
        ))
        ok = make_staff()
        db.session.commit()
        allocate_participants(instance.id)

        result = assign_staff(instance.id)

        assert result.success is True
        assert [s.staff_id for s in _shifts(instance.id)] == [ok.id]

    def test_double_booking_prevented(self, make_program, make_staff):
        first = make_program(name="Morning A")
        second = make_program(name="Morning B")
        make_staff()
        generate_loom_window(1, today=TODAY)
        a = LoomInstance.query.filter_by(program_id=first.id).one()
        b = LoomInstance.query.filter_by(program_id=second.id).one()

        assert assign_staff(a.id).success is True
        assert assign_staff(b.id).success is False


class TestAssignVehicles:
    def test_centre_based_needs_no_vehicles(self, planned_instance, make_vehicle):
        instance = planned_instance(participants=4)
        make_vehicle()
        allocate_participants(instance.id)

        result = assign_vehicles(instance.id)

        assert result.success is True
        assert result.data["vehicles_assigned"] == 0
        assert VehicleRun.query.count() == 0

    def test_packs_participants_into_vehicles(self, planned_instance, make_vehicle):
        instance = planned_instance(participants=10, is_centre_based=False, time_slots=BUS_SLOTS)
        big = make_vehicle(seats=8)     # 7 passengers
        small = make_vehicle(seats=5)   # 4 passengers
        make_vehicle(seats=12)          # not needed
        allocate_participants(instance.id)

        result = assign_vehicles(instance.id)

        assert result.success is True
        runs = VehicleRun.query.filter_by(loom_instance_id=instance.id).order_by(VehicleRun.id).all()
        assert [(r.vehicle_id, r.seats_used) for r in runs] == [(big.id, 7), (small.id, 3)]
        assert all(r.status == "planned" and r.run_type == "PICKUP" for r in runs)
        assert len(runs[0].route_data["stops"]) == 7
        assert runs[0].route_data["estimated_duration_min"] == 70
        assert runs[1].route_data["estimated_distance_km"] == 15
        assert db.session.get(LoomInstance, instance.id).vehicle_status == "complete"

    def test_insufficient_seats(self, planned_instance, make_vehicle):
        instance = planned_instance(participants=10, is_centre_based=False, time_slots=BUS_SLOTS)
        make_vehicle(seats=8)
        allocate_participants(instance.id)
        placeholders = VehicleRun.query.filter_by(loom_instance_id=instance.id).count()

        result = assign_vehicles(instance.id)

        assert result.success is False
        assert result.error is None
        refreshed = db.session.get(LoomInstance, instance.id)
        assert refreshed.vehicle_status == "insufficient"
        assert refreshed.status == "needs_attention"
        assert VehicleRun.query.filter_by(loom_instance_id=instance.id).count() == placeholders
        assert ParticipantAllocation.query.filter_by(loom_instance_id=instance.id).count() == 10

    def test_vehicle_used_same_day_is_excluded(self, make_program, make_participant, enroll, make_vehicle):
        first = make_program(name="Beach", is_centre_based=False, time_slots=BUS_SLOTS)
        second = make_program(name="Museum", is_centre_based=False, time_slots=BUS_SLOTS,
                              start_time=time(16, 0), end_time=time(18, 0))
        for program in (first, second):
            enroll(program, make_participant())
        make_vehicle(seats=8)
        generate_loom_window(1, today=TODAY)
        a = LoomInstance.query.filter_by(program_id=first.id).one()
        b = LoomInstance.query.filter_by(program_id=second.id).one()
        allocate_participants(a.id)
        allocate_participants(b.id)

        assert assign_vehicles(a.id).success is True
        assert assign_vehicles(b.id).success is False

    def test_reassignment_replaces_runs(self, planned_instance, make_vehicle):
        instance = planned_instance(participants=3, is_centre_based=False, time_slots=BUS_SLOTS)
        make_vehicle(seats=8)
        allocate_participants(instance.id)
        assign_vehicles(instance.id)
        assign_vehicles(instance.id)
        assert VehicleRun.query.filter_by(loom_instance_id=instance.id).count() == 1


class TestReoptimize:
    def test_clears_and_replans(self, planned_instance, make_staff, make_vehicle):
        instance = planned_instance(participants=3, is_centre_based=False, time_slots=BUS_SLOTS)
        for _ in range(3):
            make_staff()
        make_vehicle(seats=8)
        allocate_participants(instance.id)
        assign_staff(instance.id)
        assign_vehicles(instance.id)

        result = reoptimize_instance(instance.id)

        assert result.success is True
        assert result.data["staff_result"]["success"] is True
        assert result.data["vehicle_result"]["success"] is True
        refreshed = db.session.get(LoomInstance, instance.id)
        assert refreshed.reoptimized is True
        assert refreshed.staffing_status == "complete"
        assert refreshed.vehicle_status == "complete"
        new_shifts = _shifts(instance.id)
        assert len(new_shifts) == 3
        assert result.data["cleared"] == {"shifts_removed": 3, "runs_removed": 1}
        assert LoomAuditLog.query.filter_by(action="staff_assigned").count() == 2
        assert LoomAuditLog.query.filter_by(action="reoptimization_started").count() == 1

    def test_staff_shortage_reported_in_sub_result(self, planned_instance):
        instance = planned_instance(participants=2)
        result = reoptimize_instance(instance.id)
        assert result.success is True
        assert result.data["staff_result"]["success"] is False
        assert db.session.get(LoomInstance, instance.id).staffing_status == "insufficient"

    def test_unknown_instance(self):
        result = reoptimize_instance(12345)
        assert result.success is False
        assert result.error == E.NOT_FOUND
