"""Tests for the Loom instance generator.

Coverage:
  1. generate_loom_window creates one instance per matching date
  2. generation is idempotent
  3. new instances carry time-slot cards, placeholder shifts and bus runs
  4. window size is bounded and persisted; unexpected errors roll the step back
  5. resize grows by generating the tail only and shrinks by removing beyond the new end
  6. inactive programs are skipped
"""

from datetime import date, time

import pytest

from rabs.models import db
from rabs.models.audit import LoomAuditLog
from rabs.models.loom import LoomInstance, StaffShift, VehicleRun
from rabs.services.loom_generator import (
    classify_slot,
    generate_instances,
    generate_loom_window,
    resize_loom_window,
)
from rabs.services.loom_settings import get_loom_window_size
from rabs.utils.errors import E

TODAY = date(2025, 1, 6)  # Monday

BUS_SLOTS = [
    {"start_time": "08:00", "end_time": "09:00", "label": "Pickup run"},
    {"start_time": "09:00", "end_time": "14:00", "label": "Bowling"},
    {"start_time": "14:00", "end_time": "15:00", "label": "Drop off"},
]


def _instance_dates(program_id=None):
    q = LoomInstance.query
    if program_id is not None:
        q = q.filter_by(program_id=program_id)
    return [i.instance_date for i in q.order_by(LoomInstance.instance_date).all()]


class TestClassifySlot:
    @pytest.mark.parametrize("label, expected", [
        ("Pickup run", "PICKUP"),
        ("PICK UP", "PICKUP"),
        ("Drop-off", "DROPOFF"),
        ("Bowling", "ACTIVITY"),
        ("", "ACTIVITY"),
        (None, "ACTIVITY"),
    ])
    def test_labels(self, label, expected):
        assert classify_slot(label) == expected


class TestGenerateWindow:
    def test_weekly_tuesdays_eight_weeks(self, make_program):
        program = make_program()
        result = generate_loom_window(8, today=TODAY)

        assert result.success is True
        assert result.data["instances_created"] == 8
        dates = _instance_dates(program.id)
        assert dates[0] == date(2025, 1, 7)
        assert dates[-1] == date(2025, 2, 25)
        assert len(dates) == len(set(dates)) == 8

    def test_generation_is_idempotent(self, make_program):
        make_program()
        generate_loom_window(8, today=TODAY)
        again = generate_loom_window(8, today=TODAY)

        assert again.success is True
        assert again.data["instances_created"] == 0
        assert LoomInstance.query.count() == 8

    def test_generate_instances_twice_same_set(self, make_program):
        program = make_program()
        first = generate_instances(program, date(2025, 1, 6), date(2025, 2, 3))
        second = generate_instances(program, date(2025, 1, 6), date(2025, 2, 3))
        db.session.commit()
        assert len(first) == 4
        assert second == []
        assert LoomInstance.query.count() == 4

    def test_instance_children(self, populated_program):
        program = populated_program(participants=3, is_centre_based=False, time_slots=BUS_SLOTS)
        generate_loom_window(1, today=TODAY)

        instance = LoomInstance.query.filter_by(program_id=program.id).one()
        assert instance.status == "pending"
        assert instance.capacity == 3
        assert instance.start_time == time(9, 0)
        assert [s.card_type for s in instance.time_slots] == ["PICKUP", "ACTIVITY", "DROPOFF"]

        runs = VehicleRun.query.filter_by(loom_instance_id=instance.id).all()
        assert sorted(r.run_type for r in runs) == ["DROPOFF", "PICKUP"]
        assert all(r.vehicle_id is None and r.status == "placeholder" for r in runs)

        shifts = StaffShift.query.filter_by(loom_instance_id=instance.id).order_by(StaffShift.id).all()
        assert [s.role for s in shifts] == ["lead", "support", "driver"]
        assert all(s.staff_id is None for s in shifts)

        log = LoomAuditLog.query.filter_by(loom_instance_id=instance.id).one()
        assert log.action == "instance_created"
        assert log.actor == "loom_engine"

    def test_enrollment_outside_date_not_counted(self, make_program, make_participant, enroll):
        program = make_program()
        enroll(program, make_participant())
        enroll(program, make_participant(), end_date=date(2025, 1, 1))
        generate_loom_window(1, today=TODAY)
        assert LoomInstance.query.filter_by(program_id=program.id).one().capacity == 1

    def test_inactive_program_skipped(self, make_program):
        make_program(active=False)
        result = generate_loom_window(4, today=TODAY)
        assert result.data["instances_created"] == 0
        assert LoomInstance.query.count() == 0

    def test_window_size_persisted(self, make_program):
        generate_loom_window(6, today=TODAY)
        assert get_loom_window_size() == 6

    @pytest.mark.parametrize("weeks", [0, 17, -1, "abc", None, 3.7, "3.7"])
    def test_out_of_bounds_rejected(self, make_program, weeks):
        make_program()
        result = generate_loom_window(weeks, today=TODAY)
        assert result.success is False
        assert result.error == E.VALIDATION_INVALID
        assert LoomInstance.query.count() == 0

    def test_unexpected_error_rolls_back(self, make_program):
        make_program(time_slots=[{"start_time": "bogus", "end_time": "10:00", "label": "Art"}])
        db.session.commit()

        result = generate_loom_window(2, today=TODAY)

        assert result.success is False
        assert result.error == E.INTERNAL
        assert LoomInstance.query.count() == 0
        assert LoomAuditLog.query.count() == 0


class TestResizeWindow:
    def test_grow_generates_tail_only(self, make_program):
        program = make_program()
        generate_loom_window(4, today=TODAY)
        before = {i.id: i.instance_date for i in LoomInstance.query.all()}
        first = LoomInstance.query.order_by(LoomInstance.instance_date).first()
        first.status = "needs_attention"
        db.session.commit()

        result = resize_loom_window(8, today=TODAY)

        assert result.success is True
        assert result.data["instances_created"] == 4
        assert result.data["instances_removed"] == 0
        after = {i.id: i.instance_date for i in LoomInstance.query.all()}
        assert all(after[iid] == d for iid, d in before.items())
        assert db.session.get(LoomInstance, first.id).status == "needs_attention"
        assert len(_instance_dates(program.id)) == 8

    def test_shrink_removes_beyond_new_end(self, make_program):
        program = make_program()
        generate_loom_window(8, today=TODAY)

        result = resize_loom_window(2, today=TODAY)

        assert result.data["instances_removed"] == 6
        assert _instance_dates(program.id) == [date(2025, 1, 7), date(2025, 1, 14)]
        assert LoomAuditLog.query.filter_by(action="instance_removed").count() == 6
        assert get_loom_window_size() == 2

    def test_shrink_then_grow_keeps_retained_range(self, make_program):
        make_program()
        generate_loom_window(8, today=TODAY)
        kept = sorted(i.id for i in LoomInstance.query.filter(
            LoomInstance.instance_date < date(2025, 1, 20)).all())

        resize_loom_window(2, today=TODAY)
        resize_loom_window(8, today=TODAY)

        assert LoomInstance.query.count() == 8
        still = sorted(i.id for i in LoomInstance.query.filter(
            LoomInstance.instance_date < date(2025, 1, 20)).all())
        assert still == kept

    def test_same_size_is_a_no_op(self, make_program):
        make_program()
        generate_loom_window(4, today=TODAY)
        result = resize_loom_window(4, today=TODAY)
        assert result.data["instances_created"] == 0
        assert result.data["instances_removed"] == 0

    def test_invalid_size_rejected(self):
        result = resize_loom_window(20, today=TODAY)
        assert result.success is False
        assert result.error == E.VALIDATION_INVALID
