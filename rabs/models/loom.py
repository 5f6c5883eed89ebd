"""
RABS Loom
Loom domain models: materialized program instances and their allocations.

Models:
    - LoomSettings:           single-row typed settings (window size, staff ratio)
    - LoomInstance:           one dated occurrence of a program
    - LoomTimeSlot:           time-slot card on an instance (PICKUP / ACTIVITY / DROPOFF)
    - ParticipantAllocation:  instance ↔ participant link carrying billing intent
    - StaffShift:             instance ↔ staff link (staff null while unfilled)
    - VehicleRun:             instance ↔ vehicle link with a seat manifest

Architecture:
    Program ──1:N──▶ LoomInstance ──1:N──▶ LoomTimeSlot
                     LoomInstance ──1:N──▶ ParticipantAllocation
                     LoomInstance ──1:N──▶ StaffShift
                     LoomInstance ──1:N──▶ VehicleRun

Lifecycle states:
    LoomInstance:           pending → generated → needs_attention
    ParticipantAllocation:  planned → cancelled               (never reversed)
    StaffShift:             planned → replaced | flagged      (rows never deleted by sickness)
"""

import enum
from datetime import datetime, timezone

from rabs.models import db


# ── Constants ────────────────────────────────────────────────────────────────


class InstanceStatus(str, enum.Enum):
    PENDING = "pending"
    GENERATED = "generated"
    NEEDS_ATTENTION = "needs_attention"


class StepStatus(str, enum.Enum):
    """Outcome of a staffing or vehicle sub-step."""

    COMPLETE = "complete"
    INSUFFICIENT = "insufficient"
    NEEDS_ATTENTION = "needs_attention"


class AllocationStatus(str, enum.Enum):
    PLANNED = "planned"
    CANCELLED = "cancelled"


class CancellationType(str, enum.Enum):
    NORMAL = "normal"
    SHORT_NOTICE = "short_notice"


class ShiftStatus(str, enum.Enum):
    PLANNED = "planned"
    REPLACED = "replaced"
    FLAGGED = "flagged"


class ShiftRole(str, enum.Enum):
    LEAD = "lead"
    SUPPORT = "support"
    DRIVER = "driver"


class CardType(str, enum.Enum):
    PICKUP = "PICKUP"
    ACTIVITY = "ACTIVITY"
    DROPOFF = "DROPOFF"


class RunStatus(str, enum.Enum):
    PLACEHOLDER = "placeholder"
    PLANNED = "planned"


ALLOCATION_TRANSITIONS = {
    AllocationStatus.PLANNED.value: [AllocationStatus.CANCELLED.value],
    AllocationStatus.CANCELLED.value: [],
}

SHIFT_TRANSITIONS = {
    ShiftStatus.PLANNED.value: [ShiftStatus.REPLACED.value, ShiftStatus.FLAGGED.value],
    ShiftStatus.REPLACED.value: [],
    ShiftStatus.FLAGGED.value: [],
}


def validate_allocation_transition(old_status, new_status):
    """Return True if allocation status transition is allowed."""
    return new_status in ALLOCATION_TRANSITIONS.get(old_status, [])


def validate_shift_transition(old_status, new_status):
    """Return True if shift status transition is allowed."""
    return new_status in SHIFT_TRANSITIONS.get(old_status, [])


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


def _time_str(value):
    return value.strftime("%H:%M") if value else None


class LoomSettings(db.Model):
    """
    Persisted Loom configuration. Exactly one row (id=1) is ever used;
    read and written through ``rabs.services.loom_settings``.
    """

    __tablename__ = "loom_settings"

    id = db.Column(db.Integer, primary_key=True)
    window_weeks = db.Column(db.Integer, nullable=False, default=4)
    staff_ratio = db.Column(
        db.Integer, nullable=False, default=5,
        comment="WPU threshold: participants per support worker",
    )
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "window_weeks": self.window_weeks,
            "staff_ratio": self.staff_ratio,
            "updated_at": _iso(self.updated_at),
        }


class LoomInstance(db.Model):
    """
    One concrete occurrence of a program on one date.

    ``staffing_status`` / ``vehicle_status`` / ``reoptimized`` hold the
    optimisation state; ``capacity`` is the enrolled count at generation time.
    """

    __tablename__ = "loom_instances"
    __table_args__ = (
        db.UniqueConstraint("program_id", "instance_date", name="uq_loom_instance_program_date"),
        db.Index("idx_loom_instance_date", "instance_date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    program_id = db.Column(
        db.Integer, db.ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    instance_date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    venue_id = db.Column(
        db.Integer, db.ForeignKey("venues.id", ondelete="SET NULL"), nullable=True,
    )
    status = db.Column(
        db.String(20), nullable=False, default=InstanceStatus.PENDING.value,
        comment="pending | generated | needs_attention",
    )
    capacity = db.Column(db.Integer, nullable=False, default=0)

    staffing_status = db.Column(db.String(20), nullable=True)
    vehicle_status = db.Column(db.String(20), nullable=True)
    reoptimized = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    program = db.relationship("Program")
    time_slots = db.relationship(
        "LoomTimeSlot", backref="instance", cascade="all, delete-orphan",
        order_by="LoomTimeSlot.start_time",
    )
    allocations = db.relationship(
        "ParticipantAllocation", backref="instance", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    shifts = db.relationship(
        "StaffShift", backref="instance", lazy="dynamic", cascade="all, delete-orphan",
    )
    vehicle_runs = db.relationship(
        "VehicleRun", backref="instance", lazy="dynamic", cascade="all, delete-orphan",
    )

    @property
    def optimisation_state(self) -> dict:
        return {
            "staffing_status": self.staffing_status,
            "vehicle_status": self.vehicle_status,
            "reoptimized": self.reoptimized,
        }

    def refresh_status(self):
        """Derive ``status`` from the sub-step statuses.

        Any insufficient or flagged sub-step puts the instance in
        ``needs_attention``; clearing them moves it back to ``generated``.
        ``pending`` is left alone until participants are allocated.
        """
        flagged = {StepStatus.INSUFFICIENT.value, StepStatus.NEEDS_ATTENTION.value}
        if self.staffing_status in flagged or self.vehicle_status in flagged:
            self.status = InstanceStatus.NEEDS_ATTENTION.value
        elif self.status == InstanceStatus.NEEDS_ATTENTION.value:
            self.status = InstanceStatus.GENERATED.value

    def start_datetime(self):
        return datetime.combine(self.instance_date, self.start_time)

    def end_datetime(self):
        return datetime.combine(self.instance_date, self.end_time)

    def to_dict(self):
        return {
            "id": self.id,
            "program_id": self.program_id,
            "program_name": self.program.name if self.program else None,
            "instance_date": _iso(self.instance_date),
            "start_time": _time_str(self.start_time),
            "end_time": _time_str(self.end_time),
            "venue_id": self.venue_id,
            "status": self.status,
            "capacity": self.capacity,
            "optimisation_state": self.optimisation_state,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<LoomInstance {self.id}: program={self.program_id} {self.instance_date} [{self.status}]>"


class LoomTimeSlot(db.Model):
    __tablename__ = "loom_time_slots"

    id = db.Column(db.Integer, primary_key=True)
    loom_instance_id = db.Column(
        db.Integer, db.ForeignKey("loom_instances.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    label = db.Column(db.String(100), default="")
    card_type = db.Column(db.String(10), nullable=False, comment="PICKUP | ACTIVITY | DROPOFF")

    def to_dict(self):
        return {
            "id": self.id,
            "start_time": _time_str(self.start_time),
            "end_time": _time_str(self.end_time),
            "label": self.label,
            "card_type": self.card_type,
        }


class ParticipantAllocation(db.Model):
    """
    Participant booked into an instance. Cancelled rows are kept for billing;
    a cancelled allocation never returns to planned.
    """

    __tablename__ = "loom_participant_allocations"
    __table_args__ = (
        db.UniqueConstraint(
            "loom_instance_id", "participant_id", name="uq_loom_allocation_instance_participant",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    loom_instance_id = db.Column(
        db.Integer, db.ForeignKey("loom_instances.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    participant_id = db.Column(
        db.Integer, db.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False,
    )
    billing_code = db.Column(db.String(50), nullable=False, default="DEFAULT")
    planned_rate = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    status = db.Column(
        db.String(20), nullable=False, default=AllocationStatus.PLANNED.value,
        comment="planned | cancelled",
    )
    cancellation_type = db.Column(db.String(20), nullable=True, comment="normal | short_notice")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    participant = db.relationship("Participant")

    def to_dict(self):
        participant = self.participant
        return {
            "id": self.id,
            "loom_instance_id": self.loom_instance_id,
            "participant_id": self.participant_id,
            "participant_name": participant.full_name if participant else None,
            "billing_code": self.billing_code,
            "planned_rate": float(self.planned_rate or 0),
            "status": self.status,
            "cancellation_type": self.cancellation_type,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<ParticipantAllocation {self.id}: participant={self.participant_id} [{self.status}]>"


class StaffShift(db.Model):
    """
    Staff member rostered onto an instance.

    Sickness never deletes a row: the old shift becomes ``replaced`` (and a new
    row is inserted) or ``flagged``, so each instance keeps its staffing history.
    """

    __tablename__ = "loom_staff_shifts"

    id = db.Column(db.Integer, primary_key=True)
    loom_instance_id = db.Column(
        db.Integer, db.ForeignKey("loom_instances.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    staff_id = db.Column(
        db.Integer, db.ForeignKey("staff.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    role = db.Column(db.String(10), nullable=False, comment="lead | support | driver")
    start_ts = db.Column(db.DateTime, nullable=False)
    end_ts = db.Column(db.DateTime, nullable=False)
    status = db.Column(
        db.String(10), nullable=False, default=ShiftStatus.PLANNED.value,
        comment="planned | replaced | flagged",
    )
    notes = db.Column(db.String(300), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    staff = db.relationship("Staff")

    @property
    def hours(self) -> float:
        return (self.end_ts - self.start_ts).total_seconds() / 3600

    def to_dict(self):
        staff = self.staff
        return {
            "id": self.id,
            "loom_instance_id": self.loom_instance_id,
            "staff_id": self.staff_id,
            "staff_name": staff.full_name if staff else None,
            "role": self.role,
            "start_ts": _iso(self.start_ts),
            "end_ts": _iso(self.end_ts),
            "status": self.status,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<StaffShift {self.id}: {self.role} staff={self.staff_id} [{self.status}]>"


class VehicleRun(db.Model):
    """
    Vehicle run for an instance. ``route_data`` holds the ordered stops and
    the estimated duration/distance; runs are replaced wholesale when the
    instance's vehicles are reassigned.
    """

    __tablename__ = "loom_vehicle_runs"

    id = db.Column(db.Integer, primary_key=True)
    loom_instance_id = db.Column(
        db.Integer, db.ForeignKey("loom_instances.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    vehicle_id = db.Column(
        db.Integer, db.ForeignKey("vehicles.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    run_type = db.Column(db.String(10), nullable=True, comment="PICKUP | DROPOFF")
    route_data = db.Column(db.JSON, default=dict)
    seats_used = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(
        db.String(20), nullable=False, default=RunStatus.PLANNED.value,
        comment="placeholder | planned",
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    vehicle = db.relationship("Vehicle")

    def to_dict(self):
        vehicle = self.vehicle
        return {
            "id": self.id,
            "loom_instance_id": self.loom_instance_id,
            "vehicle_id": self.vehicle_id,
            "vehicle_registration": vehicle.registration if vehicle else None,
            "run_type": self.run_type,
            "route_data": self.route_data or {},
            "seats_used": self.seats_used,
            "status": self.status,
        }

    def __repr__(self):
        return f"<VehicleRun {self.id}: vehicle={self.vehicle_id} seats={self.seats_used}>"
