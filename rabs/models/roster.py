"""
RABS Loom
Roster reference models: the records the Loom engine reads from.

Models:
    - Venue:                  where a program is delivered
    - Program:                recurring (or one-off) activity template
    - Participant:            NDIS participant
    - Enrollment:             participant ↔ program link with a date range
    - EnrollmentBillingCode:  billing line for an enrollment (code, rate, hours)
    - Staff:                  support worker with weekly contracted hours
    - StaffAvailability:      weekly availability window per day-of-week
    - StaffUnavailability:    dated blackout for a staff member (leave, sickness)
    - Vehicle:                bus / car with seat count (one seat is the driver's)
    - VehicleBlackout:        dated blackout for a vehicle (service, repair)

Architecture:
    Program ──1:N──▶ Enrollment ◀──N:1── Participant
    Enrollment ──1:N──▶ EnrollmentBillingCode
    Staff ──1:N──▶ StaffAvailability / StaffUnavailability
    Vehicle ──1:N──▶ VehicleBlackout

Day-of-week numbering is 0=Sunday … 6=Saturday throughout.
"""

import enum
from datetime import datetime, timezone

from rabs.models import db


# ── Constants ────────────────────────────────────────────────────────────────


class RepeatPattern(str, enum.Enum):
    NONE = "none"
    WEEKLY = "weekly"
    FORTNIGHTLY = "fortnightly"
    MONTHLY = "monthly"


class StaffAssignmentMode(str, enum.Enum):
    AUTO = "auto"
    MANUAL = "manual"


# Fields whose change invalidates already-generated future instances.
# Slots, transport mode and extra staff shape the cards and placeholder shifts.
SCHEDULE_FIELDS = (
    "start_date", "end_date", "repeat_pattern",
    "days_of_week", "start_time", "end_time",
    "time_slots", "is_centre_based", "additional_staff_count",
)


def _utcnow():
    return datetime.now(timezone.utc)


def _time_str(value):
    return value.strftime("%H:%M") if value else None


class Venue(db.Model):
    """Physical location a program runs at."""

    __tablename__ = "venues"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    address = db.Column(db.String(300), default="")
    suburb = db.Column(db.String(100), default="")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "suburb": self.suburb,
        }

    def __repr__(self):
        return f"<Venue {self.id}: {self.name}>"


class Program(db.Model):
    """
    Activity template that the Loom expands into dated instances.

    ``days_of_week`` is a JSON list of weekday numbers (0=Sunday).
    ``time_slots`` is a JSON list of ``{start_time, end_time, label}`` dicts;
    each becomes a time-slot card on every generated instance.
    """

    __tablename__ = "programs"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    program_type = db.Column(db.String(50), default="community_access")
    description = db.Column(db.Text, default="")

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    repeat_pattern = db.Column(
        db.String(20), nullable=False, default=RepeatPattern.WEEKLY.value,
        comment="none | weekly | fortnightly | monthly",
    )
    days_of_week = db.Column(db.JSON, default=list)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    time_slots = db.Column(db.JSON, default=list)

    venue_id = db.Column(
        db.Integer, db.ForeignKey("venues.id", ondelete="SET NULL"), nullable=True,
    )
    is_centre_based = db.Column(db.Boolean, nullable=False, default=True)
    staff_assignment_mode = db.Column(
        db.String(10), nullable=False, default=StaffAssignmentMode.AUTO.value,
        comment="auto | manual",
    )
    additional_staff_count = db.Column(db.Integer, nullable=False, default=0)
    active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    venue = db.relationship("Venue")
    enrollments = db.relationship(
        "Enrollment", backref="program", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "program_type": self.program_type,
            "description": self.description,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "repeat_pattern": self.repeat_pattern,
            "days_of_week": list(self.days_of_week or []),
            "start_time": _time_str(self.start_time),
            "end_time": _time_str(self.end_time),
            "time_slots": list(self.time_slots or []),
            "venue_id": self.venue_id,
            "is_centre_based": self.is_centre_based,
            "staff_assignment_mode": self.staff_assignment_mode,
            "additional_staff_count": self.additional_staff_count,
            "active": self.active,
        }

    def __repr__(self):
        return f"<Program {self.id}: {self.name} [{self.repeat_pattern}]>"


class Participant(db.Model):
    __tablename__ = "participants"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    ndis_number = db.Column(db.String(20), nullable=True, unique=True)
    address = db.Column(db.String(300), default="")
    suburb = db.Column(db.String(100), default="")
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_dict(self):
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "ndis_number": self.ndis_number,
            "address": self.address,
            "suburb": self.suburb,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "active": self.active,
        }

    def __repr__(self):
        return f"<Participant {self.id}: {self.full_name}>"


class Enrollment(db.Model):
    """Participant enrolled in a program between start_date and end_date."""

    __tablename__ = "enrollments"
    __table_args__ = (
        db.Index("idx_enrollment_program_active", "program_id", "active"),
    )

    id = db.Column(db.Integer, primary_key=True)
    participant_id = db.Column(
        db.Integer, db.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False,
    )
    program_id = db.Column(
        db.Integer, db.ForeignKey("programs.id", ondelete="CASCADE"), nullable=False,
    )
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)

    participant = db.relationship("Participant")
    billing_codes = db.relationship(
        "EnrollmentBillingCode", backref="enrollment",
        cascade="all, delete-orphan", order_by="EnrollmentBillingCode.id",
    )

    def covers(self, on_date):
        """True when the enrollment's date range includes *on_date*."""
        if self.start_date and on_date < self.start_date:
            return False
        if self.end_date and on_date > self.end_date:
            return False
        return True

    def default_billing_code(self):
        """Return the default billing line, falling back to the first one."""
        for code in self.billing_codes:
            if code.is_default:
                return code
        return self.billing_codes[0] if self.billing_codes else None

    def to_dict(self):
        return {
            "id": self.id,
            "participant_id": self.participant_id,
            "program_id": self.program_id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "active": self.active,
            "billing_codes": [c.to_dict() for c in self.billing_codes],
        }

    def __repr__(self):
        return f"<Enrollment {self.id}: participant={self.participant_id} program={self.program_id}>"


class EnrollmentBillingCode(db.Model):
    __tablename__ = "enrollment_billing_codes"

    id = db.Column(db.Integer, primary_key=True)
    enrollment_id = db.Column(
        db.Integer, db.ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False,
    )
    code = db.Column(db.String(50), nullable=False, comment="NDIS support item number")
    hourly_rate = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    hours = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "hourly_rate": float(self.hourly_rate or 0),
            "hours": float(self.hours or 0),
            "is_default": self.is_default,
        }


class Staff(db.Model):
    """Support worker. ``contracted_hours`` is per week."""

    __tablename__ = "staff"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    contracted_hours = db.Column(db.Float, nullable=False, default=0)
    active = db.Column(db.Boolean, nullable=False, default=True)

    availability = db.relationship(
        "StaffAvailability", backref="staff", cascade="all, delete-orphan",
    )

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_dict(self):
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "contracted_hours": self.contracted_hours,
            "active": self.active,
        }

    def __repr__(self):
        return f"<Staff {self.id}: {self.full_name}>"


class StaffAvailability(db.Model):
    """Recurring weekly window in which a staff member can work."""

    __tablename__ = "staff_availability"
    __table_args__ = (
        db.Index("idx_staff_availability_day", "day_of_week"),
    )

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(
        db.Integer, db.ForeignKey("staff.id", ondelete="CASCADE"), nullable=False,
    )
    day_of_week = db.Column(db.Integer, nullable=False, comment="0=Sunday … 6=Saturday")
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)

    def contains(self, start_time, end_time):
        """True when [start_time, end_time) lies fully inside this window."""
        return self.start_time <= start_time and self.end_time >= end_time

    def to_dict(self):
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "day_of_week": self.day_of_week,
            "start_time": _time_str(self.start_time),
            "end_time": _time_str(self.end_time),
        }


class StaffUnavailability(db.Model):
    __tablename__ = "staff_unavailabilities"

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(
        db.Integer, db.ForeignKey("staff.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    start_ts = db.Column(db.DateTime, nullable=False)
    end_ts = db.Column(db.DateTime, nullable=False)
    reason = db.Column(db.String(200), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "start_ts": self.start_ts.isoformat(),
            "end_ts": self.end_ts.isoformat(),
            "reason": self.reason,
        }


class Vehicle(db.Model):
    __tablename__ = "vehicles"

    id = db.Column(db.Integer, primary_key=True)
    registration = db.Column(db.String(20), nullable=False, unique=True)
    description = db.Column(db.String(200), default="")
    seats = db.Column(db.Integer, nullable=False, comment="Total seats including the driver")
    active = db.Column(db.Boolean, nullable=False, default=True)

    @property
    def passenger_seats(self):
        return max(self.seats - 1, 0)

    def to_dict(self):
        return {
            "id": self.id,
            "registration": self.registration,
            "description": self.description,
            "seats": self.seats,
            "active": self.active,
        }

    def __repr__(self):
        return f"<Vehicle {self.id}: {self.registration} ({self.seats} seats)>"


class VehicleBlackout(db.Model):
    __tablename__ = "vehicle_blackouts"

    id = db.Column(db.Integer, primary_key=True)
    vehicle_id = db.Column(
        db.Integer, db.ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    start_ts = db.Column(db.DateTime, nullable=False)
    end_ts = db.Column(db.DateTime, nullable=False)
    reason = db.Column(db.String(200), default="")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "vehicle_id": self.vehicle_id,
            "start_ts": self.start_ts.isoformat(),
            "end_ts": self.end_ts.isoformat(),
            "reason": self.reason,
        }
