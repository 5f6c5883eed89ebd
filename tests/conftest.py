"""
Shared pytest fixtures for the RABS Loom test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_program / make_participant / enroll / make_staff / make_vehicle:
      factory fixtures for roster rows (flushed, not committed)
"""

from datetime import date, time

import pytest

from rabs import create_app
from rabs.models import db as _db
from rabs.models.roster import (
    Enrollment,
    EnrollmentBillingCode,
    Participant,
    Program,
    Staff,
    StaffAvailability,
    Vehicle,
)

# Monday; most scenarios anchor their window here
TODAY = date(2025, 1, 6)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factory fixtures ─────────────────────────────────────────────────────


@pytest.fixture()
def make_program():
    """Create a Program; defaults to a centre-based Tuesday program 09:00-15:00."""

    def _make(**overrides):
        fields = {
            "name": "Community Access",
            "start_date": TODAY,
            "end_date": None,
            "repeat_pattern": "weekly",
            "days_of_week": [2],
            "start_time": time(9, 0),
            "end_time": time(15, 0),
            "time_slots": [],
            "is_centre_based": True,
            "staff_assignment_mode": "auto",
            "additional_staff_count": 0,
            "active": True,
        }
        fields.update(overrides)
        program = Program(**fields)
        _db.session.add(program)
        _db.session.flush()
        return program

    return _make


@pytest.fixture()
def make_participant():
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        fields = {
            "first_name": f"Participant{counter['n']}",
            "last_name": "Test",
            "address": f"{counter['n']} Test St",
            "suburb": "Newtown",
        }
        fields.update(overrides)
        participant = Participant(**fields)
        _db.session.add(participant)
        _db.session.flush()
        return participant

    return _make


@pytest.fixture()
def enroll():
    def _enroll(program, participant, billing_code=None, hourly_rate=0, **overrides):
        enrollment = Enrollment(program_id=program.id, participant_id=participant.id, **overrides)
        if billing_code:
            enrollment.billing_codes.append(EnrollmentBillingCode(
                code=billing_code, hourly_rate=hourly_rate, hours=6, is_default=True,
            ))
        _db.session.add(enrollment)
        _db.session.flush()
        return enrollment

    return _enroll


@pytest.fixture()
def make_staff():
    """Create a Staff member available every day of the week (08:00-17:00 by default)."""
    counter = {"n": 0}

    def _make(contracted_hours=38, days=range(7), start=time(8, 0), end=time(17, 0), **overrides):
        counter["n"] += 1
        fields = {
            "first_name": f"Worker{counter['n']}",
            "last_name": "Staff",
            "contracted_hours": contracted_hours,
        }
        fields.update(overrides)
        staff = Staff(**fields)
        for day in days:
            staff.availability.append(StaffAvailability(day_of_week=day, start_time=start, end_time=end))
        _db.session.add(staff)
        _db.session.flush()
        return staff

    return _make


@pytest.fixture()
def make_vehicle():
    counter = {"n": 0}

    def _make(seats=8, **overrides):
        counter["n"] += 1
        vehicle = Vehicle(registration=overrides.pop("registration", f"BUS{counter['n']:03d}"),
                          seats=seats, **overrides)
        _db.session.add(vehicle)
        _db.session.flush()
        return vehicle

    return _make


@pytest.fixture()
def populated_program(make_program, make_participant, enroll):
    """Program factory that also enrolls ``participants`` people."""

    def _make(participants=0, **overrides):
        program = make_program(**overrides)
        for _ in range(participants):
            enroll(program, make_participant())
        return program

    return _make
