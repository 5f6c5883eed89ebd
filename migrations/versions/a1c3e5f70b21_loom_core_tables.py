"""loom_core_tables

Creates the roster reference tables and the Loom tables:
  - venues, programs, participants, enrollments, enrollment_billing_codes
  - staff, staff_availability, staff_unavailabilities
  - vehicles, vehicle_blackouts
  - loom_settings, loom_instances, loom_time_slots
  - loom_participant_allocations, loom_staff_shifts, loom_vehicle_runs
  - loom_audit_log, scheduled_jobs

Tables are created conditionally so the migration also runs against a
development database that already received them via db.create_all().

Revision ID: a1c3e5f70b21
Revises:
Create Date: 2026-10-15 09:12:40.118203
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c3e5f70b21'
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    existing = set(sa_inspect(bind).get_table_names())

    # ── Roster ───────────────────────────────────────────────────────────
    if "venues" not in existing:
        op.create_table(
            "venues",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("address", sa.String(300)),
            sa.Column("suburb", sa.String(100)),
        )

    if "programs" not in existing:
        op.create_table(
            "programs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("program_type", sa.String(50)),
            sa.Column("description", sa.Text()),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date()),
            sa.Column("repeat_pattern", sa.String(20), nullable=False, server_default="weekly",
                      comment="none | weekly | fortnightly | monthly"),
            sa.Column("days_of_week", sa.JSON()),
            sa.Column("start_time", sa.Time(), nullable=False),
            sa.Column("end_time", sa.Time(), nullable=False),
            sa.Column("time_slots", sa.JSON()),
            sa.Column("venue_id", sa.Integer(), sa.ForeignKey("venues.id", ondelete="SET NULL")),
            sa.Column("is_centre_based", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("staff_assignment_mode", sa.String(10), nullable=False, server_default="auto"),
            sa.Column("additional_staff_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("ix_programs_active", "programs", ["active"])

    if "participants" not in existing:
        op.create_table(
            "participants",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("first_name", sa.String(100), nullable=False),
            sa.Column("last_name", sa.String(100), nullable=False),
            sa.Column("ndis_number", sa.String(20), unique=True),
            sa.Column("address", sa.String(300)),
            sa.Column("suburb", sa.String(100)),
            sa.Column("latitude", sa.Float()),
            sa.Column("longitude", sa.Float()),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        )

    if "enrollments" not in existing:
        op.create_table(
            "enrollments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("participant_id", sa.Integer(),
                      sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False),
            sa.Column("program_id", sa.Integer(),
                      sa.ForeignKey("programs.id", ondelete="CASCADE"), nullable=False),
            sa.Column("start_date", sa.Date()),
            sa.Column("end_date", sa.Date()),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        )
        op.create_index("idx_enrollment_program_active", "enrollments", ["program_id", "active"])

    if "enrollment_billing_codes" not in existing:
        op.create_table(
            "enrollment_billing_codes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("enrollment_id", sa.Integer(),
                      sa.ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False),
            sa.Column("code", sa.String(50), nullable=False),
            sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=False, server_default="0"),
            sa.Column("hours", sa.Numeric(6, 2), nullable=False, server_default="0"),
            sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        )

    if "staff" not in existing:
        op.create_table(
            "staff",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("first_name", sa.String(100), nullable=False),
            sa.Column("last_name", sa.String(100), nullable=False),
            sa.Column("contracted_hours", sa.Float(), nullable=False, server_default="0"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        )

    if "staff_availability" not in existing:
        op.create_table(
            "staff_availability",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("staff_id", sa.Integer(),
                      sa.ForeignKey("staff.id", ondelete="CASCADE"), nullable=False),
            sa.Column("day_of_week", sa.Integer(), nullable=False, comment="0=Sunday … 6=Saturday"),
            sa.Column("start_time", sa.Time(), nullable=False),
            sa.Column("end_time", sa.Time(), nullable=False),
        )
        op.create_index("idx_staff_availability_day", "staff_availability", ["day_of_week"])

    if "staff_unavailabilities" not in existing:
        op.create_table(
            "staff_unavailabilities",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("staff_id", sa.Integer(),
                      sa.ForeignKey("staff.id", ondelete="CASCADE"), nullable=False),
            sa.Column("start_ts", sa.DateTime(), nullable=False),
            sa.Column("end_ts", sa.DateTime(), nullable=False),
            sa.Column("reason", sa.String(200)),
            _ts("created_at"),
        )
        op.create_index("ix_staff_unavailabilities_staff_id", "staff_unavailabilities", ["staff_id"])

    if "vehicles" not in existing:
        op.create_table(
            "vehicles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("registration", sa.String(20), nullable=False, unique=True),
            sa.Column("description", sa.String(200)),
            sa.Column("seats", sa.Integer(), nullable=False, comment="Total seats including the driver"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        )

    if "vehicle_blackouts" not in existing:
        op.create_table(
            "vehicle_blackouts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("vehicle_id", sa.Integer(),
                      sa.ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False),
            sa.Column("start_ts", sa.DateTime(), nullable=False),
            sa.Column("end_ts", sa.DateTime(), nullable=False),
            sa.Column("reason", sa.String(200)),
            _ts("created_at"),
        )
        op.create_index("ix_vehicle_blackouts_vehicle_id", "vehicle_blackouts", ["vehicle_id"])

    # ── Loom ─────────────────────────────────────────────────────────────
    if "loom_settings" not in existing:
        op.create_table(
            "loom_settings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("window_weeks", sa.Integer(), nullable=False, server_default="4"),
            sa.Column("staff_ratio", sa.Integer(), nullable=False, server_default="5",
                      comment="WPU threshold: participants per support worker"),
            _ts("updated_at"),
        )

    if "loom_instances" not in existing:
        op.create_table(
            "loom_instances",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("program_id", sa.Integer(),
                      sa.ForeignKey("programs.id", ondelete="CASCADE"), nullable=False),
            sa.Column("instance_date", sa.Date(), nullable=False),
            sa.Column("start_time", sa.Time(), nullable=False),
            sa.Column("end_time", sa.Time(), nullable=False),
            sa.Column("venue_id", sa.Integer(), sa.ForeignKey("venues.id", ondelete="SET NULL")),
            sa.Column("status", sa.String(20), nullable=False, server_default="pending",
                      comment="pending | generated | needs_attention"),
            sa.Column("capacity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("staffing_status", sa.String(20)),
            sa.Column("vehicle_status", sa.String(20)),
            sa.Column("reoptimized", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("created_at"),
            _ts("updated_at"),
            sa.UniqueConstraint("program_id", "instance_date", name="uq_loom_instance_program_date"),
        )
        op.create_index("idx_loom_instance_date", "loom_instances", ["instance_date"])
        op.create_index("ix_loom_instances_program_id", "loom_instances", ["program_id"])

    if "loom_time_slots" not in existing:
        op.create_table(
            "loom_time_slots",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("loom_instance_id", sa.Integer(),
                      sa.ForeignKey("loom_instances.id", ondelete="CASCADE"), nullable=False),
            sa.Column("start_time", sa.Time(), nullable=False),
            sa.Column("end_time", sa.Time(), nullable=False),
            sa.Column("label", sa.String(100)),
            sa.Column("card_type", sa.String(10), nullable=False, comment="PICKUP | ACTIVITY | DROPOFF"),
        )
        op.create_index("ix_loom_time_slots_loom_instance_id", "loom_time_slots", ["loom_instance_id"])

    if "loom_participant_allocations" not in existing:
        op.create_table(
            "loom_participant_allocations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("loom_instance_id", sa.Integer(),
                      sa.ForeignKey("loom_instances.id", ondelete="CASCADE"), nullable=False),
            sa.Column("participant_id", sa.Integer(),
                      sa.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False),
            sa.Column("billing_code", sa.String(50), nullable=False, server_default="DEFAULT"),
            sa.Column("planned_rate", sa.Numeric(10, 2), nullable=False, server_default="0"),
            sa.Column("status", sa.String(20), nullable=False, server_default="planned"),
            sa.Column("cancellation_type", sa.String(20), comment="normal | short_notice"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.UniqueConstraint("loom_instance_id", "participant_id",
                                name="uq_loom_allocation_instance_participant"),
        )
        op.create_index("ix_loom_participant_allocations_loom_instance_id",
                        "loom_participant_allocations", ["loom_instance_id"])

    if "loom_staff_shifts" not in existing:
        op.create_table(
            "loom_staff_shifts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("loom_instance_id", sa.Integer(),
                      sa.ForeignKey("loom_instances.id", ondelete="CASCADE"), nullable=False),
            sa.Column("staff_id", sa.Integer(), sa.ForeignKey("staff.id", ondelete="SET NULL")),
            sa.Column("role", sa.String(10), nullable=False, comment="lead | support | driver"),
            sa.Column("start_ts", sa.DateTime(), nullable=False),
            sa.Column("end_ts", sa.DateTime(), nullable=False),
            sa.Column("status", sa.String(10), nullable=False, server_default="planned"),
            sa.Column("notes", sa.String(300)),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("ix_loom_staff_shifts_loom_instance_id", "loom_staff_shifts", ["loom_instance_id"])
        op.create_index("ix_loom_staff_shifts_staff_id", "loom_staff_shifts", ["staff_id"])

    if "loom_vehicle_runs" not in existing:
        op.create_table(
            "loom_vehicle_runs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("loom_instance_id", sa.Integer(),
                      sa.ForeignKey("loom_instances.id", ondelete="CASCADE"), nullable=False),
            sa.Column("vehicle_id", sa.Integer(), sa.ForeignKey("vehicles.id", ondelete="SET NULL")),
            sa.Column("run_type", sa.String(10), comment="PICKUP | DROPOFF"),
            sa.Column("route_data", sa.JSON()),
            sa.Column("seats_used", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(20), nullable=False, server_default="planned"),
            _ts("created_at"),
        )
        op.create_index("ix_loom_vehicle_runs_loom_instance_id", "loom_vehicle_runs", ["loom_instance_id"])
        op.create_index("ix_loom_vehicle_runs_vehicle_id", "loom_vehicle_runs", ["vehicle_id"])

    if "loom_audit_log" not in existing:
        op.create_table(
            "loom_audit_log",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("loom_instance_id", sa.Integer(), nullable=False),
            sa.Column("action", sa.String(40), nullable=False),
            sa.Column("before_state", sa.JSON()),
            sa.Column("after_state", sa.JSON()),
            sa.Column("actor", sa.String(150), nullable=False, server_default="loom_engine"),
            _ts("timestamp", nullable=False),
        )
        op.create_index("idx_loom_audit_instance", "loom_audit_log", ["loom_instance_id"])
        op.create_index("idx_loom_audit_action", "loom_audit_log", ["action"])
        op.create_index("idx_loom_audit_ts", "loom_audit_log", ["timestamp"])

    if "scheduled_jobs" not in existing:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("job_name", sa.String(100), nullable=False, unique=True),
            sa.Column("description", sa.String(500)),
            sa.Column("schedule_config", sa.JSON()),
            sa.Column("status", sa.String(20)),
            sa.Column("is_enabled", sa.Boolean()),
            _ts("last_run_at"),
            sa.Column("last_run_status", sa.String(20)),
            sa.Column("last_run_duration_ms", sa.Integer()),
            sa.Column("last_run_result", sa.JSON()),
            sa.Column("run_count", sa.Integer()),
            sa.Column("error_count", sa.Integer()),
            sa.Column("last_error", sa.Text()),
            _ts("created_at"),
            _ts("updated_at"),
        )


def downgrade():
    for table in (
        "scheduled_jobs",
        "loom_audit_log",
        "loom_vehicle_runs",
        "loom_staff_shifts",
        "loom_participant_allocations",
        "loom_time_slots",
        "loom_instances",
        "loom_settings",
        "vehicle_blackouts",
        "vehicles",
        "staff_unavailabilities",
        "staff_availability",
        "staff",
        "enrollment_billing_codes",
        "enrollments",
        "participants",
        "programs",
        "venues",
    ):
        op.drop_table(table)
