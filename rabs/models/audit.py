"""
RABS Loom
Audit domain model.

Models:
    - LoomAuditLog: immutable, append-only record of Loom state transitions.
"""

from datetime import UTC, datetime

from rabs.models import db

# ── Constants ────────────────────────────────────────────────────────────────

LOOM_AUDIT_ACTIONS = {
    # Window / generation
    "instance_created",
    "instance_removed",
    "instance_flagged",
    # Participants
    "participant_allocated",
    "participant_cancelled",
    # Staff
    "staff_assigned",
    "staffing_insufficient",
    "support_removed",
    "staff_replaced",
    "staff_flagged",
    # Vehicles
    "vehicles_assigned",
    "vehicles_insufficient",
    # Reoptimization
    "reoptimization_started",
}


class LoomAuditLog(db.Model):
    """
    One row per meaningful state transition of a Loom instance.

    ``loom_instance_id`` is deliberately not a foreign key: entries outlive
    instances removed by a window shrink or program regeneration.
    """

    __tablename__ = "loom_audit_log"
    __table_args__ = (
        db.Index("idx_loom_audit_instance", "loom_instance_id"),
        db.Index("idx_loom_audit_action", "action"),
        db.Index("idx_loom_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    loom_instance_id = db.Column(db.Integer, nullable=False)
    action = db.Column(
        db.String(40), nullable=False,
        comment="instance_created | participant_cancelled | staff_replaced | …",
    )
    before_state = db.Column(db.JSON, nullable=True)
    after_state = db.Column(db.JSON, nullable=True)
    actor = db.Column(db.String(150), nullable=False, default="loom_engine")

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "loom_instance_id": self.loom_instance_id,
            "action": self.action,
            "before_state": self.before_state,
            "after_state": self.after_state,
            "actor": self.actor,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<LoomAuditLog {self.id}: {self.action} on instance {self.loom_instance_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_loom_audit(
    *,
    instance_id: int,
    action: str,
    before: dict | None = None,
    after: dict | None = None,
    actor: str = "loom_engine",
) -> LoomAuditLog:
    """
    Append a single audit row.  Uses ``flush`` so the entry commits or rolls
    back together with the state change it documents.

    Returns the (flushed) LoomAuditLog instance.
    """
    if action not in LOOM_AUDIT_ACTIONS:
        raise ValueError(f"Unknown loom audit action: {action}")

    log = LoomAuditLog(
        loom_instance_id=int(instance_id),
        action=action,
        before_state=before,
        after_state=after,
        actor=actor,
    )
    db.session.add(log)
    db.session.flush()
    return log
