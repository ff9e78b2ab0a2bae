"""
Requisition Workflow Platform
Audit domain model.

Models:
    - AuditLog: immutable, append-only audit trail for every mutating action.

Append-only is enforced at the ORM layer: ``before_update`` and
``before_delete`` mapper events raise AuditImmutableError, so the
surrounding transaction aborts and the row is never changed.
"""

import json
from datetime import datetime, timezone

from sqlalchemy import event

from reqflow.core.exceptions import AuditImmutableError
from reqflow.models import db
from reqflow.models.base import TenantModel


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    "create",
    "status_change",
    "comment",
}


class AuditLog(TenantModel):
    """
    Immutable audit trail entry.

    One row per committed mutation. ``old_values`` / ``new_values`` carry the
    structured before/after snapshot of the record.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_record", "table_name", "record_id"),
        db.Index("idx_audit_actor", "actor_id"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    table_name = db.Column(db.String(60), nullable=False)
    record_id = db.Column(
        db.String(36), nullable=False,
        comment="PK of the referenced row (int-as-string)",
    )
    action = db.Column(db.String(60), nullable=False)
    old_values_json = db.Column(db.Text, nullable=True)
    new_values_json = db.Column(db.Text, nullable=True)
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="NULL for system-originated entries",
    )

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _load(raw):
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return None

    @property
    def old_values(self) -> dict | None:
        return self._load(self.old_values_json)

    @property
    def new_values(self) -> dict | None:
        return self._load(self.new_values_json)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "action": self.action,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "actor_id": self.actor_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.table_name}/{self.record_id}>"


@event.listens_for(AuditLog, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AuditImmutableError(target.id, "update")


@event.listens_for(AuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditImmutableError(target.id, "delete")


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    table_name: str,
    record_id: int | str,
    action: str,
    actor_id: int | None,
    organization_id: int,
    old_values: dict | None = None,
    new_values: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Errors propagate: audit logging on mutating actions is mandatory, so a
    failed write must fail the caller's operation.

    Returns the (flushed) AuditLog instance.
    """
    log = AuditLog(
        organization_id=organization_id,
        table_name=table_name,
        record_id=str(record_id),
        action=action,
        actor_id=actor_id,
        old_values_json=json.dumps(old_values, default=str) if old_values is not None else None,
        new_values_json=json.dumps(new_values, default=str) if new_values is not None else None,
    )
    db.session.add(log)
    db.session.flush()
    return log


def list_for_record(table_name: str, record_id: int | str, organization_id: int) -> list[AuditLog]:
    """Audit entries for one record, oldest first, scoped to the organization."""
    return (
        AuditLog.query_for_organization(organization_id)
        .filter_by(table_name=table_name, record_id=str(record_id))
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
        .all()
    )
