from __future__ import annotations

import enum

from sqlalchemy import event

from ..extensions import db
from .accounts import _enum_values
from portal_auth.time_utils import to_utc_z, utcnow


class AuditAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    UPLOAD = "upload"
    DOWNLOAD = "download"
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_CHANGES = "request_changes"
    ASSIGN_REVIEWER = "assign_reviewer"
    ADD_COMMENT = "add_comment"
    RESOLVE_COMMENT = "resolve_comment"


class AuditLogImmutableError(Exception):
    """Raised when code tries to modify or delete an audit entry."""
    pass


class AuditLogEntry(db.Model):
    """
    Security-relevant fact: who did what to which entity, from where.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    The account reference is informational; it is nulled (not cascaded)
    when the account is purged.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_logs_timestamp", "timestamp"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(100), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)  # None for attempts against unknown accounts
    action = db.Column(
        db.Enum(AuditAction, native_enum=False, length=32, values_callable=_enum_values),
        nullable=False,
    )
    old_values = db.Column(db.JSON, nullable=True)
    new_values = db.Column(db.JSON, nullable=True)

    performed_by_account_id = db.Column(
        db.Integer, db.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.Text, nullable=True)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action.value,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "performed_by_account_id": self.performed_by_account_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "timestamp": to_utc_z(self.timestamp),
        }


@event.listens_for(AuditLogEntry, "before_update")
def _reject_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit entry {target.id} is append-only")


@event.listens_for(AuditLogEntry, "before_delete")
def _reject_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit entry {target.id} is append-only")
