from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..extensions import db
from portal_auth.time_utils import to_utc_z, utcnow


@dataclass(frozen=True)
class BindingActive:
    pass


@dataclass(frozen=True)
class BindingDeactivated:
    at: datetime
    by: int | None
    reason: str | None


class DeviceBinding(db.Model):
    """
    Binds a device fingerprint to an account.

    At most one binding per account may be both primary and active; the
    partial unique index enforces this in the store itself, so two
    concurrent first logins cannot both install a primary device.

    Bindings are never deleted. Deactivation is a one-way lifecycle step
    (see `state` / `deactivate`); the check constraint keeps is_active and
    deactivated_at consistent.
    """
    __tablename__ = "device_bindings"
    __table_args__ = (
        db.Index("ix_device_bindings_account_active", "account_id", "is_active"),
        db.Index(
            "uq_device_bindings_live_primary",
            "account_id",
            unique=True,
            sqlite_where=db.text("is_primary AND is_active"),
            postgresql_where=db.text("is_primary AND is_active"),
        ),
        db.CheckConstraint(
            "(is_active AND deactivated_at IS NULL) OR (NOT is_active AND deactivated_at IS NOT NULL)",
            name="ck_device_bindings_lifecycle",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(
        db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    fingerprint = db.Column(db.String(500), nullable=False)
    is_primary = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    browser_info = db.Column(db.JSON, nullable=True)
    registered_ip = db.Column(db.String(45), nullable=False)
    ip_country = db.Column(db.String(100), nullable=True)  # advisory only

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    deactivated_at = db.Column(db.DateTime, nullable=True)
    deactivated_by = db.Column(db.Integer, nullable=True)  # actor account id
    deactivation_reason = db.Column(db.String(255), nullable=True)

    account = db.relationship("Account", back_populates="device_bindings")

    @property
    def state(self) -> BindingActive | BindingDeactivated:
        if self.is_active:
            return BindingActive()
        return BindingDeactivated(
            at=self.deactivated_at,
            by=self.deactivated_by,
            reason=self.deactivation_reason,
        )

    @property
    def is_live_primary(self) -> bool:
        return bool(self.is_primary and self.is_active)

    def deactivate(self, *, at: datetime, by: int | None, reason: str | None) -> bool:
        """Move to the deactivated state. Returns False if already there."""
        if not self.is_active:
            return False
        self.is_active = False
        self.deactivated_at = at
        self.deactivated_by = by
        self.deactivation_reason = reason
        return True

    def to_dict(self) -> dict:
        state = self.state
        return {
            "id": self.id,
            "account_id": self.account_id,
            "fingerprint": truncate_fingerprint(self.fingerprint),
            "is_primary": self.is_primary,
            "is_active": self.is_active,
            "registered_ip": self.registered_ip,
            "ip_country": self.ip_country,
            "created_at": to_utc_z(self.created_at),
            "deactivated_at": to_utc_z(state.at) if isinstance(state, BindingDeactivated) else None,
            "deactivated_by": self.deactivated_by,
            "deactivation_reason": self.deactivation_reason,
        }


def truncate_fingerprint(fingerprint: str | None) -> str | None:
    if fingerprint is None:
        return None
    return fingerprint[:20] + "..."
