from __future__ import annotations

import enum

from ..extensions import db
from .accounts import _enum_values
from .devices import truncate_fingerprint
from portal_auth.time_utils import to_utc_z, utcnow


class LoginFailureReason(str, enum.Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    DEVICE_MISMATCH = "device_mismatch"
    ACCOUNT_SUSPENDED = "account_suspended"
    TOO_MANY_ATTEMPTS = "too_many_attempts"


class LoginAttempt(db.Model):
    """
    One login attempt, successful or not.

    Feeds the failed-attempt lockout and the per-account login history.
    The email is recorded even when no account matches it.
    """
    __tablename__ = "login_attempts"
    __table_args__ = (
        db.Index("ix_login_attempts_email_time", "email", "attempted_at"),
        db.Index("ix_login_attempts_account_time", "account_id", "attempted_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(
        db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=True
    )
    email = db.Column(db.String(255), nullable=False)
    success = db.Column(db.Boolean, nullable=False, default=False)
    failure_reason = db.Column(
        db.Enum(LoginFailureReason, native_enum=False, length=32, values_callable=_enum_values),
        nullable=True,
    )
    fingerprint = db.Column(db.String(500), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.Text, nullable=True)
    ip_mismatch_warning = db.Column(db.Boolean, nullable=False, default=False)
    attempted_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    account = db.relationship("Account", back_populates="login_attempts")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "attempted_at": to_utc_z(self.attempted_at),
            "success": self.success,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "fingerprint": truncate_fingerprint(self.fingerprint),
            "ip_mismatch_warning": self.ip_mismatch_warning,
        }
