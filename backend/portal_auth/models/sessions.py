from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime

from ..extensions import db
from .accounts import _enum_values
from portal_auth.time_utils import to_utc_z, utcnow


class InvalidationReason(str, enum.Enum):
    LOGOUT = "logout"
    NEW_LOGIN = "new_login"
    EXPIRED = "expired"
    ADMIN_RESET = "admin_reset"
    DEVICE_RESET = "device_reset"
    ACCOUNT_SUSPENDED = "account_suspended"


@dataclass(frozen=True)
class SessionLive:
    pass


@dataclass(frozen=True)
class SessionEnded:
    at: datetime
    reason: InvalidationReason


class AuthSession(db.Model):
    """
    One authenticated login instance.

    The session token and the current refresh token are stored as SHA-256
    hashes only; the plaintext values exist only in the login/refresh
    response.

    Sessions are never deleted. Ending a session sets is_active=False,
    invalidated_at and invalidation_reason together (see `end`); the check
    constraint rejects any other combination.
    """
    __tablename__ = "auth_sessions"
    __table_args__ = (
        db.Index("ix_auth_sessions_account_active", "account_id", "is_active"),
        db.CheckConstraint(
            "(is_active AND invalidated_at IS NULL AND invalidation_reason IS NULL)"
            " OR (NOT is_active AND invalidated_at IS NOT NULL AND invalidation_reason IS NOT NULL)",
            name="ck_auth_sessions_lifecycle",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(
        db.Integer, db.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    session_token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    refresh_token_hash = db.Column(db.String(64), nullable=True, unique=True, index=True)

    fingerprint = db.Column(db.String(500), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    last_activity = db.Column(db.DateTime, nullable=False, default=utcnow)
    invalidated_at = db.Column(db.DateTime, nullable=True)
    invalidation_reason = db.Column(
        db.Enum(InvalidationReason, native_enum=False, length=32, values_callable=_enum_values),
        nullable=True,
    )

    account = db.relationship("Account", back_populates="sessions")
    retired_refresh_tokens = db.relationship(
        "RetiredRefreshToken",
        back_populates="session",
        cascade="all, delete-orphan",
        lazy=True,
    )

    @property
    def state(self) -> SessionLive | SessionEnded:
        if self.is_active:
            return SessionLive()
        return SessionEnded(at=self.invalidated_at, reason=self.invalidation_reason)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def end(self, *, at: datetime, reason: InvalidationReason) -> bool:
        """Terminate the session. Returns False if it had already ended."""
        if not self.is_active:
            return False
        self.is_active = False
        self.invalidated_at = at
        self.invalidation_reason = reason
        return True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "last_activity": to_utc_z(self.last_activity),
            "invalidated_at": to_utc_z(self.invalidated_at),
            "invalidation_reason": self.invalidation_reason.value if self.invalidation_reason else None,
        }


class RetiredRefreshToken(db.Model):
    """
    Hash of a refresh token that has already been rotated away.

    Presenting one of these again is a replay: the owning session is
    invalidated.
    """
    __tablename__ = "retired_refresh_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(
        db.Integer, db.ForeignKey("auth_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    rotated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    session = db.relationship("AuthSession", back_populates="retired_refresh_tokens")
