from __future__ import annotations

import enum

from ..extensions import db
from portal_auth.time_utils import to_utc_z, utcnow


class AccountKind(str, enum.Enum):
    CUSTOMER = "customer"
    SUPPLIER = "supplier"
    ADMIN = "admin"


class AccountStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Account(db.Model):
    """
    Authenticatable identity: customer profile, supplier profile or
    administrator user.

    Email is unique case-insensitively; it is normalized to lower case
    before it reaches this table.

    Owns its device bindings, sessions and login attempts (deleted with the
    account on purge). Audit entries only reference it informationally.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_accounts_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(
        db.Enum(AccountKind, native_enum=False, length=16, values_callable=_enum_values),
        nullable=False,
        index=True,
    )
    email = db.Column(db.String(255), nullable=False, index=True)

    # Argon2id encoded hash (legacy rows may still hold a bcrypt hash)
    password_hash = db.Column(db.String(255), nullable=False)
    # Salt segment of password_hash, kept for reporting and rotation checks
    password_salt = db.Column(db.String(64), nullable=False)

    roles = db.Column(db.JSON, nullable=False, default=list)

    status = db.Column(
        db.Enum(AccountStatus, native_enum=False, length=16, values_callable=_enum_values),
        nullable=False,
        default=AccountStatus.ACTIVE,
    )
    suspended_at = db.Column(db.DateTime, nullable=True)
    suspended_by = db.Column(db.Integer, nullable=True)
    suspension_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_login_at = db.Column(db.DateTime, nullable=True)
    password_changed_at = db.Column(db.DateTime, nullable=True)

    device_bindings = db.relationship(
        "DeviceBinding",
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="DeviceBinding.id",
        lazy=True,
    )
    sessions = db.relationship(
        "AuthSession",
        back_populates="account",
        cascade="all, delete-orphan",
        lazy=True,
    )
    login_attempts = db.relationship(
        "LoginAttempt",
        back_populates="account",
        cascade="all, delete-orphan",
        lazy=True,
    )

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "email": self.email,
            "roles": list(self.roles or []),
            "status": self.status.value,
            "suspended_at": to_utc_z(self.suspended_at),
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at),
        }
