# Overview: Credential store: account lookup, password hashing and account lifecycle.

"""
Credential Store

Passwords are hashed with Argon2id (memory-hard). Accounts imported from the
previous store may still carry bcrypt hashes; those verify normally and are
re-hashed with Argon2id on the next successful login.

SECURITY NOTES:
- Minimum 8 characters, upper, lower, digit and special char required
- Email is unique case-insensitively (normalized to lower case)
- Lookups of unknown emails still burn one hash verification so response
  time does not reveal whether the account exists
- Suspension, password change and purge terminate every live session
"""

from __future__ import annotations

import re

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from flask import current_app

from ..extensions import db
from ..models import Account, AccountKind, AccountStatus, AuditAction, AuditLogEntry, InvalidationReason
from . import audit_service, session_service
from .errors import AccountNotFound, AccountSuspended, PrivilegeRequired
from portal_auth.time_utils import utcnow


_PASSWORD_HASHER = PasswordHasher()
_DUMMY_HASH: str | None = None


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def hash_password(password: str) -> tuple[str, str]:
    """
    Hash a password with Argon2id after validating its strength.

    Returns (encoded_hash, salt). The salt is the salt segment of the
    encoded hash; Argon2 generates it per call.
    """
    validate_password_strength(password)
    encoded = _PASSWORD_HASHER.hash(password)
    return encoded, extract_salt(encoded)


def extract_salt(password_hash: str) -> str:
    """Salt segment of an Argon2 ($argon2id$v=..$m=..$salt$hash) or bcrypt hash."""
    if password_hash.startswith("$argon2"):
        return password_hash.split("$")[4]
    if password_hash.startswith("$2"):
        return password_hash[7:29]
    raise ValueError("Unrecognized password hash format")


def _is_bcrypt(password_hash: str) -> bool:
    return password_hash.startswith(("$2a$", "$2b$", "$2y$"))


def _check_hash(password: str, password_hash: str) -> bool:
    if _is_bcrypt(password_hash):
        try:
            return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
        except ValueError:
            return False
    try:
        return _PASSWORD_HASHER.verify(password_hash, password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def verify_password(account: Account, password: str) -> bool:
    """
    Constant-time password check against the account's stored hash.

    Legacy bcrypt hashes and Argon2 hashes with outdated parameters are
    upgraded in place (flushed, committed with the caller's transaction).
    """
    if not _check_hash(password, account.password_hash):
        return False

    if _is_bcrypt(account.password_hash) or _PASSWORD_HASHER.check_needs_rehash(account.password_hash):
        encoded = _PASSWORD_HASHER.hash(password)
        update_password_hash(account, encoded, extract_salt(encoded), rehash=True)
        current_app.logger.info("Upgraded password hash for account %s", account.id)
    return True


def burn_verification(password: str) -> None:
    """Spend one hash verification so unknown accounts cost the same time."""
    global _DUMMY_HASH
    if _DUMMY_HASH is None:
        _DUMMY_HASH = _PASSWORD_HASHER.hash("Dummy-Password-1!")
    _check_hash(password, _DUMMY_HASH)


def find_by_email(email: str) -> Account | None:
    return db.session.query(Account).filter_by(email=normalize_email(email)).first()


def get_active_account(email: str) -> Account:
    """
    Look up an account that may log in.

    Raises AccountNotFound or AccountSuspended; the login path reports both
    as a generic authentication failure.
    """
    account = find_by_email(email)
    if account is None:
        raise AccountNotFound(email)
    if account.status != AccountStatus.ACTIVE:
        raise AccountSuspended(email)
    return account


def get_account(account_id: int) -> Account:
    account = db.session.get(Account, account_id)
    if account is None:
        raise AccountNotFound(str(account_id))
    return account


def list_accounts(kind: AccountKind | None = None) -> list[Account]:
    query = db.session.query(Account)
    if kind is not None:
        query = query.filter(Account.kind == kind)
    return query.order_by(Account.id).all()


def require_elevated_actor(actor_id: int) -> Account:
    """Return the actor account if it may perform administrative operations."""
    actor = db.session.get(Account, actor_id)
    elevated = current_app.config["ELEVATED_ACCOUNT_KINDS"]
    if actor is None or not actor.is_active or actor.kind.value not in elevated:
        raise PrivilegeRequired(f"Account {actor_id} is not an active administrator")
    return actor


def create_account(
    email: str,
    password: str,
    kind: AccountKind,
    roles: list[str] | None = None,
) -> Account:
    """
    Create a new account with an Argon2id password hash.

    Raises ValueError if the email is taken (case-insensitive) and
    PasswordValidationError if the password is too weak.
    """
    normalized = normalize_email(email)
    if find_by_email(normalized):
        raise ValueError("An account with this email already exists")

    password_hash, salt = hash_password(password)
    account = Account(
        kind=kind,
        email=normalized,
        password_hash=password_hash,
        password_salt=salt,
        roles=list(roles or [kind.value]),
        status=AccountStatus.ACTIVE,
    )
    db.session.add(account)
    db.session.flush()

    audit_service.log(
        entity_type="account",
        entity_id=account.id,
        action=AuditAction.CREATE,
        new_values={"email": normalized, "kind": kind.value, "roles": account.roles},
    )
    db.session.commit()
    return account


def update_password_hash(account: Account, new_hash: str, new_salt: str, rehash: bool = False) -> None:
    """
    Store a new hash/salt pair. The only mutation of credentials.

    A rehash (same password, upgraded parameters) leaves password_changed_at alone.
    """
    account.password_hash = new_hash
    account.password_salt = new_salt
    if not rehash:
        account.password_changed_at = utcnow()
    db.session.flush()


def change_password(
    account_id: int,
    new_password: str,
    actor_id: int | None = None,
    ip_address: str | None = None,
) -> int:
    """
    Set a new password and end every live session of the account.

    When an administrator (actor other than the owner) changes it the
    sessions end with admin_reset, otherwise with logout.

    Returns count of sessions invalidated.
    """
    account = get_account(account_id)
    by_admin = actor_id is not None and actor_id != account.id
    if by_admin:
        require_elevated_actor(actor_id)

    new_hash, new_salt = hash_password(new_password)
    update_password_hash(account, new_hash, new_salt)

    reason = InvalidationReason.ADMIN_RESET if by_admin else InvalidationReason.LOGOUT
    count = session_service.invalidate_all_for_account(account.id, reason, commit=False)

    audit_service.log(
        entity_type="account",
        entity_id=account.id,
        action=AuditAction.UPDATE,
        new_values={"event": "password_changed", "sessions_invalidated": count},
        performed_by=actor_id if actor_id is not None else account.id,
        ip_address=ip_address,
    )
    db.session.commit()
    current_app.logger.info("Password changed for account %s (%d sessions ended)", account.id, count)
    return count


def suspend_account(account_id: int, actor_id: int, reason: str, ip_address: str | None = None) -> int:
    """
    Suspend an account and end all of its sessions with account_suspended.

    Returns count of sessions invalidated. Raises ValueError if the account
    is already suspended.
    """
    require_elevated_actor(actor_id)
    account = get_account(account_id)
    if account.status == AccountStatus.SUSPENDED:
        raise ValueError("Account is already suspended")

    old_status = account.status
    account.status = AccountStatus.SUSPENDED
    account.suspended_at = utcnow()
    account.suspended_by = actor_id
    account.suspension_reason = reason

    count = session_service.invalidate_all_for_account(
        account.id, InvalidationReason.ACCOUNT_SUSPENDED, commit=False
    )

    audit_service.log(
        entity_type="account",
        entity_id=account.id,
        action=AuditAction.UPDATE,
        old_values={"status": old_status.value},
        new_values={
            "status": AccountStatus.SUSPENDED.value,
            "suspension_reason": reason,
            "event": "account_suspended",
            "sessions_invalidated": count,
        },
        performed_by=actor_id,
        ip_address=ip_address,
    )
    db.session.commit()
    current_app.logger.info("Account %s suspended by %s", account.id, actor_id)
    return count


def reactivate_account(account_id: int, actor_id: int, note: str | None = None,
                       ip_address: str | None = None) -> Account:
    require_elevated_actor(actor_id)
    account = get_account(account_id)
    if account.status == AccountStatus.ACTIVE:
        raise ValueError("Account is already active")

    old_status = account.status
    account.status = AccountStatus.ACTIVE
    account.suspended_at = None
    account.suspended_by = None
    account.suspension_reason = None

    audit_service.log(
        entity_type="account",
        entity_id=account.id,
        action=AuditAction.UPDATE,
        old_values={"status": old_status.value},
        new_values={"status": AccountStatus.ACTIVE.value, "note": note, "event": "account_reactivated"},
        performed_by=actor_id,
        ip_address=ip_address,
    )
    db.session.commit()
    return account


def purge_account(account_id: int, actor_id: int, ip_address: str | None = None) -> None:
    """
    Permanently delete an account.

    Bindings, sessions and login attempts go with it. Audit entries stay,
    with the account reference nulled.
    """
    require_elevated_actor(actor_id)
    account = get_account(account_id)
    if account.id == actor_id:
        raise ValueError("An administrator cannot purge their own account")

    # Bulk update bypasses the append-only guard, which applies to ORM edits only
    db.session.query(AuditLogEntry).filter(
        AuditLogEntry.performed_by_account_id == account.id
    ).update({AuditLogEntry.performed_by_account_id: None}, synchronize_session=False)

    email = account.email
    db.session.delete(account)

    audit_service.log(
        entity_type="account",
        entity_id=account_id,
        action=AuditAction.DELETE,
        old_values={"email": email},
        new_values={"event": "account_purged"},
        performed_by=actor_id,
        ip_address=ip_address,
    )
    db.session.commit()
    current_app.logger.info("Account %s purged by %s", account_id, actor_id)


def revoke_sessions(account_id: int, actor_id: int, ip_address: str | None = None) -> int:
    """End every live session of an account (admin_reset). Returns count."""
    require_elevated_actor(actor_id)
    account = get_account(account_id)

    count = session_service.invalidate_all_for_account(
        account.id, InvalidationReason.ADMIN_RESET, commit=False
    )
    audit_service.log(
        entity_type="account",
        entity_id=account.id,
        action=AuditAction.UPDATE,
        new_values={"event": "sessions_revoked", "sessions_invalidated": count},
        performed_by=actor_id,
        ip_address=ip_address,
    )
    db.session.commit()
    current_app.logger.info("Sessions of account %s revoked by %s (%d ended)", account.id, actor_id, count)
    return count
