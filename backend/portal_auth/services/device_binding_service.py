# Overview: Device binding ledger: which device fingerprint an account is bound to.

"""
Device Binding Ledger

Device-bound accounts (DEVICE_BOUND_ACCOUNT_KINDS) may only log in from the
device recorded in their live primary binding. The first successful login
installs that binding (trust-on-first-use); afterwards a different device
is refused until the binding is reset by an administrator.

INVARIANT: at most one binding per account is primary and active.
register_binding takes a row lock on the account before touching bindings,
and the partial unique index uq_device_bindings_live_primary rejects a
second live primary even where the lock is not honoured.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Account, AuditAction, DeviceBinding, InvalidationReason
from ..models.devices import truncate_fingerprint
from . import audit_service, session_service
from .concurrency import lock_for_update
from portal_auth.time_utils import utcnow


class PrimaryBindingExists(Exception):
    """register_binding(replace=False) found a live primary already installed."""

    def __init__(self, binding: DeviceBinding):
        super().__init__(f"Account {binding.account_id} already has a primary device")
        self.binding = binding


class NoActiveBinding(Exception):
    """Device reset requested for an account with no live primary binding."""
    pass


@dataclass(frozen=True)
class DeviceMatch:
    bound: bool
    reason: str | None = None  # "no-binding" | "fingerprint-mismatch"
    binding: DeviceBinding | None = None


def is_device_bound(account: Account) -> bool:
    return account.kind.value in current_app.config["DEVICE_BOUND_ACCOUNT_KINDS"]


def get_active_bindings(account_id: int) -> list[DeviceBinding]:
    """Active bindings of an account, in creation order."""
    return db.session.query(DeviceBinding).filter(
        DeviceBinding.account_id == account_id,
        DeviceBinding.is_active.is_(True),
    ).order_by(DeviceBinding.created_at, DeviceBinding.id).all()


def get_primary_binding(account_id: int) -> DeviceBinding | None:
    return db.session.query(DeviceBinding).filter(
        DeviceBinding.account_id == account_id,
        DeviceBinding.is_primary.is_(True),
        DeviceBinding.is_active.is_(True),
    ).first()


def list_bindings(account_id: int) -> list[DeviceBinding]:
    """Every binding of an account, active or not, oldest first."""
    return db.session.query(DeviceBinding).filter_by(
        account_id=account_id
    ).order_by(DeviceBinding.created_at, DeviceBinding.id).all()


def matches_bound_device(account_id: int, fingerprint: str) -> DeviceMatch:
    binding = get_primary_binding(account_id)
    if binding is None:
        return DeviceMatch(bound=False, reason="no-binding")
    if binding.fingerprint != fingerprint:
        return DeviceMatch(bound=False, reason="fingerprint-mismatch", binding=binding)
    return DeviceMatch(bound=True, binding=binding)


def register_binding(
    account_id: int,
    fingerprint: str,
    ip_address: str,
    ip_country: str | None = None,
    is_primary: bool = True,
    browser_info: dict | None = None,
    actor_id: int | None = None,
    replace: bool = True,
    commit: bool = True,
) -> DeviceBinding:
    """
    Record a device for an account.

    For a primary binding the existing live primary (if any) is deactivated
    first, in the same transaction, and every session opened from the old
    fingerprint ends with device_reset. With replace=False an existing live
    primary raises PrimaryBindingExists instead; the login path uses this
    so that of two racing first logins only one installs its device.
    Registering the fingerprint of the current live primary returns that
    binding unchanged.
    """
    lock_for_update(db.session.query(Account).filter_by(id=account_id)).first()

    previous = get_primary_binding(account_id) if is_primary else None
    if previous is not None and previous.fingerprint == fingerprint:
        # Already the live primary; nothing to replace
        return previous
    if previous is not None:
        if not replace:
            raise PrimaryBindingExists(previous)
        previous.deactivate(at=utcnow(), by=actor_id, reason="replaced_by_new_primary")
        db.session.flush()
        session_service.invalidate_all_for_account(
            account_id,
            InvalidationReason.DEVICE_RESET,
            fingerprint=previous.fingerprint,
            commit=False,
        )

    binding = DeviceBinding(
        account_id=account_id,
        fingerprint=fingerprint,
        is_primary=is_primary,
        is_active=True,
        browser_info=browser_info,
        registered_ip=ip_address,
        ip_country=ip_country,
        created_at=utcnow(),
    )
    db.session.add(binding)
    try:
        db.session.flush()
    except IntegrityError:
        # A concurrent transaction installed a primary between our read and insert
        db.session.rollback()
        existing = get_primary_binding(account_id)
        if existing is None:
            raise
        raise PrimaryBindingExists(existing)

    audit_service.log(
        entity_type="device_binding",
        entity_id=binding.id,
        action=AuditAction.CREATE,
        old_values={"replaced_binding_id": previous.id} if previous is not None else None,
        new_values={
            "account_id": account_id,
            "fingerprint": truncate_fingerprint(fingerprint),
            "is_primary": is_primary,
            "registered_ip": ip_address,
        },
        performed_by=actor_id if actor_id is not None else account_id,
        ip_address=ip_address,
    )
    if commit:
        db.session.commit()
    return binding


def deactivate_binding(
    binding_id: int,
    reason: str,
    actor_id: int | None,
    ip_address: str | None = None,
    commit: bool = True,
) -> DeviceBinding | None:
    """
    Deactivate a binding. Idempotent: an already inactive binding is left
    untouched (its original deactivation metadata is kept).
    """
    binding = db.session.get(DeviceBinding, binding_id)
    if binding is None:
        return None

    if binding.deactivate(at=utcnow(), by=actor_id, reason=reason):
        audit_service.log(
            entity_type="device_binding",
            entity_id=binding.id,
            action=AuditAction.UPDATE,
            old_values={"is_active": True},
            new_values={"is_active": False, "deactivation_reason": reason},
            performed_by=actor_id,
            ip_address=ip_address,
        )
        if commit:
            db.session.commit()
        else:
            db.session.flush()
    return binding


def reset_primary_binding(
    account_id: int,
    actor_id: int,
    reason: str,
    ip_address: str | None = None,
) -> int:
    """
    Administrative device reset.

    Deactivates the live primary binding (recording the administrator in
    deactivated_by) and ends every live session opened from that device
    with device_reset, in one transaction. The next login installs a new
    primary device.

    Returns count of sessions invalidated. Raises PrivilegeRequired for a
    non-administrator actor and NoActiveBinding if there is nothing to reset.
    """
    from .credential_service import get_account, require_elevated_actor

    require_elevated_actor(actor_id)
    account = get_account(account_id)

    lock_for_update(db.session.query(Account).filter_by(id=account.id)).first()
    binding = get_primary_binding(account.id)
    if binding is None:
        raise NoActiveBinding(f"Account {account.id} has no active device binding")

    binding.deactivate(at=utcnow(), by=actor_id, reason=reason)
    db.session.flush()
    count = session_service.invalidate_all_for_account(
        account.id,
        InvalidationReason.DEVICE_RESET,
        fingerprint=binding.fingerprint,
        commit=False,
    )

    audit_service.log(
        entity_type="device_binding",
        entity_id=binding.id,
        action=AuditAction.UPDATE,
        old_values={"is_active": True, "fingerprint": truncate_fingerprint(binding.fingerprint)},
        new_values={
            "event": "device_binding_reset",
            "is_active": False,
            "reason": reason,
            "sessions_invalidated": count,
        },
        performed_by=actor_id,
        ip_address=ip_address,
    )
    db.session.commit()
    current_app.logger.info(
        "Device binding %s of account %s reset by %s (%d sessions ended)",
        binding.id, account.id, actor_id, count,
    )
    return count
