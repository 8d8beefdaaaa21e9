"""
Credential store tests: hashing, legacy upgrade, account lifecycle.
"""

import bcrypt
import pytest

from portal_auth.models import (
    Account,
    AccountKind,
    AccountStatus,
    AuditAction,
    AuditLogEntry,
    AuthSession,
    DeviceBinding,
    InvalidationReason,
    LoginAttempt,
)
from portal_auth.services import credential_service, session_service
from portal_auth.services.credential_service import PasswordValidationError
from portal_auth.services.errors import AccountNotFound, AccountSuspended, PrivilegeRequired

from conftest import PASSWORD


def test_create_account_hashes_with_argon2(customer):
    assert customer.password_hash.startswith("$argon2id$")
    assert customer.password_salt == credential_service.extract_salt(customer.password_hash)
    assert customer.roles == ["customer"]
    assert customer.status == AccountStatus.ACTIVE


def test_email_is_unique_case_insensitively(customer):
    with pytest.raises(ValueError):
        credential_service.create_account("Customer@ACME.com ", PASSWORD, AccountKind.CUSTOMER)

    assert credential_service.find_by_email("CUSTOMER@acme.com").id == customer.id


def test_weak_password_rejected(db_session):
    with pytest.raises(PasswordValidationError):
        credential_service.create_account("weak@acme.com", "password", AccountKind.CUSTOMER)


def test_verify_password(customer):
    assert credential_service.verify_password(customer, PASSWORD)
    assert not credential_service.verify_password(customer, "Wrong-Password1!")


def test_legacy_bcrypt_hash_is_upgraded_on_verify(db_session, customer):
    legacy = bcrypt.hashpw(PASSWORD.encode('utf-8'), bcrypt.gensalt(rounds=4)).decode('utf-8')
    customer.password_hash = legacy
    customer.password_salt = credential_service.extract_salt(legacy)
    db_session.commit()

    assert credential_service.verify_password(customer, PASSWORD)
    db_session.commit()

    refreshed = db_session.get(Account, customer.id)
    assert refreshed.password_hash.startswith("$argon2id$")
    assert refreshed.password_salt == credential_service.extract_salt(refreshed.password_hash)
    # Parameter upgrade is not a password change
    assert refreshed.password_changed_at is None
    assert credential_service.verify_password(refreshed, PASSWORD)


def test_change_password_stamps_changed_at(db_session, customer):
    credential_service.change_password(customer.id, "Another-Pass9!")

    assert db_session.get(Account, customer.id).password_changed_at is not None


def test_wrong_password_against_legacy_hash_does_not_upgrade(db_session, customer):
    legacy = bcrypt.hashpw(PASSWORD.encode('utf-8'), bcrypt.gensalt(rounds=4)).decode('utf-8')
    customer.password_hash = legacy
    db_session.commit()

    assert not credential_service.verify_password(customer, "Nope-Nope-123!")
    assert db_session.get(Account, customer.id).password_hash == legacy


def test_get_active_account_failures(db_session, customer, admin):
    with pytest.raises(AccountNotFound):
        credential_service.get_active_account("nobody@acme.com")

    credential_service.suspend_account(customer.id, admin.id, "chargeback")
    with pytest.raises(AccountSuspended):
        credential_service.get_active_account("customer@acme.com")


def test_suspend_requires_elevated_actor(customer, supplier):
    with pytest.raises(PrivilegeRequired):
        credential_service.suspend_account(customer.id, supplier.id, "no reason")


def test_suspend_ends_sessions_and_is_audited(db_session, customer, admin):
    s1, _ = session_service.create_session(customer.id, ip_address="10.0.0.1")
    s2, _ = session_service.create_session(customer.id, ip_address="10.0.0.2")

    count = credential_service.suspend_account(customer.id, admin.id, "chargeback", ip_address="10.9.9.9")

    assert count == 2
    for session_id in (s1.id, s2.id):
        session = db_session.get(AuthSession, session_id)
        assert session.is_active is False
        assert session.invalidation_reason == InvalidationReason.ACCOUNT_SUSPENDED

    entry = db_session.query(AuditLogEntry).filter_by(
        entity_type="account", entity_id=customer.id, action=AuditAction.UPDATE
    ).order_by(AuditLogEntry.id.desc()).first()
    assert entry.old_values == {"status": "active"}
    assert entry.new_values["status"] == "suspended"
    assert entry.performed_by_account_id == admin.id

    with pytest.raises(ValueError):
        credential_service.suspend_account(customer.id, admin.id, "again")


def test_reactivate(db_session, customer, admin):
    credential_service.suspend_account(customer.id, admin.id, "chargeback")
    account = credential_service.reactivate_account(customer.id, admin.id, note="resolved")

    assert account.status == AccountStatus.ACTIVE
    assert account.suspended_at is None
    assert credential_service.get_active_account(customer.email).id == customer.id


def test_owner_password_change_ends_sessions_with_logout(db_session, customer):
    session, _ = session_service.create_session(customer.id)

    count = credential_service.change_password(customer.id, "NewPassword456!")

    assert count == 1
    assert db_session.get(AuthSession, session.id).invalidation_reason == InvalidationReason.LOGOUT
    assert credential_service.verify_password(db_session.get(Account, customer.id), "NewPassword456!")


def test_admin_password_change_ends_sessions_with_admin_reset(db_session, customer, admin):
    session, _ = session_service.create_session(customer.id)

    credential_service.change_password(customer.id, "NewPassword456!", actor_id=admin.id)

    assert db_session.get(AuthSession, session.id).invalidation_reason == InvalidationReason.ADMIN_RESET


def test_revoke_sessions(db_session, customer, admin):
    session_service.create_session(customer.id)
    session_service.create_session(customer.id)

    assert credential_service.revoke_sessions(customer.id, admin.id) == 2
    assert session_service.list_sessions(customer.id) == []


def test_purge_cascades_and_keeps_audit(db_session, customer, admin):
    session_service.create_session(customer.id)
    credential_service.change_password(customer.id, "NewPassword456!")
    db_session.add(DeviceBinding(account_id=customer.id, fingerprint="fp", registered_ip="10.0.0.1"))
    db_session.add(LoginAttempt(account_id=customer.id, email=customer.email, success=True))
    db_session.commit()
    customer_id = customer.id

    credential_service.purge_account(customer_id, admin.id)

    assert db_session.get(Account, customer_id) is None
    assert db_session.query(AuthSession).filter_by(account_id=customer_id).count() == 0
    assert db_session.query(DeviceBinding).filter_by(account_id=customer_id).count() == 0
    assert db_session.query(LoginAttempt).filter_by(account_id=customer_id).count() == 0

    own_change = db_session.query(AuditLogEntry).filter_by(
        entity_type="account", entity_id=customer_id, action=AuditAction.UPDATE
    ).one()
    assert own_change.performed_by_account_id is None
    assert db_session.query(AuditLogEntry).filter_by(
        entity_type="account", entity_id=customer_id, action=AuditAction.DELETE
    ).count() == 1


def test_admin_cannot_purge_self(admin):
    with pytest.raises(ValueError):
        credential_service.purge_account(admin.id, admin.id)
