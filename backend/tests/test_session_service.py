"""
Session registry tests.
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from portal_auth.models import AuthSession, InvalidationReason, SessionEnded, SessionLive
from portal_auth.services import session_service
from portal_auth.services.errors import SessionExpired, SessionInvalidated, SessionNotFound
from portal_auth.time_utils import utcnow


def test_create_session_stores_only_hash(db_session, customer):
    session, token = session_service.create_session(customer.id, ip_address="10.0.0.1", user_agent="ua")

    assert len(token) == 64
    assert session.session_token_hash == session_service.hash_token(token)
    assert session.session_token_hash != token
    assert session.expires_at > session.created_at
    assert session.state == SessionLive()


def test_session_token_hash_is_unique(db_session, customer):
    session, token = session_service.create_session(customer.id)

    db_session.add(AuthSession(
        account_id=customer.id,
        session_token_hash=session.session_token_hash,
        expires_at=utcnow() + timedelta(hours=1),
    ))
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_verify_live_session(db_session, customer):
    _, token = session_service.create_session(customer.id)
    assert session_service.verify(token) == customer.id
    assert session_service.find_active_by_token(token) is not None


def test_verify_unknown_token(db_session):
    with pytest.raises(SessionNotFound):
        session_service.verify("not-a-token")


def test_verify_after_expiry_reports_expired(db_session, customer):
    session, token = session_service.create_session(customer.id)
    session.expires_at = utcnow() - timedelta(seconds=1)
    db_session.commit()

    with pytest.raises(SessionExpired):
        session_service.verify(token)

    # Lazily marked inactive, and still reported as expired afterwards
    session = db_session.get(AuthSession, session.id)
    assert session.is_active is False
    assert session.invalidation_reason == InvalidationReason.EXPIRED
    with pytest.raises(SessionExpired):
        session_service.verify(token)
    assert session_service.find_active_by_token(token) is None


def test_expiry_wins_over_earlier_invalidation(db_session, customer):
    session, token = session_service.create_session(customer.id)
    session_service.invalidate(session.id, InvalidationReason.LOGOUT)
    session.expires_at = utcnow() - timedelta(minutes=5)
    db_session.commit()

    with pytest.raises(SessionExpired):
        session_service.verify(token)


def test_verify_invalidated_session_carries_reason(db_session, customer):
    session, token = session_service.create_session(customer.id)
    assert session_service.invalidate(session.id, InvalidationReason.LOGOUT) is True

    with pytest.raises(SessionInvalidated) as exc_info:
        session_service.verify(token)
    assert exc_info.value.reason == InvalidationReason.LOGOUT

    state = db_session.get(AuthSession, session.id).state
    assert isinstance(state, SessionEnded)
    assert state.reason == InvalidationReason.LOGOUT


def test_invalidate_twice_keeps_first_reason(db_session, customer):
    session, _ = session_service.create_session(customer.id)
    session_service.invalidate(session.id, InvalidationReason.LOGOUT)

    assert session_service.invalidate(session.id, InvalidationReason.ADMIN_RESET) is False
    assert db_session.get(AuthSession, session.id).invalidation_reason == InvalidationReason.LOGOUT
    assert session_service.invalidate(12345, InvalidationReason.LOGOUT) is False


def test_invalidate_all_for_account(db_session, customer, supplier):
    s1, _ = session_service.create_session(customer.id, fingerprint="fp-1")
    s2, _ = session_service.create_session(customer.id, fingerprint="fp-2")
    s3, _ = session_service.create_session(customer.id, fingerprint="fp-1")
    other, _ = session_service.create_session(supplier.id)

    count = session_service.invalidate_all_for_account(
        customer.id, InvalidationReason.NEW_LOGIN, exclude_session_id=s3.id
    )

    assert count == 2
    assert {s.id for s in session_service.list_sessions(customer.id)} == {s3.id}
    assert db_session.get(AuthSession, s1.id).invalidation_reason == InvalidationReason.NEW_LOGIN
    assert db_session.get(AuthSession, other.id).is_active is True


def test_invalidate_all_restricted_to_fingerprint(db_session, customer):
    s1, _ = session_service.create_session(customer.id, fingerprint="fp-1")
    s2, _ = session_service.create_session(customer.id, fingerprint="fp-2")

    count = session_service.invalidate_all_for_account(
        customer.id, InvalidationReason.DEVICE_RESET, fingerprint="fp-1"
    )

    assert count == 1
    assert db_session.get(AuthSession, s1.id).is_active is False
    assert db_session.get(AuthSession, s2.id).is_active is True


def test_touch_updates_last_activity(db_session, customer):
    session, _ = session_service.create_session(customer.id)
    session.last_activity = utcnow() - timedelta(hours=1)
    db_session.commit()
    before = session.last_activity

    session_service.touch(session.id)

    assert db_session.get(AuthSession, session.id).last_activity > before


def test_touch_failure_is_not_fatal(db_session, customer, monkeypatch):
    session, _ = session_service.create_session(customer.id)

    def _fail(*args, **kwargs):
        raise OperationalError("UPDATE auth_sessions", {}, Exception("database is locked"))

    monkeypatch.setattr(session_service, "utcnow", _fail)
    session_service.touch(session.id)

    assert db_session.get(AuthSession, session.id).is_active is True


def test_lifecycle_check_constraint(db_session, customer):
    session, _ = session_service.create_session(customer.id)
    session.is_active = False  # no invalidated_at / reason

    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()
