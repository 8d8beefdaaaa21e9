"""
Token issuer tests: access token verification and refresh rotation.
"""

from datetime import timedelta

import pytest

from portal_auth.models import AuditAction, AuditLogEntry, AuthSession, InvalidationReason, RetiredRefreshToken
from portal_auth.services import credential_service, session_service, token_service
from portal_auth.services.errors import RefreshTokenInvalid, TokenExpired, TokenInvalid
from portal_auth.time_utils import utcnow


@pytest.fixture
def issued(db_session, customer):
    """A live session with a bound token pair."""
    session, _ = session_service.create_session(customer.id, fingerprint="fp-1", commit=False)
    pair = token_service.issue(customer.id, customer.roles, session.id)
    session_service.bind_refresh_token(session, pair.refresh_token)
    db_session.commit()
    return session, pair


def test_access_token_round_trip(issued, customer):
    session, pair = issued
    claims = token_service.verify(pair.access_token)

    assert claims.account_id == customer.id
    assert claims.roles == ("customer",)
    assert claims.session_id == session.id
    assert pair.expires_in == 3600
    assert set(pair.to_dict()) == {"accessToken", "refreshToken", "expiresIn"}


def test_tampered_access_token_is_invalid(issued):
    _, pair = issued
    with pytest.raises(TokenInvalid):
        token_service.verify(pair.access_token[:-2] + "xx")
    with pytest.raises(TokenInvalid):
        token_service.verify("garbage")


def test_access_token_from_other_key_is_invalid(app, issued, monkeypatch):
    _, pair = issued
    monkeypatch.setitem(app.config, "SECRET_KEY", "another-secret")
    with pytest.raises(TokenInvalid):
        token_service.verify(pair.access_token)


def test_expired_access_token(app, issued, monkeypatch):
    _, pair = issued
    monkeypatch.setitem(app.config, "ACCESS_TOKEN_TTL_SECONDS", -1)
    with pytest.raises(TokenExpired):
        token_service.verify(pair.access_token)

    assert token_service.claims_ignoring_expiry(pair.access_token).session_id == issued[0].id
    with pytest.raises(TokenInvalid):
        token_service.claims_ignoring_expiry(pair.access_token[:-2] + "xx")


def test_refresh_token_stored_as_hash(db_session, issued):
    session, pair = issued
    stored = db_session.get(AuthSession, session.id).refresh_token_hash
    assert stored == session_service.hash_token(pair.refresh_token)
    assert stored != pair.refresh_token


def test_rotate_issues_new_pair(db_session, issued):
    session, pair = issued

    new_pair = token_service.rotate(pair.refresh_token, fingerprint="fp-1", ip_address="10.0.0.1")

    assert new_pair.refresh_token != pair.refresh_token
    assert token_service.verify(new_pair.access_token).session_id == session.id
    assert db_session.get(AuthSession, session.id).refresh_token_hash == \
        session_service.hash_token(new_pair.refresh_token)
    assert db_session.query(RetiredRefreshToken).filter_by(session_id=session.id).count() == 1
    assert db_session.query(AuditLogEntry).filter_by(
        entity_type="session", entity_id=session.id, action=AuditAction.UPDATE
    ).count() == 1


def test_rotated_token_is_single_use_and_replay_ends_session(db_session, issued):
    session, pair = issued
    new_pair = token_service.rotate(pair.refresh_token, fingerprint="fp-1")

    with pytest.raises(RefreshTokenInvalid):
        token_service.rotate(pair.refresh_token, fingerprint="fp-1")

    ended = db_session.get(AuthSession, session.id)
    assert ended.is_active is False
    assert ended.invalidation_reason == InvalidationReason.EXPIRED
    assert db_session.query(AuditLogEntry).filter_by(
        entity_type="session", entity_id=session.id, action=AuditAction.REJECT
    ).one().new_values["event"] == "refresh_token_replay"

    # The legitimately rotated token dies with the session
    with pytest.raises(RefreshTokenInvalid):
        token_service.rotate(new_pair.refresh_token, fingerprint="fp-1")


def test_unknown_refresh_token(db_session, issued):
    session, _ = issued
    with pytest.raises(RefreshTokenInvalid):
        token_service.rotate("never-issued")
    assert db_session.get(AuthSession, session.id).is_active is True


def test_rotate_rejects_other_device(db_session, issued):
    session, pair = issued
    with pytest.raises(RefreshTokenInvalid):
        token_service.rotate(pair.refresh_token, fingerprint="fp-2")

    # Refused without consuming the token
    assert token_service.rotate(pair.refresh_token, fingerprint="fp-1").refresh_token


def test_rotate_rejects_expired_session(db_session, issued):
    session, pair = issued
    session.expires_at = utcnow() - timedelta(seconds=1)
    db_session.commit()

    with pytest.raises(RefreshTokenInvalid):
        token_service.rotate(pair.refresh_token, fingerprint="fp-1")
    assert db_session.get(AuthSession, session.id).invalidation_reason == InvalidationReason.EXPIRED


def test_rotate_rejects_ended_session(db_session, issued):
    session, pair = issued
    session_service.invalidate(session.id, InvalidationReason.LOGOUT)

    with pytest.raises(RefreshTokenInvalid):
        token_service.rotate(pair.refresh_token, fingerprint="fp-1")


def test_rotate_rejects_suspended_account(db_session, issued, customer, admin):
    session, pair = issued
    credential_service.suspend_account(customer.id, admin.id, "fraud")

    with pytest.raises(RefreshTokenInvalid):
        token_service.rotate(pair.refresh_token, fingerprint="fp-1")
