# Overview: Session registry: create, look up, verify and invalidate login sessions.

"""
Session Registry

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute timeout (SESSION_TTL_HOURS), evaluated lazily on lookup
- Sessions are ended, never deleted; the reason is recorded
- Bulk invalidation is a single UPDATE, so a device reset or suspension
  ends every matching session atomically
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuthSession, InvalidationReason
from .errors import SessionExpired, SessionInvalidated, SessionNotFound
from portal_auth.time_utils import utcnow


def generate_token() -> str:
    """
    Generate cryptographically secure random token.

    Returns 64-character hex string (32 bytes of entropy).
    This is the plaintext token sent to client (never stored).
    """
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    Tokens are already high-entropy (unlike passwords), so a fast hash is
    sufficient.
    """
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    account_id: int,
    fingerprint: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    commit: bool = True,
) -> tuple[AuthSession, str]:
    """
    Create a new live session.

    Returns (session_record, plaintext_session_token).
    Client receives the plaintext token, database stores only the hash.
    """
    plaintext_token = generate_token()
    now = utcnow()

    session = AuthSession(
        account_id=account_id,
        session_token_hash=hash_token(plaintext_token),
        fingerprint=fingerprint,
        ip_address=ip_address,
        user_agent=user_agent,
        is_active=True,
        created_at=now,
        last_activity=now,
        expires_at=now + timedelta(hours=current_app.config["SESSION_TTL_HOURS"]),
    )
    db.session.add(session)
    if commit:
        db.session.commit()
    else:
        db.session.flush()

    return session, plaintext_token


def bind_refresh_token(session: AuthSession, refresh_token: str) -> None:
    """Store the (hashed) current refresh token on the session."""
    session.refresh_token_hash = hash_token(refresh_token)
    db.session.flush()


def find_by_token(token: str) -> AuthSession | None:
    return db.session.query(AuthSession).filter_by(session_token_hash=hash_token(token)).first()


def find_active_by_token(token: str) -> AuthSession | None:
    """Live, unexpired session for a session token, or None."""
    session = find_by_token(token)
    if session is None or not session.is_active or session.is_expired(utcnow()):
        return None
    return session


def list_sessions(account_id: int, active_only: bool = True) -> list[AuthSession]:
    query = db.session.query(AuthSession).filter(AuthSession.account_id == account_id)
    if active_only:
        query = query.filter(AuthSession.is_active.is_(True))
    return query.order_by(AuthSession.id).all()


def ensure_live(session: AuthSession | None) -> AuthSession:
    """
    Raise unless the session can authenticate a request.

    Expiry is checked before the active flag, so a session past expires_at
    always reports SessionExpired. A still-active expired session is
    marked inactive (reason expired) on the way out.
    """
    if session is None:
        raise SessionNotFound()

    now = utcnow()
    if session.is_expired(now):
        if session.end(at=now, reason=InvalidationReason.EXPIRED):
            db.session.commit()
        raise SessionExpired()

    if not session.is_active:
        if session.invalidation_reason == InvalidationReason.EXPIRED:
            raise SessionExpired()
        raise SessionInvalidated(session.invalidation_reason)

    return session


def verify(token: str) -> int:
    """
    Verify a session token and return the owning account id.

    Raises SessionNotFound, SessionExpired or SessionInvalidated(reason).
    """
    session = ensure_live(find_by_token(token))
    return session.account_id


def touch(session_id: int) -> None:
    """
    Record activity on a session.

    Best-effort: a storage failure here is logged and swallowed, it must
    not fail the request being authenticated.
    """
    try:
        db.session.query(AuthSession).filter(
            AuthSession.id == session_id,
            AuthSession.is_active.is_(True),
        ).update({AuthSession.last_activity: utcnow()}, synchronize_session="fetch")
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Failed to record activity for session %s", session_id, exc_info=True)


def invalidate(session_id: int, reason: InvalidationReason, commit: bool = True) -> bool:
    """
    End one session.

    Returns True if the session was live, False if missing or already ended.
    """
    session = db.session.get(AuthSession, session_id)
    if session is None:
        return False

    ended = session.end(at=utcnow(), reason=reason)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return ended


def invalidate_all_for_account(
    account_id: int,
    reason: InvalidationReason,
    fingerprint: str | None = None,
    exclude_session_id: int | None = None,
    commit: bool = True,
) -> int:
    """
    End every live session of an account in one statement.

    Optionally restricted to sessions opened from one device fingerprint.

    Returns count of sessions invalidated.
    """
    query = db.session.query(AuthSession).filter(
        AuthSession.account_id == account_id,
        AuthSession.is_active.is_(True),
    )
    if fingerprint is not None:
        query = query.filter(AuthSession.fingerprint == fingerprint)
    if exclude_session_id is not None:
        query = query.filter(AuthSession.id != exclude_session_id)

    count = query.update(
        {
            AuthSession.is_active: False,
            AuthSession.invalidated_at: utcnow(),
            AuthSession.invalidation_reason: reason,
        },
        synchronize_session="fetch",
    )
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return count
