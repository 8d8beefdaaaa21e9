# Overview: Service-layer operations for maintenance; housekeeping of sessions and login attempts.

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import AuthSession, InvalidationReason, LoginAttempt
from portal_auth.time_utils import utcnow


def reap_expired_sessions() -> int:
    """
    Mark live sessions past expires_at as ended (reason expired).

    Advisory only: lookups already treat an expired session as expired
    whether or not it has been reaped.
    """
    now = utcnow()
    count = db.session.query(AuthSession).filter(
        AuthSession.is_active.is_(True),
        AuthSession.expires_at <= now,
    ).update(
        {
            AuthSession.is_active: False,
            AuthSession.invalidated_at: now,
            AuthSession.invalidation_reason: InvalidationReason.EXPIRED,
        },
        synchronize_session="fetch",
    )
    db.session.commit()
    if count:
        current_app.logger.info("Reaped %d expired sessions", count)
    return count


def cleanup_login_attempts(*, retention_days: int | None = None) -> int:
    """Delete login attempts older than retention_days."""
    if retention_days is None:
        retention_days = current_app.config["LOGIN_ATTEMPT_RETENTION_DAYS"]
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(LoginAttempt).filter(
        LoginAttempt.attempted_at < cutoff
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted
