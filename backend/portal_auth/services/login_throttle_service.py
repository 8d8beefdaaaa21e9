"""
Login Throttling Service

WHY: Prevent brute-force password attacks by limiting failed login attempts.
After too many failures the email is temporarily locked.

SECURITY FEATURES:
- Tracks failed attempts per email in the login_attempts table
- Lockout after MAX_LOGIN_ATTEMPTS failures within LOGIN_LOCKOUT_MINUTES
- Lockout ends LOGIN_LOCKOUT_MINUTES after the most recent failure
- Successful logins are recorded too (login history)
"""

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import LoginAttempt, LoginFailureReason
from portal_auth.time_utils import utcnow


def _lockout_window() -> timedelta:
    return timedelta(minutes=current_app.config["LOGIN_LOCKOUT_MINUTES"])


def get_recent_failed_attempts(email: str) -> int:
    """Count failed attempts for an email within the lockout window."""
    cutoff = utcnow() - _lockout_window()
    return db.session.query(LoginAttempt).filter(
        LoginAttempt.email == email,
        LoginAttempt.success.is_(False),
        LoginAttempt.attempted_at >= cutoff,
    ).count()


def is_account_locked(email: str) -> tuple[bool, int | None]:
    """
    Check if an email is currently locked due to too many failed attempts.

    Returns:
    - (True, seconds_remaining) if locked
    - (False, None) if not locked
    """
    if get_recent_failed_attempts(email) < current_app.config["MAX_LOGIN_ATTEMPTS"]:
        return False, None

    most_recent = db.session.query(LoginAttempt).filter(
        LoginAttempt.email == email,
        LoginAttempt.success.is_(False),
    ).order_by(LoginAttempt.attempted_at.desc()).first()

    lockout_end = most_recent.attempted_at + _lockout_window()
    now = utcnow()
    if now < lockout_end:
        return True, int((lockout_end - now).total_seconds())
    return False, None


def record_attempt(
    email: str,
    success: bool,
    account_id: int | None = None,
    failure_reason: LoginFailureReason | None = None,
    fingerprint: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    ip_mismatch_warning: bool = False,
) -> LoginAttempt:
    """Add a login attempt to the current transaction (caller commits)."""
    attempt = LoginAttempt(
        account_id=account_id,
        email=email,
        success=success,
        failure_reason=failure_reason,
        fingerprint=fingerprint,
        ip_address=ip_address,
        user_agent=user_agent,
        ip_mismatch_warning=ip_mismatch_warning,
        attempted_at=utcnow(),
    )
    db.session.add(attempt)
    db.session.flush()
    return attempt


def get_lockout_status(email: str) -> dict:
    failed_count = get_recent_failed_attempts(email)
    is_locked, seconds_remaining = is_account_locked(email)

    return {
        "locked": is_locked,
        "failed_attempts": failed_count,
        "max_attempts": current_app.config["MAX_LOGIN_ATTEMPTS"],
        "seconds_until_unlock": seconds_remaining,
        "lockout_minutes": current_app.config["LOGIN_LOCKOUT_MINUTES"],
    }


def get_login_history(account_id: int, limit: int = 50) -> list[dict]:
    """Most recent attempts for an account, newest first."""
    attempts = db.session.query(LoginAttempt).filter_by(
        account_id=account_id
    ).order_by(LoginAttempt.attempted_at.desc(), LoginAttempt.id.desc()).limit(limit).all()
    return [attempt.to_dict() for attempt in attempts]
