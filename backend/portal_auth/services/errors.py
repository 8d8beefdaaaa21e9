"""
Authentication error taxonomy.

Every failure the session/credential subsystem can raise is an AuthError.
Callers at the boundary translate them with public_error(): all
AuthenticationFailed subclasses collapse into one generic message so a
client cannot tell "no such account" from "wrong password" from "wrong
device". The precise reason is kept in the audit log and the app log.

StorageUnavailable is the only retryable condition.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for authentication and session errors."""
    public_message = "Request could not be authenticated"
    retryable = False


class AuthenticationFailed(AuthError):
    """A login attempt was rejected. Never distinguished publicly."""
    public_message = "Authentication failed"


class InvalidCredentials(AuthenticationFailed):
    pass


class AccountSuspended(AuthenticationFailed):
    pass


class DeviceNotRecognized(AuthenticationFailed):
    pass


class AccountLocked(AuthenticationFailed):
    """Too many recent failed attempts for this email."""

    def __init__(self, retry_after_seconds: int | None = None):
        super().__init__("Too many failed login attempts")
        self.retry_after_seconds = retry_after_seconds


class SessionError(AuthError):
    public_message = "Session is not valid"


class SessionNotFound(SessionError):
    pass


class SessionExpired(SessionError):
    public_message = "Session expired"


class SessionInvalidated(SessionError):
    def __init__(self, reason):
        super().__init__(f"Session invalidated: {getattr(reason, 'value', reason)}")
        self.reason = reason


class TokenError(AuthError):
    public_message = "Token is not valid"


class TokenExpired(TokenError):
    public_message = "Token expired"


class TokenInvalid(TokenError):
    pass


class RefreshTokenInvalid(TokenError):
    public_message = "Refresh token is not valid"


class PrivilegeRequired(AuthError):
    """Administrative operation attempted by a non-elevated actor."""
    public_message = "Permission denied"


class AccountNotFound(AuthError):
    """Administrative lookup of a missing account. Login never raises this."""
    public_message = "Account not found"


class StorageUnavailable(AuthError):
    """Transient storage failure; retry with backoff."""
    public_message = "Service temporarily unavailable"
    retryable = True


def public_error(exc: AuthError) -> dict:
    """Boundary representation of an AuthError (no internal detail)."""
    return {"error": exc.public_message, "retryable": exc.retryable}
