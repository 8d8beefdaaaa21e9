# Overview: Token issuer: signed access tokens and single-use refresh tokens.

"""
Token Issuer

Access tokens are itsdangerous URL-safe timed signatures over
{sub, roles, sid}; they verify without touching the database. Their
lifetime is ACCESS_TOKEN_TTL_SECONDS.

Refresh tokens are opaque random strings. Only their SHA-256 hash is kept,
on the session row. Each use rotates the token: the old hash moves to
retired_refresh_tokens and the session gets a new one in a conditional
UPDATE (WHERE refresh_token_hash = <old>), so of two concurrent refreshes
with the same token at most one succeeds.

Presenting a retired refresh token again is treated as theft: the session
is ended (reason expired) and the request fails.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import AuditAction, AuthSession, InvalidationReason, RetiredRefreshToken
from . import audit_service, session_service
from .errors import RefreshTokenInvalid, TokenExpired, TokenInvalid
from portal_auth.time_utils import utcnow


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int

    def to_dict(self) -> dict:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresIn": self.expires_in,
        }


@dataclass(frozen=True)
class AccessClaims:
    account_id: int
    roles: tuple[str, ...]
    session_id: int


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(
        current_app.config["SECRET_KEY"],
        salt=current_app.config["ACCESS_TOKEN_SALT"],
    )


def issue_access_token(account_id: int, roles, session_id: int) -> str:
    return _serializer().dumps({"sub": account_id, "roles": list(roles), "sid": session_id})


def issue(account_id: int, roles, session_id: int) -> TokenPair:
    """
    Mint an access token and a fresh refresh token for a session.

    The caller stores the refresh token on the session
    (session_service.bind_refresh_token).
    """
    return TokenPair(
        access_token=issue_access_token(account_id, roles, session_id),
        refresh_token=session_service.generate_token(),
        expires_in=current_app.config["ACCESS_TOKEN_TTL_SECONDS"],
    )


def verify(access_token: str) -> AccessClaims:
    """
    Check an access token's signature and age.

    Raises TokenExpired or TokenInvalid. Does not consult the session;
    callers that need liveness also run session_service.ensure_live.
    """
    try:
        payload = _serializer().loads(
            access_token, max_age=current_app.config["ACCESS_TOKEN_TTL_SECONDS"]
        )
    except SignatureExpired as exc:
        raise TokenExpired() from exc
    except BadSignature as exc:
        raise TokenInvalid() from exc
    return _claims(payload)


def claims_ignoring_expiry(access_token: str) -> AccessClaims:
    """
    Claims of an authentic access token, however old.

    Used by logout, which must still find the session behind a token that
    has outlived its TTL. Raises TokenInvalid for a bad signature.
    """
    try:
        payload = _serializer().loads(access_token)
    except BadSignature as exc:
        raise TokenInvalid() from exc
    return _claims(payload)


def _claims(payload) -> AccessClaims:
    try:
        return AccessClaims(
            account_id=int(payload["sub"]),
            roles=tuple(payload.get("roles", [])),
            session_id=int(payload["sid"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalid() from exc


def _handle_replay(token_hash: str, ip_address: str | None) -> None:
    retired = db.session.query(RetiredRefreshToken).filter_by(token_hash=token_hash).first()
    if retired is None:
        return

    session = retired.session
    ended = session.end(at=utcnow(), reason=InvalidationReason.EXPIRED)
    audit_service.log(
        entity_type="session",
        entity_id=session.id,
        action=AuditAction.REJECT,
        new_values={"event": "refresh_token_replay", "session_invalidated": ended},
        performed_by=session.account_id,
        ip_address=ip_address,
    )
    db.session.commit()
    current_app.logger.warning(
        "Refresh token replay detected for session %s (account %s)", session.id, session.account_id
    )


def rotate(
    old_refresh_token: str,
    fingerprint: str | None = None,
    ip_address: str | None = None,
) -> TokenPair:
    """
    Exchange a refresh token for a new access/refresh pair.

    Raises RefreshTokenInvalid if the token is unknown, already rotated,
    its session is ended or expired, the presented fingerprint differs
    from the session's device, or the account is no longer active.
    """
    old_hash = session_service.hash_token(old_refresh_token)
    session = db.session.query(AuthSession).filter_by(refresh_token_hash=old_hash).first()

    if session is None:
        _handle_replay(old_hash, ip_address)
        raise RefreshTokenInvalid()

    now = utcnow()
    if session.is_expired(now):
        if session.end(at=now, reason=InvalidationReason.EXPIRED):
            db.session.commit()
        raise RefreshTokenInvalid()
    if not session.is_active:
        raise RefreshTokenInvalid()
    if fingerprint is not None and session.fingerprint is not None and fingerprint != session.fingerprint:
        current_app.logger.warning("Refresh for session %s presented a different device", session.id)
        raise RefreshTokenInvalid()

    account = session.account
    if not account.is_active:
        raise RefreshTokenInvalid()

    new_refresh_token = session_service.generate_token()
    swapped = db.session.query(AuthSession).filter(
        AuthSession.id == session.id,
        AuthSession.refresh_token_hash == old_hash,
        AuthSession.is_active.is_(True),
    ).update(
        {
            AuthSession.refresh_token_hash: session_service.hash_token(new_refresh_token),
            AuthSession.last_activity: now,
        },
        synchronize_session="fetch",
    )
    if swapped != 1:
        # Lost the race to a concurrent rotation of the same token
        db.session.rollback()
        raise RefreshTokenInvalid()

    try:
        db.session.add(RetiredRefreshToken(session_id=session.id, token_hash=old_hash, rotated_at=now))
        audit_service.log(
            entity_type="session",
            entity_id=session.id,
            action=AuditAction.UPDATE,
            new_values={"event": "refresh_token_rotated"},
            performed_by=account.id,
            ip_address=ip_address,
        )
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise RefreshTokenInvalid() from exc

    current_app.logger.info("Rotated refresh token for session %s", session.id)
    return TokenPair(
        access_token=issue_access_token(account.id, account.roles or [], session.id),
        refresh_token=new_refresh_token,
        expires_in=current_app.config["ACCESS_TOKEN_TTL_SECONDS"],
    )
