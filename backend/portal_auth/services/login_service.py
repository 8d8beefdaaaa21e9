# Overview: Login authenticator and the session lifecycle entry points built on it.

"""
Login Authenticator

A login moves through

    START -> CREDENTIALS_CHECKED -> DEVICE_EVALUATED -> SESSION_ISSUED

and may fail out of any state. Every attempt, successful or not, leaves a
login_attempts row (except lockout refusals, which would extend the
lockout) and an audit entry. Failures raise an AuthenticationFailed
subclass; the boundary reports them all as one generic error and the
precise reason lives only in the audit log and the app log.

Device outcome for device-bound accounts:
- ok           fingerprint matches the live primary binding; a changed IP
               only sets ip_mismatch_warning
- first-login  no live primary yet: the fingerprint becomes the primary
- blocked      any other fingerprint: DeviceNotRecognized
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Account, AuditAction, AuthSession, DeviceBinding, InvalidationReason, LoginFailureReason
from ..models.devices import truncate_fingerprint
from . import (
    audit_service,
    credential_service,
    device_binding_service,
    login_throttle_service,
    session_service,
    token_service,
)
from .concurrency import run_with_retry
from .errors import (
    AccountLocked,
    AccountNotFound,
    AccountSuspended,
    AuthenticationFailed,
    DeviceNotRecognized,
    InvalidCredentials,
    TokenError,
)
from portal_auth.time_utils import utcnow


class LoginState(str, enum.Enum):
    START = "start"
    CREDENTIALS_CHECKED = "credentials_checked"
    DEVICE_EVALUATED = "device_evaluated"
    SESSION_ISSUED = "session_issued"
    FAILED = "failed"


class DeviceOutcome(str, enum.Enum):
    OK = "ok"
    FIRST_LOGIN = "first-login"
    BLOCKED = "blocked"


@dataclass
class LoginRequest:
    email: str
    password: str
    fingerprint: str | None
    client_ip: str
    user_agent: str | None = None
    browser_info: dict | None = None
    ip_country: str | None = None


@dataclass
class LoginResult:
    access_token: str
    refresh_token: str
    expires_in: int
    account_id: int
    session_id: int
    session_token: str
    ip_mismatch_warning: bool = False
    registered_ip: str | None = None

    def to_dict(self) -> dict:
        data = {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresIn": self.expires_in,
            "accountId": self.account_id,
            "sessionToken": self.session_token,
        }
        if self.ip_mismatch_warning:
            data["ipMismatchWarning"] = True
            data["registeredIp"] = self.registered_ip
        return data


@dataclass(frozen=True)
class AuthContext:
    """Who is making a request. Passed explicitly, never stored globally."""
    account_id: int
    kind: str
    roles: tuple[str, ...]
    session_id: int
    ip_mismatch_warning: bool = False


class LoginFlow:
    """One login attempt. Not reusable."""

    def __init__(self, request: LoginRequest):
        self.request = request
        self.email = credential_service.normalize_email(request.email)
        self.state = LoginState.START
        self.account: Account | None = None
        self.device_outcome: DeviceOutcome | None = None
        self.binding: DeviceBinding | None = None
        self.ip_mismatch_warning = False

    def run(self) -> LoginResult:
        self._check_credentials()
        self._evaluate_device()
        return self._issue_session()

    def _fail(
        self,
        exc: AuthenticationFailed,
        internal_reason: str,
        failure_reason: LoginFailureReason | None,
        extra: dict | None = None,
    ):
        self.state = LoginState.FAILED
        account_id = self.account.id if self.account is not None else None
        req = self.request

        if failure_reason is not None:
            login_throttle_service.record_attempt(
                email=self.email,
                success=False,
                account_id=account_id,
                failure_reason=failure_reason,
                fingerprint=req.fingerprint,
                ip_address=req.client_ip,
                user_agent=req.user_agent,
            )

        new_values = {"event": "login_failed", "reason": internal_reason, "email": self.email}
        if extra:
            new_values.update(extra)
        audit_service.log(
            entity_type="account",
            entity_id=account_id,
            action=AuditAction.REJECT,
            new_values=new_values,
            performed_by=account_id,
            ip_address=req.client_ip,
            user_agent=req.user_agent,
        )
        db.session.commit()
        current_app.logger.warning(
            "Login failed for %s from %s: %s", self.email, req.client_ip, internal_reason
        )
        raise exc

    def _check_credentials(self) -> None:
        req = self.request

        locked, seconds_remaining = login_throttle_service.is_account_locked(self.email)
        if locked:
            self._fail(AccountLocked(seconds_remaining), "too_many_attempts", None)

        try:
            account = credential_service.get_active_account(self.email)
        except AccountNotFound:
            credential_service.burn_verification(req.password)
            self._fail(InvalidCredentials(), "unknown_account", LoginFailureReason.INVALID_CREDENTIALS)
        except AccountSuspended:
            self.account = credential_service.find_by_email(self.email)
            credential_service.burn_verification(req.password)
            self._fail(AccountSuspended(), "account_suspended", LoginFailureReason.ACCOUNT_SUSPENDED)

        self.account = account
        if not credential_service.verify_password(account, req.password):
            self._fail(InvalidCredentials(), "wrong_password", LoginFailureReason.INVALID_CREDENTIALS)

        self.state = LoginState.CREDENTIALS_CHECKED

    def _evaluate_device(self) -> None:
        req = self.request
        account = self.account

        if not device_binding_service.is_device_bound(account):
            self.device_outcome = DeviceOutcome.OK
            self.state = LoginState.DEVICE_EVALUATED
            return

        if not req.fingerprint:
            self._block("missing_fingerprint", None)

        match = device_binding_service.matches_bound_device(account.id, req.fingerprint)
        if match.bound:
            self._accept(match.binding)
        elif match.reason == "no-binding":
            try:
                self.binding = device_binding_service.register_binding(
                    account.id,
                    req.fingerprint,
                    req.client_ip,
                    ip_country=req.ip_country,
                    is_primary=True,
                    browser_info=req.browser_info,
                    replace=False,
                    commit=False,
                )
                self.device_outcome = DeviceOutcome.FIRST_LOGIN
                current_app.logger.info("Registered primary device for account %s", account.id)
            except device_binding_service.PrimaryBindingExists as exc:
                self.account = db.session.get(Account, account.id)
                if exc.binding.fingerprint == req.fingerprint:
                    self._accept(exc.binding)
                else:
                    self._block("fingerprint-mismatch", exc.binding)
        else:
            self._block(match.reason, match.binding)

        self.state = LoginState.DEVICE_EVALUATED

    def _accept(self, binding: DeviceBinding) -> None:
        self.binding = binding
        self.device_outcome = DeviceOutcome.OK
        self.ip_mismatch_warning = binding.registered_ip != self.request.client_ip

    def _block(self, reason: str, binding: DeviceBinding | None) -> None:
        self.device_outcome = DeviceOutcome.BLOCKED
        extra = {"attempted_fingerprint": truncate_fingerprint(self.request.fingerprint)}
        if binding is not None:
            extra["registered_fingerprint"] = truncate_fingerprint(binding.fingerprint)
        self._fail(
            DeviceNotRecognized(),
            f"device_mismatch:{reason}",
            LoginFailureReason.DEVICE_MISMATCH,
            extra,
        )

    def _issue_session(self) -> LoginResult:
        req = self.request
        account = self.account

        if account.kind.value in current_app.config["SINGLE_SESSION_ACCOUNT_KINDS"]:
            session_service.invalidate_all_for_account(
                account.id, InvalidationReason.NEW_LOGIN, commit=False
            )

        session, session_token = session_service.create_session(
            account.id,
            fingerprint=req.fingerprint,
            ip_address=req.client_ip,
            user_agent=req.user_agent,
            commit=False,
        )
        tokens = token_service.issue(account.id, account.roles or [], session.id)
        session_service.bind_refresh_token(session, tokens.refresh_token)

        account.last_login_at = utcnow()
        registered_ip = self.binding.registered_ip if self.binding is not None else None

        login_throttle_service.record_attempt(
            email=self.email,
            success=True,
            account_id=account.id,
            fingerprint=req.fingerprint,
            ip_address=req.client_ip,
            user_agent=req.user_agent,
            ip_mismatch_warning=self.ip_mismatch_warning,
        )
        audit_service.log(
            entity_type="session",
            entity_id=session.id,
            action=AuditAction.CREATE,
            new_values={
                "event": "login",
                "account_id": account.id,
                "device_outcome": self.device_outcome.value,
                "ip_mismatch_warning": self.ip_mismatch_warning,
                "current_ip": req.client_ip,
                "registered_ip": registered_ip,
            },
            performed_by=account.id,
            ip_address=req.client_ip,
            user_agent=req.user_agent,
        )
        db.session.commit()
        self.state = LoginState.SESSION_ISSUED
        current_app.logger.info("Account %s logged in from %s", account.id, req.client_ip)

        return LoginResult(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_in=tokens.expires_in,
            account_id=account.id,
            session_id=session.id,
            session_token=session_token,
            ip_mismatch_warning=self.ip_mismatch_warning,
            registered_ip=registered_ip if self.ip_mismatch_warning else None,
        )


def login(request: LoginRequest) -> LoginResult:
    """Authenticate and open a session. Raises AuthenticationFailed subclasses."""
    return run_with_retry(lambda: LoginFlow(request).run())


def refresh(refresh_token: str, fingerprint: str | None, client_ip: str | None = None) -> token_service.TokenPair:
    """Rotate a refresh token. Raises RefreshTokenInvalid."""
    return run_with_retry(lambda: token_service.rotate(refresh_token, fingerprint, ip_address=client_ip))


def _session_for_token(token: str) -> AuthSession | None:
    try:
        claims = token_service.claims_ignoring_expiry(token)
    except TokenError:
        return session_service.find_by_token(token)
    return db.session.get(AuthSession, claims.session_id)


def logout(token: str, client_ip: str | None = None) -> bool:
    """
    End the session identified by a session token or an access token.

    Returns True if a live session was ended, False otherwise.
    """
    def _op():
        session = _session_for_token(token)
        if session is None or not session.end(at=utcnow(), reason=InvalidationReason.LOGOUT):
            return False

        audit_service.log(
            entity_type="session",
            entity_id=session.id,
            action=AuditAction.UPDATE,
            old_values={"is_active": True},
            new_values={"event": "logout", "is_active": False,
                        "invalidation_reason": InvalidationReason.LOGOUT.value},
            performed_by=session.account_id,
            ip_address=client_ip,
        )
        db.session.commit()
        current_app.logger.info("Session %s logged out", session.id)
        return True

    return run_with_retry(_op)


def authenticate_request(
    access_token: str,
    fingerprint: str | None = None,
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> AuthContext:
    """
    Resolve the caller of a request from its access token.

    Raises TokenExpired/TokenInvalid, SessionExpired/SessionInvalidated/
    SessionNotFound, and for device-bound accounts presenting a device
    fingerprint, DeviceNotRecognized. A changed IP on the bound device is
    audited and flagged on the returned context but not refused.
    """
    claims = token_service.verify(access_token)
    session = session_service.ensure_live(db.session.get(AuthSession, claims.session_id))
    account = session.account

    ip_mismatch_warning = False
    if fingerprint is not None and device_binding_service.is_device_bound(account):
        match = device_binding_service.matches_bound_device(account.id, fingerprint)
        if not match.bound:
            audit_service.log(
                entity_type="account",
                entity_id=account.id,
                action=AuditAction.REJECT,
                new_values={
                    "reason": "device_mismatch_on_request",
                    "attempted_fingerprint": truncate_fingerprint(fingerprint),
                },
                performed_by=account.id,
                ip_address=client_ip,
                user_agent=user_agent,
                commit=True,
            )
            current_app.logger.warning("Request for account %s from unrecognized device", account.id)
            raise DeviceNotRecognized()

        if client_ip is not None and match.binding.registered_ip != client_ip:
            ip_mismatch_warning = True
            audit_service.log(
                entity_type="account",
                entity_id=account.id,
                action=AuditAction.UPDATE,
                new_values={
                    "warning": "ip_mismatch_on_request",
                    "registered_ip": match.binding.registered_ip,
                    "current_ip": client_ip,
                },
                performed_by=account.id,
                ip_address=client_ip,
                user_agent=user_agent,
                commit=True,
            )

    session_service.touch(session.id)
    return AuthContext(
        account_id=account.id,
        kind=account.kind.value,
        roles=claims.roles,
        session_id=session.id,
        ip_mismatch_warning=ip_mismatch_warning,
    )


def reset_device(account_id: int, actor_id: int, reason: str, client_ip: str | None = None) -> int:
    """Administrative device reset. Returns count of sessions invalidated."""
    return run_with_retry(
        lambda: device_binding_service.reset_primary_binding(account_id, actor_id, reason, client_ip)
    )
