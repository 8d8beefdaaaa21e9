# backend/portal_auth/config.py
from __future__ import annotations
import os


def _csv(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///portal_auth.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Access tokens are signed with SECRET_KEY; the salt separates them
    # from any other itsdangerous payloads signed with the same key.
    ACCESS_TOKEN_TTL_SECONDS = int(os.environ.get("ACCESS_TOKEN_TTL_SECONDS", "3600"))
    ACCESS_TOKEN_SALT = os.environ.get("ACCESS_TOKEN_SALT", "portal-auth-access")

    # Absolute session lifetime, also the refresh token lifetime
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "168"))

    MAX_LOGIN_ATTEMPTS = int(os.environ.get("MAX_LOGIN_ATTEMPTS", "5"))
    LOGIN_LOCKOUT_MINUTES = int(os.environ.get("LOGIN_LOCKOUT_MINUTES", "15"))
    LOGIN_ATTEMPT_RETENTION_DAYS = int(os.environ.get("LOGIN_ATTEMPT_RETENTION_DAYS", "90"))

    # Account kinds (customer, supplier, admin)
    DEVICE_BOUND_ACCOUNT_KINDS = _csv("DEVICE_BOUND_ACCOUNT_KINDS", "customer,supplier")
    SINGLE_SESSION_ACCOUNT_KINDS = _csv("SINGLE_SESSION_ACCOUNT_KINDS", "")
    ELEVATED_ACCOUNT_KINDS = _csv("ELEVATED_ACCOUNT_KINDS", "admin")

    STORAGE_RETRY_ATTEMPTS = int(os.environ.get("STORAGE_RETRY_ATTEMPTS", "3"))
