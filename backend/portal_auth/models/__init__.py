from .accounts import Account, AccountKind, AccountStatus
from .devices import DeviceBinding, BindingActive, BindingDeactivated
from .sessions import AuthSession, RetiredRefreshToken, InvalidationReason, SessionLive, SessionEnded
from .audit import AuditLogEntry, AuditAction, AuditLogImmutableError
from .login_attempts import LoginAttempt, LoginFailureReason

__all__ = [
    'Account', 'AccountKind', 'AccountStatus',
    'DeviceBinding', 'BindingActive', 'BindingDeactivated',
    'AuthSession', 'RetiredRefreshToken', 'InvalidationReason', 'SessionLive', 'SessionEnded',
    'AuditLogEntry', 'AuditAction', 'AuditLogImmutableError',
    'LoginAttempt', 'LoginFailureReason',
]
