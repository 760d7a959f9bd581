from coursegate.models.audit_log import AuditLog, AuditLogAction
from coursegate.models.user import User, UserStatus
from coursegate.models.user_session import DeactivationReason, UserSession

__all__ = [
    "AuditLog",
    "AuditLogAction",
    "DeactivationReason",
    "User",
    "UserSession",
    "UserStatus",
]
