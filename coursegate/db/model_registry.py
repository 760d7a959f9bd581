"""Import all models so SQLAlchemy metadata is fully populated."""

from coursegate.models.audit_log import AuditLog  # noqa: F401
from coursegate.models.user import User  # noqa: F401
from coursegate.models.user_session import UserSession  # noqa: F401
