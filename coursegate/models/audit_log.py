from __future__ import annotations

import datetime
import enum
import uuid

from sqlalchemy import Enum, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from coursegate.db.base import Base
from coursegate.db.types import UTCDateTime, enum_values


class AuditLogAction(str, enum.Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    REFRESH_TOKEN = "refresh_token"
    SESSION_REVOKE = "session_revoke"
    SESSION_REVOKE_ALL = "session_revoke_all"
    SESSION_EXPIRED = "session_expired"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    action: Mapped[AuditLogAction] = mapped_column(
        Enum(AuditLogAction, name="audit_log_action", native_enum=True, values_callable=enum_values),
        nullable=False,
    )
    target_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    user_agent: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime.datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
    )
