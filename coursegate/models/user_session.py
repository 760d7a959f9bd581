"""Session record layered on top of identity-provider tokens.

Only the SHA-256 digest of the current access token is stored. ``is_active``
is the single source of truth for liveness; expiry is derived from
``expires_at`` when the session is next read.
"""

from __future__ import annotations

import datetime
import enum
import uuid

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from coursegate.db.base import Base
from coursegate.db.types import UTCDateTime


class DeactivationReason(str, enum.Enum):
    LOGOUT = "logout"
    REVOKED = "revoked"
    EXPIRED = "expired"
    PROVIDER_REJECTED = "provider_rejected"
    SESSION_CAP = "session_cap"


class UserSession(Base):
    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_user_id_is_active", "user_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    token_digest: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    device_info: Mapped[str] = mapped_column(String(255), nullable=False, default="Unknown Device")
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False, default="Unknown")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_active_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime(), nullable=False)
    expires_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(UTCDateTime(), nullable=False)
    logged_out_at: Mapped[datetime.datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    revoked_at: Mapped[datetime.datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    deactivated_at: Mapped[datetime.datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    deactivation_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)

    def __repr__(self) -> str:
        return f"<UserSession id={self.id} user={self.user_id} active={self.is_active}>"
