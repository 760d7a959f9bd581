from __future__ import annotations

import datetime
import enum
import uuid

from sqlalchemy import Enum, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from coursegate.db.base import Base
from coursegate.db.types import UTCDateTime, enum_values


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING = "pending"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, name="user_status", native_enum=True, values_callable=enum_values),
        nullable=False,
        default=UserStatus.ACTIVE,
    )
    # Only consulted by the local identity provider; Cognito keeps its own.
    password_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    email_confirmed: Mapped[bool] = mapped_column(nullable=False, default=True, server_default="1")
    created_at: Mapped[datetime.datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
    )
