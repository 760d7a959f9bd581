from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursegate.core.errors import StoreUnavailableError
from coursegate.models.user import User, UserStatus


@dataclass(frozen=True)
class UserProfile:
    user_id: uuid.UUID
    email: str
    full_name: str
    role_id: str | None
    status: str

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(
            user_id=user.id,
            email=user.email,
            full_name=user.full_name,
            role_id=user.role_id,
            status=user.status.value,
        )


class UserDirectory(Protocol):
    async def get_user_profile(self, user_id: uuid.UUID) -> UserProfile | None: ...


class SqlUserDirectory:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_user_profile(self, user_id: uuid.UUID) -> UserProfile | None:
        try:
            async with self._session_factory() as db:
                user = await db.get(User, user_id)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError() from exc
        return UserProfile.from_user(user) if user is not None else None
