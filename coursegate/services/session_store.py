"""Durable session records.

Every method opens its own short transaction and touches a single row, so
callers composing several calls get no atomicity across them. Database
failures surface as ``StoreUnavailableError``.
"""

from __future__ import annotations

import datetime
import uuid
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursegate.core.errors import StoreUnavailableError
from coursegate.models.user_session import DeactivationReason, UserSession


# Fields that only change through ``deactivate`` or never change at all.
_PROTECTED_FIELDS = frozenset(
    {
        "id",
        "user_id",
        "created_at",
        "device_info",
        "ip_address",
        "is_active",
        "logged_out_at",
        "revoked_at",
        "deactivated_at",
        "deactivation_reason",
    }
)
_TIMESTAMP_FIELDS = frozenset({"logged_out_at", "revoked_at"})


class SessionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def put(self, session: UserSession) -> UserSession:
        try:
            async with self._session_factory() as db:
                db.add(session)
                await db.commit()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError() from exc
        return session

    async def get_by_id(self, session_id: uuid.UUID) -> UserSession | None:
        try:
            async with self._session_factory() as db:
                return await db.get(UserSession, session_id)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError() from exc

    async def find_active_by_token_digest(self, token_digest: str) -> UserSession | None:
        query = (
            select(UserSession)
            .where(UserSession.token_digest == token_digest, UserSession.is_active.is_(True))
            .limit(2)
        )
        try:
            async with self._session_factory() as db:
                matches = list((await db.execute(query)).scalars().all())
        except SQLAlchemyError as exc:
            raise StoreUnavailableError() from exc
        # An ambiguous digest must not resolve to either session.
        if len(matches) != 1:
            return None
        return matches[0]

    async def list_by_user(
        self,
        user_id: uuid.UUID,
        *,
        active_only: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[UserSession]:
        query = select(UserSession).where(UserSession.user_id == user_id)
        if active_only:
            query = query.where(UserSession.is_active.is_(True))
        query = query.order_by(UserSession.last_active_at.desc(), UserSession.created_at.desc(), UserSession.id)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        try:
            async with self._session_factory() as db:
                return list((await db.execute(query)).scalars().all())
        except SQLAlchemyError as exc:
            raise StoreUnavailableError() from exc

    async def count_by_user(self, user_id: uuid.UUID, *, active_only: bool = False) -> int:
        query = select(func.count()).select_from(UserSession).where(UserSession.user_id == user_id)
        if active_only:
            query = query.where(UserSession.is_active.is_(True))
        try:
            async with self._session_factory() as db:
                return int((await db.execute(query)).scalar_one())
        except SQLAlchemyError as exc:
            raise StoreUnavailableError() from exc

    async def update(self, session_id: uuid.UUID, *, active_only: bool = True, **fields: Any) -> bool:
        """Apply a partial update; returns whether a row was changed.

        With ``active_only`` (the default) deactivated sessions are left
        untouched, so a late refresh or validation cannot rewrite them.
        """
        forbidden = _PROTECTED_FIELDS.intersection(fields)
        if forbidden:
            raise ValueError(f"fields cannot be updated directly: {sorted(forbidden)}")
        if not fields:
            return False
        statement = update(UserSession).where(UserSession.id == session_id)
        if active_only:
            statement = statement.where(UserSession.is_active.is_(True))
        return await self._execute_update(statement.values(**fields))

    async def deactivate(
        self,
        session_id: uuid.UUID,
        *,
        reason: DeactivationReason,
        now: datetime.datetime,
        timestamp_field: str | None = None,
    ) -> bool:
        """Flip an active session to inactive; returns False if it was already inactive."""
        values: dict[str, Any] = {
            "is_active": False,
            "deactivated_at": now,
            "deactivation_reason": reason.value,
        }
        if timestamp_field is not None:
            if timestamp_field not in _TIMESTAMP_FIELDS:
                raise ValueError(f"unsupported deactivation timestamp field: {timestamp_field}")
            values[timestamp_field] = now
        statement = (
            update(UserSession)
            .where(UserSession.id == session_id, UserSession.is_active.is_(True))
            .values(**values)
        )
        return await self._execute_update(statement)

    async def _execute_update(self, statement) -> bool:
        try:
            async with self._session_factory() as db:
                result = await db.execute(statement)
                await db.commit()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError() from exc
        return bool(result.rowcount)
