from __future__ import annotations

import uuid

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursegate.models.audit_log import AuditLog, AuditLogAction


logger = structlog.get_logger(__name__)


class AuditSink:
    """Append-only writer for ``audit_logs``.

    Recording is best effort: a failed write is logged and dropped, never
    raised to the caller.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(
        self,
        action: AuditLogAction,
        *,
        actor_id: uuid.UUID | None,
        target_id: uuid.UUID | None,
        ip_address: str = "Unknown",
        user_agent: str = "",
    ) -> None:
        try:
            async with self._session_factory() as db:
                db.add(
                    AuditLog(
                        actor_id=actor_id,
                        action=action,
                        target_id=target_id,
                        ip_address=ip_address[:64],
                        user_agent=user_agent,
                    )
                )
                await db.commit()
        except SQLAlchemyError as exc:
            logger.warning("audit_write_failed", action=action.value, target_id=str(target_id), error=str(exc))
