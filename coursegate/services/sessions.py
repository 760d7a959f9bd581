"""Session lifecycle: login, validation, refresh, logout and revocation.

Sessions move from active to inactive exactly once. Expiry is never stored as
its own state: an active session past ``expires_at`` is expired, and the first
validation that notices it deactivates the record. Side effects that must not
hold up or fail the caller (audit rows, provider sign-out, session-cap
cleanup) run as background tasks owned by the manager.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import datetime
import enum
import json
import uuid
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from coursegate.core.errors import (
    AccountInactiveError,
    AccountNotFoundError,
    AuthError,
    InvalidTokenError,
    ProviderUnavailableError,
    RefreshFailedError,
    SessionExpiredError,
    SessionNotFoundError,
    StoreUnavailableError,
    TokenExpiredError,
    ValidationError,
)
from coursegate.core.settings import Settings
from coursegate.models.audit_log import AuditLogAction
from coursegate.models.user_session import DeactivationReason, UserSession
from coursegate.security.device import RequestMetadata, extract_device_context, extract_ip_address
from coursegate.security.tokens import digest_token
from coursegate.services.audit import AuditSink
from coursegate.services.identity import IdentityProvider, call_with_timeout
from coursegate.services.session_store import SessionStore
from coursegate.services.users import UserDirectory, UserProfile


logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    INACTIVE = "inactive"


@dataclass(frozen=True)
class SessionPolicy:
    session_ttl: datetime.timedelta = datetime.timedelta(hours=24)
    remember_me_ttl: datetime.timedelta = datetime.timedelta(days=30)
    max_active_sessions: int = 5
    provider_timeout: float = 5.0
    provider_retry_backoff: float = 0.2

    def __post_init__(self) -> None:
        if self.session_ttl <= datetime.timedelta(0) or self.remember_me_ttl <= datetime.timedelta(0):
            raise ValueError("session TTLs must be positive")
        if self.max_active_sessions < 1:
            raise ValueError("max_active_sessions must be at least 1")
        if self.provider_timeout <= 0:
            raise ValueError("provider_timeout must be positive")

    @classmethod
    def from_settings(cls, app_settings: Settings) -> "SessionPolicy":
        return cls(
            session_ttl=datetime.timedelta(hours=app_settings.session_ttl_hours),
            remember_me_ttl=datetime.timedelta(days=app_settings.remember_me_ttl_days),
            max_active_sessions=app_settings.max_active_sessions,
            provider_timeout=app_settings.provider_timeout_seconds,
            provider_retry_backoff=app_settings.provider_retry_backoff_seconds,
        )


@dataclass(frozen=True)
class LoginResult:
    session_id: uuid.UUID
    access_token: str
    refresh_token: str
    id_token: str
    expires_in: int
    expires_at: datetime.datetime
    user: UserProfile


@dataclass(frozen=True)
class SessionContext:
    session_id: uuid.UUID
    user_id: uuid.UUID
    user: UserProfile | None
    device_info: str
    ip_address: str
    last_active_at: datetime.datetime
    expires_at: datetime.datetime
    created_at: datetime.datetime


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    id_token: str
    expires_in: int
    session_id: uuid.UUID | None = None
    expires_at: datetime.datetime | None = None


@dataclass(frozen=True)
class RevokeAllResult:
    revoked_count: int
    total_sessions: int


@dataclass(frozen=True)
class SessionPage:
    sessions: list[UserSession]
    next_token: str | None = None


@dataclass(frozen=True)
class SessionDetails:
    session: UserSession
    user: UserProfile | None


def session_status(session: UserSession, now: datetime.datetime) -> SessionStatus:
    if not session.is_active:
        return SessionStatus.INACTIVE
    if now > _as_utc(session.expires_at):
        return SessionStatus.EXPIRED
    return SessionStatus.ACTIVE


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=datetime.UTC)


def _coerce_uuid(value: object) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def encode_page_token(offset: int) -> str:
    raw = json.dumps({"offset": offset}, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_page_token(token: str | None) -> int:
    if not token:
        return 0
    try:
        payload = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
        offset = int(payload["offset"])
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as exc:
        raise ValidationError("Invalid pagination token") from exc
    if offset < 0:
        raise ValidationError("Invalid pagination token")
    return offset


class SessionManager:
    def __init__(
        self,
        *,
        store: SessionStore,
        identity: IdentityProvider,
        users: UserDirectory,
        audit: AuditSink | None = None,
        policy: SessionPolicy | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self._store = store
        self._identity = identity
        self._users = users
        self._audit = audit
        self._policy = policy or SessionPolicy()
        self._clock = clock or (lambda: datetime.datetime.now(datetime.UTC))
        self._background_tasks: set[asyncio.Task[Any]] = set()

    @property
    def policy(self) -> SessionPolicy:
        return self._policy

    async def login(
        self,
        identifier: str,
        secret: str,
        *,
        remember_me: bool = False,
        metadata: RequestMetadata | None = None,
    ) -> LoginResult:
        if not identifier or not identifier.strip() or not secret:
            raise ValidationError("Email and password are required")
        metadata = metadata or RequestMetadata()

        tokens = await self._provider_call(
            "verify_credentials",
            lambda: self._identity.verify_credentials(identifier.strip(), secret),
        )
        introspection = await self._provider_call(
            "introspect_token",
            lambda: self._identity.introspect_token(tokens.access_token),
        )
        user_id = _coerce_uuid(introspection.subject_id)
        profile = await self._users.get_user_profile(user_id) if user_id is not None else None
        if profile is None:
            raise AccountNotFoundError()
        if not profile.is_active:
            raise AccountInactiveError(f"Account is {profile.status}. Please contact support.")

        now = self._now()
        ttl = self._policy.remember_me_ttl if remember_me else self._policy.session_ttl
        device = extract_device_context(metadata)
        session = UserSession(
            id=uuid.uuid4(),
            user_id=profile.user_id,
            token_digest=digest_token(tokens.access_token),
            device_info=device.describe(),
            ip_address=device.ip_address,
            is_active=True,
            last_active_at=now,
            expires_at=now + ttl,
            created_at=now,
        )
        await self._store.put(session)
        logger.info(
            "session_created",
            session_id=str(session.id),
            user_id=str(profile.user_id),
            remember_me=remember_me,
            device_info=session.device_info,
            ip_address=session.ip_address,
        )

        self._spawn(self.enforce_session_cap(profile.user_id), name=f"session-cap:{profile.user_id}")
        self._record(AuditLogAction.LOGIN, actor_id=profile.user_id, target_id=session.id, metadata=metadata)

        return LoginResult(
            session_id=session.id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            id_token=tokens.id_token,
            expires_in=int(ttl.total_seconds()),
            expires_at=session.expires_at,
            user=profile,
        )

    async def validate_token(self, raw_token: str) -> SessionContext:
        if not raw_token or not raw_token.strip():
            raise InvalidTokenError("Authorization token required")

        session = await self._store.find_active_by_token_digest(digest_token(raw_token))
        if session is None:
            raise InvalidTokenError()

        now = self._now()
        if session_status(session, now) is SessionStatus.EXPIRED:
            await self._store.deactivate(session.id, reason=DeactivationReason.EXPIRED, now=now)
            logger.info("session_expired", session_id=str(session.id), user_id=str(session.user_id))
            self._record(AuditLogAction.SESSION_EXPIRED, actor_id=session.user_id, target_id=session.id)
            raise SessionExpiredError()

        try:
            introspection = await self._provider_call(
                "introspect_token",
                lambda: self._identity.introspect_token(raw_token),
            )
        except (InvalidTokenError, TokenExpiredError) as exc:
            await self._reject(session, now)
            raise InvalidTokenError("Token validation failed") from exc

        if _coerce_uuid(introspection.subject_id) != session.user_id:
            await self._reject(session, now)
            raise InvalidTokenError("Token validation failed")

        if not await self._store.update(session.id, last_active_at=now):
            # Deactivated by a concurrent logout or revoke since the lookup.
            raise InvalidTokenError()

        profile = await self._users.get_user_profile(session.user_id)
        return SessionContext(
            session_id=session.id,
            user_id=session.user_id,
            user=profile,
            device_info=session.device_info,
            ip_address=session.ip_address,
            last_active_at=now,
            expires_at=session.expires_at,
            created_at=session.created_at,
        )

    async def refresh_session(
        self,
        refresh_token: str,
        session_id: uuid.UUID | None = None,
        *,
        metadata: RequestMetadata | None = None,
    ) -> RefreshResult:
        if not refresh_token or not refresh_token.strip():
            raise ValidationError("refresh_token is required")

        session: UserSession | None = None
        username: str | None = None
        if session_id is not None:
            session = await self._store.get_by_id(session_id)
            if session is None or not session.is_active:
                # Refreshing never brings a deactivated session back.
                raise RefreshFailedError()
            profile = await self._users.get_user_profile(session.user_id)
            username = profile.email if profile is not None else None

        try:
            tokens = await self._provider_call(
                "refresh_token",
                lambda: self._identity.refresh_token(refresh_token, username=username),
            )
        except ProviderUnavailableError:
            raise
        except AuthError as exc:
            logger.info("session_refresh_rejected", session_id=str(session_id) if session_id else None, kind=exc.kind.value)
            raise RefreshFailedError() from exc

        if session is None:
            return RefreshResult(access_token=tokens.access_token, id_token=tokens.id_token, expires_in=tokens.expires_in)

        # The new access token must belong to the session's owner before it replaces the digest.
        try:
            introspection = await self._provider_call(
                "introspect_token",
                lambda: self._identity.introspect_token(tokens.access_token),
            )
        except ProviderUnavailableError:
            raise
        except AuthError as exc:
            raise RefreshFailedError() from exc
        if _coerce_uuid(introspection.subject_id) != session.user_id:
            logger.warning("session_refresh_subject_mismatch", session_id=str(session.id), user_id=str(session.user_id))
            raise RefreshFailedError()

        now = self._now()
        expires_at = now + self._policy.session_ttl
        rotated = await self._store.update(
            session.id,
            token_digest=digest_token(tokens.access_token),
            last_active_at=now,
            expires_at=expires_at,
        )
        if not rotated:
            raise RefreshFailedError()

        logger.info("session_refreshed", session_id=str(session.id), user_id=str(session.user_id))
        self._record(AuditLogAction.REFRESH_TOKEN, actor_id=session.user_id, target_id=session.id, metadata=metadata)
        return RefreshResult(
            access_token=tokens.access_token,
            id_token=tokens.id_token,
            expires_in=tokens.expires_in,
            session_id=session.id,
            expires_at=expires_at,
        )

    async def logout(
        self,
        session_id: uuid.UUID,
        access_token: str | None = None,
        *,
        metadata: RequestMetadata | None = None,
    ) -> bool:
        """End a session. Unknown or already-ended sessions are a no-op."""
        session = await self._store.get_by_id(session_id)
        if session is None:
            logger.info("logout_unknown_session", session_id=str(session_id))
            return False

        now = self._now()
        if await self._store.deactivate(
            session.id,
            reason=DeactivationReason.LOGOUT,
            timestamp_field="logged_out_at",
            now=now,
        ):
            logger.info("session_logged_out", session_id=str(session.id), user_id=str(session.user_id))
            self._record(AuditLogAction.LOGOUT, actor_id=session.user_id, target_id=session.id, metadata=metadata)

        if access_token:
            self._spawn(self._global_sign_out(access_token, session.id), name=f"global-sign-out:{session.id}")
        return True

    async def revoke_session(self, session_id: uuid.UUID, *, metadata: RequestMetadata | None = None) -> UserSession:
        session = await self._store.get_by_id(session_id)
        if session is None:
            raise SessionNotFoundError()

        if await self._store.deactivate(
            session.id,
            reason=DeactivationReason.REVOKED,
            timestamp_field="revoked_at",
            now=self._now(),
        ):
            logger.info("session_revoked", session_id=str(session.id), user_id=str(session.user_id))
            self._record(AuditLogAction.SESSION_REVOKE, actor_id=session.user_id, target_id=session.id, metadata=metadata)
        return await self._store.get_by_id(session.id) or session

    async def revoke_all_sessions(
        self,
        user_id: uuid.UUID,
        except_session_id: uuid.UUID | None = None,
        *,
        metadata: RequestMetadata | None = None,
    ) -> RevokeAllResult:
        active = await self._store.list_by_user(user_id, active_only=True)
        now = self._now()
        revoked = 0
        for session in active:
            if except_session_id is not None and session.id == except_session_id:
                continue
            if await self._store.deactivate(
                session.id,
                reason=DeactivationReason.REVOKED,
                timestamp_field="revoked_at",
                now=now,
            ):
                revoked += 1

        logger.info(
            "sessions_revoked",
            user_id=str(user_id),
            revoked_count=revoked,
            total_sessions=len(active),
            kept_session_id=str(except_session_id) if except_session_id else None,
        )
        if revoked:
            self._record(AuditLogAction.SESSION_REVOKE_ALL, actor_id=user_id, target_id=except_session_id, metadata=metadata)
        return RevokeAllResult(revoked_count=revoked, total_sessions=len(active))

    async def get_active_sessions(self, user_id: uuid.UUID) -> list[UserSession]:
        return await self._store.list_by_user(user_id, active_only=True)

    async def get_all_sessions(
        self,
        user_id: uuid.UUID,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        page_token: str | None = None,
    ) -> SessionPage:
        page_size = max(1, min(limit, MAX_PAGE_SIZE))
        offset = decode_page_token(page_token)
        rows = await self._store.list_by_user(user_id, limit=page_size + 1, offset=offset)
        next_token = encode_page_token(offset + page_size) if len(rows) > page_size else None
        return SessionPage(sessions=rows[:page_size], next_token=next_token)

    async def get_session_details(self, session_id: uuid.UUID) -> SessionDetails:
        session = await self._store.get_by_id(session_id)
        if session is None:
            raise SessionNotFoundError()
        return SessionDetails(session=session, user=await self._users.get_user_profile(session.user_id))

    async def enforce_session_cap(self, user_id: uuid.UUID) -> int:
        """Deactivate all but the most recently active sessions of a user.

        Safe to run repeatedly and concurrently; a burst of logins converges on
        the next pass.
        """
        cap = self._policy.max_active_sessions
        try:
            active = await self._store.list_by_user(user_id, active_only=True)
            if len(active) <= cap:
                return 0
            now = self._now()
            deactivated = 0
            for session in active[cap:]:
                if await self._store.deactivate(session.id, reason=DeactivationReason.SESSION_CAP, now=now):
                    deactivated += 1
        except StoreUnavailableError as exc:
            logger.warning("session_cap_enforcement_failed", user_id=str(user_id), error=str(exc))
            return 0
        logger.info("session_cap_enforced", user_id=str(user_id), deactivated=deactivated, cap=cap)
        return deactivated

    async def wait_for_background_tasks(self) -> None:
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def _reject(self, session: UserSession, now: datetime.datetime) -> None:
        await self._store.deactivate(session.id, reason=DeactivationReason.PROVIDER_REJECTED, now=now)
        logger.info("session_rejected_by_provider", session_id=str(session.id), user_id=str(session.user_id))

    async def _global_sign_out(self, access_token: str, session_id: uuid.UUID) -> None:
        try:
            await call_with_timeout(
                "global_sign_out",
                lambda: self._identity.global_sign_out(access_token),
                timeout=self._policy.provider_timeout,
            )
        except AuthError as exc:
            logger.warning("global_sign_out_failed", session_id=str(session_id), kind=exc.kind.value)

    async def _provider_call(self, operation: str, factory: Callable[[], Awaitable[T]]) -> T:
        return await call_with_timeout(
            operation,
            factory,
            timeout=self._policy.provider_timeout,
            retry_backoff=self._policy.provider_retry_backoff,
        )

    def _record(
        self,
        action: AuditLogAction,
        *,
        actor_id: uuid.UUID | None,
        target_id: uuid.UUID | None,
        metadata: RequestMetadata | None = None,
    ) -> None:
        if self._audit is None:
            return
        self._spawn(
            self._audit.record(
                action,
                actor_id=actor_id,
                target_id=target_id,
                ip_address=extract_ip_address(metadata) if metadata else "Unknown",
                user_agent=metadata.user_agent if metadata else "",
            ),
            name=f"audit:{action.value}",
        )

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_task_done)

    def _on_background_task_done(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background_task_failed", task=task.get_name(), error=str(exc), exc_info=exc)

    def _now(self) -> datetime.datetime:
        return _as_utc(self._clock())
