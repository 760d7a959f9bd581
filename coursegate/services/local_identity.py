"""In-process identity provider backed by the ``users`` table.

Used for local development and tests in place of the hosted user pool. Access
and id tokens are short-lived signed JWTs; refresh tokens are opaque, expire after
``local_idp_refresh_ttl_days``, and only their digests are kept, in memory.
"""

from __future__ import annotations

import asyncio
import datetime
import time
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursegate.core.errors import (
    AccountNotConfirmedError,
    InvalidCredentialsError,
    InvalidTokenError,
    ProviderUnavailableError,
    RateLimitedError,
    RefreshFailedError,
    TokenExpiredError,
)
from coursegate.core.settings import Settings, settings
from coursegate.models.user import User
from coursegate.security.password import verify_password
from coursegate.security.tokens import (
    AccessTokenExpiredError,
    AccessTokenPayload,
    AccessTokenValidationError,
    digest_token,
    issue_opaque_token,
    issue_signed_token,
    validate_signed_token,
)
from coursegate.services.identity import ProviderTokens, RefreshedTokens, TokenIntrospection


logger = structlog.get_logger(__name__)

MAX_FAILED_ATTEMPTS = 5
FAILED_ATTEMPTS_WINDOW_SECONDS = 60 * 15


class LoginRateLimiter:
    def __init__(self) -> None:
        self._failed_attempts: dict[str, deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def is_rate_limited(self, key: str, now: float | None = None) -> bool:
        async with self._lock:
            failures = self._prune_and_get(key, now)
            return len(failures) >= MAX_FAILED_ATTEMPTS

    async def register_failure(self, key: str, now: float | None = None) -> None:
        async with self._lock:
            failures = self._prune_and_get(key, now)
            failures.append(now if now is not None else time.monotonic())

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._failed_attempts.pop(key, None)

    def _prune_and_get(self, key: str, now: float | None = None) -> deque[float]:
        current = now if now is not None else time.monotonic()
        threshold = current - FAILED_ATTEMPTS_WINDOW_SECONDS
        failures = self._failed_attempts[key]
        while failures and failures[0] < threshold:
            failures.popleft()
        return failures


@dataclass(frozen=True)
class _RefreshGrant:
    subject: str
    email: str
    expires_at: datetime.datetime


class LocalIdentityProvider:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        app_settings: Settings = settings,
        rate_limiter: LoginRateLimiter | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = app_settings
        self._rate_limiter = rate_limiter or LoginRateLimiter()
        self._clock = clock or (lambda: datetime.datetime.now(datetime.UTC))
        self._refresh_grants: dict[str, _RefreshGrant] = {}
        # jti -> access-token expiry; entries are dropped once the token would have expired anyway.
        self._revoked_token_ids: dict[str, datetime.datetime] = {}

    @property
    def _access_ttl(self) -> datetime.timedelta:
        return datetime.timedelta(minutes=self._settings.local_idp_access_ttl_minutes)

    @property
    def _refresh_ttl(self) -> datetime.timedelta:
        return datetime.timedelta(days=self._settings.local_idp_refresh_ttl_days)

    async def verify_credentials(self, identifier: str, secret: str) -> ProviderTokens:
        self._prune()
        normalized = identifier.strip().lower()
        if await self._rate_limiter.is_rate_limited(normalized):
            raise RateLimitedError()

        user = await self._find_user_by_email(normalized)
        if not verify_password(user.password_hash if user else None, secret):
            await self._rate_limiter.register_failure(normalized)
            raise InvalidCredentialsError()
        if not user.email_confirmed:
            raise AccountNotConfirmedError()

        await self._rate_limiter.reset(normalized)
        subject = str(user.id)
        access_token, id_token = self._mint(subject, user.email)
        refresh_token = issue_opaque_token()
        self._refresh_grants[digest_token(refresh_token)] = _RefreshGrant(
            subject=subject,
            email=user.email,
            expires_at=self._clock() + self._refresh_ttl,
        )
        return ProviderTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            id_token=id_token,
            expires_in=int(self._access_ttl.total_seconds()),
        )

    async def introspect_token(self, access_token: str) -> TokenIntrospection:
        payload = self._decode(access_token)
        return TokenIntrospection(subject_id=payload.sub, attributes={"sub": payload.sub, "email": payload.email})

    async def refresh_token(self, refresh_token: str, *, username: str | None = None) -> RefreshedTokens:
        self._prune()
        grant = self._refresh_grants.get(digest_token(refresh_token))
        if grant is None:
            raise RefreshFailedError()
        if username is not None and username.strip().lower() != grant.email.lower():
            raise RefreshFailedError()
        access_token, id_token = self._mint(grant.subject, grant.email)
        return RefreshedTokens(
            access_token=access_token,
            id_token=id_token,
            expires_in=int(self._access_ttl.total_seconds()),
        )

    async def global_sign_out(self, access_token: str) -> None:
        payload = self._decode(access_token)
        self._revoked_token_ids[payload.jti] = payload.exp
        # Signing out globally also retires every refresh grant of the subject.
        for key, grant in list(self._refresh_grants.items()):
            if grant.subject == payload.sub:
                del self._refresh_grants[key]

    def _decode(self, access_token: str) -> AccessTokenPayload:
        try:
            payload = validate_signed_token(
                access_token,
                signing_key=self._settings.local_idp_signing_key,
                issuer=self._settings.local_idp_issuer,
            )
        except AccessTokenExpiredError as exc:
            raise TokenExpiredError() from exc
        except AccessTokenValidationError as exc:
            raise InvalidTokenError() from exc
        if payload.exp <= self._clock():
            raise TokenExpiredError()
        if payload.jti in self._revoked_token_ids:
            raise InvalidTokenError()
        return payload

    def _prune(self) -> None:
        now = self._clock()
        for key, grant in list(self._refresh_grants.items()):
            if grant.expires_at <= now:
                del self._refresh_grants[key]
        for jti, expires_at in list(self._revoked_token_ids.items()):
            if expires_at <= now:
                del self._revoked_token_ids[jti]

    def _mint(self, subject: str, email: str) -> tuple[str, str]:
        now = self._clock()
        access_token, _ = issue_signed_token(
            subject=subject,
            email=email,
            token_use="access",
            now=now,
            expires_in=self._access_ttl,
            signing_key=self._settings.local_idp_signing_key,
            issuer=self._settings.local_idp_issuer,
        )
        id_token, _ = issue_signed_token(
            subject=subject,
            email=email,
            token_use="id",
            now=now,
            expires_in=self._access_ttl,
            signing_key=self._settings.local_idp_signing_key,
            issuer=self._settings.local_idp_issuer,
        )
        return access_token, id_token

    async def _find_user_by_email(self, email: str) -> User | None:
        try:
            async with self._session_factory() as db:
                return (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error("local_identity_lookup_failed", error=str(exc))
            raise ProviderUnavailableError() from exc
