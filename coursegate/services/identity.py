from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

import structlog

from coursegate.core.errors import ProviderUnavailableError
from coursegate.core.settings import Settings


logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ProviderTokens:
    access_token: str
    refresh_token: str
    id_token: str
    expires_in: int


@dataclass(frozen=True)
class RefreshedTokens:
    access_token: str
    id_token: str
    expires_in: int


@dataclass(frozen=True)
class TokenIntrospection:
    subject_id: str
    attributes: dict[str, Any] = field(default_factory=dict)


class IdentityProvider(Protocol):
    """Contract for the external identity service.

    Implementations translate their own failures into
    ``coursegate.core.errors`` classes and never retry.
    """

    async def verify_credentials(self, identifier: str, secret: str) -> ProviderTokens: ...

    async def introspect_token(self, access_token: str) -> TokenIntrospection: ...

    async def refresh_token(self, refresh_token: str, *, username: str | None = None) -> RefreshedTokens: ...

    async def global_sign_out(self, access_token: str) -> None: ...


async def call_with_timeout(
    operation: str,
    factory: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    retry_backoff: float | None = None,
) -> T:
    """Run a provider call under a timeout.

    A timeout counts as ``ProviderUnavailableError``. When ``retry_backoff`` is
    given, an unavailable provider is retried exactly once after that delay;
    every other error kind is raised immediately.
    """
    attempts = 2 if retry_backoff is not None else 1
    attempt = 1
    while True:
        try:
            return await asyncio.wait_for(factory(), timeout=timeout)
        except TimeoutError:
            error = ProviderUnavailableError()
            logger.warning("identity_provider_timeout", operation=operation, attempt=attempt, timeout=timeout)
        except ProviderUnavailableError as exc:
            error = exc
            logger.warning("identity_provider_unavailable", operation=operation, attempt=attempt)
        if attempt >= attempts:
            raise error
        attempt += 1
        await asyncio.sleep(retry_backoff or 0)


def build_identity_provider(app_settings: Settings, session_factory) -> IdentityProvider:
    from coursegate.services.cognito import CognitoIdentityProvider
    from coursegate.services.local_identity import LocalIdentityProvider

    kind = app_settings.identity_provider.strip().lower()
    if kind == "cognito":
        return CognitoIdentityProvider.from_settings(app_settings)
    if kind == "local":
        return LocalIdentityProvider(session_factory, app_settings=app_settings)
    raise ValueError(f"Unsupported identity provider: {app_settings.identity_provider!r}")
