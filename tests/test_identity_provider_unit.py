from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from coursegate.core.errors import InvalidCredentialsError, ProviderUnavailableError
from coursegate.core.settings import Settings
from coursegate.services.cognito import CognitoIdentityProvider
from coursegate.services.identity import ProviderTokens, build_identity_provider, call_with_timeout
from coursegate.services.local_identity import LocalIdentityProvider


TOKENS = ProviderTokens(access_token="a", refresh_token="r", id_token="i", expires_in=3600)


@pytest.mark.asyncio
async def test_call_with_timeout_returns_result() -> None:
    call = AsyncMock(return_value=TOKENS)

    result = await call_with_timeout("verify_credentials", call, timeout=1.0, retry_backoff=0)

    assert result is TOKENS
    call.assert_awaited_once()


@pytest.mark.asyncio
async def test_call_with_timeout_maps_timeout_to_provider_unavailable() -> None:
    async def hang() -> None:
        await asyncio.sleep(10)

    with pytest.raises(ProviderUnavailableError):
        await call_with_timeout("introspect_token", hang, timeout=0.01)


@pytest.mark.asyncio
async def test_call_with_timeout_retries_unavailable_once() -> None:
    call = AsyncMock(side_effect=[ProviderUnavailableError(), TOKENS])

    result = await call_with_timeout("verify_credentials", call, timeout=1.0, retry_backoff=0)

    assert result is TOKENS
    assert call.await_count == 2


@pytest.mark.asyncio
async def test_call_with_timeout_gives_up_after_second_failure() -> None:
    call = AsyncMock(side_effect=ProviderUnavailableError())

    with pytest.raises(ProviderUnavailableError):
        await call_with_timeout("verify_credentials", call, timeout=1.0, retry_backoff=0)
    assert call.await_count == 2


@pytest.mark.asyncio
async def test_call_with_timeout_never_retries_terminal_errors() -> None:
    call = AsyncMock(side_effect=InvalidCredentialsError())

    with pytest.raises(InvalidCredentialsError):
        await call_with_timeout("verify_credentials", call, timeout=1.0, retry_backoff=0)
    call.assert_awaited_once()


@pytest.mark.asyncio
async def test_call_with_timeout_without_backoff_does_not_retry() -> None:
    call = AsyncMock(side_effect=ProviderUnavailableError())

    with pytest.raises(ProviderUnavailableError):
        await call_with_timeout("global_sign_out", call, timeout=1.0)
    call.assert_awaited_once()


def test_build_identity_provider_selects_adapter() -> None:
    session_factory = Mock()

    local = build_identity_provider(Settings(identity_provider="local"), session_factory)
    cognito = build_identity_provider(
        Settings(identity_provider="cognito", cognito_client_id="client-123"),
        session_factory,
    )

    assert isinstance(local, LocalIdentityProvider)
    assert isinstance(cognito, CognitoIdentityProvider)


def test_build_identity_provider_rejects_unknown_kind() -> None:
    with pytest.raises(ValueError):
        build_identity_provider(Settings(identity_provider="ldap"), Mock())
