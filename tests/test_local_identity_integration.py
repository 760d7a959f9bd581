from __future__ import annotations

import datetime

import pytest

from conftest import FakeClock, seed_user
from coursegate.core.errors import (
    AccountNotConfirmedError,
    InvalidCredentialsError,
    InvalidTokenError,
    RateLimitedError,
    RefreshFailedError,
    TokenExpiredError,
)
from coursegate.core.settings import Settings
from coursegate.services.local_identity import LocalIdentityProvider, LoginRateLimiter, MAX_FAILED_ATTEMPTS


def _settings() -> Settings:
    return Settings(
        identity_provider="local",
        local_idp_signing_key="integration-signing-key-32-bytes-long",
        local_idp_issuer="coursegate-test",
        local_idp_access_ttl_minutes=15,
    )


@pytest.mark.asyncio
async def test_verify_credentials_issues_tokens_for_subject(session_factory) -> None:
    user = await seed_user(session_factory)
    provider = LocalIdentityProvider(session_factory, app_settings=_settings())

    tokens = await provider.verify_credentials(" Learner@Example.com ", "CorrectHorse123!")
    introspection = await provider.introspect_token(tokens.access_token)

    assert tokens.expires_in == 15 * 60
    assert tokens.access_token != tokens.id_token
    assert introspection.subject_id == str(user.id)
    assert introspection.attributes["email"] == "learner@example.com"


@pytest.mark.asyncio
async def test_verify_credentials_rejects_wrong_password_and_unknown_user(session_factory) -> None:
    await seed_user(session_factory)
    provider = LocalIdentityProvider(session_factory, app_settings=_settings())

    with pytest.raises(InvalidCredentialsError):
        await provider.verify_credentials("learner@example.com", "wrong-password")
    with pytest.raises(InvalidCredentialsError):
        await provider.verify_credentials("nobody@example.com", "CorrectHorse123!")


@pytest.mark.asyncio
async def test_verify_credentials_requires_confirmed_email(session_factory) -> None:
    await seed_user(session_factory, email_confirmed=False)
    provider = LocalIdentityProvider(session_factory, app_settings=_settings())

    with pytest.raises(AccountNotConfirmedError):
        await provider.verify_credentials("learner@example.com", "CorrectHorse123!")


@pytest.mark.asyncio
async def test_repeated_failures_are_rate_limited(session_factory) -> None:
    await seed_user(session_factory)
    limiter = LoginRateLimiter()
    provider = LocalIdentityProvider(session_factory, app_settings=_settings(), rate_limiter=limiter)

    for _ in range(MAX_FAILED_ATTEMPTS):
        with pytest.raises(InvalidCredentialsError):
            await provider.verify_credentials("learner@example.com", "wrong-password")

    with pytest.raises(RateLimitedError):
        await provider.verify_credentials("learner@example.com", "CorrectHorse123!")

    await limiter.reset("learner@example.com")
    tokens = await provider.verify_credentials("learner@example.com", "CorrectHorse123!")
    assert tokens.access_token


@pytest.mark.asyncio
async def test_rate_limiter_forgets_failures_outside_window() -> None:
    limiter = LoginRateLimiter()
    for _ in range(MAX_FAILED_ATTEMPTS):
        await limiter.register_failure("learner@example.com", now=0.0)

    assert await limiter.is_rate_limited("learner@example.com", now=1.0) is True
    assert await limiter.is_rate_limited("learner@example.com", now=60 * 16) is False


@pytest.mark.asyncio
async def test_refresh_token_requires_known_grant_and_matching_username(session_factory) -> None:
    await seed_user(session_factory)
    provider = LocalIdentityProvider(session_factory, app_settings=_settings())
    tokens = await provider.verify_credentials("learner@example.com", "CorrectHorse123!")

    refreshed = await provider.refresh_token(tokens.refresh_token, username="learner@example.com")

    assert refreshed.access_token != tokens.access_token
    with pytest.raises(RefreshFailedError):
        await provider.refresh_token("unknown-refresh-token")
    with pytest.raises(RefreshFailedError):
        await provider.refresh_token(tokens.refresh_token, username="someone@example.com")


@pytest.mark.asyncio
async def test_global_sign_out_revokes_access_and_refresh(session_factory) -> None:
    await seed_user(session_factory)
    provider = LocalIdentityProvider(session_factory, app_settings=_settings())
    tokens = await provider.verify_credentials("learner@example.com", "CorrectHorse123!")

    await provider.global_sign_out(tokens.access_token)

    with pytest.raises(InvalidTokenError):
        await provider.introspect_token(tokens.access_token)
    with pytest.raises(RefreshFailedError):
        await provider.refresh_token(tokens.refresh_token)


@pytest.mark.asyncio
async def test_introspect_maps_expired_and_garbage_tokens(session_factory) -> None:
    await seed_user(session_factory)
    past = datetime.datetime.now(datetime.UTC) - datetime.timedelta(hours=3)
    provider = LocalIdentityProvider(session_factory, app_settings=_settings(), clock=lambda: past)
    tokens = await provider.verify_credentials("learner@example.com", "CorrectHorse123!")

    with pytest.raises(TokenExpiredError):
        await provider.introspect_token(tokens.access_token)
    with pytest.raises(InvalidTokenError):
        await provider.introspect_token("not-a-jwt")


@pytest.mark.asyncio
async def test_refresh_grants_expire_and_are_pruned(session_factory) -> None:
    await seed_user(session_factory)
    clock = FakeClock(datetime.datetime.now(datetime.UTC))
    provider = LocalIdentityProvider(
        session_factory,
        app_settings=_settings().model_copy(update={"local_idp_refresh_ttl_days": 7}),
        clock=clock,
    )
    tokens = await provider.verify_credentials("learner@example.com", "CorrectHorse123!")

    clock.advance(days=6)
    assert (await provider.refresh_token(tokens.refresh_token)).access_token

    clock.advance(days=1, seconds=1)
    with pytest.raises(RefreshFailedError):
        await provider.refresh_token(tokens.refresh_token)
    assert provider._refresh_grants == {}


@pytest.mark.asyncio
async def test_revoked_token_ids_are_forgotten_after_expiry(session_factory) -> None:
    await seed_user(session_factory)
    clock = FakeClock(datetime.datetime.now(datetime.UTC))
    provider = LocalIdentityProvider(session_factory, app_settings=_settings(), clock=clock)
    tokens = await provider.verify_credentials("learner@example.com", "CorrectHorse123!")

    await provider.global_sign_out(tokens.access_token)
    assert len(provider._revoked_token_ids) == 1

    clock.advance(minutes=16)
    with pytest.raises(TokenExpiredError):
        await provider.introspect_token(tokens.access_token)
    await provider.verify_credentials("learner@example.com", "CorrectHorse123!")
    assert provider._revoked_token_ids == {}
