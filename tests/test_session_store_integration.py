from __future__ import annotations

import datetime
import uuid

import pytest
from sqlalchemy.exc import OperationalError

from coursegate.core.errors import StoreUnavailableError
from coursegate.models.user_session import DeactivationReason, UserSession
from coursegate.security.tokens import digest_token
from coursegate.services.session_store import SessionStore


NOW = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.UTC)


def _session(user_id: uuid.UUID, token: str, *, last_active_offset_minutes: int = 0) -> UserSession:
    last_active = NOW + datetime.timedelta(minutes=last_active_offset_minutes)
    return UserSession(
        id=uuid.uuid4(),
        user_id=user_id,
        token_digest=digest_token(token),
        device_info="Desktop - Linux - Firefox",
        ip_address="10.0.0.1",
        is_active=True,
        last_active_at=last_active,
        expires_at=NOW + datetime.timedelta(hours=24),
        created_at=NOW,
    )


@pytest.mark.asyncio
async def test_put_and_get_round_trip_keeps_utc(session_factory) -> None:
    store = SessionStore(session_factory)
    session = await store.put(_session(uuid.uuid4(), "token-a"))

    loaded = await store.get_by_id(session.id)

    assert loaded is not None
    assert loaded.expires_at == session.expires_at
    assert loaded.expires_at.tzinfo is not None
    assert await store.get_by_id(uuid.uuid4()) is None


@pytest.mark.asyncio
async def test_find_by_digest_ignores_inactive_and_ambiguous_rows(session_factory) -> None:
    store = SessionStore(session_factory)
    user_id = uuid.uuid4()
    first = await store.put(_session(user_id, "token-a"))

    found = await store.find_active_by_token_digest(digest_token("token-a"))
    assert found is not None and found.id == first.id

    await store.deactivate(first.id, reason=DeactivationReason.LOGOUT, now=NOW, timestamp_field="logged_out_at")
    assert await store.find_active_by_token_digest(digest_token("token-a")) is None

    await store.put(_session(user_id, "token-b"))
    await store.put(_session(user_id, "token-b"))
    assert await store.find_active_by_token_digest(digest_token("token-b")) is None


@pytest.mark.asyncio
async def test_list_by_user_orders_by_recent_activity_with_paging(session_factory) -> None:
    store = SessionStore(session_factory)
    user_id = uuid.uuid4()
    oldest = await store.put(_session(user_id, "t1", last_active_offset_minutes=1))
    newest = await store.put(_session(user_id, "t2", last_active_offset_minutes=3))
    middle = await store.put(_session(user_id, "t3", last_active_offset_minutes=2))
    await store.put(_session(uuid.uuid4(), "other-user"))
    await store.deactivate(middle.id, reason=DeactivationReason.REVOKED, now=NOW, timestamp_field="revoked_at")

    everything = await store.list_by_user(user_id)
    active = await store.list_by_user(user_id, active_only=True)
    second_page = await store.list_by_user(user_id, limit=1, offset=1)

    assert [s.id for s in everything] == [newest.id, middle.id, oldest.id]
    assert [s.id for s in active] == [newest.id, oldest.id]
    assert [s.id for s in second_page] == [middle.id]
    assert await store.count_by_user(user_id) == 3
    assert await store.count_by_user(user_id, active_only=True) == 2


@pytest.mark.asyncio
async def test_deactivate_is_one_way_and_records_reason(session_factory) -> None:
    store = SessionStore(session_factory)
    session = await store.put(_session(uuid.uuid4(), "token-a"))

    assert await store.deactivate(session.id, reason=DeactivationReason.REVOKED, now=NOW, timestamp_field="revoked_at")
    assert not await store.deactivate(session.id, reason=DeactivationReason.LOGOUT, now=NOW, timestamp_field="logged_out_at")

    loaded = await store.get_by_id(session.id)
    assert loaded.is_active is False
    assert loaded.revoked_at == NOW
    assert loaded.logged_out_at is None
    assert loaded.deactivation_reason == DeactivationReason.REVOKED.value


@pytest.mark.asyncio
async def test_update_skips_inactive_sessions_and_protects_fields(session_factory) -> None:
    store = SessionStore(session_factory)
    session = await store.put(_session(uuid.uuid4(), "token-a"))
    later = NOW + datetime.timedelta(minutes=5)

    assert await store.update(session.id, last_active_at=later)
    with pytest.raises(ValueError):
        await store.update(session.id, is_active=True)
    with pytest.raises(ValueError):
        await store.deactivate(session.id, reason=DeactivationReason.REVOKED, now=NOW, timestamp_field="created_at")

    await store.deactivate(session.id, reason=DeactivationReason.EXPIRED, now=later)
    assert not await store.update(session.id, last_active_at=later + datetime.timedelta(minutes=1))

    loaded = await store.get_by_id(session.id)
    assert loaded.last_active_at == later


@pytest.mark.asyncio
async def test_database_errors_surface_as_store_unavailable() -> None:
    class _BrokenSession:
        async def __aenter__(self):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

        async def __aexit__(self, *exc_info) -> None:
            return None

    store = SessionStore(lambda: _BrokenSession())

    with pytest.raises(StoreUnavailableError):
        await store.get_by_id(uuid.uuid4())
    with pytest.raises(StoreUnavailableError):
        await store.deactivate(uuid.uuid4(), reason=DeactivationReason.REVOKED, now=NOW)
