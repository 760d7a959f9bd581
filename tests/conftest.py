from __future__ import annotations

import datetime
import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from coursegate.db import model_registry as _model_registry  # noqa: F401
from coursegate.db.base import Base
from coursegate.models.user import User, UserStatus
from coursegate.security.password import hash_password


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    # File-backed so background tasks get their own connections.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'coursegate.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    yield factory
    await engine.dispose()


class FakeClock:
    def __init__(self, start: datetime.datetime | None = None) -> None:
        self.now = start or datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.UTC)

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += datetime.timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


async def seed_user(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    email: str = "learner@example.com",
    password: str | None = "CorrectHorse123!",
    status: UserStatus = UserStatus.ACTIVE,
    email_confirmed: bool = True,
    user_id: uuid.UUID | None = None,
) -> User:
    user = User(
        id=user_id or uuid.uuid4(),
        email=email,
        full_name="Course Learner",
        role_id="student",
        status=status,
        password_hash=hash_password(password) if password is not None else None,
        email_confirmed=email_confirmed,
    )
    async with session_factory() as db:
        db.add(user)
        await db.commit()
    return user
