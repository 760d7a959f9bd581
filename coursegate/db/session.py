from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from coursegate.core.settings import settings


engine = create_async_engine(settings.database_url, future=True, pool_pre_ping=True)
SessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)
