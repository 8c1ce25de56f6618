from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from authsvc.config import settings
from authsvc.db.base import Base

# Store timeouts belong here, not in the session engine: asyncpg command_timeout bounds every statement.
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
    pool_timeout=10,
    connect_args={"command_timeout": 10} if settings.database_url.startswith("postgresql+asyncpg") else {},
)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One transaction per request: a rotation's revoke and insert commit together or not at all.

    Writers commit explicitly before building their response (see SessionEngine); this
    cleanup runs after the response is sent, so it only rolls back what was left uncommitted.
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()
