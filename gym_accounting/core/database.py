from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base
from typing import AsyncGenerator

from gym_accounting.core.config import get_settings

settings = get_settings()


def _connect_args(database_url: str) -> dict:
    # Manual and scheduled syncs may write at the same time; wait for the lock
    if database_url.startswith("sqlite"):
        return {"timeout": 30}
    return {}


# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    connect_args=_connect_args(settings.database_url),
)

# Sessions keep attribute values after commit; the sync service reads
# the sync log and integration rows again after each commit
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI to get database session.

    Services commit their own units of work; anything left pending when the
    request finishes is committed here, and rolled back on error.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the accounting tables if they do not exist."""
    # Register every model on Base before creating tables
    import gym_accounting.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
