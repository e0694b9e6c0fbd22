"""
Database Connection Module
Builds the SQLAlchemy async engine for the primary store.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
import logging

logger = logging.getLogger(__name__)


# Base class for all our models
class Base(DeclarativeBase):
    pass


def create_engine_for(database_url: str, timeout: float = 3.0, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine for the primary store.

    PostgreSQL gets a bounded pool and a connect timeout so an unreachable
    server fails fast instead of stalling the caller. Other URLs (SQLite in
    tests) use the dialect defaults.
    """
    if database_url.startswith("postgresql"):
        return create_async_engine(
            database_url,
            echo=echo,
            pool_size=5,  # Connection pool size
            max_overflow=10,  # Extra connections when pool is full
            pool_pre_ping=True,
            connect_args={"connect_timeout": max(1, int(timeout))},
        )
    return create_async_engine(database_url, echo=echo)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory - creates new database sessions."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False  # Objects remain accessible after commit
    )


async def init_db(engine: AsyncEngine) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Registers the tables on Base.metadata
    import tablekeeper.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Primary store tables created")
