"""
Async SQLAlchemy database setup for StoreBot.

Provides the declarative Base, the async engine and session factory, and the
helpers that create missing tables.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from .config import settings
from .utils.logging import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


def build_engine(database_url: str) -> AsyncEngine:
    """
    Create an async engine for the given URL.

    SQLite connections get a busy timeout so concurrent writers wait for the
    file lock instead of failing immediately.

    Args:
        database_url: SQLAlchemy async database URL

    Returns:
        Configured AsyncEngine
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"timeout": 30, "check_same_thread": False}

    return create_async_engine(database_url, echo=False, connect_args=connect_args)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the given engine."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.database_url)
SessionLocal = build_session_factory(engine)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """
    Create all tables that do not exist yet.

    Args:
        bind: Engine to use (defaults to the application engine)
    """
    # Import models so they register on Base.metadata
    from . import models  # noqa: F401

    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database schema ensured", extra={"tables": len(Base.metadata.tables)})
