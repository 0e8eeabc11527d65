"""Async engine and session lifecycle for the subscription and content stores."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from dayroll.config import get_settings
from dayroll.db.models import Base
from dayroll.logging import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(database_url: str) -> dict[str, Any]:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        # In-memory SQLite only lives as long as its single connection
        if url.database in (None, "", ":memory:"):
            return {"poolclass": StaticPool}
        return {}
    return {"pool_size": 5, "max_overflow": 10, "pool_pre_ping": True}


def configure(database_url: str | None = None) -> AsyncEngine:
    """
    (Re)build the engine and session factory.

    Args:
        database_url: SQLAlchemy async URL; defaults to settings.database_url
    """
    global _engine, _session_factory
    settings = get_settings()
    database_url = database_url or settings.database_url

    _engine = create_async_engine(
        database_url,
        echo=settings.log_level == "DEBUG",
        **_engine_options(database_url),
    )
    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    logger.debug("Database engine configured", backend=make_url(database_url).get_backend_name())
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        return configure()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        configure()
    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for one unit of work: committed on success, rolled back on error."""
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db() -> None:
    """Create missing tables from the models; existing tables are left alone."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine's connection pool."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
