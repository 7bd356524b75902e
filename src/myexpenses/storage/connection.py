"""SQLAlchemy engine pool and session factory management.

Provides factories for async engines (asyncpg in production, aiosqlite in
tests) and their synchronous counterparts, session factories configured
for the unit of work, and lifecycle helpers for schema creation and
graceful shutdown.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Engine
from sqlalchemy import create_engine as create_sync_engine_
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from myexpenses.core.config import DatabaseConfig

from .models import Base

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton (set via ``init_engine``)
# ---------------------------------------------------------------------------
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _pool_kwargs(
    url: str,
    *,
    pool_size: int,
    max_overflow: int,
    pool_timeout: int,
    pool_recycle: int,
    use_null_pool: bool,
) -> dict[str, Any]:
    if url.startswith("sqlite"):
        database = url.split("://", 1)[-1]
        if ":memory:" in database or database in ("", "/"):
            # In-memory SQLite: one shared connection so the schema survives
            # across sessions.
            return {
                "connect_args": {"check_same_thread": False},
                "poolclass": StaticPool,
            }
        return {"connect_args": {"check_same_thread": False}}
    if use_null_pool:
        return {"poolclass": NullPool}
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": pool_timeout,
        "pool_recycle": pool_recycle,
    }


def _redact(url: str) -> str:
    return url.split("@")[-1]


def create_engine(
    url: str,
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    echo: bool = False,
    use_null_pool: bool = False,
) -> AsyncEngine:
    """Create and return a new SQLAlchemy :class:`AsyncEngine`.

    Args:
        url: Database connection URL with an async driver, e.g.
            ``postgresql+asyncpg://`` or ``sqlite+aiosqlite://``.
        pool_size: Number of persistent connections to keep in the pool.
        max_overflow: Maximum additional connections beyond *pool_size*.
        pool_timeout: Seconds to wait for a connection from the pool before
            raising a timeout error.
        pool_recycle: Seconds after which a connection is recycled to avoid
            stale TCP connections.
        echo: If ``True``, log all emitted SQL statements.
        use_null_pool: If ``True``, disable connection pooling entirely.
            Useful in short-lived processes (tests, one-off scripts).
            Ignored for SQLite, which always gets a suitable pool.

    Returns:
        A configured :class:`AsyncEngine` instance.
    """
    engine = create_async_engine(
        url,
        echo=echo,
        **_pool_kwargs(
            url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            use_null_pool=use_null_pool,
        ),
    )
    logger.info("Created async engine for %s (pool_size=%s)", _redact(url), pool_size)
    return engine


def create_sync_engine(
    url: str,
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    echo: bool = False,
    use_null_pool: bool = False,
) -> Engine:
    """Create a blocking :class:`Engine` for scripts and the sync persistence context.

    Takes the same arguments as :func:`create_engine`; *url* must name a
    blocking driver (``postgresql+psycopg://``, ``sqlite+pysqlite://``).
    """
    engine = create_sync_engine_(
        url,
        echo=echo,
        **_pool_kwargs(
            url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            use_null_pool=use_null_pool,
        ),
    )
    logger.info("Created sync engine for %s (pool_size=%s)", _redact(url), pool_size)
    return engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory for :class:`~myexpenses.storage.unit_of_work.UnitOfWork`.

    Sessions never autoflush, so repository calls only queue changes and
    the explicit commit is the single point where rows are written.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def make_sync_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Blocking counterpart of :func:`make_session_factory`."""
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_engine(config: DatabaseConfig) -> AsyncEngine:
    """Initialise the module-level engine and session factory.

    This is the primary entry-point at application startup. Subsequent calls
    to :func:`get_session_factory` (and therefore
    :func:`~myexpenses.storage.unit_of_work.unit_of_work`) use the engine
    created here.

    Args:
        config: Database settings; ``create_tables`` runs
            ``CREATE TABLE IF NOT EXISTS`` for all ORM models (dev/test).

    Returns:
        The initialised :class:`AsyncEngine`.
    """
    global _engine, _session_factory  # noqa: PLW0603

    _engine = create_engine(
        config.url,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
        pool_recycle=config.pool_recycle,
        echo=config.echo,
        use_null_pool=config.use_null_pool,
    )
    _session_factory = make_session_factory(_engine)

    if config.create_tables:
        await create_all(_engine)

    return _engine


async def create_all(engine: AsyncEngine | None = None) -> None:
    """Create all tables defined in the ORM metadata.

    Args:
        engine: Engine to use. Falls back to the module-level engine.

    Raises:
        RuntimeError: If no engine is available.
    """
    eng = engine or _engine
    if eng is None:
        raise RuntimeError(
            "No engine available. Call init_engine() first or pass an engine."
        )

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created / verified.")


async def dispose() -> None:
    """Dispose of the module-level engine and release all pooled connections."""
    global _engine, _session_factory  # noqa: PLW0603

    if _engine is not None:
        await _engine.dispose()
        logger.info("Engine disposed.")
        _engine = None
        _session_factory = None


def get_engine() -> AsyncEngine:
    """Return the module-level engine.

    Raises:
        RuntimeError: If :func:`init_engine` has not been called.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialised. Call init_engine() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the module-level session factory.

    Raises:
        RuntimeError: If :func:`init_engine` has not been called.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Session factory not initialised. Call init_engine() first."
        )
    return _session_factory
