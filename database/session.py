"""
Async engine and session management for the SQL job mirror.

Driver mapping:
  postgresql://  → postgresql+asyncpg://     (requires asyncpg)
  mysql://       → mysql+aiomysql://         (requires aiomysql)
  sqlite://      → sqlite+aiosqlite://       (requires aiosqlite)

Engines are cached per resolved URL, so two SqlJobStore instances pointed at
different databases never share a pool. A URL of None means
`settings.database.url`.

Usage:
    await init_db(url)                 # create the jobs table if missing
    async with get_session(url) as db:
        row = await db.get(JobRow, job_id)
    await close_db(url)                # or close_db() to dispose every engine
"""
from __future__ import annotations

import structlog
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker,
)

from config.settings import get_settings
from database.models import Base

logger = structlog.get_logger()

_ASYNC_DRIVERS = (
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
    ("mysql+pymysql://", "mysql+aiomysql://"),
    ("mysql://", "mysql+aiomysql://"),
    ("sqlite://", "sqlite+aiosqlite://"),
)

_engines: dict[str, AsyncEngine] = {}
_session_factories: dict[str, async_sessionmaker[AsyncSession]] = {}


def _to_async_url(db_url: str) -> str:
    """Swap a sync driver prefix for its async equivalent; unknown URLs pass through."""
    for sync_prefix, async_prefix in _ASYNC_DRIVERS:
        if db_url.startswith(sync_prefix):
            return async_prefix + db_url[len(sync_prefix):]
    return db_url


def _resolve(db_url: Optional[str]) -> str:
    return _to_async_url(db_url or get_settings().database.url)


def _engine_kwargs(db_url: str) -> dict:
    kwargs = {"echo": get_settings().debug}
    if db_url.startswith("sqlite"):
        return kwargs
    # The mirror writes one row per job transition from a single worker.
    return {
        **kwargs,
        "pool_size": 2,
        "max_overflow": 3,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


def get_engine(db_url: Optional[str] = None) -> AsyncEngine:
    """Return the engine for `db_url`, creating it on first use."""
    url = _resolve(db_url)
    engine = _engines.get(url)
    if engine is None:
        engine = create_async_engine(url, **_engine_kwargs(url))
        _engines[url] = engine
        logger.info("database_engine_created",
                    dialect=engine.dialect.name,
                    url=str(engine.url).split("@")[-1])
    return engine


@asynccontextmanager
async def get_session(db_url: Optional[str] = None) -> AsyncGenerator[AsyncSession, None]:
    """Transactional scope: commit on success, roll back and re-raise on error."""
    url = _resolve(db_url)
    factory = _session_factories.get(url)
    if factory is None:
        factory = async_sessionmaker(get_engine(url), class_=AsyncSession, expire_on_commit=False)
        _session_factories[url] = factory

    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(db_url: Optional[str] = None) -> None:
    """Create the mirror tables that do not exist yet."""
    engine = get_engine(db_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_initialized",
                dialect=engine.dialect.name,
                tables=list(Base.metadata.tables.keys()))


async def close_db(db_url: Optional[str] = None) -> None:
    """Dispose one engine, or every engine when no URL is given."""
    urls = list(_engines) if db_url is None else [_resolve(db_url)]
    for url in urls:
        engine = _engines.pop(url, None)
        _session_factories.pop(url, None)
        if engine is not None:
            await engine.dispose()
            logger.info("database_closed", dialect=engine.dialect.name)
