"""
Async SQLAlchemy engine, sessions and the conflict-aware INSERT helper.

One engine per process, shared by request handlers (get_db) and the
notification worker (get_session_factory). Sessions use
expire_on_commit=False so committed rows stay readable in async code.
"""
import logging
from typing import AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


class Base(DeclarativeBase):
    pass


def _engine_options(database_url: str) -> dict:
    from astra.config import get_settings
    settings = get_settings()
    options = {"echo": settings.app_env == "development", "pool_pre_ping": True}
    # SQLite (local runs) uses a single-connection pool without sizing knobs
    if make_url(database_url).get_backend_name() != "sqlite":
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
    return options


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        from astra.config import get_settings
        url = get_settings().database_url
        _engine = create_async_engine(url, **_engine_options(url))
        logger.info("Database engine created (%s)", make_url(url).get_backend_name())
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Shared session factory, injected into the notification worker."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), class_=AsyncSession, expire_on_commit=False)
    return _session_factory


async def dispose_engine() -> None:
    """Close pooled connections at shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an async database session."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.debug("Database session error, rolling back: %s", str(e))
            await session.rollback()
            raise


def dialect_insert(db: AsyncSession, model):
    """
    INSERT construct with on_conflict_do_nothing()/returning() for the
    session's dialect. Natural-key uniqueness is enforced by the table's
    unique constraint; callers treat "no row returned" as "already exists".
    """
    if db.get_bind().dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert(model)
