"""
Database session management for the t3monitor importer.

Provides the async SQLAlchemy session factory. The importer opens one
session (and one transaction) per client, so the pool is sized for
importer.max_concurrency plus the orchestrator's own session.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from t3monitor.config import settings
from t3monitor.logging_config import get_logger

logger = get_logger(__name__)

# Created lazily in init_db()
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None

def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory with the importer's session defaults."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

async def init_db(database_url: str | None = None) -> None:
    """Initialize database connection pool."""
    global _engine, _async_session_factory  # noqa: PLW0603
    logger.info("Initializing database connection")

    url = database_url or settings.database_url
    kwargs = {}
    if not url.startswith("sqlite"):
        kwargs = {
            "pool_pre_ping": True,
            "pool_size": settings.importer.max_concurrency + 2,
            "max_overflow": 5,
        }
    _engine = create_async_engine(url, echo=settings.debug, **kwargs)
    _async_session_factory = make_session_factory(_engine)

    async with _engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("Database connection established")

async def close_db() -> None:
    """Close database connection pool."""
    global _engine, _async_session_factory  # noqa: PLW0603
    if _engine is not None:
        logger.info("Closing database connection pool")
        await _engine.dispose()
        _engine = None
        _async_session_factory = None

def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory. Raises if not initialized."""
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_factory

