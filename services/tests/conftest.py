"""
Top-level test configuration for t3monitor.

Store-backed tests run against a throwaway SQLite file through aiosqlite.
"""

import os
from collections.abc import AsyncGenerator, Callable

# Ensure test-friendly defaults
os.environ.setdefault("T3MONITOR_JSON_LOGS", "false")
os.environ.setdefault("T3MONITOR_LOG_LEVEL", "DEBUG")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from t3monitor.db.models import Base, Client  # noqa: E402
from t3monitor.db.session import make_session_factory  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine]:
    """SQLite engine with working SAVEPOINT support and the schema created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 't3monitor.db'}")

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN.
    @event.listens_for(engine.sync_engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
def add_client(session_factory) -> Callable:
    """Insert a client row and return its id."""

    async def _add(domain: str = "example.com", **fields) -> int:
        async with session_factory() as session, session.begin():
            client = Client(
                title=fields.pop("title", domain),
                domain=domain,
                secret=fields.pop("secret", "s3cret"),
                **fields,
            )
            session.add(client)
            await session.flush()
            return client.id

    return _add
