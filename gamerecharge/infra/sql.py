import os
import json
import asyncio
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, NamedTuple

from sqlalchemy import MetaData, event
from sqlalchemy.ext.asyncio import (
    AsyncConnection, AsyncEngine, AsyncSession, async_sessionmaker,
    create_async_engine,
)

_ASYNC_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)

# applied to every new sqlite connection
_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA busy_timeout=5000;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA foreign_keys=ON;",
)


class Database(NamedTuple):
    engine: AsyncEngine
    SessionAsync: async_sessionmaker
    gate: asyncio.Semaphore
    gated: Callable[[], Any]


def async_url(url: str) -> str:
    for plain, driver in _ASYNC_DRIVERS:
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


def _json_dumps(obj) -> str:
    # zh names stay readable in the JSON columns so search can match them
    return json.dumps(obj, ensure_ascii=False)


def _pool_options(url: str) -> Dict[str, int]:
    if not url.startswith("postgresql+asyncpg://"):
        return {}
    return {
        "pool_size": int(os.getenv("DB_POOL_SIZE", "10")),
        "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "10")),
        "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", "30")),
    }


def _install_sqlite_pragmas(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _):
        cur = dbapi_connection.cursor()
        for pragma in _SQLITE_PRAGMAS:
            cur.execute(pragma)
        cur.close()


@asynccontextmanager
async def _gated(sem: asyncio.Semaphore):
    await sem.acquire()
    try:
        yield
    finally:
        sem.release()


def make_async_engine(database_url: str) -> Database:
    """
    Engine, session factory and write gate for one database URL.

    The gate bounds concurrent DB writes to the pool size (or
    ``DB_GATE_LIMIT``) so bursts queue in the app instead of timing out on
    the pool::

        async with gated():
            db.add(order)
            await db.commit()
    """
    url = async_url(database_url)
    pool = _pool_options(url)
    engine = create_async_engine(url, future=True, pool_pre_ping=True,
                                 json_serializer=_json_dumps, **pool)
    if url.startswith("sqlite+aiosqlite://"):
        _install_sqlite_pragmas(engine)

    SessionAsync = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    limit = int(os.getenv("DB_GATE_LIMIT", pool.get("pool_size", 10)))
    gate = asyncio.Semaphore(max(1, limit))

    def gated():
        return _gated(gate)

    return Database(engine, SessionAsync, gate, gated)


async def create_tables(
    engine: AsyncEngine,
    metadata: MetaData,
    *extra: Callable[[AsyncConnection], Awaitable[None]],
) -> None:
    """ORM tables first, then any raw-SQL schema hooks, in one transaction."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
        for hook in extra:
            await hook(conn)
