import os
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

BACKEND = os.getenv("CHECKOUT_BACKEND", "sql").lower()  # 'sql' | 'redis'

if BACKEND == "redis":
    from ._redis import CheckoutSessionStore as _CheckoutSessionStore
else:
    from ._sql import CheckoutSessionStore as _CheckoutSessionStore

from ._sql import create_schema  # noqa: E402


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, db: Optional[AsyncSession] = None,
              r: Optional[redis.Redis] = None,
              ttl_seconds: int = 1800):
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError(
                "CheckoutSessionStore(redis) requires r=redis.Redis"
            )
        return _CheckoutSessionStore(r=r, ttl_seconds=ttl_seconds)
    if db is None:
        raise RuntimeError(
            "CheckoutSessionStore(sql) requires db=AsyncSession"
        )
    return _CheckoutSessionStore(db=db, ttl_seconds=ttl_seconds)


CheckoutSessionStore = _CheckoutSessionStore
__all__ = ["CheckoutSessionStore", "new_store", "create_schema", "BACKEND"]
