from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .infra.sql import make_async_engine
from .model.checkoutsession import (
    CheckoutSessionStore, new_store, BACKEND as CHECKOUT_BACKEND
)


engine, SessionAsync, _, gated = make_async_engine(config.DATABASE_URL)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with SessionAsync() as session:
        yield session


async def checkout_sessions(
    request: Request,
) -> AsyncIterator[CheckoutSessionStore]:
    if CHECKOUT_BACKEND == "redis":
        yield new_store(r=request.app.state.redis,
                        ttl_seconds=config.CHECKOUT_TTL_SECONDS)
    else:
        async with SessionAsync() as session:
            yield new_store(db=session,
                            ttl_seconds=config.CHECKOUT_TTL_SECONDS)
