import asyncio

from gamerecharge.infra import timings
from gamerecharge.infra.sql import async_url


def test_async_url():
    assert async_url("sqlite:///./x.db") == "sqlite+aiosqlite:///./x.db"
    assert async_url("postgres://u@h/db") == "postgresql+asyncpg://u@h/db"
    assert async_url("postgresql://u@h/db") == "postgresql+asyncpg://u@h/db"
    assert async_url("postgresql+asyncpg://u@h/db") == \
        "postgresql+asyncpg://u@h/db"


def test_timeit_records_samples():
    async def work():
        for _ in range(2):
            async with timings.timeit("unit.sample"):
                await asyncio.sleep(0)

    timings.reset()
    asyncio.run(work())
    stats = timings.snapshot()["unit.sample"]
    assert stats["n"] == 2
    assert stats["max"] >= stats["mean"] >= 0.0


def test_record_timing_keeps_newest_half():
    timings.reset()
    for i in range(timings._MAX_SAMPLES + 1):
        timings.record_timing("unit.bounded", float(i))
    stats = timings.snapshot()["unit.bounded"]
    assert stats["n"] == timings._MAX_SAMPLES // 2 + 1
    assert stats["max"] == float(timings._MAX_SAMPLES)
    timings.reset()
    assert timings.snapshot() == {}
