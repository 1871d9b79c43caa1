# tests/test_quota.py
import asyncio

import pytest

from social_publisher.errors import QuotaExceeded, RateLimited
from social_publisher.services.quota import QuotaService, RateLimiter, parse_plan_limits, plan_limit


def test_parse_plan_limits_skips_junk():
    assert parse_plan_limits("free:3, pro:50,broken") == {"free": 3, "pro": 50}


def test_unknown_plan_falls_back_to_default():
    assert plan_limit("pro") == 100
    assert plan_limit("enterprise-trial") == plan_limit(None)


async def test_reserve_until_limit(session):
    quota = QuotaService(session)
    await quota.ensure_counter("acct")
    for _ in range(2):
        await quota.reserve("acct", 2)
    await session.commit()
    with pytest.raises(QuotaExceeded) as exc:
        await quota.reserve("acct", 2)
    assert exc.value.limit == 2
    await session.rollback()

    await quota.release("acct")
    await session.commit()
    assert await quota.pending_count("acct") == 1


async def test_release_never_goes_negative(session):
    quota = QuotaService(session)
    await quota.ensure_counter("acct")
    await quota.release("acct")
    await session.commit()
    assert await quota.pending_count("acct") == 0


async def test_concurrent_reservations_never_exceed_limit(session_factory):
    limit, attempts = 3, 10

    async def attempt() -> bool:
        async with session_factory() as s:
            quota = QuotaService(s)
            await quota.ensure_counter("busy")
            try:
                await quota.reserve("busy", limit)
            except QuotaExceeded:
                await s.rollback()
                return False
            await s.commit()
            return True

    results = await asyncio.gather(*(attempt() for _ in range(attempts)))
    assert sum(results) == limit

    async with session_factory() as s:
        assert await QuotaService(s).pending_count("busy") == limit


async def test_rate_limiter_counts_per_credential(redis):
    limiter = RateLimiter(redis, limit=2, window_seconds=60)
    first = await limiter.hit("token-a", now=1000.0)
    second = await limiter.hit("token-a", now=1001.0)
    assert (first.remaining, second.remaining) == (1, 0)

    with pytest.raises(RateLimited) as exc:
        await limiter.hit("token-a", now=1002.0)
    assert exc.value.limit == 2
    assert exc.value.retry_after == 18

    other = await limiter.hit("token-b", now=1002.0)
    assert other.remaining == 1


async def test_rate_limiter_window_resets(redis):
    limiter = RateLimiter(redis, limit=1, window_seconds=60)
    await limiter.hit("token", now=59.0)
    with pytest.raises(RateLimited):
        await limiter.hit("token", now=59.5)
    status = await limiter.hit("token", now=60.0)
    assert status.remaining == 0
    assert status.reset_after == 60
