"""Tests for the fixed-window rate limiter (memory store and fallback policy)."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from checkout_service.core.rate_limit import (
    MemoryRateLimitStore,
    RateLimiter,
    RateLimitResult,
    retry_after_seconds,
)

pytestmark = pytest.mark.unit

NOW = datetime(2030, 6, 15, 10, 30, 0, tzinfo=UTC)


@pytest.fixture
def limiter():
    return RateLimiter()


# ============================================================================
# Fixed window
# ============================================================================


@pytest.mark.asyncio
async def test_fourth_call_in_window_is_rejected(limiter):
    results = [await limiter.check("checkout:1.2.3.4", 3, 1000, now=NOW) for _ in range(4)]

    assert [r.admitted for r in results] == [True, True, True, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0]
    assert {r.reset_at for r in results} == {NOW + timedelta(seconds=1)}


@pytest.mark.asyncio
async def test_reset_at_is_not_moved_by_later_requests(limiter):
    first = await limiter.check("k", 3, 1000, now=NOW)
    later = await limiter.check("k", 3, 1000, now=NOW + timedelta(milliseconds=900))

    assert later.reset_at == first.reset_at


@pytest.mark.asyncio
async def test_window_expiry_admits_again(limiter):
    for _ in range(4):
        await limiter.check("k", 3, 1000, now=NOW)

    after = NOW + timedelta(milliseconds=1000)
    result = await limiter.check("k", 3, 1000, now=after)

    assert result.admitted is True
    assert result.remaining == 2
    assert result.reset_at == after + timedelta(seconds=1)


@pytest.mark.asyncio
async def test_keys_are_counted_independently(limiter):
    await limiter.check("checkout:1.1.1.1", 1, 1000, now=NOW)
    blocked = await limiter.check("checkout:1.1.1.1", 1, 1000, now=NOW)
    other = await limiter.check("checkout:2.2.2.2", 1, 1000, now=NOW)

    assert blocked.admitted is False
    assert other.admitted is True


@pytest.mark.asyncio
async def test_rejects_invalid_limits(limiter):
    with pytest.raises(ValueError):
        await limiter.check("k", 0, 1000)
    with pytest.raises(ValueError):
        await limiter.check("k", 1, 0)


@pytest.mark.asyncio
async def test_memory_store_prunes_expired_buckets():
    store = MemoryRateLimitStore()
    store.PRUNE_INTERVAL = 3
    limiter = RateLimiter(memory=store)

    await limiter.check("a", 5, 1000, now=NOW)
    await limiter.check("b", 5, 1000, now=NOW)
    assert len(store) == 2

    # Third call triggers pruning: a and b have expired by then
    await limiter.check("c", 5, 1000, now=NOW + timedelta(seconds=5))

    assert len(store) == 1


# ============================================================================
# Durable store and fallback
# ============================================================================


@pytest.mark.asyncio
async def test_durable_store_is_preferred():
    durable = AsyncMock()
    durable.check.return_value = RateLimitResult(admitted=True, remaining=7, reset_at=NOW)
    limiter = RateLimiter(durable=durable)

    result = await limiter.check("k", 8, 1000, now=NOW)

    assert result.remaining == 7
    durable.check.assert_awaited_once_with("k", 8, timedelta(milliseconds=1000), NOW)
    assert len(limiter.memory) == 0


@pytest.mark.asyncio
async def test_durable_failure_falls_back_to_memory():
    durable = AsyncMock()
    durable.check.side_effect = ConnectionError("database unreachable")
    limiter = RateLimiter(durable=durable)

    results = [await limiter.check("k", 2, 1000, now=NOW) for _ in range(3)]

    assert [r.admitted for r in results] == [True, True, False]
    assert len(limiter.memory) == 1


# ============================================================================
# Retry-After
# ============================================================================


def test_retry_after_rounds_up():
    result = RateLimitResult(admitted=False, remaining=0, reset_at=NOW + timedelta(milliseconds=1500))

    assert retry_after_seconds(result, now=NOW) == 2


def test_retry_after_never_negative():
    result = RateLimitResult(admitted=False, remaining=0, reset_at=NOW - timedelta(seconds=3))

    assert retry_after_seconds(result, now=NOW) == 0
