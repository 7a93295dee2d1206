"""Fixed-window rate limiting with a database store and in-memory fallback.

With a database configured, counters live in the rate_limits table (shared
across instances, survive restarts). Without one, or whenever the database
errors, counters live in process memory.
"""

import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkout_service.db.models.rate_limit import RateLimitBucket

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    admitted: bool
    remaining: int
    reset_at: datetime


class RateLimitStore(Protocol):
    """Backend holding the fixed-window counters."""

    async def check(self, key: str, limit: int, window: timedelta, now: datetime) -> RateLimitResult: ...


@dataclass
class _Bucket:
    count: int
    reset_at: datetime


class MemoryRateLimitStore:
    """Process-local counters.

    check() never awaits, so under asyncio each call runs to completion
    without interleaving. Expired buckets are pruned every PRUNE_INTERVAL calls.
    """

    PRUNE_INTERVAL = 500

    def __init__(self) -> None:
        self._buckets: dict[str, _Bucket] = {}
        self._calls = 0

    async def check(self, key: str, limit: int, window: timedelta, now: datetime) -> RateLimitResult:
        self._calls += 1
        if self._calls % self.PRUNE_INTERVAL == 0:
            self._prune(now)

        bucket = self._buckets.get(key)
        if bucket is None or bucket.reset_at <= now:
            bucket = _Bucket(count=1, reset_at=now + window)
            self._buckets[key] = bucket
            return RateLimitResult(admitted=True, remaining=max(limit - 1, 0), reset_at=bucket.reset_at)

        if bucket.count >= limit:
            return RateLimitResult(admitted=False, remaining=0, reset_at=bucket.reset_at)

        bucket.count += 1
        return RateLimitResult(admitted=True, remaining=max(limit - bucket.count, 0), reset_at=bucket.reset_at)

    def __len__(self) -> int:
        return len(self._buckets)

    def _prune(self, now: datetime) -> None:
        expired = [key for key, bucket in self._buckets.items() if bucket.reset_at <= now]
        for key in expired:
            del self._buckets[key]


class SqlRateLimitStore:
    """Counters in the rate_limits table.

    The expiry check and the write are separate statements, so concurrent
    requests on one key can be admitted slightly past the limit.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def check(self, key: str, limit: int, window: timedelta, now: datetime) -> RateLimitResult:
        async with self._session_factory() as session:
            result = await session.execute(select(RateLimitBucket).where(RateLimitBucket.key == key))
            bucket = result.scalar_one_or_none()

            if bucket is None or _as_utc(bucket.window_expires_at) <= now:
                reset_at = now + window
                await session.execute(self._upsert_window(session, key, reset_at))
                await session.commit()
                return RateLimitResult(admitted=True, remaining=max(limit - 1, 0), reset_at=reset_at)

            current_count = bucket.count
            reset_at = _as_utc(bucket.window_expires_at)
            if current_count >= limit:
                return RateLimitResult(admitted=False, remaining=0, reset_at=reset_at)

            await session.execute(
                update(RateLimitBucket)
                .where(RateLimitBucket.key == key)
                .values(count=RateLimitBucket.count + 1)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return RateLimitResult(admitted=True, remaining=max(limit - (current_count + 1), 0), reset_at=reset_at)

    @staticmethod
    def _upsert_window(session: AsyncSession, key: str, reset_at: datetime):
        """INSERT .. ON CONFLICT DO UPDATE for the session's dialect."""
        dialect = session.get_bind().dialect.name
        insert = sqlite_insert if dialect == "sqlite" else pg_insert
        stmt = insert(RateLimitBucket).values(key=key, count=1, window_expires_at=reset_at)
        return stmt.on_conflict_do_update(
            index_elements=[RateLimitBucket.key],
            set_={"count": 1, "window_expires_at": reset_at},
        )


class RateLimiter:
    """Fixed-window limiter that prefers the durable store and falls back to memory.

    A window starts at the first admitted request for a key and admits up to
    ``limit`` requests; reset_at stays fixed until the window expires.
    """

    def __init__(self, durable: RateLimitStore | None = None, memory: MemoryRateLimitStore | None = None):
        self.durable = durable
        self.memory = memory if memory is not None else MemoryRateLimitStore()

    async def check(self, key: str, limit: int, window_ms: int, now: datetime | None = None) -> RateLimitResult:
        """Count one request against ``key``.

        Args:
            key: Caller identity, e.g. "checkout:203.0.113.7"
            limit: Requests admitted per window
            window_ms: Window length in milliseconds
            now: Current time (for deterministic testing)

        Returns:
            RateLimitResult with admitted flag, remaining budget and window end
        """
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        if window_ms < 1:
            raise ValueError(f"window_ms must be >= 1, got {window_ms}")

        now = now or datetime.now(UTC)
        window = timedelta(milliseconds=window_ms)

        if self.durable is not None:
            try:
                return await self.durable.check(key, limit, window, now)
            except Exception as e:
                logger.warning(
                    "rate_limit_store_fallback",
                    key=key,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return await self.memory.check(key, limit, window, now)


def retry_after_seconds(result: RateLimitResult, now: datetime | None = None) -> int:
    """Seconds until the window resets, rounded up (Retry-After header value)."""
    now = now or datetime.now(UTC)
    return max(math.ceil((result.reset_at - now).total_seconds()), 0)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
