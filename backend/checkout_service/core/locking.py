"""In-process keyed locking: serialize async operations that share a key.

This module provides:
- FIFO mutual exclusion per key, no blocking across keys
- An async context manager and a callable-based helper
- Bookkeeping that only holds entries for keys currently in use

Locks are not reentrant: awaiting the same key again from inside a held
section deadlocks.
"""

import asyncio
import inspect
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

T = TypeVar("T")


class KeyedMutex:
    """Chains waiters per key on the previous holder's completion future."""

    def __init__(self) -> None:
        self._tails: dict[str, asyncio.Future[None]] = {}

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncGenerator[None, None]:
        """Hold the lock for ``key`` for the duration of the block.

        Example:
            async with mutex.lock("webhook-ledger"):
                ...
        """
        loop = asyncio.get_running_loop()
        previous = self._tails.get(key)
        current: asyncio.Future[None] = loop.create_future()
        self._tails[key] = current

        try:
            if previous is not None:
                # shield: a cancelled waiter must not cancel its predecessor's slot
                await asyncio.shield(previous)
            yield
        finally:
            self._signal(key, previous, current)

    async def with_lock(self, key: str, operation: Callable[[], Awaitable[T] | T]) -> T:
        """Run ``operation`` once every earlier operation on ``key`` has finished.

        The operation's result is returned and its exception propagates; either
        way the next queued operation on the key is released.
        """
        async with self.lock(key):
            result = operation()
            if inspect.isawaitable(result):
                result = await result
            return result

    def active_keys(self) -> set[str]:
        """Keys with at least one holder or waiter."""
        return set(self._tails)

    def _signal(
        self,
        key: str,
        previous: asyncio.Future[None] | None,
        current: asyncio.Future[None],
    ) -> None:
        if previous is not None and not previous.done():
            # Cancelled while waiting: hand over only after the predecessor finishes
            previous.add_done_callback(lambda _: self._signal(key, None, current))
            return

        if not current.done():
            current.set_result(None)
        if self._tails.get(key) is current:
            del self._tails[key]
