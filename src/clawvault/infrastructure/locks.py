"""Per-escrow write serialization.

Every mutation of one escrow runs under that escrow's asyncio.Lock, so two
transitions on the same id never evaluate their preconditions concurrently.
Locks are reference counted and dropped when no task holds or awaits them.
The conditional status update in EscrowRepository.compare_and_set remains
the durable guard if a second process writes to the same database.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class KeyedLock:
    """A registry of asyncio locks keyed by escrow id."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]
