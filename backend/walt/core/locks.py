"""Per-key asyncio locks.

Serializes read-modify-write sequences that belong to one account (quota
admission, order creation) inside a single process. Cross-process safety
comes from the database: conditional updates and unique indexes.
"""

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager


class KeyedLock:
    """A registry of asyncio locks keyed by an arbitrary hashable value.

    Entries are dropped once no task holds or waits on them, so the registry
    does not grow with the number of accounts ever seen.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


# Process-wide registry shared by every request handled in this process
account_locks = KeyedLock()
