"""
Keyed asyncio locks.

One lock per key (a domain id, usually), created on demand and dropped
again once nobody holds or waits for it. Used to keep compute-and-persist
sections to at most one in-flight computation per domain.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable

logger = logging.getLogger(__name__)


class KeyedLock:
    """Registry of per-key asyncio locks with waiter bookkeeping."""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    def is_busy(self, key: Hashable) -> bool:
        """True while any coroutine holds or waits for the key."""
        return self._users.get(key, 0) > 0

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        if lock.locked():
            logger.debug(f"Waiting for lock on {key}")
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
