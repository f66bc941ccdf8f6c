"""Per-key asyncio locks.

Used to serialize work that must not interleave for the same key, such as
replacing one patient's goal tree or reading one assessment's recommendation.
Different keys never block each other.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class KeyedLock:
    """Registry of ``asyncio.Lock`` objects created on demand per key.

    Locks are dropped once nobody holds or waits on them, so the registry
    does not grow with the number of keys ever seen.
    """

    def __init__(self, name: str = "keyed") -> None:
        self.name = name
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        if lock.locked():
            logger.debug("Waiting for %s lock", self.name, extra={"key": key})
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def locked(self, key: str) -> bool:
        """Whether the lock for ``key`` is currently held."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
