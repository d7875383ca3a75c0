"""
Concurrency utilities - semaphores and keyed locks for resource-limited operations.
"""

import asyncio
from typing import Dict

# Limits concurrent PDF conversions to avoid memory spikes
conversion_semaphore = asyncio.Semaphore(3)


class KeyedLocks:
    """One asyncio.Lock per key, released from the map once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __call__(self, key: str) -> "_KeyedLockContext":
        return _KeyedLockContext(self, key)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class _KeyedLockContext:
    def __init__(self, owner: KeyedLocks, key: str):
        self._owner = owner
        self._key = key

    async def __aenter__(self):
        owner = self._owner
        lock = owner._locks.setdefault(self._key, asyncio.Lock())
        owner._users[self._key] = owner._users.get(self._key, 0) + 1
        try:
            await lock.acquire()
        except BaseException:
            self._release_user()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._owner._locks[self._key].release()
        self._release_user()
        return False

    def _release_user(self):
        owner = self._owner
        owner._users[self._key] -= 1
        if owner._users[self._key] == 0:
            del owner._users[self._key]
            owner._locks.pop(self._key, None)
