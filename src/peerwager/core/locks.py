"""Keyed asyncio locks.

Transitions on the same review, and balance changes on the same user, must
not interleave. Locks are always taken in a fixed order (reviews before
users, each group sorted) so two flows touching overlapping users cannot
deadlock.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from contextlib import AsyncExitStack, asynccontextmanager


class KeyedLocks:
    """One ``asyncio.Lock`` per key, created on demand.

    A key's lock lives only while some task holds or waits on it, so the map
    stays as small as the set of records currently in flight.
    """

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def _hold_one(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]

    @asynccontextmanager
    async def hold(self, keys: Iterable[str]) -> AsyncIterator[None]:
        """Acquire the locks for ``keys`` in sorted order, release on exit."""
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self._hold_one(key))
            yield
