"""Keyed asyncio locks for per-wallet, per-question and per-answer serialization."""

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Dict


class KeyedLocks:
    """Lazily created `asyncio.Lock` per key.

    `hold()` acquires several keys in sorted order so two callers locking
    overlapping sets can never deadlock.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self.get(key))
            yield
