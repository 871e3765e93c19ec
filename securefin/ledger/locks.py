"""
Per-account serialization.

Each identity gets its own asyncio.Lock. An operation touching several
accounts takes all their locks in sorted order, so two operations can
never wait on each other in a cycle, and operations on disjoint
accounts never block each other.
"""

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator


class AccountLocks:
    """Registry of one lock per account identity."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, identity: str) -> asyncio.Lock:
        lock = self._locks.get(identity)
        if lock is None:
            lock = self._locks[identity] = asyncio.Lock()
        return lock

    def is_locked(self, identity: str) -> bool:
        lock = self._locks.get(identity)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, *identities: str) -> AsyncIterator[None]:
        """Hold the locks of every given identity (duplicates allowed)."""
        async with AsyncExitStack() as stack:
            for identity in sorted(set(identities)):
                await stack.enter_async_context(self.lock_for(identity))
            yield
