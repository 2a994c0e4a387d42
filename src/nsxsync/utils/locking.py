"""Per-key asyncio locks for reconcile workers."""

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator, Hashable
from contextlib import AbstractAsyncContextManager, asynccontextmanager


class KeyedLock:
    """
    Independent asyncio locks per key.

    Reconciles of unrelated resources proceed concurrently, while two
    reconciles touching the same key (e.g. the same parent configuration
    when picking a VLAN) serialize on one lock.

    Example:
        Two child subnets under different virtual networks allocate VLANs in
        parallel. Two child subnets under the same virtual network take turns,
        so they never pick the same VLAN.

    Locks are created on first use and never removed, which keeps lookup
    free of check-then-create races. Key spaces are bounded (parent ids).
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def acquire(self, key: Hashable) -> AsyncIterator[None]:
        """
        Hold the lock of ``key`` for the duration of the block.

        Example:
            async with vlan_lock.acquire(parent_config.id):
                vlan = next_vlan(used)

        Args:
            key: Parent config id, target subnet path or any other hashable
        """
        async with self._locks[key]:
            yield

    def locked(self, key: Hashable) -> bool:
        """Return True if the lock for ``key`` is currently held."""
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    def __call__(self, key: Hashable) -> AbstractAsyncContextManager[None]:
        """``async with keyed_lock(key)`` is ``async with keyed_lock.acquire(key)``."""
        return self.acquire(key)
