"""Tests for KeyedLock.

Child subnets under the same parent configuration serialize on one key
while picking a VLAN; unrelated keys run concurrently.
"""

import asyncio

import pytest

from src.nsxsync.utils.locking import KeyedLock


@pytest.mark.asyncio
async def test_same_key_serializes():
    """Verify that same key blocks concurrent access."""
    lock = KeyedLock()
    execution_order = []

    async def first():
        async with lock.acquire("vnet-uid"):
            execution_order.append("first_start")
            await asyncio.sleep(0.05)
            execution_order.append("first_end")

    async def second():
        await asyncio.sleep(0.01)
        async with lock.acquire("vnet-uid"):
            execution_order.append("second_start")
            execution_order.append("second_end")

    await asyncio.gather(first(), second())

    assert execution_order == ["first_start", "first_end", "second_start", "second_end"]


@pytest.mark.asyncio
async def test_different_keys_run_concurrently():
    """Verify that different keys do not wait on each other."""
    lock = KeyedLock()
    execution_order = []

    async def slow():
        async with lock.acquire("vnet-a"):
            execution_order.append("slow_start")
            await asyncio.sleep(0.05)
            execution_order.append("slow_end")

    async def fast():
        async with lock.acquire("vnet-b"):
            execution_order.append("fast_start")
            await asyncio.sleep(0.01)
            execution_order.append("fast_end")

    await asyncio.gather(slow(), fast())

    assert execution_order == ["slow_start", "fast_start", "fast_end", "slow_end"]


@pytest.mark.asyncio
async def test_locked_and_call_shortcut():
    """Test locked() while held and the call shortcut."""
    lock = KeyedLock()

    assert lock.locked("never-used") is False

    async with lock(("orgs", "target")):
        assert lock.locked(("orgs", "target")) is True
        assert lock.locked("other") is False

    assert lock.locked(("orgs", "target")) is False


@pytest.mark.asyncio
async def test_released_on_error():
    """Test the lock is released when the block raises."""
    lock = KeyedLock()

    with pytest.raises(ValueError):
        async with lock.acquire("vnet-uid"):
            raise ValueError("boom")

    assert lock.locked("vnet-uid") is False
