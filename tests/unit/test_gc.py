"""Unit tests for the periodic garbage collector."""

import asyncio

import pytest

from src.nsxsync.core.gc import run_garbage_collector


@pytest.mark.asyncio
async def test_stops_when_event_set():
    """Test the loop exits once the stop event is set."""
    stop = asyncio.Event()
    calls = []

    async def collect():
        calls.append(1)
        if len(calls) == 2:
            stop.set()

    sweeps = await run_garbage_collector(0.01, collect, stop)

    assert sweeps == 2
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_failed_sweep_does_not_stop_loop():
    """Test an exception in one sweep is logged and the next sweep runs."""
    stop = asyncio.Event()
    calls = []

    async def collect():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("backend down")
        stop.set()

    sweeps = await run_garbage_collector(0.01, collect, stop)

    assert sweeps == 2


@pytest.mark.asyncio
async def test_no_sweep_when_already_stopped():
    """Test a pre-set event skips collection entirely."""
    stop = asyncio.Event()
    stop.set()

    async def collect():
        raise AssertionError("should not run")

    assert await run_garbage_collector(0.01, collect, stop) == 0
