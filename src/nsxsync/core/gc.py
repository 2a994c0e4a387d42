"""Periodic best-effort garbage collection."""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


async def run_garbage_collector(
    interval: float,
    collect: Callable[[], Awaitable[None]],
    stop_event: asyncio.Event,
) -> int:
    """
    Call ``collect`` every ``interval`` seconds until ``stop_event`` is set.

    A failed sweep is logged and the loop continues; the next cycle
    converges. Each sweep works on a point-in-time view of the stores, so a
    resource created concurrently may look stale to it.

    Returns:
        Number of sweeps run.
    """
    sweeps = 0
    while not stop_event.is_set():
        sweeps += 1
        try:
            await collect()
        except Exception as e:
            logger.error("Garbage collection sweep failed", sweep=sweeps, error=str(e))
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue
    logger.info("Garbage collector stopped", sweeps=sweeps)
    return sweeps
