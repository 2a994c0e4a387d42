"""Allocation & Exhaustion Tracker.

Architecture Overview:
---------------------
Three independent helpers used while creating a child subnet:

1. VLAN allocation - smallest VLAN in [1, 4094] not used by any binding
   already attached to one of the candidate parent segments.
2. Exhausted IP block set - advisory bookkeeping of blocks NSX reported as
   full (error 520012). Membership never blocks an allocation, it only feeds
   logging and operator visibility.
3. Realized-state polling - NSX computes the CIDR and gateway of a pool
   subnet asynchronously. The poller retries a fixed number of times with a
   fixed delay and returns ``None`` ("not yet realized") when the budget is
   spent, which is not an error.

The poller awaits between attempts and holds no store lock while waiting.
"""

import asyncio
import re
import threading
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

import structlog

from ..constants import (
    DEFAULT_REALIZE_INTERVAL,
    DEFAULT_REALIZE_MAX_RETRIES,
    ERROR_CODE_IPBLOCK_EXHAUSTED,
    EXHAUSTED_BLOCK_PATH_PATTERN,
    REALIZED_ATTR_CIDR,
    REALIZED_ATTR_GATEWAY,
    REALIZED_ENTITY_IP_BLOCK_SUBNET,
    VLAN_MAX,
    VLAN_MIN,
)
from ..models.results import RealizedSubnet
from ..utils.exceptions import AllocationExhaustedError, NSXAPIError

logger = structlog.get_logger(__name__)

_BLOCK_PATH_RE = re.compile(EXHAUSTED_BLOCK_PATH_PATTERN)


# =============================================================================
# VLAN allocation
# =============================================================================


def used_vlans(bindings: Iterable[Any]) -> set[int]:
    """VLAN tags of ``bindings`` (bindings without a tag are ignored)."""
    return {b.vlan_traffic_tag for b in bindings if b.vlan_traffic_tag is not None}


def next_vlan(used: Iterable[int], resource: str = "", parents: Iterable[str] = ()) -> int:
    """
    Return the smallest VLAN in [1, 4094] not in ``used``.

    Args:
        used: VLANs already taken on the candidate parents
        resource: Identity of the requester (for the error message)
        parents: Candidate parent paths (for the error message)

    Raises:
        AllocationExhaustedError: If every VLAN is taken.
    """
    taken = set(used)
    for vlan in range(VLAN_MIN, VLAN_MAX + 1):
        if vlan not in taken:
            return vlan
    raise AllocationExhaustedError(resource, list(parents))


# =============================================================================
# Exhausted IP blocks
# =============================================================================


class ExhaustedIPBlockSet:
    """
    Thread-safe set of IP block paths believed to be full.

    ``add`` and ``discard`` are idempotent and report whether they changed
    the set.
    """

    def __init__(self) -> None:
        self._paths: set[str] = set()
        self._lock = threading.Lock()

    def add(self, path: str) -> bool:
        with self._lock:
            if path in self._paths:
                return False
            self._paths.add(path)
        logger.info("Marked IP block as exhausted", ip_block=path)
        return True

    def discard(self, path: str) -> bool:
        with self._lock:
            if path not in self._paths:
                return False
            self._paths.remove(path)
        logger.info("IP subnet released from an exhausted IP block, marked as unexhausted", ip_block=path)
        return True

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._paths

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)

    def snapshot(self) -> set[str]:
        with self._lock:
            return set(self._paths)


def parse_exhausted_block_path(error: NSXAPIError) -> str | None:
    """
    Return the IP block path of an exhaustion error, or None.

    NSX reports exhaustion of a nested pool subnet create as a related error
    with code 520012 whose message contains ``path=[<block path>]``. The
    top-level code and message are checked too.
    """
    candidates: list[tuple[Any, Any]] = [
        (item.get("error_code"), item.get("error_message")) for item in error.related_errors
    ]
    candidates.append((error.error_code, str(error)))
    for code, message in candidates:
        if code != ERROR_CODE_IPBLOCK_EXHAUSTED or not message:
            continue
        match = _BLOCK_PATH_RE.search(message)
        if match:
            return match.group(1)
    return None


# =============================================================================
# Realized state polling
# =============================================================================


def extract_realized_subnet(entities: Iterable[Any]) -> RealizedSubnet | None:
    """Pick CIDR and gateway from realized entities; both must be present."""
    cidr = gateway = None
    for entity in entities:
        if entity.entity_type != REALIZED_ENTITY_IP_BLOCK_SUBNET:
            continue
        cidr = entity.attribute(REALIZED_ATTR_CIDR) or cidr
        gateway = entity.attribute(REALIZED_ATTR_GATEWAY) or gateway
    if cidr and gateway:
        return RealizedSubnet(cidr=cidr, gateway_ip=gateway)
    return None


class RealizedStatePoller:
    """
    Poll the realized state of a pool subnet.

    One initial attempt plus ``max_retries`` retries, ``interval`` seconds
    apart. Errors raised by the client propagate immediately.

    Args:
        client: Object exposing ``async list_realized_entities(intent_path)``
        max_retries: Retries after the first attempt
        interval: Seconds between attempts
        sleep: Awaitable sleep (injectable for tests)
    """

    def __init__(
        self,
        client: Any,
        max_retries: int = DEFAULT_REALIZE_MAX_RETRIES,
        interval: float = DEFAULT_REALIZE_INTERVAL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.max_retries = max_retries
        self.interval = interval
        self._sleep = sleep

    async def poll(self, intent_path: str, owner: str = "") -> RealizedSubnet | None:
        """Return the realized subnet, or None when still not realized after all retries."""
        for attempt in range(self.max_retries + 1):
            entities = await self.client.list_realized_entities(intent_path)
            realized = extract_realized_subnet(entities)
            if realized is not None:
                logger.debug("Realized pool subnet", owner=owner, intent_path=intent_path, cidr=realized.cidr)
                return realized
            if attempt < self.max_retries:
                logger.debug(
                    "Pool subnet not realized yet, retrying",
                    owner=owner,
                    intent_path=intent_path,
                    retry=self.max_retries - attempt,
                )
                await self._sleep(self.interval)

        logger.info("Pool subnet not realized after retries", owner=owner, intent_path=intent_path)
        return None
