"""Diff Engine - Compare desired resources against cached resources.

Determines which resources must be written to converge the backend.
"""

from collections.abc import Iterable, Sequence
from typing import Any, Protocol, TypeVar

import structlog

logger = structlog.get_logger(__name__)


class Comparable(Protocol):
    def key(self) -> str: ...

    def value(self) -> Any: ...


C = TypeVar("C", bound=Comparable)


def compare_resources(
    existing: Iterable[C],
    desired: Iterable[C],
) -> tuple[list[C], list[C]]:
    """
    Compute the changed and stale sets.

    Args:
        existing: Resources currently cached (keys unique)
        desired: Freshly built resources (keys unique)

    Returns:
        (changed, stale). ``changed`` holds every desired item with no
        existing counterpart or a different canonical value, in desired
        order. ``stale`` holds every existing item whose key is not desired,
        in existing order. Inputs are never mutated; tombstoning stale
        items is up to the caller.
    """
    existing_by_key: dict[str, C] = {item.key(): item for item in existing}
    desired_keys: set[str] = set()
    changed: list[C] = []

    for item in desired:
        key = item.key()
        desired_keys.add(key)
        current = existing_by_key.get(key)
        if current is None or current.value() != item.value():
            changed.append(item)

    stale = [item for key, item in existing_by_key.items() if key not in desired_keys]
    return changed, stale


class DiffEngine:
    """
    Compare desired resource sets against the cache and prepare writes.

    Decision Matrix:
    - Desired key not cached → changed (create)
    - Desired key cached with a different canonical value → changed (update)
    - Desired key cached with an identical value → nothing
    - Cached key not desired → stale (delete)
    """

    def compare(self, existing: Sequence[C], desired: Sequence[C]) -> tuple[list[C], list[C]]:
        changed, stale = compare_resources(existing, desired)
        logger.debug(
            "Computed diff",
            existing=len(existing),
            desired=len(desired),
            changed=len(changed),
            stale=len(stale),
        )
        return changed, stale

    def reconcile_set(self, existing: Sequence[Any], desired: Sequence[Any]) -> list[Any]:
        """
        Return the resources to write: changed items plus tombstoned copies of stale ones.

        Stale items are cloned before tombstoning so the caller's (cached)
        objects are left untouched.
        """
        changed, stale = self.compare(existing, desired)
        return list(changed) + [item.clone().mark_for_delete() for item in stale]
