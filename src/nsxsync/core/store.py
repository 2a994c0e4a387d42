"""Resource Store - in-memory cache of NSX resources with secondary indexes.

Architecture Overview:
---------------------
One store per resource kind. A store owns storage and indexing only, no
business logic:

- Primary key: ``resource.key()`` (the NSX id). At most one entry per key.
- Secondary indexes: named functions returning zero or more index values
  for a resource. A resource yielding no value is simply absent from that
  index.
- ``apply`` dispatches per item: tombstoned items are removed, everything
  else is upserted.

Lifecycle:
---------
Populated once at startup by a full listing scoped by ``init_tags``, then
kept current exclusively through ``apply`` after successful backend writes.

Concurrency:
-----------
All methods take a re-entrant lock, so the store tolerates unordered
concurrent use from independent reconcile workers (asyncio tasks or
threads). Reads return deep copies: callers may tombstone or edit what
they get back without touching the cache.
"""

import copy
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable
from typing import Any, Generic, TypeVar

import structlog

from ..models.resources import Tag
from ..utils.exceptions import StoreTypeError

logger = structlog.get_logger(__name__)

T = TypeVar("T")

IndexFunc = Callable[[Any], list[str]]


def tag_index(scope: str) -> IndexFunc:
    """Index function returning the values of all tags with ``scope``."""

    def _index(obj: Any) -> list[str]:
        return obj.tag_values(scope)

    return _index


def attribute_index(name: str) -> IndexFunc:
    """Index function returning a single non-empty attribute value."""

    def _index(obj: Any) -> list[str]:
        value = getattr(obj, name, None)
        return [value] if value else []

    return _index


class ResourceStore(Generic[T]):
    """
    Thread-safe keyed cache with pluggable secondary indexes.

    Args:
        kind: The only type this store accepts. Anything else raises
            StoreTypeError (a programming error, never retried).
        indexers: Mapping of index name to index function.
        name: Store name used in logs.
    """

    init_tags: tuple[Tag, ...] = ()
    cluster_scoped: bool = True

    def __init__(
        self,
        kind: type[T],
        indexers: dict[str, IndexFunc] | None = None,
        name: str | None = None,
    ) -> None:
        self.kind = kind
        self.name = name or f"{kind.__name__}Store"
        self._indexers: dict[str, IndexFunc] = dict(indexers or {})
        self._items: dict[str, T] = {}
        self._indices: dict[str, dict[str, set[str]]] = {
            index_name: defaultdict(set) for index_name in self._indexers
        }
        self._lock = threading.RLock()

    def _check_kind(self, item: Any) -> None:
        if not isinstance(item, self.kind):
            raise StoreTypeError(self.name, self.kind.__name__, item)

    @staticmethod
    def _key(item: Any) -> str:
        return item.key()

    def _unindex(self, key: str, item: T) -> None:
        for index_name, func in self._indexers.items():
            bucket = self._indices[index_name]
            for value in func(item):
                keys = bucket.get(value)
                if keys is None:
                    continue
                keys.discard(key)
                if not keys:
                    del bucket[value]

    def _index(self, key: str, item: T) -> None:
        for index_name, func in self._indexers.items():
            for value in func(item):
                self._indices[index_name][value].add(key)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, item: T) -> None:
        """Insert or replace ``item`` under its key."""
        self._check_kind(item)
        key = self._key(item)
        stored = copy.deepcopy(item)
        with self._lock:
            old = self._items.get(key)
            if old is not None:
                self._unindex(key, old)
            self._items[key] = stored
            self._index(key, stored)

    def delete(self, item: T) -> None:
        """Remove the entry with ``item``'s key. Missing keys are ignored."""
        self._check_kind(item)
        key = self._key(item)
        with self._lock:
            old = self._items.pop(key, None)
            if old is not None:
                self._unindex(key, old)

    def apply(self, items: T | Iterable[T] | None) -> None:
        """
        Apply one item or a list of items.

        Items with ``marked_for_delete`` set are removed, all others upserted.
        ``None`` entries are skipped.
        """
        if items is None:
            return
        batch = list(items) if isinstance(items, list | tuple | set) else [items]
        for item in batch:
            if item is None:
                continue
            if getattr(item, "marked_for_delete", False):
                self.delete(item)
                logger.debug("Deleted from store", store=self.name, key=self._key(item))
            else:
                self.add(item)
                logger.debug("Added to store", store=self.name, key=self._key(item))

    def replace(self, items: Iterable[T]) -> None:
        """Drop everything and load ``items`` (initial listing)."""
        batch = list(items)
        for item in batch:
            self._check_kind(item)
        with self._lock:
            self._items.clear()
            for bucket in self._indices.values():
                bucket.clear()
            for item in batch:
                key = self._key(item)
                stored = copy.deepcopy(item)
                self._items[key] = stored
                self._index(key, stored)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_key(self, key: str) -> T | None:
        with self._lock:
            item = self._items.get(key)
            return copy.deepcopy(item) if item is not None else None

    def get_by_index(self, index_name: str, value: str) -> list[T]:
        """
        Return all items whose index ``index_name`` contains ``value``.

        Zero results are logged, never an error.

        Raises:
            KeyError: If the index does not exist on this store.
        """
        with self._lock:
            if index_name not in self._indices:
                raise KeyError(f"{self.name} has no index {index_name!r}")
            keys = sorted(self._indices[index_name].get(value, ()))
            results = [copy.deepcopy(self._items[k]) for k in keys]
        if not results:
            logger.info("No items found by index", store=self.name, index=index_name, value=value)
        return results

    def index_values(self, index_name: str) -> list[str]:
        """All values currently present in an index."""
        with self._lock:
            return sorted(v for v, keys in self._indices[index_name].items() if keys)

    def list_keys(self) -> list[str]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    # Defined last: the name shadows the builtin for annotations below it.
    def list(self) -> list[T]:
        with self._lock:
            return [copy.deepcopy(item) for item in self._items.values()]
