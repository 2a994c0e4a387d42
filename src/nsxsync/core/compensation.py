"""Compensation - saga-style rollback of a multi-step create.

Purpose:
-------
Creating a child subnet takes two backend writes that cannot share a
transaction: the IP pool with its pool subnet (primary), then the segment,
binding maps and NAT rules (secondary). If anything fails after the primary
write, the primary resources are tombstoned and deleted again.

State Machine:
-------------
    PENDING ──primary_created──▶ CREATED_PRIMARY ──secondary_created──▶ CREATED_SECONDARY
                                        │                                      │
                                        └────────────rollback──────┐           ├──commit──▶ COMMITTED
                                                                   ▼           │
                                                                DELETED ◀──rollback

``rollback`` from PENDING moves to DELETED without any backend call.
Any other transition raises SagaStateError.

The compensating delete is best-effort: its failure is logged and never
replaces the error that triggered the rollback.

Usage:
-----
```python
saga = ProvisioningSaga(f"childsubnet/{uid}", compensate=patch_pool_tombstones)
await client.patch_infra(pool_body)
saga.primary_created([pool, pool_subnet])
try:
    ...
    saga.secondary_created()
except Exception:
    await saga.rollback()
    raise
saga.commit()
```
"""

from collections.abc import Awaitable, Callable
from enum import Enum

import structlog

from ..models.resources import PolicyResource
from ..utils.exceptions import SagaStateError

logger = structlog.get_logger(__name__)

Compensator = Callable[[list[PolicyResource]], Awaitable[None]]


class SagaState(str, Enum):
    PENDING = "pending"
    CREATED_PRIMARY = "created_primary"
    CREATED_SECONDARY = "created_secondary"
    COMMITTED = "committed"
    DELETED = "deleted"


_TRANSITIONS: dict[SagaState, set[SagaState]] = {
    SagaState.PENDING: {SagaState.CREATED_PRIMARY, SagaState.DELETED},
    SagaState.CREATED_PRIMARY: {SagaState.CREATED_SECONDARY, SagaState.DELETED},
    SagaState.CREATED_SECONDARY: {SagaState.COMMITTED, SagaState.DELETED},
    SagaState.COMMITTED: set(),
    SagaState.DELETED: set(),
}


class ProvisioningSaga:
    """
    Tracks one create operation and undoes its primary write on failure.

    Args:
        name: Identity used in logs and errors
        compensate: Coroutine function that deletes the given (already
            tombstoned) resources from the backend
    """

    def __init__(self, name: str, compensate: Compensator) -> None:
        self.name = name
        self._compensate = compensate
        self.state = SagaState.PENDING
        self.primary: list[PolicyResource] = []
        self.compensation_error: Exception | None = None

    def _move(self, target: SagaState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise SagaStateError(self.name, self.state.value, target.value)
        logger.debug("Saga transition", saga=self.name, current=self.state.value, target=target.value)
        self.state = target

    @property
    def finished(self) -> bool:
        return self.state in (SagaState.COMMITTED, SagaState.DELETED)

    def primary_created(self, resources: list[PolicyResource]) -> None:
        """Record the durably created primary resources."""
        self._move(SagaState.CREATED_PRIMARY)
        self.primary = [r.clone() for r in resources]

    def secondary_created(self) -> None:
        self._move(SagaState.CREATED_SECONDARY)

    def commit(self) -> None:
        self._move(SagaState.COMMITTED)

    async def rollback(self) -> None:
        """
        Tombstone the primary resources and delete them from the backend.

        Never raises for a failed compensating delete; the failure is
        logged and kept in ``compensation_error``.
        """
        nothing_created = self.state == SagaState.PENDING
        self._move(SagaState.DELETED)
        if nothing_created:
            return

        tombstones = [r.clone().mark_for_delete() for r in self.primary]
        try:
            await self._compensate(tombstones)
        except Exception as e:
            self.compensation_error = e
            logger.error(
                "Compensating delete failed",
                saga=self.name,
                resources=[r.id for r in tombstones],
                error=str(e),
            )
            return
        logger.info("Rolled back primary resources", saga=self.name, resources=[r.id for r in tombstones])
