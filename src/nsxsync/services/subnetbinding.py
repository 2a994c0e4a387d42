"""Subnet binding service - connect a VPC subnet to target subnets.

A SubnetBinding CR produces one SubnetConnectionBindingMap per target
subnet, created under the child subnet:

    <child subnet path>/subnet-connection-binding-maps/sbm_<uid>_<target>

Bindings live deep under ``/orgs/.../vpcs/...``, so every write is built
with ``build_policy_tree`` and sent as one OrgRoot PATCH.

Nesting:
-------
A subnet is either a child or a target, never both. A new binding whose
child is already some binding's target, or whose target is already some
binding's child, is rejected with DependencyNotReadyError until the other
CR is gone.
"""

import time
from contextlib import AsyncExitStack

import structlog

from ..constants import (
    RESOURCE_TYPE_SUBNET_BINDING_MAP,
    TAG_SCOPE_CLUSTER,
    TAG_SCOPE_SUBNET_BINDING_CR_NAME,
    TAG_SCOPE_SUBNET_BINDING_CR_UID,
)
from ..core.allocator import next_vlan, used_vlans
from ..core.diff_engine import DiffEngine
from ..core.policy_tree import ROOT_ORG, build_policy_tree
from ..core.stores import SubnetBindingStore
from ..models.conditions import Condition, condition_for_error, merge_condition, ready_condition
from ..models.crs import SubnetBinding
from ..models.resources import SubnetConnectionBindingMap, Tag
from ..nsx.client import NSXClient
from ..observability.metrics import get_global_collector
from ..utils.exceptions import DependencyNotReadyError, ValidationError
from ..utils.locking import KeyedLock
from . import builder

logger = structlog.get_logger(__name__)

KIND = "SubnetBinding"


class BindingService:
    """
    Reconciles SubnetBinding CRs into subnet connection binding maps.

    Args:
        client: NSX API client
        cluster: Cluster name written in ownership tags
    """

    def __init__(self, client: NSXClient, cluster: str) -> None:
        self.client = client
        self.cluster = cluster
        self.store = SubnetBindingStore()
        self.diff = DiffEngine()
        self._target_lock = KeyedLock()
        self.collector = get_global_collector()

    async def initialize(self) -> None:
        tags = list(self.store.init_tags)
        if self.store.cluster_scoped:
            tags.insert(0, Tag(TAG_SCOPE_CLUSTER, self.cluster))
        items = await self.client.search_resources(RESOURCE_TYPE_SUBNET_BINDING_MAP, tags)
        self.store.replace([SubnetConnectionBindingMap.from_dict(item) for item in items])
        self.collector.update_store_size(self.store.name, len(self.store))
        logger.info("Initialized store", store=self.store.name, count=len(self.store))

    # =========================================================================
    # Lookups
    # =========================================================================

    @staticmethod
    def get_cr_name(binding: SubnetConnectionBindingMap) -> str | None:
        """Name of the SubnetBinding CR that owns ``binding``."""
        names = binding.tag_values(TAG_SCOPE_SUBNET_BINDING_CR_NAME)
        return names[0] if names else None

    def get_bindings_by_child_subnet(self, path: str) -> list[SubnetConnectionBindingMap]:
        return self.store.list_by_child_subnet(path)

    def get_bindings_by_target_subnet(self, path: str) -> list[SubnetConnectionBindingMap]:
        return self.store.list_by_target_subnet(path)

    def list_cr_uids(self) -> set[str]:
        return self.store.list_cr_uids()

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_nesting(self, child_path: str, target_paths: list[str], cr_uid: str | None = None) -> None:
        """
        Reject a binding that would nest subnets.

        Args:
            child_path: Path of the subnet the bindings are created under
            target_paths: Paths of the subnets it is bound to
            cr_uid: UID of the CR being reconciled; its own bindings are ignored

        Raises:
            DependencyNotReadyError: Naming the CR whose binding conflicts.
        """
        for binding in self.store.list_by_target_subnet(child_path):
            if cr_uid and cr_uid in binding.tag_values(TAG_SCOPE_SUBNET_BINDING_CR_UID):
                continue
            dependency = self.get_cr_name(binding)
            raise DependencyNotReadyError(
                f"subnet {child_path} already works as target in SubnetBinding {dependency}",
                dependency=dependency,
            )
        for target_path in target_paths:
            for binding in self.store.list_by_child_subnet(target_path):
                if cr_uid and cr_uid in binding.tag_values(TAG_SCOPE_SUBNET_BINDING_CR_UID):
                    continue
                dependency = self.get_cr_name(binding)
                raise DependencyNotReadyError(
                    f"target subnet {target_path} is already used as child subnet in SubnetBinding {dependency}",
                    dependency=dependency,
                )

    # =========================================================================
    # Create / Update
    # =========================================================================

    async def _patch(self, bindings: list[SubnetConnectionBindingMap]) -> None:
        body = build_policy_tree(bindings, ROOT_ORG)
        if body is None:
            raise ValidationError(
                f"unable to place subnet connection binding maps {[b.id for b in bindings]} under OrgRoot"
            )
        await self.client.patch_org_root(body)

    def _vlan_for(
        self,
        cr: SubnetBinding,
        binding_id: str,
        target_path: str,
        existing: dict[str, SubnetConnectionBindingMap],
    ) -> int:
        if cr.spec.vlan_traffic_tag is not None:
            return cr.spec.vlan_traffic_tag
        current = existing.get(binding_id)
        if current is not None and current.vlan_traffic_tag is not None:
            return current.vlan_traffic_tag
        others = [
            b for b in self.store.list_by_target_subnet(target_path) if b.id not in existing
        ]
        return next_vlan(used_vlans(others), resource=f"SubnetBinding {cr.metadata.uid}", parents=[target_path])

    async def create_or_update(
        self,
        cr: SubnetBinding,
        child_subnet_path: str,
        target_subnet_paths: list[str],
    ) -> list[SubnetConnectionBindingMap]:
        """
        Converge the bindings of ``cr`` to one binding per target subnet.

        Returns:
            The bindings now stored for the CR.

        Raises:
            DependencyNotReadyError: Nested binding
            AllocationExhaustedError: No free VLAN on a target
            NSXAPIError: Backend write failed (store left unchanged)
        """
        start = time.monotonic()
        uid = cr.metadata.uid
        try:
            self.validate_nesting(child_subnet_path, target_subnet_paths, cr_uid=uid)
            tags = builder.subnet_binding_tags(cr, self.cluster)
            async with AsyncExitStack() as stack:
                for target_path in sorted(set(target_subnet_paths)):
                    await stack.enter_async_context(self._target_lock(target_path))

                existing = {b.id: b for b in self.store.list_by_cr_uid(uid)}
                desired = []
                for target_path in target_subnet_paths:
                    binding_id = builder.subnet_binding_map_id(cr, target_path)
                    vlan = self._vlan_for(cr, binding_id, target_path, existing)
                    desired.append(
                        builder.build_subnet_binding_map(cr, child_subnet_path, target_path, vlan, tags)
                    )

                final = self.diff.reconcile_set(list(existing.values()), desired)
                if final:
                    await self._patch(final)
                    self.store.apply(final)
                    logger.info("Updated subnet connection binding maps", id=uid, written=len(final))
                else:
                    logger.info("No changes in subnet connection binding maps", id=uid)
        except Exception:
            self.collector.count_reconcile(KIND, "error")
            raise
        self.collector.count_reconcile(KIND, "success")
        self.collector.record_latency("subnetbinding_reconcile", (time.monotonic() - start) * 1000)
        return self.store.list_by_cr_uid(uid)

    # =========================================================================
    # Delete
    # =========================================================================

    async def _delete(self, bindings: list[SubnetConnectionBindingMap], owner: str) -> bool:
        if not bindings:
            logger.info("No subnet connection binding maps to delete", owner=owner)
            return False
        tombstones = [b.mark_for_delete() for b in bindings]
        await self._patch(tombstones)
        self.store.apply(tombstones)
        logger.info("Deleted subnet connection binding maps", owner=owner, count=len(tombstones))
        return True

    async def delete_by_cr_uid(self, uid: str) -> bool:
        """Delete the bindings of a CR that is being deleted."""
        return await self._delete(self.store.list_by_cr_uid(uid), uid)

    async def delete_by_cr_name(self, name: str, namespace: str) -> bool:
        """Delete the bindings of a CR that no longer exists (only its name is known)."""
        return await self._delete(self.store.list_by_cr_name(name, namespace), f"{namespace}/{name}")

    async def delete_by_cr_uids(self, uids: set[str]) -> int:
        """
        Delete the bindings of every CR in ``uids``.

        Best effort: a failed delete is logged and the rest continue.

        Returns:
            Number of CRs whose bindings were deleted.
        """
        deleted = 0
        for uid in sorted(uids):
            try:
                if await self.delete_by_cr_uid(uid):
                    deleted += 1
            except Exception as e:
                logger.error("Failed to delete stale subnet connection binding maps", id=uid, error=str(e))
        return deleted

    async def collect_garbage(self, live_uids: set[str]) -> int:
        """Delete bindings whose owning CR is no longer alive."""
        stale = self.list_cr_uids() - set(live_uids)
        if not stale:
            return 0
        deleted = await self.delete_by_cr_uids(stale)
        logger.info("SubnetBinding garbage collection completed", stale=len(stale), deleted=deleted)
        return deleted

    # =========================================================================
    # Status
    # =========================================================================

    @staticmethod
    def update_condition(
        conditions: list[Condition], error: Exception | None = None
    ) -> tuple[list[Condition], bool]:
        """
        Merge the Ready condition for a reconcile outcome into ``conditions``.

        Returns:
            (conditions, changed); callers skip the status write when unchanged.
        """
        condition = ready_condition() if error is None else condition_for_error(error)
        return merge_condition(conditions, condition)
