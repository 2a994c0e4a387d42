"""Child subnet service - reconcile ChildSubnets and their VirtualNetworks.

Architecture Overview:
---------------------
A ChildSubnet is realized on NSX as:

    /infra/ip-pools/ipc_<uid>                       IP pool
        ip-subnets/ibs_<uid>                        pool subnet carved from an IP block
    /infra/segments/cs_<uid>                        child segment (gateway from the pool subnet)
        segment-connection-binding-maps/scbm_...    one per parent segment, shared VLAN
    <tier1>/nat/DEFAULT/nat-rules/pnr_<uid>_<n>     SNAT / NO_SNAT rules for the CIDR

Create Flow:
-----------
1. Resolve the parent configuration of the CR's VirtualNetwork.
2. Reserve a VLAN free on every parent segment (per-network lock).
3. PATCH pool + pool subnet. Error 520012 marks the IP block exhausted
   and raises IPBlockExhaustedError.
4. Poll the realized CIDR and gateway. Not realized after the retry budget:
   roll back step 3 and return a requeue result.
5. PATCH segment + binding maps + NAT rules in one Infra request.
   Failure: roll back step 3 and re-raise.
6. Apply every written resource to its store.

Update Flow:
-----------
An existing child segment means the subnet is already provisioned: only the
binding maps are reconciled against the current parent segments.

Stores are updated only after successful backend writes.
"""

import asyncio
import time
from collections import defaultdict
from typing import Any

import structlog

from ..config import SyncConfig
from ..constants import (
    RESOURCE_TYPE_IP_BLOCK,
    RESOURCE_TYPE_IP_POOL,
    RESOURCE_TYPE_IP_POOL_BLOCK_SUBNET,
    RESOURCE_TYPE_NAT_RULE,
    RESOURCE_TYPE_SEGMENT,
    RESOURCE_TYPE_SEGMENT_BINDING_MAP,
    RESOURCE_TYPE_TIER1,
    TAG_SCOPE_CHILD_SUBNET_NAME,
    TAG_SCOPE_CHILD_SUBNET_UID,
    TAG_SCOPE_CLUSTER,
    TAG_SCOPE_NAMESPACE,
    TAG_SCOPE_NCP_VNET_UID,
)
from ..core.allocator import (
    ExhaustedIPBlockSet,
    RealizedStatePoller,
    next_vlan,
    parse_exhausted_block_path,
    used_vlans,
)
from ..core.compensation import ProvisioningSaga
from ..core.diff_engine import DiffEngine
from ..core.parent_config import ParentConfigResolver
from ..core.policy_tree import wrap_child, wrap_infra
from ..core.store import ResourceStore
from ..core.stores import (
    INDEX_CHILD_SUBNET_UID,
    IPBlockStore,
    IPPoolBlockSubnetStore,
    IPPoolStore,
    NATRuleStore,
    ParentConfigStore,
    SegmentBindingStore,
    SegmentStore,
    Tier1Store,
)
from ..models.crs import ChildSubnet, ChildSubnetSpec, ObjectMeta, VirtualNetwork
from ..models.parent_config import ParentConfig
from ..models.resources import (
    IPPool,
    IPPoolBlockSubnet,
    PolicyNat,
    PolicyNatRule,
    PolicyResource,
    Segment,
    SegmentConnectionBindingMap,
    Tag,
    Tier1,
)
from ..models.results import ReconcileResult
from ..nsx.client import NSXClient
from ..observability.logger import LogContext
from ..observability.metrics import get_global_collector
from ..utils.exceptions import (
    AllocationExhaustedError,
    DependencyNotReadyError,
    IPBlockExhaustedError,
    NSXAPIError,
    ParentConfigNotFoundError,
)
from ..utils.ids import segment_id_from_path
from ..utils.locking import KeyedLock
from . import builder

logger = structlog.get_logger(__name__)

KIND = "ChildSubnet"


class ChildSubnetService:
    """
    Reconciles ChildSubnet and VirtualNetwork inputs against NSX.

    Args:
        client: NSX API client
        cluster: Cluster name written in ownership tags
        sync: Synchronization settings (VPC mode, realization budget)
        poller: Realized-state poller; built from ``sync`` when omitted
    """

    def __init__(
        self,
        client: NSXClient,
        cluster: str,
        sync: SyncConfig | None = None,
        poller: RealizedStatePoller | None = None,
    ) -> None:
        self.client = client
        self.cluster = cluster
        self.sync = sync or SyncConfig()
        self.poller = poller or RealizedStatePoller(
            client, max_retries=self.sync.realize_max_retries, interval=self.sync.realize_interval
        )

        self.ip_block_store = IPBlockStore()
        self.ip_pool_store = IPPoolStore()
        self.ip_pool_subnet_store = IPPoolBlockSubnetStore()
        self.child_segment_store = SegmentStore(is_parent=False)
        self.parent_segment_store = SegmentStore(is_parent=True)
        self.segment_binding_store = SegmentBindingStore()
        self.tier1_store = Tier1Store()
        self.nat_rule_store = NATRuleStore()
        self.parent_config_store = ParentConfigStore()

        self.exhausted_blocks = ExhaustedIPBlockSet()
        self.diff = DiffEngine()
        self.resolver = ParentConfigResolver(
            self.parent_segment_store,
            self.ip_block_store,
            self.tier1_store,
            self.parent_config_store,
            cluster,
            vpc_enabled=self.sync.vpc_enabled,
        )
        self.resolver.add_listener(self.refresh_child_subnets)

        self._vlan_lock = KeyedLock()
        self._reserved_vlans: dict[str, set[int]] = defaultdict(set)
        self.collector = get_global_collector()

    # =========================================================================
    # Initialization
    # =========================================================================

    def _listings(self) -> list[tuple[str, ResourceStore[Any]]]:
        return [
            (RESOURCE_TYPE_IP_BLOCK, self.ip_block_store),
            (RESOURCE_TYPE_IP_POOL, self.ip_pool_store),
            (RESOURCE_TYPE_IP_POOL_BLOCK_SUBNET, self.ip_pool_subnet_store),
            (RESOURCE_TYPE_SEGMENT, self.child_segment_store),
            (RESOURCE_TYPE_SEGMENT, self.parent_segment_store),
            (RESOURCE_TYPE_SEGMENT_BINDING_MAP, self.segment_binding_store),
            (RESOURCE_TYPE_TIER1, self.tier1_store),
            (RESOURCE_TYPE_NAT_RULE, self.nat_rule_store),
        ]

    def _search_tags(self, store: ResourceStore[Any]) -> list[Tag]:
        tags = list(store.init_tags)
        if store.cluster_scoped:
            tags.insert(0, Tag(TAG_SCOPE_CLUSTER, self.cluster))
        return tags

    async def _load_store(self, resource_type: str, store: ResourceStore[Any], gate: asyncio.Semaphore) -> None:
        async with gate:
            items = await self.client.search_resources(resource_type, self._search_tags(store))
        store.replace([store.kind.from_dict(item) for item in items])
        self.collector.update_store_size(store.name, len(store))
        logger.info("Initialized store", store=store.name, count=len(store))

    async def initialize(self) -> None:
        """
        Populate every store with one parallel listing per kind.

        Raises:
            Exception: The first listing failure; other listings are cancelled.
        """
        gate = asyncio.Semaphore(max(1, self.sync.init_concurrency))
        tasks = [
            asyncio.create_task(self._load_store(resource_type, store, gate))
            for resource_type, store in self._listings()
        ]
        try:
            await asyncio.gather(*tasks)
        except Exception as e:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.error("Failed to initialize child subnet stores", error=str(e))
            raise

    def store_sizes(self) -> dict[str, int]:
        stores = [store for _, store in self._listings()] + [self.parent_config_store]
        return {store.name: len(store) for store in stores}

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_parent_config(self, cr: ChildSubnet) -> ParentConfig:
        """
        Raises:
            ParentConfigNotFoundError: If the parent VirtualNetwork has no snapshot.
        """
        config = self.parent_config_store.get_by_namespaced_name(cr.spec.parent, cr.metadata.namespace)
        if config is None:
            logger.info(
                "Parent configuration for ChildSubnet doesn't exist",
                id=cr.metadata.uid,
                parent=cr.spec.parent,
            )
            raise ParentConfigNotFoundError(cr.metadata.uid, cr.spec.parent)
        return config

    def _tier1_for(self, tier1_path: str | None) -> Tier1 | None:
        if not tier1_path:
            return None
        return self.tier1_store.get_by_policy_path(tier1_path)

    def vlan_usage(self, segment_paths: list[str] | set[str]) -> tuple[set[int], int | None]:
        """VLANs used on ``segment_paths`` and the next free one (None when full)."""
        used: set[int] = set()
        for path in segment_paths:
            used |= used_vlans(self.segment_binding_store.list_by_parent_segment_path(path))
        try:
            return used, next_vlan(used)
        except AllocationExhaustedError:
            return used, None

    async def _reserve_vlan(self, cr: ChildSubnet, config: ParentConfig) -> int:
        async with self._vlan_lock(config.id):
            used = set(self._reserved_vlans[config.id])
            for path in config.segment_paths:
                used |= used_vlans(self.segment_binding_store.list_by_parent_segment_path(path))
            vlan = next_vlan(used, resource=f"ChildSubnet {cr.metadata.uid}", parents=config.segment_paths)
            self._reserved_vlans[config.id].add(vlan)
            return vlan

    def _release_vlan(self, config: ParentConfig, vlan: int) -> None:
        self._reserved_vlans[config.id].discard(vlan)

    # =========================================================================
    # Hierarchical bodies
    # =========================================================================

    @staticmethod
    def _wrap_infra(
        pool: IPPool | None = None,
        pool_subnet: IPPoolBlockSubnet | None = None,
        segment: Segment | None = None,
        bindings: list[SegmentConnectionBindingMap] | None = None,
        tier1: Tier1 | None = None,
        nat: PolicyNat | None = None,
        nat_rules: list[PolicyNatRule] | None = None,
    ) -> dict[str, Any] | None:
        children: list[dict[str, Any]] = []
        if pool is not None:
            subnets = [wrap_child(pool_subnet)] if pool_subnet is not None else []
            children.append(wrap_child(pool, subnets))
        if segment is not None:
            children.append(wrap_child(segment, [wrap_child(b) for b in bindings or []]))
        if tier1 is not None and nat is not None and nat_rules:
            nat_child = wrap_child(nat, [wrap_child(r) for r in nat_rules])
            children.append(wrap_child(tier1, [nat_child]))
        return wrap_infra(children)

    async def _delete_pool(self, resources: list[PolicyResource]) -> None:
        """Compensating delete of a tombstoned pool and pool subnet."""
        pool = next((r for r in resources if isinstance(r, IPPool)), None)
        pool_subnet = next((r for r in resources if isinstance(r, IPPoolBlockSubnet)), None)
        body = self._wrap_infra(pool=pool, pool_subnet=pool_subnet)
        if body is not None:
            await self.client.patch_infra(body)

    def _apply_stores(
        self,
        pool: IPPool | None,
        pool_subnet: IPPoolBlockSubnet | None,
        segment: Segment | None,
        bindings: list[SegmentConnectionBindingMap],
        nat_rules: list[PolicyNatRule],
    ) -> None:
        self.ip_pool_store.apply(pool)
        self.ip_pool_subnet_store.apply(pool_subnet)
        self.child_segment_store.apply(segment)
        self.segment_binding_store.apply(bindings)
        self.nat_rule_store.apply(nat_rules)

    # =========================================================================
    # ChildSubnet
    # =========================================================================

    async def create_or_update_child_subnet(self, cr: ChildSubnet) -> ReconcileResult:
        """
        Provision a ChildSubnet, or reconcile the binding maps of an existing one.

        Raises:
            ParentConfigNotFoundError: Parent VirtualNetwork not resolved yet
            DependencyNotReadyError: No IP block available for the access mode
            AllocationExhaustedError: No free VLAN on the parent segments
            IPBlockExhaustedError: The IP block has no spare capacity
            NSXAPIError: Any other backend failure
        """
        start = time.monotonic()
        uid = cr.metadata.uid
        try:
            config = self.get_parent_config(cr)
            tags = builder.child_subnet_tags(cr, self.cluster)
            segment = self.child_segment_store.get_by_child_subnet(uid)
            if segment is not None:
                vlan = cr.status.vlan or self._current_vlan(uid)
                reserved = None
                if vlan is None:
                    vlan = reserved = await self._reserve_vlan(cr, config)
                try:
                    await self._reconcile_binding_maps(cr, config, segment, vlan, tags)
                finally:
                    if reserved is not None:
                        self._release_vlan(config, reserved)
                result = ReconcileResult(
                    path=segment.path or builder.segment_intent_path(cr),
                    ip_addresses=list(cr.status.ip_addresses) or list(segment.gateway_addresses),
                    vlan=vlan,
                )
            else:
                result = await self._create_child_subnet(cr, config, tags)
        except Exception:
            self.collector.count_reconcile(KIND, "error")
            raise
        self.collector.count_reconcile(KIND, "requeue" if result.requeue else "success")
        self.collector.record_latency("childsubnet_reconcile", (time.monotonic() - start) * 1000)
        return result

    def _current_vlan(self, uid: str) -> int | None:
        vlans = used_vlans(self.segment_binding_store.list_by_child_subnet(uid))
        return min(vlans) if vlans else None

    async def _reconcile_binding_maps(
        self,
        cr: ChildSubnet,
        config: ParentConfig,
        segment: Segment,
        vlan: int,
        tags: list[Tag],
    ) -> bool:
        """Diff binding maps against the parent segments; one PATCH if anything changed."""
        desired = builder.build_segment_binding_maps(cr, config, vlan, tags)
        existing = self.segment_binding_store.list_by_child_subnet(cr.metadata.uid)
        final = self.diff.reconcile_set(existing, desired)
        if not final:
            logger.info("No changes in the segment binding maps for ChildSubnet", id=cr.metadata.uid)
            return False

        body = self._wrap_infra(segment=segment, bindings=final)
        await self.client.patch_infra(body)
        self.segment_binding_store.apply(final)
        logger.info(
            "Updated segment binding maps for ChildSubnet",
            id=cr.metadata.uid,
            written=len(final),
            segment=segment.id,
        )
        return True

    async def _create_child_subnet(self, cr: ChildSubnet, config: ParentConfig, tags: list[Tag]) -> ReconcileResult:
        uid = cr.metadata.uid
        builder.pool_subnet_size(cr)
        ip_block_path = builder.ip_block_path_for(cr.spec.access_mode, config)
        if not ip_block_path:
            raise DependencyNotReadyError(
                f"no IP block configured for VirtualNetwork {config.namespaced_name}",
                dependency=config.namespaced_name,
            )
        if ip_block_path in self.exhausted_blocks:
            logger.warning("Allocating from an IP block marked exhausted", id=uid, ip_block=ip_block_path)

        vlan = await self._reserve_vlan(cr, config)
        try:
            with LogContext(child_subnet=cr.metadata.namespaced_name, vlan=vlan):
                return await self._provision(cr, config, tags, ip_block_path, vlan)
        finally:
            self._release_vlan(config, vlan)

    async def _provision(
        self,
        cr: ChildSubnet,
        config: ParentConfig,
        tags: list[Tag],
        ip_block_path: str,
        vlan: int,
    ) -> ReconcileResult:
        uid = cr.metadata.uid
        tier1 = self._tier1_for(config.tier1_path)
        pool = builder.build_ip_pool(cr, tags)
        pool_subnet = builder.build_ip_pool_subnet(cr, ip_block_path, tags)
        saga = ProvisioningSaga(f"{KIND}/{uid}", self._delete_pool)

        try:
            await self.client.patch_infra(self._wrap_infra(pool=pool, pool_subnet=pool_subnet))
        except NSXAPIError as e:
            logger.error("Failed to patch IP pool with block subnet for ChildSubnet", id=uid, error=str(e))
            block_path = parse_exhausted_block_path(e)
            if block_path is not None:
                self.exhausted_blocks.add(block_path)
                raise IPBlockExhaustedError(block_path) from e
            raise
        saga.primary_created([pool, pool_subnet])

        try:
            realized = await self.poller.poll(builder.ip_pool_subnet_intent_path(cr), owner=uid)
            if realized is None:
                await saga.rollback()
                return ReconcileResult.pending(
                    f"IP pool subnet {pool_subnet.id} of ChildSubnet {uid} is not realized yet"
                )

            segment = builder.build_segment(cr, config, realized, tags)
            bindings = builder.build_segment_binding_maps(cr, config, vlan, tags)
            nat = builder.build_default_nat(tier1.path) if tier1 is not None and tier1.path else None
            nat_rules = (
                builder.build_nat_rules(cr, [realized.cidr], tier1.path, tags) if nat is not None else []
            )
            await self.client.patch_infra(
                self._wrap_infra(segment=segment, bindings=bindings, tier1=tier1, nat=nat, nat_rules=nat_rules)
            )
            saga.secondary_created()
        except Exception as e:
            if not saga.finished:
                logger.error("Failed to create segment resources for ChildSubnet", id=uid, error=str(e))
                await saga.rollback()
            raise

        self._apply_stores(pool, pool_subnet, segment, bindings, nat_rules)
        saga.commit()
        logger.info("Successfully created resources for ChildSubnet", id=uid, vlan=vlan, cidr=realized.cidr)
        return ReconcileResult(
            path=builder.segment_intent_path(cr),
            ip_addresses=[realized.gateway_cidr],
            vlan=vlan,
        )

    async def delete_child_subnet(self, cr: ChildSubnet) -> bool:
        """Delete everything owned by the ChildSubnet. Returns False if nothing existed."""
        deleted = await self._delete_owned(cr.metadata.uid)
        self.collector.count_reconcile(KIND, "deleted" if deleted else "noop")
        return deleted

    async def _delete_owned(self, uid: str) -> bool:
        segment = self.child_segment_store.get_by_child_subnet(uid)
        pool = self.ip_pool_store.get_by_child_subnet(uid)
        pool_subnet = self.ip_pool_subnet_store.get_by_child_subnet(uid)
        bindings = self.segment_binding_store.list_by_child_subnet(uid)
        nat_rules = self.nat_rule_store.list_by_child_subnet(uid)
        if segment is None and pool is None and pool_subnet is None and not bindings and not nat_rules:
            logger.info("No resources exist for ChildSubnet", id=uid)
            return False

        for resource in [segment, pool, pool_subnet, *bindings, *nat_rules]:
            if resource is not None:
                resource.mark_for_delete()

        tier1 = nat = None
        if nat_rules and nat_rules[0].parent_path:
            tier1_path = nat_rules[0].parent_path.rsplit("/nat/", 1)[0]
            tier1 = self._tier1_for(tier1_path) or Tier1(id=segment_id_from_path(tier1_path), path=tier1_path)
            nat = builder.build_default_nat(tier1_path)

        body = self._wrap_infra(pool, pool_subnet, segment, bindings, tier1, nat, nat_rules)
        if body is not None:
            await self.client.patch_infra(body)
        self._apply_stores(pool, pool_subnet, segment, bindings, nat_rules)

        if pool_subnet is not None and pool_subnet.ip_block_path:
            self.exhausted_blocks.discard(pool_subnet.ip_block_path)
        logger.info("Deleted resources for ChildSubnet", id=uid)
        return True

    # =========================================================================
    # VirtualNetwork
    # =========================================================================

    async def _sync_parent_segments(self, vnet_uid: str) -> None:
        existing = self.parent_segment_store.list_by_parent(vnet_uid)
        items = await self.client.search_resources(
            RESOURCE_TYPE_SEGMENT, [Tag(TAG_SCOPE_NCP_VNET_UID, vnet_uid)]
        )
        desired = [Segment.from_dict(item) for item in items]
        final = self.diff.reconcile_set(existing, desired)
        if not final:
            logger.debug("No changes in parent segments", vnet=vnet_uid)
            return
        self.parent_segment_store.apply(final)
        logger.info("Resynced parent segments", vnet=vnet_uid, written=len(final))

    async def create_or_update_virtual_network(self, vnet: VirtualNetwork) -> bool:
        """
        Resync parent segments and apply the resulting parent configuration.

        Returns:
            True if the parent configuration changed.
        """
        meta = vnet.metadata
        await self._sync_parent_segments(meta.uid)
        desired = self.resolver.resolve(meta.uid, meta.name, meta.namespace)
        changed = await self.resolver.apply(desired)
        self.collector.count_reconcile("VirtualNetwork", "success" if changed else "noop")
        return changed

    async def refresh_child_subnets(self, config: ParentConfig) -> None:
        """Reconcile binding maps of every child subnet attached to a changed network."""
        child_paths = {
            b.parent_path for b in self.segment_binding_store.list_by_parent_config(config.id) if b.parent_path
        }
        for segment in self.child_segment_store.list():
            if segment.path not in child_paths:
                continue
            owner = self._owner_of(segment, config)
            if owner is None:
                continue
            vlan = self._current_vlan(owner.metadata.uid)
            if vlan is None:
                continue
            await self._reconcile_binding_maps(owner, config, segment, vlan, list(segment.tags))

    @staticmethod
    def _owner_of(segment: Segment, config: ParentConfig) -> ChildSubnet | None:
        uids = segment.tag_values(TAG_SCOPE_CHILD_SUBNET_UID)
        names = segment.tag_values(TAG_SCOPE_CHILD_SUBNET_NAME)
        namespaces = segment.tag_values(TAG_SCOPE_NAMESPACE)
        if not (uids and names and namespaces):
            logger.info("Child segment is missing owner tags, skipping", segment=segment.id)
            return None
        return ChildSubnet(
            metadata=ObjectMeta(uid=uids[0], name=names[0], namespace=namespaces[0]),
            spec=ChildSubnetSpec(parent=config.name),
        )

    async def delete_virtual_network(self, vnet: VirtualNetwork) -> None:
        """Drop the parent configuration and cached parent segments of a network."""
        uid = vnet.metadata.uid
        self.resolver.remove(uid)
        for segment in self.parent_segment_store.list_by_parent(uid):
            self.parent_segment_store.delete(segment)
        logger.info("Deleted VirtualNetwork state", vnet=uid)

    # =========================================================================
    # Garbage collection
    # =========================================================================

    def list_child_subnet_uids(self) -> set[str]:
        """UIDs of every ChildSubnet owning at least one cached resource."""
        uids: set[str] = set()
        for store in (self.child_segment_store, self.ip_pool_store, self.ip_pool_subnet_store):
            uids.update(store.index_values(INDEX_CHILD_SUBNET_UID))
        return uids

    async def collect_garbage(self, live_uids: set[str]) -> int:
        """
        Delete resources of ChildSubnets that no longer exist.

        Best effort: a failed delete is logged and the sweep continues.

        Returns:
            Number of ChildSubnets cleaned up.
        """
        cleaned = 0
        for uid in sorted(self.list_child_subnet_uids() - set(live_uids)):
            try:
                if await self._delete_owned(uid):
                    cleaned += 1
            except Exception as e:
                logger.error("Failed to delete stale ChildSubnet resources", id=uid, error=str(e))
        if cleaned:
            logger.info("ChildSubnet garbage collection completed", cleaned=cleaned)
        return cleaned
