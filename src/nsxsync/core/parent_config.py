"""Parent Configuration Resolver.

Derives, for one upstream virtual network, the topology its child subnets
need: parent segment paths, the Tier-1 and transport zone they connect to,
and the IP blocks subnets are carved from.

Resolution Rules:
----------------
- Segments: every cached parent segment tagged with the network's UID.
  None found is a valid, empty result (the upstream plugin has not created
  them yet), not an error.
- Tier-1 and transport zone: taken from the first segment that has them.
- IP blocks:
  * VPC disabled: the shared cluster block (required) for both access modes.
  * VPC enabled: the first block tagged with the project UID found on the
    resolved Tier-1.

Change Detection:
----------------
``apply`` compares the resolved snapshot to the stored one by value. On a
change, listeners are awaited first and the snapshot is persisted only when
all of them succeed, so a failed refresh is retried on the next reconcile
instead of being masked by an "unchanged" snapshot.
"""

from collections.abc import Awaitable, Callable

import structlog

from ..constants import TAG_SCOPE_NCP_PROJECT_UID
from ..models.parent_config import ParentConfig
from ..utils.exceptions import ValidationError
from .stores import IPBlockStore, ParentConfigStore, SegmentStore, Tier1Store

logger = structlog.get_logger(__name__)

ParentConfigListener = Callable[[ParentConfig], Awaitable[None]]


class ParentConfigResolver:
    """
    Resolve and track parent configurations.

    Args:
        parent_segments: Parent-flavor segment store
        ip_blocks: IP block store
        tier1s: Tier-1 store
        configs: Store holding the last applied snapshot per network
        cluster: Cluster name used to find the shared IP block
        vpc_enabled: Resolve IP blocks per project instead of per cluster
    """

    def __init__(
        self,
        parent_segments: SegmentStore,
        ip_blocks: IPBlockStore,
        tier1s: Tier1Store,
        configs: ParentConfigStore,
        cluster: str,
        vpc_enabled: bool = False,
    ) -> None:
        self.parent_segments = parent_segments
        self.ip_blocks = ip_blocks
        self.tier1s = tier1s
        self.configs = configs
        self.cluster = cluster
        self.vpc_enabled = vpc_enabled
        self._listeners: list[ParentConfigListener] = []

    def add_listener(self, listener: ParentConfigListener) -> None:
        """Register a coroutine called with every changed snapshot."""
        self._listeners.append(listener)

    def resolve(self, uid: str, name: str, namespace: str) -> ParentConfig:
        """
        Compute the snapshot for a virtual network from the caches.

        Raises:
            ValidationError: If the shared cluster block is missing (VPC
                disabled) or the Tier-1 carries no project UID (VPC enabled).
        """
        config = ParentConfig(id=uid, name=name, namespace=namespace)
        segments = self.parent_segments.list_by_parent(uid)
        if not segments:
            logger.info("No segments exist for VirtualNetwork", vnet=uid)
            return config

        for segment in segments:
            if segment.path:
                config.segment_paths.add(segment.path)
            if not config.tier1_path and segment.connectivity_path:
                config.tier1_path = segment.connectivity_path
            if not config.transport_zone_path and segment.transport_zone_path:
                config.transport_zone_path = segment.transport_zone_path

        if not self.vpc_enabled:
            block = self.ip_blocks.get_by_cluster(self.cluster)
            config.set_ip_block_paths(block.path or "", block.path or "")
            return config

        if not config.tier1_path:
            return config
        tier1 = self.tier1s.get_by_policy_path(config.tier1_path)
        if tier1 is None:
            logger.info("No tier-1 exists for VirtualNetwork", vnet=uid, path=config.tier1_path)
            return config
        project_uids = tier1.tag_values(TAG_SCOPE_NCP_PROJECT_UID)
        if not project_uids:
            raise ValidationError(f"unable to find Namespace ID from tier1 {tier1.path}")
        blocks = self.ip_blocks.get_by_project(project_uids[0])
        if blocks:
            config.set_ip_block_paths(blocks[0].path or "", blocks[0].path or "")
        return config

    def compare(self, desired: ParentConfig) -> bool:
        """True when ``desired`` differs from the stored snapshot."""
        return not desired.equals(self.configs.get(desired.id))

    async def apply(self, desired: ParentConfig) -> bool:
        """
        Persist ``desired`` and notify listeners if it changed.

        Returns:
            True if the snapshot changed.
        """
        if not self.compare(desired):
            logger.info("No changes in VirtualNetwork", vnet=desired.id)
            return False
        for listener in self._listeners:
            await listener(desired)
        self.configs.apply(desired)
        logger.info(
            "Applied parent configuration",
            vnet=desired.id,
            segments=len(desired.segment_paths),
            tier1=desired.tier1_path,
        )
        return True

    def remove(self, uid: str) -> ParentConfig | None:
        """Tombstone and drop the snapshot of a deleted network."""
        existing = self.configs.get(uid)
        if existing is None:
            return None
        existing.marked_for_delete = True
        self.configs.apply(existing)
        logger.info("Removed parent configuration", vnet=uid)
        return existing
