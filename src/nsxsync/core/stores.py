"""Typed stores, one per NSX resource kind, with their secondary indexes."""

import structlog

from ..constants import (
    TAG_SCOPE_CHILD_SUBNET_UID,
    TAG_SCOPE_NAMESPACE,
    TAG_SCOPE_NCP_CLUSTER,
    TAG_SCOPE_NCP_PROJECT,
    TAG_SCOPE_NCP_PROJECT_UID,
    TAG_SCOPE_NCP_VNET_UID,
    TAG_SCOPE_PARENT_CONFIG_UID,
    TAG_SCOPE_SUBNET_BINDING_CR_NAME,
    TAG_SCOPE_SUBNET_BINDING_CR_UID,
)
from ..models.parent_config import ParentConfig
from ..models.resources import (
    IPBlock,
    IPPool,
    IPPoolBlockSubnet,
    PolicyNatRule,
    Segment,
    SegmentConnectionBindingMap,
    SubnetConnectionBindingMap,
    Tag,
    Tier1,
)
from ..utils.exceptions import ValidationError
from .store import ResourceStore, attribute_index, tag_index

logger = structlog.get_logger(__name__)

# Index names
INDEX_CLUSTER = "cluster"
INDEX_PROJECT_UID = TAG_SCOPE_NCP_PROJECT_UID
INDEX_CHILD_SUBNET_UID = TAG_SCOPE_CHILD_SUBNET_UID
INDEX_VNET_UID = TAG_SCOPE_NCP_VNET_UID
INDEX_PARENT_CONFIG_UID = TAG_SCOPE_PARENT_CONFIG_UID
INDEX_PARENT_SEGMENT = "parentSegment"
INDEX_CHILD_SEGMENT = "childSegment"
INDEX_POLICY_PATH = "t1PolicyPath"
INDEX_CLUSTERED_NAMESPACE = "clusteredNamespace"
INDEX_NAMESPACED_NAME = "namespacedName"
INDEX_BINDING_CR_UID = TAG_SCOPE_SUBNET_BINDING_CR_UID
INDEX_TARGET_SUBNET = "targetSubnet"
INDEX_CHILD_SUBNET = "childSubnet"


def _first(items: list):
    return items[0] if items else None


def cluster_namespace_key(cluster: str, namespace: str) -> str:
    return f"{cluster}/{namespace}"


def _ip_block_by_only_cluster(block: IPBlock) -> list[str]:
    # Shared system-wide blocks carry a cluster tag and no project tag.
    if block.tag_values(TAG_SCOPE_NCP_PROJECT_UID):
        return []
    return block.tag_values(TAG_SCOPE_NCP_CLUSTER)


def _tier1_by_clustered_namespace(tier1: Tier1) -> list[str]:
    clusters = tier1.tag_values(TAG_SCOPE_NCP_CLUSTER)
    namespaces = tier1.tag_values(TAG_SCOPE_NCP_PROJECT)
    if clusters and namespaces:
        return [cluster_namespace_key(clusters[0], namespaces[0])]
    logger.info(
        "Either NCP cluster or Namespace is not tagged on Tier1",
        tier1=tier1.id,
        cluster=clusters,
        namespace=namespaces,
    )
    return [tier1.path] if tier1.path else []


def _binding_cr_namespaced_name(binding: SubnetConnectionBindingMap) -> list[str]:
    namespaces = binding.tag_values(TAG_SCOPE_NAMESPACE)
    names = binding.tag_values(TAG_SCOPE_SUBNET_BINDING_CR_NAME)
    if namespaces and names:
        return [f"{namespaces[0]}/{names[0]}"]
    return []


class IPBlockStore(ResourceStore[IPBlock]):
    """IP blocks that pool subnets are carved from. Not owned by us."""

    init_tags = (Tag(TAG_SCOPE_NCP_CLUSTER),)
    cluster_scoped = False

    def __init__(self) -> None:
        super().__init__(
            IPBlock,
            {
                INDEX_CLUSTER: _ip_block_by_only_cluster,
                INDEX_PROJECT_UID: tag_index(TAG_SCOPE_NCP_PROJECT_UID),
            },
        )

    def get_by_cluster(self, cluster: str) -> IPBlock:
        """
        Return the shared block of ``cluster``.

        Raises:
            ValidationError: If no block is configured for the cluster.
        """
        block = _first(self.get_by_index(INDEX_CLUSTER, cluster))
        if block is None:
            raise ValidationError(f"no IPBlock configured in cluster {cluster}")
        return block

    def get_by_project(self, project_uid: str) -> list[IPBlock]:
        return self.get_by_index(INDEX_PROJECT_UID, project_uid)


class IPPoolStore(ResourceStore[IPPool]):
    init_tags = (Tag(TAG_SCOPE_CHILD_SUBNET_UID),)

    def __init__(self) -> None:
        super().__init__(IPPool, {INDEX_CHILD_SUBNET_UID: tag_index(TAG_SCOPE_CHILD_SUBNET_UID)})

    def get_by_child_subnet(self, uid: str) -> IPPool | None:
        return _first(self.get_by_index(INDEX_CHILD_SUBNET_UID, uid))


class IPPoolBlockSubnetStore(ResourceStore[IPPoolBlockSubnet]):
    init_tags = (Tag(TAG_SCOPE_CHILD_SUBNET_UID),)

    def __init__(self) -> None:
        super().__init__(
            IPPoolBlockSubnet, {INDEX_CHILD_SUBNET_UID: tag_index(TAG_SCOPE_CHILD_SUBNET_UID)}
        )

    def get_by_child_subnet(self, uid: str) -> IPPoolBlockSubnet | None:
        return _first(self.get_by_index(INDEX_CHILD_SUBNET_UID, uid))


class SegmentStore(ResourceStore[Segment]):
    """
    Segments in one of two roles.

    Child segments are created for child subnets and indexed by owner UID.
    Parent segments belong to virtual networks (created by the upstream
    plugin) and are indexed by virtual network UID.
    """

    def __init__(self, is_parent: bool = False) -> None:
        self.is_parent = is_parent
        if is_parent:
            self.init_tags = (Tag(TAG_SCOPE_NCP_VNET_UID),)
            self.cluster_scoped = False
            indexers = {INDEX_VNET_UID: tag_index(TAG_SCOPE_NCP_VNET_UID)}
            name = "ParentSegmentStore"
        else:
            self.init_tags = (Tag(TAG_SCOPE_CHILD_SUBNET_UID),)
            indexers = {INDEX_CHILD_SUBNET_UID: tag_index(TAG_SCOPE_CHILD_SUBNET_UID)}
            name = "ChildSegmentStore"
        super().__init__(Segment, indexers, name=name)

    def get_by_child_subnet(self, uid: str) -> Segment | None:
        return _first(self.get_by_index(INDEX_CHILD_SUBNET_UID, uid))

    def list_by_parent(self, vnet_uid: str) -> list[Segment]:
        return self.get_by_index(INDEX_VNET_UID, vnet_uid)


class SegmentBindingStore(ResourceStore[SegmentConnectionBindingMap]):
    """Segment connection binding maps: child segment ↔ parent segment + VLAN."""

    init_tags = (Tag(TAG_SCOPE_CHILD_SUBNET_UID),)

    def __init__(self) -> None:
        super().__init__(
            SegmentConnectionBindingMap,
            {
                INDEX_CHILD_SUBNET_UID: tag_index(TAG_SCOPE_CHILD_SUBNET_UID),
                INDEX_PARENT_CONFIG_UID: tag_index(TAG_SCOPE_PARENT_CONFIG_UID),
                INDEX_PARENT_SEGMENT: attribute_index("segment_path"),
                INDEX_CHILD_SEGMENT: attribute_index("parent_path"),
            },
        )

    def list_by_child_subnet(self, uid: str) -> list[SegmentConnectionBindingMap]:
        return self.get_by_index(INDEX_CHILD_SUBNET_UID, uid)

    def list_by_parent_config(self, uid: str) -> list[SegmentConnectionBindingMap]:
        return self.get_by_index(INDEX_PARENT_CONFIG_UID, uid)

    def list_by_parent_segment_path(self, path: str) -> list[SegmentConnectionBindingMap]:
        return self.get_by_index(INDEX_PARENT_SEGMENT, path)

    def list_by_child_segment_path(self, path: str) -> list[SegmentConnectionBindingMap]:
        return self.get_by_index(INDEX_CHILD_SEGMENT, path)


class Tier1Store(ResourceStore[Tier1]):
    """Tier-1 gateways the segments attach to. Not owned by us."""

    init_tags = (Tag(TAG_SCOPE_NCP_PROJECT_UID),)
    cluster_scoped = False

    def __init__(self) -> None:
        super().__init__(
            Tier1,
            {
                INDEX_POLICY_PATH: attribute_index("path"),
                INDEX_CLUSTERED_NAMESPACE: _tier1_by_clustered_namespace,
            },
        )

    def get_by_policy_path(self, path: str) -> Tier1 | None:
        return _first(self.get_by_index(INDEX_POLICY_PATH, path))

    def list_by_namespace(self, namespace: str, cluster: str) -> list[Tier1]:
        return self.get_by_index(INDEX_CLUSTERED_NAMESPACE, cluster_namespace_key(cluster, namespace))


class NATRuleStore(ResourceStore[PolicyNatRule]):
    init_tags = (Tag(TAG_SCOPE_CHILD_SUBNET_UID),)

    def __init__(self) -> None:
        super().__init__(
            PolicyNatRule, {INDEX_CHILD_SUBNET_UID: tag_index(TAG_SCOPE_CHILD_SUBNET_UID)}
        )

    def list_by_child_subnet(self, uid: str) -> list[PolicyNatRule]:
        return self.get_by_index(INDEX_CHILD_SUBNET_UID, uid)


class ParentConfigStore(ResourceStore[ParentConfig]):
    """Resolved parent configurations, keyed by virtual network UID."""

    def __init__(self) -> None:
        super().__init__(
            ParentConfig,
            {INDEX_NAMESPACED_NAME: lambda pc: [pc.namespaced_name]},
        )

    def get(self, uid: str) -> ParentConfig | None:
        return self.get_by_key(uid)

    def get_by_namespaced_name(self, name: str, namespace: str) -> ParentConfig | None:
        return _first(self.get_by_index(INDEX_NAMESPACED_NAME, f"{namespace}/{name}"))


class SubnetBindingStore(ResourceStore[SubnetConnectionBindingMap]):
    """
    Subnet connection binding maps.

    ``parent_path`` is the child VPC subnet the binding lives under,
    ``subnet_path`` the target subnet it connects to.
    """

    init_tags = (Tag(TAG_SCOPE_SUBNET_BINDING_CR_UID),)

    def __init__(self) -> None:
        super().__init__(
            SubnetConnectionBindingMap,
            {
                INDEX_BINDING_CR_UID: tag_index(TAG_SCOPE_SUBNET_BINDING_CR_UID),
                INDEX_NAMESPACED_NAME: _binding_cr_namespaced_name,
                INDEX_TARGET_SUBNET: attribute_index("subnet_path"),
                INDEX_CHILD_SUBNET: attribute_index("parent_path"),
            },
        )

    def list_by_cr_uid(self, uid: str) -> list[SubnetConnectionBindingMap]:
        return self.get_by_index(INDEX_BINDING_CR_UID, uid)

    def list_by_cr_name(self, name: str, namespace: str) -> list[SubnetConnectionBindingMap]:
        return self.get_by_index(INDEX_NAMESPACED_NAME, f"{namespace}/{name}")

    def list_by_target_subnet(self, path: str) -> list[SubnetConnectionBindingMap]:
        return self.get_by_index(INDEX_TARGET_SUBNET, path)

    def list_by_child_subnet(self, path: str) -> list[SubnetConnectionBindingMap]:
        return self.get_by_index(INDEX_CHILD_SUBNET, path)

    def list_cr_uids(self) -> set[str]:
        return set(self.index_values(INDEX_BINDING_CR_UID))
