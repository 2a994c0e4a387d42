"""Constants for the NSX resource synchronizer.

Named values for tag scopes, id prefixes, resource types and the fixed
limits used by allocation and realization polling.
"""

# -----------------------------------------------------------------------------
# Tag scopes
# -----------------------------------------------------------------------------
# The owner-UID scopes are the only link from an NSX object back to its
# Kubernetes owner after a restart. Changing a value orphans existing objects.

TAG_SCOPE_CLUSTER: str = "nsx-op/cluster"
TAG_SCOPE_VERSION: str = "nsx-op/version"
TAG_SCOPE_NAMESPACE: str = "nsx-op/namespace"
TAG_SCOPE_CHILD_SUBNET_NAME: str = "nsx-op/childsubnet_name"
TAG_SCOPE_CHILD_SUBNET_UID: str = "nsx-op/childsubnet_uid"
TAG_SCOPE_PARENT_CONFIG_UID: str = "nsx-op/parent_config_uid"
TAG_SCOPE_SUBNET_BINDING_CR_NAME: str = "nsx-op/subnetbinding_name"
TAG_SCOPE_SUBNET_BINDING_CR_UID: str = "nsx-op/subnetbinding_uid"

# Scopes written by the upstream network plugin, read-only here.
TAG_SCOPE_NCP_CLUSTER: str = "ncp/cluster"
TAG_SCOPE_NCP_PROJECT: str = "ncp/project"
TAG_SCOPE_NCP_PROJECT_UID: str = "ncp/project_uid"
TAG_SCOPE_NCP_VNET_UID: str = "ncp/vnet_uid"

VERSION_TAG_VALUE: str = "1.0.0"


# -----------------------------------------------------------------------------
# Resource types (NSX "resource_type" values)
# -----------------------------------------------------------------------------

RESOURCE_TYPE_IP_BLOCK: str = "IpAddressBlock"
RESOURCE_TYPE_IP_POOL: str = "IpAddressPool"
RESOURCE_TYPE_IP_POOL_BLOCK_SUBNET: str = "IpAddressPoolBlockSubnet"
RESOURCE_TYPE_SEGMENT: str = "Segment"
RESOURCE_TYPE_SEGMENT_BINDING_MAP: str = "SegmentConnectionBindingMap"
RESOURCE_TYPE_TIER1: str = "Tier1"
RESOURCE_TYPE_POLICY_NAT: str = "PolicyNat"
RESOURCE_TYPE_NAT_RULE: str = "PolicyNatRule"
RESOURCE_TYPE_SUBNET_BINDING_MAP: str = "SubnetConnectionBindingMap"


# -----------------------------------------------------------------------------
# Id prefixes
# -----------------------------------------------------------------------------

PREFIX_IP_POOL: str = "ipc"
PREFIX_IP_POOL_SUBNET: str = "ibs"
PREFIX_CHILD_SEGMENT: str = "cs"
PREFIX_SEGMENT_BINDING_MAP: str = "scbm"
PREFIX_NAT_RULE: str = "pnr"
PREFIX_SUBNET_BINDING_MAP: str = "sbm"
DEFAULT_NAT_ID: str = "DEFAULT"


# -----------------------------------------------------------------------------
# Allocation and realization
# -----------------------------------------------------------------------------

VLAN_MIN: int = 1
VLAN_MAX: int = 4094

# "IpAddressBlock with max size does not have spare capacity to satisfy
# new block subnet of size"
ERROR_CODE_IPBLOCK_EXHAUSTED: int = 520012
EXHAUSTED_BLOCK_PATH_PATTERN: str = r"path=\[([^\]]+)\]"

REALIZED_ENTITY_IP_BLOCK_SUBNET: str = "IpBlockSubnet"
REALIZED_ATTR_CIDR: str = "cidr"
REALIZED_ATTR_GATEWAY: str = "gateway_ip"

DEFAULT_REALIZE_MAX_RETRIES: int = 3
DEFAULT_REALIZE_INTERVAL: float = 30.0


# -----------------------------------------------------------------------------
# Pagination Limits
# -----------------------------------------------------------------------------

DEFAULT_PAGE_SIZE: int = 1000
MAX_SEARCH_PAGES: int = 1000
