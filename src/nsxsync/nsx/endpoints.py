"""Centralized API endpoint configuration for the NSX Policy API.

Usage:
    from nsxsync.nsx.endpoints import IntentPaths

    path = IntentPaths.IP_POOL_SUBNET.format(pool_id="ipc_u1", subnet_id="ibs_u1")
    # Returns: "/infra/ip-pools/ipc_u1/ip-subnets/ibs_u1"
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class NSXEndpoints:
    """
    NSX Policy API endpoint constants.

    All endpoints are relative to ``{base_url}/policy/api/v1/``.
    """

    # -------------------------------------------------------------------------
    # Hierarchical roots
    # -------------------------------------------------------------------------
    INFRA: str = "infra"
    ORG_ROOT: str = "org-root"

    # -------------------------------------------------------------------------
    # Search and realized state
    # -------------------------------------------------------------------------
    SEARCH_QUERY: str = "search/query"
    REALIZED_ENTITIES: str = "infra/realized-state/realized-entities"


@dataclass(frozen=True)
class IntentPaths:
    """Policy paths of resources written by the synchronizer (absolute)."""

    IP_POOL: str = "/infra/ip-pools/{pool_id}"
    IP_POOL_SUBNET: str = "/infra/ip-pools/{pool_id}/ip-subnets/{subnet_id}"
    SEGMENT: str = "/infra/segments/{segment_id}"
    NAT: str = "{tier1_path}/nat/{nat_id}"
