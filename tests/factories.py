"""Builders for custom resources, parent configurations and NSX bodies used across tests."""

from typing import Any

from src.nsxsync.constants import (
    TAG_SCOPE_NCP_CLUSTER,
    TAG_SCOPE_NCP_PROJECT_UID,
    TAG_SCOPE_NCP_VNET_UID,
)
from src.nsxsync.models.crs import (
    AccessMode,
    ChildSubnet,
    ChildSubnetSpec,
    ObjectMeta,
    SubnetBinding,
    SubnetBindingSpec,
    VirtualNetwork,
)
from src.nsxsync.models.parent_config import ParentConfig
from src.nsxsync.models.resources import IPBlock, Tag, Tier1
from src.nsxsync.nsx.response_models import RealizedAttribute, RealizedEntity

CLUSTER = "c1"
VNET_UID = "vnet-uid"
TIER1_PATH = "/infra/tier-1s/t1"
BLOCK_PATH = "/infra/ip-blocks/b1"
TZ_PATH = "/infra/sites/default/enforcement-points/default/transport-zones/tz1"
VPC_PATH = "/orgs/default/projects/p1/vpcs/v1"


def realized_entities(cidr: str = "10.0.0.0/28", gateway: str = "10.0.0.1") -> list[RealizedEntity]:
    return [
        RealizedEntity(
            entity_type="IpBlockSubnet",
            state="REALIZED",
            extended_attributes=[
                RealizedAttribute(key="cidr", values=[cidr]),
                RealizedAttribute(key="gateway_ip", values=[gateway]),
            ],
        )
    ]


def make_child_subnet(
    uid: str = "u1",
    name: str = "cs1",
    namespace: str = "ns1",
    parent: str = "vnet1",
    access_mode: AccessMode = AccessMode.PRIVATE,
    prefix: int = 28,
) -> ChildSubnet:
    return ChildSubnet(
        metadata=ObjectMeta(uid=uid, name=name, namespace=namespace),
        spec=ChildSubnetSpec(parent=parent, access_mode=access_mode, subnet_prefix_length=prefix),
    )


def make_parent_config(segment_ids: tuple[str, ...] = ("p1", "p2"), **overrides: Any) -> ParentConfig:
    config = ParentConfig(
        id=VNET_UID,
        name="vnet1",
        namespace="ns1",
        tier1_path=TIER1_PATH,
        transport_zone_path=TZ_PATH,
        segment_paths={f"/infra/segments/{s}" for s in segment_ids},
        public_ip_block_path=BLOCK_PATH,
        private_ip_block_path=BLOCK_PATH,
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def parent_segment_body(segment_id: str, vnet_uid: str = VNET_UID) -> dict[str, Any]:
    return {
        "resource_type": "Segment",
        "id": segment_id,
        "path": f"/infra/segments/{segment_id}",
        "connectivity_path": TIER1_PATH,
        "transport_zone_path": TZ_PATH,
        "tags": [{"scope": TAG_SCOPE_NCP_VNET_UID, "tag": vnet_uid}],
    }


def cluster_ip_block() -> IPBlock:
    return IPBlock(id="b1", path=BLOCK_PATH, cidr="10.0.0.0/16", tags=[Tag(TAG_SCOPE_NCP_CLUSTER, CLUSTER)])


def project_tier1(project_uid: str | None = "proj-uid") -> Tier1:
    tags = [Tag(TAG_SCOPE_NCP_PROJECT_UID, project_uid)] if project_uid else []
    return Tier1(id="t1", path=TIER1_PATH, tags=tags)


def make_virtual_network(uid: str = VNET_UID, name: str = "vnet1", namespace: str = "ns1") -> VirtualNetwork:
    return VirtualNetwork(metadata=ObjectMeta(uid=uid, name=name, namespace=namespace))


def make_subnet_binding(
    uid: str = "sb1",
    name: str = "binding1",
    namespace: str = "ns1",
    vlan: int | None = None,
) -> SubnetBinding:
    return SubnetBinding(
        metadata=ObjectMeta(uid=uid, name=name, namespace=namespace),
        spec=SubnetBindingSpec(subnet_name="child", target_subnet_name="target", vlan_traffic_tag=vlan),
    )
