"""Desired-state builders for child subnets and subnet bindings.

Every id is derived from the owning CR's UID, every display name from its
name, so rebuilding the desired state of the same CR always yields the same
backend objects.

Naming:
------
    IP pool              ipc_<uid>                 ipc-<name>
    Pool subnet          ibs_<uid>                 ibs-<name>
    Child segment        cs_<uid>                  cs-<name>
    Segment binding      scbm_<uid>_<parentSeg>    scbm-<name>-<parentSeg>
    NAT rule             pnr_<uid>_<index>         pnr-<name>-<index>
    Subnet binding       sbm_<uid>_<targetSubnet>  sbm-<name>-<targetSubnet>
"""

from ..constants import (
    DEFAULT_NAT_ID,
    PREFIX_CHILD_SEGMENT,
    PREFIX_IP_POOL,
    PREFIX_IP_POOL_SUBNET,
    PREFIX_NAT_RULE,
    PREFIX_SEGMENT_BINDING_MAP,
    PREFIX_SUBNET_BINDING_MAP,
    TAG_SCOPE_CHILD_SUBNET_NAME,
    TAG_SCOPE_CHILD_SUBNET_UID,
    TAG_SCOPE_PARENT_CONFIG_UID,
    TAG_SCOPE_SUBNET_BINDING_CR_NAME,
    TAG_SCOPE_SUBNET_BINDING_CR_UID,
)
from ..models.crs import AccessMode, ChildSubnet, SubnetBinding
from ..models.parent_config import ParentConfig
from ..models.resources import (
    IPPool,
    IPPoolBlockSubnet,
    PolicyNat,
    PolicyNatRule,
    Segment,
    SegmentConnectionBindingMap,
    SubnetConnectionBindingMap,
    Tag,
)
from ..models.results import RealizedSubnet
from ..nsx.endpoints import IntentPaths
from ..utils.exceptions import ValidationError
from ..utils.ids import (
    build_basic_tags,
    generate_display_name,
    generate_id,
    segment_id_from_path,
    subnet_size,
)

NAT_ACTION_SNAT = "SNAT"
NAT_ACTION_NO_SNAT = "NO_SNAT"
NAT_TYPE_DEFAULT = "DEFAULT"


# =============================================================================
# Child subnet
# =============================================================================


def child_subnet_tags(cr: ChildSubnet, cluster: str) -> list[Tag]:
    return build_basic_tags(
        cluster,
        cr.metadata.namespace,
        cr.metadata.name,
        cr.metadata.uid,
        TAG_SCOPE_CHILD_SUBNET_NAME,
        TAG_SCOPE_CHILD_SUBNET_UID,
    )


def ip_pool_id(cr: ChildSubnet) -> str:
    return generate_id(cr.metadata.uid, PREFIX_IP_POOL)


def ip_pool_subnet_id(cr: ChildSubnet) -> str:
    return generate_id(cr.metadata.uid, PREFIX_IP_POOL_SUBNET)


def segment_id(cr: ChildSubnet) -> str:
    return generate_id(cr.metadata.uid, PREFIX_CHILD_SEGMENT)


def ip_pool_intent_path(cr: ChildSubnet) -> str:
    return IntentPaths.IP_POOL.format(pool_id=ip_pool_id(cr))


def ip_pool_subnet_intent_path(cr: ChildSubnet) -> str:
    return IntentPaths.IP_POOL_SUBNET.format(pool_id=ip_pool_id(cr), subnet_id=ip_pool_subnet_id(cr))


def segment_intent_path(cr: ChildSubnet) -> str:
    return IntentPaths.SEGMENT.format(segment_id=segment_id(cr))


def pool_subnet_size(cr: ChildSubnet) -> int:
    """
    Address count of the pool subnet requested by ``cr``.

    Raises:
        ValidationError: If the prefix length does not fit the IP version
    """
    try:
        return subnet_size(cr.spec.subnet_prefix_length, cr.spec.ip_version)
    except ValueError as e:
        raise ValidationError(
            f"invalid subnet size for ChildSubnet {cr.metadata.namespaced_name}: {e}", original_error=e
        ) from e


def ip_block_path_for(access_mode: AccessMode, config: ParentConfig) -> str:
    """Public subnets use the public block, all other modes the private one."""
    if access_mode == AccessMode.PUBLIC:
        return config.public_ip_block_path
    return config.private_ip_block_path


def build_ip_pool(cr: ChildSubnet, tags: list[Tag]) -> IPPool:
    return IPPool(
        id=ip_pool_id(cr),
        display_name=generate_display_name(cr.metadata.name, PREFIX_IP_POOL),
        tags=list(tags),
        path=ip_pool_intent_path(cr),
        parent_path="/infra",
    )


def build_ip_pool_subnet(cr: ChildSubnet, ip_block_path: str, tags: list[Tag]) -> IPPoolBlockSubnet:
    return IPPoolBlockSubnet(
        id=ip_pool_subnet_id(cr),
        display_name=generate_display_name(cr.metadata.name, PREFIX_IP_POOL_SUBNET),
        tags=list(tags),
        path=ip_pool_subnet_intent_path(cr),
        parent_path=ip_pool_intent_path(cr),
        size=pool_subnet_size(cr),
        ip_block_path=ip_block_path,
    )


def build_segment(
    cr: ChildSubnet, config: ParentConfig, realized: RealizedSubnet, tags: list[Tag]
) -> Segment:
    return Segment(
        id=segment_id(cr),
        display_name=generate_display_name(cr.metadata.name, PREFIX_CHILD_SEGMENT),
        tags=list(tags),
        path=segment_intent_path(cr),
        parent_path="/infra",
        connectivity_path=config.tier1_path or None,
        transport_zone_path=config.transport_zone_path or None,
        gateway_addresses=[realized.gateway_cidr],
        address_pool_paths=[ip_pool_intent_path(cr)],
    )


def build_segment_binding_maps(
    cr: ChildSubnet, config: ParentConfig, vlan: int, tags: list[Tag]
) -> list[SegmentConnectionBindingMap]:
    """One binding per parent segment, all on the same VLAN."""
    binding_tags = list(tags) + [Tag(TAG_SCOPE_PARENT_CONFIG_UID, config.id)]
    child_path = segment_intent_path(cr)
    bindings = []
    for parent_path in sorted(config.segment_paths):
        parent_id = segment_id_from_path(parent_path)
        binding_id = generate_id(cr.metadata.uid, PREFIX_SEGMENT_BINDING_MAP, parent_id)
        bindings.append(
            SegmentConnectionBindingMap(
                id=binding_id,
                display_name=generate_display_name(cr.metadata.name, PREFIX_SEGMENT_BINDING_MAP, parent_id),
                tags=list(binding_tags),
                path=f"{child_path}/segment-connection-binding-maps/{binding_id}",
                parent_path=child_path,
                segment_path=parent_path,
                vlan_traffic_tag=vlan,
            )
        )
    return bindings


def build_default_nat(tier1_path: str) -> PolicyNat:
    return PolicyNat(
        id=DEFAULT_NAT_ID,
        display_name=DEFAULT_NAT_ID,
        path=IntentPaths.NAT.format(tier1_path=tier1_path, nat_id=DEFAULT_NAT_ID),
        parent_path=tier1_path,
        nat_type=NAT_TYPE_DEFAULT,
    )


def build_nat_rules(
    cr: ChildSubnet, networks: list[str], tier1_path: str, tags: list[Tag]
) -> list[PolicyNatRule]:
    """
    Two rules per network: one matching it as source, one as destination.

    Public subnets are routed without translation (NO_SNAT).
    """
    action = NAT_ACTION_NO_SNAT if cr.spec.access_mode == AccessMode.PUBLIC else NAT_ACTION_SNAT
    nat_path = IntentPaths.NAT.format(tier1_path=tier1_path, nat_id=DEFAULT_NAT_ID)
    rules = []
    for i, network in enumerate(networks):
        for offset, is_source in ((0, True), (1, False)):
            index = str(i * 2 + offset)
            rule_id = generate_id(cr.metadata.uid, PREFIX_NAT_RULE, index=index)
            rules.append(
                PolicyNatRule(
                    id=rule_id,
                    display_name=generate_display_name(cr.metadata.name, PREFIX_NAT_RULE, index),
                    tags=list(tags),
                    path=f"{nat_path}/nat-rules/{rule_id}",
                    parent_path=nat_path,
                    action=action,
                    source_network=network if is_source else None,
                    destination_network=None if is_source else network,
                )
            )
    return rules


# =============================================================================
# Subnet binding
# =============================================================================


def subnet_binding_tags(cr: SubnetBinding, cluster: str) -> list[Tag]:
    return build_basic_tags(
        cluster,
        cr.metadata.namespace,
        cr.metadata.name,
        cr.metadata.uid,
        TAG_SCOPE_SUBNET_BINDING_CR_NAME,
        TAG_SCOPE_SUBNET_BINDING_CR_UID,
    )


def subnet_binding_map_id(cr: SubnetBinding, target_subnet_path: str) -> str:
    return generate_id(cr.metadata.uid, PREFIX_SUBNET_BINDING_MAP, segment_id_from_path(target_subnet_path))


def build_subnet_binding_map(
    cr: SubnetBinding,
    child_subnet_path: str,
    target_subnet_path: str,
    vlan: int,
    tags: list[Tag],
) -> SubnetConnectionBindingMap:
    """Binding under the child VPC subnet connecting it to ``target_subnet_path``."""
    target_id = segment_id_from_path(target_subnet_path)
    binding_id = subnet_binding_map_id(cr, target_subnet_path)
    return SubnetConnectionBindingMap(
        id=binding_id,
        display_name=generate_display_name(cr.metadata.name, PREFIX_SUBNET_BINDING_MAP, target_id),
        tags=list(tags),
        path=f"{child_subnet_path}/subnet-connection-binding-maps/{binding_id}",
        parent_path=child_subnet_path,
        subnet_path=target_subnet_path,
        vlan_traffic_tag=vlan,
    )
