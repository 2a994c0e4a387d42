"""Tagged resource model for NSX policy objects.

Every backend object the synchronizer owns or reads is one variant of
``PolicyResource``. The set of variants is closed: each subclass registers
itself under its NSX ``resource_type`` and declares, in one place,

- its hierarchical child wrapper (``child_type`` / ``child_field``),
- which structural fields participate in diffing (``value_fields``),
- how its kind-specific payload maps to and from the wire format.

Stores, the diff engine and the hierarchical intent builder all dispatch on
these declarations instead of switching on type names.

Wire Format:
-----------
NSX policy bodies use snake_case keys. Tags are ``{"scope": ..., "tag": ...}``
pairs. ``path`` and ``parent_path`` are assigned by NSX and never sent back.
Fields starting with ``_`` (``_revision``, ``_create_time`` ...) are volatile
metadata: they are kept for reference but never compared.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, ClassVar

from ..constants import (
    RESOURCE_TYPE_IP_BLOCK,
    RESOURCE_TYPE_IP_POOL,
    RESOURCE_TYPE_IP_POOL_BLOCK_SUBNET,
    RESOURCE_TYPE_NAT_RULE,
    RESOURCE_TYPE_POLICY_NAT,
    RESOURCE_TYPE_SEGMENT,
    RESOURCE_TYPE_SEGMENT_BINDING_MAP,
    RESOURCE_TYPE_SUBNET_BINDING_MAP,
    RESOURCE_TYPE_TIER1,
)

RESOURCE_KINDS: dict[str, type["PolicyResource"]] = {}


@dataclass(frozen=True, order=True)
class Tag:
    """A scope/value annotation on an NSX resource."""

    scope: str
    tag: str | None = None

    def to_dict(self) -> dict[str, str]:
        data = {"scope": self.scope}
        if self.tag is not None:
            data["tag"] = self.tag
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Tag":
        return cls(scope=data.get("scope", ""), tag=data.get("tag"))


def filter_tags(tags: list[Tag], scope: str) -> list[str]:
    """Return the values of all tags with the given scope."""
    return [t.tag for t in tags if t.scope == scope and t.tag is not None]


@dataclass
class PolicyResource:
    """
    Base of all tagged NSX resources.

    Attributes:
        id: Stable id derived from the owner's UID plus a kind prefix
        display_name: Human readable name derived from the owner's name
        tags: Scope/value annotations (cluster, owner UID, correlation tags)
        path: Policy path assigned by NSX after first creation
        parent_path: Policy path of the parent object
        marked_for_delete: Tombstone flag
        children: Serialized child wrappers attached for a hierarchical write
        revision: NSX ``_revision`` counter (volatile, never compared)
    """

    resource_type: ClassVar[str] = ""
    child_type: ClassVar[str] = ""
    child_field: ClassVar[str] = ""
    value_fields: ClassVar[tuple[str, ...]] = ()

    id: str = ""
    display_name: str | None = None
    tags: list[Tag] = field(default_factory=list)
    path: str | None = None
    parent_path: str | None = None
    marked_for_delete: bool = False
    children: list[dict[str, Any]] = field(default_factory=list)
    revision: int | None = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if cls.resource_type:
            RESOURCE_KINDS[cls.resource_type] = cls

    # ------------------------------------------------------------------
    # Comparable contract
    # ------------------------------------------------------------------

    def key(self) -> str:
        """Primary key used by stores and the diff engine."""
        return self.id

    def value(self) -> tuple[Any, ...]:
        """
        Canonical, order-insensitive view of the semantically significant fields.

        Excludes path, revision and other backend metadata so that an object
        read back from NSX compares equal to the one that was written.
        """
        structural = []
        for name in self.value_fields:
            v = getattr(self, name)
            if isinstance(v, list):
                v = tuple(v)
            structural.append((name, v))
        return (
            self.id,
            self.display_name,
            tuple(sorted(self.tags, key=lambda t: (t.scope, t.tag or ""))),
            tuple(structural),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def tag_values(self, scope: str) -> list[str]:
        return filter_tags(self.tags, scope)

    def mark_for_delete(self) -> "PolicyResource":
        """Set the tombstone flag and return self."""
        self.marked_for_delete = True
        return self

    def clone(self) -> "PolicyResource":
        return copy.deepcopy(self)

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------

    def _payload(self) -> dict[str, Any]:
        """Kind-specific body fields. Overridden by variants."""
        return {}

    @classmethod
    def _payload_kwargs(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Kind-specific constructor arguments from a wire body."""
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize to an NSX policy body (read-only fields excluded)."""
        body: dict[str, Any] = {"resource_type": self.resource_type, "id": self.id}
        if self.display_name is not None:
            body["display_name"] = self.display_name
        if self.tags:
            body["tags"] = [t.to_dict() for t in self.tags]
        body.update({k: v for k, v in self._payload().items() if v is not None})
        if self.marked_for_delete:
            body["marked_for_delete"] = True
        if self.children:
            body["children"] = list(self.children)
        return body

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PolicyResource":
        """Build an instance from an NSX body, ignoring unknown keys."""
        return cls(
            id=data.get("id", ""),
            display_name=data.get("display_name"),
            tags=[Tag.from_dict(t) for t in data.get("tags") or []],
            path=data.get("path"),
            parent_path=data.get("parent_path"),
            marked_for_delete=bool(data.get("marked_for_delete", False)),
            revision=data.get("_revision"),
            **cls._payload_kwargs(data),
        )


@dataclass
class IPBlock(PolicyResource):
    """IpAddressBlock carved into pool subnets."""

    resource_type: ClassVar[str] = RESOURCE_TYPE_IP_BLOCK
    child_type: ClassVar[str] = "ChildIpAddressBlock"
    child_field: ClassVar[str] = "IpAddressBlock"
    value_fields: ClassVar[tuple[str, ...]] = ("cidr",)

    cidr: str | None = None

    def _payload(self) -> dict[str, Any]:
        return {"cidr": self.cidr}

    @classmethod
    def _payload_kwargs(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {"cidr": data.get("cidr")}


@dataclass
class IPPool(PolicyResource):
    resource_type: ClassVar[str] = RESOURCE_TYPE_IP_POOL
    child_type: ClassVar[str] = "ChildIpAddressPool"
    child_field: ClassVar[str] = "IpAddressPool"


@dataclass
class IPPoolBlockSubnet(PolicyResource):
    """Pool subnet of ``size`` addresses allocated from ``ip_block_path``."""

    resource_type: ClassVar[str] = RESOURCE_TYPE_IP_POOL_BLOCK_SUBNET
    child_type: ClassVar[str] = "ChildIpAddressPoolSubnet"
    child_field: ClassVar[str] = "IpAddressPoolSubnet"
    value_fields: ClassVar[tuple[str, ...]] = ("size", "ip_block_path")

    size: int | None = None
    ip_block_path: str | None = None

    def _payload(self) -> dict[str, Any]:
        return {"size": self.size, "ip_block_path": self.ip_block_path}

    @classmethod
    def _payload_kwargs(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {"size": data.get("size"), "ip_block_path": data.get("ip_block_path")}


@dataclass
class Segment(PolicyResource):
    resource_type: ClassVar[str] = RESOURCE_TYPE_SEGMENT
    child_type: ClassVar[str] = "ChildSegment"
    child_field: ClassVar[str] = "Segment"
    value_fields: ClassVar[tuple[str, ...]] = ("connectivity_path", "transport_zone_path")

    connectivity_path: str | None = None
    transport_zone_path: str | None = None
    gateway_addresses: list[str] = field(default_factory=list)
    address_pool_paths: list[str] = field(default_factory=list)

    def _payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "connectivity_path": self.connectivity_path,
            "transport_zone_path": self.transport_zone_path,
        }
        if self.gateway_addresses:
            payload["subnets"] = [{"gateway_address": gw} for gw in self.gateway_addresses]
        if self.address_pool_paths:
            payload["advanced_config"] = {"address_pool_paths": list(self.address_pool_paths)}
        return payload

    @classmethod
    def _payload_kwargs(cls, data: dict[str, Any]) -> dict[str, Any]:
        advanced = data.get("advanced_config") or {}
        return {
            "connectivity_path": data.get("connectivity_path"),
            "transport_zone_path": data.get("transport_zone_path"),
            "gateway_addresses": [
                s["gateway_address"] for s in data.get("subnets") or [] if s.get("gateway_address")
            ],
            "address_pool_paths": list(advanced.get("address_pool_paths") or []),
        }


@dataclass
class SegmentConnectionBindingMap(PolicyResource):
    """
    Binds a child segment (``parent_path``) to a parent segment
    (``segment_path``) over VLAN ``vlan_traffic_tag``.
    """

    resource_type: ClassVar[str] = RESOURCE_TYPE_SEGMENT_BINDING_MAP
    child_type: ClassVar[str] = "ChildSegmentConnectionBindingMap"
    child_field: ClassVar[str] = "SegmentConnectionBindingMap"
    value_fields: ClassVar[tuple[str, ...]] = ("segment_path", "vlan_traffic_tag")

    segment_path: str | None = None
    vlan_traffic_tag: int | None = None

    def _payload(self) -> dict[str, Any]:
        return {"segment_path": self.segment_path, "vlan_traffic_tag": self.vlan_traffic_tag}

    @classmethod
    def _payload_kwargs(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "segment_path": data.get("segment_path"),
            "vlan_traffic_tag": data.get("vlan_traffic_tag"),
        }


@dataclass
class Tier1(PolicyResource):
    resource_type: ClassVar[str] = RESOURCE_TYPE_TIER1
    child_type: ClassVar[str] = "ChildTier1"
    child_field: ClassVar[str] = "Tier1"


@dataclass
class PolicyNat(PolicyResource):
    resource_type: ClassVar[str] = RESOURCE_TYPE_POLICY_NAT
    child_type: ClassVar[str] = "ChildPolicyNat"
    child_field: ClassVar[str] = "PolicyNat"

    nat_type: str | None = None

    def _payload(self) -> dict[str, Any]:
        return {"nat_type": self.nat_type}

    @classmethod
    def _payload_kwargs(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {"nat_type": data.get("nat_type")}


@dataclass
class PolicyNatRule(PolicyResource):
    """SNAT / NO_SNAT rule matching one CIDR as source or destination."""

    resource_type: ClassVar[str] = RESOURCE_TYPE_NAT_RULE
    child_type: ClassVar[str] = "ChildPolicyNatRule"
    child_field: ClassVar[str] = "PolicyNatRule"
    value_fields: ClassVar[tuple[str, ...]] = ("action", "source_network", "destination_network")

    action: str | None = None
    source_network: str | None = None
    destination_network: str | None = None

    def _payload(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "source_network": self.source_network,
            "destination_network": self.destination_network,
        }

    @classmethod
    def _payload_kwargs(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "action": data.get("action"),
            "source_network": data.get("source_network"),
            "destination_network": data.get("destination_network"),
        }


@dataclass
class SubnetConnectionBindingMap(PolicyResource):
    """
    Binds a VPC subnet (``parent_path``) to a target subnet (``subnet_path``)
    over VLAN ``vlan_traffic_tag``.
    """

    resource_type: ClassVar[str] = RESOURCE_TYPE_SUBNET_BINDING_MAP
    child_type: ClassVar[str] = "ChildSubnetConnectionBindingMap"
    child_field: ClassVar[str] = "SubnetConnectionBindingMap"
    value_fields: ClassVar[tuple[str, ...]] = ("subnet_path", "vlan_traffic_tag")

    subnet_path: str | None = None
    vlan_traffic_tag: int | None = None

    def _payload(self) -> dict[str, Any]:
        return {"subnet_path": self.subnet_path, "vlan_traffic_tag": self.vlan_traffic_tag}

    @classmethod
    def _payload_kwargs(cls, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "subnet_path": data.get("subnet_path"),
            "vlan_traffic_tag": data.get("vlan_traffic_tag"),
        }


def resource_from_dict(data: dict[str, Any]) -> PolicyResource:
    """
    Build the registered variant for ``data["resource_type"]``.

    Raises:
        ValueError: If the resource type is not a known variant.
    """
    resource_type = data.get("resource_type", "")
    kind = RESOURCE_KINDS.get(resource_type)
    if kind is None:
        raise ValueError(f"Unsupported resource_type: {resource_type!r}")
    return kind.from_dict(data)

