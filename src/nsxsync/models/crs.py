"""Normalized custom-resource inputs.

The controller layer hands the synchronizer plain specs; these pydantic
models validate them at the boundary. Field aliases accept the camelCase
keys used in the Kubernetes manifests.
"""

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from ..constants import VLAN_MAX, VLAN_MIN


class AccessMode(str, Enum):
    """Reachability of a child subnet's addresses."""

    PUBLIC = "Public"
    PRIVATE = "Private"
    PROJECT = "Project"


class ObjectMeta(BaseModel):
    """Owner identity of a custom resource."""

    uid: str
    name: str
    namespace: str

    model_config = {"extra": "allow"}

    @property
    def namespaced_name(self) -> str:
        return f"{self.namespace}/{self.name}"


class ChildSubnetSpec(BaseModel):
    parent: str = Field(..., description="Name of the VirtualNetwork in the same namespace")
    ip_version: str = Field("IPv4", alias="ipVersion")
    subnet_prefix_length: int = Field(24, alias="subnetPrefixLength", ge=1, le=128)
    access_mode: AccessMode = Field(AccessMode.PRIVATE, alias="accessMode")

    model_config = {"extra": "allow", "populate_by_name": True}

    @model_validator(mode="after")
    def validate_prefix_length(self) -> "ChildSubnetSpec":
        max_prefix = 128 if self.ip_version.lower() == "ipv6" else 32
        if self.subnet_prefix_length > max_prefix:
            raise ValueError(
                f"subnetPrefixLength {self.subnet_prefix_length} exceeds {max_prefix} for {self.ip_version}"
            )
        return self


class ChildSubnetStatus(BaseModel):
    nsx_resource_path: str | None = Field(None, alias="nsxResourcePath")
    ip_addresses: list[str] = Field(default_factory=list, alias="ipAddresses")
    vlan: int | None = None

    model_config = {"extra": "allow", "populate_by_name": True}


class ChildSubnet(BaseModel):
    """A subnet carved from an IP block and bound to its parent's segments."""

    metadata: ObjectMeta
    spec: ChildSubnetSpec
    status: ChildSubnetStatus = Field(default_factory=ChildSubnetStatus)

    model_config = {"extra": "allow"}


class VirtualNetwork(BaseModel):
    """Upstream network whose segments are the parents of child subnets."""

    metadata: ObjectMeta

    model_config = {"extra": "allow"}


class SubnetBindingSpec(BaseModel):
    """
    Binds one child subnet to target subnets.

    Exactly one of ``target_subnet_name`` / ``target_subnet_set_name`` is set.
    ``vlan_traffic_tag`` is optional; when empty a free VLAN is chosen.
    """

    subnet_name: str = Field(..., alias="subnetName")
    target_subnet_name: str | None = Field(None, alias="targetSubnetName")
    target_subnet_set_name: str | None = Field(None, alias="targetSubnetSetName")
    vlan_traffic_tag: int | None = Field(None, alias="vlanTrafficTag")

    model_config = {"extra": "allow", "populate_by_name": True}

    @field_validator("vlan_traffic_tag")
    @classmethod
    def validate_vlan(cls, v: int | None) -> int | None:
        if v is not None and not VLAN_MIN <= v <= VLAN_MAX:
            raise ValueError(f"vlan_traffic_tag must be within [{VLAN_MIN}, {VLAN_MAX}]")
        return v


class SubnetBinding(BaseModel):
    metadata: ObjectMeta
    spec: SubnetBindingSpec

    model_config = {"extra": "allow"}
