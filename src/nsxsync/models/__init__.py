"""Data models for the NSX resource synchronizer."""

from .conditions import Condition, ConditionReason, condition_for_error
from .crs import AccessMode, ChildSubnet, ObjectMeta, SubnetBinding, VirtualNetwork
from .parent_config import ParentConfig
from .resources import (
    IPBlock,
    IPPool,
    IPPoolBlockSubnet,
    PolicyNat,
    PolicyNatRule,
    PolicyResource,
    Segment,
    SegmentConnectionBindingMap,
    SubnetConnectionBindingMap,
    Tag,
    Tier1,
    resource_from_dict,
)
from .results import RealizedSubnet, ReconcileResult

__all__ = [
    # Resources
    "PolicyResource",
    "Tag",
    "IPBlock",
    "IPPool",
    "IPPoolBlockSubnet",
    "Segment",
    "SegmentConnectionBindingMap",
    "Tier1",
    "PolicyNat",
    "PolicyNatRule",
    "SubnetConnectionBindingMap",
    "resource_from_dict",
    # Custom resources
    "AccessMode",
    "ObjectMeta",
    "ChildSubnet",
    "VirtualNetwork",
    "SubnetBinding",
    # State
    "ParentConfig",
    # Results
    "Condition",
    "ConditionReason",
    "condition_for_error",
    "RealizedSubnet",
    "ReconcileResult",
]
