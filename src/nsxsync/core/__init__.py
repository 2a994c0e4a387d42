"""Core synchronization engine components."""

from .allocator import ExhaustedIPBlockSet, RealizedStatePoller, next_vlan, parse_exhausted_block_path
from .compensation import ProvisioningSaga, SagaState
from .diff_engine import DiffEngine, compare_resources
from .parent_config import ParentConfigResolver
from .policy_tree import build_policy_tree, wrap_child, wrap_infra
from .store import ResourceStore

__all__ = [
    "ResourceStore",
    "DiffEngine",
    "compare_resources",
    "build_policy_tree",
    "wrap_child",
    "wrap_infra",
    "next_vlan",
    "ExhaustedIPBlockSet",
    "RealizedStatePoller",
    "parse_exhausted_block_path",
    "ProvisioningSaga",
    "SagaState",
    "ParentConfigResolver",
]
