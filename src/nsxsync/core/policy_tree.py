"""Hierarchical Intent Builder - pack many leaf writes into one request.

Architecture Overview:
---------------------
NSX has no cross-call transactions. A batch of leaf mutations addressed to
different parents must therefore reach the backend as a single hierarchical
PATCH against one root (``Infra`` or ``OrgRoot``). This module turns a flat
list of leaves into that nested body.

1. Parse: each leaf's ``parent_path`` is split into ordered
   (target type, id) segments, e.g.
   ``/orgs/default/projects/p1/vpcs/v1/subnets/s1`` becomes
   Org:default → Project:p1 → Vpc:v1 → Subnet:s1.
2. Merge: segments are inserted into one tree of ``HNode``. A node whose
   (type, id) already exists among its siblings is reused, so the tree has
   exactly one node per distinct ancestor whatever the insertion order.
3. Serialize: depth-first. The root emits only its children. Every ancestor
   becomes a ``ChildResourceReference`` (referenced, not modified). Leaves
   become their typed child wrapper (``ChildSubnetConnectionBindingMap`` ...),
   with their own merged children nested inside when a written resource is
   also the ancestor of another leaf.

A leaf whose path cannot be parsed is logged and skipped. An empty batch
yields ``None``, meaning there is nothing to send.

The typed wrappers (``wrap_child``, ``wrap_infra``) are also used directly
when the parent objects themselves are written, e.g. a segment together with
its binding maps.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from ..models.resources import PolicyResource

logger = structlog.get_logger(__name__)

ROOT_INFRA = "Infra"
ROOT_ORG = "OrgRoot"
CHILD_REFERENCE = "ChildResourceReference"

# First path element -> root resource type
ROOT_TYPES: dict[str, str] = {
    "infra": ROOT_INFRA,
    "orgs": ROOT_ORG,
}

# Path collection -> target type of the ChildResourceReference
COLLECTION_TYPES: dict[str, str] = {
    "orgs": "Org",
    "projects": "Project",
    "vpcs": "Vpc",
    "subnets": "Subnet",
    "ip-pools": "IpAddressPool",
    "ip-subnets": "IpAddressPoolBlockSubnet",
    "ip-blocks": "IpAddressBlock",
    "segments": "Segment",
    "segment-connection-binding-maps": "SegmentConnectionBindingMap",
    "tier-1s": "Tier1",
    "nat": "PolicyNat",
    "nat-rules": "PolicyNatRule",
    "subnet-connection-binding-maps": "SubnetConnectionBindingMap",
}


def parse_policy_path(path: str | None) -> tuple[str, list[tuple[str, str]]]:
    """
    Split a policy path into its root type and (target type, id) segments.

    Examples:
        "/infra/segments/cs_u1"
            -> ("Infra", [("Segment", "cs_u1")])
        "/orgs/default/projects/p1/vpcs/v1/subnets/s1"
            -> ("OrgRoot", [("Org", "default"), ("Project", "p1"),
                            ("Vpc", "v1"), ("Subnet", "s1")])

    Raises:
        ValueError: If the path is empty, has an unknown root or collection,
            or a collection without an id.
    """
    if not path or not path.startswith("/"):
        raise ValueError(f"invalid policy path: {path!r}")
    parts = [p for p in path.strip("/").split("/") if p]
    root_type = ROOT_TYPES.get(parts[0]) if parts else None
    if root_type is None:
        raise ValueError(f"unsupported policy path root: {path!r}")
    # /infra/<collection>/<id>/...; /orgs/<id>/<collection>/<id>/...
    if root_type == ROOT_INFRA:
        parts = parts[1:]
    if len(parts) % 2:
        raise ValueError(f"policy path has a collection without id: {path!r}")

    segments: list[tuple[str, str]] = []
    for collection, resource_id in zip(parts[::2], parts[1::2]):
        target_type = COLLECTION_TYPES.get(collection)
        if target_type is None:
            raise ValueError(f"unsupported collection {collection!r} in {path!r}")
        segments.append((target_type, resource_id))
    return root_type, segments


def wrap_child(resource: PolicyResource, children: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    """
    Wrap a resource in its typed child wrapper.

    Args:
        resource: Resource to embed (its tombstone flag is carried over)
        children: Serialized child wrappers to nest inside the resource body

    Returns:
        e.g. ``{"resource_type": "ChildSegment", "id": ..., "marked_for_delete": ...,
        "Segment": {...}}``
    """
    body = resource.to_dict()
    nested = list(resource.children) + list(children or [])
    if nested:
        body["children"] = nested
    return {
        "resource_type": resource.child_type,
        "id": resource.id,
        "marked_for_delete": resource.marked_for_delete,
        resource.child_field: body,
    }


def wrap_reference(target_type: str, resource_id: str, children: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "resource_type": CHILD_REFERENCE,
        "id": resource_id,
        "target_type": target_type,
        "marked_for_delete": False,
        "children": children,
    }


def wrap_infra(children: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Outermost Infra body. No id. ``None`` when there are no children."""
    if not children:
        return None
    return {"resource_type": ROOT_INFRA, "children": children}


@dataclass
class HNode:
    """
    One address segment of the tree under construction.

    Nodes of written resources carry the resource. Pure ancestors carry
    only type and id and serialize as references.
    """

    resource_type: str
    resource_id: str
    resource: PolicyResource | None = None
    children: list["HNode"] = field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        return self.resource is not None

    def merge_child(self, node: "HNode") -> None:
        """
        Insert ``node``, reusing an existing sibling with the same (type, id).

        A leaf that is also the ancestor of another leaf (a segment written
        together with its binding maps) keeps both its resource and the
        merged children.
        """
        for existing in self.children:
            if existing.resource_type != node.resource_type or existing.resource_id != node.resource_id:
                continue
            if node.is_leaf:
                if existing.is_leaf:
                    # Same leaf twice in one batch: the later write wins.
                    logger.debug("Replacing duplicate leaf", resource_type=node.resource_type, id=node.resource_id)
                existing.resource = node.resource
            for child in node.children:
                existing.merge_child(child)
            return
        self.children.append(node)

    def serialize(self) -> dict[str, Any]:
        children = [child.serialize() for child in self.children]
        if self.resource is not None:
            return wrap_child(self.resource, children)
        return wrap_reference(self.resource_type, self.resource_id, children)

    def count(self) -> int:
        """Number of nodes in this subtree, self included."""
        return 1 + sum(child.count() for child in self.children)


def _chain(segments: list[tuple[str, str]], leaf: PolicyResource) -> HNode:
    node = HNode(leaf.resource_type, leaf.id, resource=leaf)
    for target_type, resource_id in reversed(segments):
        node = HNode(target_type, resource_id, children=[node])
    return node


def build_policy_tree(leaves: Iterable[PolicyResource], root_type: str = ROOT_ORG) -> dict[str, Any] | None:
    """
    Build one hierarchical request body for ``leaves``.

    Each leaf is placed under the ancestors parsed from its ``parent_path``.
    Pure function: the leaves are not modified.

    Args:
        leaves: Resources to write (created, updated or tombstoned)
        root_type: ``OrgRoot`` or ``Infra``. Leaves addressed under another
            root are skipped.

    Returns:
        ``{"resource_type": root_type, "children": [...]}``, or ``None`` when
        no leaf could be placed.
    """
    root = HNode(root_type, "")
    placed = 0
    for leaf in leaves:
        try:
            leaf_root, segments = parse_policy_path(leaf.parent_path)
        except ValueError as e:
            logger.error(
                "Failed to place resource in policy tree, ignoring",
                resource_type=leaf.resource_type,
                id=leaf.id,
                parent_path=leaf.parent_path,
                error=str(e),
            )
            continue
        if leaf_root != root_type:
            logger.error(
                "Resource addressed under a different root, ignoring",
                id=leaf.id,
                parent_path=leaf.parent_path,
                root_type=root_type,
            )
            continue
        root.merge_child(_chain(segments, leaf))
        placed += 1

    if not placed:
        return None

    logger.debug("Built policy tree", root_type=root_type, leaves=placed, nodes=root.count() - 1)
    return {
        "resource_type": root_type,
        "children": [child.serialize() for child in root.children],
    }
