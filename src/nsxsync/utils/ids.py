"""Deterministic identity helpers.

Ids are derived from the owning custom resource's UID, never generated
randomly, so rebuilding the desired state of the same CR always yields the
same NSX ids.
"""

from ..constants import (
    TAG_SCOPE_CLUSTER,
    TAG_SCOPE_NAMESPACE,
    TAG_SCOPE_VERSION,
    VERSION_TAG_VALUE,
)
from ..models.resources import Tag


def generate_id(uid: str, prefix: str = "", suffix: str = "", index: str = "") -> str:
    """
    Build a resource id as ``prefix_uid[_suffix][_index]``.

    Examples:
        generate_id("uuid1", "ibs")            -> "ibs_uuid1"
        generate_id("u1", "scbm", "p1")        -> "scbm_u1_p1"
        generate_id("uid", "pnr", index="0")   -> "pnr_uid_0"
    """
    parts = [p for p in (prefix, uid, suffix, index) if p]
    return "_".join(parts)


def generate_display_name(name: str, prefix: str = "", suffix: str = "") -> str:
    """Build a display name as ``prefix-name[-suffix]``."""
    parts = [p for p in (prefix, name, suffix) if p]
    return "-".join(parts)


def subnet_size(prefix_length: int, ip_version: str = "IPv4") -> int:
    """
    Return the number of addresses in a subnet of ``prefix_length``.

    Raises:
        ValueError: If the prefix length is outside the address family range.
    """
    bits = 128 if ip_version.lower() == "ipv6" else 32
    if not 0 < prefix_length <= bits:
        raise ValueError(f"invalid prefix length {prefix_length} for {ip_version}")
    return 1 << (bits - prefix_length)


def segment_id_from_path(path: str) -> str:
    """Return the last element of a policy path."""
    return path.rstrip("/").rsplit("/", 1)[-1]


def build_basic_tags(
    cluster: str,
    namespace: str,
    owner_name: str,
    owner_uid: str,
    name_scope: str,
    uid_scope: str,
) -> list[Tag]:
    """
    Tags written on every resource owned by a custom resource.

    Args:
        cluster: Cluster name.
        namespace: Namespace of the owning CR.
        owner_name: Name of the owning CR.
        owner_uid: UID of the owning CR.
        name_scope: Tag scope used for the owner name.
        uid_scope: Tag scope used for the owner UID (the durable owner link).
    """
    return [
        Tag(TAG_SCOPE_CLUSTER, cluster),
        Tag(TAG_SCOPE_VERSION, VERSION_TAG_VALUE),
        Tag(TAG_SCOPE_NAMESPACE, namespace),
        Tag(name_scope, owner_name),
        Tag(uid_scope, owner_uid),
    ]
