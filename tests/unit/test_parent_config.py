"""Unit tests for the parent configuration resolver."""

import pytest

from src.nsxsync.core.parent_config import ParentConfigResolver
from src.nsxsync.core.stores import IPBlockStore, ParentConfigStore, SegmentStore, Tier1Store
from src.nsxsync.models.resources import IPBlock, Segment, Tag
from src.nsxsync.utils.exceptions import ValidationError
from tests.factories import (
    BLOCK_PATH,
    CLUSTER,
    TIER1_PATH,
    TZ_PATH,
    VNET_UID,
    cluster_ip_block,
    parent_segment_body,
    project_tier1,
)


def make_resolver(vpc_enabled: bool = False) -> ParentConfigResolver:
    return ParentConfigResolver(
        parent_segments=SegmentStore(is_parent=True),
        ip_blocks=IPBlockStore(),
        tier1s=Tier1Store(),
        configs=ParentConfigStore(),
        cluster=CLUSTER,
        vpc_enabled=vpc_enabled,
    )


def add_parent_segments(resolver: ParentConfigResolver, *segment_ids: str) -> None:
    resolver.parent_segments.apply([Segment.from_dict(parent_segment_body(s)) for s in segment_ids])


class TestResolve:
    """Test snapshot resolution from the caches."""

    def test_no_segments_is_empty_config(self):
        """Test a network without parent segments resolves to an empty snapshot."""
        resolver = make_resolver()

        config = resolver.resolve(VNET_UID, "vnet1", "ns1")

        assert config.segment_paths == set()
        assert config.tier1_path == ""
        assert config.private_ip_block_path == ""

    def test_cluster_block_without_vpc(self):
        """Test both access modes use the shared cluster block."""
        resolver = make_resolver()
        add_parent_segments(resolver, "p1", "p2")
        resolver.ip_blocks.apply(cluster_ip_block())

        config = resolver.resolve(VNET_UID, "vnet1", "ns1")

        assert config.segment_paths == {"/infra/segments/p1", "/infra/segments/p2"}
        assert config.tier1_path == TIER1_PATH
        assert config.transport_zone_path == TZ_PATH
        assert config.private_ip_block_path == BLOCK_PATH
        assert config.public_ip_block_path == BLOCK_PATH

    def test_missing_cluster_block_raises(self):
        """Test the shared block is required when VPC is disabled."""
        resolver = make_resolver()
        add_parent_segments(resolver, "p1")

        with pytest.raises(ValidationError, match="no IPBlock configured in cluster c1"):
            resolver.resolve(VNET_UID, "vnet1", "ns1")

    def test_project_block_with_vpc(self):
        """Test the block is found through the Tier-1's project UID."""
        resolver = make_resolver(vpc_enabled=True)
        add_parent_segments(resolver, "p1")
        resolver.tier1s.apply(project_tier1())
        resolver.ip_blocks.apply(
            IPBlock(
                id="proj",
                path="/infra/ip-blocks/proj",
                tags=[Tag("ncp/cluster", CLUSTER), Tag("ncp/project_uid", "proj-uid")],
            )
        )

        config = resolver.resolve(VNET_UID, "vnet1", "ns1")

        assert config.private_ip_block_path == "/infra/ip-blocks/proj"
        assert config.public_ip_block_path == "/infra/ip-blocks/proj"

    def test_vpc_tier1_without_project_tag_raises(self):
        """Test an untagged Tier-1 is a validation error."""
        resolver = make_resolver(vpc_enabled=True)
        add_parent_segments(resolver, "p1")
        resolver.tier1s.apply(project_tier1(project_uid=None))

        with pytest.raises(ValidationError, match="unable to find Namespace ID from tier1"):
            resolver.resolve(VNET_UID, "vnet1", "ns1")

    def test_vpc_uncached_tier1_leaves_blocks_empty(self):
        """Test a Tier-1 missing from the cache is not an error."""
        resolver = make_resolver(vpc_enabled=True)
        add_parent_segments(resolver, "p1")

        config = resolver.resolve(VNET_UID, "vnet1", "ns1")

        assert config.tier1_path == TIER1_PATH
        assert config.private_ip_block_path == ""


class TestApply:
    """Test change detection and listener notification."""

    @pytest.mark.asyncio
    async def test_apply_changed_then_unchanged(self, mocker):
        """Test listeners fire only on a change."""
        resolver = make_resolver()
        listener = mocker.AsyncMock()
        resolver.add_listener(listener)
        add_parent_segments(resolver, "p1")
        resolver.ip_blocks.apply(cluster_ip_block())
        config = resolver.resolve(VNET_UID, "vnet1", "ns1")

        assert await resolver.apply(config) is True
        assert await resolver.apply(resolver.resolve(VNET_UID, "vnet1", "ns1")) is False

        listener.assert_awaited_once()
        assert resolver.configs.get(VNET_UID).segment_paths == {"/infra/segments/p1"}

    @pytest.mark.asyncio
    async def test_listener_failure_keeps_old_snapshot(self, mocker):
        """Test a failed listener leaves the change pending for the next reconcile."""
        resolver = make_resolver()
        resolver.add_listener(mocker.AsyncMock(side_effect=RuntimeError("refresh failed")))
        add_parent_segments(resolver, "p1")
        resolver.ip_blocks.apply(cluster_ip_block())
        config = resolver.resolve(VNET_UID, "vnet1", "ns1")

        with pytest.raises(RuntimeError, match="refresh failed"):
            await resolver.apply(config)

        assert resolver.configs.get(VNET_UID) is None
        assert resolver.compare(config) is True

    @pytest.mark.asyncio
    async def test_segment_added_is_a_change(self):
        """Test a new parent segment changes the snapshot."""
        resolver = make_resolver()
        add_parent_segments(resolver, "p1")
        resolver.ip_blocks.apply(cluster_ip_block())
        await resolver.apply(resolver.resolve(VNET_UID, "vnet1", "ns1"))

        add_parent_segments(resolver, "p3")

        assert resolver.compare(resolver.resolve(VNET_UID, "vnet1", "ns1")) is True

    @pytest.mark.asyncio
    async def test_remove(self):
        """Test removing a snapshot."""
        resolver = make_resolver()
        add_parent_segments(resolver, "p1")
        resolver.ip_blocks.apply(cluster_ip_block())
        await resolver.apply(resolver.resolve(VNET_UID, "vnet1", "ns1"))

        removed = resolver.remove(VNET_UID)

        assert removed.marked_for_delete is True
        assert resolver.configs.get(VNET_UID) is None
        assert resolver.remove(VNET_UID) is None
