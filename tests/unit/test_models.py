"""Unit tests for resource, custom resource, snapshot and result models."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.nsxsync.models.conditions import (
    Condition,
    ConditionReason,
    condition_for_error,
    merge_condition,
    ready_condition,
)
from src.nsxsync.models.crs import AccessMode, ChildSubnet, SubnetBinding
from src.nsxsync.models.resources import (
    IPPoolBlockSubnet,
    PolicyNatRule,
    Segment,
    Tag,
    resource_from_dict,
)
from src.nsxsync.models.results import RealizedSubnet, ReconcileResult
from src.nsxsync.utils.exceptions import (
    AllocationExhaustedError,
    DependencyNotReadyError,
    IPBlockExhaustedError,
    NSXAPIError,
)
from tests.factories import make_parent_config


class TestPolicyResource:
    """Test the tagged resource variants."""

    def test_segment_from_nsx_body(self):
        """Test an NSX body is read into a Segment, unknown keys ignored."""
        body = {
            "resource_type": "Segment",
            "id": "cs_u1",
            "display_name": "cs-cs1",
            "path": "/infra/segments/cs_u1",
            "parent_path": "/infra",
            "connectivity_path": "/infra/tier-1s/t1",
            "subnets": [{"gateway_address": "10.0.0.1/28", "network": "10.0.0.0/28"}],
            "advanced_config": {"address_pool_paths": ["/infra/ip-pools/ipc_u1"], "hybrid": False},
            "tags": [{"scope": "nsx-op/childsubnet_uid", "tag": "u1"}],
            "_revision": 3,
            "_create_user": "admin",
        }

        segment = resource_from_dict(body)

        assert isinstance(segment, Segment)
        assert segment.gateway_addresses == ["10.0.0.1/28"]
        assert segment.address_pool_paths == ["/infra/ip-pools/ipc_u1"]
        assert segment.revision == 3
        assert segment.tag_values("nsx-op/childsubnet_uid") == ["u1"]

    def test_to_dict_omits_read_only_fields(self):
        """Test path, parent_path and revision are never sent."""
        pool_subnet = IPPoolBlockSubnet(
            id="ibs_u1",
            path="/infra/ip-pools/ipc_u1/ip-subnets/ibs_u1",
            parent_path="/infra/ip-pools/ipc_u1",
            revision=2,
            size=16,
            ip_block_path="/infra/ip-blocks/b1",
        )

        body = pool_subnet.to_dict()

        assert body == {
            "resource_type": "IpAddressPoolBlockSubnet",
            "id": "ibs_u1",
            "size": 16,
            "ip_block_path": "/infra/ip-blocks/b1",
        }

    def test_tombstone_serialized(self):
        """Test marked_for_delete appears only when set."""
        rule = PolicyNatRule(id="pnr_u1_0", action="SNAT", source_network="10.0.0.0/28")

        assert "marked_for_delete" not in rule.to_dict()
        assert rule.mark_for_delete().to_dict()["marked_for_delete"] is True

    def test_value_ignores_metadata_and_tag_order(self):
        """Test value() only covers semantic fields."""
        tags = [Tag("b", "2"), Tag("a", "1")]
        first = Segment(id="s", tags=tags, path="/x", revision=1, connectivity_path="/t1")
        second = Segment(id="s", tags=list(reversed(tags)), path="/y", revision=9, connectivity_path="/t1")

        assert first.value() == second.value()
        second.connectivity_path = "/t2"
        assert first.value() != second.value()

    def test_clone_is_deep(self):
        """Test a clone does not share tag lists."""
        segment = Segment(id="s", tags=[Tag("a", "1")])

        clone = segment.clone()
        clone.tags.append(Tag("b", "2"))

        assert len(segment.tags) == 1

    def test_unknown_resource_type(self):
        """Test an unregistered kind is rejected."""
        with pytest.raises(ValueError, match="Unsupported resource_type"):
            resource_from_dict({"resource_type": "LoadBalancer", "id": "lb"})

    def test_tag_without_value(self):
        """Test a scope-only tag."""
        tag = Tag.from_dict({"scope": "ncp/cluster"})

        assert tag.tag is None
        assert tag.to_dict() == {"scope": "ncp/cluster"}


class TestCustomResources:
    """Test custom resource inputs."""

    def test_child_subnet_camel_case(self):
        """Test manifest keys are accepted."""
        cr = ChildSubnet.model_validate(
            {
                "metadata": {"uid": "u1", "name": "cs1", "namespace": "ns1"},
                "spec": {"parent": "vnet1", "subnetPrefixLength": 28, "accessMode": "Public"},
                "status": {"vlan": 4, "ipAddresses": ["10.0.0.1/28"]},
            }
        )

        assert cr.spec.access_mode == AccessMode.PUBLIC
        assert cr.spec.subnet_prefix_length == 28
        assert cr.status.vlan == 4
        assert cr.metadata.namespaced_name == "ns1/cs1"

    def test_child_subnet_defaults(self):
        """Test defaults of an empty spec."""
        cr = ChildSubnet.model_validate(
            {"metadata": {"uid": "u1", "name": "cs1", "namespace": "ns1"}, "spec": {"parent": "vnet1"}}
        )

        assert cr.spec.access_mode == AccessMode.PRIVATE
        assert cr.spec.subnet_prefix_length == 24
        assert cr.status.vlan is None

    @pytest.mark.parametrize(
        "ip_version,prefix,valid",
        [("IPv4", 32, True), ("IPv4", 40, False), ("IPv6", 64, True), ("IPv6", 120, True)],
    )
    def test_child_subnet_prefix_per_ip_version(self, ip_version, prefix, valid):
        """Test the prefix length is bounded by the address family."""
        data = {
            "metadata": {"uid": "u1", "name": "cs1", "namespace": "ns1"},
            "spec": {"parent": "vnet1", "ipVersion": ip_version, "subnetPrefixLength": prefix},
        }

        if valid:
            assert ChildSubnet.model_validate(data).spec.subnet_prefix_length == prefix
        else:
            with pytest.raises(PydanticValidationError, match="exceeds 32 for IPv4"):
                ChildSubnet.model_validate(data)

    @pytest.mark.parametrize("vlan", [0, 4095])
    def test_subnet_binding_vlan_range(self, vlan):
        """Test VLANs outside [1, 4094] are rejected."""
        with pytest.raises(PydanticValidationError):
            SubnetBinding.model_validate(
                {
                    "metadata": {"uid": "sb1", "name": "b", "namespace": "ns1"},
                    "spec": {"subnetName": "child", "targetSubnetName": "target", "vlanTrafficTag": vlan},
                }
            )


class TestParentConfig:
    """Test parent configuration equality."""

    def test_segment_order_irrelevant(self):
        """Test set equality over segment paths."""
        first = make_parent_config(segment_ids=("p1", "p2"))
        second = make_parent_config(segment_ids=("p2", "p1"))

        assert first.equals(second)
        assert first.namespaced_name == "ns1/vnet1"

    def test_differences_detected(self):
        """Test a changed segment set or block path is a difference."""
        base = make_parent_config()

        assert not base.equals(make_parent_config(segment_ids=("p1",)))
        assert not base.equals(make_parent_config(public_ip_block_path="/infra/ip-blocks/other"))
        assert not base.equals(None)


class TestResults:
    """Test reconcile results and conditions."""

    def test_realized_subnet_gateway_cidr(self):
        """Test the gateway carries the subnet prefix."""
        realized = RealizedSubnet(cidr="192.168.4.0/26", gateway_ip="192.168.4.1")

        assert realized.prefix_length == 26
        assert realized.gateway_cidr == "192.168.4.1/26"

    def test_pending_result(self):
        """Test the requeue result is not ready."""
        result = ReconcileResult.pending("not realized")

        assert result.requeue is True
        assert result.ready is False
        assert result.condition.to_dict() == {
            "type": "Ready",
            "status": "False",
            "reason": "RealizationPending",
            "message": "not realized",
        }

    def test_ready_result(self):
        """Test a plain success result."""
        assert ReconcileResult(path="/infra/segments/cs_u1", vlan=1).ready is True

    @pytest.mark.parametrize(
        "error,reason",
        [
            (IPBlockExhaustedError("/infra/ip-blocks/b1"), ConditionReason.IPBLOCK_EXHAUSTED),
            (AllocationExhaustedError("cs", ["/infra/segments/p1"]), ConditionReason.ALLOCATION_EXHAUSTED),
            (DependencyNotReadyError("missing"), ConditionReason.DEPENDENCY_NOT_READY),
            (NSXAPIError("boom", status_code=500), ConditionReason.CONFIGURE_FAILED),
        ],
    )
    def test_condition_for_error(self, error, reason):
        """Test errors map onto catalog reasons."""
        condition = condition_for_error(error)

        assert condition.status is False
        assert condition.reason == reason
        assert condition.message == str(error)

    def test_merge_keeps_other_types(self):
        """Test merging replaces only the same condition type."""
        other = Condition(type="Synced", status=True)

        merged, changed = merge_condition([other, ready_condition()], condition_for_error(ValueError("x")))

        assert changed is True
        assert [c.type for c in merged] == ["Ready", "Synced"]
        assert merged[0].status is False
