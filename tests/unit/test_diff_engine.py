"""Unit tests for the diff engine."""

from src.nsxsync.constants import TAG_SCOPE_CHILD_SUBNET_UID, TAG_SCOPE_CLUSTER
from src.nsxsync.core.diff_engine import DiffEngine, compare_resources
from src.nsxsync.models.resources import SegmentConnectionBindingMap, Tag


def binding(binding_id: str, vlan: int, segment: str = "/infra/segments/p1", **kwargs) -> SegmentConnectionBindingMap:
    return SegmentConnectionBindingMap(id=binding_id, segment_path=segment, vlan_traffic_tag=vlan, **kwargs)


class TestCompareResources:
    """Test the pure changed/stale computation."""

    def test_stale_binding_detected(self):
        """Test an existing key missing from desired is stale."""
        existing = [binding("scbm_u1_p1", 10), binding("scbm_u1_p2", 11, "/infra/segments/p2")]
        desired = [binding("scbm_u1_p1", 10)]

        changed, stale = compare_resources(existing, desired)

        assert changed == []
        assert [s.id for s in stale] == ["scbm_u1_p2"]

    def test_value_change_is_changed(self):
        """Test a desired item with a different value is changed."""
        changed, stale = compare_resources([binding("b1", 10)], [binding("b1", 12)])

        assert [c.vlan_traffic_tag for c in changed] == [12]
        assert stale == []

    def test_new_key_is_changed(self):
        """Test a desired item with no existing counterpart."""
        changed, stale = compare_resources([], [binding("b1", 1), binding("b2", 2)])

        assert [c.id for c in changed] == ["b1", "b2"]
        assert stale == []

    def test_identical_sets_no_changes(self):
        """Test identical sets produce nothing."""
        changed, stale = compare_resources([binding("b1", 1)], [binding("b1", 1)])

        assert changed == []
        assert stale == []

    def test_backend_metadata_ignored(self):
        """Test path and revision never cause a change."""
        existing = [binding("b1", 1, path="/infra/segments/cs/segment-connection-binding-maps/b1", revision=4)]

        changed, _ = compare_resources(existing, [binding("b1", 1)])

        assert changed == []

    def test_tag_order_ignored(self):
        """Test tags compare as a set."""
        tags = [Tag(TAG_SCOPE_CLUSTER, "c1"), Tag(TAG_SCOPE_CHILD_SUBNET_UID, "u1")]
        existing = [binding("b1", 1, tags=list(tags))]
        desired = [binding("b1", 1, tags=list(reversed(tags)))]

        changed, _ = compare_resources(existing, desired)

        assert changed == []

    def test_orders_preserved(self):
        """Test changed keeps desired order and stale keeps existing order."""
        existing = [binding("x3", 1), binding("x1", 1), binding("x2", 1)]
        desired = [binding("d2", 1), binding("d1", 1)]

        changed, stale = compare_resources(existing, desired)

        assert [c.id for c in changed] == ["d2", "d1"]
        assert [s.id for s in stale] == ["x3", "x1", "x2"]

    def test_inputs_not_mutated(self):
        """Test neither input is modified."""
        existing = [binding("b1", 1), binding("b2", 2)]
        desired = [binding("b1", 5)]

        compare_resources(existing, desired)

        assert [(b.id, b.vlan_traffic_tag, b.marked_for_delete) for b in existing] == [
            ("b1", 1, False),
            ("b2", 2, False),
        ]
        assert desired[0].vlan_traffic_tag == 5


class TestDiffEngine:
    """Test DiffEngine class."""

    def setup_method(self):
        self.engine = DiffEngine()

    def test_reconcile_set_tombstones_copies_of_stale(self):
        """Test stale items are returned tombstoned without touching the originals."""
        existing = [binding("b1", 1), binding("b2", 2)]
        desired = [binding("b1", 1), binding("b3", 3)]

        final = self.engine.reconcile_set(existing, desired)

        assert [(b.id, b.marked_for_delete) for b in final] == [("b3", False), ("b2", True)]
        assert existing[1].marked_for_delete is False

    def test_reconcile_set_empty_when_converged(self):
        """Test nothing to write for an unchanged set."""
        assert self.engine.reconcile_set([binding("b1", 1)], [binding("b1", 1)]) == []
