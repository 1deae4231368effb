"""Tests for child/descendant index maintenance and repair."""
import random

from tasktree_core import ancestry, feature_tree, store
from tasktree_core.models import Feature
from tasktree_core.schemas import FeatureCreate


def _create(db, owner, name, parent=None):
    data = FeatureCreate(name=name, parent_fid=parent.fid if parent else None, is_active=True)
    return feature_tree.create_feature(db, owner, data).unwrap()


def _node(id_, fid, parent_fid=None):
    return Feature(id=id_, fid=fid, owner_id="u", name=fid, parent_fid=parent_fid, child_ids=[], all_child_ids=[])


class TestComputeClosure:
    """Indexes recomputed from parent pointers alone."""

    def test_children_and_descendants(self):
        nodes = [
            _node(1, "billing"),
            _node(2, "invoices", "billing"),
            _node(3, "line-items", "invoices"),
            _node(4, "refunds", "billing"),
            _node(5, "reports"),
        ]

        closure = ancestry.compute_closure(nodes)

        assert closure[1] == ([2, 4], [2, 3, 4])
        assert closure[2] == ([3], [3])
        assert closure[3] == ([], [])
        assert closure[5] == ([], [])

    def test_dangling_parent_is_treated_as_root(self):
        closure = ancestry.compute_closure([_node(1, "orphan", "gone")])

        assert closure[1] == ([], [])

    def test_cycle_terminates(self):
        nodes = [_node(1, "a", "b"), _node(2, "b", "a")]

        closure = ancestry.compute_closure(nodes)

        assert closure[1] == ([2], [2])
        assert closure[2] == ([1], [1])


class TestCollectAncestors:
    """Upward walk from a parent to its root."""

    def test_nearest_first(self, db, owner):
        billing = _create(db, owner, "Billing")
        invoices = _create(db, owner, "Invoices", billing)
        line_items = _create(db, owner, "Line Items", invoices)

        ancestors = ancestry.collect_ancestors(db, owner, line_items.fid)

        assert ancestors == [line_items, invoices, billing]

    def test_none_parent(self, db, owner):
        assert ancestry.collect_ancestors(db, owner, None) == []

    def test_walk_reaches_root_of_deep_chain(self, db, owner):
        chain = [_create(db, owner, "Level 0")]
        for level in range(1, 80):
            chain.append(_create(db, owner, f"Level {level}", chain[-1]))

        ancestors = ancestry.collect_ancestors(db, owner, chain[-1].fid)

        assert ancestors == list(reversed(chain))

    def test_cycle_stops_walk(self, db, owner):
        billing = _create(db, owner, "Billing")
        invoices = _create(db, owner, "Invoices", billing)
        billing.parent_fid = invoices.fid
        db.commit()

        ancestors = ancestry.collect_ancestors(db, owner, invoices.fid)

        assert ancestors == [invoices, billing]


class TestIndexesStayExact:
    """Create/delete keep every cached index equal to its recomputed value."""

    def test_random_create_delete_sequence(self, db, owner):
        rng = random.Random(20261019)
        counter = 0
        for _ in range(60):
            nodes = store.get_all_features(db, owner)
            if nodes and rng.random() < 0.3:
                victim = rng.choice(nodes)
                feature_tree.delete_feature(db, owner, victim.fid).unwrap()
            else:
                counter += 1
                parent = rng.choice(nodes) if nodes and rng.random() < 0.8 else None
                _create(db, owner, f"Feature {counter}", parent)

            assert ancestry.find_index_drift(db, owner) == []

        nodes = store.get_all_features(db, owner)
        closure = ancestry.compute_closure(nodes)
        for node in nodes:
            expected_children, expected_all = closure[node.id]
            assert sorted(node.child_ids) == sorted(expected_children)
            assert sorted(node.all_child_ids) == sorted(expected_all)
            assert len(node.all_child_ids) == len(set(node.all_child_ids))


class TestDeepChains:
    """Indexes stay exact however deep the tree grows."""

    def test_deep_chain_create_and_delete(self, db, owner):
        chain = [_create(db, owner, "Level 0")]
        for level in range(1, 80):
            chain.append(_create(db, owner, f"Level {level}", chain[-1]))

        assert ancestry.find_index_drift(db, owner) == []
        assert chain[0].all_child_ids == [node.id for node in chain[1:]]

        feature_tree.delete_feature(db, owner, chain[70].fid).unwrap()

        assert ancestry.find_index_drift(db, owner) == []
        assert chain[0].all_child_ids == [node.id for node in chain[1:70]]
        assert chain[69].child_ids == []


class TestRepair:
    """Detect and repair drifted indexes."""

    def test_detects_drift(self, db, owner):
        billing = _create(db, owner, "Billing")
        invoices = _create(db, owner, "Invoices", billing)
        billing.child_ids = []
        billing.all_child_ids = [invoices.id, 999]
        db.commit()

        drift = ancestry.find_index_drift(db, owner)

        assert len(drift) == 1
        assert drift[0].fid == billing.fid
        assert drift[0].missing_children == [invoices.id]
        assert drift[0].unexpected_descendants == [999]
        assert drift[0].missing_descendants == []

    def test_repair_restores_indexes(self, db, owner):
        billing = _create(db, owner, "Billing")
        invoices = _create(db, owner, "Invoices", billing)
        refunds = _create(db, owner, "Refunds", billing)
        line_items = _create(db, owner, "Line Items", invoices)
        billing.child_ids = [refunds.id, refunds.id]
        billing.all_child_ids = []
        invoices.all_child_ids = [line_items.id, 12345]
        db.commit()

        result = feature_tree.repair_feature_indexes(db, owner)

        assert result.ok
        assert result.value == 2
        db.refresh(billing)
        db.refresh(invoices)
        assert billing.child_ids == [refunds.id, invoices.id]
        assert sorted(billing.all_child_ids) == sorted([invoices.id, refunds.id, line_items.id])
        assert invoices.all_child_ids == [line_items.id]
        assert ancestry.find_index_drift(db, owner) == []

    def test_repair_of_consistent_tree_is_noop(self, db, owner):
        billing = _create(db, owner, "Billing")
        _create(db, owner, "Invoices", billing)

        assert feature_tree.repair_feature_indexes(db, owner).unwrap() == 0
