"""
tests/test_change_generator.py
───────────────────────────────
Tests for AddServiceChange and the add_service_changes() generator.

Test groups
────────────
Group 1: AddServiceChange.apply — well-formed vs inapplicable changes
Group 2: Candidate space         — bounds, existing carriers, finiteness
Group 3: Ordering                — existing nodes before new nodes, determinism
Group 4: New nodes               — growth allowance, shapes, ids
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import pytest

from layout_core.change import (
    NEW_NODE_ID_PREFIX,
    AddServiceChange,
    add_service_changes,
    new_node_shapes,
)
from layout_core.layout import ClusterLayout, NodeLayout
from planner.shared.models import (
    UNBOUNDED,
    Compatibilities,
    Constraints,
    LayoutConstraint,
    ServiceConstraint,
    SizeConstraint,
)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _make_layout(
    mapping: Dict[str, Iterable[str]],
    service_bounds: Optional[Dict[str, ServiceConstraint]] = None,
    size: tuple = (1, UNBOUNDED),
    hardwaretype: str = "medium",
    imagetype: str = "centos6",
) -> ClusterLayout:
    constraints = Constraints(
        service_constraints=service_bounds or {},
        size=SizeConstraint(min=size[0], max=size[1]),
    )
    return ClusterLayout(
        [
            NodeLayout(node_id, hardwaretype, imagetype, frozenset(services))
            for node_id, services in mapping.items()
        ],
        constraints,
    )


def _placements(changes: Iterable[AddServiceChange]) -> List[tuple]:
    """(sorted existing node ids, number of new nodes) per candidate."""
    return [(tuple(sorted(c.node_ids)), len(c.new_nodes)) for c in changes]


# ─────────────────────────────────────────────────────────────────────────────
# Group 1: AddServiceChange.apply
# ─────────────────────────────────────────────────────────────────────────────

class TestAddServiceChangeApply:

    def test_apply_adds_service_to_nodes(self) -> None:
        layout = _make_layout({"n1": ["a"], "n2": ["a"]})
        result = AddServiceChange("b", frozenset({"n2"})).apply(layout)
        assert result.to_mapping() == {"n1": {"a"}, "n2": {"a", "b"}}

    def test_apply_unknown_node_is_inapplicable(self) -> None:
        layout = _make_layout({"n1": []})
        assert AddServiceChange("b", frozenset({"ghost"})).apply(layout) is None

    def test_apply_duplicate_assignment_is_inapplicable(self) -> None:
        layout = _make_layout({"n1": ["b"]})
        assert AddServiceChange("b", frozenset({"n1"})).apply(layout) is None

    def test_apply_empty_change_is_inapplicable(self) -> None:
        layout = _make_layout({"n1": []})
        assert AddServiceChange("b").apply(layout) is None

    def test_apply_new_node_id_collision_is_inapplicable(self) -> None:
        layout = _make_layout({"n1": []})
        change = AddServiceChange("b", new_nodes=(NodeLayout("n1", "medium", "centos6"),))
        assert change.apply(layout) is None

    def test_apply_new_nodes_receive_service(self) -> None:
        layout = _make_layout({"n1": []})
        change = AddServiceChange("b", new_nodes=(NodeLayout("n2", "large", "ubuntu12"),))
        result = change.apply(layout)
        assert result.get("n2") == NodeLayout("n2", "large", "ubuntu12", frozenset({"b"}))
        assert change.placement_count == 1

    def test_apply_leaves_input_untouched(self) -> None:
        layout = _make_layout({"n1": ["a"]})
        AddServiceChange("b", frozenset({"n1"})).apply(layout)
        assert layout.to_mapping() == {"n1": {"a"}}


# ─────────────────────────────────────────────────────────────────────────────
# Group 2: Candidate space
# ─────────────────────────────────────────────────────────────────────────────

class TestCandidateSpace:

    def test_exact_bound_yields_single_node_subsets(self) -> None:
        layout = _make_layout(
            {"n1": ["a"], "n2": ["a"]},
            {"b": ServiceConstraint(min_count=1, max_count=1)},
        )
        assert _placements(add_service_changes(layout, "b")) == [
            (("n1",), 0),
            (("n2",), 0),
        ]

    def test_unconstrained_service_tries_every_nonempty_subset(self) -> None:
        layout = _make_layout({"n1": [], "n2": [], "n3": []})
        placements = _placements(add_service_changes(layout, "b"))
        assert len(placements) == 7
        assert placements[0] == (("n1",), 0)
        assert placements[-1] == (("n1", "n2", "n3"), 0)

    def test_min_count_bounds_subset_size(self) -> None:
        layout = _make_layout(
            {"n1": [], "n2": [], "n3": []},
            {"b": ServiceConstraint(min_count=2, max_count=3)},
        )
        sizes = {len(nodes) for nodes, _ in _placements(add_service_changes(layout, "b"))}
        assert sizes == {2, 3}

    def test_existing_carriers_count_toward_bounds(self) -> None:
        """b is already on n1; with exactly 2 allowed only one more node fits."""
        layout = _make_layout(
            {"n1": ["b"], "n2": [], "n3": []},
            {"b": ServiceConstraint(min_count=2, max_count=2)},
        )
        assert _placements(add_service_changes(layout, "b")) == [
            (("n2",), 0),
            (("n3",), 0),
        ]

    def test_service_at_max_has_no_candidates(self) -> None:
        layout = _make_layout(
            {"n1": ["b"], "n2": []},
            {"b": ServiceConstraint(min_count=1, max_count=1)},
        )
        assert list(add_service_changes(layout, "b")) == []

    def test_required_hardware_filters_existing_nodes(self) -> None:
        layout = ClusterLayout(
            [
                NodeLayout("n1", "small", "centos6"),
                NodeLayout("n2", "large", "centos6"),
            ],
            Constraints(service_constraints={
                "b": ServiceConstraint(max_count=1, required_hardware_types={"large"}),
            }),
        )
        assert _placements(add_service_changes(layout, "b")) == [(("n2",), 0)]

    def test_nodes_with_clashing_services_are_skipped(self) -> None:
        layout = ClusterLayout(
            [
                NodeLayout("n1", "medium", "centos6", frozenset({"a"})),
                NodeLayout("n2", "medium", "centos6"),
                NodeLayout("n3", "medium", "centos6", frozenset({"c"})),
            ],
            Constraints(layout=LayoutConstraint(cant_coexist=[{"a", "b"}, {"b", "c", "d"}])),
        )
        assert _placements(add_service_changes(layout, "b")) == [(("n2",), 0)]

    def test_generator_is_lazy_and_restartable(self) -> None:
        layout = _make_layout({f"n{i}": [] for i in range(12)})
        first = next(add_service_changes(layout, "b"))
        again = next(add_service_changes(layout, "b"))
        assert first == again


# ─────────────────────────────────────────────────────────────────────────────
# Group 3: Ordering
# ─────────────────────────────────────────────────────────────────────────────

class TestOrdering:

    def test_existing_nodes_before_new_nodes(self) -> None:
        """Below the minimum size: reuse-only candidates come before growth."""
        layout = _make_layout({"n1": [], "n2": []}, size=(3, 3))
        assert _placements(add_service_changes(layout, "b")) == [
            (("n1",), 0),
            (("n2",), 0),
            (("n1", "n2"), 0),
            ((), 1),
            (("n1",), 1),
            (("n2",), 1),
            (("n1", "n2"), 1),
        ]

    def test_same_layout_same_sequence(self) -> None:
        layout = _make_layout(
            {"n1": ["a"], "n2": [], "n3": ["a"]},
            {"b": ServiceConstraint(min_count=1, max_count=2)},
        )
        assert list(add_service_changes(layout, "b")) == list(add_service_changes(layout, "b"))


# ─────────────────────────────────────────────────────────────────────────────
# Group 4: New nodes
# ─────────────────────────────────────────────────────────────────────────────

class TestNewNodes:

    def test_no_growth_when_existing_nodes_suffice(self) -> None:
        layout = _make_layout({"n1": [], "n2": []}, size=(1, 10))
        assert all(not c.new_nodes for c in add_service_changes(layout, "b"))

    def test_growth_covers_min_deficit(self) -> None:
        layout = _make_layout(
            {"n1": ["a"], "n2": ["a"]},
            {"b": ServiceConstraint(min_count=3, max_count=3)},
            size=(1, 3),
        )
        changes = list(add_service_changes(layout, "b"))
        assert _placements(changes) == [(("n1", "n2"), 1)]
        new_node = changes[0].new_nodes[0]
        assert new_node.node_id == f"{NEW_NODE_ID_PREFIX}3"
        assert new_node.shape == ("medium", "centos6")

    def test_no_room_means_no_candidates(self) -> None:
        layout = _make_layout(
            {"n1": ["a"], "n2": ["a"]},
            {"b": ServiceConstraint(min_count=3, max_count=3)},
            size=(1, 2),
        )
        assert list(add_service_changes(layout, "b")) == []

    def test_growth_when_no_node_is_eligible(self) -> None:
        layout = ClusterLayout(
            [NodeLayout("n1", "small", "centos6")],
            Constraints(service_constraints={
                "b": ServiceConstraint(required_hardware_types={"large"}),
            }),
        )
        compat = Compatibilities(hardwaretypes={"small", "large"}, imagetypes={"centos6"})
        changes = list(add_service_changes(layout, "b", compat))
        assert len(changes) == 1
        assert changes[0].node_ids == frozenset()
        assert changes[0].new_nodes[0].shape == ("large", "centos6")

    def test_new_node_ids_skip_ids_in_use(self) -> None:
        layout = _make_layout(
            {"n1": [], f"{NEW_NODE_ID_PREFIX}3": []},
            {"b": ServiceConstraint(min_count=3, max_count=3)},
            size=(1, 3),
        )
        change = next(add_service_changes(layout, "b"))
        assert change.new_nodes[0].node_id == f"{NEW_NODE_ID_PREFIX}4"

    def test_growth_when_every_node_clashes(self) -> None:
        layout = ClusterLayout(
            [
                NodeLayout("n1", "medium", "centos6", frozenset({"a"})),
                NodeLayout("n2", "medium", "centos6", frozenset({"a"})),
            ],
            Constraints(
                service_constraints={"b": ServiceConstraint(min_count=1, max_count=1)},
                size=SizeConstraint(min=1, max=3),
                layout=LayoutConstraint(cant_coexist=[{"a", "b"}]),
            ),
        )
        changes = list(add_service_changes(layout, "b"))
        assert _placements(changes) == [((), 1)]
        assert changes[0].new_nodes[0].node_id == f"{NEW_NODE_ID_PREFIX}3"

    def test_shapes_prefer_existing_then_template(self) -> None:
        layout = ClusterLayout([NodeLayout("n1", "medium", "centos6")], Constraints())
        compat = Compatibilities(
            hardwaretypes={"large", "medium"},
            imagetypes={"centos6", "ubuntu12"},
        )
        assert new_node_shapes(layout, None, compat) == [
            ("medium", "centos6"),
            ("large", "centos6"),
            ("large", "ubuntu12"),
            ("medium", "ubuntu12"),
        ]

    def test_shapes_respect_template_and_service_types(self) -> None:
        layout = ClusterLayout([NodeLayout("n1", "tiny", "centos6")], Constraints())
        compat = Compatibilities(hardwaretypes={"large"}, imagetypes={"centos6", "ubuntu12"})
        bound = ServiceConstraint(required_image_types={"ubuntu12"})
        assert new_node_shapes(layout, bound, compat) == [("large", "ubuntu12")]

    @pytest.mark.parametrize("size_min", [3, 4])
    def test_size_deficit_forces_growth(self, size_min: int) -> None:
        layout = _make_layout({"n1": [], "n2": []}, size=(size_min, 5))
        changes = list(add_service_changes(layout, "b"))
        assert max(len(c.new_nodes) for c in changes) == size_min - 2
