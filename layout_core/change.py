"""
layout_core/change.py
─────────────────────
Candidate structural changes, and the generator that proposes them.

ClusterLayoutChange
────────────────────
A change is an atomic delta against a layout. `apply(layout)` returns the
resulting layout, or None when the change does not make sense against that
layout (a referenced node is missing, the service is already there, a new
node id collides). None is not an error: the tracker simply does not record
the change, and the search moves on to the next candidate.

The only change the planner needs today is AddServiceChange:

    "service S becomes present on existing nodes {n1, n2, ...}
     and on these new nodes (each with a given hardware/image shape)"

Generating candidates
──────────────────────
`add_service_changes(layout, service, compatibilities)` is a generator.
It is lazy, finite and fresh per call, so every recursion level of the
search owns its own iterator and can be abandoned at any point.

The candidate space for service S with constraint c:

  existing      = nodes already carrying S
  eligible      = nodes without S whose shape satisfies S's required types
                  and which carry nothing S cannot coexist with
  k (existing)  ∈ [max(1, c.min − existing) − new, c.max − existing − new]
  new           ∈ [0, allowance]

  allowance = min(room, max(min_deficit, size_deficit, 1 if no eligible))
      room         = size.max − |nodes|
      min_deficit  = max(0, max(1, c.min − existing) − |eligible|)
      size_deficit = max(0, size.min − |nodes|)

New nodes are only proposed when existing nodes cannot supply enough
placements (or the cluster is below its minimum size), so a cluster with
room to grow is not flooded with growth candidates. A node that carries a
service S cannot coexist with is never eligible, so a cluster whose nodes
all clash with S still gets a new node.

Ordering (a pruning heuristic, not a correctness requirement):
  1. fewer new nodes first (reuse what is already provisioned),
  2. fewer existing nodes first,
  3. itertools.combinations order over eligible nodes (layout order),
  4. combinations_with_replacement order over new-node shapes.

The generator uses S's bounds only to size the space. Whether the result is
valid is decided by ClusterLayout.is_valid() after every application.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from itertools import combinations, combinations_with_replacement
from typing import FrozenSet, Iterator, List, Optional, Set, Tuple

from planner.shared.models import UNBOUNDED, Compatibilities, Constraints, ServiceConstraint
from layout_core.layout import ClusterLayout, NodeLayout

# ── Naming ────────────────────────────────────────────────────────────────────

NEW_NODE_ID_PREFIX: str = "new-node-"
"""Prefix for ids of nodes proposed by the generator.

Ids are numbered from len(layout) + 1 upwards, skipping any already in use,
so the same layout always yields the same ids.
"""

Shape = Tuple[Optional[str], Optional[str]]


class ClusterLayoutChange(ABC):
    """A reversible delta against a ClusterLayout."""

    @abstractmethod
    def apply(self, layout: ClusterLayout) -> Optional[ClusterLayout]:
        """Return the changed layout, or None if the change is inapplicable."""


@dataclass(frozen=True)
class AddServiceChange(ClusterLayoutChange):
    """
    Add `service` to the existing nodes `node_ids` and to `new_nodes`.

    new_nodes are NodeLayouts carrying id and shape; they receive the service
    when the change is applied.
    """
    service: str
    node_ids: FrozenSet[str] = frozenset()
    new_nodes: Tuple[NodeLayout, ...] = ()

    @property
    def placement_count(self) -> int:
        return len(self.node_ids) + len(self.new_nodes)

    def apply(self, layout: ClusterLayout) -> Optional[ClusterLayout]:
        if self.placement_count == 0:
            return None

        updated: List[NodeLayout] = []
        for node_id in sorted(self.node_ids):
            node = layout.get(node_id)
            if node is None or self.service in node.services:
                return None
            updated.append(node.with_service(self.service))

        added: List[NodeLayout] = []
        seen = set()
        for node in self.new_nodes:
            if node.node_id in layout or node.node_id in seen:
                return None
            seen.add(node.node_id)
            added.append(node.with_service(self.service))

        return layout.derive(updated=updated, added=added)

    def __str__(self) -> str:
        parts = sorted(self.node_ids) + [
            f"{n.node_id}({n.hardwaretype}/{n.imagetype})" for n in self.new_nodes
        ]
        return f"add {self.service} → [{', '.join(parts)}]"


# ── Generator ─────────────────────────────────────────────────────────────────

def add_service_changes(
    layout: ClusterLayout,
    service: str,
    compatibilities: Optional[Compatibilities] = None,
) -> Iterator[AddServiceChange]:
    """
    Lazily yield candidate placements of `service` onto `layout`.

    Args:
        layout:          The current layout (its constraints size the space).
        service:         The service to place.
        compatibilities: Template compatibilities, used to choose shapes for
                         new nodes. None = only shapes already in the cluster.

    Yields:
        AddServiceChange candidates in the order described in the module
        docstring. The sequence is finite.
    """
    constraints = layout.constraints
    bound = constraints.for_service(service)
    min_count = bound.min_count if bound is not None else 0
    max_count = bound.max_count if bound is not None else UNBOUNDED

    existing = len(layout.nodes_with_service(service))
    clashing = _clashing_services(constraints, service)
    eligible = [
        node.node_id
        for node in layout
        if service not in node.services
        and not node.services & clashing
        and (bound is None or bound.allows_node(node.hardwaretype, node.imagetype))
    ]

    wanted_min = max(1, min_count - existing)
    wanted_max = max_count - existing

    size = constraints.size
    room = max(0, size.max - len(layout))
    min_deficit = max(0, wanted_min - len(eligible))
    size_deficit = max(0, size.min - len(layout))
    allowance = min(room, max(min_deficit, size_deficit, 0 if eligible else 1))

    shapes = new_node_shapes(layout, bound, compatibilities) if allowance else []
    if not shapes:
        allowance = 0
    new_ids = _new_node_ids(layout, allowance)

    for n_new in range(allowance + 1):
        lo = max(wanted_min - n_new, 0 if n_new else 1)
        hi = min(len(eligible), wanted_max - n_new)
        for k in range(lo, hi + 1):
            for subset in combinations(eligible, k):
                node_ids = frozenset(subset)
                if n_new == 0:
                    yield AddServiceChange(service, node_ids)
                    continue
                for combo in combinations_with_replacement(shapes, n_new):
                    new_nodes = tuple(
                        NodeLayout(node_id=node_id, hardwaretype=hw, imagetype=img)
                        for node_id, (hw, img) in zip(new_ids, combo)
                    )
                    yield AddServiceChange(service, node_ids, new_nodes)


def new_node_shapes(
    layout: ClusterLayout,
    bound: Optional[ServiceConstraint],
    compatibilities: Optional[Compatibilities] = None,
) -> List[Shape]:
    """
    (hardwaretype, imagetype) pairs a new node carrying the service may have.

    Shapes already present in the cluster come first (first-appearance
    order), then the sorted product of the template's hardware and image
    compatibility sets. A shape must satisfy the service's required types
    and, where the template lists hardware or image types, be one of them.
    """
    shapes: List[Shape] = []
    for node in layout:
        if node.shape not in shapes:
            shapes.append(node.shape)

    hardwaretypes = set(compatibilities.hardwaretypes) if compatibilities else set()
    imagetypes = set(compatibilities.imagetypes) if compatibilities else set()
    for hw in sorted(hardwaretypes):
        for img in sorted(imagetypes):
            if (hw, img) not in shapes:
                shapes.append((hw, img))

    def _allowed(shape: Shape) -> bool:
        hw, img = shape
        if bound is not None and not bound.allows_node(hw, img):
            return False
        if hardwaretypes and hw not in hardwaretypes:
            return False
        if imagetypes and img not in imagetypes:
            return False
        return True

    return [shape for shape in shapes if _allowed(shape)]


def _clashing_services(constraints: Constraints, service: str) -> Set[str]:
    """Services that may not share a node with `service`."""
    clashing: Set[str] = set()
    for group in constraints.layout.cant_coexist:
        if service in group:
            clashing |= group - {service}
    return clashing


def _new_node_ids(layout: ClusterLayout, count: int) -> List[str]:
    ids: List[str] = []
    n = len(layout) + 1
    while len(ids) < count:
        candidate = f"{NEW_NODE_ID_PREFIX}{n}"
        if candidate not in layout:
            ids.append(candidate)
        n += 1
    return ids
