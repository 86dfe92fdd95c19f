"""
layout_core/layout.py
─────────────────────
ClusterLayout: an immutable snapshot of which services run on which nodes.

What a layout is
─────────────────
A layout is an ordered mapping node_id → NodeLayout, where a NodeLayout
carries the node's hardware type, image type and frozen service set. It also
remembers the Constraints of the template it was built under, so that
`is_valid()` can be called with no arguments from the search loop.

Layouts are never mutated. Every structural change (see change.py) produces
a new layout via `derive()`, and the tracker keeps the previous snapshots.
That is what makes undo exact: popping a change returns the very object that
was current before it was applied.

What "valid" means
───────────────────
`violations()` runs every check independently and reports each failure:

  1. Service counts: for every service present anywhere in the layout, the
     number of nodes carrying it lies within its ServiceConstraint.
     Services with no constraint are unbounded.
  2. Cluster size: the node count lies within the SizeConstraint.
  3. Node types: a node carrying a service matches that service's
     required hardware / image types.
  4. Cant-coexist: no node carries two services of the same group.

`is_valid()` is simply "no violations".

Counting
─────────
Per-service counts come from a boolean occupancy matrix (rows = nodes in
layout order, columns = services in sorted order), summed down each column.
The same matrix is exposed through `service_matrix()` for diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple

import numpy as np

from planner.shared.models import Constraints, LayoutMapping, Node


@dataclass(frozen=True)
class NodeLayout:
    """One node as the search sees it: identity, shape and services."""
    node_id: str
    hardwaretype: Optional[str] = None
    imagetype: Optional[str] = None
    services: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def shape(self) -> Tuple[Optional[str], Optional[str]]:
        """(hardwaretype, imagetype) pair used when sizing new nodes."""
        return (self.hardwaretype, self.imagetype)

    def with_service(self, service: str) -> "NodeLayout":
        return replace(self, services=self.services | {service})

    @classmethod
    def from_node(cls, node: Node) -> "NodeLayout":
        return cls(
            node_id=node.node_id,
            hardwaretype=node.hardwaretype,
            imagetype=node.imagetype,
            services=frozenset(node.services),
        )


class ClusterLayout:
    """
    Immutable node → services snapshot plus the constraints it is judged by.

    Usage:
        layout = ClusterLayout.from_nodes(nodes, template.constraints)
        layout.is_valid()            # bool
        layout.violations()          # List[str], empty when valid
        layout.to_mapping()          # {node_id: {service, ...}}

    Equality is structural over the node layouts. The constraints are not
    part of equality: two layouts with the same nodes and services are equal
    regardless of which template they were built under.

    Raises:
        ValueError: on construction with two nodes sharing one node_id.
    """

    def __init__(
        self,
        nodes: Iterable[NodeLayout],
        constraints: Optional[Constraints] = None,
    ) -> None:
        self._nodes: Dict[str, NodeLayout] = {}
        for node in nodes:
            if node.node_id in self._nodes:
                raise ValueError(f"Duplicate node id {node.node_id!r} in layout.")
            self._nodes[node.node_id] = node
        self._constraints = constraints if constraints is not None else Constraints()

    @classmethod
    def from_nodes(
        cls,
        nodes: Iterable[Node],
        constraints: Optional[Constraints] = None,
    ) -> "ClusterLayout":
        """Build the initial layout from store nodes, ordered by node_id."""
        ordered = sorted(nodes, key=lambda n: n.node_id)
        return cls((NodeLayout.from_node(n) for n in ordered), constraints)

    # ── Read access ───────────────────────────────────────────────────────────

    @property
    def constraints(self) -> Constraints:
        return self._constraints

    @property
    def node_ids(self) -> List[str]:
        return list(self._nodes)

    @property
    def services(self) -> Set[str]:
        """Every service present on at least one node."""
        present: Set[str] = set()
        for node in self._nodes.values():
            present |= node.services
        return present

    def get(self, node_id: str) -> Optional[NodeLayout]:
        return self._nodes.get(node_id)

    def nodes_with_service(self, service: str) -> List[str]:
        return [n.node_id for n in self._nodes.values() if service in n.services]

    def service_matrix(self) -> Tuple[List[str], "np.ndarray"]:
        """
        Occupancy matrix of the layout.

        Returns:
            (services, matrix) where services is the sorted list of service
            names and matrix[i, j] is True when the i-th node (layout order)
            carries services[j].
        """
        services = sorted(self.services)
        column = {name: j for j, name in enumerate(services)}
        matrix = np.zeros((len(self._nodes), len(services)), dtype=bool)
        for i, node in enumerate(self._nodes.values()):
            for name in node.services:
                matrix[i, column[name]] = True
        return services, matrix

    def service_counts(self) -> Dict[str, int]:
        """Number of nodes carrying each present service."""
        services, matrix = self.service_matrix()
        counts = matrix.sum(axis=0)
        return {name: int(count) for name, count in zip(services, counts)}

    def to_mapping(self) -> LayoutMapping:
        return {node_id: set(node.services) for node_id, node in self._nodes.items()}

    def added_services_since(self, base: "ClusterLayout") -> LayoutMapping:
        """
        Services this layout has that `base` does not, per node.

        Nodes absent from `base` are reported with their full service set,
        even if that set is empty. Nodes with nothing new are omitted.
        """
        added: LayoutMapping = {}
        for node_id, node in self._nodes.items():
            before = base.get(node_id)
            if before is None:
                added[node_id] = set(node.services)
                continue
            diff = node.services - before.services
            if diff:
                added[node_id] = set(diff)
        return added

    # ── Validity ──────────────────────────────────────────────────────────────

    def violations(self, constraints: Optional[Constraints] = None) -> List[str]:
        """
        Evaluate every constraint against this layout.

        Args:
            constraints: Constraints to judge by. Defaults to the ones the
                         layout was built with.

        Returns:
            Human-readable descriptions of every failed check, in a stable
            order. Empty list when the layout is valid.
        """
        constraints = constraints if constraints is not None else self._constraints
        problems: List[str] = []

        counts = self.service_counts()
        for service, count in counts.items():
            bound = constraints.for_service(service)
            if bound is None:
                continue
            if count < bound.min_count:
                problems.append(
                    f"service {service} is on {count} node(s), "
                    f"below its minimum of {bound.min_count}"
                )
            if count > bound.max_count:
                problems.append(
                    f"service {service} is on {count} node(s), "
                    f"above its maximum of {bound.max_count}"
                )

        size = constraints.size
        if not size.allows(len(self._nodes)):
            problems.append(
                f"cluster has {len(self._nodes)} node(s), "
                f"outside the allowed size [{size.min}, {size.max}]"
            )

        for node in self._nodes.values():
            for service in sorted(node.services):
                bound = constraints.for_service(service)
                if bound is not None and not bound.allows_node(node.hardwaretype, node.imagetype):
                    problems.append(
                        f"service {service} cannot run on node {node.node_id} "
                        f"(hardwaretype={node.hardwaretype}, imagetype={node.imagetype})"
                    )
            for group in constraints.layout.cant_coexist:
                clash = node.services & group
                if len(clash) > 1:
                    problems.append(
                        f"node {node.node_id} carries {', '.join(sorted(clash))}, "
                        f"which cannot coexist"
                    )

        return problems

    def is_valid(self, constraints: Optional[Constraints] = None) -> bool:
        return not self.violations(constraints)

    # ── Derivation ────────────────────────────────────────────────────────────

    def derive(
        self,
        updated: Iterable[NodeLayout] = (),
        added: Iterable[NodeLayout] = (),
    ) -> "ClusterLayout":
        """
        New layout with some nodes replaced and some appended.

        Replaced nodes keep their position; appended nodes go at the end.

        Raises:
            KeyError:   if an updated node is not in this layout.
            ValueError: if an added node id is already in use.
        """
        nodes = dict(self._nodes)
        for node in updated:
            if node.node_id not in nodes:
                raise KeyError(node.node_id)
            nodes[node.node_id] = node
        new_nodes = list(nodes.values())
        new_nodes.extend(added)
        return ClusterLayout(new_nodes, self._constraints)

    # ── Dunder ────────────────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[NodeLayout]:
        return iter(self._nodes.values())

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ClusterLayout):
            return NotImplemented
        return self._nodes == other._nodes

    def __hash__(self) -> int:
        return hash(frozenset(self._nodes.values()))

    def __repr__(self) -> str:
        body = ", ".join(
            f"{node_id}: {sorted(node.services)}" for node_id, node in self._nodes.items()
        )
        return f"ClusterLayout({{{body}}})"
