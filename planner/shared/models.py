"""
planner/shared/models.py
────────────────────────
Every data structure the layout planner reads from the outside world.

Design philosophy
-----------------
Every model answers one question: "What does the planner *need to know*
about this thing in order to decide where a service may run?"

Templates describe the allowed shape of a cluster (constraints and
compatibilities). Clusters and nodes describe the shape it has right now.
Services describe what depends on what. The search core in layout_core/
never mutates any of these; it works on its own immutable snapshots and
hands back a layout that the caller commits.

Reading guide
-------------
Read top-to-bottom. Each model builds on the ones above it.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field, model_validator


UNBOUNDED: int = 2**31 - 1
"""Stand-in for "no upper limit" on counts.

Used as the default max for SizeConstraint and ServiceConstraint so that
comparisons stay plain integer comparisons.
"""


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 1: CONSTRAINTS
# How big a cluster may be and where each service is allowed to land.
# ─────────────────────────────────────────────────────────────────────────────

class ServiceConstraint(BaseModel):
    """
    Bounds on how many nodes may run a service, cluster-wide.

    Fields:
        min_count               → Fewest nodes that must carry the service once
                                  it is on the cluster at all.
        max_count               → Most nodes that may carry the service.
        required_hardware_types → If non-empty, the service may only run on
                                  nodes whose hardwaretype is in this set.
        required_image_types    → Same, for the node's imagetype.

    A service with no ServiceConstraint in the template is unbounded.
    """
    min_count: int = Field(0, ge=0, description="Minimum number of nodes running the service")
    max_count: int = Field(UNBOUNDED, ge=0, description="Maximum number of nodes running the service")
    required_hardware_types: Set[str] = Field(
        default_factory=set,
        description="Hardware types the service may run on. Empty = any."
    )
    required_image_types: Set[str] = Field(
        default_factory=set,
        description="Image types the service may run on. Empty = any."
    )

    @model_validator(mode="after")
    def _check_bounds(self) -> "ServiceConstraint":
        if self.max_count < self.min_count:
            raise ValueError(
                f"max_count ({self.max_count}) must be greater than or equal "
                f"to min_count ({self.min_count})."
            )
        return self

    def allows_node(self, hardwaretype: Optional[str], imagetype: Optional[str]) -> bool:
        """True if a node of this hardware/image type may carry the service."""
        if self.required_hardware_types and hardwaretype not in self.required_hardware_types:
            return False
        if self.required_image_types and imagetype not in self.required_image_types:
            return False
        return True


class SizeConstraint(BaseModel):
    """
    Bounds on the total number of nodes in the cluster.

    min must be at least 1 and max at least min. A template carrying an
    impossible size constraint fails here, at construction time, rather than
    surfacing later as a search that can never succeed.
    """
    min: int = Field(1, ge=1, description="Minimum cluster size")
    max: int = Field(UNBOUNDED, ge=1, description="Maximum cluster size")

    @model_validator(mode="after")
    def _check_bounds(self) -> "SizeConstraint":
        if self.max < self.min:
            raise ValueError("Maximum must be greater than or equal to the minimum.")
        return self

    def allows(self, node_count: int) -> bool:
        return self.min <= node_count <= self.max


class LayoutConstraint(BaseModel):
    """
    Per-node rules about which services may share a node.

    cant_coexist → Each group is a set of services of which a node may carry
                   at most one. e.g. [{"mysql-server", "postgres-server"}]
    """
    cant_coexist: List[Set[str]] = Field(default_factory=list)


class Constraints(BaseModel):
    """Everything a template says about the allowed shape of a cluster."""
    service_constraints: Dict[str, ServiceConstraint] = Field(
        default_factory=dict,
        description="Per-service node count bounds, keyed by service name"
    )
    size: SizeConstraint = Field(default_factory=SizeConstraint)
    layout: LayoutConstraint = Field(default_factory=LayoutConstraint)

    def for_service(self, service: str) -> Optional[ServiceConstraint]:
        return self.service_constraints.get(service)


class Compatibilities(BaseModel):
    """
    What a template permits.

    services      → Services that may be requested on clusters of this template.
                    Strict: a service outside this set is incompatible, and an
                    empty set admits nothing.
    hardwaretypes → Hardware types new nodes may be sized with.
    imagetypes    → Image types new nodes may be sized with.
                    For these two an empty set means "no restriction beyond
                    what the cluster already runs".
    """
    hardwaretypes: Set[str] = Field(default_factory=set)
    imagetypes: Set[str] = Field(default_factory=set)
    services: Set[str] = Field(default_factory=set)


class ClusterTemplate(BaseModel):
    name: str
    description: str = ""
    compatibilities: Compatibilities = Field(default_factory=Compatibilities)
    constraints: Constraints = Field(default_factory=Constraints)


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 2: CATALOG ENTITIES
# Read-only reference data owned by the entity store.
# ─────────────────────────────────────────────────────────────────────────────

class Service(BaseModel):
    """
    A service from the catalog.

    depends_on lists the names of services that must be on the cluster (or
    requested alongside this one) before this service can be added.
    """
    name: str
    description: str = ""
    depends_on: List[str] = Field(default_factory=list)


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 3: CLUSTER STATE
# What is running right now.
# ─────────────────────────────────────────────────────────────────────────────

class Node(BaseModel):
    """
    A provisioned machine belonging to a cluster.

    hardwaretype and imagetype are fixed when the node is created. services
    only changes when a planned layout is committed.
    """
    node_id: str = Field(..., description="Unique identifier for this node")
    cluster_id: Optional[str] = Field(None, description="Owning cluster")
    hardwaretype: Optional[str] = Field(None, description="Hardware type name, e.g. 'large'")
    imagetype: Optional[str] = Field(None, description="Image type name, e.g. 'ubuntu12'")
    services: Set[str] = Field(default_factory=set, description="Services on this node")


class Cluster(BaseModel):
    """
    A running cluster and the template it was created from.

    services is the set of services currently on the cluster. It is what the
    dependency check treats as "already present".
    """
    cluster_id: str
    name: str = ""
    template: ClusterTemplate
    services: Set[str] = Field(default_factory=set)


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 4: CONVENIENCE TYPE ALIASES
# ─────────────────────────────────────────────────────────────────────────────

# A node layout mapping as handed to callers: node_id → service names
# e.g., {"node-01": {"hdfs-datanode", "yarn-nodemanager"}}
LayoutMapping = Dict[str, Set[str]]

# (service, missing dependency) pairs reported by the dependency check
DependencyPair = Tuple[str, str]
