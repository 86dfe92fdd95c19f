"""
planner/control_plane/request_validator.py
───────────────────────────────────────────
Request validation: everything that must hold before a search begins.

The validator is the first gate of the add-services pipeline. It runs
BEFORE any layout or tracker is built, and it has no side effects: a request
that fails here leaves the stores exactly as they were.

What it checks (in order)
──────────────────────────
  1. At least one service was requested.
  2. The cluster exists and has at least one node.
  3. Every requested service is in the template's service compatibility set.
     All offending names are reported, not just the first.
  4. Every requested or already-present service is known to the catalog.
  5. Every dependency of a requested or already-present service is either
     on the cluster already or in the request. Every failing
     (service, dependency) pair is reported.

What it does NOT check
───────────────────────
  • Whether a valid layout exists. That is the search's job, and "no valid
    layout" is a normal result, not an error.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple

from planner.shared.models import Cluster, DependencyPair, Node, Service
from planner.shared.stores import ClusterStore, EntityStore


class PlacementRequestError(Exception):
    """
    Base class of every validation failure.

    Attributes:
        reason: Human-readable explanation of why the request was refused.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class InvalidRequestError(PlacementRequestError):
    """Malformed or empty request, unknown cluster, or cluster with no nodes."""


class ClusterNotFoundError(InvalidRequestError):
    def __init__(self, cluster_id: str) -> None:
        self.cluster_id = cluster_id
        super().__init__(f"cluster {cluster_id} does not exist.")


class NoNodesError(InvalidRequestError):
    def __init__(self, cluster_id: str) -> None:
        self.cluster_id = cluster_id
        super().__init__(f"cluster {cluster_id} has no nodes.")


class IncompatibleServiceError(PlacementRequestError):
    """
    Requested services outside the template's compatibility set.

    Attributes:
        services: Every offending service name, sorted.
    """

    def __init__(self, services: Sequence[str]) -> None:
        self.services = list(services)
        super().__init__(f"{','.join(self.services)} are incompatible with the cluster")


class UnknownServiceError(PlacementRequestError):
    """Services the catalog has never heard of."""

    def __init__(self, services: Sequence[str]) -> None:
        self.services = list(services)
        super().__init__(f"{','.join(self.services)} does not exist")


class UnsatisfiedDependencyError(PlacementRequestError):
    """
    Dependencies missing from both the cluster and the request.

    Attributes:
        missing: Every failing (service, dependency) pair.
    """

    def __init__(self, missing: Sequence[DependencyPair]) -> None:
        self.missing = list(missing)
        super().__init__(" ".join(
            f"{service} requires {dependency}, which is not on the cluster "
            f"or in the list of services to add."
            for service, dependency in self.missing
        ))


def validate_add_services(
    cluster_store: ClusterStore,
    entity_store: EntityStore,
    cluster_id: str,
    services_to_add: Sequence[str],
) -> Tuple[Cluster, List[Node]]:
    """
    Run all checks for an add-services request.

    Args:
        cluster_store:   Where the cluster and its nodes live.
        entity_store:    The service catalog.
        cluster_id:      Target cluster.
        services_to_add: Requested service names, in request order.

    Returns:
        (cluster, nodes) snapshots, so the caller does not read them twice.

    Raises:
        PlacementRequestError: one of its subclasses, with a descriptive reason.
    """
    _check_not_empty(services_to_add)

    cluster = cluster_store.get_cluster(cluster_id)
    if cluster is None:
        raise ClusterNotFoundError(cluster_id)
    nodes = cluster_store.get_cluster_nodes(cluster_id)
    if not nodes:
        raise NoNodesError(cluster_id)

    _check_compatibility(cluster, services_to_add)
    catalog = _load_services(entity_store, _services_to_check(cluster, services_to_add))
    _check_dependencies(cluster, services_to_add, catalog)
    return cluster, nodes


# ── Individual checks ─────────────────────────────────────────────────────────

def _check_not_empty(services_to_add: Sequence[str]) -> None:
    if not services_to_add:
        raise InvalidRequestError("At least one service to add must be specified.")


def _check_compatibility(cluster: Cluster, services_to_add: Sequence[str]) -> None:
    compatible = cluster.template.compatibilities.services
    incompatible = sorted(set(services_to_add) - compatible)
    if incompatible:
        raise IncompatibleServiceError(incompatible)


def _services_to_check(cluster: Cluster, services_to_add: Sequence[str]) -> List[str]:
    """Requested services in request order, then existing ones sorted."""
    requested = list(dict.fromkeys(services_to_add))
    existing = sorted(cluster.services - set(requested))
    return requested + existing


def _load_services(entity_store: EntityStore, names: Iterable[str]) -> Dict[str, Service]:
    catalog: Dict[str, Service] = {}
    unknown: List[str] = []
    for name in names:
        service = entity_store.get_service(name)
        if service is None:
            unknown.append(name)
        else:
            catalog[name] = service
    if unknown:
        raise UnknownServiceError(unknown)
    return catalog


def _check_dependencies(
    cluster: Cluster,
    services_to_add: Sequence[str],
    catalog: Dict[str, Service],
) -> None:
    """
    Every dependency must be on the cluster or in the request.

    Collects all failing pairs before raising, so the caller can fix the
    whole request in one go.
    """
    available = set(cluster.services) | set(services_to_add)
    missing: List[DependencyPair] = []
    for name, service in catalog.items():
        for dependency in service.depends_on:
            if dependency not in available:
                missing.append((name, dependency))
    if missing:
        raise UnsatisfiedDependencyError(missing)
