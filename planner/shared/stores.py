"""
planner/shared/stores.py
────────────────────────
In-memory cluster and entity stores.

These are the collaborators the layout updater reads from:

  ClusterStore.get_cluster(cluster_id)        → Cluster | None
  ClusterStore.get_cluster_nodes(cluster_id)  → List[Node]
  EntityStore.get_service(name)               → Service | None

Reads hand out deep copies, so whatever the planner does with a snapshot
never leaks back into the store. Writes (put_*) are what a caller uses to
commit a planned layout.

A production deployment swaps these for its persistence layer and is
responsible for per-cluster locking. Not thread-safe.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from planner.shared.models import Cluster, Node, Service


class ClusterStore:
    """Clusters by id, and each cluster's nodes by node id."""

    def __init__(self) -> None:
        self._clusters: Dict[str, Cluster] = {}
        self._nodes: Dict[str, Dict[str, Node]] = {}

    def put_cluster(self, cluster: Cluster) -> None:
        self._clusters[cluster.cluster_id] = cluster.model_copy(deep=True)
        self._nodes.setdefault(cluster.cluster_id, {})

    def get_cluster(self, cluster_id: str) -> Optional[Cluster]:
        cluster = self._clusters.get(cluster_id)
        return cluster.model_copy(deep=True) if cluster is not None else None

    def put_nodes(self, cluster_id: str, nodes: Iterable[Node]) -> None:
        """Insert or replace nodes of a cluster, keyed by node_id."""
        cluster_nodes = self._nodes.setdefault(cluster_id, {})
        for node in nodes:
            stored = node.model_copy(deep=True)
            stored.cluster_id = cluster_id
            cluster_nodes[node.node_id] = stored

    def get_cluster_nodes(self, cluster_id: str) -> List[Node]:
        """Nodes of a cluster ordered by node_id. Empty if the cluster is unknown."""
        cluster_nodes = self._nodes.get(cluster_id, {})
        return [
            cluster_nodes[node_id].model_copy(deep=True)
            for node_id in sorted(cluster_nodes)
        ]


class EntityStore:
    """The service catalog."""

    def __init__(self, services: Optional[Iterable[Service]] = None) -> None:
        self._services: Dict[str, Service] = {}
        for service in services or ():
            self.put_service(service)

    def put_service(self, service: Service) -> None:
        self._services[service.name] = service.model_copy(deep=True)

    def get_service(self, name: str) -> Optional[Service]:
        service = self._services.get(name)
        return service.model_copy(deep=True) if service is not None else None
