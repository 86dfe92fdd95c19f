"""
planner/control_plane/placement_service.py
───────────────────────────────────────────
PlacementService: the add-services request pipeline around the updater.

Pipeline
─────────
  1. ClusterLayoutUpdater.add_services_to_cluster()
       → validation (raises PlacementRequestError subclasses)
       → ordering + backtracking search
  2. On success, commit: every node that gained services is written back to
     the cluster store, new nodes are created, and the requested services are
     added to the cluster's service set.
  3. Return a plain status dict for the API layer.

Result statuses
────────────────
  PLACED           A valid layout was found and committed.
  NO_VALID_LAYOUT  The search was exhausted. Nothing changed.
  REJECTED         The request failed validation. Nothing changed.
  BUDGET_EXCEEDED  The search hit its candidate budget. Nothing changed.
  ERROR            Anything unexpected. Logged with traceback.

Thread safety
──────────────
Not thread-safe. Callers serving concurrent requests must lock per
cluster_id around add_services().
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from typing import Any, Dict, Iterable, Optional

from planner.shared.models import Cluster, Node
from planner.shared.stores import ClusterStore, EntityStore
from planner.control_plane.request_validator import PlacementRequestError
from planner.control_plane.updater import (
    DEFAULT_MAX_CANDIDATES,
    ClusterLayoutUpdater,
    SearchBudgetExceededError,
)
from layout_core import ClusterLayout

logger = logging.getLogger(__name__)

LATENCY_HISTORY_SIZE: int = 1000
"""Number of recent search durations kept for the latency metrics."""


class PlacementService:
    """
    Add services to clusters and keep the stores in step.

    Public API:
        add_services(cluster_id, services) → Dict[str, Any]
        get_placement_metrics()            → Dict[str, Any]

    Attributes:
        cluster_store     : ClusterStore
        entity_store      : EntityStore
        outcome_counts    : Counter of result statuses
        search_latencies  : deque(maxlen=LATENCY_HISTORY_SIZE) of search ms
    """

    def __init__(
        self,
        cluster_store: Optional[ClusterStore] = None,
        entity_store: Optional[EntityStore] = None,
        max_candidates: Optional[int] = DEFAULT_MAX_CANDIDATES,
    ) -> None:
        self.cluster_store = cluster_store if cluster_store is not None else ClusterStore()
        self.entity_store = entity_store if entity_store is not None else EntityStore()
        self._updater = ClusterLayoutUpdater(
            self.cluster_store, self.entity_store, max_candidates=max_candidates,
        )
        self.outcome_counts: Counter = Counter()
        self.search_latencies: deque = deque(maxlen=LATENCY_HISTORY_SIZE)

    def add_services(self, cluster_id: str, services: Iterable[str]) -> Dict[str, Any]:
        """
        Plan and commit the addition of `services` to cluster `cluster_id`.

        Returns:
            {"status", "cluster_id", "layout", "added", "message"} where layout
            is node_id → sorted services after the change and added is
            node_id → sorted services that were added (PLACED only).
        """
        requested = list(dict.fromkeys(services or ()))
        try:
            tracker = self._updater.add_services_to_cluster(cluster_id, requested)
        except PlacementRequestError as e:
            return self._result("REJECTED", cluster_id, message=e.reason)
        except SearchBudgetExceededError as e:
            self._record_latency()
            return self._result("BUDGET_EXCEEDED", cluster_id, message=str(e))
        except Exception as e:
            logger.exception("Unexpected error in add_services for cluster %s", cluster_id)
            return self._result(
                "ERROR", cluster_id,
                message=f"Unexpected error: {e.__class__.__name__}: {e}",
            )

        self._record_latency()
        if tracker is None:
            return self._result(
                "NO_VALID_LAYOUT", cluster_id,
                message=f"No layout of cluster {cluster_id} satisfies the template "
                        f"constraints with {', '.join(requested)} added.",
            )

        layout = tracker.get_current_layout()
        added = layout.added_services_since(tracker.initial_layout)
        self._commit(cluster_id, layout, added, requested)

        logger.info(
            "Cluster %s: added %s across %d node(s)",
            cluster_id, requested, len(added),
        )
        return self._result(
            "PLACED", cluster_id,
            layout={node_id: sorted(s) for node_id, s in layout.to_mapping().items()},
            added={node_id: sorted(s) for node_id, s in added.items()},
            message=f"Placed {', '.join(requested)} on cluster {cluster_id}",
        )

    def get_placement_metrics(self) -> Dict[str, Any]:
        """
        Request counters and search latency.

        Metrics:
            requests:          Count of add_services calls per status.
            search_p99_ms:     P99 search duration across recent searches.
            avg_search_ms:     Mean search duration.
            searches_recorded: Number of durations in the history window.
        """
        latencies = list(self.search_latencies)
        if latencies:
            sorted_lat = sorted(latencies)
            p99_idx = max(0, int(0.99 * len(sorted_lat)) - 1)
            p99 = sorted_lat[p99_idx]
            avg = sum(latencies) / len(latencies)
        else:
            p99 = 0.0
            avg = 0.0

        return {
            "requests": dict(self.outcome_counts),
            "search_p99_ms": round(p99, 2),
            "avg_search_ms": round(avg, 2),
            "searches_recorded": len(latencies),
        }

    # ── Private helpers ───────────────────────────────────────────────────────

    def _commit(
        self,
        cluster_id: str,
        layout: ClusterLayout,
        added: Dict[str, set],
        requested: Iterable[str],
    ) -> None:
        """Write changed and new nodes back, then extend the cluster's services."""
        current = {node.node_id: node for node in self.cluster_store.get_cluster_nodes(cluster_id)}
        changed = []
        for node_id, services in added.items():
            node = current.get(node_id)
            if node is None:
                planned = layout.get(node_id)
                node = Node(
                    node_id=node_id,
                    cluster_id=cluster_id,
                    hardwaretype=planned.hardwaretype,
                    imagetype=planned.imagetype,
                )
            node.services |= services
            changed.append(node)
        self.cluster_store.put_nodes(cluster_id, changed)

        cluster: Cluster = self.cluster_store.get_cluster(cluster_id)
        cluster.services |= set(requested)
        self.cluster_store.put_cluster(cluster)

    def _record_latency(self) -> None:
        stats = self._updater.last_search_stats
        if stats is not None:
            self.search_latencies.append(stats.duration_ms)

    def _result(
        self,
        status: str,
        cluster_id: str,
        layout: Optional[Dict[str, list]] = None,
        added: Optional[Dict[str, list]] = None,
        message: str = "",
    ) -> Dict[str, Any]:
        self.outcome_counts[status] += 1
        return {
            "status": status,
            "cluster_id": cluster_id,
            "layout": layout,
            "added": added,
            "message": message,
        }
