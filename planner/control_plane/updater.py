"""
planner/control_plane/updater.py
─────────────────────────────────
The layout updater: decides WHERE requested services go on a live cluster.

How add_services_to_cluster works
──────────────────────────────────
1. Validates the request (request_validator.validate_add_services).
   Any failure raises before a layout or tracker exists.

2. Builds the initial ClusterLayout from the cluster's current nodes, under
   the template's Constraints.

3. Orders the services to add with order_services(): tightest constraints
   first, so the services with the fewest placement options are tried
   while the search tree is still narrow.

4. Runs a recursive backtracking search over the per-service candidate
   generators (layout_core.add_service_changes):

     search(i):
       if i == len(services): success
       for change in add_service_changes(current layout, services[i]):
           if not tracker.add_change_if_valid(change): continue   # inapplicable
           if not tracker.get_current_layout().is_valid():
               tracker.remove_last_change(); continue             # invalid
           if search(i + 1): return success                        # keep change
           tracker.remove_last_change()                            # backtrack
       return failure

5. Returns the tracker on success, None when every candidate is exhausted.
   None is a definitive "no valid layout", not an error.

Search budget
──────────────
The search is exponential in the worst case. `max_candidates` caps how many
candidates may be pulled from generators for one request. When the cap is
hit, SearchBudgetExceededError is raised. Unlike None, that result is not
definitive: a layout may still exist.

Ordering only changes how fast the search finishes, never which layouts are
reachable.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from planner.shared.models import Compatibilities, ServiceConstraint
from planner.shared.stores import ClusterStore, EntityStore
from planner.control_plane.request_validator import validate_add_services
from layout_core import ClusterLayout, ClusterLayoutTracker, add_service_changes

logger = logging.getLogger(__name__)

# ── Search configuration ──────────────────────────────────────────────────────

DEFAULT_MAX_CANDIDATES: Optional[int] = None
"""Default cap on candidates explored per request. None = unbounded."""


class SearchBudgetExceededError(Exception):
    """
    Raised when a search pulls more candidates than its budget allows.

    Attributes:
        max_candidates: The budget that was exceeded.
    """

    def __init__(self, max_candidates: int) -> None:
        self.max_candidates = max_candidates
        super().__init__(
            f"Layout search gave up after exploring {max_candidates} candidate "
            f"change(s) without reaching a decision."
        )


@dataclass
class SearchStats:
    """Counters for one add_services_to_cluster search."""
    candidates: int = 0
    applied: int = 0
    inapplicable: int = 0
    invalid: int = 0
    backtracks: int = 0
    duration_ms: float = 0.0


def order_services(
    services: Iterable[str],
    service_constraints: Dict[str, ServiceConstraint],
) -> List[str]:
    """
    Order services so the most constrained are placed first.

    Constrained services sort by (max_count ascending, min_count descending,
    name ascending). Unconstrained services follow in request order.
    Duplicates are dropped (first occurrence wins).
    """
    unique = list(dict.fromkeys(services))
    constrained = sorted(
        (name for name in unique if name in service_constraints),
        key=lambda name: (
            service_constraints[name].max_count,
            -service_constraints[name].min_count,
            name,
        ),
    )
    unconstrained = [name for name in unique if name not in service_constraints]
    return constrained + unconstrained


class ClusterLayoutUpdater:
    """
    Finds a layout that adds services to an existing cluster.

    Usage:
        updater = ClusterLayoutUpdater(cluster_store, entity_store)
        tracker = updater.add_services_to_cluster("cluster-1", ["hbase-master"])
        if tracker is not None:
            final = tracker.get_current_layout()

    After each call:
        updater.last_search_stats → SearchStats of the last search, or None
                                    if the request failed validation.
    """

    def __init__(
        self,
        cluster_store: ClusterStore,
        entity_store: EntityStore,
        max_candidates: Optional[int] = DEFAULT_MAX_CANDIDATES,
    ) -> None:
        if max_candidates is not None and max_candidates < 1:
            raise ValueError("max_candidates must be at least 1 (or None for unbounded).")
        self._cluster_store = cluster_store
        self._entity_store = entity_store
        self._max_candidates = max_candidates
        self.last_search_stats: Optional[SearchStats] = None

    def add_services_to_cluster(
        self,
        cluster_id: str,
        services_to_add: Optional[Iterable[str]],
    ) -> Optional[ClusterLayoutTracker]:
        """
        Plan the placement of `services_to_add` onto cluster `cluster_id`.

        Returns:
            The tracker holding the final layout, or None if no layout
            satisfies every constraint.

        Raises:
            PlacementRequestError:     the request failed validation.
            SearchBudgetExceededError: the search hit max_candidates.
        """
        self.last_search_stats = None
        requested = list(dict.fromkeys(services_to_add or ()))
        cluster, nodes = validate_add_services(
            self._cluster_store, self._entity_store, cluster_id, requested,
        )

        constraints = cluster.template.constraints
        layout = ClusterLayout.from_nodes(nodes, constraints)
        ordered = order_services(requested, constraints.service_constraints)
        tracker = ClusterLayoutTracker(layout)

        stats = SearchStats()
        self.last_search_stats = stats
        logger.debug(
            "add_services_to_cluster: cluster %s, %d node(s), order %s",
            cluster_id, len(layout), ordered,
        )

        start = time.perf_counter()
        try:
            found = self._search(tracker, ordered, 0, cluster.template.compatibilities, stats)
        except SearchBudgetExceededError:
            logger.warning(
                "add_services_to_cluster: cluster %s search budget of %d candidates "
                "exhausted while placing %s.",
                cluster_id, self._max_candidates, ordered,
            )
            raise
        finally:
            stats.duration_ms = (time.perf_counter() - start) * 1000.0

        logger.info(
            "add_services_to_cluster: cluster %s %s → %s "
            "(%d candidates, %d backtracks, %.2fms)",
            cluster_id, ordered, "placed" if found else "no valid layout",
            stats.candidates, stats.backtracks, stats.duration_ms,
        )
        return tracker if found else None

    def _search(
        self,
        tracker: ClusterLayoutTracker,
        services: Sequence[str],
        index: int,
        compatibilities: Compatibilities,
        stats: SearchStats,
    ) -> bool:
        if index == len(services):
            return True

        service = services[index]
        for change in add_service_changes(tracker.get_current_layout(), service, compatibilities):
            stats.candidates += 1
            if self._max_candidates is not None and stats.candidates > self._max_candidates:
                raise SearchBudgetExceededError(self._max_candidates)

            if not tracker.add_change_if_valid(change):
                stats.inapplicable += 1
                continue
            stats.applied += 1

            # the change may satisfy this service's bound but break another one
            if not tracker.get_current_layout().is_valid():
                stats.invalid += 1
                tracker.remove_last_change()
                continue

            if self._search(tracker, services, index + 1, compatibilities, stats):
                return True

            logger.debug("backtracking from %s", change)
            stats.backtracks += 1
            tracker.remove_last_change()

        return False
