"""
planner/control_plane — the placement decision layer.

Public API:

    Validation:
        validate_add_services()      — pre-search request checks
        PlacementRequestError        — base of every validation failure
        InvalidRequestError          — empty request / unknown cluster / no nodes
        ClusterNotFoundError         — cluster id not in the store
        NoNodesError                 — cluster has zero nodes
        IncompatibleServiceError     — services outside template compatibility
        UnknownServiceError          — services missing from the catalog
        UnsatisfiedDependencyError   — dependencies missing from cluster and request

    Search:
        ClusterLayoutUpdater         — ordering + backtracking search
        order_services()             — tightest-constraint-first ordering
        SearchStats                  — per-search counters
        SearchBudgetExceededError    — raised when max_candidates is hit

    Service:
        PlacementService             — request pipeline, commit, metrics
"""

from planner.control_plane.request_validator import (
    ClusterNotFoundError,
    IncompatibleServiceError,
    InvalidRequestError,
    NoNodesError,
    PlacementRequestError,
    UnknownServiceError,
    UnsatisfiedDependencyError,
    validate_add_services,
)
from planner.control_plane.updater import (
    ClusterLayoutUpdater,
    SearchBudgetExceededError,
    SearchStats,
    order_services,
)
from planner.control_plane.placement_service import PlacementService

__all__ = [
    "validate_add_services",
    "PlacementRequestError",
    "InvalidRequestError",
    "ClusterNotFoundError",
    "NoNodesError",
    "IncompatibleServiceError",
    "UnknownServiceError",
    "UnsatisfiedDependencyError",
    "ClusterLayoutUpdater",
    "order_services",
    "SearchStats",
    "SearchBudgetExceededError",
    "PlacementService",
]
