"""
layout_core — cluster layout search core.

Public API:
    ClusterLayout        — immutable node → services snapshot + validity
    NodeLayout           — one node inside a ClusterLayout
    ClusterLayoutChange  — reversible delta against a layout
    AddServiceChange     — "service S goes onto these nodes"
    add_service_changes  — lazy generator of candidate AddServiceChanges
    ClusterLayoutTracker — change log with exact undo

Usage:
    from layout_core import ClusterLayout, ClusterLayoutTracker, add_service_changes

    tracker = ClusterLayoutTracker(ClusterLayout.from_nodes(nodes, constraints))
    for change in add_service_changes(tracker.get_current_layout(), "zookeeper"):
        if tracker.add_change_if_valid(change):
            if tracker.get_current_layout().is_valid():
                break
            tracker.remove_last_change()
"""

from layout_core.layout import ClusterLayout, NodeLayout
from layout_core.change import (
    AddServiceChange,
    ClusterLayoutChange,
    add_service_changes,
    new_node_shapes,
)
from layout_core.tracker import ClusterLayoutTracker

__all__ = [
    "ClusterLayout",
    "NodeLayout",
    "ClusterLayoutChange",
    "AddServiceChange",
    "add_service_changes",
    "new_node_shapes",
    "ClusterLayoutTracker",
]
