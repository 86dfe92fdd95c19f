"""
layout_core/tracker.py
──────────────────────
ClusterLayoutTracker: the mutable state of one placement search.

The tracker holds the frozen initial layout and an append-only log of the
changes applied on top of it. Next to the log it keeps the layout snapshot
produced by each change, so:

  add_change_if_valid(change)  → push (change, resulting layout)
  remove_last_change()         → pop; the previous snapshot becomes current
  get_current_layout()         → top snapshot (or the initial layout)

Snapshots are immutable, so undo hands back exactly the layout that was
current before the change. `replay()` rebuilds the current layout from the
initial one by re-applying the log, and must always agree with the snapshot.

"Valid" here means locally well-formed (the change applies). Whether the
resulting layout satisfies the template's constraints is the caller's
question, answered by ClusterLayout.is_valid().

Not thread-safe. One tracker belongs to one in-flight request.
"""

from __future__ import annotations

from typing import List, Tuple

from layout_core.change import ClusterLayoutChange
from layout_core.layout import ClusterLayout


class ClusterLayoutTracker:
    """
    Change log plus layout snapshots over a frozen initial layout.

    Attributes:
        initial_layout: The layout the search started from (log length 0).
    """

    def __init__(self, initial_layout: ClusterLayout) -> None:
        self.initial_layout = initial_layout
        self._changes: List[ClusterLayoutChange] = []
        self._layouts: List[ClusterLayout] = [initial_layout]

    @property
    def changes(self) -> Tuple[ClusterLayoutChange, ...]:
        return tuple(self._changes)

    @property
    def current_layout(self) -> ClusterLayout:
        return self._layouts[-1]

    def get_current_layout(self) -> ClusterLayout:
        return self._layouts[-1]

    def add_change_if_valid(self, change: ClusterLayoutChange) -> bool:
        """
        Apply `change` to the current layout if it is well-formed.

        Returns:
            True if the change was applied and logged, False if it does not
            apply to the current layout (nothing is recorded).
        """
        next_layout = change.apply(self._layouts[-1])
        if next_layout is None:
            return False
        self._changes.append(change)
        self._layouts.append(next_layout)
        return True

    def remove_last_change(self) -> ClusterLayoutChange:
        """
        Undo the most recent change.

        Returns:
            The change that was removed.

        Raises:
            IndexError: if no change has been applied.
        """
        if not self._changes:
            raise IndexError("No change to remove: the change log is empty.")
        self._layouts.pop()
        return self._changes.pop()

    def replay(self) -> ClusterLayout:
        """Rebuild the current layout by re-applying the log to the initial layout."""
        layout = self.initial_layout
        for change in self._changes:
            next_layout = change.apply(layout)
            if next_layout is None:
                raise RuntimeError(f"Logged change no longer applies: {change}")
            layout = next_layout
        return layout

    def __len__(self) -> int:
        return len(self._changes)

    def __repr__(self) -> str:
        return f"ClusterLayoutTracker(changes={len(self._changes)}, nodes={len(self.current_layout)})"
