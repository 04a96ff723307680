"""
Undo/Redo History - Client-side snapshots of the graph.

A snapshot is taken before each undoable action. Snapshots hold plain
copies of nodes and edges with runtime-only data removed, so restoring
one never brings back stale derived values or dead references.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, replace
from typing import Any

from workflow_studio.core.graph import Edge, GraphStore, Node
from workflow_studio.core.propagation import CONNECTED_PREFIX


logger = logging.getLogger(__name__)

RUNTIME_HELPER_KEYS = frozenset({"getOutput", "getMaskOutput"})


@dataclass
class HistoryState:
    """One restorable graph state."""
    nodes: list[Node]
    edges: list[Edge]


def sanitize_node_data(data: dict[str, Any]) -> dict[str, Any]:
    """Data map without functions, derived `connected*` fields, blob URLs or helper keys."""
    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        if callable(value):
            continue
        # Derived from edges; recomputed by the next propagation pass
        if key.startswith(CONNECTED_PREFIX):
            continue
        # Blob URLs do not survive the session that created them
        if isinstance(value, str) and value.startswith("blob:"):
            continue
        if key in RUNTIME_HELPER_KEYS:
            continue
        sanitized[key] = copy.deepcopy(value)
    return sanitized


def make_snapshot(nodes: list[Node], edges: list[Edge]) -> HistoryState:
    return HistoryState(
        nodes=[
            replace(node, data=sanitize_node_data(node.data),
                    position=replace(node.position),
                    size=replace(node.size) if node.size else None,
                    measured=replace(node.measured) if node.measured else None)
            for node in nodes
        ],
        edges=[copy.deepcopy(edge) for edge in edges],
    )


class UndoHistory:
    """
    Bounded undo/redo stacks.

    Taking a snapshot clears the redo stack. When full, the oldest
    snapshot is dropped.
    """

    def __init__(self, max_history: int = 50):
        self.max_history = max_history
        self._past: list[HistoryState] = []
        self._future: list[HistoryState] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._past)

    @property
    def can_redo(self) -> bool:
        return bool(self._future)

    def take_snapshot(self, nodes: list[Node], edges: list[Edge]) -> None:
        """Record the state before an undoable action."""
        self._past.append(make_snapshot(nodes, edges))
        if len(self._past) > self.max_history:
            self._past = self._past[-self.max_history:]
        self._future.clear()

    def undo(self, store: GraphStore) -> bool:
        """Restore the previous state into `store`. Returns False if there is none."""
        if not self._past:
            return False
        previous = self._past.pop()
        self._future.append(make_snapshot(store.nodes, store.edges))
        store.replace(nodes=previous.nodes, edges=previous.edges)
        logger.debug(f"Undo ({len(self._past)} left)")
        return True

    def redo(self, store: GraphStore) -> bool:
        """Re-apply the last undone state. Returns False if there is none."""
        if not self._future:
            return False
        following = self._future.pop()
        self._past.append(make_snapshot(store.nodes, store.edges))
        store.replace(nodes=following.nodes, edges=following.edges)
        logger.debug(f"Redo ({len(self._future)} left)")
        return True

    def clear(self) -> None:
        self._past.clear()
        self._future.clear()
