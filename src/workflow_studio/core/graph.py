"""
Graph Model - Core data structures for the workflow canvas.

This module defines the fundamental building blocks:
- Node: A single step (producer, transform, or group frame)
- Edge: A handle-to-handle connection between two nodes
- GraphStore: The ordered collection of nodes and edges for one workflow

Node order inside the store is significant: a group frame always appears
before any node that declares it as parent.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable


logger = logging.getLogger(__name__)

GROUP_NODE_TYPE = "workflowGroup"
PATCH_CALLBACK_KEY = "onUpdateNodeData"


class WorkflowError(Exception):
    """Base exception for workflow engine errors."""
    pass


class GraphIntegrityError(WorkflowError):
    """A commit would break an id or reference invariant."""
    pass


def timestamp_ms() -> int:
    """Current wall clock in milliseconds, used for readable ids."""
    return int(time.time() * 1000)


def new_node_id(type_tag: str, now: int | None = None) -> str:
    """Generate a node ID derived from its type tag and a timestamp."""
    return f"{type_tag}-{now if now is not None else timestamp_ms()}"


@dataclass
class Point2D:
    """2D point for node positioning on the canvas."""
    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: Point2D) -> Point2D:
        return Point2D(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Point2D) -> Point2D:
        return Point2D(self.x - other.x, self.y - other.y)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass
class Size2D:
    """2D size for node dimensions."""
    width: float = 320.0
    height: float = 180.0


@dataclass
class Viewport:
    """Canvas pan/zoom state saved alongside the graph."""
    x: float = 0.0
    y: float = 0.0
    zoom: float = 1.0

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "zoom": self.zoom}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Viewport:
        if not data:
            return cls()
        return cls(
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
            zoom=float(data.get("zoom", 1.0)),
        )


@dataclass
class Node:
    """
    A single step in the workflow graph.

    Nodes have:
    - A unique ID
    - A type tag (references a NodeDefinition in the catalog)
    - A position local to the parent frame, if any
    - Optional explicit and measured sizes
    - A data map holding type-specific fields plus engine-managed ones
    """
    id: str
    type_tag: str
    position: Point2D = field(default_factory=Point2D)
    parent_id: str | None = None
    size: Size2D | None = None
    measured: Size2D | None = None
    selected: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        type_tag: str,
        position: Point2D | None = None,
        data: dict[str, Any] | None = None,
    ) -> Node:
        """Factory method to create a new node."""
        return cls(
            id=new_node_id(type_tag),
            type_tag=type_tag,
            position=position or Point2D(),
            data=dict(data or {}),
        )

    @property
    def is_group(self) -> bool:
        return self.type_tag == GROUP_NODE_TYPE

    def with_data(self, changes: dict[str, Any]) -> Node:
        """Return a copy with `changes` merged into the data map."""
        return replace(self, data={**self.data, **changes})

    def to_dict(self) -> dict[str, Any]:
        """Convert to the interchange shape (function values are kept)."""
        result: dict[str, Any] = {
            "id": self.id,
            "type": self.type_tag,
            "position": self.position.to_dict(),
            "selected": self.selected,
            "data": dict(self.data),
        }
        if self.parent_id is not None:
            result["parentId"] = self.parent_id
        if self.size is not None:
            result["width"] = self.size.width
            result["height"] = self.size.height
        if self.measured is not None:
            result["measured"] = {
                "width": self.measured.width,
                "height": self.measured.height,
            }
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        """Create a node from the interchange shape."""
        position = data.get("position") or {}
        size = None
        width = data.get("width")
        height = data.get("height")
        # Group frames saved by the canvas keep their size under `style`
        style = data.get("style") or {}
        width = width if width is not None else style.get("width")
        height = height if height is not None else style.get("height")
        if isinstance(width, (int, float)) and isinstance(height, (int, float)):
            size = Size2D(float(width), float(height))

        measured = None
        raw_measured = data.get("measured") or {}
        if isinstance(raw_measured.get("width"), (int, float)) and isinstance(
            raw_measured.get("height"), (int, float)
        ):
            measured = Size2D(float(raw_measured["width"]), float(raw_measured["height"]))

        return cls(
            id=data["id"],
            type_tag=data.get("type") or "",
            position=Point2D(float(position.get("x", 0.0)), float(position.get("y", 0.0))),
            parent_id=data.get("parentId"),
            size=size,
            measured=measured,
            selected=bool(data.get("selected", False)),
            data=dict(data.get("data") or {}),
        )


@dataclass
class EdgeStyle:
    """Display hint for an edge, derived from the producer handle kind."""
    color: str
    animated: bool = True


@dataclass
class Edge:
    """
    A directed connection from an output handle to an input handle.
    """
    id: str
    source: str
    source_handle: str
    target: str
    target_handle: str
    style: EdgeStyle | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "source": self.source,
            "sourceHandle": self.source_handle,
            "target": self.target,
            "targetHandle": self.target_handle,
        }
        if self.style is not None:
            result["animated"] = self.style.animated
            result["style"] = {"stroke": self.style.color, "strokeWidth": 2}
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edge:
        style = None
        raw_style = data.get("style") or {}
        if raw_style.get("stroke"):
            style = EdgeStyle(
                color=raw_style["stroke"],
                animated=bool(data.get("animated", False)),
            )
        return cls(
            id=data["id"],
            source=data["source"],
            source_handle=data.get("sourceHandle") or "",
            target=data["target"],
            target_handle=data.get("targetHandle") or "",
            style=style,
        )


@dataclass
class GraphChange:
    """Describes what a store commit touched."""
    nodes_changed: bool = False
    edges_changed: bool = False


GraphObserver = Callable[[GraphChange], None]
NodePatcher = Callable[[dict[str, Any]], None]


class GraphStore:
    """
    The canonical node and edge collections for one open workflow.

    Every mutation commits a full replacement list and then notifies
    observers, so observers always see a consistent snapshot.
    """

    def __init__(
        self,
        nodes: Iterable[Node] | None = None,
        edges: Iterable[Edge] | None = None,
    ):
        self._nodes: list[Node] = []
        self._edges: list[Edge] = []
        self._observers: list[GraphObserver] = []
        self.replace(nodes=list(nodes or []), edges=list(edges or []), notify=False)

    # --- Read access ---

    @property
    def nodes(self) -> list[Node]:
        """Get all nodes in store order (read-only copy)."""
        return self._nodes.copy()

    @property
    def edges(self) -> list[Edge]:
        """Get all edges (read-only copy)."""
        return self._edges.copy()

    def get_node(self, node_id: str) -> Node | None:
        for node in self._nodes:
            if node.id == node_id:
                return node
        return None

    def get_edge(self, edge_id: str) -> Edge | None:
        for edge in self._edges:
            if edge.id == edge_id:
                return edge
        return None

    def children_of(self, node_id: str) -> list[Node]:
        """Direct children of a group frame."""
        return [node for node in self._nodes if node.parent_id == node_id]

    def incoming_edges(self, node_id: str) -> list[Edge]:
        return [edge for edge in self._edges if edge.target == node_id]

    def selected_ids(self) -> set[str]:
        return {node.id for node in self._nodes if node.selected}

    # --- Observers ---

    def subscribe(self, observer: GraphObserver) -> Callable[[], None]:
        """Register an observer; returns a function that removes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self, change: GraphChange) -> None:
        for observer in list(self._observers):
            observer(change)

    # --- Mutation ---

    def replace(
        self,
        nodes: list[Node] | None = None,
        edges: list[Edge] | None = None,
        notify: bool = True,
    ) -> None:
        """
        Atomically replace the node and/or edge collections.

        Raises:
            GraphIntegrityError: If ids are duplicated.
        """
        if nodes is not None:
            _check_unique((node.id for node in nodes), "node")
        if edges is not None:
            _check_unique((edge.id for edge in edges), "edge")

        if nodes is not None:
            self._nodes = list(nodes)
        if edges is not None:
            self._edges = list(edges)

        if notify and (nodes is not None or edges is not None):
            self._notify(GraphChange(
                nodes_changed=nodes is not None,
                edges_changed=edges is not None,
            ))

    def add_node(self, node: Node) -> None:
        """Append a node to the graph."""
        self.add_nodes([node])

    def add_nodes(self, nodes: list[Node]) -> None:
        self.replace(nodes=self._nodes + list(nodes))

    def add_edge(self, edge: Edge) -> bool:
        """
        Add an edge to the graph.

        Returns False if either endpoint is missing or the target handle
        already has a producer.
        """
        if self.get_node(edge.source) is None or self.get_node(edge.target) is None:
            return False
        for existing in self._edges:
            if existing.target == edge.target and existing.target_handle == edge.target_handle:
                return False
        self.replace(edges=self._edges + [edge])
        return True

    def remove_edge(self, edge_id: str) -> Edge | None:
        """Remove an edge by ID."""
        removed = self.get_edge(edge_id)
        if removed is not None:
            self.replace(edges=[edge for edge in self._edges if edge.id != edge_id])
        return removed

    def remove_nodes(self, node_ids: Iterable[str]) -> list[Node]:
        """
        Remove nodes, their incident edges, and re-home orphaned children.

        Children of a removed group that are not removed themselves move into
        the removed group's own frame with their absolute position preserved.

        Returns the removed nodes.
        """
        return self.remove(node_ids=node_ids)

    def remove(
        self,
        node_ids: Iterable[str] = (),
        edge_ids: Iterable[str] = (),
    ) -> list[Node]:
        """Remove nodes (as remove_nodes does) and edges in a single commit."""
        doomed = set(node_ids)
        doomed_edges = set(edge_ids)
        node_map = {node.id: node for node in self._nodes}
        removed = [node for node in self._nodes if node.id in doomed]
        if not removed and not any(edge.id in doomed_edges for edge in self._edges):
            return []

        survivors: list[Node] = []
        for node in self._nodes:
            if node.id in doomed:
                continue
            parent_id = node.parent_id
            position = node.position
            # Climb past every removed ancestor into the first surviving frame
            while parent_id is not None and parent_id in doomed:
                parent = node_map.get(parent_id)
                if parent is None:
                    parent_id = None
                    break
                position = parent.position + position
                parent_id = parent.parent_id
            if parent_id != node.parent_id:
                node = replace(node, parent_id=parent_id, position=position)
            survivors.append(node)

        edges = [
            edge for edge in self._edges
            if edge.id not in doomed_edges
            and edge.source not in doomed and edge.target not in doomed
        ]
        dropped = len(self._edges) - len(edges)
        if dropped:
            logger.debug(f"Removed {dropped} edge(s)")
        self.replace(nodes=survivors, edges=edges)
        return removed

    def patch_node(self, node_id: str, **fields: Any) -> Node | None:
        """Replace fields on a single node. Returns the new node."""
        updated: Node | None = None
        nodes = []
        for node in self._nodes:
            if node.id == node_id:
                node = replace(node, **fields)
                updated = node
            nodes.append(node)
        if updated is not None:
            self.replace(nodes=nodes)
        return updated

    def patch_node_data(self, node_id: str, changes: dict[str, Any]) -> Node | None:
        """Merge `changes` into a node's data map."""
        node = self.get_node(node_id)
        if node is None:
            logger.debug(f"Ignoring data patch for missing node {node_id}")
            return None
        return self.patch_node(node_id, data={**node.data, **changes})

    def patcher(self, node_id: str) -> NodePatcher:
        """Narrow patch function handed to node-local logic."""
        def patch(changes: dict[str, Any]) -> None:
            self.patch_node_data(node_id, changes)
        return patch

    def set_selection(self, node_ids: Iterable[str]) -> None:
        wanted = set(node_ids)
        self.replace(nodes=[
            replace(node, selected=node.id in wanted) for node in self._nodes
        ])

    def clear(self) -> None:
        """Remove all nodes and edges."""
        self.replace(nodes=[], edges=[])

    # --- Utility ---

    def __len__(self) -> int:
        """Return the number of nodes."""
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return self.get_node(node_id) is not None


def strip_callables(data: dict[str, Any]) -> dict[str, Any]:
    """Copy of a data map without function-valued fields."""
    return {key: value for key, value in data.items() if not callable(value)}


def _check_unique(ids: Iterable[str], kind: str) -> None:
    seen: set[str] = set()
    for item_id in ids:
        if item_id in seen:
            raise GraphIntegrityError(f"Duplicate {kind} id: {item_id}")
        seen.add(item_id)
