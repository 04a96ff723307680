"""
Propagation Engine - Moves upstream values into downstream nodes.

Two resolution strategies coexist:
- merge_connected_values: the reactive pass. It caches upstream values
  in `connected*` fields on consumer nodes for display. Eventually
  consistent.
- resolve_inputs: the on-demand exact resolver. It walks the current
  edges and nodes at the moment an action runs and never reads the
  cached fields.

Both use the same producer rules (producer_value).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import replace
from typing import Any, Callable, Iterable

from workflow_studio.core.graph import (
    PATCH_CALLBACK_KEY,
    Edge,
    GraphChange,
    GraphStore,
    Node,
    NodePatcher,
    WorkflowError,
)
from workflow_studio.core.handles import (
    IMAGE_OUTPUT,
    PAINTER_MASK_OUTPUT,
    HandleKind,
    resolve_handles,
)


logger = logging.getLogger(__name__)

CONNECTED_PREFIX = "connected"

# Input handle ids that share a cached field name with another id
_HANDLE_ALIASES = {IMAGE_OUTPUT: "image"}


class InputValidationError(WorkflowError):
    """Required inputs have no value when an action is about to run."""

    def __init__(self, node_id: str, missing: list[str]):
        self.node_id = node_id
        self.missing = missing
        labels = ", ".join(missing)
        super().__init__(f"Missing required input(s): {labels}")


def connected_field_name(handle_id: str) -> str:
    """
    Name of the cached field that mirrors an input handle.

    `prompt` -> `connectedPrompt`, `image_2` -> `connectedImage_2`.
    """
    handle_id = _HANDLE_ALIASES.get(handle_id, handle_id)
    head, sep, tail = handle_id.rpartition("_")
    if sep and head and tail.isdigit():
        return f"{CONNECTED_PREFIX}{head[:1].upper()}{head[1:]}_{tail}"
    return f"{CONNECTED_PREFIX}{handle_id[:1].upper()}{handle_id[1:]}"


def _string(value: Any) -> str:
    return value if isinstance(value, str) else ""


def producer_value(producer: Node, source_handle: str, kind: HandleKind) -> str | None:
    """
    Value a producer offers on `source_handle`.

    Upload and text-source nodes always offer their raw field (possibly
    empty). Other producers offer their generic output, or None when
    they have not produced anything yet.
    """
    data = producer.data
    if kind is HandleKind.TEXT:
        if producer.type_tag == "textInput":
            return _string(data.get("text"))
        return _string(data.get("output")) or None

    if kind is HandleKind.IMAGE:
        if producer.type_tag == "imageUpload":
            return _string(data.get("imageUrl"))
        if source_handle == PAINTER_MASK_OUTPUT:
            return _string(data.get("maskOutput")) or None
        return _string(data.get("output")) or _string(data.get("imageOutput")) or None

    if kind is HandleKind.VIDEO:
        if producer.type_tag == "videoUpload":
            return _string(data.get("videoUrl"))
        return _string(data.get("output")) or _string(data.get("videoUrl")) or None

    return None


def _edge_kind(consumer: Node, edge: Edge) -> HandleKind | None:
    target_input = resolve_handles(consumer.type_tag, consumer.data).get_input(edge.target_handle)
    if target_input is None:
        return None
    return target_input.kind


def _resolve_edges(
    consumer: Node,
    incoming: Iterable[Edge],
    node_map: dict[str, Node],
) -> dict[str, str]:
    """Map each connected input handle of `consumer` to its upstream value."""
    values: dict[str, str] = {}
    for edge in incoming:
        producer = node_map.get(edge.source)
        if producer is None:
            continue
        kind = _edge_kind(consumer, edge)
        if kind is None:
            continue
        value = producer_value(producer, edge.source_handle, kind)
        if value is not None:
            values[edge.target_handle] = value
    return values


def merge_connected_values(
    nodes: list[Node],
    edges: list[Edge],
    patch_factory: Callable[[str], NodePatcher] | None = None,
) -> tuple[list[Node], bool]:
    """
    Run one reactive pass over the whole graph.

    Returns the replacement node list and whether anything changed.
    A node is only rewritten when a resolved field differs from its
    cached value, a cached field lost its edge, or it lacks the patch
    callback.
    """
    node_map = {node.id: node for node in nodes}
    incoming: dict[str, list[Edge]] = defaultdict(list)
    for edge in edges:
        incoming[edge.target].append(edge)

    changed = False
    result: list[Node] = []
    for node in nodes:
        resolved = _resolve_edges(node, incoming.get(node.id, ()), node_map)
        connected = {connected_field_name(handle): value for handle, value in resolved.items()}

        updates = {
            key: value for key, value in connected.items()
            if key not in node.data or node.data[key] != value
        }
        stale = [
            key for key in node.data
            if key.startswith(CONNECTED_PREFIX) and key not in connected
        ]
        if patch_factory is not None and not callable(node.data.get(PATCH_CALLBACK_KEY)):
            updates[PATCH_CALLBACK_KEY] = patch_factory(node.id)

        if updates or stale:
            data = {key: value for key, value in node.data.items() if key not in stale}
            data.update(updates)
            node = replace(node, data=data)
            changed = True
        result.append(node)

    return result, changed


def resolve_inputs(node_id: str, nodes: list[Node], edges: list[Edge]) -> dict[str, str]:
    """
    Exact upstream values for a node's input handles, keyed by handle id.

    Reads the current edges and producer nodes only, so it is fresh even
    when the reactive pass has not caught up.
    """
    node_map = {node.id: node for node in nodes}
    consumer = node_map.get(node_id)
    if consumer is None:
        return {}
    incoming = [edge for edge in edges if edge.target == node_id]
    return _resolve_edges(consumer, incoming, node_map)


def validate_required_inputs(node: Node, resolved: dict[str, str]) -> dict[str, str]:
    """
    Combine resolved upstream values with the node's own typed fields.

    An upstream value wins; otherwise a text input falls back to a
    non-empty field of the same name on the node (e.g. a typed `prompt`).

    Raises:
        InputValidationError: If a required input has no value.
    """
    handles = resolve_handles(node.type_tag, node.data)
    values: dict[str, str] = {}
    missing: list[str] = []
    for handle in handles.inputs:
        value = resolved.get(handle.id)
        if not value and handle.kind is HandleKind.TEXT:
            value = _string(node.data.get(handle.id))
        if value:
            values[handle.id] = value
        elif handle.required:
            missing.append(handle.label)
    if missing:
        raise InputValidationError(node.id, missing)
    return values


class ReactivePropagator:
    """
    Store observer that keeps cached `connected*` fields up to date.

    The pass commits at most one replacement per notification; its own
    commit does not trigger another pass.
    """

    def __init__(self, store: GraphStore, attach_patchers: bool = True):
        self._store = store
        self._attach_patchers = attach_patchers
        self._running = False
        self._unsubscribe = store.subscribe(self._on_change)

    def _on_change(self, change: GraphChange) -> None:
        if self._running:
            return
        self.run()

    def run(self) -> bool:
        """Run one pass now. Returns True if the store was updated."""
        self._running = True
        try:
            nodes, changed = merge_connected_values(
                self._store.nodes,
                self._store.edges,
                self._store.patcher if self._attach_patchers else None,
            )
            if changed:
                self._store.replace(nodes=nodes)
            return changed
        finally:
            self._running = False

    def close(self) -> None:
        """Stop observing the store."""
        self._unsubscribe()
