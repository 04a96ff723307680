"""
Connection Validator - Decides whether a proposed edge may be created.

Validation is advisory: callers insert the edge themselves on accept,
styled by the kind of the producing handle.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from workflow_studio.core.graph import Edge, EdgeStyle, Node, timestamp_ms
from workflow_studio.core.handles import HandleKind, resolve_handles, source_handle_kind


EDGE_COLORS: dict[HandleKind | None, str] = {
    HandleKind.TEXT: "#38bdf8",
    HandleKind.IMAGE: "#34d399",
    HandleKind.VIDEO: "#a78bfa",
    None: "#94a3b8",
}


@dataclass
class ConnectionCandidate:
    """A connect gesture that has not been committed yet."""
    source: str | None
    source_handle: str | None
    target: str | None
    target_handle: str | None


def can_connect(
    candidate: ConnectionCandidate,
    edges: Iterable[Edge],
    nodes: Iterable[Node],
) -> bool:
    """
    Check whether `candidate` may become an edge.

    Rejects malformed candidates, occupied input handles, unknown input
    handles, and producers the input does not accept.
    """
    target = candidate.target
    target_handle = candidate.target_handle
    source_handle = candidate.source_handle

    if not isinstance(target, str) or not target:
        return False
    if not isinstance(target_handle, str) or not target_handle:
        return False
    if not isinstance(source_handle, str):
        return False

    # One producer per input handle
    for edge in edges:
        if edge.target == target and edge.target_handle == target_handle:
            return False

    target_node = next((node for node in nodes if node.id == target), None)
    if target_node is None:
        return False

    target_input = resolve_handles(target_node.type_tag, target_node.data).get_input(target_handle)
    if target_input is None:
        return False

    return target_input.accepts(source_handle)


def kind_for_source_handle(source_handle: str | None) -> HandleKind | None:
    """Kind of value produced on `source_handle`, or None if it is not an output."""
    return source_handle_kind(source_handle)


def edge_color_for_source_handle(source_handle: str | None) -> str:
    """Display colour for an edge leaving `source_handle`."""
    return EDGE_COLORS.get(kind_for_source_handle(source_handle), EDGE_COLORS[None])


def new_edge_id(candidate: ConnectionCandidate) -> str:
    return (
        f"xy-edge__{candidate.source}{candidate.source_handle}"
        f"-{candidate.target}{candidate.target_handle}-{timestamp_ms()}"
    )


def build_edge(candidate: ConnectionCandidate, animated: bool = True) -> Edge:
    """Create the styled edge for an accepted candidate."""
    if not (candidate.source and candidate.source_handle
            and candidate.target and candidate.target_handle):
        raise ValueError("Cannot build an edge from an incomplete candidate")
    return Edge(
        id=new_edge_id(candidate),
        source=candidate.source,
        source_handle=candidate.source_handle,
        target=candidate.target,
        target_handle=candidate.target_handle,
        style=EdgeStyle(
            color=edge_color_for_source_handle(candidate.source_handle),
            animated=animated,
        ),
    )
