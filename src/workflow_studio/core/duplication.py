"""
Duplication Engine - Copies of subgraphs with fresh identities.

Duplicating a group copies its whole subtree. Edges are copied only when
both endpoints are inside the copied set, and parent links inside the set
are remapped to the new ids.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any

from workflow_studio.core.graph import (
    GROUP_NODE_TYPE,
    Edge,
    GraphStore,
    Node,
    Point2D,
    strip_callables,
    timestamp_ms,
)


logger = logging.getLogger(__name__)

DUPLICATE_OFFSET_X = 40
DUPLICATE_OFFSET_Y = 40
DUPLICATE_TITLE_PREFIX = "Duplicate of "


@dataclass
class DuplicationResult:
    """New nodes and edges produced by a duplicate request."""
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    id_map: dict[str, str] = field(default_factory=dict)


def collect_descendants(group_id: str, nodes: list[Node]) -> list[Node]:
    """All nodes nested under `group_id`, children before grandchildren."""
    children = [node for node in nodes if node.parent_id == group_id]
    descendants = list(children)
    for child in children:
        if child.type_tag == GROUP_NODE_TYPE:
            descendants.extend(collect_descendants(child.id, nodes))
    return descendants


def resolve_selection(target_id: str, nodes: list[Node]) -> list[Node]:
    """
    Nodes affected by a duplicate or copy request on `target_id`.

    When the target is part of a multi-selection, the whole selection is
    used; otherwise only the target. Selected groups bring their subtree.
    """
    selected = [node for node in nodes if node.selected]
    if len(selected) > 1 and any(node.id == target_id for node in selected):
        picked = list(selected)
    else:
        target = next((node for node in nodes if node.id == target_id), None)
        if target is None:
            return []
        picked = [target]

    seen = {node.id for node in picked}
    for node in list(picked):
        if node.type_tag != GROUP_NODE_TYPE:
            continue
        for descendant in collect_descendants(node.id, nodes):
            if descendant.id not in seen:
                seen.add(descendant.id)
                picked.append(descendant)
    return picked


def _internal_edges(picked: list[Node], edges: list[Edge]) -> list[Edge]:
    ids = {node.id for node in picked}
    return [edge for edge in edges if edge.source in ids and edge.target in ids]


def _duplicate_group_data(data: dict[str, Any]) -> dict[str, Any]:
    title = data.get("title")
    if not title:
        return dict(data)
    return {
        **data,
        "title": f"{DUPLICATE_TITLE_PREFIX}{title}",
        "label": f"{DUPLICATE_TITLE_PREFIX}{data.get('label') or title}",
    }


def duplicate(
    target_id: str,
    nodes: list[Node],
    edges: list[Edge],
    now: int | None = None,
) -> DuplicationResult:
    """
    Build copies of the selection around `target_id`.

    Top-level copies are offset and selected. Copies nested in a copied
    group keep their relative position and stay unselected. A copy whose
    parent was not copied keeps the original parent.
    """
    picked = resolve_selection(target_id, nodes)
    if not picked:
        return DuplicationResult()

    stamp = now if now is not None else timestamp_ms()
    id_map = {
        node.id: f"{node.type_tag}-{stamp}-{index}"
        for index, node in enumerate(picked)
    }

    copies: list[Node] = []
    for node in picked:
        mapped_parent = id_map.get(node.parent_id, node.parent_id) if node.parent_id else None
        # Patch callbacks are bound to the original id
        data = strip_callables(node.data)
        if node.is_group:
            data = _duplicate_group_data(data)
        offset = Point2D(0, 0) if mapped_parent else Point2D(DUPLICATE_OFFSET_X, DUPLICATE_OFFSET_Y)
        copies.append(replace(
            node,
            id=id_map[node.id],
            parent_id=mapped_parent,
            position=node.position + offset,
            selected=not mapped_parent,
            data=data,
        ))

    copied_edges = [
        replace(
            edge,
            id=f"edge-{stamp}-{index}",
            source=id_map[edge.source],
            target=id_map[edge.target],
        )
        for index, edge in enumerate(_internal_edges(picked, edges))
    ]
    logger.debug(f"Duplicated {len(copies)} node(s) and {len(copied_edges)} edge(s)")
    return DuplicationResult(nodes=copies, edges=copied_edges, id_map=id_map)


def apply_duplication(store: GraphStore, result: DuplicationResult) -> None:
    """Deselect everything and append the copies to the store."""
    if not result.nodes:
        return
    nodes = [replace(node, selected=False) for node in store.nodes]
    store.replace(nodes=nodes + result.nodes, edges=store.edges + result.edges)


def copy_selection(target_id: str, nodes: list[Node], edges: list[Edge]) -> dict[str, Any]:
    """Clipboard payload for the selection around `target_id`, ids unchanged."""
    picked = resolve_selection(target_id, nodes)
    payload_nodes = []
    for node in picked:
        entry = node.to_dict()
        entry["data"] = strip_callables(node.data)
        payload_nodes.append(entry)
    return {
        "nodes": payload_nodes,
        "edges": [edge.to_dict() for edge in _internal_edges(picked, edges)],
    }


def copy_to_json(target_id: str, nodes: list[Node], edges: list[Edge]) -> str:
    return json.dumps(copy_selection(target_id, nodes, edges), indent=2)
