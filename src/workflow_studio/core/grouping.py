"""
Grouping Engine - Group frames and coordinate-frame transforms.

A group frame is a node whose direct children store positions relative
to the group's own position. Absolute positions are recovered by
walking parent links up to the root.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Iterable

import numpy as np

from workflow_studio.core.graph import (
    GROUP_NODE_TYPE,
    Node,
    Point2D,
    Size2D,
    WorkflowError,
    new_node_id,
)


logger = logging.getLogger(__name__)

GROUP_PADDING_X = 48
GROUP_PADDING_Y = 48
MIN_GROUP_WIDTH = 380
MIN_GROUP_HEIGHT = 260
FALLBACK_NODE_WIDTH = 320
FALLBACK_NODE_HEIGHT = 180

LABEL_SIZES = ("small", "medium", "large")
DEFAULT_GROUP_TITLE = "Group"


class GroupingError(WorkflowError):
    """A grouping request cannot be satisfied."""
    pass


@dataclass
class GroupResult:
    """Replacement node list after grouping."""
    nodes: list[Node]
    group_id: str


def js_round(value: float) -> int:
    """Round half up, matching how the canvas rounds coordinates."""
    return int(math.floor(value + 0.5))


def absolute_position(node: Node, node_map: dict[str, Node]) -> Point2D:
    """Position of `node` in canvas coordinates."""
    x, y = node.position.x, node.position.y
    parent_id = node.parent_id
    visited = {node.id}
    while parent_id:
        parent = node_map.get(parent_id)
        if parent is None or parent.id in visited:
            break
        visited.add(parent.id)
        x += parent.position.x
        y += parent.position.y
        parent_id = parent.parent_id
    return Point2D(x, y)


def node_dimensions(node: Node) -> Size2D:
    """Explicit size, else measured size, else the fallback size."""
    width: float = FALLBACK_NODE_WIDTH
    height: float = FALLBACK_NODE_HEIGHT
    if node.size is not None:
        width, height = node.size.width, node.size.height
    elif node.measured is not None:
        width, height = node.measured.width, node.measured.height
    return Size2D(max(1, js_round(width)), max(1, js_round(height)))


def select_group_roots(selected_ids: Iterable[str], nodes: list[Node]) -> list[Node]:
    """
    Selected, non-group nodes with no selected ancestor.

    A node whose parent chain contains another selected node is moved
    along with that ancestor and must not be grouped twice.
    """
    selected = set(selected_ids)
    node_map = {node.id: node for node in nodes}
    roots = []
    for node in nodes:
        if node.id not in selected or node.is_group:
            continue
        parent_id = node.parent_id
        nested = False
        while parent_id:
            if parent_id in selected:
                nested = True
                break
            parent = node_map.get(parent_id)
            if parent is None:
                break
            parent_id = parent.parent_id
        if not nested:
            roots.append(node)
    return roots


def group_nodes(
    selected_ids: Iterable[str],
    nodes: list[Node],
    now: int | None = None,
) -> GroupResult:
    """
    Wrap the selected top-level nodes in a new group frame.

    The group is inserted before its children and becomes the only
    selected node.

    Raises:
        GroupingError: If fewer than two nodes can be grouped.
    """
    selected = set(selected_ids)
    groupable = [node for node in nodes if node.id in selected and not node.is_group]
    if len(groupable) < 2:
        raise GroupingError("Select at least two nodes to create a group")

    roots = select_group_roots(selected, nodes)
    if len(roots) < 2:
        raise GroupingError("Select at least two top-level nodes to create a group")

    node_map = {node.id: node for node in nodes}
    absolutes = {root.id: absolute_position(root, node_map) for root in roots}

    # Rows of [x, y, width, height] in canvas coordinates
    boxes = np.array([
        [
            absolutes[root.id].x,
            absolutes[root.id].y,
            node_dimensions(root).width,
            node_dimensions(root).height,
        ]
        for root in roots
    ], dtype=np.float64)
    min_x, min_y = boxes[:, 0].min(), boxes[:, 1].min()
    max_x = (boxes[:, 0] + boxes[:, 2]).max()
    max_y = (boxes[:, 1] + boxes[:, 3]).max()

    group_x = js_round(min_x - GROUP_PADDING_X)
    group_y = js_round(min_y - GROUP_PADDING_Y)
    group_width = js_round(max(MIN_GROUP_WIDTH, max_x - min_x + GROUP_PADDING_X * 2))
    group_height = js_round(max(MIN_GROUP_HEIGHT, max_y - min_y + GROUP_PADDING_Y * 2))
    group_id = new_node_id(GROUP_NODE_TYPE, now)

    root_ids = set(absolutes)
    others: list[Node] = []
    children: list[Node] = []
    for node in nodes:
        if node.id in root_ids:
            absolute = absolutes[node.id]
            children.append(replace(
                node,
                parent_id=group_id,
                position=Point2D(
                    js_round(absolute.x - group_x),
                    js_round(absolute.y - group_y),
                ),
                selected=False,
            ))
        else:
            others.append(replace(node, selected=False))

    group = Node(
        id=group_id,
        type_tag=GROUP_NODE_TYPE,
        position=Point2D(group_x, group_y),
        size=Size2D(group_width, group_height),
        selected=True,
        data={
            "label": DEFAULT_GROUP_TITLE,
            "title": DEFAULT_GROUP_TITLE,
            "labelSize": "medium",
        },
    )
    logger.debug(f"Grouped {len(children)} node(s) into {group_id}")
    return GroupResult(nodes=others + [group] + children, group_id=group_id)


def ungroup(group_id: str, nodes: list[Node]) -> list[Node]:
    """
    Dissolve a group frame one level deep.

    Direct children move into the group's own frame (its parent, or the
    canvas) with positions converted; grandchildren stay attached to
    their immediate parent.

    Raises:
        GroupingError: If `group_id` is not a group frame.
    """
    group = next((node for node in nodes if node.id == group_id), None)
    if group is None or not group.is_group:
        raise GroupingError(f"Node {group_id} is not a group")

    result: list[Node] = []
    for node in nodes:
        if node.id == group_id:
            continue
        if node.parent_id == group_id:
            node = replace(
                node,
                parent_id=group.parent_id,
                position=Point2D(
                    js_round(group.position.x + node.position.x),
                    js_round(group.position.y + node.position.y),
                ),
            )
        result.append(node)
    return result


def set_group_label_size(group_id: str, size: str, nodes: list[Node]) -> list[Node]:
    """
    Change the title size of a group frame.

    Raises:
        GroupingError: If the size is unknown or the node is not a group.
    """
    if size not in LABEL_SIZES:
        raise GroupingError(f"Unknown label size: {size}")
    found = False
    result = []
    for node in nodes:
        if node.id == group_id and node.is_group:
            node = node.with_data({"labelSize": size})
            found = True
        result.append(node)
    if not found:
        raise GroupingError(f"Node {group_id} is not a group")
    return result
