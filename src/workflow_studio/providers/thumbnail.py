"""
Graph Thumbnailer - Renders a small PNG preview of a workflow graph.

Nodes are drawn as boxes coloured by their output kind, group frames as
outlines, and edges as straight lines from the producer's right edge to
the consumer's left edge.
"""

from __future__ import annotations

import logging
from io import BytesIO

import numpy as np
from PIL import Image, ImageDraw

from workflow_studio.core.connections import EDGE_COLORS
from workflow_studio.core.graph import Edge, Node
from workflow_studio.core.grouping import absolute_position, node_dimensions
from workflow_studio.core.handles import resolve_handles
from workflow_studio.providers.base import WorkflowBackend


logger = logging.getLogger(__name__)

BACKGROUND_COLOR = "#0f172a"
GROUP_OUTLINE_COLOR = "#475569"
NODE_OUTLINE_COLOR = "#1e293b"


class GraphThumbnailer:
    """Renders graphs to PNG and uploads previews through a backend."""

    def __init__(
        self,
        backend: WorkflowBackend | None = None,
        size: tuple[int, int] = (640, 360),
        margin: int = 16,
    ):
        self.backend = backend
        self.size = size
        self.margin = margin

    def _boxes(self, nodes: list[Node]) -> np.ndarray:
        """Rows of [x0, y0, x1, y1] in canvas coordinates, in node order."""
        node_map = {node.id: node for node in nodes}
        rows = []
        for node in nodes:
            origin = absolute_position(node, node_map)
            size = node_dimensions(node)
            rows.append([origin.x, origin.y, origin.x + size.width, origin.y + size.height])
        return np.array(rows, dtype=np.float64).reshape(-1, 4)

    def render(self, nodes: list[Node], edges: list[Edge]) -> Image.Image:
        """Draw the graph scaled to fit the thumbnail."""
        width, height = self.size
        image = Image.new("RGB", self.size, BACKGROUND_COLOR)
        if not nodes:
            return image

        boxes = self._boxes(nodes)
        lo = boxes[:, :2].min(axis=0)
        hi = boxes[:, 2:].max(axis=0)
        extent = np.maximum(hi - lo, 1.0)
        inner = np.array([width - 2 * self.margin, height - 2 * self.margin], dtype=np.float64)
        scale = float(np.min(inner / extent))
        # Center the drawing inside the margins
        offset = self.margin + (inner - extent * scale) / 2

        screen = np.empty_like(boxes)
        screen[:, 0::2] = (boxes[:, 0::2] - lo[0]) * scale + offset[0]
        screen[:, 1::2] = (boxes[:, 1::2] - lo[1]) * scale + offset[1]
        rects = {node.id: tuple(screen[i]) for i, node in enumerate(nodes)}

        draw = ImageDraw.Draw(image)
        for node in nodes:
            if node.is_group:
                draw.rectangle(rects[node.id], outline=GROUP_OUTLINE_COLOR, width=2)

        for edge in edges:
            source = rects.get(edge.source)
            target = rects.get(edge.target)
            if source is None or target is None:
                continue
            color = edge.style.color if edge.style else EDGE_COLORS[None]
            start = (source[2], (source[1] + source[3]) / 2)
            end = (target[0], (target[1] + target[3]) / 2)
            draw.line([start, end], fill=color, width=2)

        for node in nodes:
            if node.is_group:
                continue
            outputs = resolve_handles(node.type_tag, node.data).outputs
            kind = outputs[0].kind if outputs else None
            draw.rectangle(rects[node.id], fill=EDGE_COLORS[kind], outline=NODE_OUTLINE_COLOR)

        return image

    def render_png(self, nodes: list[Node], edges: list[Edge]) -> bytes:
        buf = BytesIO()
        self.render(nodes, edges).save(buf, format="PNG")
        return buf.getvalue()

    async def capture(self, workflow_id: str, nodes: list[Node], edges: list[Edge]) -> str | None:
        """
        Render and upload a thumbnail.

        Failures are logged and never raised.
        """
        if self.backend is None:
            return None
        try:
            png = self.render_png(nodes, edges)
            return await self.backend.upload_thumbnail(workflow_id, png)
        except Exception as e:
            logger.warning(f"Thumbnail capture failed for {workflow_id}: {e}")
            return None
