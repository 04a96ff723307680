"""
Workflow Import/Export - Validate and produce the interchange JSON shape.

The interchange shape is:

    {"id"?, "name", "nodes": [...], "edges": [...],
     "viewport": {"x", "y", "zoom"}, "exportedAt"?}

Imported payloads are validated field by field before anything reaches
a graph store; every problem found is reported, not just the first.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import urlparse

from workflow_studio.core.graph import (
    GROUP_NODE_TYPE,
    Edge,
    Node,
    Viewport,
    WorkflowError,
    strip_callables,
    timestamp_ms,
)


MIN_ZOOM = 0.1
MAX_ZOOM = 10.0
MAX_NAME_LENGTH = 255

# Data fields that may hold media references
MEDIA_URL_FIELDS = ("imageUrl", "assetPath", "videoUrl", "audioUrl", "output")
MEDIA_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg",
    ".mp4", ".webm", ".mov", ".avi", ".mp3", ".wav", ".ogg",
)


class ImportValidationError(WorkflowError):
    """An imported payload does not have the interchange shape."""

    def __init__(self, message: str, details: list[str] | None = None):
        super().__init__(message)
        self.details = details or []

    def __str__(self) -> str:
        if not self.details:
            return self.args[0]
        return f"{self.args[0]}:\n" + "\n".join(self.details)


@dataclass
class WorkflowDocument:
    """A complete workflow in interchange form."""
    name: str
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    viewport: Viewport = field(default_factory=Viewport)
    id: str | None = None
    exported_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.id is not None:
            result["id"] = self.id
        result["name"] = self.name
        result["nodes"] = [node.to_dict() for node in self.nodes]
        result["edges"] = [edge.to_dict() for edge in self.edges]
        result["viewport"] = self.viewport.to_dict()
        if self.exported_at is not None:
            result["exportedAt"] = self.exported_at
        return result


@dataclass
class MediaFile:
    """A media reference found in node data."""
    url: str
    filename: str


# --- Validation helpers ---

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite(value: Any) -> bool:
    return _is_number(value) and math.isfinite(value)


def _require_string(obj: dict, key: str, path: str, message: str, errors: list[str]) -> None:
    value = obj.get(key)
    if not isinstance(value, str) or not value:
        errors.append(f"{path}.{key}: {message}")


def _optional_type(obj: dict, key: str, kinds: tuple, path: str, errors: list[str]) -> None:
    if key in obj and obj[key] is not None and not isinstance(obj[key], kinds):
        errors.append(f"{path}.{key}: Invalid type")


def _validate_node(raw: Any, path: str, errors: list[str]) -> None:
    if not isinstance(raw, dict):
        errors.append(f"{path}: Expected object")
        return
    _require_string(raw, "id", path, "Node ID is required", errors)
    _require_string(raw, "type", path, "Node type is required", errors)

    position = raw.get("position")
    if not isinstance(position, dict):
        errors.append(f"{path}.position: Required")
    else:
        for axis in ("x", "y"):
            if not _is_finite(position.get(axis)):
                errors.append(f"{path}.position.{axis}: Expected number")

    _optional_type(raw, "data", (dict,), path, errors)
    _optional_type(raw, "selected", (bool,), path, errors)
    _optional_type(raw, "parentId", (str,), path, errors)
    for key in ("width", "height"):
        if raw.get(key) is not None and not _is_finite(raw[key]):
            errors.append(f"{path}.{key}: Expected number")


def _validate_parents(nodes: list[Any], errors: list[str]) -> None:
    """A parentId must name a group frame listed earlier."""
    seen: dict[str, Any] = {}
    for index, raw in enumerate(nodes):
        if not isinstance(raw, dict):
            continue
        parent_id = raw.get("parentId")
        if isinstance(parent_id, str):
            if parent_id not in seen:
                errors.append(
                    f"nodes.{index}.parentId: Parent {parent_id} must be listed before its children"
                )
            elif seen[parent_id] != GROUP_NODE_TYPE:
                errors.append(f"nodes.{index}.parentId: Parent {parent_id} is not a group")
        node_id = raw.get("id")
        if isinstance(node_id, str):
            seen.setdefault(node_id, raw.get("type"))


def _validate_edge(raw: Any, path: str, errors: list[str]) -> None:
    if not isinstance(raw, dict):
        errors.append(f"{path}: Expected object")
        return
    _require_string(raw, "id", path, "Edge ID is required", errors)
    _require_string(raw, "source", path, "Edge source is required", errors)
    _require_string(raw, "target", path, "Edge target is required", errors)
    _optional_type(raw, "sourceHandle", (str,), path, errors)
    _optional_type(raw, "targetHandle", (str,), path, errors)
    _optional_type(raw, "animated", (bool,), path, errors)
    _optional_type(raw, "style", (dict,), path, errors)


def _validate_viewport(raw: Any, errors: list[str]) -> None:
    if not isinstance(raw, dict):
        errors.append("viewport: Expected object")
        return
    for key in ("x", "y", "zoom"):
        if not _is_finite(raw.get(key)):
            errors.append(f"viewport.{key}: Expected finite number")
    zoom = raw.get("zoom")
    if _is_finite(zoom) and not MIN_ZOOM <= zoom <= MAX_ZOOM:
        errors.append(f"viewport.zoom: Must be between {MIN_ZOOM} and {MAX_ZOOM:g}")


def _parse_timestamp(value: str) -> bool:
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
        return True
    except ValueError:
        return False


def validate_workflow_payload(payload: Any) -> WorkflowDocument:
    """
    Check a decoded payload and build a WorkflowDocument from it.

    Raises:
        ImportValidationError: With one detail line per problem found.
    """
    if not isinstance(payload, dict):
        raise ImportValidationError("Invalid workflow structure", ["Expected an object"])

    errors: list[str] = []

    name = payload.get("name")
    if not isinstance(name, str) or not name:
        errors.append("name: Workflow name is required")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append("name: Workflow name is too long")

    if payload.get("id") is not None and not isinstance(payload["id"], str):
        errors.append("id: Expected string")

    nodes = payload.get("nodes")
    if not isinstance(nodes, list):
        errors.append("nodes: Nodes array is required")
    else:
        for index, raw in enumerate(nodes):
            _validate_node(raw, f"nodes.{index}", errors)
        _validate_parents(nodes, errors)

    edges = payload.get("edges")
    if not isinstance(edges, list):
        errors.append("edges: Edges array is required")
    else:
        for index, raw in enumerate(edges):
            _validate_edge(raw, f"edges.{index}", errors)

    if payload.get("viewport") is not None:
        _validate_viewport(payload["viewport"], errors)

    exported_at = payload.get("exportedAt")
    if exported_at is not None and (
        not isinstance(exported_at, str) or not _parse_timestamp(exported_at)
    ):
        errors.append("exportedAt: Invalid datetime")

    if errors:
        raise ImportValidationError("Invalid workflow structure", errors)

    return WorkflowDocument(
        name=name,
        nodes=[Node.from_dict(raw) for raw in nodes],
        edges=[Edge.from_dict(raw) for raw in edges],
        viewport=Viewport.from_dict(payload.get("viewport")),
        id=payload.get("id"),
        exported_at=exported_at,
    )


def import_workflow_json(text: str) -> WorkflowDocument:
    """
    Parse and validate an exported workflow file.

    Raises:
        ImportValidationError: For invalid JSON, an invalid shape, or an
            empty workflow.
    """
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ImportValidationError(
            "Invalid JSON file - file is corrupted or not valid JSON", [str(e)]
        ) from e

    document = validate_workflow_payload(payload)
    if not document.nodes and not document.edges:
        raise ImportValidationError("Workflow is empty - must contain at least one node or edge")
    return document


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def export_workflow(document: WorkflowDocument) -> dict[str, Any]:
    """
    Interchange dict for a document, ready to be written as JSON.

    Selection state and function-valued data fields are dropped and
    `exportedAt` is stamped with the current time.
    """
    clean = replace(
        document,
        nodes=[
            replace(node, selected=False, data=strip_callables(node.data))
            for node in document.nodes
        ],
        exported_at=_iso_now(),
    )
    return clean.to_dict()


def export_workflow_json(document: WorkflowDocument) -> str:
    return json.dumps(export_workflow(document), indent=2)


# --- Media references ---

def is_media_url(url: str) -> bool:
    """Whether `url` looks like an http(s) media file or an inline media data URL."""
    if url.startswith(("http://", "https://")):
        lowered = url.lower()
        has_extension = any(ext in lowered for ext in MEDIA_EXTENSIONS)
        is_cloud_storage = "cloudflare" in lowered or "r2.dev" in lowered
        return has_extension or is_cloud_storage
    return url.startswith(("data:image/", "data:video/", "data:audio/"))


def media_filename(url: str, provided: str | None = None) -> str:
    """File name for a media reference, preferring the node's own `fileName`."""
    if provided:
        return provided
    if url.startswith("data:"):
        match = re.match(r"^data:([^;,]+)", url)
        ext = match.group(1).split("/")[-1] if match else "bin"
        return f"asset-{timestamp_ms()}.{ext or 'bin'}"
    name = PurePosixPath(urlparse(url).path).name
    return name or f"asset-{timestamp_ms()}.bin"


def extract_media_urls(nodes: list[Node]) -> list[MediaFile]:
    """Unique media references held in node data, in node order."""
    media: list[MediaFile] = []
    seen: set[str] = set()
    for node in nodes:
        file_name = node.data.get("fileName")
        for key in MEDIA_URL_FIELDS:
            value = node.data.get(key)
            if not isinstance(value, str) or not value or value in seen:
                continue
            if not is_media_url(value):
                continue
            seen.add(value)
            media.append(MediaFile(
                url=value,
                filename=media_filename(value, file_name if isinstance(file_name, str) else None),
            ))
    return media
