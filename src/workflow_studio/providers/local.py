"""
Local Collaborators - Disk storage and in-process node actions.

Each workflow is a JSON file named after its id inside a workspace
directory; thumbnails are stored next to it as PNG files.

Actions that need no remote service (prompt concatenation, blur) run in
the editor process.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Any
from uuid import uuid4

from PIL import Image, ImageFilter

from workflow_studio.providers.base import (
    ActionRequest,
    ActionResult,
    BackendError,
    GenerationError,
    GenerationProvider,
    WorkflowBackend,
    WorkflowRecord,
)


logger = logging.getLogger(__name__)

# Workspace storage directory
WORKSPACE_DIR = Path.home() / ".local" / "share" / "workflow_studio" / "workflows"


class FileWorkflowBackend(WorkflowBackend):
    """Workflow storage in a local directory."""

    def __init__(self, directory: Path | None = None):
        self.directory = Path(directory) if directory is not None else WORKSPACE_DIR

    def _ensure_dir(self) -> Path:
        """Get the workspace directory, creating if needed."""
        self.directory.mkdir(parents=True, exist_ok=True)
        return self.directory

    def _path(self, workflow_id: str) -> Path:
        return self._ensure_dir() / f"{workflow_id}.json"

    def thumbnail_path(self, workflow_id: str) -> Path:
        return self._ensure_dir() / f"{workflow_id}.png"

    def _read(self, workflow_id: str) -> WorkflowRecord:
        path = self._path(workflow_id)
        if not path.exists():
            raise BackendError(f"Workflow not found: {workflow_id}", status=404)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise BackendError(f"Failed to parse workflow {path}: {e}") from e
        return WorkflowRecord.from_dict(data)

    def _write(self, record: WorkflowRecord) -> None:
        record.updated_at = datetime.now().isoformat()
        with open(self._path(record.id), "w", encoding="utf-8") as f:
            json.dump(record.to_dict(), f, indent=2)

    async def create(self, name: str | None = None) -> WorkflowRecord:
        record = WorkflowRecord(id=uuid4().hex, name=name or "Untitled")
        self._write(record)
        logger.info(f"Created workflow {record.id} ({record.name})")
        return record

    async def load(self, workflow_id: str) -> WorkflowRecord:
        return self._read(workflow_id)

    async def save(
        self,
        workflow_id: str,
        nodes: list[dict[str, Any]],
        edges: list[dict[str, Any]],
        viewport: dict[str, float],
    ) -> None:
        record = self._read(workflow_id)
        record.nodes = nodes
        record.edges = edges
        record.viewport = viewport
        self._write(record)

    async def rename(self, workflow_id: str, name: str) -> None:
        record = self._read(workflow_id)
        record.name = name
        self._write(record)

    async def delete(self, workflow_id: str) -> None:
        path = self._path(workflow_id)
        if not path.exists():
            raise BackendError(f"Workflow not found: {workflow_id}", status=404)
        path.unlink()
        thumbnail = self.thumbnail_path(workflow_id)
        if thumbnail.exists():
            thumbnail.unlink()

    async def duplicate(self, workflow_id: str) -> WorkflowRecord:
        source = self._read(workflow_id)
        copy = WorkflowRecord(
            id=uuid4().hex,
            name=f"{source.name} (Copy)",
            nodes=source.nodes,
            edges=source.edges,
            viewport=source.viewport,
        )
        self._write(copy)
        return copy

    async def upload_thumbnail(self, workflow_id: str, png_bytes: bytes) -> str | None:
        record = self._read(workflow_id)
        path = self.thumbnail_path(workflow_id)
        path.write_bytes(png_bytes)
        record.thumbnail = str(path)
        self._write(record)
        return str(path)

    def list_workflows(self) -> list[dict[str, Any]]:
        """
        List all saved workflows.

        Returns:
            List of metadata dicts with 'id', 'name', 'updated_at', 'node_count'
        """
        workflows = []
        for path in self._ensure_dir().glob("*.json"):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                workflows.append({
                    "id": data.get("id", path.stem),
                    "name": data.get("name", path.stem),
                    "updated_at": data.get("updatedAt") or "",
                    "node_count": len((data.get("data") or {}).get("nodes", [])),
                })
            except (json.JSONDecodeError, KeyError):
                continue

        # Sort by most recent
        workflows.sort(key=lambda w: w["updated_at"], reverse=True)
        return workflows


class PromptConcatenatorProvider(GenerationProvider):
    """Joins connected prompts, in handle order, followed by the node's own text."""

    id = "concatenate"
    name = "Prompt Concatenator"
    type_tags = ("promptConcatenator",)

    async def run(self, request: ActionRequest) -> ActionResult:
        prompts = [
            request.inputs[key].strip()
            for key in sorted(
                (key for key in request.inputs if key.startswith("prompt_")),
                key=lambda key: int(key.rpartition("_")[2]),
            )
        ]
        extra = request.params.get("additionalText")
        prompts.append(extra.strip() if isinstance(extra, str) else "")
        return ActionResult(fields={"output": "\n\n".join(p for p in prompts if p)})


def _load_image(reference: str) -> Image.Image:
    """Open an image from a data URL or a local file path."""
    if reference.startswith("data:"):
        try:
            payload = reference.split(",", 1)[1]
            return Image.open(BytesIO(base64.b64decode(payload)))
        except (IndexError, ValueError, OSError) as e:
            raise GenerationError(f"Invalid image data URL: {e}") from e
    path = Path(reference)
    if not path.exists():
        raise GenerationError(f"Cannot read image: {reference}")
    return Image.open(path)


def _to_data_url(image: Image.Image) -> str:
    buf = BytesIO()
    image.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()


class BlurProvider(GenerationProvider):
    """Gaussian or box blur applied with Pillow."""

    id = "blur"
    name = "Blur"
    type_tags = ("blur",)

    async def run(self, request: ActionRequest) -> ActionResult:
        source = request.inputs.get("imageOutput")
        if not source:
            raise GenerationError("No image to blur")

        start = time.time()
        size = float(request.params.get("blurSize") or 0)

        # Run in thread pool to avoid blocking event loop
        loop = asyncio.get_running_loop()
        url = await loop.run_in_executor(
            None,
            self._blur_sync,
            source,
            request.params.get("blurType"),
            size,
        )
        return ActionResult(fields={"output": url, "imageOutput": url}, elapsed=time.time() - start)

    def _blur_sync(self, source: str, blur_type: str | None, size: float) -> str:
        image = _load_image(source).convert("RGBA")
        if size > 0:
            if blur_type == "box":
                image = image.filter(ImageFilter.BoxBlur(size))
            else:
                image = image.filter(ImageFilter.GaussianBlur(size))
        return _to_data_url(image)
