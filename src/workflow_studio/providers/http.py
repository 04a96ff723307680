"""
HTTP Collaborators - Workflow storage and node actions over a REST API.

The server exposes:
- /api/workflows                    POST create
- /api/workflows/<id>               GET load, PATCH save/rename, DELETE
- /api/workflows/<id>/duplicate     POST
- /api/workflows/<id>/thumbnail     POST multipart upload
- /api/providers/<provider>/<route> POST node actions
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import aiohttp

from workflow_studio.providers.base import (
    ActionRequest,
    ActionResult,
    AuthenticationError,
    BackendError,
    GenerationError,
    GenerationProvider,
    ProviderConfig,
    RateLimitError,
    WorkflowBackend,
    WorkflowRecord,
)


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3000"


def _check_status(
    status: int,
    data: Any,
    what: str,
    error_class: type[BackendError] | type[GenerationError] = BackendError,
) -> None:
    """
    Raise the matching ProviderError for an HTTP error status.

    Statuses without a dedicated error raise `error_class`.
    """
    if status in (401, 403):
        raise AuthenticationError(f"{what}: not authorized")
    if status == 429:
        error = RateLimitError(f"{what}: rate limit exceeded")
        error.retry_after = 60
        raise error
    if status >= 400:
        message = data.get("error") if isinstance(data, dict) else None
        raise error_class(f"{what}: {message or f'HTTP {status}'}", status=status)


async def _read_json(resp: aiohttp.ClientResponse) -> Any:
    try:
        return await resp.json(content_type=None)
    except ValueError:
        return {}


class HttpWorkflowBackend(WorkflowBackend):
    """Workflow storage backed by the editor's REST API."""

    def __init__(self, base_url: str = DEFAULT_BASE_URL, headers: dict[str, str] | None = None):
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/workflows{path}"

    async def _request(self, method: str, path: str, what: str, **kwargs: Any) -> Any:
        try:
            async with aiohttp.ClientSession(headers=self.headers) as session:
                async with session.request(method, self._url(path), **kwargs) as resp:
                    data = await _read_json(resp)
                    _check_status(resp.status, data, what)
                    return data
        except aiohttp.ClientError as e:
            raise BackendError(f"{what}: {e}") from e

    async def create(self, name: str | None = None) -> WorkflowRecord:
        data = await self._request("POST", "", "Failed to create workflow", json={"name": name})
        return WorkflowRecord.from_dict(data)

    async def load(self, workflow_id: str) -> WorkflowRecord:
        data = await self._request("GET", f"/{workflow_id}", "Failed to load workflow")
        return WorkflowRecord.from_dict(data)

    async def save(
        self,
        workflow_id: str,
        nodes: list[dict[str, Any]],
        edges: list[dict[str, Any]],
        viewport: dict[str, float],
    ) -> None:
        body = {"data": {"nodes": nodes, "edges": edges, "viewport": viewport}}
        await self._request("PATCH", f"/{workflow_id}", "Failed to save workflow", json=body)

    async def rename(self, workflow_id: str, name: str) -> None:
        await self._request("PATCH", f"/{workflow_id}", "Failed to rename workflow", json={"name": name})

    async def delete(self, workflow_id: str) -> None:
        await self._request("DELETE", f"/{workflow_id}", "Failed to delete workflow")

    async def duplicate(self, workflow_id: str) -> WorkflowRecord:
        data = await self._request("POST", f"/{workflow_id}/duplicate", "Failed to duplicate workflow")
        # The endpoint wraps the new record as {success, data}
        if isinstance(data, dict) and isinstance(data.get("data"), dict) and "id" in data["data"]:
            data = data["data"]
        return WorkflowRecord.from_dict(data)

    async def upload_thumbnail(self, workflow_id: str, png_bytes: bytes) -> str | None:
        form = aiohttp.FormData()
        form.add_field("file", png_bytes, filename="thumbnail.png", content_type="image/png")
        data = await self._request(
            "POST", f"/{workflow_id}/thumbnail", "Failed to upload thumbnail", data=form,
        )
        if isinstance(data, dict):
            return data.get("thumbnail") or data.get("url")
        return None


# Type tag -> (provider route, field the result is written to)
ACTION_ROUTES: dict[str, tuple[str, str]] = {
    "imagen-4.0-generate-001": ("google/imagen-4.0-generate-001", "image"),
    "gemini-2.5-flash-image": ("google/gemini-2.5-flash-image", "image"),
    "gemini-3-pro-image-preview": ("google/gemini-3-pro-image-preview", "image"),
    "veo-3.1-generate-preview": ("google/veo-3.1-generate-preview", "video"),
    "imageDescriber": ("google/image-describer", "text"),
    "promptEnhancer": ("google/prompt-enhancer", "text"),
    "videoDescriber": ("google/video-describer", "text"),
}

# Node data fields forwarded as generation parameters
FORWARDED_PARAMS = (
    "aspectRatio",
    "imageSize",
    "resolution",
    "durationSeconds",
    "model",
    "systemInstruction",
)


class HttpGenerationProvider(GenerationProvider):
    """
    Runs node actions through the server's provider routes.

    Video generation is a long-running operation: the first call returns
    an operation name that is polled until done.
    """

    id = "http"
    name = "Workflow server"
    type_tags = tuple(ACTION_ROUTES)

    poll_interval: float = 2.0
    poll_timeout: float = 120.0

    def __init__(self, config: ProviderConfig | None = None, workflow_id: str | None = None):
        super().__init__(config)
        self.workflow_id = workflow_id

    @property
    def base_url(self) -> str:
        return (self.config.base_url or DEFAULT_BASE_URL).rstrip("/")

    def get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def build_body(self, request: ActionRequest) -> dict[str, Any]:
        """Request body for a node action."""
        body: dict[str, Any] = {"nodeId": request.node_id}
        if self.workflow_id:
            body["workflowId"] = self.workflow_id
        if "prompt" in request.inputs:
            body["prompt"] = request.inputs["prompt"]

        images = [
            request.inputs[key]
            for key in sorted(request.inputs)
            if key.startswith("image") or key == "background"
        ]
        if images:
            body["images"] = [{"url": url} for url in images]
        if "video" in request.inputs:
            body["video"] = {"url": request.inputs["video"]}

        for key in FORWARDED_PARAMS:
            if request.params.get(key) not in (None, ""):
                body[key] = request.params[key]
        return body

    async def run(self, request: ActionRequest) -> ActionResult:
        route = ACTION_ROUTES.get(request.type_tag)
        if route is None:
            raise GenerationError(f"No provider route for {request.type_tag}")
        path, output_kind = route
        url = f"{self.base_url}/api/providers/{path}"

        start = time.time()
        data = await self._post(url, self.build_body(request))

        if data.get("operationName"):
            data = await self._poll_operation(f"{url}/status", data["operationName"])

        if output_kind == "text":
            text = data.get("text")
            if not isinstance(text, str) or not text.strip():
                raise GenerationError("Provider returned no text")
            fields: dict[str, Any] = {"output": text.strip()}
        else:
            asset = data.get("url")
            if not isinstance(asset, str) or not asset:
                raise GenerationError(f"Provider returned no {output_kind} URL")
            fields = {"output": asset, "assetPath": asset}
            if output_kind == "video":
                fields["videoUrl"] = asset

        return ActionResult(fields=fields, elapsed=time.time() - start)

    async def _post(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(url, json=body, headers=self.get_headers()) as resp:
                    data = await _read_json(resp)
                    _check_status(resp.status, data, "Provider error", GenerationError)
                    return data if isinstance(data, dict) else {}
        except aiohttp.ClientError as e:
            raise GenerationError(f"Request failed: {e}") from e

    async def _poll_operation(self, status_url: str, operation_name: str) -> dict[str, Any]:
        """Poll a long-running operation until it reports done."""
        start_time = asyncio.get_event_loop().time()

        async with aiohttp.ClientSession() as session:
            while True:
                elapsed = asyncio.get_event_loop().time() - start_time
                if elapsed > self.poll_timeout:
                    raise GenerationError("Timeout waiting for video generation")

                async with session.get(
                    status_url,
                    params={"name": operation_name},
                    headers=self.get_headers(),
                ) as resp:
                    data = await _read_json(resp)
                    _check_status(resp.status, data, "Provider error", GenerationError)

                if data.get("done"):
                    error = data.get("error")
                    if error:
                        message = error.get("message") if isinstance(error, dict) else str(error)
                        raise GenerationError(message or "Video generation failed")
                    return data.get("response") or {}

                logger.debug(f"Operation {operation_name} still running")
                await asyncio.sleep(self.poll_interval)
