"""
Provider Base - Interfaces for the editor's external collaborators.

This module provides the contracts the core engine talks to:
- WorkflowBackend: Remote (or local) storage for whole workflows
- GenerationProvider: Runs a node-local action such as image generation
- ActionRequest/ActionResult: Request/response data structures
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class WorkflowRecord:
    """A stored workflow as returned by a backend."""
    id: str
    name: str
    nodes: list[dict[str, Any]] = field(default_factory=list)
    edges: list[dict[str, Any]] = field(default_factory=list)
    viewport: dict[str, float] = field(default_factory=lambda: {"x": 0.0, "y": 0.0, "zoom": 1.0})
    thumbnail: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "data": {
                "nodes": self.nodes,
                "edges": self.edges,
                "viewport": self.viewport,
            },
            "thumbnail": self.thumbnail,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowRecord:
        """Create a record from the `{id, name, data: {nodes, edges, viewport}}` shape."""
        graph = data.get("data") or {}
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "Untitled",
            nodes=list(graph.get("nodes") or []),
            edges=list(graph.get("edges") or []),
            viewport=graph.get("viewport") or {"x": 0.0, "y": 0.0, "zoom": 1.0},
            thumbnail=data.get("thumbnail"),
            updated_at=data.get("updatedAt"),
        )


@dataclass
class ActionRequest:
    """Input gathered for one node-local action."""
    node_id: str
    type_tag: str
    inputs: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class ActionResult:
    """
    Output of a node-local action.

    `fields` are written back into the node's data map, e.g.
    `{"output": "https://..."}` or `{"output": "...", "maskOutput": "..."}`.
    """
    fields: dict[str, Any] = field(default_factory=dict)
    elapsed: float = 0.0


@dataclass
class ProviderConfig:
    """Configuration for a collaborator."""
    api_key: str = ""
    enabled: bool = True
    base_url: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class ProviderError(Exception):
    """Base exception for collaborator errors."""
    pass


class AuthenticationError(ProviderError):
    """API key invalid or missing."""
    pass


class RateLimitError(ProviderError):
    """Rate limit exceeded."""
    retry_after: float | None = None


class BackendError(ProviderError):
    """Workflow storage request failed."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class GenerationError(ProviderError):
    """Error while running a node action."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class WorkflowBackend(ABC):
    """
    Abstract storage for workflows.

    Implementations raise BackendError (or another ProviderError) on
    failure; they never return partial results.
    """

    @abstractmethod
    async def create(self, name: str | None = None) -> WorkflowRecord:
        """Create an empty workflow and return it with its new id."""
        ...

    @abstractmethod
    async def load(self, workflow_id: str) -> WorkflowRecord:
        ...

    @abstractmethod
    async def save(
        self,
        workflow_id: str,
        nodes: list[dict[str, Any]],
        edges: list[dict[str, Any]],
        viewport: dict[str, float],
    ) -> None:
        """Overwrite the graph of an existing workflow."""
        ...

    @abstractmethod
    async def rename(self, workflow_id: str, name: str) -> None:
        ...

    @abstractmethod
    async def delete(self, workflow_id: str) -> None:
        ...

    @abstractmethod
    async def duplicate(self, workflow_id: str) -> WorkflowRecord:
        ...

    @abstractmethod
    async def upload_thumbnail(self, workflow_id: str, png_bytes: bytes) -> str | None:
        """Store a PNG preview; returns its URL or path if the backend has one."""
        ...


class GenerationProvider(ABC):
    """
    Abstract base class for node action providers.

    Each provider handles one or more node type tags.
    """

    # Provider identification
    id: str = ""
    name: str = ""
    type_tags: tuple[str, ...] = ()

    def __init__(self, config: ProviderConfig | None = None):
        self.config = config or ProviderConfig()

    @property
    def is_configured(self) -> bool:
        """Check if provider has necessary configuration."""
        return self.config.enabled

    def handles(self, type_tag: str) -> bool:
        return type_tag in self.type_tags

    @abstractmethod
    async def run(self, request: ActionRequest) -> ActionResult:
        """
        Run the action for one node.

        Raises:
            AuthenticationError: Invalid API key
            RateLimitError: Rate limit exceeded
            GenerationError: The action failed
        """
        ...
