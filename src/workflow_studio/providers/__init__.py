"""
External collaborators.

This package provides the services the editor core talks to:
- Workflow storage: REST backend or a local workspace directory
- Node actions: server provider routes plus in-process tools
- Thumbnails: Pillow rendering of the graph

Usage:
    from workflow_studio.providers import get_registry

    registry = get_registry()
    registry.load_config()

    provider = registry.get_for("imagen-4.0-generate-001")
"""

from workflow_studio.providers.base import (
    ActionRequest,
    ActionResult,
    AuthenticationError,
    BackendError,
    GenerationError,
    GenerationProvider,
    ProviderConfig,
    ProviderError,
    RateLimitError,
    WorkflowBackend,
    WorkflowRecord,
)

from workflow_studio.providers.http import HttpGenerationProvider, HttpWorkflowBackend
from workflow_studio.providers.local import (
    BlurProvider,
    FileWorkflowBackend,
    PromptConcatenatorProvider,
)
from workflow_studio.providers.registry import (
    ProviderRegistry,
    create_default_registry,
    get_registry,
)
from workflow_studio.providers.thumbnail import GraphThumbnailer


__all__ = [
    # Base classes
    "ActionRequest",
    "ActionResult",
    "GenerationProvider",
    "ProviderConfig",
    "WorkflowBackend",
    "WorkflowRecord",
    # Exceptions
    "ProviderError",
    "AuthenticationError",
    "BackendError",
    "RateLimitError",
    "GenerationError",
    # Implementations
    "HttpGenerationProvider",
    "HttpWorkflowBackend",
    "FileWorkflowBackend",
    "PromptConcatenatorProvider",
    "BlurProvider",
    "GraphThumbnailer",
    # Registry
    "ProviderRegistry",
    "create_default_registry",
    "get_registry",
]
