"""
Node Action Runner - Runs a single node's action on demand.

Running a node:
1. Resolves its inputs exactly from the current edges and producers
2. Validates required inputs (a problem is written to the node's `error`
   field, never raised)
3. Invokes the provider registered for the node's type tag
4. Writes the produced fields back into the node through the store

There is no graph-wide scheduling: upstream nodes are never run
implicitly.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable

from workflow_studio.core.graph import GraphStore, strip_callables
from workflow_studio.core.propagation import (
    CONNECTED_PREFIX,
    InputValidationError,
    resolve_inputs,
    validate_required_inputs,
)
from workflow_studio.providers.base import ActionRequest, ProviderError
from workflow_studio.providers.registry import ProviderRegistry, get_registry


logger = logging.getLogger(__name__)

ERROR_FIELD = "error"


class ActionStatus(Enum):
    """Result of a node action run."""
    COMPLETED = auto()
    FAILED = auto()
    INVALID = auto()


@dataclass
class ActionOutcome:
    """What happened when a node action ran."""
    node_id: str
    status: ActionStatus
    error: str | None = None
    fields: dict[str, Any] = field(default_factory=dict)
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is ActionStatus.COMPLETED


class NodeActionRunner:
    """
    Runs node actions against the providers in a registry.

    A node that is already running is not started twice.
    """

    def __init__(
        self,
        store: GraphStore,
        providers: ProviderRegistry | None = None,
        on_complete: Callable[[ActionOutcome], None] | None = None,
    ):
        self.store = store
        self.providers = providers if providers is not None else get_registry()
        self._on_complete = on_complete
        self._running: set[str] = set()

    def set_completion_callback(self, callback: Callable[[ActionOutcome], None]) -> None:
        """Set the completion callback."""
        self._on_complete = callback

    def is_running(self, node_id: str) -> bool:
        return node_id in self._running

    def _write(self, node_id: str, changes: dict[str, Any], clear_error: bool = False) -> None:
        node = self.store.get_node(node_id)
        if node is None:
            logger.debug(f"Node {node_id} was removed before its result arrived")
            return
        data = {
            key: value for key, value in node.data.items()
            if not (clear_error and key == ERROR_FIELD)
        }
        data.update(changes)
        self.store.patch_node(node_id, data=data)

    def _finish(self, outcome: ActionOutcome) -> ActionOutcome:
        if self._on_complete:
            self._on_complete(outcome)
        return outcome

    async def run(self, node_id: str) -> ActionOutcome:
        """Run the action of `node_id` and report the outcome."""
        node = self.store.get_node(node_id)
        if node is None:
            return self._finish(ActionOutcome(node_id, ActionStatus.INVALID, f"Node {node_id} not found"))
        if node_id in self._running:
            return self._finish(ActionOutcome(node_id, ActionStatus.INVALID, "Action is already running"))

        provider = self.providers.get_for(node.type_tag)
        if provider is None:
            message = f"No provider available for {node.type_tag}"
            self._write(node_id, {ERROR_FIELD: message})
            return self._finish(ActionOutcome(node_id, ActionStatus.INVALID, message))

        # Exact inputs at the moment of the run; cached connected* fields are not read
        resolved = resolve_inputs(node_id, self.store.nodes, self.store.edges)
        try:
            inputs = validate_required_inputs(node, resolved)
        except InputValidationError as e:
            self._write(node_id, {ERROR_FIELD: str(e)})
            return self._finish(ActionOutcome(node_id, ActionStatus.INVALID, str(e)))

        params = {
            key: value for key, value in strip_callables(node.data).items()
            if not key.startswith(CONNECTED_PREFIX)
        }
        request = ActionRequest(node_id=node_id, type_tag=node.type_tag, inputs=inputs, params=params)

        self._running.add(node_id)
        self._write(node_id, {}, clear_error=True)
        start = time.time()
        try:
            result = await provider.run(request)
        except asyncio.CancelledError:
            # Cancellation is not a node error.
            raise
        except ProviderError as e:
            logger.error(f"Action for {node_id} ({node.type_tag}) failed: {e}")
            self._write(node_id, {ERROR_FIELD: str(e)})
            return self._finish(ActionOutcome(
                node_id, ActionStatus.FAILED, str(e), elapsed=time.time() - start,
            ))
        finally:
            self._running.discard(node_id)

        self._write(node_id, result.fields, clear_error=True)
        logger.info(f"Action for {node_id} completed in {time.time() - start:.2f}s")
        return self._finish(ActionOutcome(
            node_id,
            ActionStatus.COMPLETED,
            fields=dict(result.fields),
            elapsed=time.time() - start,
        ))
