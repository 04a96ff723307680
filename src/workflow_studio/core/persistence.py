"""
Persistence Coordinator - Debounced auto-save for the open workflow.

The coordinator observes the graph store and moves through three phases:
- LOADING: the initial fetch is in flight; store changes are ignored
- EDITING: every change restarts the save timer
- CREATING: a new workflow is being created; concurrent requests share it

When the timer fires the latest store snapshot is serialised and saved.
A thumbnail is captured at most once per thumbnail interval.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Callable

from workflow_studio.core.graph import (
    Edge,
    GraphChange,
    GraphStore,
    Node,
    Viewport,
    strip_callables,
)
from workflow_studio.core.settings import EditorSettings
from workflow_studio.providers.base import ProviderError, WorkflowBackend

if TYPE_CHECKING:
    from workflow_studio.providers.thumbnail import GraphThumbnailer


logger = logging.getLogger(__name__)


class EditorPhase(Enum):
    """Lifecycle phase of the open workflow."""
    LOADING = auto()
    EDITING = auto()
    CREATING = auto()


@dataclass
class Notice:
    """A transient user-visible message."""
    level: str  # "info", "success", "error"
    message: str


NoticeCallback = Callable[[Notice], None]


def serialize_graph(
    nodes: list[Node],
    edges: list[Edge],
    viewport: Viewport | None = None,
) -> dict[str, Any]:
    """Persistable form of a graph with function-valued data fields removed."""
    node_dicts = []
    for node in nodes:
        entry = node.to_dict()
        entry["data"] = strip_callables(node.data)
        node_dicts.append(entry)
    return {
        "nodes": node_dicts,
        "edges": [edge.to_dict() for edge in edges],
        "viewport": (viewport or Viewport()).to_dict(),
    }


class AutoSaveCoordinator:
    """
    Saves the store through a backend after a quiet period.

    The timer is a debounce: a new change always cancels the pending
    timer before scheduling another. In-flight saves are never cancelled.
    Changes made outside a running event loop are remembered and written
    by the next flush().
    """

    def __init__(
        self,
        store: GraphStore,
        backend: WorkflowBackend,
        settings: EditorSettings | None = None,
        thumbnailer: GraphThumbnailer | None = None,
        on_notice: NoticeCallback | None = None,
    ):
        self.store = store
        self.backend = backend
        self.settings = settings or EditorSettings()
        self.thumbnailer = thumbnailer
        self.on_notice = on_notice

        self.phase = EditorPhase.EDITING
        self.workflow_id: str | None = None
        self.workflow_name: str | None = None
        self.viewport = Viewport()

        self._dirty = False
        self._timer: asyncio.TimerHandle | None = None
        self._save_task: asyncio.Task | None = None
        self._create_task: asyncio.Task | None = None
        self._last_thumbnail: float | None = None
        self._unsubscribe = store.subscribe(self._on_change)

    # --- Properties ---

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def save_pending(self) -> bool:
        return self._timer is not None

    def _notice(self, level: str, message: str) -> None:
        if self.on_notice:
            self.on_notice(Notice(level, message))

    # --- Lifecycle ---

    async def load(self, workflow_id: str) -> bool:
        """
        Fetch a workflow and replace the store contents.

        Pending changes of the current workflow are saved under its own id
        first. Returns False (after surfacing a notice) if the backend fails.
        """
        if self.workflow_id is not None:
            await self.flush()
        self._cancel_timer()
        self.phase = EditorPhase.LOADING
        try:
            record = await self.backend.load(workflow_id)
            nodes = [Node.from_dict(item) for item in record.nodes]
            edges = [Edge.from_dict(item) for item in record.edges]
            self.store.replace(nodes=nodes, edges=edges)
            self.viewport = Viewport.from_dict(record.viewport)
            self.workflow_id = record.id
            self.workflow_name = record.name
            self._dirty = False
            logger.info(f"Loaded workflow {record.id} with {len(nodes)} node(s)")
            return True
        except (ProviderError, KeyError) as e:
            logger.error(f"Failed to load workflow {workflow_id}: {e}")
            self._notice("error", f"Failed to load workflow: {e}")
            return False
        finally:
            self.phase = EditorPhase.EDITING

    async def ensure_workflow(self, name: str | None = None) -> str | None:
        """
        Return the current workflow id, creating a workflow if there is none.

        Concurrent callers share one create request.
        """
        if self.workflow_id is not None:
            return self.workflow_id
        if self._create_task is None:
            self._create_task = asyncio.ensure_future(self._create(name))
        return await asyncio.shield(self._create_task)

    async def _create(self, name: str | None) -> str | None:
        self.phase = EditorPhase.CREATING
        try:
            record = await self.backend.create(name)
            self.workflow_id = record.id
            self.workflow_name = record.name
            logger.info(f"Created workflow {record.id}")
            if self._dirty:
                self.notify_changed()
            return record.id
        except ProviderError as e:
            logger.error(f"Failed to create workflow: {e}")
            self._notice("error", "Failed to create workflow")
            return None
        finally:
            self._create_task = None
            self.phase = EditorPhase.EDITING

    # --- Change tracking ---

    def _on_change(self, change: GraphChange) -> None:
        if self.phase is EditorPhase.LOADING:
            return
        self._dirty = True
        self.notify_changed()

    def set_viewport(self, viewport: Viewport) -> None:
        self.viewport = viewport
        if self.phase is not EditorPhase.LOADING:
            self._dirty = True
            self.notify_changed()

    def notify_changed(self) -> None:
        """Restart the save timer."""
        if self.phase is EditorPhase.LOADING or self.workflow_id is None:
            return
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; save deferred until flush")
            return
        self._timer = loop.call_later(self.settings.save_delay, self._fire)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        self._timer = None
        self._save_task = asyncio.ensure_future(self.save_now())

    # --- Saving ---

    async def save_now(self) -> bool:
        """
        Serialise the current store and save it.

        Returns True on success. Failures are logged and surfaced as a
        notice; the in-memory graph is left as is.
        """
        if self.workflow_id is None:
            return False

        payload = serialize_graph(self.store.nodes, self.store.edges, self.viewport)
        self._dirty = False
        try:
            await self.backend.save(
                self.workflow_id,
                payload["nodes"],
                payload["edges"],
                payload["viewport"],
            )
        except (ProviderError, OSError) as e:
            self._dirty = True
            logger.error(f"Failed to save workflow {self.workflow_id}: {e}")
            self._notice("error", "Failed to save workflow")
            return False

        logger.debug(f"Saved workflow {self.workflow_id}")
        await self._maybe_capture_thumbnail()
        return True

    async def _maybe_capture_thumbnail(self) -> None:
        if self.thumbnailer is None or self.workflow_id is None:
            return
        now = time.monotonic()
        if self._last_thumbnail is not None and now - self._last_thumbnail <= self.settings.thumbnail_interval:
            return
        self._last_thumbnail = now
        await self.thumbnailer.capture(self.workflow_id, self.store.nodes, self.store.edges)

    async def flush(self) -> bool:
        """Save immediately if anything is pending; waits for an in-flight save."""
        pending = self._timer is not None
        self._cancel_timer()
        if self._save_task is not None and not self._save_task.done():
            await self._save_task
        if pending or self._dirty:
            return await self.save_now()
        return True

    def close(self) -> None:
        """Stop observing the store and drop any pending timer."""
        self._cancel_timer()
        self._unsubscribe()
