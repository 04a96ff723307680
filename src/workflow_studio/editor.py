"""
Workflow Editor - The user-facing operations on one open workflow.

The editor wires together:
- GraphStore: the canonical nodes and edges
- ReactivePropagator: keeps connected* fields current
- UndoHistory: snapshots taken before each undoable action
- AutoSaveCoordinator: debounced saves through a backend
- NodeActionRunner: on-demand node actions

User-level validation problems never escape as exceptions; they are
reported through the notice callback and the operation returns a falsy
value.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any

from workflow_studio.core.connections import ConnectionCandidate, build_edge, can_connect
from workflow_studio.core.duplication import (
    DuplicationResult,
    apply_duplication,
    copy_to_json,
    duplicate,
)
from workflow_studio.core.execution import ActionOutcome, NodeActionRunner
from workflow_studio.core.graph import (
    Edge,
    GraphIntegrityError,
    GraphStore,
    Node,
    Point2D,
    Viewport,
)
from workflow_studio.core.grouping import (
    GroupingError,
    group_nodes,
    set_group_label_size,
    ungroup,
)
from workflow_studio.core.handles import NodeCatalog
from workflow_studio.core.history import UndoHistory
from workflow_studio.core.persistence import (
    AutoSaveCoordinator,
    EditorPhase,
    Notice,
    NoticeCallback,
)
from workflow_studio.core.propagation import ReactivePropagator
from workflow_studio.core.settings import EditorSettings
from workflow_studio.core.workflow_io import (
    ImportValidationError,
    WorkflowDocument,
    export_workflow,
    import_workflow_json,
)
from workflow_studio.providers.base import WorkflowBackend
from workflow_studio.providers.http import HttpGenerationProvider, HttpWorkflowBackend
from workflow_studio.providers.local import FileWorkflowBackend
from workflow_studio.providers.registry import ProviderRegistry
from workflow_studio.providers.thumbnail import GraphThumbnailer


logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_NAME = "Untitled Workflow"


def create_backend(settings: EditorSettings) -> WorkflowBackend:
    """Storage backend selected by the settings."""
    if settings.backend == "http":
        return HttpWorkflowBackend(settings.server_url)
    return FileWorkflowBackend(settings.workspace_dir)


class WorkflowEditor:
    """
    Editing session for a single workflow.

    Example:
        editor = WorkflowEditor(on_notice=print)
        await editor.create("Portraits")
        prompt = editor.add_node("textInput", Point2D(0, 0))
        model = editor.add_node("imagen-4.0-generate-001", Point2D(400, 0))
        editor.connect(prompt.id, "textOutput", model.id, "prompt")
        await editor.close()
    """

    def __init__(
        self,
        store: GraphStore | None = None,
        backend: WorkflowBackend | None = None,
        providers: ProviderRegistry | None = None,
        settings: EditorSettings | None = None,
        thumbnailer: GraphThumbnailer | None = None,
        on_notice: NoticeCallback | None = None,
    ):
        self.settings = settings or EditorSettings()
        self.store = store if store is not None else GraphStore()
        self.backend = backend if backend is not None else create_backend(self.settings)
        self.catalog = NodeCatalog.instance()
        self.clipboard: str | None = None
        self._on_notice = on_notice

        if thumbnailer is None:
            thumbnailer = GraphThumbnailer(self.backend)

        self.propagator = ReactivePropagator(self.store)
        self.history = UndoHistory(self.settings.max_history)
        self.autosave = AutoSaveCoordinator(
            self.store,
            self.backend,
            settings=self.settings,
            thumbnailer=thumbnailer,
            on_notice=self._notice,
        )
        self.runner = NodeActionRunner(self.store, providers)

    # --- Notices ---

    def set_notice_callback(self, callback: NoticeCallback) -> None:
        self._on_notice = callback

    def _notice(self, notice: Notice) -> None:
        if notice.level == "error":
            logger.warning(notice.message)
        if self._on_notice:
            self._on_notice(notice)

    def _info(self, message: str) -> None:
        self._notice(Notice("info", message))

    def _success(self, message: str) -> None:
        self._notice(Notice("success", message))

    def _error(self, message: str) -> None:
        self._notice(Notice("error", message))

    def _snapshot(self) -> None:
        self.history.take_snapshot(self.store.nodes, self.store.edges)

    # --- Properties ---

    @property
    def workflow_id(self) -> str | None:
        return self.autosave.workflow_id

    @property
    def workflow_name(self) -> str | None:
        return self.autosave.workflow_name

    @property
    def phase(self) -> EditorPhase:
        return self.autosave.phase

    @property
    def nodes(self) -> list[Node]:
        return self.store.nodes

    @property
    def edges(self) -> list[Edge]:
        return self.store.edges

    # --- Lifecycle ---

    async def open(self, workflow_id: str) -> bool:
        """Load a stored workflow, replacing the current graph."""
        self.history.clear()
        loaded = await self.autosave.load(workflow_id)
        self._bind_workflow()
        return loaded

    async def create(self, name: str | None = None) -> str | None:
        """Create a workflow for the current graph if there is none yet."""
        workflow_id = await self.autosave.ensure_workflow(name or DEFAULT_WORKFLOW_NAME)
        self._bind_workflow()
        return workflow_id

    def _bind_workflow(self) -> None:
        provider = self.runner.providers.get_provider(HttpGenerationProvider.id)
        if isinstance(provider, HttpGenerationProvider):
            provider.workflow_id = self.workflow_id

    async def save(self) -> bool:
        """Write pending changes now."""
        return await self.autosave.flush()

    async def close(self) -> None:
        """Flush pending changes and stop observing the store."""
        await self.autosave.flush()
        self.autosave.close()
        self.propagator.close()

    def set_viewport(self, viewport: Viewport) -> None:
        self.autosave.set_viewport(viewport)

    # --- Nodes ---

    def add_node(
        self,
        type_tag: str,
        position: Point2D | None = None,
        data: dict[str, Any] | None = None,
    ) -> Node:
        """Add a node with the catalog defaults for its type."""
        self._snapshot()
        node_data = self.catalog.default_data(type_tag)
        node_data.update(data or {})
        node = Node.create(type_tag, position, node_data)
        if node.id in self.store:
            # Two nodes of one type added within the same millisecond
            suffix = 1
            while f"{node.id}-{suffix}" in self.store:
                suffix += 1
            node = replace(node, id=f"{node.id}-{suffix}")
        self.store.add_node(node)
        logger.debug(f"Added {type_tag} node {node.id}")
        return node

    def drop_node(self, type_tag: str, position: Point2D) -> Node | None:
        """Add a node dragged in from the library; unknown types are rejected."""
        if type_tag not in self.catalog:
            self._error(f"Unknown node type: {type_tag}")
            return None
        return self.add_node(type_tag, position)

    def move_node(self, node_id: str, position: Point2D) -> bool:
        if node_id not in self.store:
            return False
        self._snapshot()
        self.store.patch_node(node_id, position=position)
        return True

    def select(self, node_ids: list[str]) -> None:
        self.store.set_selection(node_ids)

    def patch_node_data(self, node_id: str, changes: dict[str, Any], record: bool = False) -> bool:
        """
        Merge `changes` into a node's data.

        Field edits are not undoable unless `record` is set.
        """
        if node_id not in self.store:
            return False
        if record:
            self._snapshot()
        self.store.patch_node_data(node_id, changes)
        return True

    # --- Edges ---

    def connect(
        self,
        source: str,
        source_handle: str,
        target: str,
        target_handle: str,
    ) -> Edge | None:
        """Create an edge if the connection is valid."""
        candidate = ConnectionCandidate(source, source_handle, target, target_handle)
        if source not in self.store or not can_connect(candidate, self.store.edges, self.store.nodes):
            self._error("Invalid connection")
            return None
        edge = build_edge(candidate)
        self._snapshot()
        if not self.store.add_edge(edge):
            self._error("Invalid connection")
            return None
        return edge

    def delete(self, node_ids: list[str] | None = None, edge_ids: list[str] | None = None) -> bool:
        """Remove nodes (with their incident edges) and edges."""
        node_ids = [node_id for node_id in node_ids or [] if node_id in self.store]
        edge_ids = [edge_id for edge_id in edge_ids or [] if self.store.get_edge(edge_id)]
        if not node_ids and not edge_ids:
            return False

        self._snapshot()
        self.store.remove(node_ids=node_ids, edge_ids=edge_ids)
        if node_ids:
            self._success("Node deleted" if len(node_ids) == 1 else "Deleted selected nodes")
        return True

    # --- Grouping ---

    def group(self, node_ids: list[str] | None = None) -> str | None:
        """Group the given nodes, or the current selection. Returns the group id."""
        selected = node_ids if node_ids is not None else self.store.selected_ids()
        try:
            result = group_nodes(selected, self.store.nodes)
        except GroupingError as e:
            self._error(str(e))
            return None
        self._snapshot()
        self.store.replace(nodes=result.nodes)
        self._success("Grouped selected nodes")
        return result.group_id

    def ungroup(self, group_id: str) -> bool:
        try:
            nodes = ungroup(group_id, self.store.nodes)
        except GroupingError as e:
            self._error(str(e))
            return False
        self._snapshot()
        self.store.replace(nodes=nodes)
        self._success("Group removed")
        return True

    def set_group_label_size(self, group_id: str, size: str) -> bool:
        try:
            nodes = set_group_label_size(group_id, size, self.store.nodes)
        except GroupingError as e:
            self._error(str(e))
            return False
        self._snapshot()
        self.store.replace(nodes=nodes)
        return True

    # --- Duplicate / copy ---

    def duplicate(self, node_id: str) -> DuplicationResult:
        """Duplicate `node_id`, or the selection it belongs to."""
        result = duplicate(node_id, self.store.nodes, self.store.edges)
        if not result.nodes:
            return result
        self._snapshot()
        apply_duplication(self.store, result)
        self._success("Node duplicated" if len(result.nodes) == 1 else "Duplicated selection")
        return result

    def copy(self, node_id: str) -> str | None:
        """Copy `node_id`, or the selection it belongs to, as JSON."""
        if node_id not in self.store:
            return None
        self.clipboard = copy_to_json(node_id, self.store.nodes, self.store.edges)
        multiple = len([node for node in self.store.nodes if node.selected]) > 1
        node = self.store.get_node(node_id)
        if multiple and node.selected:
            self._success("Selection copied to clipboard")
        else:
            self._success("Node copied to clipboard")
        return self.clipboard

    # --- History ---

    def undo(self) -> bool:
        if not self.history.undo(self.store):
            self._info("Nothing to undo")
            return False
        return True

    def redo(self) -> bool:
        if not self.history.redo(self.store):
            self._info("Nothing to redo")
            return False
        return True

    # --- Import / export ---

    def import_document(self, text: str) -> WorkflowDocument | None:
        """Replace the graph with an exported workflow file's contents."""
        try:
            document = import_workflow_json(text)
        except ImportValidationError as e:
            logger.info(f"Rejected workflow import: {e}")
            self._error(str(e))
            return None

        self._snapshot()
        try:
            self.store.replace(nodes=document.nodes, edges=document.edges)
        except GraphIntegrityError as e:
            self._error(f"Invalid workflow structure: {e}")
            return None
        self.autosave.set_viewport(document.viewport)
        self._success("Workflow imported successfully")
        return document

    def export_document(self, name: str | None = None) -> dict[str, Any]:
        document = WorkflowDocument(
            name=name or self.workflow_name or DEFAULT_WORKFLOW_NAME,
            nodes=self.store.nodes,
            edges=self.store.edges,
            viewport=self.autosave.viewport,
            id=self.workflow_id,
        )
        return export_workflow(document)

    # --- Actions ---

    async def run_node(self, node_id: str) -> ActionOutcome:
        """Run a node's action; failures are reported and written to the node."""
        outcome = await self.runner.run(node_id)
        if not outcome.ok and outcome.error:
            self._error(outcome.error)
        return outcome
