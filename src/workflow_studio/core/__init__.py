"""
Core module - Graph model, dataflow engine, and workflow persistence.

This module provides the fundamental building blocks for Workflow Studio:
- Graph: Nodes, edges and the observable graph store
- Handles: Per-type input/output handles and the node catalog
- Engine: Connection validation, propagation, grouping, duplication
- Persistence: Auto-save, import/export, undo history
"""

from workflow_studio.core.graph import (
    GROUP_NODE_TYPE,
    Edge,
    EdgeStyle,
    GraphChange,
    GraphIntegrityError,
    GraphStore,
    Node,
    Point2D,
    Size2D,
    Viewport,
    WorkflowError,
    new_node_id,
)

from workflow_studio.core.handles import (
    HandleDescriptor,
    HandleKind,
    HandleSet,
    NodeCatalog,
    NodeCategory,
    NodeDefinition,
    resolve_handles,
)

from workflow_studio.core.connections import (
    ConnectionCandidate,
    build_edge,
    can_connect,
    kind_for_source_handle,
)

from workflow_studio.core.propagation import (
    InputValidationError,
    ReactivePropagator,
    merge_connected_values,
    resolve_inputs,
    validate_required_inputs,
)

from workflow_studio.core.grouping import (
    GroupingError,
    GroupResult,
    group_nodes,
    set_group_label_size,
    ungroup,
)

from workflow_studio.core.duplication import (
    DuplicationResult,
    apply_duplication,
    copy_selection,
    duplicate,
)

from workflow_studio.core.settings import (
    EditorSettings,
    load_settings,
    save_settings,
)

from workflow_studio.core.workflow_io import (
    ImportValidationError,
    WorkflowDocument,
    export_workflow,
    import_workflow_json,
    validate_workflow_payload,
)

from workflow_studio.core.history import UndoHistory

from workflow_studio.core.persistence import (
    AutoSaveCoordinator,
    EditorPhase,
    Notice,
    serialize_graph,
)

from workflow_studio.core.execution import (
    ActionOutcome,
    ActionStatus,
    NodeActionRunner,
)


__all__ = [
    # graph.py
    "GROUP_NODE_TYPE",
    "Edge",
    "EdgeStyle",
    "GraphChange",
    "GraphIntegrityError",
    "GraphStore",
    "Node",
    "Point2D",
    "Size2D",
    "Viewport",
    "WorkflowError",
    "new_node_id",
    # handles.py
    "HandleDescriptor",
    "HandleKind",
    "HandleSet",
    "NodeCatalog",
    "NodeCategory",
    "NodeDefinition",
    "resolve_handles",
    # connections.py
    "ConnectionCandidate",
    "build_edge",
    "can_connect",
    "kind_for_source_handle",
    # propagation.py
    "InputValidationError",
    "ReactivePropagator",
    "merge_connected_values",
    "resolve_inputs",
    "validate_required_inputs",
    # grouping.py
    "GroupingError",
    "GroupResult",
    "group_nodes",
    "set_group_label_size",
    "ungroup",
    # duplication.py
    "DuplicationResult",
    "apply_duplication",
    "copy_selection",
    "duplicate",
    # settings.py
    "EditorSettings",
    "load_settings",
    "save_settings",
    # workflow_io.py
    "ImportValidationError",
    "WorkflowDocument",
    "export_workflow",
    "import_workflow_json",
    "validate_workflow_payload",
    # history.py
    "UndoHistory",
    # persistence.py
    "AutoSaveCoordinator",
    "EditorPhase",
    "Notice",
    "serialize_graph",
    # execution.py
    "ActionOutcome",
    "ActionStatus",
    "NodeActionRunner",
]
