"""
Tests for the auto-save coordinator.
"""

import asyncio

from workflow_studio.core.graph import GraphStore, Node, Viewport
from workflow_studio.core.persistence import (
    AutoSaveCoordinator,
    EditorPhase,
    serialize_graph,
)
from workflow_studio.core.settings import EditorSettings
from workflow_studio.providers.base import BackendError, WorkflowBackend, WorkflowRecord
from workflow_studio.providers.local import FileWorkflowBackend


class MemoryBackend(WorkflowBackend):
    """In-memory backend that records calls."""

    def __init__(self, fail_save=False, create_delay=0.0):
        self.records = {}
        self.saves = []
        self.creates = 0
        self.fail_save = fail_save
        self.create_delay = create_delay

    async def create(self, name=None):
        self.creates += 1
        await asyncio.sleep(self.create_delay)
        record = WorkflowRecord(id=f"wf-{self.creates}", name=name or "Untitled")
        self.records[record.id] = record
        return record

    async def load(self, workflow_id):
        if workflow_id not in self.records:
            raise BackendError("Workflow not found", status=404)
        return self.records[workflow_id]

    async def save(self, workflow_id, nodes, edges, viewport):
        if self.fail_save:
            raise BackendError("Server unavailable", status=503)
        self.saves.append((workflow_id, nodes, edges, viewport))

    async def rename(self, workflow_id, name):
        self.records[workflow_id].name = name

    async def delete(self, workflow_id):
        self.records.pop(workflow_id, None)

    async def duplicate(self, workflow_id):
        raise BackendError("Not supported")

    async def upload_thumbnail(self, workflow_id, png_bytes):
        return None


class CountingThumbnailer:
    def __init__(self):
        self.captures = 0

    async def capture(self, workflow_id, nodes, edges):
        self.captures += 1
        return None


def fast_settings(**overrides):
    values = {"save_delay": 0.01, "thumbnail_interval": 60.0}
    values.update(overrides)
    return EditorSettings(**values)


def test_serialize_graph_strips_callables():
    node = Node("a", "textInput", data={"text": "x", "onUpdateNodeData": lambda changes: None})
    payload = serialize_graph([node], [], Viewport(1, 2, 0.5))
    assert payload["nodes"][0]["data"] == {"text": "x"}
    assert payload["edges"] == []
    assert payload["viewport"] == {"x": 1, "y": 2, "zoom": 0.5}


class TestDebouncedSave:

    def test_rapid_changes_save_once(self):
        async def scenario():
            store = GraphStore()
            backend = MemoryBackend()
            coordinator = AutoSaveCoordinator(store, backend, fast_settings())
            await coordinator.ensure_workflow("Test")

            for index in range(5):
                store.add_node(Node(f"n{index}", "textInput"))
            assert coordinator.save_pending

            await asyncio.sleep(0.1)
            return backend, coordinator

        backend, coordinator = asyncio.run(scenario())
        assert len(backend.saves) == 1
        workflow_id, nodes, _, _ = backend.saves[0]
        assert workflow_id == "wf-1"
        assert [node["id"] for node in nodes] == [f"n{index}" for index in range(5)]
        assert not coordinator.is_dirty

    def test_saves_latest_snapshot(self):
        async def scenario():
            store = GraphStore([Node("a", "textInput", data={"text": "one"})])
            backend = MemoryBackend()
            coordinator = AutoSaveCoordinator(store, backend, fast_settings(save_delay=0.05))
            await coordinator.ensure_workflow()
            store.patch_node_data("a", {"text": "two"})
            await asyncio.sleep(0.01)
            store.patch_node_data("a", {"text": "three"})
            await asyncio.sleep(0.15)
            return backend

        backend = asyncio.run(scenario())
        assert len(backend.saves) == 1
        assert backend.saves[0][1][0]["data"]["text"] == "three"

    def test_file_backend_round_trip(self, tmp_path):
        async def scenario():
            backend = FileWorkflowBackend(tmp_path)
            store = GraphStore()
            coordinator = AutoSaveCoordinator(store, backend, fast_settings())
            workflow_id = await coordinator.ensure_workflow("On disk")
            store.add_node(Node("a", "textInput", data={"text": "saved"}))
            await asyncio.sleep(0.1)

            reloaded = GraphStore()
            other = AutoSaveCoordinator(reloaded, backend, fast_settings())
            assert await other.load(workflow_id)
            return reloaded, other

        reloaded, other = asyncio.run(scenario())
        assert reloaded.get_node("a").data["text"] == "saved"
        assert other.workflow_name == "On disk"
        assert not other.save_pending

    def test_no_save_without_workflow(self):
        async def scenario():
            store = GraphStore()
            backend = MemoryBackend()
            coordinator = AutoSaveCoordinator(store, backend, fast_settings())
            store.add_node(Node("a", "textInput"))
            await asyncio.sleep(0.05)
            return backend, coordinator

        backend, coordinator = asyncio.run(scenario())
        assert backend.saves == []
        assert coordinator.is_dirty

    def test_create_saves_pending_changes(self):
        async def scenario():
            store = GraphStore()
            backend = MemoryBackend()
            coordinator = AutoSaveCoordinator(store, backend, fast_settings())
            store.add_node(Node("a", "textInput"))
            await coordinator.ensure_workflow()
            await asyncio.sleep(0.05)
            return backend

        backend = asyncio.run(scenario())
        assert len(backend.saves) == 1


class TestLoading:

    def test_load_does_not_trigger_save(self):
        async def scenario():
            backend = MemoryBackend()
            backend.records["wf-9"] = WorkflowRecord(
                id="wf-9",
                name="Stored",
                nodes=[{"id": "a", "type": "textInput", "position": {"x": 1, "y": 2}}],
                viewport={"x": 5, "y": 6, "zoom": 2},
            )
            store = GraphStore()
            coordinator = AutoSaveCoordinator(store, backend, fast_settings())
            loaded = await coordinator.load("wf-9")
            await asyncio.sleep(0.05)
            return loaded, backend, coordinator, store

        loaded, backend, coordinator, store = asyncio.run(scenario())
        assert loaded
        assert backend.saves == []
        assert coordinator.phase is EditorPhase.EDITING
        assert coordinator.viewport == Viewport(5, 6, 2)
        assert store.get_node("a") is not None

    def test_switching_workflow_saves_pending_changes(self):
        async def scenario():
            backend = MemoryBackend()
            backend.records["wf-b"] = WorkflowRecord(id="wf-b", name="B")
            store = GraphStore()
            coordinator = AutoSaveCoordinator(store, backend, fast_settings(save_delay=0.05))
            first = await coordinator.ensure_workflow("A")
            store.add_node(Node("a", "textInput"))
            assert coordinator.save_pending
            await coordinator.load("wf-b")
            await asyncio.sleep(0.1)
            return first, backend, coordinator

        first, backend, coordinator = asyncio.run(scenario())
        assert [(saved[0], len(saved[1])) for saved in backend.saves] == [(first, 1)]
        assert coordinator.workflow_id == "wf-b"
        assert not coordinator.save_pending

    def test_load_failure_reports_notice(self):
        notices = []

        async def scenario():
            coordinator = AutoSaveCoordinator(
                GraphStore(), MemoryBackend(), fast_settings(), on_notice=notices.append,
            )
            result = await coordinator.load("missing")
            return result, coordinator

        result, coordinator = asyncio.run(scenario())
        assert result is False
        assert coordinator.phase is EditorPhase.EDITING
        assert notices[0].level == "error"


class TestEnsureWorkflow:

    def test_concurrent_callers_share_one_create(self):
        async def scenario():
            backend = MemoryBackend(create_delay=0.02)
            coordinator = AutoSaveCoordinator(GraphStore(), backend, fast_settings())
            first, second = await asyncio.gather(
                coordinator.ensure_workflow("A"),
                coordinator.ensure_workflow("A"),
            )
            third = await coordinator.ensure_workflow("A")
            return backend, first, second, third, coordinator

        backend, first, second, third, coordinator = asyncio.run(scenario())
        assert backend.creates == 1
        assert first == second == third == "wf-1"
        assert coordinator.phase is EditorPhase.EDITING

    def test_create_failure_releases_latch(self):
        notices = []

        class FailingCreate(MemoryBackend):
            async def create(self, name=None):
                self.creates += 1
                raise BackendError("nope", status=500)

        async def scenario():
            backend = FailingCreate()
            coordinator = AutoSaveCoordinator(
                GraphStore(), backend, fast_settings(), on_notice=notices.append,
            )
            first = await coordinator.ensure_workflow()
            second = await coordinator.ensure_workflow()
            return backend, first, second, coordinator

        backend, first, second, coordinator = asyncio.run(scenario())
        assert first is None and second is None
        assert backend.creates == 2
        assert coordinator.phase is EditorPhase.EDITING
        assert notices[0].message == "Failed to create workflow"


class TestFailuresAndThumbnails:

    def test_save_failure_keeps_graph_and_reports(self):
        notices = []

        async def scenario():
            store = GraphStore()
            coordinator = AutoSaveCoordinator(
                store, MemoryBackend(fail_save=True), fast_settings(), on_notice=notices.append,
            )
            await coordinator.ensure_workflow()
            store.add_node(Node("a", "textInput"))
            await asyncio.sleep(0.05)
            return store, coordinator

        store, coordinator = asyncio.run(scenario())
        assert store.get_node("a") is not None
        assert coordinator.is_dirty
        assert [n.message for n in notices] == ["Failed to save workflow"]

    def test_thumbnail_rate_limited(self):
        async def scenario():
            store = GraphStore()
            thumbnailer = CountingThumbnailer()
            coordinator = AutoSaveCoordinator(
                store, MemoryBackend(), fast_settings(), thumbnailer=thumbnailer,
            )
            await coordinator.ensure_workflow()
            store.add_node(Node("a", "textInput"))
            await asyncio.sleep(0.05)
            store.add_node(Node("b", "textInput"))
            await asyncio.sleep(0.05)
            return thumbnailer

        thumbnailer = asyncio.run(scenario())
        assert thumbnailer.captures == 1

    def test_thumbnail_after_interval(self):
        async def scenario():
            store = GraphStore()
            thumbnailer = CountingThumbnailer()
            coordinator = AutoSaveCoordinator(
                store, MemoryBackend(), fast_settings(thumbnail_interval=0.0),
                thumbnailer=thumbnailer,
            )
            await coordinator.ensure_workflow()
            store.add_node(Node("a", "textInput"))
            await asyncio.sleep(0.05)
            store.add_node(Node("b", "textInput"))
            await asyncio.sleep(0.05)
            return thumbnailer

        thumbnailer = asyncio.run(scenario())
        assert thumbnailer.captures == 2


class TestFlush:

    def test_flush_writes_immediately(self):
        async def scenario():
            store = GraphStore()
            backend = MemoryBackend()
            coordinator = AutoSaveCoordinator(store, backend, fast_settings(save_delay=10))
            await coordinator.ensure_workflow()
            store.add_node(Node("a", "textInput"))
            assert await coordinator.flush()
            return backend, coordinator

        backend, coordinator = asyncio.run(scenario())
        assert len(backend.saves) == 1
        assert not coordinator.save_pending

    def test_changes_outside_loop_are_deferred(self):
        store = GraphStore()
        backend = MemoryBackend()
        coordinator = AutoSaveCoordinator(store, backend, fast_settings())
        coordinator.workflow_id = "wf-1"

        store.add_node(Node("a", "textInput"))
        assert coordinator.is_dirty
        assert not coordinator.save_pending

        assert asyncio.run(coordinator.flush())
        assert len(backend.saves) == 1

    def test_close_stops_tracking(self):
        store = GraphStore()
        coordinator = AutoSaveCoordinator(store, MemoryBackend(), fast_settings())
        coordinator.close()
        store.add_node(Node("a", "textInput"))
        assert not coordinator.is_dirty
