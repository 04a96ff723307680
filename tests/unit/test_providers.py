"""
Tests for the provider layer: local storage, local tools, HTTP mapping,
thumbnails, and the registry.
"""

import asyncio
import base64
import json
import threading
from io import BytesIO

import pytest
from PIL import Image

from workflow_studio.core.graph import GROUP_NODE_TYPE, Edge, EdgeStyle, Node, Point2D, Size2D
from workflow_studio.providers.base import (
    ActionRequest,
    AuthenticationError,
    BackendError,
    GenerationError,
    ProviderConfig,
    RateLimitError,
    WorkflowRecord,
)
from workflow_studio.providers.http import HttpGenerationProvider, _check_status
from workflow_studio.providers.local import (
    BlurProvider,
    FileWorkflowBackend,
    PromptConcatenatorProvider,
)
from workflow_studio.providers.registry import ProviderRegistry, create_default_registry
from workflow_studio.providers.thumbnail import GraphThumbnailer


def png_data_url(size=(8, 8), color=(255, 0, 0)):
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()


class TestWorkflowRecord:

    def test_nested_shape(self):
        record = WorkflowRecord(id="1", name="A", nodes=[{"id": "n"}])
        data = record.to_dict()
        assert data["data"]["nodes"] == [{"id": "n"}]
        assert WorkflowRecord.from_dict(data) == record

    def test_missing_graph(self):
        record = WorkflowRecord.from_dict({"id": 5})
        assert record.id == "5"
        assert record.name == "Untitled"
        assert record.viewport == {"x": 0.0, "y": 0.0, "zoom": 1.0}


class TestFileWorkflowBackend:

    def test_create_save_load(self, tmp_path):
        async def scenario():
            backend = FileWorkflowBackend(tmp_path)
            record = await backend.create("Mine")
            await backend.save(record.id, [{"id": "a"}], [], {"x": 1, "y": 2, "zoom": 1})
            return await backend.load(record.id)

        loaded = asyncio.run(scenario())
        assert loaded.name == "Mine"
        assert loaded.nodes == [{"id": "a"}]
        assert loaded.viewport["x"] == 1
        assert loaded.updated_at

    def test_rename_duplicate_delete(self, tmp_path):
        async def scenario():
            backend = FileWorkflowBackend(tmp_path)
            record = await backend.create("Original")
            await backend.rename(record.id, "Renamed")
            copy = await backend.duplicate(record.id)
            await backend.delete(record.id)
            listing = backend.list_workflows()
            return copy, listing

        copy, listing = asyncio.run(scenario())
        assert copy.name == "Renamed (Copy)"
        assert [w["id"] for w in listing] == [copy.id]

    def test_missing_workflow(self, tmp_path):
        backend = FileWorkflowBackend(tmp_path)
        with pytest.raises(BackendError) as exc:
            asyncio.run(backend.load("nope"))
        assert exc.value.status == 404
        with pytest.raises(BackendError):
            asyncio.run(backend.delete("nope"))

    def test_thumbnail_upload(self, tmp_path):
        async def scenario():
            backend = FileWorkflowBackend(tmp_path)
            record = await backend.create()
            location = await backend.upload_thumbnail(record.id, b"\x89PNG")
            return backend, record, location, await backend.load(record.id)

        backend, record, location, loaded = asyncio.run(scenario())
        assert location == str(backend.thumbnail_path(record.id))
        assert loaded.thumbnail == location

    def test_corrupt_file(self, tmp_path):
        (tmp_path / "bad.json").write_text("{", encoding="utf-8")
        backend = FileWorkflowBackend(tmp_path)
        with pytest.raises(BackendError):
            asyncio.run(backend.load("bad"))
        assert backend.list_workflows() == []


class TestLocalTools:

    def test_concatenator_order_and_blanks(self):
        request = ActionRequest(
            node_id="c",
            type_tag="promptConcatenator",
            inputs={"prompt_10": "last", "prompt_2": "  second ", "prompt_0": "first"},
            params={"additionalText": ""},
        )
        result = asyncio.run(PromptConcatenatorProvider().run(request))
        assert result.fields == {"output": "first\n\nsecond\n\nlast"}

    def test_blur_returns_png(self):
        request = ActionRequest(
            node_id="b",
            type_tag="blur",
            inputs={"imageOutput": png_data_url()},
            params={"blurType": "box", "blurSize": 2},
        )
        result = asyncio.run(BlurProvider().run(request))
        assert result.fields["output"] == result.fields["imageOutput"]
        payload = result.fields["output"].split(",", 1)[1]
        image = Image.open(BytesIO(base64.b64decode(payload)))
        assert image.size == (8, 8)

    def test_blur_runs_off_the_event_loop(self):
        threads = []
        provider = BlurProvider()
        blur_sync = provider._blur_sync

        def recording_blur(*args):
            threads.append(threading.get_ident())
            return blur_sync(*args)

        provider._blur_sync = recording_blur
        request = ActionRequest(
            node_id="b",
            type_tag="blur",
            inputs={"imageOutput": png_data_url()},
            params={"blurType": "gaussian", "blurSize": 1},
        )
        asyncio.run(provider.run(request))
        assert threads
        assert threads[0] != threading.get_ident()

    def test_blur_requires_image(self):
        request = ActionRequest(node_id="b", type_tag="blur")
        with pytest.raises(GenerationError):
            asyncio.run(BlurProvider().run(request))

    def test_blur_reads_file(self, tmp_path):
        path = tmp_path / "in.png"
        Image.new("RGB", (4, 4)).save(path)
        request = ActionRequest(
            node_id="b", type_tag="blur", inputs={"imageOutput": str(path)}, params={},
        )
        result = asyncio.run(BlurProvider().run(request))
        assert result.fields["output"].startswith("data:image/png;base64,")


class TestHttpGenerationProvider:

    def test_build_body(self):
        provider = HttpGenerationProvider(workflow_id="wf-1")
        body = provider.build_body(ActionRequest(
            node_id="m",
            type_tag="gemini-2.5-flash-image",
            inputs={"prompt": "fox", "image_1": "b.png", "image_0": "a.png"},
            params={"aspectRatio": "16:9", "imageSize": "", "label": "Nano"},
        ))
        assert body == {
            "nodeId": "m",
            "workflowId": "wf-1",
            "prompt": "fox",
            "images": [{"url": "a.png"}, {"url": "b.png"}],
            "aspectRatio": "16:9",
        }

    def test_image_result(self, monkeypatch):
        provider = HttpGenerationProvider(ProviderConfig(base_url="http://server/"))
        calls = []

        async def fake_post(url, body):
            calls.append(url)
            return {"url": "https://cdn/x.png"}

        monkeypatch.setattr(provider, "_post", fake_post)
        result = asyncio.run(provider.run(ActionRequest("m", "imagen-4.0-generate-001", {"prompt": "p"})))
        assert calls == ["http://server/api/providers/google/imagen-4.0-generate-001"]
        assert result.fields == {"output": "https://cdn/x.png", "assetPath": "https://cdn/x.png"}

    def test_video_polls_operation(self, monkeypatch):
        provider = HttpGenerationProvider()
        polled = []

        async def fake_post(url, body):
            return {"operationName": "op-1"}

        async def fake_poll(status_url, name):
            polled.append((status_url, name))
            return {"url": "https://cdn/v.mp4"}

        monkeypatch.setattr(provider, "_post", fake_post)
        monkeypatch.setattr(provider, "_poll_operation", fake_poll)
        result = asyncio.run(provider.run(ActionRequest("v", "veo-3.1-generate-preview", {"prompt": "p"})))
        assert polled[0][1] == "op-1"
        assert polled[0][0].endswith("/status")
        assert result.fields["videoUrl"] == "https://cdn/v.mp4"

    def test_empty_text_is_error(self, monkeypatch):
        provider = HttpGenerationProvider()

        async def fake_post(url, body):
            return {"text": "   "}

        monkeypatch.setattr(provider, "_post", fake_post)
        with pytest.raises(GenerationError):
            asyncio.run(provider.run(ActionRequest("d", "imageDescriber", {"image_0": "a.png"})))

    def test_unknown_route(self):
        with pytest.raises(GenerationError):
            asyncio.run(HttpGenerationProvider().run(ActionRequest("x", "crop")))

    def test_auth_header(self):
        provider = HttpGenerationProvider(ProviderConfig(api_key="secret"))
        assert provider.get_headers()["Authorization"] == "Bearer secret"


def test_check_status_for_backend():
    with pytest.raises(BackendError) as exc:
        _check_status(404, {"error": "Workflow not found"}, "Load workflow")
    assert exc.value.status == 404
    assert "Workflow not found" in str(exc.value)
    with pytest.raises(AuthenticationError):
        _check_status(403, {}, "Save workflow")
    _check_status(201, {}, "Create workflow")


def test_check_status_for_generation():
    with pytest.raises(GenerationError, match="bad prompt") as exc:
        _check_status(400, {"error": "bad prompt"}, "Provider error", GenerationError)
    assert exc.value.status == 400
    assert not isinstance(exc.value, BackendError)
    with pytest.raises(RateLimitError) as limited:
        _check_status(429, {}, "Provider error", GenerationError)
    assert limited.value.retry_after == 60
    with pytest.raises(AuthenticationError):
        _check_status(401, {}, "Provider error", GenerationError)
    _check_status(200, {}, "Provider error", GenerationError)


class TestGraphThumbnailer:

    def test_empty_graph(self):
        image = GraphThumbnailer(size=(100, 50)).render([], [])
        assert image.size == (100, 50)

    def test_render_png(self):
        nodes = [
            Node("g", GROUP_NODE_TYPE, position=Point2D(0, 0), size=Size2D(800, 400)),
            Node("t", "textInput", position=Point2D(40, 40), parent_id="g"),
            Node("m", "imagen-4.0-generate-001", position=Point2D(500, 40), parent_id="g"),
        ]
        edges = [Edge("e", "t", "textOutput", "m", "prompt", style=EdgeStyle("#38bdf8"))]
        png = GraphThumbnailer(size=(320, 180)).render_png(nodes, edges)
        image = Image.open(BytesIO(png))
        assert image.format == "PNG"
        assert image.size == (320, 180)

    def test_capture_uploads(self, tmp_path):
        async def scenario():
            backend = FileWorkflowBackend(tmp_path)
            record = await backend.create()
            thumbnailer = GraphThumbnailer(backend)
            return backend, record, await thumbnailer.capture(record.id, [Node("a", "textInput")], [])

        backend, record, location = asyncio.run(scenario())
        assert location is not None
        assert backend.thumbnail_path(record.id).read_bytes().startswith(b"\x89PNG")

    def test_capture_failure_is_swallowed(self, tmp_path):
        thumbnailer = GraphThumbnailer(FileWorkflowBackend(tmp_path))
        assert asyncio.run(thumbnailer.capture("missing", [], [])) is None

    def test_capture_without_backend(self):
        assert asyncio.run(GraphThumbnailer().capture("x", [], [])) is None


class TestProviderRegistry:

    def test_later_registration_wins(self):
        registry = create_default_registry()
        assert isinstance(registry.get_for("blur"), BlurProvider)
        assert isinstance(registry.get_for("promptConcatenator"), PromptConcatenatorProvider)
        assert isinstance(registry.get_for("imagen-4.0-generate-001"), HttpGenerationProvider)
        assert "crop" not in registry

    def test_unregister(self):
        registry = create_default_registry()
        registry.unregister("blur")
        assert registry.get_for("blur") is None

    def test_config_round_trip(self, tmp_path):
        path = tmp_path / "providers.json"
        registry = create_default_registry()
        registry.set_config("http", ProviderConfig(api_key="k", base_url="http://example"))
        assert registry.get_for("veo-3.1-generate-preview").config.api_key == "k"
        registry.save_config(path)

        stored = json.loads(path.read_text(encoding="utf-8"))
        assert stored["providers"]["http"]["base_url"] == "http://example"

        other = ProviderRegistry()
        other.load_config(path)
        assert other.get_config("http").api_key == "k"

    def test_disabled_provider_hidden(self):
        registry = create_default_registry()
        registry.set_config("blur", ProviderConfig(enabled=False))
        assert registry.get_for("blur") is None
        assert "blur" in registry
