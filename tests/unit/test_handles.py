"""
Tests for handle resolution and the node catalog.
"""

from workflow_studio.core.graph import GROUP_NODE_TYPE
from workflow_studio.core.handles import (
    IMAGE_OUTPUT,
    PAINTER_MASK_OUTPUT,
    PAINTER_RESULT_OUTPUT,
    HandleKind,
    NodeCatalog,
    NodeCategory,
    handle_layout_key,
    resolve_handles,
    source_handle_kind,
)


def input_ids(type_tag, data=None):
    return [handle.id for handle in resolve_handles(type_tag, data).inputs]


class TestResolveHandles:

    def test_unknown_type_has_no_handles(self):
        handles = resolve_handles("doesNotExist", {})
        assert handles.inputs == ()
        assert handles.outputs == ()
        assert resolve_handles(None).inputs == ()

    def test_text_input_only_outputs(self):
        handles = resolve_handles("textInput")
        assert handles.inputs == ()
        assert [h.id for h in handles.outputs] == ["textOutput"]

    def test_image_model_input_count(self):
        assert input_ids("gemini-2.5-flash-image", {"imageInputCount": 3}) == [
            "prompt", "image_0", "image_1", "image_2",
        ]

    def test_image_model_default_count(self):
        assert input_ids("gemini-2.5-flash-image", {}) == ["prompt", "image_0"]

    def test_junk_count_falls_back_to_default(self):
        assert input_ids("gemini-2.5-flash-image", {"imageInputCount": "lots"}) == ["prompt", "image_0"]
        assert input_ids("gemini-2.5-flash-image", {"imageInputCount": True}) == ["prompt", "image_0"]

    def test_video_model_defaults_to_no_images(self):
        handles = resolve_handles("veo-3.1-generate-preview", {})
        assert [h.id for h in handles.inputs] == ["prompt"]
        assert handles.outputs[0].kind is HandleKind.VIDEO

    def test_describer_has_at_least_one_image(self):
        assert input_ids("imageDescriber", {"imageInputCount": 0}) == ["image_0"]

    def test_concatenator_inputs(self):
        handles = resolve_handles("promptConcatenator", {"inputCount": 3})
        assert [h.id for h in handles.inputs] == ["prompt_0", "prompt_1", "prompt_2"]
        assert all(h.kind is HandleKind.TEXT for h in handles.inputs)

    def test_prompt_is_required(self):
        prompt = resolve_handles("imagen-4.0-generate-001").get_input("prompt")
        assert prompt.required
        assert prompt.kind is HandleKind.TEXT

    def test_painter_outputs(self):
        handles = resolve_handles("painter")
        assert handles.get_output(PAINTER_RESULT_OUTPUT) is not None
        assert handles.get_output(PAINTER_MASK_OUTPUT) is not None

    def test_image_inputs_accept_painter_outputs(self):
        image = resolve_handles("blur").get_input(IMAGE_OUTPUT)
        assert image.accepts(IMAGE_OUTPUT)
        assert image.accepts(PAINTER_MASK_OUTPUT)
        assert not image.accepts("textOutput")

    def test_group_has_no_handles(self):
        assert resolve_handles(GROUP_NODE_TYPE).inputs == ()


class TestLayoutKey:

    def test_changes_with_count(self):
        before = handle_layout_key("promptConcatenator", {"inputCount": 2})
        after = handle_layout_key("promptConcatenator", {"inputCount": 3})
        assert before != after

    def test_ignores_other_fields(self):
        before = handle_layout_key("blur", {"blurSize": 1})
        after = handle_layout_key("blur", {"blurSize": 5})
        assert before == after


def test_source_handle_kind():
    assert source_handle_kind("textOutput") is HandleKind.TEXT
    assert source_handle_kind(PAINTER_RESULT_OUTPUT) is HandleKind.IMAGE
    assert source_handle_kind("videoOutput") is HandleKind.VIDEO
    assert source_handle_kind("prompt") is None
    assert source_handle_kind(None) is None


class TestNodeCatalog:

    def test_singleton(self):
        assert NodeCatalog() is NodeCatalog.instance()

    def test_default_data_is_fresh(self):
        catalog = NodeCatalog.instance()
        first = catalog.default_data("colorGrading")
        first["min"].append(99)
        assert catalog.default_data("colorGrading")["min"] == [0, 0, 0]

    def test_default_data_includes_label(self):
        data = NodeCatalog.instance().default_data("blur")
        assert data["label"] == "Blur"
        assert data["blurType"] == "gaussian"

    def test_unknown_type_gets_label(self):
        assert NodeCatalog.instance().default_data("mystery") == {"label": "mystery"}

    def test_categories(self):
        inputs = NodeCatalog.instance().list_by_category(NodeCategory.INPUT)
        assert {d.type_tag for d in inputs} >= {"textInput", "imageUpload", "videoUpload"}

    def test_every_catalog_entry_resolves(self):
        for definition in NodeCatalog.instance().get_all():
            handles = resolve_handles(definition.type_tag, definition.default_data())
            assert isinstance(handles.inputs, tuple)
