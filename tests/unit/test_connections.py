"""
Tests for connection validation.
"""

import pytest

from workflow_studio.core.connections import (
    EDGE_COLORS,
    ConnectionCandidate,
    build_edge,
    can_connect,
    edge_color_for_source_handle,
    kind_for_source_handle,
)
from workflow_studio.core.graph import Edge, Node
from workflow_studio.core.handles import (
    HANDLE_RESOLVERS,
    LAYOUT_COUNT_KEYS,
    SOURCE_HANDLE_KINDS,
    HandleKind,
    resolve_handles,
)


@pytest.fixture
def nodes():
    return [
        Node("prompt", "textInput"),
        Node("upload", "imageUpload"),
        Node("model", "gemini-2.5-flash-image", data={"imageInputCount": 2}),
        Node("blur", "blur"),
    ]


def candidate(source, source_handle, target, target_handle):
    return ConnectionCandidate(source, source_handle, target, target_handle)


# Every declared type tag and input handle against every output handle id
WIDE_DATA = {key: 3 for key in LAYOUT_COUNT_KEYS}
HANDLE_MATRIX = [
    (type_tag, handle, source_handle)
    for type_tag in sorted(HANDLE_RESOLVERS)
    for handle in resolve_handles(type_tag, WIDE_DATA).inputs
    for source_handle in sorted(SOURCE_HANDLE_KINDS)
]


class TestCanConnect:

    def test_text_to_prompt(self, nodes):
        assert can_connect(candidate("prompt", "textOutput", "model", "prompt"), [], nodes)

    def test_image_to_indexed_input(self, nodes):
        assert can_connect(candidate("upload", "imageOutput", "model", "image_1"), [], nodes)

    def test_kind_mismatch_rejected(self, nodes):
        assert not can_connect(candidate("upload", "imageOutput", "model", "prompt"), [], nodes)
        assert not can_connect(candidate("prompt", "textOutput", "blur", "imageOutput"), [], nodes)

    def test_occupied_input_rejected(self, nodes):
        existing = Edge("e1", "prompt", "textOutput", "model", "prompt")
        assert not can_connect(candidate("prompt", "textOutput", "model", "prompt"), [existing], nodes)

    def test_other_input_still_free(self, nodes):
        existing = Edge("e1", "upload", "imageOutput", "model", "image_0")
        assert can_connect(candidate("upload", "imageOutput", "model", "image_1"), [existing], nodes)

    def test_handle_beyond_count_rejected(self, nodes):
        assert not can_connect(candidate("upload", "imageOutput", "model", "image_5"), [], nodes)

    def test_missing_target_rejected(self, nodes):
        assert not can_connect(candidate("prompt", "textOutput", "gone", "prompt"), [], nodes)

    @pytest.mark.parametrize("bad", [
        candidate("prompt", "textOutput", None, "prompt"),
        candidate("prompt", "textOutput", "model", None),
        candidate("prompt", None, "model", "prompt"),
        candidate("prompt", "textOutput", "", "prompt"),
    ])
    def test_malformed_rejected(self, nodes, bad):
        assert not can_connect(bad, [], nodes)

    def test_painter_result_feeds_image_input(self):
        nodes = [Node("paint", "painter"), Node("blur", "blur")]
        assert can_connect(candidate("paint", "painterResultOutput", "blur", "imageOutput"), [], nodes)


class TestBuildEdge:

    def test_styled_by_source_kind(self):
        edge = build_edge(candidate("prompt", "textOutput", "model", "prompt"))
        assert edge.source == "prompt"
        assert edge.target_handle == "prompt"
        assert edge.style.color == EDGE_COLORS[HandleKind.TEXT]
        assert edge.style.animated
        assert edge.id.startswith("xy-edge__prompttextOutput-modelprompt-")

    def test_incomplete_candidate(self):
        with pytest.raises(ValueError):
            build_edge(candidate("prompt", "textOutput", None, "prompt"))


def test_kind_for_source_handle():
    assert kind_for_source_handle("imageOutput") is HandleKind.IMAGE
    assert kind_for_source_handle("painterMaskOutput") is HandleKind.IMAGE
    assert kind_for_source_handle("bogus") is None


def test_unknown_source_gets_neutral_color():
    assert edge_color_for_source_handle("bogus") == EDGE_COLORS[None]
    assert edge_color_for_source_handle("videoOutput") == EDGE_COLORS[HandleKind.VIDEO]


@pytest.mark.parametrize(
    "type_tag, handle, source_handle",
    HANDLE_MATRIX,
    ids=[f"{tag}.{handle.id}<-{source}" for tag, handle, source in HANDLE_MATRIX],
)
def test_every_declared_handle(type_tag, handle, source_handle):
    nodes = [Node("source", "textInput"), Node("target", type_tag, data=dict(WIDE_DATA))]
    accepted = can_connect(candidate("source", source_handle, "target", handle.id), [], nodes)
    assert accepted == (source_handle in handle.allowed_source_ids)
    assert accepted == (SOURCE_HANDLE_KINDS[source_handle] is handle.kind)


def test_handle_matrix_covers_indexed_inputs():
    ids = {(tag, handle.id) for tag, handle, _ in HANDLE_MATRIX}
    assert ("gemini-2.5-flash-image", "image_2") in ids
    assert ("promptConcatenator", "prompt_2") in ids
    assert ("imageCompositor", "image_2") in ids
