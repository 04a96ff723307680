"""
Handle Resolver - Input/output handle shapes and the node catalog.

This module defines how node types expose their handles:
- HandleKind: The kind of value a handle carries
- HandleDescriptor: Describes a single input or output handle
- resolve_handles: Pure function (type tag, data) -> HandleSet
- NodeCatalog: Registry of node types with labels and default data

Handle lists are never stored on nodes; they are recomputed from the
type tag and the current data whenever they are needed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from workflow_studio.core.graph import GROUP_NODE_TYPE


class HandleKind(Enum):
    """Kinds of values flowing along edges."""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


OUTPUT_HANDLE_IDS: dict[HandleKind, str] = {
    HandleKind.TEXT: "textOutput",
    HandleKind.IMAGE: "imageOutput",
    HandleKind.VIDEO: "videoOutput",
}

PAINTER_RESULT_OUTPUT = "painterResultOutput"
PAINTER_MASK_OUTPUT = "painterMaskOutput"

TEXT_OUTPUT = OUTPUT_HANDLE_IDS[HandleKind.TEXT]
IMAGE_OUTPUT = OUTPUT_HANDLE_IDS[HandleKind.IMAGE]
VIDEO_OUTPUT = OUTPUT_HANDLE_IDS[HandleKind.VIDEO]

# Output handle id -> kind, for every output id any node type declares
SOURCE_HANDLE_KINDS: dict[str, HandleKind] = {
    TEXT_OUTPUT: HandleKind.TEXT,
    IMAGE_OUTPUT: HandleKind.IMAGE,
    VIDEO_OUTPUT: HandleKind.VIDEO,
    PAINTER_RESULT_OUTPUT: HandleKind.IMAGE,
    PAINTER_MASK_OUTPUT: HandleKind.IMAGE,
}

ACCEPTS_TEXT = frozenset({TEXT_OUTPUT})
ACCEPTS_IMAGE = frozenset({IMAGE_OUTPUT, PAINTER_RESULT_OUTPUT, PAINTER_MASK_OUTPUT})
ACCEPTS_VIDEO = frozenset({VIDEO_OUTPUT})


class NodeCategory(Enum):
    """Categories for organizing nodes in the library."""
    INPUT = "input"
    MODEL = "model"
    TOOL = "tool"
    LAYOUT = "layout"


@dataclass(frozen=True)
class HandleDescriptor:
    """
    Definition of a handle on a node.

    Attributes:
        id: Handle identifier, unique per node side
        label: Display label in UI
        kind: Kind of value carried
        required: If True, the node's action cannot run without a value
        allowed_source_ids: Output handle ids this input accepts
    """
    id: str
    label: str
    kind: HandleKind
    required: bool = False
    allowed_source_ids: frozenset[str] = frozenset()

    def accepts(self, source_handle: str) -> bool:
        return source_handle in self.allowed_source_ids


@dataclass(frozen=True)
class HandleSet:
    """Current inputs and outputs of one node."""
    inputs: tuple[HandleDescriptor, ...] = ()
    outputs: tuple[HandleDescriptor, ...] = ()

    def get_input(self, handle_id: str) -> HandleDescriptor | None:
        for handle in self.inputs:
            if handle.id == handle_id:
                return handle
        return None

    def get_output(self, handle_id: str) -> HandleDescriptor | None:
        for handle in self.outputs:
            if handle.id == handle_id:
                return handle
        return None


EMPTY_HANDLES = HandleSet()


# --- Handle factories ---

def text_input(handle_id: str, label: str, required: bool = False) -> HandleDescriptor:
    return HandleDescriptor(handle_id, label, HandleKind.TEXT, required, ACCEPTS_TEXT)


def image_input(handle_id: str, label: str, required: bool = False) -> HandleDescriptor:
    return HandleDescriptor(handle_id, label, HandleKind.IMAGE, required, ACCEPTS_IMAGE)


def video_input(handle_id: str, label: str, required: bool = False) -> HandleDescriptor:
    return HandleDescriptor(handle_id, label, HandleKind.VIDEO, required, ACCEPTS_VIDEO)


def output(kind: HandleKind, label: str, handle_id: str | None = None) -> HandleDescriptor:
    return HandleDescriptor(handle_id or OUTPUT_HANDLE_IDS[kind], label, kind)


def _count(data: dict[str, Any] | None, key: str, default: int, minimum: int = 0) -> int:
    """Read a handle count from node data, tolerating junk values."""
    raw = (data or {}).get(key)
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        value = default
    else:
        value = int(raw)
    return max(minimum, value)


def _indexed(
    prefix: str,
    count: int,
    factory: Callable[[str, str], HandleDescriptor],
    label: Callable[[int], str],
) -> tuple[HandleDescriptor, ...]:
    return tuple(factory(f"{prefix}_{i}", label(i)) for i in range(count))


# --- Per-type resolvers ---

HandleResolverFn = Callable[[dict[str, Any]], HandleSet]


def _image_model_handles(data: dict[str, Any]) -> HandleSet:
    count = _count(data, "imageInputCount", default=1)
    return HandleSet(
        inputs=(text_input("prompt", "Prompt", required=True),)
        + _indexed("image", count, image_input, lambda i: f"Ref Image {i + 1}"),
        outputs=(output(HandleKind.IMAGE, "Image"),),
    )


def _imagen_handles(data: dict[str, Any]) -> HandleSet:
    return HandleSet(
        inputs=(text_input("prompt", "Prompt", required=True),),
        outputs=(output(HandleKind.IMAGE, "Image"),),
    )


def _video_model_handles(data: dict[str, Any]) -> HandleSet:
    count = _count(data, "imageInputCount", default=0)
    return HandleSet(
        inputs=(text_input("prompt", "Prompt", required=True),)
        + _indexed("image", count, image_input, lambda i: f"Ref Image {i + 1}"),
        outputs=(output(HandleKind.VIDEO, "Video"),),
    )


def _image_tool_handles(data: dict[str, Any]) -> HandleSet:
    return HandleSet(
        inputs=(image_input(IMAGE_OUTPUT, "Image", required=True),),
        outputs=(output(HandleKind.IMAGE, "Image"),),
    )


def _painter_handles(data: dict[str, Any]) -> HandleSet:
    return HandleSet(
        inputs=(image_input(IMAGE_OUTPUT, "Image"),),
        outputs=(
            output(HandleKind.IMAGE, "Result", PAINTER_RESULT_OUTPUT),
            output(HandleKind.IMAGE, "Mask", PAINTER_MASK_OUTPUT),
        ),
    )


def _image_describer_handles(data: dict[str, Any]) -> HandleSet:
    count = _count(data, "imageInputCount", default=1, minimum=1)
    return HandleSet(
        inputs=_indexed(
            "image", count, image_input,
            lambda i: "Image" if count == 1 else f"Image {i + 1}",
        ),
        outputs=(output(HandleKind.TEXT, "Text"),),
    )


def _prompt_enhancer_handles(data: dict[str, Any]) -> HandleSet:
    count = _count(data, "imageInputCount", default=1, minimum=1)
    return HandleSet(
        inputs=(text_input("prompt", "Prompt", required=True),)
        + _indexed("image", count, image_input, lambda i: f"Image {i + 1}"),
        outputs=(output(HandleKind.TEXT, "Text"),),
    )


def _prompt_concatenator_handles(data: dict[str, Any]) -> HandleSet:
    count = _count(data, "inputCount", default=2, minimum=1)
    return HandleSet(
        inputs=_indexed("prompt", count, text_input, lambda i: f"Prompt {i + 1}"),
        outputs=(output(HandleKind.TEXT, "Combined Prompt"),),
    )


def _image_compositor_handles(data: dict[str, Any]) -> HandleSet:
    count = _count(data, "layerCount", default=2, minimum=1)
    return HandleSet(
        inputs=(image_input("background", "Background"),)
        + _indexed("image", count, image_input, lambda i: f"Layer {i + 1}"),
        outputs=(output(HandleKind.IMAGE, "Image"),),
    )


HANDLE_RESOLVERS: dict[str, HandleResolverFn] = {
    "textInput": lambda data: HandleSet(outputs=(output(HandleKind.TEXT, "Text"),)),
    "imageUpload": lambda data: HandleSet(outputs=(output(HandleKind.IMAGE, "Image"),)),
    "videoUpload": lambda data: HandleSet(outputs=(output(HandleKind.VIDEO, "Video"),)),
    "imagen-4.0-generate-001": _imagen_handles,
    "gemini-2.5-flash-image": _image_model_handles,
    "gemini-3-pro-image-preview": _image_model_handles,
    "veo-3.1-generate-preview": _video_model_handles,
    "blur": _image_tool_handles,
    "colorGrading": _image_tool_handles,
    "crop": _image_tool_handles,
    "painter": _painter_handles,
    "imageDescriber": _image_describer_handles,
    "promptEnhancer": _prompt_enhancer_handles,
    "promptConcatenator": _prompt_concatenator_handles,
    "extractVideoFrame": lambda data: HandleSet(
        inputs=(video_input("video", "Video", required=True),),
        outputs=(output(HandleKind.IMAGE, "Frame"),),
    ),
    "imageCompositor": _image_compositor_handles,
    "videoDescriber": lambda data: HandleSet(
        inputs=(video_input("video", "Video", required=True),),
        outputs=(output(HandleKind.TEXT, "Text"),),
    ),
}

# Data keys whose value changes the handle shape of a node
LAYOUT_COUNT_KEYS = ("imageInputCount", "inputCount", "layerCount")


def resolve_handles(type_tag: str | None, data: dict[str, Any] | None = None) -> HandleSet:
    """
    Compute the current handles of a node.

    Unknown type tags resolve to an empty handle set.
    """
    if not type_tag:
        return EMPTY_HANDLES
    resolver = HANDLE_RESOLVERS.get(type_tag)
    if resolver is None:
        return EMPTY_HANDLES
    return resolver(data or {})


def handle_layout_key(type_tag: str, data: dict[str, Any] | None) -> tuple[Any, ...]:
    """
    Key that changes whenever the node's handle shape changes.

    Hosts compare it before and after a patch to decide whether to
    refresh the node's rendered handle positions.
    """
    data = data or {}
    return (type_tag,) + tuple(data.get(key) for key in LAYOUT_COUNT_KEYS)


def source_handle_kind(handle_id: str | None) -> HandleKind | None:
    """Kind carried by an output handle id, or None when unknown."""
    if not handle_id:
        return None
    return SOURCE_HANDLE_KINDS.get(handle_id)


# --- Node catalog ---

@dataclass
class NodeDefinition:
    """
    Palette entry for a node type.

    Attributes:
        type_tag: Type tag stored on nodes
        label: Display name
        category: Library section
        defaults: Default data for a freshly added node
    """
    type_tag: str
    label: str
    category: NodeCategory
    description: str = ""
    defaults: dict[str, Any] = field(default_factory=dict)

    def default_data(self) -> dict[str, Any]:
        """Fresh copy of the default data, including the label."""
        data = {"label": self.label}
        data.update({
            key: (list(value) if isinstance(value, list) else value)
            for key, value in self.defaults.items()
        })
        return data


class NodeCatalog:
    """
    Registry of node types available in the library.

    The catalog only describes palette entries; handle shapes come
    from resolve_handles.
    """

    _instance: NodeCatalog | None = None

    def __new__(cls) -> NodeCatalog:
        """Singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._definitions = {}
            for definition in BUILTIN_NODE_DEFINITIONS:
                cls._instance._definitions[definition.type_tag] = definition
        return cls._instance

    @classmethod
    def instance(cls) -> NodeCatalog:
        return cls()

    def register(self, definition: NodeDefinition) -> None:
        self._definitions[definition.type_tag] = definition

    def get(self, type_tag: str) -> NodeDefinition | None:
        return self._definitions.get(type_tag)

    def get_all(self) -> list[NodeDefinition]:
        return list(self._definitions.values())

    def list_by_category(self, category: NodeCategory) -> list[NodeDefinition]:
        return [d for d in self._definitions.values() if d.category == category]

    def default_data(self, type_tag: str) -> dict[str, Any]:
        """Default data for a node of `type_tag`; unknown tags get a bare label."""
        definition = self.get(type_tag)
        if definition is None:
            return {"label": type_tag}
        return definition.default_data()

    def __contains__(self, type_tag: str) -> bool:
        return type_tag in self._definitions


BUILTIN_NODE_DEFINITIONS: list[NodeDefinition] = [
    NodeDefinition("textInput", "Prompt", NodeCategory.INPUT,
                   "Enter text or prompts", {"text": ""}),
    NodeDefinition("imageUpload", "Image Upload", NodeCategory.INPUT,
                   "Upload images", {"imageUrl": "", "fileName": ""}),
    NodeDefinition("videoUpload", "Video Upload", NodeCategory.INPUT,
                   "Upload videos", {"videoUrl": "", "fileName": ""}),
    NodeDefinition("stickyNote", "Sticky Note", NodeCategory.LAYOUT,
                   "Free-form note on the canvas", {"text": ""}),
    NodeDefinition(GROUP_NODE_TYPE, "Group", NodeCategory.LAYOUT,
                   "Frame holding other nodes",
                   {"title": "Group", "labelSize": "medium"}),
    NodeDefinition("imagen-4.0-generate-001", "Imagen 4.0", NodeCategory.MODEL,
                   "AI image generation from text prompts",
                   {"prompt": "", "aspectRatio": "1:1"}),
    NodeDefinition("gemini-2.5-flash-image", "Nano Banana", NodeCategory.MODEL,
                   "Fast and efficient with great quality",
                   {"prompt": "", "aspectRatio": "1:1", "imageInputCount": 1}),
    NodeDefinition("gemini-3-pro-image-preview", "Nano Banana Pro", NodeCategory.MODEL,
                   "Advanced image generation with thinking",
                   {"prompt": "", "imageSize": "1K", "useGoogleSearch": False,
                    "imageInputCount": 1}),
    NodeDefinition("veo-3.1-generate-preview", "Veo 3.1", NodeCategory.MODEL,
                   "High-fidelity video generation",
                   {"prompt": "", "resolution": "720p", "durationSeconds": "8",
                    "aspectRatio": "16:9", "imageInputCount": 0}),
    NodeDefinition("blur", "Blur", NodeCategory.TOOL,
                   "Apply blur effect to images", {"blurType": "gaussian", "blurSize": 0}),
    NodeDefinition("colorGrading", "Color Grading", NodeCategory.TOOL,
                   "Adjust RGB levels with per-channel min, gamma, and max",
                   {"min": [0, 0, 0], "gamma": [1.0, 1.0, 1.0], "max": [255, 255, 255]}),
    NodeDefinition("crop", "Crop", NodeCategory.TOOL,
                   "Crop images with aspect ratio and dimensions",
                   {"aspectRatio": "free", "cropWidth": 0, "cropHeight": 0,
                    "lockAspect": False}),
    NodeDefinition("painter", "Painter", NodeCategory.TOOL,
                   "Draw and erase on image with result and mask outputs",
                   {"mode": "brush", "brushSize": 24, "brushColor": "#ffffff",
                    "opacity": 1.0}),
    NodeDefinition("imageDescriber", "Image Describer", NodeCategory.TOOL,
                   "Describe images as text", {"imageInputCount": 1}),
    NodeDefinition("promptEnhancer", "Prompt Enhancer", NodeCategory.TOOL,
                   "Rewrite a prompt with optional image context",
                   {"prompt": "", "imageInputCount": 1}),
    NodeDefinition("promptConcatenator", "Prompt Concatenator", NodeCategory.TOOL,
                   "Join several prompts into one",
                   {"inputCount": 2, "additionalText": ""}),
    NodeDefinition("extractVideoFrame", "Extract Video Frame", NodeCategory.TOOL,
                   "Grab a still frame from a video", {"timestamp": 0.0}),
    NodeDefinition("imageCompositor", "Image Compositor", NodeCategory.TOOL,
                   "Layer images over a background", {"layerCount": 2}),
    NodeDefinition("videoDescriber", "Video Describer", NodeCategory.TOOL,
                   "Describe a video as text", {}),
]
