"""
Rich-text (TipTap JSON) to WordprocessingML renderer.

Converts the editor's document tree (paragraphs, headings, lists, block
quotes, images, marked text) into block-level markup for the merge step.
Local images are only referenced here; their bytes are embedded later by the
package post-processor through the ``ImageRegistry`` passed to ``render``.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv
from lxml import etree

from app.docx_engine.ooxml import (
    BODY_SIZE,
    EMU_PER_PIXEL,
    HEADING_SIZE,
    MUTED_COLOR,
    MarkupFragment,
    blank_paragraph,
    drawing_run,
    make_paragraph,
    make_run,
)

load_dotenv()

logger = logging.getLogger(__name__)

UPLOADS_URL_PREFIX = os.getenv("UPLOADS_URL_PREFIX", "/uploads/")

# Placeholder box for local images until real dimensions are known (~14 x 10.5 cm)
DEFAULT_IMAGE_WIDTH_EMU = 5040000
DEFAULT_IMAGE_HEIGHT_EMU = 3780000
MAX_IMAGE_WIDTH_EMU = 5040000

_DOCPR_BASE = 5000

_RECOGNIZED_MARKS = {
    "bold": "bold",
    "italic": "italic",
    "underline": "underline",
    "strike": "strike",
}

# Paragraph layouts
_BODY_PPR = {"jc": "both", "after": 120, "line": 276}
_HEADING_PPR = {"jc": "both", "before": 120, "after": 40}
_BULLET_INDENT = 360
_QUOTE_INDENT = 720


# ============================================================================
# Image Registry
# ============================================================================


@dataclass
class ContentImage:
    """Local image referenced from rich text, embedded after the merge.

    ``media_path`` is provisional; the post-processor renames the part after
    the format it actually finds in the file.
    """

    src: str
    rel_id: str
    media_path: str
    name: str
    explicit_size: bool = False


@dataclass
class ImageRegistry:
    """Per-render collection of content images.

    One instance is created for every document render and passed explicitly
    to every ``render`` call, so concurrent renders never share state.
    """

    images: List[ContentImage] = field(default_factory=list)

    def register(self, src: str, explicit_size: bool = False) -> ContentImage:
        index = len(self.images) + 1
        ext = os.path.splitext(src.split("?", 1)[0])[1].lstrip(".").lower() or "png"
        image = ContentImage(
            src=src,
            rel_id=f"rIdContentImg{index}",
            media_path=f"word/media/contentImg{index}.{ext}",
            name=f"contentImg{index}",
            explicit_size=explicit_size,
        )
        self.images.append(image)
        return image

    def __len__(self) -> int:
        return len(self.images)


# ============================================================================
# Heuristics
# ============================================================================


def is_module_header(text: str) -> bool:
    """Bullet lines ending with a colon are read as group headers.

    This follows the authoring convention of grouping bullet items under a
    "Module X:" line. Pass another callable as ``header_policy`` to ``render``
    to change it.
    """
    stripped = (text or "").strip()
    return len(stripped) > 1 and stripped.endswith(":")


def is_local_upload(src: str) -> bool:
    return bool(src) and src.startswith(UPLOADS_URL_PREFIX)


# ============================================================================
# Node helpers
# ============================================================================


def _children(node: Any) -> List[Dict[str, Any]]:
    if not isinstance(node, dict):
        return []
    content = node.get("content")
    if not isinstance(content, list):
        return []
    return [child for child in content if isinstance(child, dict)]


def _node_type(node: Dict[str, Any]) -> str:
    value = node.get("type")
    return value if isinstance(value, str) else ""


def plain_text(node: Any) -> str:
    """All text below ``node``, hard breaks as spaces."""
    if not isinstance(node, dict):
        return ""
    if _node_type(node) == "hardBreak":
        return " "
    text = node.get("text")
    if isinstance(text, str):
        return text
    return "".join(plain_text(child) for child in _children(node))


def _mark_flags(node: Dict[str, Any]) -> Dict[str, bool]:
    flags: Dict[str, bool] = {}
    marks = node.get("marks")
    if not isinstance(marks, list):
        return flags
    for mark in marks:
        if not isinstance(mark, dict):
            continue
        name = _RECOGNIZED_MARKS.get(mark.get("type"))
        if name:
            flags[name] = True
    return flags


def _inline_lines(node: Dict[str, Any], size: int, force_bold: bool) -> List[List[etree._Element]]:
    """Runs of an inline container, split into lines at every hard break."""
    lines: List[List[etree._Element]] = [[]]

    def walk(current: Dict[str, Any], inherited: Dict[str, bool]) -> None:
        kind = _node_type(current)
        if kind == "hardBreak":
            lines.append([])
            return
        text = current.get("text")
        if isinstance(text, str):
            if not text:
                return
            flags = dict(inherited)
            flags.update(_mark_flags(current))
            if force_bold:
                flags["bold"] = True
            lines[-1].append(make_run(text, size=size, **flags))
            return
        for child in _children(current):
            walk(child, inherited)

    for child in _children(node):
        walk(child, {})
    return lines


# ============================================================================
# Renderer
# ============================================================================


class _RenderState:
    """Traversal state of one ``render`` call."""

    def __init__(self, registry: Optional[ImageRegistry], header_policy: Callable[[str], bool]):
        self.registry = registry
        self.header_policy = header_policy
        self.blocks: List[tuple] = []  # (kind, element)
        self.seen_header = False

    def add(self, kind: str, element: etree._Element) -> None:
        self.blocks.append((kind, element))


def _render_paragraph(state: _RenderState, node: Dict[str, Any]) -> None:
    lines = _inline_lines(node, BODY_SIZE, force_bold=False)
    if not any(lines):
        state.add("blank", blank_paragraph())
        return
    # Every line of a source paragraph becomes its own paragraph
    for index, runs in enumerate(lines):
        if not runs:
            runs = [make_run(" ")]
        kind = "paragraph" if index == 0 else "line"
        state.add(kind, make_paragraph(runs, **_BODY_PPR))


def _render_heading(state: _RenderState, node: Dict[str, Any]) -> None:
    for runs in _inline_lines(node, HEADING_SIZE, force_bold=True):
        if runs:
            state.add("heading", make_paragraph(runs, **_HEADING_PPR))


def _render_list_item_child(
    state: _RenderState, child: Dict[str, Any], prefix: Optional[str], indent: int, bullet: bool
) -> None:
    """One paragraph child of a list item; nested lists recurse."""
    kind = _node_type(child)
    if kind in ("bulletList", "orderedList"):
        _render_list(state, child, indent + _BULLET_INDENT)
        return

    if bullet and state.header_policy(plain_text(child)):
        if state.seen_header:
            state.add("list", blank_paragraph())
        state.seen_header = True
        for runs in _inline_lines(child, BODY_SIZE, force_bold=True):
            if runs:
                state.add("list", make_paragraph(runs, jc="both", keep_next=True))
        return

    for index, runs in enumerate(_inline_lines(child, BODY_SIZE, force_bold=False)):
        lead = prefix if index == 0 else "   "
        line = [make_run(lead)] + runs if lead else runs
        state.add("list", make_paragraph(line, jc="both", ind_left=indent))


def _render_list(state: _RenderState, node: Dict[str, Any], indent: int = _BULLET_INDENT) -> None:
    bullet = _node_type(node) == "bulletList"
    counter = 1
    for item in _children(node):
        if _node_type(item) != "listItem":
            continue
        for child in _children(item):
            prefix = "• " if bullet else f"{counter}. "
            _render_list_item_child(state, child, prefix, indent, bullet)
            if not bullet and _node_type(child) not in ("bulletList", "orderedList"):
                counter += 1


def _render_blockquote(state: _RenderState, node: Dict[str, Any]) -> None:
    for child in _children(node):
        for runs in _inline_lines(child, BODY_SIZE, force_bold=False):
            if runs:
                state.add(
                    "quote", make_paragraph(runs, jc="both", ind_left=_QUOTE_INDENT)
                )


def _pixels(value: Any) -> Optional[int]:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _render_image(state: _RenderState, node: Dict[str, Any]) -> None:
    attrs = node.get("attrs") if isinstance(node.get("attrs"), dict) else {}
    src = attrs.get("src") if isinstance(attrs.get("src"), str) else ""

    if not is_local_upload(src) or state.registry is None:
        state.add(
            "image",
            make_paragraph(
                make_run(f"[Imagem: {src}]", italic=True, color=MUTED_COLOR)
            ),
        )
        return

    width_px = _pixels(attrs.get("width"))
    height_px = _pixels(attrs.get("height"))
    explicit = width_px is not None and height_px is not None
    image = state.registry.register(src, explicit_size=explicit)

    if explicit:
        width_emu = width_px * EMU_PER_PIXEL
        height_emu = height_px * EMU_PER_PIXEL
        if width_emu > MAX_IMAGE_WIDTH_EMU:
            height_emu = int(height_emu * MAX_IMAGE_WIDTH_EMU / width_emu)
            width_emu = MAX_IMAGE_WIDTH_EMU
    else:
        width_emu, height_emu = DEFAULT_IMAGE_WIDTH_EMU, DEFAULT_IMAGE_HEIGHT_EMU

    docpr_id = _DOCPR_BASE + len(state.registry)
    run = drawing_run(image.rel_id, width_emu, height_emu, docpr_id, image.name)
    state.add("image", make_paragraph(run, jc="center"))


def _render_fallback(state: _RenderState, node: Dict[str, Any]) -> None:
    text = plain_text(node)
    if text.strip():
        state.add("paragraph", make_paragraph(make_run(text), **_BODY_PPR))


_BLOCK_RENDERERS = {
    "paragraph": _render_paragraph,
    "heading": _render_heading,
    "bulletList": _render_list,
    "orderedList": _render_list,
    "blockquote": _render_blockquote,
    "image": _render_image,
}


class RichTextRenderer:
    """
    Renders the rich-text fields of one document.

    The instance remembers whether a group header has been emitted, so only
    the very first header of the whole document goes without a separator.
    """

    def __init__(
        self,
        registry: Optional[ImageRegistry] = None,
        header_policy: Callable[[str], bool] = is_module_header,
    ):
        self.registry = registry
        self.header_policy = header_policy
        self.seen_header = False

    def render(self, tree: Optional[Dict[str, Any]]) -> MarkupFragment:
        state = _RenderState(self.registry, self.header_policy)
        state.seen_header = self.seen_header

        for node in _children(tree):
            renderer = _BLOCK_RENDERERS.get(_node_type(node), _render_fallback)
            emitted = len(state.blocks)
            try:
                renderer(state, node)
            except Exception as e:
                logger.warning(
                    "Rendering %r node as plain text: %s", _node_type(node), e
                )
                # Drop the partial output before re-rendering the node as text
                del state.blocks[emitted:]
                _render_fallback(state, node)

        self.seen_header = state.seen_header

        fragment = MarkupFragment()
        previous_kind = None
        for kind, element in state.blocks:
            # Blank line between two consecutive plain paragraphs
            if kind == "paragraph" and previous_kind in ("paragraph", "line"):
                fragment.append(blank_paragraph())
            fragment.append(element)
            previous_kind = kind

        if not fragment:
            fragment.append(blank_paragraph())
        return fragment


def render(
    tree: Optional[Dict[str, Any]],
    registry: Optional[ImageRegistry] = None,
    header_policy: Callable[[str], bool] = is_module_header,
) -> MarkupFragment:
    """
    Render a rich-text document tree as block-level markup.

    Args:
        tree: TipTap-style ``{"type": "doc", "content": [...]}`` (may be None)
        registry: Collector for local images of this document render; local
            images render as text placeholders when it is None
        header_policy: Decides whether a bullet line is a group header

    Returns:
        A non-empty MarkupFragment (a single blank paragraph for empty input)
    """
    return RichTextRenderer(registry, header_policy).render(tree)
