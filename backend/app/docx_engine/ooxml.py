"""Low-level WordprocessingML builders.

Every builder returns lxml elements created through python-docx's
``OxmlElement`` so fragments can be assembled as trees and serialised once,
when the merge step asks for their markup.
"""

import re
from typing import Iterable, List, Optional, Sequence, Union

from docx.oxml import OxmlElement, parse_xml
from docx.oxml.ns import nsdecls, qn
from lxml import etree

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FONT_NAME = "Verdana"
BODY_SIZE = 20  # half-points (10pt)
SMALL_SIZE = 18
TINY_SIZE = 16
CONDENSED_SIZE = 12
HEADING_SIZE = 24

BORDER_COLOR = "000000"
HEADER_FILL = "D9E2F3"
SECTION_FILL = "E8E8E8"
ACTIVE_FILL = "B4C6E7"
SUBTOTAL_FILL = "F2F2F2"
MUTED_COLOR = "888888"

# Usable text width in twips (A4, 2.5cm margins)
PORTRAIT_TEXT_WIDTH = 9000
LANDSCAPE_TEXT_WIDTH = 13900

EMU_PER_PIXEL = 9525

# Characters XML 1.0 does not allow; lxml refuses them in text
_XML_ILLEGAL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")
_XML_ILLEGAL_AS_SPACE = "\x0b\x0c"

_BORDER_SIDES = ("top", "left", "bottom", "right")


# ---------------------------------------------------------------------------
# Fragment
# ---------------------------------------------------------------------------


class MarkupFragment:
    """Ordered block-level elements handed to the merge step as raw markup.

    Implements ``__html__`` so an autoescaping Jinja environment emits the
    serialised XML untouched.
    """

    def __init__(self, elements: Optional[Iterable[etree._Element]] = None):
        self.elements: List[etree._Element] = list(elements or [])

    def append(self, element: etree._Element) -> None:
        self.elements.append(element)

    def extend(self, elements: Iterable[etree._Element]) -> None:
        self.elements.extend(elements)

    def __iter__(self):
        return iter(self.elements)

    def __len__(self) -> int:
        return len(self.elements)

    def __bool__(self) -> bool:
        return bool(self.elements)

    def to_xml(self) -> str:
        return "".join(
            etree.tostring(element, encoding="unicode") for element in self.elements
        )

    def __html__(self) -> str:
        return self.to_xml()

    def __str__(self) -> str:
        return self.to_xml()

    def __repr__(self) -> str:
        return f"<MarkupFragment {len(self.elements)} element(s)>"


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


def _set_val(element: etree._Element, value) -> etree._Element:
    element.set(qn("w:val"), str(value))
    return element


def run_properties(
    bold: bool = False,
    italic: bool = False,
    underline: bool = False,
    strike: bool = False,
    size: int = BODY_SIZE,
    color: Optional[str] = None,
) -> etree._Element:
    """Build ``w:rPr`` in schema order (fonts, b, i, strike, color, sz, u)."""
    rpr = OxmlElement("w:rPr")
    fonts = OxmlElement("w:rFonts")
    for attr in ("w:ascii", "w:hAnsi", "w:cs"):
        fonts.set(qn(attr), FONT_NAME)
    rpr.append(fonts)
    if bold:
        rpr.append(OxmlElement("w:b"))
        rpr.append(OxmlElement("w:bCs"))
    if italic:
        rpr.append(OxmlElement("w:i"))
        rpr.append(OxmlElement("w:iCs"))
    if strike:
        rpr.append(OxmlElement("w:strike"))
    if color:
        rpr.append(_set_val(OxmlElement("w:color"), color))
    rpr.append(_set_val(OxmlElement("w:sz"), size))
    rpr.append(_set_val(OxmlElement("w:szCs"), size))
    if underline:
        rpr.append(_set_val(OxmlElement("w:u"), "single"))
    return rpr


def xml_safe(text: Optional[str]) -> str:
    """``text`` without characters XML cannot carry.

    Vertical tabs and form feeds (line and page breaks pasted from Word)
    become spaces; other control characters are dropped.
    """
    if not text:
        return ""
    return _XML_ILLEGAL_RE.sub(
        lambda m: " " if m.group(0) in _XML_ILLEGAL_AS_SPACE else "", text
    )


def make_run(text: str, **fmt) -> etree._Element:
    """A run carrying ``text`` with whitespace preserved."""
    run = OxmlElement("w:r")
    run.append(run_properties(**fmt))
    t = OxmlElement("w:t")
    t.set("{http://www.w3.org/XML/1998/namespace}space", "preserve")
    t.text = xml_safe(text)
    run.append(t)
    return run


# ---------------------------------------------------------------------------
# Paragraphs
# ---------------------------------------------------------------------------


def paragraph_properties(
    jc: Optional[str] = None,
    before: Optional[int] = None,
    after: Optional[int] = None,
    line: Optional[int] = None,
    ind_left: Optional[int] = None,
    keep_next: bool = False,
) -> etree._Element:
    """Build ``w:pPr`` in schema order (keepNext, spacing, ind, jc)."""
    ppr = OxmlElement("w:pPr")
    if keep_next:
        ppr.append(OxmlElement("w:keepNext"))
    if before is not None or after is not None or line is not None:
        spacing = OxmlElement("w:spacing")
        if before is not None:
            spacing.set(qn("w:before"), str(before))
        if after is not None:
            spacing.set(qn("w:after"), str(after))
        if line is not None:
            spacing.set(qn("w:line"), str(line))
            spacing.set(qn("w:lineRule"), "auto")
        ppr.append(spacing)
    if ind_left is not None:
        ind = OxmlElement("w:ind")
        ind.set(qn("w:left"), str(ind_left))
        ppr.append(ind)
    if jc:
        ppr.append(_set_val(OxmlElement("w:jc"), jc))
    return ppr


def make_paragraph(
    runs: Union[etree._Element, Sequence[etree._Element], None] = None, **ppr
) -> etree._Element:
    """A paragraph with optional properties followed by ``runs``."""
    p = OxmlElement("w:p")
    if ppr:
        p.append(paragraph_properties(**ppr))
    if runs is None:
        return p
    if isinstance(runs, etree._Element):
        runs = [runs]
    for run in runs:
        p.append(run)
    return p


def text_paragraph(text: str, size: int = BODY_SIZE, bold: bool = False, **ppr) -> etree._Element:
    return make_paragraph(make_run(text, size=size, bold=bold), **ppr)


def blank_paragraph() -> etree._Element:
    """Justified paragraph holding a single space in the body font."""
    return make_paragraph(make_run(" "), jc="both")


def spacer_paragraph(after: int = 120) -> etree._Element:
    """Empty paragraph used as vertical spacing between blocks."""
    return make_paragraph(None, after=after)


def placeholder_paragraph(text: str) -> etree._Element:
    """Italic "not applicable" line emitted in place of an empty section."""
    return make_paragraph(make_run(text, italic=True))


def placeholder_fragment(text: str) -> MarkupFragment:
    return MarkupFragment([placeholder_paragraph(text)])


def label_value_runs(label: str, value: str, label_size: int = SMALL_SIZE) -> List[etree._Element]:
    """Bold ``label`` run followed by a regular ``value`` run."""
    return [make_run(label, bold=True, size=label_size), make_run(value)]


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


def _border(tag: str, size: int = 4) -> etree._Element:
    el = OxmlElement(tag)
    el.set(qn("w:val"), "single")
    el.set(qn("w:sz"), str(size))
    el.set(qn("w:space"), "0")
    el.set(qn("w:color"), BORDER_COLOR)
    return el


def shading(fill: str) -> etree._Element:
    shd = OxmlElement("w:shd")
    shd.set(qn("w:val"), "clear")
    shd.set(qn("w:color"), "auto")
    shd.set(qn("w:fill"), fill)
    return shd


def make_cell(
    content: Union[str, etree._Element, Sequence[etree._Element]],
    width: Optional[int] = None,
    fill: Optional[str] = None,
    bold: bool = False,
    size: int = SMALL_SIZE,
    jc: Optional[str] = None,
    grid_span: int = 1,
    ind_left: Optional[int] = None,
) -> etree._Element:
    """A bordered table cell.

    ``content`` is either cell text or ready-made paragraphs. ``width`` is in
    twips. The cell always ends with a paragraph.
    """
    tc = OxmlElement("w:tc")
    tcpr = OxmlElement("w:tcPr")
    if width is not None:
        tcw = OxmlElement("w:tcW")
        tcw.set(qn("w:w"), str(width))
        tcw.set(qn("w:type"), "dxa")
        tcpr.append(tcw)
    if grid_span > 1:
        tcpr.append(_set_val(OxmlElement("w:gridSpan"), grid_span))
    borders = OxmlElement("w:tcBorders")
    for side in _BORDER_SIDES:
        borders.append(_border(f"w:{side}"))
    tcpr.append(borders)
    if fill:
        tcpr.append(shading(fill))
    tc.append(tcpr)

    if isinstance(content, etree._Element):
        paragraphs = [content]
    elif isinstance(content, str):
        paragraphs = [
            make_paragraph(
                make_run(content, bold=bold, size=size), jc=jc, ind_left=ind_left
            )
        ]
    else:
        paragraphs = list(content) or [make_paragraph(make_run(" ", size=size))]
    for paragraph in paragraphs:
        tc.append(paragraph)
    if paragraphs[-1].tag != qn("w:p"):
        tc.append(make_paragraph())
    return tc


def make_row(cells: Sequence[etree._Element], header: bool = False) -> etree._Element:
    tr = OxmlElement("w:tr")
    if header:
        trpr = OxmlElement("w:trPr")
        trpr.append(OxmlElement("w:tblHeader"))
        tr.append(trpr)
    for cell in cells:
        tr.append(cell)
    return tr


def column_widths(weights: Sequence[int], total: int = PORTRAIT_TEXT_WIDTH) -> List[int]:
    """Split ``total`` twips proportionally to ``weights``."""
    weight_sum = sum(weights) or 1
    return [int(total * w / weight_sum) for w in weights]


def make_table(
    rows: Sequence[etree._Element],
    widths: Sequence[int],
    fixed_layout: bool = False,
) -> etree._Element:
    """A full-width bordered table.

    ``widths`` lists one twip width per grid column; the ``w:tblGrid`` it
    produces is required by the merge step, which rebalances grids of every
    table in the body.
    """
    tbl = OxmlElement("w:tbl")
    tblpr = OxmlElement("w:tblPr")
    tblw = OxmlElement("w:tblW")
    tblw.set(qn("w:w"), "5000")
    tblw.set(qn("w:type"), "pct")
    tblpr.append(tblw)
    tblpr.append(_set_val(OxmlElement("w:jc"), "center"))
    borders = OxmlElement("w:tblBorders")
    for side in _BORDER_SIDES + ("insideH", "insideV"):
        borders.append(_border(f"w:{side}"))
    tblpr.append(borders)
    if fixed_layout:
        layout = OxmlElement("w:tblLayout")
        layout.set(qn("w:type"), "fixed")
        tblpr.append(layout)
    tbl.append(tblpr)

    grid = OxmlElement("w:tblGrid")
    for width in widths:
        col = OxmlElement("w:gridCol")
        col.set(qn("w:w"), str(width))
        grid.append(col)
    tbl.append(grid)

    for row in rows:
        tbl.append(row)
    return tbl


# ---------------------------------------------------------------------------
# Drawings
# ---------------------------------------------------------------------------


def drawing_run(rel_id: str, width_emu: int, height_emu: int, docpr_id: int, name: str) -> etree._Element:
    """Inline picture run referencing relationship ``rel_id``."""
    xml = (
        f"<w:r {nsdecls('w', 'wp', 'a', 'pic', 'r')}>"
        "<w:drawing>"
        '<wp:inline distT="0" distB="0" distL="0" distR="0">'
        f'<wp:extent cx="{width_emu}" cy="{height_emu}"/>'
        '<wp:effectExtent l="0" t="0" r="0" b="0"/>'
        f'<wp:docPr id="{docpr_id}" name="{name}"/>'
        "<wp:cNvGraphicFramePr>"
        '<a:graphicFrameLocks noChangeAspect="1"/>'
        "</wp:cNvGraphicFramePr>"
        '<a:graphic><a:graphicData uri="http://schemas.openxmlformats.org/drawingml/2006/picture">'
        "<pic:pic>"
        f'<pic:nvPicPr><pic:cNvPr id="0" name="{name}"/><pic:cNvPicPr/></pic:nvPicPr>'
        f'<pic:blipFill><a:blip r:embed="{rel_id}"/><a:stretch><a:fillRect/></a:stretch></pic:blipFill>'
        "<pic:spPr>"
        f'<a:xfrm><a:off x="0" y="0"/><a:ext cx="{width_emu}" cy="{height_emu}"/></a:xfrm>'
        '<a:prstGeom prst="rect"><a:avLst/></a:prstGeom>'
        "</pic:spPr>"
        "</pic:pic>"
        "</a:graphicData></a:graphic>"
        "</wp:inline>"
        "</w:drawing>"
        "</w:r>"
    )
    return parse_xml(xml)


def paragraph_text(paragraph: etree._Element) -> str:
    """Concatenated ``w:t`` text of a paragraph (or any element)."""
    return "".join(t.text or "" for t in paragraph.iter(qn("w:t")))
