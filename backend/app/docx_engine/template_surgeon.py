"""
Template surgery performed on the packaged template before the merge.

All steps work on lxml trees of the package parts, through a per-paragraph
text view that ignores how Word split the text into runs. Steps run in a
fixed order, are idempotent and never raise for an absent marker:

1. known template defects are corrected
2. activities / professionals loops are replaced by one injection marker
3. block markers (rich text, schedule, financial tags) get a paragraph of
   their own
4. the monthly distribution table is wrapped in a landscape section
5. markers split across runs are consolidated into a single run
6. braces typed by the template author are swapped for sentinels so the
   merge engine does not read them as template syntax
"""

import copy
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from lxml import etree

from app.docx_engine.markers import (
    BLOCK_MARKERS,
    CLOSE_BRACE_SENTINEL,
    LANDSCAPE_TAG,
    MARKER_RE,
    OPEN_BRACE_SENTINEL,
    REPEATING_REGIONS,
    STATEMENT_RE,
    block_marker_text,
    is_recognized,
)
from app.docx_engine.ooxml import make_paragraph, make_run
from app.docx_engine.package import DOCUMENT_PART, DocxPackage, w

logger = logging.getLogger(__name__)

XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"

_LOOP_TOKEN_RE = re.compile(r"\{%-?\s*(?:p\s+)?(for|endfor)\b.*?%\}", re.DOTALL)

MONTHLY_TITLE_RE = re.compile(r"distribui[çc][ãa]o\s+mensal", re.IGNORECASE)

_BLOCK_MARKER_SET = frozenset(BLOCK_MARKERS)


# ============================================================================
# Known Template Defects
# ============================================================================


@dataclass(frozen=True)
class TemplateFix:
    """Regex correction applied to paragraph text.

    ``occurrence`` (1-based, counted over the whole part) limits the fix to
    one match; None fixes every match.
    """

    pattern: str
    replacement: str
    occurrence: Optional[int] = None
    description: str = ""


KNOWN_TEMPLATE_FIXES: Tuple[TemplateFix, ...] = (
    TemplateFix(
        r"\{\{\s*coordinatorInstitution\s*\}\}",
        "{{ coordinatorCompany }}",
        occurrence=2,
        description="partner coordinator field duplicated the institution field",
    ),
    TemplateFix(
        r"\{@(\w+)\}",
        r"{{p \1 }}",
        description="raw-markup tags left from the previous template syntax",
    ),
    TemplateFix(
        r"\{#activities\}",
        "{%p for activity in activities %}",
        description="activities loop in the previous template syntax",
    ),
    TemplateFix(
        r"\{#professionals\}",
        "{%p for professional in professionals %}",
        description="professionals loop in the previous template syntax",
    ),
    TemplateFix(
        r"\{/(?:activities|professionals)\}",
        "{%p endfor %}",
        description="loop terminators in the previous template syntax",
    ),
)


# ============================================================================
# Paragraph Text View
# ============================================================================


def _owning_paragraph(node: etree._Element) -> Optional[etree._Element]:
    return next(node.iterancestors(w("p")), None)


class ParagraphText:
    """
    Concatenated text of a paragraph mapped back onto its ``w:t`` nodes.

    Text of nested paragraphs (text boxes) belongs to those paragraphs and
    is excluded.
    """

    def __init__(self, paragraph: etree._Element):
        self.paragraph = paragraph
        self.refresh()

    def refresh(self) -> None:
        self.nodes = [
            t
            for t in self.paragraph.iter(w("t"))
            if _owning_paragraph(t) is self.paragraph
        ]
        self.starts: List[int] = []
        position = 0
        for node in self.nodes:
            self.starts.append(position)
            position += len(node.text or "")
        self.text = "".join(node.text or "" for node in self.nodes)

    def locate(self, index: int) -> Tuple[int, int]:
        """(node index, offset inside the node) of character ``index``."""
        for i in range(len(self.nodes) - 1, -1, -1):
            if self.starts[i] <= index and (self.nodes[i].text or ""):
                return i, index - self.starts[i]
        return 0, index

    def spans_nodes(self, start: int, end: int) -> bool:
        return self.locate(start)[0] != self.locate(end - 1)[0]

    def replace(self, start: int, end: int, new_text: str) -> None:
        """Replace characters [start, end) with ``new_text``.

        The result lands in the node holding ``start``; the remainder of the
        range is cut out of the following nodes.
        """
        first, first_offset = self.locate(start)
        last, last_offset = self.locate(end - 1)
        first_node = self.nodes[first]
        first_text = first_node.text or ""
        if first == last:
            first_node.text = (
                first_text[:first_offset] + new_text + first_text[last_offset + 1 :]
            )
        else:
            first_node.text = first_text[:first_offset] + new_text
            for node in self.nodes[first + 1 : last]:
                node.text = ""
            last_node = self.nodes[last]
            last_node.text = (last_node.text or "")[last_offset + 1 :]
            last_node.set(XML_SPACE, "preserve")
        first_node.set(XML_SPACE, "preserve")
        self.refresh()

    def substitute_chars(self, indexes: List[int], mapping: Dict[str, str]) -> None:
        """Swap single characters in place (same length, offsets unchanged)."""
        for index in indexes:
            i, offset = self.locate(index)
            node = self.nodes[i]
            text = node.text or ""
            node.text = text[:offset] + mapping[text[offset]] + text[offset + 1 :]
        self.refresh()


def _paragraphs(root: etree._Element) -> List[etree._Element]:
    return list(root.iter(w("p")))


def _marker_paragraph(name: str) -> etree._Element:
    return make_paragraph(make_run(block_marker_text(name)))


def _section_paragraph(sectpr: etree._Element) -> etree._Element:
    p = make_paragraph()
    _attach_sectpr(p, sectpr)
    return p


def _attach_sectpr(paragraph: etree._Element, sectpr: etree._Element) -> None:
    ppr = paragraph.find(w("pPr"))
    if ppr is None:
        ppr = paragraph.makeelement(w("pPr"), {})
        paragraph.insert(0, ppr)
    existing = ppr.find(w("sectPr"))
    if existing is not None:
        ppr.remove(existing)
    ppr.append(sectpr)


def _paragraph_sectpr(paragraph: etree._Element) -> Optional[etree._Element]:
    ppr = paragraph.find(w("pPr"))
    if ppr is None:
        return None
    return ppr.find(w("sectPr"))


def _ensure_cell_ends_with_paragraph(element: etree._Element) -> None:
    parent = element.getparent()
    if parent is not None and parent.tag == w("tc") and parent[-1] is element:
        parent.append(make_paragraph())


# ============================================================================
# Surgeon
# ============================================================================


class TemplateSurgeon:
    """
    Prepares a template package for the merge step, in place.

    Usage::

        working = DocxPackage.from_bytes(template_bytes)
        TemplateSurgeon(working).prepare()
    """

    def __init__(self, package: DocxPackage, fixes: Tuple[TemplateFix, ...] = KNOWN_TEMPLATE_FIXES):
        self.package = package
        self.fixes = fixes

    def _parts(self) -> List[str]:
        names = [DOCUMENT_PART] if self.package.has(DOCUMENT_PART) else []
        return names + self.package.header_footer_parts()

    def prepare(self) -> DocxPackage:
        """Run every step in order and return the package."""
        document = self.package.document
        parts = [self.package.xml(name) for name in self._parts()]
        parts = [root for root in parts if root is not None]

        for root in parts:
            self.correct_known_defects(root)
        if document is not None:
            self.replace_repeating_regions(document)
            self.isolate_block_markers(document)
            self.apply_landscape_section(document)
        for root in parts:
            self.consolidate_markers(root)
        for root in parts:
            self.sanitize_braces(root)
        return self.package

    # ------------------------------------------------------------------
    # 1. Known defects
    # ------------------------------------------------------------------

    def correct_known_defects(self, root: etree._Element) -> int:
        fixed = 0
        for fix in self.fixes:
            regex = re.compile(fix.pattern)
            seen = 0
            for paragraph in _paragraphs(root):
                view = ParagraphText(paragraph)
                matches = list(regex.finditer(view.text))
                if not matches:
                    continue
                targets = []
                for match in matches:
                    seen += 1
                    if fix.occurrence is None or fix.occurrence == seen:
                        targets.append(match)
                for match in reversed(targets):
                    view.replace(match.start(), match.end(), match.expand(fix.replacement))
                    fixed += 1
        if fixed:
            logger.info("Corrected %d known template defect(s)", fixed)
        else:
            logger.debug("No known template defects found")
        return fixed

    # ------------------------------------------------------------------
    # 2. Repeating regions
    # ------------------------------------------------------------------

    def replace_repeating_regions(self, root: etree._Element) -> int:
        """Swap each loop over a known collection for its injection marker."""
        replaced = 0
        for collection, (_variable, marker) in REPEATING_REGIONS.items():
            open_re = re.compile(
                r"\{%-?\s*(?:p\s+)?for\s+\w+\s+in\s+" + re.escape(collection) + r"\s*-?%\}"
            )
            while True:
                paragraphs = _paragraphs(root)
                texts = [ParagraphText(p).text for p in paragraphs]
                start = self._find_open(open_re, texts)
                if start is None:
                    break
                open_index, open_pos = start
                close_index = self._find_close(texts, open_index, open_pos)
                if close_index is None:
                    logger.warning("Loop over %s has no matching endfor; left as is", collection)
                    break
                self._replace_range(paragraphs[open_index], paragraphs[close_index], marker)
                replaced += 1

        if replaced:
            logger.info("Replaced %d repeating region(s) with injection markers", replaced)
        else:
            logger.debug("No repeating regions to replace")
        return replaced

    @staticmethod
    def _find_open(open_re, texts: List[str]) -> Optional[Tuple[int, int]]:
        for index, text in enumerate(texts):
            match = open_re.search(text)
            if match:
                return index, match.start()
        return None

    @staticmethod
    def _find_close(texts: List[str], open_index: int, open_pos: int) -> Optional[int]:
        depth = 0
        for index in range(open_index, len(texts)):
            start = open_pos if index == open_index else 0
            for token in _LOOP_TOKEN_RE.finditer(texts[index], start):
                depth += 1 if token.group(1) == "for" else -1
                if depth == 0:
                    return index
        return None

    @staticmethod
    def _replace_range(p_open: etree._Element, p_close: etree._Element, marker: str) -> None:
        """Delete everything from the open paragraph to the close paragraph."""
        open_chain = [p_open] + list(p_open.iterancestors())
        close_chain = [p_close] + list(p_close.iterancestors())
        close_set = set(close_chain)
        common = next(el for el in open_chain if el in close_set)

        if common is p_open:
            first = last = p_open
            container = p_open.getparent()
        else:
            first = open_chain[open_chain.index(common) - 1]
            last = close_chain[close_chain.index(common) - 1]
            container = common

        # Paragraphs cannot live directly in a table or row
        while container.tag in (w("tbl"), w("tr")):
            first = last = container
            container = container.getparent()

        children = list(container)
        start, end = children.index(first), children.index(last)
        container.insert(start, _marker_paragraph(marker))
        for child in children[start : end + 1]:
            container.remove(child)

    # ------------------------------------------------------------------
    # 3. Block markers
    # ------------------------------------------------------------------

    def isolate_block_markers(self, root: etree._Element) -> int:
        """Give every block marker a clean paragraph of its own.

        The merge step replaces the whole paragraph holding ``{{p name }}``,
        so any other text of that paragraph would be lost and a section
        break carried by it would vanish.
        """
        rewritten = 0
        for paragraph in _paragraphs(root):
            view = ParagraphText(paragraph)
            matches = [
                m for m in MARKER_RE.finditer(view.text)
                if m.group(2) in _BLOCK_MARKER_SET
            ]
            if not matches:
                continue
            names = [m.group(2) for m in matches]

            if (
                len(names) == 1
                and len(view.nodes) == 1
                and view.text == block_marker_text(names[0])
                and _paragraph_sectpr(paragraph) is None
            ):
                _ensure_cell_ends_with_paragraph(paragraph)
                continue

            parent = paragraph.getparent()
            sectpr = _paragraph_sectpr(paragraph)
            if sectpr is not None:
                sectpr.getparent().remove(sectpr)

            for match in reversed(matches):
                view.replace(match.start(), match.end(), "")
            keep_paragraph = bool(view.text.strip())

            replacements = [_marker_paragraph(name) for name in names]
            if sectpr is not None:
                replacements.append(_section_paragraph(sectpr))

            # Surrounding text (a label, usually) stays in the original paragraph
            position = parent.index(paragraph) + (1 if keep_paragraph else 0)
            for offset, element in enumerate(replacements):
                parent.insert(position + offset, element)
            if not keep_paragraph:
                parent.remove(paragraph)
            _ensure_cell_ends_with_paragraph(replacements[-1])
            rewritten += 1

        if rewritten:
            logger.info("Isolated %d block marker paragraph(s)", rewritten)
        else:
            logger.debug("Block markers already isolated")
        return rewritten

    # ------------------------------------------------------------------
    # 4. Landscape section
    # ------------------------------------------------------------------

    def apply_landscape_section(self, root: etree._Element, tag: str = LANDSCAPE_TAG) -> bool:
        """Put the paragraph of ``tag`` in a landscape section of its own."""
        body = root.find(w("body"))
        if body is None:
            return False

        marker_text = block_marker_text(tag)
        target = next(
            (p for p in _paragraphs(body) if marker_text in ParagraphText(p).text),
            None,
        )
        if target is None:
            logger.debug("No %s marker; landscape section skipped", tag)
            return False
        if target.getparent() is not body:
            logger.warning("%s is not a top-level paragraph; landscape section skipped", tag)
            return False

        if self._has_landscape_section(target):
            logger.debug("%s already has its landscape section", tag)
            return False

        body_sectpr = body.find(w("sectPr"))
        if body_sectpr is None:
            logger.warning("Template has no body section properties; landscape section skipped")
            return False

        # The builder re-emits the section title inside the landscape page
        previous = target.getprevious()
        if (
            previous is not None
            and previous.tag == w("p")
            and _paragraph_sectpr(previous) is None
            and MONTHLY_TITLE_RE.search(ParagraphText(previous).text)
        ):
            body.remove(previous)

        portrait = copy.deepcopy(body_sectpr)
        target.addprevious(_section_paragraph(portrait))

        landscape = self._landscape_copy(body_sectpr)
        following = target.getnext()
        if (
            following is not None
            and following.tag == w("p")
            and _paragraph_sectpr(following) is None
            and not ParagraphText(following).text.strip()
            and following.find(".//" + w("drawing")) is None
        ):
            _attach_sectpr(following, landscape)
        else:
            target.addnext(_section_paragraph(landscape))

        logger.info("Wrapped %s in a landscape section", tag)
        return True

    @staticmethod
    def _has_landscape_section(target: etree._Element) -> bool:
        """True when ``target`` sits between a section break and a landscape one.

        Other landscape sections of the document (wide annexes) do not count.
        """
        previous, following = target.getprevious(), target.getnext()
        if previous is None or previous.tag != w("p") or _paragraph_sectpr(previous) is None:
            return False
        if following is None or following.tag != w("p"):
            return False
        sectpr = _paragraph_sectpr(following)
        if sectpr is None:
            return False
        pgsz = sectpr.find(w("pgSz"))
        return pgsz is not None and pgsz.get(w("orient")) == "landscape"

    @staticmethod
    def _landscape_copy(sectpr: etree._Element) -> etree._Element:
        landscape = copy.deepcopy(sectpr)
        pgsz = landscape.find(w("pgSz"))
        if pgsz is None:
            pgsz = landscape.makeelement(w("pgSz"), {})
            landscape.append(pgsz)
            pgsz.set(w("w"), "11906")
            pgsz.set(w("h"), "16838")
        width, height = pgsz.get(w("w")), pgsz.get(w("h"))
        if width and height and int(width) < int(height):
            pgsz.set(w("w"), height)
            pgsz.set(w("h"), width)
        pgsz.set(w("orient"), "landscape")

        section_type = landscape.find(w("type"))
        if section_type is None:
            section_type = landscape.makeelement(w("type"), {})
            pgsz.addprevious(section_type)
        section_type.set(w("val"), "nextPage")
        return landscape

    # ------------------------------------------------------------------
    # 5. Marker consolidation
    # ------------------------------------------------------------------

    def consolidate_markers(self, root: etree._Element) -> int:
        """Merge recognized markers split over several runs into one run."""
        merged = 0
        for paragraph in _paragraphs(root):
            view = ParagraphText(paragraph)
            if len(view.nodes) < 2 or "{" not in view.text:
                continue
            spans = [
                (m.start(), m.end(), m.group(0))
                for m in MARKER_RE.finditer(view.text)
                if is_recognized(m.group(2))
            ]
            spans += [(m.start(), m.end(), m.group(0)) for m in STATEMENT_RE.finditer(view.text)]
            for start, end, text in sorted(spans, reverse=True):
                if view.spans_nodes(start, end):
                    view.replace(start, end, text)
                    merged += 1
        if merged:
            logger.info("Consolidated %d split marker(s)", merged)
        else:
            logger.debug("No split markers found")
        return merged

    # ------------------------------------------------------------------
    # 6. Brace sanitization
    # ------------------------------------------------------------------

    def sanitize_braces(self, root: etree._Element) -> int:
        """Replace braces that are not part of a recognized marker."""
        mapping = {"{": OPEN_BRACE_SENTINEL, "}": CLOSE_BRACE_SENTINEL}
        escaped = 0
        for paragraph in _paragraphs(root):
            view = ParagraphText(paragraph)
            if "{" not in view.text and "}" not in view.text:
                continue
            protected = [
                (m.start(), m.end())
                for m in MARKER_RE.finditer(view.text)
                if is_recognized(m.group(2))
            ]
            protected += [(m.start(), m.end()) for m in STATEMENT_RE.finditer(view.text)]

            stray = [
                index
                for index, char in enumerate(view.text)
                if char in mapping
                and not any(start <= index < end for start, end in protected)
            ]
            if stray:
                view.substitute_chars(stray, mapping)
                escaped += len(stray)
        if escaped:
            logger.info("Escaped %d stray brace(s)", escaped)
        return escaped
