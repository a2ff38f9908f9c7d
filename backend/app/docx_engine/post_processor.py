"""
Package post-processing after the merge.

Restores author-typed braces, repairs section breaks lost by the merge,
embeds header logos and rich-text images and wires their relationship and
content-type entries into the package.
"""

import copy
import logging
from typing import Dict, List, Optional

from lxml import etree

from app.docx_engine.images import ImageInfo, fit_box, inspect_image
from app.docx_engine.markers import CLOSE_BRACE_SENTINEL, OPEN_BRACE_SENTINEL
from app.docx_engine.ooxml import drawing_run, make_paragraph
from app.docx_engine.package import (
    CONTENT_TYPES_PART,
    CT_NS,
    DOCUMENT_PART,
    IMAGE_REL_TYPE,
    PKG_REL_NS,
    R_NS,
    DocxPackage,
    rels_part_for,
    w,
)
from app.docx_engine.rich_text import MAX_IMAGE_WIDTH_EMU, ImageRegistry
from app.docx_engine.template_surgeon import MONTHLY_TITLE_RE, XML_SPACE, ParagraphText
from app.storage import UploadStorage, upload_storage

logger = logging.getLogger(__name__)

WP_NS = "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing"
A_NS = "http://schemas.openxmlformats.org/drawingml/2006/main"

# Header logos are fitted to a ~1.8 cm tall box
LOGO_HEIGHT_EMU = 648000
LOGO_MAX_WIDTH_EMU = 1944000

_LOGO_NAMES = {
    "##PARTNER_LOGO##": ("rIdPartnerLogo", "partnerLogo"),
    "##FOUNDATION_LOGO##": ("rIdFoundationLogo", "foundationLogo"),
}

_RESTORE = {OPEN_BRACE_SENTINEL: "{", CLOSE_BRACE_SENTINEL: "}"}


def _inline_sectprs(root: Optional[etree._Element]) -> List[etree._Element]:
    """Section breaks carried by paragraphs (the body-level one excluded)."""
    if root is None:
        return []
    return [s for s in root.iter(w("sectPr")) if s.getparent().tag == w("pPr")]


def _is_landscape(sectpr: etree._Element) -> bool:
    pgsz = sectpr.find(w("pgSz"))
    return pgsz is not None and pgsz.get(w("orient")) == "landscape"


def _paragraph_of(sectpr: etree._Element) -> etree._Element:
    return sectpr.getparent().getparent()


def _title_before(paragraph: etree._Element) -> Optional[etree._Element]:
    """Monthly distribution title inside the section ending at ``paragraph``."""
    for sibling in paragraph.itersiblings(preceding=True):
        if sibling.tag != w("p"):
            continue
        if sibling.find(w("pPr") + "/" + w("sectPr")) is not None:
            return None
        if MONTHLY_TITLE_RE.search(ParagraphText(sibling).text):
            return sibling
    return None


class PackagePostProcessor:
    """
    Finishes a merged package.

    Args:
        merged: Bytes written by the merge step
        pristine: Template package as read from disk
        prepared: Template package after surgery; section breaks are
            counted against it when given, against ``pristine`` otherwise
        storage: Source of rich-text image bytes
    """

    def __init__(
        self,
        merged: bytes,
        pristine: DocxPackage,
        prepared: Optional[DocxPackage] = None,
        storage: Optional[UploadStorage] = None,
    ):
        self.package = DocxPackage.from_bytes(merged)
        self.pristine = pristine
        self.prepared = prepared
        self.storage = storage or upload_storage
        self._next_docpr: Optional[int] = None

    def process(self, logos: Dict[str, ImageInfo], registry: ImageRegistry) -> bytes:
        """Run every step in order and return the final package bytes."""
        self.restore_braces()
        self.repair_section_breaks()
        self.inject_logos(logos)
        self.embed_content_images(registry)
        return self.to_bytes()

    def to_bytes(self) -> bytes:
        return self.package.to_bytes()

    # ------------------------------------------------------------------
    # Braces
    # ------------------------------------------------------------------

    def restore_braces(self) -> int:
        restored = 0
        parts = [DOCUMENT_PART] + self.package.header_footer_parts()
        for root in self.package.iter_xml(parts):
            for t in root.iter(w("t")):
                text = t.text or ""
                if OPEN_BRACE_SENTINEL in text or CLOSE_BRACE_SENTINEL in text:
                    restored += sum(text.count(s) for s in _RESTORE)
                    t.text = "".join(_RESTORE.get(char, char) for char in text)
        if restored:
            logger.debug("Restored %d escaped brace(s)", restored)
        return restored

    # ------------------------------------------------------------------
    # Section breaks
    # ------------------------------------------------------------------

    def repair_section_breaks(self) -> bool:
        """Re-insert a portrait section break the merge removed.

        Only the break closing the portrait section in front of the
        landscape section is restored; it is placed before the landscape
        section's title, or right before the landscape break's paragraph.
        """
        reference = self.prepared or self.pristine
        expected = _inline_sectprs(reference.document)
        document = self.package.document
        actual = _inline_sectprs(document)
        if len(actual) >= len(expected):
            logger.debug("Section breaks intact (%d)", len(actual))
            return False

        landscapes = [s for s in actual if _is_landscape(s)]
        if not landscapes:
            logger.warning(
                "%d section break(s) lost but no landscape section found; not repaired",
                len(expected) - len(actual),
            )
            return False

        restored = self._portrait_break(expected, reference)
        if restored is None:
            logger.warning("No portrait section properties to restore")
            return False

        # The monthly table's section is the one opened by its title
        anchor = None
        for landscape in landscapes:
            anchor = _title_before(_paragraph_of(landscape))
            if anchor is not None:
                break
        if anchor is None:
            anchor = _paragraph_of(landscapes[0])

        paragraph = make_paragraph()
        ppr = paragraph.makeelement(w("pPr"), {})
        ppr.append(restored)
        paragraph.append(ppr)
        anchor.addprevious(paragraph)
        logger.info("Restored a portrait section break before the landscape section")
        return True

    @staticmethod
    def _portrait_break(
        expected: List[etree._Element], reference: DocxPackage
    ) -> Optional[etree._Element]:
        for index, sectpr in enumerate(expected):
            if _is_landscape(sectpr) and index > 0 and not _is_landscape(expected[index - 1]):
                return copy.deepcopy(expected[index - 1])
        portrait = next((s for s in expected if not _is_landscape(s)), None)
        if portrait is not None:
            return copy.deepcopy(portrait)
        body_sectpr = reference.document.find(w("body") + "/" + w("sectPr"))
        if body_sectpr is None:
            return None
        return copy.deepcopy(body_sectpr)

    # ------------------------------------------------------------------
    # Relationships / content types / drawing ids
    # ------------------------------------------------------------------

    def _rels_root(self, part_name: str) -> etree._Element:
        rels_name = rels_part_for(part_name)
        root = self.package.xml(rels_name)
        if root is None:
            root = etree.Element(f"{{{PKG_REL_NS}}}Relationships", nsmap={None: PKG_REL_NS})
            self.package.set_xml(rels_name, root)
        return root

    def _add_image_relationship(self, part_name: str, rel_id: str, target: str) -> None:
        root = self._rels_root(part_name)
        for rel in root.iter(f"{{{PKG_REL_NS}}}Relationship"):
            if rel.get("Id") == rel_id:
                rel.set("Target", target)
                rel.set("Type", IMAGE_REL_TYPE)
                return
        etree.SubElement(
            root,
            f"{{{PKG_REL_NS}}}Relationship",
            {"Id": rel_id, "Type": IMAGE_REL_TYPE, "Target": target},
        )

    def _ensure_content_type(self, extension: str, content_type: str) -> None:
        root = self.package.xml(CONTENT_TYPES_PART)
        if root is None:
            logger.warning("Package has no content types part")
            return
        for default in root.iter(f"{{{CT_NS}}}Default"):
            if (default.get("Extension") or "").lower() == extension.lower():
                return
        default = etree.Element(
            f"{{{CT_NS}}}Default", {"Extension": extension, "ContentType": content_type}
        )
        # Defaults precede Overrides
        first_override = root.find(f"{{{CT_NS}}}Override")
        if first_override is not None:
            first_override.addprevious(default)
        else:
            root.append(default)

    def _docpr_id(self) -> int:
        if self._next_docpr is None:
            highest = 0
            parts = [DOCUMENT_PART] + self.package.header_footer_parts()
            for root in self.package.iter_xml(parts):
                for docpr in root.iter(f"{{{WP_NS}}}docPr"):
                    try:
                        highest = max(highest, int(docpr.get("id", "0")))
                    except ValueError:
                        continue
            self._next_docpr = highest + 1
        value = self._next_docpr
        self._next_docpr += 1
        return value

    # ------------------------------------------------------------------
    # Header logos
    # ------------------------------------------------------------------

    def inject_logos(self, logos: Dict[str, ImageInfo]) -> int:
        """Swap logo tokens in header parts for inline pictures."""
        injected = 0
        for token, info in logos.items():
            rel_id, name = _LOGO_NAMES[token]
            media_name = f"{name}.{info.extension}"
            width, height = fit_box(
                info.width_px, info.height_px, LOGO_MAX_WIDTH_EMU, LOGO_HEIGHT_EMU
            )
            used = False
            for part_name in self.package.header_parts():
                root = self.package.xml(part_name)
                count = self._replace_token(root, token, rel_id, width, height, name)
                if count:
                    self._add_image_relationship(part_name, rel_id, f"media/{media_name}")
                    used = True
                    injected += count
            if used:
                self.package.set_bytes(f"word/media/{media_name}", info.data)
                self._ensure_content_type(info.extension, info.content_type)
            else:
                logger.debug("Logo token %s not found in any header", token)

        if injected:
            logger.info("Injected %d header logo(s)", injected)
        return injected

    def _replace_token(
        self, root: etree._Element, token: str, rel_id: str, width: int, height: int, name: str
    ) -> int:
        replaced = 0
        while True:
            t = next((t for t in root.iter(w("t")) if token in (t.text or "")), None)
            if t is None:
                return replaced
            run = t.getparent()
            before, _, after = (t.text or "").partition(token)

            rpr = run.find(w("rPr"))
            t.text = before
            t.set(XML_SPACE, "preserve")

            # Text after the token and anything following it in the run
            tail_run = run.makeelement(w("r"), {})
            if rpr is not None:
                tail_run.append(copy.deepcopy(rpr))
            tail_t = etree.SubElement(tail_run, w("t"))
            tail_t.text = after
            tail_t.set(XML_SPACE, "preserve")
            moved = list(t.itersiblings())
            for sibling in moved:
                tail_run.append(sibling)

            picture = drawing_run(rel_id, width, height, self._docpr_id(), name)
            run.addnext(picture)
            if after or moved:
                picture.addnext(tail_run)
            if not before and all(child.tag in (w("rPr"), w("t")) for child in run):
                run.getparent().remove(run)
            replaced += 1

    # ------------------------------------------------------------------
    # Content images
    # ------------------------------------------------------------------

    def _drawings_for(self, rel_id: str) -> List[etree._Element]:
        document = self.package.document
        blips = [
            blip
            for blip in document.iter(f"{{{A_NS}}}blip")
            if blip.get(f"{{{R_NS}}}embed") == rel_id
        ]
        return [next(blip.iterancestors(w("drawing"))) for blip in blips]

    def embed_content_images(self, registry: ImageRegistry) -> int:
        """Add the media of every registered rich-text image."""
        if self.package.document is None:
            return 0
        embedded = 0
        for image in registry.images:
            drawings = self._drawings_for(image.rel_id)
            if not drawings:
                logger.debug("Image %s is not referenced by the merged body", image.src)
                continue

            info = inspect_image(self.storage.read_bytes(image.src))
            if info is None:
                logger.warning("Image %s could not be read; removed from the document", image.src)
                for drawing in drawings:
                    run = drawing.getparent()
                    run.getparent().remove(run)
                continue

            if not image.explicit_size:
                width, height = fit_box(info.width_px, info.height_px, MAX_IMAGE_WIDTH_EMU)
                for drawing in drawings:
                    for extent in drawing.iter(f"{{{WP_NS}}}extent", f"{{{A_NS}}}ext"):
                        extent.set("cx", str(width))
                        extent.set("cy", str(height))

            for drawing in drawings:
                for docpr in drawing.iter(f"{{{WP_NS}}}docPr"):
                    docpr.set("id", str(self._docpr_id()))

            # Content types are keyed by extension; name the part after the real format
            image.media_path = f"word/media/{image.name}.{info.extension}"
            self.package.set_bytes(image.media_path, info.data)
            self._add_image_relationship(
                DOCUMENT_PART, image.rel_id, image.media_path[len("word/"):]
            )
            self._ensure_content_type(info.extension, info.content_type)
            embedded += 1

        if embedded:
            logger.info("Embedded %d content image(s)", embedded)
        return embedded
