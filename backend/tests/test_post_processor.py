"""
Unit Tests for package post-processing

Tests the steps applied to a merged package:
- Restoring escaped braces
- Repairing a section break lost during the merge
- Header logo injection with relationships and content types
- Embedding of rich-text images from the uploads storage

Usage:
    cd backend && pytest tests/test_post_processor.py -v
"""

import pytest
import sys
import os

from docx.oxml.ns import qn

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.docx_engine.images import inspect_image
from app.docx_engine.markers import (
    CLOSE_BRACE_SENTINEL,
    OPEN_BRACE_SENTINEL,
    PARTNER_LOGO_TOKEN,
)
from app.docx_engine.package import CONTENT_TYPES_PART, DocxPackage, rels_part_for
from app.docx_engine.post_processor import (
    LOGO_HEIGHT_EMU,
    PackagePostProcessor,
)
from app.docx_engine.rich_text import ImageRegistry, render
from app.docx_engine.template_surgeon import TemplateSurgeon
from app.storage import UploadStorage
from docx_factories import (
    body_paragraph_texts,
    doc_node,
    element_text,
    make_jpeg,
    make_png,
    make_template,
    make_template_with_landscape_annex,
)

CT_DEFAULT = "{http://schemas.openxmlformats.org/package/2006/content-types}Default"
REL = "{http://schemas.openxmlformats.org/package/2006/relationships}Relationship"
BLIP = "{http://schemas.openxmlformats.org/drawingml/2006/main}blip"


# ============================================================================
# FIXTURES AND HELPERS
# ============================================================================

def make_processor(merged: bytes, **kwargs) -> PackagePostProcessor:
    return PackagePostProcessor(merged, DocxPackage.from_bytes(merged), **kwargs)


def relationships(package: DocxPackage, part_name: str):
    root = package.xml(rels_part_for(part_name))
    return {rel.get("Id"): rel.get("Target") for rel in root.iter(REL)}


def default_extensions(package: DocxPackage):
    root = package.xml(CONTENT_TYPES_PART)
    return [d.get("Extension").lower() for d in root.iter(CT_DEFAULT)]


@pytest.fixture
def uploads(tmp_path):
    folder = tmp_path / "uploads"
    folder.mkdir()
    return UploadStorage(root=str(tmp_path))


def merged_with_image(*srcs: str):
    """Package bytes whose body starts with rendered rich-text images."""
    package = DocxPackage.from_bytes(make_template(["Texto"]))
    registry = ImageRegistry()
    nodes = [{"type": "image", "attrs": {"src": src}} for src in srcs]
    fragment = render(doc_node(*nodes), registry)
    body = package.document.find(qn("w:body"))
    for offset, element in enumerate(fragment):
        body.insert(offset, element)
    return package.to_bytes(), registry


# ============================================================================
# BRACES
# ============================================================================

class TestRestoreBraces:

    def test_sentinels_become_braces(self):
        merged = make_template([f"Use {OPEN_BRACE_SENTINEL}chaves{CLOSE_BRACE_SENTINEL}"])
        processor = make_processor(merged)
        assert processor.restore_braces() == 2
        assert body_paragraph_texts(processor.package.document)[0] == "Use {chaves}"

    def test_header_sentinels_restored(self):
        merged = make_template(["Corpo"], header_text=f"{OPEN_BRACE_SENTINEL}x{CLOSE_BRACE_SENTINEL}")
        processor = make_processor(merged)
        processor.restore_braces()
        header = processor.package.xml(processor.package.header_parts()[0])
        assert element_text(header) == "{x}"


# ============================================================================
# SECTION BREAKS
# ============================================================================

class TestSectionRepair:

    def _prepared(self):
        template = make_template([
            "Introdução",
            "Distribuição Mensal",
            "{{p monthlyDistributionTable }}",
            "",
            "Fim",
        ])
        pristine = DocxPackage.from_bytes(template)
        prepared = pristine.copy()
        TemplateSurgeon(prepared).prepare()
        return pristine, prepared

    @staticmethod
    def _inline(root):
        return [s for s in root.iter(qn("w:sectPr")) if s.getparent().tag == qn("w:pPr")]

    @staticmethod
    def _landscape(sectpr):
        return sectpr.find(qn("w:pgSz")).get(qn("w:orient")) == "landscape"

    def test_intact_breaks_untouched(self):
        pristine, prepared = self._prepared()
        processor = PackagePostProcessor(prepared.to_bytes(), pristine, prepared=prepared)
        assert processor.repair_section_breaks() is False

    def test_lost_portrait_break_restored_before_title(self):
        pristine, prepared = self._prepared()

        # Simulate the merge: portrait break lost, tag replaced by the titled table
        merged = prepared.copy()
        portrait = next(s for s in self._inline(merged.document) if not self._landscape(s))
        paragraph = portrait.getparent().getparent()
        paragraph.getparent().remove(paragraph)
        tag_paragraph = next(
            p for p in merged.document.iter(qn("w:p"))
            if element_text(p) == "{{p monthlyDistributionTable }}"
        )
        next(tag_paragraph.iter(qn("w:t"))).text = "Distribuição Mensal dos Recursos"

        processor = PackagePostProcessor(merged.to_bytes(), pristine, prepared=prepared)
        assert processor.repair_section_breaks() is True

        document = processor.package.document
        sectprs = self._inline(document)
        assert len(sectprs) == 2
        title = next(
            p for p in document.iter(qn("w:p"))
            if element_text(p) == "Distribuição Mensal dos Recursos"
        )
        restored = title.getprevious().find(qn("w:pPr")).find(qn("w:sectPr"))
        assert restored is not None
        assert not self._landscape(restored)

    def test_break_restored_before_title_with_landscape_annex(self):
        pristine = DocxPackage.from_bytes(make_template_with_landscape_annex([
            "Introdução",
            "Distribuição Mensal",
            "{{p monthlyDistributionTable }}",
            "",
            "Fim",
        ]))
        prepared = pristine.copy()
        TemplateSurgeon(prepared).prepare()

        merged = prepared.copy()
        _annex, portrait, _table = self._inline(merged.document)
        paragraph = portrait.getparent().getparent()
        paragraph.getparent().remove(paragraph)
        tag_paragraph = next(
            p for p in merged.document.iter(qn("w:p"))
            if element_text(p) == "{{p monthlyDistributionTable }}"
        )
        next(tag_paragraph.iter(qn("w:t"))).text = "Distribuição Mensal dos Recursos"

        processor = PackagePostProcessor(merged.to_bytes(), pristine, prepared=prepared)
        assert processor.repair_section_breaks() is True

        document = processor.package.document
        assert len(self._inline(document)) == 3
        title = next(
            p for p in document.iter(qn("w:p"))
            if element_text(p) == "Distribuição Mensal dos Recursos"
        )
        restored = title.getprevious().find(qn("w:pPr")).find(qn("w:sectPr"))
        assert restored is not None
        assert not self._landscape(restored)

    def test_no_landscape_section_not_repaired(self):
        pristine, prepared = self._prepared()
        merged = DocxPackage.from_bytes(make_template(["Sem seções"]))
        processor = PackagePostProcessor(merged.to_bytes(), pristine, prepared=prepared)
        assert processor.repair_section_breaks() is False


# ============================================================================
# LOGOS
# ============================================================================

class TestInjectLogos:

    def test_logo_replaces_token_in_header(self):
        merged = make_template(["Corpo"], header_text=f"Logo: {PARTNER_LOGO_TOKEN} fim")
        processor = make_processor(merged)
        logo = inspect_image(make_png(200, 100))

        assert processor.inject_logos({PARTNER_LOGO_TOKEN: logo}) == 1

        package = processor.package
        header_name = package.header_parts()[0]
        header = package.xml(header_name)
        assert PARTNER_LOGO_TOKEN not in element_text(header)
        assert element_text(header) == "Logo:  fim"

        blip = next(header.iter(BLIP))
        assert blip.get(qn("r:embed")) == "rIdPartnerLogo"
        extent = next(header.iter(qn("wp:extent")))
        assert extent.get("cy") == str(LOGO_HEIGHT_EMU)
        assert extent.get("cx") == "1296000"

        assert relationships(package, header_name)["rIdPartnerLogo"] == "media/partnerLogo.png"
        assert package.get_bytes("word/media/partnerLogo.png") == logo.data
        assert default_extensions(package).count("png") == 1

    def test_runs_keep_document_order(self):
        merged = make_template(["Corpo"], header_text=f"Antes {PARTNER_LOGO_TOKEN} depois")
        processor = make_processor(merged)
        processor.inject_logos({PARTNER_LOGO_TOKEN: inspect_image(make_png())})

        header = processor.package.xml(processor.package.header_parts()[0])
        runs = list(header.iter(qn("w:r")))
        kinds = ["drawing" if r.find(qn("w:drawing")) is not None else element_text(r) for r in runs]
        assert kinds == ["Antes ", "drawing", " depois"]

    def test_missing_token_adds_nothing(self):
        merged = make_template(["Corpo"], header_text="Sem logo")
        processor = make_processor(merged)
        assert processor.inject_logos({PARTNER_LOGO_TOKEN: inspect_image(make_png())}) == 0
        assert not processor.package.has("word/media/partnerLogo.png")


# ============================================================================
# CONTENT IMAGES
# ============================================================================

class TestEmbedContentImages:

    def test_image_embedded_at_natural_size(self, uploads, tmp_path):
        (tmp_path / "uploads" / "pic.png").write_bytes(make_png(200, 100))
        merged, registry = merged_with_image("/uploads/pic.png")

        processor = make_processor(merged, storage=uploads)
        assert processor.embed_content_images(registry) == 1

        package = processor.package
        assert package.has("word/media/contentImg1.png")
        assert relationships(package, "word/document.xml")["rIdContentImg1"] == "media/contentImg1.png"
        assert "png" in default_extensions(package)

        extent = next(package.document.iter(qn("wp:extent")))
        assert extent.get("cx") == "1905000"
        assert extent.get("cy") == "952500"

    def test_wide_image_capped(self, uploads, tmp_path):
        (tmp_path / "uploads" / "wide.png").write_bytes(make_png(1200, 300))
        merged, registry = merged_with_image("/uploads/wide.png")

        processor = make_processor(merged, storage=uploads)
        processor.embed_content_images(registry)

        extent = next(processor.package.document.iter(qn("wp:extent")))
        assert extent.get("cx") == "5040000"
        assert extent.get("cy") == "1260000"

    def test_media_named_after_actual_format(self, uploads, tmp_path):
        (tmp_path / "uploads" / "a.jpg").write_bytes(make_png())
        (tmp_path / "uploads" / "b.jpg").write_bytes(make_jpeg())
        merged, registry = merged_with_image("/uploads/a.jpg", "/uploads/b.jpg")

        processor = make_processor(merged, storage=uploads)
        assert processor.embed_content_images(registry) == 2

        package = processor.package
        assert package.has("word/media/contentImg1.png")
        assert package.has("word/media/contentImg2.jpeg")
        assert not package.has("word/media/contentImg1.jpg")
        rels = relationships(package, "word/document.xml")
        assert rels["rIdContentImg1"] == "media/contentImg1.png"
        assert rels["rIdContentImg2"] == "media/contentImg2.jpeg"
        assert registry.images[0].media_path == "word/media/contentImg1.png"

        content_types = {
            d.get("Extension").lower(): d.get("ContentType")
            for d in package.xml(CONTENT_TYPES_PART).iter(CT_DEFAULT)
        }
        assert content_types["png"] == "image/png"
        assert content_types["jpeg"] == "image/jpeg"
        assert "jpg" not in content_types

    def test_unreadable_image_removed(self, uploads):
        merged, registry = merged_with_image("/uploads/missing.png")

        processor = make_processor(merged, storage=uploads)
        assert processor.embed_content_images(registry) == 0
        assert processor.package.document.find(".//" + qn("w:drawing")) is None
        assert not processor.package.has("word/media/contentImg1.png")

    def test_drawing_ids_unique(self, uploads, tmp_path):
        (tmp_path / "uploads" / "pic.png").write_bytes(make_png())
        merged, registry = merged_with_image("/uploads/pic.png")

        processor = make_processor(merged, storage=uploads)
        processor.inject_logos({})
        processor.embed_content_images(registry)

        ids = [d.get("id") for d in processor.package.document.iter(qn("wp:docPr"))]
        assert len(ids) == len(set(ids)) == 1
