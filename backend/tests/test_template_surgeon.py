"""
Unit Tests for template surgery

Tests the preparation of a template package before the merge:
- Known template defect corrections
- Replacement of activities / professionals loops by injection markers
- Block marker isolation
- Landscape section around the monthly distribution table
- Consolidation of markers split across runs
- Escaping of author-typed braces
- Idempotence of the whole preparation

Usage:
    cd backend && pytest tests/test_template_surgeon.py -v
"""

import pytest
import sys
import os

from docx import Document
from docx.oxml.ns import qn

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.docx_engine.markers import CLOSE_BRACE_SENTINEL, OPEN_BRACE_SENTINEL
from app.docx_engine.package import DOCUMENT_PART, DocxPackage
from app.docx_engine.template_surgeon import ParagraphText, TemplateFix, TemplateSurgeon
from docx_factories import (
    body_paragraph_texts,
    document_bytes,
    element_text,
    make_template,
    make_template_with_landscape_annex,
)


# ============================================================================
# FIXTURES AND HELPERS
# ============================================================================

def prepare(template_bytes: bytes) -> DocxPackage:
    package = DocxPackage.from_bytes(template_bytes)
    TemplateSurgeon(package).prepare()
    return package


def inline_sectprs(package: DocxPackage):
    return [
        s for s in package.document.iter(qn("w:sectPr"))
        if s.getparent().tag == qn("w:pPr")
    ]


def page_size(sectpr):
    pgsz = sectpr.find(qn("w:pgSz"))
    return pgsz.get(qn("w:w")), pgsz.get(qn("w:h")), pgsz.get(qn("w:orient"))


@pytest.fixture
def landscape_template():
    return make_template([
        "Introdução",
        "Distribuição Mensal",
        "{{p monthlyDistributionTable }}",
        "",
        "Cronograma de desembolso",
    ])


# ============================================================================
# PARAGRAPH TEXT VIEW
# ============================================================================

class TestParagraphText:

    def _paragraph(self, *pieces):
        doc = Document()
        paragraph = doc.add_paragraph()
        for piece in pieces:
            paragraph.add_run(piece)
        return paragraph._p

    def test_text_spans_runs(self):
        view = ParagraphText(self._paragraph("{{ proj", "ectName", " }}"))
        assert view.text == "{{ projectName }}"
        assert view.spans_nodes(0, len(view.text)) is True
        assert view.spans_nodes(0, 5) is False

    def test_replace_across_runs(self):
        paragraph = self._paragraph("Nome: {{ proj", "ectName }} fim")
        view = ParagraphText(paragraph)
        start = view.text.index("{{")
        end = view.text.index("}}") + 2
        view.replace(start, end, "{{ projectName }}")

        texts = [t.text for t in paragraph.iter(qn("w:t"))]
        assert texts == ["Nome: {{ projectName }}", " fim"]
        assert view.text == "Nome: {{ projectName }} fim"


# ============================================================================
# KNOWN DEFECTS
# ============================================================================

class TestKnownDefects:

    def test_second_institution_marker_becomes_company(self):
        package = prepare(make_template([
            "Instituição: {{ coordinatorInstitution }}",
            "Empresa: {{ coordinatorInstitution }}",
        ]))
        texts = body_paragraph_texts(package.document)
        assert texts[0] == "Instituição: {{ coordinatorInstitution }}"
        assert texts[1] == "Empresa: {{ coordinatorCompany }}"

    def test_single_institution_marker_untouched(self):
        package = prepare(make_template(["Instituição: {{ coordinatorInstitution }}"]))
        assert body_paragraph_texts(package.document)[0] == "Instituição: {{ coordinatorInstitution }}"

    def test_legacy_raw_tag_converted(self):
        package = prepare(make_template(["{@motivation}"]))
        assert body_paragraph_texts(package.document)[0] == "{{p motivation }}"

    def test_custom_fix_list(self):
        package = DocxPackage.from_bytes(make_template(["Versão ANTIGA"]))
        fixes = (TemplateFix(r"ANTIGA", "NOVA"),)
        TemplateSurgeon(package, fixes=fixes).prepare()
        assert body_paragraph_texts(package.document)[0] == "Versão NOVA"


# ============================================================================
# REPEATING REGIONS
# ============================================================================

class TestRepeatingRegions:

    def test_activities_loop_replaced(self):
        package = prepare(make_template([
            "Antes",
            "{%p for activity in activities %}",
            "{{ activity.name }}",
            "{{ activity.description }}",
            "{%p endfor %}",
            "Depois",
        ]))
        texts = body_paragraph_texts(package.document)
        assert texts[:3] == ["Antes", "{{p activitiesContent }}", "Depois"]

    def test_loop_tokens_split_across_runs(self):
        package = prepare(make_template([
            ("{%p for activity ", "in activities %}"),
            "{{ activity.name }}",
            ("{%p end", "for %}"),
        ]))
        assert body_paragraph_texts(package.document)[0] == "{{p activitiesContent }}"

    def test_nested_loop_matched_by_depth(self):
        package = prepare(make_template([
            "{%p for activity in activities %}",
            "{%p for sub in activity.subActivities %}",
            "{{ sub.name }}",
            "{%p endfor %}",
            "{{ activity.justification }}",
            "{%p endfor %}",
            "Fim",
        ]))
        texts = body_paragraph_texts(package.document)
        assert texts[:2] == ["{{p activitiesContent }}", "Fim"]

    def test_legacy_professionals_loop(self):
        package = prepare(make_template(["{#professionals}", "{name}", "{/professionals}"]))
        assert body_paragraph_texts(package.document)[0] == "{{p professionalsContent }}"

    def test_loop_inside_table_replaces_table(self):
        doc = Document()
        doc.add_paragraph("Equipe")
        table = doc.add_table(rows=3, cols=1)
        table.cell(0, 0).text = "{%p for professional in professionals %}"
        table.cell(1, 0).text = "{{ professional.name }}"
        table.cell(2, 0).text = "{%p endfor %}"
        package = prepare(document_bytes(doc))

        body = package.document.find(qn("w:body"))
        assert body.find(qn("w:tbl")) is None
        assert "{{p professionalsContent }}" in body_paragraph_texts(package.document)

    def test_unterminated_loop_left_alone(self):
        package = prepare(make_template(["{%p for activity in activities %}", "{{ activity.name }}"]))
        texts = body_paragraph_texts(package.document)
        assert texts[0] == "{%p for activity in activities %}"


# ============================================================================
# BLOCK MARKERS
# ============================================================================

class TestBlockMarkers:

    def test_inline_block_marker_gets_own_paragraph(self):
        package = prepare(make_template(["Motivação: {{ motivation }}"]))
        texts = body_paragraph_texts(package.document)
        assert texts[:2] == ["Motivação: ", "{{p motivation }}"]

    def test_two_markers_in_one_paragraph(self):
        package = prepare(make_template(["{{p scope }}{{p strategies }}"]))
        texts = body_paragraph_texts(package.document)
        assert texts[:2] == ["{{p scope }}", "{{p strategies }}"]

    def test_marker_alone_in_cell_followed_by_paragraph(self):
        doc = Document()
        table = doc.add_table(rows=1, cols=1)
        table.cell(0, 0).text = "{{p expectedResults }}"
        package = prepare(document_bytes(doc))

        tc = package.document.find(".//" + qn("w:tc"))
        paragraphs = tc.findall(qn("w:p"))
        assert len(paragraphs) == 2
        assert element_text(paragraphs[0]) == "{{p expectedResults }}"


# ============================================================================
# LANDSCAPE SECTION
# ============================================================================

class TestLandscapeSection:

    def test_section_breaks_inserted(self, landscape_template):
        package = prepare(landscape_template)
        sectprs = inline_sectprs(package)
        assert len(sectprs) == 2

        portrait, landscape = sectprs
        width, height, orient = page_size(portrait)
        assert orient != "landscape" and int(width) < int(height)
        width, height, orient = page_size(landscape)
        assert orient == "landscape" and int(width) > int(height)
        assert landscape.find(qn("w:type")).get(qn("w:val")) == "nextPage"

    def test_title_removed_and_empty_paragraph_reused(self, landscape_template):
        package = prepare(landscape_template)
        texts = body_paragraph_texts(package.document)
        assert "Distribuição Mensal" not in texts
        # portrait break, tag, landscape break (the former empty paragraph), rest
        assert texts == [
            "Introdução",
            "",
            "{{p monthlyDistributionTable }}",
            "",
            "Cronograma de desembolso",
        ]

    def test_no_marker_no_section(self):
        package = prepare(make_template(["Sem tabela mensal"]))
        assert inline_sectprs(package) == []

    def test_existing_landscape_annex_does_not_block(self):
        template = make_template_with_landscape_annex([
            "Introdução",
            "Distribuição Mensal",
            "{{p monthlyDistributionTable }}",
            "",
            "Fim",
        ])
        package = prepare(template)

        sectprs = inline_sectprs(package)
        assert [page_size(s)[2] == "landscape" for s in sectprs] == [True, False, True]

        tag = next(
            p for p in package.document.iter(qn("w:p"))
            if element_text(p) == "{{p monthlyDistributionTable }}"
        )
        following = tag.getnext().find(qn("w:pPr")).find(qn("w:sectPr"))
        assert following is sectprs[2]
        assert tag.getprevious().find(qn("w:pPr")).find(qn("w:sectPr")) is sectprs[1]

        # A second run leaves the sections as they are
        TemplateSurgeon(package).prepare()
        assert len(inline_sectprs(package)) == 3


# ============================================================================
# CONSOLIDATION AND BRACES
# ============================================================================

class TestConsolidationAndBraces:

    def test_split_marker_consolidated(self):
        package = prepare(make_template([("Projeto: {{ proj", "ectName }}")]))
        paragraph = package.document.find(qn("w:body")).find(qn("w:p"))
        assert any("{{ projectName }}" in (t.text or "") for t in paragraph.iter(qn("w:t")))

    def test_header_markers_consolidated(self):
        template = make_template(["Corpo"], header_text="{{ partnerLogo }}")
        package = DocxPackage.from_bytes(template)
        header_name = package.header_parts()[0]
        first_t = next(package.xml(header_name).iter(qn("w:t")))
        first_t.text = "{{ partner"
        first_t.addnext(first_t.makeelement(qn("w:t"), {}))
        first_t.getnext().text = "Logo }}"

        TemplateSurgeon(package).prepare()
        texts = [t.text for t in package.xml(header_name).iter(qn("w:t"))]
        assert "{{ partnerLogo }}" in texts

    def test_stray_braces_escaped(self):
        package = prepare(make_template(["Use {chaves} e {{ projectName }}"]))
        text = body_paragraph_texts(package.document)[0]
        assert text == (
            f"Use {OPEN_BRACE_SENTINEL}chaves{CLOSE_BRACE_SENTINEL} e {{{{ projectName }}}}"
        )

    def test_unknown_marker_escaped(self):
        package = prepare(make_template(["{{ notAMarker }}"]))
        text = body_paragraph_texts(package.document)[0]
        assert "{" not in text and "}" not in text
        assert text.count(OPEN_BRACE_SENTINEL) == 2


# ============================================================================
# IDEMPOTENCE
# ============================================================================

def test_prepare_is_idempotent():
    package = DocxPackage.from_bytes(make_template([
        "Instituição: {{ coordinatorInstitution }}",
        "Empresa: {{ coordinatorInstitution }}",
        ("Projeto: {{ proj", "ectName }}"),
        "Motivação: {{ motivation }}",
        "{%p for activity in activities %}",
        "{{ activity.name }}",
        "{%p endfor %}",
        "Distribuição Mensal",
        "{{p monthlyDistributionTable }}",
        "Use {chaves}",
    ]))
    surgeon = TemplateSurgeon(package)
    surgeon.prepare()
    first = package.get_bytes(DOCUMENT_PART)
    surgeon.prepare()
    assert package.get_bytes(DOCUMENT_PART) == first
