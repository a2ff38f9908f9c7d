"""
Test data factories shared by the document engine tests.

Templates are built on the fly with python-docx so the tests never depend
on the institutional template asset.
"""

import io
from typing import Any, Dict, Iterable, List, Optional, Sequence

from docx import Document
from docx.enum.section import WD_ORIENT, WD_SECTION
from docx.oxml.ns import qn
from PIL import Image as PILImage


# ============================================================================
# TEMPLATES
# ============================================================================

def add_split_paragraph(doc, *pieces: str):
    """Paragraph whose text is spread over one run per piece."""
    paragraph = doc.add_paragraph()
    for piece in pieces:
        paragraph.add_run(piece)
    return paragraph


def document_bytes(doc) -> bytes:
    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def make_template(
    paragraphs: Sequence[Any] = (),
    header_text: Optional[str] = None,
) -> bytes:
    """
    Template with one body paragraph per entry.

    A string entry becomes a single-run paragraph; a tuple entry becomes a
    paragraph with one run per element.
    """
    doc = Document()
    if header_text is not None:
        doc.sections[0].header.paragraphs[0].text = header_text
    for entry in paragraphs:
        if isinstance(entry, tuple):
            add_split_paragraph(doc, *entry)
        else:
            doc.add_paragraph(entry)
    return document_bytes(doc)


def make_template_with_landscape_annex(paragraphs: Sequence[str]) -> bytes:
    """Template opening with a landscape annex section, then ``paragraphs``."""
    doc = Document()
    doc.add_paragraph("Anexo largo")
    annex = doc.sections[0]
    annex.orientation = WD_ORIENT.LANDSCAPE
    annex.page_width, annex.page_height = annex.page_height, annex.page_width

    body = doc.add_section(WD_SECTION.NEW_PAGE)
    body.orientation = WD_ORIENT.PORTRAIT
    body.page_width, body.page_height = body.page_height, body.page_width
    for text in paragraphs:
        doc.add_paragraph(text)
    return document_bytes(doc)


FINANCIAL_BODY_TAGS = (
    "financialSummaryTable",
    "directPersonnelTable",
    "indirectPersonnelTable",
    "personnelHoursTable",
    "equipmentTable",
    "softwareTable",
    "consumablesTable",
    "travelTable",
    "trainingTable",
    "servicesTable",
    "otherExpensesTable",
)


def make_work_plan_template() -> bytes:
    """A small template exercising every kind of marker."""
    doc = Document()
    doc.sections[0].header.paragraphs[0].text = "{{ partnerLogo }} | {{ foundationLogo }}"

    doc.add_paragraph("Projeto: {{ projectName }}")
    add_split_paragraph(doc, "Coordenação: {{ coordinator", "Institution }}")
    doc.add_paragraph("Empresa: {{ coordinatorInstitution }}")
    doc.add_paragraph("Valor: {{ totalValue }}")
    doc.add_paragraph("Execução: {{ executionPeriod }}")
    doc.add_paragraph("Patentes [{{ patents_check }}] Qtd: {{ patents_qty }}")
    doc.add_paragraph("SW [{{ sw_dev_check }}] Produto [{{ product_dev_check }}]")

    doc.add_paragraph("Motivação:")
    doc.add_paragraph("{{p motivation }}")

    doc.add_paragraph("{%p for activity in activities %}")
    doc.add_paragraph("{{ activity.name }}")
    doc.add_paragraph("{%p endfor %}")

    doc.add_paragraph("{#professionals}")
    doc.add_paragraph("{name}")
    doc.add_paragraph("{/professionals}")

    doc.add_paragraph("{{p cronogramaTable }}")
    for tag in FINANCIAL_BODY_TAGS:
        doc.add_paragraph(f"{{{{p {tag} }}}}")

    doc.add_paragraph("Distribuição Mensal")
    doc.add_paragraph("{{p monthlyDistributionTable }}")
    doc.add_paragraph("")
    doc.add_paragraph("{{p disbursementScheduleTable }}")
    doc.add_paragraph("Observação: use {chaves} livremente.")
    return document_bytes(doc)


# ============================================================================
# IMAGES
# ============================================================================

def make_png(width: int = 200, height: int = 100) -> bytes:
    buffer = io.BytesIO()
    PILImage.new("RGB", (width, height), "navy").save(buffer, format="PNG")
    return buffer.getvalue()


def make_jpeg(width: int = 200, height: int = 100) -> bytes:
    buffer = io.BytesIO()
    PILImage.new("RGB", (width, height), "teal").save(buffer, format="JPEG")
    return buffer.getvalue()


# ============================================================================
# RICH TEXT
# ============================================================================

def text_node(text: str, *marks: str) -> Dict[str, Any]:
    node: Dict[str, Any] = {"type": "text", "text": text}
    if marks:
        node["marks"] = [{"type": mark} for mark in marks]
    return node


def paragraph_node(*children: Any) -> Dict[str, Any]:
    content = [text_node(c) if isinstance(c, str) else c for c in children]
    return {"type": "paragraph", "content": content}


def list_node(items: Iterable[str], ordered: bool = False) -> Dict[str, Any]:
    return {
        "type": "orderedList" if ordered else "bulletList",
        "content": [
            {"type": "listItem", "content": [paragraph_node(item)]} for item in items
        ],
    }


def doc_node(*blocks: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "doc", "content": list(blocks)}


# ============================================================================
# INSPECTION
# ============================================================================

def element_text(element) -> str:
    return "".join(t.text or "" for t in element.iter(qn("w:t")))


def body_paragraph_texts(root) -> List[str]:
    """Text of every paragraph directly under ``w:body``."""
    body = root.find(qn("w:body"))
    return [element_text(p) for p in body.findall(qn("w:p"))]


def all_paragraph_texts(docx_bytes: bytes) -> List[str]:
    """Text of every paragraph of a rendered document, tables included."""
    doc = Document(io.BytesIO(docx_bytes))
    return [element_text(p) for p in doc.element.body.iter(qn("w:p"))]
