"""Export router for DOCX generation of work plans.

Accepts the work plan as the request body and streams back the filled
institutional template produced by DocxExportService.
"""

import io
import logging
import re
import unicodedata
from urllib.parse import quote

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse

from app.deps import _safe_error
from app.models.plan import PlanData
from app.services.docx_export_service import DocxExportService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["exports"])

# DOCX content type
_DOCX_MEDIA_TYPE = (
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
)

_SLUG_MAX_LENGTH = 60


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_slug_char(char: str) -> bool:
    if char in "-_" or char.isdigit():
        return True
    # Letters, including accented Latin letters
    return char.isalpha() and unicodedata.name(char, "").startswith("LATIN")


def make_plan_slug(plan: PlanData) -> str:
    """Filename slug from the nickname, then the name, then ``plano``."""
    raw = (plan.project_nickname or "").strip() or (plan.project_name or "").strip()
    raw = re.sub(r"\s+", "-", raw.lower())
    slug = "".join(c for c in raw if _is_slug_char(c))
    slug = re.sub(r"-{2,}", "-", slug).strip("-")[:_SLUG_MAX_LENGTH]
    return slug or "plano"


def _content_disposition(filename: str) -> str:
    ascii_name = (
        unicodedata.normalize("NFKD", filename).encode("ascii", "ignore").decode("ascii")
    )
    if ascii_name == filename:
        return f'attachment; filename="{filename}"'
    # Non-ASCII names also go in the RFC 5987 form
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/work-plans/export/docx")
def export_work_plan_docx(plan: PlanData):
    """Export a work plan as a filled DOCX document.

    Args:
        plan: Complete work plan (camelCase JSON body).

    Returns:
        StreamingResponse with the DOCX file.

    Raises:
        HTTPException 422: The body is not a valid work plan.
        HTTPException 500: Document generation failed.
    """
    try:
        docx_bytes = DocxExportService.generate_work_plan_docx(plan)
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=_safe_error("work plan DOCX export", e),
        ) from e

    filename = f"plano-{make_plan_slug(plan)}.docx"

    return StreamingResponse(
        io.BytesIO(docx_bytes),
        media_type=_DOCX_MEDIA_TYPE,
        headers={"Content-Disposition": _content_disposition(filename)},
    )
