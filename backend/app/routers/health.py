"""Health-check router."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from app.services.docx_export_service import configured_template_path
from app.storage import upload_storage

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/")
async def root():
    """Health check"""
    return {"status": "ok", "message": "Work Plan Export API is running"}


@router.get("/api/v1/health")
async def health_check():
    """Detailed health check reporting the template and uploads assets."""
    template_path = configured_template_path()
    template_ok = template_path.is_file()
    uploads_ok = upload_storage.exists()

    degraded = []
    if not template_ok:
        degraded.append("template")
    if not uploads_ok:
        degraded.append("uploads")

    return {
        "status": "healthy" if template_ok else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "template": "available" if template_ok else "missing",
            "uploads": "available" if uploads_ok else "missing",
        },
        "degraded": degraded if degraded else None,
        "mode": "full" if not degraded else "degraded",
    }
