"""DOCX export service for work plans.

Fills the institutional work plan template with a plan's data. The template
is prepared by tree surgery, merged with docxtpl and finished by the package
post-processor, which embeds logos and rich-text images.

Usage::

    from app.services.docx_export_service import DocxExportService

    docx_bytes = DocxExportService.generate_work_plan_docx(plan)
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from app.docx_engine.context import build_merge_context, decode_plan_logos
from app.docx_engine.merge import merge_template
from app.docx_engine.package import DocxPackage
from app.docx_engine.post_processor import PackagePostProcessor
from app.docx_engine.rich_text import ImageRegistry
from app.docx_engine.template_surgeon import TemplateSurgeon
from app.models.plan import PlanData
from app.storage import UploadStorage

load_dotenv()

logger = logging.getLogger(__name__)

_DEFAULT_TEMPLATE_PATH = (
    Path(__file__).resolve().parent.parent / "templates" / "work_plan_template.docx"
)


class TemplateNotFoundError(RuntimeError):
    """The work plan template asset is missing or unreadable."""


def configured_template_path() -> Path:
    """Template location from ``WORK_PLAN_TEMPLATE_PATH`` or the packaged default."""
    return Path(os.getenv("WORK_PLAN_TEMPLATE_PATH") or _DEFAULT_TEMPLATE_PATH)


class DocxExportService:
    """Static methods for generating DOCX exports of work plans."""

    @staticmethod
    def load_template(template_path: Optional[Union[str, Path]] = None) -> bytes:
        """Read the template bytes.

        Raises:
            TemplateNotFoundError: The file does not exist or cannot be read.
        """
        path = Path(template_path) if template_path else configured_template_path()
        try:
            return path.read_bytes()
        except OSError as e:
            logger.error("Work plan template unavailable at %s: %s", path, e)
            raise TemplateNotFoundError(f"Work plan template not found: {path}") from e

    @staticmethod
    def generate_work_plan_docx(
        plan: PlanData,
        template_path: Optional[Union[str, Path]] = None,
        storage: Optional[UploadStorage] = None,
    ) -> bytes:
        """Generate the filled work plan document.

        Args:
            plan: Validated work plan.
            template_path: Template file; ``WORK_PLAN_TEMPLATE_PATH`` or the
                packaged template when omitted.
            storage: Source of rich-text upload images; the module-level
                upload storage when omitted.

        Returns:
            The DOCX file contents as bytes.

        Raises:
            TemplateNotFoundError: The template cannot be read.
            zipfile.BadZipFile: The template is not a valid package.
            app.docx_engine.merge.TemplateMergeError: docxtpl rejected the
                prepared template.
        """
        template_bytes = DocxExportService.load_template(template_path)

        pristine = DocxPackage.from_bytes(template_bytes)
        working = pristine.copy()
        TemplateSurgeon(working).prepare()

        # Fresh per render; threaded through context building and post-processing
        registry = ImageRegistry()
        logos = decode_plan_logos(plan)
        context = build_merge_context(plan, registry, logos)

        merged = merge_template(working.to_bytes(), context)

        processor = PackagePostProcessor(merged, pristine, prepared=working, storage=storage)
        output = processor.process(logos, registry)

        logger.info(
            "Generated work plan DOCX for %r (%d bytes, %d content image(s))",
            plan.project_name or plan.project_nickname or "untitled",
            len(output),
            len(registry),
        )
        return output
