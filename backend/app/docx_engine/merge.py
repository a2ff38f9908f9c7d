"""Merge step: fill a prepared template with the work plan context."""

import io
import logging
from typing import Any, Dict

from docxtpl import DocxTemplate

logger = logging.getLogger(__name__)


class TemplateMergeError(Exception):
    """Raised when the merge engine rejects the prepared template."""


def merge_template(template_bytes: bytes, context: Dict[str, Any]) -> bytes:
    """
    Render ``context`` into the template and return the merged package.

    Values implementing ``__html__`` (markup fragments) are emitted as raw
    WordprocessingML; every other value is XML-escaped by the autoescaping
    environment. Markers with no value in the context render empty.
    """
    template = DocxTemplate(io.BytesIO(template_bytes))
    try:
        template.render(context, autoescape=True)
    except Exception as e:
        # Jinja syntax errors, undefined filters, etc.
        logger.error("Template merge failed: %s", e)
        raise TemplateMergeError(str(e)) from e

    buffer = io.BytesIO()
    template.save(buffer)
    logger.debug("Merged template with %d context keys", len(context))
    return buffer.getvalue()
