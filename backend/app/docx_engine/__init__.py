"""
Work Plan Document Engine

Template surgery, markup builders, merge and package post-processing used to
render a work plan into the institutional .docx template.
"""

from .context import build_merge_context, decode_plan_logos
from .merge import TemplateMergeError, merge_template
from .ooxml import MarkupFragment
from .package import DocxPackage
from .post_processor import PackagePostProcessor
from .rich_text import ImageRegistry, RichTextRenderer
from .template_surgeon import TemplateSurgeon

__all__ = [
    "DocxPackage",
    "ImageRegistry",
    "MarkupFragment",
    "PackagePostProcessor",
    "RichTextRenderer",
    "TemplateMergeError",
    "TemplateSurgeon",
    "build_merge_context",
    "decode_plan_logos",
    "merge_template",
]
