"""
In-memory view of a .docx package.

Parts are read once from the zip archive; XML parts are parsed lazily into
lxml trees, transformed in place by the surgeon / post-processor and
serialised once when the package is written back.
"""

import io
import logging
import re
import zipfile
from typing import Dict, Iterator, List, Optional

from lxml import etree

logger = logging.getLogger(__name__)

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
PKG_REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
CT_NS = "http://schemas.openxmlformats.org/package/2006/content-types"

IMAGE_REL_TYPE = (
    "http://schemas.openxmlformats.org/officeDocument/2006/relationships/image"
)

DOCUMENT_PART = "word/document.xml"
DOCUMENT_RELS_PART = "word/_rels/document.xml.rels"
CONTENT_TYPES_PART = "[Content_Types].xml"

_HEADER_FOOTER_RE = re.compile(r"^word/(header|footer)\d*\.xml$")

_PARSER = etree.XMLParser(remove_blank_text=False, resolve_entities=False)


def w(tag: str) -> str:
    """Clark name of a WordprocessingML tag: ``w("p")`` -> ``{...main}p``."""
    return f"{{{W_NS}}}{tag}"


def rels_part_for(part_name: str) -> str:
    """``word/header1.xml`` -> ``word/_rels/header1.xml.rels``."""
    folder, _, filename = part_name.rpartition("/")
    return f"{folder}/_rels/{filename}.rels"


class DocxPackage:
    """Ordered mapping of part name to bytes, with cached XML trees."""

    def __init__(self, parts: Dict[str, bytes]):
        self._parts: Dict[str, bytes] = dict(parts)
        self._trees: Dict[str, etree._Element] = {}

    @classmethod
    def from_bytes(cls, data: bytes) -> "DocxPackage":
        """Read a package; raises ``zipfile.BadZipFile`` for invalid input."""
        parts: Dict[str, bytes] = {}
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                parts[info.filename] = archive.read(info.filename)
        return cls(parts)

    # ------------------------------------------------------------------
    # Parts
    # ------------------------------------------------------------------

    def names(self) -> List[str]:
        return list(self._parts)

    def has(self, name: str) -> bool:
        return name in self._parts

    def get_bytes(self, name: str) -> Optional[bytes]:
        if name in self._trees:
            return self._serialize(self._trees[name])
        return self._parts.get(name)

    def set_bytes(self, name: str, data: bytes) -> None:
        self._parts[name] = data
        self._trees.pop(name, None)

    def header_footer_parts(self) -> List[str]:
        return [name for name in self._parts if _HEADER_FOOTER_RE.match(name)]

    def header_parts(self) -> List[str]:
        return [name for name in self.header_footer_parts() if "/header" in name]

    # ------------------------------------------------------------------
    # XML
    # ------------------------------------------------------------------

    def xml(self, name: str) -> Optional[etree._Element]:
        """Parsed root of an XML part (cached), or None if the part is absent."""
        if name in self._trees:
            return self._trees[name]
        data = self._parts.get(name)
        if data is None:
            return None
        root = etree.fromstring(data, parser=_PARSER)
        self._trees[name] = root
        return root

    def set_xml(self, name: str, root: etree._Element) -> None:
        if name not in self._parts:
            self._parts[name] = b""
        self._trees[name] = root

    def iter_xml(self, names) -> Iterator[etree._Element]:
        for name in names:
            root = self.xml(name)
            if root is not None:
                yield root

    @property
    def document(self) -> Optional[etree._Element]:
        return self.xml(DOCUMENT_PART)

    @staticmethod
    def _serialize(root: etree._Element) -> bytes:
        return etree.tostring(
            root, xml_declaration=True, encoding="UTF-8", standalone=True
        )

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def copy(self) -> "DocxPackage":
        parts = {name: self.get_bytes(name) for name in self._parts}
        return DocxPackage(parts)

    def to_bytes(self) -> bytes:
        buffer = io.BytesIO()
        ordered = sorted(self._parts, key=lambda n: n != CONTENT_TYPES_PART)
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for name in ordered:
                archive.writestr(name, self.get_bytes(name))
        return buffer.getvalue()
