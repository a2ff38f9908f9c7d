"""Image decoding and sizing helpers for logos and content images."""

import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image as PILImage
from PIL import UnidentifiedImageError

from app.docx_engine.ooxml import EMU_PER_PIXEL

logger = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r"^data:(image/[\w.+-]+)?(;[\w=.-]+)*;base64,(.*)$", re.DOTALL)

# Pillow format -> (extension, content type)
_FORMATS = {
    "PNG": ("png", "image/png"),
    "JPEG": ("jpeg", "image/jpeg"),
    "GIF": ("gif", "image/gif"),
    "BMP": ("bmp", "image/bmp"),
    "TIFF": ("tiff", "image/tiff"),
}


@dataclass
class ImageInfo:
    """Decoded picture with the metadata needed to embed it."""

    data: bytes
    width_px: int
    height_px: int
    extension: str
    content_type: str


def inspect_image(data: Optional[bytes]) -> Optional[ImageInfo]:
    """Identify ``data`` with Pillow; None when it is not a supported picture."""
    if not data:
        return None
    try:
        with PILImage.open(io.BytesIO(data)) as img:
            width, height = img.size
            fmt = img.format
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug("Unreadable image data: %s", e)
        return None
    if fmt not in _FORMATS or not width or not height:
        logger.debug("Unsupported image format %s", fmt)
        return None
    extension, content_type = _FORMATS[fmt]
    return ImageInfo(data, width, height, extension, content_type)


def decode_data_uri(value: Optional[str]) -> Optional[bytes]:
    """Bytes of a ``data:image/...;base64,`` URI or of a bare base64 string."""
    if not value or not value.strip():
        return None
    value = value.strip()
    match = _DATA_URI_RE.match(value)
    payload = match.group(3) if match else value
    try:
        return base64.b64decode(re.sub(r"\s+", "", payload), validate=True)
    except (binascii.Error, ValueError):
        logger.debug("Logo value is not valid base64")
        return None


def decode_logo(value: Optional[str]) -> Optional[ImageInfo]:
    return inspect_image(decode_data_uri(value))


def fit_box(width_px: int, height_px: int, max_width_emu: int, max_height_emu: Optional[int] = None) -> Tuple[int, int]:
    """
    Scale a picture to EMU keeping its aspect ratio.

    Without ``max_height_emu`` the picture keeps its natural size unless it
    is wider than ``max_width_emu``. With it, the picture is fitted to the
    box height first and then capped by the width.
    """
    width = width_px * EMU_PER_PIXEL
    height = height_px * EMU_PER_PIXEL
    if max_height_emu is not None:
        width = int(width * max_height_emu / height)
        height = max_height_emu
    if width > max_width_emu:
        height = int(height * max_width_emu / width)
        width = max_width_emu
    return int(width), int(height)
