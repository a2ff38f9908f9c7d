"""Local uploads storage for images referenced from work plan content.

Rich-text images point at paths such as ``/uploads/diagram.png``; these are
resolved below ``UPLOADS_ROOT`` and read synchronously while the exported
package is post-processed.

Usage::

    from app.storage import upload_storage

    data = upload_storage.read_bytes("/uploads/diagram.png")
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

MAX_FILE_SIZE_BYTES = 25 * 1024 * 1024  # 25 MB


class UploadStorage:
    """Read-only access to files published under the uploads URL prefix."""

    def __init__(self, root: Optional[str] = None, url_prefix: Optional[str] = None) -> None:
        self.root = Path(root or os.getenv("UPLOADS_ROOT", "public")).resolve()
        self.url_prefix = url_prefix or os.getenv("UPLOADS_URL_PREFIX", "/uploads/")

        if not self.root.is_dir():
            logger.warning(
                "UPLOADS_ROOT %s does not exist; content images will be skipped",
                self.root,
            )

    def resolve(self, src: str) -> Optional[Path]:
        """Map ``/uploads/<name>`` to a file in the uploads folder of the root.

        Returns None for sources outside the prefix or paths that would
        escape the uploads folder.
        """
        if not src or not src.startswith(self.url_prefix):
            return None
        relative = src.split("?", 1)[0].lstrip("/")
        uploads_dir = (self.root / self.url_prefix.strip("/")).resolve()
        candidate = (self.root / relative).resolve()
        try:
            candidate.relative_to(uploads_dir)
        except ValueError:
            logger.warning("Refusing upload path outside %s: %s", uploads_dir, src)
            return None
        return candidate

    def exists(self) -> bool:
        return self.root.is_dir()

    def read_bytes(self, src: str) -> Optional[bytes]:
        """Bytes of an uploaded file, or None when it cannot be read."""
        path = self.resolve(src)
        if path is None:
            return None
        try:
            if path.stat().st_size > MAX_FILE_SIZE_BYTES:
                logger.warning("Upload %s exceeds %d bytes; skipped", src, MAX_FILE_SIZE_BYTES)
                return None
            return path.read_bytes()
        except OSError as e:
            logger.warning("Could not read upload %s: %s", src, e)
            return None


# Module-level singleton
upload_storage = UploadStorage()
