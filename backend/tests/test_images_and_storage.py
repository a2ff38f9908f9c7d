"""
Unit Tests for image helpers and the uploads storage

Usage:
    cd backend && pytest tests/test_images_and_storage.py -v
"""

import pytest
import sys
import os
import base64

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.docx_engine.images import decode_data_uri, decode_logo, fit_box, inspect_image
from app.storage import UploadStorage
from docx_factories import make_png


class TestDecoding:

    def test_data_uri(self):
        png = make_png(10, 10)
        uri = "data:image/png;base64," + base64.b64encode(png).decode("ascii")
        assert decode_data_uri(uri) == png

    def test_bare_base64_with_whitespace(self):
        png = make_png(10, 10)
        encoded = base64.b64encode(png).decode("ascii")
        assert decode_data_uri(encoded[:20] + "\n" + encoded[20:]) == png

    @pytest.mark.parametrize("value", [None, "", "   ", "data:image/png;base64,%%%"])
    def test_invalid_values(self, value):
        assert decode_data_uri(value) is None

    def test_decode_logo_metadata(self):
        uri = "data:image/png;base64," + base64.b64encode(make_png(120, 40)).decode("ascii")
        info = decode_logo(uri)
        assert (info.width_px, info.height_px) == (120, 40)
        assert info.extension == "png"
        assert info.content_type == "image/png"

    def test_non_image_bytes(self):
        assert inspect_image(b"plain text, not a picture") is None
        assert inspect_image(None) is None


class TestFitBox:

    def test_natural_size_when_narrow(self):
        assert fit_box(100, 50, 5040000) == (952500, 476250)

    def test_width_capped(self):
        assert fit_box(1000, 500, 4762500) == (4762500, 2381250)

    def test_fit_to_height_then_width(self):
        assert fit_box(200, 100, 1944000, 648000) == (1296000, 648000)
        assert fit_box(1000, 100, 1944000, 648000) == (1944000, 194400)


class TestUploadStorage:

    @pytest.fixture
    def storage(self, tmp_path):
        (tmp_path / "uploads").mkdir()
        (tmp_path / "uploads" / "a.png").write_bytes(b"data")
        (tmp_path / "secret.txt").write_bytes(b"secret")
        return UploadStorage(root=str(tmp_path))

    def test_reads_upload(self, storage):
        assert storage.read_bytes("/uploads/a.png") == b"data"
        assert storage.read_bytes("/uploads/a.png?v=2") == b"data"

    def test_outside_prefix(self, storage):
        assert storage.resolve("/static/a.png") is None
        assert storage.read_bytes("https://example.com/a.png") is None

    def test_traversal_refused(self, storage):
        assert storage.resolve("/uploads/../../etc/passwd") is None
        assert storage.read_bytes("/uploads/../secret.txt") is None

    def test_missing_file(self, storage):
        assert storage.read_bytes("/uploads/none.png") is None
