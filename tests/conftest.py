"""
Pytest configuration and fixtures for document tools tests.
"""

import io
import os
import tempfile
from pathlib import Path

import fitz
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from pypdf import PdfWriter

# Set test environment variables before importing the app
os.environ["STAGING_DIR"] = tempfile.mkdtemp(prefix="doc_tools_test_staging_")

from doc_tools.conversion import Err, Ok
from doc_tools.settings import Settings
from doc_tools.webapi import create_app


class FakeConverter:
    """Stands in for LibreOffice: writes <stem>.<ext> next to the input."""

    def __init__(self, fail: str | None = None, leave_partial: bool = False) -> None:
        self.fail = fail
        self.leave_partial = leave_partial
        self.calls: list[tuple[Path, str, Path]] = []

    def convert(self, input_path: Path, target_ext: str, out_dir: Path):
        self.calls.append((input_path, target_ext, out_dir))
        out = out_dir / f"{input_path.stem}.{target_ext}"
        if self.fail:
            if self.leave_partial:
                out.write_bytes(b"partial")
                return Err(self.fail, partial=out)
            return Err(self.fail)
        out.write_bytes(b"converted:" + input_path.read_bytes())
        return Ok(out)


class FakeRasterizer:
    """Stands in for pdftoppm: writes a small JPEG named after the input."""

    def __init__(self, fail: str | None = None) -> None:
        self.fail = fail

    def first_page_to_jpeg(self, input_path: Path, out_dir: Path):
        if self.fail:
            return Err(self.fail)
        out = out_dir / f"{input_path.stem}.jpg"
        Image.new("RGB", (8, 8), "white").save(out, format="JPEG")
        return Ok(out)


def make_pdf(*sizes: tuple[int, int]) -> bytes:
    """Blank PDF with one page per (width, height); sizes tell pages apart."""
    writer = PdfWriter()
    for width, height in sizes:
        writer.add_blank_page(width=width, height=height)
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def make_text_pdf(lines: list[str]) -> bytes:
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "\n".join(lines))
    data = doc.tobytes()
    doc.close()
    return data


def make_image(size: tuple[int, int], mode: str = "RGB", fmt: str = "JPEG") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def staging_dir(tmp_path):
    return tmp_path / "staging"


@pytest.fixture
def converter():
    return FakeConverter()


@pytest.fixture
def rasterizer():
    return FakeRasterizer()


@pytest.fixture
def settings(staging_dir):
    return Settings(staging_dir=staging_dir, max_upload_mb=1, log_level="DEBUG")


@pytest.fixture
def client(settings, converter, rasterizer):
    """Create a test client for an app wired to fake external tools."""
    app = create_app(settings, converter=converter, rasterizer=rasterizer)
    return TestClient(app)


@pytest.fixture
def staged(staging_dir):
    """Return a callable listing what is left in the staging area."""

    def _list() -> list[str]:
        return sorted(p.name for p in staging_dir.iterdir())

    return _list


@pytest.fixture
def sample_pdf():
    return make_pdf((612, 792))
