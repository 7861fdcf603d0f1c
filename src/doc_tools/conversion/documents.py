"""
In-process document mutations.

Every function takes raw bytes and returns raw bytes (or plain values) so the
service layer can run them in a worker thread without sharing state.
"""

import io
import logging
from typing import Iterable

import fitz  # PyMuPDF
from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from PIL import Image
from pypdf import PdfReader, PdfWriter

from .errors import AuthError, ConversionError

logger = logging.getLogger(__name__)

ROTATION_STEP = 90
SHEET_TITLE = "Extracted Text"

# modes Pillow can write to PNG without conversion
_PNG_MODES = {"1", "L", "LA", "I", "P", "RGB", "RGBA"}


def _reader(data: bytes) -> PdfReader:
    return PdfReader(io.BytesIO(data))


def _to_bytes(writer: PdfWriter) -> bytes:
    buf = io.BytesIO()
    writer.write(buf)
    return buf.getvalue()


def page_count(data: bytes) -> int:
    return len(_reader(data).pages)


def merge_pdfs(sources: Iterable[bytes]) -> bytes:
    """Concatenate every page of every source, in the order given."""
    writer = PdfWriter()
    for data in sources:
        writer.append(_reader(data))
    return _to_bytes(writer)


def rotate_pdf(data: bytes, step: int = ROTATION_STEP) -> bytes:
    """Turn every page by `step` degrees relative to its current angle."""
    writer = PdfWriter()
    writer.append(_reader(data))
    for page in writer.pages:
        page.rotation = (page.rotation + step) % 360
    return _to_bytes(writer)


def protect_pdf(data: bytes, password: str) -> bytes:
    writer = PdfWriter()
    writer.append(_reader(data))
    writer.encrypt(user_password=password, owner_password=password, algorithm="AES-256")
    return _to_bytes(writer)


def unlock_pdf(data: bytes, password: str) -> bytes:
    reader = _reader(data)
    if not reader.is_encrypted:
        raise ConversionError(
            "Error unlocking PDF. It might not be encrypted.",
            cause="document is not encrypted",
        )
    if not reader.decrypt(password):
        raise AuthError("Incorrect password.", cause="password does not match")
    writer = PdfWriter()
    writer.append(reader)
    return _to_bytes(writer)


def images_to_pdf(images: Iterable[bytes]) -> bytes:
    """Place each image on its own page sized to the image's pixel dimensions."""
    doc = fitz.open()
    try:
        for data in images:
            with Image.open(io.BytesIO(data)) as img:
                width, height = img.size
                if img.mode not in _PNG_MODES:
                    img = img.convert("RGB")
                png = io.BytesIO()
                img.save(png, format="PNG")
            page = doc.new_page(width=width, height=height)
            page.insert_image(page.rect, stream=png.getvalue())
        return doc.tobytes()
    finally:
        doc.close()


def pdf_text_lines(data: bytes) -> list[str]:
    """Extract text from all pages and split it on newlines."""
    with fitz.open(stream=data, filetype="pdf") as doc:
        text = "\n".join(page.get_text() for page in doc)
    text = text.strip("\n")
    if not text:
        return []
    return [line.rstrip("\r") for line in text.split("\n")]


def lines_to_workbook(lines: Iterable[str]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE
    for row, line in enumerate(lines, start=1):
        cell = ws.cell(row=row, column=1, value=ILLEGAL_CHARACTERS_RE.sub("", line))
        # text starting with "=" is still text, never a formula
        cell.data_type = "s"
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
