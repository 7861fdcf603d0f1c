"""
Tests for the document tools HTTP endpoints.

Tests cover:
- Health check
- PDF object-model tools (merge, rotate, protect, unlock)
- Placeholder tools (split, compress)
- Conversions through the fake converter and rasterizer
- Error bodies and staging-area cleanup on every exit path
"""

import io

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook
from pypdf import PdfReader

from conftest import FakeConverter, FakeRasterizer, make_image, make_pdf, make_text_pdf
from doc_tools.conversion.documents import pdf_text_lines
from doc_tools.settings import Settings
from doc_tools.webapi import create_app


def _pdf(name: str, data: bytes):
    return (name, io.BytesIO(data), "application/pdf")


def _widths(data: bytes) -> list[float]:
    return [float(page.mediabox.width) for page in PdfReader(io.BytesIO(data)).pages]


class TestHealthCheck:
    def test_health_check_returns_ok(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestMerge:
    def test_merge_two_single_page_pdfs_keeps_order(self, client, staged):
        a = make_pdf((200, 400))
        b = make_pdf((300, 400))
        response = client.post(
            "/api/merge",
            files=[("files", _pdf("a.pdf", a)), ("files", _pdf("b.pdf", b))],
        )
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert 'filename="merged.pdf"' in response.headers["content-disposition"]
        assert _widths(response.content) == [200, 300]
        assert staged() == []

    def test_merge_page_count_is_sum_of_inputs(self, client):
        inputs = [
            make_pdf((100, 100), (110, 100)),
            make_pdf((120, 100)),
            make_pdf((130, 100), (140, 100), (150, 100)),
        ]
        response = client.post(
            "/api/merge",
            files=[("files", _pdf(f"{i}.pdf", data)) for i, data in enumerate(inputs)],
        )
        assert response.status_code == 200
        assert _widths(response.content) == [100, 110, 120, 130, 140, 150]

    def test_merge_without_files_is_rejected(self, client, staged):
        response = client.post("/api/merge")
        assert response.status_code == 400
        assert response.json()["message"] == "No files uploaded."
        assert staged() == []

    def test_merge_of_corrupt_input_reports_cause(self, client, staged):
        response = client.post(
            "/api/merge",
            files=[("files", _pdf("a.pdf", make_pdf((200, 200)))), ("files", _pdf("bad.pdf", b"not a pdf"))],
        )
        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "conversion_failed"
        assert body["message"] == "Error merging PDFs."
        assert body["error"]
        assert "Traceback" not in response.text
        assert staged() == []


class TestPlaceholders:
    def test_split_returns_original_bytes(self, client, sample_pdf, staged):
        response = client.post("/api/split", files={"file": _pdf("report.pdf", sample_pdf)})
        assert response.status_code == 200
        assert response.content == sample_pdf
        assert 'filename="split-result.pdf"' in response.headers["content-disposition"]
        assert staged() == []

    def test_compress_returns_original_under_new_name(self, client, sample_pdf, staged):
        response = client.post("/api/compress", files={"file": _pdf("report.pdf", sample_pdf)})
        assert response.status_code == 200
        assert response.content == sample_pdf
        assert 'filename="compressed-report.pdf"' in response.headers["content-disposition"]
        assert staged() == []

    def test_split_without_file_is_rejected(self, client):
        response = client.post("/api/split")
        assert response.status_code == 400
        assert response.json() == {"code": "invalid_request", "message": "No file uploaded."}


class TestRotate:
    def test_rotate_adds_ninety_degrees(self, client, staged):
        response = client.post("/api/rotate", files={"file": _pdf("a.pdf", make_pdf((200, 300), (200, 300)))})
        assert response.status_code == 200
        assert [p.rotation for p in PdfReader(io.BytesIO(response.content)).pages] == [90, 90]
        assert 'filename="rotated.pdf"' in response.headers["content-disposition"]
        assert staged() == []

    def test_four_rotations_return_to_original_angle(self, client):
        data = make_pdf((200, 300))
        for _ in range(4):
            response = client.post("/api/rotate", files={"file": _pdf("a.pdf", data)})
            assert response.status_code == 200
            data = response.content
        assert [p.rotation % 360 for p in PdfReader(io.BytesIO(data)).pages] == [0]

    def test_rotate_corrupt_pdf_is_server_error(self, client, staged):
        response = client.post("/api/rotate", files={"file": _pdf("a.pdf", b"%PDF-garbage")})
        assert response.status_code == 500
        assert response.json()["message"] == "Error rotating PDF."
        assert staged() == []


class TestProtectUnlock:
    def test_protect_without_password_is_rejected_and_cleaned(self, client, sample_pdf, staged):
        response = client.post("/api/protect", files={"file": _pdf("a.pdf", sample_pdf)})
        assert response.status_code == 400
        assert response.json()["message"] == "Password is required."
        assert staged() == []

    def test_protect_encrypts_document(self, client, sample_pdf):
        response = client.post(
            "/api/protect",
            files={"file": _pdf("report.pdf", sample_pdf)},
            data={"password": "s3cret"},
        )
        assert response.status_code == 200
        assert 'filename="protected-report.pdf"' in response.headers["content-disposition"]
        assert PdfReader(io.BytesIO(response.content)).is_encrypted

    def test_protect_then_unlock_restores_document(self, client, staged):
        original = make_text_pdf(["first line", "second line"])
        protected = client.post(
            "/api/protect", files={"file": _pdf("a.pdf", original)}, data={"password": "pw"}
        )
        unlocked = client.post(
            "/api/unlock", files={"file": _pdf("a.pdf", protected.content)}, data={"password": "pw"}
        )
        assert unlocked.status_code == 200
        assert 'filename="unlocked-a.pdf"' in unlocked.headers["content-disposition"]
        reader = PdfReader(io.BytesIO(unlocked.content))
        assert not reader.is_encrypted
        assert len(reader.pages) == 1
        assert pdf_text_lines(unlocked.content) == pdf_text_lines(original)
        assert staged() == []

    def test_unlock_with_wrong_password_is_client_error(self, client, sample_pdf, staged):
        protected = client.post(
            "/api/protect", files={"file": _pdf("a.pdf", sample_pdf)}, data={"password": "right"}
        )
        response = client.post(
            "/api/unlock", files={"file": _pdf("a.pdf", protected.content)}, data={"password": "wrong"}
        )
        assert response.status_code == 400
        assert response.json()["code"] == "incorrect_password"
        assert response.json()["message"] == "Incorrect password."
        assert staged() == []

    def test_unlock_plain_pdf_is_server_error(self, client, sample_pdf, staged):
        response = client.post(
            "/api/unlock", files={"file": _pdf("a.pdf", sample_pdf)}, data={"password": "pw"}
        )
        assert response.status_code == 500
        assert response.json()["message"] == "Error unlocking PDF. It might not be encrypted."
        assert staged() == []

    def test_unlock_without_password_is_rejected(self, client, sample_pdf):
        response = client.post("/api/unlock", files={"file": _pdf("a.pdf", sample_pdf)})
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_request"

    def test_non_ascii_filename_is_encoded(self, client, sample_pdf):
        response = client.post(
            "/api/protect", files={"file": _pdf("résumé.pdf", sample_pdf)}, data={"password": "pw"}
        )
        assert response.status_code == 200
        assert "filename*=utf-8''protected-r%C3%A9sum%C3%A9.pdf" in response.headers["content-disposition"]


class TestImages:
    def test_jpg_to_pdf_one_page_per_image(self, client, staged):
        response = client.post(
            "/api/jpgtopdf",
            files=[
                ("files", ("a.jpg", io.BytesIO(make_image((40, 30))), "image/jpeg")),
                ("files", ("b.png", io.BytesIO(make_image((20, 50), "RGBA", "PNG")), "image/png")),
            ],
        )
        assert response.status_code == 200
        assert 'filename="converted.pdf"' in response.headers["content-disposition"]
        pages = PdfReader(io.BytesIO(response.content)).pages
        assert [(float(p.mediabox.width), float(p.mediabox.height)) for p in pages] == [(40, 30), (20, 50)]
        assert staged() == []

    def test_jpg_to_pdf_without_files_is_rejected(self, client):
        response = client.post("/api/jpgtopdf")
        assert response.status_code == 400
        assert response.json()["message"] == "No files uploaded."

    def test_jpg_to_pdf_with_undecodable_image(self, client, staged):
        response = client.post(
            "/api/jpgtopdf", files=[("files", ("a.jpg", io.BytesIO(b"nope"), "image/jpeg"))]
        )
        assert response.status_code == 500
        assert response.json()["message"] == "Error converting JPG to PDF."
        assert staged() == []

    def test_pdf_to_jpg_returns_first_page_image(self, client, sample_pdf, staged):
        response = client.post("/api/pdftojpg", files={"file": _pdf("report.pdf", sample_pdf)})
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/jpeg"
        assert 'filename="report.jpg"' in response.headers["content-disposition"]
        assert response.content[:2] == b"\xff\xd8"
        assert staged() == []

    def test_pdf_to_jpg_failure(self, settings, converter, sample_pdf, staged):
        app = create_app(settings, converter=converter, rasterizer=FakeRasterizer(fail="Syntax Error: bad xref"))
        response = TestClient(app).post("/api/pdftojpg", files={"file": _pdf("report.pdf", sample_pdf)})
        assert response.status_code == 500
        assert response.json() == {
            "code": "conversion_failed",
            "message": "Error converting PDF to JPG.",
            "error": "Syntax Error: bad xref",
        }
        assert staged() == []


class TestOfficeConversions:
    @pytest.mark.parametrize(
        "path, name, target, media_type",
        [
            ("/api/pdftoword", "report.pdf", "docx", "application/vnd.openxmlformats-officedocument.wordprocessingml.document"),
            ("/api/wordtopdf", "report.docx", "pdf", "application/pdf"),
            ("/api/exceltopdf", "report.xlsx", "pdf", "application/pdf"),
        ],
    )
    def test_conversion_streams_converter_output(self, client, converter, staged, path, name, target, media_type):
        response = client.post(path, files={"file": (name, io.BytesIO(b"payload"), "application/octet-stream")})
        assert response.status_code == 200
        assert response.content == b"converted:payload"
        assert response.headers["content-type"].startswith(media_type)
        assert f'filename="report.{target}"' in response.headers["content-disposition"]
        [(input_path, called_target, out_dir)] = converter.calls
        assert called_target == target
        assert input_path.parent == out_dir
        assert staged() == []

    def test_converter_failure_removes_partial_output(self, settings, rasterizer, sample_pdf, staged):
        failing = FakeConverter(fail="Error: source file could not be loaded", leave_partial=True)
        app = create_app(settings, converter=failing, rasterizer=rasterizer)
        response = TestClient(app).post("/api/pdftoword", files={"file": _pdf("report.pdf", sample_pdf)})
        assert response.status_code == 500
        body = response.json()
        assert body["message"] == "Error converting file to docx."
        assert body["error"] == "Error: source file could not be loaded"
        assert staged() == []


class TestPdfToExcel:
    def test_three_line_pdf_gives_three_rows(self, client, staged):
        data = make_text_pdf(["alpha", "beta", "gamma"])
        response = client.post("/api/pdftoexcel", files={"file": _pdf("a.pdf", data)})
        assert response.status_code == 200
        assert 'filename="converted.xlsx"' in response.headers["content-disposition"]
        ws = load_workbook(io.BytesIO(response.content)).active
        assert ws.title == "Extracted Text"
        assert list(ws.iter_rows(values_only=True)) == [("alpha",), ("beta",), ("gamma",)]
        assert staged() == []

    def test_formula_like_text_is_not_a_formula(self, client):
        data = make_text_pdf(["=1+1", "total"])
        response = client.post("/api/pdftoexcel", files={"file": _pdf("a.pdf", data)})
        assert response.status_code == 200
        ws = load_workbook(io.BytesIO(response.content)).active
        assert ws["A1"].value == "=1+1"
        assert ws["A1"].data_type == "s"


class TestUploadLimits:
    def test_oversize_upload_is_rejected_and_removed(self, client, staged):
        big = b"0" * (1024 * 1024 + 1)
        response = client.post("/api/rotate", files={"file": _pdf("big.pdf", big)})
        assert response.status_code == 413
        assert response.json()["code"] == "payload_too_large"
        assert staged() == []

    def test_staging_dir_is_created_at_startup(self, tmp_path, converter, rasterizer):
        target = tmp_path / "nested" / "staging"
        create_app(Settings(staging_dir=target), converter=converter, rasterizer=rasterizer)
        assert target.is_dir()
