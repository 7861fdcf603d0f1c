import os
import re
from dataclasses import dataclass
from urllib.parse import unquote

import requests
import streamlit as st

API_BASE = os.getenv("DOC_TOOLS_API_BASE", os.getenv("API_BASE", "http://localhost:8080")).rstrip("/")
REQUEST_TIMEOUT = float(os.getenv("DOC_TOOLS_UI_TIMEOUT", "300"))


@dataclass(frozen=True)
class Tool:
    label: str
    path: str
    multiple: bool
    types: tuple[str, ...]
    needs_password: bool = False


TOOLS: tuple[Tool, ...] = (
    Tool("Merge PDFs", "/api/merge", True, ("pdf",)),
    Tool("Split PDF", "/api/split", False, ("pdf",)),
    Tool("Compress PDF", "/api/compress", False, ("pdf",)),
    Tool("PDF to Word", "/api/pdftoword", False, ("pdf",)),
    Tool("Word to PDF", "/api/wordtopdf", False, ("docx", "doc")),
    Tool("Excel to PDF", "/api/exceltopdf", False, ("xlsx", "xls")),
    Tool("JPG to PDF", "/api/jpgtopdf", True, ("jpg", "jpeg", "png")),
    Tool("PDF to JPG", "/api/pdftojpg", False, ("pdf",)),
    Tool("Rotate PDF", "/api/rotate", False, ("pdf",)),
    Tool("Protect PDF", "/api/protect", False, ("pdf",), needs_password=True),
    Tool("Unlock PDF", "/api/unlock", False, ("pdf",), needs_password=True),
    Tool("PDF to Excel", "/api/pdftoexcel", False, ("pdf",)),
)

_FILENAME_STAR = re.compile(r"filename\*=utf-8''([^;]+)", re.IGNORECASE)
_FILENAME = re.compile(r'filename="?([^";]+)"?', re.IGNORECASE)


@dataclass(frozen=True)
class Download:
    content: bytes
    filename: str
    mime: str


def filename_from_headers(headers: dict[str, str], default: str) -> str:
    disposition = headers.get("content-disposition") or headers.get("Content-Disposition") or ""
    if m := _FILENAME_STAR.search(disposition):
        return unquote(m.group(1))
    if m := _FILENAME.search(disposition):
        return m.group(1)
    return default


def error_text(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return f"{resp.status_code} {resp.text}"
    message = data.get("message", "")
    if detail := data.get("error"):
        return f"{resp.status_code} {message} ({detail})"
    return f"{resp.status_code} {message}"


def call_tool(tool: Tool, uploads: list, password: str = "") -> tuple[Download | None, str | None]:
    """Post the uploads to the tool endpoint; returns (download, error)."""
    field = "files" if tool.multiple else "file"
    files = [
        (field, (u.name, u.getvalue(), getattr(u, "type", None) or "application/octet-stream"))
        for u in uploads
    ]
    data = {"password": password} if tool.needs_password else None
    try:
        resp = requests.post(f"{API_BASE}{tool.path}", files=files, data=data, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as e:
        return None, f"Failed to connect to API: {e}"
    if resp.status_code != 200:
        return None, f"Request failed: {error_text(resp)}"
    headers = {str(k).lower(): str(v) for k, v in resp.headers.items()}
    download = Download(
        content=resp.content,
        filename=filename_from_headers(headers, "result"),
        mime=headers.get("content-type", "application/octet-stream"),
    )
    return download, None


def _reset_state() -> None:
    for key in ["download", "error"]:
        if key in st.session_state:
            del st.session_state[key]
    # Bump the uploader key to clear any previously uploaded file widget state
    st.session_state["upload_key"] = st.session_state.get("upload_key", 0) + 1


def main() -> None:
    st.set_page_config(page_title="Document Tools", page_icon="📄", layout="centered")
    st.title("📄 Document Tools")
    st.caption(f"API base: {API_BASE}")

    if st.button("Restart", type="secondary"):
        _reset_state()
        st.rerun()

    tool = st.selectbox("Tool", TOOLS, format_func=lambda t: t.label)
    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    uploaded = st.file_uploader(
        "Upload " + ("files" if tool.multiple else "a file"),
        type=list(tool.types),
        accept_multiple_files=tool.multiple,
        key=f"uploader-{tool.path}-{st.session_state['upload_key']}",
    )
    uploads = list(uploaded or []) if tool.multiple else ([uploaded] if uploaded else [])
    password = st.text_input("Password", type="password") if tool.needs_password else ""

    if uploads and st.button("Run", type="primary"):
        with st.spinner("Processing..."):
            download, error = call_tool(tool, uploads, password)
        st.session_state["download"] = download
        st.session_state["error"] = error

    if download := st.session_state.get("download"):
        st.success("Done!")
        st.download_button(
            label=f"Download {download.filename}",
            data=download.content,
            file_name=download.filename,
            mime=download.mime,
        )

    if err := st.session_state.get("error"):
        st.error(err)


if __name__ == "__main__":
    main()
