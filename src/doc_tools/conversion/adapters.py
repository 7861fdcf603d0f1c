import itertools
import logging
import os
import re
import subprocess
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable

from .errors import PayloadTooLargeError
from .interfaces import ConversionOutcome, Err, Ok, StagedFile

logger = logging.getLogger(__name__)

# Characters not safe in a staged filename
SANITIZE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]+")

CHUNK = 1024 * 1024

# LibreOffice export filters keyed by target extension
EXPORT_FILTERS = {
    "docx": "MS Word 2007 XML",
    "pdf": "",
}


def cleanup_files(*paths: object) -> None:
    """Delete each path, skipping entries that are not paths.

    Deletion failures are logged and ignored; the response they belong to has
    already been decided.
    """
    for path in paths:
        if not isinstance(path, (str, os.PathLike)) or not os.fspath(path):
            continue
        try:
            os.unlink(path)
        except FileNotFoundError:
            logger.warning("cleanup: %s already removed", path)
        except OSError as exc:
            logger.warning("cleanup: could not remove %s: %s", path, exc)


def _sanitize_filename(filename: str) -> str:
    name = Path(filename).name
    cleaned = SANITIZE_PATTERN.sub("-", name).strip("-_.")
    return cleaned or "upload"


class LocalStaging:
    """Process-wide directory holding request-scoped files."""

    def __init__(self, staging_dir: str | Path, *, max_upload_mb: int) -> None:
        self._root = Path(staging_dir).resolve()
        self._max_bytes = max_upload_mb * 1024 * 1024
        self._max_upload_mb = max_upload_mb
        self._sequence = itertools.count(1)

    @property
    def root(self) -> Path:
        return self._root

    def ensure(self) -> Path:
        self._root.mkdir(parents=True, exist_ok=True)
        return self._root

    def unique_path(self, original_name: str) -> Path:
        # millisecond timestamp plus a process-wide sequence keeps names apart
        # even for the same filename within one millisecond
        millis = time.time_ns() // 1_000_000
        return self._root / f"{millis}-{next(self._sequence)}-{_sanitize_filename(original_name)}"

    def scope(self) -> "RequestScope":
        return RequestScope(self)

    async def write_upload(
        self,
        destination: Path,
        reader: Callable[[int], Awaitable[bytes]],
    ) -> int:
        """Stream an upload to destination; returns the number of bytes written."""
        size_bytes = 0
        with destination.open("wb") as f_out:
            while chunk := await reader(CHUNK):
                size_bytes += len(chunk)
                if size_bytes > self._max_bytes:
                    raise PayloadTooLargeError(
                        f"Upload exceeds {self._max_upload_mb} MB.",
                        paths=[destination],
                    )
                f_out.write(chunk)
        return size_bytes


class RequestScope:
    """Tracks every file one request creates and removes them exactly once."""

    def __init__(self, staging: LocalStaging) -> None:
        self._staging = staging
        self._paths: list[Path] = []
        self._released = False

    @property
    def staging(self) -> LocalStaging:
        return self._staging

    @property
    def paths(self) -> tuple[Path, ...]:
        return tuple(self._paths)

    def track(self, *paths: object) -> None:
        for path in paths:
            if isinstance(path, (str, os.PathLike)):
                p = Path(path)
                if p not in self._paths:
                    self._paths.append(p)

    async def stage(
        self,
        filename: str,
        reader: Callable[[int], Awaitable[bytes]],
    ) -> StagedFile:
        original_name = filename or "upload"
        destination = self._staging.unique_path(original_name)
        # tracked before writing so a partial file is still removed
        self.track(destination)
        size_bytes = await self._staging.write_upload(destination, reader)
        staged = StagedFile(
            path=destination,
            original_name=original_name,
            size_bytes=size_bytes,
            created_at=datetime.now(timezone.utc),
        )
        logger.debug("staged %s as %s (%d bytes)", original_name, destination.name, size_bytes)
        return staged

    def release(self, *extra: object) -> None:
        self.track(*extra)
        if self._released:
            return
        self._released = True
        cleanup_files(*self._paths)


def _run(cmd: list[str], timeout: float | None) -> subprocess.CompletedProcess[str] | Err:
    try:
        return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError:
        return Err(f"executable not found: {cmd[0]}")
    except subprocess.TimeoutExpired:
        return Err(f"{Path(cmd[0]).name} did not finish within {timeout:g}s")


def _leftover(path: Path) -> Path | None:
    return path if path.exists() else None


def _failure_text(result: subprocess.CompletedProcess[str]) -> str:
    text = (result.stderr or result.stdout or "").strip()
    return text or f"exit status {result.returncode}"


class SofficeConverter:
    """Office conversion through a headless LibreOffice process.

    Each run gets its own throwaway user profile, so concurrent conversions
    never attach to one running instance.
    """

    def __init__(self, binary: str = "soffice", *, timeout: float | None = None) -> None:
        self._binary = binary
        self._timeout = timeout

    def command(
        self,
        input_path: Path,
        target_ext: str,
        out_dir: Path,
        profile_dir: Path | None = None,
    ) -> list[str]:
        cmd = [self._binary]
        if profile_dir is not None:
            cmd.append(f"-env:UserInstallation={profile_dir.resolve().as_uri()}")
        cmd.append("--headless")
        if input_path.suffix.lower() == ".pdf":
            # PDFs open in Draw by default; Writer is needed for text export
            cmd.append("--infilter=writer_pdf_import")
        export_filter = EXPORT_FILTERS.get(target_ext, "")
        convert_to = f"{target_ext}:{export_filter}" if export_filter else target_ext
        cmd += ["--convert-to", convert_to, "--outdir", str(out_dir), str(input_path)]
        return cmd

    def convert(self, input_path: Path, target_ext: str, out_dir: Path) -> ConversionOutcome:
        expected = out_dir / f"{input_path.stem}.{target_ext}"
        with tempfile.TemporaryDirectory(prefix="soffice-profile-") as profile:
            result = _run(self.command(input_path, target_ext, out_dir, Path(profile)), self._timeout)
        if isinstance(result, Err):
            return Err(result.cause, partial=_leftover(expected))
        if result.returncode != 0:
            return Err(_failure_text(result), partial=_leftover(expected))
        if not expected.is_file():
            return Err(f"converter produced no output: {_failure_text(result)}")
        return Ok(expected)


class PopplerRasterizer:
    """First-page JPEG rendering through poppler's pdftoppm."""

    def __init__(self, poppler_path: str | None = None, *, timeout: float | None = None) -> None:
        self._poppler_path = poppler_path
        self._timeout = timeout

    @property
    def binary(self) -> str:
        if self._poppler_path:
            return str(Path(self._poppler_path) / "pdftoppm")
        return "pdftoppm"

    def command(self, input_path: Path, prefix: Path) -> list[str]:
        return [self.binary, "-jpeg", "-f", "1", "-l", "1", "-singlefile", str(input_path), str(prefix)]

    def first_page_to_jpeg(self, input_path: Path, out_dir: Path) -> ConversionOutcome:
        prefix = out_dir / input_path.stem
        expected = Path(f"{prefix}.jpg")
        result = _run(self.command(input_path, prefix), self._timeout)
        if isinstance(result, Err):
            return Err(result.cause, partial=_leftover(expected))
        if result.returncode != 0:
            return Err(_failure_text(result), partial=_leftover(expected))
        if not expected.is_file():
            return Err(f"rasterizer produced no output: {_failure_text(result)}")
        return Ok(expected)
