from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Mapping, Protocol, Union

PDF_MEDIA_TYPE = "application/pdf"
JPEG_MEDIA_TYPE = "image/jpeg"
DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class OperationKind(str, Enum):
    MERGE = "merge"
    SPLIT = "split"
    COMPRESS = "compress"
    PDF_TO_WORD = "pdftoword"
    WORD_TO_PDF = "wordtopdf"
    EXCEL_TO_PDF = "exceltopdf"
    JPG_TO_PDF = "jpgtopdf"
    PDF_TO_JPG = "pdftojpg"
    ROTATE = "rotate"
    PROTECT = "protect"
    UNLOCK = "unlock"
    PDF_TO_EXCEL = "pdftoexcel"


@dataclass(frozen=True)
class StagedFile:
    path: Path
    original_name: str
    size_bytes: int
    created_at: datetime

    @property
    def stem(self) -> str:
        return Path(self.original_name).stem or "document"

    @property
    def extension(self) -> str:
        return Path(self.original_name).suffix.lower()


@dataclass(frozen=True)
class TransformRequest:
    kind: OperationKind
    inputs: tuple[StagedFile, ...]
    params: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class FileResult:
    """Artifact on disk; streamed to the caller, then removed."""

    path: Path
    filename: str
    media_type: str


@dataclass(frozen=True)
class BufferResult:
    """Artifact held in memory; no output file exists."""

    content: bytes
    filename: str
    media_type: str


TransformResult = Union[FileResult, BufferResult]


@dataclass(frozen=True)
class Ok:
    path: Path


@dataclass(frozen=True)
class Err:
    cause: str
    # output left behind by a failed run, if any
    partial: Path | None = None


ConversionOutcome = Union[Ok, Err]


class OfficeConverterGateway(Protocol):
    def convert(self, input_path: Path, target_ext: str, out_dir: Path) -> ConversionOutcome:
        """Render the input document in the target format inside out_dir.
        This is a blocking call; callers should offload to threads if needed.
        """


class RasterizerGateway(Protocol):
    def first_page_to_jpeg(self, input_path: Path, out_dir: Path) -> ConversionOutcome:
        """Render page 1 of a PDF to a JPEG inside out_dir. Blocking."""
