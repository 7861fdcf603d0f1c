import asyncio
import logging
from typing import Awaitable, Callable

from . import documents
from .adapters import RequestScope
from .errors import ConversionError, OperationError, ValidationError
from .interfaces import (
    DOCX_MEDIA_TYPE,
    JPEG_MEDIA_TYPE,
    PDF_MEDIA_TYPE,
    XLSX_MEDIA_TYPE,
    BufferResult,
    ConversionOutcome,
    Err,
    FileResult,
    OfficeConverterGateway,
    OperationKind,
    RasterizerGateway,
    StagedFile,
    TransformRequest,
    TransformResult,
)

logger = logging.getLogger(__name__)

FRIENDLY_MESSAGES: dict[OperationKind, str] = {
    OperationKind.MERGE: "Error merging PDFs.",
    OperationKind.SPLIT: "Error splitting PDF.",
    OperationKind.COMPRESS: "Error compressing PDF.",
    OperationKind.PDF_TO_WORD: "Error converting file to docx.",
    OperationKind.WORD_TO_PDF: "Error converting file to pdf.",
    OperationKind.EXCEL_TO_PDF: "Error converting file to pdf.",
    OperationKind.JPG_TO_PDF: "Error converting JPG to PDF.",
    OperationKind.PDF_TO_JPG: "Error converting PDF to JPG.",
    OperationKind.ROTATE: "Error rotating PDF.",
    OperationKind.PROTECT: "Error protecting PDF.",
    OperationKind.UNLOCK: "Error unlocking PDF. It might not be encrypted.",
    OperationKind.PDF_TO_EXCEL: "Error converting PDF to Excel.",
}

# target extension and media type for office conversions
OFFICE_TARGETS: dict[OperationKind, tuple[str, str]] = {
    OperationKind.PDF_TO_WORD: ("docx", DOCX_MEDIA_TYPE),
    OperationKind.WORD_TO_PDF: ("pdf", PDF_MEDIA_TYPE),
    OperationKind.EXCEL_TO_PDF: ("pdf", PDF_MEDIA_TYPE),
}


def friendly_message(kind: OperationKind) -> str:
    return FRIENDLY_MESSAGES.get(kind, "Error processing document.")


def _single_input(request: TransformRequest) -> StagedFile:
    if not request.inputs:
        raise ValidationError("No file uploaded.")
    return request.inputs[0]


def _all_inputs(request: TransformRequest) -> tuple[StagedFile, ...]:
    if not request.inputs:
        raise ValidationError("No files uploaded.")
    return request.inputs


def _password(request: TransformRequest) -> str:
    password = request.params.get("password")
    if not password:
        raise ValidationError("Password is required.")
    return password


async def _read(staged: StagedFile) -> bytes:
    return await asyncio.to_thread(staged.path.read_bytes)


Handler = Callable[[TransformRequest, RequestScope], Awaitable[TransformResult]]


class ToolService:
    """Runs one transformation per request.

    Library calls and external processes block, so each one runs in a worker
    thread. Any failure leaves the service as an OperationError.
    """

    def __init__(self, converter: OfficeConverterGateway, rasterizer: RasterizerGateway) -> None:
        self._converter = converter
        self._rasterizer = rasterizer
        self._handlers: dict[OperationKind, Handler] = {
            OperationKind.MERGE: self._merge,
            OperationKind.SPLIT: self._split,
            OperationKind.COMPRESS: self._compress,
            OperationKind.PDF_TO_WORD: self._office,
            OperationKind.WORD_TO_PDF: self._office,
            OperationKind.EXCEL_TO_PDF: self._office,
            OperationKind.JPG_TO_PDF: self._images_to_pdf,
            OperationKind.PDF_TO_JPG: self._pdf_to_jpg,
            OperationKind.ROTATE: self._rotate,
            OperationKind.PROTECT: self._protect,
            OperationKind.UNLOCK: self._unlock,
            OperationKind.PDF_TO_EXCEL: self._pdf_to_excel,
        }

    async def run(self, request: TransformRequest, scope: RequestScope) -> TransformResult:
        handler = self._handlers[request.kind]
        try:
            result = await handler(request, scope)
        except OperationError:
            raise
        except Exception as exc:
            raise ConversionError(friendly_message(request.kind), cause=exc) from exc
        logger.info("%s: produced %s from %d input(s)", request.kind.value, result.filename, len(request.inputs))
        return result

    def _external_failure(self, kind: OperationKind, outcome: Err) -> ConversionError:
        return ConversionError(friendly_message(kind), cause=outcome.cause, paths=[outcome.partial])

    async def _merge(self, request: TransformRequest, scope: RequestScope) -> TransformResult:
        sources = [await _read(staged) for staged in _all_inputs(request)]
        merged = await asyncio.to_thread(documents.merge_pdfs, sources)
        return BufferResult(merged, "merged.pdf", PDF_MEDIA_TYPE)

    async def _split(self, request: TransformRequest, scope: RequestScope) -> TransformResult:
        staged = _single_input(request)
        count = await asyncio.to_thread(documents.page_count, await _read(staged))
        logger.info("split: %s has %d pages; returning it unchanged", staged.original_name, count)
        return FileResult(staged.path, "split-result.pdf", PDF_MEDIA_TYPE)

    async def _compress(self, request: TransformRequest, scope: RequestScope) -> TransformResult:
        staged = _single_input(request)
        logger.info("compress: returning %s unchanged", staged.original_name)
        return FileResult(staged.path, f"compressed-{staged.original_name}", PDF_MEDIA_TYPE)

    async def _office(self, request: TransformRequest, scope: RequestScope) -> TransformResult:
        staged = _single_input(request)
        target_ext, media_type = OFFICE_TARGETS[request.kind]
        outcome: ConversionOutcome = await asyncio.to_thread(
            self._converter.convert, staged.path, target_ext, scope.staging.root
        )
        if isinstance(outcome, Err):
            raise self._external_failure(request.kind, outcome)
        scope.track(outcome.path)
        return FileResult(outcome.path, f"{staged.stem}.{target_ext}", media_type)

    async def _images_to_pdf(self, request: TransformRequest, scope: RequestScope) -> TransformResult:
        images = [await _read(staged) for staged in _all_inputs(request)]
        pdf = await asyncio.to_thread(documents.images_to_pdf, images)
        return BufferResult(pdf, "converted.pdf", PDF_MEDIA_TYPE)

    async def _pdf_to_jpg(self, request: TransformRequest, scope: RequestScope) -> TransformResult:
        staged = _single_input(request)
        outcome: ConversionOutcome = await asyncio.to_thread(
            self._rasterizer.first_page_to_jpeg, staged.path, scope.staging.root
        )
        if isinstance(outcome, Err):
            raise self._external_failure(request.kind, outcome)
        scope.track(outcome.path)
        return FileResult(outcome.path, f"{staged.stem}.jpg", JPEG_MEDIA_TYPE)

    async def _rotate(self, request: TransformRequest, scope: RequestScope) -> TransformResult:
        data = await _read(_single_input(request))
        rotated = await asyncio.to_thread(documents.rotate_pdf, data)
        return BufferResult(rotated, "rotated.pdf", PDF_MEDIA_TYPE)

    async def _protect(self, request: TransformRequest, scope: RequestScope) -> TransformResult:
        staged = _single_input(request)
        password = _password(request)
        protected = await asyncio.to_thread(documents.protect_pdf, await _read(staged), password)
        return BufferResult(protected, f"protected-{staged.original_name}", PDF_MEDIA_TYPE)

    async def _unlock(self, request: TransformRequest, scope: RequestScope) -> TransformResult:
        staged = _single_input(request)
        password = _password(request)
        unlocked = await asyncio.to_thread(documents.unlock_pdf, await _read(staged), password)
        return BufferResult(unlocked, f"unlocked-{staged.original_name}", PDF_MEDIA_TYPE)

    async def _pdf_to_excel(self, request: TransformRequest, scope: RequestScope) -> TransformResult:
        data = await _read(_single_input(request))
        lines = await asyncio.to_thread(documents.pdf_text_lines, data)
        workbook = await asyncio.to_thread(documents.lines_to_workbook, lines)
        return BufferResult(workbook, "converted.xlsx", XLSX_MEDIA_TYPE)
