import logging
import os
from dataclasses import dataclass
from urllib.parse import quote

from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse, Response
from starlette.types import Receive, Scope, Send

from doc_tools.conversion import (
    BufferResult,
    ConversionError,
    LocalStaging,
    OfficeConverterGateway,
    OperationError,
    OperationKind,
    PopplerRasterizer,
    RasterizerGateway,
    RequestScope,
    SofficeConverter,
    ToolService,
    TransformRequest,
    friendly_message,
)
from doc_tools.conversion.interfaces import TransformResult
from doc_tools.settings import Settings, configure_logging, env_flag

logger = logging.getLogger(__name__)

router = APIRouter()


@dataclass
class Pipeline:
    """Upload-to-artifact lifecycle shared by every tool endpoint."""

    staging: LocalStaging
    service: ToolService

    async def handle(
        self,
        kind: OperationKind,
        uploads: list[UploadFile],
        params: dict[str, str] | None = None,
    ) -> Response:
        scope = self.staging.scope()
        handed_off = False
        try:
            staged = [await scope.stage(upload.filename or "upload", upload.read) for upload in uploads]
            request = TransformRequest(kind=kind, inputs=tuple(staged), params=params or {})
            result = await self.service.run(request, scope)
            response = _emit(result, scope)
            # a streamed file releases the scope once it has been sent
            handed_off = isinstance(response, StagedFileResponse)
            return response
        except OperationError as exc:
            scope.release(*exc.paths)
            return _error_response(kind, exc)
        except Exception as exc:
            logger.exception("%s: unexpected failure", kind.value)
            return _error_response(kind, ConversionError(friendly_message(kind), cause=exc))
        finally:
            if not handed_off:
                scope.release()


class StagedFileResponse(FileResponse):
    """FileResponse that releases the request's staged files once sent.

    Release also runs when the client disconnects mid-transfer.
    """

    def __init__(self, *args, scope: RequestScope, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._request_scope = scope

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self._request_scope.release()


def _content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted != filename:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{filename}"'


def _emit(result: TransformResult, scope: RequestScope) -> Response:
    if isinstance(result, BufferResult):
        # nothing on disk backs the body, so inputs can go now
        scope.release()
        return Response(
            content=result.content,
            media_type=result.media_type,
            headers={"Content-Disposition": _content_disposition(result.filename)},
        )
    return StagedFileResponse(
        result.path,
        filename=result.filename,
        media_type=result.media_type,
        scope=scope,
    )


def _error_response(kind: OperationKind, exc: OperationError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s failed: %s (%s)", kind.value, exc.message, exc.cause_text)
    else:
        logger.info("%s rejected: %s", kind.value, exc.message)
    body: dict[str, str] = {"code": exc.code, "message": exc.message}
    if exc.cause_text:
        body["error"] = exc.cause_text
    return JSONResponse(status_code=exc.status_code, content=body)


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


def _one(file: UploadFile | None) -> list[UploadFile]:
    return [file] if file is not None else []


@router.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@router.post("/api/merge")
async def merge(files: list[UploadFile] | None = File(None), pipeline: Pipeline = Depends(get_pipeline)) -> Response:
    return await pipeline.handle(OperationKind.MERGE, files or [])


@router.post("/api/split")
async def split(file: UploadFile | None = File(None), pipeline: Pipeline = Depends(get_pipeline)) -> Response:
    return await pipeline.handle(OperationKind.SPLIT, _one(file))


@router.post("/api/compress")
async def compress(file: UploadFile | None = File(None), pipeline: Pipeline = Depends(get_pipeline)) -> Response:
    return await pipeline.handle(OperationKind.COMPRESS, _one(file))


@router.post("/api/pdftoword")
async def pdf_to_word(file: UploadFile | None = File(None), pipeline: Pipeline = Depends(get_pipeline)) -> Response:
    return await pipeline.handle(OperationKind.PDF_TO_WORD, _one(file))


@router.post("/api/wordtopdf")
async def word_to_pdf(file: UploadFile | None = File(None), pipeline: Pipeline = Depends(get_pipeline)) -> Response:
    return await pipeline.handle(OperationKind.WORD_TO_PDF, _one(file))


@router.post("/api/exceltopdf")
async def excel_to_pdf(file: UploadFile | None = File(None), pipeline: Pipeline = Depends(get_pipeline)) -> Response:
    return await pipeline.handle(OperationKind.EXCEL_TO_PDF, _one(file))


@router.post("/api/jpgtopdf")
async def jpg_to_pdf(files: list[UploadFile] | None = File(None), pipeline: Pipeline = Depends(get_pipeline)) -> Response:
    return await pipeline.handle(OperationKind.JPG_TO_PDF, files or [])


@router.post("/api/pdftojpg")
async def pdf_to_jpg(file: UploadFile | None = File(None), pipeline: Pipeline = Depends(get_pipeline)) -> Response:
    return await pipeline.handle(OperationKind.PDF_TO_JPG, _one(file))


@router.post("/api/rotate")
async def rotate(file: UploadFile | None = File(None), pipeline: Pipeline = Depends(get_pipeline)) -> Response:
    return await pipeline.handle(OperationKind.ROTATE, _one(file))


@router.post("/api/protect")
async def protect(
    file: UploadFile | None = File(None),
    password: str | None = Form(None),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Response:
    return await pipeline.handle(OperationKind.PROTECT, _one(file), {"password": password or ""})


@router.post("/api/unlock")
async def unlock(
    file: UploadFile | None = File(None),
    password: str | None = Form(None),
    pipeline: Pipeline = Depends(get_pipeline),
) -> Response:
    return await pipeline.handle(OperationKind.UNLOCK, _one(file), {"password": password or ""})


@router.post("/api/pdftoexcel")
async def pdf_to_excel(file: UploadFile | None = File(None), pipeline: Pipeline = Depends(get_pipeline)) -> Response:
    return await pipeline.handle(OperationKind.PDF_TO_EXCEL, _one(file))


def create_app(
    settings: Settings | None = None,
    *,
    converter: OfficeConverterGateway | None = None,
    rasterizer: RasterizerGateway | None = None,
) -> FastAPI:
    """Build the application with its staging area and adapters wired in.

    External tool locations come from settings; tests pass their own
    converter and rasterizer.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    app = FastAPI(
        title="Document Tools Service",
        version=settings.version,
        description=(
            "Upload PDFs, office documents and images; download merged, rotated, "
            "encrypted or converted files."
        ),
    )
    staging = LocalStaging(settings.staging_dir, max_upload_mb=settings.max_upload_mb)
    staging.ensure()
    service = ToolService(
        converter=converter or SofficeConverter(settings.soffice_bin, timeout=settings.convert_timeout),
        rasterizer=rasterizer or PopplerRasterizer(settings.poppler_path, timeout=settings.convert_timeout),
    )
    app.state.settings = settings
    app.state.pipeline = Pipeline(staging=staging, service=service)
    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    # Enable reload in dev unless explicitly disabled
    reload = env_flag(os.getenv("RELOAD"), default=True)

    uvicorn.run("doc_tools.webapi:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    run()
