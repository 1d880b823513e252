import asyncio
import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import PurePosixPath

from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, Response
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from pdf_image_service import __version__
from pdf_image_service.config import Settings
from pdf_image_service.conversion import (
    ConversionService,
    FetcherGateway,
    InvalidInput,
    OutputMode,
    RasterizerGateway,
    ResponseHandle,
    ServiceError,
    SourceAcquirer,
    StoredSourceFile,
    UploadDescriptor,
    UploadErrorCode,
    assemble,
    sniff_mime,
)
from pdf_image_service.conversion.adapters import PyMuPdfRasterizer, RequestsFetcher

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "86400",
}
CHUNK = 1024 * 1024


@dataclass(frozen=True)
class RequestParams:
    """Request parameters normalized from either a JSON or a form body."""

    url: str | None
    output: OutputMode
    upload: UploadFile | None = None


def parse_output(value: object) -> OutputMode:
    if value is None or value == "":
        return OutputMode.REFERENCE
    if isinstance(value, str):
        try:
            return OutputMode(value.strip().lower())
        except ValueError:
            pass
    raise InvalidInput(f"Invalid output type {value!r}. Use 'blob' or 'base64'")


async def extract_params(request: Request) -> RequestParams:
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    upload = None
    if content_type == "application/json":
        try:
            body = await request.json()
        except ValueError as e:
            raise InvalidInput("Malformed JSON body") from e
        if not isinstance(body, dict):
            raise InvalidInput("JSON body must be an object")
        url, output = body.get("url"), body.get("output")
    else:
        try:
            form = await request.form()
        except StarletteHTTPException as e:
            # multipart parser rejections (missing boundary, oversized part) are client errors
            raise InvalidInput(str(e.detail)) from e
        url, output = form.get("url"), form.get("output")
        part = form.get("pdf_file")
        if isinstance(part, UploadFile):
            upload = part

    if url is not None and not isinstance(url, str):
        raise InvalidInput("Invalid URL provided")
    return RequestParams(url=(url or "").strip() or None, output=parse_output(output), upload=upload)


async def receive_upload(upload: UploadFile | None, settings: Settings) -> UploadDescriptor:
    """Spool the multipart part into the incoming dir and describe the outcome."""
    if upload is None:
        raise InvalidInput("No PDF file uploaded")
    temp_path = settings.incoming_dir / f"{uuid.uuid4().hex}.part"
    name = upload.filename or ""
    if not name:
        return UploadDescriptor(temp_path, name, 0, UploadErrorCode.NO_FILE)
    try:
        settings.incoming_dir.mkdir(parents=True, exist_ok=True)
        f_out = temp_path.open("wb")
    except OSError:
        return UploadDescriptor(temp_path, name, 0, UploadErrorCode.NO_TMP_DIR)

    size_bytes = 0
    code = UploadErrorCode.OK
    with f_out:
        while True:
            chunk = await upload.read(CHUNK)
            if not chunk:
                break
            size_bytes += len(chunk)
            if size_bytes > settings.max_request_bytes:
                code = UploadErrorCode.INI_SIZE
                break
            try:
                f_out.write(chunk)
            except OSError:
                code = UploadErrorCode.CANT_WRITE
                break
    return UploadDescriptor(temp_path, name, size_bytes, code)


def configure_logging(settings: Settings) -> None:
    # no-op when handlers exist; uvicorn workers re-run this from the lifespan hook
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def error_response(exc: BaseException, settings: Settings) -> JSONResponse:
    if isinstance(exc, ServiceError):
        status_code, code = exc.status_code, exc.code
    else:
        status_code, code = 500, 0
    if status_code >= 500:
        logger.error("Request failed: %s", exc, exc_info=exc)
    else:
        logger.warning("Rejected request: %s", exc)

    body: dict[str, object] = {
        "error": str(exc) or type(exc).__name__,
        "code": code,
        "type": type(exc).__name__,
    }
    if settings.debug:
        body["trace"] = traceback.format_exception(exc)
    return JSONResponse(status_code=status_code, content=body)


def create_app(
    settings: Settings | None = None,
    *,
    rasterizer: RasterizerGateway | None = None,
    fetcher: FetcherGateway | None = None,
) -> FastAPI:
    """Build the application; configuration and gateways are fixed for its lifetime."""
    settings = settings or Settings.from_env()
    rasterizer = rasterizer or PyMuPdfRasterizer(settings.upload_dir, dpi=settings.raster_dpi)
    acquirer = SourceAcquirer(settings, fetcher or RequestsFetcher())
    service = ConversionService(rasterizer)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        settings.ensure_dirs()
        yield
        await service.stop()

    app = FastAPI(
        title="PDF to Image Service",
        version=__version__,
        description="Rasterizes PDF documents into per-page PNG images.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.service = service

    @app.middleware("http")
    async def _cors(request: Request, call_next):
        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code in (404, 405):
            return JSONResponse(status_code=404, content={"error": "Endpoint not found"})
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail), "code": exc.status_code, "type": type(exc).__name__},
        )

    async def convert_source(source: StoredSourceFile, mode: OutputMode, label_key: str, label: str) -> Response:
        handle: ResponseHandle[Response] = ResponseHandle(
            on_success=lambda result: JSONResponse(
                assemble(result, base_url=settings.base_url, label_key=label_key, label=label)
            ),
            on_failure=lambda exc: error_response(exc, settings),
        )
        service.submit(source, mode, handle)
        return await handle.wait()

    @app.post("/convert")
    async def convert(request: Request) -> Response:
        """Convert an uploaded PDF (multipart field ``pdf_file``)."""
        descriptor = None
        try:
            params = await extract_params(request)
            descriptor = await receive_upload(params.upload, settings)
            source = acquirer.acquire_upload(descriptor)
            return await convert_source(source, params.output, "original_name", descriptor.declared_name)
        except Exception as e:
            return error_response(e, settings)
        finally:
            # parts the acquirer did not take are discarded with the request
            if descriptor is not None:
                descriptor.temp_path.unlink(missing_ok=True)

    @app.post("/fetch-and-convert")
    async def fetch_and_convert(request: Request) -> Response:
        """Download a PDF from ``url`` (JSON or form body) and convert it."""
        try:
            params = await extract_params(request)
            if params.url is None:
                raise InvalidInput("No URL provided")
            source = await asyncio.to_thread(acquirer.acquire_url, params.url)
            return await convert_source(source, params.output, "source_url", params.url)
        except Exception as e:
            return error_response(e, settings)

    @app.get("/download/{name:path}")
    async def download(name: str) -> Response:
        try:
            # flatten to a basename so lookups never leave the storage root
            filename = PurePosixPath(name.replace("\\", "/")).name
            path = settings.upload_dir / filename
            if filename in {"", ".", ".."} or not path.is_file():
                return PlainTextResponse("Image not found", status_code=404)
            return FileResponse(
                path,
                media_type=sniff_mime(path),
                filename=filename,
                content_disposition_type="inline",
                headers={"Cache-Control": "public, max-age=86400"},
            )
        except Exception as e:
            return error_response(e, settings)

    @app.get("/health")
    async def health() -> dict:
        """Liveness plus availability of the imaging backend; never fails."""
        return {
            "status": "ok",
            "version": __version__,
            "timestamp": int(time.time()),
            "services": {
                "imaging": service.imaging_available(),
                "runtime": asyncio.get_running_loop().is_running(),
            },
        }

    return app


def run() -> None:
    """Run the service with uvicorn.

    Binds HOST:PORT (default 0.0.0.0:9501) with WORKERS processes. Download
    links use APP_URL_SCHEME/APP_URL_HOST/APP_URL_PORT, which may differ.
    """
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings)
    settings.ensure_dirs()
    logger.info(
        "PDF to Image service starting. Listening at http://%s:%d. Download base URL: %s",
        settings.host,
        settings.port,
        settings.base_url,
    )
    uvicorn.run(
        "pdf_image_service.webapi:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        # reload supports a single process only
        workers=1 if settings.reload else settings.workers,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
