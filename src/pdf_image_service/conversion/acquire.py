import logging
import os
import secrets
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

from PIL import Image, UnidentifiedImageError

from ..config import Settings
from .errors import InvalidInput, StorageError, UploadError
from .interfaces import FetcherGateway, StoredSourceFile, UploadDescriptor, UploadErrorCode
from .sanitize import sanitize_filename

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
UPLOAD_FALLBACK = "uploaded_file.pdf"
DOWNLOAD_FALLBACK = "downloaded_file.pdf"


def sniff_mime(path: Path) -> str:
    """Detect the MIME type from file content, ignoring name and client headers."""
    with path.open("rb") as f:
        head = f.read(8)
    if head.startswith(b"%PDF-"):
        return PDF_MIME
    try:
        with Image.open(path) as img:
            return Image.MIME.get(img.format or "", "application/octet-stream")
    except (UnidentifiedImageError, OSError):
        return "application/octet-stream"


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.hostname)


def _with_token(name: str) -> str:
    p = PurePosixPath(name)
    return f"{p.stem}_{secrets.token_hex(4)}{p.suffix}"


class SourceAcquirer:
    """Turns an upload or a remote URL into a validated PDF under the sources dir.

    Every stored name gets a random token so two requests for the same
    document never write to the same source or output files.
    """

    def __init__(self, settings: Settings, fetcher: FetcherGateway) -> None:
        self._settings = settings
        self._fetcher = fetcher

    def _max_mb(self) -> int:
        return self._settings.max_source_bytes // (1024 * 1024)

    def _destination(self, raw_name: str, fallback: str) -> Path:
        name = _with_token(sanitize_filename(raw_name, ".pdf", fallback))
        try:
            self._settings.sources_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError("Temporary storage is not available") from e
        return self._settings.sources_dir / name

    def acquire_upload(self, upload: UploadDescriptor) -> StoredSourceFile:
        if upload.error_code != UploadErrorCode.OK:
            raise UploadError(upload.error_code)

        try:
            mime = sniff_mime(upload.temp_path)
            actual_size = upload.temp_path.stat().st_size
        except OSError as e:
            raise InvalidInput("Uploaded file is not readable") from e
        if mime != PDF_MIME:
            raise InvalidInput("Invalid file type. Only PDF files are allowed")
        if max(upload.declared_size, actual_size) > self._settings.max_source_bytes:
            raise InvalidInput(f"File too large. Maximum size is {self._max_mb()}MB")

        dest = self._destination(upload.declared_name, UPLOAD_FALLBACK)
        try:
            os.replace(upload.temp_path, dest)
        except OSError as e:
            raise StorageError(f"Failed to store uploaded file: {e.strerror}") from e

        logger.info("Accepted upload %r as %s (%d bytes)", upload.declared_name, dest.name, actual_size)
        return StoredSourceFile(path=dest, base_name=dest.stem)

    def acquire_url(self, url: str) -> StoredSourceFile:
        if not is_valid_url(url):
            raise InvalidInput("Invalid URL provided")

        suggested = self._fetcher.probe_filename(url)
        raw_name = suggested or unquote(PurePosixPath(urlparse(url).path).name)
        dest = self._destination(raw_name, DOWNLOAD_FALLBACK)

        try:
            size = self._fetcher.download(url, dest, self._settings.max_source_bytes)
        except Exception:
            dest.unlink(missing_ok=True)
            raise

        if sniff_mime(dest) != PDF_MIME:
            dest.unlink(missing_ok=True)
            raise InvalidInput("Invalid file type. Only PDF files are allowed")
        if size > self._settings.max_source_bytes or dest.stat().st_size > self._settings.max_source_bytes:
            dest.unlink(missing_ok=True)
            raise InvalidInput(f"File too large. Maximum size is {self._max_mb()}MB")

        logger.info("Fetched %s as %s (%d bytes)", url, dest.name, size)
        return StoredSourceFile(path=dest, base_name=dest.stem)
