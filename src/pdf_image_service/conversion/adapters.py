import base64
import importlib.util
import logging
import re
from pathlib import Path
from urllib.parse import unquote

import requests

from ..config import RASTER_DPI
from .errors import ConversionError, FetchError, StorageError
from .interfaces import FetcherGateway, OutputMode, RasterizerGateway

logger = logging.getLogger(__name__)

PDF_BASE_DPI = 72.0
CHUNK = 1024 * 1024

_FILENAME_EXT = re.compile(r"filename\*\s*=\s*(?:[\w-]+)?'[^']*'([^;]+)", re.IGNORECASE)
_FILENAME = re.compile(r'filename\s*=\s*(?:"([^"]*)"|([^;]+))', re.IGNORECASE)


def filename_from_content_disposition(value: str | None) -> str | None:
    """Extract the suggested filename, preferring the RFC 5987 ``filename*`` form."""
    if not value:
        return None
    m = _FILENAME_EXT.search(value)
    if m:
        return unquote(m.group(1).strip()) or None
    m = _FILENAME.search(value)
    if m:
        name = m.group(1) if m.group(1) is not None else m.group(2)
        return name.strip() or None
    return None


class PyMuPdfRasterizer(RasterizerGateway):
    def __init__(self, output_dir: Path, dpi: int = RASTER_DPI) -> None:
        self._output_dir = Path(output_dir)
        self._dpi = dpi

    def available(self) -> bool:
        return importlib.util.find_spec("fitz") is not None

    def rasterize(self, pdf_path: str, base_name: str, mode: OutputMode) -> list[str]:
        try:
            import fitz  # PyMuPDF
        except ImportError as e:
            raise ConversionError("PyMuPDF is not installed") from e

        zoom = self._dpi / PDF_BASE_DPI
        mat = fitz.Matrix(zoom, zoom)
        images: list[str] = []
        try:
            if mode is OutputMode.REFERENCE:
                self._output_dir.mkdir(parents=True, exist_ok=True)
            with fitz.open(pdf_path) as doc:
                multi_page = doc.page_count > 1
                for i, page in enumerate(doc):
                    pix = page.get_pixmap(matrix=mat, alpha=False)
                    if mode is OutputMode.INLINE_BASE64:
                        images.append(base64.b64encode(pix.tobytes("png")).decode("ascii"))
                        continue
                    name = f"{base_name}-{i}.png" if multi_page else f"{base_name}.png"
                    pix.save(str(self._output_dir / name))
                    images.append(name)
        except Exception as e:
            raise ConversionError(f"PDF conversion failed: {e}") from e
        return images


class RequestsFetcher(FetcherGateway):
    def __init__(self, session: requests.Session | None = None, timeout: float | None = None) -> None:
        self._session = session or requests.Session()
        self._timeout = timeout

    def probe_filename(self, url: str) -> str | None:
        try:
            resp = self._session.head(url, allow_redirects=True, timeout=self._timeout)
        except requests.RequestException as e:
            # not fatal: the caller falls back to the URL path
            logger.info("HEAD probe failed for %s: %s", url, e)
            return None
        return filename_from_content_disposition(resp.headers.get("Content-Disposition"))

    def download(self, url: str, dest: Path, max_bytes: int) -> int:
        written = 0
        try:
            with self._session.get(url, stream=True, timeout=self._timeout) as resp:
                resp.raise_for_status()
                with dest.open("wb") as f_out:
                    for chunk in resp.iter_content(CHUNK):
                        f_out.write(chunk)
                        written += len(chunk)
                        if written > max_bytes:
                            break
        # RequestException derives from OSError, so it must be matched first
        except requests.RequestException as e:
            raise FetchError(f"Failed to download file from URL: {e}") from e
        except OSError as e:
            raise StorageError(f"Failed to save downloaded file: {e.strerror}") from e
        return written
