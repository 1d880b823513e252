from dataclasses import dataclass
from enum import Enum, IntEnum
from pathlib import Path
from typing import Protocol


class OutputMode(str, Enum):
    REFERENCE = "blob"
    INLINE_BASE64 = "base64"


class UploadErrorCode(IntEnum):
    OK = 0
    INI_SIZE = 1
    FORM_SIZE = 2
    PARTIAL = 3
    NO_FILE = 4
    NO_TMP_DIR = 6
    CANT_WRITE = 7
    EXTENSION = 8

    @property
    def message(self) -> str:
        return _UPLOAD_ERROR_MESSAGES.get(self, "Unknown upload error")


_UPLOAD_ERROR_MESSAGES = {
    UploadErrorCode.INI_SIZE: "The uploaded file exceeds the maximum request size",
    UploadErrorCode.FORM_SIZE: "The uploaded file exceeds the size declared by the form",
    UploadErrorCode.PARTIAL: "The uploaded file was only partially uploaded",
    UploadErrorCode.NO_FILE: "No file was uploaded",
    UploadErrorCode.NO_TMP_DIR: "Missing a temporary folder",
    UploadErrorCode.CANT_WRITE: "Failed to write file to disk",
    UploadErrorCode.EXTENSION: "The upload was stopped by a server extension",
}


class RasterizerGateway(Protocol):
    def rasterize(self, pdf_path: str, base_name: str, mode: OutputMode) -> list[str]:
        """Render every page of the PDF as PNG.

        Returns file names (``{base}.png`` or ``{base}-{i}.png``) written into the
        storage root for REFERENCE mode, or base64 strings for INLINE_BASE64.
        This is a blocking call; callers should offload to threads if needed.
        """

    def available(self) -> bool:
        ...


class FetcherGateway(Protocol):
    def probe_filename(self, url: str) -> str | None:
        """Return the filename suggested by Content-Disposition, if any."""

    def download(self, url: str, dest: Path, max_bytes: int) -> int:
        """Stream the resource body into dest, stopping after max_bytes + 1 bytes.

        Returns the number of bytes written.
        """


@dataclass(frozen=True)
class UploadDescriptor:
    temp_path: Path
    declared_name: str
    declared_size: int
    error_code: UploadErrorCode = UploadErrorCode.OK


@dataclass(frozen=True)
class StoredSourceFile:
    path: Path
    base_name: str


@dataclass(frozen=True)
class ConversionResult:
    pages: int
    images: list[str]
    mode: OutputMode
