from __future__ import annotations

import threading
from pathlib import Path

import fitz
import pytest

from pdf_image_service.config import Settings
from pdf_image_service.conversion import ConversionError, OutputMode


class FakeFetcher:
    """Serves a fixed body; records where it was asked to write."""

    def __init__(self, body: bytes = b"", filename: str | None = None, error: Exception | None = None) -> None:
        self.body = body
        self.filename = filename
        self.error = error
        self.dest: Path | None = None
        self.probed: list[str] = []

    def probe_filename(self, url: str) -> str | None:
        self.probed.append(url)
        return self.filename

    def download(self, url: str, dest: Path, max_bytes: int) -> int:
        self.dest = dest
        if self.error is not None:
            dest.write_bytes(self.body[:10])
            raise self.error
        data = self.body[: max_bytes + 1]
        dest.write_bytes(data)
        return len(data)


class FakeRasterizer:
    def __init__(self, pages: int = 1, available: bool = True, error: Exception | None = None) -> None:
        self.pages = pages
        self._available = available
        self.error = error
        self.calls: list[tuple[str, str, OutputMode]] = []

    def available(self) -> bool:
        return self._available

    def rasterize(self, pdf_path: str, base_name: str, mode: OutputMode) -> list[str]:
        self.calls.append((pdf_path, base_name, mode))
        if self.error is not None:
            raise self.error
        if mode is OutputMode.INLINE_BASE64:
            return ["aGVsbG8=" for _ in range(self.pages)]
        if self.pages == 1:
            return [f"{base_name}.png"]
        return [f"{base_name}-{i}.png" for i in range(self.pages)]


class BlockingRasterizer(FakeRasterizer):
    """Holds the worker thread until released, to observe the event loop meanwhile."""

    def __init__(self) -> None:
        super().__init__(pages=1)
        self.started = threading.Event()
        self.release = threading.Event()

    def rasterize(self, pdf_path: str, base_name: str, mode: OutputMode) -> list[str]:
        self.started.set()
        if not self.release.wait(timeout=10):
            raise ConversionError("not released")
        return super().rasterize(pdf_path, base_name, mode)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    s = Settings(upload_dir=tmp_path / "uploads", raster_dpi=72)
    s.ensure_dirs()
    return s


@pytest.fixture
def make_pdf(tmp_path: Path):
    """Factory writing a small PDF with the requested number of pages."""

    def _make(pages: int = 1, name: str = "sample.pdf") -> Path:
        path = tmp_path / name
        doc = fitz.open()
        for i in range(pages):
            page = doc.new_page(width=200, height=200)
            page.insert_text((20, 50), f"Page {i + 1}")
        doc.save(str(path))
        doc.close()
        return path

    return _make


def pdf_like(size: int) -> bytes:
    """Bytes of an exact size that sniff as a PDF."""
    head = b"%PDF-1.4\n"
    return head + b"0" * (size - len(head))
