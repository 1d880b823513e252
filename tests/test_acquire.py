from __future__ import annotations

import re
from pathlib import Path

import pytest

from conftest import FakeFetcher, pdf_like
from pdf_image_service.config import MAX_SOURCE_BYTES
from pdf_image_service.conversion import (
    FetchError,
    InvalidInput,
    SourceAcquirer,
    StorageError,
    UploadDescriptor,
    UploadError,
    UploadErrorCode,
    sniff_mime,
)


def _upload(settings, data: bytes, name: str = "doc.pdf", declared_size: int | None = None) -> UploadDescriptor:
    settings.incoming_dir.mkdir(parents=True, exist_ok=True)
    temp = settings.incoming_dir / "part-1.part"
    temp.write_bytes(data)
    size = len(data) if declared_size is None else declared_size
    return UploadDescriptor(temp_path=temp, declared_name=name, declared_size=size)


def test_sniff_mime_uses_content_not_name(tmp_path: Path) -> None:
    fake = tmp_path / "fake.pdf"
    fake.write_bytes(b"just some text")
    real = tmp_path / "real.bin"
    real.write_bytes(b"%PDF-1.7\n...")
    assert sniff_mime(fake) == "application/octet-stream"
    assert sniff_mime(real) == "application/pdf"


def test_sniff_mime_recognizes_png(tmp_path: Path) -> None:
    from PIL import Image

    p = tmp_path / "img.dat"
    Image.new("RGB", (4, 4)).save(p, format="PNG")
    assert sniff_mime(p) == "image/png"


def test_upload_moved_into_sources_dir(settings, make_pdf) -> None:
    acquirer = SourceAcquirer(settings, FakeFetcher())
    upload = _upload(settings, make_pdf(1).read_bytes(), name="My Report.pdf")

    stored = acquirer.acquire_upload(upload)

    assert stored.path.parent == settings.sources_dir
    assert stored.path.exists()
    assert not upload.temp_path.exists()
    assert re.fullmatch(r"MyReport_[0-9a-f]{8}", stored.base_name)
    assert stored.path.name == f"{stored.base_name}.pdf"


def test_upload_same_name_never_collides(settings, make_pdf) -> None:
    acquirer = SourceAcquirer(settings, FakeFetcher())
    data = make_pdf(1).read_bytes()
    first = acquirer.acquire_upload(_upload(settings, data, name="same.pdf"))
    second = acquirer.acquire_upload(_upload(settings, data, name="same.pdf"))
    assert first.path != second.path
    assert first.path.exists() and second.path.exists()


def test_upload_error_code_is_reported(settings) -> None:
    acquirer = SourceAcquirer(settings, FakeFetcher())
    upload = UploadDescriptor(
        temp_path=settings.incoming_dir / "missing.part",
        declared_name="doc.pdf",
        declared_size=0,
        error_code=UploadErrorCode.PARTIAL,
    )
    with pytest.raises(UploadError) as exc_info:
        acquirer.acquire_upload(upload)
    assert exc_info.value.code == UploadErrorCode.PARTIAL
    assert "partially uploaded" in str(exc_info.value)


@pytest.mark.parametrize("name", ["doc.pdf", "doc.txt", "noext"])
def test_upload_non_pdf_rejected_regardless_of_name(settings, name: str) -> None:
    acquirer = SourceAcquirer(settings, FakeFetcher())
    with pytest.raises(InvalidInput, match="Only PDF"):
        acquirer.acquire_upload(_upload(settings, b"<html>not a pdf</html>", name=name))


def test_upload_exactly_at_limit_accepted(settings) -> None:
    acquirer = SourceAcquirer(settings, FakeFetcher())
    stored = acquirer.acquire_upload(_upload(settings, pdf_like(MAX_SOURCE_BYTES)))
    assert stored.path.stat().st_size == MAX_SOURCE_BYTES


def test_upload_one_byte_over_limit_rejected(settings) -> None:
    acquirer = SourceAcquirer(settings, FakeFetcher())
    with pytest.raises(InvalidInput, match="too large"):
        acquirer.acquire_upload(_upload(settings, pdf_like(MAX_SOURCE_BYTES + 1)))


def test_upload_declared_size_over_limit_rejected(settings) -> None:
    acquirer = SourceAcquirer(settings, FakeFetcher())
    with pytest.raises(InvalidInput, match="too large"):
        acquirer.acquire_upload(_upload(settings, pdf_like(100), declared_size=MAX_SOURCE_BYTES + 1))


def test_upload_rejection_leaves_temp_file_to_caller(settings) -> None:
    acquirer = SourceAcquirer(settings, FakeFetcher())
    upload = _upload(settings, b"not a pdf")
    with pytest.raises(InvalidInput):
        acquirer.acquire_upload(upload)
    assert upload.temp_path.exists()


def test_upload_move_failure_is_storage_error(settings, make_pdf, monkeypatch) -> None:
    acquirer = SourceAcquirer(settings, FakeFetcher())
    upload = _upload(settings, make_pdf(1).read_bytes())

    def refuse(src, dst):
        raise OSError(13, "Permission denied")

    monkeypatch.setattr("pdf_image_service.conversion.acquire.os.replace", refuse)
    with pytest.raises(StorageError, match="Failed to store uploaded file"):
        acquirer.acquire_upload(upload)
    # the part stays where it was; discarding it is the caller's job
    assert upload.temp_path.exists()
    assert list(settings.sources_dir.iterdir()) == []


@pytest.mark.parametrize("url", ["", "not a url", "ftp://example.com/a.pdf", "http://", "file:///etc/passwd"])
def test_url_syntax_validated(settings, url: str) -> None:
    fetcher = FakeFetcher(pdf_like(100))
    with pytest.raises(InvalidInput, match="Invalid URL"):
        SourceAcquirer(settings, fetcher).acquire_url(url)
    assert fetcher.dest is None


def test_url_uses_content_disposition_name(settings) -> None:
    fetcher = FakeFetcher(pdf_like(100), filename="Quarterly Report.pdf")
    stored = SourceAcquirer(settings, fetcher).acquire_url("https://example.com/download?id=7")
    assert stored.base_name.startswith("QuarterlyReport_")
    assert stored.path.exists()


def test_url_falls_back_to_path_segment(settings) -> None:
    fetcher = FakeFetcher(pdf_like(100))
    stored = SourceAcquirer(settings, fetcher).acquire_url("https://example.com/files/annual%20report.pdf")
    assert stored.base_name.startswith("annualreport_")


def test_url_without_name_uses_fallback(settings) -> None:
    fetcher = FakeFetcher(pdf_like(100))
    stored = SourceAcquirer(settings, fetcher).acquire_url("https://example.com/")
    assert stored.base_name.startswith("downloaded_file_")


def test_url_non_pdf_is_removed(settings) -> None:
    fetcher = FakeFetcher(b"<html>login page</html>")
    with pytest.raises(InvalidInput, match="Only PDF"):
        SourceAcquirer(settings, fetcher).acquire_url("https://example.com/a.pdf")
    assert fetcher.dest is not None
    assert not fetcher.dest.exists()
    assert list(settings.sources_dir.iterdir()) == []


def test_url_oversized_is_removed(settings) -> None:
    fetcher = FakeFetcher(pdf_like(MAX_SOURCE_BYTES + 1))
    with pytest.raises(InvalidInput, match="too large"):
        SourceAcquirer(settings, fetcher).acquire_url("https://example.com/a.pdf")
    assert fetcher.dest is not None
    assert not fetcher.dest.exists()


def test_url_exactly_at_limit_accepted(settings) -> None:
    fetcher = FakeFetcher(pdf_like(MAX_SOURCE_BYTES))
    stored = SourceAcquirer(settings, fetcher).acquire_url("https://example.com/a.pdf")
    assert stored.path.stat().st_size == MAX_SOURCE_BYTES


def test_url_fetch_failure_propagates_and_cleans_up(settings) -> None:
    fetcher = FakeFetcher(pdf_like(100), error=FetchError("connection reset"))
    with pytest.raises(FetchError):
        SourceAcquirer(settings, fetcher).acquire_url("https://example.com/a.pdf")
    assert fetcher.dest is not None
    assert not fetcher.dest.exists()
