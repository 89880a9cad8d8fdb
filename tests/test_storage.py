import zipfile
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from watershed_explorer import storage
from watershed_explorer.exceptions import DownloadError


@pytest.fixture
def fake_context() -> Any:
    noop = lambda *_, **__: None  # noqa: E731
    return SimpleNamespace(log=SimpleNamespace(info=noop, debug=noop, warning=noop, error=noop))


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(storage.time, "sleep", lambda *_: None)


def test_download_file_skips_existing(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, fake_context: Any) -> None:
    dest = tmp_path / "file.zip"
    dest.write_bytes(b"cached")

    def fail(*_: Any) -> None:
        raise AssertionError("should not download")

    monkeypatch.setattr(storage, "_download_file", fail)

    assert storage.download_file(fake_context, "https://example.com/file.zip", dest) == dest
    assert dest.read_bytes() == b"cached"


def test_download_file_overwrites_when_requested(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, fake_context: Any
) -> None:
    dest = tmp_path / "file.zip"
    dest.write_bytes(b"old")

    def fake_download(url: str, dest_path: Path, timeout: float) -> None:
        dest_path.write_bytes(b"new")

    monkeypatch.setattr(storage, "_download_file", fake_download)

    storage.download_file(fake_context, "https://example.com/file.zip", dest, overwrite=True)
    assert dest.read_bytes() == b"new"


def test_download_file_retries_transport_errors(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, fake_context: Any
) -> None:
    """
    Test that transient HTTP errors are retried until the download succeeds.
    """
    calls: list[str] = []

    def flaky_download(url: str, dest_path: Path, timeout: float) -> None:
        calls.append(url)
        if len(calls) < 3:
            raise httpx.ConnectError("connection reset")
        dest_path.write_bytes(b"data")

    monkeypatch.setattr(storage, "_download_file", flaky_download)

    dest = storage.download_file(fake_context, "https://example.com/a.nc", tmp_path / "nested" / "a.nc", retries=3)
    assert len(calls) == 3
    assert dest.read_bytes() == b"data"


def test_download_file_raises_after_last_attempt(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, fake_context: Any
) -> None:
    """
    Test that a persistent failure raises DownloadError and removes the partial file.
    """

    def failing_download(url: str, dest_path: Path, timeout: float) -> None:
        dest_path.write_bytes(b"partial")
        raise httpx.ReadTimeout("timed out")

    monkeypatch.setattr(storage, "_download_file", failing_download)

    dest = tmp_path / "a.nc"
    with pytest.raises(DownloadError) as exc_info:
        storage.download_file(fake_context, "https://example.com/a.nc", dest, retries=2)

    assert exc_info.value.stage == "download"
    assert exc_info.value.params["url"] == "https://example.com/a.nc"
    assert "timed out" in str(exc_info.value)
    assert not dest.exists()


def test_extract_archive_extracts_next_to_archive(tmp_path: Path, fake_context: Any) -> None:
    archive = tmp_path / "basins.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("inner/basins.shp", b"shp")

    out_dir = storage.extract_archive(fake_context, archive)
    assert out_dir == tmp_path / "basins"
    assert storage.find_vector_layer(out_dir) == out_dir / "inner" / "basins.shp"


def test_extract_archive_rejects_invalid_zip(tmp_path: Path, fake_context: Any) -> None:
    archive = tmp_path / "broken.zip"
    archive.write_bytes(b"not a zip")

    with pytest.raises(DownloadError) as exc_info:
        storage.extract_archive(fake_context, archive)
    assert exc_info.value.stage == "extract"


def test_find_vector_layer_requires_exactly_one(tmp_path: Path) -> None:
    with pytest.raises(DownloadError, match="No .shp layer"):
        storage.find_vector_layer(tmp_path)

    (tmp_path / "a.shp").write_bytes(b"")
    (tmp_path / "b.shp").write_bytes(b"")
    with pytest.raises(DownloadError, match="found 2"):
        storage.find_vector_layer(tmp_path)


def test_filename_from_url_drops_query_string() -> None:
    assert storage.filename_from_url("https://host/a/b/tas_2050.nc?se=2025&sig=abc") == "tas_2050.nc"
    assert storage.filename_from_url("https://host/", default="fallback") == "fallback"


def test_create_io_manager_uses_data_dir(tmp_path: Path) -> None:
    manager = storage.create_io_manager(SimpleNamespace(data_dir=str(tmp_path)))
    assert manager.base_dir == str(tmp_path / "dagster")
