"""Local storage operations: file downloads and archive extraction."""

import time
import zipfile
from pathlib import Path
from typing import Any

import httpx
from dagster import AssetExecutionContext, FilesystemIOManager, OpExecutionContext
from tqdm import tqdm

from watershed_explorer.config.constants import (
    DEFAULT_DOWNLOAD_RETRIES,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_RETRY_DELAY,
    DOWNLOAD_CHUNK_SIZE,
)
from watershed_explorer.exceptions import DownloadError


def download_file(
    context: OpExecutionContext | AssetExecutionContext,
    url: str,
    dest_path: Path,
    overwrite: bool = False,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
    retries: int = DEFAULT_DOWNLOAD_RETRIES,
) -> Path:
    """Download a file to local storage.

    Existing files are kept unless ``overwrite`` is set. Transport errors are
    retried up to ``retries`` attempts, then partial files are removed.

    :param context: Dagster context
    :param url: URL to download from
    :param dest_path: Destination file path
    :param overwrite: Re-download even if the file exists
    :param timeout: HTTP timeout in seconds
    :param retries: Number of attempts
    :returns: Path to the downloaded file
    :raises DownloadError: If every attempt failed
    """
    dest_path = Path(dest_path)
    dest_path.parent.mkdir(parents=True, exist_ok=True)

    if dest_path.exists() and not overwrite:
        context.log.info(f"File already exists, skipping download: {dest_path}")
        return dest_path

    context.log.info(f"Downloading {url} to {dest_path}")
    attempts = max(1, retries)
    for attempt in range(1, attempts + 1):
        try:
            _download_file(url, dest_path, timeout)
            context.log.debug(f"Downloaded {dest_path.name}")
            return dest_path
        except httpx.HTTPError as e:
            if dest_path.exists():
                dest_path.unlink()
            if attempt < attempts:
                context.log.warning(f"Download attempt {attempt} failed: {e}. Retrying in {DEFAULT_RETRY_DELAY}s...")
                time.sleep(DEFAULT_RETRY_DELAY)
            else:
                context.log.error(f"Download failed after {attempts} attempts: {e}")
                raise DownloadError("download", str(e), {"url": url, "dest_path": str(dest_path)}) from e

    raise DownloadError("download", "no download attempt was made", {"url": url})


def _download_file(url: str, dest_path: Path, timeout: float) -> None:
    """Stream a URL to disk with a progress bar.

    :param url: URL to download from
    :param dest_path: Path to save the file
    :param timeout: HTTP timeout in seconds
    :raises httpx.HTTPError: Download failed
    """
    with httpx.Client(timeout=timeout, follow_redirects=True) as client, client.stream("GET", url) as response:
        response.raise_for_status()
        total_size = int(response.headers.get("content-length", 0))

        with tqdm(total=total_size or None, unit="B", unit_scale=True, desc=dest_path.name) as progress_bar:
            with open(dest_path, "wb") as f:
                for chunk in response.iter_bytes(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
                    progress_bar.update(len(chunk))


def extract_archive(
    context: OpExecutionContext | AssetExecutionContext,
    archive_path: Path,
    dest_dir: Path | None = None,
    overwrite: bool = False,
) -> Path:
    """Extract a zip archive next to it (or into ``dest_dir``).

    :param context: Dagster context
    :param archive_path: Zip file path
    :param dest_dir: Extraction directory, defaults to the archive path without suffix
    :param overwrite: Re-extract even if the directory already has content
    :returns: Extraction directory
    :raises DownloadError: If the archive is not a valid zip file
    """
    archive_path = Path(archive_path)
    dest_dir = Path(dest_dir) if dest_dir is not None else archive_path.with_suffix("")

    if dest_dir.exists() and any(dest_dir.iterdir()) and not overwrite:
        context.log.debug(f"Archive already extracted at {dest_dir}")
        return dest_dir

    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(archive_path) as zf:
            zf.extractall(dest_dir)
    except zipfile.BadZipFile as e:
        raise DownloadError("extract", f"Invalid zip archive: {e}", {"archive_path": str(archive_path)}) from e

    context.log.info(f"Extracted {archive_path.name} to {dest_dir}")
    return dest_dir


def find_vector_layer(directory: Path, suffix: str = ".shp") -> Path:
    """Find the single vector layer file inside an extracted archive.

    :param directory: Directory to search recursively
    :param suffix: Layer file suffix
    :returns: Path to the layer
    :raises DownloadError: If no layer or more than one layer is found
    """
    layers = sorted(Path(directory).rglob(f"*{suffix}"))
    if not layers:
        raise DownloadError("extract", f"No {suffix} layer found", {"directory": str(directory)})
    if len(layers) > 1:
        raise DownloadError(
            "extract",
            f"Expected one {suffix} layer, found {len(layers)}",
            {"directory": str(directory), "layers": [p.name for p in layers]},
        )
    return layers[0]


def filename_from_url(url: str, default: str = "download") -> str:
    """Return the last path component of a URL without query string.

    :param url: URL
    :param default: Name used when the URL has no path component
    :returns: File name
    """
    path = httpx.URL(url).path
    name = path.rstrip("/").rsplit("/", 1)[-1]
    return name or default


def create_io_manager(settings_resource: Any) -> FilesystemIOManager:
    """Create a filesystem pickle IO manager under the data directory.

    Asset outputs persist between runs so downstream assets can be
    materialized on their own.

    :param settings_resource: Settings resource with the data directory
    :returns: Configured FilesystemIOManager instance
    """
    return FilesystemIOManager(base_dir=str(Path(settings_resource.data_dir) / "dagster"))
