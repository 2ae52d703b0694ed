"""Packer release fetch module.

This module handles:
- URL composition for official Packer release archives
- Download into the archive cache
- Extraction into the installation directory
"""

from __future__ import annotations

import logging
import platform
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

import httpx

from imagebake.config import PACKER_DOWNLOAD_BASE
from imagebake.errors import DownloadError, ExtractionError

logger = logging.getLogger(__name__)

# Timeout for downloads (seconds)
DOWNLOAD_TIMEOUT = 3600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB


@dataclass
class PackerArchive:
    """Location of a Packer release archive."""

    url: str
    filename: str


@dataclass
class DownloadResult:
    """Result of a Packer archive download."""

    archive_path: Path
    size_bytes: int
    cached: bool = False


def host_os() -> str:
    """Return the lower-cased kernel name (linux, darwin, ...)."""
    return platform.system().lower()


def build_packer_url(
    version: str,
    os_name: str | None = None,
    arch: str = "amd64",
    base_url: str = PACKER_DOWNLOAD_BASE,
) -> PackerArchive:
    """Build the URL of a Packer release archive.

    Args:
        version: Packer version (e.g., '1.11.2').
        os_name: Operating system name; the host's if not provided.
        arch: Architecture suffix.
        base_url: Base URL for Packer releases.

    Returns:
        PackerArchive with URL and archive filename.
    """
    os_name = os_name or host_os()
    filename = f"packer_{version}_{os_name}_{arch}.zip"
    return PackerArchive(
        url=f"{base_url.rstrip('/')}/{version}/{filename}",
        filename=filename,
    )


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> DownloadResult:
    """Download a file.

    The response is written to a temporary file next to dest_path and
    moved into place once complete, so an interrupted download never
    leaves a partial archive behind.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        timeout: Download timeout in seconds.
        chunk_size: Size of chunks to download.

    Returns:
        DownloadResult with path and size.

    Raises:
        DownloadError: If download fails.
    """
    logger.info("Downloading %s to %s", url, dest_path)

    dest_path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        dir=dest_path.parent, suffix=".tmp", delete=False
    ) as tmp_file:
        tmp_path = Path(tmp_file.name)

    try:
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()

            total_bytes = 0
            with tmp_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    total_bytes += len(chunk)

        shutil.move(str(tmp_path), str(dest_path))
        logger.info("Downloaded %s (%d bytes)", dest_path.name, total_bytes)
        return DownloadResult(archive_path=dest_path, size_bytes=total_bytes)

    except httpx.HTTPStatusError as e:
        raise DownloadError(
            f"Packer archive {dest_path.name} not available at {url} "
            f"(HTTP {e.response.status_code})",
            code="http_error",
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadError(
            f"Packer archive {dest_path.name} not received from {url} "
            f"within {timeout:.0f}s",
            code="timeout",
        ) from e
    except httpx.RequestError as e:
        raise DownloadError(
            f"Cannot reach {url} to fetch Packer archive {dest_path.name}: {e}",
            code="network_error",
        ) from e
    finally:
        tmp_path.unlink(missing_ok=True)


def fetch_archive(
    client: httpx.Client,
    archive: PackerArchive,
    cache_dir: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> DownloadResult:
    """Return the cached archive, downloading it if missing.

    The cache is keyed by archive filename only.

    Args:
        client: HTTPX client instance.
        archive: Archive to fetch.
        cache_dir: Archive cache directory.
        timeout: Download timeout in seconds.

    Returns:
        DownloadResult; ``cached`` is True if no download happened.
    """
    archive_path = cache_dir / archive.filename
    if archive_path.is_file():
        logger.info("Using cached archive %s", archive_path)
        return DownloadResult(
            archive_path=archive_path,
            size_bytes=archive_path.stat().st_size,
            cached=True,
        )
    return download_file(client, archive.url, archive_path, timeout=timeout)


def extract_archive(archive_path: Path, dest_dir: Path) -> None:
    """Extract a Packer zip archive with the system unzip command.

    Args:
        archive_path: Path to the archive file.
        dest_dir: Destination directory for extraction.

    Raises:
        ExtractionError: If extraction fails.
    """
    logger.info("Extracting %s to %s", archive_path.name, dest_dir)

    try:
        result = subprocess.run(
            ["unzip", "-o", "-q", str(archive_path), "-d", str(dest_dir)],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        raise ExtractionError(
            f"Failed to run unzip: {e}",
            code="execution_error",
        ) from e

    if result.returncode != 0:
        raise ExtractionError(
            f"Failed to extract {archive_path}: {result.stderr.strip()}",
            code="unzip_error",
        )


__all__ = [
    "DOWNLOAD_TIMEOUT",
    "DownloadResult",
    "PackerArchive",
    "build_packer_url",
    "download_file",
    "extract_archive",
    "fetch_archive",
    "host_os",
]
