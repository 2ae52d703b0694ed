"""Packer installation service.

This module provides the high-level API for provisioning Packer:
- get_installed_version(): Query the version of the installed binary
- ensure_packer(): Install the pinned version unless already present

Installation is idempotent: a matching installed version returns
immediately, and cached archives are reused.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from imagebake.config import get_settings
from imagebake.errors import ExtractionError, InstallError
from imagebake.packer.fetch import build_packer_url, extract_archive, fetch_archive

if TYPE_CHECKING:
    from imagebake.config import Settings

logger = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(r"v?(\d+\.\d+\.\d+[\w.\-+]*)")


@dataclass
class InstallResult:
    """Result of ensure_packer().

    Attributes:
        version: Installed Packer version.
        packer_bin: Path to the Packer binary.
        installed: Whether a new installation was performed.
        downloaded: Whether the archive was downloaded (False if cached).
    """

    version: str
    packer_bin: Path
    installed: bool = False
    downloaded: bool = False


def parse_version(output: str) -> str | None:
    """Extract the version token from ``packer version`` output.

    Handles both ``Packer v1.11.2`` and bare ``1.11.2``.
    """
    first_line = output.strip().splitlines()[0] if output.strip() else ""
    match = VERSION_PATTERN.search(first_line)
    return match.group(1) if match else None


def get_installed_version(packer_bin: Path) -> str | None:
    """Return the version of the installed Packer binary.

    Args:
        packer_bin: Path to the Packer binary.

    Returns:
        Version string, or None if not installed or not runnable.
    """
    if not packer_bin.is_file():
        return None

    try:
        result = subprocess.run(
            [str(packer_bin), "version"],
            capture_output=True,
            text=True,
            timeout=60,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning("Cannot query installed Packer version: %s", e)
        return None

    return parse_version(result.stdout)


def ensure_packer(
    settings: Settings | None = None,
    client: httpx.Client | None = None,
) -> InstallResult:
    """Ensure the pinned Packer version is installed.

    It:
    1. Returns immediately if the installed version matches
    2. Otherwise recreates the installation directory
    3. Fetches the release archive (reusing the cache)
    4. Extracts it into the installation directory

    Args:
        settings: Application settings (uses defaults if not provided).
        client: HTTPX client (creates one if not provided).

    Returns:
        InstallResult for the pinned version.

    Raises:
        InstallError: If the installation directory cannot be prepared or
            the archive holds no Packer binary.
        DownloadError: If download fails.
        ExtractionError: If extraction fails.
    """
    if settings is None:
        settings = get_settings()

    target = settings.packer_version
    packer_bin = settings.packer_bin

    installed = get_installed_version(packer_bin)
    if installed == target:
        logger.info("Packer %s already installed", target)
        return InstallResult(version=target, packer_bin=packer_bin)

    if installed:
        logger.info("Replacing Packer %s with %s", installed, target)
    else:
        logger.info("Installing Packer %s", target)

    try:
        shutil.rmtree(settings.packer_dir, ignore_errors=True)
        settings.packer_dir.mkdir(parents=True)
        settings.cache_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise InstallError(
            f"Cannot prepare {settings.packer_dir}: {e}",
            code="directory_error",
        ) from e

    archive = build_packer_url(
        target,
        arch=settings.packer_arch,
        base_url=settings.packer_download_base,
    )

    owns_client = client is None
    if client is None:
        client = httpx.Client(follow_redirects=True)
    try:
        download = fetch_archive(
            client,
            archive,
            settings.cache_dir,
            timeout=settings.download_timeout,
        )
    finally:
        if owns_client:
            client.close()

    try:
        extract_archive(download.archive_path, settings.packer_dir)
    except ExtractionError:
        # A corrupt cached archive would otherwise fail every later run
        if download.cached:
            logger.warning("Removing unusable cached archive %s", download.archive_path)
            download.archive_path.unlink(missing_ok=True)
        raise

    if not packer_bin.is_file():
        raise InstallError(
            f"Archive {download.archive_path.name} does not contain {packer_bin.name}",
            code="binary_missing",
        )

    logger.info("Installed Packer %s to %s", target, settings.packer_dir)
    return InstallResult(
        version=target,
        packer_bin=packer_bin,
        installed=True,
        downloaded=not download.cached,
    )


__all__ = [
    "InstallResult",
    "ensure_packer",
    "get_installed_version",
    "parse_version",
]
