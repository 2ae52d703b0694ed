"""Packer provisioning module.

This module handles:
- Composing official Packer release URLs
- Downloading archives into the cache and extracting them
- Keeping the pinned Packer version installed
"""

from imagebake.packer.fetch import (
    DownloadResult,
    PackerArchive,
    build_packer_url,
    extract_archive,
    fetch_archive,
)
from imagebake.packer.service import (
    InstallResult,
    ensure_packer,
    get_installed_version,
)

__all__ = [
    # Fetch module
    "DownloadResult",
    "PackerArchive",
    "build_packer_url",
    "extract_archive",
    "fetch_archive",
    # Service module
    "InstallResult",
    "ensure_packer",
    "get_installed_version",
]
