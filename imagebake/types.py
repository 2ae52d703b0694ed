"""Shared type definitions for imagebake.

This module contains dataclasses and enums shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class RunState(str, Enum):
    """State of a build run.

    A run moves through these states in order; any failure jumps to FAILED.
    """

    INIT = "init"
    PARSED = "parsed"
    FETCHED = "fetched"
    CONFIGURED = "configured"
    TOOL_READY = "tool_ready"
    BUILT = "built"
    CLEANED_UP = "cleaned_up"
    FAILED = "failed"


@dataclass(frozen=True)
class BuildConfiguration:
    """Everything a run needs to know, parsed once from the command line.

    Attributes:
        source: Source identifier as given (directory name or git URL).
        source_dir: Resolved working directory under the sources root.
        version: Version string exported to the build.
        repository: Git URL when the source is remote.
        branch: Branch to check out (only used with a repository).
        platforms: Builders to restrict the build to (empty means all).
        user_data: NAME=VALUE variables forwarded to Packer, in order.
    """

    source: str
    source_dir: Path
    version: str
    repository: str | None = None
    branch: str = "master"
    platforms: tuple[str, ...] = ()
    user_data: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        """Local directory name of the source."""
        return self.source_dir.name


__all__ = [
    "BuildConfiguration",
    "RunState",
]
