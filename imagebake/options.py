"""Command-line option handling.

Turns raw option values into a validated BuildConfiguration. Kept free of
any filesystem or network side effects so that bad input is rejected
before a run touches anything.
"""

import re
from pathlib import Path

from imagebake.errors import UsageError
from imagebake.types import BuildConfiguration

# Sources recognised as remote git repositories
REPOSITORY_URL_PATTERN = re.compile(
    r"^((ssh|git|http|https|ftp|ftps|rsync)://|[\w.\-]+@[\w.\-]+:)"
)

USER_DATA_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")

USAGE = (
    "Usage: imagebake -s SOURCE -v VERSION [-b BRANCH] "
    "[-p PLATFORM[,PLATFORM...]] [-u NAME=VALUE]... [-h]"
)


def is_repository_url(source: str) -> bool:
    """Return True if the source looks like a git URL."""
    return REPOSITORY_URL_PATTERN.match(source) is not None


def repository_name(url: str) -> str:
    """Derive the local directory name for a repository URL.

    Trailing slashes and a ``.git`` suffix are dropped and the last path
    segment is kept, e.g. ``git@host:org/repo.git`` -> ``repo``.

    Raises:
        UsageError: If no name can be derived.
    """
    path = url.rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    name = re.split(r"[/:]", path)[-1]
    if not name or name in (".", ".."):
        raise UsageError(f"Cannot derive a source name from {url!r}")
    return name


def parse_platforms(values: list[str] | None) -> tuple[str, ...]:
    """Normalize comma-separated platform lists into single tokens.

    Each value may contain several platforms separated by commas with
    arbitrary spacing; ``-p "linux, windows"`` and ``-p linux -p windows``
    both give ``("linux", "windows")``.
    """
    platforms: list[str] = []
    for value in values or []:
        for token in value.split(","):
            token = token.strip()
            if not token:
                raise UsageError(f"Empty platform name in {value!r}")
            if token not in platforms:
                platforms.append(token)
    return tuple(platforms)


def parse_user_data(values: list[str] | None) -> tuple[str, ...]:
    """Validate NAME=VALUE user-data entries, keeping their order."""
    entries = tuple(values or ())
    for entry in entries:
        if not USER_DATA_PATTERN.match(entry):
            raise UsageError(f"Invalid user data {entry!r}, expected NAME=VALUE")
    return entries


def build_configuration(
    source: str | None,
    version: str | None,
    sources_dir: Path,
    branch: str | None = None,
    platforms: list[str] | None = None,
    user_data: list[str] | None = None,
    default_branch: str = "master",
) -> BuildConfiguration:
    """Create the build configuration from command-line values.

    Args:
        source: Source directory name or git URL (-s).
        version: Version string (-v).
        sources_dir: Root directory for source working copies.
        branch: Branch to check out (-b), only valid for git sources.
        platforms: Platform lists (-p).
        user_data: NAME=VALUE entries (-u).
        default_branch: Branch used when none is given.

    Returns:
        Immutable BuildConfiguration.

    Raises:
        UsageError: On missing or inconsistent options.
    """
    if not source:
        raise UsageError("Missing required option -s SOURCE")
    if not version:
        raise UsageError("Missing required option -v VERSION")

    repository: str | None = None
    if is_repository_url(source):
        repository = source
        name = repository_name(source)
        if branch is not None and not branch.strip():
            raise UsageError("Option -b requires a non-empty branch name")
    else:
        if branch is not None:
            raise UsageError("Option -b requires a git repository URL for -s")
        name = source.rstrip("/")
        if not name or "/" in name or name in (".", ".."):
            raise UsageError(
                f"Invalid source {source!r}, expected a directory name under sources/"
            )

    return BuildConfiguration(
        source=source,
        source_dir=sources_dir / name,
        version=version,
        repository=repository,
        branch=branch or default_branch,
        platforms=parse_platforms(platforms),
        user_data=parse_user_data(user_data),
    )


__all__ = [
    "REPOSITORY_URL_PATTERN",
    "USAGE",
    "build_configuration",
    "is_repository_url",
    "parse_platforms",
    "parse_user_data",
    "repository_name",
]
