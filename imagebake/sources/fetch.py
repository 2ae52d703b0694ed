"""Source fetch module.

This module handles:
- Cloning a source repository into the sources directory
- Updating an existing checkout (stashing local changes first)
- Checking out the requested branch and its submodules

git is invoked as an external command with an explicit working directory.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence
from pathlib import Path

from imagebake.errors import SourceFetchError
from imagebake.types import BuildConfiguration

logger = logging.getLogger(__name__)

GIT = "git"


def run_git(
    args: Sequence[str],
    cwd: Path,
    code: str = "git_error",
) -> str:
    """Run a git command and return its stdout.

    Args:
        args: Arguments after ``git``.
        cwd: Working directory for the command.
        code: Error code used if the command fails.

    Returns:
        Standard output of the command.

    Raises:
        SourceFetchError: If git cannot be run or exits non-zero.
    """
    cmd = [GIT, *args]
    logger.debug("Running %s in %s", shlex.join(cmd), cwd)
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
    except subprocess.CalledProcessError as e:
        details = (e.stderr or "").strip() or (e.stdout or "").strip() or str(e)
        raise SourceFetchError(
            f"Command failed: {shlex.join(cmd)}\n{details}",
            code=code,
        ) from e
    except OSError as e:
        raise SourceFetchError(
            f"Failed to run {shlex.join(cmd)}: {e}",
            code="execution_error",
        ) from e
    return result.stdout


def has_local_changes(repo_dir: Path) -> bool:
    """Return True if the working tree differs from HEAD."""
    try:
        result = subprocess.run(
            [GIT, "diff-index", "--quiet", "HEAD", "--"],
            cwd=repo_dir,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        raise SourceFetchError(
            f"Failed to run git diff-index: {e}",
            code="execution_error",
        ) from e
    return result.returncode != 0


def stash_changes(repo_dir: Path) -> bool:
    """Stash uncommitted changes.

    A failure is logged and reported, never raised: a dirty tree must not
    block the update.

    Returns:
        True if the changes were stashed.
    """
    logger.info("Stashing local changes in %s", repo_dir)
    try:
        run_git(["stash"], cwd=repo_dir, code="stash_failed")
    except SourceFetchError as e:
        logger.error("Failed to stash local changes in %s: %s", repo_dir, e)
        return False
    return True


def clone_repository(url: str, dest: Path) -> None:
    """Clone a repository to dest."""
    logger.info("Cloning %s into %s", url, dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    run_git(["clone", url, str(dest)], cwd=dest.parent, code="clone_failed")


def update_repository(repo_dir: Path) -> None:
    """Fetch updates from origin, stashing local changes first."""
    logger.info("Updating %s from origin", repo_dir)
    if has_local_changes(repo_dir):
        stash_changes(repo_dir)
    run_git(["fetch", "origin"], cwd=repo_dir, code="fetch_failed")


def checkout_branch(repo_dir: Path, branch: str) -> None:
    """Check out branch at the fetched remote tip and update submodules."""
    logger.info("Checking out branch %s", branch)
    run_git(
        ["checkout", "-B", branch, f"origin/{branch}"],
        cwd=repo_dir,
        code="checkout_failed",
    )
    run_git(
        ["submodule", "update", "--init", "--recursive"],
        cwd=repo_dir,
        code="submodule_failed",
    )


def fetch_source(config: BuildConfiguration) -> Path:
    """Make the source working directory available and up to date.

    For git sources the directory is cloned or updated and the requested
    branch checked out. Local sources must already exist.

    Args:
        config: Build configuration.

    Returns:
        Path to the source directory.

    Raises:
        SourceFetchError: If any git step fails or a local source is missing.
    """
    source_dir = config.source_dir

    if config.repository is None:
        if not source_dir.is_dir():
            raise SourceFetchError(
                f"Source directory not found: {source_dir}",
                code="source_missing",
            )
        logger.info("Using local source %s", source_dir)
        return source_dir

    if (source_dir / ".git").is_dir():
        update_repository(source_dir)
    else:
        clone_repository(config.repository, source_dir)

    checkout_branch(source_dir, config.branch)
    return source_dir


__all__ = [
    "checkout_branch",
    "clone_repository",
    "fetch_source",
    "has_local_changes",
    "run_git",
    "stash_changes",
    "update_repository",
]
