"""Build runner for executing packer build.

This module handles:
- Composing `packer build` commands from a build configuration
- Composing the environment seen by Packer
- Executing builds, streaming output to the terminal and the run log
- Enforcing build timeouts and checking the exit status
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from imagebake.errors import BuildExecutionError
from imagebake.logs import flush_logging

if TYPE_CHECKING:
    from imagebake.config import Settings
    from imagebake.types import BuildConfiguration

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Result of a successful build execution.

    Attributes:
        exit_code: Process exit code.
        artifacts_dir: Directory Packer was told to write artifacts to.
        log_path: Path to the log file holding the build output.
        started_at: Build start time.
        finished_at: Build finish time.
        command: The command that was executed.
    """

    exit_code: int
    artifacts_dir: Path
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str


def compose_packer_command(
    packer_bin: Path | str,
    template: Path | str,
    platforms: tuple[str, ...] | list[str] = (),
    user_data: tuple[str, ...] | list[str] = (),
) -> list[str]:
    """Compose the `packer build` command.

    Args:
        packer_bin: Packer binary.
        template: Template descriptor path.
        platforms: Builders to restrict the build to (all if empty).
        user_data: NAME=VALUE variables, in order.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [str(packer_bin), "build", "-force"]

    if platforms:
        cmd.extend(["-only", ",".join(platforms)])

    for entry in user_data:
        cmd.extend(["-var", entry])

    cmd.append(str(template))
    return cmd


def compose_build_env(
    config: BuildConfiguration,
    settings: Settings,
    extra_env: dict[str, str] | None = None,
) -> dict[str, str]:
    """Compose the environment for Packer.

    Extra variables (from sources.cfg and hooks) are applied first, so the
    variables set here always win.
    """
    env = dict(os.environ)
    if extra_env:
        env.update(extra_env)

    env.update(
        {
            "ARTIFACTS_DIR": str(settings.artifacts_dir),
            "VERSION": config.version,
            "PACKER_CACHE_DIR": str(settings.cache_dir),
            "TMPDIR": str(settings.tmp_dir),
        }
    )
    path = env.get("PATH", "")
    env["PATH"] = (
        f"{settings.packer_dir}{os.pathsep}{path}" if path else str(settings.packer_dir)
    )
    return env


def _stream_output(
    process: subprocess.Popen[str],
    log_file: TextIO,
    stream: TextIO,
) -> None:
    """Copy process output line by line to the stream and the log file."""
    assert process.stdout is not None
    for line in process.stdout:
        stream.write(line)
        stream.flush()
        log_file.write(line)
        log_file.flush()


def run_build(
    config: BuildConfiguration,
    settings: Settings,
    packer_bin: Path | None = None,
    extra_env: dict[str, str] | None = None,
    stream: TextIO | None = None,
) -> BuildResult:
    """Execute packer build for a source.

    Args:
        config: Build configuration.
        settings: Application settings.
        packer_bin: Packer binary (the installed one if not provided).
        extra_env: Additional environment variables.
        stream: Where to echo build output (stdout if not provided).

    Returns:
        BuildResult with execution details.

    Raises:
        BuildExecutionError: If the template is missing, the build cannot
            start, times out or exits non-zero.
    """
    template = config.source_dir / settings.template_name
    if not template.is_file():
        raise BuildExecutionError(
            f"Template not found: {template}",
            code="template_missing",
        )

    if packer_bin is None:
        packer_bin = settings.packer_bin
    if stream is None:
        stream = sys.stdout

    settings.artifacts_dir.mkdir(parents=True, exist_ok=True)
    settings.cache_dir.mkdir(parents=True, exist_ok=True)
    settings.tmp_dir.mkdir(parents=True, exist_ok=True)
    log_path = settings.log_path
    log_path.parent.mkdir(parents=True, exist_ok=True)

    cmd = compose_packer_command(
        packer_bin,
        settings.template_name,
        platforms=config.platforms,
        user_data=config.user_data,
    )
    env = compose_build_env(config, settings, extra_env)
    timeout = settings.build_timeout

    cmd_str = shlex.join(cmd)
    logger.info("Executing build: %s", cmd_str)
    logger.info("Working directory: %s", config.source_dir)
    logger.info("Artifacts directory: %s", settings.artifacts_dir)

    started_at = datetime.now(timezone.utc)
    timed_out = threading.Event()
    flush_logging()

    try:
        with log_path.open("a", encoding="utf-8") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# CWD: {config.source_dir}\n")
            log_file.write("# " + "=" * 70 + "\n")
            log_file.flush()

            with subprocess.Popen(
                cmd,
                cwd=config.source_dir,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            ) as process:
                timer: threading.Timer | None = None
                if timeout:

                    def _kill() -> None:
                        timed_out.set()
                        process.kill()

                    timer = threading.Timer(timeout, _kill)
                    timer.start()
                try:
                    _stream_output(process, log_file, stream)
                    exit_code = process.wait()
                finally:
                    if timer is not None:
                        timer.cancel()

            finished_at = datetime.now(timezone.utc)
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {exit_code}\n")
            log_file.write(f"# Duration: {duration:.1f}s\n")

    except OSError as e:
        raise BuildExecutionError(
            f"Failed to execute build: {e}",
            code="execution_error",
        ) from e

    if timed_out.is_set():
        raise BuildExecutionError(
            f"Build timed out after {timeout} seconds. See log: {log_path}",
            exit_code=exit_code,
            code="build_timeout",
        )

    if exit_code != 0:
        raise BuildExecutionError(
            f"Build failed with exit code {exit_code}. See log: {log_path}",
            exit_code=exit_code,
        )

    logger.info("Build finished in %.1fs", duration)
    return BuildResult(
        exit_code=exit_code,
        artifacts_dir=settings.artifacts_dir,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        command=cmd_str,
    )


__all__ = [
    "BuildResult",
    "compose_build_env",
    "compose_packer_command",
    "run_build",
]
