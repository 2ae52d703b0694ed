"""Pre-build hooks for sources.

Two extension points run before a build, each as a separate subprocess in
the source directory:

- ``pre_build`` commands declared in the base directory's ``sources.cfg``
- the source's own ``configure`` script, if present

Hooks receive a fixed environment (see ``hook_environment``) and can
export variables to the build by writing ``NAME=VALUE`` lines to the file
named by ``IMAGEBAKE_ENV_FILE``.

Example ``sources.cfg``::

    env:
      HTTP_PROXY: http://proxy.internal:3128
    pre_build:
      - ./scripts/fetch-isos.sh
      - [make, -C, files]
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from imagebake.errors import HookError
from imagebake.types import BuildConfiguration

logger = logging.getLogger(__name__)

CONFIGURE_SCRIPT = "configure"


class SourcesConfig(BaseModel):
    """Schema for sources.cfg.

    Attributes:
        env: Extra environment variables for hooks and the build.
        pre_build: Commands run before every build, in order.
    """

    model_config = ConfigDict(extra="forbid")

    env: dict[str, str] = Field(
        default_factory=dict, description="Extra environment variables"
    )
    pre_build: list[list[str]] = Field(
        default_factory=list, description="Pre-build hook commands"
    )

    @field_validator("env", mode="before")
    @classmethod
    def stringify_env(cls, v: Any) -> Any:
        """Allow YAML scalars (numbers, booleans) as values."""
        if isinstance(v, dict):
            return {
                str(key): str(value).lower() if isinstance(value, bool) else str(value)
                for key, value in v.items()
            }
        return v

    @field_validator("pre_build", mode="before")
    @classmethod
    def split_commands(cls, v: Any) -> Any:
        """Split string commands with shell-like rules."""
        if isinstance(v, str):
            v = [v]
        if isinstance(v, list):
            return [shlex.split(cmd) if isinstance(cmd, str) else cmd for cmd in v]
        return v

    @field_validator("pre_build")
    @classmethod
    def validate_commands(cls, v: list[list[str]]) -> list[list[str]]:
        """Reject empty commands."""
        for cmd in v:
            if not cmd:
                raise ValueError("pre_build commands must not be empty")
        return v


@dataclass
class HookResult:
    """Result of running the pre-build hooks."""

    commands: list[str] = field(default_factory=list)
    exported_env: dict[str, str] = field(default_factory=dict)


def load_sources_config(path: Path) -> SourcesConfig:
    """Load sources.cfg.

    Args:
        path: Path to sources.cfg.

    Returns:
        Parsed configuration; defaults if the file does not exist.

    Raises:
        HookError: If the file is not valid YAML or fails validation.
    """
    if not path.exists():
        return SourcesConfig()

    logger.info("Loading %s", path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise HookError(f"Cannot read {path}: {e}", code="invalid_config") from e

    if data is None:
        return SourcesConfig()
    if not isinstance(data, dict):
        raise HookError(
            f"Expected a YAML mapping in {path}, got {type(data).__name__}",
            code="invalid_config",
        )

    try:
        return SourcesConfig.model_validate(data)
    except ValidationError as e:
        raise HookError(f"Invalid {path}: {e}", code="invalid_config") from e


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse NAME=VALUE lines written by hooks.

    Blank lines and ``#`` comments are ignored; an optional ``export``
    prefix is accepted.
    """
    exported: dict[str, str] = {}
    if not path.exists():
        return exported

    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        name, sep, value = line.partition("=")
        if not sep or not name:
            logger.warning("Ignoring malformed line in hook env file: %s", line)
            continue
        exported[name.strip()] = value
    return exported


def hook_environment(
    config: BuildConfiguration,
    artifacts_dir: Path,
    tmp_dir: Path,
    env_file: Path,
    extra_env: dict[str, str] | None = None,
) -> dict[str, str]:
    """Compose the environment passed to hook commands."""
    env = dict(os.environ)
    if extra_env:
        env.update(extra_env)
    env.update(
        {
            "IMAGEBAKE_SOURCE": config.source,
            "IMAGEBAKE_SOURCE_DIR": str(config.source_dir),
            "IMAGEBAKE_VERSION": config.version,
            "IMAGEBAKE_BRANCH": config.branch,
            "IMAGEBAKE_ARTIFACTS_DIR": str(artifacts_dir),
            "IMAGEBAKE_ENV_FILE": str(env_file),
            "TMPDIR": str(tmp_dir),
        }
    )
    return env


def configure_command(source_dir: Path) -> list[str] | None:
    """Return the command running the source's configure script, if any."""
    script = source_dir / CONFIGURE_SCRIPT
    if not script.is_file():
        return None
    if os.access(script, os.X_OK):
        return [str(script)]
    return ["sh", str(script)]


def run_hook(
    cmd: list[str],
    cwd: Path,
    env: dict[str, str],
    timeout: int | None = None,
) -> None:
    """Run a single hook command.

    Raises:
        HookError: If the command cannot start, times out or exits non-zero.
    """
    cmd_str = shlex.join(cmd)
    logger.info("Running hook: %s", cmd_str)
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise HookError(
            f"Hook timed out after {timeout} seconds: {cmd_str}",
            code="hook_timeout",
        ) from e
    except OSError as e:
        raise HookError(
            f"Failed to run hook {cmd_str}: {e}",
            code="execution_error",
        ) from e

    for line in (result.stdout + result.stderr).splitlines():
        logger.debug("[hook] %s", line)

    if result.returncode != 0:
        details = result.stderr.strip() or result.stdout.strip()
        message = f"Hook failed with exit code {result.returncode}: {cmd_str}"
        if details:
            message = f"{message}\n{details}"
        raise HookError(message)


def run_hooks(
    config: BuildConfiguration,
    sources_config: SourcesConfig,
    artifacts_dir: Path,
    tmp_dir: Path,
    timeout: int | None = None,
) -> HookResult:
    """Run the pre-build hooks for a source.

    Runs sources.cfg ``pre_build`` commands, then the source's configure
    script, all in the source directory.

    Args:
        config: Build configuration.
        sources_config: Parsed sources.cfg.
        artifacts_dir: Artifacts output directory.
        tmp_dir: Scratch directory (also holds the env file).
        timeout: Per-hook timeout in seconds.

    Returns:
        HookResult with the commands run and the variables they exported.

    Raises:
        HookError: If any hook fails.
    """
    commands = list(sources_config.pre_build)
    configure = configure_command(config.source_dir)
    if configure is not None:
        commands.append(configure)

    result = HookResult()
    if not commands:
        logger.debug("No pre-build hooks for %s", config.name)
        return result

    tmp_dir.mkdir(parents=True, exist_ok=True)
    fd, env_name = tempfile.mkstemp(prefix="hook-env-", dir=tmp_dir)
    os.close(fd)
    env_file = Path(env_name)

    try:
        env = hook_environment(
            config, artifacts_dir, tmp_dir, env_file, sources_config.env
        )
        for cmd in commands:
            run_hook(cmd, cwd=config.source_dir, env=env, timeout=timeout)
            result.commands.append(shlex.join(cmd))
        result.exported_env = parse_env_file(env_file)
    finally:
        env_file.unlink(missing_ok=True)

    if result.exported_env:
        logger.info(
            "Hooks exported: %s", ", ".join(sorted(result.exported_env))
        )
    return result


__all__ = [
    "CONFIGURE_SCRIPT",
    "HookResult",
    "SourcesConfig",
    "configure_command",
    "hook_environment",
    "load_sources_config",
    "parse_env_file",
    "run_hook",
    "run_hooks",
]
