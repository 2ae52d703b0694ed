"""Build orchestration service.

This module provides the high-level build API:
- run_pipeline(): fetch the source, run hooks, ensure Packer, build, clean up
- cleanup_legacy_cache(): remove the per-source packer_cache leftover

The pipeline is strictly sequential. Each step only runs if the previous
one succeeded; any failure marks the run FAILED and propagates.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

import httpx

from imagebake.builds.runner import BuildResult, run_build
from imagebake.config import get_settings
from imagebake.packer.service import InstallResult, ensure_packer
from imagebake.sources.fetch import fetch_source
from imagebake.sources.hooks import HookResult, load_sources_config, run_hooks
from imagebake.types import BuildConfiguration, RunState

if TYPE_CHECKING:
    from imagebake.config import Settings

logger = logging.getLogger(__name__)

# Directory Packer used for its cache before PACKER_CACHE_DIR was exported
LEGACY_CACHE_DIR = "packer_cache"


@dataclass
class RunResult:
    """Outcome of a pipeline run."""

    state: RunState = RunState.PARSED
    hooks: HookResult | None = None
    install: InstallResult | None = None
    build: BuildResult | None = None


def cleanup_legacy_cache(source_dir: Path) -> bool:
    """Remove an empty legacy packer_cache directory.

    Non-empty or missing directories are left alone.

    Returns:
        True if the directory was removed.
    """
    legacy = source_dir / LEGACY_CACHE_DIR
    try:
        legacy.rmdir()
    except OSError:
        return False
    logger.debug("Removed empty %s", legacy)
    return True


def run_pipeline(
    config: BuildConfiguration,
    settings: Settings | None = None,
    client: httpx.Client | None = None,
    stream: TextIO | None = None,
    on_state: Callable[[RunState], None] | None = None,
) -> RunResult:
    """Run a complete build for a source.

    Steps, in order: fetch source, run hooks, ensure Packer, build, clean up.

    Args:
        config: Parsed build configuration.
        settings: Application settings (uses defaults if not provided).
        client: HTTPX client used for the Packer download.
        stream: Where to echo build output (stdout if not provided).
        on_state: Called with every state the run enters.

    Returns:
        RunResult in state CLEANED_UP.

    Raises:
        ImageBakeError: From the step that failed; the result state is FAILED.
    """
    if settings is None:
        settings = get_settings()

    result = RunResult()

    def advance(state: RunState) -> None:
        result.state = state
        logger.debug("Run state: %s", state.value)
        if on_state is not None:
            on_state(state)

    try:
        logger.info("Fetching source %s", config.source)
        fetch_source(config)
        advance(RunState.FETCHED)

        sources_config = load_sources_config(settings.sources_cfg_path)
        result.hooks = run_hooks(
            config,
            sources_config,
            artifacts_dir=settings.artifacts_dir,
            tmp_dir=settings.tmp_dir,
            timeout=settings.hook_timeout,
        )
        advance(RunState.CONFIGURED)

        result.install = ensure_packer(settings, client=client)
        advance(RunState.TOOL_READY)

        extra_env = {**sources_config.env, **result.hooks.exported_env}
        logger.info("Building %s version %s", config.name, config.version)
        result.build = run_build(
            config,
            settings,
            packer_bin=result.install.packer_bin,
            extra_env=extra_env,
            stream=stream,
        )
        advance(RunState.BUILT)
    except Exception:
        advance(RunState.FAILED)
        raise

    cleanup_legacy_cache(config.source_dir)
    advance(RunState.CLEANED_UP)
    logger.info("Build of %s %s complete", config.name, config.version)
    return result


__all__ = [
    "LEGACY_CACHE_DIR",
    "RunResult",
    "cleanup_legacy_cache",
    "run_pipeline",
]
