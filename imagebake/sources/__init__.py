"""Source management module.

This module handles:
- Cloning and updating git-backed sources
- Loading sources.cfg
- Running pre-build hooks
"""

from imagebake.sources.fetch import fetch_source
from imagebake.sources.hooks import (
    HookResult,
    SourcesConfig,
    load_sources_config,
    run_hooks,
)

__all__ = [
    "HookResult",
    "SourcesConfig",
    "fetch_source",
    "load_sources_config",
    "run_hooks",
]
