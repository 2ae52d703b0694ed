"""Build orchestration module.

This module handles:
- Composing and running packer build
- Sequencing source fetch, hooks, Packer installation and cleanup
"""

from imagebake.builds.runner import BuildResult, compose_packer_command, run_build
from imagebake.builds.service import RunResult, run_pipeline

__all__ = [
    "BuildResult",
    "RunResult",
    "compose_packer_command",
    "run_build",
    "run_pipeline",
]
