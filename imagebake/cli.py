"""Thin CLI wrapper for imagebake.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from typer.core import TyperCommand

from imagebake import __version__
from imagebake.builds.service import run_pipeline
from imagebake.config import get_settings, print_settings_json
from imagebake.errors import ImageBakeError, UsageError
from imagebake.logs import configure_logging
from imagebake.options import USAGE, build_configuration

logger = logging.getLogger(__name__)

# click's UsageError; typer only re-exports its BadParameter subclass
CommandLineUsageError = typer.BadParameter.__base__


class ImageBakeCommand(TyperCommand):
    """Command whose malformed invocations exit with status 1.

    Unknown flags and flags missing their value are reported by the
    command-line parser, which would otherwise exit with status 2.
    """

    def parse_args(self, ctx, args):
        try:
            return super().parse_args(ctx, args)
        except CommandLineUsageError as e:
            e.exit_code = 1
            raise


app = typer.Typer(
    name="imagebake",
    help="imagebake - build machine images from Packer sources",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"imagebake version {__version__}")
        raise typer.Exit()


@app.command(cls=ImageBakeCommand)
def main(
    source: Annotated[
        str | None,
        typer.Option(
            "-s",
            "--source",
            help="Source directory name under sources/ or git repository URL",
        ),
    ] = None,
    version: Annotated[
        str | None,
        typer.Option("-v", "--version", help="Version of the images to build"),
    ] = None,
    branch: Annotated[
        str | None,
        typer.Option(
            "-b", "--branch", help="Branch to build (git sources only, default master)"
        ),
    ] = None,
    platforms: Annotated[
        list[str] | None,
        typer.Option(
            "-p",
            "--platforms",
            help="Comma-separated platforms to build (default: all)",
        ),
    ] = None,
    user_data: Annotated[
        list[str] | None,
        typer.Option(
            "-u",
            "--user-data",
            help="NAME=VALUE variable passed to packer (can be repeated)",
        ),
    ] = None,
    show_config: Annotated[
        bool,
        typer.Option("--show-config", help="Show effective configuration and exit"),
    ] = False,
    print_version: Annotated[
        bool | None,
        typer.Option(
            "-V",
            "--print-version",
            help="Show imagebake version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Build machine images from a Packer source.

    The source is fetched (cloned or updated when given as a git URL),
    pre-build hooks are run, the pinned Packer release is installed if
    needed and `packer build` is run against the source's template.
    """
    settings = get_settings()

    if show_config:
        console.print(print_settings_json(settings), soft_wrap=True)
        return

    try:
        config = build_configuration(
            source,
            version,
            settings.sources_dir,
            branch=branch,
            platforms=platforms,
            user_data=user_data,
            default_branch=settings.default_branch,
        )
    except UsageError as e:
        err_console.print(f"[red]Error: {escape(e.message)}[/red]", soft_wrap=True)
        err_console.print(escape(USAGE), soft_wrap=True)
        err_console.print("Try 'imagebake -h' for help.")
        raise typer.Exit(code=1) from None

    configure_logging(settings.log_path, settings.log_level, console=err_console)
    logger.info("imagebake %s: building %s", __version__, config.source)

    try:
        run_pipeline(config, settings)
    except ImageBakeError as e:
        logger.error("%s", e.message)
        logger.error("Build failed, see %s", settings.log_path)
        raise typer.Exit(code=1) from None


if __name__ == "__main__":
    app()
