"""Tests for the CLI.

These tests verify option handling and exit codes without network
access or external tools; the pipeline itself is mocked.
"""

import json
import logging
import os
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from imagebake import __version__
from imagebake.cli import app
from imagebake.errors import BuildExecutionError
from imagebake.logs import LOGGER_NAME
from imagebake.types import BuildConfiguration

runner = CliRunner()


@pytest.fixture(autouse=True)
def base_dir(tmp_path):
    """Point the base directory at a temporary directory."""
    with patch.dict(os.environ, {"IMAGEBAKE_BASE_DIR": str(tmp_path)}):
        yield tmp_path
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def mock_pipeline():
    """Patch run_pipeline in the CLI module."""
    with patch("imagebake.cli.run_pipeline") as mock_run:
        yield mock_run


class TestCLIHelp:
    """Test CLI help and version options."""

    @pytest.mark.parametrize("flag", ["-h", "--help"])
    def test_help_returns_zero(self, flag) -> None:
        """-h and --help should print help and return exit code 0."""
        result = runner.invoke(app, [flag])
        assert result.exit_code == 0
        assert "--source" in result.output
        assert "--user-data" in result.output

    def test_print_version(self) -> None:
        """-V should print the program version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_show_config(self, base_dir) -> None:
        """--show-config should print settings as JSON."""
        result = runner.invoke(app, ["--show-config"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["base_dir"] == str(base_dir)


class TestCLIUsageErrors:
    """Test usage errors."""

    @pytest.mark.parametrize(
        "args",
        [
            [],
            ["-s", "centos7"],
            ["-v", "1.0"],
            ["-s", "", "-v", "1.0"],
        ],
    )
    def test_missing_required(self, args, base_dir, mock_pipeline) -> None:
        """Missing -s or -v should exit 1 with usage and touch nothing."""
        result = runner.invoke(app, args)

        assert result.exit_code == 1
        assert "Usage: imagebake -s SOURCE -v VERSION" in result.output
        assert not (base_dir / ".data").exists()
        assert not (base_dir / "sources").exists()
        mock_pipeline.assert_not_called()

    def test_branch_without_repository(self, mock_pipeline) -> None:
        """-b with a local source should be a usage error."""
        result = runner.invoke(app, ["-s", "centos7", "-v", "1", "-b", "mybranch"])

        assert result.exit_code == 1
        assert "-b requires a git repository" in result.output
        mock_pipeline.assert_not_called()

    @pytest.mark.parametrize(
        "args",
        [
            ["-s", "centos7", "-v", "1", "-x"],
            ["-v", "1", "-s"],
        ],
    )
    def test_malformed_flags(self, args, base_dir, mock_pipeline) -> None:
        """Unknown flags and flags missing their value should exit 1."""
        result = runner.invoke(app, args)

        assert result.exit_code == 1
        assert "Usage:" in result.output
        assert not (base_dir / ".data").exists()
        mock_pipeline.assert_not_called()

    def test_empty_branch_without_repository(self, mock_pipeline) -> None:
        """An empty -b with a local source should still be a usage error."""
        result = runner.invoke(app, ["-s", "centos7", "-v", "1", "-b", ""])

        assert result.exit_code == 1
        assert "-b requires a git repository" in result.output
        mock_pipeline.assert_not_called()

    def test_invalid_user_data(self, mock_pipeline) -> None:
        """Malformed -u should be a usage error."""
        result = runner.invoke(app, ["-s", "centos7", "-v", "1", "-u", "NOVALUE"])

        assert result.exit_code == 1
        mock_pipeline.assert_not_called()


class TestCLIBuild:
    """Test the build invocation."""

    def test_passes_configuration(self, base_dir, mock_pipeline) -> None:
        """Options should be turned into a BuildConfiguration."""
        result = runner.invoke(
            app,
            [
                "-s",
                "git@github.com:acme/base-images.git",
                "-v",
                "3.1",
                "-b",
                "mybranch",
                "-p",
                "linux, windows",
                "-u",
                "FOO=1",
                "-u",
                "BAR=2",
            ],
        )

        assert result.exit_code == 0, result.output
        config = mock_pipeline.call_args[0][0]
        assert isinstance(config, BuildConfiguration)
        assert config.repository == "git@github.com:acme/base-images.git"
        assert config.source_dir == base_dir / "sources" / "base-images"
        assert config.branch == "mybranch"
        assert config.version == "3.1"
        assert config.platforms == ("linux", "windows")
        assert config.user_data == ("FOO=1", "BAR=2")

    def test_log_truncated_and_written(self, base_dir, mock_pipeline) -> None:
        """A run should start a fresh run.log."""
        log_path = base_dir / ".data" / "run.log"
        log_path.parent.mkdir(parents=True)
        log_path.write_text("previous run\n")

        result = runner.invoke(app, ["-s", "centos7", "-v", "1"])

        assert result.exit_code == 0
        content = log_path.read_text()
        assert "previous run" not in content
        assert "building centos7" in content

    def test_failure_exits_one(self, base_dir, mock_pipeline) -> None:
        """Pipeline errors should be logged and exit 1."""
        mock_pipeline.side_effect = BuildExecutionError(
            "Build failed with exit code 2", exit_code=2
        )

        result = runner.invoke(app, ["-s", "centos7", "-v", "1"])

        assert result.exit_code == 1
        assert "Build failed with exit code 2" in result.output
        assert "Build failed with exit code 2" in (
            base_dir / ".data" / "run.log"
        ).read_text()
