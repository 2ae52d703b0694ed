"""Tests for builds/runner.py module.

Tests packer command composition and execution. Execution tests use a
small shell script standing in for the packer binary.
"""

import io
import logging
import os
import stat
from pathlib import Path

import pytest
from rich.console import Console

from imagebake.builds.runner import (
    BuildResult,
    compose_build_env,
    compose_packer_command,
    run_build,
)
from imagebake.config import Settings
from imagebake.errors import BuildExecutionError
from imagebake.logs import LOGGER_NAME, configure_logging
from imagebake.types import BuildConfiguration

FAKE_PACKER = """#!/bin/sh
echo "args: $*"
echo "artifacts=$ARTIFACTS_DIR version=$VERSION cache=$PACKER_CACHE_DIR"
echo "extra=$EXTRA"
echo "cwd=$(pwd)"
echo "to stderr" >&2
exit ${FAKE_EXIT:-0}
"""


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings rooted in a temporary base directory."""
    return Settings(base_dir=tmp_path)


@pytest.fixture
def config(settings) -> BuildConfiguration:
    """Configuration for a source holding a template."""
    source_dir = settings.sources_dir / "centos7"
    source_dir.mkdir(parents=True)
    (source_dir / settings.template_name).write_text("{}")
    return BuildConfiguration(
        "centos7",
        source_dir,
        "2.0.1",
        platforms=("qemu", "virtualbox-iso"),
        user_data=("FOO=1", "BAR=2"),
    )


@pytest.fixture
def packer_bin(tmp_path) -> Path:
    """Fake packer binary."""
    path = tmp_path / "bin" / "packer"
    path.parent.mkdir()
    path.write_text(FAKE_PACKER)
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return path


class TestComposePackerCommand:
    """Tests for compose_packer_command function."""

    def test_minimal(self):
        """Should build in force mode against the template."""
        cmd = compose_packer_command("packer", "template.json")
        assert cmd == ["packer", "build", "-force", "template.json"]

    def test_platforms_joined(self):
        """Should pass platforms as a single -only token."""
        cmd = compose_packer_command("packer", "template.json", ("linux", "windows"))

        assert cmd.count("-only") == 1
        index = cmd.index("-only")
        assert cmd[index + 1] == "linux,windows"

    def test_user_data_in_order(self):
        """Should add one -var per entry in order."""
        cmd = compose_packer_command(
            "packer", "template.json", user_data=("FOO=1", "BAR=2")
        )
        assert cmd == [
            "packer",
            "build",
            "-force",
            "-var",
            "FOO=1",
            "-var",
            "BAR=2",
            "template.json",
        ]

    def test_full_command(self):
        """Should place options before the template."""
        cmd = compose_packer_command(
            Path("/opt/packer"), Path("t.json"), ("qemu",), ("A=b",)
        )
        assert cmd == [
            "/opt/packer",
            "build",
            "-force",
            "-only",
            "qemu",
            "-var",
            "A=b",
            "t.json",
        ]


class TestComposeBuildEnv:
    """Tests for compose_build_env function."""

    def test_exports(self, config, settings):
        """Should export artifacts dir, version and cache dir."""
        env = compose_build_env(config, settings)

        assert env["ARTIFACTS_DIR"] == str(settings.artifacts_dir)
        assert env["VERSION"] == "2.0.1"
        assert env["PACKER_CACHE_DIR"] == str(settings.cache_dir)
        assert env["TMPDIR"] == str(settings.tmp_dir)
        assert env["PATH"].split(os.pathsep)[0] == str(settings.packer_dir)

    def test_extra_env_cannot_override_exports(self, config, settings):
        """Should keep the exported variables over extra ones."""
        env = compose_build_env(config, settings, {"VERSION": "hacked", "X": "1"})

        assert env["VERSION"] == "2.0.1"
        assert env["X"] == "1"


class TestRunBuild:
    """Tests for run_build function."""

    def test_successful_build(self, config, settings, packer_bin):
        """Should run packer, echo output and append it to the log."""
        settings.log_path.parent.mkdir(parents=True)
        settings.log_path.write_text("earlier line\n")
        stream = io.StringIO()

        result = run_build(
            config,
            settings,
            packer_bin=packer_bin,
            extra_env={"EXTRA": "hello"},
            stream=stream,
        )

        assert isinstance(result, BuildResult)
        assert result.exit_code == 0
        assert result.artifacts_dir == settings.artifacts_dir
        assert settings.artifacts_dir.is_dir()

        output = stream.getvalue()
        assert (
            "args: build -force -only qemu,virtualbox-iso "
            "-var FOO=1 -var BAR=2 template.json"
        ) in output
        assert f"version=2.0.1 cache={settings.cache_dir}" in output
        assert "extra=hello" in output
        assert f"cwd={config.source_dir}" in output
        assert "to stderr" in output

        log = settings.log_path.read_text()
        assert log.startswith("earlier line\n")
        assert "# Command:" in log
        assert "to stderr" in log
        assert "# Exit code: 0" in log

    def test_log_records_after_build_keep_output(self, config, settings, packer_bin):
        """Should keep the build header and output when logging continues."""
        configure_logging(
            settings.log_path, console=Console(file=io.StringIO(), width=200)
        )
        logger = logging.getLogger(LOGGER_NAME)
        try:
            logger.info("before build")
            run_build(config, settings, packer_bin=packer_bin, stream=io.StringIO())
            logger.error("after build: " + "x" * 2000)
        finally:
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()
            logger.setLevel(logging.NOTSET)

        log = settings.log_path.read_text()
        assert "before build" in log
        assert "# Command:" in log
        assert "# Started:" in log
        assert "args: build -force" in log
        assert "# Exit code: 0" in log
        assert "Build finished" in log
        assert log.index("before build") < log.index("# Command:")
        assert log.index("# Exit code: 0") < log.index("after build: ")

    def test_failed_build(self, config, settings, packer_bin):
        """Should raise BuildExecutionError with the exit code."""
        with pytest.raises(BuildExecutionError) as exc_info:
            run_build(
                config,
                settings,
                packer_bin=packer_bin,
                extra_env={"FAKE_EXIT": "3"},
                stream=io.StringIO(),
            )

        assert exc_info.value.exit_code == 3
        assert exc_info.value.code == "build_failed"
        assert "# Exit code: 3" in settings.log_path.read_text()

    def test_missing_template(self, settings, packer_bin):
        """Should fail before running packer if the template is missing."""
        source_dir = settings.sources_dir / "empty"
        source_dir.mkdir(parents=True)
        config = BuildConfiguration("empty", source_dir, "1.0")

        with pytest.raises(BuildExecutionError) as exc_info:
            run_build(config, settings, packer_bin=packer_bin, stream=io.StringIO())

        assert exc_info.value.code == "template_missing"
        assert not settings.log_path.exists()

    def test_packer_not_executable(self, config, settings, tmp_path):
        """Should raise BuildExecutionError if packer cannot start."""
        with pytest.raises(BuildExecutionError) as exc_info:
            run_build(
                config,
                settings,
                packer_bin=tmp_path / "nope",
                stream=io.StringIO(),
            )

        assert exc_info.value.code == "execution_error"

    def test_timeout(self, config, tmp_path):
        """Should kill packer and raise on timeout."""
        settings = Settings(base_dir=tmp_path, build_timeout=60)
        slow = tmp_path / "slow-packer"
        slow.write_text("#!/bin/sh\nexec sleep 120\n")
        slow.chmod(slow.stat().st_mode | stat.S_IXUSR)

        with (
            pytest.MonkeyPatch.context() as mp,
            pytest.raises(BuildExecutionError) as exc_info,
        ):
            mp.setattr(
                "imagebake.builds.runner.threading.Timer",
                lambda interval, fn: _ImmediateTimer(fn),
            )
            run_build(config, settings, packer_bin=slow, stream=io.StringIO())

        assert exc_info.value.code == "build_timeout"


class _ImmediateTimer:
    """Timer replacement that fires as soon as it is started."""

    def __init__(self, fn):
        self.fn = fn

    def start(self):
        self.fn()

    def cancel(self):
        pass
