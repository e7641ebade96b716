"""Shared fixtures for orchestrator tests.

Toolchain invocations are simulated with ``sys.executable -c <script>`` so the
tests exercise real child processes without needing PlatformIO.
"""

import sys
from pathlib import Path
from typing import Mapping, Optional

import pytest

from fwflash.config import OrchestratorConfig
from fwflash.orchestrator import (
    BuildProfile,
    EnvironmentResolver,
    ISourceProvider,
    JobController,
    JobRequest,
    ProcessTracker,
    RepositoryDescriptor,
)

BUILD_OK = (
    "import pathlib; "
    "out = pathlib.Path('out'); out.mkdir(exist_ok=True); "
    "print('Compiling main.cpp', flush=True); "
    "(out / 'firmware.bin').write_bytes(b'\\x00\\x01'); "
    "print('Linking firmware.bin', flush=True)"
)

TOOLCHAIN_MISSING = (
    "import sys; "
    "print('Resolving toolchain', flush=True); "
    "sys.stderr.write('Error: toolchain not found\\n'); "
    "sys.exit(2)"
)

SLEEP_FOREVER = "import time; print('build started', flush=True); time.sleep(60)"

DEVICE_NOT_FOUND = (
    "import sys; "
    "print('Uploading ' + sys.argv[1], flush=True); "
    "sys.stderr.write('Error: device not found on ' + sys.argv[2] + '\\n'); "
    "sys.exit(1)"
)

FLASH_OK = (
    "import pathlib, sys; "
    "assert pathlib.Path(sys.argv[1]).is_file(), sys.argv[1]; "
    "print('Writing at 0x00010000 to ' + sys.argv[2], flush=True); "
    "print('Hard resetting via RTS pin...', flush=True)"
)


def python_command(script: str, *args: str) -> tuple[str, ...]:
    return (sys.executable, "-c", script, *args)


def make_profile(build_script: str = BUILD_OK, flash_script: str = FLASH_OK) -> BuildProfile:
    return BuildProfile(
        build_command=python_command(build_script),
        artifact_path="out/firmware.bin",
        flash_command=python_command(flash_script, "{firmware}", "{port}"),
    )


class FakeSourceProvider(ISourceProvider):
    """Creates an empty working copy and records calls."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Path]] = []

    def prepare(
        self,
        repository: RepositoryDescriptor,
        revision: str,
        destination: Path,
        env: Mapping[str, str],
        tracker: Optional[ProcessTracker] = None,
    ) -> Path:
        self.calls.append((repository.clone_url, revision, destination))
        destination.mkdir(parents=True, exist_ok=True)
        return destination


@pytest.fixture
def config(tmp_path):
    """Orchestrator config rooted in a temp directory."""
    return OrchestratorConfig(
        user_data_path=tmp_path / "userdata",
        dependencies_path=tmp_path / "dependencies",
        kill_grace_period=0.5,
    )


@pytest.fixture
def source_provider():
    return FakeSourceProvider()


@pytest.fixture
def controller(config, source_provider):
    """Controller with a fake source provider and no serial port."""
    resolver = EnvironmentResolver(config.dependencies_dir, config.user_data_path)
    ctrl = JobController(
        config=config,
        resolver=resolver,
        source_provider=source_provider,
        port_detector=lambda: None,
    )
    yield ctrl
    ctrl.shutdown()


@pytest.fixture
def repository():
    return RepositoryDescriptor(
        clone_url="https://example.invalid/firmware/ExpressLRS.git",
        url="https://example.invalid/firmware/ExpressLRS",
        owner="firmware",
        repository_name="ExpressLRS",
    )


@pytest.fixture
def make_request(repository):
    """Factory for JobRequest values."""

    def _make(
        target: str = "board-A",
        revision: str = "v1.0",
        profile: BuildProfile | None = None,
        flash: bool = False,
        flash_port: str | None = None,
    ) -> JobRequest:
        return JobRequest(
            target=target,
            repository=repository,
            revision=revision,
            profile=profile or make_profile(),
            flash=flash,
            flash_port=flash_port,
        )

    return _make


@pytest.fixture
def scripts():
    """Expose script constants and helpers to tests."""

    class Scripts:
        BUILD_OK = BUILD_OK
        TOOLCHAIN_MISSING = TOOLCHAIN_MISSING
        SLEEP_FOREVER = SLEEP_FOREVER
        DEVICE_NOT_FOUND = DEVICE_NOT_FOUND
        FLASH_OK = FLASH_OK

        command = staticmethod(python_command)
        profile = staticmethod(make_profile)

    return Scripts


@pytest.fixture
def slow_git(tmp_path):
    """Executable standing in for git: records its pid, announces a clone, then hangs."""
    if sys.platform == "win32":
        pytest.skip("Needs a POSIX shell script")
    pid_file = tmp_path / "git.pids"
    git = tmp_path / "bin" / "git"
    git.parent.mkdir()
    git.write_text(
        "#!/bin/sh\n"
        f"echo $$ >> '{pid_file}'\n"
        "echo \"Cloning into 'ExpressLRS'...\" >&2\n"
        "exec sleep 20\n"
    )
    git.chmod(0o755)

    class SlowGit:
        path = git

        @staticmethod
        def pids() -> list[int]:
            if not pid_file.exists():
                return []
            return [int(pid) for pid in pid_file.read_text().split()]

    return SlowGit
