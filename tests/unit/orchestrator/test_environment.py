"""Unit tests for environment resolution."""

import sys
from pathlib import Path

import pytest

from fwflash.orchestrator.environment import (
    EnvironmentResolver,
    normalize_platform,
)
from fwflash.orchestrator.messages import RepositoryDescriptor


@pytest.fixture
def resolver():
    return EnvironmentResolver(
        dependencies_path=Path("/opt/deps"),
        user_data_path=Path("/home/user/.fwflash"),
        base_env={"PATH": "/usr/bin:/bin", "HOME": "/home/user"},
    )


class TestNormalizePlatform:
    """Test cases for normalize_platform."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("win32", "windows"),
            ("Windows", "windows"),
            ("darwin", "darwin"),
            ("macos", "darwin"),
            ("linux", "linux"),
            ("linux2", "linux"),
            ("FreeBSD13", "freebsd13"),
        ],
    )
    def test_mapping(self, value, expected):
        assert normalize_platform(value) == expected

    def test_default_is_running_platform(self):
        assert normalize_platform() == normalize_platform(sys.platform)


class TestEnvironmentResolver:
    """Test cases for EnvironmentResolver."""

    def test_windows_prepends_portable_dirs_in_order(self):
        resolver = EnvironmentResolver(
            Path("/opt/deps"),
            Path("/data"),
            base_env={"PATH": "C:\\Windows;C:\\Tools"},
        )
        context = resolver.resolve("win32")
        entries = context.path.split(";")
        assert entries[0].endswith("windows_amd64\\PortableGit\\bin")
        assert entries[1].endswith("windows_amd64\\python-portable-windows_amd64-3.7.7")
        assert entries[2:] == ["C:\\Windows", "C:\\Tools"]
        assert "/" not in entries[0]

    def test_darwin_prepends_portable_dirs_in_order(self, resolver):
        context = resolver.resolve("darwin")
        entries = context.path.split(":")
        assert entries[0] == "/opt/deps/darwin_amd64/git/2.30.1/bin"
        assert entries[1] == "/opt/deps/darwin_amd64/python-portable-darwin-3.8.4/bin"
        assert entries[2:] == ["/usr/bin", "/bin"]

    def test_linux_keeps_inherited_path(self, resolver):
        context = resolver.resolve("linux")
        assert context.path == "/usr/bin:/bin"
        assert context.env["PATH"] == "/usr/bin:/bin"

    def test_unknown_platform_keeps_inherited_path(self, resolver):
        context = resolver.resolve("sunos5")
        assert context.platform == "sunos5"
        assert context.path == "/usr/bin:/bin"

    def test_empty_inherited_path(self):
        resolver = EnvironmentResolver(Path("/opt/deps"), Path("/data"), base_env={})
        context = resolver.resolve("darwin")
        assert context.path.split(":") == [
            "/opt/deps/darwin_amd64/git/2.30.1/bin",
            "/opt/deps/darwin_amd64/python-portable-darwin-3.8.4/bin",
        ]

    def test_working_directories(self, resolver):
        context = resolver.resolve("linux")
        assert context.firmwares_path == Path("/home/user/.fwflash/firmwares/git")
        assert context.toolchain_state_path == Path("/home/user/.fwflash/platformio-temp-state-storage")

    def test_toolchain_variables(self, resolver):
        context = resolver.resolve("linux")
        assert context.env["PLATFORMIO_INSTALLER_TMPDIR"] == str(Path("/home/user/.fwflash"))
        assert "PLATFORMIO_CORE_DIR" not in context.env
        assert context.env["HOME"] == "/home/user"

    def test_unknown_platform_environment_unmodified(self, resolver):
        context = resolver.resolve("sunos5")
        assert dict(context.env) == {"PATH": "/usr/bin:/bin", "HOME": "/home/user"}

    def test_environment_is_read_only(self, resolver):
        context = resolver.resolve("linux")
        with pytest.raises(TypeError):
            context.env["PATH"] = "/tmp"  # type: ignore[index]

    def test_contexts_are_independent(self, resolver):
        first = resolver.resolve("linux")
        merged = first.with_overrides({"BOARD": "rx"})
        second = resolver.resolve("linux")
        assert merged["BOARD"] == "rx"
        assert "BOARD" not in first.env
        assert "BOARD" not in second.env

    def test_base_env_not_mutated(self):
        base = {"PATH": "/usr/bin"}
        EnvironmentResolver(Path("/opt/deps"), Path("/data"), base_env=base).resolve("darwin")
        assert base == {"PATH": "/usr/bin"}

    def test_compose_path(self):
        assert EnvironmentResolver.compose_path("/bin", ["/a", "/b"], ":") == "/a:/b:/bin"
        assert EnvironmentResolver.compose_path("", ["/a"], ":") == "/a"
        assert EnvironmentResolver.compose_path("/bin", [], ":") == "/bin"


class TestCheckoutPath:
    """Test cases for per-target working copy paths."""

    def test_checkout_path_per_target(self, resolver):
        context = resolver.resolve("linux")
        repo = RepositoryDescriptor(clone_url="https://github.com/AlessandroAU/ExpressLRS")
        first = EnvironmentResolver.checkout_path(context, "board-A", repo)
        second = EnvironmentResolver.checkout_path(context, "board-B", repo)
        assert first == context.firmwares_path / "board-A" / "ExpressLRS"
        assert first != second

    def test_target_is_sanitized(self, resolver):
        context = resolver.resolve("linux")
        repo = RepositoryDescriptor(clone_url="u", repository_name="fw")
        path = EnvironmentResolver.checkout_path(context, "../board A/1", repo)
        assert path == context.firmwares_path / "board_A_1" / "fw"
