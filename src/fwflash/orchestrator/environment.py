"""Environment resolution for toolchain invocations.

Computes the PATH and working directories a build or flash command runs with.
On Windows and macOS the configurator ships portable git and Python builds
under the dependencies directory; those are placed ahead of the inherited
PATH so the bundled toolchain wins over whatever the host has installed.

Directory layout (relative to the user data directory):
    firmwares/git/
        {target}/{repository}/      # one working copy per target
    platformio-temp-state-storage/  # PlatformIO state stash
"""

import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

from fwflash.orchestrator.messages import RepositoryDescriptor

WINDOWS = "windows"
DARWIN = "darwin"
LINUX = "linux"

# Portable toolchain directories per platform, highest priority first.
PORTABLE_TOOLCHAIN_DIRS: dict[str, tuple[str, ...]] = {
    WINDOWS: (
        "windows_amd64/PortableGit/bin",
        "windows_amd64/python-portable-windows_amd64-3.7.7",
    ),
    DARWIN: (
        "darwin_amd64/git/2.30.1/bin",
        "darwin_amd64/python-portable-darwin-3.8.4/bin",
    ),
}

PATH_SEPARATORS: dict[str, str] = {
    WINDOWS: ";",
}

KNOWN_PLATFORMS = (WINDOWS, DARWIN, LINUX)


def normalize_platform(platform: Optional[str] = None) -> str:
    """Map sys.platform style identifiers onto resolver platform names.

    Args:
        platform: Identifier such as "win32", "darwin" or "linux" (default: running platform)

    Returns:
        Normalized platform name
    """
    value = (platform or sys.platform).lower()
    if value.startswith("win"):
        return WINDOWS
    if value.startswith("darwin") or value in ("macos", "mac", "osx"):
        return DARWIN
    if value.startswith("linux"):
        return LINUX
    return value


@dataclass(frozen=True)
class EnvironmentContext:
    """Resolved environment for one job.

    Attributes:
        platform: Normalized platform name the context was resolved for
        path: Composed PATH string
        firmwares_path: Root of per-target working copies
        toolchain_state_path: PlatformIO temporary state root
        env: Full process environment with overrides applied (read-only)
    """

    platform: str
    path: str
    firmwares_path: Path
    toolchain_state_path: Path
    env: Mapping[str, str] = field(default_factory=dict)

    def with_overrides(self, overrides: Mapping[str, str]) -> dict[str, str]:
        """Return a mutable copy of the environment with extra variables applied."""
        merged = dict(self.env)
        merged.update(overrides)
        return merged


class EnvironmentResolver:
    """Computes EnvironmentContext values.

    Resolution reads the inherited environment once per call and performs no
    filesystem I/O; directories are created by the caller when needed.
    """

    def __init__(
        self,
        dependencies_path: Path,
        user_data_path: Path,
        base_env: Optional[Mapping[str, str]] = None,
    ):
        """Initialize the resolver.

        Args:
            dependencies_path: Directory holding bundled portable toolchains
            user_data_path: Per-user data directory (checkouts, toolchain state)
            base_env: Environment to inherit (default: os.environ at resolve time)
        """
        self.dependencies_path = Path(dependencies_path)
        self.user_data_path = Path(user_data_path)
        self._base_env = base_env

    def resolve(self, platform: Optional[str] = None) -> EnvironmentContext:
        """Resolve the environment for a platform.

        Unknown platforms get the inherited environment unmodified.

        Args:
            platform: Target platform identifier (default: running platform)

        Returns:
            EnvironmentContext owned by the calling job
        """
        name = normalize_platform(platform)
        inherited = dict(self._base_env if self._base_env is not None else os.environ)

        path = inherited.get("PATH", "")
        separator = PATH_SEPARATORS.get(name, ":")
        portable_dirs = [
            self._join(name, self.dependencies_path, relative)
            for relative in PORTABLE_TOOLCHAIN_DIRS.get(name, ())
        ]
        path = self.compose_path(path, portable_dirs, separator)

        firmwares_path = self.user_data_path / "firmwares" / "git"
        toolchain_state_path = self.user_data_path / "platformio-temp-state-storage"

        env = dict(inherited)
        if name in KNOWN_PLATFORMS:
            env["PATH"] = path
            env["PLATFORMIO_INSTALLER_TMPDIR"] = str(self.user_data_path)

        return EnvironmentContext(
            platform=name,
            path=path,
            firmwares_path=firmwares_path,
            toolchain_state_path=toolchain_state_path,
            env=MappingProxyType(env),
        )

    @staticmethod
    def compose_path(inherited_path: str, prepend: list[str], separator: str) -> str:
        """Place directories ahead of an inherited PATH, keeping their order.

        Args:
            inherited_path: Existing PATH value (may be empty)
            prepend: Directories in priority order
            separator: Platform path-list separator

        Returns:
            Composed PATH string
        """
        entries = list(prepend)
        if inherited_path:
            entries.append(inherited_path)
        return separator.join(entries)

    @staticmethod
    def _join(platform: str, root: Path, relative: str) -> str:
        joined = str(root).rstrip("/\\") + "/" + relative
        if platform == WINDOWS:
            return joined.replace("/", "\\")
        return joined

    @staticmethod
    def checkout_path(context: EnvironmentContext, target: str, repository: RepositoryDescriptor) -> Path:
        """Working copy directory for a target.

        Each target gets its own checkout so concurrent jobs for different
        targets never share a working copy.
        """
        safe_target = re.sub(r"[^A-Za-z0-9._-]+", "_", target).strip("._") or "target"
        return context.firmwares_path / safe_target / repository.directory_name
