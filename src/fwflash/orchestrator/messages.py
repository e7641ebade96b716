"""
Typed records for the build/flash orchestrator.

This module defines the dataclasses and enums exchanged between the job
controller and its callers (CLI, transport adapters, tests).

Supports:
- Job requests (target, repository, revision, build profile, flash flag)
- Streamed output events tagged with stream and sequence number
- Terminal build/flash results with a closed error category
"""

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class JobState(Enum):
    """Lifecycle state of a build/flash job."""

    PENDING = "pending"
    RESOLVING_ENVIRONMENT = "resolving_environment"
    PREPARING_SOURCE = "preparing_source"
    BUILDING = "building"
    FLASHING = "flashing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are possible from this state."""
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELLED)

    @property
    def is_working(self) -> bool:
        """Whether this state may transition to FAILED or CANCELLED."""
        return self in (
            JobState.RESOLVING_ENVIRONMENT,
            JobState.PREPARING_SOURCE,
            JobState.BUILDING,
            JobState.FLASHING,
        )


class OutputStream(Enum):
    """Origin of an output event."""

    STDOUT = "stdout"
    STDERR = "stderr"
    OVERFLOW = "overflow"


class ErrorType(Enum):
    """Closed set of job failure categories."""

    # Source preparation
    NETWORK_UNAVAILABLE = "network_unavailable"
    REVISION_NOT_FOUND = "revision_not_found"
    FILESYSTEM_ERROR = "filesystem_error"

    # Spawning
    EXECUTABLE_NOT_FOUND = "executable_not_found"
    SPAWN_PERMISSION_DENIED = "spawn_permission_denied"

    # Build stage
    TOOLCHAIN_MISSING = "toolchain_missing"
    DEPENDENCY_RESOLUTION_FAILED = "dependency_resolution_failed"
    COMPILATION_FAILED = "compilation_failed"
    UNKNOWN_BUILD_ERROR = "unknown_build_error"

    # Flash stage
    DEVICE_NOT_FOUND = "device_not_found"
    FLASH_PERMISSION_DENIED = "flash_permission_denied"
    FLASH_PROTOCOL_ERROR = "flash_protocol_error"
    UNKNOWN_FLASH_ERROR = "unknown_flash_error"

    CANCELLED = "cancelled"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class RepositoryDescriptor:
    """Version-controlled firmware source location.

    Attributes:
        clone_url: URL passed to ``git clone``
        url: Human-facing repository URL
        owner: Repository owner (organisation or user)
        repository_name: Repository name, also used as checkout directory name
    """

    clone_url: str
    url: str = ""
    owner: str = ""
    repository_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RepositoryDescriptor":
        """Create RepositoryDescriptor from dictionary."""
        return cls(
            clone_url=data["clone_url"],
            url=data.get("url", ""),
            owner=data.get("owner", ""),
            repository_name=data.get("repository_name", ""),
        )

    @property
    def directory_name(self) -> str:
        """Directory name for the working copy of this repository."""
        if self.repository_name:
            return self.repository_name
        name = self.clone_url.rstrip("/").rsplit("/", 1)[-1]
        if name.endswith(".git"):
            name = name[: -len(".git")]
        return name or "source"


@dataclass(frozen=True)
class BuildProfile:
    """Toolchain invocation parameters for one kind of target.

    Command lists may contain ``{firmware}``, ``{port}``, ``{target}`` and
    ``{checkout}`` placeholders which are expanded right before spawning.

    Attributes:
        build_command: argv of the build invocation
        artifact_path: Firmware binary location, relative to the checkout
        flash_command: argv of the flash invocation
        extra_env: Additional environment variables for both invocations
    """

    build_command: tuple[str, ...]
    artifact_path: str
    flash_command: tuple[str, ...] = ()
    extra_env: tuple[tuple[str, str], ...] = ()

    @classmethod
    def platformio(cls, env_name: str, project_dir: str = ".") -> "BuildProfile":
        """Profile for a PlatformIO project environment.

        Args:
            env_name: Environment name from platformio.ini
            project_dir: Directory holding platformio.ini, relative to the checkout
        """
        project_dir = project_dir.strip("/") or "."
        artifact = f".pio/build/{env_name}/firmware.bin"
        return cls(
            build_command=("pio", "run", "--project-dir", project_dir, "--environment", env_name),
            artifact_path=artifact if project_dir == "." else f"{project_dir}/{artifact}",
            flash_command=(
                "pio",
                "run",
                "--project-dir",
                project_dir,
                "--environment",
                env_name,
                "--target",
                "upload",
                "--upload-port",
                "{port}",
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "build_command": list(self.build_command),
            "artifact_path": self.artifact_path,
            "flash_command": list(self.flash_command),
            "extra_env": dict(self.extra_env),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildProfile":
        """Create BuildProfile from dictionary."""
        return cls(
            build_command=tuple(data["build_command"]),
            artifact_path=data["artifact_path"],
            flash_command=tuple(data.get("flash_command", ())),
            extra_env=tuple(sorted(data.get("extra_env", {}).items())),
        )


@dataclass(frozen=True)
class JobRequest:
    """Caller → Controller: one build-then-optionally-flash job.

    Attributes:
        target: Device/board identifier; serializes job execution
        repository: Source repository descriptor
        revision: Branch, tag or commit to build
        profile: Toolchain invocation parameters
        flash: Whether to flash after a successful build
        flash_port: Device path to flash (auto-detect if None)
    """

    target: str
    repository: RepositoryDescriptor
    revision: str
    profile: BuildProfile
    flash: bool = False
    flash_port: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "target": self.target,
            "repository": self.repository.to_dict(),
            "revision": self.revision,
            "profile": self.profile.to_dict(),
            "flash": self.flash,
            "flash_port": self.flash_port,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobRequest":
        """Create JobRequest from dictionary."""
        return cls(
            target=data["target"],
            repository=RepositoryDescriptor.from_dict(data["repository"]),
            revision=data["revision"],
            profile=BuildProfile.from_dict(data["profile"]),
            flash=data.get("flash", False),
            flash_port=data.get("flash_port"),
        )


@dataclass(frozen=True)
class OutputEvent:
    """One line of process output.

    Attributes:
        sequence: Strictly increasing number, shared by both streams of a job
        stream: Source stream (or OVERFLOW for a dropped-events marker)
        line: Line text without the trailing newline
        stage: Job state the line was produced in
        timestamp: Unix timestamp when the line was observed
    """

    sequence: int
    stream: OutputStream
    line: str
    stage: JobState | None = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_overflow_marker(self) -> bool:
        return self.stream == OutputStream.OVERFLOW

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "sequence": self.sequence,
            "stream": self.stream.value,
            "line": self.line,
            "stage": self.stage.value if self.stage else None,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class BuildFlashResult:
    """Controller → Caller: terminal result of a job.

    Attributes:
        success: Whether every requested stage succeeded
        error_type: Failure category (None exactly when success is True)
        message: Human-readable detail, usually the last output lines
        firmware_bin_path: Produced firmware binary, if the build made one
    """

    success: bool
    error_type: ErrorType | None = None
    message: str | None = None
    firmware_bin_path: str | None = None

    def __post_init__(self) -> None:
        if self.success and self.error_type is not None:
            raise ValueError("A successful result cannot carry an error type")
        if not self.success and self.error_type is None:
            raise ValueError("A failed result must carry an error type")

    @classmethod
    def succeeded(cls, message: str | None = None, firmware_bin_path: str | None = None) -> "BuildFlashResult":
        return cls(success=True, message=message, firmware_bin_path=firmware_bin_path)

    @classmethod
    def failed(
        cls,
        error_type: ErrorType,
        message: str | None = None,
        firmware_bin_path: str | None = None,
    ) -> "BuildFlashResult":
        return cls(
            success=False,
            error_type=error_type,
            message=message,
            firmware_bin_path=firmware_bin_path,
        )

    @classmethod
    def cancelled(cls, firmware_bin_path: str | None = None) -> "BuildFlashResult":
        return cls.failed(ErrorType.CANCELLED, "Job cancelled", firmware_bin_path)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["error_type"] = self.error_type.value if self.error_type else None
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildFlashResult":
        """Create BuildFlashResult from dictionary."""
        error_type = None
        if data.get("error_type"):
            error_type = ErrorType(data["error_type"])
        return cls(
            success=data["success"],
            error_type=error_type,
            message=data.get("message"),
            firmware_bin_path=data.get("firmware_bin_path"),
        )
