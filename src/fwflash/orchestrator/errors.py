"""Exceptions raised by the build/flash orchestrator."""

from enum import Enum


class OrchestratorError(Exception):
    """Base exception for orchestrator errors."""

    pass


class SourceErrorKind(Enum):
    """Why a working copy could not be prepared."""

    NETWORK_UNAVAILABLE = "network_unavailable"
    REVISION_NOT_FOUND = "revision_not_found"
    FILESYSTEM_ERROR = "filesystem_error"


class SourceError(OrchestratorError):
    """Raised when the source provider cannot prepare a working copy."""

    def __init__(self, kind: SourceErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


class SpawnReason(Enum):
    """Why an external command could not be started."""

    EXECUTABLE_NOT_FOUND = "executable_not_found"
    PERMISSION_DENIED = "permission_denied"


class SpawnError(OrchestratorError):
    """Raised synchronously when a command cannot be spawned at all."""

    def __init__(self, reason: SpawnReason, command: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.command = command


class DuplicateTargetError(OrchestratorError):
    """Raised when a job is submitted for a target that already has one."""

    def __init__(self, target: str, active_job_id: str):
        super().__init__(f"Target {target} already has an active job ({active_job_id})")
        self.target = target
        self.active_job_id = active_job_id


class UnknownJobError(OrchestratorError):
    """Raised when a job id is not tracked by the controller."""

    pass


class JobStillActiveError(OrchestratorError):
    """Raised when releasing a job that has not reached a terminal state."""

    pass
