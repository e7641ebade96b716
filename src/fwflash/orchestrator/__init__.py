"""
Build/flash orchestration for fwflash.

This module provides the orchestrator core:
- Environment resolution (PATH composition, working directories)
- Source preparation (git working copies)
- Process supervision with streamed output
- Job lifecycle, per-target serialization and result classification
"""

from .classifier import ClassificationRule, ResultClassifier
from .controller import JobController
from .environment import EnvironmentContext, EnvironmentResolver
from .errors import (
    DuplicateTargetError,
    JobStillActiveError,
    OrchestratorError,
    SourceError,
    SourceErrorKind,
    SpawnError,
    SpawnReason,
    UnknownJobError,
)
from .job import JobHandle
from .messages import (
    BuildFlashResult,
    BuildProfile,
    ErrorType,
    JobRequest,
    JobState,
    OutputEvent,
    OutputStream,
    RepositoryDescriptor,
)
from .process_supervisor import ProcessExit, ProcessHandle, ProcessSupervisor
from .source_provider import GitSourceProvider, ISourceProvider, ProcessTracker
from .subscription import OutputSubscription

__all__ = [
    "BuildFlashResult",
    "BuildProfile",
    "ClassificationRule",
    "DuplicateTargetError",
    "EnvironmentContext",
    "EnvironmentResolver",
    "ErrorType",
    "GitSourceProvider",
    "ISourceProvider",
    "JobController",
    "JobHandle",
    "JobRequest",
    "JobState",
    "JobStillActiveError",
    "OrchestratorError",
    "OutputEvent",
    "OutputStream",
    "OutputSubscription",
    "ProcessExit",
    "ProcessHandle",
    "ProcessSupervisor",
    "ProcessTracker",
    "RepositoryDescriptor",
    "ResultClassifier",
    "SourceError",
    "SourceErrorKind",
    "SpawnError",
    "SpawnReason",
    "UnknownJobError",
]
