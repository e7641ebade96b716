"""
Build/Flash Job Controller

This module sequences one job through its stages and enforces that each
target has at most one active job:

    PENDING -> RESOLVING_ENVIRONMENT -> PREPARING_SOURCE -> BUILDING
            -> (FLASHING) -> SUCCEEDED | FAILED | CANCELLED

Architecture:
    submit() -> target slot -> worker thread -> Source Provider
                                    |        -> Process Supervisor -> Job.publish -> subscriptions
                                    v
                             Result Classifier -> BuildFlashResult

The per-target slot table is the only state shared between jobs and is
guarded by a single lock. A slot is freed when the caller releases a job
that has reached a terminal state.
"""

import logging
import re
import threading
from pathlib import Path
from typing import Callable, Optional

from fwflash.config import OrchestratorConfig
from fwflash.orchestrator.classifier import ResultClassifier
from fwflash.orchestrator.environment import EnvironmentContext, EnvironmentResolver
from fwflash.orchestrator.errors import (
    DuplicateTargetError,
    JobStillActiveError,
    SourceError,
    SourceErrorKind,
    SpawnError,
    SpawnReason,
    UnknownJobError,
)
from fwflash.orchestrator.job import Job, JobHandle
from fwflash.orchestrator.messages import (
    BuildFlashResult,
    ErrorType,
    JobRequest,
    JobState,
    OutputEvent,
)
from fwflash.orchestrator.ports import detect_serial_port
from fwflash.orchestrator.process_supervisor import ProcessExit, ProcessHandle, ProcessSupervisor
from fwflash.orchestrator.source_provider import GitSourceProvider, ISourceProvider, ProcessTracker
from fwflash.orchestrator.subscription import OutputSubscription

SOURCE_ERROR_TYPES = {
    SourceErrorKind.NETWORK_UNAVAILABLE: ErrorType.NETWORK_UNAVAILABLE,
    SourceErrorKind.REVISION_NOT_FOUND: ErrorType.REVISION_NOT_FOUND,
    SourceErrorKind.FILESYSTEM_ERROR: ErrorType.FILESYSTEM_ERROR,
}

SPAWN_ERROR_TYPES = {
    SpawnReason.EXECUTABLE_NOT_FOUND: ErrorType.EXECUTABLE_NOT_FOUND,
    SpawnReason.PERMISSION_DENIED: ErrorType.SPAWN_PERMISSION_DENIED,
}

PLACEHOLDER = re.compile(r"\{(firmware|port|target|checkout)\}")


class _StageFailed(Exception):
    """Internal: ends the worker with a terminal result."""

    def __init__(self, result: BuildFlashResult):
        super().__init__(result.message)
        self.result = result


class _StageCancelled(Exception):
    """Internal: the job was cancelled while a stage was running."""

    pass


class _JobProcessTracker(ProcessTracker):
    """Makes a job's processes reachable by cancel() and relays their output."""

    def __init__(self, job: Job):
        self.job = job

    def attach(self, handle: ProcessHandle) -> None:
        with self.job.lock:
            cancelled = self.job.state.is_terminal
            if not cancelled:
                self.job.active_process = handle
        if cancelled:
            handle.cancel()
            self._record_late_exit(handle, handle.wait())
            raise _StageCancelled()

    def output(self, event: OutputEvent) -> None:
        self.job.publish(event.stream, event.line)

    def detach(self, handle: ProcessHandle, exit_status: ProcessExit) -> None:
        with self.job.lock:
            self.job.active_process = None
            cancelled = self.job.state.is_terminal
        if cancelled:
            self._record_late_exit(handle, exit_status)
            raise _StageCancelled()

    def _record_late_exit(self, handle: ProcessHandle, exit_status: ProcessExit) -> None:
        with self.job.lock:
            self.job.late_exit = exit_status
        logging.info(
            f"Job {self.job.job_id}: process {handle.pid} exited with {exit_status.returncode} after cancellation"
        )


class JobController:
    """Accepts build/flash jobs and drives them to a terminal result.

    Dependencies are injected so tests and alternative front-ends can swap
    implementations; one controller is constructed at process start and
    shared by every transport adapter.
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        resolver: Optional[EnvironmentResolver] = None,
        source_provider: Optional[ISourceProvider] = None,
        supervisor: Optional[ProcessSupervisor] = None,
        build_classifier: Optional[ResultClassifier] = None,
        flash_classifier: Optional[ResultClassifier] = None,
        port_detector: Callable[[], Optional[str]] = detect_serial_port,
        platform: Optional[str] = None,
    ):
        """Initialize controller.

        Args:
            config: Orchestrator settings (default: from environment)
            resolver: Environment resolver (default: built from config paths)
            source_provider: Working copy provider (default: GitSourceProvider)
            supervisor: Process supervisor (default: ProcessSupervisor)
            build_classifier: Classifier for build exits
            flash_classifier: Classifier for flash exits
            port_detector: Called when a flash job has no explicit port
            platform: Platform to resolve environments for (default: running platform)
        """
        self.config = config or OrchestratorConfig.from_environment()
        self.resolver = resolver or EnvironmentResolver(self.config.dependencies_dir, self.config.user_data_path)
        self.supervisor = supervisor or ProcessSupervisor(kill_grace_period=self.config.kill_grace_period)
        self.source_provider = source_provider or GitSourceProvider(supervisor=self.supervisor)
        self.build_classifier = build_classifier or ResultClassifier.for_build()
        self.flash_classifier = flash_classifier or ResultClassifier.for_flash()
        self.port_detector = port_detector
        self.platform = platform

        self._lock = threading.Lock()
        self._jobs: dict[str, Job] = {}
        self._target_slots: dict[str, str] = {}

    # Public contract

    def submit(self, request: JobRequest) -> JobHandle:
        """Accept a job and start it on a worker thread.

        Raises:
            DuplicateTargetError: If the target already has an active job
        """
        job = Job(
            request,
            history_size=self.config.history_size,
            subscriber_queue_size=self.config.subscriber_queue_size,
            diagnostic_tail_lines=self.config.diagnostic_tail_lines,
        )
        with self._lock:
            active_id = self._target_slots.get(request.target)
            if active_id is not None:
                logging.warning(f"Rejecting job for target {request.target}: {active_id} is still active")
                raise DuplicateTargetError(request.target, active_id)
            self._target_slots[request.target] = job.job_id
            self._jobs[job.job_id] = job

        logging.info(f"Accepted job {job.job_id}: target={request.target}, revision={request.revision}, flash={request.flash}")
        job.transition(JobState.RESOLVING_ENVIRONMENT)
        worker = threading.Thread(target=self._run_job, args=(job,), name=f"{job.job_id}-worker", daemon=True)
        worker.start()
        return JobHandle(job, self)

    submit_job = submit

    def subscribe_output(self, job_id: str) -> OutputSubscription:
        """Subscribe to a job's output.

        The subscription replays up to ``config.history_size`` retained events
        before delivering live ones and ends when the job is terminal.
        """
        return self._get(job_id).subscribe()

    def await_result(self, job_id: str, timeout: Optional[float] = None) -> BuildFlashResult:
        """Block until the job has a result.

        Raises:
            TimeoutError: If the timeout elapsed first
        """
        return self._get(job_id).wait(timeout)

    def cancel(self, job_id: str) -> None:
        """Cancel a job.

        The job becomes CANCELLED immediately; the active process (if any) is
        signalled and may exit later. Cancelling a terminal job does nothing.
        """
        job = self._get(job_id)
        with job.lock:
            if job.state.is_terminal:
                return
            process = job.active_process
            job.finish(JobState.CANCELLED, BuildFlashResult.cancelled(job.firmware_bin_path))
        if process is not None:
            process.cancel()

    cancel_job = cancel

    def release(self, job_id: str) -> None:
        """Release a terminal job, freeing its target for a new submission.

        Raises:
            JobStillActiveError: If the job has not reached a terminal state
        """
        job = self._get(job_id)
        with job.lock:
            if not job.state.is_terminal:
                raise JobStillActiveError(f"Job {job_id} is still {job.state.value}")
            job.released = True
        with self._lock:
            if self._target_slots.get(job.request.target) == job_id:
                del self._target_slots[job.request.target]
            self._jobs.pop(job_id, None)
        logging.info(f"Released job {job_id}, target {job.request.target} is free")

    def get_job(self, job_id: str) -> JobHandle:
        return JobHandle(self._get(job_id), self)

    def active_targets(self) -> dict[str, str]:
        """Map of target -> job id for every occupied target slot."""
        with self._lock:
            return dict(self._target_slots)

    def shutdown(self) -> None:
        """Cancel every non-terminal job."""
        with self._lock:
            jobs = list(self._jobs.values())
        for job in jobs:
            if not job.is_terminal:
                self.cancel(job.job_id)

    def _get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise UnknownJobError(f"Unknown job: {job_id}")
        return job

    # Worker

    def _run_job(self, job: Job) -> None:
        """Worker thread body. Never raises."""
        try:
            result = self._execute(job)
            state = JobState.SUCCEEDED if result.success else JobState.FAILED
            job.finish(state, result)
        except _StageFailed as e:
            job.finish(JobState.FAILED, e.result)
        except _StageCancelled:
            pass  # Already CANCELLED
        except KeyboardInterrupt:
            job.finish(JobState.CANCELLED, BuildFlashResult.cancelled(job.firmware_bin_path))
            raise
        except Exception as e:
            logging.error(f"Job {job.job_id} crashed: {e}", exc_info=True)
            job.finish(
                JobState.FAILED,
                BuildFlashResult.failed(ErrorType.INTERNAL_ERROR, f"{type(e).__name__}: {e}", job.firmware_bin_path),
            )

    def _execute(self, job: Job) -> BuildFlashResult:
        request = job.request

        context = self.resolver.resolve(self.platform)
        checkout = self.resolver.checkout_path(context, request.target, request.repository)

        self._enter(job, JobState.PREPARING_SOURCE)
        self._prepare_source(job, context, checkout)

        self._enter(job, JobState.BUILDING)
        artifact = checkout / request.profile.artifact_path
        # The working copy outlives jobs; only firmware written by this build counts.
        try:
            artifact.unlink(missing_ok=True)
        except OSError as e:
            raise _StageFailed(
                BuildFlashResult.failed(ErrorType.FILESYSTEM_ERROR, f"Cannot remove previous firmware {artifact}: {e}")
            ) from e
        env = context.with_overrides(dict(request.profile.extra_env))
        self._run_stage(job, request.profile.build_command, env, checkout, self.build_classifier, port=None)

        if not artifact.is_file():
            raise _StageFailed(
                BuildFlashResult.failed(
                    ErrorType.UNKNOWN_BUILD_ERROR,
                    f"Build finished but no firmware was found at {artifact}",
                )
            )
        with job.lock:
            job.firmware_bin_path = str(artifact)

        if not request.flash:
            return BuildFlashResult.succeeded("Build successful", job.firmware_bin_path)

        self._enter(job, JobState.FLASHING)
        port = request.flash_port or self.port_detector()
        if not port:
            raise _StageFailed(
                BuildFlashResult.failed(
                    ErrorType.DEVICE_NOT_FOUND,
                    "No flash port specified and auto-detection found no device",
                    job.firmware_bin_path,
                )
            )
        self._run_stage(job, request.profile.flash_command, env, checkout, self.flash_classifier, port=port)
        return BuildFlashResult.succeeded("Build and flash successful", job.firmware_bin_path)

    def _enter(self, job: Job, state: JobState) -> None:
        if not job.transition(state):
            raise _StageCancelled()

    def _prepare_source(self, job: Job, context: EnvironmentContext, checkout: Path) -> None:
        request = job.request
        try:
            context.toolchain_state_path.mkdir(parents=True, exist_ok=True)
            self.source_provider.prepare(
                request.repository, request.revision, checkout, context.env, tracker=_JobProcessTracker(job)
            )
        except SourceError as e:
            raise _StageFailed(BuildFlashResult.failed(SOURCE_ERROR_TYPES[e.kind], str(e))) from e
        except SpawnError as e:
            raise _StageFailed(BuildFlashResult.failed(SPAWN_ERROR_TYPES[e.reason], str(e))) from e
        except OSError as e:
            raise _StageFailed(BuildFlashResult.failed(ErrorType.FILESYSTEM_ERROR, str(e))) from e

    def _run_stage(
        self,
        job: Job,
        command: tuple[str, ...],
        env: dict[str, str],
        checkout: Path,
        classifier: ResultClassifier,
        port: Optional[str],
    ) -> None:
        """Spawn one stage command, relay its output and classify its exit."""
        if not command:
            raise _StageFailed(
                BuildFlashResult.failed(
                    classifier.fallback,
                    f"No command configured for {job.state.value}",
                    job.firmware_bin_path,
                )
            )

        argv = self._expand(command, job, checkout, port)
        job.reset_diagnostic_tail()
        try:
            handle = self.supervisor.spawn(argv[0], argv[1:], env, checkout)
        except SpawnError as e:
            raise _StageFailed(BuildFlashResult.failed(SPAWN_ERROR_TYPES[e.reason], str(e), job.firmware_bin_path)) from e

        tracker = _JobProcessTracker(job)
        tracker.attach(handle)
        for event in handle.events():
            tracker.output(event)
        exit_status = handle.wait()
        tracker.detach(handle, exit_status)

        tail = job.diagnostic_tail()
        error_type = classifier.classify(exit_status.returncode, tail)
        logging.info(f"Job {job.job_id}: {job.state.value} exited with {exit_status.returncode}")
        if error_type is not None:
            raise _StageFailed(
                BuildFlashResult.failed(error_type, self._summarize(tail, exit_status.returncode), job.firmware_bin_path)
            )

    @staticmethod
    def _expand(command: tuple[str, ...], job: Job, checkout: Path, port: Optional[str]) -> list[str]:
        values = {
            "firmware": job.firmware_bin_path or "",
            "port": port or "",
            "target": job.request.target,
            "checkout": str(checkout),
        }
        return [PLACEHOLDER.sub(lambda m: values[m.group(1)], part) for part in command]

    def _summarize(self, tail: str, returncode: Optional[int]) -> str:
        """Failure message from the last meaningful output lines."""
        meaningful = [line.strip() for line in tail.splitlines() if line.strip()]
        lines = meaningful[-self.config.message_lines :]
        if not lines:
            return f"Process exited with code {returncode}"
        return "\n".join(lines)

