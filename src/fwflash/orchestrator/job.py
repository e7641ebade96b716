"""
In-flight job tracking.

A Job holds the mutable state of one build/flash execution: lifecycle state,
output relay (history + subscriptions), the currently active process handle
and the terminal result. JobHandle is the caller-facing view of a Job.

Thread-safety: every state change goes through Job.lock. The worker thread
publishes output and advances stages; any other thread may cancel.
"""

import itertools
import logging
import threading
import time
import uuid
from collections import deque
from typing import TYPE_CHECKING, Optional

from fwflash.orchestrator.messages import (
    BuildFlashResult,
    JobRequest,
    JobState,
    OutputEvent,
    OutputStream,
)
from fwflash.orchestrator.process_supervisor import ProcessExit, ProcessHandle
from fwflash.orchestrator.subscription import OutputSubscription

if TYPE_CHECKING:
    from fwflash.orchestrator.controller import JobController


def new_job_id() -> str:
    return f"job_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class Job:
    """Mutable state of one job, owned by the controller."""

    def __init__(
        self,
        request: JobRequest,
        history_size: int = 1000,
        subscriber_queue_size: int = 500,
        diagnostic_tail_lines: int = 40,
    ):
        self.job_id = new_job_id()
        self.request = request
        self.lock = threading.RLock()
        self.state = JobState.PENDING
        self.created_at = time.time()
        self.finished_at: Optional[float] = None
        self.result: Optional[BuildFlashResult] = None
        self.firmware_bin_path: Optional[str] = None
        self.active_process: Optional[ProcessHandle] = None
        self.late_exit: Optional[ProcessExit] = None
        self.released = False
        self.subscriber_queue_size = subscriber_queue_size
        self._history: deque[OutputEvent] = deque(maxlen=max(history_size, 0))
        self._diagnostic_tail: deque[str] = deque(maxlen=diagnostic_tail_lines)
        self._subscriptions: list[OutputSubscription] = []
        self._sequence = itertools.count(1)
        self._done = threading.Event()

    # Lifecycle

    @property
    def is_terminal(self) -> bool:
        with self.lock:
            return self.state.is_terminal

    @property
    def cancelled(self) -> bool:
        with self.lock:
            return self.state == JobState.CANCELLED

    def transition(self, state: JobState) -> bool:
        """Move to a non-terminal state.

        Returns:
            False if the job already reached a terminal state (e.g. cancelled)
        """
        with self.lock:
            if self.state.is_terminal:
                return False
            logging.info(f"Job {self.job_id} [{self.request.target}]: {self.state.value} -> {state.value}")
            self.state = state
            return True

    def finish(self, state: JobState, result: BuildFlashResult) -> bool:
        """Record the terminal state and result exactly once.

        Returns:
            False if the job was already terminal; the earlier result stands
        """
        with self.lock:
            if self.state.is_terminal:
                return False
            logging.info(
                f"Job {self.job_id} [{self.request.target}]: {self.state.value} -> {state.value}"
                + (f" ({result.error_type.value})" if result.error_type else "")
            )
            self.state = state
            self.result = result
            self.finished_at = time.time()
            subscriptions = list(self._subscriptions)
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.finish()
        self._done.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> BuildFlashResult:
        """Block until the job has a terminal result.

        Raises:
            TimeoutError: If the timeout elapsed first
        """
        if not self._done.wait(timeout):
            raise TimeoutError(f"Job {self.job_id} did not finish within {timeout}s")
        with self.lock:
            result = self.result
        if result is None:
            raise RuntimeError(f"Job {self.job_id} finished without a result")
        return result

    # Output relay

    def publish(self, stream: OutputStream, line: str) -> Optional[OutputEvent]:
        """Number an output line and relay it to history and subscribers.

        Lines arriving after the job is terminal are dropped.
        """
        with self.lock:
            if self.state.is_terminal:
                return None
            event = OutputEvent(
                sequence=next(self._sequence),
                stream=stream,
                line=line,
                stage=self.state,
            )
            self._history.append(event)
            self._diagnostic_tail.append(line)
            for subscription in self._subscriptions:
                subscription.publish(event)
        return event

    def subscribe(self) -> OutputSubscription:
        """Create a subscription that replays retained history, then goes live."""
        subscription = OutputSubscription(self.job_id, max_size=self.subscriber_queue_size)
        with self.lock:
            for event in self._history:
                subscription.publish(event)
            if self.state.is_terminal:
                subscription.finish()
            else:
                self._subscriptions.append(subscription)
        return subscription

    def diagnostic_tail(self) -> str:
        with self.lock:
            return "\n".join(self._diagnostic_tail)

    def reset_diagnostic_tail(self) -> None:
        with self.lock:
            self._diagnostic_tail.clear()


class JobHandle:
    """Caller-facing handle for a submitted job."""

    def __init__(self, job: Job, controller: "JobController"):
        self._job = job
        self._controller = controller

    @property
    def job_id(self) -> str:
        return self._job.job_id

    @property
    def request(self) -> JobRequest:
        return self._job.request

    @property
    def target(self) -> str:
        return self._job.request.target

    @property
    def state(self) -> JobState:
        with self._job.lock:
            return self._job.state

    @property
    def result(self) -> Optional[BuildFlashResult]:
        with self._job.lock:
            return self._job.result

    @property
    def late_exit(self) -> Optional[ProcessExit]:
        """Exit status of a process that outlived its job's cancellation."""
        with self._job.lock:
            return self._job.late_exit

    def subscribe(self) -> OutputSubscription:
        return self._controller.subscribe_output(self.job_id)

    def wait(self, timeout: Optional[float] = None) -> BuildFlashResult:
        return self._controller.await_result(self.job_id, timeout=timeout)

    def cancel(self) -> None:
        self._controller.cancel(self.job_id)

    def release(self) -> None:
        self._controller.release(self.job_id)

    def __enter__(self) -> "JobHandle":
        return self

    def __exit__(self, *exc: object) -> None:
        if not self._job.is_terminal:
            self.cancel()
        self.release()

    def __repr__(self) -> str:
        return f"JobHandle(job_id={self.job_id!r}, target={self.target!r}, state={self.state.value})"
