"""Unit tests for in-flight job state."""

import pytest

from fwflash.orchestrator.job import Job, new_job_id
from fwflash.orchestrator.messages import (
    BuildFlashResult,
    BuildProfile,
    ErrorType,
    JobRequest,
    JobState,
    OutputStream,
    RepositoryDescriptor,
)


@pytest.fixture
def job():
    request = JobRequest(
        target="board-A",
        repository=RepositoryDescriptor(clone_url="https://example.invalid/fw.git"),
        revision="master",
        profile=BuildProfile(build_command=("make",), artifact_path="fw.bin"),
    )
    return Job(request, history_size=3, subscriber_queue_size=10, diagnostic_tail_lines=2)


class TestJob:
    """Test cases for Job."""

    def test_job_ids_are_unique(self):
        assert new_job_id() != new_job_id()

    def test_publish_numbers_and_stamps_stage(self, job):
        job.transition(JobState.BUILDING)
        first = job.publish(OutputStream.STDOUT, "a")
        second = job.publish(OutputStream.STDERR, "b")

        assert (first.sequence, second.sequence) == (1, 2)
        assert first.stage == JobState.BUILDING

    def test_history_is_bounded(self, job):
        job.transition(JobState.BUILDING)
        for i in range(5):
            job.publish(OutputStream.STDOUT, f"line {i}")
        job.finish(JobState.SUCCEEDED, BuildFlashResult.succeeded())

        assert [event.line for event in job.subscribe()] == ["line 2", "line 3", "line 4"]

    def test_diagnostic_tail(self, job):
        job.transition(JobState.BUILDING)
        for line in ("one", "two", "three"):
            job.publish(OutputStream.STDOUT, line)
        assert job.diagnostic_tail() == "two\nthree"

        job.reset_diagnostic_tail()
        assert job.diagnostic_tail() == ""

    def test_finish_only_once(self, job):
        assert job.finish(JobState.CANCELLED, BuildFlashResult.cancelled())
        assert not job.finish(JobState.SUCCEEDED, BuildFlashResult.succeeded())

        assert job.state == JobState.CANCELLED
        assert job.wait(timeout=0).error_type == ErrorType.CANCELLED

    def test_no_transition_after_terminal(self, job):
        job.finish(JobState.FAILED, BuildFlashResult.failed(ErrorType.COMPILATION_FAILED))
        assert not job.transition(JobState.FLASHING)
        assert job.state == JobState.FAILED

    def test_no_output_after_terminal(self, job):
        job.finish(JobState.CANCELLED, BuildFlashResult.cancelled())
        assert job.publish(OutputStream.STDOUT, "late") is None
        assert list(job.subscribe()) == []

    def test_wait_timeout(self, job):
        with pytest.raises(TimeoutError):
            job.wait(timeout=0.01)

    def test_finish_ends_live_subscriptions(self, job):
        job.transition(JobState.BUILDING)
        subscription = job.subscribe()
        job.publish(OutputStream.STDOUT, "x")
        job.finish(JobState.SUCCEEDED, BuildFlashResult.succeeded())

        assert [event.line for event in subscription] == ["x"]
