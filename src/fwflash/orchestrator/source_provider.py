"""Source providers: working copies of firmware repositories.

A working copy is disposable, build-only storage. Preparing one either clones
it fresh or fetches and force-checks-out the requested revision, discarding
any local modifications.

git runs under the Process Supervisor like any other toolchain command, so a
job's cancellation reaches it and its output is relayed to subscribers.

Errors are never retried here; a flaky clone is retried by the caller
submitting a new job.
"""

import logging
import re
import subprocess
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping, Optional, Sequence

import requests

from fwflash.orchestrator.errors import SourceError, SourceErrorKind
from fwflash.orchestrator.messages import OutputEvent, OutputStream, RepositoryDescriptor
from fwflash.orchestrator.process_supervisor import ProcessExit, ProcessHandle, ProcessSupervisor

# Ordered (pattern, kind) table applied to git's stderr, first match wins.
GIT_ERROR_PATTERNS: tuple[tuple[re.Pattern[str], SourceErrorKind], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), kind)
    for pattern, kind in (
        (
            r"could not resolve host|unable to access|failed to connect|connection (?:timed out|refused|reset)"
            r"|network is unreachable|could not read from remote repository|\bSSL\b|\bTLS\b|gnutls",
            SourceErrorKind.NETWORK_UNAVAILABLE,
        ),
        (
            r"did not match any file|unknown revision|couldn't find remote ref|reference is not a tree"
            r"|not a valid object name|invalid reference|Remote branch .* not found",
            SourceErrorKind.REVISION_NOT_FOUND,
        ),
        (
            r"permission denied|no space left on device|read-only file system|could not create"
            r"|unable to (?:create|write)|already exists and is not an empty directory|index\.lock",
            SourceErrorKind.FILESYSTEM_ERROR,
        ),
    )
)


class ProcessTracker(ABC):
    """Receives the processes a source provider starts on behalf of a job.

    attach() and detach() may raise to abort preparation, e.g. when the job
    was cancelled; the provider lets such exceptions propagate.
    """

    @abstractmethod
    def attach(self, handle: ProcessHandle) -> None:
        """Called right after a process was spawned."""
        pass

    @abstractmethod
    def output(self, event: OutputEvent) -> None:
        """Called for every line the process writes."""
        pass

    @abstractmethod
    def detach(self, handle: ProcessHandle, exit_status: ProcessExit) -> None:
        """Called once the process has exited."""
        pass


class ISourceProvider(ABC):
    """Interface for source providers.

    Implementations must be safe to call concurrently for different
    destinations. Callers never call them concurrently for the same one.
    """

    @abstractmethod
    def prepare(
        self,
        repository: RepositoryDescriptor,
        revision: str,
        destination: Path,
        env: Mapping[str, str],
        tracker: Optional[ProcessTracker] = None,
    ) -> Path:
        """Ensure destination holds a working copy checked out at revision.

        Args:
            repository: Repository to clone from
            revision: Branch, tag or commit
            destination: Working copy directory
            env: Process environment (PATH with portable toolchains)
            tracker: Notified of every process started for this preparation

        Returns:
            Path to the prepared working copy

        Raises:
            SourceError: If the working copy cannot be prepared
            SpawnError: If the version control executable is missing
        """
        pass


class GitSourceProvider(ISourceProvider):
    """Prepares working copies with the git command line client."""

    def __init__(
        self,
        git_executable: str = "git",
        timeout: float = 1800,
        probe_timeout: float = 5,
        supervisor: Optional[ProcessSupervisor] = None,
    ):
        """Initialize provider.

        Args:
            git_executable: git binary name or path (resolved on the job's PATH)
            timeout: Maximum seconds for a single git invocation
            probe_timeout: Seconds for the network probe after an unexplained failure
            supervisor: Spawns the git processes (default: ProcessSupervisor)
        """
        self.git_executable = git_executable
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self.supervisor = supervisor or ProcessSupervisor()

    def prepare(
        self,
        repository: RepositoryDescriptor,
        revision: str,
        destination: Path,
        env: Mapping[str, str],
        tracker: Optional[ProcessTracker] = None,
    ) -> Path:
        destination = Path(destination)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SourceError(SourceErrorKind.FILESYSTEM_ERROR, f"Cannot create {destination.parent}: {e}") from e

        def git(args: Sequence[str], cwd: Path, step: str) -> str:
            return self._git(args, cwd, env, repository, step, tracker)

        if (destination / ".git").exists():
            logging.info(f"Updating working copy {destination} to {revision}")
            git(["fetch", "--tags", "--force", "--prune", "origin"], destination, "fetch")
        else:
            if destination.exists() and any(destination.iterdir()):
                raise SourceError(
                    SourceErrorKind.FILESYSTEM_ERROR,
                    f"{destination} exists but is not a git working copy",
                )
            logging.info(f"Cloning {repository.clone_url} into {destination}")
            git(["clone", repository.clone_url, str(destination)], destination.parent, "clone")

        git(["checkout", "--force", revision], destination, "checkout")
        # Branches need to follow the remote; tags and commits are already exact.
        if self._is_remote_branch(revision, destination, env, tracker):
            git(["reset", "--hard", f"origin/{revision}"], destination, "checkout")
        else:
            git(["reset", "--hard"], destination, "checkout")
        git(["clean", "-fd"], destination, "checkout")
        return destination

    def _is_remote_branch(
        self, revision: str, cwd: Path, env: Mapping[str, str], tracker: Optional[ProcessTracker]
    ) -> bool:
        result = self._run(["rev-parse", "--verify", "--quiet", f"refs/remotes/origin/{revision}"], cwd, env, tracker)
        return result.returncode == 0

    def _run(
        self,
        args: Sequence[str],
        cwd: Path,
        env: Mapping[str, str],
        tracker: Optional[ProcessTracker] = None,
    ) -> subprocess.CompletedProcess:
        """Run one git command to completion under the supervisor.

        Raises:
            SpawnError: If git cannot be started
            SourceError: If git exceeded the timeout
        """
        handle = self.supervisor.spawn(self.git_executable, args, env, cwd)
        if tracker is not None:
            tracker.attach(handle)

        timed_out = threading.Event()
        timer = threading.Timer(self.timeout, self._expire, args=(handle, timed_out))
        timer.daemon = True
        timer.start()
        stdout: list[str] = []
        stderr: list[str] = []
        try:
            for event in handle.events():
                (stdout if event.stream == OutputStream.STDOUT else stderr).append(event.line)
                if tracker is not None:
                    tracker.output(event)
            exit_status = handle.wait()
        finally:
            timer.cancel()

        if tracker is not None:
            tracker.detach(handle, exit_status)
        if timed_out.is_set():
            raise SourceError(SourceErrorKind.NETWORK_UNAVAILABLE, f"git {args[0]} timed out after {self.timeout}s")
        return subprocess.CompletedProcess(
            [self.git_executable, *args], exit_status.returncode, "\n".join(stdout), "\n".join(stderr)
        )

    def _expire(self, handle: ProcessHandle, timed_out: threading.Event) -> None:
        timed_out.set()
        logging.warning(f"git process {handle.pid} exceeded {self.timeout}s, terminating")
        handle.cancel()

    def _git(
        self,
        args: Sequence[str],
        cwd: Path,
        env: Mapping[str, str],
        repository: RepositoryDescriptor,
        step: str,
        tracker: Optional[ProcessTracker] = None,
    ) -> str:
        result = self._run(args, cwd, env, tracker)
        if result.returncode == 0:
            return result.stdout

        diagnostic = (result.stderr or result.stdout or "").strip()
        kind = self.classify_failure(diagnostic)
        if kind is None:
            kind = self._fallback_kind(repository, step)
        logging.error(f"git {args[0]} failed ({kind.value}): {diagnostic}")
        raise SourceError(kind, f"git {args[0]} failed: {diagnostic or f'exit code {result.returncode}'}")

    @staticmethod
    def classify_failure(diagnostic: str) -> Optional[SourceErrorKind]:
        """Map git stderr onto a SourceErrorKind using GIT_ERROR_PATTERNS."""
        for pattern, kind in GIT_ERROR_PATTERNS:
            if pattern.search(diagnostic):
                return kind
        return None

    def _fallback_kind(self, repository: RepositoryDescriptor, step: str) -> SourceErrorKind:
        """Decide the kind of an unexplained git failure."""
        if step in ("clone", "fetch") and not self.is_reachable(repository.clone_url):
            return SourceErrorKind.NETWORK_UNAVAILABLE
        if step == "checkout":
            return SourceErrorKind.REVISION_NOT_FOUND
        return SourceErrorKind.FILESYSTEM_ERROR

    def is_reachable(self, url: str) -> bool:
        """Probe whether the repository host answers HTTP(S) at all."""
        if not url.startswith(("http://", "https://")):
            return True  # ssh/file remotes cannot be probed this way
        try:
            requests.head(url, timeout=self.probe_timeout, allow_redirects=True)
            return True
        except KeyboardInterrupt:
            raise
        except requests.RequestException as e:
            logging.warning(f"Repository host unreachable: {url} ({e})")
            return False
