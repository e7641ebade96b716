"""
Process Supervision Module

This module spawns external toolchain commands and exposes their output as an
incremental stream of OutputEvent values.

Key features:
- Captures stdout and stderr on separate reader threads
- One shared sequence counter across both streams
- Cancellation kills the entire process tree
- Spawn failures are raised synchronously as SpawnError

Ordering guarantee:
    stdout and stderr are physically distinct pipes read by two threads. Each
    line is numbered at the moment its reader observes it, so order is total
    within a stream and only a causally consistent approximation across
    streams.
"""

import itertools
import logging
import queue
import shutil
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Iterator, Mapping, Optional, Sequence

import psutil

from fwflash.orchestrator.errors import SpawnError, SpawnReason
from fwflash.orchestrator.messages import OutputEvent, OutputStream

_EOF = object()


@dataclass(frozen=True)
class ProcessExit:
    """Terminal status of a supervised process.

    Attributes:
        returncode: Exit code reported by the OS (None if never observed)
        cancelled: Whether cancellation was requested before the exit
    """

    returncode: Optional[int]
    cancelled: bool = False


class ProcessHandle:
    """Handle to one running external command.

    The event stream may be consumed exactly once.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        command: Sequence[str],
        kill_grace_period: float = 3.0,
    ):
        self.process = process
        self.command = list(command)
        self.kill_grace_period = kill_grace_period
        self._events: "queue.Queue[object]" = queue.Queue()
        self._sequence = itertools.count(1)
        self._sequence_lock = threading.Lock()
        self._cancel_requested = threading.Event()
        self._consumed = False
        self._readers = [
            threading.Thread(
                target=self._read_stream,
                args=(process.stdout, OutputStream.STDOUT),
                name=f"reader-{process.pid}-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=self._read_stream,
                args=(process.stderr, OutputStream.STDERR),
                name=f"reader-{process.pid}-stderr",
                daemon=True,
            ),
        ]
        for reader in self._readers:
            reader.start()

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.poll()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested.is_set()

    def _read_stream(self, pipe: Optional[IO[str]], stream: OutputStream) -> None:
        """Reader thread body: forward lines from one pipe until EOF."""
        if pipe is None:
            self._events.put(_EOF)
            return
        try:
            for raw in pipe:
                line = raw.rstrip("\r\n")
                with self._sequence_lock:
                    event = OutputEvent(sequence=next(self._sequence), stream=stream, line=line)
                    self._events.put(event)
        except (OSError, ValueError) as e:
            # Pipe closed underneath us (process killed)
            logging.debug(f"Reader for pid {self.pid} {stream.value} stopped: {e}")
        finally:
            try:
                pipe.close()
            except OSError:
                pass
            self._events.put(_EOF)

    def events(self) -> Iterator[OutputEvent]:
        """Lazily yield output events until both streams reach EOF.

        Raises:
            RuntimeError: If the stream was already consumed
        """
        if self._consumed:
            raise RuntimeError(f"Output of process {self.pid} was already consumed")
        self._consumed = True
        return self._iterate()

    def _iterate(self) -> Iterator[OutputEvent]:
        remaining = len(self._readers)
        while remaining:
            item = self._events.get()
            if item is _EOF:
                remaining -= 1
                continue
            if isinstance(item, OutputEvent):
                yield item

    def wait(self, timeout: Optional[float] = None) -> ProcessExit:
        """Wait for the process to exit.

        Args:
            timeout: Maximum seconds to wait (None waits forever)

        Returns:
            ProcessExit; ``cancelled`` is set when cancel() was called

        Raises:
            subprocess.TimeoutExpired: If the timeout elapsed first
        """
        returncode = self.process.wait(timeout=timeout)
        return ProcessExit(returncode=returncode, cancelled=self.cancel_requested)

    def cancel(self) -> None:
        """Request termination of the process and all of its children.

        Returns as soon as the signal has been sent; a background thread
        force-kills stragglers after the grace period.
        """
        if self._cancel_requested.is_set():
            return
        self._cancel_requested.set()
        if self.process.poll() is not None:
            return

        logging.info(f"Cancelling process {self.pid}: {' '.join(self.command)}")
        processes = _collect_process_tree(self.pid)
        for proc in processes:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass  # Already dead
            except KeyboardInterrupt:
                raise
            except Exception as e:
                logging.warning(f"Failed to terminate process {proc.pid}: {e}")

        threading.Thread(
            target=_reap_stragglers,
            args=(processes, self.kill_grace_period),
            name=f"reaper-{self.pid}",
            daemon=True,
        ).start()


def _collect_process_tree(root_pid: int) -> list[psutil.Process]:
    """Return the root process and all descendants, children first."""
    try:
        root = psutil.Process(root_pid)
    except psutil.NoSuchProcess:
        return []
    try:
        children = root.children(recursive=True)
    except psutil.NoSuchProcess:
        children = []
    return list(reversed(children)) + [root]


def _reap_stragglers(processes: list[psutil.Process], grace_period: float) -> None:
    _gone, alive = psutil.wait_procs(processes, timeout=grace_period)
    for proc in alive:
        try:
            proc.kill()
            logging.warning(f"Force killed stubborn process {proc.pid}")
        except psutil.NoSuchProcess:
            pass
        except KeyboardInterrupt:
            raise
        except Exception as e:
            logging.warning(f"Failed to force kill process {proc.pid}: {e}")


class ProcessSupervisor:
    """Spawns external commands as supervised processes."""

    def __init__(self, kill_grace_period: float = 3.0):
        """Initialize the supervisor.

        Args:
            kill_grace_period: Seconds between terminate and kill on cancellation
        """
        self.kill_grace_period = kill_grace_period

    def spawn(
        self,
        command: str,
        args: Sequence[str],
        env: Mapping[str, str],
        working_dir: Path,
    ) -> ProcessHandle:
        """Start a command.

        Args:
            command: Executable name or path (looked up on env["PATH"])
            args: Arguments after the executable
            env: Full process environment
            working_dir: Working directory for the process

        Returns:
            ProcessHandle for the running process

        Raises:
            SpawnError: If the executable cannot be found or executed
        """
        argv = [command, *args]
        executable = _which(command, env, working_dir)
        if executable is None:
            raise SpawnError(
                SpawnReason.EXECUTABLE_NOT_FOUND,
                command,
                f"Executable not found: {command}",
            )

        try:
            process = subprocess.Popen(
                [executable, *args],
                cwd=str(working_dir),
                env=dict(env),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",  # Toolchains may output binary data
                bufsize=1,
            )
        except FileNotFoundError as e:
            raise SpawnError(SpawnReason.EXECUTABLE_NOT_FOUND, command, f"Executable not found: {command} ({e})") from e
        except PermissionError as e:
            raise SpawnError(SpawnReason.PERMISSION_DENIED, command, f"Permission denied: {command} ({e})") from e
        except OSError as e:
            raise SpawnError(SpawnReason.EXECUTABLE_NOT_FOUND, command, f"Failed to spawn {command}: {e}") from e

        logging.info(f"Spawned pid {process.pid} in {working_dir}: {' '.join(argv)}")
        return ProcessHandle(process, argv, kill_grace_period=self.kill_grace_period)


def _which(command: str, env: Mapping[str, str], working_dir: Path) -> Optional[str]:
    """Resolve a command against the PATH of the given environment.

    Commands containing a path separator are resolved relative to the
    working directory instead.
    """
    if any(sep in command for sep in ("/", "\\")):
        candidate = Path(working_dir) / command
        return str(candidate) if candidate.exists() else None
    return shutil.which(command, path=env.get("PATH"))
