"""Bounded output subscriptions.

A subscription is the listener side of a job's output relay. The producer
(process reader) never blocks: each subscription keeps at most ``max_size``
undelivered events, dropping the oldest one when full. The next event handed
to the listener after a drop is an OVERFLOW marker reporting how many events
were lost.
"""

import logging
import threading
from collections import deque
from typing import Iterator, Optional

from fwflash.orchestrator.messages import OutputEvent, OutputStream


class OutputSubscription:
    """Iterator over one job's output events for a single listener.

    Iteration ends once the job reaches a terminal state and every buffered
    event has been delivered, or once close() is called by the listener.
    """

    def __init__(self, job_id: str, max_size: int = 500):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.job_id = job_id
        self.max_size = max_size
        self._buffer: deque[OutputEvent] = deque()
        self._condition = threading.Condition()
        self._finished = False
        self._closed = False
        self._dropped = 0
        self._last_dropped_sequence = 0
        self.total_dropped = 0

    def publish(self, event: OutputEvent) -> None:
        """Buffer an event for the listener without ever blocking."""
        with self._condition:
            if self._finished or self._closed:
                return
            if len(self._buffer) >= self.max_size:
                dropped = self._buffer.popleft()
                self._dropped += 1
                self.total_dropped += 1
                self._last_dropped_sequence = dropped.sequence
                if self._dropped == 1:
                    logging.warning(f"Subscriber queue for job {self.job_id} is full, dropping oldest events")
            self._buffer.append(event)
            self._condition.notify_all()

    def finish(self) -> None:
        """Mark the stream as complete; buffered events remain deliverable."""
        with self._condition:
            self._finished = True
            self._condition.notify_all()

    def close(self) -> None:
        """Stop listening; pending events are discarded."""
        with self._condition:
            self._closed = True
            self._buffer.clear()
            self._condition.notify_all()

    @property
    def finished(self) -> bool:
        with self._condition:
            return self._finished or self._closed

    def __iter__(self) -> Iterator[OutputEvent]:
        return self

    def __next__(self) -> OutputEvent:
        event = self.get()
        if event is None:
            raise StopIteration
        return event

    def get(self, timeout: Optional[float] = None) -> Optional[OutputEvent]:
        """Return the next event, or None when the stream has ended.

        Args:
            timeout: Maximum seconds to wait (None waits until an event or end)

        Raises:
            TimeoutError: If no event arrived within the timeout
        """
        with self._condition:
            ready = self._condition.wait_for(
                lambda: self._buffer or self._dropped or self._finished or self._closed,
                timeout=timeout,
            )
            if not ready:
                raise TimeoutError(f"No output from job {self.job_id} within {timeout}s")
            if self._closed:
                return None
            if self._dropped:
                # Marker takes the last dropped sequence number so numbering
                # stays strictly increasing for the listener.
                marker = OutputEvent(
                    sequence=self._last_dropped_sequence,
                    stream=OutputStream.OVERFLOW,
                    line=f"[{self._dropped} output events dropped: listener too slow]",
                )
                self._dropped = 0
                return marker
            if self._buffer:
                return self._buffer.popleft()
            return None
