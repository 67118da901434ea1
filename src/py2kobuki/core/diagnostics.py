"""
Bounded diagnostic event stream.

The dispatch loop, decoder and registry post problems here instead of raising
them into the loop. Consumers are optional: when nobody reads, the stream
keeps the newest ``maxsize`` events and drops the oldest.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, Iterator, List, Optional


class DiagnosticKind(Enum):
    """Kinds of diagnostic events."""

    DECODE_ERROR = "decode_error"
    SUBSCRIBER_ERROR = "subscriber_error"
    TRANSPORT_ERROR = "transport_error"
    LOOP_STARTED = "loop_started"
    LOOP_STOPPED = "loop_stopped"


@dataclass(frozen=True)
class DiagnosticEvent:
    """One diagnostic event."""

    kind: DiagnosticKind
    message: str
    error: Optional[Exception] = None
    timestamp: float = field(default_factory=time.time)


class DiagnosticStream:
    """
    Bounded, closable queue of DiagnosticEvents.

    ``put`` never blocks. ``get`` blocks up to a timeout and returns None once
    the stream is closed and drained.

    Example:
        >>> stream = DiagnosticStream(maxsize=10)
        >>> stream.put(DiagnosticEvent(DiagnosticKind.LOOP_STARTED, "started"))
        >>> stream.get(timeout=0.1).kind
        <DiagnosticKind.LOOP_STARTED: 'loop_started'>
    """

    def __init__(self, maxsize: int = 100):
        if maxsize < 1:
            raise ValueError(f"maxsize must be >= 1, got {maxsize}")
        self.logger = logging.getLogger(__name__)
        self._events: Deque[DiagnosticEvent] = deque(maxlen=maxsize)
        self._cond = threading.Condition()
        self._closed = False
        self._stats = {
            'events_posted': 0,
            'events_dropped': 0,
        }

    @property
    def maxsize(self) -> int:
        return self._events.maxlen

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def put(self, event: DiagnosticEvent) -> bool:
        """
        Post an event without blocking.

        Returns:
            False if the stream is closed and the event was discarded
        """
        with self._cond:
            if self._closed:
                return False
            if len(self._events) == self._events.maxlen:
                self._stats['events_dropped'] += 1
            self._events.append(event)
            self._stats['events_posted'] += 1
            self._cond.notify()
        return True

    def get(self, timeout: Optional[float] = None) -> Optional[DiagnosticEvent]:
        """
        Take the oldest event.

        Args:
            timeout: Seconds to wait (None = until an event arrives or close)

        Returns:
            The event, or None on timeout or when closed and empty
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._events or self._closed, timeout):
                return None
            if self._events:
                return self._events.popleft()
            return None

    def drain(self) -> List[DiagnosticEvent]:
        """Take every queued event without blocking."""
        with self._cond:
            events = list(self._events)
            self._events.clear()
        return events

    def close(self) -> None:
        """Stop accepting events and wake any blocked consumer."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
        self.logger.debug("Diagnostic stream closed")

    def __len__(self) -> int:
        with self._cond:
            return len(self._events)

    def __iter__(self) -> Iterator[DiagnosticEvent]:
        """Yield events until the stream is closed and drained."""
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    def get_stats(self) -> Dict[str, int]:
        with self._cond:
            return self._stats.copy()
