"""
Background dispatch loop.

Drains the transport guard, feeds the frame decoder and publishes every
decoded record to the event registry.

Architecture:
    DispatchLoop (background thread)
        └── TransportGuard.read_available(read_timeout)
        └── FrameDecoder.feed -> records
        └── ToleranceFilter.accept (optional)
        └── EventRegistry.publish(record.event_name, record)

Subscribers run on this thread. A slow subscriber delays every record
behind it.
"""

import logging
import threading
from typing import Dict, Optional

from py2kobuki.core.diagnostics import DiagnosticEvent, DiagnosticKind, DiagnosticStream
from py2kobuki.core.errors import KobukiError, TransportError
from py2kobuki.core.event_registry import EventRegistry
from py2kobuki.core.frame_decoder import FrameDecoder
from py2kobuki.core.tolerance_filter import ToleranceFilter
from py2kobuki.core.transport_guard import TransportGuard

logger = logging.getLogger(__name__)


class DispatchLoop:
    """
    Single reader thread between the transport guard and the registry.

    One DispatchLoop runs once: create a new one to restart.
    """

    def __init__(
        self,
        guard: TransportGuard,
        decoder: FrameDecoder,
        registry: EventRegistry,
        tolerance_filter: Optional[ToleranceFilter] = None,
        diagnostics: Optional[DiagnosticStream] = None,
        read_timeout: float = 0.5
    ):
        """
        Initialize the dispatch loop.

        Args:
            guard: Open (or about to be opened) transport guard
            decoder: Frame decoder owned by this loop while it runs
            registry: Registry to publish into
            tolerance_filter: Drops readings that changed less than their tolerance
            diagnostics: Receives lifecycle and transport error events
            read_timeout: Longest wait for data before re-checking the stop flag
        """
        if read_timeout <= 0:
            raise ValueError(f"read_timeout must be positive, got {read_timeout}")

        self._guard = guard
        self._decoder = decoder
        self._registry = registry
        self._filter = tolerance_filter
        self._diagnostics = diagnostics
        self._read_timeout = read_timeout

        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._done = threading.Event()

        self.error: Optional[KobukiError] = None

        self._stats = {
            'reads': 0,
            'bytes_read': 0,
            'records_decoded': 0,
            'records_published': 0,
            'records_suppressed': 0,
        }

    def start(self) -> None:
        """Start the background thread."""
        with self._lock:
            if self._thread is not None:
                logger.warning("DispatchLoop already started")
                return

            self._thread = threading.Thread(
                target=self._run,
                name="KobukiDispatch",
                daemon=True
            )
            self._thread.start()
        logger.info("DispatchLoop background thread started")

    def request_stop(self) -> None:
        """Ask the loop to exit at its next read timeout. Does not wait."""
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the loop to finish.

        Returns:
            True if the loop has terminated (or never started)
        """
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout=timeout)
        return not thread.is_alive()

    def stop(self, timeout: float = 2.0) -> bool:
        """
        Signal the loop and wait for it.

        Closing the guard is the caller's job; without it the loop exits
        within one read_timeout.

        Returns:
            True if the loop terminated within timeout
        """
        self.request_stop()
        stopped = self.join(timeout)
        if not stopped:
            logger.warning("DispatchLoop thread did not stop cleanly")
        return stopped

    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._done.is_set()

    def _post(self, kind: DiagnosticKind, message: str, error: Optional[Exception] = None) -> None:
        if self._diagnostics is not None:
            self._diagnostics.put(DiagnosticEvent(kind, message, error))

    def _run(self) -> None:
        """Main loop - runs in the background thread."""
        logger.info("Dispatch loop starting")
        self._post(DiagnosticKind.LOOP_STARTED, "dispatch loop started")
        reason = "stop requested"

        try:
            while not self._stop_event.is_set():
                try:
                    data = self._guard.read_available(self._read_timeout)
                except TransportError as e:
                    self.error = e
                    reason = f"transport error: {e}"
                    logger.error(f"Transport error in dispatch loop: {e}")
                    self._post(DiagnosticKind.TRANSPORT_ERROR, str(e), e)
                    break

                if data is None:
                    # Timeout - check stop flag
                    continue

                if len(data) == 0:
                    reason = "transport closed"
                    logger.info("Transport closed - dispatch loop stopping")
                    break

                self._stats['reads'] += 1
                self._stats['bytes_read'] += len(data)
                self._dispatch(data)

        except Exception as e:
            # A bug in the decoder or filter must not die silently
            self.error = KobukiError(f"Dispatch loop failed: {e}", cause=e)
            reason = f"unexpected error: {e}"
            logger.error(f"Unexpected error in dispatch loop: {e}", exc_info=True)
            self._post(DiagnosticKind.TRANSPORT_ERROR, str(e), self.error)

        finally:
            self._done.set()
            self._post(DiagnosticKind.LOOP_STOPPED, f"dispatch loop stopped ({reason})")
            logger.info(f"Dispatch loop exiting ({reason}). Stats: {self._stats}")

    def _dispatch(self, data: bytes) -> None:
        records = self._decoder.feed(data)
        self._stats['records_decoded'] += len(records)

        for record in records:
            if self._filter is not None and not self._filter.accept(record):
                self._stats['records_suppressed'] += 1
                continue
            self._registry.publish(record.event_name, record)
            self._stats['records_published'] += 1

    def get_stats(self) -> Dict[str, int]:
        """Get loop statistics."""
        return self._stats.copy()
