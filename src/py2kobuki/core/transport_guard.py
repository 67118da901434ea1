"""
Transport guard: exclusive owner of the robot connection.

The dispatch loop (single reader) and the command path (any number of
writers) share one transport only through this guard:

- writes are serialized so two commands never interleave on the wire;
- in half-duplex mode reads and writes take turns on the same lock;
- close() is observed by a pending read within one poll interval.

Read results follow the socket reader convention:
    bytes  -> data arrived
    None   -> nothing arrived within max_wait (keep looping)
    b''    -> connection closed or end of stream (stop reading)
"""

import logging
import threading
import time
from contextlib import nullcontext
from enum import Enum
from typing import Dict, Optional

from py2kobuki.core.errors import ClosedError, ErrorCodes, NotStartedError, TransportError
from py2kobuki.core.transport import Transport


class DuplexMode(Enum):
    FULL = "full"
    HALF = "half"


class GuardState(Enum):
    NEW = "new"
    OPEN = "open"
    CLOSED = "closed"


class TransportGuard:
    """
    Serializes access to a single Transport.

    Example:
        >>> guard = TransportGuard(LoopbackTransport())
        >>> guard.open()
        >>> guard.write(frame)
        >>> data = guard.read_available(0.5)
        >>> guard.close()
    """

    def __init__(
        self,
        transport: Transport,
        duplex: DuplexMode = DuplexMode.FULL,
        poll_interval: float = 0.05,
        read_size: int = 256
    ):
        """
        Initialize the guard.

        Args:
            transport: Connection to own; nothing else should hold a reference
            duplex: FULL lets reads and writes overlap, HALF alternates them
            poll_interval: Longest single blocking read, bounds close() latency
            read_size: Max bytes taken per read
        """
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        if read_size < 1:
            raise ValueError(f"read_size must be >= 1, got {read_size}")

        self._transport = transport
        self._duplex = DuplexMode(duplex)
        self._poll_interval = poll_interval
        self._read_size = read_size

        self._state = GuardState.NEW
        self._state_lock = threading.Lock()
        self._closed = threading.Event()

        self._write_lock = threading.Lock()
        # Half duplex: the reader must hold the same lock as writers
        self._read_lock = self._write_lock if self._duplex is DuplexMode.HALF else None

        self.logger = logging.getLogger(__name__)

        self._stats = {
            'bytes_read': 0,
            'bytes_written': 0,
            'writes': 0,
            'read_errors': 0,
            'write_errors': 0,
        }

    @property
    def duplex(self) -> DuplexMode:
        return self._duplex

    @property
    def state(self) -> GuardState:
        with self._state_lock:
            return self._state

    @property
    def is_open(self) -> bool:
        return self.state is GuardState.OPEN

    @property
    def transport_description(self) -> str:
        return self._transport.description

    def open(self) -> None:
        """
        Open the transport. Reopening after close() is allowed (restart).

        Raises:
            TransportError: If the transport cannot be opened
        """
        with self._state_lock:
            if self._state is GuardState.OPEN:
                self.logger.warning("Transport already open")
                return
            try:
                self._transport.open()
            except (OSError, ValueError) as e:
                self.logger.error(f"Failed to open {self._transport.description}: {e}")
                raise TransportError(
                    f"Failed to open {self._transport.description}: {e}",
                    cause=e,
                    error_code=ErrorCodes.OPEN_FAILED,
                ) from e
            self._closed.clear()
            self._state = GuardState.OPEN
        self.logger.info(f"Opened {self._transport.description} ({self._duplex.value} duplex)")

    def close(self) -> None:
        """
        Close the transport. Idempotent.

        A read blocked in read_available() returns b'' within one poll interval.
        """
        with self._state_lock:
            previous = self._state
            self._state = GuardState.CLOSED
            self._closed.set()
            if previous is not GuardState.OPEN:
                return
            try:
                self._transport.close()
            except OSError as e:
                # The connection is unusable either way; report and carry on
                self.logger.error(f"Error closing {self._transport.description}: {e}")
        self.logger.info(f"Closed {self._transport.description}")

    def _check_writable(self) -> None:
        state = self.state
        if state is GuardState.NEW:
            raise NotStartedError(
                "Transport has not been opened",
                error_code=ErrorCodes.NOT_STARTED,
            )
        if state is GuardState.CLOSED:
            raise ClosedError(
                "Transport is closed",
                error_code=ErrorCodes.CONNECTION_CLOSED,
            )

    def read_available(self, max_wait: float) -> Optional[bytes]:
        """
        Wait up to max_wait seconds for data.

        Args:
            max_wait: Upper bound on how long to block

        Returns:
            Data, None on timeout, or b'' when closed or at end of stream

        Raises:
            NotStartedError: If the guard was never opened
            TransportError: On I/O failure while open
        """
        if self.state is GuardState.NEW:
            raise NotStartedError(
                "Transport has not been opened",
                error_code=ErrorCodes.NOT_STARTED,
            )

        deadline = time.monotonic() + max(0.0, max_wait)
        while not self._closed.is_set():
            remaining = deadline - time.monotonic()
            wait = min(self._poll_interval, max(0.0, remaining))

            try:
                with self._read_lock if self._read_lock is not None else nullcontext():
                    if self._closed.is_set():
                        break
                    data = self._transport.read(self._read_size, wait)
            except EOFError:
                if not self._closed.is_set():
                    self.logger.info(f"End of stream on {self._transport.description}")
                return b''
            except OSError as e:
                if self._closed.is_set():
                    break
                self._stats['read_errors'] += 1
                self.logger.error(f"Read failed on {self._transport.description}: {e}")
                raise TransportError(
                    f"Read failed: {e}",
                    cause=e,
                    error_code=ErrorCodes.READ_FAILED,
                ) from e

            if data:
                self._stats['bytes_read'] += len(data)
                return data
            if remaining <= 0:
                return None

        return b''

    def write(self, data: bytes) -> None:
        """
        Write one command atomically.

        Raises:
            ValueError: If data is not bytes
            NotStartedError: If the guard was never opened
            ClosedError: If the guard has been closed
            TransportError: If the write fails
        """
        if not isinstance(data, (bytes, bytearray)):
            raise ValueError(f"Data must be bytes, got {type(data)}")

        self._check_writable()
        with self._write_lock:
            # close() may have won the race for the lock
            self._check_writable()
            try:
                self._transport.write(bytes(data))
            except OSError as e:
                self._stats['write_errors'] += 1
                if self._closed.is_set():
                    raise ClosedError(
                        "Transport closed during write",
                        cause=e,
                        error_code=ErrorCodes.CONNECTION_CLOSED,
                    ) from e
                self.logger.error(f"Write failed on {self._transport.description}: {e}")
                raise TransportError(
                    f"Write failed: {e}",
                    cause=e,
                    error_code=ErrorCodes.WRITE_FAILED,
                ) from e
            self._stats['writes'] += 1
            self._stats['bytes_written'] += len(data)
        self.logger.debug(f"Wrote {len(data)} bytes")

    def get_stats(self) -> Dict[str, int]:
        """Get transport statistics."""
        return self._stats.copy()
