"""
Byte-stream transports for the Kobuki driver.

A transport is a duplex byte stream with open/close/read/write. The core never
touches a transport directly; the TransportGuard owns it.

Implementations:
- SerialTransport: USB/serial connection to the robot (pyserial)
- SocketTransport: TCP stream, e.g. to a simulator or a serial-over-IP bridge
- LoopbackTransport: in-memory stream for tests and dry runs

Contract for ``read(max_bytes, timeout)``:
    Returns up to max_bytes as soon as any data is available, b'' if nothing
    arrived within timeout, and raises EOFError once the peer has closed the
    stream. I/O failures raise OSError (pyserial's SerialException is one).
"""

import logging
import socket
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

import serial

from py2kobuki.models.config import TransportConfig


class Transport(ABC):
    """Abstract duplex byte stream."""

    @abstractmethod
    def open(self) -> None:
        """Open the underlying connection."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the connection, unblocking any pending read. Idempotent."""
        pass

    @abstractmethod
    def read(self, max_bytes: int, timeout: float) -> bytes:
        """Read up to max_bytes, waiting at most timeout seconds."""
        pass

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Write all of data."""
        pass

    @property
    def description(self) -> str:
        return type(self).__name__


class SerialTransport(Transport):
    """
    Serial port transport backed by pyserial.

    Example:
        >>> transport = SerialTransport("/dev/kobuki", baudrate=115200)
    """

    def __init__(self, port: str, baudrate: int = 115200, write_timeout: Optional[float] = 1.0):
        self.port = port
        self.baudrate = baudrate
        self.write_timeout = write_timeout
        self._serial: Optional[serial.Serial] = None
        self.logger = logging.getLogger(__name__)

    @property
    def description(self) -> str:
        return f"serial:{self.port}@{self.baudrate}"

    def open(self) -> None:
        self.logger.info(f"Opening serial port {self.port} at {self.baudrate} baud")
        self._serial = serial.Serial(
            self.port,
            self.baudrate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=0.05,
            write_timeout=self.write_timeout,
        )
        # Drop whatever the robot streamed before we were listening
        self._serial.reset_input_buffer()

    def close(self) -> None:
        ser = self._serial
        if ser is None:
            return
        self._serial = None
        if hasattr(ser, 'cancel_read'):
            try:
                ser.cancel_read()
            except (OSError, AttributeError) as e:
                self.logger.debug(f"cancel_read failed: {e}")
        ser.close()
        self.logger.info(f"Closed serial port {self.port}")

    def read(self, max_bytes: int, timeout: float) -> bytes:
        ser = self._serial
        if ser is None:
            raise EOFError("serial port is closed")
        if ser.timeout != timeout:
            ser.timeout = timeout
        waiting = ser.in_waiting
        return ser.read(min(max(waiting, 1), max_bytes))

    def write(self, data: bytes) -> None:
        ser = self._serial
        if ser is None:
            raise OSError("serial port is closed")
        ser.write(data)
        ser.flush()


class SocketTransport(Transport):
    """TCP transport."""

    def __init__(self, host: str, port: int, connect_timeout: float = 2.0):
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self._socket: Optional[socket.socket] = None
        self.logger = logging.getLogger(__name__)

    @property
    def description(self) -> str:
        return f"tcp:{self.host}:{self.port}"

    def open(self) -> None:
        self.logger.info(f"Connecting to {self.host}:{self.port}")
        sock = socket.create_connection((self.host, self.port), timeout=self.connect_timeout)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        self._socket = sock
        self.logger.info(f"Connected to {self.host}:{self.port}")

    def close(self) -> None:
        sock = self._socket
        if sock is None:
            return
        self._socket = None
        try:
            # shutdown wakes a recv blocked in another thread; close alone may not
            sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            self.logger.debug(f"Socket shutdown: {e}")
        sock.close()
        self.logger.info(f"Closed connection to {self.host}:{self.port}")

    def read(self, max_bytes: int, timeout: float) -> bytes:
        sock = self._socket
        if sock is None:
            raise EOFError("socket is closed")
        sock.settimeout(timeout)
        try:
            data = sock.recv(max_bytes)
        except socket.timeout:
            return b''
        if not data:
            raise EOFError("peer closed the connection")
        return data

    def write(self, data: bytes) -> None:
        sock = self._socket
        if sock is None:
            raise OSError("socket is closed")
        sock.settimeout(None)
        sock.sendall(data)


class LoopbackTransport(Transport):
    """
    In-memory transport.

    ``inject()`` queues bytes for the reader as if the robot had sent them;
    everything written is recorded in ``writes``. ``end_stream()`` makes the
    next read past the queued data raise EOFError.

    Example:
        >>> transport = LoopbackTransport()
        >>> transport.open()
        >>> transport.inject(b'\\xaa\\x55')
        >>> transport.read(16, timeout=0.1)
        b'\\xaaU'
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._inbound = bytearray()
        self._writes: List[bytes] = []
        self._open = False
        self._eof = False
        self.open_count = 0

    @property
    def is_open(self) -> bool:
        with self._cond:
            return self._open

    @property
    def writes(self) -> List[bytes]:
        """Every write, one entry per call."""
        with self._cond:
            return list(self._writes)

    @property
    def written(self) -> bytes:
        """Concatenation of every write."""
        with self._cond:
            return b''.join(self._writes)

    def inject(self, data: bytes) -> None:
        with self._cond:
            self._inbound.extend(data)
            self._cond.notify_all()

    def end_stream(self) -> None:
        with self._cond:
            self._eof = True
            self._cond.notify_all()

    def open(self) -> None:
        with self._cond:
            self._open = True
            self._eof = False
            self.open_count += 1

    def close(self) -> None:
        with self._cond:
            self._open = False
            self._cond.notify_all()

    def read(self, max_bytes: int, timeout: float) -> bytes:
        with self._cond:
            self._cond.wait_for(
                lambda: self._inbound or self._eof or not self._open, timeout
            )
            if not self._open:
                raise EOFError("loopback transport is closed")
            if self._inbound:
                data = bytes(self._inbound[:max_bytes])
                del self._inbound[:max_bytes]
                return data
            if self._eof:
                raise EOFError("end of loopback stream")
            return b''

    def write(self, data: bytes) -> None:
        with self._cond:
            if not self._open:
                raise OSError("loopback transport is closed")
            self._writes.append(bytes(data))


def create_transport(config: TransportConfig) -> Transport:
    """
    Build a transport from configuration.

    Raises:
        ValueError: If the transport kind is unknown
    """
    if config.kind == "serial":
        return SerialTransport(config.port, baudrate=config.baudrate)
    if config.kind == "tcp":
        return SocketTransport(config.host, config.tcp_port, connect_timeout=config.connect_timeout)
    if config.kind == "loopback":
        return LoopbackTransport()
    raise ValueError(f"Unknown transport kind: {config.kind}")
