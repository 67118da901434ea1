"""
Unit tests for the transport guard.

Covers state handling (not opened, open, closed, reopened), the read result
convention, error wrapping, write atomicity and half-duplex arbitration.
"""

import threading
import time
import unittest
from unittest.mock import MagicMock

from py2kobuki.core.errors import ClosedError, ErrorCodes, NotStartedError, TransportError
from py2kobuki.core.transport import LoopbackTransport, Transport
from py2kobuki.core.transport_guard import DuplexMode, GuardState, TransportGuard

from kobuki_fixtures import ByteByByteTransport, FailingReadTransport


class TestGuardState(unittest.TestCase):
    """Test open/close state handling."""

    def setUp(self):
        self.transport = LoopbackTransport()
        self.guard = TransportGuard(self.transport, poll_interval=0.01)

    def tearDown(self):
        self.guard.close()

    def test_initial_state(self):
        self.assertEqual(self.guard.state, GuardState.NEW)
        self.assertFalse(self.guard.is_open)
        self.assertEqual(self.guard.duplex, DuplexMode.FULL)

    def test_write_before_open(self):
        with self.assertRaises(NotStartedError) as ctx:
            self.guard.write(b'\x01')
        self.assertEqual(ctx.exception.error_code, ErrorCodes.NOT_STARTED)

    def test_read_before_open(self):
        with self.assertRaises(NotStartedError):
            self.guard.read_available(0.01)

    def test_write_after_close(self):
        self.guard.open()
        self.guard.close()

        with self.assertRaises(ClosedError) as ctx:
            self.guard.write(b'\x01')
        self.assertIsInstance(ctx.exception, TransportError)

    def test_close_is_idempotent(self):
        self.guard.open()
        self.guard.close()
        self.guard.close()

        self.assertEqual(self.guard.state, GuardState.CLOSED)
        self.assertFalse(self.transport.is_open)

    def test_close_before_open(self):
        self.guard.close()
        self.assertEqual(self.guard.state, GuardState.CLOSED)
        with self.assertRaises(ClosedError):
            self.guard.write(b'\x01')

    def test_reopen_after_close(self):
        self.guard.open()
        self.guard.close()
        self.guard.open()

        self.assertTrue(self.guard.is_open)
        self.assertEqual(self.transport.open_count, 2)
        self.guard.write(b'\x02')
        self.assertEqual(self.transport.writes, [b'\x02'])

    def test_open_twice_is_noop(self):
        self.guard.open()
        self.guard.open()
        self.assertEqual(self.transport.open_count, 1)

    def test_open_failure_wrapped(self):
        transport = MagicMock(spec=Transport)
        transport.description = "mock"
        transport.open.side_effect = OSError("no such device")
        guard = TransportGuard(transport)

        with self.assertRaises(TransportError) as ctx:
            guard.open()

        self.assertEqual(ctx.exception.error_code, ErrorCodes.OPEN_FAILED)
        self.assertEqual(guard.state, GuardState.NEW)

    def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            TransportGuard(self.transport, poll_interval=0)
        with self.assertRaises(ValueError):
            TransportGuard(self.transport, read_size=0)


class TestReadAvailable(unittest.TestCase):
    """Test the read result convention: data, None on timeout, b'' when closed."""

    def setUp(self):
        self.transport = LoopbackTransport()
        self.guard = TransportGuard(self.transport, poll_interval=0.01)
        self.guard.open()

    def tearDown(self):
        self.guard.close()

    def test_returns_data(self):
        self.transport.inject(b'\xaa\x55\x01')
        self.assertEqual(self.guard.read_available(0.5), b'\xaa\x55\x01')
        self.assertEqual(self.guard.get_stats()['bytes_read'], 3)

    def test_timeout_returns_none(self):
        start = time.monotonic()
        self.assertIsNone(self.guard.read_available(0.05))
        self.assertLess(time.monotonic() - start, 1.0)

    def test_read_size_limits_chunk(self):
        guard = TransportGuard(self.transport, poll_interval=0.01, read_size=2)
        guard.open()
        self.transport.inject(b'\x01\x02\x03')

        self.assertEqual(guard.read_available(0.1), b'\x01\x02')
        self.assertEqual(guard.read_available(0.1), b'\x03')

    def test_end_of_stream_returns_empty(self):
        self.transport.end_stream()
        self.assertEqual(self.guard.read_available(0.5), b'')

    def test_after_close_returns_empty(self):
        self.guard.close()
        self.assertEqual(self.guard.read_available(0.5), b'')

    def test_close_unblocks_pending_read(self):
        """close() from another thread ends a long read promptly."""
        result = {}

        def reader():
            result['data'] = self.guard.read_available(10.0)

        t = threading.Thread(target=reader)
        t.start()
        time.sleep(0.05)

        start = time.monotonic()
        self.guard.close()
        t.join(timeout=2.0)

        self.assertFalse(t.is_alive())
        self.assertLess(time.monotonic() - start, 1.0)
        self.assertEqual(result['data'], b'')

    def test_read_error_wrapped(self):
        guard = TransportGuard(FailingReadTransport(), poll_interval=0.01)
        guard.open()

        with self.assertRaises(TransportError) as ctx:
            guard.read_available(0.1)

        self.assertEqual(ctx.exception.error_code, ErrorCodes.READ_FAILED)
        self.assertIsInstance(ctx.exception.cause, OSError)
        self.assertEqual(guard.get_stats()['read_errors'], 1)


class TestWrite(unittest.TestCase):
    """Test write serialization and error wrapping."""

    def test_write_error_wrapped(self):
        transport = MagicMock(spec=Transport)
        transport.description = "mock"
        transport.write.side_effect = OSError("broken pipe")
        guard = TransportGuard(transport)
        guard.open()

        with self.assertRaises(TransportError) as ctx:
            guard.write(b'\x01')

        self.assertNotIsInstance(ctx.exception, ClosedError)
        self.assertEqual(ctx.exception.error_code, ErrorCodes.WRITE_FAILED)
        self.assertEqual(guard.get_stats()['write_errors'], 1)

    def test_rejects_non_bytes(self):
        guard = TransportGuard(LoopbackTransport())
        guard.open()
        with self.assertRaises(ValueError):
            guard.write("text")

    def test_concurrent_writes_do_not_interleave(self):
        """AAAA and BBBB written from two threads arrive as whole blocks."""
        transport = ByteByByteTransport()
        guard = TransportGuard(transport)
        guard.open()

        def writer(block):
            for _ in range(50):
                guard.write(block)

        threads = [threading.Thread(target=writer, args=(b'AAAA',)),
                   threading.Thread(target=writer, args=(b'BBBB',))]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10.0)

        stream = bytes(transport.stream)
        self.assertEqual(len(stream), 400)
        blocks = [stream[i:i + 4] for i in range(0, len(stream), 4)]
        self.assertTrue(all(b in (b'AAAA', b'BBBB') for b in blocks))
        self.assertEqual(blocks.count(b'AAAA'), 50)
        self.assertEqual(guard.get_stats()['writes'], 100)


class _RecordingTransport(LoopbackTransport):
    """Tracks whether a write happened while a read was in progress."""

    def __init__(self):
        super().__init__()
        self.reading = threading.Event()
        self.overlaps = 0

    def read(self, max_bytes, timeout):
        self.reading.set()
        try:
            time.sleep(timeout)
            return b''
        finally:
            self.reading.clear()

    def write(self, data):
        if self.reading.is_set():
            self.overlaps += 1
        super().write(data)


class TestDuplexModes(unittest.TestCase):
    """Test read/write arbitration in full and half duplex."""

    def _run(self, duplex):
        transport = _RecordingTransport()
        guard = TransportGuard(transport, duplex=duplex, poll_interval=0.2)
        guard.open()

        reader = threading.Thread(target=guard.read_available, args=(0.2,))
        reader.start()
        self.assertTrue(transport.reading.wait(timeout=1.0))
        guard.write(b'\x01')
        reader.join(timeout=2.0)
        guard.close()
        return transport

    def test_full_duplex_write_overlaps_read(self):
        transport = self._run(DuplexMode.FULL)
        self.assertEqual(transport.overlaps, 1)

    def test_half_duplex_write_waits_for_read(self):
        transport = self._run(DuplexMode.HALF)
        self.assertEqual(transport.overlaps, 0)
        self.assertEqual(transport.writes, [b'\x01'])

    def test_duplex_from_string(self):
        guard = TransportGuard(LoopbackTransport(), duplex="half")
        self.assertEqual(guard.duplex, DuplexMode.HALF)


if __name__ == '__main__':
    unittest.main()
