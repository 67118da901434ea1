"""
End-to-end tests for KobukiDriver over a loopback transport.

Covers the start/stop lifecycle, subscription persistence across restarts,
the diagnostics side channel and the command API.
"""

import threading
import time
import unittest

from py2kobuki.core.diagnostics import DiagnosticKind
from py2kobuki.core.errors import (
    ClosedError,
    ErrorCodes,
    KobukiError,
    NotStartedError,
    TransportError,
)
from py2kobuki.core.transport import LoopbackTransport
from py2kobuki.driver import KobukiDriver
from py2kobuki.models.command import SoundPreset, ToleranceKind
from py2kobuki.models.config import DriverConfig, TransportConfig
from py2kobuki.models.sensors import Bumper, CliffADC, CurrentWheels, EventName

from kobuki_fixtures import (
    FailingReadTransport,
    basic_sensor_data,
    cliff_adc,
    current,
    frame,
    wait_until,
)


def fast_config(**overrides):
    values = dict(
        transport=TransportConfig(kind="loopback"),
        read_timeout=0.05,
        poll_interval=0.01,
        stop_timeout=2.0,
    )
    values.update(overrides)
    return DriverConfig(**values)


class DriverTestCase(unittest.TestCase):

    def setUp(self):
        self.transport = LoopbackTransport()
        self.driver = KobukiDriver(transport=self.transport, config=fast_config())

    def tearDown(self):
        self.driver.stop(teardown=True)


class TestLifecycle(DriverTestCase):

    def test_records_reach_subscribers(self):
        bumps = []
        self.driver.subscribe_record(Bumper, bumps.append)
        self.driver.start()

        self.transport.inject(frame(basic_sensor_data(bumper=0x02)))

        self.assertTrue(wait_until(lambda: len(bumps) == 1))
        self.assertEqual(bumps[0], Bumper(left=False, center=True, right=False))

    def test_stop_keeps_subscriptions(self):
        received = []
        self.driver.subscribe(EventName.CURRENT_WHEELS, received.append)

        self.driver.start()
        self.transport.inject(frame(current(1, 1)))
        self.assertTrue(wait_until(lambda: len(received) == 1))
        self.assertTrue(self.driver.stop())
        self.assertFalse(self.driver.is_running)

        self.driver.start()
        self.transport.inject(frame(current(2, 2)))
        self.assertTrue(wait_until(lambda: len(received) == 2))
        self.assertEqual(received[-1], CurrentWheels(2, 2))
        self.assertEqual(self.transport.open_count, 2)

    def test_teardown_clears_subscriptions(self):
        self.driver.subscribe(EventName.CURRENT_WHEELS, print)
        self.driver.start()

        self.driver.stop(teardown=True)

        self.assertEqual(self.driver.registry.subscriber_count(), 0)
        self.assertTrue(self.driver.diagnostics.closed)

    def test_restart_after_teardown_gets_fresh_diagnostics(self):
        self.driver.start()
        self.driver.stop(teardown=True)

        self.driver.start()

        self.assertFalse(self.driver.diagnostics.closed)
        self.assertTrue(self.driver.is_running)

    def test_stop_is_prompt_with_long_read_timeout(self):
        driver = KobukiDriver(transport=LoopbackTransport(),
                              config=fast_config(read_timeout=30.0))
        driver.start()
        time.sleep(0.05)

        start = time.monotonic()
        self.assertTrue(driver.stop())
        self.assertLess(time.monotonic() - start, 1.0)

    def test_stop_before_start(self):
        self.assertTrue(self.driver.stop())
        self.driver.start()
        self.assertTrue(self.driver.is_running)

    def test_start_twice_is_noop(self):
        self.driver.start()
        self.driver.start()
        self.assertEqual(self.transport.open_count, 1)

    def test_partial_frame_discarded_on_restart(self):
        received = []
        self.driver.subscribe(EventName.CURRENT_WHEELS, received.append)
        self.driver.start()
        data = frame(current(7, 7))
        self.transport.inject(data[:4])
        self.assertTrue(wait_until(lambda: self.driver.decoder.buffered == 4))
        self.driver.stop()

        self.driver.start()
        self.transport.inject(data[4:] + frame(current(8, 8)))

        self.assertTrue(wait_until(lambda: len(received) == 1))
        self.assertEqual(received, [CurrentWheels(8, 8)])

    def _blocked_driver(self):
        """Driver whose only subscriber blocks until self.release is set."""
        self.release = threading.Event()
        entered = threading.Event()

        def blocking(record):
            entered.set()
            self.release.wait(5.0)

        transport = LoopbackTransport()
        driver = KobukiDriver(transport=transport, config=fast_config(stop_timeout=0.3))
        driver.subscribe(EventName.CURRENT_WHEELS, blocking)
        driver.start()
        transport.inject(frame(current(1, 1)))
        self.assertTrue(wait_until(entered.is_set))
        self.addCleanup(driver.stop)
        self.addCleanup(self.release.set)
        return driver, transport

    def test_restart_after_timed_out_stop(self):
        driver, transport = self._blocked_driver()
        self.assertFalse(driver.stop())

        releaser = threading.Timer(0.05, self.release.set)
        releaser.start()
        driver.start()
        releaser.join()

        self.assertTrue(driver.guard.is_open)
        self.assertTrue(driver.is_running)
        driver.move_raw(0, 0)
        self.assertEqual(len(transport.writes), 1)

    def test_restart_while_previous_loop_stuck(self):
        driver, _ = self._blocked_driver()
        self.assertFalse(driver.stop())

        with self.assertRaises(KobukiError) as ctx:
            driver.start()

        self.assertEqual(ctx.exception.error_code, ErrorCodes.STILL_STOPPING)
        self.assertFalse(driver.guard.is_open)

    def test_context_manager(self):
        with KobukiDriver(transport=LoopbackTransport(), config=fast_config()) as driver:
            self.assertTrue(driver.is_running)
        self.assertFalse(driver.is_running)

    def test_invalid_config(self):
        with self.assertRaises(ValueError):
            KobukiDriver(transport=LoopbackTransport(), config=fast_config(read_timeout=0))

    def test_transport_from_config(self):
        driver = KobukiDriver(config=fast_config())
        self.assertEqual(driver.guard.transport_description, "LoopbackTransport")


class TestDiagnostics(DriverTestCase):

    def events(self, kind):
        return [e for e in self.driver.diagnostics.drain() if e.kind is kind]

    def test_decode_error_posted(self):
        received = []
        self.driver.subscribe(EventName.CURRENT_WHEELS, received.append)
        self.driver.start()

        bad = bytearray(frame(current(1, 1)))
        bad[-1] ^= 0xFF
        self.transport.inject(bytes(bad) + frame(current(2, 2)))

        self.assertTrue(wait_until(lambda: len(received) == 1))
        self.assertEqual(received, [CurrentWheels(2, 2)])
        self.assertEqual(len(self.events(DiagnosticKind.DECODE_ERROR)), 1)
        self.assertTrue(self.driver.is_running)

    def test_subscriber_error_posted(self):
        self.driver.subscribe(EventName.CURRENT_WHEELS, lambda r: r.missing_attribute)
        after = []
        self.driver.subscribe(EventName.CURRENT_WHEELS, after.append)
        self.driver.start()

        self.transport.inject(frame(current(1, 1)))

        self.assertTrue(wait_until(lambda: len(after) == 1))
        errors = self.events(DiagnosticKind.SUBSCRIBER_ERROR)
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0].error.event_name, EventName.CURRENT_WHEELS)

    def test_transport_error_surfaces(self):
        driver = KobukiDriver(transport=FailingReadTransport(), config=fast_config())
        driver.start()

        self.assertTrue(wait_until(lambda: not driver.is_running))
        self.assertIsInstance(driver.dispatch_error, TransportError)
        kinds = [e.kind for e in driver.diagnostics.drain()]
        self.assertIn(DiagnosticKind.TRANSPORT_ERROR, kinds)
        driver.stop()

    def test_end_of_stream_stops_loop(self):
        self.driver.start()
        self.transport.end_stream()

        self.assertTrue(wait_until(lambda: not self.driver.is_running))
        self.assertIsNone(self.driver.dispatch_error)

    def test_restart_after_end_of_stream(self):
        received = []
        self.driver.subscribe(EventName.CURRENT_WHEELS, received.append)
        self.driver.start()
        self.transport.end_stream()
        self.assertTrue(wait_until(lambda: not self.driver.is_running))

        self.driver.start()
        self.transport.inject(frame(current(3, 3)))

        self.assertTrue(wait_until(lambda: len(received) == 1))


class TestCommands(DriverTestCase):

    def test_commands_require_start(self):
        with self.assertRaises(NotStartedError):
            self.driver.move_velocity(0.1, 0.0)
        with self.assertRaises(NotStartedError):
            self.driver.set_tolerance(ToleranceKind.GYRO, 1)

    def test_commands_after_stop(self):
        self.driver.start()
        self.driver.stop()
        with self.assertRaises(ClosedError):
            self.driver.move_raw(10, 0)

    def test_commands_written(self):
        self.driver.start()

        self.driver.move_raw(100, 0)
        self.driver.stop_motion()
        self.driver.play_sound_sequence(SoundPreset.BUTTON)

        writes = self.transport.writes
        self.assertEqual(len(writes), 3)
        self.assertEqual(writes[0], b'\xaa\x55\x06\x01\x04\x64\x00\x00\x00\x67')
        self.assertEqual(writes[2][3:6], b'\x04\x01\x03')

    def test_set_tolerance_filters_records(self):
        received = []
        self.driver.subscribe_record(CliffADC, received.append)
        self.driver.start()
        self.driver.set_tolerance(ToleranceKind.CLIFF_ADC, 10)
        self.assertEqual(self.driver.get_tolerance(ToleranceKind.CLIFF_ADC), 10)

        self.transport.inject(frame(cliff_adc(50, 50, 50)) + frame(cliff_adc(55, 50, 50))
                              + frame(cliff_adc(70, 50, 50)))

        self.assertTrue(wait_until(lambda: len(received) == 2))
        self.assertEqual([r.right for r in received], [50, 70])

    def test_config_tolerances_applied_on_start(self):
        driver = KobukiDriver(
            transport=LoopbackTransport(),
            config=fast_config(tolerances={ToleranceKind.GYRO: 4}),
        )
        self.assertEqual(driver.get_tolerance(ToleranceKind.GYRO), 0)

        driver.start()
        try:
            self.assertEqual(driver.get_tolerance(ToleranceKind.GYRO), 4)
        finally:
            driver.stop()


if __name__ == '__main__':
    unittest.main()
