"""
Unit tests for the event registry.

Verifies delivery order, per-callback failure isolation, snapshot semantics
and thread safety of subscribe/unsubscribe against concurrent publishing.
"""

import threading
import unittest
from unittest.mock import MagicMock

from py2kobuki.core.errors import SubscriberError, UnknownEventError
from py2kobuki.core.event_registry import EventRegistry, ReadWriteLock
from py2kobuki.models.sensors import (
    Bumper,
    CliffADC,
    EventName,
    Feedback,
    SensorRecord,
)


BUMP = Bumper(left=True, center=False, right=False)


class TestSubscribe(unittest.TestCase):
    """Test subscription management."""

    def setUp(self):
        self.registry = EventRegistry()

    def test_subscribe_by_enum_and_string(self):
        received = []
        self.registry.subscribe(EventName.BUMPER, received.append)
        self.registry.subscribe("Bumper", received.append)

        self.registry.publish(EventName.BUMPER, BUMP)

        self.assertEqual(received, [BUMP, BUMP])

    def test_unknown_event_name(self):
        with self.assertRaises(UnknownEventError) as ctx:
            self.registry.subscribe("Bumpers", print)
        self.assertEqual(ctx.exception.context['event_name'], "Bumpers")

    def test_publish_unknown_event(self):
        with self.assertRaises(UnknownEventError):
            self.registry.publish("NotAnEvent", BUMP)

    def test_callback_must_be_callable(self):
        with self.assertRaises(TypeError):
            self.registry.subscribe(EventName.BUMPER, "not callable")

    def test_subscribe_record(self):
        received = []
        subscription = self.registry.subscribe_record(Bumper, received.append)

        self.registry.publish(EventName.BUMPER, BUMP)

        self.assertEqual(subscription.name, EventName.BUMPER)
        self.assertEqual(received, [BUMP])

    def test_subscribe_record_rejects_non_records(self):
        with self.assertRaises(UnknownEventError):
            self.registry.subscribe_record(int, print)
        with self.assertRaises(UnknownEventError):
            self.registry.subscribe_record(SensorRecord, print)

    def test_unsubscribe_is_idempotent(self):
        callback = MagicMock()
        subscription = self.registry.subscribe(EventName.BUMPER, callback)

        self.assertTrue(self.registry.unsubscribe(subscription))
        self.assertFalse(self.registry.unsubscribe(subscription))

        self.registry.publish(EventName.BUMPER, BUMP)
        callback.assert_not_called()

    def test_same_callback_twice_gets_two_subscriptions(self):
        callback = MagicMock()
        first = self.registry.subscribe(EventName.BUMPER, callback)
        self.registry.subscribe(EventName.BUMPER, callback)

        self.registry.unsubscribe(first)
        self.registry.publish(EventName.BUMPER, BUMP)

        callback.assert_called_once_with(BUMP)

    def test_subscriber_count_and_clear(self):
        self.registry.subscribe(EventName.BUMPER, print)
        self.registry.subscribe(EventName.BUMPER, print)
        self.registry.subscribe(EventName.FEEDBACK, print)

        self.assertEqual(self.registry.subscriber_count(EventName.BUMPER), 2)
        self.assertEqual(self.registry.subscriber_count(), 3)

        self.registry.clear()
        self.assertEqual(self.registry.subscriber_count(), 0)


class TestPublish(unittest.TestCase):
    """Test delivery semantics."""

    def setUp(self):
        self.errors = []
        self.registry = EventRegistry(error_handler=self.errors.append)

    def test_registration_order(self):
        calls = []
        for i in range(5):
            self.registry.subscribe(EventName.BUMPER, lambda r, i=i: calls.append(i))

        self.registry.publish(EventName.BUMPER, BUMP)

        self.assertEqual(calls, [0, 1, 2, 3, 4])

    def test_only_matching_event_delivered(self):
        bumper_cb = MagicMock()
        cliff_cb = MagicMock()
        self.registry.subscribe(EventName.BUMPER, bumper_cb)
        self.registry.subscribe(EventName.CLIFF_ADC, cliff_cb)

        self.registry.publish(EventName.BUMPER, BUMP)

        bumper_cb.assert_called_once_with(BUMP)
        cliff_cb.assert_not_called()

    def test_catch_all_receives_feedback_after_direct(self):
        calls = []
        self.registry.subscribe(EventName.FEEDBACK, lambda fb: calls.append(('all', fb)))
        self.registry.subscribe(EventName.BUMPER, lambda r: calls.append(('bumper', r)))

        self.registry.publish(EventName.BUMPER, BUMP)

        self.assertEqual(calls, [
            ('bumper', BUMP),
            ('all', Feedback(EventName.BUMPER, BUMP)),
        ])

    def test_publish_under_feedback_delivers_payload_as_is(self):
        received = []
        self.registry.subscribe(EventName.FEEDBACK, received.append)

        self.registry.publish(EventName.FEEDBACK, BUMP)

        self.assertEqual(received, [BUMP])

    def test_failing_subscriber_is_isolated(self):
        """Three subscribers, the second raises: first and third still run."""
        first = MagicMock()
        second = MagicMock(side_effect=RuntimeError("subscriber bug"))
        third = MagicMock()
        for cb in (first, second, third):
            self.registry.subscribe(EventName.BUMPER, cb)

        delivered = self.registry.publish(EventName.BUMPER, BUMP)

        first.assert_called_once_with(BUMP)
        second.assert_called_once_with(BUMP)
        third.assert_called_once_with(BUMP)
        self.assertEqual(delivered, 2)

        self.assertEqual(len(self.errors), 1)
        error = self.errors[0]
        self.assertIsInstance(error, SubscriberError)
        self.assertEqual(error.event_name, EventName.BUMPER)
        self.assertIs(error.callback, second)
        self.assertIsInstance(error.cause, RuntimeError)
        self.assertEqual(self.registry.get_stats()['callback_errors'], 1)

    def test_failing_error_handler_does_not_escape(self):
        registry = EventRegistry(error_handler=MagicMock(side_effect=ValueError("handler bug")))
        registry.subscribe(EventName.BUMPER, MagicMock(side_effect=RuntimeError("boom")))
        after = MagicMock()
        registry.subscribe(EventName.BUMPER, after)

        registry.publish(EventName.BUMPER, BUMP)

        after.assert_called_once_with(BUMP)

    def test_unsubscribe_during_publish_uses_snapshot(self):
        """A subscriber removed mid-delivery still gets that publish, not the next."""
        later = MagicMock()
        holder = {}

        def remover(record):
            self.registry.unsubscribe(holder['later'])

        self.registry.subscribe(EventName.BUMPER, remover)
        holder['later'] = self.registry.subscribe(EventName.BUMPER, later)

        self.registry.publish(EventName.BUMPER, BUMP)
        self.registry.publish(EventName.BUMPER, BUMP)

        self.assertEqual(later.call_count, 1)

    def test_subscribe_during_publish_not_called_for_current_record(self):
        added = MagicMock()

        def adder(record):
            self.registry.subscribe(EventName.BUMPER, added)

        subscription = self.registry.subscribe(EventName.BUMPER, adder)
        self.registry.publish(EventName.BUMPER, BUMP)
        added.assert_not_called()

        self.registry.unsubscribe(subscription)
        self.registry.publish(EventName.BUMPER, BUMP)
        added.assert_called_once_with(BUMP)

    def test_stats(self):
        self.registry.subscribe(EventName.BUMPER, print)
        self.registry.subscribe(EventName.FEEDBACK, lambda fb: None)
        self.registry.subscribe(EventName.BUMPER, lambda r: None)
        self.registry.unsubscribe(self.registry.subscribe(EventName.BUMPER, print))

        self.registry.publish(EventName.CLIFF_ADC, CliffADC(1, 2, 3))
        stats = self.registry.get_stats()

        self.assertEqual(stats['records_published'], 1)
        self.assertEqual(stats['callbacks_dispatched'], 1)


class TestConcurrency(unittest.TestCase):
    """Test subscribe/unsubscribe racing with publish."""

    def test_concurrent_subscribe_and_publish(self):
        registry = EventRegistry()
        steady = []
        registry.subscribe(EventName.BUMPER, steady.append)
        failures = []
        stop = threading.Event()

        def publisher():
            try:
                while not stop.is_set():
                    registry.publish(EventName.BUMPER, BUMP)
            except Exception as e:
                failures.append(e)

        threads = [threading.Thread(target=publisher) for _ in range(2)]
        for t in threads:
            t.start()

        try:
            for _ in range(300):
                subscription = registry.subscribe(EventName.BUMPER, lambda r: None)
                registry.unsubscribe(subscription)
        finally:
            stop.set()
            for t in threads:
                t.join(timeout=5.0)

        self.assertEqual(failures, [])
        self.assertEqual(registry.subscriber_count(EventName.BUMPER), 1)
        self.assertGreater(len(steady), 0)


class TestReadWriteLock(unittest.TestCase):

    def test_readers_share(self):
        lock = ReadWriteLock()
        with lock.read_locked():
            acquired = threading.Event()

            def reader():
                with lock.read_locked():
                    acquired.set()

            t = threading.Thread(target=reader)
            t.start()
            self.assertTrue(acquired.wait(timeout=1.0))
            t.join()

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        acquired = threading.Event()

        def reader():
            with lock.read_locked():
                acquired.set()

        with lock.write_locked():
            t = threading.Thread(target=reader)
            t.start()
            self.assertFalse(acquired.wait(timeout=0.1))
        self.assertTrue(acquired.wait(timeout=1.0))
        t.join()


if __name__ == '__main__':
    unittest.main()
