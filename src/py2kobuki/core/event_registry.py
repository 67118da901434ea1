"""
Event registry: publish/subscribe by event name.

Subscribers are kept per EventName in registration order. Publishing takes a
snapshot of the subscriber lists under a shared (read) lock and calls them
outside the lock, so a callback may itself subscribe or unsubscribe without
deadlocking.

Snapshot semantics:
    A publish delivers to exactly the subscribers registered when its
    snapshot was taken. Unsubscribing during a delivery does not cancel that
    delivery, and a subscriber is never called twice for one publish.

Threading contract:
    Callbacks run synchronously on the publishing thread (normally the
    dispatch loop). A slow callback delays every subsequent record, so
    subscribers must return quickly or hand work off to their own thread.
"""

import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Type, TypeVar, Union

from py2kobuki.core.errors import ErrorCodes, SubscriberError, UnknownEventError
from py2kobuki.models.sensors import EventName, Feedback, SensorRecord

logger = logging.getLogger(__name__)

R = TypeVar('R', bound=SensorRecord)
Callback = Callable[[Any], None]
SubscriberErrorHandler = Callable[[SubscriberError], None]

_tokens = itertools.count(1)


class ReadWriteLock:
    """
    Many readers or one writer.

    Waiting writers block new readers so a steady stream of publishes cannot
    starve subscribe/unsubscribe.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            self._cond.wait_for(lambda: not self._writer and self._writers_waiting == 0)
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True, eq=False)
class Subscription:
    """Handle returned by subscribe(); pass it to unsubscribe()."""

    name: EventName
    callback: Callback
    token: int = field(default_factory=lambda: next(_tokens))

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Subscription) and other.token == self.token

    def __hash__(self) -> int:
        return hash(self.token)


class EventRegistry:
    """
    Thread-safe mapping from EventName to ordered subscriber callbacks.

    Subscribers of a variant's event receive the record itself. Subscribers of
    EventName.FEEDBACK (catch-all) receive a Feedback(name, record) for every
    record published under any name.
    """

    def __init__(self, error_handler: Optional[SubscriberErrorHandler] = None):
        """
        Initialize the registry.

        Args:
            error_handler: Receives a SubscriberError whenever a callback
                raises. Failures are isolated; delivery continues.
        """
        self._lock = ReadWriteLock()
        self._subscribers: Dict[EventName, List[Subscription]] = {
            name: [] for name in EventName
        }
        self._error_handler = error_handler

        self._stats_lock = threading.Lock()
        self._stats = {
            'records_published': 0,
            'callbacks_dispatched': 0,
            'callback_errors': 0,
        }

    @staticmethod
    def _resolve(name: Union[EventName, str]) -> EventName:
        if isinstance(name, EventName):
            return name
        try:
            return EventName(name)
        except ValueError:
            raise UnknownEventError(
                f"Unknown event '{name}'. Valid events: {[e.value for e in EventName]}",
                event_name=name,
                error_code=ErrorCodes.UNKNOWN_EVENT,
            ) from None

    def subscribe(self, name: Union[EventName, str], callback: Callback) -> Subscription:
        """
        Register a callback for an event.

        Args:
            name: EventName member or its string value ("Bumper", "Feedback", ...)
            callback: Called with the record (or Feedback for the catch-all)

        Returns:
            Subscription handle for unsubscribe()

        Raises:
            UnknownEventError: If name is not a valid event
            TypeError: If callback is not callable
        """
        event = self._resolve(name)
        if not callable(callback):
            raise TypeError(f"Callback must be callable, got {type(callback).__name__}")

        subscription = Subscription(event, callback)
        with self._lock.write_locked():
            self._subscribers[event].append(subscription)
        logger.debug(f"Subscribed to {event.value} (token={subscription.token})")
        return subscription

    def subscribe_record(self, record_type: Type[R], callback: Callable[[R], None]) -> Subscription:
        """
        Typed subscription by record class.

        Example:
            >>> registry.subscribe_record(Bumper, lambda b: print(b.left))
        """
        if not (isinstance(record_type, type) and issubclass(record_type, SensorRecord)) \
                or record_type is SensorRecord:
            raise UnknownEventError(
                f"Not a sensor record type: {record_type!r}",
                event_name=record_type,
                error_code=ErrorCodes.UNKNOWN_EVENT,
            )
        return self.subscribe(record_type.event_name, callback)

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Remove a subscription. Safe to call more than once.

        Returns:
            True if the subscription was removed, False if it was already gone
        """
        with self._lock.write_locked():
            subscribers = self._subscribers.get(subscription.name, [])
            try:
                subscribers.remove(subscription)
            except ValueError:
                return False
        logger.debug(f"Unsubscribed from {subscription.name.value} (token={subscription.token})")
        return True

    def clear(self) -> None:
        """Remove every subscription."""
        with self._lock.write_locked():
            for subscribers in self._subscribers.values():
                subscribers.clear()
        logger.info("Event registry cleared")

    def subscriber_count(self, name: Optional[Union[EventName, str]] = None) -> int:
        with self._lock.read_locked():
            if name is None:
                return sum(len(s) for s in self._subscribers.values())
            return len(self._subscribers[self._resolve(name)])

    def _snapshot(self, event: EventName) -> Tuple[Tuple[Subscription, ...], Tuple[Subscription, ...]]:
        with self._lock.read_locked():
            if event is EventName.FEEDBACK:
                return (), tuple(self._subscribers[EventName.FEEDBACK])
            return (tuple(self._subscribers[event]),
                    tuple(self._subscribers[EventName.FEEDBACK]))

    def publish(self, name: Union[EventName, str], record: Any) -> int:
        """
        Deliver a record to its subscribers, then to catch-all subscribers.

        Publishing directly under EventName.FEEDBACK delivers ``record`` as-is
        to catch-all subscribers only.

        Args:
            name: Event the record belongs to
            record: Record to deliver

        Returns:
            Number of callbacks that completed without raising

        Raises:
            UnknownEventError: If name is not a valid event
        """
        event = self._resolve(name)
        direct, catch_all = self._snapshot(event)

        delivered = 0
        for subscription in direct:
            delivered += self._invoke(subscription, event, record)

        if catch_all:
            payload = record if event is EventName.FEEDBACK else Feedback(event, record)
            for subscription in catch_all:
                delivered += self._invoke(subscription, event, payload)

        with self._stats_lock:
            self._stats['records_published'] += 1
            self._stats['callbacks_dispatched'] += delivered
        return delivered

    def _invoke(self, subscription: Subscription, event: EventName, payload: Any) -> int:
        try:
            subscription.callback(payload)
            return 1
        except Exception as e:
            with self._stats_lock:
                self._stats['callback_errors'] += 1
            logger.error(f"Subscriber error for {event.value} (token={subscription.token}): {e}",
                         exc_info=True)
            self._report(SubscriberError(
                f"Subscriber for {event.value} raised {type(e).__name__}: {e}",
                event_name=event,
                callback=subscription.callback,
                cause=e,
                error_code=ErrorCodes.SUBSCRIBER_FAILED,
            ))
            return 0

    def _report(self, error: SubscriberError) -> None:
        if self._error_handler is None:
            return
        try:
            self._error_handler(error)
        except Exception as e:
            logger.error(f"Subscriber error handler failed: {e}")

    def get_stats(self) -> Dict[str, int]:
        """Get publish statistics."""
        with self._stats_lock:
            return self._stats.copy()
