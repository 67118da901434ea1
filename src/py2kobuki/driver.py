"""
Kobuki driver: wires the transport guard, decoder, registry, dispatch loop
and command path together.

Usage:
    >>> driver = KobukiDriver(config=DriverConfig())
    >>> driver.subscribe(EventName.BUMPER, lambda b: print(b.pressed))
    >>> driver.start()
    >>> driver.move_velocity(0.1, 0.0)
    >>> driver.stop()

Halting (stop):
    1. signal the dispatch loop to stop
    2. close the transport guard, which unblocks a pending read
    3. wait for the dispatch loop to finish
    4. keep subscriptions unless teardown=True
"""

import logging
import threading
from typing import Any, Callable, Optional, Type, Union

from py2kobuki.core.command_path import CommandPath, SoundArg
from py2kobuki.core.diagnostics import DiagnosticEvent, DiagnosticKind, DiagnosticStream
from py2kobuki.core.dispatch_loop import DispatchLoop
from py2kobuki.core.errors import DecodeError, ErrorCodes, KobukiError, SubscriberError
from py2kobuki.core.event_registry import EventRegistry, R, Subscription
from py2kobuki.core.frame_decoder import FrameDecoder
from py2kobuki.core.tolerance_filter import ToleranceFilter, Tolerances
from py2kobuki.core.transport import Transport, create_transport
from py2kobuki.core.transport_guard import DuplexMode, TransportGuard
from py2kobuki.models.command import Command, ToleranceKind
from py2kobuki.models.config import DriverConfig
from py2kobuki.models.sensors import EventName


class KobukiDriver:
    """
    Driver for a Kobuki-style robot base.

    Subscriptions may be made before start() and survive stop()/start()
    cycles. Commands require a started driver.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        config: Optional[DriverConfig] = None,
        name: str = "Kobuki"
    ):
        """
        Initialize the driver.

        Args:
            transport: Connection to use; built from config.transport if None
            config: Driver configuration (defaults if None)
            name: Name used in log messages

        Raises:
            ValueError: If the configuration is invalid
        """
        self.logger = logging.getLogger(__name__)
        self.name = name
        self.config = config or DriverConfig()

        valid, errors = self.config.validate()
        if not valid:
            raise ValueError(f"Invalid driver configuration: {errors}")

        self._transport = transport if transport is not None else create_transport(self.config.transport)

        self._diagnostics = DiagnosticStream(self.config.diagnostics_size)
        self.registry = EventRegistry(error_handler=self._on_subscriber_error)
        self.decoder = FrameDecoder(error_handler=self._on_decode_error)
        self.tolerances = Tolerances()
        self.tolerance_filter = ToleranceFilter(self.tolerances)

        self.guard = TransportGuard(
            self._transport,
            duplex=DuplexMode(self.config.duplex),
            poll_interval=self.config.poll_interval,
            read_size=self.config.read_size,
        )
        self.commands = CommandPath(self.guard, tolerances=self.tolerances)

        self._loop: Optional[DispatchLoop] = None
        self._lifecycle_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Open the connection and start dispatching.

        Raises:
            TransportError: If the connection cannot be opened
            KobukiError: If the loop of a previous stop() is still finishing
                and does not end within stop_timeout
        """
        with self._lifecycle_lock:
            loop = self._loop
            if loop is not None and loop.is_running():
                if self.guard.is_open and not loop.stop_requested:
                    self.logger.warning(f"{self.name} already running")
                    return

                # A timed-out stop() left the old loop delivering its last records
                if not loop.join(self.config.stop_timeout):
                    raise KobukiError(
                        f"{self.name} dispatch loop from the previous run is still "
                        f"busy after {self.config.stop_timeout}s",
                        error_code=ErrorCodes.STILL_STOPPING,
                        context={'category': 'STATE'},
                    )

            if self._diagnostics.closed:
                # Previous stop(teardown=True) closed it
                self._diagnostics = DiagnosticStream(self.config.diagnostics_size)

            if self.guard.is_open:
                # Loop ended on its own (EOF or transport error)
                self.guard.close()

            self.decoder.reset()
            self.tolerance_filter.reset()
            self.guard.open()

            for kind, value in self.config.tolerances.items():
                self.commands.set_tolerance(kind, value)

            self._loop = DispatchLoop(
                self.guard,
                self.decoder,
                self.registry,
                tolerance_filter=self.tolerance_filter,
                diagnostics=self._diagnostics,
                read_timeout=self.config.read_timeout,
            )
            self._loop.start()
        self.logger.info(f"{self.name} started on {self.guard.transport_description}")

    def stop(self, teardown: bool = False) -> bool:
        """
        Halt the driver.

        Args:
            teardown: Also remove every subscription and close the
                diagnostics stream

        Returns:
            True if the dispatch loop acknowledged termination in time
        """
        with self._lifecycle_lock:
            stopped = True
            loop = self._loop
            if loop is not None:
                loop.request_stop()
            self.guard.close()
            if loop is not None:
                stopped = loop.join(self.config.stop_timeout)
                if not stopped:
                    self.logger.warning(f"{self.name} dispatch loop did not stop within "
                                        f"{self.config.stop_timeout}s")

            if stopped:
                self.decoder.reset()
            if teardown:
                self.registry.clear()
                self._diagnostics.close()
        self.logger.info(f"{self.name} stopped{' (teardown)' if teardown else ''}")
        return stopped

    def __enter__(self) -> "KobukiDriver":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    @property
    def is_running(self) -> bool:
        loop = self._loop
        return loop is not None and loop.is_running()

    @property
    def diagnostics(self) -> DiagnosticStream:
        return self._diagnostics

    @property
    def dispatch_error(self) -> Optional[KobukiError]:
        """Error that terminated the most recent dispatch loop, if any."""
        loop = self._loop
        return loop.error if loop is not None else None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, name: Union[EventName, str], callback: Callable[[Any], None]) -> Subscription:
        return self.registry.subscribe(name, callback)

    def subscribe_record(self, record_type: Type[R], callback: Callable[[R], None]) -> Subscription:
        return self.registry.subscribe_record(record_type, callback)

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self.registry.unsubscribe(subscription)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def move_velocity(self, linear: float, angular: float) -> None:
        self.commands.move_velocity(linear, angular)

    def move_raw(self, speed: int, radius: int) -> None:
        self.commands.move_raw(speed, radius)

    def stop_motion(self) -> None:
        self.commands.stop_motion()

    def play_sound_sequence(self, sequence: SoundArg) -> None:
        self.commands.play_sound_sequence(sequence)

    def set_tolerance(self, kind: Union[ToleranceKind, str], value: float) -> None:
        self.commands.set_tolerance(kind, value)

    def get_tolerance(self, kind: Union[ToleranceKind, str]) -> float:
        return self.commands.get_tolerance(kind)

    def send(self, command: Command) -> None:
        self.commands.send(command)

    # ------------------------------------------------------------------
    # Side channel
    # ------------------------------------------------------------------

    def _on_decode_error(self, error: DecodeError) -> None:
        self._diagnostics.put(DiagnosticEvent(DiagnosticKind.DECODE_ERROR, str(error), error))

    def _on_subscriber_error(self, error: SubscriberError) -> None:
        self._diagnostics.put(DiagnosticEvent(DiagnosticKind.SUBSCRIBER_ERROR, str(error), error))
