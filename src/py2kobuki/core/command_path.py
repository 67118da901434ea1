"""
Command path: encode caller commands and write them through the guard.

Every public method encodes its command into one byte string and hands it
to TransportGuard.write() in a single call, so two commands issued from
different threads never interleave on the wire.
"""

import logging
from typing import Iterable, Optional, Tuple, Union

from py2kobuki.core.errors import ClosedError, ErrorCodes, NotStartedError
from py2kobuki.core.protocol_encoder import ProtocolEncoder
from py2kobuki.core.tolerance_filter import Tolerances
from py2kobuki.core.transport_guard import GuardState, TransportGuard
from py2kobuki.models.command import (
    Command,
    MoveRaw,
    MoveVelocity,
    PlaySoundPreset,
    SetTolerance,
    SoundPreset,
    SoundSequence,
    Tone,
    ToleranceKind,
)

logger = logging.getLogger(__name__)

SoundArg = Union[SoundSequence, SoundPreset, Iterable[Union[Tone, Tuple[float, int]]]]


class CommandPath:
    """
    Synchronous command API.

    Example:
        >>> commands = CommandPath(guard)
        >>> commands.move_velocity(0.2, 0.0)
        >>> commands.play_sound_sequence(SoundPreset.ON)
        >>> commands.set_tolerance(ToleranceKind.GYRO, 5)
    """

    def __init__(
        self,
        guard: TransportGuard,
        encoder: Optional[ProtocolEncoder] = None,
        tolerances: Optional[Tolerances] = None
    ):
        self._guard = guard
        self._encoder = encoder or ProtocolEncoder()
        self.tolerances = tolerances if tolerances is not None else Tolerances()

    def move_velocity(self, linear: float, angular: float) -> None:
        """
        Drive with a linear (m/s) and angular (rad/s) velocity.

        Raises:
            NotStartedError: Before the connection is open
            ClosedError: After the connection is closed
            TransportError: If the write fails
        """
        self.send(MoveVelocity(linear, angular))

    def move_raw(self, speed: int, radius: int) -> None:
        """Drive with the base's native speed (mm/s) and radius (mm)."""
        self.send(MoveRaw(speed, radius))

    def stop_motion(self) -> None:
        """Halt both wheels (speed 0, radius 0)."""
        self.move_raw(0, 0)

    def play_sound_sequence(self, sequence: SoundArg) -> None:
        """
        Play a tone sequence or a firmware preset.

        Args:
            sequence: SoundSequence, SoundPreset, or iterable of Tone /
                (frequency_hz, duration_ms) pairs
        """
        if isinstance(sequence, SoundPreset):
            command = PlaySoundPreset(sequence)
        elif isinstance(sequence, SoundSequence):
            command = sequence
        else:
            command = SoundSequence.from_pairs(sequence)
        self.send(command)

    def set_tolerance(self, kind: Union[ToleranceKind, str], value: float) -> None:
        """
        Set a change-detection tolerance read by the dispatch loop's filter.

        Raises:
            NotStartedError: Before the connection is open
            ClosedError: After the connection is closed
            ValueError: If kind is unknown or value is negative
        """
        state = self._guard.state
        if state is GuardState.NEW:
            raise NotStartedError(
                "Cannot set tolerance before the driver is started",
                error_code=ErrorCodes.NOT_STARTED,
            )
        if state is GuardState.CLOSED:
            raise ClosedError(
                "Cannot set tolerance after the driver is stopped",
                error_code=ErrorCodes.CONNECTION_CLOSED,
            )
        self.tolerances.set(kind, value)
        logger.info(f"Tolerance {ToleranceKind(kind).value} = {value}")

    def get_tolerance(self, kind: Union[ToleranceKind, str]) -> float:
        return self.tolerances.get(kind)

    def send(self, command: Command) -> None:
        """
        Encode and write any command model.

        Raises:
            ValueError: If the command arguments cannot be encoded
            NotStartedError / ClosedError / TransportError: From the guard
        """
        if isinstance(command, SetTolerance):
            self.set_tolerance(command.kind, command.value)
            return

        # Encoding errors surface before touching the transport
        data = self._encoder.encode_command(command)
        self._guard.write(data)
        logger.debug(f"Sent {type(command).__name__} ({len(data)} bytes)")
