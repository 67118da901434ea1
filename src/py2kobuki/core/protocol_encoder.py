"""
Protocol Encoder for the Kobuki serial protocol.

This module builds outgoing frames. Every command is a complete frame so it
can be written to the transport in a single, atomic write.

FRAME STRUCTURE:
================
    Offset  Size  Field       Description
    ------  ----  ----------  --------------------------------------------
    0-1     2     header      0xAA 0x55
    2       1     length      Payload length in bytes
    3..     N     payload     One or more sub-payloads: ID | SIZE | DATA
    3+N     1     checksum    XOR of the length byte and every payload byte

COMMAND SUB-PAYLOADS:
=====================
    BASE_CONTROL (1):    <hh  speed mm/s, radius mm
    SOUND (3):           <HB  note period, duration ms
    SOUND_SEQUENCE (4):  B    firmware preset (0-6)

Usage Example:
    >>> encoder = ProtocolEncoder()
    >>> frame = encoder.encode_base_control(speed=200, radius=0)
    >>> frame[:2]
    b'\\xaaU'
"""

import logging
import struct
from functools import reduce
from typing import Iterable, List

from py2kobuki.core.command_codes import (
    CommandIds,
    HEADER,
    MAX_PAYLOAD_SIZE,
    SOUND_NOTE_FACTOR,
)
from py2kobuki.core.kinematics import velocity_to_speed_radius
from py2kobuki.models.command import (
    MoveRaw,
    MoveVelocity,
    PlaySoundPreset,
    SoundPreset,
    SoundSequence,
    Tone,
)

logger = logging.getLogger(__name__)


def checksum(data: Iterable[int]) -> int:
    """XOR of all bytes in ``data``."""
    return reduce(lambda acc, b: acc ^ b, data, 0)


class ProtocolEncoder:
    """
    Encodes commands into Kobuki frames.

    The encoder is stateless and may be shared between threads.
    """

    BASE_CONTROL_STRUCT = struct.Struct('<BBhh')
    SOUND_STRUCT = struct.Struct('<BBHB')
    SOUND_SEQUENCE_STRUCT = struct.Struct('<BBB')

    def build_frame(self, payload: bytes) -> bytes:
        """
        Wrap a payload (one or more sub-payloads) in a frame envelope.

        Args:
            payload: Concatenated sub-payload bytes

        Returns:
            Complete frame including header, length and checksum

        Raises:
            ValueError: If payload is empty or longer than 255 bytes
        """
        if not payload:
            raise ValueError("Frame payload cannot be empty")
        if len(payload) > MAX_PAYLOAD_SIZE:
            raise ValueError(
                f"Frame payload too long: {len(payload)} > {MAX_PAYLOAD_SIZE}"
            )
        body = bytes([len(payload)]) + bytes(payload)
        return HEADER + body + bytes([checksum(body)])

    def encode_base_control(self, speed: int, radius: int) -> bytes:
        """
        Encode a base control command.

        Args:
            speed: Wheel speed in mm/s (int16)
            radius: Turn radius in mm (int16)

        Returns:
            Complete frame

        Raises:
            ValueError: If speed or radius does not fit in int16
        """
        try:
            payload = self.BASE_CONTROL_STRUCT.pack(
                CommandIds.BASE_CONTROL, 4, int(speed), int(radius)
            )
        except struct.error as e:
            raise ValueError(f"Invalid base control speed={speed} radius={radius}: {e}") from e
        return self.build_frame(payload)

    def encode_velocity(self, linear: float, angular: float) -> bytes:
        speed, radius = velocity_to_speed_radius(linear, angular)
        logger.debug(f"Velocity v={linear:.3f} w={angular:.3f} -> speed={speed} radius={radius}")
        return self.encode_base_control(speed, radius)

    def encode_tone_payload(self, tone: Tone) -> bytes:
        """Encode a single tone as a SOUND sub-payload (no frame envelope)."""
        if tone.frequency_hz <= 0:
            raise ValueError(f"Tone frequency must be positive, got {tone.frequency_hz}")
        if not 0 < tone.duration_ms <= 255:
            raise ValueError(f"Tone duration must be 1-255 ms, got {tone.duration_ms}")

        note = int(round(1.0 / (tone.frequency_hz * SOUND_NOTE_FACTOR)))
        try:
            return self.SOUND_STRUCT.pack(CommandIds.SOUND, 3, note, tone.duration_ms)
        except struct.error as e:
            raise ValueError(f"Tone frequency out of range: {tone.frequency_hz} Hz") from e

    def encode_sound_sequence(self, sequence: SoundSequence) -> bytes:
        """
        Encode a tone sequence.

        Each tone becomes its own frame; the frames are concatenated so the
        whole sequence goes out in one write.

        Raises:
            ValueError: If the sequence is empty or a tone is out of range
        """
        if not sequence.tones:
            raise ValueError("Sound sequence cannot be empty")
        frames: List[bytes] = [
            self.build_frame(self.encode_tone_payload(tone)) for tone in sequence.tones
        ]
        return b''.join(frames)

    def encode_sound_preset(self, preset: SoundPreset) -> bytes:
        preset = SoundPreset(preset)
        return self.build_frame(
            self.SOUND_SEQUENCE_STRUCT.pack(CommandIds.SOUND_SEQUENCE, 1, int(preset))
        )

    def encode_command(self, command) -> bytes:
        """
        Encode any wire command model.

        Args:
            command: MoveVelocity, MoveRaw, SoundSequence or PlaySoundPreset

        Returns:
            Bytes to write

        Raises:
            TypeError: If the command has no wire representation
        """
        if isinstance(command, MoveVelocity):
            return self.encode_velocity(command.linear, command.angular)
        if isinstance(command, MoveRaw):
            return self.encode_base_control(command.speed, command.radius)
        if isinstance(command, SoundSequence):
            return self.encode_sound_sequence(command)
        if isinstance(command, PlaySoundPreset):
            return self.encode_sound_preset(command.preset)
        raise TypeError(f"No wire encoding for {type(command).__name__}")
