"""
Sub-payload identifiers and bit masks for the Kobuki serial protocol.

Every frame on the wire, in both directions, has the same envelope:

    AA 55 | LEN | PAYLOAD[LEN] | CS

where CS is the XOR of LEN and every payload byte. The payload is a run of
sub-payloads, each ``ID | SIZE | DATA[SIZE]``.

Usage Example:
    >>> from py2kobuki.core.command_codes import CommandIds
    >>> from py2kobuki.core.protocol_encoder import ProtocolEncoder
    >>>
    >>> encoder = ProtocolEncoder()
    >>> frame = encoder.encode_base_control(speed=100, radius=0)
"""

from enum import IntEnum


# Frame envelope
HEADER = b'\xAA\x55'
HEADER_SIZE = 2
LENGTH_SIZE = 1
CHECKSUM_SIZE = 1
MAX_PAYLOAD_SIZE = 255


class FeedbackIds(IntEnum):
    """Sub-payload ids sent by the robot."""
    BASIC_SENSOR_DATA = 1
    DOCKING_IR = 3
    INERTIAL = 4
    CLIFF_ADC = 5
    CURRENT = 6
    RAW_GYRO = 13


# Payload sizes of the fixed-layout feedback sub-payloads
FEEDBACK_SIZES = {
    FeedbackIds.BASIC_SENSOR_DATA: 15,
    FeedbackIds.DOCKING_IR: 3,
    FeedbackIds.INERTIAL: 7,
    FeedbackIds.CLIFF_ADC: 6,
    FeedbackIds.CURRENT: 2,
}


class CommandIds(IntEnum):
    """Sub-payload ids sent to the robot."""
    BASE_CONTROL = 1
    SOUND = 3
    SOUND_SEQUENCE = 4


class BumperMask:
    """Bits of the bumper byte in basic sensor data."""
    RIGHT = 0x01
    CENTER = 0x02
    LEFT = 0x04


class WheelDropMask:
    """Bits of the wheel drop byte in basic sensor data."""
    RIGHT = 0x01
    LEFT = 0x02


class CliffMask:
    """Bits of the cliff byte in basic sensor data."""
    RIGHT = 0x01
    CENTER = 0x02
    LEFT = 0x04


class ButtonMask:
    """Bits of the button byte in basic sensor data."""
    B0 = 0x01
    B1 = 0x02
    B2 = 0x04


# Sound note period: note = 1 / (frequency * SOUND_NOTE_FACTOR)
SOUND_NOTE_FACTOR = 0.00000275
