"""
Command models for py2kobuki.

Commands are transient value objects: built by the caller (or by the
CommandPath convenience methods), encoded once, written, and discarded.

Classes:
    MoveVelocity: Drive with a linear and angular velocity
    MoveRaw: Drive with the robot's native speed/radius pair
    Tone: One note of a sound sequence
    SoundSequence: Ordered list of tones
    SoundPreset: Predefined firmware sound sequences
    PlaySoundPreset: Play one of the predefined sequences
    ToleranceKind: Which change-detection threshold a SetTolerance targets
    SetTolerance: Change a change-detection threshold
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Iterable, Tuple, Union


@dataclass(frozen=True)
class MoveVelocity:
    """
    Velocity command.

    Attributes:
        linear: Forward velocity in m/s
        angular: Rotational velocity in rad/s (positive = counter-clockwise)
    """

    linear: float
    angular: float


@dataclass(frozen=True)
class MoveRaw:
    """
    Native base control command.

    Attributes:
        speed: Wheel speed in mm/s (int16)
        radius: Turn radius in mm (int16; 0 = straight, 1 = spin in place)
    """

    speed: int
    radius: int


@dataclass(frozen=True)
class Tone:
    """A single note: frequency in Hz, duration in ms (1-255)."""

    frequency_hz: float
    duration_ms: int


@dataclass(frozen=True)
class SoundSequence:
    """Ordered tones, encoded and written as one atomic command."""

    tones: Tuple[Tone, ...]

    @classmethod
    def from_pairs(cls, pairs: Iterable[Union[Tone, Tuple[float, int]]]) -> "SoundSequence":
        """
        Build a sequence from Tone objects or (frequency_hz, duration_ms) pairs.

        Example:
            >>> seq = SoundSequence.from_pairs([(440, 100), (880, 50)])
            >>> len(seq.tones)
            2
        """
        tones = []
        for item in pairs:
            if isinstance(item, Tone):
                tones.append(item)
            else:
                frequency, duration = item
                tones.append(Tone(float(frequency), int(duration)))
        return cls(tuple(tones))


class SoundPreset(IntEnum):
    """Sound sequences built into the robot firmware."""

    ON = 0
    OFF = 1
    RECHARGE = 2
    BUTTON = 3
    ERROR = 4
    CLEANING_START = 5
    CLEANING_END = 6


@dataclass(frozen=True)
class PlaySoundPreset:
    preset: SoundPreset


class ToleranceKind(str, Enum):
    """Change-detection thresholds applied to noisy sensor variants."""

    CLIFF_ADC = "cliff_adc"
    GYRO = "gyro"
    CURRENT_WHEELS = "current_wheels"


@dataclass(frozen=True)
class SetTolerance:
    """
    Set a change-detection threshold.

    Attributes:
        kind: Which threshold to set
        value: Minimum change (in raw units) before a new reading is published;
            0 publishes every reading
    """

    kind: ToleranceKind
    value: float


Command = Union[MoveVelocity, MoveRaw, SoundSequence, PlaySoundPreset, SetTolerance]
