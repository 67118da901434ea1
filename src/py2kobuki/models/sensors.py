"""
Sensor record models for py2kobuki.

Each decoded sub-payload becomes one or more immutable records. A record class
knows the event name it is published under, so subscribers never need to
inspect payload shapes at dispatch time.

Numeric fields hold raw wire values. Out-of-range values are passed through
as received; properties convert to engineering units where useful.

Classes:
    EventName: Fixed set of publish channels
    SensorRecord: Base class for every record variant
    Feedback: (name, record) pair delivered to catch-all subscribers
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import ClassVar, Dict, Tuple, Type


class ChargerStates:
    """
    Values of the charger byte in basic sensor data.

    Values outside this table are passed through untouched.
    """
    DISCHARGING = 0
    DOCKING_CHARGED = 2
    DOCKING_CHARGING = 6
    ADAPTER_CHARGED = 18
    ADAPTER_CHARGING = 22


class EventName(str, Enum):
    """Publish channels. One per record variant plus the catch-all FEEDBACK."""

    FEEDBACK = "Feedback"
    GYRO = "Gyro"
    CLIFF = "Cliff"
    CLIFF_ADC = "CliffADC"
    WHEELS_DROP = "WheelsDrop"
    WHEELS_ENCODER = "WheelsEncoder"
    WHEELS_PWM = "WheelsPWM"
    BUMPER = "Bumper"
    BUTTONS = "Buttons"
    CHARGE_STATE = "ChargeState"
    DOCKING_IR = "DockingIR"
    INERTIAL = "Inertial"
    BATTERY_VOLTAGE = "BatteryVoltage"
    CURRENT_WHEELS = "CurrentWheels"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SensorRecord:
    """
    Base class for decoded sensor records.

    Subclasses set ``event_name`` and declare their payload fields.
    """

    event_name: ClassVar[EventName]

    def deviation(self, other: "SensorRecord") -> float:
        """
        Largest absolute difference between numeric fields of two records.

        Used by the tolerance filter to decide whether a reading changed
        enough to be worth publishing.

        Args:
            other: Record of the same type

        Returns:
            Maximum absolute field difference (0.0 when identical)
        """
        if type(other) is not type(self):
            raise TypeError(
                f"Cannot compare {type(self).__name__} with {type(other).__name__}"
            )
        worst = 0.0
        for f in fields(self):
            a = getattr(self, f.name)
            b = getattr(other, f.name)
            if isinstance(a, bool) or not isinstance(a, (int, float)):
                if a != b:
                    return float('inf')
                continue
            worst = max(worst, abs(a - b))
        return worst


@dataclass(frozen=True)
class Bumper(SensorRecord):
    """Bumper contact state."""
    event_name: ClassVar[EventName] = EventName.BUMPER

    left: bool
    center: bool
    right: bool

    @property
    def pressed(self) -> bool:
        return self.left or self.center or self.right


@dataclass(frozen=True)
class WheelsDrop(SensorRecord):
    """Wheel drop switches (True = wheel dropped)."""
    event_name: ClassVar[EventName] = EventName.WHEELS_DROP

    left: bool
    right: bool


@dataclass(frozen=True)
class Cliff(SensorRecord):
    """Cliff detection flags (True = cliff detected)."""
    event_name: ClassVar[EventName] = EventName.CLIFF

    left: bool
    center: bool
    right: bool


@dataclass(frozen=True)
class WheelsEncoder(SensorRecord):
    """
    Wheel encoder ticks.

    Attributes:
        timestamp: Robot timestamp in ms (wraps at 65535)
        left: Left encoder count (uint16, wraps)
        right: Right encoder count (uint16, wraps)
    """
    event_name: ClassVar[EventName] = EventName.WHEELS_ENCODER

    timestamp: int
    left: int
    right: int


@dataclass(frozen=True)
class WheelsPWM(SensorRecord):
    """Applied wheel PWM, signed, -128..127."""
    event_name: ClassVar[EventName] = EventName.WHEELS_PWM

    left: int
    right: int


@dataclass(frozen=True)
class Buttons(SensorRecord):
    """Function button state (True = pressed)."""
    event_name: ClassVar[EventName] = EventName.BUTTONS

    b0: bool
    b1: bool
    b2: bool


@dataclass(frozen=True)
class ChargeState(SensorRecord):
    """Charger state byte. See ChargerStates for the known values."""
    event_name: ClassVar[EventName] = EventName.CHARGE_STATE

    state: int

    @property
    def is_charging(self) -> bool:
        return self.state in (ChargerStates.DOCKING_CHARGING,
                              ChargerStates.ADAPTER_CHARGING)

    @property
    def is_charged(self) -> bool:
        return self.state in (ChargerStates.DOCKING_CHARGED,
                              ChargerStates.ADAPTER_CHARGED)

    @property
    def on_dock(self) -> bool:
        return self.state in (ChargerStates.DOCKING_CHARGED,
                              ChargerStates.DOCKING_CHARGING)

    @property
    def on_adapter(self) -> bool:
        return self.state in (ChargerStates.ADAPTER_CHARGED,
                              ChargerStates.ADAPTER_CHARGING)


@dataclass(frozen=True)
class BatteryVoltage(SensorRecord):
    """Battery voltage in units of 0.1 V."""
    event_name: ClassVar[EventName] = EventName.BATTERY_VOLTAGE

    raw: int

    @property
    def volts(self) -> float:
        return self.raw / 10.0


@dataclass(frozen=True)
class DockingIR(SensorRecord):
    """Docking IR signal bytes for the three receivers."""
    event_name: ClassVar[EventName] = EventName.DOCKING_IR

    left: int
    center: int
    right: int


@dataclass(frozen=True)
class Inertial(SensorRecord):
    """
    Calibrated heading from the on-board gyro.

    Attributes:
        angle: Heading in hundredths of a degree (int16)
        angle_rate: Angular velocity in hundredths of a degree per second (int16)
    """
    event_name: ClassVar[EventName] = EventName.INERTIAL

    angle: int
    angle_rate: int

    @property
    def heading_degrees(self) -> float:
        return self.angle / 100.0

    @property
    def rate_degrees(self) -> float:
        return self.angle_rate / 100.0


@dataclass(frozen=True)
class CliffADC(SensorRecord):
    """Raw ADC readings of the three cliff sensors (0-4095)."""
    event_name: ClassVar[EventName] = EventName.CLIFF_ADC

    left: int
    center: int
    right: int


@dataclass(frozen=True)
class CurrentWheels(SensorRecord):
    """Wheel motor current in units of 10 mA."""
    event_name: ClassVar[EventName] = EventName.CURRENT_WHEELS

    left: int
    right: int


@dataclass(frozen=True)
class Gyro(SensorRecord):
    """
    Raw 3-axis gyro samples.

    Attributes:
        frame_id: Rolling frame counter from the robot
        samples: Tuple of (x, y, z) raw angular velocity readings
    """
    event_name: ClassVar[EventName] = EventName.GYRO

    frame_id: int
    samples: Tuple[Tuple[int, int, int], ...]

    @property
    def latest(self) -> Tuple[int, int, int]:
        return self.samples[-1] if self.samples else (0, 0, 0)

    def deviation(self, other: "SensorRecord") -> float:
        if not isinstance(other, Gyro):
            raise TypeError(f"Cannot compare Gyro with {type(other).__name__}")
        return float(max(abs(a - b) for a, b in zip(self.latest, other.latest)))


@dataclass(frozen=True)
class Feedback:
    """Catch-all delivery: the event name a record was published under, and the record."""

    name: EventName
    record: SensorRecord


RECORD_TYPES: Tuple[Type[SensorRecord], ...] = (
    Gyro, Cliff, CliffADC, WheelsDrop, WheelsEncoder, WheelsPWM, Bumper,
    Buttons, ChargeState, DockingIR, Inertial, BatteryVoltage, CurrentWheels,
)

RECORD_TYPE_BY_EVENT: Dict[EventName, Type[SensorRecord]] = {
    record_type.event_name: record_type for record_type in RECORD_TYPES
}
