"""
Data models for py2kobuki.

Sensor records, event names, commands and configuration.
"""

from .sensors import (
    EventName,
    Feedback,
    SensorRecord,
    Bumper,
    BatteryVoltage,
    Buttons,
    ChargeState,
    Cliff,
    CliffADC,
    CurrentWheels,
    DockingIR,
    Gyro,
    Inertial,
    WheelsDrop,
    WheelsEncoder,
    WheelsPWM,
)

from .command import (
    MoveRaw,
    MoveVelocity,
    PlaySoundPreset,
    SetTolerance,
    SoundPreset,
    SoundSequence,
    Tone,
    ToleranceKind,
)

from .config import DriverConfig, TransportConfig

__all__ = [
    'EventName',
    'Feedback',
    'SensorRecord',
    'Bumper',
    'BatteryVoltage',
    'Buttons',
    'ChargeState',
    'Cliff',
    'CliffADC',
    'CurrentWheels',
    'DockingIR',
    'Gyro',
    'Inertial',
    'WheelsDrop',
    'WheelsEncoder',
    'WheelsPWM',
    'MoveRaw',
    'MoveVelocity',
    'PlaySoundPreset',
    'SetTolerance',
    'SoundPreset',
    'SoundSequence',
    'Tone',
    'ToleranceKind',
    'DriverConfig',
    'TransportConfig',
]
