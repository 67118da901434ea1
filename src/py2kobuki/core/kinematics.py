"""
Differential drive kinematics for the base control command.

The robot does not accept (v, w) directly; it takes a wheel speed in mm/s and
a turn radius in mm. This module performs that conversion.
"""

from typing import Tuple

# Distance between the wheels in metres
WHEEL_BIAS = 0.23

EPSILON = 0.0001

INT16_MIN = -32768
INT16_MAX = 32767


def _saturate(value: float) -> int:
    return int(max(INT16_MIN, min(INT16_MAX, round(value))))


def velocity_to_speed_radius(linear: float, angular: float,
                             bias: float = WHEEL_BIAS) -> Tuple[int, int]:
    """
    Convert a velocity command into the robot's (speed, radius) pair.

    Args:
        linear: Forward velocity in m/s
        angular: Rotational velocity in rad/s
        bias: Wheel base in metres

    Returns:
        Tuple of (speed mm/s, radius mm), each saturated to int16

    Special cases:
        - angular ~ 0: straight run, radius 0
        - linear ~ 0 or |radius| <= 1 mm: spin in place, radius 1
    """
    if abs(angular) < EPSILON:
        return _saturate(1000.0 * linear), 0

    radius = linear * 1000.0 / angular

    if abs(linear) < EPSILON or abs(radius) <= 1.0:
        return _saturate(1000.0 * bias * angular / 2.0), 1

    if radius > 0.0:
        speed = (radius + 1000.0 * bias / 2.0) * angular
    else:
        speed = (radius - 1000.0 * bias / 2.0) * angular

    return _saturate(speed), _saturate(radius)
