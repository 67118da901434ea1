"""
Change-detection tolerances for noisy sensor variants.

Cliff ADC readings, gyro readings and wheel currents jitter constantly. A
tolerance suppresses a new reading until it differs from the last published
one by more than the configured amount. A tolerance of 0 disables
suppression for that kind.
"""

import logging
import threading
from typing import Dict, Optional, Type, Union

from py2kobuki.models.command import ToleranceKind
from py2kobuki.models.sensors import (
    CliffADC,
    CurrentWheels,
    Gyro,
    Inertial,
    SensorRecord,
)

logger = logging.getLogger(__name__)


# Which tolerance governs which record type
GOVERNED_TYPES: Dict[Type[SensorRecord], ToleranceKind] = {
    CliffADC: ToleranceKind.CLIFF_ADC,
    Gyro: ToleranceKind.GYRO,
    Inertial: ToleranceKind.GYRO,
    CurrentWheels: ToleranceKind.CURRENT_WHEELS,
}


class Tolerances:
    """
    Thread-safe tolerance settings.

    Written by the command path from caller threads, read by the dispatch
    loop's filter.
    """

    def __init__(self, initial: Optional[Dict[Union[ToleranceKind, str], float]] = None):
        self._lock = threading.Lock()
        self._values: Dict[ToleranceKind, float] = {kind: 0.0 for kind in ToleranceKind}
        for kind, value in (initial or {}).items():
            self.set(kind, value)

    def set(self, kind: Union[ToleranceKind, str], value: float) -> None:
        """
        Set a tolerance.

        Raises:
            ValueError: If kind is unknown or value is negative/not a number
        """
        kind = ToleranceKind(kind)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"Tolerance must be a number, got {type(value).__name__}")
        if value < 0:
            raise ValueError(f"Tolerance must be >= 0, got {value}")
        with self._lock:
            self._values[kind] = value
        logger.debug(f"Tolerance {kind.value} set to {value}")

    def get(self, kind: Union[ToleranceKind, str]) -> float:
        kind = ToleranceKind(kind)
        with self._lock:
            return self._values[kind]

    def as_dict(self) -> Dict[ToleranceKind, float]:
        with self._lock:
            return dict(self._values)


class ToleranceFilter:
    """
    Decides whether a decoded record should be published.

    Records of types not governed by a tolerance always pass. Used only from
    the dispatch loop thread.
    """

    def __init__(self, tolerances: Tolerances):
        self.tolerances = tolerances
        self._last: Dict[Type[SensorRecord], SensorRecord] = {}
        self._suppressed = 0

    @property
    def suppressed(self) -> int:
        """Number of records held back since the last reset."""
        return self._suppressed

    def reset(self) -> None:
        self._last.clear()
        self._suppressed = 0

    def accept(self, record: SensorRecord) -> bool:
        """
        Args:
            record: Freshly decoded record

        Returns:
            True if the record should be published
        """
        record_type = type(record)
        kind = GOVERNED_TYPES.get(record_type)
        if kind is None:
            return True

        tolerance = self.tolerances.get(kind)
        last = self._last.get(record_type)
        if tolerance > 0 and last is not None and record.deviation(last) <= tolerance:
            self._suppressed += 1
            return False

        self._last[record_type] = record
        return True
