# py2kobuki package
"""
Sensor/event fan-out driver core for Kobuki-style robot bases.
"""

__version__ = "0.1.0"

from .driver import KobukiDriver
from .models.config import DriverConfig, TransportConfig
from .models.sensors import EventName, Feedback

__all__ = [
    "KobukiDriver",
    "DriverConfig",
    "TransportConfig",
    "EventName",
    "Feedback",
]
