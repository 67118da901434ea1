"""
Configuration models for py2kobuki.

Classes:
    TransportConfig: Which transport to open and how
    DriverConfig: Transport plus timing, duplex mode and initial tolerances
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from py2kobuki.models.command import ToleranceKind

TRANSPORT_KINDS = ("serial", "tcp", "loopback")
DUPLEX_MODES = ("full", "half")


@dataclass(frozen=True)
class TransportConfig:
    """
    Transport selection.

    Attributes:
        kind: "serial", "tcp" or "loopback"
        port: Serial device path (serial)
        baudrate: Serial baud rate (serial)
        host: Host name or address (tcp)
        tcp_port: TCP port number (tcp)
        connect_timeout: TCP connect timeout in seconds
    """

    kind: str = "serial"
    port: str = "/dev/kobuki"
    baudrate: int = 115200
    host: str = "127.0.0.1"
    tcp_port: int = 9999
    connect_timeout: float = 2.0

    def validate(self) -> Tuple[bool, List[str]]:
        errors = []
        if self.kind not in TRANSPORT_KINDS:
            errors.append(f"Unknown transport kind: {self.kind} (expected one of {TRANSPORT_KINDS})")
        if self.kind == "serial":
            if not self.port:
                errors.append("Serial port path cannot be empty")
            if self.baudrate <= 0:
                errors.append(f"Baud rate must be positive: {self.baudrate}")
        if self.kind == "tcp":
            if not self.host:
                errors.append("TCP host cannot be empty")
            if not (1 <= self.tcp_port <= 65535):
                errors.append(f"TCP port out of range (1-65535): {self.tcp_port}")
            if self.connect_timeout <= 0:
                errors.append(f"Connect timeout must be positive: {self.connect_timeout}")
        return (len(errors) == 0, errors)


@dataclass(frozen=True)
class DriverConfig:
    """
    Driver configuration.

    Attributes:
        transport: Transport selection
        duplex: "full" (reads and writes overlap) or "half" (time-multiplexed)
        read_timeout: Longest single wait of the dispatch loop, in seconds
        poll_interval: Slice the guard waits in, bounding close() latency
        read_size: Max bytes taken from the transport per read
        stop_timeout: How long stop() waits for the dispatch loop
        diagnostics_size: Capacity of the diagnostic event stream
        tolerances: Initial change-detection tolerances, applied on start()

    Example:
        >>> config = DriverConfig(duplex="half")
        >>> valid, errors = config.validate()
    """

    transport: TransportConfig = field(default_factory=TransportConfig)
    duplex: str = "full"
    read_timeout: float = 0.5
    poll_interval: float = 0.05
    read_size: int = 256
    stop_timeout: float = 2.0
    diagnostics_size: int = 100
    tolerances: Dict[ToleranceKind, float] = field(default_factory=dict)

    def validate(self) -> Tuple[bool, List[str]]:
        """
        Validate the configuration.

        Returns:
            Tuple of (is_valid, list_of_error_messages)
        """
        _, errors = self.transport.validate()

        if self.duplex not in DUPLEX_MODES:
            errors.append(f"Duplex mode must be one of {DUPLEX_MODES}: {self.duplex}")
        if self.read_timeout <= 0:
            errors.append(f"Read timeout must be positive: {self.read_timeout}")
        if self.poll_interval <= 0:
            errors.append(f"Poll interval must be positive: {self.poll_interval}")
        if self.read_size < 1:
            errors.append(f"Read size must be at least 1: {self.read_size}")
        if self.stop_timeout <= 0:
            errors.append(f"Stop timeout must be positive: {self.stop_timeout}")
        if self.diagnostics_size < 1:
            errors.append(f"Diagnostics size must be at least 1: {self.diagnostics_size}")
        for kind, value in self.tolerances.items():
            if not isinstance(kind, ToleranceKind):
                errors.append(f"Unknown tolerance kind: {kind}")
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                errors.append(f"Tolerance {kind} must be a number >= 0: {value}")

        return (len(errors) == 0, errors)
