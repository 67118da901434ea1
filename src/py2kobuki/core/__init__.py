"""
Core layer for Kobuki robot communication.

This package contains the frame decoder, event registry, dispatch loop,
command path and transport guard, plus the protocol and transport pieces
they are built on.
"""

from .command_path import CommandPath
from .diagnostics import DiagnosticEvent, DiagnosticKind, DiagnosticStream
from .dispatch_loop import DispatchLoop
from .event_registry import EventRegistry, Subscription
from .frame_decoder import FrameDecoder
from .protocol_encoder import ProtocolEncoder
from .tolerance_filter import ToleranceFilter, Tolerances
from .transport import LoopbackTransport, SerialTransport, SocketTransport, Transport
from .transport_guard import DuplexMode, GuardState, TransportGuard

__all__ = [
    'CommandPath',
    'DiagnosticEvent',
    'DiagnosticKind',
    'DiagnosticStream',
    'DispatchLoop',
    'EventRegistry',
    'Subscription',
    'FrameDecoder',
    'ProtocolEncoder',
    'ToleranceFilter',
    'Tolerances',
    # Transports
    'Transport',
    'SerialTransport',
    'SocketTransport',
    'LoopbackTransport',
    'DuplexMode',
    'GuardState',
    'TransportGuard',
]
