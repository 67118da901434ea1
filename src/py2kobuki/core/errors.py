"""
Error hierarchy for the Kobuki driver core.

Every error raised by the core derives from KobukiError and carries a numeric
code, a context dictionary and, when it wraps another exception, the cause.

Error Code Ranges:
- 1000-1999: Transport errors
- 2000-2999: Decode/protocol errors
- 5000-5999: Lifecycle/state errors
- 6000-6999: Configuration errors
- 7000-7999: Validation errors
- 9000-9999: Unknown/System errors
"""

from typing import Optional, Dict, Any
from datetime import datetime
import traceback


class KobukiError(Exception):
    """
    Base exception for all driver errors.

    Provides structured error information with context tracking.
    """

    DEFAULT_CODE = 9000

    def __init__(
        self,
        message: str,
        error_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        """
        Initialize a driver error.

        Args:
            message: Human-readable error description
            error_code: Numeric error code for categorization
            context: Additional context information
            cause: Original exception if this wraps another error
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.DEFAULT_CODE
        self.context = context or {}
        self.cause = cause
        self.timestamp = datetime.now()

        self.stack_trace = traceback.format_exc() if cause else None

        if cause:
            self.context['original_error'] = str(cause)
            self.context['original_type'] = type(cause).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'code': self.error_code,
            'context': self.context,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
        }

    def format_log_message(self) -> str:
        """Format error for logging (with all details)."""
        parts = [
            f"[{self.error_code}] {self.__class__.__name__}: {self.message}"
        ]

        if self.context:
            parts.append(f"Context: {self.context}")

        if self.cause:
            parts.append(f"Caused by: {self.cause}")

        return " | ".join(parts)


class TransportError(KobukiError):
    """I/O failure on the connection (read, write, open or close)."""
    DEFAULT_CODE = 1001

    def __init__(self, message: str, **kwargs):
        if 'context' not in kwargs or kwargs['context'] is None:
            kwargs['context'] = {}
        kwargs['context']['category'] = 'TRANSPORT'
        super().__init__(message, **kwargs)


class ClosedError(TransportError):
    """Operation attempted on a connection that has been closed."""
    DEFAULT_CODE = 1003


class DecodeError(KobukiError):
    """
    A frame could not be decoded and was discarded.

    Recoverable: the decoder reports it and resynchronizes on the next frame.
    """
    DEFAULT_CODE = 2003

    def __init__(self, message: str, span: bytes = b'', **kwargs):
        if 'context' not in kwargs or kwargs['context'] is None:
            kwargs['context'] = {}
        kwargs['context']['category'] = 'DECODE'
        kwargs['context']['discarded_bytes'] = len(span)
        super().__init__(message, **kwargs)
        self.span = bytes(span)


class NotStartedError(KobukiError):
    """Operation requires an open connection but the driver was never started."""
    DEFAULT_CODE = 5004

    def __init__(self, message: str = "driver not started", **kwargs):
        if 'context' not in kwargs or kwargs['context'] is None:
            kwargs['context'] = {}
        kwargs['context']['category'] = 'STATE'
        super().__init__(message, **kwargs)


class ConfigurationError(KobukiError):
    """Errors related to driver configuration files and settings."""
    DEFAULT_CODE = 6001

    def __init__(self, message: str, setting_name: Optional[str] = None, **kwargs):
        if 'context' not in kwargs or kwargs['context'] is None:
            kwargs['context'] = {}
        kwargs['context']['category'] = 'CONFIGURATION'
        if setting_name:
            kwargs['context']['setting'] = setting_name
        super().__init__(message, **kwargs)


class UnknownEventError(KobukiError):
    """Subscription requested for an event name that does not exist."""
    DEFAULT_CODE = 7001

    def __init__(self, message: str, event_name: Any = None, **kwargs):
        if 'context' not in kwargs or kwargs['context'] is None:
            kwargs['context'] = {}
        kwargs['context']['category'] = 'VALIDATION'
        if event_name is not None:
            kwargs['context']['event_name'] = str(event_name)
        super().__init__(message, **kwargs)


class SubscriberError(KobukiError):
    """A subscriber callback raised while a record was being published."""
    DEFAULT_CODE = 9002

    def __init__(self, message: str, event_name: Any = None,
                 callback: Any = None, **kwargs):
        if 'context' not in kwargs or kwargs['context'] is None:
            kwargs['context'] = {}
        kwargs['context']['category'] = 'SUBSCRIBER'
        if event_name is not None:
            kwargs['context']['event_name'] = str(event_name)
        super().__init__(message, **kwargs)
        self.event_name = event_name
        self.callback = callback


class ErrorCodes:
    """Standard error codes for common error scenarios."""

    # Transport errors (1000-1999)
    OPEN_FAILED = 1001
    IO_ERROR = 1002
    CONNECTION_CLOSED = 1003
    WRITE_FAILED = 1004
    READ_FAILED = 1005

    # Decode errors (2000-2999)
    CHECKSUM_MISMATCH = 2001
    MALFORMED_PAYLOAD = 2002
    PROTOCOL_ERROR = 2003

    # State errors (5000-5999)
    NOT_STARTED = 5004
    STILL_STOPPING = 5005

    # Configuration errors (6000-6999)
    CONFIG_NOT_FOUND = 6001
    CONFIG_INVALID = 6002

    # Validation errors (7000-7999)
    UNKNOWN_EVENT = 7001

    # System errors (9000-9999)
    UNKNOWN_ERROR = 9000
    SUBSCRIBER_FAILED = 9002


def wrap_external_error(e: Exception, message: str, error_class=TransportError, **context) -> KobukiError:
    """
    Wrap an external exception in a KobukiError.

    Args:
        e: The original exception
        message: Context-specific error message
        error_class: The KobukiError subclass to use
        **context: Additional context information

    Returns:
        A KobukiError instance wrapping the original exception
    """
    return error_class(
        message=message,
        cause=e,
        context=context
    )
