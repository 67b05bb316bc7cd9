"""Exception hierarchy for lifx-dj.

```
LifxDjError
├── TransportError
│   ├── TransportBindError
│   └── TransportClosedError
├── QueryError
│   └── QueryTimeoutError
└── ConfigurationError
```

Only bind and configuration failures are meant to reach callers. Query and
command faults are absorbed by the store and the DJ engine.
"""

from typing import Optional


class LifxDjError(Exception):
    """
    Base exception for all lifx-dj errors.

    Attributes:
        user_message: Human-friendly message for display
        technical_message: Detailed message for logging
        recoverable: Whether the error can be recovered from
        recovery_hint: Optional hint for how to fix the issue
    """

    def __init__(
        self,
        user_message: str,
        technical_message: Optional[str] = None,
        recoverable: bool = False,
        recovery_hint: Optional[str] = None,
    ):
        super().__init__(user_message)
        self.user_message = user_message
        self.technical_message = technical_message or user_message
        self.recoverable = recoverable
        self.recovery_hint = recovery_hint

    def __str__(self) -> str:
        return self.user_message

    def get_full_message(self) -> str:
        """Get complete error message with recovery hint."""
        msg = self.user_message
        if self.recovery_hint:
            msg += f"\n\nSuggestion: {self.recovery_hint}"
        return msg


class TransportError(LifxDjError):
    """UDP socket failure."""


class TransportBindError(TransportError):
    """The UDP endpoint could not be bound. Fatal at startup."""

    def __init__(self, host: str, port: int, original_error: Optional[str] = None):
        super().__init__(
            user_message=f"Could not open UDP socket on {host}:{port}.",
            technical_message=f"bind({host!r}, {port}) failed: {original_error}",
            recoverable=False,
            recovery_hint="Check that the port is free or set transport.bind_port to 0.",
        )
        self.host = host
        self.port = port


class TransportClosedError(TransportError):
    """The transport was closed while an operation needed it."""

    def __init__(self, operation: str = "send"):
        super().__init__(
            user_message="Transport is closed.",
            technical_message=f"{operation} attempted on a closed transport",
            recoverable=False,
        )


class QueryError(LifxDjError):
    """A device failed to answer a state query."""

    def __init__(self, serial: str, query: str, reason: str = ""):
        super().__init__(
            user_message=f"Device {serial} did not answer {query}.",
            technical_message=f"{query} to {serial} failed: {reason}" if reason else None,
            recoverable=True,
        )
        self.serial = serial
        self.query = query


class QueryTimeoutError(QueryError):
    """No matching reply arrived before the request timeout."""

    def __init__(self, serial: str, query: str, timeout: float):
        super().__init__(serial, query, f"no reply within {timeout:.2f}s")
        self.timeout = timeout


class ConfigurationError(LifxDjError):
    """Settings file is unreadable or holds invalid values."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        hint = f"Config file: {file_path}" if file_path else None
        super().__init__(
            user_message=f"Invalid configuration: {message}",
            recoverable=True,
            recovery_hint=hint,
        )
        self.file_path = file_path
