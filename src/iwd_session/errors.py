"""Exception types shared by the session components."""

from __future__ import annotations

from typing import Mapping


class SessionError(RuntimeError):
    """Base class for errors raised by the session layer."""


class Canceled(SessionError):
    """Raised when a pending credential request is aborted."""

    def __init__(self, message: str = "Operation canceled") -> None:
        super().__init__(message)


class ChannelClosed(Canceled):
    """Raised when a hand-off channel is used after it was closed."""

    def __init__(self, message: str = "Channel closed") -> None:
        super().__init__(message)


class Disconnected(SessionError):
    """Raised when the credential bridge has already been torn down."""

    def __init__(self, message: str = "Credential agent disconnected") -> None:
        super().__init__(message)


class ValidationFailed(SessionError):
    """Raised when the enterprise profile form contains invalid fields."""

    def __init__(self, errors: Mapping[str, str]) -> None:
        self.errors = dict(errors)
        fields = ", ".join(sorted(self.errors)) or "unknown"
        super().__init__(f"Validation failed for: {fields}")


class DaemonCallFailed(SessionError):
    """Raised when an operation on the wireless daemon does not succeed."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(message)


__all__ = [
    "Canceled",
    "ChannelClosed",
    "DaemonCallFailed",
    "Disconnected",
    "SessionError",
    "ValidationFailed",
]
