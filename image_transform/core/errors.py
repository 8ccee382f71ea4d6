"""
Error taxonomy for transform and health operations.

Every failure that reaches a caller is one of these, each carrying a single
human-readable ``message`` ready for display.
"""

from __future__ import annotations

from typing import Any, Optional


class TransformError(Exception):
    """Base class for classified client failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TransformError):
    """Input violates a declared constraint; no request was sent."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class RequestTimeoutError(TransformError):
    """A per-call deadline expired before a response arrived."""


class BackendConnectionError(TransformError):
    """The request never reached a server."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class ServerError(TransformError):
    """The backend answered with a non-2xx status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ProtocolError(TransformError):
    """A 2xx response whose body does not match the result contract."""


class ProcessError(Exception):
    """The supervised backend failed to reach Running.

    Raised only inside the supervisor and converted to a ``StartResult``.
    """


__all__ = [
    "TransformError",
    "ValidationError",
    "RequestTimeoutError",
    "BackendConnectionError",
    "ServerError",
    "ProtocolError",
    "ProcessError",
]
