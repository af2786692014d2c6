"""
Error taxonomy and user-facing classification for MCP stdio servers.

Exceptions raised inside the client all derive from McpError. The
classifier below turns any failure (typed or a raw message) into one of
a few categories so the CLI can show actionable guidance instead of a
stack trace. Classification never changes control flow.
"""

from __future__ import annotations

import enum
from typing import Any


class McpError(Exception):
    """Base class for tool-server client errors."""


class ConfigError(McpError):
    """A server entry in the MCP config is malformed."""


class ServerNotConfigured(McpError):
    def __init__(self, name: str):
        super().__init__(f'Server "{name}" not found in config')
        self.name = name


class SpawnError(McpError):
    """The server executable could not be launched."""

    def __init__(self, message: str, missing: bool = False):
        super().__init__(message)
        self.missing = missing


class HandshakeError(McpError):
    """initialize / tools/list did not complete."""


class RequestTimeout(McpError):
    def __init__(self, method: str, timeout: float):
        super().__init__(f"Request {method} timed out after {timeout:g}s")
        self.method = method
        self.timeout = timeout


class TransportClosed(McpError):
    """The server process exited or its pipes were closed."""


class InvalidRequest(McpError):
    """A request could not be encoded; nothing was sent to the server."""


class RemoteError(McpError):
    """The server answered with a JSON-RPC error object."""

    def __init__(self, code: int | None, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.data = data

    @classmethod
    def from_dict(cls, error: dict) -> "RemoteError":
        return cls(
            code=error.get("code"),
            message=str(error.get("message", "Unknown error")),
            data=error.get("data"),
        )


class ErrorKind(str, enum.Enum):
    OCCUPIED = "occupied"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    GENERIC = "generic"


_OCCUPIED_MARKERS = ("already connected", "in use", "address already in use", "eaddrinuse")
_NOT_FOUND_MARKERS = ("not found", "enoent")
_TIMEOUT_MARKERS = ("timeout", "timed out")


def _message(error: str | BaseException) -> str:
    return error if isinstance(error, str) else str(error)


def is_occupied_error(error: str | BaseException) -> bool:
    """True when another client (Cursor, Claude Desktop, ...) holds the server."""
    lowered = _message(error).lower()
    return any(marker in lowered for marker in _OCCUPIED_MARKERS)


def classify_error(error: str | BaseException) -> ErrorKind:
    """Map a failure to an ErrorKind for presentation."""
    if isinstance(error, RequestTimeout):
        return ErrorKind.TIMEOUT
    if isinstance(error, SpawnError) and error.missing:
        return ErrorKind.NOT_FOUND

    if is_occupied_error(error):
        return ErrorKind.OCCUPIED
    lowered = _message(error).lower()
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return ErrorKind.NOT_FOUND
    if any(marker in lowered for marker in _TIMEOUT_MARKERS):
        return ErrorKind.TIMEOUT
    return ErrorKind.GENERIC


def format_error(error: str | BaseException, server: str | None = None) -> str:
    """
    Render a failure as a one-line message for the user.

    Args:
        error: Exception or raw error text
        server: Optional server name used as a prefix

    Returns:
        Guidance text for known categories, otherwise the raw message.
    """
    prefix = f"{server}: " if server else ""
    kind = classify_error(error)

    if kind is ErrorKind.OCCUPIED:
        return (
            f"{prefix}Server is occupied by another client "
            "(e.g., Cursor, Claude Desktop). Close the other client first."
        )
    if kind is ErrorKind.NOT_FOUND:
        return f"{prefix}Command not found. Ensure the MCP server package is installed."
    if kind is ErrorKind.TIMEOUT:
        return f"{prefix}Request timed out. The server may be unresponsive. ({_message(error)})"
    return f"{prefix}{_message(error)}"
