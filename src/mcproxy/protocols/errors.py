"""Shared error types for the protocol layer."""

from __future__ import annotations

from typing import Any


class MCPError(Exception):
    """Base error for all protocol-layer failures."""


class ConfigurationError(MCPError, ValueError):
    """A server configuration is missing a field or names an unsupported transport."""


class TransportError(MCPError):
    """The transport could not be opened or failed while in use."""


class NotConnectedError(TransportError):
    """A message was sent on a transport that is not open."""

    def __init__(self, detail: str = "Transport not connected") -> None:
        super().__init__(detail)


class ConnectionLostError(TransportError):
    """The connection went away while requests were still pending."""

    def __init__(self, reason: str = "") -> None:
        self.reason = reason
        super().__init__("Connection lost" + (f": {reason}" if reason else ""))


class ProtocolError(MCPError):
    """The server answered a request with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"{message} (code: {code})")


class MalformedResponseError(MCPError):
    """A response arrived but does not match the expected shape."""


class SessionStateError(MCPError):
    """An operation was attempted in a session state that does not allow it."""


class RequestTimeoutError(MCPError):
    """A request exceeded the deadline the caller gave it."""

    def __init__(self, method: str, timeout: float) -> None:
        self.method = method
        self.timeout = timeout
        super().__init__(f"Request {method} timed out after {timeout}s")


class ServerNotFoundError(MCPError):
    """Requested server is not registered with the dispatcher."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"MCP server not found: {name}")


class ToolNotFoundError(MCPError):
    """Requested tool does not exist in the dispatcher's routing table."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool not found: {name}")
