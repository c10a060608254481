"""Protocol layer — MCP sessions and the host-side dispatcher."""

from mcproxy.protocols.dispatcher import ToolDispatcher
from mcproxy.protocols.errors import (
    ConfigurationError,
    ConnectionLostError,
    MCPError,
    ProtocolError,
    ServerNotFoundError,
    ToolNotFoundError,
    TransportError,
)
from mcproxy.protocols.provider import ToolProvider

__all__ = [
    "ConfigurationError",
    "ConnectionLostError",
    "MCPError",
    "ProtocolError",
    "ServerNotFoundError",
    "ToolDispatcher",
    "ToolNotFoundError",
    "ToolProvider",
    "TransportError",
]
