"""MCP protocol — Model Context Protocol client."""

from mcproxy.protocols.mcp.client import MCPClient, SessionState
from mcproxy.protocols.mcp.correlator import RequestCorrelator
from mcproxy.protocols.mcp.models import (
    CallToolResult,
    EmbeddedResource,
    ImageContent,
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    MCPServerConfig,
    MCPToolDef,
    SessionEvent,
    TextContent,
)
from mcproxy.protocols.mcp.placeholders import PlaceholderContext, resolve, resolve_server_config
from mcproxy.protocols.mcp.transport import (
    FrameBuffer,
    HttpTransport,
    MCPTransport,
    StdioTransport,
    TransportHandlers,
    WebSocketTransport,
)

__all__ = [
    "CallToolResult",
    "EmbeddedResource",
    "FrameBuffer",
    "HttpTransport",
    "ImageContent",
    "JsonRpcError",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "MCPClient",
    "MCPServerConfig",
    "MCPToolDef",
    "MCPTransport",
    "PlaceholderContext",
    "RequestCorrelator",
    "SessionEvent",
    "SessionState",
    "StdioTransport",
    "TextContent",
    "TransportHandlers",
    "WebSocketTransport",
    "resolve",
    "resolve_server_config",
]
