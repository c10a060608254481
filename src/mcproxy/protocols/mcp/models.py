"""MCP models — JSON-RPC 2.0 messages, MCP payloads, server configuration.

Implements the message format used by the Model Context Protocol for the
initialize handshake, tool discovery (``tools/list``) and execution
(``tools/call``).  Wire names are camelCase; the models expose snake_case
attributes and serialize back with ``by_alias=True``.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

# ---------------------------------------------------------------------------
# JSON-RPC 2.0 envelope
# ---------------------------------------------------------------------------

RequestId = int | str


class JsonRpcRequest(BaseModel):
    """A JSON-RPC 2.0 request message."""

    jsonrpc: str = "2.0"
    id: RequestId
    method: str
    params: dict[str, Any] = {}


class JsonRpcNotification(BaseModel):
    """A JSON-RPC 2.0 notification: a request without an id."""

    jsonrpc: str = "2.0"
    method: str
    params: dict[str, Any] = {}


class JsonRpcError(BaseModel):
    """A JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any = None


class JsonRpcResponse(BaseModel):
    """A JSON-RPC 2.0 response message."""

    jsonrpc: str = "2.0"
    id: RequestId | None = None
    result: Any = None
    error: JsonRpcError | None = None

    @model_validator(mode="after")
    def _result_or_error(self) -> JsonRpcResponse:
        if self.error is None and "result" not in self.model_fields_set:
            msg = "response carries neither 'result' nor 'error'"
            raise ValueError(msg)
        return self


METHOD_NOT_FOUND = -32601


# ---------------------------------------------------------------------------
# MCP-specific payloads
# ---------------------------------------------------------------------------


class Implementation(BaseModel):
    """Name and version of an MCP client or server."""

    name: str
    version: str = ""


class InitializeResult(BaseModel):
    """Result of the ``initialize`` request."""

    model_config = ConfigDict(populate_by_name=True)

    protocol_version: str = Field(alias="protocolVersion")
    capabilities: dict[str, Any] = {}
    server_info: Implementation = Field(alias="serverInfo")
    instructions: str | None = None


class InputSchema(BaseModel):
    """JSON-Schema-like description of a tool's arguments.

    Only ``type``, ``properties`` and ``required`` are modelled; any other
    schema keywords are kept as extra fields so nothing is lost on re-export.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    type: str = "object"
    properties: dict[str, Any] = {}
    required: list[str] = []


class MCPToolDef(BaseModel):
    """A tool definition as returned by ``tools/list``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    description: str = ""
    input_schema: InputSchema = Field(default_factory=InputSchema, alias="inputSchema")
    annotations: dict[str, Any] | None = None


class ListToolsResult(BaseModel):
    """One page of a ``tools/list`` response."""

    model_config = ConfigDict(populate_by_name=True)

    tools: list[MCPToolDef] = []
    next_cursor: str | None = Field(default=None, alias="nextCursor")


# ---------------------------------------------------------------------------
# Tool call content, tagged on ``type``
# ---------------------------------------------------------------------------


class TextContent(BaseModel):
    """Plain text content item."""

    type: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    """Inline base64 image content item."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["image"] = "image"
    data: str
    mime_type: str = Field(alias="mimeType")


class ResourceContents(BaseModel):
    """Payload of an embedded resource: text or base64 blob."""

    model_config = ConfigDict(populate_by_name=True)

    uri: str
    mime_type: str | None = Field(default=None, alias="mimeType")
    text: str | None = None
    blob: str | None = None


class EmbeddedResource(BaseModel):
    """Resource content item embedded in a tool result."""

    type: Literal["resource"] = "resource"
    resource: ResourceContents


ToolContent = Annotated[
    TextContent | ImageContent | EmbeddedResource,
    Field(discriminator="type"),
]


class CallToolResult(BaseModel):
    """Result of ``tools/call``: ordered content items plus an error flag."""

    model_config = ConfigDict(populate_by_name=True)

    content: list[ToolContent] = []
    is_error: bool = Field(default=False, alias="isError")

    @classmethod
    def failure(cls, text: str) -> CallToolResult:
        """Build a well-formed error result carrying a single text item."""
        return cls(content=[TextContent(text=text)], is_error=True)

    @property
    def text(self) -> str:
        """Concatenated text of all text content items."""
        return "\n".join(item.text for item in self.content if isinstance(item, TextContent))

    def as_text_parts(self) -> list[str]:
        """Render every content item as text for hosts that only show text."""
        parts: list[str] = []
        for item in self.content:
            if isinstance(item, TextContent):
                parts.append(item.text)
            elif isinstance(item, ImageContent):
                parts.append(f"[Image: {item.mime_type}]")
            elif item.resource.text:
                parts.append(item.resource.text)
        if not parts:
            parts.append("Tool completed successfully")
        return parts


# ---------------------------------------------------------------------------
# Server configuration
# ---------------------------------------------------------------------------

# Accepted spellings of each transport kind.
TRANSPORT_KINDS: dict[str, str] = {
    "stdio": "stdio",
    "process": "stdio",
    "websocket": "websocket",
    "socket": "websocket",
    "ws": "websocket",
    "http": "http",
}


class MCPServerConfig(BaseModel):
    """How to reach one MCP server.

    ``type`` selects the transport.  ``command``/``args``/``env`` apply to
    the process transport; ``url``/``headers`` to the socket and HTTP
    transports.  Fields that do not apply to the chosen kind are ignored.
    The kind itself is validated when a session starts, not here.
    """

    model_config = ConfigDict(frozen=True)

    type: str = "stdio"
    command: str | None = None
    args: list[str] = []
    env: dict[str, str] = {}
    url: str | None = None
    headers: dict[str, str] = {}

    @property
    def kind(self) -> str | None:
        """Normalized transport kind, or ``None`` when unsupported."""
        return TRANSPORT_KINDS.get(self.type.lower())


# ---------------------------------------------------------------------------
# Session events
# ---------------------------------------------------------------------------


class SessionEvent(BaseModel):
    """Base for events a session reports to its owner."""

    server: str


class ServerExitedEvent(SessionEvent):
    """The transport closed without the owner asking for it."""

    kind: Literal["exit"] = "exit"
    reason: str = ""
    exit_code: int | None = None


class DiagnosticEvent(SessionEvent):
    """A line from the server's diagnostic (stderr) stream."""

    kind: Literal["diagnostic"] = "diagnostic"
    line: str


class NotificationEvent(SessionEvent):
    """A notification the server pushed to the client."""

    kind: Literal["notification"] = "notification"
    method: str
    params: dict[str, Any] = {}
