"""MCPClient — one protocol session with one MCP server.

Opens the configured transport, performs the ``initialize`` handshake and
``tools/list`` discovery, then accepts concurrent ``tools/call``
invocations.  Responses are matched to their callers by request id through
a :class:`RequestCorrelator`, so they may arrive in any order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from mcproxy import __version__
from mcproxy.protocols.errors import (
    ConfigurationError,
    ConnectionLostError,
    MalformedResponseError,
    MCPError,
    NotConnectedError,
    RequestTimeoutError,
    SessionStateError,
)
from mcproxy.protocols.mcp.correlator import RequestCorrelator
from mcproxy.protocols.mcp.models import (
    METHOD_NOT_FOUND,
    CallToolResult,
    DiagnosticEvent,
    InitializeResult,
    JsonRpcError,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    ListToolsResult,
    MCPServerConfig,
    MCPToolDef,
    NotificationEvent,
    ServerExitedEvent,
    SessionEvent,
)
from mcproxy.protocols.mcp.placeholders import PlaceholderContext, resolve_server_config
from mcproxy.protocols.mcp.transport import (
    HttpTransport,
    MCPTransport,
    StdioTransport,
    TransportHandlers,
    WebSocketTransport,
)
from mcproxy.utils.telemetry import (
    ATTR_PROTOCOL_VERSION,
    ATTR_SERVER,
    ATTR_TOOL_COUNT,
    ATTR_TOOL_IS_ERROR,
    ATTR_TOOL_NAME,
    ATTR_TRANSPORT,
    span,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "mcproxy"

SessionListener = Callable[[SessionEvent], None]

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class SessionState(str, Enum):
    """Lifecycle of an :class:`MCPClient`."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    INITIALIZING = "initializing"
    DISCOVERING_TOOLS = "discovering_tools"
    READY = "ready"
    CLOSED = "closed"


class MCPClient:
    """Async context manager that connects to an MCP server.

    Satisfies the :class:`~mcproxy.protocols.provider.ToolProvider` protocol.

    Usage::

        config = MCPServerConfig(command="npx", args=["@mcp/filesystem"])
        async with MCPClient("fs", config) as client:
            print([tool.name for tool in client.tools])
            result = await client.invoke("read_file", {"path": "/tmp/x"})

    The configuration is fixed for the lifetime of the client.  Once the
    session is ``CLOSED`` it stays closed; reconnecting means building a new
    client.  Events (server exit, stderr lines, server notifications) go to
    the optional *listener*.
    """

    def __init__(
        self,
        name: str,
        config: MCPServerConfig,
        *,
        context: PlaceholderContext | None = None,
        listener: SessionListener | None = None,
    ) -> None:
        self._name = name
        self._config = config
        self._context = context
        self._listener = listener
        self._state = SessionState.DISCONNECTED
        self._transport: MCPTransport | None = None
        self._correlator = RequestCorrelator()
        self._tools: tuple[MCPToolDef, ...] = ()
        self._server_info: InitializeResult | None = None
        self._background: set[asyncio.Task[None]] = set()

    async def __aenter__(self) -> MCPClient:
        await self.start()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.stop()

    # -- read-only views ----------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> MCPServerConfig:
        return self._config

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def transport_kind(self) -> str:
        return self._config.kind or self._config.type

    @property
    def tools(self) -> tuple[MCPToolDef, ...]:
        """Snapshot of the last complete discovery; empty until ``READY``."""
        return self._tools if self._state is SessionState.READY else ()

    @property
    def server_info(self) -> InitializeResult | None:
        return self._server_info if self._state is SessionState.READY else None

    @property
    def is_connected(self) -> bool:
        return (
            self._transport is not None
            and self._transport.is_open
            and self._state is not SessionState.CLOSED
        )

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Open the transport, run the handshake, and discover tools.

        Raises:
            ConfigurationError: The configuration cannot be used; the session
                stays ``DISCONNECTED``.
            MCPError: Any transport or handshake failure; the session is
                ``CLOSED`` afterwards.
        """
        if self._state is SessionState.READY:
            return
        if self._state is not SessionState.DISCONNECTED:
            msg = f"Cannot start MCP server '{self._name}' in state {self._state.value}"
            raise SessionStateError(msg)

        context = self._context or PlaceholderContext.from_environment()
        config = resolve_server_config(self._config, context)
        transport = self._create_transport(config)

        attributes = {ATTR_SERVER: self._name, ATTR_TRANSPORT: self.transport_kind}
        with span(__name__, "mcp.session.start", attributes) as current:
            logger.info("[%s] Starting MCP server: %s", self._name, _describe_target(config))

            self._transport = transport
            self._state = SessionState.CONNECTING
            try:
                await transport.open(
                    TransportHandlers(
                        on_message=self._handle_message,
                        on_close=self._handle_close,
                        on_diagnostic=self._handle_diagnostic,
                    )
                )
                self._enter(SessionState.INITIALIZING)
                await self._initialize()
                self._enter(SessionState.DISCOVERING_TOOLS)
                await self.discover_tools()
                self._enter(SessionState.READY)
            except BaseException:
                self._state = SessionState.CLOSED
                self._transport = None
                self._tools = ()
                self._server_info = None
                self._correlator.reject_all(ConnectionLostError("session start failed"))
                await transport.close()
                raise

            if self._server_info is not None:
                current.set_attribute(ATTR_PROTOCOL_VERSION, self._server_info.protocol_version)
            current.set_attribute(ATTR_TOOL_COUNT, len(self._tools))

    async def stop(self) -> None:
        """Close the transport and forget tools and server identity.

        Safe to call at any time and any number of times.
        """
        transport, self._transport = self._transport, None
        if self._state is not SessionState.DISCONNECTED:
            self._state = SessionState.CLOSED
        self._tools = ()
        self._server_info = None
        self._correlator.reject_all(ConnectionLostError("session stopped"))
        background, self._background = self._background, set()
        for task in background:
            task.cancel()
        if transport is not None:
            await transport.close()
            logger.info("[%s] Stopped MCP server", self._name)

    async def discover_tools(self) -> tuple[MCPToolDef, ...]:
        """Send ``tools/list`` (following pagination) and replace the tool list.

        The snapshot is only swapped once every page has been received and
        validated; a failed discovery leaves the previous list in place.
        """
        if self._state not in (SessionState.DISCOVERING_TOOLS, SessionState.READY):
            msg = f"MCP server '{self._name}' cannot list tools in state {self._state.value}"
            raise SessionStateError(msg)

        tools: list[MCPToolDef] = []
        seen_cursors: set[str] = set()
        cursor: str | None = None
        while True:
            params = {"cursor": cursor} if cursor else {}
            raw = await self._request("tools/list", params)
            page = self._parse(ListToolsResult, raw, "tools/list")
            tools.extend(page.tools)
            cursor = page.next_cursor
            if not cursor:
                break
            if cursor in seen_cursors:
                msg = f"Server '{self._name}' repeated tools/list cursor {cursor!r}"
                raise MalformedResponseError(msg)
            seen_cursors.add(cursor)

        self._tools = tuple(tools)
        logger.info(
            "[%s] Discovered %d tools: %s",
            self._name,
            len(self._tools),
            ", ".join(tool.name for tool in self._tools),
        )
        return self._tools

    # -- tool invocation ----------------------------------------------------

    async def invoke(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> CallToolResult:
        """Send ``tools/call`` and return the server's result.

        The tool does not have to be in :attr:`tools`; unknown names are
        forwarded and the server reports the error.  Without *timeout* the
        call waits until the server answers or the connection is lost.

        Raises:
            SessionStateError: The session is not ``READY``.
            ProtocolError: The server answered with a JSON-RPC error.
            RequestTimeoutError: *timeout* seconds passed without a response.
            TransportError: The connection failed or was lost.
        """
        if self._state is not SessionState.READY:
            msg = f"MCP server '{self._name}' is not ready (state: {self._state.value})"
            raise SessionStateError(msg)

        with span(__name__, "mcp.tools.call", {ATTR_SERVER: self._name, ATTR_TOOL_NAME: name}) as current:
            logger.debug("[%s] Invoking tool %s with args: %s", self._name, name, arguments)
            raw = await self._request(
                "tools/call",
                {"name": name, "arguments": arguments or {}},
                timeout=timeout,
            )
            result = self._parse(CallToolResult, raw, "tools/call")
            current.set_attribute(ATTR_TOOL_IS_ERROR, result.is_error)
        return result

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> CallToolResult:
        """Like :meth:`invoke`, but failures come back as an error result."""
        try:
            return await self.invoke(name, arguments, timeout=timeout)
        except MCPError as exc:
            logger.warning("[%s] Tool error: %s", self._name, exc)
            return CallToolResult.failure(f"Error calling tool: {exc}")

    # -- internals ----------------------------------------------------------

    def _enter(self, state: SessionState) -> None:
        # stop() or a transport failure may have closed the session mid-start.
        if self._state is SessionState.CLOSED:
            msg = f"MCP server '{self._name}' closed during start"
            raise ConnectionLostError(msg)
        self._state = state

    def _create_transport(self, config: MCPServerConfig) -> MCPTransport:
        """Build the appropriate transport from the server configuration."""
        kind = config.kind
        if kind == "stdio":
            if not config.command:
                msg = f"MCP server '{self._name}' with stdio transport must specify 'command'"
                raise ConfigurationError(msg)
            return StdioTransport(
                command=config.command,
                args=config.args,
                env=dict(config.env) or None,
            )
        if kind is None:
            msg = f"MCP server '{self._name}' has unsupported transport type '{config.type}'"
            raise ConfigurationError(msg)
        if not config.url:
            msg = f"MCP server '{self._name}' with {kind} transport must specify 'url'"
            raise ConfigurationError(msg)
        if kind == "websocket":
            return WebSocketTransport(url=config.url, headers=config.headers)
        return HttpTransport(url=config.url, headers=config.headers)

    async def _initialize(self) -> None:
        """Perform the MCP initialize handshake."""
        raw = await self._request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": CLIENT_NAME, "version": __version__},
            },
        )
        info = self._parse(InitializeResult, raw, "initialize")
        logger.info(
            "[%s] Connected to %s v%s",
            self._name,
            info.server_info.name,
            info.server_info.version,
        )
        await self._notify("notifications/initialized")
        self._server_info = info

    async def _request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Send a JSON-RPC request and wait for its result."""
        transport = self._transport
        if transport is None or self._state is SessionState.CLOSED:
            msg = f"MCP server '{self._name}' not connected"
            raise NotConnectedError(msg)

        request_id, future = self._correlator.register()
        payload = JsonRpcRequest(id=request_id, method=method, params=params or {}).model_dump()
        # The deadline covers the send: HTTP does the whole round trip there.
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                logger.debug("[%s] -> %s", self._name, payload)
                reply = await transport.send(payload)
                if reply is not None:
                    # Request/response transports hand back the reply directly.
                    self._handle_message(reply)
                    if request_id in self._correlator:
                        msg = f"Reply to {method} did not answer request id {request_id}"
                        self._correlator.fail(request_id, MalformedResponseError(msg))
                return await future
        except TimeoutError as exc:
            if timeout is None or not deadline.expired():
                raise
            raise RequestTimeoutError(method, timeout) from exc
        finally:
            self._correlator.discard(request_id)

    async def _notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a JSON-RPC notification; no response is expected."""
        transport = self._transport
        if transport is None:
            msg = f"MCP server '{self._name}' not connected"
            raise NotConnectedError(msg)
        payload = JsonRpcNotification(method=method, params=params or {}).model_dump()
        logger.debug("[%s] -> %s", self._name, payload)
        await transport.send(payload)

    def _parse(self, model: type[_ModelT], raw: Any, method: str) -> _ModelT:
        try:
            return model.model_validate(raw)
        except ValidationError as exc:
            msg = f"Invalid {method} result from MCP server '{self._name}': {exc}"
            raise MalformedResponseError(msg) from exc

    def _handle_message(self, message: dict[str, Any]) -> None:
        """Route one incoming message: response, server request, or notification."""
        logger.debug("[%s] <- %s", self._name, message)
        if "method" in message:
            if "id" in message:
                self._spawn(self._answer_server_request(message))
            else:
                self._handle_notification(message)
            return
        if "id" not in message:
            logger.warning("[%s] Ignoring message without id or method", self._name)
            return
        try:
            response = JsonRpcResponse.model_validate(message)
        except ValidationError as exc:
            request_id = message["id"]
            failure = MalformedResponseError(f"Malformed response: {exc}")
            if not isinstance(request_id, int | str) or not self._correlator.fail(request_id, failure):
                logger.warning("[%s] Dropping malformed response: %s", self._name, exc)
            return
        self._correlator.complete(response)

    def _handle_notification(self, message: dict[str, Any]) -> None:
        params = message.get("params")
        self._emit(
            NotificationEvent(
                server=self._name,
                method=str(message["method"]),
                params=params if isinstance(params, dict) else {},
            )
        )

    async def _answer_server_request(self, message: dict[str, Any]) -> None:
        """Reply to a request the server sent us (only ``ping`` is supported)."""
        if message["method"] == "ping":
            response = JsonRpcResponse(id=message["id"], result={})
        else:
            response = JsonRpcResponse(
                id=message["id"],
                error=JsonRpcError(code=METHOD_NOT_FOUND, message="Method not found"),
            )
        transport = self._transport
        if transport is None:
            return
        try:
            await transport.send(response.model_dump(exclude_none=True))
        except MCPError as exc:
            logger.warning("[%s] Could not answer %s: %s", self._name, message["method"], exc)

    def _handle_close(self, reason: str, exit_code: int | None) -> None:
        """Transport went away without :meth:`stop` being called."""
        if self._state is SessionState.CLOSED:
            return
        logger.warning("[%s] Server exited: %s", self._name, reason)
        self._state = SessionState.CLOSED
        self._tools = ()
        self._server_info = None
        rejected = self._correlator.reject_all(ConnectionLostError(reason))
        if rejected:
            logger.warning("[%s] Failed %d pending request(s)", self._name, rejected)
        self._emit(ServerExitedEvent(server=self._name, reason=reason, exit_code=exit_code))

    def _handle_diagnostic(self, line: str) -> None:
        logger.info("[%s] stderr: %s", self._name, line)
        self._emit(DiagnosticEvent(server=self._name, line=line))

    def _emit(self, event: SessionEvent) -> None:
        if self._listener is None:
            return
        try:
            self._listener(event)
        except Exception:
            logger.exception("[%s] Session listener failed on %s event", self._name, type(event).__name__)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


def _describe_target(config: MCPServerConfig) -> str:
    if config.kind == "stdio":
        return " ".join([config.command or "", *config.args]).strip()
    return f"{config.type} {config.url}"
