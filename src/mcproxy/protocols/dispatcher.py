"""ToolDispatcher — the host-side registry of named MCP sessions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from mcproxy.protocols.errors import MCPError, ServerNotFoundError, ToolNotFoundError
from mcproxy.protocols.mcp.client import MCPClient, SessionState
from mcproxy.protocols.mcp.models import CallToolResult, ServerExitedEvent

if TYPE_CHECKING:
    from mcproxy.config import MCPConfig
    from mcproxy.protocols.mcp.models import MCPServerConfig, MCPToolDef, SessionEvent
    from mcproxy.protocols.mcp.placeholders import PlaceholderContext

logger = logging.getLogger(__name__)

NO_SERVERS_MESSAGE = (
    "No MCP servers are currently loaded. Ensure your MCP config file exists "
    "(default: .vscode/mcp.json) or pass --config to point at a different file."
)


class ToolDispatcher:
    """Owns one :class:`MCPClient` per configured server and routes calls to them.

    Usage::

        dispatcher = ToolDispatcher(context=PlaceholderContext.from_environment(root))
        errors = await dispatcher.start_all(load_config(path))

        tools = dispatcher.all_tools()                       # merged schemas
        result = await dispatcher.call("fs", "read_file", {"path": "x"})
        await dispatcher.stop_all()

    A server whose transport closes on its own is dropped from the registry,
    which removes its tools from :meth:`all_tools`.  Every session event is
    also passed on to *on_event* when given.
    """

    def __init__(
        self,
        *,
        context: PlaceholderContext | None = None,
        on_event: Callable[[SessionEvent], None] | None = None,
    ) -> None:
        self._context = context
        self._on_event = on_event
        self._clients: dict[str, MCPClient] = {}

    @property
    def servers(self) -> dict[str, MCPClient]:
        return dict(self._clients)

    def get(self, name: str) -> MCPClient:
        """Return the running session called *name*."""
        client = self._clients.get(name)
        if client is None:
            raise ServerNotFoundError(name)
        return client

    # -- lifecycle ----------------------------------------------------------

    async def start_server(self, name: str, config: MCPServerConfig) -> MCPClient:
        """Start a session for *config* and register it under *name*.

        A server that fails to start is not registered; the error propagates.
        An existing session with the same name is stopped and replaced.
        """
        client = MCPClient(name, config, context=self._context, listener=self._handle_event)
        try:
            await client.start()
        except MCPError as exc:
            logger.error("Failed to start MCP server %s: %s", name, exc)
            raise
        previous = self._clients.pop(name, None)
        if previous is not None:
            await previous.stop()
        self._clients[name] = client
        logger.info("Registered %d tool(s) from MCP server %s", len(client.tools), name)
        return client

    async def start_all(self, config: MCPConfig) -> dict[str, MCPError]:
        """Start every configured server concurrently.

        Returns the errors of the servers that failed to start, keyed by name.
        """
        names = list(config.servers)
        results = await asyncio.gather(
            *(self.start_server(name, config.servers[name]) for name in names),
            return_exceptions=True,
        )
        errors: dict[str, MCPError] = {}
        for name, result in zip(names, results, strict=True):
            if isinstance(result, MCPError):
                errors[name] = result
            elif isinstance(result, BaseException):
                raise result
        return errors

    async def stop_server(self, name: str) -> None:
        client = self._clients.pop(name, None)
        if client is not None:
            await client.stop()
            logger.info("Stopped MCP server: %s", name)

    async def stop_all(self) -> None:
        """Stop and unregister every session."""
        clients, self._clients = self._clients, {}
        await asyncio.gather(*(client.stop() for client in clients.values()))
        for name in clients:
            logger.info("Stopped MCP server: %s", name)

    async def refresh(self, config: MCPConfig) -> dict[str, MCPError]:
        """Replace every running session with the servers in *config*."""
        await self.stop_all()
        return await self.start_all(config)

    # -- tool routing -------------------------------------------------------

    def all_tools(self) -> list[dict[str, Any]]:
        """Return the merged tool list as OpenAI-compatible function schemas.

        Tool names are qualified with their server: ``{server}_{tool}``.
        When two servers produce the same qualified name (server ``a_b`` with
        tool ``c`` and server ``a`` with tool ``b_c``), the server registered
        first keeps it and the later tool is left out with a warning.
        """
        return [
            self._to_function_schema(server, tool)
            for server, tool in self._qualified_tools().values()
        ]

    async def execute(
        self,
        qualified_name: str,
        arguments: dict[str, Any] | None = None,
    ) -> CallToolResult:
        """Route a call by its qualified ``{server}_{tool}`` name.

        Ambiguous names resolve the same way :meth:`all_tools` lists them.
        """
        entry = self._qualified_tools().get(qualified_name)
        if entry is None:
            return CallToolResult.failure(f"Error: {ToolNotFoundError(qualified_name)}")
        server, tool = entry
        return await self._clients[server].call_tool(tool.name, arguments)

    async def call(
        self,
        server: str,
        tool: str,
        arguments: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> CallToolResult:
        """Call *tool* on *server*; problems come back as an error result."""
        client = self._clients.get(server)
        if client is None:
            available = ", ".join(self._clients) or "none"
            return CallToolResult.failure(
                f"Error: MCP server '{server}' not found. Available servers: {available}"
            )
        if not client.is_connected:
            return CallToolResult.failure(f"Error: MCP server '{server}' is not connected")
        return await client.call_tool(tool, arguments or {}, timeout=timeout)

    def describe(self) -> str:
        """Markdown overview of every server, its status, and its tools."""
        if not self._clients:
            return NO_SERVERS_MESSAGE

        lines = ["# Available MCP Servers and Tools", ""]
        for name, client in self._clients.items():
            lines.append(f"## Server: {name}")
            lines.append(f"Status: {'Connected' if client.is_connected else 'Disconnected'}")
            transport = client.transport_kind
            if client.config.url and transport != "stdio":
                transport += f" ({client.config.url})"
            lines.append(f"Transport: {transport}")
            lines.append("Tools:")
            for tool in client.tools:
                lines.append(f"- **{tool.name}**: {tool.description or 'No description'}")
                if tool.input_schema.properties:
                    lines.append(f"  Parameters: {', '.join(tool.input_schema.properties)}")
            lines.append("")
        return "\n".join(lines)

    # -- internals ----------------------------------------------------------

    def _handle_event(self, event: SessionEvent) -> None:
        if isinstance(event, ServerExitedEvent):
            client = self._clients.get(event.server)
            if client is not None and client.state is SessionState.CLOSED:
                del self._clients[event.server]
                logger.info("MCP server %s exited; unregistered its tools", event.server)
        if self._on_event is not None:
            self._on_event(event)

    def _qualified_tools(self) -> dict[str, tuple[str, MCPToolDef]]:
        qualified: dict[str, tuple[str, MCPToolDef]] = {}
        for server, client in self._clients.items():
            for tool in client.tools:
                name = f"{server}_{tool.name}"
                if name in qualified:
                    logger.warning(
                        "Tool %s from MCP server %s collides with %s from %s; skipping it",
                        tool.name, server, qualified[name][1].name, qualified[name][0],
                    )
                    continue
                qualified[name] = (server, tool)
        return qualified

    @staticmethod
    def _to_function_schema(server: str, tool: MCPToolDef) -> dict[str, Any]:
        """Convert an MCPToolDef to an OpenAI-compatible function schema."""
        return {
            "type": "function",
            "function": {
                "name": f"{server}_{tool.name}",
                "description": tool.description,
                "parameters": tool.input_schema.model_dump(),
            },
        }
