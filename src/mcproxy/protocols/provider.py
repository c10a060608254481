"""ToolProvider protocol — what the host needs from a connected tool server.

:class:`~mcproxy.protocols.mcp.client.MCPClient` satisfies this protocol so
the :class:`ToolDispatcher` can route calls without knowing the transport.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from mcproxy.protocols.mcp.models import CallToolResult, MCPToolDef


@runtime_checkable
class ToolProvider(Protocol):
    """Exposes discovered tools and executes them."""

    @property
    def name(self) -> str: ...

    @property
    def is_connected(self) -> bool: ...

    @property
    def tools(self) -> tuple[MCPToolDef, ...]:
        """Current tool snapshot; may be replaced wholesale between reads."""
        ...

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> CallToolResult:
        """Execute a tool; failures are returned as an error result, not raised."""
        ...
