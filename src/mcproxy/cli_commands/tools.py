"""``mcproxy tools`` — discover and inspect tools from a single MCP server."""

from __future__ import annotations

import asyncio

import click

from mcproxy.cli_commands._output import console, print_tools_table


@click.group()
def tools() -> None:
    """Discover and inspect tools."""


@tools.command("discover")
@click.argument("server")
@click.option(
    "--transport",
    type=click.Choice(["stdio", "websocket", "http"]),
    default="stdio",
    help="MCP server transport type.",
)
@click.option("--arg", "args", multiple=True, help="Extra argument for a stdio command.")
@click.option("--header", "headers", multiple=True, help="Header as 'Name: value' (websocket/http).")
def discover(server: str, transport: str, args: tuple[str, ...], headers: tuple[str, ...]) -> None:
    """Discover tools from an MCP server.

    SERVER is the command (for stdio) or URL (for websocket/http) of the MCP server.
    """
    from mcproxy.protocols.mcp.client import MCPClient
    from mcproxy.protocols.mcp.models import MCPServerConfig, MCPToolDef

    if transport == "stdio":
        config = MCPServerConfig(type="stdio", command=server, args=list(args))
    else:
        header_map: dict[str, str] = {}
        for header in headers:
            name, sep, value = header.partition(":")
            if not sep:
                raise click.BadParameter(f"expected 'Name: value', got {header!r}", param_hint="--header")
            header_map[name.strip()] = value.strip()
        config = MCPServerConfig(type=transport, url=server, headers=header_map)

    async def _discover() -> tuple[MCPToolDef, ...]:
        async with MCPClient("cli-discover", config) as client:
            return client.tools

    try:
        discovered = asyncio.run(_discover())
    except Exception as exc:
        console.print(f"[red]Discovery error:[/red] {exc}")
        return

    if not discovered:
        console.print("[yellow]No tools discovered.[/yellow]")
        return

    print_tools_table(discovered)
