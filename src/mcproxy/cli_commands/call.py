"""``mcproxy call`` — call one tool on a configured MCP server."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from mcproxy.cli_commands._output import console, load_workspace_config
from mcproxy.config import ConfigFileError

if TYPE_CHECKING:
    from mcproxy.protocols.mcp.models import CallToolResult


def parse_arguments(json_args: str | None, pairs: tuple[str, ...]) -> dict[str, Any]:
    """Merge ``--json`` and ``--arg key=value`` options into one argument map.

    Values given with ``--arg`` are decoded as JSON when possible, so
    ``--arg a=3`` passes the number 3 and ``--arg name=bob`` the string "bob".
    """
    arguments: dict[str, Any] = {}
    if json_args:
        try:
            decoded = json.loads(json_args)
        except json.JSONDecodeError as exc:
            raise click.BadParameter(f"invalid JSON: {exc}", param_hint="--json") from exc
        if not isinstance(decoded, dict):
            raise click.BadParameter("must be a JSON object", param_hint="--json")
        arguments.update(decoded)
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--arg")
        try:
            arguments[key] = json.loads(value)
        except json.JSONDecodeError:
            arguments[key] = value
    return arguments


@click.command("call")
@click.argument("server")
@click.argument("tool")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: <workspace>/.vscode/mcp.json).",
)
@click.option(
    "--workspace",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Workspace folder used for ${workspaceFolder} and the default config.",
)
@click.option("--json", "json_args", default=None, help="Tool arguments as a JSON object.")
@click.option("--arg", "pairs", multiple=True, help="Tool argument as key=value.")
@click.option("--timeout", type=float, default=None, help="Give up after this many seconds.")
def call(
    server: str,
    tool: str,
    config_path: Path | None,
    workspace: Path,
    json_args: str | None,
    pairs: tuple[str, ...],
    timeout: float | None,
) -> None:
    """Start SERVER from the config file and call TOOL on it."""
    from mcproxy.protocols.dispatcher import ToolDispatcher
    from mcproxy.protocols.errors import MCPError
    from mcproxy.protocols.mcp.placeholders import PlaceholderContext

    arguments = parse_arguments(json_args, pairs)
    try:
        config = load_workspace_config(config_path, workspace)
    except ConfigFileError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(1)
    if config is None or server not in config.servers:
        available = ", ".join(config.servers) if config is not None and config.servers else "none"
        console.print(f"[red]Unknown MCP server '{server}'.[/red] Available servers: {available}")
        sys.exit(1)

    async def _call() -> CallToolResult:
        dispatcher = ToolDispatcher(context=PlaceholderContext.from_environment(workspace.resolve()))
        try:
            await dispatcher.start_server(server, config.servers[server])
            return await dispatcher.call(server, tool, arguments, timeout=timeout)
        finally:
            await dispatcher.stop_all()

    try:
        result = asyncio.run(_call())
    except MCPError as exc:
        console.print(f"[red]Failed to start MCP server {server}:[/red] {exc}")
        sys.exit(1)

    for part in result.as_text_parts():
        click.echo(part)
    if result.is_error:
        sys.exit(1)
