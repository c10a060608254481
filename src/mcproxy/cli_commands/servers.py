"""``mcproxy servers`` — start the configured servers and report on them."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click
from rich.markdown import Markdown

from mcproxy.cli_commands._output import console, load_workspace_config, print_servers_table
from mcproxy.config import ConfigFileError


@click.group()
def servers() -> None:
    """Inspect configured MCP servers."""


@servers.command("list")
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
@click.option("--markdown", is_flag=True, help="Print a Markdown overview with tool details.")
def list_servers(config_path: Path | None, workspace: Path, markdown: bool) -> None:
    """Start every configured server, list status and tools, then stop them."""
    from mcproxy.protocols.dispatcher import ToolDispatcher
    from mcproxy.protocols.mcp.placeholders import PlaceholderContext

    try:
        config = load_workspace_config(config_path, workspace)
    except ConfigFileError as exc:
        console.print(f"[red]Config error:[/red] {exc}")
        sys.exit(1)
    if config is None or not config.servers:
        console.print("[yellow]No MCP servers configured.[/yellow]")
        return

    async def _list() -> None:
        dispatcher = ToolDispatcher(context=PlaceholderContext.from_environment(workspace.resolve()))
        try:
            errors = await dispatcher.start_all(config)
            if markdown:
                console.print(Markdown(dispatcher.describe()))
                for name, exc in errors.items():
                    console.print(f"[red]Failed to start MCP server {name}:[/red] {exc}")
            else:
                print_servers_table(dispatcher, errors)
        finally:
            await dispatcher.stop_all()

    asyncio.run(_list())
