"""Shared CLI output formatters and logging setup."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from mcproxy.config import MCPConfig, find_config, load_config

if TYPE_CHECKING:
    from mcproxy.protocols.dispatcher import ToolDispatcher
    from mcproxy.protocols.errors import MCPError
    from mcproxy.protocols.mcp.models import MCPToolDef

console = Console()
err_console = Console(stderr=True)

_LEVELS = {0: logging.WARNING, 1: logging.INFO}


def setup_logging(verbosity: int = 0) -> None:
    """Send ``mcproxy`` log records to stderr through rich."""
    logger = logging.getLogger("mcproxy")
    logger.setLevel(_LEVELS.get(verbosity, logging.DEBUG))
    logger.handlers.clear()
    handler = RichHandler(console=err_console, show_time=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.propagate = False


def load_workspace_config(config_path: Path | None, workspace: Path) -> MCPConfig | None:
    """Load *config_path*, or the workspace default when not given.

    Returns ``None`` when no path was given and the default file is missing.
    """
    if config_path is not None:
        return load_config(config_path)
    found = find_config(workspace)
    if found is None:
        return None
    return load_config(found)


def print_tools_table(tools: Sequence[MCPToolDef], title: str = "Discovered Tools") -> None:
    """Pretty-print tool descriptors as a table."""
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Parameters")

    for tool in tools:
        params = tool.input_schema.properties
        required = set(tool.input_schema.required)
        table.add_row(
            tool.name,
            _truncate(tool.description),
            ", ".join(f"{p}*" if p in required else p for p in params) or "-",
        )

    console.print(table)


def print_servers_table(dispatcher: ToolDispatcher, errors: Mapping[str, MCPError]) -> None:
    """Pretty-print running servers and the ones that failed to start."""
    table = Table(title="MCP Servers")
    table.add_column("Server", style="cyan")
    table.add_column("Status")
    table.add_column("Transport")
    table.add_column("Tools", justify="right")

    for name, client in dispatcher.servers.items():
        server_info = client.server_info
        status = "[green]connected[/green]" if client.is_connected else "[yellow]disconnected[/yellow]"
        if server_info is not None:
            identity = server_info.server_info
            status += f" ({' '.join(filter(None, [identity.name, identity.version]))})"
        table.add_row(name, status, client.transport_kind, str(len(client.tools)))
    for name, exc in errors.items():
        table.add_row(name, f"[red]failed[/red]: {_truncate(str(exc))}", "-", "-")

    console.print(table)


def _truncate(text: str, max_len: int = 80) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
