"""CLI subcommand registration."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import click


def register_commands(cli: click.Group) -> None:
    """Register all subcommands on the CLI group."""
    from mcproxy.cli_commands.call import call
    from mcproxy.cli_commands.servers import servers
    from mcproxy.cli_commands.tools import tools

    cli.add_command(servers)
    cli.add_command(tools)
    cli.add_command(call)
