"""mcproxy CLI entrypoint."""

from __future__ import annotations

import click

from mcproxy import __version__
from mcproxy.cli_commands._output import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="mcproxy")
@click.option("-v", "--verbose", count=True, help="Log more (-v info, -vv wire traffic).")
@click.option(
    "--otel-endpoint",
    default=None,
    help="Export OpenTelemetry spans to this OTLP/gRPC endpoint.",
)
def main(verbose: int, otel_endpoint: str | None) -> None:
    """mcproxy — connect to MCP servers and call their tools."""
    setup_logging(verbose)
    if otel_endpoint:
        from mcproxy.utils.telemetry import configure_telemetry

        configure_telemetry(export_to_console=False, otlp_endpoint=otel_endpoint)


# Register subcommands
from mcproxy.cli_commands import register_commands  # noqa: E402

register_commands(main)

if __name__ == "__main__":
    main()
