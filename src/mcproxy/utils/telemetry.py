"""OpenTelemetry tracing helpers for mcproxy.

Sessions open one span per start-up (``mcp.session.start``) and one per
tool invocation (``mcp.tools.call``).  Without the OpenTelemetry SDK the
API hands out no-op tracers, so instrumentation costs nothing unless
:func:`configure_telemetry` has been called.

Usage::

    from mcproxy.utils.telemetry import ATTR_TOOL_NAME, span

    with span(__name__, "mcp.tools.call", {ATTR_TOOL_NAME: "echo"}) as current:
        current.set_attribute(ATTR_TOOL_IS_ERROR, False)
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace

# ---------------------------------------------------------------------------
# Attribute keys
# ---------------------------------------------------------------------------

ATTR_SERVER = "mcproxy.server"
ATTR_TRANSPORT = "mcproxy.transport"
ATTR_PROTOCOL_VERSION = "mcproxy.protocol_version"
ATTR_TOOL_COUNT = "mcproxy.tool.count"
ATTR_TOOL_NAME = "mcproxy.tool.name"
ATTR_TOOL_IS_ERROR = "mcproxy.tool.is_error"

_INSTRUMENTATION_NAME = "mcproxy"
_INSTALL_HINT = "Install it with: pip install mcproxy[otel]"


def get_tracer(name: str | None = None) -> trace.Tracer:
    """Return a tracer for *name*; a no-op one until the SDK is configured."""
    return trace.get_tracer(name or _INSTRUMENTATION_NAME)


@contextmanager
def span(
    tracer_name: str,
    span_name: str,
    attributes: Mapping[str, Any] | None = None,
) -> Iterator[trace.Span]:
    """Open *span_name* as the current span with *attributes* already set.

    Exceptions escaping the block are recorded on the span and re-raised.
    """
    with get_tracer(tracer_name).start_as_current_span(span_name) as current:
        for key, value in (attributes or {}).items():
            if value is not None:
                current.set_attribute(key, value)
        yield current


def configure_telemetry(
    *,
    service_name: str = "mcproxy",
    export_to_console: bool = True,
    otlp_endpoint: str | None = None,
) -> None:
    """Install a real tracer provider (requires ``mcproxy[otel]``).

    Parameters
    ----------
    service_name:
        The ``service.name`` resource attribute.
    export_to_console:
        Write finished spans as JSON to stdout.
    otlp_endpoint:
        Also send spans via OTLP/gRPC to this endpoint.

    Raises
    ------
    ImportError
        If ``opentelemetry-sdk`` (or, for *otlp_endpoint*, the OTLP
        exporter) is not installed.
    """
    try:
        from opentelemetry.sdk.resources import Resource  # pyright: ignore[reportMissingImports]
        from opentelemetry.sdk.trace import TracerProvider  # pyright: ignore[reportMissingImports]
    except ImportError as exc:
        msg = f"opentelemetry-sdk is required for configure_telemetry(). {_INSTALL_HINT}"
        raise ImportError(msg) from exc

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    for processor in _span_processors(export_to_console, otlp_endpoint):
        provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)


def _span_processors(export_to_console: bool, otlp_endpoint: str | None) -> list[Any]:
    from opentelemetry.sdk.trace.export import (  # pyright: ignore[reportMissingImports]
        BatchSpanProcessor,
        ConsoleSpanExporter,
        SimpleSpanProcessor,
    )

    processors: list[Any] = []
    if export_to_console:
        processors.append(SimpleSpanProcessor(ConsoleSpanExporter()))
    if otlp_endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # pyright: ignore[reportMissingImports]
                OTLPSpanExporter,
            )
        except ImportError as exc:
            msg = f"opentelemetry-exporter-otlp is required for OTLP export. {_INSTALL_HINT}"
            raise ImportError(msg) from exc
        processors.append(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
    return processors
