"""Tests for OpenTelemetry tracing helpers."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from opentelemetry import trace

from mcproxy.utils.telemetry import (
    ATTR_SERVER,
    ATTR_TOOL_NAME,
    _INSTRUMENTATION_NAME,
    configure_telemetry,
    get_tracer,
    span,
)


class TestGetTracer:
    def test_returns_tracer(self) -> None:
        assert isinstance(get_tracer("test.module"), trace.Tracer)

    def test_default_name(self) -> None:
        assert isinstance(get_tracer(), trace.Tracer)


class TestSpan:
    def test_noop_span_accepts_attributes(self) -> None:
        """Without the SDK configured, spans are no-ops."""
        with span("test.noop", "mcp.tools.call", {ATTR_SERVER: "fs", ATTR_TOOL_NAME: "read"}) as current:
            current.set_attribute("extra", 1)

    def test_none_attributes_are_skipped(self) -> None:
        tracer = MagicMock()
        current = tracer.start_as_current_span.return_value.__enter__.return_value
        with (
            patch("mcproxy.utils.telemetry.get_tracer", return_value=tracer),
            span("test", "mcp.session.start", {ATTR_SERVER: "fs", "unset": None}),
        ):
            pass
        tracer.start_as_current_span.assert_called_once_with("mcp.session.start")
        current.set_attribute.assert_called_once_with(ATTR_SERVER, "fs")

    def test_exception_propagates(self) -> None:
        with pytest.raises(RuntimeError, match="boom"), span("test.noop", "failing"):
            raise RuntimeError("boom")


class TestConfigureTelemetry:
    def test_raises_without_sdk(self) -> None:
        """configure_telemetry requires opentelemetry-sdk."""
        with (
            patch.dict("sys.modules", {"opentelemetry.sdk.resources": None}),
            pytest.raises(ImportError, match="opentelemetry-sdk"),
        ):
            configure_telemetry()

    def test_otlp_raises_without_exporter(self) -> None:
        """OTLP export requires opentelemetry-exporter-otlp."""
        pytest.importorskip("opentelemetry.sdk.trace")

        with (
            patch.dict("sys.modules", {"opentelemetry.exporter.otlp.proto.grpc.trace_exporter": None}),
            pytest.raises(ImportError, match="opentelemetry-exporter-otlp"),
        ):
            configure_telemetry(export_to_console=False, otlp_endpoint="http://localhost:4317")

    def test_configures_console_exporter(self) -> None:
        sdk_trace = pytest.importorskip("opentelemetry.sdk.trace")

        with patch.object(trace, "set_tracer_provider") as set_provider:
            configure_telemetry(service_name="test-svc", export_to_console=True)

        provider = set_provider.call_args.args[0]
        assert isinstance(provider, sdk_trace.TracerProvider)
        assert provider.resource.attributes["service.name"] == "test-svc"


def test_instrumentation_name() -> None:
    assert _INSTRUMENTATION_NAME == "mcproxy"
