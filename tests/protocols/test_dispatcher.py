"""Tests for ToolDispatcher routing and server lifecycle."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any
from unittest.mock import patch

import pytest

from mcproxy.config import MCPConfig
from mcproxy.protocols.dispatcher import NO_SERVERS_MESSAGE, ToolDispatcher
from mcproxy.protocols.errors import ConfigurationError, ServerNotFoundError, TransportError
from mcproxy.protocols.mcp.client import MCPClient
from mcproxy.protocols.mcp.models import MCPServerConfig, ServerExitedEvent, SessionEvent
from mcproxy.protocols.provider import ToolProvider
from tests.protocols.fakes import FailingTransport, FakeTransport, default_responder, result


def _tools_responder(*names: str):
    def responder(message: dict[str, Any]) -> dict[str, Any] | None:
        if message.get("method") == "tools/list":
            return result(
                message,
                {
                    "tools": [
                        {
                            "name": name,
                            "description": f"The {name} tool",
                            "inputSchema": {"type": "object", "properties": {"q": {"type": "string"}}},
                        }
                        for name in names
                    ]
                },
            )
        if message.get("method") == "tools/call":
            text = f"{message['params']['name']} called with {message['params']['arguments']}"
            return result(message, {"content": [{"type": "text", "text": text}]})
        return default_responder(message)

    return responder


@pytest.fixture
def transports() -> Iterator[dict[str, FakeTransport]]:
    """Fake transport per server name; servers without an entry get the default one."""
    by_name: dict[str, FakeTransport] = {}

    def create(self: MCPClient, config: MCPServerConfig) -> FakeTransport:
        return by_name.setdefault(self.name, FakeTransport())

    with patch.object(MCPClient, "_create_transport", create):
        yield by_name


def _config(*names: str) -> MCPConfig:
    return MCPConfig(servers={name: MCPServerConfig(command=f"{name}-server") for name in names})


class TestToolDispatcherLifecycle:
    async def test_start_server_registers_client(self, transports: dict[str, FakeTransport]) -> None:
        dispatcher = ToolDispatcher()
        client = await dispatcher.start_server("fs", MCPServerConfig(command="fs-server"))

        assert dispatcher.get("fs") is client
        assert isinstance(client, ToolProvider)
        assert set(dispatcher.servers) == {"fs"}

    async def test_failed_start_is_not_registered(self, transports: dict[str, FakeTransport]) -> None:
        transports["broken"] = FailingTransport()
        dispatcher = ToolDispatcher()

        with pytest.raises(TransportError):
            await dispatcher.start_server("broken", MCPServerConfig(command="broken"))
        assert dispatcher.servers == {}

    async def test_configuration_error_propagates(self) -> None:
        dispatcher = ToolDispatcher()
        with pytest.raises(ConfigurationError):
            await dispatcher.start_server("bad", MCPServerConfig(type="stdio"))
        assert dispatcher.servers == {}

    async def test_start_all_collects_errors(self, transports: dict[str, FakeTransport]) -> None:
        transports["broken"] = FailingTransport()
        dispatcher = ToolDispatcher()

        errors = await dispatcher.start_all(_config("fs", "broken", "git"))

        assert set(errors) == {"broken"}
        assert isinstance(errors["broken"], TransportError)
        assert set(dispatcher.servers) == {"fs", "git"}

    async def test_restart_replaces_previous_session(self, transports: dict[str, FakeTransport]) -> None:
        dispatcher = ToolDispatcher()
        first = await dispatcher.start_server("fs", MCPServerConfig(command="fs-server"))
        old_transport = transports.pop("fs")

        second = await dispatcher.start_server("fs", MCPServerConfig(command="fs-server"))

        assert dispatcher.get("fs") is second
        assert second is not first
        assert old_transport.closed

    async def test_stop_server(self, transports: dict[str, FakeTransport]) -> None:
        dispatcher = ToolDispatcher()
        await dispatcher.start_all(_config("fs", "git"))

        await dispatcher.stop_server("fs")
        await dispatcher.stop_server("unknown")

        assert set(dispatcher.servers) == {"git"}
        assert transports["fs"].closed

    async def test_stop_all(self, transports: dict[str, FakeTransport]) -> None:
        dispatcher = ToolDispatcher()
        await dispatcher.start_all(_config("fs", "git"))

        await dispatcher.stop_all()

        assert dispatcher.servers == {}
        assert all(t.closed for t in transports.values())
        assert dispatcher.all_tools() == []

    async def test_refresh_restarts_from_new_config(self, transports: dict[str, FakeTransport]) -> None:
        dispatcher = ToolDispatcher()
        await dispatcher.start_all(_config("fs"))
        old = transports.pop("fs")

        errors = await dispatcher.refresh(_config("git"))

        assert errors == {}
        assert old.closed
        assert set(dispatcher.servers) == {"git"}

    async def test_get_unknown_raises(self) -> None:
        with pytest.raises(ServerNotFoundError, match="nope"):
            ToolDispatcher().get("nope")

    async def test_exited_server_is_unregistered(self, transports: dict[str, FakeTransport]) -> None:
        events: list[SessionEvent] = []
        dispatcher = ToolDispatcher(on_event=events.append)
        await dispatcher.start_all(_config("fs", "git"))

        transports["fs"].drop("process exited with code 1", 1)

        assert set(dispatcher.servers) == {"git"}
        assert not any(t["function"]["name"].startswith("fs_") for t in dispatcher.all_tools())
        assert [type(e) for e in events] == [ServerExitedEvent]


class TestToolDispatcherRouting:
    async def test_all_tools_qualifies_names(self, transports: dict[str, FakeTransport]) -> None:
        transports["fs"] = FakeTransport(_tools_responder("read", "write"))
        transports["git"] = FakeTransport(_tools_responder("status"))
        dispatcher = ToolDispatcher()
        await dispatcher.start_all(_config("fs", "git"))

        tools = dispatcher.all_tools()

        assert {t["function"]["name"] for t in tools} == {"fs_read", "fs_write", "git_status"}
        schema = next(t for t in tools if t["function"]["name"] == "git_status")
        assert schema["type"] == "function"
        assert schema["function"]["description"] == "The status tool"
        assert schema["function"]["parameters"]["properties"] == {"q": {"type": "string"}}

    async def test_execute_routes_to_correct_server(self, transports: dict[str, FakeTransport]) -> None:
        transports["fs"] = FakeTransport(_tools_responder("read"))
        transports["git"] = FakeTransport(_tools_responder("status"))
        dispatcher = ToolDispatcher()
        await dispatcher.start_all(_config("fs", "git"))

        outcome = await dispatcher.execute("git_status", {"q": "x"})

        assert outcome.text == "status called with {'q': 'x'}"
        assert transports["git"].sent[-1]["params"]["name"] == "status"
        assert "tools/call" not in transports["fs"].sent_methods

    async def test_execute_unknown_tool_returns_error(self, transports: dict[str, FakeTransport]) -> None:
        dispatcher = ToolDispatcher()
        await dispatcher.start_all(_config("fs"))

        outcome = await dispatcher.execute("fs_missing", {})

        assert outcome.is_error
        assert outcome.text == "Error: Tool not found: fs_missing"

    async def test_colliding_names_keep_first_server(
        self, transports: dict[str, FakeTransport], caplog: pytest.LogCaptureFixture
    ) -> None:
        transports["a_b"] = FakeTransport(_tools_responder("c"))
        transports["a"] = FakeTransport(_tools_responder("b_c", "d"))
        config = _config("a_b", "a")
        dispatcher = ToolDispatcher()
        await dispatcher.start_server("a_b", config.servers["a_b"])
        await dispatcher.start_server("a", config.servers["a"])

        with caplog.at_level("WARNING", logger="mcproxy.protocols.dispatcher"):
            names = [t["function"]["name"] for t in dispatcher.all_tools()]
        outcome = await dispatcher.execute("a_b_c", {})

        assert names == ["a_b_c", "a_d"]
        assert "collides" in caplog.text
        assert outcome.text == "c called with {}"
        assert "tools/call" not in transports["a"].sent_methods

    async def test_call_routes_by_server(self, transports: dict[str, FakeTransport]) -> None:
        dispatcher = ToolDispatcher()
        await dispatcher.start_all(_config("mock"))

        outcome = await dispatcher.call("mock", "echo", {"message": "hi"})

        assert outcome.text == "Echo: hi"
        assert not outcome.is_error

    async def test_call_unknown_server(self, transports: dict[str, FakeTransport]) -> None:
        dispatcher = ToolDispatcher()
        await dispatcher.start_all(_config("fs", "git"))

        outcome = await dispatcher.call("nope", "echo", {})

        assert outcome.is_error
        assert outcome.text == "Error: MCP server 'nope' not found. Available servers: fs, git"

    async def test_call_unknown_server_when_empty(self) -> None:
        outcome = await ToolDispatcher().call("nope", "echo")
        assert outcome.text.endswith("Available servers: none")

    async def test_call_disconnected_server(self, transports: dict[str, FakeTransport]) -> None:
        dispatcher = ToolDispatcher()
        await dispatcher.start_all(_config("mock"))
        transports["mock"].closed = True

        outcome = await dispatcher.call("mock", "echo", {})

        assert outcome.is_error
        assert outcome.text == "Error: MCP server 'mock' is not connected"

    async def test_call_server_error_becomes_result(self, transports: dict[str, FakeTransport]) -> None:
        dispatcher = ToolDispatcher()
        await dispatcher.start_all(_config("mock"))

        outcome = await dispatcher.call("mock", "unknown_tool", {})

        assert outcome.is_error
        assert outcome.text.startswith("Error calling tool:")


class TestToolDispatcherDescribe:
    def test_no_servers(self) -> None:
        assert ToolDispatcher().describe() == NO_SERVERS_MESSAGE

    async def test_lists_servers_and_tools(self, transports: dict[str, FakeTransport]) -> None:
        dispatcher = ToolDispatcher()
        await dispatcher.start_all(_config("mock"))

        text = dispatcher.describe()

        assert "## Server: mock" in text
        assert "Status: Connected" in text
        assert "Transport: stdio" in text
        assert "- **echo**: Echoes arguments" in text
        assert "  Parameters: message" in text

    async def test_remote_transport_shows_url(self, transports: dict[str, FakeTransport]) -> None:
        dispatcher = ToolDispatcher()
        await dispatcher.start_server("remote", MCPServerConfig(type="http", url="https://mcp.example.com"))

        assert "Transport: http (https://mcp.example.com)" in dispatcher.describe()
