"""MCP transports — stdio, websocket and HTTP communication layers.

Each transport satisfies the :class:`MCPTransport` protocol, providing
``open``, ``send`` and ``close`` plus an ``is_open`` flag.  The stream
transports (stdio, websocket) push incoming messages to the handlers given
to ``open``; the HTTP transport has no incoming stream and instead returns
the reply body from ``send``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import shlex
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from mcproxy.protocols.errors import MalformedResponseError, NotConnectedError, TransportError

logger = logging.getLogger(__name__)


def _ignore_diagnostic(line: str) -> None:
    del line


@dataclass
class TransportHandlers:
    """Callbacks a stream transport reports to while it is open."""

    on_message: Callable[[dict[str, Any]], None]
    on_close: Callable[[str, int | None], None]
    on_diagnostic: Callable[[str], None] = _ignore_diagnostic


@runtime_checkable
class MCPTransport(Protocol):
    """Abstract transport for MCP JSON-RPC communication."""

    @property
    def is_open(self) -> bool: ...
    async def open(self, handlers: TransportHandlers) -> None: ...
    async def send(self, message: dict[str, Any]) -> dict[str, Any] | None: ...
    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------


class FrameBuffer:
    """Splits a byte stream into newline-terminated frames.

    Bytes after the last newline are kept and prefixed to the next chunk.
    """

    def __init__(self) -> None:
        self._buffer = b""

    @property
    def pending(self) -> bytes:
        return self._buffer

    def feed(self, chunk: bytes) -> list[bytes]:
        """Add *chunk* and return every frame it completed."""
        *frames, self._buffer = (self._buffer + chunk).split(b"\n")
        return frames


def decode_frame(frame: bytes | str) -> dict[str, Any] | None:
    """Parse one frame as a JSON object.

    Blank frames return ``None`` silently; frames that are not a JSON object
    are logged and return ``None``.
    """
    text = frame.decode("utf-8", errors="replace") if isinstance(frame, bytes) else frame
    text = text.strip()
    if not text:
        return None
    try:
        message = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Failed to parse message: %s", text)
        return None
    if not isinstance(message, dict):
        logger.warning("Ignoring non-object message: %s", text)
        return None
    return message  # type: ignore[no-any-return]


# ---------------------------------------------------------------------------
# Stdio
# ---------------------------------------------------------------------------


class StdioTransport:
    """Communicates with an MCP server via subprocess stdin/stdout.

    Sends and receives newline-delimited JSON.  Lines the child writes to
    stderr are passed to ``on_diagnostic``; the child exiting on its own is
    reported through ``on_close`` with its exit code.
    """

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        *,
        read_size: int = 65536,
        kill_timeout: float = 5.0,
    ) -> None:
        self._command = command
        self._args = list(args or [])
        self._env = env
        self._read_size = read_size
        self._kill_timeout = kill_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._handlers: TransportHandlers | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._send_lock = asyncio.Lock()
        self._closing = False
        self._exited = False

    @property
    def is_open(self) -> bool:
        return self._process is not None and not self._closing and not self._exited

    @property
    def argv(self) -> list[str]:
        return [*shlex.split(self._command), *self._args]

    async def open(self, handlers: TransportHandlers) -> None:
        """Launch the subprocess and start reading its output."""
        if self._process is not None:
            if not self._exited:
                return
            await self.close()
        argv = self.argv
        if not argv:
            msg = "Empty command"
            raise TransportError(msg)
        env = {**os.environ, **self._env} if self._env else None
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            msg = f"Failed to start {argv[0]}: {exc}"
            raise TransportError(msg) from exc
        self._process = process
        self._handlers = handlers
        self._closing = False
        self._exited = False
        self._tasks = [
            asyncio.create_task(self._read_stdout(process, handlers)),
            asyncio.create_task(self._read_stderr(process, handlers)),
        ]

    async def send(self, message: dict[str, Any]) -> None:
        """Write a JSON line to stdin."""
        process = self._process
        if process is None or not self.is_open or process.stdin is None:
            raise NotConnectedError
        line = json.dumps(message) + "\n"
        async with self._send_lock:
            try:
                process.stdin.write(line.encode())
                await process.stdin.drain()
            except OSError as exc:
                msg = f"Failed to write to server: {exc}"
                raise TransportError(msg) from exc

    async def close(self) -> None:
        """Terminate the subprocess."""
        process = self._process
        if process is None:
            return
        self._closing = True
        self._process = None
        if process.stdin is not None:
            process.stdin.close()
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), self._kill_timeout)
            except TimeoutError:
                logger.warning("Server did not exit after terminate; killing it")
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
        tasks, self._tasks = self._tasks, []
        tasks = [task for task in tasks if task is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _read_stdout(
        self,
        process: asyncio.subprocess.Process,
        handlers: TransportHandlers,
    ) -> None:
        assert process.stdout is not None
        frames = FrameBuffer()
        while chunk := await process.stdout.read(self._read_size):
            for frame in frames.feed(chunk):
                message = decode_frame(frame)
                if message is not None:
                    handlers.on_message(message)
        if self._closing:
            return
        exit_code = await process.wait()
        if self._closing:
            return
        # Keep the process so close() can still release its pipes and readers.
        self._exited = True
        handlers.on_close(f"process exited with code {exit_code}", exit_code)

    async def _read_stderr(
        self,
        process: asyncio.subprocess.Process,
        handlers: TransportHandlers,
    ) -> None:
        assert process.stderr is not None
        while raw := await process.stderr.readline():
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                handlers.on_diagnostic(line)


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------


class WebSocketTransport:
    """Communicates with an MCP server over a persistent WebSocket.

    ``open`` returns only after the connection handshake has completed, so
    nothing is ever sent on a socket that is not yet open.
    """

    def __init__(self, url: str, headers: dict[str, str] | None = None) -> None:
        self._url = url
        self._headers = dict(headers or {})
        self._ws: Any = None  # websockets.asyncio.client.ClientConnection
        self._reader: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closing

    async def open(self, handlers: TransportHandlers) -> None:
        """Open the WebSocket connection."""
        if self._ws is not None:
            return
        try:
            ws = await websockets.connect(self._url, additional_headers=self._headers or None)
        except (OSError, InvalidHandshake, InvalidURI) as exc:
            msg = f"Failed to connect to {self._url}: {exc}"
            raise TransportError(msg) from exc
        self._ws = ws
        self._closing = False
        self._reader = asyncio.create_task(self._read_messages(ws, handlers))

    async def send(self, message: dict[str, Any]) -> None:
        """Send a JSON message over the WebSocket."""
        ws = self._ws
        if ws is None or self._closing:
            raise NotConnectedError
        async with self._send_lock:
            try:
                await ws.send(json.dumps(message) + "\n")
            except ConnectionClosed as exc:
                msg = f"WebSocket closed while sending: {exc}"
                raise TransportError(msg) from exc

    async def close(self) -> None:
        """Close the WebSocket connection."""
        ws = self._ws
        if ws is None:
            return
        self._closing = True
        self._ws = None
        await ws.close()
        reader, self._reader = self._reader, None
        if reader is not None:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)

    async def _read_messages(self, ws: Any, handlers: TransportHandlers) -> None:
        reason = "connection closed"
        try:
            async for raw in ws:
                text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
                for part in text.split("\n"):
                    message = decode_frame(part)
                    if message is not None:
                        handlers.on_message(message)
        except ConnectionClosed as exc:
            reason = f"connection closed: {exc}"
        if self._closing:
            return
        self._ws = None
        handlers.on_close(reason, None)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


class HttpTransport:
    """Communicates with an MCP server by POSTing each message separately.

    There is no persistent connection: ``open`` only prepares the HTTP
    client, and every request's reply comes back as the return value of
    ``send``.  Notifications return ``None``.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._http_transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def open(self, handlers: TransportHandlers) -> None:
        """Create the HTTP client; no request is made."""
        del handlers
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            headers={"Accept": "application/json, text/event-stream", **self._headers},
            timeout=self._timeout,
            transport=self._http_transport,
        )

    async def send(self, message: dict[str, Any]) -> dict[str, Any] | None:
        """POST one message; return the decoded reply for requests."""
        client = self._client
        if client is None:
            raise NotConnectedError
        try:
            response = await client.post(self._url, json=message)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            msg = f"HTTP request to {self._url} failed: {exc}"
            raise TransportError(msg) from exc

        if "id" not in message:
            return None
        if response.headers.get("content-type", "").startswith("text/event-stream"):
            return self._parse_event_stream(response.text)
        try:
            body = response.json()
        except json.JSONDecodeError as exc:
            msg = f"Invalid JSON from {self._url}: {exc}"
            raise MalformedResponseError(msg) from exc
        if not isinstance(body, dict):
            msg = f"Expected a JSON object from {self._url}"
            raise MalformedResponseError(msg)
        return body  # type: ignore[no-any-return]

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _parse_event_stream(self, text: str) -> dict[str, Any]:
        """Return the first JSON-RPC response carried in an SSE body."""
        for event in text.replace("\r\n", "\n").split("\n\n"):
            data = "\n".join(
                line[5:].lstrip() for line in event.split("\n") if line.startswith("data:")
            )
            message = decode_frame(data)
            if message is not None and ("result" in message or "error" in message):
                return message
        msg = f"No JSON-RPC response in event stream from {self._url}"
        raise MalformedResponseError(msg)
