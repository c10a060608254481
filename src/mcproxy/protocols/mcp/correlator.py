"""RequestCorrelator — matches JSON-RPC responses to the requests that sent them."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from mcproxy.protocols.errors import ProtocolError

if TYPE_CHECKING:
    from mcproxy.protocols.mcp.models import JsonRpcResponse, RequestId

logger = logging.getLogger(__name__)


class RequestCorrelator:
    """Allocates request ids and holds one future per in-flight request.

    Ids start at 1 and only ever increase, so an id is never handed out
    twice for the lifetime of the correlator.  Each future is settled at
    most once: late or duplicate responses for an id that is no longer
    pending are ignored.
    """

    def __init__(self) -> None:
        self._last_id = 0
        self._pending: dict[RequestId, asyncio.Future[Any]] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def register(self) -> tuple[int, asyncio.Future[Any]]:
        """Allocate the next id and a pending slot for its response."""
        self._last_id += 1
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[self._last_id] = future
        return self._last_id, future

    def complete(self, response: JsonRpcResponse) -> bool:
        """Settle the slot matching ``response.id``.

        Returns ``False`` when no request with that id is pending.
        """
        if response.id is None:
            return False
        future = self._pending.pop(response.id, None)
        if future is None or future.done():
            logger.debug("Ignoring response for unknown request id %r", response.id)
            return False
        if response.error is not None:
            error = response.error
            future.set_exception(ProtocolError(error.code, error.message, error.data))
        else:
            future.set_result(response.result)
        return True

    def fail(self, request_id: RequestId, exc: BaseException) -> bool:
        """Reject a single pending request."""
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            return False
        future.set_exception(exc)
        return True

    def discard(self, request_id: RequestId) -> None:
        """Forget a pending request without settling it (caller gave up)."""
        future = self._pending.pop(request_id, None)
        if future is not None and not future.done():
            future.cancel()

    def reject_all(self, exc: BaseException) -> int:
        """Reject every pending request with *exc*; return how many were rejected."""
        pending, self._pending = self._pending, {}
        count = 0
        for future in pending.values():
            if not future.done():
                future.set_exception(exc)
                count += 1
        return count
