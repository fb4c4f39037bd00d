"""Correlation of outbound requests with their responses."""

from __future__ import annotations

import logging
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from mcp_client.exceptions import (
    ClientError,
    ConnectionClosed,
    DuplicateIdError,
    RequestCancelled,
    RequestError,
)
from mcp_client.types import JSONRPCErrorResponse, JSONRPCResponse, JSONRPCResultResponse, RequestId

logger = logging.getLogger(__name__)

Outcome = JSONRPCResultResponse | JSONRPCErrorResponse | ClientError


def unwrap_outcome(outcome: Outcome) -> Any:
    """Return the result payload of an outcome.

    Raises:
        RequestError: if the peer answered with an error
        ClientError: for local outcomes (cancelled, timeout, closed)
    """
    if isinstance(outcome, ClientError):
        raise outcome
    if isinstance(outcome, JSONRPCErrorResponse):
        raise RequestError(outcome.error)
    return outcome.result


class PendingRequest:
    """A one-shot slot holding the outcome of a single request.

    The slot is fulfilled exactly once, either with the peer's response or
    with a local failure (cancelled, timed out, connection closed).
    """

    def __init__(self, request_id: RequestId):
        self.request_id = request_id
        self._send_stream: MemoryObjectSendStream[Outcome]
        self._receive_stream: MemoryObjectReceiveStream[Outcome]
        self._send_stream, self._receive_stream = anyio.create_memory_object_stream[Outcome](1)
        self._fulfilled = False

    @property
    def fulfilled(self) -> bool:
        return self._fulfilled

    def fulfil(self, outcome: Outcome) -> None:
        if self._fulfilled:
            raise RuntimeError(f"Pending request {self.request_id!r} fulfilled twice")
        self._fulfilled = True
        with self._send_stream:
            try:
                self._send_stream.send_nowait(outcome)
            except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                logger.debug(f"Nobody is waiting for request {self.request_id!r} anymore")

    async def wait(self) -> Outcome:
        """Suspend until the slot is fulfilled and return the outcome.

        May be called again after an interrupted wait.
        """
        try:
            return await self._receive_stream.receive()
        except anyio.EndOfStream:
            raise RuntimeError(f"Pending request {self.request_id!r} was closed without an outcome") from None

    def close(self) -> None:
        self._send_stream.close()
        self._receive_stream.close()

    async def result(self) -> Any:
        """Wait for the outcome and unwrap it."""
        return unwrap_outcome(await self.wait())


class CorrelationTable:
    """Maps request ids to their pending slots.

    None of the mutating methods await, so each one runs to completion before
    any other task on the event loop can touch the table.
    """

    def __init__(self) -> None:
        self._pending: dict[RequestId, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def pending_ids(self) -> list[RequestId]:
        return list(self._pending)

    def register(self, request_id: RequestId) -> PendingRequest:
        if request_id in self._pending:
            raise DuplicateIdError(request_id)
        pending = PendingRequest(request_id)
        self._pending[request_id] = pending
        return pending

    def _lookup(self, request_id: RequestId | None) -> RequestId | None:
        if request_id in self._pending:
            return request_id
        # Some peers echo integer ids back as strings.
        if isinstance(request_id, str):
            try:
                normalized = int(request_id)
            except ValueError:
                return None
            if normalized in self._pending:
                return normalized
        return None

    def resolve(self, request_id: RequestId | None, response: JSONRPCResponse) -> bool:
        """Fulfil the slot for ``request_id`` with the peer's response.

        Returns False, after logging, when no such request is pending: it may
        already have been cancelled or timed out.
        """
        key = self._lookup(request_id)
        if key is None:
            logger.warning(f"Received response with an unknown request ID: {request_id!r}")
            return False
        self._pending.pop(key).fulfil(response)
        return True

    def cancel(self, request_id: RequestId, outcome: ClientError | None = None) -> bool:
        """Remove a pending request and fulfil it with a local outcome.

        Idempotent: returns False when the request is no longer pending.
        """
        key = self._lookup(request_id)
        if key is None:
            return False
        pending = self._pending.pop(key)
        pending.fulfil(outcome if outcome is not None else RequestCancelled(request_id))
        return True

    def discard(self, request_id: RequestId) -> None:
        """Forget a request whose envelope never left, without fulfilling it."""
        pending = self._pending.pop(request_id, None)
        if pending is not None:
            pending.close()

    def drain_all(self, reason: BaseException | None = None) -> int:
        """Fail every pending request with ConnectionClosed.

        Returns the number of requests drained.
        """
        pending, self._pending = self._pending, {}
        for request_id, slot in pending.items():
            error = ConnectionClosed(f"Connection closed while request {request_id!r} was pending")
            error.__cause__ = reason
            slot.fulfil(error)
        if pending:
            logger.debug(f"Drained {len(pending)} pending requests")
        return len(pending)
