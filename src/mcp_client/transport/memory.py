"""In-memory transport for connecting a client to a peer in the same process."""

from __future__ import annotations

import math
from collections.abc import AsyncIterator
from types import TracebackType

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from typing_extensions import Self

from mcp_client.exceptions import TransportError


class MemoryTransport:
    """One end of an in-process message channel.

    Use :func:`create_memory_transport_pair` to get two connected ends.
    """

    def __init__(
        self,
        send_stream: MemoryObjectSendStream[bytes],
        receive_stream: MemoryObjectReceiveStream[bytes],
    ) -> None:
        self._send_stream = send_stream
        self._receive_stream = receive_stream
        self._receiving = False

    async def send(self, message: bytes) -> None:
        try:
            await self._send_stream.send(message)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError) as exc:
            raise TransportError("Memory transport is closed") from exc

    async def receive(self) -> AsyncIterator[bytes]:
        if self._receiving:
            raise TransportError("receive() is already being consumed")
        self._receiving = True
        try:
            async for message in self._receive_stream:
                yield message
        except anyio.ClosedResourceError:
            # Closed locally while iterating; treat as end of stream.
            return

    async def aclose(self) -> None:
        await self._send_stream.aclose()
        await self._receive_stream.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()


def create_memory_transport_pair(max_buffer_size: float = math.inf) -> tuple[MemoryTransport, MemoryTransport]:
    """Create two connected in-memory transports.

    Messages sent on one end are received on the other. Closing either end
    ends the other end's receive sequence.

    Returns:
        A tuple of (client_transport, server_transport)
    """
    server_to_client_send, server_to_client_receive = anyio.create_memory_object_stream[bytes](max_buffer_size)
    client_to_server_send, client_to_server_receive = anyio.create_memory_object_stream[bytes](max_buffer_size)

    client = MemoryTransport(client_to_server_send, server_to_client_receive)
    server = MemoryTransport(server_to_client_send, client_to_server_receive)
    return client, server
