"""Base transport protocol for MCP clients."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable


@runtime_checkable
class Transport(Protocol):
    """Protocol for MCP client transports.

    A transport moves whole framed messages. ``receive()`` yields exactly one
    message per item, in the order the peer sent them, and ends when the peer
    closes the connection. ``send()`` may run while a ``receive()`` iteration
    is in progress, but concurrent ``send()`` calls must be serialized by the
    caller.

    Failures on either side are raised as
    :class:`~mcp_client.exceptions.TransportError`. ``aclose()`` releases the
    underlying resource, may be called more than once and ends any pending
    ``receive()`` iteration.

    Example:
        ```python
        class MyTransport:
            async def send(self, message: bytes) -> None: ...

            async def receive(self) -> AsyncIterator[bytes]:
                while frame := await self._read_frame():
                    yield frame

            async def aclose(self) -> None: ...
        ```
    """

    async def send(self, message: bytes) -> None: ...

    def receive(self) -> AsyncIterator[bytes]: ...

    async def aclose(self) -> None: ...
