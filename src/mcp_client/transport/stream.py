"""Newline-delimited JSON transport over any anyio byte stream.

Each message is one line of UTF-8 encoded JSON. This is the framing MCP uses
on stdio and works equally over TCP or Unix sockets.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

import anyio
import anyio.abc

from mcp_client.exceptions import TransportError

logger = logging.getLogger(__name__)

# Errors raised by anyio streams when the connection goes away.
STREAM_ERRORS = (anyio.BrokenResourceError, anyio.ClosedResourceError, OSError)


class ByteStreamTransport:
    """Frames messages as lines on top of an anyio ``ByteStream``."""

    def __init__(self, stream: anyio.abc.ByteStream, *, delimiter: bytes = b"\n") -> None:
        self._stream = stream
        self._delimiter = delimiter
        self._closed = False

    async def send(self, message: bytes) -> None:
        if self._closed:
            raise TransportError("Transport is closed")
        try:
            await self._stream.send(message + self._delimiter)
        except STREAM_ERRORS as exc:
            raise TransportError(f"Failed to send message: {exc}") from exc

    async def receive(self) -> AsyncIterator[bytes]:
        buffer = b""
        try:
            async for chunk in self._stream:
                lines = (buffer + chunk).split(self._delimiter)
                buffer = lines.pop()
                for line in lines:
                    line = line.strip()
                    if line:
                        yield line
        except anyio.ClosedResourceError:
            if not self._closed:
                raise TransportError("Stream closed unexpectedly") from None
            return
        except STREAM_ERRORS as exc:
            raise TransportError(f"Failed to receive message: {exc}") from exc

        if buffer.strip():
            logger.warning(f"Discarding {len(buffer)} bytes of incomplete message at end of stream")

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._stream.aclose()
        except STREAM_ERRORS:
            logger.debug("Error while closing byte stream", exc_info=True)


async def connect_tcp(host: str, port: int) -> ByteStreamTransport:
    """Open a TCP connection and wrap it in a line-delimited transport."""
    try:
        stream = await anyio.connect_tcp(host, port)
    except OSError as exc:
        raise TransportError(f"Could not connect to {host}:{port}: {exc}") from exc
    logger.info(f"Connected to {host}:{port}")
    return ByteStreamTransport(stream)
