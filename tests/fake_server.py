"""A scripted MCP server for driving the client in tests."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import anyio

from mcp_client.client import Client
from mcp_client.settings import ClientSettings
from mcp_client.transport.memory import MemoryTransport, create_memory_transport_pair
from mcp_client.types import LATEST_PROTOCOL_VERSION

DEFAULT_SERVER_CAPABILITIES: dict[str, Any] = {
    "tools": {"listChanged": True},
    "resources": {},
    "logging": {},
}


class FakeServer:
    """The server end of a memory transport, driven step by step from a test."""

    def __init__(self, transport: MemoryTransport) -> None:
        self.transport = transport
        self._messages = transport.receive()
        self.initialize_params: dict[str, Any] | None = None

    async def receive(self, timeout: float = 2) -> dict[str, Any]:
        with anyio.fail_after(timeout):
            raw = await self._messages.__anext__()
        return json.loads(raw)

    async def receive_request(self, method: str | None = None) -> dict[str, Any]:
        """Receive the next message, skipping notifications."""
        while True:
            message = await self.receive()
            if "id" in message and "method" in message and (method is None or message["method"] == method):
                return message

    async def send(self, message: dict[str, Any]) -> None:
        await self.transport.send(json.dumps({"jsonrpc": "2.0", **message}).encode())

    async def send_raw(self, data: bytes) -> None:
        await self.transport.send(data)

    async def respond(self, request: dict[str, Any], result: Any) -> None:
        await self.send({"id": request["id"], "result": result})

    async def respond_error(self, request: dict[str, Any], code: int, message: str, data: Any = None) -> None:
        error: dict[str, Any] = {"code": code, "message": message}
        if data is not None:
            error["data"] = data
        await self.send({"id": request["id"], "error": error})

    async def handshake(
        self,
        protocol_version: str = LATEST_PROTOCOL_VERSION,
        capabilities: dict[str, Any] | None = None,
        *,
        expect_initialized: bool = True,
        **extra: Any,
    ) -> None:
        request = await self.receive()
        assert request["method"] == "initialize"
        self.initialize_params = request["params"]
        await self.respond(
            request,
            {
                "protocolVersion": protocol_version,
                "capabilities": DEFAULT_SERVER_CAPABILITIES if capabilities is None else capabilities,
                "serverInfo": {"name": "fake-server", "version": "1.0.0"},
                **extra,
            },
        )
        if expect_initialized:
            initialized = await self.receive()
            assert initialized == {"jsonrpc": "2.0", "method": "notifications/initialized"}

    async def aclose(self) -> None:
        await self.transport.aclose()


@asynccontextmanager
async def connected_client(
    settings: ClientSettings | None = None,
    server_capabilities: dict[str, Any] | None = None,
    **client_kwargs: Any,
) -> AsyncIterator[tuple[Client, FakeServer]]:
    """Yield a ready client and the fake server it is connected to."""
    client_transport, server_transport = create_memory_transport_pair()
    server = FakeServer(server_transport)
    async with Client(settings, **client_kwargs) as client:
        async with anyio.create_task_group() as tg:
            tg.start_soon(lambda: server.handshake(capabilities=server_capabilities))
            await client.connect(client_transport)
        yield client, server
