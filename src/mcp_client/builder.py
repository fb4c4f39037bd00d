"""Fluent construction of connected clients."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from typing_extensions import Self

from mcp_client.capabilities import DEFAULT_CLIENT_CAPABILITIES
from mcp_client.client import Client, NotificationHandlerFnT, RequestHandlerFnT
from mcp_client.settings import ClientSettings
from mcp_client.transport.base import Transport
from mcp_client.types import Implementation
from mcp_client.utilities.logging import configure_logging


class ClientBuilder:
    """Collects the configuration of a client, then connects it.

    The client is only handed out after the handshake succeeded:

        builder = ClientBuilder().with_client_info("my-app", "1.0").with_capability("sampling")
        async with builder.connect(transport) as client:
            await client.request("tools/list")
    """

    def __init__(self, settings: ClientSettings | None = None) -> None:
        self._settings = settings or ClientSettings()
        self._client_info: Implementation | None = None
        self._capabilities: dict[str, dict[str, Any]] = {
            name: dict(options) for name, options in DEFAULT_CLIENT_CAPABILITIES.items()
        }
        self._request_handlers: dict[str, RequestHandlerFnT] = {}
        self._notification_handlers: dict[str, NotificationHandlerFnT] = {}
        self._configure_logging = False

    def with_settings(self, settings: ClientSettings) -> Self:
        self._settings = settings
        return self

    def with_client_info(self, name: str, version: str, title: str | None = None) -> Self:
        self._client_info = Implementation(name=name, version=version, title=title)
        return self

    def with_protocol_version(self, version: str) -> Self:
        self._settings = self._settings.model_copy(update={"protocol_version": version})
        return self

    def with_capability(self, name: str, options: dict[str, Any] | None = None) -> Self:
        self._capabilities[name] = dict(options or {})
        return self

    def without_capability(self, name: str) -> Self:
        self._capabilities.pop(name, None)
        return self

    def with_capabilities(self, capabilities: dict[str, dict[str, Any]]) -> Self:
        """Replace the declared capability set."""
        self._capabilities = {name: dict(options) for name, options in capabilities.items()}
        return self

    def on_request(self, method: str, handler: RequestHandlerFnT) -> Self:
        self._request_handlers[method] = handler
        return self

    def on_notification(self, method: str, handler: NotificationHandlerFnT) -> Self:
        self._notification_handlers[method] = handler
        return self

    def with_logging(self) -> Self:
        """Configure logging at ``settings.log_level`` when the client is built."""
        self._configure_logging = True
        return self

    def build(self) -> Client:
        """Create the client without connecting it."""
        if self._configure_logging:
            configure_logging(self._settings.log_level)
        return Client(
            self._settings,
            client_info=self._client_info,
            capabilities=self._capabilities,
            request_handlers=self._request_handlers,
            notification_handlers=self._notification_handlers,
        )

    @asynccontextmanager
    async def connect(self, transport: Transport, *, timeout: float | None = None) -> AsyncIterator[Client]:
        """Build a client, perform the handshake over ``transport`` and yield it.

        The client is closed when the context exits.
        """
        async with self.build() as client:
            await client.connect(transport, timeout=timeout)
            yield client
