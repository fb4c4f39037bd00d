from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from mcp_client.types import LATEST_PROTOCOL_VERSION


class ClientSettings(BaseSettings):
    """MCP client settings.

    All settings can be configured via environment variables with the prefix MCP_CLIENT_.
    For example, MCP_CLIENT_REQUEST_TIMEOUT=10 will set request_timeout=10.0.
    """

    model_config = SettingsConfigDict(
        env_prefix="MCP_CLIENT_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    protocol_version: str = LATEST_PROTOCOL_VERSION
    """Protocol version declared in the handshake; the server must answer with the same one."""

    client_name: str = "mcp-client"
    client_version: str = "0.1.0"

    handshake_timeout: float | None = Field(default=30.0, gt=0)
    """Seconds to wait for the initialize response. None waits forever."""

    request_timeout: float | None = Field(default=None, gt=0)
    """Default per-request timeout in seconds. None waits forever."""

    malformed_message_threshold: int = Field(default=3, ge=1)
    """Consecutive malformed inbound messages tolerated before the session is torn down."""

    enforce_capabilities: bool = False
    """Reject well-known methods (tools/*, resources/*, ...) whose capability was not negotiated."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
