"""Envelope and handshake types for the MCP client.

Only the JSON-RPC shapes needed for correlation and negotiation are modelled
here. Payloads of domain methods (tools, resources, prompts) travel as plain
dicts.
"""

from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field

JSONRPC_VERSION: Final[str] = "2.0"
LATEST_PROTOCOL_VERSION: Final[str] = "2025-06-18"

# Standard JSON-RPC error codes
PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603

# SDK error codes
CONNECTION_CLOSED: Final[int] = -32000
REQUEST_TIMEOUT: Final[int] = -32001

RequestId = Annotated[int, Field(strict=True)] | str
ProgressToken = str | int

INITIALIZE_METHOD: Final[str] = "initialize"
INITIALIZED_NOTIFICATION: Final[str] = "notifications/initialized"
CANCELLED_NOTIFICATION: Final[str] = "notifications/cancelled"
PROGRESS_NOTIFICATION: Final[str] = "notifications/progress"
PING_METHOD: Final[str] = "ping"


class JSONRPCBase(BaseModel):
    """Base class for all JSON-RPC messages."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


class JSONRPCRequest(JSONRPCBase):
    """A request that expects a response."""

    id: RequestId
    method: str
    params: dict[str, Any] | None = None


class JSONRPCNotification(JSONRPCBase):
    """A notification which does not expect a response."""

    method: str
    params: dict[str, Any] | None = None


class ErrorData(BaseModel):
    """Error information in a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: Any | None = None


class JSONRPCResultResponse(JSONRPCBase):
    """A successful (non-error) response to a request."""

    id: RequestId
    result: Any


class JSONRPCErrorResponse(JSONRPCBase):
    """A response to a request that indicates an error occurred."""

    id: RequestId | None = None
    error: ErrorData


JSONRPCResponse = JSONRPCResultResponse | JSONRPCErrorResponse
JSONRPCMessage = JSONRPCRequest | JSONRPCNotification | JSONRPCResponse

# Everything the dispatch loop can receive from the peer.
InboundMessage = JSONRPCMessage


class Implementation(BaseModel):
    """Name and version of an MCP implementation."""

    model_config = ConfigDict(extra="allow")

    name: str
    version: str
    title: str | None = None


class InitializeRequestParams(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    protocol_version: str = Field(alias="protocolVersion")
    capabilities: dict[str, Any]
    client_info: Implementation = Field(alias="clientInfo")


class InitializeResult(BaseModel):
    """The server's answer to the initialize request."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    protocol_version: str = Field(alias="protocolVersion")
    capabilities: dict[str, Any] = Field(default_factory=dict)
    server_info: Implementation | None = Field(default=None, alias="serverInfo")
    instructions: str | None = None
    required_capabilities: list[str] = Field(default_factory=list, alias="requiredCapabilities")


class CancelledNotificationParams(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    request_id: RequestId = Field(alias="requestId")
    reason: str | None = None


class ProgressNotificationParams(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    progress_token: ProgressToken = Field(alias="progressToken")
    progress: float
    total: float | None = None
    message: str | None = None
