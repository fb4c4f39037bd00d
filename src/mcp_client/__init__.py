from mcp_client.builder import ClientBuilder
from mcp_client.capabilities import CapabilitySet, NegotiatedCapabilities
from mcp_client.client import Client, SessionState
from mcp_client.context import RequestContext
from mcp_client.exceptions import (
    AlreadyConnectedError,
    CapabilityNotNegotiatedError,
    ClientError,
    ConnectionClosed,
    DuplicateIdError,
    IncompatibleVersionError,
    MalformedMessageError,
    MissingCapabilityError,
    NegotiationError,
    NotReadyError,
    ProtocolCorruptionError,
    ProtocolViolation,
    RequestCancelled,
    RequestError,
    RequestTimeout,
    StateError,
    TransportError,
)
from mcp_client.settings import ClientSettings
from mcp_client.transport import (
    ByteStreamTransport,
    MemoryTransport,
    StdioServerParameters,
    Transport,
    connect_tcp,
    create_memory_transport_pair,
    stdio_transport,
)
from mcp_client.types import LATEST_PROTOCOL_VERSION, ErrorData, Implementation, InitializeResult

__all__ = [
    "LATEST_PROTOCOL_VERSION",
    "AlreadyConnectedError",
    "ByteStreamTransport",
    "CapabilityNotNegotiatedError",
    "CapabilitySet",
    "Client",
    "ClientBuilder",
    "ClientError",
    "ClientSettings",
    "ConnectionClosed",
    "DuplicateIdError",
    "ErrorData",
    "Implementation",
    "IncompatibleVersionError",
    "InitializeResult",
    "MalformedMessageError",
    "MemoryTransport",
    "MissingCapabilityError",
    "NegotiatedCapabilities",
    "NegotiationError",
    "NotReadyError",
    "ProtocolCorruptionError",
    "ProtocolViolation",
    "RequestCancelled",
    "RequestContext",
    "RequestError",
    "RequestTimeout",
    "SessionState",
    "StateError",
    "StdioServerParameters",
    "Transport",
    "TransportError",
    "connect_tcp",
    "create_memory_transport_pair",
    "stdio_transport",
]
