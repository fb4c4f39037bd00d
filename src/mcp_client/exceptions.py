"""Error taxonomy of the MCP client.

Each failure kind has its own branch so that callers can decide per kind
whether to retry, reconnect or give up.
"""

from __future__ import annotations

from typing import Any

from mcp_client.types import ErrorData, RequestId


class ClientError(Exception):
    """Base class for every error raised by the MCP client."""


class TransportError(ClientError):
    """The underlying byte or message stream failed (reset, broken pipe, ...).

    Always fatal to the session.
    """


class ConnectionClosed(TransportError):
    """The connection ended while the operation was pending."""


class ProtocolViolation(ClientError):
    """The peer sent something that does not follow the protocol."""


class MalformedMessageError(ProtocolViolation):
    """An inbound message could not be parsed into a valid envelope.

    ``request_id`` is set when the message looked like a response to a
    request of ours, so the pending caller can be failed instead of waiting.
    """

    def __init__(self, message: str, request_id: RequestId | None = None):
        super().__init__(message)
        self.request_id = request_id


class ProtocolCorruptionError(ProtocolViolation):
    """Too many consecutive malformed messages; the stream can no longer be trusted."""

    def __init__(self, count: int):
        super().__init__(f"Received {count} consecutive malformed messages")
        self.count = count


class NegotiationError(ClientError):
    """The handshake failed; the session never reached the ready state."""


class IncompatibleVersionError(NegotiationError):
    def __init__(self, client_version: str, server_version: str):
        super().__init__(
            f"Server protocol version {server_version!r} is not compatible with client version {client_version!r}"
        )
        self.client_version = client_version
        self.server_version = server_version


class MissingCapabilityError(NegotiationError):
    def __init__(self, missing: list[str]):
        super().__init__(f"Server requires capabilities the client does not declare: {', '.join(missing)}")
        self.missing = missing


class RequestError(ClientError):
    """Exception raised when the peer answers a request with an error.

    It wraps the ErrorData received from the peer and provides access to the
    error code, message, and any additional data.

    Request handlers may also raise it to answer a server-initiated request
    with a specific error.

    Attributes:
        error: The ErrorData object received from the peer
    """

    error: ErrorData

    def __init__(self, error: ErrorData):
        super().__init__(error.message)
        self.error = error

    @classmethod
    def from_code(cls, code: int, message: str, data: Any | None = None) -> RequestError:
        return cls(ErrorData(code=code, message=message, data=data))

    @property
    def code(self) -> int:
        return self.error.code

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def data(self) -> Any | None:
        return self.error.data


class RequestCancelled(ClientError):
    """The request was cancelled locally before a response arrived."""

    def __init__(self, request_id: RequestId, reason: str = "cancelled"):
        super().__init__(f"Request {request_id!r} {reason}")
        self.request_id = request_id
        self.reason = reason


class RequestTimeout(ClientError, TimeoutError):
    """No response arrived within the configured timeout."""

    def __init__(self, request_id: RequestId | None, method: str, timeout: float):
        super().__init__(f"Timed out while waiting for response to {method!r}. Waited {timeout} seconds.")
        self.request_id = request_id
        self.method = method
        self.timeout = timeout


class StateError(ClientError):
    """Local misuse of the client, e.g. sending before the handshake completed."""


class NotReadyError(StateError):
    pass


class AlreadyConnectedError(StateError):
    pass


class CapabilityNotNegotiatedError(StateError):
    def __init__(self, method: str, capability: str):
        super().__init__(f"Cannot send {method!r}: capability {capability!r} was not negotiated")
        self.method = method
        self.capability = capability


class DuplicateIdError(StateError):
    def __init__(self, request_id: RequestId):
        super().__init__(f"Request id {request_id!r} is already pending")
        self.request_id = request_id
