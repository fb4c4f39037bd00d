"""Wire encoding and classification of envelopes."""

import json
from typing import Any

from pydantic import ValidationError

from mcp_client.exceptions import MalformedMessageError
from mcp_client.types import (
    InboundMessage,
    JSONRPCBase,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResultResponse,
    RequestId,
)


def serialize_message(message: JSONRPCMessage) -> bytes:
    """Encode an envelope the way it goes on the wire."""
    return message.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


def _response_id(document: dict[str, Any]) -> RequestId | None:
    """The id of a response-shaped document, if it is a usable request id."""
    if "method" in document or not ("result" in document or "error" in document):
        return None
    request_id = document.get("id")
    if isinstance(request_id, str) or (isinstance(request_id, int) and not isinstance(request_id, bool)):
        return request_id
    return None


def parse_message(raw: bytes | str) -> InboundMessage:
    """Classify one framed message into a request, notification or response.

    The variant is chosen from the keys present before any model validation,
    so a message never matches more than one shape.

    Raises:
        MalformedMessageError: if the payload is not a valid envelope
    """
    try:
        document = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        raise MalformedMessageError(f"Invalid JSON: {exc}") from exc

    if not isinstance(document, dict):
        raise MalformedMessageError(f"Expected a JSON object, got {type(document).__name__}")

    has_id = "id" in document
    has_result = "result" in document
    has_error = "error" in document
    response_id = _response_id(document)

    model: type[JSONRPCBase]
    if "method" in document:
        if has_result or has_error:
            raise MalformedMessageError("Message carries both a method and a result or error")
        model = JSONRPCRequest if has_id else JSONRPCNotification
    elif has_result and has_error:
        raise MalformedMessageError("Response carries both result and error", response_id)
    elif has_result:
        if not has_id:
            raise MalformedMessageError("Result response without an id")
        model = JSONRPCResultResponse
    elif has_error:
        model = JSONRPCErrorResponse
    else:
        raise MalformedMessageError("Message is neither a request, a notification nor a response")

    try:
        return model.model_validate(document)  # type: ignore[return-value]
    except ValidationError as exc:
        raise MalformedMessageError(f"Invalid {model.__name__}: {exc}", response_id) from exc
