import json

import pytest

from mcp_client.exceptions import MalformedMessageError
from mcp_client.message import parse_message, serialize_message
from mcp_client.types import (
    JSONRPCErrorResponse,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResultResponse,
)


def test_parse_request():
    message = parse_message(b'{"jsonrpc": "2.0", "id": 7, "method": "sampling/createMessage", "params": {"a": 1}}')
    assert isinstance(message, JSONRPCRequest)
    assert message.id == 7
    assert message.method == "sampling/createMessage"
    assert message.params == {"a": 1}


def test_parse_notification():
    message = parse_message('{"jsonrpc": "2.0", "method": "notifications/tools/list_changed"}')
    assert isinstance(message, JSONRPCNotification)
    assert message.params is None


def test_parse_result_response():
    message = parse_message(b'{"jsonrpc": "2.0", "id": "abc", "result": {"ok": true}}')
    assert isinstance(message, JSONRPCResultResponse)
    assert message.id == "abc"
    assert message.result == {"ok": True}


def test_parse_error_response():
    message = parse_message(b'{"jsonrpc": "2.0", "id": 3, "error": {"code": -32601, "message": "nope", "data": [1]}}')
    assert isinstance(message, JSONRPCErrorResponse)
    assert message.error.code == -32601
    assert message.error.data == [1]


def test_parse_error_response_without_id():
    message = parse_message(b'{"jsonrpc": "2.0", "id": null, "error": {"code": -32700, "message": "Parse error"}}')
    assert isinstance(message, JSONRPCErrorResponse)
    assert message.id is None


@pytest.mark.parametrize(
    "raw",
    [
        pytest.param(b"{not json", id="invalid-json"),
        pytest.param(b"\xff\xfe", id="invalid-utf8"),
        pytest.param(b"[1, 2]", id="not-an-object"),
        pytest.param(b'{"jsonrpc": "2.0", "id": 1}', id="no-shape"),
        pytest.param(b'{"jsonrpc": "2.0", "id": 1, "result": {}, "error": {"code": 1, "message": "x"}}', id="both"),
        pytest.param(b'{"jsonrpc": "2.0", "id": 1, "method": "x", "result": {}}', id="method-and-result"),
        pytest.param(b'{"jsonrpc": "2.0", "result": {}}', id="result-without-id"),
        pytest.param(b'{"jsonrpc": "1.0", "id": 1, "result": {}}', id="wrong-version"),
        pytest.param(b'{"jsonrpc": "2.0", "id": true, "result": {}}', id="bool-id"),
        pytest.param(b'{"jsonrpc": "2.0", "id": 1, "error": {"message": "no code"}}', id="error-without-code"),
        pytest.param(b'{"jsonrpc": "2.0", "method": 42}', id="non-string-method"),
        pytest.param(b"[" * 100_000 + b"]" * 100_000, id="too-deeply-nested"),
    ],
)
def test_parse_malformed(raw: bytes):
    with pytest.raises(MalformedMessageError):
        parse_message(raw)


def test_serialize_omits_unset_fields():
    data = serialize_message(JSONRPCNotification(method="notifications/initialized"))
    assert json.loads(data) == {"jsonrpc": "2.0", "method": "notifications/initialized"}


def test_serialize_request():
    data = serialize_message(JSONRPCRequest(id=0, method="ping"))
    assert data == b'{"jsonrpc":"2.0","id":0,"method":"ping"}'


def test_result_may_be_any_json_value():
    message = parse_message(b'{"jsonrpc": "2.0", "id": 1, "result": [1, 2, 3]}')
    assert isinstance(message, JSONRPCResultResponse)
    assert message.result == [1, 2, 3]


@pytest.mark.parametrize(
    ("raw", "request_id"),
    [
        (b'{"jsonrpc": "1.0", "id": 4, "result": {}}', 4),
        (b'{"jsonrpc": "2.0", "id": "a", "error": {"message": "no code"}}', "a"),
        (b'{"jsonrpc": "2.0", "id": 5, "result": {}, "error": {"code": 1, "message": "x"}}', 5),
        (b'{"jsonrpc": "2.0", "id": true, "result": {}}', None),
        (b'{"jsonrpc": "2.0", "id": 6, "method": 42}', None),
    ],
)
def test_malformed_response_keeps_its_id(raw: bytes, request_id: int | str | None):
    with pytest.raises(MalformedMessageError) as exc_info:
        parse_message(raw)
    assert exc_info.value.request_id == request_id
