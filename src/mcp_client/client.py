"""The MCP client session engine."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from enum import Enum
from types import TracebackType
from typing import Any, Protocol

import anyio
import anyio.abc
from pydantic import BaseModel, ValidationError
from typing_extensions import Self

from mcp_client.capabilities import (
    DEFAULT_CLIENT_CAPABILITIES,
    CapabilitySet,
    NegotiatedCapabilities,
    capability_for_method,
)
from mcp_client.context import RequestContext
from mcp_client.correlation import CorrelationTable, Outcome, PendingRequest, unwrap_outcome
from mcp_client.exceptions import (
    AlreadyConnectedError,
    CapabilityNotNegotiatedError,
    ClientError,
    ConnectionClosed,
    IncompatibleVersionError,
    MalformedMessageError,
    NotReadyError,
    ProtocolCorruptionError,
    ProtocolViolation,
    RequestCancelled,
    RequestError,
    RequestTimeout,
    StateError,
    TransportError,
)
from mcp_client.message import parse_message, serialize_message
from mcp_client.settings import ClientSettings
from mcp_client.transport.base import Transport
from mcp_client.types import (
    CANCELLED_NOTIFICATION,
    INITIALIZE_METHOD,
    INITIALIZED_NOTIFICATION,
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    PING_METHOD,
    PROGRESS_NOTIFICATION,
    CancelledNotificationParams,
    ErrorData,
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResultResponse,
    ProgressNotificationParams,
    RequestId,
)

logger = logging.getLogger(__name__)

Params = Mapping[str, Any] | BaseModel | None


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    CLOSED = "closed"


class ProgressFnT(Protocol):
    """Protocol for progress notification callbacks."""

    async def __call__(self, progress: float, total: float | None, message: str | None) -> None: ...


class RequestHandlerFnT(Protocol):
    async def __call__(self, context: RequestContext) -> Mapping[str, Any] | BaseModel | None: ...


class NotificationHandlerFnT(Protocol):
    async def __call__(self, params: dict[str, Any] | None) -> None: ...


async def _handle_ping(context: RequestContext) -> dict[str, Any]:
    return {}


def _dump_params(params: Params) -> dict[str, Any] | None:
    if params is None:
        return None
    if isinstance(params, BaseModel):
        return params.model_dump(by_alias=True, mode="json", exclude_none=True)
    return dict(params)


class Client:
    """
    Implements the client side of an MCP session on top of a transport,
    including the initialization handshake, request/response correlation,
    cancellation and dispatch of server-initiated messages.

    The client is an async context manager; ``connect()`` must be called
    inside it:

        async with Client() as client:
            await client.connect(transport)
            result = await client.request("tools/list")
    """

    def __init__(
        self,
        settings: ClientSettings | None = None,
        *,
        client_info: Implementation | None = None,
        capabilities: Mapping[str, Any] | None = None,
        request_handlers: Mapping[str, RequestHandlerFnT] | None = None,
        notification_handlers: Mapping[str, NotificationHandlerFnT] | None = None,
    ) -> None:
        self.settings = settings or ClientSettings()
        self._client_info = client_info or Implementation(
            name=self.settings.client_name, version=self.settings.client_version
        )
        self._capabilities = CapabilitySet(capabilities if capabilities is not None else DEFAULT_CLIENT_CAPABILITIES)
        self._request_handlers: dict[str, RequestHandlerFnT] = {PING_METHOD: _handle_ping}
        self._request_handlers.update(request_handlers or {})
        self._notification_handlers: dict[str, NotificationHandlerFnT] = dict(notification_handlers or {})

        self._state = SessionState.UNINITIALIZED
        self._transport: Transport | None = None
        self._table = CorrelationTable()
        self._next_request_id = 0
        self._malformed_count = 0
        self._progress_callbacks: dict[RequestId, ProgressFnT] = {}
        self._in_flight: dict[RequestId, anyio.CancelScope] = {}
        self._initialize_result: InitializeResult | None = None
        self._negotiated: NegotiatedCapabilities | None = None
        self._close_reason: BaseException | None = None
        self._shutdown_started = False

        # Created once an event loop is running, in __aenter__ / connect().
        self._task_group: anyio.abc.TaskGroup | None = None
        self._write_lock: anyio.Lock | None = None
        self._closed: anyio.Event | None = None
        self._reader_scope: anyio.CancelScope | None = None
        self._reader_done: anyio.Event | None = None
        self._reader_task_id: int | None = None

    async def __aenter__(self) -> Self:
        self._write_lock = anyio.Lock()
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        with anyio.CancelScope(shield=True):
            await self.close()
        assert self._task_group is not None
        # Exiting must not block on handler tasks still running.
        self._task_group.cancel_scope.cancel()
        return await self._task_group.__aexit__(exc_type, exc_val, exc_tb)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def capabilities(self) -> CapabilitySet:
        """The capabilities this client declares."""
        return self._capabilities

    @property
    def negotiated(self) -> NegotiatedCapabilities | None:
        """Negotiated capabilities, or None before the handshake completed."""
        return self._negotiated

    @property
    def initialize_result(self) -> InitializeResult | None:
        return self._initialize_result

    @property
    def protocol_version(self) -> str | None:
        return self._initialize_result.protocol_version if self._initialize_result else None

    @property
    def server_info(self) -> Implementation | None:
        return self._initialize_result.server_info if self._initialize_result else None

    @property
    def instructions(self) -> str | None:
        return self._initialize_result.instructions if self._initialize_result else None

    @property
    def close_reason(self) -> BaseException | None:
        """The failure that ended the session, if it did not end through close()."""
        return self._close_reason

    @property
    def pending_count(self) -> int:
        return len(self._table)

    # ------------------------------------------------------------------
    # Handler registration
    # ------------------------------------------------------------------

    def set_request_handler(self, method: str, handler: RequestHandlerFnT) -> None:
        """Handle server-initiated requests for ``method``.

        The handler returns the result payload. Raising RequestError answers
        with that error; any other exception becomes an internal error.
        """
        self._request_handlers[method] = handler

    def set_notification_handler(self, method: str, handler: NotificationHandlerFnT) -> None:
        self._notification_handlers[method] = handler

    def request_handler(self, method: str) -> Callable[[RequestHandlerFnT], RequestHandlerFnT]:
        def decorator(func: RequestHandlerFnT) -> RequestHandlerFnT:
            self.set_request_handler(method, func)
            return func

        return decorator

    def notification_handler(self, method: str) -> Callable[[NotificationHandlerFnT], NotificationHandlerFnT]:
        def decorator(func: NotificationHandlerFnT) -> NotificationHandlerFnT:
            self.set_notification_handler(method, func)
            return func

        return decorator

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, transport: Transport, *, timeout: float | None = None) -> InitializeResult:
        """Take ownership of ``transport`` and perform the initialization handshake.

        Args:
            transport: the connection to the server
            timeout: seconds to wait for the initialize response; defaults to
                ``settings.handshake_timeout``

        Raises:
            AlreadyConnectedError: if connect() was already called
            NegotiationError: if the protocol version or capabilities do not match
            RequestTimeout: if the server does not answer in time
            ConnectionClosed: if the transport closes during the handshake
        """
        if self._task_group is None:
            raise StateError("Client must be entered with 'async with' before connect()")
        if self._state is not SessionState.UNINITIALIZED:
            raise AlreadyConnectedError(f"Cannot connect: session is {self._state.value}")

        self._state = SessionState.INITIALIZING
        self._transport = transport
        self._table = CorrelationTable()
        self._next_request_id = 0
        self._malformed_count = 0
        self._close_reason = None
        self._shutdown_started = False
        self._closed = anyio.Event()
        await self._task_group.start(self._receive_loop, transport)

        if timeout is None:
            timeout = self.settings.handshake_timeout
        params = InitializeRequestParams(
            protocol_version=self.settings.protocol_version,
            capabilities=self._capabilities.to_dict(),
            client_info=self._client_info,
        )

        try:
            result = await self._send_request(INITIALIZE_METHOD, params, timeout=timeout)
            initialize_result, negotiated = self._negotiate(result)
            await self._send_notification(INITIALIZED_NOTIFICATION)
        except BaseException as exc:
            with anyio.CancelScope(shield=True):
                if self._state is SessionState.INITIALIZING:
                    logger.warning(f"Handshake failed: {exc!r}")
                    await self._shutdown(exc, final_state=SessionState.UNINITIALIZED)
                elif self._closed is not None:
                    await self._closed.wait()
            raise

        self._initialize_result = initialize_result
        self._negotiated = negotiated
        self._state = SessionState.READY
        logger.info(
            f"Session ready (protocol {initialize_result.protocol_version}, "
            f"capabilities {sorted(negotiated.negotiated)})"
        )
        return initialize_result

    def _negotiate(self, result: Any) -> tuple[InitializeResult, NegotiatedCapabilities]:
        try:
            initialize_result = InitializeResult.model_validate(result)
        except ValidationError as exc:
            raise ProtocolViolation(f"Invalid initialize result: {exc}") from exc

        if initialize_result.protocol_version != self.settings.protocol_version:
            raise IncompatibleVersionError(self.settings.protocol_version, initialize_result.protocol_version)

        negotiated = NegotiatedCapabilities.negotiate(
            self._capabilities,
            CapabilitySet(initialize_result.capabilities),
            initialize_result.required_capabilities,
        )
        return initialize_result, negotiated

    async def close(self) -> None:
        """Drain pending requests, close the transport and end the session.

        Calling close() more than once is harmless.
        """
        if self._state is SessionState.CLOSED:
            return
        if self._state is SessionState.UNINITIALIZED:
            self._state = SessionState.CLOSED
            return
        await self._shutdown(None)

    async def wait_closed(self) -> None:
        """Wait until the session has been closed, by either side."""
        if self._state is SessionState.CLOSED or self._closed is None:
            return
        await self._closed.wait()

    async def _shutdown(
        self,
        reason: BaseException | None,
        final_state: SessionState = SessionState.CLOSED,
    ) -> None:
        from_reader = self._reader_task_id is not None and anyio.get_current_task().id == self._reader_task_id
        if self._shutdown_started:
            if not from_reader and self._closed is not None:
                await self._closed.wait()
            return
        self._shutdown_started = True

        self._state = SessionState.SHUTTING_DOWN
        if reason is not None:
            self._close_reason = reason
        drained = self._table.drain_all(reason)
        if drained:
            logger.info(f"Failed {drained} pending requests on shutdown")
        self._progress_callbacks.clear()
        for scope in self._in_flight.values():
            scope.cancel()
        if self._reader_scope is not None:
            self._reader_scope.cancel()

        transport, self._transport = self._transport, None
        with anyio.CancelScope(shield=True):
            if transport is not None:
                try:
                    await transport.aclose()
                except (ClientError, OSError):
                    logger.debug("Error while closing transport", exc_info=True)
            if not from_reader and self._reader_done is not None:
                await self._reader_done.wait()

        self._state = final_state
        assert self._closed is not None
        self._closed.set()
        logger.debug(f"Session shut down ({final_state.value})")

    # ------------------------------------------------------------------
    # Outbound messages
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        params: Params = None,
        *,
        capability: str | None = None,
        timeout: float | None = None,
        cancel_event: anyio.Event | None = None,
        progress_callback: ProgressFnT | None = None,
    ) -> Any:
        """Send a request and wait for its result.

        Args:
            method: the method to call
            params: request parameters
            capability: a capability that must have been negotiated for this
                request to be sent
            timeout: seconds to wait for the response; defaults to
                ``settings.request_timeout``
            cancel_event: setting this event cancels the request
            progress_callback: called for every progress notification the
                server sends for this request

        Raises:
            NotReadyError: if the handshake has not completed
            CapabilityNotNegotiatedError: if ``capability`` was not negotiated
            RequestError: if the server answered with an error
            RequestCancelled: if ``cancel_event`` was set first
            RequestTimeout: if no response arrived in time
            ConnectionClosed: if the connection ended first
        """
        if self._state is not SessionState.READY:
            raise NotReadyError(f"Cannot send {method!r}: session is {self._state.value}")
        assert self._negotiated is not None

        required = capability
        if required is None and self.settings.enforce_capabilities:
            required = capability_for_method(method)
        if required is not None and not self._negotiated.supports(required):
            raise CapabilityNotNegotiatedError(method, required)

        return await self._send_request(
            method,
            params,
            timeout=timeout if timeout is not None else self.settings.request_timeout,
            cancel_event=cancel_event,
            progress_callback=progress_callback,
        )

    async def send_ping(self) -> Any:
        """Send a ping request."""
        return await self.request(PING_METHOD)

    async def notify(self, method: str, params: Params = None) -> None:
        """
        Emits a notification, which is a one-way message that does not expect
        a response.
        """
        if self._state is not SessionState.READY:
            raise NotReadyError(f"Cannot send {method!r}: session is {self._state.value}")
        await self._send_notification(method, params)

    async def _send_request(
        self,
        method: str,
        params: Params,
        *,
        timeout: float | None,
        cancel_event: anyio.Event | None = None,
        progress_callback: ProgressFnT | None = None,
    ) -> Any:
        request_id = self._next_request_id
        self._next_request_id = request_id + 1
        pending = self._table.register(request_id)

        request_params = _dump_params(params)
        if progress_callback is not None:
            # Use request_id as progress token
            request_params = dict(request_params or {})
            meta = dict(request_params.get("_meta") or {})
            meta["progressToken"] = request_id
            request_params["_meta"] = meta
            self._progress_callbacks[request_id] = progress_callback

        try:
            try:
                await self._send_message(JSONRPCRequest(id=request_id, method=method, params=request_params))
            except BaseException:
                self._table.discard(request_id)
                raise
            return await self._wait_for_result(pending, method, timeout, cancel_event)
        finally:
            self._progress_callbacks.pop(request_id, None)
            pending.close()

    async def _wait_for_result(
        self,
        pending: PendingRequest,
        method: str,
        timeout: float | None,
        cancel_event: anyio.Event | None,
    ) -> Any:
        request_id = pending.request_id
        outcome: Outcome | None = None
        async with anyio.create_task_group() as tg:
            if cancel_event is not None:
                tg.start_soon(self._cancel_when_set, request_id, cancel_event)
            try:
                with anyio.move_on_after(timeout):
                    outcome = await pending.wait()
            except anyio.get_cancelled_exc_class():
                self._cancel_request(request_id, RequestCancelled(request_id, "cancelled by caller"))
                raise
            finally:
                tg.cancel_scope.cancel()

        if outcome is None:
            assert timeout is not None
            self._cancel_request(request_id, RequestTimeout(request_id, method, timeout), reason="timeout")
            # Either the timeout or a response that won the race.
            outcome = await pending.wait()
        return unwrap_outcome(outcome)

    async def _cancel_when_set(self, request_id: RequestId, cancel_event: anyio.Event) -> None:
        await cancel_event.wait()
        self._cancel_request(request_id, RequestCancelled(request_id))

    def _cancel_request(self, request_id: RequestId, outcome: ClientError, reason: str = "cancelled") -> bool:
        """Fail a pending request locally and tell the peer, best-effort.

        Does nothing when the request already has an outcome.
        """
        if not self._table.cancel(request_id, outcome):
            return False
        logger.debug(f"Request {request_id!r} {reason}")
        if self._state is SessionState.READY and self._task_group is not None:
            self._task_group.start_soon(self._send_cancelled_notification, request_id, reason)
        return True

    async def _send_cancelled_notification(self, request_id: RequestId, reason: str) -> None:
        try:
            await self._send_notification(
                CANCELLED_NOTIFICATION,
                CancelledNotificationParams(request_id=request_id, reason=reason),
            )
        except ClientError as exc:
            logger.debug(f"Could not send cancellation for request {request_id!r}: {exc}")

    async def _send_notification(self, method: str, params: Params = None) -> None:
        await self._send_message(JSONRPCNotification(method=method, params=_dump_params(params)))

    async def _send_message(self, message: JSONRPCMessage) -> None:
        await self._send_raw(serialize_message(message))

    async def _send_raw(self, data: bytes) -> None:
        transport = self._transport
        if transport is None or self._write_lock is None:
            raise ConnectionClosed("Not connected")

        async with self._write_lock:
            try:
                await transport.send(data)
                return
            except TransportError as exc:
                error = exc

        logger.warning(f"Transport send failed: {error}")
        with anyio.CancelScope(shield=True):
            await self._shutdown(error)
        raise error

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    async def _receive_loop(
        self,
        transport: Transport,
        *,
        task_status: anyio.abc.TaskStatus[None] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        reason: BaseException | None = None
        self._reader_done = anyio.Event()
        try:
            with anyio.CancelScope() as scope:
                self._reader_scope = scope
                self._reader_task_id = anyio.get_current_task().id
                task_status.started()
                try:
                    async for raw in transport.receive():
                        await self._handle_raw_message(raw)
                    reason = ConnectionClosed("Connection closed by peer")
                    logger.info("Transport closed by peer")
                except ProtocolCorruptionError as exc:
                    logger.error(f"Closing session: {exc}")
                    reason = exc
                except TransportError as exc:
                    logger.warning(f"Transport failed: {exc}")
                    reason = exc
                except Exception as exc:
                    logger.exception(f"Unhandled exception in receive loop: {exc}")
                    reason = exc
        finally:
            try:
                with anyio.CancelScope(shield=True):
                    await self._shutdown(reason)
            finally:
                self._reader_task_id = None
                self._reader_done.set()

    async def _handle_raw_message(self, raw: bytes) -> None:
        try:
            message = parse_message(raw)
        except MalformedMessageError as exc:
            self._malformed_count += 1
            logger.warning(f"Dropping malformed message ({self._malformed_count} in a row): {exc}")
            if exc.request_id is not None:
                error = ProtocolViolation(f"Malformed response to request {exc.request_id!r}: {exc}")
                self._table.cancel(exc.request_id, error)
            if self._malformed_count >= self.settings.malformed_message_threshold:
                raise ProtocolCorruptionError(self._malformed_count) from exc
            return
        self._malformed_count = 0

        if isinstance(message, JSONRPCRequest):
            self._start_request_handler(message)
        elif isinstance(message, JSONRPCNotification):
            await self._handle_notification(message)
        elif isinstance(message, JSONRPCResultResponse | JSONRPCErrorResponse):
            self._handle_response(message)

    def _handle_response(self, message: JSONRPCResultResponse | JSONRPCErrorResponse) -> None:
        if message.id is None:
            assert isinstance(message, JSONRPCErrorResponse)
            logger.warning(f"Server reported an error not tied to a request: {message.error.message}")
            return
        self._table.resolve(message.id, message)

    def _start_request_handler(self, message: JSONRPCRequest) -> None:
        assert self._task_group is not None
        scope = anyio.CancelScope()
        self._in_flight[message.id] = scope
        self._task_group.start_soon(self._handle_request, message, scope)

    async def _handle_request(self, message: JSONRPCRequest, scope: anyio.CancelScope) -> None:
        response: bytes | None = None
        try:
            with scope:
                response = await self._run_request_handler(message)
        finally:
            self._in_flight.pop(message.id, None)

        if response is None:
            logger.debug(f"Request {message.id!r} was cancelled by the server")
            return
        try:
            await self._send_raw(response)
        except ClientError as exc:
            logger.debug(f"Could not answer request {message.id!r}: {exc}")

    async def _run_request_handler(self, message: JSONRPCRequest) -> bytes:
        """Run the handler for a server request and return the encoded response.

        Every failure, including a result that cannot be encoded, becomes an
        error envelope.
        """
        handler = self._request_handlers.get(message.method)
        if handler is None:
            logger.debug(f"No handler for server request {message.method!r}")
            error = ErrorData(code=METHOD_NOT_FOUND, message="Method not found", data=message.method)
            return serialize_message(JSONRPCErrorResponse(id=message.id, error=error))

        context = RequestContext(request_id=message.id, method=message.method, params=message.params, session=self)
        try:
            result = await handler(context)
            return serialize_message(JSONRPCResultResponse(id=message.id, result=_dump_params(result) or {}))
        except RequestError as exc:
            error = exc.error
        except Exception as exc:
            logger.exception(f"Handler for {message.method!r} failed")
            error = ErrorData(code=INTERNAL_ERROR, message=str(exc) or type(exc).__name__)

        try:
            return serialize_message(JSONRPCErrorResponse(id=message.id, error=error))
        except Exception:
            logger.exception(f"Could not encode the error for {message.method!r}")
            error = ErrorData(code=INTERNAL_ERROR, message="Internal error")
            return serialize_message(JSONRPCErrorResponse(id=message.id, error=error))

    async def _handle_notification(self, message: JSONRPCNotification) -> None:
        if message.method == CANCELLED_NOTIFICATION:
            self._handle_cancelled(message.params)
        elif message.method == PROGRESS_NOTIFICATION:
            await self._handle_progress(message.params)

        handler = self._notification_handlers.get(message.method)
        if handler is None:
            logger.debug(f"No handler for notification {message.method!r}")
            return
        try:
            await handler(message.params)
        except Exception:
            logger.exception(f"Notification handler for {message.method!r} failed")

    def _handle_cancelled(self, params: dict[str, Any] | None) -> None:
        try:
            cancelled = CancelledNotificationParams.model_validate(params or {})
        except ValidationError as exc:
            logger.warning(f"Invalid cancellation notification: {exc}")
            return
        scope = self._in_flight.get(cancelled.request_id)
        if scope is not None:
            scope.cancel()

    async def _handle_progress(self, params: dict[str, Any] | None) -> None:
        try:
            progress = ProgressNotificationParams.model_validate(params or {})
        except ValidationError as exc:
            logger.warning(f"Invalid progress notification: {exc}")
            return
        callback = self._progress_callbacks.get(progress.progress_token)
        if callback is None:
            return
        try:
            await callback(progress.progress, progress.total, progress.message)
        except Exception:
            logger.exception(f"Progress callback for request {progress.progress_token!r} failed")
