"""Transport interface and shared JSON-RPC dispatch for MCP clients and servers.

A transport moves JSON-RPC messages between a client and a server. Concrete
transports (stdio, HTTP, streamable HTTP) combine :class:`BaseTransport`, which
keeps handler tables, request ids and pending responses, with the abstract
:class:`Transport` interface.

Handlers are plain callables:

* request handlers take the request params and return a result, or raise;
* notification handlers take the notification params;
* progress handlers take the params of a progress notification;
* receive handlers take the raw bytes of an incoming message;
* error handlers take the exception raised during transport work.
"""

from __future__ import annotations

import abc
import dataclasses
import json
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

PROGRESS_METHOD = "notifications/progress"

DEFAULT_TIMEOUT = 30.0

RequestHandler = Callable[[Any], Any]
NotificationHandler = Callable[[Any], None]
ProgressHandler = Callable[[Any], None]
ReceiveHandler = Callable[[bytes], None]
ErrorHandler = Callable[[Exception], None]

RawMessage = Union[str, bytes, bytearray, dict]


class TransportError(Exception):
    """Raised when a transport cannot send, receive or dispatch a message."""


class UnsupportedMethodError(TransportError):
    """Raised when no handler is registered for a notification method."""

    def __init__(self, method: str) -> None:
        super().__init__(f"unsupported method: {method}")
        self.method = method


def _default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def _jsonable(value: Any) -> Any:
    """Return ``value`` as plain JSON data, converting dataclasses to dicts."""
    if value is None:
        return None
    try:
        return json.loads(json.dumps(value, default=_default))
    except (TypeError, ValueError) as exc:
        raise TransportError(f"failed to marshal message: {exc}") from exc


def _decode(data: RawMessage) -> Optional[dict]:
    if isinstance(data, dict):
        return data
    try:
        decoded = json.loads(data)
    except (TypeError, ValueError):
        return None
    return decoded if isinstance(decoded, dict) else None


def _message(data: RawMessage) -> dict:
    decoded = _decode(data)
    if decoded is None:
        raise TransportError(f"invalid JSON-RPC message: {data!r}")
    return decoded


def _id_key(request_id: Any) -> str:
    if isinstance(request_id, bool):
        return "true" if request_id else "false"
    if isinstance(request_id, float) and request_id.is_integer():
        return str(int(request_id))
    return str(request_id)


def is_request(data: RawMessage) -> bool:
    """Tell whether ``data`` is a JSON-RPC request (a method and an id)."""
    msg = _decode(data)
    return msg is not None and "method" in msg and msg.get("id") is not None


def is_response(data: RawMessage) -> bool:
    """Tell whether ``data`` is a JSON-RPC response (an id with a result or an error)."""
    msg = _decode(data)
    return (
        msg is not None
        and "method" not in msg
        and "id" in msg
        and ("result" in msg or "error" in msg)
    )


def is_notification(data: RawMessage) -> bool:
    """Tell whether ``data`` is a JSON-RPC notification (a method without an id)."""
    msg = _decode(data)
    return msg is not None and "method" in msg and msg.get("id") is None


def make_request(request_id: Any, method: str, params: Any = None) -> dict:
    """Build a JSON-RPC request message."""
    msg: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
    if params is not None:
        msg["params"] = _jsonable(params)
    return msg


def make_response(request_id: Any, result: Any) -> dict:
    """Build a successful JSON-RPC response message."""
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": _jsonable(result)}


def make_error_response(request_id: Any, code: int, message: str, data: Any = None) -> dict:
    """Build a JSON-RPC error response message."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = _jsonable(data)
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}


def make_notification(method: str, params: Any = None) -> dict:
    """Build a JSON-RPC notification message."""
    msg: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        msg["params"] = _jsonable(params)
    return msg


@dataclass
class Options:
    """Configuration shared by transports."""

    request_timeout: float = DEFAULT_TIMEOUT


class Transport(abc.ABC):
    """Interface every MCP transport provides."""

    @abc.abstractmethod
    def initialize(self) -> None:
        """Prepare the transport for use."""

    @abc.abstractmethod
    def send_request(self, method: str, params: Any) -> Any:
        """Send a request and return the result of its response."""

    @abc.abstractmethod
    def send_notification(self, method: str, params: Any) -> None:
        """Send a one-way notification."""

    @abc.abstractmethod
    def register_request_handler(self, method: str, handler: RequestHandler) -> None:
        """Register the handler for incoming requests of ``method``."""

    @abc.abstractmethod
    def register_notification_handler(self, method: str, handler: NotificationHandler) -> None:
        """Register the handler for incoming notifications of ``method``."""

    @abc.abstractmethod
    def register_progress_handler(self, request_id: Any, handler: ProgressHandler) -> None:
        """Register the handler for progress of the request ``request_id``."""

    @abc.abstractmethod
    def unregister_progress_handler(self, request_id: Any) -> None:
        """Remove the progress handler of ``request_id``."""

    @abc.abstractmethod
    def generate_id(self) -> str:
        """Return a new unique request id."""

    @abc.abstractmethod
    def start(self) -> None:
        """Process incoming messages; blocks until the transport stops."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop the transport and release its resources."""

    @abc.abstractmethod
    def send(self, data: bytes) -> None:
        """Transmit raw message bytes."""

    @abc.abstractmethod
    def set_receive_handler(self, handler: ReceiveHandler) -> None:
        """Set the handler for raw received messages."""

    @abc.abstractmethod
    def set_error_handler(self, handler: ErrorHandler) -> None:
        """Set the handler for transport errors."""


class BaseTransport:
    """Handler tables, id generation and response matching shared by transports."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._request_handlers: dict[str, RequestHandler] = {}
        self._notification_handlers: dict[str, NotificationHandler] = {}
        self._progress_handlers: dict[str, ProgressHandler] = {}
        self._next_id = 1
        self._pending: dict[Any, queue.Queue] = {}

    def register_request_handler(self, method: str, handler: RequestHandler) -> None:
        with self._lock:
            self._request_handlers[method] = handler

    def register_notification_handler(self, method: str, handler: NotificationHandler) -> None:
        with self._lock:
            self._notification_handlers[method] = handler

    def register_progress_handler(self, request_id: Any, handler: ProgressHandler) -> None:
        with self._lock:
            self._progress_handlers[_id_key(request_id)] = handler

    def unregister_progress_handler(self, request_id: Any) -> None:
        with self._lock:
            self._progress_handlers.pop(_id_key(request_id), None)

    def get_next_id(self) -> int:
        """Return the next request number, starting at 1."""
        with self._lock:
            request_id = self._next_id
            self._next_id += 1
            return request_id

    def generate_id(self) -> str:
        return str(self.get_next_id())

    def wait_for_response(self, request_id: Any, timeout: Optional[float] = None) -> dict:
        """Block until the response for ``request_id`` arrives.

        Raises :class:`TimeoutError` if ``timeout`` seconds pass first.
        """
        box: queue.Queue = queue.Queue(maxsize=1)
        with self._lock:
            self._pending[request_id] = box
        try:
            return box.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError(f"timed out waiting for response to {request_id!r}") from None
        finally:
            with self._lock:
                self._pending.pop(request_id, None)

    def handle_response(self, response: RawMessage) -> bool:
        """Hand a response to its waiter; return whether anyone was waiting."""
        msg = _message(response)
        try:
            with self._lock:
                box = self._pending.get(msg.get("id"))
        except TypeError:
            return False
        if box is None:
            return False
        try:
            box.put_nowait(msg)
        except queue.Full:
            return False
        return True

    def handle_request(self, request: RawMessage) -> dict:
        """Dispatch a request to its handler and return the response message."""
        msg = _message(request)
        request_id = msg.get("id")
        method = msg.get("method")
        with self._lock:
            handler = self._request_handlers.get(method)
        if handler is None:
            return make_error_response(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
        try:
            result = handler(msg.get("params"))
        except Exception as exc:
            return make_error_response(request_id, INTERNAL_ERROR, str(exc))
        return make_response(request_id, result)

    def handle_notification(self, notification: RawMessage) -> None:
        """Dispatch a notification to its progress or method handler."""
        msg = _message(notification)
        method = msg.get("method")
        params = msg.get("params")

        if method == PROGRESS_METHOD and params and isinstance(params, dict):
            progress_id = params.get("id")
            if progress_id is not None:
                with self._lock:
                    progress_handler = self._progress_handlers.get(_id_key(progress_id))
                if progress_handler is not None:
                    progress_handler(params)
                    return

        with self._lock:
            handler = self._notification_handlers.get(method)
        if handler is None:
            raise UnsupportedMethodError(method)
        handler(params)