"""JSON-RPC over HTTP POST, with server messages delivered over Server-Sent Events."""

from __future__ import annotations

import json
import logging
import queue
import threading
from collections.abc import Iterable, Iterator
from typing import Any, Optional, Union

import httpx

from mcpsdk.transport import (
    BaseTransport,
    ErrorHandler,
    Options,
    ReceiveHandler,
    Transport,
    TransportError,
    is_notification,
    is_request,
    is_response,
    make_notification,
    make_request,
)

logger = logging.getLogger(__name__)

_QUEUE_SIZE = 100
_PUT_INTERVAL = 0.1

Line = Union[str, bytes, bytearray]


def _put(box: queue.Queue, item: Any, closed: threading.Event) -> bool:
    """Put ``item`` on ``box`` unless ``closed`` is set first."""
    while not closed.is_set():
        try:
            box.put(item, timeout=_PUT_INTERVAL)
            return True
        except queue.Full:
            continue
    return False


def _offer(box: queue.Queue, item: Any) -> None:
    try:
        box.put_nowait(item)
    except queue.Full:
        pass


def iter_sse_data(lines: Iterable[Line]) -> Iterator[bytes]:
    """Yield the payload of each complete event in a stream of SSE lines.

    Only ``data:`` lines contribute; each adds its text after the prefix and a
    newline. A blank line ends the event. Payloads that begin with ``:`` are
    skipped, and an event left unterminated at the end of input is dropped.
    """
    buffer = bytearray()
    for raw in lines:
        line = raw.encode("utf-8") if isinstance(raw, str) else bytes(raw)
        line = line.rstrip(b"\r\n")
        if not line:
            if buffer:
                data = bytes(buffer)
                buffer.clear()
                if not data.startswith(b":"):
                    yield data
            continue
        if line.startswith(b"data:"):
            buffer += line[5:] + b"\n"


class EventSource:
    """Client for a Server-Sent Events stream.

    The payload of each event is put on :attr:`events` as bytes. When the
    stream fails or ends, a :class:`TransportError` is put there instead.
    """

    def __init__(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        client: Optional[httpx.Client] = None,
        events: Optional[queue.Queue] = None,
    ) -> None:
        self.url = url
        self.headers = headers if headers is not None else {}
        self.client = client if client is not None else httpx.Client()
        self.events: queue.Queue = events if events is not None else queue.Queue(maxsize=_QUEUE_SIZE)
        self.connection: Optional[httpx.Response] = None
        self._lock = threading.Lock()
        self._connected = threading.Event()
        self._closed = threading.Event()

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def connect(self) -> None:
        """Open the stream and start reading it; does nothing if already open."""
        with self._lock:
            if self._connected.is_set():
                return
            headers = {
                "Accept": "text/event-stream",
                "Cache-Control": "no-cache",
                **dict(self.headers),
            }
            try:
                request = self.client.build_request("GET", self.url, headers=headers)
                response = self.client.send(request, stream=True)
            except httpx.HTTPError as exc:
                raise TransportError(f"connection failed: {exc}") from exc
            if response.status_code != 200:
                response.close()
                raise TransportError(f"unexpected status code: {response.status_code}")
            closed = threading.Event()
            self._closed = closed
            self.connection = response
            self._connected.set()
        threading.Thread(
            target=self._read_events, args=(response, closed), name="sse-reader", daemon=True
        ).start()

    def close(self) -> None:
        """Close the stream; does nothing if it is not open."""
        with self._lock:
            if not self._connected.is_set():
                return
            self._closed.set()
            if self.connection is not None:
                try:
                    self.connection.close()
                except (httpx.HTTPError, OSError) as exc:
                    logger.warning("Error closing connection body: %s", exc)
                self.connection = None
            self._connected.clear()

    def _read_events(self, response: httpx.Response, closed: threading.Event) -> None:
        error: Optional[TransportError] = None
        try:
            for data in iter_sse_data(response.iter_lines()):
                if closed.is_set() or not _put(self.events, data, closed):
                    return
            if not closed.is_set():
                error = TransportError("read error: EOF")
        except (httpx.HTTPError, httpx.StreamError, OSError) as exc:
            if not closed.is_set():
                error = TransportError(f"read error: {exc}")
        finally:
            try:
                response.close()
            except (httpx.HTTPError, OSError) as exc:
                logger.warning("Error closing connection body: %s", exc)
            if self._closed is closed:
                self._connected.clear()
        if error is not None:
            _offer(self.events, error)


class HTTPTransport(BaseTransport, Transport):
    """Sends messages by HTTP POST and receives them from ``<url>/events`` over SSE."""

    def __init__(
        self,
        server_url: str,
        options: Optional[Options] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__()
        self.options = options if options is not None else Options()
        self.server_url = server_url
        self.client = (
            client if client is not None else httpx.Client(timeout=self.options.request_timeout)
        )
        self.headers: dict[str, str] = {}
        self.request_id_prefix = "http"
        self.event_source: Optional[EventSource] = None
        self._header_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._running = False
        self._stopping = threading.Event()
        self._receive_handler: Optional[ReceiveHandler] = None
        self._error_handler: Optional[ErrorHandler] = None

    def set_request_id_prefix(self, prefix: str) -> None:
        self.request_id_prefix = prefix

    def set_header(self, key: str, value: str) -> None:
        """Send ``key: value`` with every request, the event stream included."""
        with self._header_lock:
            self.headers[key] = value

    def initialize(self) -> None:
        self.event_source = EventSource(f"{self.server_url}/events", self.headers, self.client)

    def send_request(self, method: str, params: Any) -> Any:
        """Post a request and wait for its response to arrive on the event stream."""
        request_id = f"{self.request_id_prefix}-{self.get_next_id()}"
        try:
            request = make_request(request_id, method, params)
        except TransportError as exc:
            raise TransportError(f"failed to create request: {exc}") from exc
        try:
            self._post(request)
        except TransportError as exc:
            raise TransportError(f"failed to send request: {exc}") from exc
        try:
            response = self.wait_for_response(request_id, self.options.request_timeout)
        except TimeoutError as exc:
            raise TransportError(f"failed waiting for response: {exc}") from exc

        error = response.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise TransportError(
                    f"server error: {error.get('message')} (code: {error.get('code')})"
                )
            raise TransportError(f"server error: {error}")
        return response.get("result")

    def send_notification(self, method: str, params: Any) -> None:
        try:
            notification = make_notification(method, params)
        except TransportError as exc:
            raise TransportError(f"failed to create notification: {exc}") from exc
        self._post(notification)

    def start(self) -> None:
        """Read the event stream and dispatch messages until :meth:`stop`.

        The stream is reopened whenever it fails or ends.
        """
        with self._state_lock:
            if self._running:
                raise TransportError("transport already running")
            if self.event_source is None:
                raise TransportError("transport not initialized")
            self._running = True
            self._stopping.clear()
        try:
            source = self.event_source
            try:
                source.connect()
            except TransportError as exc:
                raise TransportError(f"failed to connect to event source: {exc}") from exc

            while True:
                item = source.events.get()
                if self._stopping.is_set():
                    source.close()
                    return
                if isinstance(item, Exception):
                    source.close()
                    try:
                        source.connect()
                    except TransportError as exc:
                        raise TransportError(
                            f"failed to reconnect after error {item}: {exc}"
                        ) from exc
                elif item is not None:
                    self._dispatch(item)
        finally:
            with self._state_lock:
                self._running = False

    def stop(self) -> None:
        self._stopping.set()
        if self.event_source is not None:
            self.event_source.close()
            _offer(self.event_source.events, None)

    def send(self, data: bytes) -> None:
        """Always raises: messages travel as HTTP requests, not raw bytes."""
        raise TransportError("Send method not applicable for HTTPTransport")

    def set_receive_handler(self, handler: ReceiveHandler) -> None:
        """Set a handler that sees every raw event payload before it is dispatched."""
        with self._header_lock:
            self._receive_handler = handler

    def set_error_handler(self, handler: ErrorHandler) -> None:
        """Set a handler for errors raised while dispatching incoming messages."""
        with self._header_lock:
            self._error_handler = handler

    def _dispatch(self, data: bytes) -> None:
        with self._header_lock:
            receive = self._receive_handler
            on_error = self._error_handler
        if receive is not None:
            receive(data)
        try:
            self._handle_message(data)
        except Exception as exc:  # handlers may raise anything; keep reading
            logger.warning("Error handling message: %s", exc)
            if on_error is not None:
                on_error(exc)

    def _post(self, message: Any) -> None:
        try:
            body = json.dumps(message)
        except (TypeError, ValueError) as exc:
            raise TransportError(f"failed to marshal message: {exc}") from exc
        with self._header_lock:
            extra = dict(self.headers)
        headers = {"Content-Type": "application/json", **extra}
        try:
            response = self.client.post(self.server_url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(f"HTTP request failed: {exc}") from exc
        if response.status_code >= 400:
            raise TransportError(f"HTTP error {response.status_code}: {response.text}")

    def _handle_message(self, data: bytes) -> None:
        if is_request(data):
            self._post(self.handle_request(data))
        elif is_response(data):
            self.handle_response(data)
        elif is_notification(data):
            self.handle_notification(data)
        else:
            text = data.decode("utf-8", "replace")
            raise TransportError(f"unknown message type: {text}")