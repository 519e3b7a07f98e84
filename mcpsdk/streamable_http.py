"""Streamable HTTP transport: JSON-RPC over HTTP POST with optional SSE streams.

Compared with the plain HTTP transport this one keeps a session id issued by
the server, can receive replies either as a direct JSON body or as an event
stream per request, keeps a listener stream open for server-initiated
messages, and handles JSON-RPC batches.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from typing import Any, Optional

import httpx

from mcpsdk.streaming_events import StreamableEventSource
from mcpsdk.transport import (
    INTERNAL_ERROR,
    BaseTransport,
    ErrorHandler,
    Options,
    ReceiveHandler,
    Transport,
    TransportError,
    is_notification,
    is_request,
    is_response,
    make_error_response,
    make_notification,
    make_request,
)

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1
_RECONNECT_DELAY = 1.0
_SAMPLE_LENGTH = 100


class StreamableHTTPTransport(BaseTransport, Transport):
    """Talks to a single MCP endpoint using the Streamable HTTP protocol."""

    def __init__(
        self,
        endpoint: str,
        options: Optional[Options] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__()
        self.options = options if options is not None else Options()
        self.endpoint = endpoint
        self.client = (
            client if client is not None else httpx.Client(timeout=self.options.request_timeout)
        )
        self.headers: dict[str, str] = {}
        self.request_id_prefix = "streamable-http"
        self.session_id = ""
        self.last_event_id = ""
        self.event_sources: dict[str, StreamableEventSource] = {}
        self._state = threading.Lock()
        self._running = False
        self._stopped = threading.Event()
        self._receive_handler: Optional[ReceiveHandler] = None
        self._error_handler: Optional[ErrorHandler] = None

    def set_request_id_prefix(self, prefix: str) -> None:
        self.request_id_prefix = prefix

    def set_header(self, key: str, value: str) -> None:
        """Send ``key: value`` with every request."""
        with self._state:
            self.headers[key] = value

    def set_session_id(self, session_id: str) -> None:
        """Send ``session_id`` as ``MCP-Session-ID`` with every request."""
        with self._state:
            self.session_id = session_id

    def initialize(self) -> None:
        """Set default headers and open the listener stream in the background.

        Failing to open the listener is only logged: servers need not support it.
        """
        self._stopped.clear()
        self.set_header("Accept", "application/json, text/event-stream")

        def open_listener() -> None:
            try:
                self._open_listener_connection()
            except TransportError as exc:
                logger.warning("Failed to open listener connection: %s", exc)

        threading.Thread(target=open_listener, name="mcp-listener", daemon=True).start()

    def send_request(self, method: str, params: Any) -> Any:
        """Post a request and return the result of its response."""
        request_id = f"{self.request_id_prefix}-{self.get_next_id()}"
        try:
            request = make_request(request_id, method, params)
        except TransportError as exc:
            raise TransportError(f"failed to create request: {exc}") from exc
        stream_id = f"request-{request_id}"

        # Register before posting: a direct JSON reply is handled inside the post.
        box: queue.Queue = queue.Queue(maxsize=1)
        with self._lock:
            self._pending[request_id] = box
        try:
            logger.debug("Sending request: method=%s id=%s", method, request_id)
            try:
                self._post(request, stream_id)
            except TransportError as exc:
                logger.error("Failed to send HTTP request: %s", exc)
                raise TransportError(f"failed to send HTTP request: {exc}") from exc
            logger.debug("Request sent successfully, waiting for response to id=%s", request_id)
            try:
                response = box.get(timeout=self.options.request_timeout)
            except queue.Empty:
                raise TransportError(
                    f"waiting for response: timed out waiting for response to {request_id!r}"
                ) from None
        finally:
            with self._lock:
                self._pending.pop(request_id, None)

        error = response.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise TransportError(
                    f"JSON-RPC error: {error.get('message')} (code: {error.get('code')})"
                )
            raise TransportError(f"JSON-RPC error: {error}")
        return response.get("result")

    def send_notification(self, method: str, params: Any) -> None:
        try:
            notification = make_notification(method, params)
        except TransportError as exc:
            raise TransportError(f"failed to create notification: {exc}") from exc
        try:
            self._post(notification)
        except TransportError as exc:
            raise TransportError(f"failed to send HTTP notification: {exc}") from exc

    def send_batch(self, messages: list) -> None:
        """Post a list of JSON-RPC messages as one batch."""
        self._post(list(messages))

    def start(self) -> None:
        """Block until :meth:`stop`; the streams are served by background threads."""
        with self._state:
            if self._running:
                raise TransportError("transport already running")
            self._running = True
        try:
            self._stopped.wait()
        finally:
            with self._state:
                self._running = False

    def stop(self) -> None:
        """Close every open stream and release :meth:`start`."""
        self._stopped.set()
        with self._state:
            sources = list(self.event_sources.values())
            self.event_sources.clear()
        for source in sources:
            source.close()

    def send(self, data: bytes) -> None:
        """Always raises: messages travel as HTTP requests, not raw bytes."""
        raise TransportError("Send method not applicable for StreamableHTTPTransport")

    def set_receive_handler(self, handler: ReceiveHandler) -> None:
        """Set a handler that sees every raw stream payload before it is dispatched."""
        with self._state:
            self._receive_handler = handler

    def set_error_handler(self, handler: ErrorHandler) -> None:
        """Set a handler for errors met while reading and dispatching streams."""
        with self._state:
            self._error_handler = handler

    # Streams

    def _open_listener_connection(self) -> None:
        stream_id = f"listener-{time.time_ns()}"
        source = self._create_event_source(stream_id)
        with self._state:
            self.event_sources[stream_id] = source
        self._spawn_processor(source)

    def _create_event_source(self, stream_id: str) -> StreamableEventSource:
        with self._state:
            headers = {"Accept": "text/event-stream", **self.headers}
            session_id = self.session_id
            last_event_id = self.last_event_id
            shared_headers = self.headers
        if session_id:
            headers["MCP-Session-ID"] = session_id
        if last_event_id:
            headers["Last-Event-ID"] = last_event_id
        try:
            request = self.client.build_request("GET", self.endpoint, headers=headers)
            response = self.client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportError(f"failed to connect to event source: {exc}") from exc

        if response.status_code != 200:
            response.close()
            if response.status_code == 405:
                raise TransportError(
                    "server does not support GET for SSE (405 Method Not Allowed)"
                )
            raise TransportError(f"failed to connect to event source: HTTP {response.status_code}")
        if "text/event-stream" not in response.headers.get("Content-Type", ""):
            response.close()
            raise TransportError("server did not return text/event-stream content type")

        return StreamableEventSource(
            self.endpoint,
            shared_headers,
            self.client,
            stream_id=stream_id,
            last_event_id=last_event_id,
            connection=response,
        )

    def _adopt_stream(self, response: httpx.Response, stream_id: str) -> bool:
        with self._state:
            if stream_id in self.event_sources:
                return False
            source = StreamableEventSource(
                self.endpoint,
                self.headers,
                self.client,
                stream_id=stream_id,
                last_event_id=response.headers.get("Last-Event-ID", ""),
                connection=response,
            )
            self.event_sources[stream_id] = source
        self._spawn_processor(source)
        return True

    def _spawn_processor(self, source: StreamableEventSource) -> None:
        threading.Thread(
            target=self._process_event_source,
            args=(source,),
            name=f"mcp-stream-{source.stream_id}",
            daemon=True,
        ).start()

    def _forget(self, source: StreamableEventSource) -> None:
        with self._state:
            if self.event_sources.get(source.stream_id) is source:
                del self.event_sources[source.stream_id]

    def _process_event_source(self, source: StreamableEventSource) -> None:
        while not self._stopped.is_set():
            try:
                item = source.events.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            if item is None:
                self._forget(source)
                return
            if isinstance(item, Exception):
                logger.warning("Event source error: %s", item)
                self._report(item)
                if not source.connected:
                    self._forget(source)
                    if source.stream_id.startswith("listener") and not self._stopped.wait(
                        _RECONNECT_DELAY
                    ):
                        try:
                            self._open_listener_connection()
                        except TransportError as exc:
                            logger.warning("Failed to reopen listener connection: %s", exc)
                    return
                continue
            if item:
                self._dispatch(item)

    def _report(self, error: Exception) -> None:
        with self._state:
            handler = self._error_handler
        if handler is not None:
            handler(error)

    def _dispatch(self, data: bytes) -> None:
        with self._state:
            receive = self._receive_handler
        if receive is not None:
            receive(data)
        try:
            self._handle_message(data)
        except Exception as exc:  # handlers may raise anything; keep reading
            logger.warning("Error processing message: %s", exc)
            self._report(exc)

    # Posting and dispatch

    def _post(self, message: Any, stream_id: str = "") -> None:
        try:
            body = json.dumps(message)
        except (TypeError, ValueError) as exc:
            raise TransportError(f"failed to marshal message: {exc}") from exc

        with self._state:
            headers = {
                "Content-Type": "application/json",
                "Accept": "application/json, text/event-stream",
                **self.headers,
            }
            session_id = self.session_id
        if session_id:
            headers["MCP-Session-ID"] = session_id
        if stream_id:
            headers["MCP-Stream-ID"] = stream_id

        try:
            request = self.client.build_request(
                "POST", self.endpoint, content=body, headers=headers
            )
            response = self.client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportError(f"failed to send request: {exc}") from exc

        keep_open = False
        try:
            if response.status_code >= 400:
                try:
                    text = response.read().decode("utf-8", "replace")
                except httpx.HTTPError:
                    text = ""
                raise TransportError(f"HTTP error {response.status_code}: {text}")

            if not (is_request(message) or isinstance(message, list)):
                return

            content_type = response.headers.get("Content-Type", "")
            new_session = response.headers.get("MCP-Session-ID", "")
            if new_session and not session_id:
                self.set_session_id(new_session)

            if "text/event-stream" in content_type:
                if stream_id:
                    keep_open = self._adopt_stream(response, stream_id)
            elif "application/json" in content_type:
                try:
                    payload = response.read()
                except httpx.HTTPError as exc:
                    raise TransportError(f"failed to read response body: {exc}") from exc
                if payload:
                    try:
                        self._handle_message(payload)
                    except Exception as exc:
                        raise TransportError(f"failed to process message: {exc}") from exc
        finally:
            if not keep_open:
                response.close()

    def _handle_message(self, data: bytes) -> None:
        trimmed = data.strip()
        if not trimmed or trimmed == b"{}":
            return
        if trimmed.startswith(b"["):
            self._handle_batch(trimmed)
            return

        if is_request(data):
            try:
                response = self.handle_request(data)
            except TransportError as exc:
                raise TransportError(f"failed to handle request: {exc}") from exc
            try:
                self._post(response)
            except TransportError as exc:
                raise TransportError(f"failed to send response: {exc}") from exc
            return
        if is_response(data):
            self.handle_response(data)
            return
        if is_notification(data):
            try:
                self.handle_notification(data)
            except Exception as exc:
                raise TransportError(f"failed to handle notification: {exc}") from exc
            return

        sample = data.decode("utf-8", "replace")
        if len(sample) > _SAMPLE_LENGTH:
            sample = sample[:_SAMPLE_LENGTH] + "..."
        logger.debug("Received unrecognized message: %s", sample)
        try:
            json.loads(data)
        except ValueError as exc:
            raise TransportError(f"invalid JSON message: {exc}, data: {sample}") from exc
        raise TransportError(f"unknown message type: {sample}")

    def _handle_batch(self, data: bytes) -> None:
        try:
            messages = json.loads(data)
        except ValueError as exc:
            raise TransportError(f"failed to unmarshal batch: {exc}") from exc
        if not isinstance(messages, list):
            raise TransportError("failed to unmarshal batch: expected a JSON array")

        replies: list = []
        for item in messages:
            if not isinstance(item, dict):
                continue
            if is_request(item):
                try:
                    replies.append(self.handle_request(item))
                except Exception as exc:
                    replies.append(make_error_response(item.get("id"), INTERNAL_ERROR, str(exc)))
            elif is_response(item):
                self.handle_response(item)
            elif is_notification(item):
                try:
                    self.handle_notification(item)
                except Exception as exc:  # notification failures in a batch are ignored
                    logger.debug("Ignored notification error in batch: %s", exc)

        if replies:
            try:
                self._post(replies)
            except TransportError as exc:
                raise TransportError(f"failed to send batch responses: {exc}") from exc