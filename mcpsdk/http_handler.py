"""WSGI application that accepts MCP JSON-RPC messages over HTTP.

POST carries requests and notifications, GET opens a Server-Sent Events
stream kept alive with periodic comments, OPTIONS answers CORS preflight
requests and DELETE ends a session. Requests are passed on to the
configured transport and its answer is returned as the JSON-RPC response.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from http import HTTPStatus
from typing import Any, Optional

from mcpsdk.transport import (
    INTERNAL_ERROR,
    Transport,
    TransportError,
    is_notification,
    is_request,
    make_error_response,
    make_response,
)

logger = logging.getLogger(__name__)

ALLOW_METHODS = "POST, GET, OPTIONS, DELETE"
ALLOW_HEADERS = "Content-Type, MCP-Session-ID, Last-Event-ID"
PREFLIGHT_MAX_AGE = "86400"
DEFAULT_PING_INTERVAL = 15.0

StartResponse = Callable[..., Any]


def _status(code: HTTPStatus) -> str:
    return f"{code.value} {code.phrase}"


class HTTPHandler:
    """WSGI entry point for an MCP server reachable over HTTP."""

    def __init__(
        self,
        transport: Optional[Transport] = None,
        allowed_origins: Optional[Iterable[str]] = None,
        ping_interval: float = DEFAULT_PING_INTERVAL,
    ) -> None:
        self._lock = threading.Lock()
        self._transport = transport
        # Every origin is allowed unless told otherwise; restrict this in production.
        self._allowed_origins = list(allowed_origins) if allowed_origins is not None else ["*"]
        self.ping_interval = ping_interval

    # Configuration

    def set_transport(self, transport: Transport) -> None:
        with self._lock:
            self._transport = transport

    def set_allowed_origins(self, origins: Iterable[str]) -> None:
        with self._lock:
            self._allowed_origins = list(origins)

    def add_allowed_origin(self, origin: str) -> None:
        with self._lock:
            self._allowed_origins.append(origin)

    def is_origin_allowed(self, origin: str) -> bool:
        """Tell whether requests from ``origin`` are accepted.

        A missing origin is accepted, as some clients do not send one.
        """
        if not origin:
            return True
        with self._lock:
            origins = list(self._allowed_origins)
        return any(allowed in ("*", origin) for allowed in origins)

    # WSGI

    def __call__(self, environ: dict, start_response: StartResponse) -> Iterable[bytes]:
        origin = environ.get("HTTP_ORIGIN", "")
        if not self.is_origin_allowed(origin):
            return self._reply(start_response, HTTPStatus.FORBIDDEN, b"Origin not allowed")

        method = environ.get("REQUEST_METHOD", "GET").upper()
        if method == "POST":
            return self._handle_post(environ, start_response, origin)
        if method == "GET":
            return self._handle_get(start_response, origin)
        if method == "OPTIONS":
            return self._handle_options(start_response, origin)
        if method == "DELETE":
            return self._handle_delete(environ, start_response)
        return self._reply(start_response, HTTPStatus.METHOD_NOT_ALLOWED, b"Method not allowed")

    @staticmethod
    def _reply(
        start_response: StartResponse,
        status: HTTPStatus,
        body: bytes = b"",
        headers: Iterable[tuple[str, str]] = (),
    ) -> list[bytes]:
        header_list = list(headers)
        if body and not any(name.lower() == "content-type" for name, _ in header_list):
            header_list.append(("Content-Type", "text/plain; charset=utf-8"))
        header_list.append(("Content-Length", str(len(body))))
        start_response(_status(status), header_list)
        return [body]

    @staticmethod
    def _cors(origin: str) -> list[tuple[str, str]]:
        return [
            ("Access-Control-Allow-Origin", origin),
            ("Access-Control-Allow-Methods", ALLOW_METHODS),
            ("Access-Control-Allow-Headers", ALLOW_HEADERS),
        ]

    @staticmethod
    def _read_body(environ: dict) -> bytes:
        stream = environ.get("wsgi.input")
        if stream is None:
            return b""
        length = environ.get("CONTENT_LENGTH", "")
        if length:
            return stream.read(int(length))
        return stream.read()

    def _current_transport(self) -> Optional[Transport]:
        with self._lock:
            return self._transport

    def _handle_post(
        self, environ: dict, start_response: StartResponse, origin: str
    ) -> list[bytes]:
        cors = self._cors(origin)
        try:
            body = self._read_body(environ)
        except (OSError, ValueError) as exc:
            message = f"Error reading request body: {exc}".encode()
            return self._reply(start_response, HTTPStatus.BAD_REQUEST, message, cors)

        transport = self._current_transport()
        if transport is None:
            return self._reply(
                start_response, HTTPStatus.INTERNAL_SERVER_ERROR, b"Transport not set", cors
            )

        if is_request(body):
            try:
                request = json.loads(body)
            except ValueError as exc:
                message = f"Invalid JSON-RPC request: {exc}".encode()
                return self._reply(start_response, HTTPStatus.BAD_REQUEST, message, cors)
            return self._answer_request(start_response, transport, request, cors)

        if is_notification(body):
            try:
                notification = json.loads(body)
            except ValueError as exc:
                message = f"Invalid JSON-RPC notification: {exc}".encode()
                return self._reply(start_response, HTTPStatus.BAD_REQUEST, message, cors)
            self._forward_notification(transport, notification)
            return self._reply(start_response, HTTPStatus.ACCEPTED, b"", cors)

        return self._reply(
            start_response, HTTPStatus.BAD_REQUEST, b"Invalid JSON-RPC message", cors
        )

    def _answer_request(
        self,
        start_response: StartResponse,
        transport: Transport,
        request: dict,
        cors: list[tuple[str, str]],
    ) -> list[bytes]:
        request_id = request.get("id")
        try:
            try:
                result = transport.send_request(request.get("method", ""), request.get("params"))
            except Exception as exc:  # any transport failure becomes a JSON-RPC error
                response = make_error_response(request_id, INTERNAL_ERROR, str(exc))
            else:
                response = make_response(request_id, result)
        except (TransportError, TypeError, ValueError) as exc:
            message = f"Error creating response: {exc}".encode()
            return self._reply(start_response, HTTPStatus.INTERNAL_SERVER_ERROR, message, cors)

        try:
            payload = json.dumps(response).encode("utf-8")
        except (TypeError, ValueError) as exc:
            message = f"Error marshaling response: {exc}".encode()
            return self._reply(start_response, HTTPStatus.INTERNAL_SERVER_ERROR, message, cors)
        headers = [*cors, ("Content-Type", "application/json")]
        return self._reply(start_response, HTTPStatus.OK, payload, headers)

    @staticmethod
    def _forward_notification(transport: Transport, notification: dict) -> None:
        def forward() -> None:
            try:
                transport.send_notification(
                    notification.get("method", ""), notification.get("params")
                )
            except Exception as exc:  # nobody waits for a notification's outcome
                logger.debug("Forwarding notification failed: %s", exc)

        threading.Thread(target=forward, name="mcp-notification", daemon=True).start()

    def _handle_options(self, start_response: StartResponse, origin: str) -> list[bytes]:
        headers = [*self._cors(origin), ("Access-Control-Max-Age", PREFLIGHT_MAX_AGE)]
        start_response(_status(HTTPStatus.NO_CONTENT), headers)
        return []

    def _handle_delete(self, environ: dict, start_response: StartResponse) -> list[bytes]:
        if not environ.get("HTTP_MCP_SESSION_ID", ""):
            return self._reply(
                start_response, HTTPStatus.BAD_REQUEST, b"Missing MCP-Session-ID header"
            )
        return self._reply(start_response, HTTPStatus.OK)

    def _handle_get(self, start_response: StartResponse, origin: str) -> Iterator[bytes]:
        headers = [
            ("Content-Type", "text/event-stream"),
            ("Cache-Control", "no-cache"),
            ("Access-Control-Allow-Origin", origin),
        ]
        start_response(_status(HTTPStatus.OK), headers)
        return self._event_stream()

    def _event_stream(self) -> Iterator[bytes]:
        yield b"event: ready\ndata: {}\n\n"
        while True:
            time.sleep(self.ping_interval)
            yield b": ping\n\n"