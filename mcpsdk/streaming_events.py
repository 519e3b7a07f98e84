"""Server-Sent Events parsing and a resumable event-stream client."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from mcpsdk.transport import TransportError

logger = logging.getLogger(__name__)

_QUEUE_SIZE = 100
_PUT_INTERVAL = 0.1

Line = Union[str, bytes, bytearray]


@dataclass(frozen=True)
class SSEEvent:
    """One dispatched Server-Sent Event."""

    data: str
    id: str = ""
    event: str = ""


def parse_sse_events(lines: Iterable[Line]) -> Iterator[SSEEvent]:
    """Yield the events described by a stream of SSE lines.

    Lines starting with ``:`` are comments. ``data:`` values are trimmed and
    joined with newlines. A blank line ends an event; an event without data is
    not yielded, and its ``id`` and ``event`` fields carry over to the next.
    """
    data = event_id = event_type = ""
    for raw in lines:
        line = raw.decode("utf-8", "replace") if isinstance(raw, (bytes, bytearray)) else raw
        line = line.removesuffix("\n").removesuffix("\r")

        if line.startswith(":"):
            continue
        if not line:
            if data:
                yield SSEEvent(data=data, id=event_id, event=event_type)
                data = event_id = event_type = ""
            continue

        if line.startswith("data:"):
            value = line[5:].strip()
            data = value if not data else f"{data}\n{value}"
        elif line.startswith("id:"):
            event_id = line[3:].strip()
        elif line.startswith("event:"):
            event_type = line[6:].strip()
        # "retry:" and unknown fields are ignored.


def _put(box: queue.Queue, item: Any, closed: threading.Event) -> bool:
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


class StreamableEventSource:
    """Event-stream client that remembers the last event id so it can resume.

    Event data is put on :attr:`events` as bytes and read errors as
    exceptions; whenever reading ends a ``TransportError("disconnected")``
    follows. :meth:`close` sets :attr:`closed` and queues ``None``. An event of
    type ``close`` from the server closes the source. Passing an open
    ``connection`` starts reading from it at once.
    """

    def __init__(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        client: Optional[httpx.Client] = None,
        *,
        stream_id: str = "",
        last_event_id: str = "",
        connection: Optional[httpx.Response] = None,
    ) -> None:
        self.url = url
        self.headers = headers if headers is not None else {}
        self.client = client if client is not None else httpx.Client()
        self.stream_id = stream_id
        self.last_event_id = last_event_id
        self.events: queue.Queue = queue.Queue(maxsize=_QUEUE_SIZE)
        self.closed = threading.Event()
        self.connection: Optional[httpx.Response] = None
        self._lock = threading.Lock()
        self._connected = threading.Event()
        if connection is not None:
            with self._lock:
                self._attach(connection)

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def connect(self) -> None:
        """Open the stream, resuming after :attr:`last_event_id` if set."""
        with self._lock:
            if self._connected.is_set():
                return
            headers = {"Accept": "text/event-stream", **dict(self.headers)}
            if self.last_event_id:
                headers["Last-Event-ID"] = self.last_event_id
            try:
                request = self.client.build_request("GET", self.url, headers=headers)
                response = self.client.send(request, stream=True)
            except httpx.HTTPError as exc:
                raise TransportError(f"failed to connect: {exc}") from exc
            if response.status_code != 200:
                response.close()
                raise TransportError(f"failed to connect: HTTP {response.status_code}")
            self._attach(response)

    def close(self) -> None:
        """Close the stream; does nothing if it is not open."""
        with self._lock:
            if not self._connected.is_set():
                return
            if self.connection is not None:
                try:
                    self.connection.close()
                except (httpx.HTTPError, OSError) as exc:
                    logger.warning("Error closing connection body: %s", exc)
            self._connected.clear()
            self.closed.set()
        _offer(self.events, None)

    def _attach(self, response: httpx.Response) -> None:
        self.connection = response
        self.closed.clear()
        self._connected.set()
        threading.Thread(
            target=self._read_events,
            args=(response,),
            name=f"sse-reader-{self.stream_id}",
            daemon=True,
        ).start()

    def _read_events(self, response: httpx.Response) -> None:
        try:
            for event in parse_sse_events(response.iter_lines()):
                if event.id:
                    self.last_event_id = event.id
                if event.event == "close":
                    self.close()
                    return
                if not _put(self.events, event.data.encode("utf-8"), self.closed):
                    return
        except (httpx.HTTPError, httpx.StreamError, OSError) as exc:
            if not self.closed.is_set():
                _offer(self.events, TransportError(str(exc)))
        finally:
            with self._lock:
                if self.connection is response:
                    self._connected.clear()
            try:
                response.close()
            except (httpx.HTTPError, OSError) as exc:
                logger.warning("Error closing connection body: %s", exc)
            _offer(self.events, TransportError("disconnected"))