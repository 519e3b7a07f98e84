"""Line-delimited JSON transport over standard input and output."""

from __future__ import annotations

import json
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, BinaryIO, Optional

from mcpsdk.transport import (
    BaseTransport,
    ErrorHandler,
    ReceiveHandler,
    Transport,
    TransportError,
)


class StdioTransport(BaseTransport, Transport):
    """Exchanges one JSON message per line over a pair of byte streams.

    By default the streams are the process's standard input and output, which
    suits tools connected to their peer through pipes.
    """

    def __init__(self, reader: Optional[BinaryIO] = None, writer: Optional[BinaryIO] = None) -> None:
        super().__init__()
        self._reader = reader if reader is not None else sys.stdin.buffer
        self._writer = writer if writer is not None else sys.stdout.buffer
        self._receive_handler: Optional[ReceiveHandler] = None
        self._error_handler: Optional[ErrorHandler] = None
        self._handler_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._done = threading.Event()
        self._wake: Optional[threading.Event] = None

    def initialize(self) -> None:
        """Nothing to prepare: the streams are already open."""

    def start(self) -> None:
        """Read and dispatch lines until end of input or :meth:`stop`."""
        if self._done.is_set():
            return
        wake = threading.Event()
        self._wake = wake
        executor = ThreadPoolExecutor(thread_name_prefix="stdio-message")

        def read_loop() -> None:
            try:
                while not self._done.is_set():
                    line = self._reader.readline()
                    if not line:
                        break
                    if isinstance(line, str):
                        line = line.encode("utf-8")
                    data = line[:-1] if line.endswith(b"\n") else line
                    if data.endswith(b"\r"):
                        data = data[:-1]
                    try:
                        executor.submit(self._process_message, bytes(data))
                    except RuntimeError:
                        break
            except (OSError, ValueError) as exc:
                self._handle_error(TransportError(f"error reading from stdin: {exc}"))
            finally:
                wake.set()

        threading.Thread(target=read_loop, name="stdio-reader", daemon=True).start()
        if self._done.is_set():
            wake.set()
        wake.wait()
        executor.shutdown(wait=True)

    def stop(self) -> None:
        """Stop reading and flush pending output."""
        self._done.set()
        if self._wake is not None:
            self._wake.set()
        try:
            self._writer.flush()
        except (OSError, ValueError) as exc:
            raise TransportError(f"error flushing writer: {exc}") from exc

    def send(self, data: Any) -> None:
        """Write ``data`` followed by a newline and flush."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        with self._write_lock:
            try:
                self._writer.write(data)
            except (OSError, ValueError) as exc:
                raise TransportError(f"error writing to stdout: {exc}") from exc
            try:
                self._writer.write(b"\n")
            except (OSError, ValueError) as exc:
                raise TransportError(f"error writing newline to stdout: {exc}") from exc
            try:
                self._writer.flush()
            except (OSError, ValueError) as exc:
                raise TransportError(f"error flushing stdout: {exc}") from exc

    def set_receive_handler(self, handler: ReceiveHandler) -> None:
        with self._handler_lock:
            self._receive_handler = handler

    def set_error_handler(self, handler: ErrorHandler) -> None:
        with self._handler_lock:
            self._error_handler = handler

    def generate_id(self) -> str:
        """Return an id taken from the current time in nanoseconds."""
        return str(time.time_ns())

    def send_request(self, method: str, params: Any) -> Any:
        """Always raises: this transport only carries raw lines via :meth:`send`."""
        raise TransportError("SendRequest is not supported by StdioTransport; use send()")

    def send_notification(self, method: str, params: Any) -> None:
        """Always raises: this transport only carries raw lines via :meth:`send`."""
        raise TransportError("SendNotification is not supported by StdioTransport; use send()")

    def _process_message(self, data: bytes) -> None:
        with self._handler_lock:
            handler = self._receive_handler
        if handler is None:
            self._handle_error(TransportError("received message but no handler is set"))
            return
        try:
            json.loads(data)
        except ValueError as exc:
            self._handle_error(TransportError(f"received invalid JSON: {exc}"))
            return
        handler(data)

    def _handle_error(self, error: Exception) -> None:
        with self._handler_lock:
            handler = self._error_handler
        if handler is not None:
            handler(error)