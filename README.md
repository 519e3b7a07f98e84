# mcpsdk

Building blocks for Model Context Protocol (MCP) programs: JSON-RPC message
helpers, a transport layer with handler dispatch, three transports (stdio,
HTTP with Server-Sent Events, streamable HTTP), in-memory capability
providers, and a WSGI application for accepting MCP messages over HTTP.

## Installation

```
pip install mcpsdk
```

## Modules

- `mcpsdk.transport`: the abstract `Transport` interface and `BaseTransport`,
  which keeps request, notification and progress handler tables, hands out
  request numbers (`get_next_id`, `generate_id`), dispatches messages
  (`handle_request`, `handle_notification`, `handle_response`) and waits for
  replies (`wait_for_response`, raising `TimeoutError`). Also the JSON-RPC
  helpers `make_request`, `make_response`, `make_error_response`,
  `make_notification`, `is_request`, `is_response` and `is_notification`,
  the `Options` dataclass (`request_timeout`, 30 seconds by default) and the
  exceptions `TransportError` and `UnsupportedMethodError`.
- `mcpsdk.stdio`: `StdioTransport`, one JSON message per line over a pair of
  byte streams (standard input and output by default). `start()` reads lines,
  checks each is valid JSON and passes the raw bytes to the receive handler;
  `send()` writes a line. Its `send_request` and `send_notification` always
  raise `TransportError`.
- `mcpsdk.http`: `HTTPTransport`, which posts messages to a server URL and
  reads messages from `<url>/events` through `EventSource`; `iter_sse_data`
  turns SSE lines into event payloads.
- `mcpsdk.streaming_events`: `parse_sse_events`, yielding `SSEEvent` values
  (`data`, `id`, `event`), and `StreamableEventSource`, an event-stream client
  that remembers the last event id so it can resume.
- `mcpsdk.streamable_http`: `StreamableHTTPTransport`, with a server-issued
  session id (`MCP-Session-ID`), direct JSON or per-request SSE replies, a
  background listener stream and JSON-RPC batches (`send_batch`).
- `mcpsdk.providers`: provider interfaces (`ToolsProvider`,
  `ResourcesProvider`, `PromptsProvider`, `CompletionProvider`,
  `RootsProvider`) and in-memory implementations (`BaseToolsProvider`,
  `BaseResourcesProvider`, `BasePromptsProvider`, `BaseRootsProvider`).
  Listing returns a `Page` (or a `ResourcePage`) of at most the requested
  limit, 50 when none is given; `get_prompt` raises `NotFoundError`.
- `mcpsdk.http_handler`: `HTTPHandler`, a WSGI application with origin checks
  and CORS headers.
- `mcpsdk.jsonschema`: `generate_json_schema`, `validate_against_schema`,
  `merge_json_objects` and `parse_json`, raising `JSONError`.

## Example: a stdio endpoint

`StdioTransport` delivers raw lines; dispatching them is up to you:

```python
import json

from mcpsdk.stdio import StdioTransport
from mcpsdk.transport import is_request

transport = StdioTransport()
transport.register_request_handler("ping", lambda params: {"ok": True})


def on_message(data: bytes) -> None:
    if is_request(data):
        transport.send(json.dumps(transport.handle_request(data)))


transport.set_receive_handler(on_message)
transport.start()  # blocks until input ends or stop() is called
```

## Example: providers

```python
from mcpsdk.providers import BaseToolsProvider, PaginationParams

tools = BaseToolsProvider()
tools.register_tool({"name": "hello", "categories": ["demo"]})

page = tools.list_tools("demo", PaginationParams(limit=10))
print(page.total, page.items, page.has_more)
```

A registered tool with a callable `handler` is run by `call_tool`, which
returns `{"result": ...}`; tools without one return a fixed
"Tool execution not implemented" message.

## Serving over HTTP

`HTTPHandler` is a WSGI callable. POST requests are passed to the
transport's `send_request` and its result is returned as the JSON-RPC
response; notifications are forwarded with `send_notification` and answered
with 202. GET opens an event stream that sends a `ready` event and then a
ping comment every `ping_interval` seconds (15 by default). OPTIONS answers
CORS preflight requests, and DELETE requires an `MCP-Session-ID` header.

```python
from wsgiref.simple_server import make_server

from mcpsdk.http_handler import HTTPHandler

handler = HTTPHandler()
handler.set_allowed_origins(["http://localhost:3000"])
handler.set_transport(transport)  # any Transport
make_server("localhost", 8080, handler).serve_forever()
```

All origins are allowed until `set_allowed_origins` is called; a request
without an `Origin` header is always accepted.

## What this package does not do

There is no server object that registers the MCP methods (`initialize`,
tool, resource and prompt listing, and so on) on a transport and answers
them from the providers: you register request and notification handlers on
the transport yourself and call the providers from them. The package has no
command-line program.

## Running the tests

```
pip install "mcpsdk[test]"
pytest
```