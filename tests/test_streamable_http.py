import json
import threading
import time

import httpx
import pytest

from mcpsdk.streamable_http import StreamableHTTPTransport
from mcpsdk.transport import Options, TransportError

ENDPOINT = "http://localhost/mcp"


def make_transport(handler, timeout=2.0):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return StreamableHTTPTransport(ENDPOINT, Options(request_timeout=timeout), client)


def json_reply(body, headers=None):
    all_headers = {"Content-Type": "application/json"}
    all_headers.update(headers or {})
    return httpx.Response(200, headers=all_headers, content=json.dumps(body).encode())


def test_send_request_with_direct_json_response():
    seen = []

    def handler(request):
        body = json.loads(request.content)
        seen.append(body)
        return json_reply({"jsonrpc": "2.0", "id": body["id"], "result": {"ok": True}})

    transport = make_transport(handler)
    result = transport.send_request("tools/list", {"category": "x"})
    assert result == {"ok": True}
    assert seen[0]["id"] == "streamable-http-1"
    assert seen[0]["method"] == "tools/list"
    assert seen[0]["params"] == {"category": "x"}


def test_request_id_prefix_is_used():
    seen = []

    def handler(request):
        body = json.loads(request.content)
        seen.append(body["id"])
        return json_reply({"jsonrpc": "2.0", "id": body["id"], "result": len(seen)})

    transport = make_transport(handler)
    transport.set_request_id_prefix("custom")
    results = [transport.send_request("ping", None), transport.send_request("ping", None)]
    assert results == [1, 2]
    assert seen == ["custom-1", "custom-2"]


def test_session_id_is_adopted_and_sent():
    sessions = []

    def handler(request):
        body = json.loads(request.content)
        sessions.append(request.headers.get("MCP-Session-ID"))
        return json_reply(
            {"jsonrpc": "2.0", "id": body["id"], "result": None},
            headers={"MCP-Session-ID": "session-abc"},
        )

    transport = make_transport(handler)
    transport.send_request("ping", None)
    transport.send_request("ping", None)
    assert sessions == [None, "session-abc"]
    assert transport.session_id == "session-abc"


def test_custom_headers_and_stream_id_are_sent():
    captured = {}

    def handler(request):
        body = json.loads(request.content)
        captured.update(request.headers)
        return json_reply({"jsonrpc": "2.0", "id": body["id"], "result": "pong"})

    transport = make_transport(handler)
    transport.set_header("X-Trace", "trace-1")
    result = transport.send_request("ping", None)
    assert result == "pong"
    assert captured["x-trace"] == "trace-1"
    assert captured["mcp-stream-id"] == "request-streamable-http-1"
    assert captured["content-type"] == "application/json"


def test_json_rpc_error_raises():
    def handler(request):
        body = json.loads(request.content)
        return json_reply(
            {"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "nope"}}
        )

    transport = make_transport(handler)
    with pytest.raises(TransportError, match="JSON-RPC error: nope"):
        transport.send_request("missing", None)


def test_http_error_status_raises():
    def handler(request):
        return httpx.Response(500, content=b"boom")

    transport = make_transport(handler)
    with pytest.raises(TransportError, match="HTTP error 500: boom"):
        transport.send_request("ping", None)


def test_empty_object_reply_is_ignored_and_request_times_out():
    def handler(request):
        return json_reply({})

    transport = make_transport(handler, timeout=0.2)
    with pytest.raises(TransportError, match="waiting for response"):
        transport.send_request("ping", None)


def test_unrecognized_reply_fails_to_process():
    def handler(request):
        return json_reply({"foo": 1})

    transport = make_transport(handler)
    with pytest.raises(TransportError, match="failed to process message"):
        transport.send_request("ping", None)


def test_response_delivered_over_event_stream():
    seen_payloads = []

    def handler(request):
        body = json.loads(request.content)
        payload = json.dumps({"jsonrpc": "2.0", "id": body["id"], "result": "done"})
        content = f"id: 1\ndata: {payload}\n\n".encode()
        return httpx.Response(200, headers={"Content-Type": "text/event-stream"}, content=content)

    transport = make_transport(handler)
    transport.set_receive_handler(seen_payloads.append)
    assert transport.send_request("work", {"n": 1}) == "done"
    assert len(seen_payloads) == 1
    assert json.loads(seen_payloads[0])["result"] == "done"


def test_send_notification_posts_without_stream_id():
    captured = []

    def handler(request):
        captured.append((json.loads(request.content), request.headers.get("MCP-Stream-ID")))
        return httpx.Response(202, headers={"MCP-Session-ID": "session-n"})

    transport = make_transport(handler)
    transport.send_notification("notifications/initialized", None)
    body, stream_id = captured[0]
    assert body == {"jsonrpc": "2.0", "method": "notifications/initialized"}
    assert stream_id is None
    # Session ids are only adopted from replies to requests and batches.
    assert not transport.session_id


def test_send_notification_error_is_wrapped():
    def handler(request):
        return httpx.Response(400, content=b"bad")

    transport = make_transport(handler)
    with pytest.raises(TransportError, match="failed to send HTTP notification"):
        transport.send_notification("x", None)


def test_batch_with_server_request_is_answered():
    posts = []

    def handler(request):
        posts.append(json.loads(request.content))
        if len(posts) == 1:
            return json_reply(
                [{"jsonrpc": "2.0", "id": 7, "method": "echo", "params": {"text": "hi"}}],
                headers={"MCP-Session-ID": "session-b"},
            )
        return httpx.Response(202)

    transport = make_transport(handler)
    transport.register_request_handler("echo", lambda params: params["text"])
    transport.send_batch([{"jsonrpc": "2.0", "method": "notifications/x"}])

    assert transport.session_id == "session-b"
    assert posts[0] == [{"jsonrpc": "2.0", "method": "notifications/x"}]
    assert posts[1] == [{"jsonrpc": "2.0", "id": 7, "result": "hi"}]


def test_batch_with_failing_handler_yields_error_reply():
    posts = []

    def handler(request):
        posts.append(json.loads(request.content))
        if len(posts) == 1:
            return json_reply(
                [{"jsonrpc": "2.0", "id": 3, "method": "unknown"}],
                headers={"MCP-Session-ID": "session-c"},
            )
        return httpx.Response(202)

    transport = make_transport(handler)
    transport.send_batch([])
    assert transport.session_id == "session-c"
    reply = posts[1][0]
    assert reply["id"] == 3
    assert reply["error"]["code"] == -32601


def test_send_is_not_applicable():
    transport = make_transport(lambda request: httpx.Response(200))
    with pytest.raises(TransportError, match="not applicable"):
        transport.send(b"{}")


def test_start_blocks_until_stop_and_rejects_second_start():
    transport = make_transport(lambda request: httpx.Response(200))

    def run():
        try:
            transport.start()
        except TransportError:
            pass

    first = threading.Thread(target=run)
    first.start()
    time.sleep(0.1)
    with pytest.raises(TransportError, match="transport already running"):
        transport.start()
    assert first.is_alive()
    transport.stop()
    first.join(timeout=2)
    assert not first.is_alive()


def test_initialize_opens_listener_with_headers():
    captured = {}
    opened = threading.Event()

    def handler(request):
        if request.method == "GET":
            captured.update(request.headers)
            opened.set()
            return httpx.Response(405)
        return httpx.Response(202)

    transport = make_transport(handler)
    transport.set_session_id("session-1")
    transport.initialize()
    assert opened.wait(2)
    transport.stop()
    assert captured["accept"] == "application/json, text/event-stream"
    assert captured["mcp-session-id"] == "session-1"
    assert transport.event_sources == {}