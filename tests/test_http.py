import json
import threading

import httpx
import pytest

from mcpsdk.http import EventSource, HTTPTransport, iter_sse_data
from mcpsdk.transport import Options, TransportError, make_notification, make_response

URL = "http://mcp.test"


def client_for(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def sse(*payloads):
    body = "".join(f"data: {json.dumps(p)}\n\n" for p in payloads)
    return httpx.Response(200, content=body.encode(), headers={"Content-Type": "text/event-stream"})


def run_in_thread(target):
    errors = []

    def wrapper():
        try:
            target()
        except Exception as exc:
            errors.append(exc)

    thread = threading.Thread(target=wrapper, daemon=True)
    thread.start()
    return thread, errors


def test_iter_sse_data_yields_complete_events():
    lines = ['data: {"a": 1}', "", ": comment", "", "data: [1,", "data: 2]", ""]
    events = list(iter_sse_data(lines))
    assert len(events) == 2
    assert json.loads(events[0]) == {"a": 1}
    assert json.loads(events[1]) == [1, 2]


def test_iter_sse_data_skips_comment_payloads_and_accepts_bytes():
    lines = [b"data::skip\r\n", b"\r\n", b'data: {"b": 2}\r\n', b"\r\n"]
    events = list(iter_sse_data(lines))
    assert len(events) == 1
    assert json.loads(events[0]) == {"b": 2}


def test_iter_sse_data_drops_unterminated_event():
    assert list(iter_sse_data(["data: 1"])) == []


def test_event_source_sends_headers_and_queues_events():
    seen = {}

    def handler(request):
        seen["accept"] = request.headers["accept"]
        seen["custom"] = request.headers["x-client"]
        return sse({"x": 1})

    source = EventSource(f"{URL}/events", {"X-Client": "tests"}, client_for(handler))
    source.connect()
    first = source.events.get(timeout=2)
    second = source.events.get(timeout=2)
    source.close()

    assert json.loads(first) == {"x": 1}
    assert isinstance(second, TransportError)
    assert "read error" in str(second)
    assert seen == {"accept": "text/event-stream", "custom": "tests"}


def test_event_source_rejects_bad_status():
    source = EventSource(f"{URL}/events", {}, client_for(lambda r: httpx.Response(404)))
    with pytest.raises(TransportError, match="unexpected status code: 404"):
        source.connect()
    assert not source.connected


def test_event_source_wraps_network_errors():
    def handler(request):
        raise httpx.ConnectError("boom")

    source = EventSource(f"{URL}/events", {}, client_for(handler))
    with pytest.raises(TransportError, match="connection failed"):
        source.connect()


def test_send_notification_posts_json_with_headers():
    posted = []

    def handler(request):
        posted.append(request)
        return httpx.Response(200)

    transport = HTTPTransport(URL, client=client_for(handler))
    transport.set_header("X-Client", "tests")
    transport.send_notification("notifications/test", {"k": "v"})

    assert len(posted) == 1
    request = posted[0]
    assert request.method == "POST"
    assert json.loads(request.content) == make_notification("notifications/test", {"k": "v"})
    assert request.headers["content-type"] == "application/json"
    assert request.headers["x-client"] == "tests"


def test_http_error_status_includes_body():
    transport = HTTPTransport(URL, client=client_for(lambda r: httpx.Response(500, text="bad")))
    with pytest.raises(TransportError, match="HTTP error 500: bad"):
        transport.send_notification("x", None)


def test_send_request_returns_result_delivered_later():
    ids = []

    def handler(request):
        body = json.loads(request.content)
        ids.append(body["id"])
        reply = {"jsonrpc": "2.0", "id": body["id"], "result": {"ok": True}}
        threading.Timer(0.05, transport.handle_response, args=(reply,)).start()
        return httpx.Response(200)

    transport = HTTPTransport(URL, Options(request_timeout=2.0), client_for(handler))
    assert transport.send_request("tools/list", {}) == {"ok": True}
    transport.set_request_id_prefix("custom")
    assert transport.send_request("tools/list", {}) == {"ok": True}

    assert ids[0].startswith("http-")
    assert ids[1].startswith("custom-")
    assert ids[0] != ids[1]


def test_send_request_raises_on_error_response():
    def handler(request):
        body = json.loads(request.content)
        reply = {"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "nope"}}
        threading.Timer(0.05, transport.handle_response, args=(reply,)).start()
        return httpx.Response(200)

    transport = HTTPTransport(URL, Options(request_timeout=2.0), client_for(handler))
    with pytest.raises(TransportError, match="server error: nope"):
        transport.send_request("missing", None)


def test_send_request_times_out():
    transport = HTTPTransport(
        URL, Options(request_timeout=0.05), client_for(lambda r: httpx.Response(200))
    )
    with pytest.raises(TransportError, match="failed waiting for response"):
        transport.send_request("slow", None)


def test_send_request_reports_failed_post():
    transport = HTTPTransport(URL, client=client_for(lambda r: httpx.Response(503, text="down")))
    with pytest.raises(TransportError, match="failed to send request"):
        transport.send_request("x", None)


def test_send_is_not_applicable():
    transport = HTTPTransport(URL, client=client_for(lambda r: httpx.Response(200)))
    with pytest.raises(TransportError, match="Send method not applicable"):
        transport.send(b"{}")


def test_start_requires_initialize():
    transport = HTTPTransport(URL, client=client_for(lambda r: httpx.Response(200)))
    with pytest.raises(TransportError, match="not initialized"):
        transport.start()


def test_start_dispatches_notifications_until_stopped():
    paths = []
    received = []
    raw = []

    def handler(request):
        paths.append(request.url.path)
        return sse({"jsonrpc": "2.0", "method": "note", "params": {"n": 1}})

    transport = HTTPTransport(URL, client=client_for(handler))

    def on_note(params):
        received.append(params)
        transport.stop()

    transport.register_notification_handler("note", on_note)
    transport.set_receive_handler(raw.append)
    transport.initialize()
    thread, errors = run_in_thread(transport.start)
    thread.join(5)

    assert not thread.is_alive()
    assert errors == []
    assert received == [{"n": 1}]
    assert json.loads(raw[0])["method"] == "note"
    assert paths[0] == "/events"


def test_start_answers_requests_by_post():
    posted = []

    def handler(request):
        if request.method == "GET":
            return sse({"jsonrpc": "2.0", "id": 7, "method": "ping"})
        posted.append(json.loads(request.content))
        transport.stop()
        return httpx.Response(200)

    transport = HTTPTransport(URL, client=client_for(handler))
    transport.register_request_handler("ping", lambda params: {"pong": True})
    transport.initialize()
    thread, errors = run_in_thread(transport.start)
    thread.join(5)

    assert not thread.is_alive()
    assert errors == []
    assert posted == [make_response(7, {"pong": True})]


def test_unknown_messages_reach_error_handler():
    reported = []

    def handler(request):
        return sse({"foo": 1})

    transport = HTTPTransport(URL, client=client_for(handler))

    def on_error(exc):
        reported.append(exc)
        transport.stop()

    transport.set_error_handler(on_error)
    transport.initialize()
    thread, errors = run_in_thread(transport.start)
    thread.join(5)

    assert not thread.is_alive()
    assert errors == []
    assert len(reported) == 1
    assert isinstance(reported[0], TransportError)
    assert "unknown message type" in str(reported[0])


def test_start_fails_when_event_stream_is_refused():
    transport = HTTPTransport(URL, client=client_for(lambda r: httpx.Response(404)))
    transport.initialize()
    with pytest.raises(TransportError, match="failed to connect to event source"):
        transport.start()