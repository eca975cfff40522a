import json
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlparse

import pytest

from dirreconciler.core.errors import AlreadyExists, FatalError, NotFound, TransientError
from dirreconciler.core.gateway import HttpGateway, classify, parse_json


class _Handler(BaseHTTPRequestHandler):
    # class-level counters so tests can assert retries/calls
    calls = {"ok": 0, "flaky": 0, "missing": 0, "conflict": 0, "bad": 0, "down": 0, "code": 0, "post": 0}
    seen_headers = {}

    protocol_version = "HTTP/1.1"

    def _send_json(self, status: int, obj) -> None:
        raw = json.dumps(obj).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def do_GET(self):  # noqa: N802
        path = urlparse(self.path).path
        if self.headers.get("x-api-key") != "TEST":
            self._send_json(401, {"message": "unauthorized"})
            return
        _Handler.seen_headers = dict(self.headers)

        if path == "/api/v2/ok":
            _Handler.calls["ok"] += 1
            self._send_json(200, {"ok": True})
        elif path == "/api/v2/flaky":
            _Handler.calls["flaky"] += 1
            # first 2 attempts 503, then 200
            if _Handler.calls["flaky"] < 3:
                self._send_json(503, {"message": "try later"})
            else:
                self._send_json(200, {"ok": "finally"})
        elif path == "/api/v2/missing":
            _Handler.calls["missing"] += 1
            self._send_json(404, {"message": "usergroup not found"})
        elif path == "/api/v2/conflict":
            _Handler.calls["conflict"] += 1
            self._send_json(409, {"error": "already exists"})
        elif path == "/api/v2/bad":
            _Handler.calls["bad"] += 1
            self._send_json(400, {"message": "name is required"})
        elif path == "/api/v2/down":
            _Handler.calls["down"] += 1
            self._send_json(500, {"message": "boom"})
        elif path == "/api/v2/code":
            _Handler.calls["code"] += 1
            self._send_json(400, {"code": "NOT_FOUND", "message": "no such member"})
        else:
            self._send_json(404, {"message": "not found"})

    def do_POST(self):  # noqa: N802
        length = int(self.headers.get("Content-Length", "0") or 0)
        body = json.loads(self.rfile.read(length) or b"{}")
        _Handler.calls["post"] += 1
        _Handler.last_body = body
        self.send_response(204)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, fmt, *args):
        return


@pytest.fixture
def server():
    for k in _Handler.calls:
        _Handler.calls[k] = 0
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    th = threading.Thread(target=srv.serve_forever, daemon=True)
    th.start()
    try:
        yield f"http://{srv.server_address[0]}:{srv.server_address[1]}"
    finally:
        srv.shutdown()
        th.join(timeout=1.0)


def _gw(base, **kw):
    kw.setdefault("retries", 3)
    kw.setdefault("backoff_base_sec", 0.01)
    kw.setdefault("timeout_sec", 2)
    return HttpGateway(base, "TEST", **kw)


def test_get_json_sends_auth_headers(server):
    gw = _gw(server, org_id="org42")
    assert gw.json("GET", "/api/v2/ok") == {"ok": True}
    headers = {k.lower(): v for k, v in _Handler.seen_headers.items()}
    assert headers["x-api-key"] == "TEST"
    assert headers["x-org-id"] == "org42"
    assert headers["accept"] == "application/json"


def test_retries_on_5xx_then_succeeds(server):
    gw = _gw(server)
    assert gw.json("GET", "/api/v2/flaky") == {"ok": "finally"}
    assert _Handler.calls["flaky"] == 3


def test_404_maps_to_not_found_without_retry(server):
    gw = _gw(server)
    with pytest.raises(NotFound) as ei:
        gw.request("GET", "/api/v2/missing")
    assert ei.value.status == 404
    assert "usergroup not found" in str(ei.value)
    assert _Handler.calls["missing"] == 1


def test_not_found_body_code_maps_to_not_found(server):
    with pytest.raises(NotFound):
        _gw(server).request("GET", "/api/v2/code")


def test_409_maps_to_already_exists(server):
    with pytest.raises(AlreadyExists) as ei:
        _gw(server).request("GET", "/api/v2/conflict")
    assert ei.value.message == "already exists"
    assert _Handler.calls["conflict"] == 1


def test_other_4xx_is_fatal_and_not_retried(server):
    with pytest.raises(FatalError) as ei:
        _gw(server).request("GET", "/api/v2/bad")
    assert ei.value.message == "name is required"
    assert _Handler.calls["bad"] == 1


def test_persistent_5xx_is_transient_after_retries(server):
    with pytest.raises(TransientError):
        _gw(server, retries=1).request("GET", "/api/v2/down")
    assert _Handler.calls["down"] == 2


def test_post_serialises_body_and_accepts_empty_response(server):
    gw = _gw(server)
    raw = gw.request("POST", "/api/v2/usergroups/g1/members", {"op": "add", "type": "user", "id": "u1"})
    assert raw == b""
    assert _Handler.last_body == {"op": "add", "type": "user", "id": "u1"}


def test_network_error_is_transient():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    gw = HttpGateway(f"http://127.0.0.1:{port}", "TEST", retries=0, timeout_sec=1)
    with pytest.raises(TransientError):
        gw.request("GET", "/api/v2/ok")


def test_classify_and_parse_helpers():
    assert isinstance(classify(429, "u", ""), TransientError)
    assert isinstance(classify(403, "u", "not json"), FatalError)
    assert classify(403, "u", "").message == "API request failed with status code 403"
    assert parse_json(b"") == {}
    with pytest.raises(FatalError):
        parse_json(b"<html>")


def test_base_url_is_required():
    with pytest.raises(ValueError):
        HttpGateway("", "TEST")
