import contextlib
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from promxy.client import MAX_ERR_MSG_LEN, Client, ClientConfig, RecoverableError
from promxy.labels import Label
from promxy.prompb import (
    Query,
    QueryResult,
    ReadRequest,
    ReadResponse,
    Sample,
    TimeSeries,
    WriteRequest,
)
from promxy.snappy import compress, decompress

LONG_ERR_MESSAGE = "error message" * MAX_ERR_MSG_LEN


@contextlib.contextmanager
def _serve(status, body=b""):
    received = []

    class Handler(BaseHTTPRequestHandler):
        def do_POST(self):
            length = int(self.headers.get("Content-Length", 0))
            received.append((self.headers, self.rfile.read(length)))
            self.send_response(status)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}/api", received
    finally:
        server.shutdown()
        server.server_close()


def _client(url):
    return Client(0, ClientConfig(url=url, timeout=5.0))


def test_store_success():
    with _serve(200, (LONG_ERR_MESSAGE + "\n").encode()) as (url, _):
        assert _client(url).store(WriteRequest()) is None


@pytest.mark.parametrize(
    "code, phrase",
    [(300, "Multiple Choices"), (404, "Not Found")],
)
def test_store_non_recoverable_status(code, phrase):
    with _serve(code, (LONG_ERR_MESSAGE + "\n").encode()) as (url, _):
        with pytest.raises(RuntimeError) as excinfo:
            _client(url).store(WriteRequest())
    assert not isinstance(excinfo.value, RecoverableError)
    expected = f"server returned HTTP status {code} {phrase}: " + LONG_ERR_MESSAGE[:MAX_ERR_MSG_LEN]
    assert str(excinfo.value) == expected


def test_store_server_error_is_recoverable():
    with _serve(500, (LONG_ERR_MESSAGE + "\n").encode()) as (url, _):
        with pytest.raises(RecoverableError) as excinfo:
            _client(url).store(WriteRequest())
    expected = (
        "server returned HTTP status 500 Internal Server Error: "
        + LONG_ERR_MESSAGE[:MAX_ERR_MSG_LEN]
    )
    assert str(excinfo.value) == expected


def test_store_sends_snappy_protobuf():
    request = WriteRequest(
        timeseries=[TimeSeries(labels=[Label("__name__", "up")], samples=[Sample(2.5, 7)])]
    )
    with _serve(200) as (url, received):
        _client(url).store(request)
    headers, body = received[0]
    assert headers.get("Content-Encoding") == "snappy"
    assert headers.get("Content-Type") == "application/x-protobuf"
    assert headers.get("X-Prometheus-Remote-Write-Version") == "0.1.0"
    assert WriteRequest.from_bytes(decompress(body)) == request


def test_store_network_error_is_recoverable():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    with pytest.raises(RecoverableError):
        _client(f"http://127.0.0.1:{port}/api").store(WriteRequest())


def test_store_invalid_url():
    with pytest.raises(ValueError):
        _client("not a url").store(WriteRequest())


def test_name():
    client = Client(3, ClientConfig(url="http://localhost:9090/write"))
    assert client.name == "3:http://localhost:9090/write"


def test_read_round_trip():
    result = QueryResult(
        timeseries=[TimeSeries(labels=[Label("__name__", "up")], samples=[Sample(1.0, 5)])]
    )
    body = compress(ReadResponse(results=[result]).to_bytes())
    query = Query(start_timestamp_ms=1, end_timestamp_ms=2)
    with _serve(200, body) as (url, received):
        got = _client(url).read(query)
    assert got == result
    headers, sent = received[0]
    assert headers.get("Accept-Encoding") == "snappy"
    assert ReadRequest.from_bytes(decompress(sent)) == ReadRequest(queries=[query])


def test_read_result_count_mismatch():
    body = compress(ReadResponse(results=[]).to_bytes())
    with _serve(200, body) as (url, _):
        with pytest.raises(RuntimeError, match="responses: want 1, got 0"):
            _client(url).read(Query())


def test_read_error_status():
    with _serve(500, b"boom\n") as (url, _):
        with pytest.raises(RuntimeError) as excinfo:
            _client(url).read(Query())
    assert str(excinfo.value) == "server returned HTTP status 500 Internal Server Error"


def test_read_corrupt_body():
    with _serve(200, b"\xff\xff\xff\xff\xff\xff") as (url, _):
        with pytest.raises(RuntimeError, match="error reading response"):
            _client(url).read(Query())