import io
import socket
import threading
from urllib.parse import parse_qs, urlsplit

import pytest
import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict


class FakeAdapter(HTTPAdapter):
    """Answers every request locally and keeps a record of what was sent."""

    def __init__(self, server_timing="cfRequestDuration;dur=100", status=200, fail_on=None):
        super().__init__()
        self.server_timing = server_timing
        self.status = status
        self.fail_on = fail_on
        self.requests = []
        self.timeouts = []
        self.bodies = []

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.requests.append(request)
        self.timeouts.append(timeout)

        if self.fail_on is not None and self.fail_on(request):
            raise requests.exceptions.ConnectionError("connection reset by peer", request=request)

        query = parse_qs(urlsplit(request.url).query)
        size = int(query["bytes"][0]) if "bytes" in query else 0
        body = io.BytesIO(b"x" * size)
        self.bodies.append(body)

        headers = {"Content-Length": str(size)}
        if self.server_timing is not None:
            headers["Server-Timing"] = self.server_timing

        response = requests.Response()
        response.status_code = self.status
        response.reason = "OK" if self.status < 400 else "Server Error"
        response.headers = CaseInsensitiveDict(headers)
        response.raw = body
        response.url = request.url
        response.request = request
        response.connection = self
        return response

    def query(self, index):
        return parse_qs(urlsplit(self.requests[index].url).query)


def make_clock(*elapsed):
    """Clock that reports the given elapsed seconds for consecutive transfers."""
    ticks = []
    now = 0.0
    for seconds in elapsed:
        ticks += [now, now + seconds]
        now += seconds + 1.0
    return iter(ticks).__next__


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def session(adapter):
    s = requests.Session()
    s.mount("https://", adapter)
    yield s
    s.close()


class LocalListener(threading.Thread):
    """Accepts one TCP connection on 127.0.0.1 and hands it to ``handler``."""

    def __init__(self, handler):
        super().__init__(daemon=True)
        self.handler = handler
        self.accepted = False
        self.received = b""
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(1)
        self.sock.settimeout(5)
        self.port = self.sock.getsockname()[1]

    def run(self):
        try:
            conn, _ = self.sock.accept()
        except OSError:
            return
        self.accepted = True
        with conn:
            conn.settimeout(5)
            try:
                self.handler(self, conn)
            except OSError:
                pass


def read_client_hello(listener, conn):
    """Keep the first TLS record, then hang up."""
    data = b""
    while len(data) < 5 or len(data) < 5 + int.from_bytes(data[3:5], "big"):
        chunk = conn.recv(4096)
        if not chunk:
            break
        data += chunk
    listener.received = data


def answer_http(listener, conn):
    data = b""
    while b"\r\n\r\n" not in data:
        chunk = conn.recv(4096)
        if not chunk:
            break
        data += chunk
    listener.received = data
    conn.sendall(
        b"HTTP/1.1 200 OK\r\n"
        b"Content-Length: 2\r\n"
        b"Server-Timing: cfRequestDuration;dur=7\r\n"
        b"Connection: close\r\n"
        b"\r\n"
        b"ok"
    )


@pytest.fixture
def listen():
    started = []

    def start(handler):
        listener = LocalListener(handler)
        listener.start()
        started.append(listener)
        return listener

    yield start

    for listener in started:
        listener.join(timeout=5)
        listener.sock.close()
