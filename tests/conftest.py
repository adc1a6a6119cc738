"""Shared pytest fixtures: an in-process Riemann server and a recording sender."""

from __future__ import annotations

import datetime
import socket
import threading
import time

import pytest

from riemann_shipper.models import HostTarget, IncomingEvent
from riemann_shipper.protocol import Msg, decode_msg, encode_frame, read_frame
from riemann_shipper.sender import ConnectError, SendError


class RiemannTestServer:
    """TCP server that decodes Riemann frames and acknowledges them.

    Stores received protobuf events in ``self.received``. Set ``reject``
    to answer with ``ok=false``.
    """

    def __init__(self):
        self.received: list = []
        self.connections = 0
        self.reject = False
        self._lock = threading.Lock()
        self._shutdown = threading.Event()
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.settimeout(0.2)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(16)
        host, port = self._sock.getsockname()
        self.target = HostTarget(host, port)
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()

    def _accept_loop(self):
        while not self._shutdown.is_set():
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            with self._lock:
                self.connections += 1
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn: socket.socket):
        conn.settimeout(5.0)
        try:
            while not self._shutdown.is_set():
                try:
                    body = read_frame(conn)
                except (ConnectionError, OSError):
                    break
                msg = decode_msg(body)
                reply = Msg()
                if self.reject:
                    reply.ok = False
                    reply.error = "rejected by test server"
                else:
                    with self._lock:
                        self.received.extend(msg.events)
                    reply.ok = True
                conn.sendall(encode_frame(reply.SerializeToString()))
        finally:
            conn.close()

    def wait_for(self, count: int, timeout: float = 2.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._lock:
                if len(self.received) >= count:
                    return True
            time.sleep(0.01)
        return False

    def stop(self):
        self._shutdown.set()
        self._sock.close()


class RecordingSender:
    """Sender double that records calls and fails for chosen (event, host) pairs."""

    def __init__(self, fail: set[tuple[str, HostTarget]] | None = None):
        self.calls: list[tuple[HostTarget, object]] = []
        self.fail = fail or set()
        self.closed = False

    def send(self, target, record, timeout=5.0, cancel=None):
        self.calls.append((target, record))
        if (record.description, target) in self.fail:
            raise SendError(target, "boom")
        if cancel is not None and cancel.is_set():
            raise ConnectError(target, "cancelled")

    def close(self):
        self.closed = True


def make_event(**fields) -> IncomingEvent:
    """Build an event from keyword fields; nested dicts are passed as-is."""
    return IncomingEvent(
        fields=fields,
        timestamp=datetime.datetime(2024, 1, 15, 8, 23, 45, tzinfo=datetime.timezone.utc),
    )


def full_event(hostname="srv1", message="hi", username="bob") -> IncomingEvent:
    return make_event(
        host={"hostname": hostname, "os": {"family": "windows", "kernel": "10.0"}},
        message=message,
        winlog={"user": {"name": username}},
        event={"action": "logon"},
    )


@pytest.fixture()
def riemann_server():
    server = RiemannTestServer()
    yield server
    server.stop()


@pytest.fixture()
def second_riemann_server():
    server = RiemannTestServer()
    yield server
    server.stop()


@pytest.fixture()
def unreachable_target() -> HostTarget:
    """A localhost port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    host, port = sock.getsockname()
    sock.close()
    return HostTarget(host, port)
