"""Deliver one Riemann record to one host over TCP."""

import logging
import socket
import threading
import time

from riemann_shipper.models import HostTarget, RiemannRecord
from riemann_shipper.protocol import (
    ProtocolError,
    decode_response,
    encode_frame,
    encode_record,
    read_frame,
)

logger = logging.getLogger(__name__)


class RiemannError(Exception):
    """Base class for failures delivering a record to a Riemann host."""

    def __init__(self, target: HostTarget, reason: str):
        super().__init__(f"{target}: {reason}")
        self.target = target
        self.reason = reason


class ConnectError(RiemannError):
    """The TCP connection could not be established within the timeout."""


class SendError(RiemannError):
    """The connection was up but writing or acknowledging the record failed."""


def _cancelled(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


class HostSender:
    """Opens a fresh connection for every record and closes it afterwards.

    After each send the sender pauses for ``send_delay`` seconds to pace
    the receiver. The pause ends early if ``cancel`` is set.
    """

    def __init__(self, send_delay: float = 1.0, log: logging.Logger | None = None):
        self._send_delay = send_delay
        self._log = log or logger

    def send(
        self,
        target: HostTarget,
        record: RiemannRecord,
        timeout: float = 5.0,
        cancel: threading.Event | None = None,
    ) -> None:
        """Send *record* to *target*.

        Raises:
            ConnectError: If connecting fails or times out.
            SendError: If the write, the acknowledgment, or encoding fails.
        """
        if _cancelled(cancel):
            raise SendError(target, "cancelled before connect")

        sock = self._connect(target, timeout)
        try:
            self._exchange(sock, target, record, cancel)
        finally:
            sock.close()
        self._pause(cancel)

    def close(self):
        """Nothing is held between calls."""

    def _connect(self, target: HostTarget, timeout: float) -> socket.socket:
        try:
            sock = socket.create_connection((target.host, target.port), timeout=timeout)
        except OSError as e:
            raise ConnectError(target, f"connect failed: {e}") from e
        self._log.debug("Connected to %s", target)
        return sock

    def _exchange(
        self,
        sock: socket.socket,
        target: HostTarget,
        record: RiemannRecord,
        cancel: threading.Event | None,
    ) -> None:
        try:
            frame = encode_frame(encode_record(record))
            if _cancelled(cancel):
                raise SendError(target, "cancelled before write")
            sock.sendall(frame)
            decode_response(read_frame(sock))
        except ProtocolError as e:
            raise SendError(target, str(e)) from e
        except OSError as e:
            raise SendError(target, f"send failed: {e}") from e

    def _pause(self, cancel: threading.Event | None) -> None:
        if self._send_delay <= 0:
            return
        if cancel is not None:
            cancel.wait(self._send_delay)
        else:
            time.sleep(self._send_delay)


class PooledHostSender(HostSender):
    """Keeps one connection per host open and reuses it across records.

    A connection that fails in any way is discarded; the next send to the
    same host reconnects.
    """

    def __init__(self, send_delay: float = 1.0, log: logging.Logger | None = None):
        super().__init__(send_delay, log)
        self._conns: dict[HostTarget, socket.socket] = {}

    @property
    def open_connections(self) -> int:
        return len(self._conns)

    def send(
        self,
        target: HostTarget,
        record: RiemannRecord,
        timeout: float = 5.0,
        cancel: threading.Event | None = None,
    ) -> None:
        if _cancelled(cancel):
            raise SendError(target, "cancelled before connect")

        sock = self._conns.get(target)
        if sock is None:
            sock = self._connect(target, timeout)
            self._conns[target] = sock

        try:
            self._exchange(sock, target, record, cancel)
        except SendError:
            self._discard(target)
            raise
        self._pause(cancel)

    def close(self):
        """Close every pooled connection."""
        for target in list(self._conns):
            self._discard(target)

    def _discard(self, target: HostTarget) -> None:
        sock = self._conns.pop(target, None)
        if sock is None:
            return
        try:
            sock.close()
        except OSError:
            pass
        self._log.debug("Dropped pooled connection to %s", target)
