"""Batch publisher: extract, build, and deliver each event to every Riemann host."""

import logging
import threading
from typing import IO

from riemann_shipper.builder import RecordSettings, build
from riemann_shipper.extractor import extract
from riemann_shipper.models import Batch, BatchOutcome, HostTarget, IncomingEvent
from riemann_shipper.sender import HostSender, RiemannError

logger = logging.getLogger(__name__)


class BatchPublisher:
    """Publishes batches strictly in order, one host at a time.

    An event counts as dropped when delivery to any configured host fails,
    otherwise as acked. Failures never escape :meth:`publish`; the batch is
    acknowledged once after every event has been handled.

    Not re-entrant: the caller must not publish two batches concurrently.
    """

    def __init__(
        self,
        hosts: tuple[HostTarget, ...],
        sender: HostSender,
        observer,
        settings: RecordSettings | None = None,
        timeout: float = 5.0,
        codec=None,
        out: IO[bytes] | None = None,
        log: logging.Logger | None = None,
    ):
        self._hosts = tuple(hosts)
        self._sender = sender
        self._observer = observer
        self._settings = settings or RecordSettings()
        self._timeout = timeout
        self._codec = codec
        self._out = out
        self._log = log or logger

    @property
    def hosts(self) -> tuple[HostTarget, ...]:
        return self._hosts

    def publish(self, batch: Batch, cancel: threading.Event | None = None) -> BatchOutcome:
        events = batch.events
        self._observer.new_batch(len(events))

        outcome = BatchOutcome()
        for event in events:
            if self._publish_event(event, cancel):
                outcome.acked += 1
            else:
                outcome.dropped += 1

        if self._out is not None:
            self._out.flush()
        batch.ack()

        self._observer.dropped(outcome.dropped)
        self._observer.acked(outcome.acked)

        if outcome.dropped:
            self._log.warning(
                "Published batch of %d: acked=%d dropped=%d",
                len(events), outcome.acked, outcome.dropped,
            )
        else:
            self._log.debug("Published batch of %d", len(events))
        return outcome

    def close(self):
        self._sender.close()

    def _publish_event(self, event: IncomingEvent, cancel: threading.Event | None) -> bool:
        record = build(extract(event), self._settings)
        self._echo(event)

        ok = True
        for target in self._hosts:
            try:
                self._sender.send(target, record, self._timeout, cancel)
            except RiemannError as e:
                self._log.error("Failed to publish event to %s: %s", target, e.reason)
                ok = False
        return ok

    def _echo(self, event: IncomingEvent):
        if self._codec is None or self._out is None:
            return
        self._out.write(self._codec.encode(event) + b"\n")
