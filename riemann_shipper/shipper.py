"""Reads events, groups them into batches, and hands each batch to the publisher."""

import logging
import threading
import time

from riemann_shipper.config import Config
from riemann_shipper.metrics import Metrics, MetricsReporter
from riemann_shipper.models import Batch, IncomingEvent
from riemann_shipper.output import make_output
from riemann_shipper.publisher import BatchPublisher
from riemann_shipper.reader import EventTailer, read_events

logger = logging.getLogger(__name__)


class RiemannShipper:
    """Single-threaded driver: one active batch at a time.

    The shutdown event doubles as the cancellation signal for in-flight
    sends, so a stop request cuts the current batch short instead of
    waiting for every host timeout.
    """

    def __init__(
        self,
        config: Config,
        shutdown_event: threading.Event,
        publisher: BatchPublisher | None = None,
        metrics: Metrics | None = None,
    ):
        self._config = config
        self._shutdown = shutdown_event
        self._metrics = metrics or Metrics()
        self._publisher = publisher or make_output(config, self._metrics)
        self._pending: list[IncomingEvent] = []
        self._last_event = time.monotonic()
        self._acked = 0
        self._dropped = 0
        self._batches = 0

    @property
    def metrics(self) -> Metrics:
        return self._metrics

    @property
    def acked(self) -> int:
        return self._acked

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def batches(self) -> int:
        return self._batches

    def run(self):
        """Ship events based on mode (batch or continuous)."""
        reporter = None
        if self._config.metrics_interval > 0:
            reporter = MetricsReporter(
                self._metrics, self._config.metrics_interval, self._shutdown,
            )
            reporter.start()

        try:
            if self._config.continuous:
                self._run_continuous()
            else:
                self._run_batch()
            # Leftovers are drained without cancellation; host timeouts still bound it.
            self._flush(drain=True)
        finally:
            self._publisher.close()
            if reporter:
                self._shutdown.set()
                reporter.stop()
            logger.info(
                "Shipper finished: batches=%d acked=%d dropped=%d",
                self._batches, self._acked, self._dropped,
            )

    def _run_batch(self):
        """Read every event from the input and publish in batch_size groups."""
        for event in read_events(self._config.input):
            if self._shutdown.is_set():
                break
            self._add(event)

    def _run_continuous(self):
        """Tail the input file; flush partial batches once the input goes quiet."""
        tailer = EventTailer(
            self._config.input,
            self._shutdown,
            callback=self._add,
            on_idle=self._flush_if_idle,
            poll_interval=self._config.poll_interval,
        )
        tailer.run()

    def _add(self, event: IncomingEvent):
        self._pending.append(event)
        self._last_event = time.monotonic()
        if len(self._pending) >= self._config.batch_size:
            self._flush()

    def _flush_if_idle(self):
        if not self._pending:
            return
        if time.monotonic() - self._last_event >= self._config.flush_interval:
            self._flush()

    def _flush(self, drain: bool = False):
        if not self._pending:
            return
        cancel = None if drain else self._shutdown
        batch = Batch(self._pending)
        self._pending = []
        outcome = self._publisher.publish(batch, cancel=cancel)
        self._batches += 1
        self._acked += outcome.acked
        self._dropped += outcome.dropped
