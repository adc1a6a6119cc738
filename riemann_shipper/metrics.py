"""Thread-safe batch counters and periodic reporting."""

import logging
import threading

logger = logging.getLogger(__name__)


class Metrics:
    """Observer for publish outcomes: batches seen, events acked and dropped."""

    def __init__(self):
        self._lock = threading.Lock()
        self._batches = 0
        self._events = 0
        self._acked = 0
        self._dropped = 0

    def new_batch(self, count: int):
        """Record the start of a batch holding *count* events."""
        with self._lock:
            self._batches += 1
            self._events += count

    def acked(self, count: int):
        with self._lock:
            self._acked += count

    def dropped(self, count: int):
        with self._lock:
            self._dropped += count

    def snapshot(self) -> dict:
        with self._lock:
            return self._snapshot()

    def snapshot_and_reset(self) -> dict:
        """Atomically read all counters and reset them to zero."""
        with self._lock:
            snapshot = self._snapshot()
            self._batches = 0
            self._events = 0
            self._acked = 0
            self._dropped = 0
            return snapshot

    def _snapshot(self) -> dict:
        return {
            "batches": self._batches,
            "events": self._events,
            "acked": self._acked,
            "dropped": self._dropped,
        }


class MetricsReporter:
    """Background thread that periodically logs metrics summaries."""

    def __init__(
        self,
        metrics: Metrics,
        interval: float,
        shutdown_event: threading.Event,
        log: logging.Logger | None = None,
    ):
        self._metrics = metrics
        self._interval = interval
        self._shutdown = shutdown_event
        self._log = log or logger
        self._thread: threading.Thread | None = None

    def start(self):
        """Start the reporter thread."""
        self._thread = threading.Thread(target=self._report_loop, daemon=True)
        self._thread.start()

    def stop(self):
        """Wait for the reporter to exit; the caller sets the shutdown event."""
        if self._thread:
            self._thread.join(timeout=5)

    def _report_loop(self):
        while not self._shutdown.is_set():
            self._shutdown.wait(self._interval)
            if self._shutdown.is_set():
                break
            self.report()

    def report(self):
        snapshot = self._metrics.snapshot_and_reset()
        self._log.info(
            "[metrics] batches=%d events=%d acked=%d dropped=%d",
            snapshot["batches"],
            snapshot["events"],
            snapshot["acked"],
            snapshot["dropped"],
        )
