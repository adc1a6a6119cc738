"""NDJSON event source with batch and continuous tailing modes."""

import datetime
import json
import logging
import os
import sys
import threading
from typing import Iterator

from riemann_shipper.models import IncomingEvent

logger = logging.getLogger(__name__)

TIMESTAMP_FIELD = "@timestamp"


def _parse_timestamp(value) -> datetime.datetime | None:
    if not isinstance(value, str) or not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        ts = datetime.datetime.fromisoformat(text)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=datetime.timezone.utc)
    return ts


def parse_event(line: str) -> IncomingEvent | None:
    """Parse one NDJSON line into an :class:`IncomingEvent`.

    ``@timestamp`` is lifted out of the fields; when it is missing or
    unparseable the current UTC time is used. Returns None for lines that
    are not a JSON object.
    """
    stripped = line.strip()
    if not stripped:
        return None
    try:
        doc = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    if not isinstance(doc, dict):
        return None

    ts = _parse_timestamp(doc.pop(TIMESTAMP_FIELD, None))
    if ts is None:
        return IncomingEvent(fields=doc)
    return IncomingEvent(fields=doc, timestamp=ts)


def read_events(path: str) -> Iterator[IncomingEvent]:
    """Yield every parseable event from *path* ('-' reads stdin)."""
    if path == "-":
        yield from _parse_lines(sys.stdin)
        return
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        yield from _parse_lines(f)


def _parse_lines(lines) -> Iterator[IncomingEvent]:
    for line in lines:
        event = parse_event(line)
        if event is None:
            if line.strip():
                logger.debug("Skipping unparseable line: %s", line[:100])
            continue
        yield event


class EventTailer:
    """Watches an NDJSON file and calls a callback for each new event.

    Handles:
    - File not yet existing (waits for creation)
    - Log rotation (inode change detection)
    - File truncation (seek back to start)

    ``on_idle`` is called whenever a poll finds no new data.
    """

    def __init__(
        self,
        path: str,
        shutdown_event: threading.Event,
        callback=None,
        on_idle=None,
        poll_interval: float = 0.5,
    ):
        self._path = path
        self._shutdown = shutdown_event
        self._callback = callback
        self._on_idle = on_idle
        self._poll_interval = poll_interval
        self._file = None
        self._inode = None

    def run(self):
        """Main tailing loop; blocks until shutdown_event is set."""
        self._wait_for_file()
        if self._shutdown.is_set():
            return

        self._open_file(seek_end=True)
        try:
            while not self._shutdown.is_set():
                if self._check_rotation():
                    continue

                if self._check_truncation():
                    continue

                line = self._file.readline()
                if line:
                    self._emit(line)
                else:
                    if self._on_idle:
                        self._on_idle()
                    self._shutdown.wait(self._poll_interval)
        finally:
            self._close_file()

    def _emit(self, line: str):
        event = parse_event(line)
        if event is None:
            if line.strip():
                logger.debug("Skipping unparseable line: %s", line[:100])
            return
        if self._callback:
            self._callback(event)

    def _wait_for_file(self):
        """Block until the file exists or shutdown is requested."""
        while not self._shutdown.is_set():
            if os.path.exists(self._path):
                return
            logger.debug("Waiting for file %s to appear...", self._path)
            self._shutdown.wait(self._poll_interval)

    def _open_file(self, seek_end: bool = False):
        self._file = open(self._path, "r", encoding="utf-8", errors="replace")
        self._inode = os.fstat(self._file.fileno()).st_ino
        if seek_end:
            self._file.seek(0, os.SEEK_END)
        logger.debug("Opened %s (inode=%d)", self._path, self._inode)

    def _close_file(self):
        if self._file:
            self._file.close()
            self._file = None

    def _check_rotation(self) -> bool:
        """Detect log rotation by comparing inodes. Returns True if rotated."""
        try:
            current_inode = os.stat(self._path).st_ino
        except FileNotFoundError:
            return False

        if current_inode != self._inode:
            logger.info("File rotation detected for %s", self._path)
            for line in self._file:
                self._emit(line)
            self._close_file()
            self._open_file(seek_end=False)
            return True
        return False

    def _check_truncation(self) -> bool:
        """Detect file truncation (e.g., > file). Returns True if truncated."""
        try:
            file_size = os.path.getsize(self._path)
        except FileNotFoundError:
            return False

        if self._file.tell() > file_size:
            logger.info("File truncation detected for %s", self._path)
            self._file.seek(0)
            return True
        return False
