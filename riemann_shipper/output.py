"""Wire config into a ready-to-use publisher, failing fast on bad setup."""

import logging
import os
import sys
from typing import IO

from riemann_shipper import __version__
from riemann_shipper.codec import CodecError, create_codec
from riemann_shipper.config import Config
from riemann_shipper.publisher import BatchPublisher
from riemann_shipper.sender import HostSender, PooledHostSender

logger = logging.getLogger(__name__)

BEAT_NAME = "riemann-shipper"


class OutputInitError(Exception):
    """Raised when the output cannot be constructed; no event is accepted."""


def _check_stream(stream: IO[bytes]):
    """Make sure the echo stream is a real, stat-able file."""
    try:
        os.fstat(stream.fileno())
    except (OSError, ValueError) as e:
        raise OutputInitError(f"riemann output initialization failed with: {e}") from e


def make_output(
    config: Config,
    observer,
    stream: IO[bytes] | None = None,
    log: logging.Logger | None = None,
) -> BatchPublisher:
    """Build the codec, sender, and publisher described by *config*.

    Raises:
        OutputInitError: If the codec is invalid or the output stream is
            unusable.
    """
    log = log or logger
    try:
        codec = create_codec(config.codec, beat=BEAT_NAME, version=__version__)
    except CodecError as e:
        raise OutputInitError(f"riemann output initialization failed with: {e}") from e

    if stream is None:
        stream = sys.stdout.buffer
    if sys.platform != "win32":
        _check_stream(stream)

    if config.connection_mode == "pooled":
        sender = PooledHostSender(config.send_delay, log=log)
    else:
        sender = HostSender(config.send_delay, log=log)

    log.info(
        "Riemann output ready: hosts=%s mode=%s codec=%s",
        ",".join(str(h) for h in config.hosts),
        config.connection_mode,
        codec.name,
    )
    return BatchPublisher(
        hosts=config.hosts,
        sender=sender,
        observer=observer,
        settings=config.record_settings,
        timeout=config.timeout,
        codec=codec if config.echo else None,
        out=stream,
        log=log,
    )
