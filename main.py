"""Entry point for the Riemann event shipper."""

import logging
import os
import signal
import sys
import threading

from riemann_shipper.config import ConfigError, load_config
from riemann_shipper.output import OutputInitError
from riemann_shipper.shipper import RiemannShipper


def main(argv=None) -> int:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logger = logging.getLogger(__name__)

    try:
        config = load_config(argv)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    shutdown_event = threading.Event()

    def signal_handler(signum, frame):
        logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(
        "Starting Riemann shipper: mode=%s, input=%s, hosts=%s",
        "continuous" if config.continuous else "batch",
        config.input,
        ",".join(str(h) for h in config.hosts),
    )

    try:
        shipper = RiemannShipper(config, shutdown_event)
    except OutputInitError as e:
        logger.error("%s", e)
        return 1

    shipper.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
