"""Run the metering controllers against the configured Redis store."""

import logging
import signal
import threading

from prometheus_client import start_http_server

from tenantmeter.backends import get_object_store
from tenantmeter.manager import build_manager
from tenantmeter.utils.config import load_settings

logger = logging.getLogger("tenantmeter")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = load_settings()
    store = get_object_store(settings)
    manager = build_manager(store, settings)

    if settings.metrics_port is not None:
        start_http_server(settings.metrics_port)
        logger.info("serving metrics on :%d", settings.metrics_port)

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    logger.info("starting metering controllers for %s", ", ".join(manager.kinds))
    manager.run(stop)


if __name__ == "__main__":
    main()
