"""
dispatcher.py - Action dispatcher process.

Runs the dispatcher polling loop until SIGTERM/SIGINT. On startup, returns
executions orphaned in `running` by a previous crash to `pending`.
"""

from __future__ import annotations

import logging
import signal
import threading
from typing import Any

from securewatch.config import settings
from securewatch.database import SessionLocal, engine
from securewatch.runtime import build_runtime

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting SecureWatch action dispatcher...")

    runtime = build_runtime(engine, SessionLocal)
    dispatcher = runtime.dispatcher

    if settings.LOAD_POLICIES_ON_STARTUP:
        runtime.loader.load_file(settings.POLICY_CONFIG_PATH)

    recovered = dispatcher.recover_stale(settings.DISPATCH_STALE_RUNNING_SECONDS)
    logger.info("Stale execution recovery: %d execution(s) recovered", recovered)

    stopped = threading.Event()

    def _shutdown_handler(signum: int, frame: Any) -> None:
        logger.info("Received signal %d. Finishing current tick and shutting down...", signum)
        stopped.set()

    signal.signal(signal.SIGTERM, _shutdown_handler)
    signal.signal(signal.SIGINT, _shutdown_handler)

    dispatcher.start()
    while not stopped.wait(1.0):
        pass
    dispatcher.stop()
    logger.info("Action dispatcher process exited.")


if __name__ == "__main__":
    main()
