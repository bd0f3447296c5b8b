"""Reconcile and reminder worker - one scheduled job per account plus the health monitor."""

from __future__ import annotations

import signal
import threading

from loguru import logger

from nudgeflow.infrastructure.logging import configure_logging
from nudgeflow.infrastructure.runtime import Runtime, build_runtime
from nudgeflow.infrastructure.settings import get_settings


class Worker:
    """
    Long-running process hosting the scheduler.

    Account jobs and monitor jobs run on the scheduler's own threads; this
    class only starts them, waits for SIGTERM/SIGINT and stops them again.
    """

    def __init__(self, runtime: Runtime):
        self.runtime = runtime
        self._stop = threading.Event()

    def _handle_shutdown(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        self._stop.set()

    def _log_status(self) -> None:
        status = self.runtime.scheduler.get_status()
        logger.info(f"Scheduler running={status['running']} jobs={status['job_count']}")
        for job in status["jobs"]:
            logger.info(
                f"  - {job['account_id']} ({job['display_name']}): every {job['frequency_minutes']} min, "
                f"next={job['next_run']}"
            )

    def run(self) -> int:
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

        self.runtime.start()
        self._log_status()

        # Wake up periodically so signals are handled promptly
        while not self._stop.wait(timeout=10):
            pass

        self.runtime.stop()
        logger.info("Worker shutdown complete")
        return 0


def main() -> int:
    """Entry point for the worker."""
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("=" * 60)
    logger.info(f"{settings.app_name} Worker")
    logger.info("=" * 60)

    try:
        runtime = build_runtime(settings)
    except Exception as e:
        logger.error(f"Failed to initialize: {e}")
        return 1

    if not runtime.store.list_active_accounts():
        logger.error("No active accounts configured! Set NUDGEFLOW_ACCOUNTS and per-account variables")
        return 1

    return Worker(runtime).run()


if __name__ == "__main__":
    raise SystemExit(main())
