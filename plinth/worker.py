"""Background worker that sweeps steps stuck in 'running'."""

import logging
import time

import sqlalchemy

from plinth.config import settings
from plinth.database import SessionLocal
from plinth.services.sweeper import sweep_stale_steps

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


class Worker:
    """Periodic stale-step sweeper."""

    def __init__(self):
        """Initialize worker."""
        self.sweep_interval = settings.SWEEP_INTERVAL
        self.step_timeout = settings.STEP_TIMEOUT_SECONDS

    def wait_for_database(self, stop_event=None, max_wait: int = 60) -> bool:
        """Wait until the project_runs table is queryable."""
        waited = 0
        while waited < max_wait:
            if stop_event and stop_event.is_set():
                return False
            db = SessionLocal()
            try:
                db.execute(sqlalchemy.text("SELECT 1 FROM project_runs LIMIT 1"))
                logger.info("Database is ready, starting sweep loop")
                return True
            except Exception as e:
                logger.info(f"Waiting for database ({waited}s): {e}")
            finally:
                db.close()
            time.sleep(2)
            waited += 2

        logger.error(f"Database not ready after {max_wait} seconds, starting anyway...")
        return False

    def sweep_once(self) -> int:
        """Run a single sweep in a fresh session."""
        db = SessionLocal()
        try:
            return sweep_stale_steps(db, timeout_seconds=self.step_timeout)
        finally:
            db.close()

    def run(self, stop_event=None):
        """Main worker loop.

        Args:
            stop_event: Optional threading.Event to signal worker to stop
        """
        logger.info("Worker started - waiting for database to be ready...")
        self.wait_for_database(stop_event)

        while True:
            if stop_event and stop_event.is_set():
                logger.info("Worker stop signal received")
                break

            try:
                self.sweep_once()
            except KeyboardInterrupt:
                logger.info("Worker shutting down")
                break
            except Exception as e:
                logger.error(f"Worker error: {e}", exc_info=True)

            if stop_event:
                stop_event.wait(self.sweep_interval)
            else:
                time.sleep(self.sweep_interval)


def worker_loop(stop_event=None):
    """Run worker loop (for use as background thread).

    Args:
        stop_event: Optional threading.Event to signal worker to stop
    """
    worker = Worker()
    worker.run(stop_event=stop_event)


def main():
    """Entry point for standalone worker."""
    worker = Worker()
    worker.run()


if __name__ == "__main__":
    main()
