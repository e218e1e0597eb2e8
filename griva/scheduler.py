import asyncio
import logging
from typing import Optional

from griva.config import get_settings
from griva.workers import WORKER_NAMES, run_all_workers

logger = logging.getLogger(__name__)


class WorkerScheduler:
    """
    Runs all ingestion workers once at start, then every N seconds, as a
    background task owned by the app lifespan.
    """

    def __init__(self, db_factory=None, interval_seconds: Optional[int] = None):
        self.db_factory = db_factory
        self.interval_seconds = interval_seconds or get_settings().fetch_interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self):
        """Run one round of all workers and log how many were rejected."""
        outcomes = await run_all_workers(self.db_factory)
        failed = sum(1 for o in outcomes if o.status == "rejected")
        suffix = f" ({failed} workers had errors)" if failed else ""
        logger.info(f"[Scheduler] Ingestion round complete{suffix}")
        return outcomes

    async def run(self):
        """Loop forever: tick immediately, then sleep for the interval."""
        logger.info(f"[Scheduler] Started: {', '.join(WORKER_NAMES)} every {self.interval_seconds}s")
        while True:
            await self.tick()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        """Schedule the loop on the running event loop without blocking the caller."""
        if not self.running:
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        """Cancel the loop so no tick fires after shutdown."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[Scheduler] Stopped")
