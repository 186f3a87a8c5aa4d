"""
Periodic collector polling.

The scheduler owns one asyncio task that, every interval, asks the injected
collector for candidate items and feeds them through the ingestion pipeline.
Duplicate items are cheap: the pipeline rejects them before any backend call,
so a collector may return overlapping windows on every poll.
"""

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Union

from fanpulse.services.types import IngestReport, SourceItem, utcnow

logger = logging.getLogger(__name__)

Collector = Callable[[], Union[List[SourceItem], Awaitable[List[SourceItem]]]]


class PollingScheduler:
    def __init__(self, collect: Collector, pipeline, interval_seconds: float = 300.0):
        self.collect = collect
        self.pipeline = pipeline
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self.cycles = 0
        self.last_run: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.totals = IngestReport()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Start polling on the running event loop."""
        if self.running:
            raise RuntimeError("Scheduler is already running")
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(f"Polling scheduler started (every {self.interval_seconds}s)")

    async def stop(self):
        """Cancel the polling task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Polling task had already failed: {e}")
        self._task = None
        logger.info("Polling scheduler stopped")

    async def run_once(self) -> Optional[IngestReport]:
        """One collect + ingest cycle; collector errors are recorded, not raised."""
        self.cycles += 1
        self.last_run = utcnow()

        try:
            items = self.collect()
            if inspect.isawaitable(items):
                items = await items
        except Exception as e:
            logger.error(f"Collector failed on cycle {self.cycles}: {e}")
            self.last_error = str(e)
            return None

        report = await self.pipeline.process_batch(list(items))
        self.last_error = None
        self.totals.received += report.received
        self.totals.stored += report.stored
        self.totals.duplicates += report.duplicates
        self.totals.unassigned_skipped += report.unassigned_skipped
        self.totals.failed += report.failed
        return report

    async def _loop(self):
        while True:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Polling cycle {self.cycles} failed: {e}")
                self.last_error = str(e)
            await asyncio.sleep(self.interval_seconds)

    def status(self) -> Dict:
        return {
            "running": self.running,
            "interval_seconds": self.interval_seconds,
            "cycles": self.cycles,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_error": self.last_error,
            "totals": self.totals.model_dump(exclude={"records"}),
        }
