"""APScheduler integration for the periodic tracker and analysis ticks.

Both jobs are coroutines, so AsyncIOScheduler runs them on the event loop
alongside request handlers rather than in a thread pool. ``max_instances=1``
with ``coalesce=True`` means a tick never overlaps itself; missed runs
collapse into one.
"""

import contextlib
import logging
import time

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from nudgeguard.config import Settings, get_settings
from nudgeguard.observability.metrics import TICK_DURATION, TICKS_TOTAL
from nudgeguard.orchestrator import InterventionOrchestrator

logger = logging.getLogger(__name__)


class PipelineTicker:
    def __init__(self, orchestrator: InterventionOrchestrator, settings: Settings | None = None) -> None:
        self.orchestrator = orchestrator
        self.settings = settings or get_settings()
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    async def tracker_tick(self) -> None:
        """Re-evaluate every tracker session and sweep stale ones."""
        start = time.monotonic()
        try:
            events = self.orchestrator.run_tracker_tick()
            TICKS_TOTAL.labels(job="trackers", status="success").inc()
            if events:
                logger.debug("Tracker tick re-confirmed %d behavior events", len(events))
        except Exception:
            TICKS_TOTAL.labels(job="trackers", status="error").inc()
            logger.exception("Tracker tick failed")
        finally:
            TICK_DURATION.labels(job="trackers").observe(time.monotonic() - start)

    async def analysis_tick(self) -> None:
        start = time.monotonic()
        try:
            self.orchestrator.run_analysis()
            TICKS_TOTAL.labels(job="analysis", status="success").inc()
        except Exception:
            TICKS_TOTAL.labels(job="analysis", status="error").inc()
            logger.exception("Pattern analysis tick failed")
        finally:
            TICK_DURATION.labels(job="analysis").observe(time.monotonic() - start)

    def start(self) -> None:
        """Start the scheduler. Must be called with a running event loop."""
        if self._scheduler is not None:
            return

        settings = self.settings
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.tracker_tick,
            trigger=IntervalTrigger(seconds=settings.tracker_tick_seconds),
            id="tracker_tick",
            name="Signal tracker tick",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.add_job(
            self.analysis_tick,
            trigger=IntervalTrigger(seconds=settings.analysis_interval_seconds),
            id="analysis_tick",
            name="Pattern analysis",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            "Pipeline ticker started (trackers every %.0fs, analysis every %.0fs)",
            settings.tracker_tick_seconds,
            settings.analysis_interval_seconds,
        )

    def stop(self) -> None:
        """Gracefully shut down the scheduler if it is running."""
        if self._scheduler is not None:
            with contextlib.suppress(Exception):
                self._scheduler.shutdown(wait=False)
            logger.info("Pipeline ticker stopped")
            self._scheduler = None
