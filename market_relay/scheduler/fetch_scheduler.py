"""
Market Relay - Fetch Scheduler

Drives the fetch cycle on a fixed interval with APScheduler.
"""
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from loguru import logger

from market_relay.utils.exceptions import InvalidIntervalError


FETCH_JOB_ID = "market_data_fetch"


class FetchScheduler:
    """
    Recurring timer for the fetch cycle.

    Ticks never overlap: the job runs with max_instances=1 and missed runs
    are coalesced into one.
    """

    def __init__(
        self,
        tick: Callable[[], Awaitable[Any]],
        interval_seconds: int = 30,
        min_interval: int = 1,
        max_interval: int = 3600,
    ):
        self._tick = tick
        self.min_interval = min_interval
        self.max_interval = max_interval
        self.interval_seconds = self.validate_interval(interval_seconds)
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._is_running = False
        self._ticks = 0
        self._failures = 0
        self._last_run: Optional[datetime] = None
        self._last_error: Optional[str] = None

    def validate_interval(self, seconds) -> int:
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
            raise InvalidIntervalError(seconds, self.min_interval, self.max_interval)
        if seconds != int(seconds) or not self.min_interval <= seconds <= self.max_interval:
            raise InvalidIntervalError(seconds, self.min_interval, self.max_interval)
        return int(seconds)

    def initialize(self) -> None:
        """Initialize the scheduler with job stores and executors."""
        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': AsyncIOExecutor()
        }
        job_defaults = {
            'coalesce': True,  # Combine multiple missed runs into one
            'max_instances': 1,  # Ticks never overlap
            'misfire_grace_time': 30
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

        self.scheduler.add_job(
            self._run_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=FETCH_JOB_ID,
            name="Fetch cycle",
            replace_existing=True,
        )
        logger.info(f"Fetch scheduler initialized (every {self.interval_seconds}s)")

    def start(self) -> None:
        """Start the scheduler."""
        if not self.scheduler:
            self.initialize()

        if not self._is_running:
            self.scheduler.start()
            self._is_running = True
            logger.info("Fetch scheduler started")

    def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if self.scheduler and self._is_running:
            self.scheduler.shutdown(wait=False)
            self._is_running = False
            logger.info("Fetch scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def _run_tick(self) -> None:
        """Job body: one tick, never raising into APScheduler."""
        self._ticks += 1
        self._last_run = datetime.utcnow()
        try:
            await self._tick()
        except Exception as e:
            self._failures += 1
            self._last_error = str(e)
            logger.exception(f"Fetch cycle failed: {e}")

    def update_interval(self, seconds) -> int:
        """
        Change the tick interval, rescheduling the live job.

        Raises:
            InvalidIntervalError: interval outside the allowed bounds
        """
        interval = self.validate_interval(seconds)
        previous = self.interval_seconds
        self.interval_seconds = interval

        if self.scheduler and self.scheduler.get_job(FETCH_JOB_ID):
            self.scheduler.reschedule_job(
                FETCH_JOB_ID,
                trigger=IntervalTrigger(seconds=interval),
            )
        logger.info(f"Fetch interval updated: {previous}s -> {interval}s")
        return interval

    def next_run_time(self) -> Optional[datetime]:
        if not self.scheduler:
            return None
        job = self.scheduler.get_job(FETCH_JOB_ID)
        return job.next_run_time if job else None

    def get_status(self) -> dict:
        next_run = self.next_run_time()
        return {
            "is_running": self._is_running,
            "interval_seconds": self.interval_seconds,
            "estimated_cycles_per_hour": 3600 // self.interval_seconds,
            "next_run": next_run.isoformat() if next_run else None,
            "last_run": self._last_run.isoformat() if self._last_run else None,
            "ticks": self._ticks,
            "failures": self._failures,
            "last_error": self._last_error,
        }
