"""
Sweep scheduler — APScheduler jobs for the health sweep and replenish monitor.

- sweep:   CronTrigger from ``sweep.cron`` (default every 6 hours)
- monitor: IntervalTrigger every ``sweep.monitor_interval`` seconds

max_instances=1 + coalesce=True: a slow run is never overlapped by the next
one, and missed fires collapse into a single run.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from cloudwarden.config import MIN_CHECK_INTERVAL

if TYPE_CHECKING:
    from cloudwarden.config import Config
    from cloudwarden.service import CloudwardenService

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "health-sweep"
MONITOR_JOB_ID = "replenish-monitor"


class SweepScheduler:
    """APScheduler wrapper around CloudwardenService.run_sweep / run_monitor."""

    def __init__(self, config: Config, service: CloudwardenService) -> None:
        self.config = config
        self.service = service
        self.scheduler = AsyncIOScheduler(timezone=config.sweep.timezone)
        self.last_runs: dict[str, dict[str, Any]] = {}

    def register(self) -> None:
        """Add both jobs. Raises ValueError on an invalid cron expression."""
        sweep = self.config.sweep
        self.scheduler.add_job(
            self._run_sweep,
            trigger=CronTrigger.from_crontab(sweep.cron, timezone=sweep.timezone),
            id=SWEEP_JOB_ID,
            name="health sweep",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self._run_monitor,
            trigger=IntervalTrigger(seconds=max(sweep.monitor_interval, MIN_CHECK_INTERVAL)),
            id=MONITOR_JOB_ID,
            name="replenish monitor",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
            replace_existing=True,
        )
        logger.info(
            "Scheduled health sweep (%s %s) and replenish monitor (every %ss)",
            sweep.cron,
            sweep.timezone,
            max(sweep.monitor_interval, MIN_CHECK_INTERVAL),
        )

    async def start(self) -> None:
        """Register jobs, start the scheduler and keep the task alive."""
        self.register()
        self.scheduler.start()
        logger.info("Sweep scheduler started")
        while True:
            await asyncio.sleep(60)

    async def stop(self) -> None:
        with contextlib.suppress(Exception):
            self.scheduler.shutdown(wait=False)
        logger.info("Sweep scheduler stopped")

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def next_runs(self) -> dict[str, str | None]:
        runs = {}
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            runs[job.id] = next_run.isoformat() if next_run else None
        return runs

    async def _run_sweep(self) -> None:
        started = datetime.now(UTC)
        try:
            report = await self.service.run_sweep()
        except Exception as e:
            logger.error("Scheduled health sweep failed: %s", e, exc_info=True)
            self._record(SWEEP_JOB_ID, started, "error", error=str(e))
            return
        self._record(SWEEP_JOB_ID, started, "ok", **report.totals)

    async def _run_monitor(self) -> None:
        started = datetime.now(UTC)
        try:
            report = await self.service.run_monitor()
        except Exception as e:
            logger.error("Replenish monitor tick failed: %s", e, exc_info=True)
            self._record(MONITOR_JOB_ID, started, "error", error=str(e))
            return
        self._record(
            MONITOR_JOB_ID,
            started,
            "ok",
            checked=report.checked,
            triggered=report.triggered,
            failures=len(report.failures),
        )

    def _record(self, job_id: str, started: datetime, status: str, **extra: Any) -> None:
        self.last_runs[job_id] = {
            "status": status,
            "started_at": started.isoformat(),
            "finished_at": datetime.now(UTC).isoformat(),
            **extra,
        }
