"""
yieldvault.scheduler — Periodic Jobs
=====================================

An APScheduler ``AsyncIOScheduler`` started from the API lifespan:

- ``accrual``  — every ``accrual_interval_minutes`` (default hourly)
- ``snapshot`` — 1st of each month, 02:00 UTC (only when a holdings source
  URL is configured)

Jobs ship their synchronous DB work to a thread with ``run_db``.  Overlap is
prevented twice: APScheduler never starts a second instance of a running
job, and the accrual batch itself needs the durable lease, which also keeps
other processes out.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import Engine

from yieldvault.config import YieldVaultConfig
from yieldvault.database.engine import run_db
from yieldvault.services import accrual_service, distribution_service
from yieldvault.services.holdings_source import HoldingsSource

logger = logging.getLogger(__name__)


class PeriodicTasks:
    """Owns the scheduler and the jobs registered on it."""

    def __init__(self, engine: Engine, cfg: YieldVaultConfig) -> None:
        self.engine = engine
        self.cfg = cfg
        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 300,
            },
            timezone="UTC",
        )

    # -- jobs ---------------------------------------------------------------
    async def accrual_job(self) -> None:
        try:
            result = await run_db(accrual_service.run_accrual, self.engine, self.cfg)
            if result.errors:
                logger.warning(
                    "Accrual run finished with %d failed contributions", len(result.errors),
                    extra={"task": "accrual"},
                )
        except Exception:
            logger.exception("Accrual task failed", extra={"task": "accrual"})

    async def snapshot_job(self) -> None:
        source = HoldingsSource(
            self.cfg.holdings_source_url, timeout=self.cfg.payment_executor_timeout
        )
        try:
            snapshot, created = await run_db(
                distribution_service.capture_from_source, self.engine, self.cfg, source
            )
            logger.info(
                "Snapshot %s %s", snapshot.period_key, "captured" if created else "already present",
                extra={"task": "snapshot"},
            )
        except Exception:
            logger.exception("Snapshot task failed", extra={"task": "snapshot"})
        finally:
            source.close()

    # -- lifecycle ----------------------------------------------------------
    def setup_jobs(self) -> None:
        self.scheduler.add_job(
            self.accrual_job,
            trigger=IntervalTrigger(minutes=self.cfg.accrual_interval_minutes),
            id="accrual",
            name="Hourly compound accrual",
            replace_existing=True,
        )
        if self.cfg.holdings_source_url:
            self.scheduler.add_job(
                self.snapshot_job,
                trigger=CronTrigger(day=1, hour=2, minute=0, timezone="UTC"),
                id="snapshot",
                name="Monthly holdings snapshot",
                replace_existing=True,
            )
        logger.info("Scheduled jobs: %s", [job.id for job in self.scheduler.get_jobs()])

    def start(self) -> None:
        self.setup_jobs()
        self.scheduler.start()
        logger.info("Periodic tasks started")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Periodic tasks stopped")
