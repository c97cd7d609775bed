"""Periodic sweeps that force time-based transitions.

Runs on APScheduler's AsyncIOScheduler:
  - every 30s: operator response / queue timeouts + chat inactivity reminders
  - every 5min: operator inactivity (forced offline)
  - every 60min: purge finished sessions past the retention window
  - every 60s: ``system:stats`` broadcast to connected operators

Each sweep opens its own unit of work and is wrapped in a top-level
try/except, so one failing run never stops the timer.
"""

from __future__ import annotations

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from livedesk.services.desk import SupportDesk
from livedesk.services.events import DomainEvent

logger = structlog.get_logger(__name__)


class TimeoutSupervisor:
    """Owns the scheduler and the sweep coroutines it runs."""

    def __init__(self, desk: SupportDesk, scheduler: AsyncIOScheduler | None = None) -> None:
        self._desk = desk
        self._scheduler = scheduler or AsyncIOScheduler()

    @property
    def scheduler(self) -> AsyncIOScheduler:
        return self._scheduler

    def start(self) -> None:
        config = self._desk.config
        jobs = [
            (self.run_timeout_sweep, config.timeout_sweep_interval_seconds, "timeout_sweep"),
            (
                self.run_inactivity_sweep,
                config.inactivity_sweep_interval_seconds,
                "operator_inactivity_sweep",
            ),
            (self.run_cleanup_sweep, config.cleanup_interval_seconds, "session_cleanup"),
            (
                self.run_stats_broadcast,
                config.stats_broadcast_interval_seconds,
                "stats_broadcast",
            ),
        ]
        for func, seconds, job_id in jobs:
            self._scheduler.add_job(
                func,
                "interval",
                seconds=seconds,
                id=job_id,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        self._scheduler.start()
        logger.info("supervisor_started", jobs=[job_id for _, _, job_id in jobs])

    def shutdown(self) -> None:
        self._scheduler.shutdown(wait=False)
        logger.info("supervisor_stopped")

    async def run_timeout_sweep(self) -> None:
        try:
            async with self._desk.unit() as services:
                await services.escalation.check_timeouts()
                await services.escalation.remind_inactive_chats()
        except Exception as e:
            logger.error("timeout_sweep_failed", error=str(e))

    async def run_inactivity_sweep(self) -> None:
        try:
            async with self._desk.unit() as services:
                forced = await services.presence.sweep_inactivity(
                    self._desk.config.operator_inactivity_timeout_minutes
                )
            if forced:
                logger.info("inactivity_sweep_complete", forced_offline=forced)
        except Exception as e:
            logger.error("inactivity_sweep_failed", error=str(e))

    async def run_cleanup_sweep(self) -> None:
        try:
            async with self._desk.unit() as services:
                await services.queue.purge_finished_sessions(
                    self._desk.config.session_retention_days
                )
        except Exception as e:
            logger.error("session_cleanup_failed", error=str(e))

    async def run_stats_broadcast(self) -> None:
        try:
            async with self._desk.unit() as services:
                stats = await services.stats.system_stats()
            await self._desk.events.publish(DomainEvent.SYSTEM_STATS, stats)
        except Exception as e:
            logger.error("stats_broadcast_failed", error=str(e))
