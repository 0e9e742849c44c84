"""APScheduler jobs driving the periodic reconciliation sweeps."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from crm_mirror.core.logging import get_logger
from crm_mirror.services.sweeper import Sweeper

logger = get_logger(__name__)

class SweepScheduler:
    def __init__(self, sweeper: Sweeper, full_interval_minutes: int, assignment_interval_minutes: int):
        self.sweeper = sweeper
        self.full_interval_minutes = full_interval_minutes
        self.assignment_interval_minutes = assignment_interval_minutes
        self._scheduler = AsyncIOScheduler(timezone="UTC")

    async def run_full_sweep(self) -> None:
        results = await self.sweeper.sweep_all()
        logger.info("scheduled_sweep_finished", tenants=len(results), applied=sum(r.applied for r in results.values()))

    async def run_assignment_sweep(self) -> None:
        results = await self.sweeper.sweep_all(assignment_only=True)
        logger.info("scheduled_assignment_sweep_finished", tenants=len(results), applied=sum(r.applied for r in results.values()))

    async def start(self) -> None:
        self._scheduler.add_job(
            self.run_full_sweep,
            IntervalTrigger(minutes=self.full_interval_minutes),
            id="full_sweep",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self.run_assignment_sweep,
            IntervalTrigger(minutes=self.assignment_interval_minutes),
            id="assignment_sweep",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(
            "sweep_scheduler_started",
            full_interval_minutes=self.full_interval_minutes,
            assignment_interval_minutes=self.assignment_interval_minutes,
        )

    async def stop(self) -> None:
        self._scheduler.shutdown(wait=False)
        logger.info("sweep_scheduler_stopped")

    @property
    def running(self) -> bool:
        return self._scheduler.running
