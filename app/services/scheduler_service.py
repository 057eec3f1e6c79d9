import logging
from datetime import datetime
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.config import settings
from app.services.guide_cache_service import prune_expired_programs


logger = logging.getLogger(__name__)

class PruneScheduler:
    """Scheduler for sweeping expired programs of sources that are no longer refreshed"""

    def __init__(self):
        self.scheduler: AsyncIOScheduler | None = None

    async def _prune_job(self) -> None:
        """Background job that deletes expired programs across all sources"""
        logger.info("Scheduled expired-program sweep triggered")
        try:
            deleted = await prune_expired_programs()
            logger.info(f"Expired-program sweep removed {deleted} programs")
        except Exception as e:
            logger.error(f"Exception in scheduled sweep: {e}", exc_info=True)

    def start(self) -> None:
        """Start the scheduler with the sweep job"""
        if self.scheduler and self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        if not settings.prune_cron:
            logger.info("Expired-program sweep disabled (PRUNE_CRON is empty)")
            return

        try:
            trigger = CronTrigger.from_crontab(settings.prune_cron)
        except (ValueError, KeyError) as exc:
            logger.error("Invalid cron expression '%s': %s", settings.prune_cron, exc)
            raise

        self.scheduler = AsyncIOScheduler(timezone='UTC')
        self.scheduler.add_job(
            self._prune_job,
            trigger=trigger,
            id='expired_program_sweep',
            max_instances=1,
            coalesce=True,
            misfire_grace_time=settings.prune_misfire_grace_sec
        )

        self.scheduler.start()
        next_time = self.get_next_run_time()
        logger.info(
            "Scheduler started. Next sweep: %s",
            next_time.isoformat() if next_time else "unknown"
        )

    def shutdown(self) -> None:
        """Shutdown the scheduler"""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler stopped")
        self.scheduler = None

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    def get_next_run_time(self) -> datetime | None:
        """Get next scheduled sweep time"""
        if not self.scheduler:
            return None
        job = self.scheduler.get_job('expired_program_sweep')
        return job.next_run_time if job else None


prune_scheduler = PruneScheduler()
