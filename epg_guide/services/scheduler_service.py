import logging
from datetime import datetime, timedelta
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from epg_guide.config import settings
from epg_guide.schemas import EpgSettings
from epg_guide.services import settings_service
from epg_guide.services.epg_fetch_service import refresh_all_enabled
from epg_guide.utils.timezone import utc_now


logger = logging.getLogger(__name__)

JOB_ID = "epg_refresh"


def compute_first_run(epg_settings: EpgSettings, now: datetime) -> datetime:
    """
    When the first scheduled pass should run

    Immediately if no pass was ever recorded or the last one is older than
    one interval; otherwise one interval after the last pass.
    """
    if epg_settings.last_auto_update_at is None:
        return now
    due = epg_settings.last_auto_update_at + timedelta(hours=epg_settings.update_interval_hours)
    return max(now, due)


class EPGScheduler:
    """Scheduler for automatic refresh of enabled EPG sources"""

    def __init__(self):
        self.scheduler: AsyncIOScheduler | None = None

    async def _refresh_job(self) -> None:
        """Background job that refreshes every enabled source"""
        logger.info("Scheduled EPG refresh triggered")
        try:
            result = await refresh_all_enabled()
        except Exception as e:
            logger.error(f"Exception in scheduled refresh: {e}", exc_info=True)
            return

        if result.get("status") == "skipped":
            logger.info("Scheduled refresh skipped: %s", result.get("message"))
            return

        if result.get("sources_failed"):
            logger.warning(
                "Scheduled refresh finished with %s failed source(s)",
                result["sources_failed"],
            )
        await settings_service.mark_auto_update(utc_now())

    async def start(self) -> None:
        """Start the scheduler and register the refresh job if auto update is on"""
        if self.scheduler and self.scheduler.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler = AsyncIOScheduler(timezone='UTC')
        self.scheduler.start()
        await self.reschedule()

    async def reschedule(self) -> None:
        """Re-read the EPG settings and (re)register or drop the refresh job"""
        if not self.scheduler:
            return

        epg_settings = await settings_service.get_settings()
        if self.scheduler.get_job(JOB_ID):
            self.scheduler.remove_job(JOB_ID)

        if not epg_settings.auto_update:
            logger.info("Automatic EPG refresh disabled")
            return

        first_run = compute_first_run(epg_settings, utc_now())
        self.scheduler.add_job(
            self._refresh_job,
            trigger=IntervalTrigger(hours=epg_settings.update_interval_hours, timezone='UTC'),
            id=JOB_ID,
            next_run_time=first_run,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=settings.epg_refresh_misfire_grace_sec,
            replace_existing=True,
        )
        logger.info(
            "Automatic EPG refresh every %sh. Next refresh: %s",
            epg_settings.update_interval_hours,
            first_run.isoformat(),
        )

    def shutdown(self) -> None:
        """Shutdown the scheduler"""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        self.scheduler = None

    def get_next_run_time(self) -> datetime | None:
        """Get next scheduled refresh time"""
        if not self.scheduler:
            return None
        job = self.scheduler.get_job(JOB_ID)
        return job.next_run_time if job else None


epg_scheduler = EPGScheduler()
