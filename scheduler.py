import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from errors import LedgerError
from recurrence import MaterializeResult, RecurringEngine


logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


class SchedulerManager:
    """Materializes recurring templates for the current month in the background."""

    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def run_once(self, source: str = "manual") -> Optional[MaterializeResult]:
        logger.info(f"scheduler_run: source={source}")
        try:
            with session_scope() as session:
                result = RecurringEngine(session).materialize_active()
        except LedgerError:
            logger.exception(f"scheduler_run_failed: source={source}")
            return None
        logger.info(
            f"scheduler_run: source={source} period={result.period} "
            f"created={len(result.created)} failed={len(result.failed)}"
        )
        return result

    def start(self) -> None:
        self.run_once("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self.run_once,
            trigger,
            args=["daily_03:15"],
            id="recurring_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self.run_once,
            trigger,
            args=["hourly_safety_net"],
            id="recurring_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 and hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
