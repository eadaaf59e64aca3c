import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import sessionmaker

from config import get_settings
from database import SessionLocal, session_scope
from ratelimit import RateLimiter
from services import RecurringRuleService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(
        self, limiter: RateLimiter, factory: sessionmaker = SessionLocal
    ) -> None:
        settings = get_settings()
        self.limiter = limiter
        self.factory = factory
        self.purge_minutes = settings.counter_purge_minutes
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> int:
        removed = self.limiter.purge_expired()
        logger.info(f"counter_purge: source={source} removed={removed}")
        return removed

    def _run_recurring(self, source: str = "manual") -> int:
        logger.info(f"recurring_run: source={source}")
        with session_scope(self.factory) as session:
            count = RecurringRuleService(session).catch_up_all()
        logger.info(f"recurring_run: source={source} occurrences_posted={count}")
        return count

    def start(self) -> None:
        self._run_recurring("startup")

        self.scheduler.add_job(
            self._run_job,
            IntervalTrigger(minutes=self.purge_minutes),
            args=["interval"],
            id="rate_counter_purge",
            replace_existing=True,
            misfire_grace_time=60,
        )
        self.scheduler.add_job(
            self._run_recurring,
            CronTrigger(hour=3, minute=15),
            args=["daily_03:15"],
            id="recurring_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )
        self.scheduler.add_job(
            self._run_recurring,
            IntervalTrigger(hours=1),
            args=["hourly_safety_net"],
            id="recurring_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(
            f"Scheduler started with counter purge every {self.purge_minutes} minutes, "
            "recurring posting daily at 03:15 and hourly"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
