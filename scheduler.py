import logging
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from services import BudgetEngine


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, engine_provider: Callable[[], BudgetEngine]) -> None:
        self.engine_provider = engine_provider
        self.scheduler = BackgroundScheduler(timezone="UTC")

    def _run_job(self, source: str = "manual") -> str:
        logger.info(f"rollover_run: source={source}")
        bucket = self.engine_provider().current_month_allocation()
        logger.info(f"rollover_run: source={source} month={bucket.month}")
        return bucket.month

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(day=1, hour=0, minute=0, second=30)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["month_start"],
            id="rollover_month_start",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly_safety_net"],
            id="rollover_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with month-start rollover and hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
