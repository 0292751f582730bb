import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from cache import DIGEST_KEY_PREFIX
from config import get_settings
from database import session_scope
from kv_store import KeyValueStore, SqlKeyValueStore
from periods import local_today
from services import mark_overdue


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DIGEST_PRUNE_GRACE = timedelta(days=1)


class SchedulerManager:
    def __init__(self, store: Optional[KeyValueStore] = None) -> None:
        settings = get_settings()
        self.timezone = settings.timezone
        self.store = store or SqlKeyValueStore()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _mark_overdue(self, source: str = "manual") -> None:
        today = local_today(datetime.now(timezone.utc), self.timezone)
        logger.info(f"mark_overdue: source={source} today={today.isoformat()}")
        with session_scope() as session:
            charges, debts = mark_overdue(session, today)
        logger.info(f"mark_overdue: source={source} charges={charges} debts={debts}")

    def _prune_digest_cache(self) -> None:
        cutoff = datetime.utcnow() - DIGEST_PRUNE_GRACE
        result = self.store.delete_expired(DIGEST_KEY_PREFIX, cutoff)
        if result.ok:
            logger.info(f"prune_digest_cache: removed={result.value}")

    def start(self) -> None:
        self._mark_overdue("startup")

        trigger = CronTrigger(hour=0, minute=5)
        self.scheduler.add_job(
            self._mark_overdue,
            trigger,
            args=["daily_00:05"],
            id="mark_overdue_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._mark_overdue,
            trigger,
            args=["hourly_safety_net"],
            id="mark_overdue_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        trigger = IntervalTrigger(minutes=30)
        self.scheduler.add_job(
            self._prune_digest_cache,
            trigger,
            id="prune_digest_cache",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 00:05, hourly safety net and cache pruning")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
