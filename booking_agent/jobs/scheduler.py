# booking_agent/jobs/scheduler.py
from __future__ import annotations
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..database import SessionLocal
from ..services.ratelimit import RateLimiter

logger = logging.getLogger(__name__)


def ratelimit_cleanup_job(session_factory=SessionLocal) -> int:
    """Purga rate_limit_events más viejos que la retención. Nunca lanza."""
    return RateLimiter(session_factory, settings.rate_limit_policy()).cleanup()


def start_scheduler(session_factory=SessionLocal) -> BackgroundScheduler | None:
    if not settings.ENABLE_SCHEDULER:
        logger.info("Scheduler desactivado (ENABLE_SCHEDULER=false)")
        return None
    scheduler = BackgroundScheduler(timezone=settings.TIMEZONE)
    scheduler.add_job(
        ratelimit_cleanup_job,
        IntervalTrigger(minutes=settings.RATE_LIMIT_CLEANUP_INTERVAL_MINUTES),
        kwargs={"session_factory": session_factory},
        id="ratelimit_cleanup",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    scheduler.start()
    logger.info("Scheduler iniciado: limpieza rate limit cada %s min", settings.RATE_LIMIT_CLEANUP_INTERVAL_MINUTES)
    return scheduler
