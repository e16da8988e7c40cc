"""Background scheduler for periodic cleanup tasks."""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from zkpaste.dependencies import Services

logger = logging.getLogger(__name__)


def cleanup_job(services: Services) -> None:
    """Reclaim dead paste rows, expired challenges and idle rate buckets.

    Expired or exhausted pastes are already invisible to readers; this only
    frees space.
    """
    try:
        purged = services.store.purge_expired()
        swept = services.gate.sweep_expired()
        idle = services.limiter.sweep_idle() if services.limiter is not None else 0
        if purged or swept or idle:
            logger.info(
                f"Cleanup: purged {purged} pastes, swept {swept} challenges, "
                f"dropped {idle} idle rate buckets"
            )
    except Exception as e:
        logger.error(f"Cleanup failed: {e}")


def start_scheduler(services: Services, interval_minutes: int) -> BackgroundScheduler:
    """Start a background scheduler running the cleanup job."""
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        cleanup_job,
        trigger=IntervalTrigger(minutes=interval_minutes),
        args=[services],
        id="cleanup_expired_pastes",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started - cleanup runs every {interval_minutes} minute(s)")
    return scheduler


def shutdown_scheduler(scheduler: BackgroundScheduler) -> None:
    """Shutdown the scheduler gracefully."""
    scheduler.shutdown()
    logger.info("Scheduler stopped")
