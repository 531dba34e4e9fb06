"""Dedicated APScheduler worker process for the daily rollover."""
from __future__ import annotations

import logging
import signal
import threading

from apscheduler.schedulers.background import BackgroundScheduler

from smallsteps.core.clock import utcnow
from smallsteps.core.config import PlannerConfig, settings
from smallsteps.core.logging import configure_logging
from smallsteps.db.session import SessionLocal, init_db
from smallsteps.services.daily_rollover import run_daily_rollover
from smallsteps.services.store import PlannerStore


logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging(log_level=settings.log_level)
    init_db()
    logger.info("Scheduler worker starting (enabled=%s)", settings.scheduler_enabled)

    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    if settings.scheduler_enabled:
        register_jobs(scheduler)
        scheduler.start()
        logger.info("Running rollover once on startup")
        run_rollover_job()
    else:
        logger.warning("Scheduler disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Scheduler worker shutting down (signal=%s)", signum)
        if scheduler.running:
            scheduler.shutdown(wait=False)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def register_jobs(scheduler: BackgroundScheduler) -> None:
    scheduler.add_job(
        run_rollover_job,
        trigger="cron",
        hour=settings.rollover_hour,
        minute=settings.rollover_minute,
        id="daily_rollover_job",
        replace_existing=True,
    )
    logger.info(
        "Registered daily rollover (time=%02d:%02d %s)",
        settings.rollover_hour,
        settings.rollover_minute,
        settings.scheduler_timezone,
    )


def run_rollover_job(session_factory=SessionLocal) -> None:
    session = session_factory()
    try:
        result = run_daily_rollover(PlannerStore(session), now=utcnow(), config=PlannerConfig.from_settings())
        logger.info(
            "Daily rollover complete: days=%s, queue=%s, target=%s",
            result.days_recorded,
            result.queue_size,
            result.target_count,
        )
    except Exception:  # pragma: no cover - logged, next run retries
        logger.exception("Daily rollover job failed")
    finally:
        session.close()


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
