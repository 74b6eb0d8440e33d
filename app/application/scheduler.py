"""
Background scheduler, runs periodic jobs inside the FastAPI process.

Jobs:
  - outbox_dispatch: deliver pending emails (every OUTBOX_DISPATCH_INTERVAL_SECONDS)
  - code_purge: drop expired signup and password-reset codes (hourly)
"""
import logging
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from app.config import get_settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)


def run_job(name: str, job: Callable[[Session], object]) -> None:
    """Run ``job`` with a fresh session; failures are logged, never raised into the scheduler."""
    from app.infrastructure.db.session import session_scope

    with session_scope() as db:
        try:
            result = job(db)
        except Exception:
            db.rollback()
            logger.exception("Job %s failed", name)
            return
    if result:
        logger.info("Job %s: %s", name, result)


def _run_outbox_dispatch():
    from app.application.notifications import dispatch_pending_emails
    run_job("outbox_dispatch", dispatch_pending_emails)


def _run_code_purge():
    from app.application.accounts import purge_expired_codes
    run_job("code_purge", purge_expired_codes)


def start_scheduler():
    """Start the background scheduler with all periodic jobs."""
    settings = get_settings()

    scheduler.add_job(
        _run_outbox_dispatch,
        "interval",
        seconds=settings.OUTBOX_DISPATCH_INTERVAL_SECONDS,
        id="outbox_dispatch",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.add_job(
        _run_code_purge,
        "interval",
        hours=1,
        id="code_purge",
        replace_existing=True,
        max_instances=1,
    )

    scheduler.start()
    logger.info(
        "Scheduler started: outbox_dispatch (every %ss), code_purge (hourly)",
        settings.OUTBOX_DISPATCH_INTERVAL_SECONDS,
    )


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
