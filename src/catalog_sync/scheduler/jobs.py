"""
APScheduler jobs for background maintenance.

The daily sweep removes idempotency records past their expires_at so the
ledger does not grow without bound. Delayed retry redeliveries are added to
the same scheduler as one-shot jobs (see scheduler.delayed).

The scheduler runs inside the worker process (wired in __main__.py).
"""
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from catalog_sync.config import get_settings
from catalog_sync.models.envelope import utcnow

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine for the idempotency ledger.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _sweep_expired,
        trigger="cron",
        hour=settings.idempotency_sweep_hour,
        minute=0,
        id="idempotency_sweep",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _sweep_expired(engine) -> None:
    """
    Daily job: delete expired idempotency records.

    Idempotent; safe to run more than once a day.
    """
    from catalog_sync.reliability.idempotency import IdempotencyLedger

    logger.info("Idempotency sweep starting at %s", utcnow().isoformat())

    try:
        removed = IdempotencyLedger(engine).delete_expired()
        logger.info("Idempotency sweep finished; %d records removed", removed)
    except Exception as exc:
        logger.error("Idempotency sweep failed: %s", exc)
