"""
Main entrypoint: starts the sync consumer, APScheduler and the HTTP API in one
process, sharing the in-memory transport.

Usage:
    python -m catalog_sync          # consumer + scheduler + API
    python -m catalog_sync sweep    # delete expired idempotency records once
"""
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _run_sweep() -> None:
    from catalog_sync.config import get_settings
    from catalog_sync.db.engine import get_engine
    from catalog_sync.reliability.idempotency import IdempotencyLedger

    ledger = IdempotencyLedger(get_engine(), get_settings().idempotency_ttl_days)
    removed = ledger.delete_expired()
    logger.info("Removed %d expired idempotency records", removed)


async def _run_worker() -> None:
    import uvicorn

    from catalog_sync.api.main import app
    from catalog_sync.config import get_settings
    from catalog_sync.db.engine import get_engine
    from catalog_sync.dlq.store import DlqStore
    from catalog_sync.messaging.channels import ChannelSet
    from catalog_sync.messaging.publisher import SyncEventPublisher
    from catalog_sync.messaging.transport import get_transport
    from catalog_sync.reliability.consumer import SyncEventConsumer, load_handler
    from catalog_sync.reliability.idempotency import IdempotencyLedger
    from catalog_sync.reliability.retry import RetryEscalator
    from catalog_sync.scheduler.delayed import APSchedulerDelayScheduler
    from catalog_sync.scheduler.jobs import build_scheduler

    settings = get_settings()
    engine = get_engine()

    # The catalog push itself is provided by the deployment
    if not settings.sync_handler:
        logger.error(
            "No sync handler configured. Set SYNC_HANDLER=package.module:callable."
        )
        sys.exit(1)
    handler = load_handler(settings.sync_handler)

    transport = get_transport()
    channels = ChannelSet.for_prefix(settings.channel_prefix, settings.retry_delays_seconds)
    publisher = SyncEventPublisher(transport, channels)
    ledger = IdempotencyLedger(engine, settings.idempotency_ttl_days)

    # Scheduler
    scheduler = build_scheduler(engine)
    escalator = RetryEscalator(
        channels=channels,
        delay_scheduler=APSchedulerDelayScheduler(scheduler, publisher),
        dlq_store=DlqStore(engine),
        ledger=ledger,
        max_attempts=settings.max_attempts,
        event_type=settings.event_type,
    )
    consumer = SyncEventConsumer(
        transport, channels, handler, ledger, escalator, settings.idempotency_ttl_days
    )
    consumer.start()
    scheduler.start()
    logger.info(
        "Scheduler started (idempotency sweep at %02d:00 UTC, retry tiers %s)",
        settings.idempotency_sweep_hour,
        ", ".join(channels.retry_channels),
    )

    server = uvicorn.Server(
        uvicorn.Config(app, host=settings.api_host, port=settings.api_port, log_config=None)
    )
    logger.info("Serving API on %s:%d", settings.api_host, settings.api_port)
    try:
        await server.serve()
    finally:
        transport.close()
        scheduler.shutdown()
        logger.info("Goodbye.")


if __name__ == "__main__":
    # Dispatch on first argument: `python -m catalog_sync sweep` or just `python -m catalog_sync`
    if len(sys.argv) > 1 and sys.argv[1] == "sweep":
        _run_sweep()
    else:
        asyncio.run(_run_worker())
