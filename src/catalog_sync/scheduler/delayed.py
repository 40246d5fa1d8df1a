"""
Delayed redelivery of retry envelopes.

The retry escalator never sleeps on the consumer task; it asks a
DelayScheduler to republish the envelope onto the tier's retry channel once
the tier delay has elapsed.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from catalog_sync.errors import TransportUnavailable
from catalog_sync.messaging.channels import RetryTier
from catalog_sync.messaging.publisher import SyncEventPublisher
from catalog_sync.models.envelope import RetryEnvelope

logger = logging.getLogger(__name__)


class DelayScheduler(ABC):
    @abstractmethod
    def schedule_after(self, tier: RetryTier, envelope: RetryEnvelope) -> None:
        """Publish `envelope` to `tier.channel` after `tier.delay_seconds`."""


class APSchedulerDelayScheduler(DelayScheduler):
    """
    One-shot APScheduler `date` job per scheduled redelivery.

    Jobs live in the scheduler's in-memory job store, so redeliveries pending
    at shutdown are lost; the idempotency ledger still holds the key as
    Started and a fresh publication of the same change will reprocess it.
    """

    def __init__(self, scheduler: AsyncIOScheduler, publisher: SyncEventPublisher):
        self.scheduler = scheduler
        self.publisher = publisher

    def schedule_after(self, tier: RetryTier, envelope: RetryEnvelope) -> None:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=tier.delay_seconds)
        self.scheduler.add_job(
            self._redeliver,
            trigger="date",
            run_date=run_date,
            id=f"retry:{envelope.message.correlation_id}:{envelope.attempts}",
            replace_existing=True,
            misfire_grace_time=None,
            kwargs={"tier": tier, "envelope": envelope},
        )
        logger.info(
            "Scheduled retry in %ds on %s. CorrelationId=%s, Attempts=%d",
            tier.delay_seconds,
            tier.channel,
            envelope.message.correlation_id,
            envelope.attempts,
        )

    async def _redeliver(self, tier: RetryTier, envelope: RetryEnvelope) -> None:
        try:
            await self.publisher.publish_retry(tier, envelope)
        except TransportUnavailable as exc:
            logger.warning(
                "Retry redelivery failed (%s); rescheduling. CorrelationId=%s",
                exc,
                envelope.message.correlation_id,
            )
            self.schedule_after(tier, envelope)
