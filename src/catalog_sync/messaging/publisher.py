"""Publishes SyncEvents and RetryEnvelopes onto their channels."""
import logging

from catalog_sync.messaging.channels import ChannelSet, RetryTier
from catalog_sync.messaging.transport import Transport
from catalog_sync.models.envelope import RetryEnvelope, SyncEvent

logger = logging.getLogger(__name__)


class SyncEventPublisher:
    """
    Args:
        transport: Transport to publish on.
        channels: ChannelSet for the event stream.

    Publication failures (TransportUnavailable) propagate to the caller,
    which decides whether to retry the publication itself.
    """

    def __init__(self, transport: Transport, channels: ChannelSet):
        self.transport = transport
        self.channels = channels

    async def publish(self, event: SyncEvent) -> None:
        await self.transport.publish(self.channels.main, event.account_id, event.to_json())
        logger.info(
            "Published sync event. CorrelationId=%s, AccountId=%s, IdempotencyKey=%s",
            event.correlation_id,
            event.account_id,
            event.idempotency_key,
        )

    async def publish_retry(self, tier: RetryTier, envelope: RetryEnvelope) -> None:
        await self.transport.publish(
            tier.channel, envelope.message.account_id, envelope.to_json()
        )
        logger.info(
            "Published retry to %s. CorrelationId=%s, Attempts=%d",
            tier.channel,
            envelope.message.correlation_id,
            envelope.attempts,
        )
