"""
Consumer for the sync event stream.

Subscribes one handler to the main channel and one to every retry tier.
Each delivery runs through the idempotency ledger, then the injected
SyncHandler, then either marks the key succeeded or hands the failure to
the retry escalator. If the ledger or the DLQ cannot be written, the
event is deferred to a retry tier rather than dropped.
"""
import importlib
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from catalog_sync.messaging.channels import ChannelSet
from catalog_sync.messaging.transport import Transport
from catalog_sync.models.envelope import RetryEnvelope, SyncEvent, utcnow
from catalog_sync.models.idempotency import IdempotencyStatus
from catalog_sync.reliability.idempotency import IdempotencyLedger, compute_result_hash
from catalog_sync.reliability.retry import Escalation, RetryEscalator

logger = logging.getLogger(__name__)

# Performs the actual catalog push. May return a JSON-serializable result,
# which is fingerprinted onto the ledger record.
SyncHandler = Callable[[SyncEvent], Awaitable[Any]]


class ProcessOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    ALREADY_FAILED = "already_failed"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    MALFORMED = "malformed"
    DEFERRED = "deferred"


_ESCALATION_OUTCOMES = {
    Escalation.RETRY_SCHEDULED: ProcessOutcome.RETRY_SCHEDULED,
    Escalation.DEAD_LETTERED: ProcessOutcome.DEAD_LETTERED,
}


def load_handler(path: str) -> SyncHandler:
    """Resolve a "package.module:callable" import path."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"sync handler must look like 'module:callable', got {path!r}")
    module = importlib.import_module(module_name)
    handler = getattr(module, attr)
    if not callable(handler):
        raise ValueError(f"{path} is not callable")
    return handler


class SyncEventConsumer:
    def __init__(
        self,
        transport: Transport,
        channels: ChannelSet,
        handler: SyncHandler,
        ledger: IdempotencyLedger,
        escalator: RetryEscalator,
        ttl_days: Optional[int] = None,
    ):
        self.transport = transport
        self.channels = channels
        self.handler = handler
        self.ledger = ledger
        self.escalator = escalator
        self.ttl_days = ttl_days

    def start(self) -> None:
        self.transport.subscribe(self.channels.main, self.on_message)
        for channel in self.channels.retry_channels:
            self.transport.subscribe(channel, self.on_retry)
        logger.info(
            "Consuming %s and %d retry tiers", self.channels.main, len(self.channels.tiers)
        )

    async def on_message(self, payload: str) -> ProcessOutcome:
        try:
            event = SyncEvent.from_json(payload)
        except ValidationError as exc:
            logger.error("Dropping malformed sync event: %s", exc)
            return ProcessOutcome.MALFORMED
        return await self.process(event)

    async def on_retry(self, payload: str) -> ProcessOutcome:
        try:
            envelope = RetryEnvelope.from_json(payload)
        except ValidationError as exc:
            logger.error("Dropping malformed retry envelope: %s", exc)
            return ProcessOutcome.MALFORMED
        return await self.process(
            envelope.message,
            previous_attempts=envelope.attempts,
            first_attempt_at=envelope.first_attempt_at,
        )

    async def process(
        self,
        event: SyncEvent,
        previous_attempts: int = 0,
        first_attempt_at=None,
    ) -> ProcessOutcome:
        try:
            begin = self.ledger.try_begin(
                event.account_id, event.idempotency_key, self.ttl_days, tenant_id=event.tenant_id
            )
        except Exception as exc:
            logger.exception(
                "Idempotency check failed. CorrelationId=%s, Key=%s",
                event.correlation_id,
                event.idempotency_key,
            )
            self.escalator.defer(event, exc, previous_attempts, first_attempt_at)
            return ProcessOutcome.DEFERRED

        if not begin.is_new:
            if begin.status == IdempotencyStatus.SUCCEEDED:
                logger.info(
                    "Skipping duplicate sync; already succeeded. CorrelationId=%s, Key=%s",
                    event.correlation_id,
                    event.idempotency_key,
                )
                return ProcessOutcome.DUPLICATE
            if begin.status == IdempotencyStatus.FAILED_PERMANENT:
                logger.warning(
                    "Skipping sync; key previously failed permanently. CorrelationId=%s, Key=%s",
                    event.correlation_id,
                    event.idempotency_key,
                )
                return ProcessOutcome.ALREADY_FAILED
            # Started: a previous attempt did not finish; run it again

        attempt = previous_attempts + 1
        first_attempt_at = first_attempt_at or utcnow()
        logger.info(
            "Processing sync attempt %d. CorrelationId=%s, AccountId=%s",
            attempt,
            event.correlation_id,
            event.account_id,
        )

        try:
            result = await self.handler(event)
        except Exception as exc:
            try:
                escalation = self.escalator.handle_failure(event, exc, attempt, first_attempt_at)
            except Exception as escalation_exc:
                logger.exception(
                    "Could not escalate failed sync. CorrelationId=%s", event.correlation_id
                )
                # Not counted, so the redelivery reaches the same DLQ decision
                self.escalator.defer(event, escalation_exc, previous_attempts, first_attempt_at)
                return ProcessOutcome.DEFERRED
            return _ESCALATION_OUTCOMES[escalation]

        result_hash = compute_result_hash(result) if result is not None else None
        try:
            self.ledger.mark_succeeded(event.account_id, event.idempotency_key, result_hash)
        except Exception as exc:
            logger.exception(
                "Could not record sync success. CorrelationId=%s", event.correlation_id
            )
            # The key stays Started, so the redelivery runs the handler again
            self.escalator.defer(event, exc, previous_attempts, first_attempt_at)
            return ProcessOutcome.DEFERRED

        logger.info("Sync succeeded. CorrelationId=%s", event.correlation_id)
        return ProcessOutcome.PROCESSED
