"""
Retry escalation state machine.

    attempt fails
      ├─ Permanent failure            -> DLQ, ledger FailedPermanent
      ├─ attempts >= max_attempts     -> DLQ, ledger FailedPermanent
      └─ otherwise                    -> RetryEnvelope on tier[attempts] after its delay

The idempotency key travels unchanged inside the envelope, so every retry
and any later replay is recognised by the ledger as the same operation.
"""
import logging
import traceback
from datetime import datetime
from enum import Enum
from typing import Optional

from catalog_sync.dlq.store import DlqStore
from catalog_sync.messaging.channels import ChannelSet, RetryTier
from catalog_sync.models.envelope import FailureType, RetryEnvelope, SyncEvent, utcnow
from catalog_sync.reliability.classifier import classify_failure, error_code
from catalog_sync.reliability.idempotency import IdempotencyLedger
from catalog_sync.scheduler.delayed import DelayScheduler

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


class Escalation(str, Enum):
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"


class RetryEscalator:
    """
    Args:
        channels: ChannelSet whose tiers define the retry delays.
        delay_scheduler: Republishes envelopes after the tier delay.
        dlq_store: Where exhausted or permanent failures land.
        ledger: Idempotency ledger; dead-lettered keys are marked FailedPermanent.
        max_attempts: Total attempts before dead-lettering.
        event_type: Recorded on DLQ rows.
    """

    def __init__(
        self,
        channels: ChannelSet,
        delay_scheduler: DelayScheduler,
        dlq_store: DlqStore,
        ledger: IdempotencyLedger,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        event_type: str = "MenuSync",
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.channels = channels
        self.delay_scheduler = delay_scheduler
        self.dlq_store = dlq_store
        self.ledger = ledger
        self.max_attempts = max_attempts
        self.event_type = event_type

    def handle_failure(
        self,
        event: SyncEvent,
        exc: BaseException,
        attempts: int,
        first_attempt_at: Optional[datetime] = None,
    ) -> Escalation:
        """Route one failed attempt. `attempts` counts the attempt that just failed."""
        failure_type = classify_failure(exc)
        now = utcnow()
        first_attempt_at = first_attempt_at or now

        if failure_type == FailureType.PERMANENT or attempts >= self.max_attempts:
            self._dead_letter(event, exc, attempts, failure_type, first_attempt_at, now)
            return Escalation.DEAD_LETTERED

        tier = self._schedule_retry(event, exc, attempts, failure_type, first_attempt_at, now)
        logger.warning(
            "Sync attempt %d/%d failed (%s: %s); retrying in %ds. CorrelationId=%s",
            attempts,
            self.max_attempts,
            error_code(exc),
            exc,
            tier.delay_seconds,
            event.correlation_id,
        )
        return Escalation.RETRY_SCHEDULED

    def defer(
        self,
        event: SyncEvent,
        exc: BaseException,
        attempts: int,
        first_attempt_at: Optional[datetime] = None,
    ) -> None:
        """
        Put an event back on a retry tier after the pipeline itself failed
        (ledger or DLQ write), without classifying or dead-lettering it.

        `attempts` is the number of handler attempts that count towards
        max_attempts; the redelivery resumes from there.
        """
        now = utcnow()
        tier = self._schedule_retry(
            event, exc, attempts, FailureType.TRANSIENT, first_attempt_at or now, now
        )
        logger.error(
            "Sync pipeline error (%s: %s); redelivering in %ds. CorrelationId=%s",
            error_code(exc),
            exc,
            tier.delay_seconds,
            event.correlation_id,
        )

    def _schedule_retry(
        self,
        event: SyncEvent,
        exc: BaseException,
        attempts: int,
        failure_type: FailureType,
        first_attempt_at: datetime,
        last_attempt_at: datetime,
    ) -> RetryTier:
        tier = self.channels.tier_for_attempt(attempts)
        envelope = RetryEnvelope(
            message=event,
            attempts=attempts,
            error_code=error_code(exc),
            error_message=str(exc),
            first_attempt_at=first_attempt_at,
            last_attempt_at=last_attempt_at,
            retry_delay_seconds=tier.delay_seconds,
            failure_type=failure_type,
        )
        self.delay_scheduler.schedule_after(tier, envelope)
        return tier

    def _dead_letter(
        self,
        event: SyncEvent,
        exc: BaseException,
        attempts: int,
        failure_type: FailureType,
        first_attempt_at: datetime,
        last_attempt_at: datetime,
    ) -> None:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self.dlq_store.store_failure(
            event_type=self.event_type,
            message=event,
            attempts=attempts,
            failure_type=failure_type,
            error_code=error_code(exc),
            error_message=str(exc),
            stack_trace=stack,
            first_attempt_at=first_attempt_at,
            last_attempt_at=last_attempt_at,
        )
        self.ledger.mark_failed_permanent(event.account_id, event.idempotency_key)
