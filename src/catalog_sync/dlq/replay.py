"""
Operator replay of dead-lettered messages.

    claim (is_replayed False -> True, conditional)
      -> deserialize original_message
      -> reopen ledger key if FailedPermanent
      -> republish under a fresh correlation id, same idempotency key
      -> record Success, or Failed with the error

The claim happens first, so a concurrent second replay fails with
AlreadyReplayed before anything is republished.
"""
import logging
from typing import Optional

from catalog_sync.dlq.store import DlqStore
from catalog_sync.messaging.publisher import SyncEventPublisher
from catalog_sync.models.dlq import DlqRecord
from catalog_sync.models.envelope import SyncEvent
from catalog_sync.reliability.idempotency import IdempotencyLedger

logger = logging.getLogger(__name__)


class DlqReplayService:
    def __init__(
        self,
        store: DlqStore,
        publisher: SyncEventPublisher,
        ledger: IdempotencyLedger,
    ):
        self.store = store
        self.publisher = publisher
        self.ledger = ledger

    async def replay(self, record_id: int, replayed_by: str) -> DlqRecord:
        """
        Republish one DLQ record.

        Raises DlqRecordNotFound or AlreadyReplayed before any side effect.
        A failed republication is recorded on the row (replay_result=Failed)
        and returned rather than raised; the row stays replayed so the
        operator decides what happens next.
        """
        record = self.store.claim_replay(record_id, replayed_by)

        error: Optional[str] = None
        new_correlation_id: Optional[str] = None
        try:
            original = SyncEvent.from_json(record.original_message)
            self.ledger.reopen(original.account_id, original.idempotency_key)
            event = original.for_replay()
            new_correlation_id = event.correlation_id
            await self.publisher.publish(event)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.exception(
                "Failed to replay DLQ message %s. CorrelationId=%s, Error=%s",
                record_id,
                record.correlation_id,
                exc,
            )

        record = self.store.record_replay_result(record_id, error is None, error)
        if error is None:
            logger.info(
                "Replayed DLQ message %s. OriginalCorrelationId=%s, NewCorrelationId=%s",
                record_id,
                record.correlation_id,
                new_correlation_id,
            )
        return record
