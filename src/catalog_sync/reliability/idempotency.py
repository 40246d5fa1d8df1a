"""
Idempotency ledger.

Every consumer calls try_begin() before performing its externally visible
side effect:

  - new record            -> process, then mark_succeeded()
  - existing Succeeded    -> skip; report success without reprocessing
  - existing Started      -> a previous attempt crashed mid-flight; reprocess
                             (side effects must be repeatable) and mark_succeeded()
  - existing FailedPermanent -> do not retry; surface the same terminal failure

Atomicity comes from the unique constraint on (account_id, idempotency_key):
try_begin inserts first and falls back to reading the winner's row on
IntegrityError, so concurrent duplicate deliveries cannot both be "new".
"""
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from catalog_sync.models.envelope import utcnow
from catalog_sync.models.idempotency import IdempotencyRecord, IdempotencyStatus

logger = logging.getLogger(__name__)

DEFAULT_TTL_DAYS = 30


@dataclass
class BeginResult:
    is_new: bool
    record: IdempotencyRecord

    @property
    def status(self) -> IdempotencyStatus:
        return self.record.status


def compute_result_hash(result: Any) -> str:
    """Cheap fingerprint of an outcome: sha256 of canonical JSON."""
    payload = json.dumps(result, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class IdempotencyLedger:
    """Durable (account_id, idempotency_key) -> status map."""

    def __init__(self, engine, default_ttl_days: int = DEFAULT_TTL_DAYS):
        self.engine = engine
        self.default_ttl_days = default_ttl_days

    def try_begin(
        self,
        account_id: str,
        key: str,
        ttl_days: Optional[int] = None,
        tenant_id: Optional[str] = None,
    ) -> BeginResult:
        """Create a Started record if absent, otherwise return the existing one.

        A record past its expires_at that the sweep has not removed yet is
        treated as absent and replaced.
        """
        ttl = ttl_days or self.default_ttl_days

        for _ in range(2):
            record = IdempotencyRecord.start(account_id, key, ttl, tenant_id=tenant_id)
            with Session(self.engine) as s:
                s.add(record)
                try:
                    s.commit()
                except IntegrityError:
                    s.rollback()
                else:
                    s.refresh(record)
                    logger.info(
                        "Idempotency: operation marked as started. AccountId=%s, Key=%s",
                        account_id,
                        key,
                    )
                    return BeginResult(is_new=True, record=record)

                existing = self._find(s, account_id, key)
                if existing is None:
                    # Removed between our insert and read; try again
                    continue
                if existing.expires_at <= utcnow():
                    s.exec(
                        delete(IdempotencyRecord).where(
                            IdempotencyRecord.id == existing.id,
                            IdempotencyRecord.expires_at <= utcnow(),
                        )
                    )
                    s.commit()
                    logger.info(
                        "Idempotency: replacing expired record. AccountId=%s, Key=%s",
                        account_id,
                        key,
                    )
                    continue

                logger.info(
                    "Idempotency: key already seen. AccountId=%s, Key=%s, Status=%s",
                    account_id,
                    key,
                    existing.status.value,
                )
                return BeginResult(is_new=False, record=existing)

        # Lost two races in a row; report whatever is there now
        with Session(self.engine) as s:
            existing = self._find(s, account_id, key)
        if existing is None:
            raise RuntimeError(f"idempotency record for {account_id}/{key} keeps disappearing")
        return BeginResult(is_new=False, record=existing)

    def mark_succeeded(
        self,
        account_id: str,
        key: str,
        result_hash: Optional[str] = None,
    ) -> IdempotencyRecord:
        record = self._set_status(account_id, key, IdempotencyStatus.SUCCEEDED, result_hash)
        logger.info(
            "Idempotency: operation marked as succeeded. AccountId=%s, Key=%s",
            account_id,
            key,
        )
        return record

    def mark_failed_permanent(self, account_id: str, key: str) -> IdempotencyRecord:
        record = self._set_status(account_id, key, IdempotencyStatus.FAILED_PERMANENT)
        logger.warning(
            "Idempotency: operation marked as permanently failed. AccountId=%s, Key=%s",
            account_id,
            key,
        )
        return record

    def get(self, account_id: str, key: str) -> Optional[IdempotencyRecord]:
        with Session(self.engine) as s:
            return self._find(s, account_id, key)

    def reopen(self, account_id: str, key: str) -> bool:
        """Drop a FailedPermanent record so an operator replay can run again.

        Succeeded and Started records are left alone. Returns True if a
        record was removed.
        """
        with Session(self.engine) as s:
            result = s.exec(
                delete(IdempotencyRecord).where(
                    IdempotencyRecord.account_id == account_id,
                    IdempotencyRecord.idempotency_key == key,
                    IdempotencyRecord.status == IdempotencyStatus.FAILED_PERMANENT,
                )
            )
            s.commit()
        reopened = result.rowcount > 0
        if reopened:
            logger.info("Idempotency: reopened key for replay. AccountId=%s, Key=%s", account_id, key)
        return reopened

    def delete_expired(self) -> int:
        """Remove every record whose expires_at is in the past. Returns the count."""
        with Session(self.engine) as s:
            result = s.exec(
                delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= utcnow())
            )
            s.commit()
        count = result.rowcount or 0
        logger.info("Idempotency sweep removed %d expired records", count)
        return count

    # ─── Internal helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _find(s: Session, account_id: str, key: str) -> Optional[IdempotencyRecord]:
        return s.exec(
            select(IdempotencyRecord).where(
                IdempotencyRecord.account_id == account_id,
                IdempotencyRecord.idempotency_key == key,
            )
        ).first()

    def _set_status(
        self,
        account_id: str,
        key: str,
        status: IdempotencyStatus,
        result_hash: Optional[str] = None,
    ) -> IdempotencyRecord:
        with Session(self.engine) as s:
            record = self._find(s, account_id, key)
            if record is None:
                record = IdempotencyRecord.start(
                    account_id, key, self.default_ttl_days, status=status
                )
            record.status = status
            record.last_processed_at = utcnow()
            if result_hash is not None:
                record.result_hash = result_hash
            s.add(record)
            s.commit()
            s.refresh(record)
            return record
