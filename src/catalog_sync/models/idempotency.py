"""Idempotency ledger rows: one per (account_id, idempotency_key)."""
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from catalog_sync.db.types import UTCDateTime
from catalog_sync.models.envelope import utcnow


class IdempotencyStatus(str, Enum):
    STARTED = "Started"
    SUCCEEDED = "Succeeded"
    FAILED_PERMANENT = "FailedPermanent"


class IdempotencyRecord(SQLModel, table=True):
    """Tracks whether a logical operation has already produced its side effect."""

    __table_args__ = (
        UniqueConstraint("account_id", "idempotency_key", name="uq_idempotency_account_key"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: str = Field(index=True)
    idempotency_key: str = Field(index=True)
    tenant_id: Optional[str] = None
    status: IdempotencyStatus = IdempotencyStatus.STARTED
    first_seen_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    last_processed_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    result_hash: Optional[str] = None
    expires_at: datetime = Field(index=True, sa_type=UTCDateTime)

    @classmethod
    def start(
        cls,
        account_id: str,
        idempotency_key: str,
        ttl_days: int = 30,
        status: IdempotencyStatus = IdempotencyStatus.STARTED,
        tenant_id: Optional[str] = None,
    ) -> "IdempotencyRecord":
        now = utcnow()
        return cls(
            account_id=account_id,
            idempotency_key=idempotency_key,
            tenant_id=tenant_id,
            status=status,
            first_seen_at=now,
            last_processed_at=now,
            expires_at=now + timedelta(days=ttl_days),
        )
