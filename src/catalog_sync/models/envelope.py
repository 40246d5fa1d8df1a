"""
Message envelopes carried on the sync channels.

SyncEvent is the logical operation ("push this account's catalog"). It is
immutable once published; re-publishing the same logical change reuses its
idempotency_key so the ledger can deduplicate it.

RetryEnvelope wraps a SyncEvent after a failed attempt and travels on the
retry-tier channels.
"""
import hashlib
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

DEFAULT_SCHEMA_VERSION = "catalog.sync.v1"
IDEMPOTENCY_KEY_PREFIX = "catalog:sync:"

_BUCKET_FORMATS = {
    "minute": "%Y%m%d%H%M",
    "hour": "%Y%m%d%H",
    "day": "%Y%m%d",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Aware UTC copy of `value`; naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class FailureType(str, Enum):
    TRANSIENT = "Transient"
    PERMANENT = "Permanent"


def build_idempotency_key(
    account_id: str,
    scope_id: Optional[str],
    occurred_at: datetime,
    bucket: str = "hour",
) -> str:
    """Deterministic key for one logical sync of an account/scope.

    Two publications of the same account and scope inside the same time
    bucket produce the same key.
    """
    stamp = as_utc(occurred_at).strftime(_BUCKET_FORMATS[bucket])
    data = f"{account_id}:{scope_id or 'all'}:{stamp}"
    return IDEMPOTENCY_KEY_PREFIX + hashlib.sha256(data.encode("utf-8")).hexdigest()


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class SyncEvent(_WireModel):
    schema_version: str = DEFAULT_SCHEMA_VERSION
    correlation_id: str
    account_id: str
    secondary_account_id: Optional[str] = None
    scope_id: Optional[str] = None
    tenant_id: Optional[str] = None
    idempotency_key: str
    occurred_at: datetime

    @classmethod
    def new(
        cls,
        account_id: str,
        *,
        scope_id: Optional[str] = None,
        secondary_account_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
    ) -> "SyncEvent":
        """Build an envelope with a fresh correlation id and a derived key."""
        occurred_at = occurred_at or utcnow()
        return cls(
            schema_version=schema_version,
            correlation_id=str(uuid.uuid4()),
            account_id=account_id,
            secondary_account_id=secondary_account_id,
            scope_id=scope_id,
            tenant_id=tenant_id,
            idempotency_key=build_idempotency_key(account_id, scope_id, occurred_at),
            occurred_at=occurred_at,
        )

    @classmethod
    def from_json(cls, raw) -> "SyncEvent":
        return cls.model_validate_json(raw)

    def for_replay(self) -> "SyncEvent":
        """Same logical operation under a new correlation id."""
        return self.model_copy(update={"correlation_id": str(uuid.uuid4())})


class RetryEnvelope(_WireModel):
    message: SyncEvent
    attempts: int
    error_code: str
    error_message: str
    first_attempt_at: datetime
    last_attempt_at: datetime
    retry_delay_seconds: int  # informational; the scheduler enforces the delay
    failure_type: FailureType = FailureType.TRANSIENT

    @classmethod
    def from_json(cls, raw) -> "RetryEnvelope":
        return cls.model_validate_json(raw)

