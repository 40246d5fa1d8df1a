"""Dead-letter records for messages that exhausted retries or failed permanently."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from catalog_sync.db.types import UTCDateTime
from catalog_sync.models.envelope import FailureType, utcnow


class DlqPriority(str, Enum):
    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"
    CRITICAL = "Critical"


class ReplayResult(str, Enum):
    SUCCESS = "Success"
    FAILED = "Failed"


class DlqEventType:
    MENU_SYNC = "MenuSync"
    ORDER_SYNC = "OrderSync"
    AVAILABILITY_UPDATE = "AvailabilityUpdate"
    CATALOG_SYNC = "CatalogSync"


class DlqRecord(SQLModel, table=True):
    """
    One failed message awaiting manual remediation.

    is_replayed and is_acknowledged only ever go False -> True. A record may
    be replayed and later acknowledged, or acknowledged without a replay.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    event_type: str = Field(index=True)
    correlation_id: str = Field(index=True)
    account_id: Optional[str] = Field(default=None, index=True)
    tenant_id: Optional[str] = None

    original_message: str  # serialized SyncEvent
    error_code: str
    error_message: Optional[str] = None
    stack_trace: Optional[str] = None

    attempts: int = 0
    failure_type: FailureType = FailureType.PERMANENT
    first_attempt_at: datetime = Field(sa_type=UTCDateTime)
    last_attempt_at: datetime = Field(sa_type=UTCDateTime)
    priority: DlqPriority = DlqPriority.NORMAL

    # Replay
    is_replayed: bool = Field(default=False, index=True)
    replayed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    replayed_by: Optional[str] = None
    replay_result: Optional[ReplayResult] = None
    replay_error_message: Optional[str] = None

    # Acknowledgement
    is_acknowledged: bool = Field(default=False, index=True)
    acknowledged_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    acknowledged_by: Optional[str] = None
    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def is_pending(self) -> bool:
        return not self.is_replayed and not self.is_acknowledged
