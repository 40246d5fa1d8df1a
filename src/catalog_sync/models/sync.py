"""Catalog sync audit log model."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from catalog_sync.db.types import UTCDateTime
from catalog_sync.models.envelope import utcnow


class CatalogSyncStatus(str, Enum):
    SUBMITTED = "Submitted"
    PROCESSING = "Processing"
    DONE = "Done"
    FAILED = "Failed"
    PARTIAL = "Partial"


class CatalogSyncLog(SQLModel, table=True):
    """Records each catalog submission to the marketplace and its outcome."""

    id: Optional[int] = Field(default=None, primary_key=True)
    vendor_code: str = Field(index=True)
    chain_code: Optional[str] = None
    import_id: Optional[str] = Field(default=None, index=True)
    correlation_id: Optional[str] = None
    account_id: Optional[str] = Field(default=None, index=True)
    tenant_id: Optional[str] = None
    status: CatalogSyncStatus = CatalogSyncStatus.SUBMITTED

    categories_count: int = 0
    products_count: int = 0
    categories_created: int = 0
    categories_updated: int = 0
    products_created: int = 0
    products_updated: int = 0
    errors_count: int = 0
    errors_json: Optional[str] = None
    response_message: Optional[str] = None

    submitted_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    duration_seconds: Optional[int] = None

    # Raw webhook body kept for audit
    webhook_payload_json: Optional[str] = None
    # Per-sub-vendor breakdown for batched submissions
    details_json: Optional[str] = None
