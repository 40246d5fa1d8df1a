"""Sync trigger and status routes."""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from catalog_sync.api.deps import get_publisher, get_reconciler
from catalog_sync.config import Settings, get_settings
from catalog_sync.db.engine import get_session
from catalog_sync.errors import TransportUnavailable
from catalog_sync.messaging.publisher import SyncEventPublisher
from catalog_sync.models.envelope import SyncEvent
from catalog_sync.models.sync import CatalogSyncLog
from catalog_sync.reconciler.sync_status import SyncStatusReconciler

router = APIRouter()


class SyncTriggerRequest(BaseModel):
    account_id: str
    scope_id: Optional[str] = None  # None syncs the whole account
    secondary_account_id: Optional[str] = None
    tenant_id: Optional[str] = None


class SyncStatusResponse(BaseModel):
    status: str
    vendor_code: Optional[str]
    import_id: Optional[str]
    submitted_at: Optional[datetime]
    completed_at: Optional[datetime]
    duration_seconds: Optional[int]
    errors_count: Optional[int]
    response_message: Optional[str]


@router.post("/trigger")
async def trigger_sync(
    request: SyncTriggerRequest,
    publisher: SyncEventPublisher = Depends(get_publisher),
    settings: Settings = Depends(get_settings),
):
    """
    Publish a sync event for one account.
    Returns immediately; the worker consumes it.
    """
    event = SyncEvent.new(
        request.account_id,
        scope_id=request.scope_id,
        secondary_account_id=request.secondary_account_id,
        tenant_id=request.tenant_id,
        schema_version=settings.schema_version,
    )
    try:
        await publisher.publish(event)
    except TransportUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {
        "message": "Sync event published",
        "correlation_id": event.correlation_id,
        "idempotency_key": event.idempotency_key,
    }


@router.get("/status/{vendor_code}", response_model=SyncStatusResponse)
def sync_status(
    vendor_code: str,
    reconciler: SyncStatusReconciler = Depends(get_reconciler),
):
    """Return the status of the most recent catalog submission for a vendor."""
    log = reconciler.latest_for_vendor(vendor_code)
    if not log:
        return SyncStatusResponse(
            status="never_run",
            vendor_code=vendor_code,
            import_id=None,
            submitted_at=None,
            completed_at=None,
            duration_seconds=None,
            errors_count=None,
            response_message=None,
        )
    return SyncStatusResponse(
        status=log.status.value,
        vendor_code=log.vendor_code,
        import_id=log.import_id,
        submitted_at=log.submitted_at,
        completed_at=log.completed_at,
        duration_seconds=log.duration_seconds,
        errors_count=log.errors_count,
        response_message=log.response_message,
    )


@router.get("/history/{account_id}", response_model=List[CatalogSyncLog])
def sync_history(
    account_id: str,
    limit: int = 50,
    reconciler: SyncStatusReconciler = Depends(get_reconciler),
):
    """Submissions for an account, newest first."""
    return reconciler.history(account_id, limit)


@router.get("/logs/{log_id}", response_model=CatalogSyncLog)
def get_sync_log(log_id: int, session: Session = Depends(get_session)):
    """Fetch a single sync log by primary key."""
    log = session.get(CatalogSyncLog, log_id)
    if not log:
        raise HTTPException(status_code=404, detail="Sync log not found")
    return log
