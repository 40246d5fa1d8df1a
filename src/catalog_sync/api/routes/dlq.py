"""DLQ inspection and remediation routes."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from catalog_sync.api.deps import get_dlq_store, get_replay_service, require_operator
from catalog_sync.dlq.replay import DlqReplayService
from catalog_sync.dlq.store import DlqStore, parse_priority
from catalog_sync.errors import (
    AlreadyAcknowledged,
    AlreadyReplayed,
    DlqRecordNotFound,
    InvalidPriority,
)
from catalog_sync.models.dlq import DlqRecord, ReplayResult
from catalog_sync.models.envelope import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


class AcknowledgeRequest(BaseModel):
    notes: Optional[str] = None


class UpdatePriorityRequest(BaseModel):
    priority: str = ""


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    body = {"success": False, "message": message}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def _summary(record: DlqRecord) -> dict:
    return {
        "id": record.id,
        "eventType": record.event_type,
        "correlationId": record.correlation_id,
        "accountId": record.account_id,
        "errorCode": record.error_code,
        "errorMessage": record.error_message,
        "attempts": record.attempts,
        "failureType": record.failure_type,
        "priority": record.priority,
        "firstAttemptAt": record.first_attempt_at,
        "lastAttemptAt": record.last_attempt_at,
        "isReplayed": record.is_replayed,
        "isAcknowledged": record.is_acknowledged,
    }


def _detail(record: DlqRecord) -> dict:
    detail = _summary(record)
    detail.update(
        {
            "tenantId": record.tenant_id,
            "originalMessage": record.original_message,
            "stackTrace": record.stack_trace,
            "replayedAt": record.replayed_at,
            "replayedBy": record.replayed_by,
            "replayResult": record.replay_result,
            "replayErrorMessage": record.replay_error_message,
            "acknowledgedAt": record.acknowledged_at,
            "acknowledgedBy": record.acknowledged_by,
            "notes": record.notes,
            "createdAt": record.created_at,
        }
    )
    return detail


@router.get("/stats")
def dlq_stats(store: DlqStore = Depends(get_dlq_store)):
    stats = store.statistics()
    return {
        "success": True,
        "totalMessages": stats.total,
        "pendingMessages": stats.pending,
        "replayedMessages": stats.replayed,
        "acknowledgedMessages": stats.acknowledged,
        "byEventType": {
            event_type: {"total": s.total, "pending": s.pending}
            for event_type, s in stats.by_event_type.items()
        },
        "timestamp": utcnow(),
    }


@router.get("/messages")
def pending_messages(
    event_type: Optional[str] = Query(None, alias="eventType"),
    priority: Optional[str] = None,
    limit: int = Query(100, alias="maxRecords"),
    store: DlqStore = Depends(get_dlq_store),
):
    """Pending messages: Critical first, then High, then oldest."""
    try:
        parsed = parse_priority(priority) if priority else None
    except InvalidPriority as exc:
        return _error(400, str(exc))

    records = store.list_pending(event_type=event_type, priority=parsed, limit=limit)
    return {
        "success": True,
        "count": len(records),
        "messages": [_summary(r) for r in records],
        "timestamp": utcnow(),
    }


@router.get("/messages/{record_id}")
def get_message(record_id: int, store: DlqStore = Depends(get_dlq_store)):
    record = store.get_by_id(record_id)
    if record is None:
        return _error(404, str(DlqRecordNotFound(record_id)))
    return {"success": True, "message": _detail(record)}


@router.post("/messages/{record_id}/replay")
async def replay_message(
    record_id: int,
    operator: str = Depends(require_operator),
    store: DlqStore = Depends(get_dlq_store),
    replay_service: DlqReplayService = Depends(get_replay_service),
):
    try:
        record = await replay_service.replay(record_id, operator)
    except DlqRecordNotFound as exc:
        return _error(404, str(exc))
    except AlreadyReplayed as exc:
        existing = store.get_by_id(record_id)
        return _error(
            400,
            str(exc),
            replayedAt=existing.replayed_at if existing else None,
            replayResult=existing.replay_result if existing else None,
        )

    if record.replay_result == ReplayResult.FAILED:
        return _error(
            500,
            "Failed to replay message",
            error=record.replay_error_message,
            dlqId=record_id,
        )

    logger.info(
        "DLQ message replayed. Id=%s, EventType=%s, ReplayedBy=%s",
        record_id,
        record.event_type,
        operator,
    )
    return {
        "success": True,
        "message": "Message replayed successfully",
        "dlqId": record_id,
        "eventType": record.event_type,
        "replayedAt": record.replayed_at,
    }


@router.post("/messages/{record_id}/acknowledge")
def acknowledge_message(
    record_id: int,
    request: Optional[AcknowledgeRequest] = None,
    operator: str = Depends(require_operator),
    store: DlqStore = Depends(get_dlq_store),
):
    try:
        record = store.acknowledge(record_id, operator, request.notes if request else None)
    except DlqRecordNotFound as exc:
        return _error(404, str(exc))
    except AlreadyAcknowledged as exc:
        existing = store.get_by_id(record_id)
        return _error(
            400, str(exc), acknowledgedAt=existing.acknowledged_at if existing else None
        )

    return {
        "success": True,
        "message": "Message acknowledged",
        "dlqId": record_id,
        "acknowledgedAt": record.acknowledged_at,
    }


@router.patch("/messages/{record_id}/priority")
def update_priority(
    record_id: int,
    request: UpdatePriorityRequest,
    store: DlqStore = Depends(get_dlq_store),
):
    if not request.priority.strip():
        return _error(400, "Priority is required")
    try:
        priority = parse_priority(request.priority)
        record = store.update_priority(record_id, priority)
    except InvalidPriority as exc:
        return _error(400, str(exc))
    except DlqRecordNotFound as exc:
        return _error(404, str(exc))

    return {
        "success": True,
        "message": "Priority updated",
        "dlqId": record_id,
        "newPriority": record.priority,
    }
