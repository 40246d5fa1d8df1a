"""
Dead-letter store.

Rows are inserted by the retry escalator and remediated by operators through
the DLQ routes. The replay and acknowledge flags are flipped with a single
conditional UPDATE each, so two operators racing on the same row cannot both
win.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy import and_, case, func, update
from sqlmodel import Session, select

from catalog_sync.errors import (
    AlreadyAcknowledged,
    AlreadyReplayed,
    DlqRecordNotFound,
    InvalidPriority,
)
from catalog_sync.models.dlq import DlqPriority, DlqRecord, ReplayResult
from catalog_sync.models.envelope import FailureType, SyncEvent, as_utc, utcnow

logger = logging.getLogger(__name__)

_IS_PENDING = and_(
    DlqRecord.is_replayed == False,  # noqa: E712
    DlqRecord.is_acknowledged == False,  # noqa: E712
)

# Critical, then High, then everything else
_PRIORITY_RANK = case(
    (DlqRecord.priority == DlqPriority.CRITICAL, 0),
    (DlqRecord.priority == DlqPriority.HIGH, 1),
    else_=2,
)


@dataclass
class EventTypeStatistics:
    total: int = 0
    pending: int = 0


@dataclass
class DlqStatistics:
    total: int = 0
    pending: int = 0
    replayed: int = 0
    acknowledged: int = 0
    by_event_type: Dict[str, EventTypeStatistics] = field(default_factory=dict)


def parse_priority(value: str) -> DlqPriority:
    """Exact priority name ("Low", "Normal", "High", "Critical"). Raises InvalidPriority."""
    for priority in DlqPriority:
        if priority.value == (value or "").strip():
            return priority
    raise InvalidPriority(value, [p.value for p in DlqPriority])


class DlqStore:
    def __init__(self, engine):
        self.engine = engine

    def store_failure(
        self,
        event_type: str,
        message: SyncEvent,
        attempts: int,
        failure_type: FailureType,
        error_code: str,
        error_message: Optional[str],
        stack_trace: Optional[str],
        first_attempt_at,
        last_attempt_at,
        priority: DlqPriority = DlqPriority.NORMAL,
    ) -> DlqRecord:
        record = DlqRecord(
            event_type=event_type,
            correlation_id=message.correlation_id,
            account_id=message.account_id,
            tenant_id=message.tenant_id,
            original_message=message.to_json(),
            error_code=error_code,
            error_message=error_message,
            stack_trace=stack_trace,
            attempts=attempts,
            failure_type=failure_type,
            first_attempt_at=as_utc(first_attempt_at),
            last_attempt_at=as_utc(last_attempt_at),
            priority=priority,
        )
        with Session(self.engine) as s:
            s.add(record)
            s.commit()
            s.refresh(record)

        logger.error(
            "Message moved to DLQ. Id=%s, EventType=%s, CorrelationId=%s, "
            "Attempts=%d, FailureType=%s, ErrorCode=%s",
            record.id,
            event_type,
            record.correlation_id,
            attempts,
            failure_type.value,
            error_code,
        )
        return record

    def list_pending(
        self,
        event_type: Optional[str] = None,
        priority: Optional[DlqPriority] = None,
        limit: int = 100,
    ) -> List[DlqRecord]:
        """Unreplayed, unacknowledged records, most urgent and oldest first."""
        query = select(DlqRecord).where(_IS_PENDING)
        if event_type:
            query = query.where(DlqRecord.event_type == event_type)
        if priority is not None:
            query = query.where(DlqRecord.priority == priority)
        query = query.order_by(_PRIORITY_RANK, DlqRecord.last_attempt_at.asc()).limit(limit)

        with Session(self.engine) as s:
            return list(s.exec(query).all())

    def get_by_id(self, record_id: int) -> Optional[DlqRecord]:
        with Session(self.engine) as s:
            return s.get(DlqRecord, record_id)

    def claim_replay(self, record_id: int, replayed_by: str) -> DlqRecord:
        """Flip is_replayed False -> True. Exactly one caller wins per record."""
        record = self._guarded_update(
            record_id,
            DlqRecord.is_replayed == False,  # noqa: E712
            AlreadyReplayed,
            is_replayed=True,
            replayed_at=utcnow(),
            replayed_by=replayed_by,
        )
        logger.info("DLQ message %s claimed for replay by %s", record_id, replayed_by)
        return record

    def record_replay_result(
        self,
        record_id: int,
        success: bool,
        error_message: Optional[str] = None,
    ) -> DlqRecord:
        with Session(self.engine) as s:
            record = s.get(DlqRecord, record_id)
            if record is None:
                raise DlqRecordNotFound(record_id)
            record.replay_result = ReplayResult.SUCCESS if success else ReplayResult.FAILED
            record.replay_error_message = None if success else error_message
            s.add(record)
            s.commit()
            s.refresh(record)
            return record

    def mark_replayed(
        self,
        record_id: int,
        success: bool,
        replayed_by: str,
        error_message: Optional[str] = None,
    ) -> DlqRecord:
        """Claim and record the outcome in one statement."""
        record = self._guarded_update(
            record_id,
            DlqRecord.is_replayed == False,  # noqa: E712
            AlreadyReplayed,
            is_replayed=True,
            replayed_at=utcnow(),
            replayed_by=replayed_by,
            replay_result=ReplayResult.SUCCESS if success else ReplayResult.FAILED,
            replay_error_message=None if success else error_message,
        )
        logger.info(
            "DLQ message %s marked as replayed by %s. Success=%s",
            record_id,
            replayed_by,
            success,
        )
        return record

    def acknowledge(
        self,
        record_id: int,
        acknowledged_by: str,
        notes: Optional[str] = None,
    ) -> DlqRecord:
        record = self._guarded_update(
            record_id,
            DlqRecord.is_acknowledged == False,  # noqa: E712
            AlreadyAcknowledged,
            is_acknowledged=True,
            acknowledged_at=utcnow(),
            acknowledged_by=acknowledged_by,
            notes=notes,
        )
        logger.info("DLQ message %s acknowledged by %s", record_id, acknowledged_by)
        return record

    def update_priority(self, record_id: int, priority) -> DlqRecord:
        if not isinstance(priority, DlqPriority):
            priority = parse_priority(priority)
        with Session(self.engine) as s:
            record = s.get(DlqRecord, record_id)
            if record is None:
                raise DlqRecordNotFound(record_id)
            record.priority = priority
            s.add(record)
            s.commit()
            s.refresh(record)
        logger.info("DLQ message %s priority set to %s", record_id, priority.value)
        return record

    def statistics(self) -> DlqStatistics:
        pending_flag = case((_IS_PENDING, 1), else_=0)
        replayed_flag = case((DlqRecord.is_replayed == True, 1), else_=0)  # noqa: E712
        acknowledged_flag = case((DlqRecord.is_acknowledged == True, 1), else_=0)  # noqa: E712

        with Session(self.engine) as s:
            rows = s.exec(
                select(
                    DlqRecord.event_type,
                    func.count(DlqRecord.id),
                    func.sum(pending_flag),
                    func.sum(replayed_flag),
                    func.sum(acknowledged_flag),
                ).group_by(DlqRecord.event_type)
            ).all()

        stats = DlqStatistics()
        for event_type, total, pending, replayed, acknowledged in rows:
            stats.total += total
            stats.pending += pending or 0
            stats.replayed += replayed or 0
            stats.acknowledged += acknowledged or 0
            stats.by_event_type[event_type] = EventTypeStatistics(
                total=total, pending=pending or 0
            )
        return stats

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _guarded_update(self, record_id: int, guard, conflict_error, **values) -> DlqRecord:
        with Session(self.engine) as s:
            result = s.exec(
                update(DlqRecord)
                .where(DlqRecord.id == record_id, guard)
                .values(**values)
            )
            s.commit()
            if result.rowcount == 0:
                if s.get(DlqRecord, record_id) is None:
                    raise DlqRecordNotFound(record_id)
                raise conflict_error(record_id)
            return s.get(DlqRecord, record_id)
