"""
Sync status reconciliation.

A catalog submission is recorded as Submitted when it is pushed to the
marketplace. The marketplace later reports the import outcome through the
catalog-status webhook; the matching log row is moved to Done, Failed or
Partial. Webhooks are delivered at least once, so each (import, status) pair
is applied once through the idempotency ledger.
"""
import json
import logging
from typing import Callable, List, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from catalog_sync.models.envelope import utcnow
from catalog_sync.models.idempotency import IdempotencyStatus
from catalog_sync.models.sync import CatalogSyncLog, CatalogSyncStatus
from catalog_sync.models.webhooks import CatalogStatusWebhook
from catalog_sync.reliability.idempotency import IdempotencyLedger

logger = logging.getLogger(__name__)

DEFAULT_PARTIAL_ERROR_LIMIT = 50


def _dump(items) -> Optional[str]:
    if items is None:
        return None
    return json.dumps([item.model_dump(by_alias=True, exclude_none=True) for item in items])


class SyncStatusReconciler:
    """
    Args:
        engine: SQLAlchemy engine.
        ledger: Idempotency ledger guarding webhook redelivery.
        partial_error_limit: Max error descriptors stored for a partial import.
    """

    def __init__(
        self,
        engine,
        ledger: IdempotencyLedger,
        partial_error_limit: int = DEFAULT_PARTIAL_ERROR_LIMIT,
    ):
        self.engine = engine
        self.ledger = ledger
        self.partial_error_limit = partial_error_limit

    def record_submission(
        self,
        vendor_code: str,
        import_id: Optional[str] = None,
        chain_code: Optional[str] = None,
        correlation_id: Optional[str] = None,
        account_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        categories_count: int = 0,
        products_count: int = 0,
    ) -> CatalogSyncLog:
        log = CatalogSyncLog(
            vendor_code=vendor_code,
            chain_code=chain_code,
            import_id=import_id,
            correlation_id=correlation_id,
            account_id=account_id,
            tenant_id=tenant_id,
            status=CatalogSyncStatus.SUBMITTED,
            categories_count=categories_count,
            products_count=products_count,
        )
        with Session(self.engine) as s:
            s.add(log)
            s.commit()
            s.refresh(log)
        logger.info(
            "Recorded catalog submission. SyncLogId=%s, VendorCode=%s, ImportId=%s",
            log.id,
            vendor_code,
            import_id,
        )
        return log

    # ─── Webhook outcomes ─────────────────────────────────────────────────────

    def handle_completed(
        self, webhook: CatalogStatusWebhook, raw_payload: str, correlation_id: str
    ) -> Optional[CatalogSyncLog]:
        def apply(log: CatalogSyncLog) -> None:
            self._apply_summary(log, webhook)

        return self._reconcile(webhook, raw_payload, correlation_id, CatalogSyncStatus.DONE, apply)

    def handle_failed(
        self, webhook: CatalogStatusWebhook, raw_payload: str, correlation_id: str
    ) -> Optional[CatalogSyncLog]:
        errors = webhook.errors or []

        def apply(log: CatalogSyncLog) -> None:
            log.errors_count = len(errors)
            log.errors_json = _dump(webhook.errors)
            log.response_message = (errors[0].message if errors else None) or "Import failed"

        return self._reconcile(webhook, raw_payload, correlation_id, CatalogSyncStatus.FAILED, apply)

    def handle_partial(
        self, webhook: CatalogStatusWebhook, raw_payload: str, correlation_id: str
    ) -> Optional[CatalogSyncLog]:
        errors = webhook.errors or []

        def apply(log: CatalogSyncLog) -> None:
            self._apply_summary(log, webhook)
            log.errors_count = len(errors)
            log.errors_json = json.dumps(
                [e.describe() for e in errors[: self.partial_error_limit]]
            )
            log.response_message = f"Partial success with {len(errors)} errors"

        return self._reconcile(
            webhook, raw_payload, correlation_id, CatalogSyncStatus.PARTIAL, apply
        )

    # ─── Queries ──────────────────────────────────────────────────────────────

    def latest_for_vendor(self, vendor_code: str) -> Optional[CatalogSyncLog]:
        with Session(self.engine) as s:
            return s.exec(
                select(CatalogSyncLog)
                .where(CatalogSyncLog.vendor_code == vendor_code)
                .order_by(CatalogSyncLog.submitted_at.desc())
            ).first()

    def history(self, account_id: str, limit: int = 50) -> List[CatalogSyncLog]:
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(CatalogSyncLog)
                    .where(CatalogSyncLog.account_id == account_id)
                    .order_by(CatalogSyncLog.submitted_at.desc())
                    .limit(limit)
                ).all()
            )

    def find_by_import_id(self, s: Session, import_id: Optional[str]) -> Optional[CatalogSyncLog]:
        """Exact match first, then case-insensitive."""
        if not import_id or not import_id.strip():
            logger.warning("Sync log lookup called without an import id")
            return None

        log = s.exec(select(CatalogSyncLog).where(CatalogSyncLog.import_id == import_id)).first()
        if log is not None:
            return log

        log = s.exec(
            select(CatalogSyncLog).where(
                func.lower(CatalogSyncLog.import_id) == import_id.lower()
            )
        ).first()
        if log is not None:
            logger.info(
                "Found sync log by import id (case-insensitive). Id=%s, ImportId=%s",
                log.id,
                import_id,
            )
        return log

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _reconcile(
        self,
        webhook: CatalogStatusWebhook,
        raw_payload: str,
        correlation_id: str,
        status: CatalogSyncStatus,
        apply: Callable[[CatalogSyncLog], None],
    ) -> Optional[CatalogSyncLog]:
        ledger_account = webhook.vendor_code or "unknown"
        ledger_key = None
        if webhook.import_id:
            ledger_key = f"catalog-status:{webhook.import_id}:{status.value}"
            begin = self.ledger.try_begin(ledger_account, ledger_key)
            if not begin.is_new and begin.status == IdempotencyStatus.SUCCEEDED:
                logger.info(
                    "Skipping duplicate catalog status webhook. CorrelationId=%s, ImportId=%s, Status=%s",
                    correlation_id,
                    webhook.import_id,
                    status.value,
                )
                return None

        now = utcnow()
        with Session(self.engine) as s:
            log = self.find_by_import_id(s, webhook.import_id)
            if log is None:
                logger.warning(
                    "No sync log found for ImportId=%s. Creating new record from webhook. CorrelationId=%s",
                    webhook.import_id,
                    correlation_id,
                )
                log = CatalogSyncLog(
                    vendor_code=webhook.vendor_code or "unknown",
                    chain_code=webhook.chain_code,
                    import_id=webhook.import_id,
                    correlation_id=correlation_id,
                    submitted_at=now,
                )

            log.status = status
            log.completed_at = now
            log.duration_seconds = int((now - log.submitted_at).total_seconds())
            log.webhook_payload_json = raw_payload
            log.details_json = _dump(webhook.details)
            apply(log)

            s.add(log)
            s.commit()
            s.refresh(log)

        if ledger_key is not None:
            self.ledger.mark_succeeded(ledger_account, ledger_key)

        logger.info(
            "Updated sync log. SyncLogId=%s, VendorCode=%s, ImportId=%s, Status=%s, CorrelationId=%s",
            log.id,
            log.vendor_code,
            log.import_id,
            status.value,
            correlation_id,
        )
        return log

    @staticmethod
    def _apply_summary(log: CatalogSyncLog, webhook: CatalogStatusWebhook) -> None:
        summary = webhook.summary
        if summary is None:
            return
        log.categories_created = summary.categories_created
        log.categories_updated = summary.categories_updated
        log.products_created = summary.products_created
        log.products_updated = summary.products_updated
