"""Tests for SyncStatusReconciler: webhook outcomes applied to sync logs."""
import json
from datetime import timedelta

import pytest
from sqlmodel import Session, select

from catalog_sync.models.idempotency import IdempotencyStatus
from catalog_sync.models.sync import CatalogSyncLog, CatalogSyncStatus
from catalog_sync.models.webhooks import CatalogStatusWebhook
from catalog_sync.reconciler.sync_status import SyncStatusReconciler


@pytest.fixture(name="reconciler")
def reconciler_fixture(engine, ledger):
    return SyncStatusReconciler(engine, ledger, partial_error_limit=2)


def _webhook(raw: str) -> CatalogStatusWebhook:
    return CatalogStatusWebhook.model_validate_json(raw).normalized()


COMPLETED = (
    '{"vendorCode": "V1", "importId": "imp-1", "status": "completed",'
    ' "summary": {"categoriesCreated": 2, "categoriesUpdated": 1,'
    ' "productsCreated": 10, "productsUpdated": 4}}'
)

FAILED = (
    '{"vendorCode": "V1", "importId": "imp-1", "status": "failed",'
    ' "errors": [{"type": "Product", "remoteCode": "P-1", "message": "Missing price"}]}'
)

PARTIAL = (
    '{"vendorCode": "V1", "importId": "imp-1", "status": "partial",'
    ' "summary": {"productsCreated": 5},'
    ' "errors": ['
    '{"type": "Product", "remoteCode": "P-1", "message": "Missing price"},'
    '{"type": "Product", "remoteCode": "P-2", "message": "Bad image"},'
    '{"type": "Category", "remoteCode": "C-9", "message": "Empty name"}]}'
)


# ─── Submission ───────────────────────────────────────────────────────────────

class TestRecordSubmission:
    def test_creates_submitted_log(self, reconciler):
        log = reconciler.record_submission(
            "V1", import_id="imp-1", account_id="acct-1", categories_count=3, products_count=40
        )
        assert log.id is not None
        assert log.status == CatalogSyncStatus.SUBMITTED
        assert log.products_count == 40
        assert log.completed_at is None


# ─── Webhook outcomes ─────────────────────────────────────────────────────────

class TestOutcomes:
    def test_completed_moves_to_done(self, reconciler):
        submitted = reconciler.record_submission("V1", import_id="imp-1")

        log = reconciler.handle_completed(_webhook(COMPLETED), COMPLETED, "corr-1")

        assert log.id == submitted.id
        assert log.status == CatalogSyncStatus.DONE
        assert log.categories_created == 2
        assert log.products_created == 10
        assert log.products_updated == 4
        assert log.completed_at >= log.submitted_at
        assert log.duration_seconds >= 0
        assert log.webhook_payload_json == COMPLETED

    def test_failed_records_first_error(self, reconciler):
        reconciler.record_submission("V1", import_id="imp-1")

        log = reconciler.handle_failed(_webhook(FAILED), FAILED, "corr-1")

        assert log.status == CatalogSyncStatus.FAILED
        assert log.errors_count == 1
        assert log.response_message == "Missing price"
        assert json.loads(log.errors_json)[0]["remoteCode"] == "P-1"

    def test_failed_without_errors(self, reconciler):
        raw = '{"vendorCode": "V1", "importId": "imp-1", "status": "failed"}'
        log = reconciler.handle_failed(_webhook(raw), raw, "corr-1")
        assert log.errors_count == 0
        assert log.response_message == "Import failed"

    def test_partial_caps_stored_errors(self, reconciler):
        reconciler.record_submission("V1", import_id="imp-1")

        log = reconciler.handle_partial(_webhook(PARTIAL), PARTIAL, "corr-1")

        assert log.status == CatalogSyncStatus.PARTIAL
        assert log.errors_count == 3
        assert json.loads(log.errors_json) == [
            "Product:P-1 - Missing price",
            "Product:P-2 - Bad image",
        ]
        assert log.response_message == "Partial success with 3 errors"
        assert log.products_created == 5

    def test_unknown_import_creates_log(self, reconciler, engine):
        log = reconciler.handle_completed(_webhook(COMPLETED), COMPLETED, "corr-9")

        assert log.status == CatalogSyncStatus.DONE
        assert log.correlation_id == "corr-9"
        with Session(engine) as s:
            assert len(s.exec(select(CatalogSyncLog)).all()) == 1

    def test_import_id_match_is_case_insensitive(self, reconciler):
        submitted = reconciler.record_submission("V1", import_id="IMP-1")
        log = reconciler.handle_completed(_webhook(COMPLETED), COMPLETED, "corr-1")
        assert log.id == submitted.id

    def test_catalog_import_id_and_detail_vendor(self, reconciler):
        raw = (
            '{"catalogImportId": "imp-7", "status": "completed",'
            ' "details": [{"posVendorId": "V7"}, {"posVendorId": "V8"}]}'
        )
        log = reconciler.handle_completed(_webhook(raw), raw, "corr-1")
        assert log.import_id == "imp-7"
        assert log.vendor_code == "V7"
        assert [d["posVendorId"] for d in json.loads(log.details_json)] == ["V7", "V8"]


# ─── Redelivery ───────────────────────────────────────────────────────────────

class TestRedelivery:
    def test_duplicate_webhook_applied_once(self, reconciler, ledger):
        reconciler.record_submission("V1", import_id="imp-1")
        first = reconciler.handle_completed(_webhook(COMPLETED), COMPLETED, "corr-1")
        second = reconciler.handle_completed(_webhook(COMPLETED), COMPLETED, "corr-2")

        assert first is not None
        assert second is None
        record = ledger.get("V1", "catalog-status:imp-1:Done")
        assert record.status == IdempotencyStatus.SUCCEEDED

    def test_different_status_for_same_import_is_applied(self, reconciler):
        reconciler.record_submission("V1", import_id="imp-1")
        reconciler.handle_partial(_webhook(PARTIAL), PARTIAL, "corr-1")
        log = reconciler.handle_completed(_webhook(COMPLETED), COMPLETED, "corr-2")
        assert log.status == CatalogSyncStatus.DONE

    def test_without_import_id_is_not_deduplicated(self, reconciler):
        raw = '{"vendorCode": "V1", "status": "completed"}'
        assert reconciler.handle_completed(_webhook(raw), raw, "corr-1") is not None
        assert reconciler.handle_completed(_webhook(raw), raw, "corr-2") is not None


# ─── Queries ──────────────────────────────────────────────────────────────────

class TestQueries:
    def test_latest_for_vendor(self, reconciler, engine):
        older = reconciler.record_submission("V1", import_id="imp-1")
        newer = reconciler.record_submission("V1", import_id="imp-2")
        with Session(engine) as s:
            row = s.get(CatalogSyncLog, older.id)
            row.submitted_at = newer.submitted_at - timedelta(hours=1)
            s.add(row)
            s.commit()

        assert reconciler.latest_for_vendor("V1").id == newer.id
        assert reconciler.latest_for_vendor("V2") is None

    def test_history_filters_by_account(self, reconciler):
        reconciler.record_submission("V1", import_id="imp-1", account_id="acct-1")
        reconciler.record_submission("V2", import_id="imp-2", account_id="acct-2")
        reconciler.record_submission("V1", import_id="imp-3", account_id="acct-1")

        history = reconciler.history("acct-1")

        assert {log.import_id for log in history} == {"imp-1", "imp-3"}
        assert len(reconciler.history("acct-1", limit=1)) == 1

    def test_find_by_import_id_blank(self, reconciler, engine):
        with Session(engine) as s:
            assert reconciler.find_by_import_id(s, "  ") is None
