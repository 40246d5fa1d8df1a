"""Tests for failure classification and the retry escalator."""
from datetime import datetime
from types import SimpleNamespace

import pytest
from pydantic import BaseModel, ValidationError

from catalog_sync.errors import PermanentSyncError, TransientSyncError, UnknownAccountError
from catalog_sync.models.envelope import FailureType
from catalog_sync.models.idempotency import IdempotencyStatus
from catalog_sync.reliability.classifier import classify_failure, error_code
from catalog_sync.reliability.retry import Escalation, RetryEscalator


class _HttpError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.response = SimpleNamespace(status_code=status_code)


def _validation_error() -> ValidationError:
    class Model(BaseModel):
        x: int

    try:
        Model(x="nope")
    except ValidationError as exc:
        return exc
    raise AssertionError("expected a validation error")


# ─── classify_failure ─────────────────────────────────────────────────────────

class TestClassifyFailure:
    @pytest.mark.parametrize(
        "exc",
        [
            PermanentSyncError("bad catalog"),
            UnknownAccountError("no such account"),
            ValueError("bad value"),
            KeyError("missing"),
            TypeError("wrong type"),
            _HttpError(400),
            _HttpError(404),
            TransientSyncError("forbidden", status_code=403),
        ],
    )
    def test_permanent(self, exc):
        assert classify_failure(exc) == FailureType.PERMANENT

    def test_pydantic_validation_is_permanent(self):
        assert classify_failure(_validation_error()) == FailureType.PERMANENT

    @pytest.mark.parametrize(
        "exc",
        [
            TimeoutError("slow"),
            ConnectionError("reset"),
            RuntimeError("unknown"),
            TransientSyncError("upstream", status_code=503),
            _HttpError(500),
            _HttpError(429),
            _HttpError(408),
        ],
    )
    def test_transient(self, exc):
        assert classify_failure(exc) == FailureType.TRANSIENT

    def test_error_code_is_class_name(self):
        assert error_code(UnknownAccountError("x")) == "UnknownAccountError"


# ─── RetryEscalator ───────────────────────────────────────────────────────────

@pytest.fixture(name="escalator")
def escalator_fixture(channels, recording_scheduler, dlq_store, ledger):
    return RetryEscalator(
        channels=channels,
        delay_scheduler=recording_scheduler,
        dlq_store=dlq_store,
        ledger=ledger,
        max_attempts=3,
        event_type="MenuSync",
    )


class TestRetryEscalator:
    def test_transient_first_failure_schedules_tier_one(self, escalator, recording_scheduler, sync_event):
        outcome = escalator.handle_failure(sync_event, TimeoutError("slow"), attempts=1)

        assert outcome == Escalation.RETRY_SCHEDULED
        [(tier, envelope)] = recording_scheduler.calls
        assert tier.delay_seconds == 60
        assert tier.channel == "catalog.sync.retry.1m"
        assert envelope.attempts == 1
        assert envelope.retry_delay_seconds == 60
        assert envelope.error_code == "TimeoutError"
        assert envelope.failure_type == FailureType.TRANSIENT
        assert envelope.message.idempotency_key == sync_event.idempotency_key

    def test_second_failure_uses_tier_two(self, escalator, recording_scheduler, sync_event):
        escalator.handle_failure(sync_event, TimeoutError("slow"), attempts=2)
        [(tier, _)] = recording_scheduler.calls
        assert tier.delay_seconds == 300

    def test_first_attempt_time_is_carried(self, escalator, recording_scheduler, sync_event):
        first = datetime(2025, 3, 1, 10, 0)
        escalator.handle_failure(sync_event, TimeoutError("slow"), attempts=2, first_attempt_at=first)
        [(_, envelope)] = recording_scheduler.calls
        assert envelope.first_attempt_at == first

    def test_exhausted_goes_to_dlq(self, escalator, recording_scheduler, dlq_store, ledger, sync_event):
        ledger.try_begin(sync_event.account_id, sync_event.idempotency_key)
        outcome = escalator.handle_failure(sync_event, TimeoutError("slow"), attempts=3)

        assert outcome == Escalation.DEAD_LETTERED
        assert recording_scheduler.calls == []
        [record] = dlq_store.list_pending()
        assert record.attempts == 3
        assert record.failure_type == FailureType.TRANSIENT
        assert record.error_code == "TimeoutError"
        assert record.event_type == "MenuSync"
        assert "TimeoutError" in record.stack_trace
        status = ledger.get(sync_event.account_id, sync_event.idempotency_key).status
        assert status == IdempotencyStatus.FAILED_PERMANENT

    def test_permanent_skips_retries(self, escalator, recording_scheduler, dlq_store, sync_event):
        outcome = escalator.handle_failure(sync_event, PermanentSyncError("bad catalog"), attempts=1)

        assert outcome == Escalation.DEAD_LETTERED
        assert recording_scheduler.calls == []
        [record] = dlq_store.list_pending()
        assert record.attempts == 1
        assert record.failure_type == FailureType.PERMANENT
        assert record.error_message == "bad catalog"

    def test_max_attempts_must_be_positive(self, channels, recording_scheduler, dlq_store, ledger):
        with pytest.raises(ValueError):
            RetryEscalator(channels, recording_scheduler, dlq_store, ledger, max_attempts=0)

    def test_defer_schedules_without_dead_lettering(self, escalator, recording_scheduler, dlq_store, sync_event):
        first = datetime(2025, 3, 1, 10, 0)
        escalator.defer(sync_event, ConnectionError("db down"), attempts=0, first_attempt_at=first)

        [(tier, envelope)] = recording_scheduler.calls
        assert tier.channel == "catalog.sync.retry.1m"
        assert envelope.attempts == 0
        assert envelope.error_code == "ConnectionError"
        assert envelope.failure_type == FailureType.TRANSIENT
        assert envelope.first_attempt_at == first
        assert dlq_store.list_pending() == []

    def test_defer_ignores_permanent_classification(self, escalator, recording_scheduler, dlq_store, sync_event):
        escalator.defer(sync_event, PermanentSyncError("bad catalog"), attempts=3)
        [(tier, envelope)] = recording_scheduler.calls
        assert tier.delay_seconds == 900
        assert envelope.attempts == 3
        assert dlq_store.list_pending() == []
