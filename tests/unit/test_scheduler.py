"""Tests for APScheduler job configuration, the sweep job and delayed redelivery."""
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from catalog_sync.errors import TransportUnavailable
from catalog_sync.models.envelope import RetryEnvelope
from catalog_sync.scheduler.delayed import APSchedulerDelayScheduler
from catalog_sync.scheduler.jobs import _sweep_expired, build_scheduler


class TestBuildScheduler:
    def test_returns_scheduler(self):
        engine = MagicMock()
        scheduler = build_scheduler(engine)
        assert isinstance(scheduler, AsyncIOScheduler)

    def test_sweep_job_registered(self):
        engine = MagicMock()
        scheduler = build_scheduler(engine)
        job_ids = [job.id for job in scheduler.get_jobs()]
        assert "idempotency_sweep" in job_ids

    def test_sweep_is_cron(self):
        engine = MagicMock()
        scheduler = build_scheduler(engine)
        job = next(j for j in scheduler.get_jobs() if j.id == "idempotency_sweep")
        assert job.trigger.__class__.__name__ == "CronTrigger"

    def test_sweep_hour_from_settings(self):
        """Scheduler respects the IDEMPOTENCY_SWEEP_HOUR setting."""
        engine = MagicMock()
        with patch("catalog_sync.scheduler.jobs.get_settings") as mock_settings:
            mock_settings.return_value.idempotency_sweep_hour = 2
            scheduler = build_scheduler(engine)

        job = next(j for j in scheduler.get_jobs() if j.id == "idempotency_sweep")
        fields = {f.name: f for f in job.trigger.fields}
        assert str(fields["hour"]) == "2"

    def test_scheduler_not_running_on_creation(self):
        """build_scheduler should not auto-start."""
        engine = MagicMock()
        scheduler = build_scheduler(engine)
        assert not scheduler.running


# ─── _sweep_expired job body ──────────────────────────────────────────────────

class TestSweepJob:
    """IdempotencyLedger is imported inside the job body, so it is patched at its source module."""

    @pytest.mark.asyncio
    async def test_deletes_expired(self):
        mock_ledger = MagicMock()
        mock_ledger.delete_expired.return_value = 3
        with patch(
            "catalog_sync.reliability.idempotency.IdempotencyLedger", return_value=mock_ledger
        ):
            await _sweep_expired(engine=MagicMock())
        mock_ledger.delete_expired.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_exception_does_not_propagate(self):
        """The sweep catches all exceptions so the scheduler stays alive."""
        mock_ledger = MagicMock()
        mock_ledger.delete_expired.side_effect = Exception("database is locked")
        with patch(
            "catalog_sync.reliability.idempotency.IdempotencyLedger", return_value=mock_ledger
        ):
            # Should not raise
            await _sweep_expired(engine=MagicMock())

    @pytest.mark.asyncio
    async def test_runs_against_real_ledger(self, engine, ledger):
        ledger.try_begin("acct-1", "key-1")
        await _sweep_expired(engine=engine)
        assert ledger.get("acct-1", "key-1") is not None


# ─── APSchedulerDelayScheduler ────────────────────────────────────────────────

@pytest.fixture(name="envelope")
def envelope_fixture(sync_event):
    return RetryEnvelope(
        message=sync_event,
        attempts=1,
        error_code="TimeoutError",
        error_message="slow",
        first_attempt_at=datetime(2025, 3, 1, 10, 0),
        last_attempt_at=datetime(2025, 3, 1, 10, 0),
        retry_delay_seconds=60,
    )


class TestAPSchedulerDelayScheduler:
    def test_adds_one_shot_date_job(self, channels, envelope):
        scheduler = AsyncIOScheduler()
        delayed = APSchedulerDelayScheduler(scheduler, publisher=MagicMock())
        delayed.schedule_after(channels.tiers[0], envelope)

        [job] = scheduler.get_jobs()
        assert job.trigger.__class__.__name__ == "DateTrigger"
        assert job.id == f"retry:{envelope.message.correlation_id}:1"
        assert job.kwargs["tier"] == channels.tiers[0]

    @pytest.mark.asyncio
    async def test_redeliver_publishes_to_tier(self, channels, envelope):
        publisher = MagicMock()
        publisher.publish_retry = AsyncMock()
        delayed = APSchedulerDelayScheduler(AsyncIOScheduler(), publisher)

        await delayed._redeliver(channels.tiers[1], envelope)

        publisher.publish_retry.assert_awaited_once_with(channels.tiers[1], envelope)

    @pytest.mark.asyncio
    async def test_redeliver_reschedules_when_transport_unavailable(self, channels, envelope):
        publisher = MagicMock()
        publisher.publish_retry = AsyncMock(side_effect=TransportUnavailable("full"))
        scheduler = AsyncIOScheduler()
        delayed = APSchedulerDelayScheduler(scheduler, publisher)

        await delayed._redeliver(channels.tiers[0], envelope)

        assert len(scheduler.get_jobs()) == 1
