"""Shared test fixtures."""
import asyncio
from datetime import datetime
from typing import Generator, List, Tuple

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from catalog_sync.models.dlq import DlqRecord  # noqa: F401
from catalog_sync.models.idempotency import IdempotencyRecord  # noqa: F401
from catalog_sync.models.sync import CatalogSyncLog  # noqa: F401

from catalog_sync.dlq.store import DlqStore
from catalog_sync.messaging.channels import ChannelSet, RetryTier
from catalog_sync.messaging.transport import InMemoryTransport
from catalog_sync.models.envelope import RetryEnvelope, SyncEvent
from catalog_sync.reliability.idempotency import IdempotencyLedger
from catalog_sync.scheduler.delayed import DelayScheduler


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="ledger")
def ledger_fixture(engine) -> IdempotencyLedger:
    return IdempotencyLedger(engine)


@pytest.fixture(name="dlq_store")
def dlq_store_fixture(engine) -> DlqStore:
    return DlqStore(engine)


@pytest.fixture(name="channels")
def channels_fixture() -> ChannelSet:
    return ChannelSet.for_prefix("catalog.sync", [60, 300, 900])


@pytest.fixture(name="sync_event")
def sync_event_fixture() -> SyncEvent:
    return SyncEvent.new("acct-1", occurred_at=datetime(2025, 3, 1, 10, 15))


# ─── Delay scheduler fakes ────────────────────────────────────────────────────

class RecordingDelayScheduler(DelayScheduler):
    """Remembers what would have been scheduled; never publishes."""

    def __init__(self):
        self.calls: List[Tuple[RetryTier, RetryEnvelope]] = []

    def schedule_after(self, tier: RetryTier, envelope: RetryEnvelope) -> None:
        self.calls.append((tier, envelope))


class InlineDelayScheduler(DelayScheduler):
    """Republishes immediately, ignoring the tier delay."""

    def __init__(self, publisher):
        self.publisher = publisher
        self.calls: List[Tuple[RetryTier, RetryEnvelope]] = []
        self.tasks = set()

    def schedule_after(self, tier: RetryTier, envelope: RetryEnvelope) -> None:
        self.calls.append((tier, envelope))
        task = asyncio.get_running_loop().create_task(
            self.publisher.publish_retry(tier, envelope)
        )
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)


async def drain(transport: InMemoryTransport, scheduler: InlineDelayScheduler) -> None:
    """Run deliveries and inline redeliveries until nothing is left in flight."""
    while True:
        await transport.join()
        if not scheduler.tasks:
            break
        await asyncio.gather(*list(scheduler.tasks))


@pytest.fixture(name="recording_scheduler")
def recording_scheduler_fixture() -> RecordingDelayScheduler:
    return RecordingDelayScheduler()
