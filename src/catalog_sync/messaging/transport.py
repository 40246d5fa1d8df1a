"""
Pluggable message transport.

The pipeline only needs publish(channel, key, payload) and
subscribe(channel, handler). A broker-backed transport (Kafka, SQS, NATS)
implements the same two calls; InMemoryTransport serves tests and the
single-process worker.

Delivery guarantees of InMemoryTransport:
  - messages sharing a partition key on one channel are handled one at a
    time, in publish order
  - different partition keys run concurrently, with no ordering between them
  - at-least-once: a handler exception is logged and the message is dropped;
    the consumer is expected to catch and route its own failures
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from catalog_sync.errors import TransportUnavailable

logger = logging.getLogger(__name__)

Handler = Callable[[str], Awaitable[None]]


class Transport(ABC):
    @abstractmethod
    async def publish(self, channel: str, key: str, payload: str) -> None:
        """Hand a message to the channel. Raises TransportUnavailable."""

    @abstractmethod
    def subscribe(self, channel: str, handler: Handler) -> None:
        """Register the single consumer for a channel."""

    def close(self) -> None:
        """Stop accepting publications."""


class InMemoryTransport(Transport):
    """
    Args:
        max_in_flight: Deliveries allowed in flight before publish refuses.
        retain_history: Keep every published payload for messages(). Tests
            only; a long-running worker leaves it off.
    """

    def __init__(self, max_in_flight: int = 10_000, retain_history: bool = False):
        self._max_in_flight = max_in_flight
        self._retain_history = retain_history
        self._handlers: Dict[str, Handler] = {}
        # Per-partition lock plus the number of deliveries holding or awaiting it
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._lock_users: Dict[Tuple[str, str], int] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._published: Dict[str, List[str]] = defaultdict(list)
        self._closed = False

    async def publish(self, channel: str, key: str, payload: str) -> None:
        if self._closed:
            raise TransportUnavailable(f"transport closed; cannot publish to {channel}")
        if len(self._tasks) >= self._max_in_flight:
            raise TransportUnavailable(
                f"{len(self._tasks)} messages in flight; channel {channel} is full"
            )

        if self._retain_history:
            self._published[channel].append(payload)
        handler = self._handlers.get(channel)
        if handler is None:
            logger.warning("No consumer on %s; message not delivered", channel)
            return

        partition = (channel, key)
        lock = self._locks.get(partition)
        if lock is None:
            lock = self._locks[partition] = asyncio.Lock()
        self._lock_users[partition] = self._lock_users.get(partition, 0) + 1

        task = asyncio.get_running_loop().create_task(
            self._deliver(partition, lock, payload, handler)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def subscribe(self, channel: str, handler: Handler) -> None:
        self._handlers[channel] = handler

    async def _deliver(
        self, partition: Tuple[str, str], lock: asyncio.Lock, payload: str, handler: Handler
    ) -> None:
        channel, key = partition
        try:
            async with lock:
                try:
                    await handler(payload)
                except Exception:
                    logger.exception("Unhandled error consuming from %s (key=%s)", channel, key)
        finally:
            self._release(partition)

    def _release(self, partition: Tuple[str, str]) -> None:
        remaining = self._lock_users[partition] - 1
        if remaining:
            self._lock_users[partition] = remaining
        else:
            del self._lock_users[partition]
            del self._locks[partition]

    async def join(self) -> None:
        """Wait until every in-flight delivery, including ones they trigger, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def messages(self, channel: str) -> List[str]:
        """Payloads published to a channel so far, oldest first (retain_history only)."""
        return list(self._published[channel])

    @property
    def partition_count(self) -> int:
        """Partitions with a delivery in flight."""
        return len(self._locks)

    def close(self) -> None:
        self._closed = True


_transport: Optional[Transport] = None


def get_transport() -> Transport:
    """Process-wide transport, created on first call."""
    global _transport
    if _transport is None:
        _transport = InMemoryTransport()
    return _transport
