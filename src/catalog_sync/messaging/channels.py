"""Channel naming: one main channel, N retry tiers, one DLQ per event stream."""
from dataclasses import dataclass
from typing import List, Sequence


@dataclass(frozen=True)
class RetryTier:
    index: int  # 1-based
    delay_seconds: int
    channel: str


def tier_suffix(delay_seconds: int) -> str:
    """60 -> '1m', 300 -> '5m', 3600 -> '1h', 45 -> '45s'."""
    if delay_seconds % 3600 == 0:
        return f"{delay_seconds // 3600}h"
    if delay_seconds % 60 == 0:
        return f"{delay_seconds // 60}m"
    return f"{delay_seconds}s"


@dataclass(frozen=True)
class ChannelSet:
    main: str
    dlq: str
    tiers: List[RetryTier]

    @classmethod
    def for_prefix(cls, prefix: str, delays_seconds: Sequence[int]) -> "ChannelSet":
        """
        Build the channel names for one event stream, e.g. for "catalog.sync":

            catalog.sync
            catalog.sync.retry.1m
            catalog.sync.retry.5m
            catalog.sync.retry.15m
            catalog.sync.dlq
        """
        if not delays_seconds:
            raise ValueError("at least one retry tier is required")
        tiers = [
            RetryTier(
                index=i,
                delay_seconds=delay,
                channel=f"{prefix}.retry.{tier_suffix(delay)}",
            )
            for i, delay in enumerate(delays_seconds, start=1)
        ]
        return cls(main=prefix, dlq=f"{prefix}.dlq", tiers=tiers)

    def tier_for_attempt(self, attempts: int) -> RetryTier:
        """Tier to use after `attempts` failures; the last tier repeats."""
        index = min(max(attempts, 1), len(self.tiers))
        return self.tiers[index - 1]

    @property
    def retry_channels(self) -> List[str]:
        return [t.channel for t in self.tiers]
