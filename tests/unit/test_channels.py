"""Tests for channel naming and retry tier selection."""
import pytest

from catalog_sync.messaging.channels import ChannelSet, tier_suffix


class TestTierSuffix:
    @pytest.mark.parametrize(
        "seconds,expected",
        [(60, "1m"), (300, "5m"), (900, "15m"), (3600, "1h"), (45, "45s"), (90, "90s")],
    )
    def test_suffix(self, seconds, expected):
        assert tier_suffix(seconds) == expected


class TestChannelSet:
    def test_default_names(self, channels):
        assert channels.main == "catalog.sync"
        assert channels.dlq == "catalog.sync.dlq"
        assert channels.retry_channels == [
            "catalog.sync.retry.1m",
            "catalog.sync.retry.5m",
            "catalog.sync.retry.15m",
        ]

    def test_tiers_are_one_based(self, channels):
        assert [t.index for t in channels.tiers] == [1, 2, 3]

    def test_tier_for_attempt(self, channels):
        assert channels.tier_for_attempt(1).delay_seconds == 60
        assert channels.tier_for_attempt(2).delay_seconds == 300
        assert channels.tier_for_attempt(3).delay_seconds == 900

    def test_last_tier_repeats(self, channels):
        assert channels.tier_for_attempt(7).channel == "catalog.sync.retry.15m"

    def test_requires_a_tier(self):
        with pytest.raises(ValueError):
            ChannelSet.for_prefix("catalog.sync", [])
