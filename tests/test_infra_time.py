"""Tests for time utilities."""

from datetime import datetime, timezone

from convoflow.infra.time import epoch_ms, from_provider_timestamp, utc_now


class TestUtcNow:
    def test_returns_utc_datetime(self):
        assert utc_now().tzinfo == timezone.utc

    def test_epoch_ms_is_milliseconds(self):
        before = int(datetime.now(timezone.utc).timestamp() * 1000)
        value = epoch_ms()
        assert before <= value < before + 60_000


class TestFromProviderTimestamp:
    def test_seconds(self):
        assert from_provider_timestamp(1700000000) == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_milliseconds(self):
        assert from_provider_timestamp(1700000000000) == from_provider_timestamp(1700000000)

    def test_numeric_string(self):
        assert from_provider_timestamp("1700000000") == from_provider_timestamp(1700000000)

    def test_garbage(self):
        assert from_provider_timestamp("yesterday") is None
        assert from_provider_timestamp(None) is None
        assert from_provider_timestamp(True) is None
        assert from_provider_timestamp(0) is None
        assert from_provider_timestamp({"low": 1}) is None
