"""Tests for the push data source"""

import asyncio
from datetime import timezone

import pytest

from telemetry_dash.config import PushSourceConfig
from telemetry_dash.datasources.push_source import (
    PushDataSource,
    normalize_push_collection,
    sort_timestamp_keys,
)
from telemetry_dash.datasources.realtime_db import Subscription
from telemetry_dash.datasources.registry import DataSourceRegistry
from telemetry_dash.errors import ConfigurationError, ProcessingError, SourceConnectionError
from telemetry_dash.scheduler import PollScheduler
from telemetry_dash.store import SourceStateStore

UTC = timezone.utc


class FakeDatabaseClient:
    """Stands in for RealtimeDatabaseClient; the test drives the callbacks."""

    def __init__(self):
        self.subscriptions = []
        self.on_value = None
        self.on_error = None
        self.closed = False

    def subscribe(self, path, on_value, on_error):
        self.on_value = on_value
        self.on_error = on_error
        subscription = Subscription(path, asyncio.create_task(asyncio.sleep(3600)))
        self.subscriptions.append(subscription)
        return subscription

    async def get(self, path):
        return {}

    async def close(self):
        self.closed = True


@pytest.fixture
def config() -> PushSourceConfig:
    return PushSourceConfig(url="https://db.example.com", path="readings", label="Well 3", timeout=1.0)


class TestNormalizePushCollection:
    def test_empty_collection(self):
        assert normalize_push_collection({}, "Well 3") == (None, [])
        assert normalize_push_collection(None, "Well 3") == (None, [])

    def test_two_records(self):
        values = {
            "100": {"pressure": 1.0, "flow": 2.0, "rssi": -50},
            "200": {"pressure": 1.5, "flow": 2.5, "rssi": -55},
        }
        latest, history = normalize_push_collection(values, "Well 3", UTC)

        assert latest["timestamp"] == "200"
        assert latest["label"] == "Well 3"
        assert latest["pressure"] == 1.5
        assert [row["timestamp"] for row in history] == [100_000, 200_000]
        assert history[1]["pressure"] == 1.5
        assert history[0] == {
            "timestamp": 100_000,
            "time": "00:01",
            "pressure": 1.0,
            "flow": 2.0,
            "rssi": -50.0,
        }

    def test_numeric_key_order(self):
        values = {"10": {"pressure": 2}, "9": {"pressure": 1}}
        latest, history = normalize_push_collection(values, "Well 3", UTC)

        assert [row["pressure"] for row in history] == [1.0, 2.0]
        assert latest["timestamp"] == "10"

    def test_missing_and_non_numeric_fields_become_zero(self):
        _, history = normalize_push_collection({"100": {"pressure": "bad"}}, "Well 3", UTC)
        assert history[0]["pressure"] == 0.0
        assert history[0]["flow"] == 0.0
        assert history[0]["rssi"] == 0.0

    def test_activity_minutes(self):
        latest, _ = normalize_push_collection(
            {"100": {"elapsed_time_us": 120_000_000}}, "Well 3", UTC
        )
        assert latest["activity_minutes"] == 2.0

    def test_non_numeric_key(self):
        with pytest.raises(ProcessingError):
            sort_timestamp_keys(["100", "abc"])

    def test_record_not_an_object(self):
        with pytest.raises(ProcessingError):
            normalize_push_collection({"100": 5}, "Well 3", UTC)

    def test_keys_for_the_same_instant_share_a_row(self):
        values = {"100": {"pressure": 1}, "100.0": {"pressure": 2}, "200": {"pressure": 3}}
        latest, history = normalize_push_collection(values, "Well 3", UTC)

        assert [row["timestamp"] for row in history] == [100_000, 200_000]
        assert history[0]["pressure"] == 2.0
        assert latest["timestamp"] == "200"

    def test_out_of_range_key(self):
        with pytest.raises(ProcessingError):
            normalize_push_collection({"1e300": {"pressure": 1}}, "Well 3", UTC)


class TestPushDataSource:
    async def test_missing_url_is_configuration_error(self):
        source = PushDataSource(PushSourceConfig(url=""), client=FakeDatabaseClient())
        with pytest.raises(ConfigurationError):
            await source.initialize()

    async def test_updates_reach_listener(self, config):
        client = FakeDatabaseClient()
        source = PushDataSource(config, client=client, tz=UTC)
        outcomes = []

        async def listener(source_id, outcome):
            outcomes.append((source_id, outcome))

        source.add_listener(listener)
        await source.initialize()
        await client.on_value({"100": {"pressure": 1.0}})
        await client.on_value({"100": {"pressure": 1.0}, "200": {"pressure": 1.5}})

        assert [source_id for source_id, _ in outcomes] == ["push", "push"]
        assert len(outcomes[0][1].history) == 1
        assert len(outcomes[1][1].history) == 2

        result = await source.fetch()
        assert result.latest["timestamp"] == "200"
        await source.shutdown()

    async def test_empty_collection_is_empty_result(self, config):
        client = FakeDatabaseClient()
        source = PushDataSource(config, client=client)
        await source.initialize()
        await client.on_value(None)

        result = await source.fetch()
        assert result.is_empty
        await source.shutdown()

    async def test_processing_error_is_wrapped(self, config):
        client = FakeDatabaseClient()
        source = PushDataSource(config, client=client)
        outcomes = []

        async def listener(source_id, outcome):
            outcomes.append(outcome)

        source.add_listener(listener)
        await source.initialize()
        await client.on_value({"abc": {"pressure": 1.0}})

        assert isinstance(outcomes[0], ProcessingError)
        assert "Error processing pushed readings" in str(outcomes[0])
        with pytest.raises(ProcessingError):
            await source.fetch()
        await source.shutdown()

    async def test_subscription_error_clears_result(self, config):
        client = FakeDatabaseClient()
        source = PushDataSource(config, client=client)
        await source.initialize()
        await client.on_value({"100": {"pressure": 1.0}})
        await client.on_error(SourceConnectionError("stream closed"))

        with pytest.raises(SourceConnectionError):
            await source.fetch()
        await source.shutdown()

    async def test_fetch_times_out_without_update(self, config):
        config.timeout = 0.01
        source = PushDataSource(config, client=FakeDatabaseClient())
        await source.initialize()

        with pytest.raises(SourceConnectionError):
            await source.fetch()
        await source.shutdown()

    async def test_listener_failure_does_not_propagate(self, config):
        client = FakeDatabaseClient()
        source = PushDataSource(config, client=client)

        async def broken(source_id, outcome):
            raise RuntimeError("boom")

        source.add_listener(broken)
        await source.initialize()
        await client.on_value({"100": {"pressure": 1.0}})

        result = await source.fetch()
        assert result.latest is not None
        await source.shutdown()

    async def test_shutdown_cancels_subscription(self, config):
        client = FakeDatabaseClient()
        source = PushDataSource(config, client=client)
        await source.initialize()
        subscription = client.subscriptions[0]

        await source.shutdown()

        assert not subscription.active
        assert client.closed

    async def test_metadata(self, config):
        metadata = PushDataSource(config, client=FakeDatabaseClient()).get_metadata()
        assert metadata.source_id == "push"
        assert metadata.push is True
        assert metadata.label == "Well 3"
        assert [m.key for m in metadata.metrics] == ["pressure", "flow", "rssi"]

    async def test_listener_registered_once(self, config):
        client = FakeDatabaseClient()
        source = PushDataSource(config, client=client)
        outcomes = []

        async def listener(source_id, outcome):
            outcomes.append(outcome)

        source.add_listener(listener)
        source.add_listener(listener)
        await source.initialize()
        await client.on_value({"100": {"pressure": 1.0}})

        assert len(outcomes) == 1
        await source.shutdown()


class TestPushSourceScheduling:
    async def test_restarted_scheduler_stores_each_update_once(self, config):
        client = FakeDatabaseClient()
        source = PushDataSource(config, client=client, tz=UTC)
        registry = DataSourceRegistry()
        registry.register(source)
        store = SourceStateStore()
        scheduler = PollScheduler(registry, store)

        await scheduler.start()
        await scheduler.stop()
        await scheduler.start()
        await client.on_value({"100": {"pressure": 1.0}})

        state = await store.get("push")
        assert state.status == "ok"
        assert state.fetch_count == 1
        await scheduler.stop()
        await source.shutdown()
