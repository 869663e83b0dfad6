"""Tests for the per-source state store"""

import pytest

from telemetry_dash.datasources.base import FetchResult
from telemetry_dash.store import SourceStateStore

RESULT = FetchResult(
    latest={"label": "Roof", "timestamp": 1000, "tempc": 20.0},
    history=[{"timestamp": 1000, "time": "00:00", "tempc": 20.0}],
)


@pytest.fixture
async def store() -> SourceStateStore:
    store = SourceStateStore()
    await store.register("weather", "Roof")
    await store.register("rest", "Plant A")
    return store


class TestSourceStateStore:
    async def test_registered_state_is_loading(self, store):
        state = await store.get("weather")
        assert state.status == "loading"
        assert state.loading is True
        assert state.to_output() == {"latest": None, "history": [], "loading": True, "error": None}

    async def test_set_result(self, store):
        state = await store.set_result("weather", RESULT)

        assert state.status == "ok"
        assert state.loading is False
        assert state.latest == RESULT.latest
        assert state.history == RESULT.history
        assert state.fetch_count == 1
        assert state.age is not None

    async def test_empty_result_is_no_data(self, store):
        state = await store.set_result("weather", FetchResult(latest=None, history=[]))
        assert state.status == "no_data"
        assert state.error is None

    async def test_error_clears_data(self, store):
        await store.set_result("weather", RESULT)
        state = await store.set_error("weather", "timeout")

        assert state.status == "error"
        assert state.latest is None
        assert state.history == []
        assert state.error == "timeout"
        assert state.error_count == 1

    async def test_config_error(self, store):
        state = await store.set_config_error("weather", "missing api_key")
        assert state.status == "config_error"
        assert state.error == "missing api_key"

    async def test_loading_only_until_first_update(self, store):
        await store.mark_loading("weather")
        assert (await store.get("weather")).loading is True

        await store.set_result("weather", RESULT)
        await store.mark_loading("weather")
        state = await store.get("weather")

        assert state.loading is False
        assert state.fetching is True
        assert state.latest == RESULT.latest

    async def test_sources_are_independent(self, store):
        await store.set_result("rest", RESULT)
        await store.set_error("weather", "timeout")

        rest = await store.get("rest")
        assert rest.status == "ok"
        assert rest.latest == RESULT.latest

    async def test_result_replaces_previous_error(self, store):
        await store.set_error("weather", "timeout")
        state = await store.set_result("weather", RESULT)
        assert state.error is None
        assert state.status == "ok"

    async def test_get_unknown(self, store):
        assert await store.get("nope") is None

    async def test_status(self, store):
        await store.set_result("weather", RESULT)
        status = await store.get_status()

        assert status["total_sources"] == 2
        assert status["sources"]["weather"]["status"] == "ok"
        assert status["sources"]["weather"]["rows"] == 1
        assert status["sources"]["rest"]["age"] is None

    async def test_clear(self, store):
        await store.clear()
        assert await store.get_all() == {}
