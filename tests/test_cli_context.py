"""Tests for CLI with AppContext integration."""

import pytest

from telemetry_dash.cli import build_parser, fetch_once
from telemetry_dash.config import Config
from telemetry_dash.context import AppContext
from tests.mock_datasource import MockDataSource


class TestArguments:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.config is None
        assert args.once is False
        assert args.no_web is False
        assert args.web_port is None

    def test_options(self):
        args = build_parser().parse_args(["-c", "dash.yaml", "--once", "-v", "--web-port", "9000"])
        assert args.config == "dash.yaml"
        assert args.once is True
        assert args.verbose is True
        assert args.web_port == 9000

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--version"])
        assert "telemetry-dash" in capsys.readouterr().out


class TestFetchOnce:
    """--once fetches every source and reports the states."""

    async def test_states_of_every_source(self):
        context = AppContext.create(Config())
        context.add_data_source(MockDataSource(source_id="weather", refresh_interval=300))
        context.add_data_source(MockDataSource(source_id="rest"))
        context.add_data_source(MockDataSource(source_id="push", config_error=True))
        await context.start()

        try:
            states = await fetch_once(context)
        finally:
            await context.shutdown()

        assert list(states) == ["push", "rest", "weather"]
        assert states["weather"]["latest"]["value"] == 42.0
        assert states["rest"]["loading"] is False
        assert states["push"]["error"] == "push is missing configuration"

    async def test_failed_fetch_reported(self):
        context = AppContext.create(Config())
        context.add_data_source(MockDataSource(source_id="rest", fail_on_fetch=True))
        await context.start()

        try:
            states = await fetch_once(context)
        finally:
            await context.shutdown()

        assert states["rest"] == {
            "latest": None,
            "history": [],
            "loading": False,
            "error": "Mock fetch failure",
        }
