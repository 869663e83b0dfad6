"""Tests for config module"""

import json
import tempfile
from pathlib import Path

import pytest
import yaml

from telemetry_dash.config import (
    Config,
    DisplayConfig,
    PushSourceConfig,
    RestPollingConfig,
    WeatherStationConfig,
    WebConfig,
    find_config_file,
    get_env_bool,
    get_env_int,
    get_env_json,
    load_config,
    parse_groups,
)

ENV_VARS = [
    "PUSH_DB_URL",
    "PUSH_DB_PATH",
    "PUSH_DB_AUTH",
    "UBIDOTS_BASE_URL",
    "UBIDOTS_GROUPS",
    "AMBIENT_API_KEY",
    "AMBIENT_APPLICATION_KEY",
    "AMBIENT_MAC_ADDRESS",
    "AMBIENT_REFRESH_INTERVAL",
    "LOG_LEVEL",
    "WEB_ENABLED",
]

GROUPS = [
    {
        "group_id": "plant-a",
        "name": "Plant A",
        "sensors": [
            {
                "label": "inlet",
                "token": "tok-1",
                "variables": {"pressure": "v-p", "flow": "v-f"},
                "units": {"pressure": "bar"},
            }
        ],
    }
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestConfigDataclasses:
    """Test configuration dataclasses"""

    def test_push_config_defaults(self):
        config = PushSourceConfig()
        assert config.url == ""
        assert config.path == "readings"
        assert config.enabled is True

    def test_rest_config_defaults(self):
        config = RestPollingConfig()
        assert config.base_url == "https://industrial.api.ubidots.com/api/v1.6"
        assert config.lookback_hours == 24
        assert config.groups == []

    def test_weather_config_defaults(self):
        config = WeatherStationConfig()
        assert config.refresh_interval == 300
        assert config.limit == 288
        assert config.missing_credentials == ["api_key", "application_key", "mac_address"]

    def test_display_timezone(self):
        assert DisplayConfig().tzinfo() is None
        assert DisplayConfig(timezone="UTC").tzinfo().key == "UTC"

    def test_web_config_defaults(self):
        config = WebConfig()
        assert config.port == 8080
        assert config.push_interval == 5.0

    def test_parse_groups(self):
        groups = parse_groups(GROUPS)
        assert groups[0].group_id == "plant-a"
        assert groups[0].sensors[0].variables == {"pressure": "v-p", "flow": "v-f"}
        assert groups[0].sensors[0].units == {"pressure": "bar"}


class TestConfigLoading:
    """Test configuration loading"""

    def test_load_config_with_defaults(self):
        """Test loading config returns defaults when no file exists"""
        config = load_config("/nonexistent/config.yaml")
        assert isinstance(config, Config)
        assert config.weather.refresh_interval == 300
        assert config.web.port == 8080

    def test_load_config_from_yaml(self):
        """Test loading config from YAML file"""
        config_data = {
            "push": {"url": "https://db.example.com", "label": "Well 3"},
            "rest": {"lookback_hours": 12, "default_group": "plant-a", "groups": GROUPS},
            "weather": {"mac_address": "AA:BB", "refresh_interval": 120},
            "display": {"timezone": "Europe/London"},
            "logging": {"level": "DEBUG"},
            "web": {"host": "127.0.0.1", "port": 9090, "cors_origins": ["http://localhost:5173"]},
        }

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            yaml.dump(config_data, f)
            config_path = f.name

        try:
            config = load_config(config_path)

            assert config.push.url == "https://db.example.com"
            assert config.push.label == "Well 3"
            assert config.rest.lookback_hours == 12
            assert config.rest.default_group == "plant-a"
            assert config.rest.groups[0].sensors[0].token == "tok-1"
            assert config.weather.mac_address == "AA:BB"
            assert config.weather.refresh_interval == 120
            assert config.display.timezone == "Europe/London"
            assert config.logging.level == "DEBUG"
            assert config.web.port == 9090
            assert config.web.cors_origins == ["http://localhost:5173"]
        finally:
            Path(config_path).unlink()

    def test_load_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        config = load_config(str(path))
        assert config.push.path == "readings"

    def test_environment_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"weather": {"api_key": "from-file"}, "logging": {"level": "INFO"}}))
        monkeypatch.setenv("AMBIENT_API_KEY", "from-env")
        monkeypatch.setenv("AMBIENT_APPLICATION_KEY", "app-env")
        monkeypatch.setenv("AMBIENT_MAC_ADDRESS", "CC:DD")
        monkeypatch.setenv("PUSH_DB_URL", "https://env.example.com")
        monkeypatch.setenv("PUSH_DB_AUTH", "secret")
        monkeypatch.setenv("LOG_LEVEL", "WARNING")

        config = load_config(str(path))

        assert config.weather.api_key == "from-env"
        assert config.weather.application_key == "app-env"
        assert config.weather.mac_address == "CC:DD"
        assert config.weather.missing_credentials == []
        assert config.push.url == "https://env.example.com"
        assert config.push.auth == "secret"
        assert config.logging.level == "WARNING"

    def test_groups_from_environment(self, monkeypatch):
        monkeypatch.setenv("UBIDOTS_GROUPS", json.dumps(GROUPS))

        config = load_config("/nonexistent/config.yaml")

        assert [g.group_id for g in config.rest.groups] == ["plant-a"]

    def test_find_config_file(self, tmp_path, monkeypatch):
        """Test finding config file in standard locations"""
        monkeypatch.chdir(tmp_path)
        config_path = Path("config.yaml")
        config_path.write_text("web: {}")

        assert find_config_file() == config_path


class TestEnvHelpers:
    def test_get_env_int(self, monkeypatch):
        monkeypatch.setenv("AMBIENT_REFRESH_INTERVAL", "60")
        assert get_env_int("AMBIENT_REFRESH_INTERVAL", 300) == 60
        monkeypatch.setenv("AMBIENT_REFRESH_INTERVAL", "soon")
        assert get_env_int("AMBIENT_REFRESH_INTERVAL", 300) == 300

    def test_get_env_bool(self, monkeypatch):
        monkeypatch.setenv("WEB_ENABLED", "yes")
        assert get_env_bool("WEB_ENABLED") is True
        monkeypatch.setenv("WEB_ENABLED", "off")
        assert get_env_bool("WEB_ENABLED", True) is False

    def test_get_env_json(self, monkeypatch):
        monkeypatch.setenv("UBIDOTS_GROUPS", "[not json")
        assert get_env_json("UBIDOTS_GROUPS", []) == []
