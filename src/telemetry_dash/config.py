"""Configuration loading and validation"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import tzinfo
from pathlib import Path
from typing import Any, Optional
from zoneinfo import ZoneInfo

import yaml

logger = logging.getLogger(__name__)

# Default config search paths (in order)
CONFIG_PATHS = [
    Path("config.yaml"),
    Path.home() / ".config" / "telemetry-dash" / "config.yaml",
    Path("/etc/telemetry-dash/config.yaml"),
]


@dataclass
class PushSourceConfig:
    """Realtime database holding the keyed collection of readings"""
    enabled: bool = True
    url: str = ""  # e.g. https://my-project-default-rtdb.firebaseio.com
    path: str = "readings"
    auth: str = ""  # Database secret or ID token, sent as ?auth=
    label: str = "Field sensor"
    timeout: float = 30.0


@dataclass
class RestSensorConfig:
    """A device on the IoT platform and the variables tracked for it"""
    label: str = ""
    token: str = ""
    variables: dict = field(default_factory=dict)  # metric key -> variable id
    units: dict = field(default_factory=dict)  # metric key -> unit label


@dataclass
class RestGroupConfig:
    """A plant: sensors polled together"""
    group_id: str = ""
    name: str = ""
    sensors: list = field(default_factory=list)  # List of RestSensorConfig


@dataclass
class RestPollingConfig:
    enabled: bool = True
    base_url: str = "https://industrial.api.ubidots.com/api/v1.6"
    groups: list = field(default_factory=list)  # List of RestGroupConfig
    default_group: str = ""  # First group when empty
    lookback_hours: int = 24
    timeout: float = 10.0


@dataclass
class WeatherStationConfig:
    enabled: bool = True
    base_url: str = "https://rt.ambientweather.net/v1"
    api_key: str = ""
    application_key: str = ""
    mac_address: str = ""
    label: str = "Weather station"
    limit: int = 288  # 24h of 5-minute samples
    refresh_interval: int = 300
    timeout: float = 10.0

    @property
    def missing_credentials(self) -> list[str]:
        """Names of the required settings that are empty"""
        return [
            name
            for name in ("api_key", "application_key", "mac_address")
            if not getattr(self, name)
        ]


@dataclass
class DisplayConfig:
    timezone: str = ""  # IANA name for time labels; host local time when empty

    def tzinfo(self) -> Optional[tzinfo]:
        return ZoneInfo(self.timezone) if self.timezone else None


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str = ""


@dataclass
class WebConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080
    push_interval: float = 5.0  # Seconds between /ws/sources updates
    cors_origins: list = field(default_factory=list)  # Origins of the rendering layer


@dataclass
class Config:
    push: PushSourceConfig = field(default_factory=PushSourceConfig)
    rest: RestPollingConfig = field(default_factory=RestPollingConfig)
    weather: WeatherStationConfig = field(default_factory=WeatherStationConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    web: WebConfig = field(default_factory=WebConfig)


# =============================================================================
# Environment helpers
# =============================================================================


def get_env(key: str, default: str = "") -> str:
    """Get an environment variable as a string."""
    return os.environ.get(key, default)


def get_env_int(key: str, default: int = 0) -> int:
    """Get an environment variable as an integer."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get an environment variable as a boolean.

    Truthy values: "true", "1", "yes" (case-insensitive).
    """
    val = os.environ.get(key)
    if val is None:
        return default
    return val.lower() in ("true", "1", "yes")


def get_env_json(key: str, default: Any = None) -> Any:
    """Get an environment variable as parsed JSON."""
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return json.loads(val)
    except (json.JSONDecodeError, TypeError):
        return default


# =============================================================================
# Loading
# =============================================================================


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations"""
    for path in CONFIG_PATHS:
        if path.exists():
            return path
    return None


def parse_groups(groups_data: list) -> list[RestGroupConfig]:
    """Build group configs (with their sensors) from plain dicts"""
    groups = []
    for group_data in groups_data or []:
        sensors = [RestSensorConfig(**sensor) for sensor in group_data.get("sensors", [])]
        groups.append(
            RestGroupConfig(
                group_id=str(group_data.get("group_id", "")),
                name=group_data.get("name", ""),
                sensors=sensors,
            )
        )
    return groups


def apply_env_overrides(config: Config) -> Config:
    """Override secrets and endpoints from the environment"""
    push = config.push
    push.url = get_env("PUSH_DB_URL", push.url)
    push.path = get_env("PUSH_DB_PATH", push.path)
    push.auth = get_env("PUSH_DB_AUTH", push.auth)

    rest = config.rest
    rest.base_url = get_env("UBIDOTS_BASE_URL", rest.base_url)
    groups_data = get_env_json("UBIDOTS_GROUPS")
    if isinstance(groups_data, list):
        rest.groups = parse_groups(groups_data)

    weather = config.weather
    weather.api_key = get_env("AMBIENT_API_KEY", weather.api_key)
    weather.application_key = get_env("AMBIENT_APPLICATION_KEY", weather.application_key)
    weather.mac_address = get_env("AMBIENT_MAC_ADDRESS", weather.mac_address)
    weather.refresh_interval = get_env_int("AMBIENT_REFRESH_INTERVAL", weather.refresh_interval)

    config.logging.level = get_env("LOG_LEVEL", config.logging.level)
    config.web.enabled = get_env_bool("WEB_ENABLED", config.web.enabled)
    return config


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from YAML file, then apply environment overrides"""
    if config_path:
        path = Path(config_path)
    else:
        path = find_config_file()

    if path is None or not path.exists():
        logger.warning("No config file found, using defaults")
        return apply_env_overrides(Config())

    logger.info(f"Loading config from: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    rest_data = dict(data.get("rest", {}))
    groups = parse_groups(rest_data.pop("groups", []))

    config = Config(
        push=PushSourceConfig(**data.get("push", {})),
        rest=RestPollingConfig(groups=groups, **rest_data),
        weather=WeatherStationConfig(**data.get("weather", {})),
        display=DisplayConfig(**data.get("display", {})),
        logging=LoggingConfig(**data.get("logging", {})),
        web=WebConfig(**data.get("web", {})),
    )
    return apply_env_overrides(config)
