"""Configuration module."""

from muster.config.loader import load_config
from muster.config.models import (
    ConfigError,
    DiscordConfig,
    EventsConfig,
    MusterConfig,
)
from muster.config.paths import (
    get_config_path,
    get_logs_path,
    get_muster_home,
    get_state_path,
    get_system_timezone,
)

__all__ = [
    "ConfigError",
    "DiscordConfig",
    "EventsConfig",
    "MusterConfig",
    "get_config_path",
    "get_logs_path",
    "get_muster_home",
    "get_state_path",
    "get_system_timezone",
    "load_config",
]
