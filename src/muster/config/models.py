"""Configuration models using Pydantic."""

import logging
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator

from muster.config.paths import get_state_path

logger = logging.getLogger(__name__)


class DiscordConfig(BaseModel):
    """Configuration for the Discord provider."""

    bot_token: SecretStr | None = None
    prefix: str = "!"
    # Members holding this role may change server settings and manage any event
    staff_role_id: str | None = None
    # Channel that carries the standing "upcoming events" digest message
    event_info_channel_id: str | None = None


class EventsConfig(BaseModel):
    """Configuration for the event scheduler and creation wizard.

    Durations are expressed in seconds.
    """

    state_path: Path = Field(default_factory=get_state_path)
    tick_interval: float = 60.0
    staleness_threshold: float = 5 * 60
    cleanup_retention: float = 7 * 24 * 60 * 60
    digest_display_cap: int = 10
    # How long the creation wizard waits for each reply
    reply_timeout: float = 60.0

    @field_validator("tick_interval", "reply_timeout")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("digest_display_cap")
    @classmethod
    def _positive_cap(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


class ConfigError(Exception):
    """Configuration error."""

    pass


class MusterConfig(BaseModel):
    """Root configuration model."""

    # Fallback timezone when neither user nor server has one (None = host zone)
    timezone: str | None = None
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str | None) -> str | None:
        if value is None:
            return None
        from muster.timezones import is_valid_timezone, resolve_timezone

        if not is_valid_timezone(value):
            raise ValueError(f"Unknown timezone: {value}")
        return resolve_timezone(value)

    def require_bot_token(self) -> SecretStr:
        """Return the Discord bot token or raise ConfigError."""
        if self.discord.bot_token is None:
            raise ConfigError(
                "No Discord bot token configured. Set [discord] bot_token "
                "or the DISCORD_BOT_TOKEN environment variable."
            )
        return self.discord.bot_token
