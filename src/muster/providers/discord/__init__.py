"""Discord provider."""

from muster.providers.discord.provider import (
    DiscordPlatform,
    MusterBot,
    build_intents,
    parse_command,
    to_embed,
)

__all__ = [
    "DiscordPlatform",
    "MusterBot",
    "build_intents",
    "parse_command",
    "to_embed",
]
