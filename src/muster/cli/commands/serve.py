"""Serve command for running the Discord bot."""

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import Annotated

import typer

from muster.cli.console import error

logger = logging.getLogger(__name__)


def register(app: typer.Typer) -> None:
    """Register the serve command."""

    @app.command()
    def serve(
        config: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
        log_level: Annotated[
            str | None,
            typer.Option(
                "--log-level",
                "-l",
                help="Log level: DEBUG, INFO, WARNING, ERROR",
            ),
        ] = None,
    ) -> None:
        """Connect to Discord and run the event scheduler."""
        from rich.markup import escape

        from muster.config import ConfigError

        try:
            asyncio.run(_run_bot(config, log_level))
        except ConfigError as e:
            error(escape(str(e)))
            raise typer.Exit(1) from None
        except KeyboardInterrupt:
            # Use print here since logging may not be configured yet
            print("\nBot stopped")


def build_bot(muster_config):
    """Wire the store, scheduler and command dispatcher onto a new bot."""
    from muster.commands import EventCommand
    from muster.config import get_system_timezone
    from muster.events import EventScheduler, EventStateStore
    from muster.providers.discord import MusterBot

    discord_config = muster_config.discord
    events_config = muster_config.events

    bot = MusterBot(
        prefix=discord_config.prefix,
        staff_role_id=discord_config.staff_role_id,
    )
    scheduler = EventScheduler(
        EventStateStore(events_config.state_path),
        bot.platform,
        default_timezone=muster_config.timezone or get_system_timezone(),
        digest_channel_id=discord_config.event_info_channel_id,
        prefix=discord_config.prefix,
        staleness_threshold=timedelta(seconds=events_config.staleness_threshold),
        cleanup_retention=timedelta(seconds=events_config.cleanup_retention),
        digest_display_cap=events_config.digest_display_cap,
        tick_interval=events_config.tick_interval,
    )
    commands = EventCommand(
        scheduler, bot.platform, reply_timeout=events_config.reply_timeout
    )
    bot.attach(scheduler, commands)
    return bot


async def _run_bot(config_path: Path | None = None, log_level: str | None = None) -> None:
    """Run the bot until it disconnects or is interrupted."""
    from muster.config import load_config
    from muster.logging import configure_logging

    # Rich console output plus JSONL files under ~/.muster/logs
    configure_logging(level=log_level, use_rich=True, log_to_file=True)

    logger.info("loading_configuration")
    muster_config = load_config(config_path)
    token = muster_config.require_bot_token()

    bot = build_bot(muster_config)
    logger.info(
        "bot_starting",
        extra={
            "events.state_path": str(muster_config.events.state_path),
            "discord.prefix": muster_config.discord.prefix,
        },
    )
    async with bot:
        await bot.start(token.get_secret_value())
