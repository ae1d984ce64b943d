"""Event state inspection commands."""

import asyncio
from datetime import timedelta
from pathlib import Path
from typing import Annotated

import click
import typer
from rich.markup import escape

from muster.cli.console import console, create_table, dim, error, warning


def register(app: typer.Typer) -> None:
    """Register the events command."""

    @app.command()
    def events(
        action: Annotated[
            str | None,
            typer.Argument(help="Action: list, pending"),
        ] = None,
        state: Annotated[
            Path | None,
            typer.Option(
                "--state",
                "-s",
                help="Path to the event state file (default: from config)",
            ),
        ] = None,
        timezone: Annotated[
            str | None,
            typer.Option(
                "--timezone",
                "-z",
                help="Timezone to show times in (default: each server's timezone)",
            ),
        ] = None,
    ) -> None:
        """Inspect scheduled events and pending role cleanups.

        Examples:
            muster events list              # Upcoming events per server
            muster events list -z PST       # ... with times in Pacific time
            muster events pending           # Roles waiting to be pruned
        """
        if action is None:
            ctx = click.get_current_context()
            click.echo(ctx.get_help())
            raise typer.Exit(0)

        from muster.config import load_config
        from muster.timezones import is_valid_timezone

        config = load_config()
        state_path = state or config.events.state_path

        if timezone is not None and not is_valid_timezone(timezone):
            error(f"Unknown timezone: {timezone}")
            raise typer.Exit(1)

        if action == "list":
            _events_list(state_path, timezone, config.timezone)
        elif action == "pending":
            _events_pending(state_path, timedelta(seconds=config.events.cleanup_retention))
        else:
            error(f"Unknown action: {action}")
            console.print("Valid actions: list, pending")
            raise typer.Exit(1)


def _load_state(state_path: Path):
    from muster.errors import PersistenceError
    from muster.events import EventStateStore

    if not state_path.exists():
        warning(f"No event state found at {state_path}")
        return None
    try:
        return asyncio.run(EventStateStore(state_path).load())
    except PersistenceError as e:
        error(escape(str(e)))
        raise typer.Exit(1) from None


def _events_list(
    state_path: Path, timezone: str | None, default_timezone: str | None
) -> None:
    """List upcoming events for every server."""
    from muster.config import get_system_timezone
    from muster.events.formatting import format_with_zone
    from muster.timezones import TimezoneResolver

    state = _load_state(state_path)
    if state is None:
        return

    resolver = TimezoneResolver(state, default_timezone or get_system_timezone())
    table = create_table(
        "Upcoming events",
        [
            ("Server", "dim"),
            ("Name", "bold"),
            ("Starts", "cyan"),
            ("Owner", ""),
            ("Channel", ""),
            ("Role", "dim"),
        ],
    )

    total = 0
    for guild_id, guild_events in state.events.items():
        zone = timezone or resolver.guild_timezone(guild_id)
        for event in guild_events:
            table.add_row(
                guild_id,
                event.name,
                format_with_zone(event.due, zone),
                event.owner_id,
                event.channel_id,
                event.role_id or "[dim]none[/dim]",
            )
            total += 1

    if not total:
        warning("No upcoming events")
        return

    console.print(table)
    dim(f"Total: {total} event(s)")


def _events_pending(state_path: Path, retention: timedelta) -> None:
    """List roles of started events that are waiting to be deleted."""
    state = _load_state(state_path)
    if state is None:
        return

    if not state.pending_cleanups:
        warning("No roles pending cleanup")
        return

    table = create_table(
        "Pending role cleanups",
        [("Server", "dim"), ("Role", ""), ("Started", "cyan"), ("Deleted after", "")],
    )
    for cleanup in state.pending_cleanups:
        table.add_row(
            cleanup.guild_id,
            cleanup.role_id,
            cleanup.started_at.strftime("%Y-%m-%d %H:%M UTC"),
            (cleanup.started_at + retention).strftime("%Y-%m-%d %H:%M UTC"),
        )

    console.print(table)
    dim(f"Total: {len(state.pending_cleanups)} role(s)")
