"""CLI command modules."""

from muster.cli.commands import events, serve

__all__ = ["events", "serve"]
