"""Chat commands."""

from muster.commands.event import CommandContext, EventCommand, usage

__all__ = ["CommandContext", "EventCommand", "usage"]
