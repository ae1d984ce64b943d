"""The ``event`` command and its subcommands."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from muster.errors import DuplicateEventError, ExternalServiceError, UserInputError
from muster.events.formatting import event_card, render_list
from muster.events.scheduler import EventScheduler
from muster.events.types import Event
from muster.providers.base import Card, ChatPlatform
from muster.timezones import (
    display_name,
    is_valid_timezone,
    parse_when,
    resolve_timezone,
    utc_offset,
)
from muster.wizard import CreationWizard, create_event_role, discard_event_role

logger = logging.getLogger(__name__)

LIST_DISPLAY_LIMIT = 10
MERIDIEM_TOKENS = ("am", "pm")


@dataclass
class CommandContext:
    """Who invoked a command, and where."""

    guild_id: str
    channel_id: str
    author_id: str
    is_staff: bool = False


def usage(prefix: str) -> str:
    return (
        f"{prefix}event create to start a DM session to create a new event\n"
        f"{prefix}event create [date] [time] [name] to create an event directly\n"
        f"{prefix}event join [name] to join an event\n"
        f"{prefix}event leave [name] to leave an event\n"
        f"{prefix}event list [timezone] to list events (optionally in a chosen timezone)\n"
        f"{prefix}event info [name] for info on an event\n"
        f"{prefix}event delete [name] to delete an event\n"
        f"{prefix}event servertz [timezone] to get/set the server's default timezone (staff only)\n"
        f"{prefix}event tz [timezone] to get/set your default timezone\n"
        f"{prefix}event updateinfopost to refresh the upcoming events post (staff only)\n"
        f"{prefix}event help to show this message"
    )


class EventCommand:
    """Routes ``event`` subcommands to scheduler operations."""

    def __init__(
        self,
        scheduler: EventScheduler,
        platform: ChatPlatform,
        *,
        reply_timeout: float = 60.0,
    ):
        self._scheduler = scheduler
        self._platform = platform
        self._reply_timeout = reply_timeout
        self._active_wizards: set[str] = set()
        self._wizard_tasks: set[asyncio.Task] = set()
        self._handlers: dict[
            str, Callable[[CommandContext, str], Awaitable[None]]
        ] = {
            "create": self.create,
            "add": self.create,
            "delete": self.delete,
            "remove": self.delete,
            "join": self.join,
            "leave": self.leave,
            "info": self.info,
            "list": self.list_events,
            "servertz": self.servertz,
            "tz": self.tz,
            "updateinfopost": self.update_info_post,
            "help": self.show_help,
        }

    @property
    def prefix(self) -> str:
        return self._scheduler.prefix

    async def _reply(self, ctx: CommandContext, text: str, card: Card | None = None) -> None:
        await self._platform.send(ctx.channel_id, text, card=card)

    async def execute(self, ctx: CommandContext, args: list[str]) -> None:
        if not args or not args[0].strip():
            await self._reply(
                ctx, f"You must specify a subcommand. See {self.prefix}event help for usage."
            )
            return

        subcommand = args[0].lower()
        handler = self._handlers.get(subcommand)
        if handler is None:
            await self._reply(
                ctx, f"Unknown subcommand '{subcommand}'. See {self.prefix}event help for usage."
            )
            return

        rest = " ".join(args[1:]).strip()
        logger.info(
            "event_command",
            extra={
                "command.subcommand": subcommand,
                "guild.id": ctx.guild_id,
                "user.id": ctx.author_id,
            },
        )
        try:
            await handler(ctx, rest)
        except ExternalServiceError as e:
            logger.error(
                "event_command_failed",
                extra={"command.subcommand": subcommand, "error.message": str(e)},
            )
            await self._reply(
                ctx, f"<@{ctx.author_id}>, something went wrong talking to the server. Please try again later."
            )

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------

    async def create(self, ctx: CommandContext, rest: str) -> None:
        if rest:
            await self._create_direct(ctx, rest.split())
            return

        if ctx.author_id in self._active_wizards:
            await self._reply(
                ctx,
                f"<@{ctx.author_id}>, you already have an event creation in progress "
                "in your DMs.",
            )
            return

        await self._reply(ctx, "I've opened a DM with you for event management.")
        task = asyncio.create_task(self.run_wizard(ctx))
        self._wizard_tasks.add(task)
        task.add_done_callback(self._wizard_tasks.discard)

    async def run_wizard(self, ctx: CommandContext) -> None:
        """Run the creation wizard for the command's author to completion."""
        self._active_wizards.add(ctx.author_id)
        try:
            wizard = CreationWizard(
                self._scheduler,
                self._platform,
                guild_id=ctx.guild_id,
                channel_id=ctx.channel_id,
                owner_id=ctx.author_id,
                reply_timeout=self._reply_timeout,
            )
            await wizard.run()
        except ExternalServiceError as e:
            logger.error("wizard_failed", extra={"error.message": str(e)})
        except Exception:
            # Nothing awaits this task, so report the failure here
            logger.exception("wizard_crashed", extra={"user.id": ctx.author_id})
        finally:
            self._active_wizards.discard(ctx.author_id)

    async def _create_direct(self, ctx: CommandContext, parts: list[str]) -> None:
        date_text = parts[0] if parts else None
        time_text = parts[1] if len(parts) > 1 else None
        rest = parts[2:]
        meridiem = None
        if rest and rest[0].lower() in MERIDIEM_TOKENS:
            meridiem, rest = rest[0], rest[1:]
        name = " ".join(rest)

        if name and self._scheduler.get_by_name(ctx.guild_id, name):
            await self._reply(ctx, f"An event called '{name}' already exists.")
            return
        if not date_text:
            await self._reply(ctx, "You must specify a date for the event.")
            return
        if not time_text:
            await self._reply(ctx, "You must specify a time for the event.")
            return
        if not name:
            await self._reply(ctx, "You must specify a name for the event.")
            return

        timezone = self._scheduler.timezones.effective_timezone(
            ctx.author_id, ctx.guild_id
        )
        try:
            due = parse_when(
                date_text, time_text, meridiem, timezone, self._scheduler.now()
            )
        except UserInputError as e:
            await self._reply(ctx, str(e))
            return

        try:
            role_id = await create_event_role(
                self._platform, ctx.guild_id, ctx.author_id, name
            )
        except ExternalServiceError as e:
            logger.error("event_role_create_failed", extra={"error.message": str(e)})
            await self._reply(
                ctx,
                "There was an error creating the role for this event, contact the bot owner.",
            )
            return

        event = Event(
            name=name,
            due=due,
            guild_id=ctx.guild_id,
            channel_id=ctx.channel_id,
            owner_id=ctx.author_id,
            role_id=role_id,
        )
        try:
            await self._scheduler.add(event)
        except DuplicateEventError as e:
            await discard_event_role(
                self._platform,
                ctx.guild_id,
                role_id,
                reason="Event creation lost a name race",
            )
            await self._reply(ctx, str(e))
            return

        await self._reply(
            ctx,
            "Your event has been created.",
            event_card(
                event,
                title=f"New event: {name}",
                prefix=self.prefix,
                participating=True,
            ),
        )

    # ------------------------------------------------------------------
    # delete / join / leave / info
    # ------------------------------------------------------------------

    async def delete(self, ctx: CommandContext, name: str) -> None:
        if not name:
            await self._reply(ctx, "You must specify which event you want to delete.")
            return

        event = self._scheduler.get_by_name(ctx.guild_id, name)
        if event is None:
            await self._reply(ctx, f"The event '{name}' does not exist.")
            return

        if event.owner_id != ctx.author_id and not ctx.is_staff:
            await self._reply(ctx, "Only staff and the event creator can delete an event.")
            return

        try:
            await self._platform.delete_group(
                ctx.guild_id,
                event.role_id,
                reason=f"The event for this role was deleted by <@{ctx.author_id}>.",
            )
        except ExternalServiceError as e:
            logger.error("event_role_delete_failed", extra={"error.message": str(e)})
            await self._reply(
                ctx,
                "There was an error deleting the role for this event, contact the bot owner.",
            )
            return

        await self._scheduler.delete_by_name(ctx.guild_id, name)
        await self._reply(
            ctx,
            "The event was deleted.",
            event_card(event, title=f"Deleted event: {event.name}", prefix=self.prefix),
        )

    async def join(self, ctx: CommandContext, name: str) -> None:
        mention = f"<@{ctx.author_id}>"
        if not name:
            await self._reply(ctx, f"{mention}, you must specify which event you want to join.")
            return
        if self._scheduler.get_by_name(ctx.guild_id, name) is None:
            await self._reply(ctx, f"{mention}, the event '{name}' does not exist.")
            return

        if await self._scheduler.add_participant(ctx.guild_id, ctx.author_id, name):
            await self._reply(ctx, f"{mention} was successfully added to the event '{name}'.")
        else:
            await self._reply(ctx, f"{mention}, you've already joined the event '{name}'.")

    async def leave(self, ctx: CommandContext, name: str) -> None:
        mention = f"<@{ctx.author_id}>"
        if not name:
            await self._reply(ctx, f"{mention}, you must specify which event you want to leave.")
            return
        event = self._scheduler.get_by_name(ctx.guild_id, name)
        if event is None:
            await self._reply(ctx, f"{mention}, the event '{name}' does not exist.")
            return

        if not await self._scheduler.remove_participant(ctx.guild_id, ctx.author_id, name):
            await self._reply(ctx, f"{mention}, you aren't participating in '{name}'.")
            return

        if event.owner_id == ctx.author_id:
            await self._reply(
                ctx,
                f"{mention}, you've been removed from the event '{name}'. As the event "
                "creator, you can still delete this event even though you have been removed.",
            )
        else:
            await self._reply(ctx, f"{mention}, you've been removed from the event '{name}'.")

    async def info(self, ctx: CommandContext, name: str) -> None:
        if not name:
            await self._reply(ctx, "You must specify which event you want info on.")
            return
        event = self._scheduler.get_by_name(ctx.guild_id, name)
        if event is None:
            await self._reply(ctx, f"The event '{name}' does not exist.")
            return

        participants = await self._platform.group_member_count(ctx.guild_id, event.role_id)
        participating = None
        if participants is not None:
            groups = await self._platform.member_groups(ctx.guild_id, ctx.author_id)
            participating = ctx.author_id == event.owner_id or event.role_id in groups

        await self._reply(
            ctx,
            "",
            event_card(
                event,
                title=event.name,
                prefix=self.prefix,
                timezone=self._scheduler.timezones.effective_timezone(
                    ctx.author_id, ctx.guild_id
                ),
                participants=participants,
                participating=participating,
            ),
        )

    # ------------------------------------------------------------------
    # list / timezones / digest
    # ------------------------------------------------------------------

    async def list_events(self, ctx: CommandContext, timezone_input: str) -> None:
        timezone = resolve_timezone(timezone_input) or (
            self._scheduler.timezones.effective_timezone(ctx.author_id, ctx.guild_id)
        )
        if not is_valid_timezone(timezone):
            await self._reply(ctx, f"'{timezone}' is an invalid or unknown time zone.")
            return

        events = self._scheduler.guild_events(ctx.guild_id)
        if not events:
            await self._reply(ctx, "There are no events coming up.")
            return

        footer = f"All event times are in {display_name(timezone)}."
        if not timezone_input:
            footer += f" Use {self.prefix}event list [timezone] to show in another time zone."
        card = Card(
            title=f"Upcoming events in {await self._platform.guild_name(ctx.guild_id)}",
            description=render_list(events, timezone=timezone, limit=LIST_DISPLAY_LIMIT),
            footer=footer,
        )
        await self._reply(ctx, "Here are the upcoming events:", card)

    async def servertz(self, ctx: CommandContext, timezone_input: str) -> None:
        if not timezone_input:
            current = self._scheduler.timezones.guild_timezone(ctx.guild_id)
            await self._reply(
                ctx,
                f"The server's default time zone is **{display_name(current)}** "
                f"(UTC{utc_offset(current)}).",
            )
            return

        if not ctx.is_staff:
            await self._reply(ctx, "Only staff can set the server's default timezone.")
            return

        timezone = resolve_timezone(timezone_input)
        if timezone is None or not is_valid_timezone(timezone):
            await self._reply(ctx, f"'{timezone}' is an invalid or unknown time zone.")
            return

        await self._scheduler.set_guild_timezone(ctx.guild_id, timezone)
        await self._reply(
            ctx,
            f"The server's default time zone is now set to **{display_name(timezone)}** "
            f"(UTC{utc_offset(timezone)}).",
        )

    async def tz(self, ctx: CommandContext, timezone_input: str) -> None:
        mention = f"<@{ctx.author_id}>"
        if not timezone_input:
            current = self._scheduler.timezones.effective_timezone(
                ctx.author_id, ctx.guild_id
            )
            await self._reply(
                ctx,
                f"{mention}, your default time zone is **{display_name(current)}** "
                f"(UTC{utc_offset(current)}).",
            )
            return

        timezone = resolve_timezone(timezone_input)
        if timezone is None or not is_valid_timezone(timezone):
            await self._reply(ctx, f"'{timezone}' is an invalid or unknown time zone.")
            return

        await self._scheduler.set_user_timezone(ctx.author_id, timezone)
        await self._reply(
            ctx,
            f"{mention}, your default time zone is now set to "
            f"**{display_name(timezone)}** (UTC{utc_offset(timezone)}).",
        )

    async def update_info_post(self, ctx: CommandContext, _rest: str) -> None:
        if not ctx.is_staff:
            await self._reply(ctx, "Only staff can force the event info to be updated.")
            return

        try:
            updated = await self._scheduler.update_digest(ctx.guild_id)
        except ExternalServiceError as e:
            logger.error("digest_update_failed", extra={"error.message": str(e)})
            await self._reply(
                ctx,
                f"<@{ctx.author_id}>, there was an error updating the post, check the logs.",
            )
            return
        if not updated:
            await self._reply(
                ctx,
                f"<@{ctx.author_id}>, this server has no event info channel configured.",
            )
            return
        await self._reply(ctx, f"<@{ctx.author_id}>, the post has been updated.")

    async def show_help(self, ctx: CommandContext, _rest: str) -> None:
        await self._reply(ctx, usage(self.prefix))
