"""Discord provider using discord.py."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

import discord

from muster.commands import CommandContext, EventCommand
from muster.errors import (
    ExternalServiceError,
    NotFoundError,
    PersistenceError,
    ReplyTimeout,
)
from muster.providers.base import Card, ChatPlatform, IncomingMessage

if TYPE_CHECKING:
    from muster.events.scheduler import EventScheduler

logger = logging.getLogger("discord_provider")

COMMAND_NAME = "event"


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    # Command text and role membership are privileged
    intents.message_content = True
    intents.members = True
    return intents


def to_embed(card: Card) -> discord.Embed:
    embed = discord.Embed(
        title=card.title,
        description=card.description or None,
        timestamp=card.timestamp,
    )
    for card_field in card.fields:
        embed.add_field(name=card_field.name, value=card_field.value, inline=False)
    if card.footer:
        embed.set_footer(text=card.footer)
    return embed


@contextmanager
def _discord_call(action: str) -> Iterator[None]:
    try:
        yield
    except discord.HTTPException as e:
        raise ExternalServiceError(f"Discord {action} failed: {e}") from e


class DiscordPlatform(ChatPlatform):
    """ChatPlatform backed by a connected discord.Client."""

    def __init__(self, client: discord.Client):
        self._client = client

    async def _channel(self, channel_id: str) -> discord.abc.Messageable:
        channel = self._client.get_channel(int(channel_id))
        if channel is None:
            with _discord_call("fetch_channel"):
                channel = await self._client.fetch_channel(int(channel_id))
        if not isinstance(channel, discord.abc.Messageable):
            raise ExternalServiceError(f"Channel {channel_id} cannot receive messages")
        return channel

    def _guild(self, guild_id: str) -> discord.Guild:
        guild = self._client.get_guild(int(guild_id))
        if guild is None:
            raise ExternalServiceError(f"Guild {guild_id} is not available")
        return guild

    async def _member(self, guild: discord.Guild, user_id: str) -> discord.Member:
        member = guild.get_member(int(user_id))
        if member is None:
            with _discord_call("fetch_member"):
                member = await guild.fetch_member(int(user_id))
        return member

    def _role(self, guild: discord.Guild, role_id: str) -> discord.Role:
        role = guild.get_role(int(role_id)) if role_id else None
        if role is None:
            raise ExternalServiceError(f"Role {role_id} does not exist")
        return role

    async def send(self, channel_id: str, text: str, *, card: Card | None = None) -> str:
        channel = await self._channel(channel_id)
        with _discord_call("send"):
            message = await channel.send(
                content=text or None,
                embed=to_embed(card) if card else None,
            )
        return str(message.id)

    async def edit(self, channel_id: str, message_id: str, text: str) -> None:
        channel = await self._channel(channel_id)
        try:
            message = await channel.fetch_message(int(message_id))
            await message.edit(content=text)
        except discord.NotFound as e:
            raise NotFoundError(f"Message {message_id} no longer exists") from e
        except discord.HTTPException as e:
            raise ExternalServiceError(f"Discord edit failed: {e}") from e

    async def message_exists(self, channel_id: str, message_id: str) -> bool:
        channel = await self._channel(channel_id)
        try:
            await channel.fetch_message(int(message_id))
        except discord.NotFound:
            return False
        except discord.HTTPException as e:
            raise ExternalServiceError(f"Discord fetch_message failed: {e}") from e
        return True

    async def create_group(self, guild_id: str, name: str, *, reason: str) -> str:
        guild = self._guild(guild_id)
        with _discord_call("create_role"):
            role = await guild.create_role(
                name=name,
                permissions=discord.Permissions.none(),
                mentionable=True,
                reason=reason,
            )
        logger.info(
            "role_created",
            extra={"guild.id": guild_id, "role.id": str(role.id), "role.name": name},
        )
        return str(role.id)

    async def delete_group(self, guild_id: str, role_id: str, *, reason: str) -> bool:
        guild = self._guild(guild_id)
        role = guild.get_role(int(role_id)) if role_id else None
        if role is None:
            return False
        try:
            await role.delete(reason=reason)
        except discord.NotFound:
            return False
        except discord.HTTPException as e:
            raise ExternalServiceError(f"Discord delete_role failed: {e}") from e
        return True

    async def add_to_group(
        self, guild_id: str, user_id: str, role_id: str, *, reason: str
    ) -> None:
        guild = self._guild(guild_id)
        member = await self._member(guild, user_id)
        with _discord_call("add_roles"):
            await member.add_roles(self._role(guild, role_id), reason=reason)

    async def remove_from_group(
        self, guild_id: str, user_id: str, role_id: str, *, reason: str
    ) -> None:
        guild = self._guild(guild_id)
        member = await self._member(guild, user_id)
        with _discord_call("remove_roles"):
            await member.remove_roles(self._role(guild, role_id), reason=reason)

    async def member_groups(self, guild_id: str, user_id: str) -> set[str]:
        member = await self._member(self._guild(guild_id), user_id)
        return {str(role.id) for role in member.roles}

    async def group_member_count(self, guild_id: str, role_id: str) -> int | None:
        guild = self._guild(guild_id)
        role = guild.get_role(int(role_id)) if role_id else None
        if role is None:
            return None
        return len(role.members)

    async def open_private_channel(self, user_id: str) -> str:
        with _discord_call("create_dm"):
            user = self._client.get_user(int(user_id)) or await self._client.fetch_user(
                int(user_id)
            )
            channel = await user.create_dm()
        return str(channel.id)

    async def wait_for_reply(
        self, channel_id: str, user_id: str, *, timeout: float
    ) -> IncomingMessage:
        def check(message: discord.Message) -> bool:
            return str(message.channel.id) == channel_id and str(
                message.author.id
            ) == user_id

        try:
            message = await self._client.wait_for("message", check=check, timeout=timeout)
        except TimeoutError as e:
            raise ReplyTimeout(f"No reply from {user_id} within {timeout}s") from e
        return IncomingMessage(
            id=str(message.id),
            channel_id=channel_id,
            user_id=user_id,
            text=message.content,
            timestamp=message.created_at,
        )

    async def guild_name(self, guild_id: str) -> str:
        return self._guild(guild_id).name

    async def channel_guild(self, channel_id: str) -> str | None:
        try:
            channel = await self._channel(channel_id)
        except ExternalServiceError:
            return None
        guild = getattr(channel, "guild", None)
        return str(guild.id) if guild is not None else None


def parse_command(content: str, prefix: str) -> list[str] | None:
    """Split ``<prefix>event arg...`` into its arguments, or None if not a command."""
    head = f"{prefix}{COMMAND_NAME}"
    if not content.lower().startswith(head):
        return None
    rest = content[len(head) :]
    if rest and not rest[0].isspace():
        return None
    return rest.split()


class MusterBot(discord.Client):
    """Discord client that routes event commands and drives the scheduler."""

    def __init__(
        self,
        *,
        prefix: str,
        staff_role_id: str | None = None,
        intents: discord.Intents | None = None,
    ):
        super().__init__(intents=intents or build_intents())
        self.prefix = prefix
        self.staff_role_id = staff_role_id
        self.platform = DiscordPlatform(self)
        self._scheduler: EventScheduler | None = None
        self._commands: EventCommand | None = None
        self._ready_once = asyncio.Event()

    def attach(self, scheduler: EventScheduler, commands: EventCommand) -> None:
        self._scheduler = scheduler
        self._commands = commands

    def is_staff(self, member: discord.Member) -> bool:
        if self.staff_role_id:
            return any(str(role.id) == self.staff_role_id for role in member.roles)
        return member.guild_permissions.administrator

    async def on_ready(self) -> None:
        logger.info(
            "discord_ready",
            extra={"discord.user": str(self.user), "discord.guilds": len(self.guilds)},
        )
        # on_ready fires again after reconnects
        if self._ready_once.is_set() or self._scheduler is None:
            return
        self._ready_once.set()
        try:
            await self._scheduler.load()
        except PersistenceError:
            # Serving from empty state would overwrite the stored events
            logger.exception("event_state_load_failed")
            await self.close()
            return
        await self._scheduler.start()

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        scheduler = self._scheduler
        if self._commands is None or scheduler is None or not scheduler.loaded:
            return
        args = parse_command(message.content, self.prefix)
        if args is None:
            return
        if not isinstance(message.author, discord.Member):
            return

        ctx = CommandContext(
            guild_id=str(message.guild.id),
            channel_id=str(message.channel.id),
            author_id=str(message.author.id),
            is_staff=self.is_staff(message.author),
        )
        try:
            await self._commands.execute(ctx, args)
        except Exception:
            logger.exception(
                "command_failed",
                extra={"guild.id": ctx.guild_id, "user.id": ctx.author_id},
            )

    async def close(self) -> None:
        if self._scheduler is not None:
            await self._scheduler.stop()
        await super().close()
