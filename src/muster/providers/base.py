"""Abstract chat-platform interface.

The scheduler, wizard and command dispatcher talk to the chat platform only
through ChatPlatform. Implementations raise ExternalServiceError when a
platform call fails and ReplyTimeout when a reply wait runs out.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class IncomingMessage:
    """Message received from the platform."""

    id: str
    channel_id: str
    user_id: str
    text: str
    timestamp: datetime | None = None


@dataclass
class CardField:
    name: str
    value: str


@dataclass
class Card:
    """Structured message content (rendered as an embed where supported)."""

    title: str
    description: str = ""
    fields: list[CardField] = field(default_factory=list)
    footer: str | None = None
    timestamp: datetime | None = None

    def add_field(self, name: str, value: str) -> "Card":
        self.fields.append(CardField(name, value))
        return self


class ChatPlatform(ABC):
    """Operations Muster needs from a chat platform.

    Identifiers (guild, channel, user, role, message) are opaque strings.
    """

    @abstractmethod
    async def send(
        self, channel_id: str, text: str, *, card: Card | None = None
    ) -> str:
        """Send a message and return its ID."""
        ...

    @abstractmethod
    async def edit(self, channel_id: str, message_id: str, text: str) -> None:
        """Replace the text of a previously sent message.

        Raises:
            NotFoundError: If the message no longer exists.
        """
        ...

    @abstractmethod
    async def message_exists(self, channel_id: str, message_id: str) -> bool:
        """Check whether a message can still be fetched."""
        ...

    @abstractmethod
    async def create_group(self, guild_id: str, name: str, *, reason: str) -> str:
        """Create a mentionable role with no permissions and return its ID."""
        ...

    @abstractmethod
    async def delete_group(self, guild_id: str, role_id: str, *, reason: str) -> bool:
        """Delete a role. Returns False if the role no longer exists."""
        ...

    @abstractmethod
    async def add_to_group(
        self, guild_id: str, user_id: str, role_id: str, *, reason: str
    ) -> None:
        ...

    @abstractmethod
    async def remove_from_group(
        self, guild_id: str, user_id: str, role_id: str, *, reason: str
    ) -> None:
        ...

    @abstractmethod
    async def member_groups(self, guild_id: str, user_id: str) -> set[str]:
        """Role IDs held by a guild member."""
        ...

    @abstractmethod
    async def group_member_count(self, guild_id: str, role_id: str) -> int | None:
        """Number of members holding a role, or None if the role is gone."""
        ...

    @abstractmethod
    async def open_private_channel(self, user_id: str) -> str:
        """Open (or reuse) a direct-message channel and return its ID."""
        ...

    @abstractmethod
    async def wait_for_reply(
        self, channel_id: str, user_id: str, *, timeout: float
    ) -> IncomingMessage:
        """Wait for the next message from ``user_id`` in ``channel_id``.

        Raises:
            ReplyTimeout: If nothing arrives within ``timeout`` seconds.
        """
        ...

    @abstractmethod
    async def guild_name(self, guild_id: str) -> str:
        """Display name of a guild."""
        ...

    @abstractmethod
    async def channel_guild(self, channel_id: str) -> str | None:
        """Guild that owns a channel, or None if the channel is unknown."""
        ...
