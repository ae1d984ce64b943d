"""Shared test fixtures and factories."""

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from muster.errors import ExternalServiceError, NotFoundError, ReplyTimeout
from muster.events import Event, EventScheduler, EventStateStore
from muster.providers.base import Card, ChatPlatform, IncomingMessage

GUILD = "guild-1"
CHANNEL = "channel-1"
DIGEST_CHANNEL = "digest-channel"
OWNER = "user-owner"
OTHER_USER = "user-other"

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


# =============================================================================
# Platform Fake
# =============================================================================


class FakePlatform(ChatPlatform):
    """In-memory chat platform that records every call."""

    def __init__(self):
        self.sent: list[tuple[str, str, Card | None]] = []
        self.messages: dict[tuple[str, str], str] = {}
        self.roles: dict[str, dict[str, str]] = {}
        self.memberships: dict[tuple[str, str], set[str]] = {}
        self.replies: list[str] = []
        self.deleted_roles: list[str] = []
        self.guild_names: dict[str, str] = {GUILD: "Test Server"}
        self.channel_guilds: dict[str, str] = {
            CHANNEL: GUILD,
            DIGEST_CHANNEL: GUILD,
        }
        self.fail_sends = False
        self.send_delay = 0.0
        self._next_id = 0

    def _id(self, kind: str) -> str:
        self._next_id += 1
        return f"{kind}-{self._next_id}"

    def texts(self, channel_id: str | None = None) -> list[str]:
        return [
            text for channel, text, _ in self.sent if channel_id in (None, channel)
        ]

    def cards(self, channel_id: str | None = None) -> list[Card]:
        return [
            card
            for channel, _, card in self.sent
            if card is not None and channel_id in (None, channel)
        ]

    async def send(self, channel_id: str, text: str, *, card: Card | None = None) -> str:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.fail_sends:
            raise ExternalServiceError("send failed")
        message_id = self._id("msg")
        self.sent.append((channel_id, text, card))
        self.messages[(channel_id, message_id)] = text
        return message_id

    async def edit(self, channel_id: str, message_id: str, text: str) -> None:
        if (channel_id, message_id) not in self.messages:
            raise NotFoundError(message_id)
        self.messages[(channel_id, message_id)] = text

    async def message_exists(self, channel_id: str, message_id: str) -> bool:
        return (channel_id, message_id) in self.messages

    async def create_group(self, guild_id: str, name: str, *, reason: str) -> str:
        role_id = self._id("role")
        self.roles.setdefault(guild_id, {})[role_id] = name
        return role_id

    async def delete_group(self, guild_id: str, role_id: str, *, reason: str) -> bool:
        if self.roles.get(guild_id, {}).pop(role_id, None) is None:
            return False
        self.deleted_roles.append(role_id)
        for groups in self.memberships.values():
            groups.discard(role_id)
        return True

    async def add_to_group(
        self, guild_id: str, user_id: str, role_id: str, *, reason: str
    ) -> None:
        self.memberships.setdefault((guild_id, user_id), set()).add(role_id)

    async def remove_from_group(
        self, guild_id: str, user_id: str, role_id: str, *, reason: str
    ) -> None:
        self.memberships.setdefault((guild_id, user_id), set()).discard(role_id)

    async def member_groups(self, guild_id: str, user_id: str) -> set[str]:
        return set(self.memberships.get((guild_id, user_id), set()))

    async def group_member_count(self, guild_id: str, role_id: str) -> int | None:
        if role_id not in self.roles.get(guild_id, {}):
            return None
        return sum(
            1
            for (guild, _), groups in self.memberships.items()
            if guild == guild_id and role_id in groups
        )

    async def open_private_channel(self, user_id: str) -> str:
        return f"dm-{user_id}"

    async def wait_for_reply(
        self, channel_id: str, user_id: str, *, timeout: float
    ) -> IncomingMessage:
        if not self.replies:
            raise ReplyTimeout(f"no reply within {timeout}s")
        return IncomingMessage(
            id=self._id("reply"),
            channel_id=channel_id,
            user_id=user_id,
            text=self.replies.pop(0),
        )

    async def guild_name(self, guild_id: str) -> str:
        return self.guild_names.get(guild_id, guild_id)

    async def channel_guild(self, channel_id: str) -> str | None:
        return self.channel_guilds.get(channel_id)


class FakeClock:
    """Settable clock for the scheduler."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "events.json"


@pytest.fixture
def store(state_path: Path) -> EventStateStore:
    return EventStateStore(state_path)


@pytest.fixture
async def scheduler(
    store: EventStateStore, platform: FakePlatform, clock: FakeClock
) -> EventScheduler:
    """Loaded scheduler without a digest channel."""
    scheduler = EventScheduler(store, platform, default_timezone="UTC", clock=clock)
    await scheduler.load()
    return scheduler


@pytest.fixture
async def digest_scheduler(
    store: EventStateStore, platform: FakePlatform, clock: FakeClock
) -> EventScheduler:
    """Loaded scheduler that maintains a digest in DIGEST_CHANNEL."""
    scheduler = EventScheduler(
        store,
        platform,
        default_timezone="UTC",
        digest_channel_id=DIGEST_CHANNEL,
        clock=clock,
    )
    await scheduler.load()
    return scheduler


# =============================================================================
# Factories
# =============================================================================


def make_event(
    name: str = "Raid Night",
    due: datetime | None = None,
    *,
    guild_id: str = GUILD,
    channel_id: str = CHANNEL,
    owner_id: str = OWNER,
    role_id: str = "role-x",
    description: str | None = None,
) -> Event:
    return Event(
        name=name,
        due=due or NOW + timedelta(hours=1),
        guild_id=guild_id,
        channel_id=channel_id,
        owner_id=owner_id,
        role_id=role_id,
        description=description,
    )
