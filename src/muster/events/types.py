"""Event types.

Public types:
- Event: A scheduled event in a guild
- PendingCleanup: A fired event's role waiting to be deleted
- EventState: The whole persisted document
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)


def _parse_instant(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _format_instant(value: datetime) -> str:
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


@dataclass
class Event:
    """A scheduled event."""

    name: str
    due: datetime  # Always UTC
    guild_id: str
    channel_id: str
    owner_id: str
    role_id: str
    description: str | None = None
    _extra: dict[str, Any] = field(default_factory=dict)  # Preserve unknown fields

    def __post_init__(self) -> None:
        if self.due.tzinfo is None:
            raise ValueError("Event due time must be timezone-aware")
        self.due = self.due.astimezone(UTC)

    @property
    def key(self) -> str:
        """Case-insensitive name used for lookups."""
        return self.name.casefold()

    def matches(self, name: str) -> bool:
        return self.key == name.casefold()

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to a JSON-serializable dict."""
        data: dict[str, Any] = dict(self._extra)
        data["name"] = self.name
        data["due"] = _format_instant(self.due)
        data["guild"] = self.guild_id
        data["channel"] = self.channel_id
        data["owner"] = self.owner_id
        data["role"] = self.role_id
        if self.description:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        known_fields = {
            "name",
            "due",
            "guild",
            "channel",
            "owner",
            "role",
            "description",
        }
        extra = {k: v for k, v in data.items() if k not in known_fields}
        return cls(
            name=data["name"],
            due=_parse_instant(data["due"]),
            guild_id=str(data["guild"]),
            channel_id=str(data["channel"]),
            owner_id=str(data["owner"]),
            role_id=str(data["role"]),
            description=data.get("description") or None,
            _extra=extra,
        )


@dataclass
class PendingCleanup:
    """A role left behind by an event that has already started."""

    guild_id: str
    role_id: str
    started_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "guild": self.guild_id,
            "role": self.role_id,
            "startedAt": _format_instant(self.started_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingCleanup":
        return cls(
            guild_id=str(data["guild"]),
            role_id=str(data["role"]),
            started_at=_parse_instant(data["startedAt"]),
        )


@dataclass
class EventState:
    """In-memory form of the persisted event document.

    Owned by the scheduler; the store only reads and writes snapshots of it.
    """

    guild_timezones: dict[str, str] = field(default_factory=dict)
    events: dict[str, list[Event]] = field(default_factory=dict)
    user_timezones: dict[str, str] = field(default_factory=dict)
    pending_cleanups: list[PendingCleanup] = field(default_factory=list)
    digest_messages: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "guildDefaultTimeZones": dict(self.guild_timezones),
            "events": {
                guild: [event.to_dict() for event in events]
                for guild, events in self.events.items()
            },
            "userTimeZones": dict(self.user_timezones),
            "finishedRoles": [c.to_dict() for c in self.pending_cleanups],
            "eventInfoMessage": dict(self.digest_messages),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EventState":
        """Build state from a persisted document.

        Malformed individual events or cleanup records are skipped with a
        warning rather than failing the whole load.
        """
        events: dict[str, list[Event]] = {}
        for guild, raw_events in (data.get("events") or {}).items():
            parsed: list[Event] = []
            for raw in raw_events or []:
                try:
                    parsed.append(Event.from_dict(raw))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(
                        "malformed_event_skipped",
                        extra={"guild.id": guild, "error.message": str(e)},
                    )
            # Older documents may not be sorted; keep ties in stored order
            parsed.sort(key=lambda event: event.due)
            events[str(guild)] = parsed

        cleanups: list[PendingCleanup] = []
        for raw in data.get("finishedRoles") or []:
            try:
                cleanups.append(PendingCleanup.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "malformed_cleanup_skipped", extra={"error.message": str(e)}
                )

        return cls(
            guild_timezones={
                str(k): v for k, v in (data.get("guildDefaultTimeZones") or {}).items()
            },
            events=events,
            user_timezones={
                str(k): v for k, v in (data.get("userTimeZones") or {}).items()
            },
            pending_cleanups=cleanups,
            digest_messages={
                str(k): str(v) for k, v in (data.get("eventInfoMessage") or {}).items()
            },
        )
