"""Timezone resolution for user input and stored preferences."""

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError, available_timezones

from muster.timezones.aliases import TIMEZONE_CODES

logger = logging.getLogger(__name__)


class TimezonePreferences(Protocol):
    """Anything carrying per-guild and per-user timezone choices."""

    guild_timezones: Mapping[str, str]
    user_timezones: Mapping[str, str]


@lru_cache(maxsize=1)
def _canonical_names() -> dict[str, str]:
    # Casefolded name -> IANA spelling
    return {name.casefold(): name for name in available_timezones()}


def resolve_timezone(raw: str | None) -> str | None:
    """Turn user input into a canonical timezone identifier.

    Spaces become underscores, known codes ("PST", "cet") map to their IANA
    zone, zone names are matched case-insensitively ("america/new_york"),
    and anything else is passed through as a literal identifier.
    Returns None for empty input. The result is not validated.
    """
    if raw is None:
        return None
    normalized = raw.strip().replace(" ", "_")
    if not normalized:
        return None
    alias = TIMEZONE_CODES.get(normalized.upper())
    if alias is not None:
        return alias
    return _canonical_names().get(normalized.casefold(), normalized)


@lru_cache(maxsize=256)
def _load_zone(name: str) -> ZoneInfo | None:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def get_zone(timezone: str) -> ZoneInfo:
    """Return the ZoneInfo for a (possibly aliased) timezone.

    Raises:
        ValueError: If the timezone is unknown.
    """
    name = resolve_timezone(timezone)
    zone = _load_zone(name) if name else None
    if zone is None:
        raise ValueError(f"Unknown timezone: {timezone}")
    return zone


def is_valid_timezone(timezone: str | None) -> bool:
    """Check whether the input names a zone in the IANA database."""
    name = resolve_timezone(timezone)
    return name is not None and _load_zone(name) is not None


def display_name(timezone: str, at: datetime | None = None) -> str:
    """Short abbreviation for a timezone ("PST", "CEST") at an instant."""
    zone = get_zone(timezone)
    moment = (at or datetime.now(UTC)).astimezone(zone)
    return moment.tzname() or str(zone)


def utc_offset(timezone: str, at: datetime | None = None) -> str:
    """UTC offset of a timezone at an instant, formatted as ``+HH:MM``."""
    zone = get_zone(timezone)
    offset = (at or datetime.now(UTC)).astimezone(zone).utcoffset()
    total_minutes = int(offset.total_seconds() // 60) if offset else 0
    sign = "-" if total_minutes < 0 else "+"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{sign}{hours:02d}:{minutes:02d}"


class TimezoneResolver:
    """Works out which timezone applies to an action.

    Resolution order: user override, then the guild default, then the
    process default (normally the host timezone).
    """

    def __init__(self, preferences: TimezonePreferences, default_timezone: str):
        if not is_valid_timezone(default_timezone):
            logger.warning(
                "invalid_default_timezone",
                extra={"timezone.name": default_timezone},
            )
            default_timezone = "UTC"
        self._preferences = preferences
        self._default = resolve_timezone(default_timezone) or "UTC"

    @property
    def default_timezone(self) -> str:
        return self._default

    def _usable(self, stored: str | None) -> str | None:
        name = resolve_timezone(stored)
        if name and is_valid_timezone(name):
            return name
        if name:
            logger.warning("stored_timezone_invalid", extra={"timezone.name": name})
        return None

    def guild_timezone(self, guild_id: str | None) -> str:
        if guild_id is not None:
            stored = self._preferences.guild_timezones.get(guild_id)
            if name := self._usable(stored):
                return name
        return self._default

    def effective_timezone(self, user_id: str | None, guild_id: str | None) -> str:
        if user_id is not None:
            stored = self._preferences.user_timezones.get(user_id)
            if name := self._usable(stored):
                return name
        return self.guild_timezone(guild_id)
