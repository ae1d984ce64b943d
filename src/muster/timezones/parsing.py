"""Free-text date and time parsing.

Every function takes an explicit timezone; naive input is never interpreted
in the host's local time by accident. Only the listed formats are accepted,
each matched in full.
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta

from muster.errors import UserInputError
from muster.timezones.resolver import get_zone

# User-facing format label -> strptime format
_DATE_FORMATS = {
    "YYYY-MM-DD": "%Y-%m-%d",
    "YYYY/MM/DD": "%Y/%m/%d",
    "MM-DD": "%m-%d",
    "MM/DD": "%m/%d",
}
DATE_INPUT_FORMATS = tuple(_DATE_FORMATS)
TIME_INPUT_FORMAT = "HH:mm"
MINIMUM_LEAD_TIME = timedelta(minutes=1)

DATE_FORMAT_HELP = ", ".join(f"`{f}`" for f in DATE_INPUT_FORMATS)


@dataclass(frozen=True)
class ClockTime:
    hour: int
    minute: int


def parse_date(text: str, timezone: str, now: datetime) -> date:
    """Parse a calendar date relative to ``now`` in ``timezone``.

    Accepts ``today``, ``tomorrow`` and the formats in DATE_INPUT_FORMATS.
    Formats without a year use the current year in the timezone.
    """
    zone = get_zone(timezone)
    local_today = now.astimezone(zone).date()
    lowered = text.strip().lower()
    if lowered == "today":
        return local_today
    if lowered == "tomorrow":
        return local_today + timedelta(days=1)

    for pattern in _DATE_FORMATS.values():
        candidate = lowered
        if "%Y" not in pattern:
            # Pin the year before parsing so 02/29 works in leap years
            separator = pattern[2]
            candidate = f"{local_today.year}{separator}{lowered}"
            pattern = f"%Y{separator}{pattern}"
        try:
            return datetime.strptime(candidate, pattern).date()
        except ValueError:
            continue

    raise UserInputError(
        "The date format used wasn't recognized, or you entered an invalid date. "
        f"Supported date formats are: {DATE_FORMAT_HELP}, `today` and `tomorrow`."
    )


def parse_time(text: str) -> ClockTime:
    """Parse a 24-hour ``H:mm``/``HH:mm`` clock time."""
    stripped = text.strip()
    _, _, minutes = stripped.partition(":")
    if len(minutes) == 2:
        try:
            parsed = datetime.strptime(stripped, "%H:%M")
        except ValueError:
            pass
        else:
            return ClockTime(parsed.hour, parsed.minute)
    raise UserInputError(
        f"The time format used wasn't recognized. The supported format is "
        f"`{TIME_INPUT_FORMAT}`, optionally followed by AM or PM."
    )


def apply_meridiem(clock: ClockTime, token: str | None) -> ClockTime:
    """Adjust a clock time for a trailing AM/PM token.

    ``12 am`` becomes 00, any other hour with ``pm`` gains 12 hours.
    """
    if token is None:
        return clock
    lowered = token.strip().lower()
    if lowered not in ("am", "pm"):
        raise UserInputError(
            "Please either use 24 hour time or include AM/PM after the time."
        )
    if not 1 <= clock.hour <= 12:
        raise UserInputError(
            "With AM/PM the hour must be between 1 and 12; "
            "leave AM/PM off to use 24 hour time."
        )
    if clock.hour == 12 and lowered == "am":
        return ClockTime(0, clock.minute)
    if clock.hour != 12 and lowered == "pm":
        return ClockTime(clock.hour + 12, clock.minute)
    return clock


def combine(day: date, clock: ClockTime, timezone: str) -> datetime:
    """Combine a local date and clock time into a UTC instant."""
    zone = get_zone(timezone)
    local = datetime.combine(day, time(clock.hour, clock.minute), tzinfo=zone)
    return local.astimezone(UTC)


def ensure_future(due: datetime, now: datetime) -> None:
    """Require ``due`` to be strictly after ``now`` plus the minimum lead time."""
    if due <= now + MINIMUM_LEAD_TIME:
        raise UserInputError("The event must start in the future.")


def parse_when(
    date_text: str,
    time_text: str,
    meridiem: str | None,
    timezone: str,
    now: datetime,
) -> datetime:
    """Parse date, time and optional AM/PM into a future UTC instant."""
    day = parse_date(date_text, timezone, now)
    clock = apply_meridiem(parse_time(time_text), meridiem)
    due = combine(day, clock, timezone)
    ensure_future(due, now)
    return due
