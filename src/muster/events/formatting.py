"""Text and card rendering for events."""

from datetime import datetime

from muster.events.types import Event
from muster.providers.base import Card
from muster.timezones import display_name, get_zone

NO_UPCOMING_EVENTS = "No upcoming events."

DIGEST_TEMPLATE = """\
The upcoming events for {server_name} are listed below, with the next upcoming event listed first. \
All times are listed in {timezone}, the default timezone for this server. \
Use `{prefix}event info event name` to view the event time in your local timezone, and \
`{prefix}event join event name` to be reminded about the event.

{events}
"""

DIGEST_LINE_TEMPLATE = (
    "{name} - created by <@{owner}> in <#{channel}>, starts at {due}"
)


def _ordinal(day: int) -> str:
    if 11 <= day % 100 <= 13:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def _hour_12(local: datetime) -> str:
    return f"{local.hour % 12 or 12}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}"


def format_long(when: datetime, timezone: str) -> str:
    """e.g. ``Tuesday, January 2nd 2024, 9:00 AM``."""
    local = when.astimezone(get_zone(timezone))
    return (
        f"{local:%A}, {local:%B} {_ordinal(local.day)} {local.year}, {_hour_12(local)}"
    )


def format_calendar(when: datetime, timezone: str) -> str:
    """e.g. ``Tue, Jan 2, 2024 9:00 AM``."""
    local = when.astimezone(get_zone(timezone))
    return f"{local:%a}, {local:%b} {local.day}, {local.year} {_hour_12(local)}"


def format_with_zone(when: datetime, timezone: str) -> str:
    return f"{format_calendar(when, timezone)} {display_name(timezone, when)}"


def render_digest(
    events: list[Event],
    *,
    server_name: str,
    timezone: str,
    prefix: str,
    limit: int,
) -> str:
    lines = [
        DIGEST_LINE_TEMPLATE.format(
            name=event.name,
            owner=event.owner_id,
            channel=event.channel_id,
            due=format_long(event.due, timezone),
        )
        for event in events[:limit]
    ]
    return DIGEST_TEMPLATE.format(
        server_name=server_name,
        timezone=display_name(timezone),
        prefix=prefix,
        events="\n".join(lines) if lines else NO_UPCOMING_EVENTS,
    )


def event_card(
    event: Event,
    *,
    title: str,
    prefix: str,
    description: str | None = None,
    timezone: str | None = None,
    participants: int | None = None,
    participating: bool | None = None,
) -> Card:
    """Card describing an event.

    ``timezone`` adds a localized "Event time" field; ``participants`` and
    ``participating`` are only shown when known.
    """
    card = Card(
        title=title,
        description=description
        or (
            f"A message will be posted in <#{event.channel_id}> when this event "
            f"starts. You can join this event with '{prefix}event join {event.name}'."
        ),
        timestamp=event.due,
    )
    card.add_field("Event name", event.name)
    if timezone:
        card.add_field("Event time", format_with_zone(event.due, timezone))
    card.add_field("Creator", f"<@{event.owner_id}>")
    card.add_field("Channel", f"<#{event.channel_id}>")
    if event.role_id:
        card.add_field("Event role", f"<@&{event.role_id}>")
    else:
        card.add_field("Event role", f"@{role_name(event.name)}")
    if event.description:
        card.add_field("Description", event.description)
    if participants is not None:
        card.add_field("Participants", str(participants))
    if participating is not None:
        card.add_field("Participating?", "Yes" if participating else "No")
    return card


def render_list(events: list[Event], *, timezone: str, limit: int) -> str:
    shown = events[:limit]
    header = (
        "There's only one upcoming event."
        if len(shown) == 1
        else f"Next {len(shown)} events, ordered soonest-first."
    )
    lines = [
        f"{i}. **{event.name}** ({format_calendar(event.due, timezone)}) - in <#{event.channel_id}>"
        for i, event in enumerate(shown, start=1)
    ]
    return "\n\n".join([header, "\n".join(lines)])


def role_name(event_name: str) -> str:
    return f"Event - {event_name}"
