"""Creation wizard state machine.

Each transition is a pure function of (state, reply, draft, context) and
returns the next state, the updated draft and the messages to send. The
driver in ``muster.wizard.runner`` owns all I/O.

    INTRO -> NAME_ENTRY -> DATETIME_ENTRY <-> DATE_CONFIRM -> DESCRIPTION_CHOICE
    DESCRIPTION_CHOICE -> DESCRIPTION_ENTRY <-> DESCRIPTION_CONFIRM
    DESCRIPTION_CHOICE | DESCRIPTION_ENTRY | DESCRIPTION_CONFIRM -> FINAL_CONFIRM
    FINAL_CONFIRM -> COMMITTED | CANCELLED

``cancel`` at any prompt moves to CANCELLED.
"""

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from muster.errors import UserInputError
from muster.events.formatting import event_card, format_with_zone
from muster.events.types import Event
from muster.providers.base import Card
from muster.timezones import parse_when
from muster.timezones.parsing import ensure_future

TRY_AGAIN = "Please try again or type cancel to end event creation."
YES = frozenset({"y", "yes"})
NO = frozenset({"n", "no"})


class WizardState(Enum):
    INTRO = "intro"
    NAME_ENTRY = "name_entry"
    DATETIME_ENTRY = "datetime_entry"
    DATE_CONFIRM = "date_confirm"
    DESCRIPTION_CHOICE = "description_choice"
    DESCRIPTION_ENTRY = "description_entry"
    DESCRIPTION_CONFIRM = "description_confirm"
    FINAL_CONFIRM = "final_confirm"
    COMMITTED = "committed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (WizardState.COMMITTED, WizardState.CANCELLED)


@dataclass(frozen=True)
class Draft:
    """Fields collected so far."""

    name: str | None = None
    due: datetime | None = None
    description: str | None = None
    pending_description: str | None = None


@dataclass(frozen=True)
class WizardContext:
    """Everything a transition may consult besides the reply itself."""

    now: datetime
    timezone: str
    guild_id: str
    channel_id: str
    owner_id: str
    prefix: str
    name_taken: Callable[[str], bool]


@dataclass(frozen=True)
class Prompt:
    text: str
    card: Card | None = None


@dataclass(frozen=True)
class Step:
    state: WizardState
    draft: Draft
    messages: tuple[Prompt, ...] = field(default_factory=tuple)


def _say(*texts: str) -> tuple[Prompt, ...]:
    return tuple(Prompt(text) for text in texts)


def cancelled_message(prefix: str) -> str:
    return (
        f"Event creation cancelled. Please run {prefix}event create again "
        "to initiate event creation again."
    )


def preview_event(draft: Draft, ctx: WizardContext) -> Event:
    """The event the draft would create, without a role yet."""
    assert draft.name is not None and draft.due is not None
    return Event(
        name=draft.name,
        due=draft.due,
        guild_id=ctx.guild_id,
        channel_id=ctx.channel_id,
        owner_id=ctx.owner_id,
        role_id="",
        description=draft.description,
    )


def _final_summary(draft: Draft, ctx: WizardContext, lead: str) -> Step:
    card = event_card(
        preview_event(draft, ctx),
        title=f"New event: {draft.name}",
        prefix=ctx.prefix,
        description=(
            f"A message will be posted in <#{ctx.channel_id}> when this event "
            f"starts. Users can join this event with "
            f"'{ctx.prefix}event join {draft.name}'."
        ),
        timezone=ctx.timezone,
    )
    return Step(
        WizardState.FINAL_CONFIRM,
        draft,
        (Prompt(lead), Prompt("", card=card), Prompt("Does this look ok? **Y/N**")),
    )


def start(ctx: WizardContext) -> Step:
    """Intro messages; the first reply will be the event name."""
    return Step(
        WizardState.NAME_ENTRY,
        Draft(),
        _say(
            f"Before we get started, all times and dates will be set for the "
            f"**{ctx.timezone}** locale. This is either set by you, or is the "
            f"server's time zone. If you would like to set or change your time "
            f"zone, you may do so by cancelling this command and typing "
            f"{ctx.prefix}event tz [timezone].\n**PLEASE NOTE** that using that "
            f"command will store your user ID and timezone in the bot.",
            "First, I'll need a name for the event. What would you like to call "
            "it?\n*You can reply 'cancel' without quotes at any time to end this "
            "wizard without creating an event.*",
        ),
    )


def _name_entry(reply: str, draft: Draft, ctx: WizardContext) -> Step:
    name = reply.strip()
    if not name:
        return Step(
            WizardState.NAME_ENTRY, draft, _say("Please enter a name for the event.")
        )
    if ctx.name_taken(name):
        return Step(
            WizardState.NAME_ENTRY,
            draft,
            _say(
                f"An event called '{name}' already exists. "
                "Please enter a different name."
            ),
        )
    return Step(
        WizardState.DATETIME_ENTRY,
        replace(draft, name=name),
        _say(
            f"ok, an event called **{name}**.\nNext, I need a date and time for "
            "the event, like so: [Date] [HH:mm] [AM/PM] (AM/PM are optional).\n"
            "Valid date formats are: YYYY-MM-DD, YYYY/MM/DD, MM-DD, MM/DD, today, "
            "or tomorrow."
        ),
    )


def _datetime_entry(reply: str, draft: Draft, ctx: WizardContext) -> Step:
    parts = reply.split()
    if len(parts) < 2:
        return Step(
            WizardState.DATETIME_ENTRY,
            draft,
            _say(
                "Please include a time, separated by a space from the date. You "
                "can enter the time in 24 hour format, or with AM/PM separated by "
                f"a space.\n{TRY_AGAIN}"
            ),
        )
    if len(parts) > 3:
        return Step(
            WizardState.DATETIME_ENTRY,
            draft,
            _say(
                "Please either use 24 hour time or include AM/PM after the time. "
                + TRY_AGAIN
            ),
        )

    date_text, time_text = parts[0], parts[1]
    meridiem = parts[2] if len(parts) == 3 else None
    try:
        due = parse_when(date_text, time_text, meridiem, ctx.timezone, ctx.now)
    except UserInputError as e:
        return Step(WizardState.DATETIME_ENTRY, draft, _say(f"{e}\n{TRY_AGAIN}"))

    return Step(
        WizardState.DATE_CONFIRM,
        replace(draft, due=due),
        _say(
            f"Great, **{draft.name}** will happen on "
            f"{format_with_zone(due, ctx.timezone)}. Is this ok? **Y/N**"
        ),
    )


def _date_confirm(reply: str, draft: Draft, ctx: WizardContext) -> Step:
    answer = reply.strip().lower()
    if answer in NO:
        return Step(
            WizardState.DATETIME_ENTRY,
            replace(draft, due=None),
            _say("OK, please type a new date and time for the event."),
        )
    if answer in YES:
        return Step(
            WizardState.DESCRIPTION_CHOICE,
            draft,
            _say("OK! Would you like to set a description for this event? **Y/N**"),
        )
    return Step(
        WizardState.DATE_CONFIRM,
        draft,
        _say("Reply not recognized! Please answer Y or N. Is this date ok? **Y/N**"),
    )


def _description_choice(reply: str, draft: Draft, ctx: WizardContext) -> Step:
    answer = reply.strip().lower()
    if answer in NO:
        return _final_summary(
            replace(draft, description=None), ctx, "OK, no description."
        )
    if answer in YES:
        return Step(
            WizardState.DESCRIPTION_ENTRY,
            draft,
            _say(
                "Great! Please enter a description for the event. It's best to "
                "keep this short, 2-3 sentences max. You can type 'none' if you "
                "decide you do not want a description after all."
            ),
        )
    return Step(
        WizardState.DESCRIPTION_CHOICE,
        draft,
        _say(
            "Reply not recognized! Please answer Y or N. Would you like to set a "
            "description for this event? **Y/N**"
        ),
    )


def _description_entry(reply: str, draft: Draft, ctx: WizardContext) -> Step:
    text = reply.strip()
    if text.lower() == "none":
        return _final_summary(
            replace(draft, description=None, pending_description=None),
            ctx,
            "OK, no description.",
        )
    if not text:
        return Step(
            WizardState.DESCRIPTION_ENTRY,
            draft,
            _say("Please type a description, or 'none' for no description."),
        )
    return Step(
        WizardState.DESCRIPTION_CONFIRM,
        replace(draft, pending_description=text),
        _say(f"Great,\n> *{text}*\nwill be the description of your event. Is this OK? **Y/N**"),
    )


def _description_confirm(reply: str, draft: Draft, ctx: WizardContext) -> Step:
    answer = reply.strip().lower()
    if answer in NO:
        return Step(
            WizardState.DESCRIPTION_ENTRY,
            replace(draft, pending_description=None),
            _say("OK, please type a new description, or 'none' for no description."),
        )
    if answer in YES:
        return _final_summary(
            replace(
                draft, description=draft.pending_description, pending_description=None
            ),
            ctx,
            "Description saved.",
        )
    return Step(
        WizardState.DESCRIPTION_CONFIRM,
        draft,
        _say(
            "Reply not recognized! Please answer Y or N. Should "
            f"*{draft.pending_description}* be the description? **Y/N**"
        ),
    )


def _final_confirm(reply: str, draft: Draft, ctx: WizardContext) -> Step:
    answer = reply.strip().lower()
    if answer in NO:
        return Step(
            WizardState.CANCELLED,
            draft,
            _say(
                f"OK. For now you will have to re-run {ctx.prefix}event create in "
                "the server to re-create the event."
            ),
        )
    if answer in YES:
        # Time keeps moving while the user answers prompts
        assert draft.due is not None
        try:
            ensure_future(draft.due, ctx.now)
        except UserInputError:
            return Step(
                WizardState.DATETIME_ENTRY,
                replace(draft, due=None),
                _say(
                    "That start time is no longer in the future. Please type a "
                    "new date and time for the event."
                ),
            )
        return Step(
            WizardState.COMMITTED,
            draft,
            _say(f"Perfect. I'll notify <#{ctx.channel_id}> now."),
        )
    return Step(
        WizardState.FINAL_CONFIRM,
        draft,
        _say(
            "Reply not recognized! Please answer Y or N. Is the event data I "
            "posted above acceptable? **Y/N**"
        ),
    )


Handler = Callable[[str, Draft, WizardContext], Step]

TRANSITIONS: dict[WizardState, Handler] = {
    WizardState.NAME_ENTRY: _name_entry,
    WizardState.DATETIME_ENTRY: _datetime_entry,
    WizardState.DATE_CONFIRM: _date_confirm,
    WizardState.DESCRIPTION_CHOICE: _description_choice,
    WizardState.DESCRIPTION_ENTRY: _description_entry,
    WizardState.DESCRIPTION_CONFIRM: _description_confirm,
    WizardState.FINAL_CONFIRM: _final_confirm,
}


def transition(
    state: WizardState, reply: str, draft: Draft, ctx: WizardContext
) -> Step:
    """Apply one reply to the wizard.

    Raises:
        ValueError: If ``state`` does not accept replies.
    """
    if reply.strip().lower() == "cancel":
        return Step(WizardState.CANCELLED, draft, _say(cancelled_message(ctx.prefix)))
    handler = TRANSITIONS.get(state)
    if handler is None:
        raise ValueError(f"Wizard state {state.name} does not accept replies")
    return handler(reply, draft, ctx)
