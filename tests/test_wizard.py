"""Tests for the event creation wizard."""

from datetime import UTC, datetime, timedelta

import pytest

from muster.errors import ExternalServiceError
from muster.wizard import (
    CreationWizard,
    Draft,
    WizardContext,
    WizardOutcome,
    WizardState,
    start,
    transition,
)
from tests.conftest import CHANNEL, GUILD, NOW, OWNER, make_event

DM = f"dm-{OWNER}"


def _ctx(now: datetime = NOW, timezone: str = "UTC", taken=()) -> WizardContext:
    return WizardContext(
        now=now,
        timezone=timezone,
        guild_id=GUILD,
        channel_id=CHANNEL,
        owner_id=OWNER,
        prefix="!",
        name_taken=lambda name: name.casefold() in {t.casefold() for t in taken},
    )


def _run(replies: list[str], ctx: WizardContext | None = None):
    """Feed replies through the state machine starting from NAME_ENTRY."""
    ctx = ctx or _ctx()
    step = start(ctx)
    for reply in replies:
        step = transition(step.state, reply, step.draft, ctx)
    return step


class TestTransitions:
    """Tests for the pure state machine."""

    def test_start_asks_for_name(self):
        step = start(_ctx(timezone="Europe/Paris"))
        assert step.state is WizardState.NAME_ENTRY
        assert "**Europe/Paris**" in step.messages[0].text

    def test_happy_path_without_description(self):
        step = _run(["Raid Night", "tomorrow 09:00", "y", "n", "y"])
        assert step.state is WizardState.COMMITTED
        assert step.draft.name == "Raid Night"
        assert step.draft.due == datetime(2024, 1, 2, 9, 0, tzinfo=UTC)
        assert step.draft.description is None

    def test_description_keeps_case(self):
        step = _run(
            ["Raid Night", "tomorrow 09:00", "yes", "YES", "Bring Your Own Snacks", "Y"]
        )
        assert step.state is WizardState.FINAL_CONFIRM
        assert step.draft.description == "Bring Your Own Snacks"
        assert step.messages[1].card is not None

    def test_description_none_skips(self):
        step = _run(["Raid Night", "tomorrow 09:00", "y", "y", "none"])
        assert step.state is WizardState.FINAL_CONFIRM
        assert step.draft.description is None

    def test_description_rejected_reprompts(self):
        step = _run(["Raid Night", "tomorrow 09:00", "y", "y", "first", "n"])
        assert step.state is WizardState.DESCRIPTION_ENTRY
        step = transition(step.state, "second", step.draft, _ctx())
        step = transition(step.state, "y", step.draft, _ctx())
        assert step.draft.description == "second"

    @pytest.mark.parametrize(
        "replies",
        [
            ["cancel"],
            ["Raid Night", "CANCEL"],
            ["Raid Night", "tomorrow 09:00", "cancel"],
            ["Raid Night", "tomorrow 09:00", "y", "y", "cancel"],
        ],
    )
    def test_cancel_anywhere(self, replies):
        step = _run(replies)
        assert step.state is WizardState.CANCELLED
        assert "Event creation cancelled" in step.messages[0].text

    def test_final_no_cancels(self):
        step = _run(["Raid Night", "tomorrow 09:00", "y", "n", "n"])
        assert step.state is WizardState.CANCELLED

    def test_taken_name_reprompts(self):
        step = _run(["raid night"], _ctx(taken=["Raid Night"]))
        assert step.state is WizardState.NAME_ENTRY
        assert "already exists" in step.messages[0].text

    def test_missing_time(self):
        step = _run(["Raid Night", "tomorrow"])
        assert step.state is WizardState.DATETIME_ENTRY
        assert "Please include a time" in step.messages[0].text

    def test_too_many_tokens(self):
        step = _run(["Raid Night", "tomorrow 9:00 pm please"])
        assert step.state is WizardState.DATETIME_ENTRY
        assert "24 hour time" in step.messages[0].text

    def test_bad_date_reprompts(self):
        step = _run(["Raid Night", "someday 09:00"])
        assert step.state is WizardState.DATETIME_ENTRY
        assert "date format" in step.messages[0].text

    def test_past_time_reprompts(self):
        step = _run(["Raid Night", "today 11:00"])
        assert step.state is WizardState.DATETIME_ENTRY
        assert "future" in step.messages[0].text

    @pytest.mark.parametrize(
        ("reply", "expected"),
        [
            ("tomorrow 12:30 am", datetime(2024, 1, 2, 0, 30, tzinfo=UTC)),
            ("tomorrow 12:30 pm", datetime(2024, 1, 2, 12, 30, tzinfo=UTC)),
            ("tomorrow 7:05 PM", datetime(2024, 1, 2, 19, 5, tzinfo=UTC)),
        ],
    )
    def test_meridiem(self, reply, expected):
        step = _run(["Raid Night", reply])
        assert step.state is WizardState.DATE_CONFIRM
        assert step.draft.due == expected

    def test_date_rejected_returns_to_entry(self):
        step = _run(["Raid Night", "tomorrow 09:00", "n"])
        assert step.state is WizardState.DATETIME_ENTRY
        assert step.draft.due is None

    def test_unrecognized_answer_keeps_state(self):
        step = _run(["Raid Night", "tomorrow 09:00", "maybe"])
        assert step.state is WizardState.DATE_CONFIRM
        assert "Reply not recognized" in step.messages[0].text

    def test_final_confirm_rechecks_time(self):
        step = _run(["Raid Night", "today 12:05", "y", "n"])
        assert step.state is WizardState.FINAL_CONFIRM

        later = _ctx(now=NOW + timedelta(minutes=4, seconds=30))
        step = transition(step.state, "y", step.draft, later)
        assert step.state is WizardState.DATETIME_ENTRY
        assert "no longer in the future" in step.messages[0].text

    def test_terminal_state_rejects_replies(self):
        with pytest.raises(ValueError):
            transition(WizardState.COMMITTED, "y", Draft(), _ctx())


class TestCreationWizard:
    """Tests for the wizard driver."""

    @pytest.mark.asyncio
    async def test_commit_creates_event_and_role(self, scheduler, platform):
        platform.replies = ["Raid Night", "tomorrow 09:00", "y", "n", "y"]
        wizard = CreationWizard(
            scheduler, platform, guild_id=GUILD, channel_id=CHANNEL, owner_id=OWNER
        )

        result = await wizard.run()

        assert result.outcome is WizardOutcome.COMMITTED
        event = scheduler.get_by_name(GUILD, "raid night")
        assert event is not None
        assert event.due == datetime(2024, 1, 2, 9, 0, tzinfo=UTC)
        assert event.owner_id == OWNER
        assert platform.roles[GUILD][event.role_id] == "Event - Raid Night"
        assert event.role_id in await platform.member_groups(GUILD, OWNER)
        assert "Your event has been created." in platform.texts(CHANNEL)
        assert platform.texts(DM)

    @pytest.mark.asyncio
    async def test_timeout_creates_nothing(self, scheduler, platform):
        platform.replies = ["Raid Night"]
        wizard = CreationWizard(
            scheduler,
            platform,
            guild_id=GUILD,
            channel_id=CHANNEL,
            owner_id=OWNER,
            reply_timeout=60,
        )

        result = await wizard.run()

        assert result.outcome is WizardOutcome.TIMED_OUT
        assert scheduler.guild_events(GUILD) == []
        assert platform.roles == {}
        assert "waited 60 seconds" in platform.texts(DM)[-1]

    @pytest.mark.asyncio
    async def test_cancel_creates_nothing(self, scheduler, platform):
        platform.replies = ["Raid Night", "cancel"]
        wizard = CreationWizard(
            scheduler, platform, guild_id=GUILD, channel_id=CHANNEL, owner_id=OWNER
        )

        result = await wizard.run()

        assert result.outcome is WizardOutcome.CANCELLED
        assert scheduler.guild_events(GUILD) == []
        assert platform.texts(CHANNEL) == []

    @pytest.mark.asyncio
    async def test_uses_user_timezone(self, scheduler, platform):
        await scheduler.set_user_timezone(OWNER, "America/New_York")
        platform.replies = ["Raid Night", "tomorrow 09:00", "y", "n", "y"]
        wizard = CreationWizard(
            scheduler, platform, guild_id=GUILD, channel_id=CHANNEL, owner_id=OWNER
        )

        await wizard.run()

        event = scheduler.get_by_name(GUILD, "Raid Night")
        assert event.due == datetime(2024, 1, 2, 14, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_name_taken_during_conversation(self, scheduler, platform):
        platform.replies = ["Raid Night", "tomorrow 09:00", "y", "n", "y"]
        original_wait = platform.wait_for_reply

        async def wait_for_reply(channel_id, user_id, *, timeout):
            if len(platform.replies) == 1:
                await scheduler.add(make_event("raid night", role_id="role-other"))
            return await original_wait(channel_id, user_id, timeout=timeout)

        platform.wait_for_reply = wait_for_reply
        wizard = CreationWizard(
            scheduler, platform, guild_id=GUILD, channel_id=CHANNEL, owner_id=OWNER
        )

        result = await wizard.run()

        assert result.outcome is WizardOutcome.CANCELLED
        assert len(scheduler.guild_events(GUILD)) == 1
        assert platform.roles == {}
        assert "was created while we were talking" in platform.texts(DM)[-1]

    @pytest.mark.asyncio
    async def test_role_deleted_when_owner_add_fails(self, scheduler, platform):
        platform.replies = ["Raid Night", "tomorrow 09:00", "y", "n", "y"]

        async def failing_add(*args, **kwargs):
            raise ExternalServiceError("missing permissions")

        platform.add_to_group = failing_add
        wizard = CreationWizard(
            scheduler, platform, guild_id=GUILD, channel_id=CHANNEL, owner_id=OWNER
        )

        result = await wizard.run()

        assert result.outcome is WizardOutcome.FAILED
        assert scheduler.guild_events(GUILD) == []
        assert platform.roles[GUILD] == {}
        assert len(platform.deleted_roles) == 1
