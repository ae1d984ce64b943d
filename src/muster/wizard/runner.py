"""Drives the creation wizard over a private channel."""

import logging
from dataclasses import dataclass
from enum import Enum

from muster.errors import DuplicateEventError, ExternalServiceError, ReplyTimeout
from muster.events.formatting import event_card, role_name
from muster.events.scheduler import EventScheduler
from muster.events.types import Event
from muster.providers.base import ChatPlatform
from muster.wizard.states import (
    Draft,
    Prompt,
    Step,
    WizardContext,
    WizardState,
    preview_event,
    start,
    transition,
)

logger = logging.getLogger(__name__)

DEFAULT_REPLY_TIMEOUT = 60.0


class WizardOutcome(Enum):
    COMMITTED = "committed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass
class WizardResult:
    outcome: WizardOutcome
    event: Event | None = None


async def discard_event_role(
    platform: ChatPlatform, guild_id: str, role_id: str, *, reason: str
) -> None:
    """Delete a role that will not back an event; failures are only logged."""
    try:
        await platform.delete_group(guild_id, role_id, reason=reason)
    except ExternalServiceError as e:
        logger.error(
            "event_role_delete_failed",
            extra={"guild.id": guild_id, "role.id": role_id, "error.message": str(e)},
        )


async def create_event_role(
    platform: ChatPlatform, guild_id: str, owner_id: str, name: str
) -> str:
    """Create the event's role and give it to the owner.

    The role is deleted again if the owner cannot be added.

    Raises:
        ExternalServiceError: If either platform call fails.
    """
    role_id = await platform.create_group(
        guild_id,
        role_name(name),
        reason=f"Event role created on behalf of <@{owner_id}>",
    )
    try:
        await platform.add_to_group(
            guild_id, owner_id, role_id, reason="Created the event for this role"
        )
    except ExternalServiceError:
        await discard_event_role(
            platform, guild_id, role_id, reason="Could not add the event creator"
        )
        raise
    return role_id


class CreationWizard:
    """Collects one event from one user, one reply at a time.

    Only ``EventScheduler.get_by_name`` and ``EventScheduler.add`` touch
    scheduler state; nothing is committed unless the user confirms.
    """

    def __init__(
        self,
        scheduler: EventScheduler,
        platform: ChatPlatform,
        *,
        guild_id: str,
        channel_id: str,
        owner_id: str,
        reply_timeout: float = DEFAULT_REPLY_TIMEOUT,
    ):
        self._scheduler = scheduler
        self._platform = platform
        self._guild_id = guild_id
        self._channel_id = channel_id
        self._owner_id = owner_id
        self._reply_timeout = reply_timeout
        self._timezone = scheduler.timezones.effective_timezone(owner_id, guild_id)
        self._dm_channel_id: str | None = None

    def _context(self) -> WizardContext:
        return WizardContext(
            now=self._scheduler.now(),
            timezone=self._timezone,
            guild_id=self._guild_id,
            channel_id=self._channel_id,
            owner_id=self._owner_id,
            prefix=self._scheduler.prefix,
            name_taken=lambda name: (
                self._scheduler.get_by_name(self._guild_id, name) is not None
            ),
        )

    async def _say(self, messages: tuple[Prompt, ...]) -> None:
        assert self._dm_channel_id is not None
        for message in messages:
            await self._platform.send(self._dm_channel_id, message.text, card=message.card)

    async def run(self) -> WizardResult:
        self._dm_channel_id = await self._platform.open_private_channel(self._owner_id)
        logger.info(
            "wizard_started",
            extra={"guild.id": self._guild_id, "user.id": self._owner_id},
        )

        step: Step = start(self._context())
        await self._say(step.messages)

        while not step.state.is_terminal:
            try:
                reply = await self._platform.wait_for_reply(
                    self._dm_channel_id, self._owner_id, timeout=self._reply_timeout
                )
            except ReplyTimeout:
                logger.info(
                    "wizard_timed_out",
                    extra={"user.id": self._owner_id, "wizard.state": step.state.value},
                )
                await self._say(
                    (
                        Prompt(
                            f"Sorry, I waited {int(self._reply_timeout)} seconds "
                            "with no response. You will need to start over."
                        ),
                    )
                )
                return WizardResult(WizardOutcome.TIMED_OUT)

            step = transition(step.state, reply.text, step.draft, self._context())
            logger.debug(
                "wizard_transition",
                extra={"user.id": self._owner_id, "wizard.state": step.state.value},
            )
            await self._say(step.messages)

        if step.state is WizardState.CANCELLED:
            logger.info("wizard_cancelled", extra={"user.id": self._owner_id})
            return WizardResult(WizardOutcome.CANCELLED)

        return await self._commit(step.draft)

    async def _commit(self, draft: Draft) -> WizardResult:
        assert draft.name is not None
        if self._scheduler.get_by_name(self._guild_id, draft.name) is not None:
            await self._say(
                (
                    Prompt(
                        f"An event called '{draft.name}' was created while we were "
                        "talking. Please start over with a different name."
                    ),
                )
            )
            return WizardResult(WizardOutcome.CANCELLED)

        try:
            role_id = await create_event_role(
                self._platform, self._guild_id, self._owner_id, draft.name
            )
        except ExternalServiceError as e:
            logger.error(
                "event_role_create_failed",
                extra={"guild.id": self._guild_id, "error.message": str(e)},
            )
            await self._say(
                (
                    Prompt(
                        "There was an error creating the role for this event, "
                        "contact the bot owner."
                    ),
                )
            )
            return WizardResult(WizardOutcome.FAILED)

        event = preview_event(draft, self._context())
        event.role_id = role_id
        try:
            await self._scheduler.add(event)
        except DuplicateEventError as e:
            await discard_event_role(
                self._platform,
                self._guild_id,
                role_id,
                reason="Event creation lost a name race",
            )
            await self._say((Prompt(str(e)),))
            return WizardResult(WizardOutcome.CANCELLED)

        await self._platform.send(
            self._channel_id,
            "Your event has been created.",
            card=event_card(
                event,
                title=f"New event: {event.name}",
                prefix=self._scheduler.prefix,
                participating=True,
            ),
        )
        logger.info(
            "wizard_committed",
            extra={"guild.id": self._guild_id, "event.name": event.name},
        )
        return WizardResult(WizardOutcome.COMMITTED, event)
