"""Event lifecycle scheduler.

Owns the in-memory event state, runs a tick aligned to wall-clock minutes,
fires start notifications, defers role cleanup and keeps one digest message
per guild up to date. All mutations are persisted through EventStateStore.

Per-event lifecycle:
    SCHEDULED -> FIRED -> (role deleted | role missing, logged) -> removed
"""

import asyncio
import bisect
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from muster.errors import DuplicateEventError, ExternalServiceError, NotFoundError
from muster.events.formatting import event_card, render_digest
from muster.events.store import EventStateStore
from muster.events.types import Event, EventState, PendingCleanup
from muster.providers.base import ChatPlatform
from muster.timezones import TimezoneResolver, resolve_timezone

logger = logging.getLogger(__name__)

# Notifications later than this are dropped instead of announcing a stale start
STALENESS_THRESHOLD = timedelta(minutes=5)
# Fired events keep their role this long before it is deleted
CLEANUP_RETENTION = timedelta(days=7)
DIGEST_DISPLAY_CAP = 10
TICK_INTERVAL = 60.0

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(UTC)


class EventScheduler:
    """Tracks scheduled events and drives their lifecycle.

    Example:
        store = EventStateStore(Path("~/.muster/events.json"))
        scheduler = EventScheduler(store, platform, default_timezone="UTC")
        await scheduler.load()
        await scheduler.start()
    """

    def __init__(
        self,
        store: EventStateStore,
        platform: ChatPlatform,
        *,
        default_timezone: str = "UTC",
        digest_channel_id: str | None = None,
        prefix: str = "!",
        staleness_threshold: timedelta = STALENESS_THRESHOLD,
        cleanup_retention: timedelta = CLEANUP_RETENTION,
        digest_display_cap: int = DIGEST_DISPLAY_CAP,
        tick_interval: float = TICK_INTERVAL,
        clock: Clock = _utc_now,
    ):
        self._store = store
        self._platform = platform
        self._state = EventState()
        self._resolver = TimezoneResolver(self._state, default_timezone)
        self._digest_channel_id = digest_channel_id
        self._digest_guild_id: str | None = None
        self._prefix = prefix
        self._staleness_threshold = staleness_threshold
        self._cleanup_retention = cleanup_retention
        self._digest_display_cap = digest_display_cap
        self._tick_interval = tick_interval
        self._clock = clock
        self._running = False
        self._task: asyncio.Task | None = None
        self._tick_count = 0
        self._loaded = False
        self._digest_lock = asyncio.Lock()

    @property
    def state(self) -> EventState:
        return self._state

    @property
    def loaded(self) -> bool:
        """True once state has been read from the store."""
        return self._loaded

    @property
    def timezones(self) -> TimezoneResolver:
        return self._resolver

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def pending_cleanups(self) -> list[PendingCleanup]:
        return list(self._state.pending_cleanups)

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Rehydrate state from the store and validate digest references.

        Raises:
            PersistenceError: If the stored document cannot be read. The
                scheduler then refuses to save, so the file is left intact.
        """
        loaded = await self._store.load()
        # Mutate in place: the resolver holds a reference to this object
        self._state.guild_timezones = loaded.guild_timezones
        self._state.events = loaded.events
        self._state.user_timezones = loaded.user_timezones
        self._state.pending_cleanups = loaded.pending_cleanups
        self._state.digest_messages = loaded.digest_messages
        self._loaded = True

        if not self._digest_channel_id:
            logger.info("digest_channel_not_configured")
            return

        self._digest_guild_id = await self._platform.channel_guild(
            self._digest_channel_id
        )
        if self._digest_guild_id is None:
            logger.warning(
                "digest_channel_not_found",
                extra={"channel.id": self._digest_channel_id},
            )
            self._digest_channel_id = None
            return

        stale: list[str] = []
        for guild_id, message_id in self._state.digest_messages.items():
            try:
                exists = await self._platform.message_exists(
                    self._digest_channel_id, message_id
                )
            except ExternalServiceError as e:
                logger.error(
                    "digest_message_check_failed",
                    extra={"guild.id": guild_id, "error.message": str(e)},
                )
                continue
            if not exists:
                logger.info(
                    "digest_message_missing",
                    extra={"guild.id": guild_id, "message.id": message_id},
                )
                stale.append(guild_id)
        for guild_id in stale:
            del self._state.digest_messages[guild_id]
        if stale:
            await self._save()

    async def start(self) -> None:
        """Start the tick loop (idempotent)."""
        if self._running:
            return
        self._running = True
        logger.info("event_scheduler_started")
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the tick loop (idempotent)."""
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("event_scheduler_stopped")

    def _delay_to_next_tick(self) -> float:
        return self._tick_interval - (time.time() % self._tick_interval)

    async def _run(self) -> None:
        # Tick immediately to catch up on anything missed while offline, then
        # at the top of each interval. Ticks run one at a time on this task.
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(
                    "tick_failed", extra={"error.message": str(e)}, exc_info=True
                )
            await asyncio.sleep(self._delay_to_next_tick())

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> None:
        """Fire due events and prune expired roles."""
        now = now or self._clock()
        self._tick_count += 1
        logger.debug("tick", extra={"tick.count": self._tick_count})

        for guild_id in list(self._state.events):
            await self._tick_guild(guild_id, now)

        await self._prune_roles(now)

    async def _tick_guild(self, guild_id: str, now: datetime) -> None:
        events = self._state.events.get(guild_id, [])
        due = [event for event in events if event.due <= now]
        if due:
            self._state.events[guild_id] = [e for e in events if e.due > now]
            self._state.pending_cleanups.extend(
                PendingCleanup(
                    guild_id=event.guild_id,
                    role_id=event.role_id,
                    started_at=event.due,
                )
                for event in due
            )
            # Persist before any side effects so a crash cannot fire twice
            await self._save()

        for event in due:
            lateness = now - event.due
            if lateness > self._staleness_threshold:
                logger.warning(
                    "stale_event_notification_skipped",
                    extra={
                        "guild.id": guild_id,
                        "event.name": event.name,
                        "event.late_seconds": int(lateness.total_seconds()),
                    },
                )
                continue
            try:
                await self._notify_start(event)
            except ExternalServiceError as e:
                logger.error(
                    "event_notification_failed",
                    extra={
                        "guild.id": guild_id,
                        "event.name": event.name,
                        "error.message": str(e),
                    },
                )

        missing_digest = (
            self._digest_channel_id is not None
            and guild_id == self._digest_guild_id
            and guild_id not in self._state.digest_messages
        )
        if due or missing_digest:
            await self._refresh_digest(guild_id)

    async def _notify_start(self, event: Event) -> None:
        logger.info(
            "event_started",
            extra={
                "guild.id": event.guild_id,
                "event.name": event.name,
                "channel.id": event.channel_id,
            },
        )
        await self._platform.send(
            event.channel_id,
            f"The event **'{event.name}'** is starting now! <@&{event.role_id}>",
            card=event_card(
                event,
                title=event.name,
                prefix=self._prefix,
                description="This event is starting now.",
            ),
        )

    async def _prune_roles(self, now: datetime) -> None:
        expired: list[PendingCleanup] = []
        keep: list[PendingCleanup] = []
        for cleanup in self._state.pending_cleanups:
            if now - cleanup.started_at > self._cleanup_retention:
                expired.append(cleanup)
            else:
                keep.append(cleanup)
        if not expired:
            return

        self._state.pending_cleanups = keep
        await self._save()

        days = self._cleanup_retention.days
        for cleanup in expired:
            try:
                deleted = await self._platform.delete_group(
                    cleanup.guild_id,
                    cleanup.role_id,
                    reason=f"Role removed as event happened {days} days ago",
                )
            except ExternalServiceError as e:
                logger.error(
                    "event_role_delete_failed",
                    extra={
                        "guild.id": cleanup.guild_id,
                        "role.id": cleanup.role_id,
                        "error.message": str(e),
                    },
                )
                continue
            if deleted:
                logger.info(
                    "event_role_pruned",
                    extra={"guild.id": cleanup.guild_id, "role.id": cleanup.role_id},
                )
            else:
                logger.info(
                    "event_role_already_gone",
                    extra={"guild.id": cleanup.guild_id, "role.id": cleanup.role_id},
                )

    # ------------------------------------------------------------------
    # Event CRUD
    # ------------------------------------------------------------------

    def guild_events(self, guild_id: str) -> list[Event]:
        return list(self._state.events.get(guild_id, []))

    def _index_by_name(self, guild_id: str, name: str) -> int | None:
        for index, event in enumerate(self._state.events.get(guild_id, [])):
            if event.matches(name):
                return index
        return None

    def get_by_name(self, guild_id: str, name: str) -> Event | None:
        index = self._index_by_name(guild_id, name)
        if index is None:
            return None
        return self._state.events[guild_id][index]

    async def add(self, event: Event) -> None:
        """Insert an event in due order, persist it and refresh the digest.

        Raises:
            DuplicateEventError: If the guild already has an event with
                this name (case-insensitive).
        """
        if self.get_by_name(event.guild_id, event.name) is not None:
            raise DuplicateEventError(event.name)

        events = self._state.events.setdefault(event.guild_id, [])
        # bisect_right keeps events with equal due times in insertion order
        index = bisect.bisect_right(events, event.due, key=lambda e: e.due)
        events.insert(index, event)
        logger.info(
            "event_added",
            extra={
                "guild.id": event.guild_id,
                "event.name": event.name,
                "event.due": event.due.isoformat(),
            },
        )
        await self._save()
        await self._refresh_digest(event.guild_id)

    async def update_by_name(self, guild_id: str, name: str, event: Event) -> bool:
        """Replace a named event. Returns False if no such event exists."""
        index = self._index_by_name(guild_id, name)
        if index is None:
            return False
        other = self._index_by_name(guild_id, event.name)
        if other is not None and other != index:
            raise DuplicateEventError(event.name)

        events = self._state.events[guild_id]
        events[index] = event
        events.sort(key=lambda e: e.due)
        await self._save()
        await self._refresh_digest(guild_id)
        return True

    async def delete_by_name(self, guild_id: str, name: str) -> bool:
        """Remove a named event. Returns False if no such event exists."""
        index = self._index_by_name(guild_id, name)
        if index is None:
            return False
        removed = self._state.events[guild_id].pop(index)
        logger.info(
            "event_deleted", extra={"guild.id": guild_id, "event.name": removed.name}
        )
        await self._save()
        await self._refresh_digest(guild_id)
        return True

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    async def add_participant(self, guild_id: str, user_id: str, name: str) -> bool:
        """Give a member the event's role. False if already joined or unknown."""
        event = self.get_by_name(guild_id, name)
        if event is None:
            return False
        if event.role_id in await self._platform.member_groups(guild_id, user_id):
            return False
        await self._platform.add_to_group(
            guild_id,
            user_id,
            event.role_id,
            reason="Requested to be added to this event",
        )
        return True

    async def remove_participant(self, guild_id: str, user_id: str, name: str) -> bool:
        """Take the event's role from a member. False if not joined or unknown."""
        event = self.get_by_name(guild_id, name)
        if event is None:
            return False
        if event.role_id not in await self._platform.member_groups(guild_id, user_id):
            return False
        await self._platform.remove_from_group(
            guild_id,
            user_id,
            event.role_id,
            reason="Requested to be removed from this event",
        )
        return True

    # ------------------------------------------------------------------
    # Timezone preferences
    # ------------------------------------------------------------------

    async def set_guild_timezone(self, guild_id: str, timezone: str) -> None:
        self._state.guild_timezones[guild_id] = resolve_timezone(timezone) or timezone
        await self._save()
        await self._refresh_digest(guild_id)

    async def set_user_timezone(self, user_id: str, timezone: str) -> None:
        self._state.user_timezones[user_id] = resolve_timezone(timezone) or timezone
        await self._save()

    # ------------------------------------------------------------------
    # Digest
    # ------------------------------------------------------------------

    async def update_digest(self, guild_id: str) -> bool:
        """Edit the guild's digest message in place, or post one if missing.

        Returns False when this guild has no digest (no channel configured,
        or the channel belongs to another guild).

        Raises:
            ExternalServiceError: If the platform rejects the edit or post.
        """
        if self._digest_channel_id is None:
            return False
        if guild_id != self._digest_guild_id:
            logger.debug("digest_skipped_other_guild", extra={"guild.id": guild_id})
            return False

        # One refresh at a time, or two callers could both post a new message
        async with self._digest_lock:
            await self._write_digest(self._digest_channel_id, guild_id)
        return True

    async def _write_digest(self, channel_id: str, guild_id: str) -> None:
        text = render_digest(
            self.guild_events(guild_id),
            server_name=await self._platform.guild_name(guild_id),
            timezone=self._resolver.guild_timezone(guild_id),
            prefix=self._prefix,
            limit=self._digest_display_cap,
        )

        message_id = self._state.digest_messages.get(guild_id)
        if message_id is not None:
            try:
                await self._platform.edit(channel_id, message_id, text)
                logger.debug("digest_updated", extra={"guild.id": guild_id})
                return
            except NotFoundError:
                logger.info(
                    "digest_message_missing",
                    extra={"guild.id": guild_id, "message.id": message_id},
                )
                del self._state.digest_messages[guild_id]

        new_id = await self._platform.send(channel_id, text)
        self._state.digest_messages[guild_id] = new_id
        logger.info(
            "digest_posted", extra={"guild.id": guild_id, "message.id": new_id}
        )
        await self._save()

    async def _refresh_digest(self, guild_id: str) -> None:
        try:
            await self.update_digest(guild_id)
        except ExternalServiceError as e:
            logger.error(
                "digest_update_failed",
                extra={"guild.id": guild_id, "error.message": str(e)},
            )

    async def _save(self) -> bool:
        # Never overwrite a document that was not read successfully
        if not self._loaded:
            logger.warning("event_state_save_before_load")
            return False
        # Failures are logged by the store; memory stays authoritative
        return await self._store.save(self._state)
