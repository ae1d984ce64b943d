"""Event subsystem - scheduled community events.

Public API:
- EventStateStore: Whole-document JSON persistence with serialized saves
- EventScheduler: Tick loop, CRUD, participants, digest and role cleanup

Types:
- Event: A scheduled event
- PendingCleanup: A fired event's role awaiting deletion
- EventState: The persisted document
"""

from muster.events.scheduler import (
    CLEANUP_RETENTION,
    DIGEST_DISPLAY_CAP,
    STALENESS_THRESHOLD,
    TICK_INTERVAL,
    EventScheduler,
)
from muster.events.store import EventStateStore
from muster.events.types import Event, EventState, PendingCleanup

__all__ = [
    "CLEANUP_RETENTION",
    "DIGEST_DISPLAY_CAP",
    "STALENESS_THRESHOLD",
    "TICK_INTERVAL",
    "Event",
    "EventScheduler",
    "EventState",
    "EventStateStore",
    "PendingCleanup",
]
