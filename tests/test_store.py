"""Tests for the event state document and its store."""

import asyncio
import json
from datetime import UTC, datetime
from unittest.mock import patch

import pytest

from muster.errors import PersistenceError
from muster.events import EventState, EventStateStore, PendingCleanup
from muster.events.types import Event
from tests.conftest import GUILD, NOW, make_event


class TestEventSerialization:
    """Tests for Event and EventState dict round-trips."""

    def test_event_keys(self):
        event = make_event(description="Bring snacks")
        data = event.to_dict()
        assert data == {
            "name": "Raid Night",
            "due": "2024-01-01T13:00:00Z",
            "guild": GUILD,
            "channel": "channel-1",
            "owner": "user-owner",
            "role": "role-x",
            "description": "Bring snacks",
        }

    def test_missing_description_is_omitted(self):
        assert "description" not in make_event().to_dict()

    def test_unknown_keys_are_preserved(self):
        data = make_event().to_dict()
        data["color"] = "blue"
        assert Event.from_dict(data).to_dict()["color"] == "blue"

    def test_naive_due_is_rejected(self):
        with pytest.raises(ValueError):
            make_event(due=datetime(2024, 1, 1, 13, 0))

    def test_state_document_layout(self):
        state = EventState(
            guild_timezones={GUILD: "Europe/Berlin"},
            events={GUILD: [make_event()]},
            user_timezones={"u": "Asia/Tokyo"},
            pending_cleanups=[PendingCleanup(GUILD, "role-old", NOW)],
            digest_messages={GUILD: "msg-1"},
        )
        data = state.to_dict()
        assert set(data) == {
            "guildDefaultTimeZones",
            "events",
            "userTimeZones",
            "finishedRoles",
            "eventInfoMessage",
        }
        assert data["finishedRoles"] == [
            {"guild": GUILD, "role": "role-old", "startedAt": "2024-01-01T12:00:00Z"}
        ]

    def test_from_dict_sorts_and_skips_malformed(self):
        late = make_event("Late", datetime(2024, 2, 1, tzinfo=UTC)).to_dict()
        early = make_event("Early", datetime(2024, 1, 5, tzinfo=UTC)).to_dict()
        state = EventState.from_dict(
            {"events": {GUILD: [late, {"name": "broken"}, early]}}
        )
        assert [e.name for e in state.events[GUILD]] == ["Early", "Late"]

    def test_from_empty_document(self):
        state = EventState.from_dict({})
        assert state.events == {}
        assert state.pending_cleanups == []


class TestEventStateStore:
    """Tests for EventStateStore load/save."""

    @pytest.mark.asyncio
    async def test_missing_file_creates_default(self, store, state_path):
        state = await store.load()
        assert state.events == {}
        assert state_path.exists()
        assert json.loads(state_path.read_text())["events"] == {}

    @pytest.mark.asyncio
    async def test_save_then_load(self, store):
        state = EventState(events={GUILD: [make_event()]})
        assert await store.save(state)

        loaded = await EventStateStore(store.path).load()
        assert loaded.events[GUILD][0].name == "Raid Night"
        assert loaded.events[GUILD][0].due == NOW.replace(hour=13)

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, store, state_path):
        state_path.write_text("{not json")
        with pytest.raises(PersistenceError):
            await store.load()

    @pytest.mark.asyncio
    async def test_non_object_root_raises(self, store, state_path):
        state_path.write_text("[]")
        with pytest.raises(PersistenceError):
            await store.load()

    @pytest.mark.asyncio
    async def test_save_failure_returns_false(self, store):
        with patch.object(store, "_write", side_effect=OSError("disk full")):
            assert await store.save(EventState()) is False
        assert store.save_count == 0

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, store, state_path):
        await store.save(EventState())
        await store.save(EventState())
        assert [p.name for p in state_path.parent.iterdir()] == [state_path.name]

    @pytest.mark.asyncio
    async def test_concurrent_saves_are_serialized(self, store, state_path):
        active = 0
        overlaps = 0
        written: list[list[str]] = []
        original_write = store._write

        async def tracking_write(snapshot):
            nonlocal active, overlaps
            active += 1
            if active > 1:
                overlaps += 1
            await asyncio.sleep(0.01)
            written.append(list(snapshot["events"]))
            await original_write(snapshot)
            active -= 1

        states = [EventState(events={f"guild-{i}": []}) for i in range(5)]
        with patch.object(store, "_write", side_effect=tracking_write):
            results = await asyncio.gather(*(store.save(s) for s in states))

        assert all(results)
        assert overlaps == 0
        assert written == [[f"guild-{i}"] for i in range(5)]
        assert list(json.loads(state_path.read_text())["events"]) == ["guild-4"]
