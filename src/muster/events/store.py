"""Durable state store backed by a single JSON document.

Every save rewrites the whole document atomically (write to temp, then
rename). Saves are serialized through an asyncio.Lock: overlapping writers
queue in call order instead of clobbering each other's output.
"""

from __future__ import annotations

import asyncio
import json
import logging
import tempfile
from pathlib import Path
from typing import Any

import aiofiles

from muster.errors import PersistenceError
from muster.events.types import EventState

logger = logging.getLogger(__name__)


class EventStateStore:
    """Loads and saves the event state document."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = asyncio.Lock()
        self.save_count = 0

    def _ensure_parent(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    async def load(self) -> EventState:
        """Load state from disk, creating a default document if missing.

        Raises:
            PersistenceError: If the document exists but cannot be parsed.
        """
        if not self.path.exists():
            state = EventState()
            logger.info("state_file_created", extra={"file.path": str(self.path)})
            if not await self.save(state):
                raise PersistenceError(f"Could not create {self.path}")
            return state

        try:
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                raw = await f.read()
            data = json.loads(raw) if raw.strip() else {}
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Could not read {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise PersistenceError(f"Unexpected document root in {self.path}")

        state = EventState.from_dict(data)
        logger.info(
            "state_loaded",
            extra={
                "file.path": str(self.path),
                "events.count": sum(len(v) for v in state.events.values()),
                "cleanups.count": len(state.pending_cleanups),
            },
        )
        return state

    async def save(self, state: EventState) -> bool:
        """Persist a full snapshot of ``state``.

        The snapshot is taken before waiting for the write lock, so queued
        saves land in the order they were requested.

        Returns:
            True on success. Failures are logged and reported as False; the
            caller's in-memory state remains authoritative.
        """
        snapshot = state.to_dict()
        async with self._lock:
            try:
                await self._write(snapshot)
            except Exception as e:
                logger.error(
                    "state_save_failed",
                    extra={"file.path": str(self.path), "error.message": str(e)},
                )
                return False
        self.save_count += 1
        return True

    async def _write(self, snapshot: dict[str, Any]) -> None:
        self._ensure_parent()
        payload = json.dumps(snapshot, indent=2, ensure_ascii=False)

        temp_fd, temp_path = tempfile.mkstemp(
            dir=self.path.parent,
            prefix=f".{self.path.stem}_",
            suffix=".tmp",
        )
        try:
            async with aiofiles.open(temp_fd, "w", encoding="utf-8") as f:
                await f.write(payload)
                await f.flush()

            Path(temp_path).replace(self.path)
        except Exception:
            try:
                Path(temp_path).unlink()
            except OSError:
                pass
            raise
