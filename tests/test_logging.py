"""Tests for logging configuration and utilities."""

import json
import logging
import os
import time

from muster.logging import (
    DEFAULT_REDACT_PATTERNS,
    ComponentFormatter,
    JSONLHandler,
    SecretRedactor,
    prune_old_logs,
)

DISCORD_TOKEN = "MTA1234567890123456789012.GaBcDe.abcdefghijklmnopqrstuvwxyz12345"


class TestSecretRedactor:
    """Tests for SecretRedactor class."""

    def test_redacts_discord_bot_token(self):
        redactor = SecretRedactor()
        result = redactor.redact(f"Logging in with {DISCORD_TOKEN}")
        assert "MTA1" in result
        assert "2345" in result
        assert "abcdefghijklmnopqrstuvwxyz" not in result

    def test_redacts_env_style_assignments(self):
        redactor = SecretRedactor()
        result = redactor.redact("DISCORD_BOT_TOKEN=verysecretvalue123456")
        assert "DISCORD_BOT_TOKEN=" in result
        assert "verysecretvalue123456" not in result
        assert "very" in result

    def test_redacts_authorization_header(self):
        redactor = SecretRedactor()
        result = redactor.redact("Authorization: Bot abcdefghijklmnopqrstuvwxyz0123")
        assert "abcdefghijklmnopqrstuvwxyz" not in result

    def test_leaves_plain_text_alone(self):
        redactor = SecretRedactor()
        text = "event_added guild=1234 name=Raid Night"
        assert redactor.redact(text) == text

    def test_disabled(self):
        redactor = SecretRedactor(enabled=False)
        assert redactor.redact(DISCORD_TOKEN) == DISCORD_TOKEN

    def test_default_patterns_compile(self):
        assert SecretRedactor().patterns
        assert len(SecretRedactor().patterns) == len(DEFAULT_REDACT_PATTERNS)


class TestJSONLHandler:
    """Tests for the JSONL file handler."""

    def test_writes_structured_entry(self, tmp_path):
        handler = JSONLHandler(tmp_path)
        logger = logging.getLogger("muster.events.scheduler")
        record = logger.makeRecord(
            logger.name,
            logging.INFO,
            __file__,
            1,
            "event_added",
            None,
            None,
            extra={"guild.id": "g1", "event.name": "Raid Night"},
        )
        handler.emit(record)
        handler.close()

        files = list(tmp_path.glob("*.jsonl"))
        assert len(files) == 1
        entry = json.loads(files[0].read_text().strip())
        assert entry["message"] == "event_added"
        assert entry["component"] == "events"
        assert entry["extra"] == {"guild.id": "g1", "event.name": "Raid Night"}

    def test_redacts_extra(self, tmp_path):
        handler = JSONLHandler(tmp_path)
        record = logging.LogRecord(
            "muster.cli", logging.ERROR, __file__, 1, "login_failed", None, None
        )
        record.__dict__["discord.token"] = DISCORD_TOKEN
        handler.emit(record)
        handler.close()

        content = next(tmp_path.glob("*.jsonl")).read_text()
        assert "abcdefghijklmnopqrstuvwxyz" not in content


class TestComponentFormatter:
    """Tests for ComponentFormatter."""

    def test_component_from_logger_name(self):
        formatter = ComponentFormatter("%(component)s | %(message)s")
        record = logging.LogRecord(
            "muster.wizard.runner", logging.INFO, __file__, 1, "wizard_started", None, None
        )
        assert formatter.format(record) == "wizard | wizard_started"


class TestPruneOldLogs:
    """Tests for prune_old_logs()."""

    def test_removes_only_old_jsonl(self, tmp_path):
        old = tmp_path / "2020-01-01.jsonl"
        new = tmp_path / "2099-01-01.jsonl"
        other = tmp_path / "notes.txt"
        for path in (old, new, other):
            path.write_text("{}\n")
        ancient = time.time() - 30 * 24 * 60 * 60
        os.utime(old, (ancient, ancient))
        os.utime(other, (ancient, ancient))

        assert prune_old_logs(tmp_path, retention_days=7) == 1
        assert not old.exists()
        assert new.exists()
        assert other.exists()

    def test_missing_directory(self, tmp_path):
        assert prune_old_logs(tmp_path / "missing") == 0
