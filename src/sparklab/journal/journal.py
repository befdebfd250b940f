"""Append-only provenance journal for sparklab runs.

Every CLI command that loads a config writes JSON lines to a session file
named after the config ``name``. Lines are only ever appended, so a crash
mid-command leaves every earlier event intact.

A session stays open across commands (generate, batch, stream, ...) until
``close_session`` rotates the file to an archive name.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from sparklab import __version__
from sparklab._constants import DEFAULT_OUTPUT_DIR

from .events import CommandName, EventType, JournalEvent

logger = logging.getLogger(__name__)

DEFAULT_JOURNAL_DIR = str(Path(DEFAULT_OUTPUT_DIR) / "journal")
SESSION_GLOB = "session-*.jsonl"
STAMP_FORMAT = "%Y%m%d-%H%M%S"


def config_digest(config_path: Path | None) -> str:
    """First 16 hex chars of the config file's SHA256; ``none``/``unknown`` if absent."""
    if config_path is None:
        return "none"
    try:
        return hashlib.sha256(config_path.read_bytes()).hexdigest()[:16]
    except OSError:
        return "unknown"


class SessionFile:
    """One ``session-<name>[-<stamp>].jsonl`` file on disk."""

    def __init__(self, path: Path):
        self.path = path

    @classmethod
    def for_config(cls, journal_dir: Path, config_name: str) -> SessionFile:
        slug = re.sub(r"[^a-zA-Z0-9_-]", "_", config_name) or "unnamed"
        return cls(journal_dir / f"session-{slug}.jsonl")

    def events(self) -> list[dict[str, Any]]:
        with open(self.path) as f:
            return [json.loads(line) for line in f if line.strip()]

    def safe_events(self) -> list[dict[str, Any]]:
        """Like :meth:`events`, but [] for a missing or unreadable file."""
        try:
            return self.events()
        except (json.JSONDecodeError, OSError):
            return []

    def append(self, event: JournalEvent) -> None:
        with open(self.path, "a") as f:
            f.write(json.dumps(event.to_dict(), default=str) + "\n")

    def open_session_id(self) -> tuple[str, int] | None:
        """``(session_id, events)`` when the file holds a session not yet ended."""
        events = self.safe_events()
        if not events or events[-1].get("event_type") == EventType.SESSION_END.value:
            return None
        session_id = events[0].get("session_id")
        return (session_id, len(events)) if session_id else None

    def archive(self) -> Path | None:
        """Rename to ``<stem>-<stamp>.jsonl`` so the next session starts a new file."""
        if not self.path.exists():
            return None
        target = self.path.with_name(f"{self.path.stem}-{datetime.now():{STAMP_FORMAT}}.jsonl")
        try:
            self.path.rename(target)
        except OSError as e:
            logger.warning("Failed to archive session file %s: %s", self.path, e)
            return None
        return target

    def summary(self) -> dict[str, Any] | None:
        """Listing row for ``sparklab journal``; None for an empty or unreadable file."""
        events = self.safe_events()
        if not events:
            return None
        first, last = events[0], events[-1]
        closed = last.get("event_type") == EventType.SESSION_END.value
        return {
            "session_id": first.get("session_id", ""),
            "config_name": first.get("details", {}).get("config_name", ""),
            "started": first.get("timestamp", ""),
            "ended": last.get("timestamp", "") if closed else None,
            "closed": closed,
            "event_count": len(events),
            "commands": [
                e.get("command", "")
                for e in events
                if e.get("event_type") == EventType.COMMAND_START.value
            ],
            "path": str(self.path),
        }


class Journal:
    """Session-scoped JSONL event log.

    Usage::

        journal = Journal("./sparklab-output/journal")
        journal.open_session(config_path=Path("sparklab.yaml"), config_name="demo")
        journal.begin_command(CommandName.BATCH, {"input": "landing/events"})
        journal.record(EventType.BATCH_COMPLETE, "Batch finished", details={...})
        journal.end_command(success=True)
    """

    def __init__(self, journal_dir: Path | str = DEFAULT_JOURNAL_DIR) -> None:
        self.journal_dir = Path(journal_dir)
        self.session_id: str | None = None
        self._file: SessionFile | None = None
        self._command: CommandName | None = None
        self._command_started: datetime | None = None
        self._events = 0
        self._commands = 0

    @property
    def is_open(self) -> bool:
        return self.session_id is not None and self._file is not None

    @property
    def session_file(self) -> Path | None:
        return self._file.path if self._file else None

    def _session_files(self) -> list[SessionFile]:
        return [SessionFile(p) for p in self.journal_dir.glob(SESSION_GLOB)]

    # Sessions

    def open_session(self, config_path: Path | None = None, config_name: str = "") -> str:
        """Resume the open session for *config_name*, or start a new one.

        Returns:
            The session_id
        """
        self.journal_dir.mkdir(parents=True, exist_ok=True)
        self._file = SessionFile.for_config(self.journal_dir, config_name)

        resumed = self._file.open_session_id()
        if resumed:
            self.session_id, self._events = resumed
            logger.debug("Resumed session %s for '%s'", self.session_id, config_name)
            return self.session_id

        self.session_id = f"{datetime.now():{STAMP_FORMAT}}-{uuid.uuid4().hex[:6]}"
        self._events = 0
        self._commands = 0
        digest = config_digest(config_path)
        self.record(
            EventType.SESSION_START,
            message=f"Session started for '{config_name}'",
            details={
                "config_file": str(config_path) if config_path else None,
                "config_name": config_name,
                "config_hash": digest,
                "sparklab_version": __version__,
            },
            config_hash=digest,
        )
        return self.session_id

    def close_session(self) -> Path | None:
        """Write ``session.end`` and archive the file.

        Returns:
            Path of the archived file, or None if nothing was open.
        """
        if not self.is_open:
            return None
        self.record(
            EventType.SESSION_END,
            message="Session ended",
            details={"events_recorded": self._events, "commands_run": self._commands},
        )
        assert self._file is not None
        archived = self._file.archive()
        self.session_id = None
        self._file = None
        return archived

    # Commands

    def begin_command(self, command: CommandName, args: dict[str, Any] | None = None) -> None:
        self._command = command
        self._command_started = datetime.now()
        self.record(
            EventType.COMMAND_START,
            message=f"Command '{command.value}' started",
            command=command.value,
            details={"args": args or {}},
        )

    def end_command(self, success: bool, message: str = "") -> None:
        name = self._command.value if self._command else "unknown"
        started = self._command_started
        self.record(
            EventType.COMMAND_END,
            message=message or f"Command '{name}' {'succeeded' if success else 'failed'}",
            command=name,
            success=success,
            duration_s=(datetime.now() - started).total_seconds() if started else None,
            details={"exit_code": 0 if success else 1},
        )
        self._command = None
        self._command_started = None
        self._commands += 1

    def record(
        self,
        event_type: EventType,
        message: str,
        command: str | None = None,
        success: bool | None = None,
        details: dict[str, Any] | None = None,
        config_hash: str | None = None,
        duration_s: float | None = None,
    ) -> JournalEvent:
        """Append one event line; with no open session the event is returned unwritten."""
        event = JournalEvent(
            event_type=event_type,
            session_id=self.session_id or "none",
            message=message,
            command=command or (self._command.value if self._command else None),
            success=success,
            details=details or {},
            config_hash=config_hash,
            duration_s=duration_s,
        )
        if not self.is_open:
            logger.debug("Journal not open, skipping event %s", event_type.value)
            return event

        assert self._file is not None
        self._file.append(event)
        self._events += 1
        return event

    # Reading back

    def list_sessions(self) -> list[dict[str, Any]]:
        """Summaries of every session file, most recent first."""
        summaries = [s for s in (f.summary() for f in self._session_files()) if s]
        return sorted(summaries, key=lambda s: s.get("started", ""), reverse=True)

    def load_session_events(self, session_id: str) -> list[dict[str, Any]]:
        """All events of *session_id* in write order, or [] if unknown."""
        for session in self._session_files():
            events = session.safe_events()
            if events and events[0].get("session_id") == session_id:
                return events
        return []

    def purge(self) -> int:
        """Delete every session file, open or archived.

        Returns:
            Number of files deleted
        """
        files = self._session_files()
        for session in files:
            session.path.unlink()
        if self._file is not None and not self._file.path.exists():
            self.session_id = None
            self._file = None
        return len(files)
