"""Journal module for sparklab provenance tracking."""

from .events import CommandName, EventType, JournalEvent
from .journal import DEFAULT_JOURNAL_DIR, Journal

__all__ = [
    "CommandName",
    "EventType",
    "Journal",
    "JournalEvent",
    "DEFAULT_JOURNAL_DIR",
]
