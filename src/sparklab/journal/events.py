"""Journal event vocabulary: what a sparklab session can record."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Dotted ``<stage>.<what>`` names written to the ``event_type`` key."""

    SESSION_START = "session.start"
    SESSION_END = "session.end"
    COMMAND_START = "command.start"
    COMMAND_END = "command.end"
    CONFIG_LOADED = "config.loaded"

    GENERATE_START = "generate.start"
    GENERATE_COMPLETE = "generate.complete"

    # Spark jobs
    BATCH_START = "batch.start"
    BATCH_COMPLETE = "batch.complete"
    STREAMING_START = "streaming.start"
    STREAMING_STOP = "streaming.stop"
    COMPARE_COMPLETE = "compare.complete"
    TRAIN_COMPLETE = "train.complete"
    GRAPH_COMPLETE = "graph.complete"
    SUBMIT = "submit.invoked"

    METRICS_SAVED = "metrics.saved"


class CommandName(str, Enum):
    VALIDATE = "validate"
    GENERATE = "generate"
    BATCH = "batch"
    STREAM = "stream"
    COMPARE = "compare"
    TRAIN = "train"
    GRAPH = "graph"
    SUBMIT = "submit"


@dataclass
class JournalEvent:
    """One line of a session file.

    ``command`` is filled from the running command when the caller does
    not pass one; ``duration_s`` is only set on ``command.end``.
    """

    event_type: EventType
    session_id: str
    message: str
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    command: str | None = None
    success: bool | None = None
    details: dict[str, Any] = field(default_factory=dict)
    config_hash: str | None = None
    duration_s: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JournalEvent:
        """Rebuild an event from a parsed line, ignoring keys this version does not know."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["event_type"] = EventType(kwargs["event_type"])
        return cls(**kwargs)
