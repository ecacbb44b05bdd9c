"""
In-process event bus for the dialogue session.

The orchestrator publishes status changes, turns and advisories here; the
front-end subscribes to render them. When a log path is given, every event
is also appended to a JSONL file for diagnostics. The file is never read
back, so nothing about the conversation carries over to another session.

Writer atomicity: POSIX O_APPEND guarantees atomic writes under PIPE_BUF (4096 bytes).
Each JSON line + newline stays under that limit.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# POSIX PIPE_BUF: lines must stay under this for atomic appends
_PIPE_BUF = 4096


class EventType(str, Enum):
    """All event types published by the session."""
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    STATUS = "status"
    TURN = "turn"
    ADVISORY = "advisory"
    FEATURE = "feature"
    CLEAR = "clear"
    LLM_SEND = "llm_send"
    LLM_COMPLETE = "llm_complete"
    STT_START = "stt_start"
    STT_COMPLETE = "stt_complete"
    TTS_START = "tts_start"
    TTS_COMPLETE = "tts_complete"


# Core fields that are not part of the payload
_CORE_FIELDS = {"ts", "src", "type", "sid"}


@dataclass
class BusEvent:
    """A single event on the bus."""
    ts: float
    src: str
    type: str
    sid: str
    payload: dict = field(default_factory=dict)

    def __init__(self, ts: float, src: str, type: str, sid: str, **kwargs):
        self.ts = ts
        self.src = src
        self.type = type
        self.sid = sid
        self.payload = kwargs

    def to_json_line(self) -> str:
        """Serialize to a single JSON line with trailing newline.

        Truncates payload if the line would exceed PIPE_BUF.
        """
        data = {"ts": self.ts, "src": self.src, "type": self.type,
                "sid": self.sid, **self.payload}
        line = json.dumps(data, separators=(',', ':'), default=str) + "\n"

        if len(line.encode()) > _PIPE_BUF:
            # Long replies are the usual culprit: shorten string values first
            truncated = dict(data)
            for key, val in list(truncated.items()):
                if key in _CORE_FIELDS:
                    continue
                if isinstance(val, str) and len(val) > 200:
                    truncated[key] = val[:200] + "...[truncated]"
            line = json.dumps(truncated, separators=(',', ':'), default=str) + "\n"

            if len(line.encode()) > _PIPE_BUF:
                minimal = {k: data[k] for k in _CORE_FIELDS}
                minimal["_truncated"] = True
                line = json.dumps(minimal, separators=(',', ':')) + "\n"

        return line


class EventLogWriter:
    """Append-only JSONL writer for session diagnostics."""

    def __init__(self, log_path: Path):
        self._log_path = log_path
        self._file = None

    def open(self):
        """Open the JSONL file for appending (O_APPEND for atomicity)."""
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self._log_path, "a")

    def write(self, evt: BusEvent):
        if self._file is None:
            self.open()
        self._file.write(evt.to_json_line())
        self._file.flush()

    def close(self):
        if self._file:
            self._file.close()
            self._file = None


class EventBus:
    """In-process callbacks plus an optional JSONL log.

    Usage:
        bus = EventBus("orchestrator", session_id)
        bus.on("*", my_callback)                   # Register listener
        bus.emit("status", activity="listening")   # Log + callbacks
        bus.close()
    """

    def __init__(self, src: str, sid: str, log_path: Optional[Path] = None):
        self._src = src
        self._sid = sid
        self._writer: EventLogWriter | None = EventLogWriter(log_path) if log_path else None
        self._callbacks: dict[str, list[Callable]] = {}  # type -> [callback]

    @property
    def sid(self) -> str:
        return self._sid

    def close(self):
        """Close the log writer, if any."""
        if self._writer:
            self._writer.close()
            self._writer = None

    def on(self, event_type: str, callback: Callable):
        """Register an in-process callback.

        Args:
            event_type: Event type to listen for, or "*" for all events.
            callback: Called with BusEvent as argument.
        """
        key = event_type.value if isinstance(event_type, EventType) else event_type
        self._callbacks.setdefault(key, []).append(callback)

    def _fire_callbacks(self, evt: BusEvent):
        """Fire registered callbacks; a failing listener never breaks the session."""
        for cb_type in (evt.type, "*"):
            for cb in self._callbacks.get(cb_type, []):
                try:
                    cb(evt)
                except Exception as e:
                    logger.error("Bus callback error for %s: %s", evt.type, e)

    def emit(self, event_type: str, **payload) -> BusEvent:
        """Write event to the log (if enabled) and fire in-process callbacks."""
        type_name = event_type.value if isinstance(event_type, EventType) else event_type
        evt = BusEvent(ts=time.time(), src=self._src, type=type_name,
                       sid=self._sid, **payload)

        if self._writer:
            try:
                self._writer.write(evt)
            except OSError as e:
                logger.error("Event log write failed, disabling log: %s", e)
                self._writer = None

        self._fire_callbacks(evt)
        return evt
