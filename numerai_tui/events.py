#!/usr/bin/env python3
"""
================================================================================
numerai_tui/events.py - Bounded Event Log for the Dashboard Footer
================================================================================

PURPOSE:
    Keeps the most recent dashboard events (downloads finished, training
    triggered, unknown keys, errors) for the sticky footer panel.

HOW IT WORKS:
    1. add() sanitizes the message and appends to a bounded deque
    2. Oldest entries fall off once capacity is exceeded
    3. recent(k) returns the last k entries, oldest first

SECURITY:
    - ANSI escapes and control characters are stripped; a stray escape in
      an error message would otherwise move the cursor mid-frame
    - Numerai API credentials are redacted before storage

TUNABLE PARAMETERS:
    - DEFAULT_CAPACITY: Events kept when no capacity is configured
    - MAX_MESSAGE_LENGTH: Longest message kept

================================================================================
"""

import re
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Deque, List, Optional

# Events kept by default
# TUNABLE: Larger values only matter on very tall terminals
DEFAULT_CAPACITY = 30

# Longest message kept in the log (footer truncates further to fit width)
MAX_MESSAGE_LENGTH = 200


class Severity(Enum):
    """Event severity, drives the footer icon and colour."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


# Footer icon and rich style per severity
# TUNABLE: Customize for your terminal
SEVERITY_STYLES = {
    Severity.INFO: ("ℹ", "white"),
    Severity.WARNING: ("⚠", "yellow"),
    Severity.ERROR: ("✖", "red"),
    Severity.SUCCESS: ("✔", "green"),
}


# =============================================================================
# MESSAGE SANITIZATION
# =============================================================================

# Patterns that indicate Numerai credentials
SECRET_PATTERNS = [
    # Authorization header value: "Token PUBLIC_ID$SECRET_KEY"
    (r"Token\s+[A-Za-z0-9]+\$[A-Za-z0-9]+", "[NUMERAI_TOKEN]"),
    (r"(NUMERAI_PUBLIC_ID|NUMERAI_SECRET_KEY)\s*[=:]\s*\S+", r"\1=[REDACTED]"),
    (r'(?i)(secret[_-]?key|public[_-]?id)\s*[:=]\s*["\']?[A-Za-z0-9]{20,}', "[API_KEY]"),
]

# ANSI escape sequence pattern for stripping
ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")

# Remaining C0 control characters (newlines included - footer rows are single lines)
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]+")


def redact_secrets(text: str) -> str:
    """Redact Numerai credentials from text."""
    for pattern, replacement in SECRET_PATTERNS:
        text = re.sub(pattern, replacement, text)
    return text


def truncate_string(text: str, max_length: int) -> str:
    """Truncate string to max length."""
    if len(text) > max_length:
        return text[: max_length - 3] + "..."
    return text


def sanitize_message(message: Any, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """
    Make a message safe to paint inside a single footer row.

    HOW IT WORKS:
        - Converts to str
        - Strips ANSI escapes, collapses control characters to spaces
        - Redacts credentials
        - Truncates long strings
    """
    if not isinstance(message, str):
        message = str(message)
    message = ANSI_ESCAPE.sub("", message)
    message = CONTROL_CHARS.sub(" ", message).strip()
    message = redact_secrets(message)
    return truncate_string(message, max_length)


# =============================================================================
# EVENT LOG
# =============================================================================


@dataclass(frozen=True)
class EventLogEntry:
    """One footer event."""

    timestamp: float
    severity: Severity
    message: str

    def format_time(self) -> str:
        """Format timestamp as HH:MM:SS."""
        return datetime.fromtimestamp(self.timestamp).strftime("%H:%M:%S")


class EventLog:
    """
    Append-only, capacity-bounded event log.

    Insertion order is chronological order. The log has its own lock so
    it can be written from any thread, including while the dashboard
    state lock is unavailable.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], float] = time.time,
        on_add: Optional[Callable[[EventLogEntry], None]] = None,
    ):
        if capacity < 1:
            raise ValueError(f"Event log capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._entries: Deque[EventLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._clock = clock
        self._on_add = on_add

    def add(self, severity, message: Any) -> EventLogEntry:
        """Append an event, evicting the oldest one when full."""
        entry = EventLogEntry(
            timestamp=self._clock(),
            severity=Severity(severity),
            message=sanitize_message(message),
        )
        with self._lock:
            self._entries.append(entry)
        if self._on_add is not None:
            self._on_add(entry)
        return entry

    def info(self, message: Any) -> EventLogEntry:
        return self.add(Severity.INFO, message)

    def warning(self, message: Any) -> EventLogEntry:
        return self.add(Severity.WARNING, message)

    def error(self, message: Any) -> EventLogEntry:
        return self.add(Severity.ERROR, message)

    def success(self, message: Any) -> EventLogEntry:
        return self.add(Severity.SUCCESS, message)

    def recent(self, k: int) -> List[EventLogEntry]:
        """Return the last min(k, len) entries, oldest first."""
        if k <= 0:
            return []
        with self._lock:
            entries = list(self._entries)
        return entries[-k:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
