#!/usr/bin/env python3
"""
numerai_tui/state.py - Shared Dashboard State

PURPOSE:
    Composite root owned by the Dashboard: progress records, event log,
    download completion set, run/pause flags and UI state. Every writer
    (callback adapter, auto-trigger policy, input loop, operation runner)
    goes through the methods here, all guarded by one re-entrant lock.

    Readers take a DashboardSnapshot under the same lock, so a render
    frame never sees a half-applied update.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional, Set

from numerai_tui.errors import StateLockError
from numerai_tui.events import EventLog, EventLogEntry
from numerai_tui.progress import OperationKind, ProgressRecord, ProgressState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DashboardSnapshot:
    """Consistent read-only copy of the state for one render frame."""

    progress: Dict[OperationKind, ProgressRecord]
    events: List[EventLogEntry]
    completed_downloads: FrozenSet[str]
    running_operations: FrozenSet[OperationKind]
    running: bool
    paused: bool
    show_help: bool
    command_buffer: Optional[str]
    refresh_interval: float
    degraded: FrozenSet[str] = field(default_factory=frozenset)
    taken_at: float = 0.0

    def any_active(self) -> bool:
        return any(record.active for record in self.progress.values())


class DashboardState:
    """
    Shared mutable dashboard state.

    Single lock discipline: callers never touch fields directly, they
    call the update methods below (or hold locked() for compound
    decisions, as the auto-trigger policy does).
    """

    def __init__(
        self,
        event_log_capacity: int = 30,
        refresh_interval: float = 1.0,
        lock_timeout: float = 1.0,
        lock_retries: int = 3,
        clock=time.monotonic,
        on_event: Optional[Callable[[EventLogEntry], None]] = None,
    ):
        self._lock = threading.RLock()
        self._lock_timeout = lock_timeout
        self._lock_retries = lock_retries
        self._clock = clock

        self.progress = ProgressState(clock=clock)
        self.events = EventLog(capacity=event_log_capacity, on_add=on_event)
        self.completed_downloads: Set[str] = set()
        self.running_operations: Set[OperationKind] = set()
        self.training_scheduled = False

        self.running = False
        self.paused = False
        self.show_help = False
        self.command_buffer: Optional[str] = None
        self.refresh_interval = refresh_interval
        self.degraded: Set[str] = set()

    # =========================================================================
    # LOCKING
    # =========================================================================

    @contextmanager
    def locked(self):
        """
        Hold the state lock.

        Each attempt waits lock_timeout seconds; after lock_retries failed
        attempts StateLockError is raised and the caller must treat it as
        fatal.
        """
        for attempt in range(1, self._lock_retries + 1):
            if self._lock.acquire(timeout=self._lock_timeout):
                break
            logger.warning(
                "State lock busy (attempt %d/%d, %.1fs each)",
                attempt, self._lock_retries, self._lock_timeout,
            )
        else:
            raise StateLockError(
                f"Could not acquire dashboard state lock after {self._lock_retries} attempts"
            )
        try:
            yield self
        finally:
            self._lock.release()

    def snapshot(self) -> DashboardSnapshot:
        with self.locked():
            return DashboardSnapshot(
                progress=self.progress.snapshot(),
                events=self.events.recent(self.events.capacity),
                completed_downloads=frozenset(self.completed_downloads),
                running_operations=frozenset(self.running_operations),
                running=self.running,
                paused=self.paused,
                show_help=self.show_help,
                command_buffer=self.command_buffer,
                refresh_interval=self.refresh_interval,
                degraded=frozenset(self.degraded),
                taken_at=self._clock(),
            )

    def now(self) -> float:
        return self._clock()

    # =========================================================================
    # FLAGS
    # =========================================================================

    def set_running(self, running: bool) -> None:
        with self.locked():
            self.running = running

    def set_paused(self, paused: bool) -> bool:
        """Set the pause flag; returns True when it changed."""
        with self.locked():
            changed = self.paused != paused
            self.paused = paused
            return changed

    def toggle_help(self) -> bool:
        with self.locked():
            self.show_help = not self.show_help
            return self.show_help

    def set_command_buffer(self, buffer: Optional[str]) -> None:
        with self.locked():
            self.command_buffer = buffer

    def set_refresh_interval(self, interval: float) -> None:
        with self.locked():
            self.refresh_interval = interval

    def mark_degraded(self, component: str) -> bool:
        """Record a terminal failure; returns True the first time per component."""
        with self.locked():
            if component in self.degraded:
                return False
            self.degraded.add(component)
            return True

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    def claim_operation(self, kind: OperationKind) -> bool:
        """Register a worker for kind; False if one is already running."""
        with self.locked():
            if kind in self.running_operations:
                return False
            self.running_operations.add(kind)
            return True

    def release_operation(self, kind: OperationKind) -> None:
        with self.locked():
            self.running_operations.discard(kind)
            if kind is OperationKind.TRAIN:
                self.training_scheduled = False

    def is_training(self) -> bool:
        """Training active, running, or already scheduled."""
        with self.locked():
            return (
                self.progress[OperationKind.TRAIN].active
                or OperationKind.TRAIN in self.running_operations
                or self.training_scheduled
            )

    # =========================================================================
    # DOWNLOAD COMPLETION SET
    # =========================================================================

    def reset_downloads(self) -> None:
        with self.locked():
            self.completed_downloads.clear()

    def add_completed_download(self, dataset_id: str) -> FrozenSet[str]:
        with self.locked():
            self.completed_downloads.add(dataset_id)
            return frozenset(self.completed_downloads)
