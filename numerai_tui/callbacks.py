#!/usr/bin/env python3
"""
================================================================================
numerai_tui/callbacks.py - Operation Callback Adapter
================================================================================

PURPOSE:
    The narrow interface background operations (download, upload, train,
    predict) use to report phase transitions into the dashboard:

        start -> progress* -> complete      (or fail on error)

    Every report is validated against the kind's fixed field set and
    applied atomically under the dashboard state lock.

CALLBACK FIELDS:
    download/upload: filename, current_bytes, total_bytes, dataset, percent
    train:           model_name, epoch, total_epochs, loss, validation_score, percent
    predict:         model_name, rows_processed, total_rows, percent

ERROR HANDLING:
    - progress before start: warning event, fields applied, stays inactive
    - second complete: no-op (debug log only)
    - fail(): inactive, error event, no retry
    - expire_stale(): operations silent for stale_after seconds are marked
      inactive with a warning

EXAMPLE:
    with adapter.operation(OperationKind.DOWNLOAD, filename="train.parquet"):
        for chunk in stream:
            adapter.progress(OperationKind.DOWNLOAD, current_bytes=..., total_bytes=...)

================================================================================
"""

import logging
from contextlib import contextmanager
from typing import Any, List, Optional

from numerai_tui.auto_trigger import AutoTriggerPolicy
from numerai_tui.progress import (
    LABEL_FIELDS,
    OperationKind,
    Phase,
    ProgressRecord,
    dataset_id_for,
    validate_fields,
)
from numerai_tui.state import DashboardState

logger = logging.getLogger(__name__)

# Event wording per kind: (start verb, completion verb)
KIND_VERBS = {
    OperationKind.DOWNLOAD: ("Downloading", "Downloaded"),
    OperationKind.UPLOAD: ("Uploading", "Uploaded"),
    OperationKind.TRAIN: ("Training", "Trained"),
    OperationKind.PREDICT: ("Predicting", "Predicted"),
}


# =============================================================================
# FORMATTING HELPERS
# =============================================================================


def format_bytes(num_bytes: float) -> str:
    """Format a byte count as B/KB/MB/GB."""
    value = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if abs(value) < 1024.0 or unit == "GB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024.0
    return f"{value:.1f} GB"


def format_duration(seconds: float) -> str:
    """Format seconds as 1h 2m / 3m 4s / 5s."""
    secs = int(max(0.0, seconds))
    mins, secs = divmod(secs, 60)
    hours, mins = divmod(mins, 60)
    if hours > 0:
        return f"{hours}h {mins}m"
    if mins > 0:
        return f"{mins}m {secs}s"
    return f"{secs}s"


def describe_operation(record: ProgressRecord) -> str:
    """Operation name for events: label, or the kind when unlabelled."""
    return record.label or record.kind.value


def summarize_completion(record: ProgressRecord, now: float) -> str:
    """
    One-line success summary: name plus size/rows/score and duration when known.
    """
    verb = KIND_VERBS[record.kind][1]
    details: List[str] = []

    if record.kind in (OperationKind.DOWNLOAD, OperationKind.UPLOAD):
        if record.total_unit > 0:
            details.append(format_bytes(record.total_unit))
    elif record.kind is OperationKind.TRAIN:
        if record.total_unit > 0:
            details.append(f"{int(record.total_unit)} epochs")
        score = record.extra.get("validation_score")
        if score is not None:
            details.append(f"val {score:.4f}")
    elif record.kind is OperationKind.PREDICT:
        if record.total_unit > 0:
            details.append(f"{int(record.total_unit):,} rows")

    if record.started_at is not None:
        details.append(f"in {format_duration(record.elapsed(now))}")

    message = f"{verb} {describe_operation(record)}"
    if details:
        message += f" ({', '.join(details)})"
    return message


# =============================================================================
# ADAPTER
# =============================================================================


class OperationCallbackAdapter:
    """
    Single entry point for background operation callbacks.

    HOW IT WORKS:
        - report() validates fields, then applies the transition under the
          state lock and appends the matching event
        - download completions are forwarded to the auto-trigger policy
          after the lock is released
        - training completions are forwarded for auto-submit

    ARGS:
        state: Shared dashboard state
        policy: Auto-trigger policy (optional)
        stale_after: Seconds without callbacks before an operation is
            treated as stalled (0 disables)
    """

    def __init__(
        self,
        state: DashboardState,
        policy: Optional[AutoTriggerPolicy] = None,
        stale_after: float = 0.0,
    ):
        self.state = state
        self.policy = policy
        self.stale_after = stale_after

    def report(self, kind, phase, **fields: Any) -> None:
        """Apply one start/progress/complete transition for kind."""
        kind = OperationKind(kind)
        phase = Phase(phase)
        values = validate_fields(kind, fields)

        if phase is Phase.START:
            self._start(kind, values)
        elif phase is Phase.PROGRESS:
            self._progress(kind, values)
        else:
            self._complete(kind, values)

    def start(self, kind, **fields: Any) -> None:
        self.report(kind, Phase.START, **fields)

    def progress(self, kind, **fields: Any) -> None:
        self.report(kind, Phase.PROGRESS, **fields)

    def complete(self, kind, **fields: Any) -> None:
        self.report(kind, Phase.COMPLETE, **fields)

    def fail(self, kind, error: Any) -> None:
        """
        Error variant of complete: mark inactive, log an error event.

        Always leaves the kind inactive so no progress bar stays stuck.
        """
        kind = OperationKind(kind)
        with self.state.locked():
            record = self.state.progress.fail(kind)
            if kind is OperationKind.TRAIN:
                self.state.training_scheduled = False
            name = describe_operation(record)
            self.state.events.error(f"{kind.value.capitalize()} failed ({name}): {error}")
        logger.error("%s operation failed: %s", kind.value, error)

    @contextmanager
    def operation(self, kind, **fields: Any):
        """
        Context manager for one operation instance.

        Reports start on enter, complete on normal exit, fail (then
        re-raises) on exception.
        """
        self.start(kind, **fields)
        try:
            yield self
        except Exception as e:
            self.fail(kind, e)
            raise
        else:
            self.complete(kind)

    def expire_stale(self) -> List[OperationKind]:
        """Mark operations without callbacks for stale_after seconds inactive."""
        if self.stale_after <= 0:
            return []

        expired = []
        with self.state.locked():
            now = self.state.now()
            for kind in self.state.progress.active_kinds():
                record = self.state.progress[kind]
                if record.updated_at is None:
                    continue
                silent_for = now - record.updated_at
                if silent_for < self.stale_after:
                    continue
                self.state.progress.fail(kind, stalled=True)
                if kind is OperationKind.TRAIN:
                    self.state.training_scheduled = False
                self.state.events.warning(
                    f"{kind.value.capitalize()} stalled ({describe_operation(record)}): "
                    f"no update for {format_duration(silent_for)}"
                )
                expired.append(kind)
        return expired

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def _start(self, kind: OperationKind, values) -> None:
        with self.state.locked():
            if self.state.progress[kind].active:
                logger.debug("Restarting %s while active", kind.value)
            record = self.state.progress.start(kind, values)
            if kind is OperationKind.TRAIN:
                self.state.training_scheduled = False
            self.state.events.info(f"{KIND_VERBS[kind][0]} {describe_operation(record)}")

    def _progress(self, kind: OperationKind, values) -> None:
        with self.state.locked():
            was_active = self.state.progress[kind].active
            record = self.state.progress.advance(kind, values)
            if not was_active:
                self.state.events.warning(
                    f"Progress for inactive {kind.value} ({describe_operation(record)}) "
                    f"at {record.percent:.1f}%"
                )
                logger.warning("Stale %s progress callback: %s", kind.value, values)

    def _complete(self, kind: OperationKind, values) -> None:
        with self.state.locked():
            previous = self.state.progress[kind]
            metadata = {LABEL_FIELDS[kind]: previous.label, **previous.extra, **values}
            late = previous.stalled
            record = self.state.progress.complete(kind, values)
            if record is None:
                logger.debug("Duplicate %s complete ignored", kind.value)
                return
            if late:
                logger.info("Stalled %s completed after all", kind.value)
            if kind is OperationKind.TRAIN:
                self.state.training_scheduled = False
            self.state.events.success(summarize_completion(record, self.state.now()))

        if self.policy is None:
            return
        if kind is OperationKind.DOWNLOAD:
            self.policy.on_download_complete(dataset_id_for(metadata))
        elif kind is OperationKind.TRAIN:
            self.policy.on_training_complete()
