#!/usr/bin/env python3
"""
numerai_tui/progress.py - Per-Operation Progress Records

PURPOSE:
    One progress record per operation kind (download, upload, train,
    predict). Records change only through start/advance/complete/fail,
    which DashboardState calls under its lock on behalf of the callback
    adapter.

    percent never decreases within one operation instance and is reset
    to 0 only by a new start.
"""

import copy
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath
from typing import Any, Dict, Optional, Tuple

from numerai_tui.errors import InvalidProgressFields


class OperationKind(Enum):
    """Independently tracked operation categories."""

    DOWNLOAD = "download"
    UPLOAD = "upload"
    TRAIN = "train"
    PREDICT = "predict"


class Phase(Enum):
    """Callback phases reported by background operations."""

    START = "start"
    PROGRESS = "progress"
    COMPLETE = "complete"


# Accepted callback fields per kind and the types they must have
_NUMBER = (int, float)

TRANSFER_FIELDS: Dict[str, Tuple[type, ...]] = {
    "filename": (str,),
    "dataset": (str,),
    "current_bytes": _NUMBER,
    "total_bytes": _NUMBER,
    "percent": _NUMBER,
}

KIND_FIELDS: Dict[OperationKind, Dict[str, Tuple[type, ...]]] = {
    OperationKind.DOWNLOAD: TRANSFER_FIELDS,
    OperationKind.UPLOAD: TRANSFER_FIELDS,
    OperationKind.TRAIN: {
        "model_name": (str,),
        "epoch": (int,),
        "total_epochs": (int,),
        "loss": _NUMBER,
        "validation_score": _NUMBER,
        "percent": _NUMBER,
    },
    OperationKind.PREDICT: {
        "model_name": (str,),
        "rows_processed": (int,),
        "total_rows": (int,),
        "percent": _NUMBER,
    },
}

# (current, total) field pair that drives percent and the counters per kind
UNIT_FIELDS: Dict[OperationKind, Tuple[str, str]] = {
    OperationKind.DOWNLOAD: ("current_bytes", "total_bytes"),
    OperationKind.UPLOAD: ("current_bytes", "total_bytes"),
    OperationKind.TRAIN: ("epoch", "total_epochs"),
    OperationKind.PREDICT: ("rows_processed", "total_rows"),
}

# Field that names the operation in labels and events
LABEL_FIELDS: Dict[OperationKind, str] = {
    OperationKind.DOWNLOAD: "filename",
    OperationKind.UPLOAD: "filename",
    OperationKind.TRAIN: "model_name",
    OperationKind.PREDICT: "model_name",
}


def validate_fields(kind: OperationKind, fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check callback fields against the kind's fixed field set.

    RAISES:
        InvalidProgressFields: unknown field or wrong value type
    """
    allowed = KIND_FIELDS[kind]
    problems = []

    for name, value in fields.items():
        if name not in allowed:
            problems.append(f"Unknown field: {name}")
            continue
        if value is None:
            continue
        expected = allowed[name]
        # bool is an int subclass but never a meaningful counter
        if isinstance(value, bool) or not isinstance(value, expected):
            names = "/".join(t.__name__ for t in expected)
            problems.append(f"Invalid type for {name}: expected {names}, got {type(value).__name__}")

    if problems:
        raise InvalidProgressFields(kind.value, problems)

    return {k: v for k, v in fields.items() if v is not None}


def dataset_id_for(fields: Dict[str, Any]) -> Optional[str]:
    """Dataset id of a download: explicit 'dataset' or the filename stem."""
    if fields.get("dataset"):
        return fields["dataset"]
    filename = fields.get("filename")
    if filename:
        name = PurePath(filename).name
        return name.split(".", 1)[0] or None
    return None


def clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


@dataclass
class ProgressRecord:
    """Progress of one operation kind."""

    kind: OperationKind
    active: bool = False
    percent: float = 0.0
    label: str = ""
    current_unit: float = 0.0
    total_unit: float = 0.0
    extra: Dict[str, Any] = field(default_factory=dict)
    started_at: Optional[float] = None
    updated_at: Optional[float] = None
    completed_at: Optional[float] = None
    failed: bool = False
    stalled: bool = False

    def elapsed(self, now: float) -> float:
        """Seconds since start (or until completion)."""
        if self.started_at is None:
            return 0.0
        end = now if self.active or self.completed_at is None else self.completed_at
        return max(0.0, end - self.started_at)

    def eta(self, now: float) -> Optional[float]:
        """Estimated seconds remaining from the elapsed/percent ratio."""
        if not self.active or self.percent <= 0.0 or self.percent >= 100.0:
            return None
        elapsed = self.elapsed(now)
        return max(0.0, elapsed / (self.percent / 100.0) - elapsed)

    def copy(self) -> "ProgressRecord":
        return copy.deepcopy(self)


class ProgressState:
    """
    Progress records for every operation kind.

    Not thread-safe on its own: DashboardState serializes all access.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._records: Dict[OperationKind, ProgressRecord] = {
            kind: ProgressRecord(kind=kind) for kind in OperationKind
        }

    def __getitem__(self, kind: OperationKind) -> ProgressRecord:
        return self._records[OperationKind(kind)]

    def any_active(self) -> bool:
        return any(record.active for record in self._records.values())

    def active_kinds(self):
        return [kind for kind, record in self._records.items() if record.active]

    def snapshot(self) -> Dict[OperationKind, ProgressRecord]:
        """Deep copy of every record."""
        return {kind: record.copy() for kind, record in self._records.items()}

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def start(self, kind: OperationKind, fields: Dict[str, Any]) -> ProgressRecord:
        """Begin a new operation instance: active, percent 0, fresh metadata."""
        now = self._clock()
        record = ProgressRecord(kind=kind, active=True, started_at=now, updated_at=now)
        self._records[kind] = record
        self._apply(record, fields)
        return record

    def advance(self, kind: OperationKind, fields: Dict[str, Any]) -> ProgressRecord:
        """
        Apply a progress update.

        Works on inactive records too (late callbacks are kept) but never
        flips active on.
        """
        record = self._records[kind]
        record.updated_at = self._clock()
        self._apply(record, fields)
        return record

    def complete(self, kind: OperationKind, fields: Dict[str, Any]) -> Optional[ProgressRecord]:
        """
        Finish the operation: inactive, percent 100.

        A record that was marked stalled still accepts its late completion.
        Returns None when the record was already inactive (double complete).
        """
        record = self._records[kind]
        if not record.active and not record.stalled:
            return None
        now = self._clock()
        self._apply(record, fields)
        record.active = False
        record.percent = 100.0
        if record.total_unit > 0:
            record.current_unit = record.total_unit
        record.failed = False
        record.stalled = False
        record.updated_at = now
        record.completed_at = now
        return record

    def fail(self, kind: OperationKind, stalled: bool = False) -> ProgressRecord:
        """
        Mark inactive after an error; percent keeps its last value.

        stalled=True marks a timeout rather than a reported error, so a
        late complete() for the same instance is still honoured.
        """
        record = self._records[kind]
        now = self._clock()
        record.active = False
        record.failed = True
        record.stalled = stalled
        record.updated_at = now
        record.completed_at = now
        return record

    def _apply(self, record: ProgressRecord, fields: Dict[str, Any]) -> None:
        kind = record.kind
        current_name, total_name = UNIT_FIELDS[kind]
        label_name = LABEL_FIELDS[kind]

        if label_name in fields:
            record.label = fields[label_name]
        if current_name in fields:
            record.current_unit = float(fields[current_name])
        if total_name in fields:
            record.total_unit = float(fields[total_name])

        for name, value in fields.items():
            if name not in (current_name, total_name, label_name, "percent"):
                record.extra[name] = value

        if "percent" in fields:
            candidate = clamp_percent(fields["percent"])
        elif record.total_unit > 0 and (current_name in fields or total_name in fields):
            candidate = clamp_percent(record.current_unit / record.total_unit * 100.0)
        else:
            candidate = record.percent

        record.percent = max(record.percent, candidate)
