#!/usr/bin/env python3
"""
Tests for numerai_tui/callbacks.py
"""

from unittest.mock import MagicMock

import pytest

from numerai_tui.callbacks import (
    OperationCallbackAdapter,
    format_bytes,
    format_duration,
    summarize_completion,
)
from numerai_tui.errors import InvalidProgressFields
from numerai_tui.events import Severity
from numerai_tui.progress import OperationKind, Phase, ProgressRecord

MB = 1024 * 1024


def events(state):
    return state.events.recent(100)


def test_format_bytes():
    assert format_bytes(512) == "512 B"
    assert format_bytes(2048) == "2.0 KB"
    assert format_bytes(800 * MB) == "800.0 MB"
    assert format_bytes(3 * 1024 * MB) == "3.0 GB"


def test_format_duration():
    assert format_duration(5) == "5s"
    assert format_duration(125) == "2m 5s"
    assert format_duration(3725) == "1h 2m"
    assert format_duration(-3) == "0s"


def test_summarize_download():
    record = ProgressRecord(
        kind=OperationKind.DOWNLOAD, label="train.parquet", total_unit=800 * MB, started_at=0.0,
        completed_at=12.0,
    )
    assert summarize_completion(record, 12.0) == "Downloaded train.parquet (800.0 MB, in 12s)"


def test_summarize_training():
    record = ProgressRecord(
        kind=OperationKind.TRAIN, label="m1", total_unit=10, extra={"validation_score": 0.0213},
    )
    assert summarize_completion(record, 0.0) == "Trained m1 (10 epochs, val 0.0213)"


class TestTransitions:
    def test_start_progress_complete(self, state, adapter, clock):
        adapter.start(OperationKind.DOWNLOAD, filename="train.parquet", total_bytes=800 * MB)
        clock.advance(4)
        adapter.progress(OperationKind.DOWNLOAD, current_bytes=400 * MB)

        record = state.progress[OperationKind.DOWNLOAD]
        assert record.active
        assert record.percent == 50.0

        clock.advance(4)
        adapter.complete(OperationKind.DOWNLOAD)
        record = state.progress[OperationKind.DOWNLOAD]
        assert not record.active
        assert record.percent == 100.0

        log = events(state)
        assert log[0].severity is Severity.INFO
        assert log[0].message == "Downloading train.parquet"
        assert log[-1].severity is Severity.SUCCESS
        assert log[-1].message == "Downloaded train.parquet (800.0 MB, in 8s)"

    def test_report_accepts_strings(self, state, adapter):
        adapter.report("predict", "start", model_name="m", total_rows=100)
        adapter.report("predict", "progress", rows_processed=25)
        assert state.progress[OperationKind.PREDICT].percent == 25.0

    def test_invalid_fields_rejected_before_state_change(self, state, adapter):
        with pytest.raises(InvalidProgressFields):
            adapter.start(OperationKind.TRAIN, filename="nope")
        assert not state.progress[OperationKind.TRAIN].active
        assert len(state.events) == 0

    def test_stale_progress_warns_and_applies(self, state, adapter):
        adapter.progress(OperationKind.UPLOAD, filename="preds.csv", percent=30.0)

        record = state.progress[OperationKind.UPLOAD]
        assert not record.active
        assert record.percent == 30.0
        assert events(state)[-1].severity is Severity.WARNING

    def test_double_complete_is_idempotent(self, state, adapter):
        adapter.start(OperationKind.TRAIN, model_name="m")
        adapter.complete(OperationKind.TRAIN)
        count = len(state.events)

        adapter.complete(OperationKind.TRAIN)

        assert len(state.events) == count
        assert state.progress[OperationKind.TRAIN].percent == 100.0

    def test_percent_never_decreases(self, state, adapter):
        adapter.start(OperationKind.TRAIN, model_name="m", total_epochs=10)
        for value in (10.0, 40.0, 20.0, 60.0, 5.0):
            adapter.progress(OperationKind.TRAIN, percent=value)
        assert state.progress[OperationKind.TRAIN].percent == 60.0

    def test_fail(self, state, adapter):
        adapter.start(OperationKind.DOWNLOAD, filename="live.parquet")
        adapter.progress(OperationKind.DOWNLOAD, percent=70.0)
        adapter.fail(OperationKind.DOWNLOAD, "connection reset")

        record = state.progress[OperationKind.DOWNLOAD]
        assert not record.active
        assert record.percent == 70.0
        last = events(state)[-1]
        assert last.severity is Severity.ERROR
        assert last.message == "Download failed (live.parquet): connection reset"

    def test_training_start_clears_schedule(self, state, adapter):
        state.training_scheduled = True
        adapter.start(OperationKind.TRAIN, model_name="m")
        assert not state.training_scheduled
        assert state.is_training()


class TestOperationContext:
    def test_success(self, state, adapter):
        with adapter.operation(OperationKind.PREDICT, model_name="m", total_rows=10):
            adapter.progress(OperationKind.PREDICT, rows_processed=5)
        assert state.progress[OperationKind.PREDICT].percent == 100.0

    def test_exception_fails_and_reraises(self, state, adapter):
        with pytest.raises(RuntimeError):
            with adapter.operation(OperationKind.UPLOAD, filename="p.csv"):
                raise RuntimeError("403 Forbidden")

        record = state.progress[OperationKind.UPLOAD]
        assert not record.active
        assert record.failed
        assert "403 Forbidden" in events(state)[-1].message


class TestAutoTriggerForwarding:
    def test_download_completion_forwarded(self, state):
        policy = MagicMock()
        adapter = OperationCallbackAdapter(state, policy)

        adapter.start(OperationKind.DOWNLOAD, filename="validation.parquet")
        adapter.complete(OperationKind.DOWNLOAD)

        policy.on_download_complete.assert_called_once_with("validation")

    def test_explicit_dataset_id(self, state):
        policy = MagicMock()
        adapter = OperationCallbackAdapter(state, policy)

        adapter.start(OperationKind.DOWNLOAD, filename="v5/numerai_live_data.parquet", dataset="live")
        adapter.complete(OperationKind.DOWNLOAD)

        policy.on_download_complete.assert_called_once_with("live")

    def test_double_complete_not_forwarded_twice(self, state):
        policy = MagicMock()
        adapter = OperationCallbackAdapter(state, policy)

        adapter.start(OperationKind.DOWNLOAD, filename="train.parquet")
        adapter.complete(OperationKind.DOWNLOAD)
        adapter.complete(OperationKind.DOWNLOAD)

        assert policy.on_download_complete.call_count == 1

    def test_training_completion_forwarded(self, state):
        policy = MagicMock()
        adapter = OperationCallbackAdapter(state, policy)

        adapter.report(OperationKind.TRAIN, Phase.START, model_name="m")
        adapter.report(OperationKind.TRAIN, Phase.COMPLETE, validation_score=0.02)

        policy.on_training_complete.assert_called_once_with()
        policy.on_download_complete.assert_not_called()

    def test_failed_download_not_forwarded(self, state):
        policy = MagicMock()
        adapter = OperationCallbackAdapter(state, policy)

        adapter.start(OperationKind.DOWNLOAD, filename="train.parquet")
        adapter.fail(OperationKind.DOWNLOAD, "timeout")

        policy.on_download_complete.assert_not_called()

    def test_three_downloads_launch_training(self, state, adapter, launches):
        for dataset in ("live", "train", "validation"):
            adapter.start(OperationKind.DOWNLOAD, filename=f"{dataset}.parquet")
            adapter.complete(OperationKind.DOWNLOAD)

        assert launches == ["train"]


class TestStaleness:
    def test_expire_stale(self, state, adapter, clock):
        adapter.start(OperationKind.DOWNLOAD, filename="train.parquet")
        adapter.progress(OperationKind.DOWNLOAD, percent=20.0)

        clock.advance(299)
        assert adapter.expire_stale() == []

        clock.advance(2)
        assert adapter.expire_stale() == [OperationKind.DOWNLOAD]

        record = state.progress[OperationKind.DOWNLOAD]
        assert not record.active
        assert record.percent == 20.0
        last = events(state)[-1]
        assert last.severity is Severity.WARNING
        assert last.message == "Download stalled (train.parquet): no update for 5m 1s"

    def test_disabled(self, state, clock):
        adapter = OperationCallbackAdapter(state, stale_after=0)
        adapter.start(OperationKind.TRAIN, model_name="m")
        clock.advance(10_000)
        assert adapter.expire_stale() == []
        assert state.progress[OperationKind.TRAIN].active

    def test_late_complete_after_stall_counts(self, state, adapter, clock, launches):
        for dataset in ("train", "validation"):
            adapter.start(OperationKind.DOWNLOAD, filename=f"{dataset}.parquet")
            adapter.complete(OperationKind.DOWNLOAD)
        adapter.start(OperationKind.DOWNLOAD, filename="live.parquet")

        clock.advance(301)
        assert adapter.expire_stale() == [OperationKind.DOWNLOAD]
        assert state.progress[OperationKind.DOWNLOAD].stalled

        adapter.complete(OperationKind.DOWNLOAD)

        record = state.progress[OperationKind.DOWNLOAD]
        assert record.percent == 100.0
        assert not record.failed and not record.stalled
        assert launches == ["train"]
        assert any(e.severity is Severity.SUCCESS and "live.parquet" in e.message for e in events(state))

    def test_complete_after_real_failure_ignored(self, state, adapter, launches):
        adapter.start(OperationKind.DOWNLOAD, filename="live.parquet")
        adapter.fail(OperationKind.DOWNLOAD, "disk full")

        adapter.complete(OperationKind.DOWNLOAD)

        assert state.progress[OperationKind.DOWNLOAD].failed
        assert state.snapshot().completed_downloads == frozenset()
