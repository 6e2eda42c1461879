#!/usr/bin/env python3
"""
Tests for numerai_tui/simulate.py
"""

from unittest.mock import MagicMock

import pytest

from numerai_tui.callbacks import OperationCallbackAdapter
from numerai_tui.errors import OperationCancelled
from numerai_tui.progress import OperationKind
from numerai_tui.simulate import MB, SimulatedBackend


@pytest.fixture
def backend():
    return SimulatedBackend(models=["alpha", "beta"], step_delay=0, steps=4, epochs=3)


class TestSimulatedBackend:
    def test_download_sizes(self, state, backend):
        policy = MagicMock()
        adapter = OperationCallbackAdapter(state, policy)

        backend.download(adapter, ["train", "validation", "live"])

        record = state.progress[OperationKind.DOWNLOAD]
        assert not record.active
        assert record.label == "live.parquet"
        assert record.total_unit == 150 * MB
        assert [c.args[0] for c in policy.on_download_complete.call_args_list] == [
            "train", "validation", "live",
        ]

    def test_train_completes_once_for_all_models(self, state, backend):
        policy = MagicMock()
        adapter = OperationCallbackAdapter(state, policy)

        backend.train(adapter)

        record = state.progress[OperationKind.TRAIN]
        assert record.percent == 100.0
        assert record.total_unit == 6
        assert record.label == "beta"
        assert "validation_score" in record.extra
        policy.on_training_complete.assert_called_once_with()

    def test_predict(self, state, backend):
        adapter = OperationCallbackAdapter(state)
        backend.predict(adapter)
        record = state.progress[OperationKind.PREDICT]
        assert record.current_unit == record.total_unit == 10000

    def test_submit_uploads_each_model(self, state, backend):
        adapter = OperationCallbackAdapter(state)
        backend.submit(adapter)
        uploaded = [e.message for e in state.events.recent(100) if e.message.startswith("Uploaded")]
        assert len(uploaded) == 2
        assert "beta_predictions.csv" in uploaded[-1]

    def test_new_model(self, backend):
        assert backend.new_model() == "model_3"
        assert backend.models == ["alpha", "beta", "model_3"]

    def test_stake(self, backend):
        backend.stake(2.0)
        assert backend.stake(1.5) == 3.5

    def test_cancel(self, state, backend):
        adapter = OperationCallbackAdapter(state)
        backend.cancel()

        with pytest.raises(OperationCancelled):
            backend.download(adapter, ["train"])

        record = state.progress[OperationKind.DOWNLOAD]
        assert not record.active
        assert record.failed
