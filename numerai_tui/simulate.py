"""
Simulated tournament backend.

Produces realistic callback streams for every operation without touching
the Numerai API, for demos (`numerai-tui --demo`) and end-to-end tests.
"""

import logging
import threading
from typing import List, Optional, Sequence

from numerai_tui.callbacks import OperationCallbackAdapter
from numerai_tui.errors import OperationCancelled
from numerai_tui.operations import OperationBackend
from numerai_tui.progress import OperationKind

logger = logging.getLogger(__name__)

MB = 1024 * 1024

# Approximate tournament dataset sizes
DATASET_SIZES_MB = {
    "train": 800,
    "validation": 200,
    "live": 150,
}
DEFAULT_DATASET_SIZE_MB = 100

LIVE_ROWS = 5000
PREDICTIONS_SIZE_MB = 2


class SimulatedBackend(OperationBackend):
    """
    Fake downloads, training, predictions and uploads.

    ARGS:
        models: Model names to train/predict/submit
        step_delay: Seconds between progress callbacks (0 in tests)
        steps: Progress callbacks per transfer / prediction
        epochs: Training epochs per model
    """

    def __init__(
        self,
        models: Optional[Sequence[str]] = None,
        step_delay: float = 0.1,
        steps: int = 20,
        epochs: int = 10,
    ):
        self.models: List[str] = list(models or ["default_model"])
        self.step_delay = step_delay
        self.steps = max(1, steps)
        self.epochs = max(1, epochs)
        self.staked = 0.0
        self._cancel = threading.Event()
        self._models_lock = threading.Lock()

    def cancel(self) -> None:
        self._cancel.set()

    def _tick(self) -> None:
        """Wait one step; raises OperationCancelled once cancel() was called."""
        if self._cancel.wait(self.step_delay):
            raise OperationCancelled("cancelled")

    def _transfer(self, adapter: OperationCallbackAdapter, kind: OperationKind,
                  filename: str, total_bytes: int, **fields) -> None:
        with adapter.operation(kind, filename=filename, total_bytes=total_bytes, **fields):
            for step in range(1, self.steps + 1):
                self._tick()
                adapter.progress(kind, current_bytes=total_bytes * step // self.steps)

    def download(self, adapter: OperationCallbackAdapter, datasets: Sequence[str]) -> None:
        for dataset in datasets:
            size = DATASET_SIZES_MB.get(dataset, DEFAULT_DATASET_SIZE_MB) * MB
            self._transfer(
                adapter, OperationKind.DOWNLOAD, f"{dataset}.parquet", size, dataset=dataset
            )

    def train(self, adapter: OperationCallbackAdapter) -> None:
        """All models train as one operation so completion fires once."""
        with self._models_lock:
            models = list(self.models)
        total = self.epochs * len(models)

        with adapter.operation(OperationKind.TRAIN, model_name=models[0], total_epochs=total):
            done = 0
            for model in models:
                for epoch in range(1, self.epochs + 1):
                    self._tick()
                    done += 1
                    adapter.progress(
                        OperationKind.TRAIN,
                        model_name=model,
                        epoch=done,
                        loss=round(0.25 / (1 + 0.3 * epoch), 4),
                        validation_score=round(0.01 + 0.002 * epoch, 4),
                    )

    def predict(self, adapter: OperationCallbackAdapter) -> None:
        with self._models_lock:
            models = list(self.models)
        total = LIVE_ROWS * len(models)

        with adapter.operation(OperationKind.PREDICT, model_name=models[0], total_rows=total):
            for step in range(1, self.steps + 1):
                self._tick()
                model = models[min(len(models) - 1, (step - 1) * len(models) // self.steps)]
                adapter.progress(
                    OperationKind.PREDICT,
                    model_name=model,
                    rows_processed=total * step // self.steps,
                )

    def submit(self, adapter: OperationCallbackAdapter) -> None:
        with self._models_lock:
            models = list(self.models)
        for model in models:
            self._transfer(
                adapter, OperationKind.UPLOAD, f"{model}_predictions.csv", PREDICTIONS_SIZE_MB * MB
            )

    def new_model(self) -> str:
        with self._models_lock:
            name = f"model_{len(self.models) + 1}"
            self.models.append(name)
        logger.info("Simulated model created: %s", name)
        return name

    def stake(self, amount: float) -> float:
        self._tick()
        self.staked += amount
        return self.staked
