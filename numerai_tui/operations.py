#!/usr/bin/env python3
"""
================================================================================
numerai_tui/operations.py - Background Operation Runner
================================================================================

PURPOSE:
    Runs tournament operations (download, train, predict, submit, new
    model, stake) on background threads, at most one per operation.

BACKEND CONTRACT:
    An OperationBackend does the real work (API calls, parquet I/O, the
    models themselves) and reports through the callback adapter:

        adapter.start(kind, ...) -> adapter.progress(kind, ...)* -> adapter.complete(kind)

    or wraps each unit of work in `with adapter.operation(kind, ...)`.

HOW IT WORKS:
    1. start_*() claims the operation in DashboardState (a second request
       while one runs gets a warning and returns False)
    2. A named daemon thread calls the backend entry point
    3. Any exception leaves the matching progress bar inactive with an
       error event; the claim is always released

================================================================================
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Sequence

from numerai_tui.auto_trigger import AutoTriggerPolicy
from numerai_tui.callbacks import OperationCallbackAdapter
from numerai_tui.config import DEFAULT_REQUIRED_DOWNLOADS
from numerai_tui.errors import OperationCancelled
from numerai_tui.progress import OperationKind
from numerai_tui.state import DashboardState

logger = logging.getLogger(__name__)


# =============================================================================
# BACKEND CONTRACT
# =============================================================================


class OperationBackend(ABC):
    """
    Entry points the dashboard calls for tournament work.

    download/train/submit are required. predict, new_model and stake are
    optional; the defaults raise NotImplementedError, which the runner
    reports as unsupported.
    """

    @abstractmethod
    def download(self, adapter: OperationCallbackAdapter, datasets: Sequence[str]) -> None:
        """Download each dataset, reporting OperationKind.DOWNLOAD progress."""
        pass

    @abstractmethod
    def train(self, adapter: OperationCallbackAdapter) -> None:
        """Train the configured models, reporting OperationKind.TRAIN progress."""
        pass

    @abstractmethod
    def submit(self, adapter: OperationCallbackAdapter) -> None:
        """Upload predictions, reporting OperationKind.UPLOAD progress."""
        pass

    def predict(self, adapter: OperationCallbackAdapter) -> None:
        raise NotImplementedError("predict")

    def new_model(self) -> Optional[str]:
        """Create a model; returns its name."""
        raise NotImplementedError("new model")

    def stake(self, amount: float) -> Any:
        raise NotImplementedError("stake")

    def cancel(self) -> None:
        """Ask running operations to stop early. Optional."""
        pass


# =============================================================================
# RUNNER
# =============================================================================


class OperationRunner:
    """
    Starts backend operations on worker threads.

    ARGS:
        state: Shared dashboard state
        adapter: Callback adapter handed to the backend
        backend: OperationBackend implementation
        policy: Auto-trigger policy; its completion set is reset when a
            download cycle starts
        datasets: Dataset ids downloaded by start_download()
    """

    def __init__(
        self,
        state: DashboardState,
        adapter: OperationCallbackAdapter,
        backend: OperationBackend,
        policy: Optional[AutoTriggerPolicy] = None,
        datasets: Sequence[str] = DEFAULT_REQUIRED_DOWNLOADS,
    ):
        self.state = state
        self.adapter = adapter
        self.backend = backend
        self.policy = policy
        self.datasets = list(datasets)
        self._lock = threading.Lock()
        self._threads: Dict[str, threading.Thread] = {}

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def start_download(self) -> bool:
        """Start a new download cycle for every configured dataset."""
        prepare = self.policy.reset if self.policy is not None else None
        return self._spawn(
            "download", OperationKind.DOWNLOAD,
            lambda: self.backend.download(self.adapter, list(self.datasets)),
            prepare=prepare,
        )

    def start_train(self) -> bool:
        return self._spawn("train", OperationKind.TRAIN, lambda: self.backend.train(self.adapter))

    def start_submit(self) -> bool:
        return self._spawn("submit", OperationKind.UPLOAD, lambda: self.backend.submit(self.adapter))

    def start_predict(self) -> bool:
        return self._spawn("predict", OperationKind.PREDICT, lambda: self.backend.predict(self.adapter))

    def start_new_model(self) -> bool:
        def run():
            name = self.backend.new_model()
            self.state.events.success(f"Created model {name}" if name else "Created new model")

        return self._spawn("new_model", None, run)

    def start_stake(self, amount: float) -> bool:
        def run():
            self.state.events.info(f"Staking {amount:g} NMR")
            self.backend.stake(amount)
            self.state.events.success(f"Staked {amount:g} NMR")

        return self._spawn("stake", None, run)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def is_running(self, name: str) -> bool:
        with self._lock:
            return name in self._threads

    def running(self) -> Sequence[str]:
        with self._lock:
            return sorted(self._threads)

    def cancel(self) -> None:
        """Ask the backend to stop running operations."""
        self.backend.cancel()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for every worker.

        RETURNS:
            True when all workers finished within timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            threads = list(self._threads.values())
        for thread in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        with self._lock:
            return not self._threads

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _spawn(
        self,
        name: str,
        kind: Optional[OperationKind],
        target: Callable[[], Any],
        prepare: Optional[Callable[[], None]] = None,
    ) -> bool:
        label = name.replace("_", " ")
        with self._lock:
            if name in self._threads:
                self.state.events.warning(f"{label.capitalize()} already running")
                return False
            if kind is not None and not self.state.claim_operation(kind):
                self.state.events.warning(f"{label.capitalize()} already running")
                return False

            if prepare is not None:
                prepare()

            started_at = self.state.progress[kind].started_at if kind is not None else None
            thread = threading.Thread(
                target=self._worker,
                args=(name, kind, target, started_at),
                name=f"numerai-{name}",
                daemon=True,
            )
            self._threads[name] = thread

        logger.info("Starting %s", name)
        thread.start()
        return True

    def _worker(self, name: str, kind: Optional[OperationKind], target, started_at) -> None:
        label = name.replace("_", " ")
        try:
            target()
        except OperationCancelled:
            logger.info("%s cancelled", name)
            self._finish_failed(kind, started_at, None, f"{label.capitalize()} cancelled")
        except NotImplementedError:
            self.state.events.warning(f"{label.capitalize()} is not supported by this backend")
        except Exception as e:
            logger.exception("%s failed", name)
            self._finish_failed(kind, started_at, e, f"{label.capitalize()} failed: {e}")
        finally:
            if kind is not None:
                self.state.release_operation(kind)
            with self._lock:
                self._threads.pop(name, None)
            logger.info("Finished %s", name)

    def _finish_failed(self, kind, started_at, error, message: str) -> None:
        """
        Make sure the failure is visible exactly once.

        If the backend's adapter.operation() block already reported the
        failure, only the log line remains.
        """
        active = reported = False
        if kind is not None:
            with self.state.locked():
                record = self.state.progress[kind]
                active = record.active
                reported = record.failed and record.started_at != started_at

        if active:
            self.adapter.fail(kind, error if error is not None else "cancelled")
        elif not reported:
            if error is None:
                self.state.events.warning(message)
            else:
                self.state.events.error(message)
