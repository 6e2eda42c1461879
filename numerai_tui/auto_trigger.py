#!/usr/bin/env python3
"""
numerai_tui/auto_trigger.py - Auto-Training and Auto-Submit Policy

PURPOSE:
    Starts training exactly once when every required dataset of a
    download cycle has completed, and optionally submits once training
    completes.

HOW IT WORKS:
    1. Each download completion adds its dataset id to the completion set
    2. When the set equals the required set, auto-training is enabled and
       no training is active, running or scheduled: emit an info event,
       clear the set, launch training
    3. If training is already underway the attempt is logged and the set
       is cleared without launching a second run

    The decision and the set mutation happen under the state lock; the
    launch happens after the lock is released.
"""

import logging
from typing import Any, Callable, Iterable, Optional

from numerai_tui.state import DashboardState

logger = logging.getLogger(__name__)

Launcher = Callable[[], Any]


class AutoTriggerPolicy:
    """Download-complete → train, train-complete → submit."""

    def __init__(
        self,
        state: DashboardState,
        required_downloads: Iterable[str],
        auto_train_enabled: bool = True,
        auto_submit_enabled: bool = False,
        launch_training: Optional[Launcher] = None,
        launch_submit: Optional[Launcher] = None,
    ):
        self.state = state
        self.required = frozenset(required_downloads)
        self.auto_train_enabled = auto_train_enabled
        self.auto_submit_enabled = auto_submit_enabled
        self._launch_training = launch_training
        self._launch_submit = launch_submit

    def bind(self, launch_training: Optional[Launcher] = None, launch_submit: Optional[Launcher] = None) -> None:
        """Attach the entry points once the operation runner exists."""
        if launch_training is not None:
            self._launch_training = launch_training
        if launch_submit is not None:
            self._launch_submit = launch_submit

    def reset(self) -> None:
        """Start a new download cycle."""
        self.state.reset_downloads()

    def on_download_complete(self, dataset_id: Optional[str]) -> bool:
        """
        Record a finished download and maybe launch training.

        RETURNS:
            True when this call launched training
        """
        if not dataset_id:
            logger.debug("Download completed without a dataset id; ignored by auto-trigger")
            return False

        with self.state.locked():
            if dataset_id not in self.required:
                logger.debug("Dataset %r is not required for auto-training", dataset_id)
                return False

            completed = self.state.add_completed_download(dataset_id)
            if completed != self.required:
                logger.debug(
                    "Auto-trigger waiting: %d/%d datasets", len(completed), len(self.required)
                )
                return False

            if not self.auto_train_enabled:
                logger.debug("All datasets downloaded; auto-training disabled")
                return False

            datasets = ", ".join(sorted(completed))
            self.state.reset_downloads()

            if self.state.is_training():
                self.state.events.info(
                    "auto-training skipped: training already in progress"
                )
                logger.info("Auto-trigger guarded: training already in progress")
                return False

            self.state.training_scheduled = True
            self.state.events.info(f"auto-training triggered: downloaded {datasets}")

        return self._launch("training", self._launch_training)

    def on_training_complete(self) -> bool:
        """Submit after training when auto-submit is on."""
        if not self.auto_submit_enabled:
            return False
        self.state.events.info("auto-submit: training complete, submitting predictions")
        return self._launch("submit", self._launch_submit)

    def _launch(self, what: str, launcher: Optional[Launcher]) -> bool:
        if launcher is None:
            self.state.events.warning(f"No {what} entry point configured")
            self._clear_schedule(what)
            return False
        try:
            result = launcher()
        except Exception as e:
            logger.exception("Auto-%s launch failed", what)
            self.state.events.error(f"Auto-{what} failed to start: {e}")
            self._clear_schedule(what)
            return False
        if result is False:
            self._clear_schedule(what)
            return False
        return True

    def _clear_schedule(self, what: str) -> None:
        if what == "training":
            with self.state.locked():
                self.state.training_scheduled = False
