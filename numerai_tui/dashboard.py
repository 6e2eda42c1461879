#!/usr/bin/env python3
"""
================================================================================
numerai_tui/dashboard.py - Live Dashboard Orchestrator
================================================================================

PURPOSE:
    Wires the dashboard together and owns its lifecycle:

        background operations -> callback adapter -> state -> render loop
        keyboard -> input loop -> command dispatcher -> runner / controls

    One render loop, one input loop and one state per Dashboard.

THREADS:
    - numerai-render: paints frames on the active/idle cadence
    - numerai-input: reads instant keys (no-op when stdin is not a TTY)
    - numerai-<operation>: one per running background operation
    - main thread: run() waits for quit or Ctrl+C, then stop()

USAGE:
    dashboard = Dashboard(DashboardConfig.from_env(), backend=MyBackend())
    dashboard.run()

================================================================================
"""

import logging
import sys
import threading
from typing import List, Optional, TextIO

from numerai_tui.auto_trigger import AutoTriggerPolicy
from numerai_tui.callbacks import OperationCallbackAdapter
from numerai_tui.commands import CommandDispatcher
from numerai_tui.config import DashboardConfig
from numerai_tui.errors import StateLockError
from numerai_tui.events import EventLogEntry
from numerai_tui.keyboard import InputLoop
from numerai_tui.metrics import SystemMetricsSampler
from numerai_tui.operations import OperationBackend, OperationRunner
from numerai_tui.render import ContentProvider, RenderLoop
from numerai_tui.simulate import SimulatedBackend
from numerai_tui.state import DashboardState
from numerai_tui.terminal import TERMINAL_ERRORS, TerminalWriter

logger = logging.getLogger(__name__)

# Seconds run() waits between quit checks (keeps Ctrl+C responsive)
QUIT_POLL_INTERVAL = 0.1


class Dashboard:
    """
    Live tournament dashboard.

    ARGS:
        config: DashboardConfig (defaults when omitted)
        backend: OperationBackend doing the real work (simulated when omitted)
        stdin / stdout: Terminal streams
        sampler: Host metrics sampler
        content_provider: fn(snapshot, width, height) for the middle region
        interactive: Override TTY detection for stdin
    """

    def __init__(
        self,
        config: Optional[DashboardConfig] = None,
        backend: Optional[OperationBackend] = None,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        sampler: Optional[SystemMetricsSampler] = None,
        content_provider: Optional[ContentProvider] = None,
        interactive: Optional[bool] = None,
    ):
        self.config = config or DashboardConfig()
        cfg = self.config

        self.render_loop: Optional[RenderLoop] = None
        self.state = DashboardState(
            event_log_capacity=cfg.event_log_capacity,
            refresh_interval=cfg.refresh_rate_idle,
            lock_timeout=cfg.lock_timeout,
            lock_retries=cfg.lock_retries,
            on_event=self._on_event,
        )
        self.policy = AutoTriggerPolicy(
            self.state,
            cfg.required_download_ids,
            auto_train_enabled=cfg.auto_train_after_download,
            auto_submit_enabled=cfg.auto_submit_after_training,
        )
        self.adapter = OperationCallbackAdapter(self.state, self.policy, stale_after=cfg.stale_after)

        self.backend = backend or SimulatedBackend(models=cfg.models)
        self.runner = OperationRunner(
            self.state, self.adapter, self.backend, self.policy,
            datasets=sorted(cfg.required_download_ids),
        )
        self.policy.bind(self.runner.start_train, self.runner.start_submit)

        self.sampler = sampler or SystemMetricsSampler(disk_path=cfg.disk_path)
        self.writer = TerminalWriter(stdout or sys.stdout)
        self.render_loop = RenderLoop(
            self.state,
            self.writer,
            sampler=self.sampler,
            adapter=self.adapter,
            refresh_idle=cfg.refresh_rate_idle,
            refresh_active=cfg.refresh_rate_active,
            footer_rows=cfg.footer_rows,
            color=cfg.color,
            content_provider=content_provider,
            on_terminal_error=self.report_terminal_error,
            on_fatal=self._on_fatal,
            auto_train=cfg.auto_train_after_download,
        )

        self.dispatcher = CommandDispatcher(self.state, self, self.runner)
        self.input_loop = InputLoop(
            self.dispatcher,
            stdin or sys.stdin,
            poll_interval=cfg.input_poll_interval,
            interactive=interactive,
            on_change=self.request_refresh,
            on_terminal_error=self.report_terminal_error,
            on_fatal=self._on_fatal,
        )

        self._quit = threading.Event()
        self._lifecycle_lock = threading.Lock()
        self._threads: List[threading.Thread] = []
        self._auto_start_timer: Optional[threading.Timer] = None
        self._started = False
        self._stopped = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Prepare the terminal, start the render and input threads."""
        with self._lifecycle_lock:
            if self._started:
                return
            self._started = True

        self.state.set_running(True)
        try:
            self.writer.enter()
        except TERMINAL_ERRORS as e:
            self.report_terminal_error("render", e)

        self._emit_startup_events()

        self.sampler.start()
        for name, target in (("render", self.render_loop.run), ("input", self.input_loop.run)):
            thread = threading.Thread(target=target, name=f"numerai-{name}", daemon=True)
            self._threads.append(thread)
            thread.start()

        if self.config.auto_start_pipeline:
            delay = self.config.auto_start_delay
            self.state.events.info(f"Auto-start: downloading datasets in {delay:g}s")
            self._auto_start_timer = threading.Timer(delay, self._auto_start)
            self._auto_start_timer.daemon = True
            self._auto_start_timer.start()

        logger.info("Dashboard started")

    def stop(self, timeout: float = 2.0) -> None:
        """
        Stop both loops, cancel background work and restore the terminal.

        Idempotent. Must not be called from the render or input thread
        (they use request_quit()).
        """
        with self._lifecycle_lock:
            if not self._started or self._stopped:
                return
            self._stopped = True

        self._quit.set()
        if self._auto_start_timer is not None:
            self._auto_start_timer.cancel()

        try:
            self.state.set_running(False)
        except StateLockError as e:
            logger.critical("Could not update state during shutdown: %s", e)

        self.render_loop.stop()
        self.input_loop.stop()
        self.runner.cancel()
        self.sampler.stop(timeout)

        current = threading.current_thread()
        for thread in self._threads:
            if thread is not current:
                thread.join(timeout)
                if thread.is_alive():
                    logger.warning("Thread %s did not stop within %.1fs", thread.name, timeout)

        if not self.runner.join(timeout):
            logger.warning("Background operations still running: %s", ", ".join(self.runner.running()))

        try:
            self.writer.leave()
        except TERMINAL_ERRORS as e:
            logger.warning("Could not restore terminal: %s", e)

        logger.info("Dashboard stopped")

    def run(self) -> None:
        """Start, block until quit (q, /quit or Ctrl+C), then stop."""
        self.start()
        try:
            while not self._quit.wait(QUIT_POLL_INTERVAL):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            self.stop()

    @property
    def quit_requested(self) -> bool:
        return self._quit.is_set()

    # =========================================================================
    # CONTROLS
    # =========================================================================

    def request_quit(self) -> None:
        """
        Ask both loops to stop. Safe from any thread, including the loops
        themselves; run() performs the actual shutdown.
        """
        if self._quit.is_set():
            return
        self.state.events.info("Quitting...")
        self._quit.set()
        self.render_loop.stop()
        self.input_loop.stop()

    def pause(self) -> None:
        if self.state.set_paused(True):
            self.state.events.warning("Paused: new operations are blocked (p to resume)")

    def resume(self) -> None:
        if self.state.set_paused(False):
            self.state.events.info("Resumed")

    def toggle_pause(self) -> None:
        if self.state.paused:
            self.resume()
        else:
            self.pause()

    def request_refresh(self) -> None:
        if self.render_loop is not None:
            self.render_loop.request_refresh()

    def toggle_help(self) -> None:
        self.state.toggle_help()
        self.request_refresh()

    def report_terminal_error(self, component: str, exc: BaseException) -> None:
        """
        Record a terminal I/O failure once per component and keep running.

        The render loop skips frames; the input loop stops reading keys.
        """
        if self.state.mark_degraded(component):
            self.state.events.error(f"Terminal {component} error: {exc}; continuing without it")
            logger.warning("Terminal %s degraded: %s", component, exc)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _emit_startup_events(self) -> None:
        cfg = self.config
        events = self.state.events
        events.info("Numerai dashboard started (press h for help)")
        if cfg.auto_train_after_download:
            events.info(
                f"Auto-train after download: on ({', '.join(sorted(cfg.required_download_ids))})"
            )
        if cfg.auto_submit_after_training:
            events.info("Auto-submit after training: on")
        if not self.input_loop.interactive and self.state.mark_degraded("input"):
            events.error("Keyboard input unavailable: stdin is not a terminal")

    def _auto_start(self) -> None:
        if self._quit.is_set():
            return
        if self.state.paused:
            self.state.events.warning("Auto-start skipped: dashboard is paused")
            return
        self.runner.start_download()

    def _on_event(self, entry: EventLogEntry) -> None:
        logger.debug("[%s] %s", entry.severity.value, entry.message)
        self.request_refresh()

    def _on_fatal(self, exc: BaseException) -> None:
        """State lock exhausted: record it without the state lock and quit."""
        logger.critical("Fatal dashboard error: %s", exc)
        self.state.events.error(f"Fatal: {exc}")
        self.request_quit()
