#!/usr/bin/env python3
"""
================================================================================
numerai_tui/render.py - Sticky-Panel Render Loop
================================================================================

PURPOSE:
    Paints the live dashboard on a fixed cadence:
    1. Sticky header: run status, host metrics, one progress bar per
       active operation
    2. Scrollable middle region: pipeline/model content (or help)
    3. Sticky footer: most recent events, key hints / command prompt

HOW IT WORKS:
    1. Takes a DashboardSnapshot under the state lock (no torn reads)
    2. Samples host metrics
    3. Builds each row as a Rich Text and renders it to ANSI
    4. Positions every row absolutely (ESC[row;1H), between a cursor
       save (ESC[s) and restore (ESC[u)
    5. Writes the whole frame with one write + flush
    6. Sleeps refresh_rate_active while anything is active, otherwise
       refresh_rate_idle; refresh requests wake it early

TUNABLE PARAMETERS:
    - HEADER_ROWS: Fixed height of the sticky header
    - BAR_WIDTH: Progress bar width on wide terminals
    - PANEL_STYLES: Colours per region/operation kind

DEGRADED OUTPUT:
    - Narrow terminals drop counters, ETA and the GPU field
    - Short terminals drop the middle region, then shrink the footer
    - Write failures skip the frame and are reported once

================================================================================
"""

import io
import logging
import threading
from typing import Callable, List, Optional, Sequence, Tuple, Union

from rich.console import Console
from rich.style import Style
from rich.text import Text

from numerai_tui.callbacks import (
    OperationCallbackAdapter,
    describe_operation,
    format_bytes,
    format_duration,
)
from numerai_tui.errors import StateLockError
from numerai_tui.events import SEVERITY_STYLES
from numerai_tui.metrics import SystemMetricsSampler, SystemMetricsSnapshot
from numerai_tui.progress import OperationKind, ProgressRecord, clamp_percent
from numerai_tui.state import DashboardSnapshot, DashboardState
from numerai_tui.terminal import (
    CLEAR_LINE,
    RESTORE_CURSOR,
    SAVE_CURSOR,
    TERMINAL_ERRORS,
    TerminalWriter,
    move_to,
)

logger = logging.getLogger(__name__)

# =============================================================================
# CONFIGURATION
# =============================================================================

# Sticky header height: title, metrics, 4 operation rows, rule
HEADER_ROWS = 7

# Below this width optional fields are omitted
WIDE_WIDTH = 100

# Smallest usable terminal
MIN_WIDTH = 40
MIN_MIDDLE_ROWS = 1

# Progress bar width (shrinks on narrow terminals)
BAR_WIDTH = 30
MIN_BAR_WIDTH = 10

BAR_FILLED = "█"
BAR_EMPTY = "░"

# Colour scheme - Rich styles
PANEL_STYLES = {
    "header": "bold cyan",
    "metrics": "white",
    "rule": "grey50",
    "events": "yellow",
    "hint": "dim cyan",
    "paused": "bold yellow",
    "running": "bold green",
    OperationKind.DOWNLOAD: "blue",
    OperationKind.UPLOAD: "magenta",
    OperationKind.TRAIN: "green",
    OperationKind.PREDICT: "yellow",
}

KIND_TITLES = {
    OperationKind.DOWNLOAD: "Download",
    OperationKind.UPLOAD: "Upload",
    OperationKind.TRAIN: "Train",
    OperationKind.PREDICT: "Predict",
}

KEY_HINTS = "q quit  p pause  r refresh  h help  d download  t train  s submit  n new model  / command"

HELP_LINES = [
    ("q", "Quit dashboard"),
    ("p / space", "Pause or resume (blocks new commands)"),
    ("r", "Refresh now"),
    ("h", "Toggle this help"),
    ("d", "Download datasets"),
    ("t", "Train models"),
    ("s", "Submit predictions"),
    ("n", "New model wizard"),
    ("/", "Command mode: /download /train /submit /predict /new"),
    ("", "  /stake <amount> /refresh /help /pause /resume /quit"),
]

Line = Union[str, Text]
ContentProvider = Callable[[DashboardSnapshot, int, int], Sequence[Line]]


# =============================================================================
# LINE BUILDERS
# =============================================================================


def format_progress_bar(percent: float, width: int = BAR_WIDTH) -> str:
    """Fixed-width bar with trailing percentage, e.g. '[████░░░░] 50.0%'."""
    percent = clamp_percent(percent)
    width = max(1, width)
    filled = int(percent / 100.0 * width)
    return f"[{BAR_FILLED * filled}{BAR_EMPTY * (width - filled)}] {percent:.1f}%"


def bar_width_for(width: int) -> int:
    return max(MIN_BAR_WIDTH, min(BAR_WIDTH, width - 60))


def format_counters(record: ProgressRecord) -> str:
    """Kind-specific counter text: bytes, epochs or rows."""
    kind = record.kind
    if kind in (OperationKind.DOWNLOAD, OperationKind.UPLOAD):
        if record.total_unit > 0:
            return f"{format_bytes(record.current_unit)}/{format_bytes(record.total_unit)}"
        return ""
    if kind is OperationKind.TRAIN:
        parts = []
        if record.total_unit > 0:
            parts.append(f"epoch {int(record.current_unit)}/{int(record.total_unit)}")
        if record.extra.get("loss") is not None:
            parts.append(f"loss {record.extra['loss']:.4f}")
        return " ".join(parts)
    if record.total_unit > 0:
        return f"{int(record.current_unit):,}/{int(record.total_unit):,} rows"
    return ""


def progress_line(record: ProgressRecord, now: float, width: int, compact: bool) -> Text:
    """One header row for an active operation."""
    style = PANEL_STYLES[record.kind]
    line = Text()
    line.append(f"{KIND_TITLES[record.kind]:<9}", Style.parse(f"bold {style}"))
    line.append(format_progress_bar(record.percent, bar_width_for(width)), Style.parse(style))
    line.append(f" {describe_operation(record)}")

    if not compact:
        counters = format_counters(record)
        if counters:
            line.append(f"  {counters}", Style(dim=True))
        line.append(f"  {format_duration(record.elapsed(now))}", Style(dim=True))
        eta = record.eta(now)
        if eta is not None:
            line.append(f"  ETA {format_duration(eta)}", Style(dim=True))
    return line


def inactive_line(record: ProgressRecord) -> Text:
    """Dim header row for a kind with no live operation."""
    if record.stalled:
        status = f"stalled at {record.percent:.1f}%"
    elif record.failed:
        status = f"failed at {record.percent:.1f}%"
    elif record.completed_at is not None:
        status = "done"
    else:
        status = "idle"
    line = Text(f"{KIND_TITLES[record.kind]:<9}", Style(dim=True, bold=True))
    line.append(status, Style(dim=True))
    if record.label:
        line.append(f" {record.label}", Style(dim=True))
    return line


def title_line(snapshot: DashboardSnapshot, auto_train: Optional[bool] = None) -> Text:
    line = Text()
    line.append("Numerai Tournament Dashboard", Style.parse(PANEL_STYLES["header"]))
    if snapshot.paused:
        line.append("  PAUSED", Style.parse(PANEL_STYLES["paused"]))
    else:
        line.append("  RUNNING", Style.parse(PANEL_STYLES["running"]))
    if auto_train is not None:
        line.append(f"  auto-train: {'on' if auto_train else 'off'}", Style(dim=True))
    if snapshot.running_operations:
        ops = ", ".join(sorted(kind.value for kind in snapshot.running_operations))
        line.append(f"  workers: {ops}", Style(dim=True))
    if snapshot.degraded:
        line.append(f"  degraded: {', '.join(sorted(snapshot.degraded))}", Style(color="red"))
    return line


def metrics_line(metrics: SystemMetricsSnapshot, compact: bool) -> Text:
    line = Text(style=Style.parse(PANEL_STYLES["metrics"]))
    line.append(f"CPU {metrics.cpu_percent:5.1f}%")
    line.append(
        f" | Mem {metrics.mem_used_gb:.1f}/{metrics.mem_total_gb:.1f} GB"
        f" ({metrics.mem_percent:.0f}%)"
    )
    line.append(f" | Disk {metrics.disk_free_gb:.1f}/{metrics.disk_total_gb:.1f} GB free")
    if not compact:
        if metrics.gpu:
            line.append(
                f" | GPU {metrics.gpu.get('memory_used_mb', 0)}/"
                f"{metrics.gpu.get('memory_total_mb', 0)} MB"
                f" {metrics.gpu.get('utilization_pct', 0)}%"
            )
        line.append(f" | Up {format_duration(metrics.uptime_seconds)}")
    return line


def rule_line(width: int, title: str = "") -> Text:
    style = Style.parse(PANEL_STYLES["rule"])
    if not title:
        return Text("─" * width, style)
    label = f" {title} "
    left = 2
    right = max(0, width - left - len(label))
    line = Text("─" * left, style)
    line.append(label, Style.parse(f"bold {PANEL_STYLES['events']}"))
    line.append("─" * right, style)
    return line


def event_lines(snapshot: DashboardSnapshot, rows: int) -> List[Text]:
    """Last `rows` events, oldest first, newest on the bottom row."""
    if rows <= 0:
        return []
    lines = []
    for entry in snapshot.events[-rows:]:
        icon, color = SEVERITY_STYLES[entry.severity]
        line = Text()
        line.append(f"{entry.format_time()} ", Style(color="grey50"))
        line.append(f"{icon} ", Style(color=color, bold=True))
        line.append(entry.message, Style(color=color))
        lines.append(line)
    if not lines:
        lines.append(Text("No events yet...", Style(dim=True)))
    # Bottom-align so the newest event sits just above the hint row
    return [Text("")] * (rows - len(lines)) + lines


def hint_line(snapshot: DashboardSnapshot) -> Text:
    if snapshot.command_buffer is not None:
        line = Text("/", Style(bold=True, color="cyan"))
        line.append(snapshot.command_buffer)
        line.append("█", Style(blink=True))
        line.append("   Enter run  Esc cancel", Style(dim=True))
        return line
    return Text(KEY_HINTS, Style.parse(PANEL_STYLES["hint"]))


def help_content(width: int, height: int) -> List[Text]:
    lines = [Text("Keyboard Shortcuts", Style(bold=True, color="cyan"))]
    for key, action in HELP_LINES:
        line = Text(f"  {key:<12}", Style(color="cyan"))
        line.append(action)
        lines.append(line)
    return lines[:height]


def default_content(snapshot: DashboardSnapshot, width: int, height: int) -> List[Text]:
    """Pipeline summary shown in the middle region when no provider is given."""
    lines = [Text("Pipeline", Style(bold=True))]

    completed = sorted(snapshot.completed_downloads)
    if completed:
        lines.append(Text(f"  Datasets this cycle: {', '.join(completed)}"))
    else:
        lines.append(Text("  Datasets this cycle: none yet", Style(dim=True)))

    for kind in OperationKind:
        record = snapshot.progress[kind]
        if record.active:
            status = f"{record.percent:.1f}%"
        elif record.stalled:
            status = "stalled"
        elif record.failed:
            status = "failed"
        elif record.completed_at is not None:
            status = "done"
        else:
            status = "idle"
        label = f" ({record.label})" if record.label else ""
        lines.append(Text(f"  {KIND_TITLES[kind]:<9}{status}{label}"))

    if snapshot.paused:
        lines.append(Text("  Paused: new operations are blocked (p to resume)", Style(color="yellow")))
    if "input" in snapshot.degraded:
        lines.append(Text("  Instant keys unavailable on this terminal", Style(color="red")))
    return lines[:height]


# =============================================================================
# LAYOUT
# =============================================================================


def compute_layout(width: int, height: int, footer_rows: int) -> Tuple[int, int, int, bool]:
    """
    Split the terminal into (header, middle, footer, compact).

    Header and footer heights are fixed; only the middle region follows
    the terminal height. Too-short terminals lose the middle region first,
    then footer rows.
    """
    compact = width < WIDE_WIDTH
    if height >= HEADER_ROWS + footer_rows + MIN_MIDDLE_ROWS:
        return HEADER_ROWS, height - HEADER_ROWS - footer_rows, footer_rows, compact

    header = min(HEADER_ROWS, max(0, height))
    footer = max(0, min(footer_rows, height - header))
    return header, 0, footer, True


# =============================================================================
# RENDER LOOP
# =============================================================================


class RenderLoop:
    """
    Periodic renderer for the sticky dashboard.

    ARGS:
        state: Shared dashboard state (read via snapshots)
        writer: Locked terminal writer
        sampler: Host metrics sampler
        adapter: Callback adapter, used for stale-operation detection
        refresh_idle / refresh_active: Frame intervals in seconds
        footer_rows: Sticky footer height
        color: Emit ANSI colours
        content_provider: fn(snapshot, width, height) -> lines for the middle region
        on_terminal_error: fn(component, exc) called when a frame cannot be written
        on_fatal: fn(exc) called when the state lock cannot be acquired
        auto_train: Shown in the title line when set
    """

    def __init__(
        self,
        state: DashboardState,
        writer: TerminalWriter,
        sampler: Optional[SystemMetricsSampler] = None,
        adapter: Optional[OperationCallbackAdapter] = None,
        refresh_idle: float = 1.0,
        refresh_active: float = 0.2,
        footer_rows: int = 10,
        color: bool = True,
        content_provider: Optional[ContentProvider] = None,
        on_terminal_error: Optional[Callable[[str, BaseException], None]] = None,
        on_fatal: Optional[Callable[[BaseException], None]] = None,
        auto_train: Optional[bool] = None,
    ):
        self.state = state
        self.writer = writer
        self.sampler = sampler or SystemMetricsSampler()
        self.adapter = adapter
        self.refresh_idle = refresh_idle
        self.refresh_active = refresh_active
        self.footer_rows = footer_rows
        self.color = color
        self.content_provider = content_provider or default_content
        self._on_terminal_error = on_terminal_error
        self._on_fatal = on_fatal
        self.auto_train = auto_train

        self._wake = threading.Event()
        self._stopped = threading.Event()
        self.frames_painted = 0
        self.frames_skipped = 0

        self.console = Console(
            file=io.StringIO(),
            force_terminal=color,
            no_color=not color,
            color_system="standard" if color else None,
            highlight=False,
            emoji=False,
            legacy_windows=False,
        )

    # -------------------------------------------------------------------------
    # Cadence
    # -------------------------------------------------------------------------

    def next_interval(self, snapshot: Optional[DashboardSnapshot] = None) -> float:
        """Active cadence while any operation is active, idle cadence otherwise."""
        snapshot = snapshot or self.state.snapshot()
        return self.refresh_active if snapshot.any_active() else self.refresh_idle

    def request_refresh(self) -> None:
        """Paint the next frame now instead of at the end of the interval."""
        self._wake.set()

    def stop(self) -> None:
        self._stopped.set()
        self._wake.set()

    # -------------------------------------------------------------------------
    # Frame composition
    # -------------------------------------------------------------------------

    def _to_ansi(self, line: Line, width: int) -> str:
        text = Text(line) if isinstance(line, str) else line.copy()
        text.no_wrap = True
        text.truncate(width, overflow="ellipsis")
        self.console.width = max(1, width)
        with self.console.capture() as capture:
            self.console.print(text, end="", crop=True, overflow="ellipsis", no_wrap=True)
        return capture.get()

    def _middle_lines(self, snapshot: DashboardSnapshot, width: int, rows: int) -> List[Line]:
        if rows <= 0:
            return []
        if snapshot.show_help:
            return list(help_content(width, rows))
        try:
            return list(self.content_provider(snapshot, width, rows))[:rows]
        except Exception as e:
            logger.exception("Content provider failed")
            return [Text(f"Content unavailable: {e}", Style(color="red"))]

    def header_lines(self, snapshot: DashboardSnapshot, metrics: SystemMetricsSnapshot,
                     width: int, compact: bool) -> List[Line]:
        lines: List[Line] = [title_line(snapshot, self.auto_train), metrics_line(metrics, compact)]
        now = snapshot.taken_at
        for kind in OperationKind:
            record = snapshot.progress[kind]
            if record.active:
                lines.append(progress_line(record, now, width, compact))
            else:
                lines.append(inactive_line(record))
        lines.append(rule_line(width))
        return lines

    def footer_lines(self, snapshot: DashboardSnapshot, width: int, rows: int) -> List[Line]:
        if rows <= 0:
            return []
        if rows == 1:
            return [hint_line(snapshot)]
        return (
            [rule_line(width, "Recent Events")]
            + event_lines(snapshot, rows - 2)
            + [hint_line(snapshot)]
        )

    def compose_frame(self, snapshot: DashboardSnapshot, metrics: SystemMetricsSnapshot,
                      width: int, height: int) -> str:
        """Build the complete frame string for a width x height terminal."""
        width = max(1, width)
        header_rows, middle_rows, footer_rows, compact = compute_layout(
            width, height, self.footer_rows
        )
        compact = compact or width < MIN_WIDTH

        rows: List[Tuple[int, Line]] = []
        header = self.header_lines(snapshot, metrics, width, compact)[:header_rows]
        rows.extend((i + 1, line) for i, line in enumerate(header))

        middle = self._middle_lines(snapshot, width, middle_rows)
        middle_start = header_rows + 1
        for i in range(middle_rows):
            rows.append((middle_start + i, middle[i] if i < len(middle) else ""))

        footer_start = height - footer_rows + 1
        footer = self.footer_lines(snapshot, width, footer_rows)
        rows.extend((footer_start + i, line) for i, line in enumerate(footer))

        parts = [SAVE_CURSOR]
        for row, line in rows:
            parts.append(move_to(row) + CLEAR_LINE + self._to_ansi(line, width))
        parts.append(RESTORE_CURSOR)
        return "".join(parts)

    def render_frame(self, width: Optional[int] = None, height: Optional[int] = None) -> str:
        """Snapshot state, sample metrics and compose one frame."""
        snapshot = self.state.snapshot()
        if width is None or height is None:
            width, height = self.writer.size()
        return self.compose_frame(snapshot, self.sampler.sample(), width, height)

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    def paint(self) -> float:
        """
        Paint one frame.

        RETURNS:
            Seconds to wait before the next frame
        """
        if self.adapter is not None:
            self.adapter.expire_stale()

        snapshot = self.state.snapshot()
        interval = self.next_interval(snapshot)
        if interval != snapshot.refresh_interval:
            self.state.set_refresh_interval(interval)

        try:
            width, height = self.writer.size()
            frame = self.compose_frame(snapshot, self.sampler.sample(), width, height)
            self.writer.write_frame(frame)
            self.frames_painted += 1
        except TERMINAL_ERRORS as e:
            self.frames_skipped += 1
            logger.debug("Skipped frame: %s", e)
            if self._on_terminal_error is not None:
                self._on_terminal_error("render", e)
        return interval

    def run(self) -> None:
        """Paint until stop() is called."""
        logger.info("Render loop started")
        while not self._stopped.is_set():
            # A refresh requested while painting must wake the next wait
            self._wake.clear()
            try:
                interval = self.paint()
            except StateLockError as e:
                logger.critical("Render loop lost the state lock: %s", e)
                if self._on_fatal is not None:
                    self._on_fatal(e)
                break
            self._wake.wait(interval)
        logger.info("Render loop stopped")
