"""
Terminal primitives

ANSI/VT100 sequences, a locked writer that flushes each frame in one
write, and cbreak-mode handling for instant key reads.
"""

import logging
import os
import shutil
import sys
import threading
from contextlib import contextmanager
from typing import Optional, TextIO, Tuple

if sys.platform != "win32":
    import termios
    import tty

logger = logging.getLogger(__name__)

# Terminal control sequences
ESC = "\033"
HIDE_CURSOR = ESC + "[?25l"
SHOW_CURSOR = ESC + "[?25h"
CLEAR_SCREEN = ESC + "[2J"
MOVE_HOME = ESC + "[H"
SAVE_CURSOR = ESC + "[s"
RESTORE_CURSOR = ESC + "[u"
CLEAR_LINE = ESC + "[2K"

# Fallback when the size cannot be queried (not a TTY)
DEFAULT_SIZE = (80, 24)

# Errors that mean the terminal is gone or unusable
TERMINAL_ERRORS: Tuple[type, ...] = (OSError, ValueError)
if sys.platform != "win32":
    TERMINAL_ERRORS = TERMINAL_ERRORS + (termios.error,)


def move_to(row: int, col: int = 1) -> str:
    """Absolute cursor position (1-based)."""
    return f"{ESC}[{row};{col}H"


def terminal_size(stream: Optional[TextIO] = None) -> Tuple[int, int]:
    """Return (columns, rows) for stream, falling back to DEFAULT_SIZE."""
    stream = stream or sys.stdout
    try:
        size = os.get_terminal_size(stream.fileno())
        return size.columns, size.lines
    except (AttributeError, ValueError, OSError):
        size = shutil.get_terminal_size(DEFAULT_SIZE)
        return size.columns, size.lines


def is_interactive(stream: Optional[TextIO]) -> bool:
    """True when stream is an open TTY."""
    try:
        return stream is not None and stream.isatty()
    except (AttributeError, ValueError):
        return False


class TerminalWriter:
    """
    Exclusive writer for the dashboard's output stream.

    A frame is written with a single write() and flush() under the lock,
    so diagnostics from other threads cannot land mid-frame.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self._lock = threading.Lock()

    def write_frame(self, data: str) -> None:
        with self._lock:
            self.stream.write(data)
            self.stream.flush()

    def size(self) -> Tuple[int, int]:
        return terminal_size(self.stream)

    def enter(self) -> None:
        """Hide the cursor and clear the screen."""
        self.write_frame(HIDE_CURSOR + CLEAR_SCREEN + MOVE_HOME)

    def leave(self) -> None:
        """Clear the screen and show the cursor again."""
        self.write_frame(CLEAR_SCREEN + MOVE_HOME + SHOW_CURSOR)


@contextmanager
def cbreak_mode(stream: TextIO):
    """
    Put stream's terminal in cbreak mode so keys arrive without Enter,
    restoring the previous settings on exit.

    Yields True when cbreak mode is active, False when the stream is not
    a terminal that supports it (the caller keeps going without it).
    """
    if sys.platform == "win32":
        # msvcrt reads single keys without a mode switch
        yield True
        return

    try:
        fd = stream.fileno()
        old_settings = termios.tcgetattr(fd)
        tty.setcbreak(fd)
    except TERMINAL_ERRORS as e:
        logger.debug("cbreak mode unavailable: %s", e)
        yield False
        return

    try:
        yield True
    finally:
        try:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
        except TERMINAL_ERRORS as e:
            logger.warning("Failed to restore terminal settings: %s", e)
