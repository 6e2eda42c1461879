#!/usr/bin/env python3
"""
numerai_tui/keyboard.py - Raw Input Loop

PURPOSE:
    Reads single keystrokes without waiting for Enter and hands them to
    the command dispatcher.

HOW IT WORKS:
    1. Non-interactive stdin: log and return (no key input at all)
    2. Switch the terminal to cbreak mode (restored on exit)
    3. select() with poll_interval timeout, so stop() is noticed within
       one interval even when no key is pressed
    4. os.read() whatever is available, split into keys; escape
       sequences (arrow keys) are recognized and ignored
    5. '/' opens command mode: characters are collected in the state's
       command buffer, Enter runs it, Backspace edits, Esc cancels

    Windows uses msvcrt.kbhit()/getwch() instead of select.
"""

import codecs
import logging
import os
import select
import sys
import threading
from typing import Callable, List, Optional, TextIO

from numerai_tui.commands import CommandDispatcher
from numerai_tui.errors import StateLockError
from numerai_tui.terminal import ESC, TERMINAL_ERRORS, cbreak_mode, is_interactive

if sys.platform == "win32":
    import msvcrt

logger = logging.getLogger(__name__)

ENTER_KEYS = ("\r", "\n")
BACKSPACE_KEYS = ("\x7f", "\b")

# Bytes per os.read(); an escape sequence arrives in a single read
READ_SIZE = 64


def split_keys(data: str) -> List[str]:
    """
    Split raw input into keys.

    Escape sequences (ESC [ ... final, ESC O x, ESC x) come back as one
    multi-character key; a lone trailing ESC is the Esc key.
    """
    keys = []
    i = 0
    while i < len(data):
        ch = data[i]
        if ch != ESC or i + 1 >= len(data):
            keys.append(ch)
            i += 1
            continue

        j = i + 1
        if data[j] == "[":
            j += 1
            # Parameter bytes, then one final byte in @..~
            while j < len(data) and not ("@" <= data[j] <= "~"):
                j += 1
            j += 1
        elif data[j] == "O":
            j += 2
        else:
            j += 1
        keys.append(data[i:j])
        i = j
    return keys


class InputLoop:
    """
    Keyboard reader thread body.

    ARGS:
        dispatcher: CommandDispatcher for instant keys and slash commands
        stream: Input stream (stdin)
        poll_interval: Max seconds between stop checks
        interactive: Override TTY detection (tests use pipes)
        on_change: Called after each key so the frame updates promptly
        on_terminal_error: fn(component, exc) when reading fails
        on_fatal: fn(exc) when the state lock cannot be acquired
    """

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        stream: Optional[TextIO] = None,
        poll_interval: float = 0.05,
        interactive: Optional[bool] = None,
        on_change: Optional[Callable[[], None]] = None,
        on_terminal_error: Optional[Callable[[str, BaseException], None]] = None,
        on_fatal: Optional[Callable[[BaseException], None]] = None,
    ):
        self.dispatcher = dispatcher
        self.state = dispatcher.state
        self.stream = stream if stream is not None else sys.stdin
        self.poll_interval = poll_interval
        self.interactive = is_interactive(self.stream) if interactive is None else interactive
        self._on_change = on_change
        self._on_terminal_error = on_terminal_error
        self._on_fatal = on_fatal
        self._stopped = threading.Event()
        self._buffer: Optional[str] = None
        # Keeps a multi-byte character split across reads
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def stop(self) -> None:
        self._stopped.set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    # =========================================================================
    # KEY HANDLING
    # =========================================================================

    def feed(self, key: str) -> None:
        """Process one key from split_keys()."""
        if len(key) > 1 and key.startswith(ESC):
            logger.debug("Ignored escape sequence %r", key)
            return

        if self._buffer is not None:
            self._feed_command(key)
        elif key == "/":
            self._set_buffer("")
        elif key in ENTER_KEYS or key == ESC:
            return
        else:
            self.dispatcher.handle_key(key)

        if self._on_change is not None:
            self._on_change()

    def _feed_command(self, key: str) -> None:
        if key in ENTER_KEYS:
            line = self._buffer
            self._set_buffer(None)
            if line.strip():
                self.dispatcher.execute(line)
        elif key == ESC:
            self._set_buffer(None)
        elif key in BACKSPACE_KEYS:
            self._set_buffer(self._buffer[:-1])
        elif key.isprintable():
            self._set_buffer(self._buffer + key)

    def _set_buffer(self, buffer: Optional[str]) -> None:
        self._buffer = buffer
        self.state.set_command_buffer(buffer)

    # =========================================================================
    # READING
    # =========================================================================

    def _read_posix(self) -> Optional[str]:
        """Wait up to poll_interval; None on timeout, '' on EOF."""
        fd = self.stream.fileno()
        ready, _, _ = select.select([fd], [], [], self.poll_interval)
        if not ready:
            return None
        data = os.read(fd, READ_SIZE)
        if not data:
            return ""
        # None while only part of a character has arrived
        return self._decoder.decode(data) or None

    def _read_windows(self) -> Optional[str]:
        if not msvcrt.kbhit():
            self._stopped.wait(self.poll_interval)
            return None
        ch = msvcrt.getwch()
        if ch in ("\x00", "\xe0"):
            # Function/arrow key prefix; drop the key code
            msvcrt.getwch()
            return None
        return ch

    def run(self) -> None:
        """Read keys until stop() is called or input ends."""
        if not self.interactive:
            logger.info("Input is not interactive; keyboard commands disabled")
            return

        with cbreak_mode(self.stream) as cbreak:
            if not cbreak:
                logger.info("cbreak mode unavailable; keys are read as they arrive")
            while not self._stopped.is_set():
                try:
                    data = self._read_windows() if sys.platform == "win32" else self._read_posix()
                except TERMINAL_ERRORS as e:
                    logger.warning("Keyboard input failed: %s", e)
                    if self._on_terminal_error is not None:
                        self._on_terminal_error("input", e)
                    break

                if data is None:
                    continue
                if data == "":
                    logger.info("Input closed; keyboard commands disabled")
                    break

                try:
                    for key in split_keys(data):
                        self.feed(key)
                except StateLockError as e:
                    logger.critical("Input loop lost the state lock: %s", e)
                    if self._on_fatal is not None:
                        self._on_fatal(e)
                    break
        logger.info("Input loop stopped")
