"""
Instant keys and slash commands.

Maps single keystrokes (q, p, r, h, d, t, s, n) and `/command` lines to
dashboard controls and background operations.
"""

import logging
import math
from typing import Dict, List, Optional

from numerai_tui.state import DashboardState

logger = logging.getLogger(__name__)

# Single-key bindings (case-insensitive)
KEY_ACTIONS: Dict[str, str] = {
    "q": "quit",
    "p": "toggle_pause",
    " ": "toggle_pause",
    "r": "refresh",
    "h": "help",
    "d": "download",
    "t": "train",
    "s": "submit",
    "n": "new_model",
}

# Slash commands
COMMAND_ACTIONS: Dict[str, str] = {
    "download": "download",
    "train": "train",
    "submit": "submit",
    "predict": "predict",
    "new": "new_model",
    "stake": "stake",
    "refresh": "refresh",
    "help": "help",
    "pause": "pause",
    "resume": "resume",
    "quit": "quit",
    "exit": "quit",
}

# Actions that start background work; refused while paused
OPERATION_ACTIONS = frozenset(["download", "train", "submit", "predict", "new_model", "stake"])


def available_commands() -> str:
    return " ".join(f"/{name}" for name in COMMAND_ACTIONS)


class CommandDispatcher:
    """
    Routes keys and commands to the dashboard controller and the
    operation runner.

    ARGS:
        state: Shared dashboard state (pause flag, event log)
        controller: Object with request_quit, toggle_pause, pause, resume,
            request_refresh and toggle_help (the Dashboard)
        runner: OperationRunner
    """

    def __init__(self, state: DashboardState, controller, runner):
        self.state = state
        self.controller = controller
        self.runner = runner

    def handle_key(self, key: str) -> bool:
        """Dispatch one instant key. Returns False for unbound keys."""
        action = KEY_ACTIONS.get(key.lower())
        if action is None:
            self.state.events.info(f"Unknown key {key!r} (press h for help)")
            return False
        self._dispatch(action)
        return True

    def execute(self, line: str) -> bool:
        """
        Run a slash command line such as '/stake 5' (leading slash optional).

        RETURNS:
            True when the command was recognized
        """
        parts = line.strip().lstrip("/").split()
        if not parts:
            return False

        name, args = parts[0].lower(), parts[1:]
        action = COMMAND_ACTIONS.get(name)
        if action is None:
            self.state.events.warning(
                f"Unknown command /{name}. Available: {available_commands()}"
            )
            return False

        logger.debug("Command /%s %s", name, args)
        self._dispatch(action, args)
        return True

    def _dispatch(self, action: str, args: Optional[List[str]] = None) -> None:
        if action in OPERATION_ACTIONS and self.state.paused:
            self.state.events.warning(f"Paused: resume (p) before starting {action.replace('_', ' ')}")
            return

        if action == "quit":
            self.controller.request_quit()
        elif action == "toggle_pause":
            self.controller.toggle_pause()
        elif action == "pause":
            self.controller.pause()
        elif action == "resume":
            self.controller.resume()
        elif action == "refresh":
            self.controller.request_refresh()
        elif action == "help":
            self.controller.toggle_help()
        elif action == "download":
            self.runner.start_download()
        elif action == "train":
            self.runner.start_train()
        elif action == "submit":
            self.runner.start_submit()
        elif action == "predict":
            self.runner.start_predict()
        elif action == "new_model":
            self.runner.start_new_model()
        elif action == "stake":
            self._stake(args or [])

    def _stake(self, args: List[str]) -> None:
        if len(args) != 1:
            self.state.events.error("Usage: /stake <amount>")
            return
        try:
            amount = float(args[0])
        except ValueError:
            self.state.events.error(f"Invalid stake amount: {args[0]!r}")
            return
        if not math.isfinite(amount) or amount <= 0:
            self.state.events.error(f"Stake amount must be a positive number, got {args[0]}")
            return
        self.runner.start_stake(amount)
