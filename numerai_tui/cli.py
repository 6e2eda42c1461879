#!/usr/bin/env python3
"""
numerai_tui/cli.py - Command Line Entry Point

COMMANDS:
    numerai-tui [--config FILE] [--demo | --backend module:Class]
                [--auto-start] [--no-auto-train] [--auto-submit]
                [--log-file PATH] [--log-level LEVEL]

    python -m numerai_tui ...

Configuration comes from --config (JSON) or NUMERAI_TUI_* environment
variables; the flags above override either source.
"""

import argparse
import importlib
import logging
import os
import sys
from typing import List, Optional

from pydantic import ValidationError
from rich.console import Console

from numerai_tui.config import LOG_FILE, DashboardConfig, load_config
from numerai_tui.dashboard import Dashboard
from numerai_tui.operations import OperationBackend
from numerai_tui.simulate import SimulatedBackend

logger = logging.getLogger(__name__)

console = Console(stderr=True)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Numerai Tournament Dashboard")
    parser.add_argument("--config", "-c", help="JSON config file (default: NUMERAI_TUI_* env vars)")

    backend = parser.add_mutually_exclusive_group()
    backend.add_argument("--demo", action="store_true", help="Use the simulated backend")
    backend.add_argument("--backend", help="Backend class as module:Class")

    parser.add_argument("--auto-start", action="store_true", help="Start downloading after startup")
    parser.add_argument("--no-auto-train", action="store_true", help="Do not train after downloads")
    parser.add_argument("--auto-submit", action="store_true", help="Submit after training completes")
    parser.add_argument("--log-file", default=LOG_FILE, help=f"Log file (default: {LOG_FILE})")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level",
    )
    return parser.parse_args(argv)


def setup_logging(log_file: str, level: str) -> None:
    """Send logs to a file; stdout is owned by the dashboard."""
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    logging.basicConfig(
        filename=log_file,
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s",
    )


def build_config(args: argparse.Namespace) -> DashboardConfig:
    """Load the config and apply command line overrides."""
    config = load_config(args.config)

    overrides = {}
    if args.auto_start:
        overrides["auto_start_pipeline"] = True
    if args.no_auto_train:
        overrides["auto_train_after_download"] = False
    if args.auto_submit:
        overrides["auto_submit_after_training"] = True

    if not overrides:
        return config
    return DashboardConfig(**{**config.model_dump(), **overrides})


def load_backend(target: str) -> OperationBackend:
    """
    Instantiate a backend from 'package.module:ClassName'.

    RAISES:
        ValueError: malformed target or the class is not an OperationBackend
        ImportError / AttributeError: module or class not found
    """
    module_name, sep, class_name = target.partition(":")
    if not sep or not module_name or not class_name:
        raise ValueError(f"Backend must be given as module:Class, got {target!r}")

    backend_cls = getattr(importlib.import_module(module_name), class_name)
    if not (isinstance(backend_cls, type) and issubclass(backend_cls, OperationBackend)):
        raise ValueError(f"{target} is not an OperationBackend subclass")
    return backend_cls()


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = build_config(args)
    except (ValidationError, ValueError, OSError) as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return 1

    try:
        setup_logging(args.log_file, args.log_level)
    except OSError as e:
        console.print(f"[red]Cannot write log file {args.log_file}:[/red] {e}")
        return 1

    if args.backend:
        try:
            backend = load_backend(args.backend)
        except (ImportError, AttributeError, ValueError, TypeError) as e:
            console.print(f"[red]Cannot load backend {args.backend}:[/red] {e}")
            return 1
    else:
        backend = SimulatedBackend(models=config.models)

    if not sys.stdin.isatty():
        console.print("[yellow]stdin is not a terminal; keyboard commands are disabled[/yellow]")

    logger.info("Starting dashboard (backend=%s)", type(backend).__name__)
    Dashboard(config, backend=backend).run()

    console.print("[green]Dashboard stopped[/green]")
    console.print(f"Log: {args.log_file}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
