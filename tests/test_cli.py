#!/usr/bin/env python3
"""
Tests for numerai_tui/cli.py
"""

import json
from unittest.mock import patch

import pytest

from numerai_tui.cli import build_config, load_backend, main, parse_args
from numerai_tui.simulate import SimulatedBackend


def test_parse_args_defaults():
    args = parse_args([])
    assert args.config is None
    assert not args.demo
    assert args.backend is None
    assert args.log_level == "INFO"


def test_demo_and_backend_are_exclusive():
    with pytest.raises(SystemExit):
        parse_args(["--demo", "--backend", "x:Y"])


def test_build_config_overrides(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"footer_rows": 8}))

    config = build_config(parse_args(["--config", str(path), "--auto-start", "--no-auto-train", "--auto-submit"]))

    assert config.footer_rows == 8
    assert config.auto_start_pipeline is True
    assert config.auto_train_after_download is False
    assert config.auto_submit_after_training is True


def test_load_backend():
    backend = load_backend("numerai_tui.simulate:SimulatedBackend")
    assert isinstance(backend, SimulatedBackend)


@pytest.mark.parametrize("target", ["numerai_tui.simulate", "numerai_tui.config:DashboardConfig"])
def test_load_backend_rejects(target):
    with pytest.raises(ValueError):
        load_backend(target)


def test_main_config_error(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"footer_rows": 1}))

    assert main(["--config", str(path), "--log-file", str(tmp_path / "d.log")]) == 1


def test_main_bad_backend(tmp_path):
    with patch("numerai_tui.cli.logging.basicConfig"):
        assert main(["--backend", "no_such_module:Backend", "--log-file", str(tmp_path / "d.log")]) == 1


def test_main_runs_dashboard(tmp_path):
    log_file = tmp_path / "logs" / "dashboard.log"
    with patch("numerai_tui.cli.Dashboard") as mock_dashboard, \
            patch("numerai_tui.cli.logging.basicConfig"):
        assert main(["--demo", "--log-file", str(log_file)]) == 0

    config = mock_dashboard.call_args[0][0]
    backend = mock_dashboard.call_args[1]["backend"]
    assert config.auto_train_after_download is True
    assert isinstance(backend, SimulatedBackend)
    mock_dashboard.return_value.run.assert_called_once_with()
    assert log_file.parent.is_dir()
