"""
Dashboard Configuration

Startup settings for the live dashboard: auto-trigger policy, render
cadence, event log size, input polling and lock retries.
"""

import json
import os
from pathlib import Path
from typing import List, Optional, Set, Union

from pydantic import BaseModel, Field, field_validator, model_validator

# Base directory for dashboard logs
# TUNABLE: Change if ~/.local is not writable
DASHBOARD_DIR = os.environ.get("NUMERAI_TUI_DIR", os.path.expanduser("~/.local/numerai_tui"))

# Log file (the terminal belongs to the dashboard while it runs)
LOG_FILE = os.environ.get("NUMERAI_TUI_LOG_FILE", os.path.join(DASHBOARD_DIR, "logs", "dashboard.log"))

ENV_PREFIX = "NUMERAI_TUI_"

DEFAULT_REQUIRED_DOWNLOADS = ("train", "validation", "live")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class DashboardConfig(BaseModel):
    """Configuration for the live dashboard."""

    # Auto-trigger policy
    auto_train_after_download: bool = Field(
        default=True,
        description="Start training once every required dataset has been downloaded"
    )

    required_download_ids: Set[str] = Field(
        default_factory=lambda: set(DEFAULT_REQUIRED_DOWNLOADS),
        description="Dataset ids that make up one complete download cycle"
    )

    auto_submit_after_training: bool = Field(
        default=False,
        description="Submit predictions once training completes"
    )

    auto_start_pipeline: bool = Field(
        default=False,
        description="Start the download cycle automatically after startup"
    )

    auto_start_delay: float = Field(
        default=2.0,
        ge=0.0,
        le=600.0,
        description="Seconds to wait before the automatic pipeline start"
    )

    # Render cadence
    refresh_rate_idle: float = Field(
        default=1.0,
        ge=0.1,
        le=10.0,
        description="Seconds between frames when no operation is active"
    )

    refresh_rate_active: float = Field(
        default=0.2,
        ge=0.02,
        le=5.0,
        description="Seconds between frames while any operation is active"
    )

    footer_rows: int = Field(
        default=10,
        ge=3,
        le=40,
        description="Height of the sticky event log footer"
    )

    color: bool = Field(
        default=True,
        description="Use ANSI colours for severities and progress bars"
    )

    # Event log
    event_log_capacity: int = Field(
        default=30,
        ge=1,
        le=1000,
        description="Maximum number of events kept for the footer"
    )

    # Progress staleness
    stale_after: float = Field(
        default=300.0,
        ge=0.0,
        description="Mark an operation inactive after this many seconds without callbacks (0 disables)"
    )

    # Input loop
    input_poll_interval: float = Field(
        default=0.05,
        ge=0.01,
        le=1.0,
        description="Upper bound on how long a blocked key read ignores the stop signal"
    )

    # Shared state lock
    lock_timeout: float = Field(
        default=1.0,
        gt=0.0,
        le=30.0,
        description="Seconds to wait for the state lock per attempt"
    )

    lock_retries: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Attempts before a lock failure becomes fatal"
    )

    # System metrics
    disk_path: str = Field(
        default=".",
        description="Filesystem whose free space is shown in the header"
    )

    # Simulated backend
    models: List[str] = Field(
        default_factory=lambda: ["default_model"],
        description="Model names trained by the simulated backend"
    )

    @field_validator("required_download_ids")
    @classmethod
    def validate_required_downloads(cls, v):
        """Require at least one non-empty dataset id."""
        cleaned = {item.strip() for item in v if item and item.strip()}
        if not cleaned:
            raise ValueError("required_download_ids must name at least one dataset")
        return cleaned

    @field_validator("models")
    @classmethod
    def validate_models(cls, v):
        if not v:
            raise ValueError("models must not be empty")
        return v

    @model_validator(mode="after")
    def validate_cadence(self):
        """The active cadence must not be slower than the idle one."""
        if self.refresh_rate_active > self.refresh_rate_idle:
            raise ValueError(
                f"refresh_rate_active ({self.refresh_rate_active}) must be <= "
                f"refresh_rate_idle ({self.refresh_rate_idle})"
            )
        return self

    @classmethod
    def from_env(cls) -> "DashboardConfig":
        """Load configuration from NUMERAI_TUI_* environment variables."""
        values = {
            "auto_train_after_download": _env_bool("AUTO_TRAIN", True),
            "auto_submit_after_training": _env_bool("AUTO_SUBMIT", False),
            "auto_start_pipeline": _env_bool("AUTO_START", False),
            "auto_start_delay": float(os.getenv(ENV_PREFIX + "AUTO_START_DELAY", "2.0")),
            "refresh_rate_idle": float(os.getenv(ENV_PREFIX + "REFRESH_IDLE", "1.0")),
            "refresh_rate_active": float(os.getenv(ENV_PREFIX + "REFRESH_ACTIVE", "0.2")),
            "footer_rows": int(os.getenv(ENV_PREFIX + "FOOTER_ROWS", "10")),
            "color": _env_bool("COLOR", True),
            "event_log_capacity": int(os.getenv(ENV_PREFIX + "EVENT_LOG_CAPACITY", "30")),
            "stale_after": float(os.getenv(ENV_PREFIX + "STALE_AFTER", "300")),
            "input_poll_interval": float(os.getenv(ENV_PREFIX + "INPUT_POLL", "0.05")),
            "disk_path": os.getenv(ENV_PREFIX + "DISK_PATH", "."),
        }

        required = os.getenv(ENV_PREFIX + "REQUIRED_DOWNLOADS")
        if required:
            values["required_download_ids"] = set(required.split(","))

        models = os.getenv(ENV_PREFIX + "MODELS")
        if models:
            values["models"] = [m.strip() for m in models.split(",") if m.strip()]

        return cls(**values)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "DashboardConfig":
        """
        Load configuration from a JSON file.

        Keys missing from the file keep their defaults. Unknown keys are
        rejected so typos fail fast.
        """
        with open(path) as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a JSON object")

        unknown = sorted(set(data) - set(cls.model_fields))
        if unknown:
            raise ValueError(f"Unknown config field(s) in {path}: {', '.join(unknown)}")

        return cls(**data)


def load_config(path: Optional[Union[str, Path]] = None) -> DashboardConfig:
    """Load config from a file when given, otherwise from the environment."""
    if path:
        return DashboardConfig.from_file(path)
    return DashboardConfig.from_env()
