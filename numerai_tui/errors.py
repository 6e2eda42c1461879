"""
Dashboard Errors

Exception types raised by the dashboard core.
"""


class DashboardError(Exception):
    """Base class for dashboard errors."""


class InvalidProgressFields(DashboardError, ValueError):
    """A progress callback supplied a field its operation kind does not accept."""

    def __init__(self, kind: str, problems):
        self.kind = kind
        self.problems = list(problems)
        super().__init__(
            f"Invalid progress fields for {kind}:\n  - " + "\n  - ".join(self.problems)
        )


class StateLockError(DashboardError):
    """The shared dashboard state lock could not be acquired after all retries."""


class OperationCancelled(DashboardError):
    """A background operation stopped early because the dashboard is shutting down."""
