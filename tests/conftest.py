import pytest

from numerai_tui.auto_trigger import AutoTriggerPolicy
from numerai_tui.callbacks import OperationCallbackAdapter
from numerai_tui.metrics import SystemMetricsSnapshot
from numerai_tui.state import DashboardState

REQUIRED = {"train", "validation", "live"}


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FixedSampler:
    """Metrics sampler stand-in; never touches psutil."""

    def __init__(self, snapshot=None):
        self.snapshot = snapshot or SystemMetricsSnapshot(
            cpu_percent=12.5,
            mem_used_gb=8.0,
            mem_total_gb=16.0,
            disk_free_gb=120.0,
            disk_total_gb=500.0,
            uptime_seconds=65,
        )
        self.calls = 0

    def sample(self):
        self.calls += 1
        return self.snapshot

    def start(self):
        pass

    def stop(self, timeout=None):
        pass


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def state(clock):
    return DashboardState(clock=clock)


@pytest.fixture
def launches():
    return []


@pytest.fixture
def policy(state, launches):
    return AutoTriggerPolicy(
        state,
        REQUIRED,
        launch_training=lambda: launches.append("train"),
        launch_submit=lambda: launches.append("submit"),
    )


@pytest.fixture
def adapter(state, policy):
    return OperationCallbackAdapter(state, policy, stale_after=300.0)


@pytest.fixture
def sampler():
    return FixedSampler()
