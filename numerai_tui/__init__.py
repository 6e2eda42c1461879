"""
Numerai Tournament Dashboard

Live terminal dashboard for Numerai tournament operations: sticky
progress header, event footer, instant keyboard commands and
download-then-train automation.
"""

from .callbacks import OperationCallbackAdapter
from .config import DashboardConfig, load_config
from .dashboard import Dashboard
from .errors import DashboardError, InvalidProgressFields, OperationCancelled, StateLockError
from .events import EventLog, Severity
from .operations import OperationBackend, OperationRunner
from .progress import OperationKind, Phase
from .simulate import SimulatedBackend

__version__ = "0.1.0"

__all__ = [
    'Dashboard',
    'DashboardConfig',
    'load_config',
    'OperationCallbackAdapter',
    'OperationBackend',
    'OperationRunner',
    'OperationKind',
    'Phase',
    'EventLog',
    'Severity',
    'SimulatedBackend',
    'DashboardError',
    'InvalidProgressFields',
    'OperationCancelled',
    'StateLockError',
]
