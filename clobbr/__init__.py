"""
clobbr - fire N HTTP requests at one endpoint, in parallel or in sequence.

Per-request timing and failure state, progress events as each request
completes, and a summary (average latency, per-request log) at the end.
"""

__version__ = "1.0.0"

from .events import EventBus, EventKind, RunEvent
from .exceptions import (
    ClobbrConfigError,
    ClobbrError,
    ClobbrRunnerError,
    ClobbrTransportError,
    ClobbrValidationError,
)
from .metrics import get_time_average
from .models import LogItem, LogMetas, RunResult, RunSettings, Verb
from .runner import RunOrchestrator, run, run_parallel, run_sequence
from .validate import validate

__all__ = [
    "__version__",
    "ClobbrConfigError",
    "ClobbrError",
    "ClobbrRunnerError",
    "ClobbrTransportError",
    "ClobbrValidationError",
    "EventBus",
    "EventKind",
    "LogItem",
    "LogMetas",
    "RunEvent",
    "RunOrchestrator",
    "RunResult",
    "RunSettings",
    "Verb",
    "get_time_average",
    "run",
    "run_parallel",
    "run_sequence",
    "validate",
]
