"""
Runs feature — persistence, lifecycle and observability of a design run.

Public API:
    from features.runs import RunStore, RunState, RunStatus, TraceWriter
    from features.runs import state_machine, status
"""

from features.runs.models import RunInput, RunState, RunStatus, TraceEvent, TraceKind
from features.runs.store import RunStore, run_dir
from features.runs.trace import TraceWriter, read_trace

__all__ = [
    "RunInput",
    "RunState",
    "RunStatus",
    "RunStore",
    "TraceEvent",
    "TraceKind",
    "TraceWriter",
    "read_trace",
    "run_dir",
]
