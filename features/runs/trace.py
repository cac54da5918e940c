"""
Trace Writer — appends stage lifecycle events to artifacts/trace.jsonl.

One JSON object per line. The log is append-only and is the source the
execution status endpoint replays; readers skip lines they cannot parse.
"""

from __future__ import annotations

import json
import logging

from features.runs import store as keys
from features.runs.models import TraceEvent, TraceKind
from features.runs.store import RunStore

log = logging.getLogger(__name__)


class TraceWriter:
    """Records trace events for one run. Disabled writers keep events in memory only."""

    def __init__(self, store: RunStore | None, enabled: bool = True):
        self.store = store
        self.enabled = enabled and store is not None
        self.events: list[TraceEvent] = []

    def emit(
        self,
        kind: TraceKind,
        stage_name: str | None,
        agent_name: str | None,
        message: str | None = None,
        duration_ms: int | None = None,
    ) -> TraceEvent:
        event = TraceEvent(
            kind=kind,
            stage_name=stage_name,
            agent_name=agent_name,
            message=message,
            duration_ms=duration_ms,
        )
        self.events.append(event)
        log.debug("[TRACE] %s %s/%s", kind.value, stage_name, agent_name)
        if self.enabled:
            try:
                self.store.append_line(keys.TRACE, json.dumps(event.to_dict()))
            except OSError as e:
                log.warning("[TRACE] Failed to append event for %s: %s", agent_name, e)
        return event


def read_trace(store: RunStore) -> list[TraceEvent]:
    """Load a run's trace events in order, skipping malformed lines."""
    if not store.has(keys.TRACE):
        return []
    events: list[TraceEvent] = []
    skipped = 0
    for raw in store.read_bytes(keys.TRACE).splitlines():
        if not raw.strip():
            continue
        try:
            data = json.loads(raw.decode("utf-8"))
            if not isinstance(data, dict):
                raise TypeError(f"expected an object, got {type(data).__name__}")
            events.append(TraceEvent.from_dict(data))
        except (ValueError, KeyError, TypeError, AttributeError):
            skipped += 1
    if skipped:
        log.warning("Skipped %d malformed trace lines in %s", skipped, store.path.name)
    return events
