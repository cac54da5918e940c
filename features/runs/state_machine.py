"""Run lifecycle state machine using the ``transitions`` library.

Running -> AwaitingClarifications -> Running -> Completed, with Failed
reachable from any non-terminal state. Completed and Failed are terminal.
Every transition persists state.json with a fresh updatedAt; the machine is
rebuilt from the persisted status each time, so the file is the only clock.
"""

from __future__ import annotations

import logging
from typing import Any

from transitions import Machine, MachineError

from features.runs.models import RunState, RunStatus, utc_now
from features.runs.store import RunStore
from utils.errors import InvalidRunState

log = logging.getLogger(__name__)

RUNNING = RunStatus.RUNNING.value
AWAITING = RunStatus.AWAITING_CLARIFICATIONS.value
COMPLETED = RunStatus.COMPLETED.value
FAILED = RunStatus.FAILED.value

STATES: list[str] = [RUNNING, AWAITING, COMPLETED, FAILED]

TRANSITIONS: list[dict[str, Any]] = [
    # A queued stage picks the run up; refreshes updatedAt only.
    {"trigger": "start", "source": RUNNING, "dest": RUNNING},
    {"trigger": "pause", "source": RUNNING, "dest": AWAITING},
    {"trigger": "resume", "source": AWAITING, "dest": RUNNING},
    {"trigger": "complete", "source": RUNNING, "dest": COMPLETED},
    {"trigger": "fail", "source": [RUNNING, AWAITING], "dest": FAILED},
]


class RunLifecycle:
    """Model object for the run state machine, bound to one run's store."""

    def __init__(self, store: RunStore, run_state: RunState):
        self.store = store
        self.run_state = run_state
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=run_state.status.value,
            auto_transitions=False,
            after_state_change="_persist",
        )

    @classmethod
    def load(cls, store: RunStore) -> RunLifecycle:
        return cls(store, store.load_state())

    @property
    def status(self) -> RunStatus:
        return RunStatus(self.state)

    def _persist(self) -> None:
        previous = self.run_state.status
        self.run_state.status = self.status
        self.run_state.updated_at = utc_now()
        self.store.save_state(self.run_state)
        if previous != self.run_state.status:
            log.info("Run %s: %s -> %s", self.run_state.run_id, previous.value, self.run_state.status.value)

    def apply(self, trigger: str) -> RunState:
        """Fire `trigger`, raising InvalidRunState when the current status forbids it."""
        try:
            self.trigger(trigger)
        except MachineError as e:
            raise InvalidRunState(
                f"Cannot {trigger} run {self.run_state.run_id} in status {self.state}"
            ) from e
        return self.run_state


def create_run(store: RunStore, run_id: str) -> RunState:
    """Created -> Running: persist the initial state of a new run."""
    now = utc_now()
    state = RunState(run_id=run_id, status=RunStatus.RUNNING, created_at=now, updated_at=now)
    store.ensure_dirs()
    store.save_state(state)
    log.info("Run %s created", run_id)
    return state


def transition(store: RunStore, trigger: str) -> RunState:
    return RunLifecycle.load(store).apply(trigger)


def mark_failed(store: RunStore, reason: str = "") -> None:
    """Best effort: force the run to Failed. Errors while doing so are logged, not raised."""
    try:
        transition(store, "fail")
        log.error("Run %s failed: %s", store.path.name, reason)
    except Exception as e:
        log.warning("Could not mark run %s as failed: %s", store.path.name, e)
