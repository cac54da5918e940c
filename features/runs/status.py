"""
Execution status reconstruction.

Answers "what stage is this run in right now" by folding the trace log into
completed / active / pending stage sets. Runs recorded without a trace fall
back to inferring progress from which stage artifacts exist. Both folds are
pure; `execution_status` is the only function here that touches the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from features.runs import store as keys
from features.runs.models import RunState, RunStatus, TraceEvent, TraceKind
from features.runs.store import RunStore
from features.runs.trace import read_trace

# Top-level pipeline stages in execution order, and the artifact each leaves behind.
PIPELINE_STAGES: tuple[str, ...] = ("Clarifier", "Synthesizer", "Challenger", "Optimizer", "Publisher")

STAGE_ARTIFACTS: dict[str, str] = {
    "Clarifier": keys.CLARIFIER,
    "Synthesizer": keys.PROPOSED_DESIGN,
    "Challenger": keys.CRITIQUE,
    "Optimizer": keys.OPTIMIZED_DESIGN,
    "Publisher": keys.PUBLISHED_PACKAGE,
}


@dataclass
class StageProgress:
    completed: list[str] = field(default_factory=list)
    active: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    completed_agents: list[str] = field(default_factory=list)
    active_agents: list[str] = field(default_factory=list)


@dataclass
class ExecutionStatus:
    run_id: str
    status: str
    current_stage: str
    current_agent: str | None
    progress: StageProgress

    def to_dict(self) -> dict:
        return {
            "runId": self.run_id,
            "status": self.status,
            "currentStage": self.current_stage,
            "currentAgent": self.current_agent,
            "completedStages": list(self.progress.completed),
            "activeStages": list(self.progress.active),
            "pendingStages": list(self.progress.pending),
            "completedAgents": list(self.progress.completed_agents),
            "activeAgents": list(self.progress.active_agents),
            "progress": {"current": len(self.progress.completed), "total": len(PIPELINE_STAGES)},
        }


def fold_events(events: list[TraceEvent], status: RunStatus = RunStatus.RUNNING) -> StageProgress:
    """Fold trace events into stage progress.

    Stages before the furthest stage seen are completed. The furthest stage
    is active while an agent in it is open (started, not ended) or the run
    is still Running; otherwise it is completed. A Completed run has every
    stage completed.
    """
    open_agents: dict[str, str | None] = {}
    completed_agents: list[str] = []
    frontier = -1

    for event in events:
        if event.stage_name in PIPELINE_STAGES:
            frontier = max(frontier, PIPELINE_STAGES.index(event.stage_name))
        agent = event.agent_name
        if not agent:
            continue
        if event.kind == TraceKind.STAGE_START:
            open_agents.pop(agent, None)
            open_agents[agent] = event.stage_name
        elif event.kind == TraceKind.STAGE_END:
            open_agents.pop(agent, None)
            if agent not in completed_agents:
                completed_agents.append(agent)

    progress = StageProgress(completed_agents=completed_agents, active_agents=list(open_agents))
    if status == RunStatus.COMPLETED:
        progress.completed = list(PIPELINE_STAGES)
        progress.active_agents = []
        return progress

    for i, stage in enumerate(PIPELINE_STAGES):
        if i < frontier:
            progress.completed.append(stage)
        elif i == frontier:
            stage_open = any(s == stage for s in open_agents.values())
            if stage_open or status == RunStatus.RUNNING:
                progress.active.append(stage)
            else:
                progress.completed.append(stage)
        else:
            progress.pending.append(stage)
    return progress


def infer_from_artifacts(present: set[str], status: RunStatus = RunStatus.RUNNING) -> StageProgress:
    """Infer stage progress from the set of artifact keys that exist."""
    progress = StageProgress()
    if status == RunStatus.COMPLETED:
        progress.completed = list(PIPELINE_STAGES)
        return progress
    for stage in PIPELINE_STAGES:
        if STAGE_ARTIFACTS[stage] in present:
            progress.completed.append(stage)
        elif not progress.active and status == RunStatus.RUNNING:
            progress.active.append(stage)
        else:
            progress.pending.append(stage)
    return progress


def _current_stage(progress: StageProgress, status: RunStatus) -> str:
    if status == RunStatus.COMPLETED:
        return "Completed"
    if status == RunStatus.AWAITING_CLARIFICATIONS:
        return "AwaitingClarifications"
    if progress.active:
        return progress.active[0]
    if status == RunStatus.FAILED:
        return progress.completed[-1] if progress.completed else PIPELINE_STAGES[0]
    return progress.pending[0] if progress.pending else PIPELINE_STAGES[-1]


def build_status(run_state: RunState, progress: StageProgress) -> ExecutionStatus:
    return ExecutionStatus(
        run_id=run_state.run_id,
        status=run_state.status.value,
        current_stage=_current_stage(progress, run_state.status),
        current_agent=progress.active_agents[-1] if progress.active_agents else None,
        progress=progress,
    )


def execution_status(store: RunStore, run_state: RunState) -> ExecutionStatus:
    events = read_trace(store)
    if events:
        progress = fold_events(events, run_state.status)
    else:
        present = {key for key in STAGE_ARTIFACTS.values() if store.has(key)}
        progress = infer_from_artifacts(present, run_state.status)
    return build_status(run_state, progress)
