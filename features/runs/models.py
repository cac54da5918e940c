"""
Data models for the runs feature.

RunState is what state.json holds; TraceEvent is one line of trace.jsonl.
Both serialize with the camelCase keys the API and the trace log expose.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunStatus(str, Enum):
    RUNNING = "Running"
    AWAITING_CLARIFICATIONS = "AwaitingClarifications"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


@dataclass
class RunState:
    run_id: str
    status: RunStatus
    created_at: str
    updated_at: str

    def to_dict(self) -> dict:
        return {
            "runId": self.run_id,
            "status": self.status.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RunState:
        return cls(
            run_id=data["runId"],
            status=RunStatus(data["status"]),
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt", ""),
        )


@dataclass
class RunInput:
    """The caller's request as submitted."""
    title: str
    prompt: str
    included_sections: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "prompt": self.prompt,
            "includedSections": list(self.included_sections),
        }

    @classmethod
    def from_dict(cls, data: dict) -> RunInput:
        return cls(
            title=data.get("title", ""),
            prompt=data.get("prompt", ""),
            included_sections=list(data.get("includedSections") or []),
        )


class TraceKind(str, Enum):
    STAGE_START = "stage_start"
    MODEL_CALL = "model_call"
    JSON_PARSE_FAILURE = "json_parse_failure"
    RETRY_USED = "retry_used"
    STAGE_END = "stage_end"


@dataclass
class TraceEvent:
    """One execution log entry. Never holds prompt or response text."""
    kind: TraceKind
    stage_name: str | None = None
    agent_name: str | None = None
    message: str | None = None
    duration_ms: int | None = None
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "kind": self.kind.value,
            "stageName": self.stage_name,
            "agentName": self.agent_name,
            "message": self.message,
            "durationMs": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TraceEvent:
        duration = data.get("durationMs")
        return cls(
            kind=TraceKind(data["kind"]),
            stage_name=data.get("stageName"),
            agent_name=data.get("agentName"),
            message=data.get("message"),
            duration_ms=int(duration) if duration is not None else None,
            timestamp=data.get("timestamp", ""),
        )
