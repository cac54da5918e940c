import json
from pathlib import Path

import pytest

from activities.stage_runner import StageRunner
from features.runs.state_machine import create_run
from features.runs.store import RunStore, run_dir
from features.runs.trace import TraceWriter


class FakeGenerator:
    """Scripted generator: routes each call by a marker found in the agent instructions.

    A route's value is either a fixed response or a list consumed in order
    (the last entry repeats once the list is exhausted).
    """

    def __init__(self, routes: dict[str, str | list[str]]):
        self.routes = {marker: list(r) if isinstance(r, list) else [r] for marker, r in routes.items()}
        self.calls: list[tuple[str, str]] = []

    async def generate(self, instructions: str, prompt: str) -> str:
        self.calls.append((instructions, prompt))
        for marker, responses in self.routes.items():
            if marker in instructions:
                return responses.pop(0) if len(responses) > 1 else responses[0]
        raise AssertionError(f"No scripted response for instructions: {instructions[:80]!r}")

    def calls_for(self, marker: str) -> list[tuple[str, str]]:
        return [c for c in self.calls if marker in c[0]]


CLARIFIER_NO_BLOCKING = json.dumps({
    "questions": [{"id": "Q1", "text": "Expected peak QPS?", "blocking": False}],
    "clarified_spec_draft": {
        "title": "Rate limiter",
        "problem_statement": "Throttle requests across a fleet of API servers.",
        "goals": ["Enforce per-tenant limits"],
        "non_goals": ["Billing"],
        "assumptions": [],
        "constraints": ["p99 < 5ms overhead"],
        "requirements": {"functional": ["Token bucket per key"], "non_functional": ["HA"]},
        "success_metrics": ["No tenant exceeds quota by more than 1%"],
        "open_questions": [{"id": "Q1", "text": "Expected peak QPS?", "blocking": False}],
    },
})

CLARIFIER_BLOCKING = json.dumps({
    "questions": [
        {"id": "Q1", "text": "Which datastore is available?", "blocking": True},
        {"id": "Q2", "text": "Expected peak QPS?", "blocking": False},
    ],
    "clarified_spec_draft": {
        "title": "Rate limiter",
        "problem_statement": "Throttle requests.",
        "open_questions": [
            {"id": "Q1", "text": "Which datastore is available?", "blocking": True},
            {"id": "Q2", "text": "Expected peak QPS?", "blocking": False},
        ],
    },
})

FULL_DESIGN = {
    "overview": "Redis-backed token buckets behind a sidecar.",
    "architecture": {
        "components": [{"name": "limiter-sidecar", "responsibility": "Check and decrement buckets"}],
        "data_flow": "Request -> sidecar -> Redis -> upstream",
    },
    "api_contracts": [{"name": "POST /check", "request": "{key}", "response": "{allowed}"}],
    "data_model": [{"entity": "Bucket", "fields": "key, tokens, refilled_at"}],
    "failure_modes": [{"scenario": "Redis down", "mitigation": "Fail open with local cap"}],
    "observability": {"logs": ["decisions"], "metrics": ["rejections"], "traces": ["check span"]},
    "security": {"authn": "mTLS", "authz": "Per-tenant keys", "data_handling": "No PII"},
}

CRITIQUE = json.dumps({
    "risks": [{"risk": "Hot keys", "severity": "medium", "likelihood": "medium", "mitigation": "Shard"}],
    "missing_requirements": [],
    "questionable_assumptions": [],
    "alternatives": [{"option": "Leaky bucket", "pros": ["Smooth"], "cons": ["Bursty tenants suffer"]}],
})

OPTIMIZED = json.dumps({
    "chosen_approach_summary": "Token buckets in Redis with local fallback.",
    "changes_from_original": ["Added sharding"],
    "tradeoffs": ["Fail open"],
    "rollout_plan": ["Shadow mode first"],
    "test_plan": ["Load test"],
    "migration_plan": [],
})

PUBLISHED = json.dumps({
    "design_doc_markdown": "## Title\nRate limiter\n\n## Problem Statement\nThrottle requests.",
    "issues": [{"title": "Build sidecar", "body": "", "labels": ["infra"], "acceptance_criteria": []}],
    "pr_plan": ["PR1: sidecar skeleton"],
    "remaining_open_questions": ["Expected peak QPS?"],
})


def pipeline_routes(**overrides) -> dict[str, str | list[str]]:
    """Responses for every stage of a default run; keyword overrides replace single routes."""
    routes: dict[str, str | list[str]] = {
        "Populate ONLY these ProposedDesign keys": json.dumps(FULL_DESIGN),
        "Clarifier agent": CLARIFIER_NO_BLOCKING,
        "Assumption Builder": json.dumps({"assumptions": [{
            "question_id": "Q1",
            "question_text": "Which datastore is available?",
            "assumption": "Assume Redis",
            "risk": "Redis may be unavailable",
        }]}),
        "Design Judge": json.dumps(FULL_DESIGN),
        "Synthesizer agent": json.dumps(FULL_DESIGN),
        "Critique Judge": CRITIQUE,
        "Challenger agent": CRITIQUE,
        "Optimizer agent": OPTIMIZED,
        "Publisher agent": PUBLISHED,
        "Merger agent": json.dumps({"proposed_design": {}, "missing_sections": [], "conflicts": [], "questions": []}),
        "Consistency Checker": json.dumps({"issues": []}),
    }
    routes.update(overrides)
    return routes


@pytest.fixture
def base_dir(tmp_path: Path) -> Path:
    return tmp_path / "runs-base"


@pytest.fixture
def store(base_dir: Path) -> RunStore:
    run_store = RunStore(run_dir(base_dir, "run-1"))
    create_run(run_store, "run-1")
    return run_store


def make_runner(generator, run_store: RunStore, trace: bool = True) -> StageRunner:
    return StageRunner(generator, run_store, TraceWriter(run_store, enabled=trace))
