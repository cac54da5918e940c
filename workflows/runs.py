"""
Run Service — creates, resumes and inspects design runs.

Requests are validated before anything touches disk; a valid request
persists the run's state, input, options and synth selection, then hands a
work item to the dispatcher (the in-process queue or Temporal).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Protocol

import config
from activities.clarify import build_prompt
from activities.specialists import parse_specialist_keys
from features.runs import store as keys
from features.runs.models import RunInput, RunState, RunStatus
from features.runs.state_machine import create_run, transition
from features.runs.status import execution_status
from features.runs.store import RunStore, run_dir, runs_root
from features.runs.trace import read_trace
from features.sections import normalize_sections
from models.schemas import (
    AssumptionRecord,
    ClarifiedSpec,
    ClarifierOutput,
    PipelineOptions,
    PipelineWorkItem,
    PublishedPackage,
    Question,
    SynthSelection,
    WorkItemKind,
)
from utils.errors import DesignNotReady, InvalidRequest, RunNotFound

log = logging.getLogger(__name__)


class Dispatcher(Protocol):
    async def enqueue(self, item: PipelineWorkItem) -> None: ...


def _questions(questions: list[Question]) -> list[dict]:
    return [q.to_json_dict() for q in questions]


class RunService:
    def __init__(self, dispatcher: Dispatcher, base_dir: str | Path | None = None):
        self.dispatcher = dispatcher
        self.base_dir = Path(base_dir) if base_dir is not None else config.DESIGN_RUN_DIR

    def store_for(self, run_id: str) -> RunStore:
        if not run_id or "/" in run_id or "\\" in run_id or ".." in run_id:
            raise RunNotFound(run_id)
        store = RunStore(run_dir(self.base_dir, run_id))
        if not store.exists():
            raise RunNotFound(run_id)
        return store

    # ── Commands ──────────────────────────────────────────────────────

    async def create_run(
        self,
        title: str,
        prompt: str,
        links: list[str] | None = None,
        notes: str | None = None,
        included_sections: list[str] | None = None,
        synth_specialists: list[str] | str | None = None,
        allow_assumptions: bool = False,
        variants: int = 1,
        deep_critique: bool = False,
        consistency_check: bool = False,
    ) -> dict:
        if not (title or "").strip():
            raise InvalidRequest("title is required")
        if not (prompt or "").strip():
            raise InvalidRequest("prompt is required")
        sections = normalize_sections(included_sections)
        specialists = parse_specialist_keys(synth_specialists)

        options = PipelineOptions(
            variants=variants,
            deep_critique=deep_critique,
            synth_specialists=specialists,
            allow_assumptions=allow_assumptions,
            trace=config.TRACE_ENABLED,
            consistency_check=consistency_check,
        )
        options.variants = options.variants_clamped

        run_id = str(uuid.uuid4())
        store = RunStore(run_dir(self.base_dir, run_id))
        state = create_run(store, run_id)
        store.save_input(RunInput(title=title.strip(), prompt=build_prompt(prompt, links, notes), included_sections=sections))
        store.write_json(keys.OPTIONS, options.to_dict())
        selection = SynthSelection(
            synth_specialists=[k.value for k in specialists],
            allow_assumptions=allow_assumptions,
        )
        store.write_json(keys.SYNTH_SELECTION, asdict(selection))

        await self.dispatcher.enqueue(PipelineWorkItem(
            kind=WorkItemKind.RUN_CLARIFIER,
            run_id=run_id,
            run_path=str(store.path),
            options=options,
        ))
        log.info("Run %s created (%d sections, specialists=%s)", run_id, len(sections), selection.synth_specialists)
        return self.envelope(store, state)

    async def submit_answers(
        self,
        run_id: str,
        answers: dict[str, str],
        allow_assumptions: bool | None = None,
    ) -> dict:
        if not answers:
            raise InvalidRequest("answers are required")
        store = self.store_for(run_id)
        state = transition(store, "resume")

        # A run paused in synthesis is answering specialist questions, whose ids
        # may repeat the Clarifier's.
        record = keys.SYNTH_ANSWERS if store.has(keys.SYNTH_QUESTIONS) else keys.ANSWERS
        accumulated = store.read_json(record) if store.has(record) else {}
        accumulated.update({k: v for k, v in answers.items() if k})
        store.write_json(record, accumulated)

        options = PipelineOptions(allow_assumptions=bool(allow_assumptions))
        await self.dispatcher.enqueue(PipelineWorkItem(
            kind=WorkItemKind.RUN_REMAINING,
            run_id=run_id,
            run_path=str(store.path),
            options=options,
            answers=accumulated,
        ))
        log.info("Run %s resumed with %d answers", run_id, len(answers))
        return self.envelope(store, state)

    # ── Queries ───────────────────────────────────────────────────────

    def pending_questions(self, store: RunStore) -> tuple[list[Question], list[Question]]:
        """(blocking, non-blocking): synthesis questions if synthesis paused, else the Clarifier's."""
        questions = store.load_model_list(keys.SYNTH_QUESTIONS, Question)
        if questions is None:
            clarifier = store.load_model(keys.CLARIFIER, ClarifierOutput)
            questions = (clarifier.questions or []) if clarifier else []
        return [q for q in questions if q.blocking], [q for q in questions if not q.blocking]

    def envelope(self, store: RunStore, state: RunState | None = None) -> dict:
        state = state or store.load_state()
        run_input = store.load_input() if store.has(keys.INPUT) else RunInput(title="", prompt="")
        blocking, non_blocking = self.pending_questions(store)
        design = None
        if state.status == RunStatus.COMPLETED and store.has(keys.DESIGN_DOC):
            design = store.read_text(keys.DESIGN_DOC)
        return {
            "runId": state.run_id,
            "status": state.status.value,
            "runPath": str(store.path),
            "includedSections": run_input.included_sections,
            "blockingQuestions": _questions(blocking),
            "nonBlockingQuestions": _questions(non_blocking),
            "designDocMarkdown": design,
        }

    def get_metadata(self, run_id: str) -> dict:
        store = self.store_for(run_id)
        state = store.load_state()
        blocking, non_blocking = self.pending_questions(store)

        remaining = None
        package = store.load_model(keys.PUBLISHED_PACKAGE, PublishedPackage)
        if package is not None:
            remaining = len(package.remaining_open_questions or [])
        else:
            spec = store.load_model(keys.CLARIFIED_SPEC, ClarifiedSpec)
            if spec is not None:
                remaining = len(spec.open_questions)
        assumptions = store.load_model_list(keys.SYNTH_ASSUMPTIONS, AssumptionRecord) or []

        return {
            **state.to_dict(),
            "hasDesignDoc": store.has(keys.DESIGN_DOC),
            "artifactPaths": {
                "state": str(store.resolve(keys.STATE)),
                "input": str(store.resolve(keys.INPUT)),
                "clarifier": str(store.resolve(keys.CLARIFIER)),
                "clarifiedSpec": str(store.resolve(keys.CLARIFIED_SPEC)),
                "publishedPackage": str(store.resolve(keys.PUBLISHED_PACKAGE)),
                "designDoc": str(store.resolve(keys.DESIGN_DOC)),
            },
            "blockingQuestions": _questions(blocking),
            "nonBlockingQuestions": _questions(non_blocking),
            "remainingOpenQuestionsCount": remaining,
            "assumptionsCount": len(assumptions),
            "executionStatus": execution_status(store, state).to_dict(),
        }

    def list_runs(self, limit: int = config.MAX_LISTED_RUNS) -> list[dict]:
        root = runs_root(self.base_dir)
        if not root.is_dir():
            return []
        states: list[RunState] = []
        for path in root.iterdir():
            if not path.is_dir():
                continue
            try:
                states.append(RunStore(path).load_state())
            except RunNotFound:
                log.warning("Skipping run directory without a readable state: %s", path.name)
        states.sort(key=lambda s: s.created_at, reverse=True)
        return [s.to_dict() for s in states[:limit]]

    def get_trace(self, run_id: str) -> list[dict]:
        return [e.to_dict() for e in read_trace(self.store_for(run_id))]

    def get_execution(self, run_id: str) -> dict:
        store = self.store_for(run_id)
        return execution_status(store, store.load_state()).to_dict()

    def get_design(self, run_id: str) -> str:
        store = self.store_for(run_id)
        state = store.load_state()
        if state.status != RunStatus.COMPLETED or not store.has(keys.DESIGN_DOC):
            raise DesignNotReady(run_id)
        return store.read_text(keys.DESIGN_DOC)
