"""
Design Pipeline — the stage graph and the work-item handler.

  1. Clarify → questions + draft spec (pause on blocking questions)
  2. Synthesize → single pass, N variants + judge, or hybrid specialists
  3. Critique → single challenger, or four personas + judge
  4. Optimize
  5. Publish → DESIGN.md restricted to the selected sections

A work item either starts a run at the Clarifier or resumes one after
answers were submitted. Status transitions happen here; a failure escaping
a handler is turned into Failed by whoever drains the work.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

from activities.assumptions import build_assumptions, record_assumptions
from activities.clarify import answers_text, build_clarified_spec, run_clarifier
from activities.critique import critique_design
from activities.optimize import optimize_design
from activities.publish import publish_design
from activities.specialists import synthesize_hybrid
from activities.stage_runner import StageRunner
from activities.synthesize import synthesis_prompt, synthesize_single, synthesize_variants
from features.runs import store as keys
from features.runs.state_machine import transition
from features.runs.store import RunStore
from features.runs.trace import TraceWriter
from features.sections import normalize_sections
from models.schemas import (
    AssumptionRecord,
    ClarifiedSpec,
    ClarifiedSpecDraft,
    ClarifierOutput,
    Critique,
    OptimizedDesign,
    PipelineOptions,
    PipelineWorkItem,
    ProposedDesign,
    PublishedPackage,
    Question,
    SpecialistKey,
    SynthSelection,
    WorkItemKind,
)
from utils.llm import Generator

log = logging.getLogger(__name__)

SPECIALIST_ANSWERS_HEADING = "User-provided answers to specialist questions"


@dataclass
class PipelineCompleted:
    design: ProposedDesign
    critique: Critique
    optimized: OptimizedDesign
    published: PublishedPackage


@dataclass
class PipelineAwaitingQuestions:
    """Hybrid synthesis raised blocking questions; the run must pause."""
    questions: list[Question] = field(default_factory=list)


async def run_remaining_pipeline(
    runner: StageRunner,
    spec: ClarifiedSpec,
    included_sections: list[str],
    answers: dict[str, str] | None = None,
    options: PipelineOptions | None = None,
    *,
    synth_answers: dict[str, str] | None = None,
) -> PipelineCompleted | PipelineAwaitingQuestions:
    """
    Synthesize → critique → optimize → publish, persisting each artifact.

    `answers` hold the Clarifier's answered questions; `synth_answers` the
    answered specialist questions. Ids are only unique within one source,
    so only `synth_answers` can resolve a specialist's blocking question.
    """
    options = options or PipelineOptions()
    store = runner.store
    spec_json = json.dumps(spec.to_json_dict())
    answers_txt = answers_text(answers) + answers_text(synth_answers, SPECIALIST_ANSWERS_HEADING)

    if options.synth_specialists:
        outcome = await synthesize_hybrid(
            runner,
            spec_json,
            answers_txt,
            options.synth_specialists,
            answered_ids=set(synth_answers or {}),
            allow_pause=not options.allow_assumptions,
            consistency_check=options.consistency_check,
        )
        if outcome.paused:
            return PipelineAwaitingQuestions(outcome.pending_questions)
        design = outcome.design
    elif options.variants_clamped > 1:
        design = await synthesize_variants(runner, synthesis_prompt(spec_json, answers_txt), options.variants_clamped)
    else:
        design = await synthesize_single(runner, synthesis_prompt(spec_json, answers_txt))
    store.save_model(keys.PROPOSED_DESIGN, design)

    critique = await critique_design(runner, design, deep=options.deep_critique)
    store.save_model(keys.CRITIQUE, critique)

    optimized = await optimize_design(runner, design, critique)
    store.save_model(keys.OPTIMIZED_DESIGN, optimized)

    published = await publish_design(runner, spec, design, critique, optimized, included_sections)
    return PipelineCompleted(design, critique, optimized, published)


# ── Work items ────────────────────────────────────────────────────────

def load_options(store: RunStore, requested: PipelineOptions) -> PipelineOptions:
    """
    Options for a work item: the run's persisted options, with the synth
    selection record deciding the synthesis strategy. allow_assumptions may
    only be switched on by the work item, never off.
    """
    options = PipelineOptions.from_dict(store.read_json(keys.OPTIONS)) if store.has(keys.OPTIONS) else requested
    if store.has(keys.SYNTH_SELECTION):
        data = store.read_json(keys.SYNTH_SELECTION)
        selection = SynthSelection(
            synth_specialists=list(data.get("synth_specialists") or []),
            allow_assumptions=bool(data.get("allow_assumptions", False)),
        )
        options.synth_specialists = [SpecialistKey(k) for k in selection.synth_specialists]
        options.allow_assumptions = options.allow_assumptions or selection.allow_assumptions
    options.allow_assumptions = options.allow_assumptions or requested.allow_assumptions
    return options


def _draft_for(output: ClarifierOutput, title: str) -> ClarifiedSpecDraft:
    draft = output.clarified_spec_draft or ClarifiedSpecDraft()
    if not draft.title:
        draft = draft.model_copy(update={"title": title})
    return draft


async def _finish(
    store: RunStore,
    runner: StageRunner,
    spec: ClarifiedSpec,
    answers: dict[str, str],
    options: PipelineOptions,
    synth_answers: dict[str, str] | None = None,
) -> None:
    run_input = store.load_input()
    result = await run_remaining_pipeline(
        runner,
        spec,
        normalize_sections(run_input.included_sections),
        answers,
        options,
        synth_answers=synth_answers,
    )
    if isinstance(result, PipelineAwaitingQuestions):
        transition(store, "pause")
        return
    transition(store, "complete")


async def run_clarifier_item(item: PipelineWorkItem, generator: Generator) -> None:
    store = RunStore(item.run_path)
    transition(store, "start")
    options = load_options(store, item.options)
    runner = StageRunner(generator, store, TraceWriter(store, enabled=options.trace))
    run_input = store.load_input()

    output = await run_clarifier(runner, run_input.title, run_input.prompt)
    store.save_model(keys.CLARIFIER, output)

    blocking = output.blocking_questions()
    assumptions: list[AssumptionRecord] = []
    if blocking and not options.allow_assumptions:
        log.info("Run %s paused on %d blocking questions", item.run_id, len(blocking))
        transition(store, "pause")
        return
    if blocking:
        assumptions = await build_assumptions(runner, blocking, stage="Clarifier")
        record_assumptions(store, assumptions)

    spec = build_clarified_spec(
        _draft_for(output, run_input.title),
        questions=output.questions,
        assumptions=assumptions,
    )
    store.save_model(keys.CLARIFIED_SPEC, spec)
    await _finish(store, runner, spec, {}, options)


async def run_remaining_item(item: PipelineWorkItem, generator: Generator) -> None:
    """
    Resume after answers. Answers to the Clarifier's questions rebuild the
    clarified spec; answers to synthesis questions are folded into its open
    questions. Each resume reruns synthesis and may pause again on new
    blocking specialist questions unless assumptions are allowed.
    """
    store = RunStore(item.run_path)
    transition(store, "start")
    options = load_options(store, item.options)
    runner = StageRunner(generator, store, TraceWriter(store, enabled=options.trace))
    run_input = store.load_input()
    answers = dict(item.answers)

    synth_questions = store.load_model_list(keys.SYNTH_QUESTIONS, Question)
    clarifier = store.load_model(keys.CLARIFIER, ClarifierOutput) or ClarifierOutput()

    if synth_questions is not None:
        clarifier_answers = store.read_json(keys.ANSWERS) if store.has(keys.ANSWERS) else {}
        spec = store.load_model(keys.CLARIFIED_SPEC, ClarifiedSpec)
        known = {(q.id, q.text) for q in spec.open_questions}
        answered = [q for q in synth_questions if q.id in answers and (q.id, q.text) not in known]
        spec = spec.model_copy(update={"open_questions": list(spec.open_questions) + answered})
        store.save_model(keys.CLARIFIED_SPEC, spec)
        await _finish(store, runner, spec, clarifier_answers, options, synth_answers=answers)
        return

    assumptions: list[AssumptionRecord] = []
    unanswered = [q for q in clarifier.blocking_questions() if q.id not in answers]
    if unanswered and options.allow_assumptions:
        assumptions = await build_assumptions(runner, unanswered, stage="Clarifier")
        record_assumptions(store, assumptions)
    elif unanswered:
        log.warning("Run %s resumed with %d unanswered blocking questions", item.run_id, len(unanswered))

    spec = build_clarified_spec(
        _draft_for(clarifier, run_input.title),
        answers=answers,
        questions=clarifier.questions,
        assumptions=assumptions,
    )
    store.save_model(keys.CLARIFIED_SPEC, spec)
    await _finish(store, runner, spec, answers, options)


async def process_work_item(item: PipelineWorkItem, generator: Generator) -> None:
    log.info("Processing %s for run %s", item.kind.value, item.run_id)
    if item.kind == WorkItemKind.RUN_CLARIFIER:
        await run_clarifier_item(item, generator)
    else:
        await run_remaining_item(item, generator)
