"""
Activity: Assumption Builder — turns unanswered blocking questions into
explicit, conservative assumptions so a run can proceed without pausing.

This is the one stage whose parse failure does not fail the run: if the
builder yields nothing, each question gets a deterministic fallback.
"""

from __future__ import annotations

import json
import logging

from activities.stage_runner import Agent, StageRunner
from features.runs import store as keys
from features.runs.store import RunStore
from models.schemas import AssumptionBuilderOutput, AssumptionRecord, Question
from utils.errors import InvalidShape
from utils.json_extract import parser_for

log = logging.getLogger(__name__)

FALLBACK_ASSUMPTION = "Assume TBD; design uses configurable defaults"
FALLBACK_RISK = "The design may need revision once this question is answered."

_INSTRUCTIONS = (
    "You are the Assumption Builder. Given a list of blocking questions that could not "
    "be answered, produce explicit assumptions so the design can proceed.\n\n"
    "Rules:\n"
    '- Output ONLY valid JSON: an object with a single key "assumptions" whose value is '
    "an array of objects.\n"
    '- Each object must have: "question_id" (string), "question_text" (string), '
    '"assumption" (string, explicit conservative default), "risk" (string).\n'
    "- assumption should be a clear, conservative default (e.g. \"Assume TBD; design uses "
    'configurable defaults" or a specific technical assumption).\n'
    "- risk should briefly state what could go wrong if the assumption is wrong.\n\n"
    "Schema:\n"
    '{"assumptions": [{"question_id": "string", "question_text": "string", '
    '"assumption": "string", "risk": "string"}]}'
)


def assumption_builder(stage: str) -> Agent:
    return Agent(name="AssumptionBuilder", stage=stage, instructions=_INSTRUCTIONS)


def fallback_assumptions(questions: list[Question]) -> list[AssumptionRecord]:
    return [
        AssumptionRecord(
            question_id=q.id,
            question_text=q.text,
            assumption=FALLBACK_ASSUMPTION,
            risk=FALLBACK_RISK,
        )
        for q in questions
    ]


async def build_assumptions(
    runner: StageRunner,
    questions: list[Question],
    stage: str = "Synthesizer",
) -> list[AssumptionRecord]:
    """One builder stage over `questions`; never fails on bad output."""
    if not questions:
        return []
    payload = json.dumps([q.to_json_dict() for q in questions])
    try:
        output = await runner.run(
            assumption_builder(stage),
            f"Blocking questions (produce one assumption per question):\n{payload}\n\n"
            "Output your assumptions JSON.",
            parser_for(AssumptionBuilderOutput),
        )
        assumptions = output.assumptions or []
    except InvalidShape as e:
        log.warning("Assumption builder output unusable, using fallback: %s", e.detail)
        assumptions = []

    if not assumptions:
        assumptions = fallback_assumptions(questions)
    log.info("Built %d assumptions for %d blocking questions", len(assumptions), len(questions))
    return assumptions


def record_assumptions(store: RunStore, assumptions: list[AssumptionRecord]) -> list[AssumptionRecord]:
    """Append to the run's assumptions record; returns the full list."""
    recorded = store.load_model_list(keys.SYNTH_ASSUMPTIONS, AssumptionRecord) or []
    recorded.extend(assumptions)
    store.save_model(keys.SYNTH_ASSUMPTIONS, recorded)
    return recorded
