"""
Activity: Clarify — turns the caller's free-text request into blocking /
non-blocking questions and a draft spec, and builds the accepted
ClarifiedSpec once answers (or assumptions) are in.
"""

from __future__ import annotations

import logging

from activities.stage_runner import Agent, StageRunner
from models.schemas import (
    AssumptionRecord,
    ClarifiedSpec,
    ClarifiedSpecDraft,
    ClarifierOutput,
    Question,
    RequirementsSpec,
)
from utils.json_extract import parser_for

log = logging.getLogger(__name__)

CLARIFIER = Agent(
    name="Clarifier",
    stage="Clarifier",
    instructions=(
        "You are the Clarifier agent. Your job is to analyze an initial design prompt "
        "and ask clarifying questions.\n\n"
        "Rules:\n"
        "- Ask up to 8 clarifying questions.\n"
        "- Mark which questions are blocking (must be answered before proceeding to design) "
        "vs non-blocking.\n"
        "- Do NOT propose design details beyond a draft spec. Stay at the "
        "requirement/specification level.\n"
        "- Output ONLY valid JSON matching the ClarifierOutput schema below. No markdown, "
        "no code blocks, no explanation outside the JSON.\n\n"
        "ClarifierOutput JSON schema:\n"
        "{\n"
        '  "questions": [{"id": "Q1", "text": "question text", "blocking": true}],\n'
        '  "clarified_spec_draft": {\n'
        '    "title": "string",\n'
        '    "problem_statement": "string",\n'
        '    "goals": ["string"],\n'
        '    "non_goals": ["string"],\n'
        '    "assumptions": ["string"],\n'
        '    "constraints": ["string"],\n'
        '    "requirements": {"functional": ["string"], "non_functional": ["string"]},\n'
        '    "success_metrics": ["string"],\n'
        '    "open_questions": [{"id": "Q1", "text": "string", "blocking": true}]\n'
        "  }\n"
        "}"
    ),
)


def build_prompt(prompt: str, links: list[str] | None = None, notes: str | None = None) -> str:
    """Fold optional request context (links, notes) into the user's prompt."""
    parts = [prompt]
    if links:
        parts.append("Links:\n- " + "\n- ".join(links))
    if notes and notes.strip():
        parts.append("Notes:\n" + notes)
    return "\n\n".join(parts)


async def run_clarifier(runner: StageRunner, title: str, prompt: str) -> ClarifierOutput:
    output = await runner.run(
        CLARIFIER,
        f"Title: {title}\n\n"
        f"Initial prompt from the user:\n{prompt}\n\n"
        "Analyze this and produce your ClarifierOutput JSON.",
        parser_for(ClarifierOutput),
    )
    log.info(
        "Clarifier returned %d questions (%d blocking)",
        len(output.questions or []), len(output.blocking_questions()),
    )
    return output


def build_clarified_spec(
    draft: ClarifiedSpecDraft,
    answers: dict[str, str] | None = None,
    questions: list[Question] | None = None,
    assumptions: list[AssumptionRecord] | None = None,
) -> ClarifiedSpec:
    """
    Accept the draft as the run's ClarifiedSpec.

    Open questions keep every non-blocking question plus the blocking ones
    that are now resolved, by an answer or by an explicit assumption.
    Blocking questions raised only in the Clarifier's question list are
    folded in the same way.
    """
    answers = answers or {}
    assumptions = assumptions or []
    resolved = set(answers) | {a.question_id for a in assumptions}

    open_questions: list[Question] = []
    seen: set[str] = set()
    for q in list(draft.open_questions or []) + list(questions or []):
        if q.id in seen:
            continue
        if q.blocking and q.id not in resolved:
            continue
        if not q.blocking and q not in (draft.open_questions or []):
            continue
        seen.add(q.id)
        open_questions.append(q)

    spec_assumptions = list(draft.assumptions or [])
    spec_assumptions.extend(f"{a.question_text} -> {a.assumption}" for a in assumptions)

    return ClarifiedSpec(
        title=draft.title or "",
        problem_statement=draft.problem_statement or "",
        goals=draft.goals or [],
        non_goals=draft.non_goals or [],
        assumptions=spec_assumptions,
        constraints=draft.constraints or [],
        requirements=draft.requirements or RequirementsSpec(functional=[], non_functional=[]),
        success_metrics=draft.success_metrics or [],
        open_questions=open_questions,
    )


def answers_text(answers: dict[str, str] | None, heading: str = "User-provided answers to blocking questions") -> str:
    if not answers:
        return ""
    lines = "\n".join(f"{qid}: {text}" for qid, text in answers.items())
    return f"\n\n{heading}:\n{lines}"
