"""
Activity: Critique — challenges the proposed design.

Single pass by default; deep critique runs one challenger per persona
in sequence and lets a judge merge their findings.
"""

from __future__ import annotations

import json
import logging

from activities.stage_runner import Agent, StageRunner
from features.runs import store as keys
from models.schemas import Critique, CritiquePersona, ProposedDesign
from utils.json_extract import parser_for

log = logging.getLogger(__name__)

STAGE = "Challenger"

CRITIQUE_SCHEMA = (
    "Critique JSON schema:\n"
    "{\n"
    '  "risks": [{"risk": "string", "severity": "low|medium|high", '
    '"likelihood": "low|medium|high", "mitigation": "string"}],\n'
    '  "missing_requirements": ["string"],\n'
    '  "questionable_assumptions": ["string"],\n'
    '  "alternatives": [{"option": "string", "pros": ["string"], "cons": ["string"]}]\n'
    "}"
)

_RULES = (
    "Rules:\n"
    "- Output ONLY valid JSON matching the Critique schema below. No markdown, no code "
    "blocks, no explanation outside the JSON.\n\n"
)

CHALLENGER = Agent(
    name="Challenger",
    stage=STAGE,
    instructions=(
        "You are the Challenger agent. Critique a proposed technical design for risks, missing "
        "requirements, failure modes, security, ops, and edge cases.\n\n"
        + _RULES + CRITIQUE_SCHEMA
    ),
)

PERSONA_FOCUS = {
    CritiquePersona.SECURITY: (
        "Security",
        "security risks, authn/authz gaps, data handling, and compliance",
    ),
    CritiquePersona.OPERATIONS: (
        "Operations",
        "operational concerns: deployability, runbooks, failure modes, scaling, and maintenance",
    ),
    CritiquePersona.COST: (
        "Cost",
        "cost: infrastructure, licensing, team effort, and trade-offs that affect budget",
    ),
    CritiquePersona.EDGE_CASES: (
        "Edge Cases",
        "edge cases, failure scenarios, boundary conditions, and rare but important scenarios",
    ),
}

CRITIQUE_JUDGE = Agent(
    name="CritiqueJudge",
    stage=STAGE,
    instructions=(
        "You are the Critique Judge. Given four critique perspectives (Security, Operations, "
        "Cost, Edge Cases) as JSON, merge them into a single coherent Critique.\n\n"
        + _RULES + CRITIQUE_SCHEMA
    ),
)


def persona_agent(persona: CritiquePersona) -> Agent:
    label, focus = PERSONA_FOCUS[persona]
    return Agent(
        name=f"Challenger_{persona.value}",
        stage=STAGE,
        instructions=(
            f"You are the Challenger agent ({label} perspective). Critique the proposed design "
            f"for {focus}.\n\n" + _RULES + CRITIQUE_SCHEMA
        ),
    )


def _prompt(design: ProposedDesign) -> str:
    return f"Proposed design:\n{json.dumps(design.to_json_dict())}\n\nProduce your Critique JSON."


async def critique_design(runner: StageRunner, design: ProposedDesign, deep: bool = False) -> Critique:
    if not deep:
        return await runner.run(CHALLENGER, _prompt(design), parser_for(Critique))

    critiques: list[Critique] = []
    for persona in CritiquePersona:
        result = await runner.run(persona_agent(persona), _prompt(design), parser_for(Critique))
        critiques.append(result)
        runner.store.write_json(f"artifacts/critique.{persona.value}.json", result.to_json_dict())

    merged = await runner.run(
        CRITIQUE_JUDGE,
        "Critique perspectives (Security, Operations, Cost, Edge Cases):\n"
        + json.dumps([c.to_json_dict() for c in critiques])
        + "\n\nMerge into a single Critique JSON.",
        parser_for(Critique),
    )
    runner.store.write_json(keys.CRITIQUE_JUDGE, merged.to_json_dict())
    log.info("Critique judge merged %d perspectives (%d risks)", len(critiques), len(merged.risks or []))
    return merged
