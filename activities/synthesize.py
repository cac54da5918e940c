"""
Activity: Synthesize — produces a ProposedDesign from the clarified spec,
either in a single pass or as N divergent variants reduced by a judge.
"""

from __future__ import annotations

import json
import logging

from activities.stage_runner import Agent, StageRunner
from models.schemas import ProposedDesign
from utils.json_extract import parser_for

log = logging.getLogger(__name__)

STAGE = "Synthesizer"

PROPOSED_DESIGN_SCHEMA = (
    "ProposedDesign JSON schema:\n"
    "{\n"
    '  "overview": "string",\n'
    '  "architecture": {"components": [{"name": "string", "responsibility": "string"}], '
    '"data_flow": "string"},\n'
    '  "api_contracts": [{"name": "string", "request": "string", "response": "string"}],\n'
    '  "data_model": [{"entity": "string", "fields": "string"}],\n'
    '  "failure_modes": [{"scenario": "string", "mitigation": "string"}],\n'
    '  "observability": {"logs": ["string"], "metrics": ["string"], "traces": ["string"]},\n'
    '  "security": {"authn": "string", "authz": "string", "data_handling": "string"}\n'
    "}"
)

SYNTHESIZER_INSTRUCTIONS = (
    "You are the Synthesizer agent. Given a clarified specification, propose a coherent "
    "technical design.\n\n"
    "Rules:\n"
    "- Output ONLY valid JSON matching the ProposedDesign schema below. No markdown, no code "
    "blocks, no explanation outside the JSON.\n\n"
    + PROPOSED_DESIGN_SCHEMA
)

SYNTHESIZER = Agent(name="Synthesizer", stage=STAGE, instructions=SYNTHESIZER_INSTRUCTIONS)

DESIGN_JUDGE = Agent(
    name="DesignJudge",
    stage=STAGE,
    instructions=(
        "You are the Design Judge. Given several ProposedDesign variants (as JSON), select the "
        "best one or merge the best aspects into a single coherent ProposedDesign.\n\n"
        "Rules:\n"
        "- Output ONLY valid JSON matching the ProposedDesign schema. No markdown, no code "
        "blocks, no explanation outside the JSON.\n\n"
        + PROPOSED_DESIGN_SCHEMA
    ),
)

# Appended to the synthesis prompt so each variant explores a different direction.
VARIANT_FOCUS = {
    1: "the simplest design that meets the requirements",
    2: "horizontal scalability and throughput",
    3: "operability: failure isolation, recovery and observability",
    4: "cost efficiency and use of managed services",
    5: "security and data protection first",
}


def variant_suffix(index: int) -> str:
    focus = VARIANT_FOCUS.get(index, "a distinct alternative approach")
    return f"\n\nVariant {index}: optimize this design for {focus}. Make it meaningfully different from other variants."


def synthesis_prompt(spec_json: str, answers_text: str = "") -> str:
    return f"Clarified specification:\n{spec_json}{answers_text}\n\nProduce your ProposedDesign JSON."


async def synthesize_single(runner: StageRunner, prompt: str) -> ProposedDesign:
    return await runner.run(SYNTHESIZER, prompt, parser_for(ProposedDesign))


async def synthesize_variants(runner: StageRunner, prompt: str, count: int) -> ProposedDesign:
    """Run `count` independent syntheses, persist each, and let the judge pick or merge."""
    variants: list[ProposedDesign] = []
    for i in range(1, count + 1):
        agent = Agent(name=f"Synthesizer_Variant{i}", stage=STAGE, instructions=SYNTHESIZER_INSTRUCTIONS)
        design = await runner.run(agent, prompt + variant_suffix(i), parser_for(ProposedDesign))
        variants.append(design)
        runner.store.write_json(f"artifacts/synthesis.variant{i}.json", design.to_json_dict())

    variants_json = json.dumps([v.to_json_dict() for v in variants])
    chosen = await runner.run(
        DESIGN_JUDGE,
        f"ProposedDesign variants (pick or merge into one):\n{variants_json}\n\n"
        "Output a single ProposedDesign JSON.",
        parser_for(ProposedDesign),
    )
    runner.store.write_json("artifacts/synthesis.judge.json", chosen.to_json_dict())
    log.info("Design judge selected from %d variants", count)
    return chosen
