"""Activity: Optimize — revises the design against its critique."""

from __future__ import annotations

import json

from activities.stage_runner import Agent, StageRunner
from models.schemas import Critique, OptimizedDesign, ProposedDesign
from utils.json_extract import parser_for

OPTIMIZER = Agent(
    name="Optimizer",
    stage="Optimizer",
    instructions=(
        "You are the Optimizer agent. Revise and simplify a design based on critique, choose "
        "tradeoffs, and produce rollout/test/migration plans.\n\n"
        "Rules:\n"
        "- Output ONLY valid JSON matching the OptimizedDesign schema below. No markdown, no "
        "code blocks, no explanation outside the JSON.\n\n"
        "OptimizedDesign JSON schema:\n"
        "{\n"
        '  "chosen_approach_summary": "string",\n'
        '  "changes_from_original": ["string"],\n'
        '  "tradeoffs": ["string"],\n'
        '  "rollout_plan": ["string"],\n'
        '  "test_plan": ["string"],\n'
        '  "migration_plan": ["string"]\n'
        "}"
    ),
)


async def optimize_design(runner: StageRunner, design: ProposedDesign, critique: Critique) -> OptimizedDesign:
    return await runner.run(
        OPTIMIZER,
        f"Proposed design:\n{json.dumps(design.to_json_dict())}\n\n"
        f"Critique:\n{json.dumps(critique.to_json_dict())}\n\n"
        "Produce your OptimizedDesign JSON.",
        parser_for(OptimizedDesign),
    )
