"""
Activity: Publish — renders the final markdown document and work breakdown,
restricted to the run's selected sections.

Whatever the Publisher returns, the package records the normalized
section list, and carries no issues or PR plan unless work_breakdown
was selected.
"""

from __future__ import annotations

import json
import logging

from activities.stage_runner import Agent, StageRunner
from features.runs import store as keys
from features.sections import heading_mapping_text
from models.schemas import ClarifiedSpec, Critique, OptimizedDesign, ProposedDesign, PublishedPackage
from utils.json_extract import parser_for

log = logging.getLogger(__name__)

PUBLISHER = Agent(
    name="Publisher",
    stage="Publisher",
    instructions=(
        "You are the Publisher agent. Produce a final markdown design document and an issue "
        "breakdown.\n\n"
        "Rules:\n"
        "- design_doc_markdown must contain ONLY the sections listed in the request, in the "
        "given order, each under the exact heading given for it.\n"
        "- Only populate issues and pr_plan when the Work Breakdown section is requested; "
        "otherwise return empty arrays.\n"
        "- Output ONLY valid JSON matching the PublishedPackage schema below. No markdown code "
        "blocks around the JSON, no explanation outside the JSON.\n\n"
        "PublishedPackage JSON schema:\n"
        "{\n"
        '  "design_doc_markdown": "string (complete markdown document)",\n'
        '  "issues": [{"title": "string", "body": "string", "labels": ["string"], '
        '"acceptance_criteria": ["string"]}],\n'
        '  "pr_plan": ["string"],\n'
        '  "remaining_open_questions": ["string"]\n'
        "}"
    ),
)


def publish_prompt(
    spec: ClarifiedSpec,
    design: ProposedDesign,
    critique: Critique,
    optimized: OptimizedDesign,
    included_sections: list[str],
) -> str:
    return (
        f"Clarified spec: {json.dumps(spec.to_json_dict())}\n"
        f"Proposed design: {json.dumps(design.to_json_dict())}\n"
        f"Critique: {json.dumps(critique.to_json_dict())}\n"
        f"Optimized design: {json.dumps(optimized.to_json_dict())}\n\n"
        "Include ONLY these sections, in this order, using these exact headings:\n"
        f"{heading_mapping_text(included_sections)}\n\n"
        "Produce your PublishedPackage JSON."
    )


def enforce_selection(
    package: PublishedPackage,
    included_sections: list[str],
    spec: ClarifiedSpec | None = None,
) -> PublishedPackage:
    """Pin the package to the selected sections."""
    work_breakdown = "work_breakdown" in included_sections
    remaining = package.remaining_open_questions
    if remaining is None and spec is not None:
        remaining = [q.text for q in spec.open_questions]
    return package.model_copy(update={
        "design_doc_markdown": package.design_doc_markdown or "",
        "issues": (package.issues or []) if work_breakdown else [],
        "pr_plan": (package.pr_plan or []) if work_breakdown else [],
        "remaining_open_questions": remaining or [],
        "included_sections": list(included_sections),
    })


async def publish_design(
    runner: StageRunner,
    spec: ClarifiedSpec,
    design: ProposedDesign,
    critique: Critique,
    optimized: OptimizedDesign,
    included_sections: list[str],
) -> PublishedPackage:
    returned = await runner.run(
        PUBLISHER,
        publish_prompt(spec, design, critique, optimized, included_sections),
        parser_for(PublishedPackage),
    )
    package = enforce_selection(returned, included_sections, spec)
    runner.store.save_model(keys.PUBLISHED_PACKAGE, package)
    runner.store.write_text(keys.DESIGN_DOC, package.design_doc_markdown or "")
    log.info(
        "Published %d sections (%d issues, %d PR steps)",
        len(included_sections), len(package.issues), len(package.pr_plan),
    )
    return package
