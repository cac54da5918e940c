"""
Activity: Specialist Synthesis — hybrid design generation.

Each selected specialist drafts only the ProposedDesign sections it owns;
all run concurrently and are joined before a merge stage. Specialist values
are merged deterministically by precedence, so neither the merge stage nor
the later fill stage can displace a section a specialist already provided;
disagreements are recorded as conflicts, never raised.

  specialists (concurrent) → merge → [pause | assumptions] → fill → [consistency]
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field

from activities.assumptions import build_assumptions, record_assumptions
from activities.stage_runner import Agent, StageRunner
from activities.synthesize import PROPOSED_DESIGN_SCHEMA, SYNTHESIZER_INSTRUCTIONS
from features.runs import store as keys
from models.schemas import (
    DESIGN_SECTION_KEYS,
    AssumptionRecord,
    Conflict,
    ConsistencyReport,
    MergerOutput,
    ProposedDesign,
    Question,
    SpecialistKey,
    SpecialistSynthOutput,
)
from utils.errors import InvalidRequest, InvalidShape
from utils.json_extract import parser_for

log = logging.getLogger(__name__)

STAGE = "Synthesizer"

# Sections each specialist is prompted to own.
OWNED_SECTIONS: dict[SpecialistKey, tuple[str, ...]] = {
    SpecialistKey.REQUIREMENTS: ("overview",),
    SpecialistKey.ARCHITECTURE: ("overview", "architecture"),
    SpecialistKey.CONTRACTS: ("api_contracts", "data_model"),
    SpecialistKey.OPS: ("failure_modes", "observability"),
    SpecialistKey.SECURITY: ("security",),
}

# Highest precedence first: a section set by an earlier specialist is never replaced.
MERGE_PRECEDENCE: tuple[SpecialistKey, ...] = (
    SpecialistKey.REQUIREMENTS,
    SpecialistKey.ARCHITECTURE,
    SpecialistKey.CONTRACTS,
    SpecialistKey.OPS,
    SpecialistKey.SECURITY,
)

_ROLES: dict[SpecialistKey, str] = {
    SpecialistKey.REQUIREMENTS: (
        "Requirements specialist synthesizer. Produce ONLY the overview "
        "(scope and high-level requirements summary)"
    ),
    SpecialistKey.ARCHITECTURE: (
        "Architecture specialist synthesizer. Produce ONLY overview and architecture "
        "(components and data_flow)"
    ),
    SpecialistKey.CONTRACTS: "Contracts specialist synthesizer. Produce ONLY api_contracts and data_model",
    SpecialistKey.OPS: (
        "Ops (Reliability/Operability) specialist synthesizer. Produce ONLY failure_modes "
        "and observability"
    ),
    SpecialistKey.SECURITY: (
        "Security specialist synthesizer. Produce ONLY the security section "
        "(authn, authz, data_handling)"
    ),
}


def parse_specialist_keys(raw: list[str] | str | None) -> list[SpecialistKey]:
    """Accept a list or a comma-separated string; unknown keys are rejected, duplicates dropped."""
    if raw is None:
        return []
    tokens = raw.split(",") if isinstance(raw, str) else list(raw)
    selected: list[SpecialistKey] = []
    unknown: list[str] = []
    for token in tokens:
        name = (token or "").strip().lower()
        if not name:
            continue
        try:
            key = SpecialistKey(name)
        except ValueError:
            unknown.append(token)
            continue
        if key not in selected:
            selected.append(key)
    if unknown:
        valid = ", ".join(k.value for k in SpecialistKey)
        raise InvalidRequest(f"Unknown synth specialists: {', '.join(unknown)}. Valid: {valid}.")
    return selected


def specialist_agent(key: SpecialistKey) -> Agent:
    owned = OWNED_SECTIONS[key]
    provides = json.dumps(list(owned))
    instructions = (
        f"You are the {_ROLES[key]}. You are given a clarified specification.\n\n"
        "Rules:\n"
        "- Output ONLY valid JSON matching the SpecialistSynthOutput schema. No markdown, "
        "no code blocks.\n"
        f"- In partial_design, populate ONLY {', '.join(owned)}. Set every other field to "
        "null or omit it.\n"
        f"- Set coverage.provides to {provides}.\n"
        "- questions: optional array of up to 6 questions (id, text, blocking). Use blocking "
        "only when truly necessary.\n\n"
        "SpecialistSynthOutput schema:\n"
        '{"questions": [{"id": "string", "text": "string", "blocking": false}], '
        '"partial_design": { ...ProposedDesign shape... }, '
        f'"coverage": {{"provides": {provides}, "notes": "string or null"}}}}\n\n'
        + PROPOSED_DESIGN_SCHEMA
    )
    return Agent(name=f"Synth_{key.value}", stage=STAGE, instructions=instructions)


MERGER = Agent(
    name="Merger",
    stage=STAGE,
    instructions=(
        "You are the Merger agent. You receive a clarified specification and one or more "
        "specialist partial_design outputs. Merge them into a single proposed_design.\n\n"
        "Rules:\n"
        "- Output ONLY valid JSON matching the MergerOutput schema. No markdown, no code blocks.\n"
        "- Take non-null, non-empty values by section. Precedence: overview/requirements first, "
        "then architecture, then api_contracts/data_model, then failure_modes/observability, "
        "then security.\n"
        "- Do NOT overwrite a specialist-provided section with empty content.\n"
        "- proposed_design must have all top-level keys (overview, architecture, api_contracts, "
        "data_model, failure_modes, observability, security); use null for sections not provided.\n"
        "- missing_sections: section keys still empty or null in proposed_design.\n"
        "- conflicts: conflicts between specialists (area, description, suggested_resolution).\n"
        "- questions: blocking or non-blocking questions raised by the merge, else [].\n\n"
        "MergerOutput schema:\n"
        '{"proposed_design": { ...ProposedDesign... }, "missing_sections": ["string"], '
        '"conflicts": [{"area": "string", "description": "string", '
        '"suggested_resolution": "string"}], "questions": []}'
    ),
)

CONSISTENCY_CHECKER = Agent(
    name="ConsistencyChecker",
    stage=STAGE,
    instructions=(
        "You are the Consistency Checker. Given a proposed design, identify consistency issues "
        "and suggest improvements. Do NOT change the design.\n\n"
        "Rules:\n"
        "- Output ONLY valid JSON matching the ConsistencyReport schema. No markdown, no code blocks.\n"
        "- Limit to at most 10 issues. Focus on contradictions, missing cross-references and clarity.\n\n"
        'ConsistencyReport schema: {"issues": [{"area": "string", "issue": "string", '
        '"suggestion": "string or null"}]}'
    ),
)


def fill_agent(missing: list[str]) -> Agent:
    return Agent(
        name="Synthesizer_Fill",
        stage=STAGE,
        instructions=(
            SYNTHESIZER_INSTRUCTIONS
            + "\n\nPopulate ONLY these ProposedDesign keys: "
            + ", ".join(missing)
            + ". Set every other key to null."
        ),
    )


# ── Deterministic merge ───────────────────────────────────────────────

def merge_partials(
    outputs: dict[SpecialistKey, SpecialistSynthOutput],
) -> tuple[ProposedDesign, list[Conflict]]:
    """Merge specialist partial designs by precedence; overlaps become conflicts."""
    merged = ProposedDesign()
    owners: dict[str, SpecialistKey] = {}
    conflicts: list[Conflict] = []
    for key in MERGE_PRECEDENCE:
        output = outputs.get(key)
        if output is None or output.partial_design is None:
            continue
        partial = output.partial_design
        for section in DESIGN_SECTION_KEYS:
            if not partial.is_populated(section):
                continue
            if section in owners:
                if getattr(partial, section) != getattr(merged, section):
                    conflicts.append(Conflict(
                        area=section,
                        description=(
                            f"Specialists '{owners[section].value}' and '{key.value}' both "
                            f"provided {section}; kept '{owners[section].value}'."
                        ),
                        suggested_resolution=f"Keep the {owners[section].value} specialist's {section}.",
                    ))
                continue
            setattr(merged, section, getattr(partial, section))
            owners[section] = key
    return merged, conflicts


def overlay_missing(
    base: ProposedDesign,
    candidate: ProposedDesign | None,
    allowed: list[str] | tuple[str, ...],
    source: str,
) -> tuple[ProposedDesign, list[Conflict]]:
    """
    Copy sections from `candidate` into `base`, only for keys in `allowed`
    that `base` has not populated. Differing values for sections `base`
    already holds are reported as conflicts and ignored.
    """
    result = base.model_copy(deep=True)
    conflicts: list[Conflict] = []
    if candidate is None:
        return result, conflicts
    for section in DESIGN_SECTION_KEYS:
        if not candidate.is_populated(section):
            continue
        if base.is_populated(section):
            if getattr(candidate, section) != getattr(base, section):
                conflicts.append(Conflict(
                    area=section,
                    description=f"{source} returned a different {section}; specialist value kept.",
                    suggested_resolution=None,
                ))
            continue
        if section in allowed:
            setattr(result, section, getattr(candidate, section))
    return result, conflicts


# ── Orchestration ─────────────────────────────────────────────────────

@dataclass
class HybridOutcome:
    """Either a design, or the questions the run must pause on."""
    design: ProposedDesign | None = None
    pending_questions: list[Question] = field(default_factory=list)
    assumptions: list[AssumptionRecord] = field(default_factory=list)

    @property
    def paused(self) -> bool:
        return self.design is None


def _assumptions_text(assumptions: list[AssumptionRecord]) -> str:
    if not assumptions:
        return ""
    lines = "\n".join(f"- {a.question_id}: {a.assumption} (risk: {a.risk})" for a in assumptions)
    return f"\n\nAssumptions made for unanswered blocking questions:\n{lines}"


async def synthesize_hybrid(
    runner: StageRunner,
    spec_json: str,
    answers_text: str,
    specialists: list[SpecialistKey],
    *,
    answered_ids: set[str] | None = None,
    allow_pause: bool = True,
    consistency_check: bool = False,
) -> HybridOutcome:
    """
    Hybrid specialist synthesis.

    Blocking questions whose id is in `answered_ids` count as resolved.
    With `allow_pause` the remaining ones are persisted and returned so the
    run can pause; otherwise they are turned into assumptions.
    """
    answered_ids = answered_ids or set()
    store = runner.store
    prompt = f"Clarified specification:\n{spec_json}{answers_text}\n\nProduce your SpecialistSynthOutput JSON."

    log.info("Fanning out to %d specialists: %s", len(specialists), [k.value for k in specialists])
    results = await asyncio.gather(*(
        runner.run(specialist_agent(key), prompt, parser_for(SpecialistSynthOutput))
        for key in specialists
    ))
    outputs = dict(zip(specialists, results))
    for key, output in outputs.items():
        store.write_json(keys.specialist_key(key.value), output.to_json_dict())

    merger_raw = await runner.run(
        MERGER,
        f"Clarified specification:\n{spec_json}{answers_text}\n\n"
        "Specialist outputs:\n"
        + json.dumps({k.value: v.to_json_dict() for k, v in outputs.items()})
        + "\n\nProduce your MergerOutput JSON.",
        parser_for(MergerOutput),
    )

    design, conflicts = merge_partials(outputs)
    design, merger_conflicts = overlay_missing(design, merger_raw.proposed_design, DESIGN_SECTION_KEYS, "Merger")
    conflicts = list(merger_raw.conflicts or []) + conflicts + merger_conflicts

    questions: list[Question] = []
    for output in results:
        questions.extend(output.questions or [])
    questions.extend(merger_raw.questions or [])

    merged = MergerOutput(
        proposed_design=design,
        missing_sections=design.missing_sections(),
        conflicts=conflicts,
        questions=questions,
    )
    store.write_json(keys.SYNTH_MERGED, merged.to_json_dict())
    for conflict in conflicts:
        log.warning("Merge conflict in %s: %s", conflict.area, conflict.description)

    blocking = [q for q in questions if q.blocking and q.id not in answered_ids]
    assumptions: list[AssumptionRecord] = []
    if blocking and allow_pause:
        store.write_json(keys.SYNTH_QUESTIONS, [q.to_json_dict() for q in questions])
        log.info("Specialist synthesis raised %d blocking questions; pausing", len(blocking))
        return HybridOutcome(pending_questions=questions)
    if blocking:
        assumptions = await build_assumptions(runner, blocking, stage=STAGE)
        record_assumptions(store, assumptions)

    missing = merged.missing_sections or []
    if missing:
        log.info("Filling %d missing sections: %s", len(missing), missing)
        fill = await runner.run(
            fill_agent(missing),
            f"Clarified specification:\n{spec_json}{answers_text}{_assumptions_text(assumptions)}\n\n"
            f"Current design:\n{json.dumps(design.to_json_dict())}\n\n"
            f"Missing sections to fill: {', '.join(missing)}\n\nProduce your ProposedDesign JSON.",
            parser_for(ProposedDesign),
        )
        design, fill_conflicts = overlay_missing(design, fill, missing, "Fill stage")
        for conflict in fill_conflicts:
            log.warning("Fill conflict in %s: %s", conflict.area, conflict.description)

    if consistency_check:
        await _check_consistency(runner, design)

    return HybridOutcome(design=design, assumptions=assumptions)


async def _check_consistency(runner: StageRunner, design: ProposedDesign) -> None:
    try:
        report = await runner.run(
            CONSISTENCY_CHECKER,
            f"Proposed design:\n{json.dumps(design.to_json_dict())}\n\nProduce your ConsistencyReport JSON.",
            parser_for(ConsistencyReport),
        )
    except InvalidShape as e:
        log.warning("Consistency report skipped: %s", e.detail)
        return
    runner.store.write_json(keys.SYNTH_CONSISTENCY, report.to_json_dict())
    log.info("Consistency check found %d issues", len(report.issues or []))
