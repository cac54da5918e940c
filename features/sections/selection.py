"""
Section selection — which of the 15 canonical document sections a run
publishes, and the exact heading each one maps to.
"""

from __future__ import annotations

from utils.errors import InvalidSection

# All valid section ids in canonical order.
ALL_SECTION_IDS: tuple[str, ...] = (
    "title",
    "problem_statement",
    "goals_non_goals",
    "requirements",
    "proposed_design",
    "api_contracts",
    "data_model",
    "failure_modes_mitigations",
    "observability",
    "security_privacy",
    "rollout_plan",
    "test_plan",
    "alternatives_considered",
    "open_questions",
    "work_breakdown",
)

DEFAULT_SECTIONS: tuple[str, ...] = (
    "title",
    "problem_statement",
    "goals_non_goals",
    "requirements",
    "proposed_design",
)

# Sections that only make sense alongside proposed_design.
PROPOSED_DESIGN_DEPENDENTS = frozenset({
    "api_contracts",
    "data_model",
    "failure_modes_mitigations",
    "observability",
    "security_privacy",
})

SECTION_HEADINGS: dict[str, str] = {
    "title": "## Title",
    "problem_statement": "## Problem Statement",
    "goals_non_goals": "## Goals / Non-goals",
    "requirements": "## Requirements (Functional / Non-functional)",
    "proposed_design": "## Proposed Design (Overview, Components, Data Flow)",
    "api_contracts": "## API Contracts",
    "data_model": "## Data Model",
    "failure_modes_mitigations": "## Failure Modes & Mitigations",
    "observability": "## Observability",
    "security_privacy": "## Security & Privacy",
    "rollout_plan": "## Rollout Plan",
    "test_plan": "## Test Plan",
    "alternatives_considered": "## Alternatives Considered",
    "open_questions": "## Open Questions",
    "work_breakdown": "## Work Breakdown (Issues + PR plan)",
}

_ORDER = {section_id: i for i, section_id in enumerate(ALL_SECTION_IDS)}


def normalize_sections(raw_ids: list[str] | None) -> list[str]:
    """
    Validate and normalize a requested section list.

    None or an empty list yields the default five sections. Otherwise each
    id is trimmed, lower-cased and has `-` folded to `_`; blanks are dropped
    and duplicates collapsed. Every unrecognized token is reported at once.
    Dependent sections pull in proposed_design. The result is always in
    canonical order.
    """
    if not raw_ids:
        return list(DEFAULT_SECTIONS)

    selected: set[str] = set()
    invalid: list[str] = []
    for raw in raw_ids:
        section_id = (raw or "").strip().lower().replace("-", "_")
        if not section_id:
            continue
        if section_id in _ORDER:
            selected.add(section_id)
        else:
            invalid.append(raw)

    if invalid:
        raise InvalidSection(invalid, list(ALL_SECTION_IDS))
    if not selected:
        return list(DEFAULT_SECTIONS)

    if "proposed_design" not in selected and selected & PROPOSED_DESIGN_DEPENDENTS:
        selected.add("proposed_design")

    return sorted(selected, key=_ORDER.__getitem__)


def heading_for(section_id: str) -> str:
    return SECTION_HEADINGS.get(section_id, f"## {section_id}")


def heading_mapping_text(section_ids: list[str]) -> str:
    """Section-to-heading lines for the Publisher prompt."""
    return "\n".join(f"- {section_id} -> {heading_for(section_id)}" for section_id in section_ids)
