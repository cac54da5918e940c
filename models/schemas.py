"""
Models for the design pipeline.

Stage outputs are pydantic models so a model's JSON can be validated in one
step; every field is optional because generators routinely omit keys. The
orchestration records (options, work items) are plain dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

import config


class _Artifact(BaseModel):
    model_config = ConfigDict(extra="ignore")

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json")


# ── Clarification ─────────────────────────────────────────────────────

class Question(_Artifact):
    id: str = ""
    text: str = ""
    blocking: bool = False


class RequirementsSpec(_Artifact):
    functional: list[str] | None = None
    non_functional: list[str] | None = None


class ClarifiedSpecDraft(_Artifact):
    title: str | None = None
    problem_statement: str | None = None
    goals: list[str] | None = None
    non_goals: list[str] | None = None
    assumptions: list[str] | None = None
    constraints: list[str] | None = None
    requirements: RequirementsSpec | None = None
    success_metrics: list[str] | None = None
    open_questions: list[Question] | None = None


class ClarifierOutput(_Artifact):
    questions: list[Question] | None = None
    clarified_spec_draft: ClarifiedSpecDraft | None = None

    def blocking_questions(self) -> list[Question]:
        return [q for q in self.questions or [] if q.blocking]

    def non_blocking_questions(self) -> list[Question]:
        return [q for q in self.questions or [] if not q.blocking]


class ClarifiedSpec(_Artifact):
    """Accepted problem statement. Built once from the draft plus answers."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    title: str = ""
    problem_statement: str = ""
    goals: list[str] = []
    non_goals: list[str] = []
    assumptions: list[str] = []
    constraints: list[str] = []
    requirements: RequirementsSpec = RequirementsSpec(functional=[], non_functional=[])
    success_metrics: list[str] = []
    open_questions: list[Question] = []


# ── Design ────────────────────────────────────────────────────────────

class ComponentSpec(_Artifact):
    name: str = ""
    responsibility: str = ""


class ArchitectureSpec(_Artifact):
    components: list[ComponentSpec] | None = None
    data_flow: str | None = None


class ApiContract(_Artifact):
    name: str = ""
    request: str = ""
    response: str = ""


class DataModelEntity(_Artifact):
    entity: str = ""
    fields: str = ""


class FailureMode(_Artifact):
    scenario: str = ""
    mitigation: str = ""


class ObservabilitySpec(_Artifact):
    logs: list[str] | None = None
    metrics: list[str] | None = None
    traces: list[str] | None = None


class SecuritySpec(_Artifact):
    authn: str = ""
    authz: str = ""
    data_handling: str = ""


# Canonical order of the ProposedDesign sections.
DESIGN_SECTION_KEYS: tuple[str, ...] = (
    "overview",
    "architecture",
    "api_contracts",
    "data_model",
    "failure_modes",
    "observability",
    "security",
)


def _has_content(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, list)):
        return bool(value.strip() if isinstance(value, str) else value)
    if isinstance(value, BaseModel):
        return any(_has_content(v) for v in value.__dict__.values())
    return True


class ProposedDesign(_Artifact):
    overview: str | None = None
    architecture: ArchitectureSpec | None = None
    api_contracts: list[ApiContract] | None = None
    data_model: list[DataModelEntity] | None = None
    failure_modes: list[FailureMode] | None = None
    observability: ObservabilitySpec | None = None
    security: SecuritySpec | None = None

    def is_populated(self, key: str) -> bool:
        return _has_content(getattr(self, key))

    def populated_sections(self) -> list[str]:
        return [k for k in DESIGN_SECTION_KEYS if self.is_populated(k)]

    def missing_sections(self) -> list[str]:
        return [k for k in DESIGN_SECTION_KEYS if not self.is_populated(k)]


class SpecialistCoverage(_Artifact):
    provides: list[str] | None = None
    notes: str | None = None


class SpecialistSynthOutput(_Artifact):
    questions: list[Question] | None = None
    partial_design: ProposedDesign | None = None
    coverage: SpecialistCoverage | None = None


class Conflict(_Artifact):
    area: str = ""
    description: str = ""
    suggested_resolution: str | None = None


class MergerOutput(_Artifact):
    proposed_design: ProposedDesign | None = None
    missing_sections: list[str] | None = None
    conflicts: list[Conflict] | None = None
    questions: list[Question] | None = None


class AssumptionRecord(_Artifact):
    question_id: str = ""
    question_text: str = ""
    assumption: str = ""
    risk: str = ""


class AssumptionBuilderOutput(_Artifact):
    assumptions: list[AssumptionRecord] | None = None


class ConsistencyIssue(_Artifact):
    area: str = ""
    issue: str = ""
    suggestion: str | None = None


class ConsistencyReport(_Artifact):
    issues: list[ConsistencyIssue] | None = None


# ── Critique / optimize / publish ─────────────────────────────────────

class Risk(_Artifact):
    risk: str = ""
    severity: str = ""  # low|medium|high
    likelihood: str = ""  # low|medium|high
    mitigation: str = ""


class Alternative(_Artifact):
    option: str | None = None
    pros: list[str] | None = None
    cons: list[str] | None = None


class Critique(_Artifact):
    risks: list[Risk] | None = None
    missing_requirements: list[str] | None = None
    questionable_assumptions: list[str] | None = None
    alternatives: list[Alternative] | None = None


class OptimizedDesign(_Artifact):
    chosen_approach_summary: str | None = None
    changes_from_original: list[str] | None = None
    tradeoffs: list[str] | None = None
    rollout_plan: list[str] | None = None
    test_plan: list[str] | None = None
    migration_plan: list[str] | None = None


class Issue(_Artifact):
    title: str | None = None
    body: str | None = None
    labels: list[str] | None = None
    acceptance_criteria: list[str] | None = None


class PublishedPackage(_Artifact):
    design_doc_markdown: str | None = None
    issues: list[Issue] | None = None
    pr_plan: list[str] | None = None
    remaining_open_questions: list[str] | None = None
    included_sections: list[str] | None = None


# ── Orchestration records ─────────────────────────────────────────────

class SpecialistKey(str, Enum):
    REQUIREMENTS = "requirements"
    ARCHITECTURE = "architecture"
    CONTRACTS = "contracts"
    OPS = "ops"
    SECURITY = "security"


class CritiquePersona(str, Enum):
    SECURITY = "security"
    OPERATIONS = "operations"
    COST = "cost"
    EDGE_CASES = "edgecases"


@dataclass
class PipelineOptions:
    """Opt-in orchestration options. Defaults give the single-pass pipeline."""
    variants: int = 1
    deep_critique: bool = False
    synth_specialists: list[SpecialistKey] = field(default_factory=list)
    allow_assumptions: bool = False
    trace: bool = True
    consistency_check: bool = False

    @property
    def variants_clamped(self) -> int:
        return max(config.MIN_VARIANTS, min(config.MAX_VARIANTS, self.variants))

    def to_dict(self) -> dict:
        return {
            "variants": self.variants,
            "deep_critique": self.deep_critique,
            "synth_specialists": [k.value for k in self.synth_specialists],
            "allow_assumptions": self.allow_assumptions,
            "trace": self.trace,
            "consistency_check": self.consistency_check,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PipelineOptions:
        return cls(
            variants=int(data.get("variants", 1)),
            deep_critique=bool(data.get("deep_critique", False)),
            synth_specialists=[SpecialistKey(k) for k in data.get("synth_specialists") or []],
            allow_assumptions=bool(data.get("allow_assumptions", False)),
            trace=bool(data.get("trace", True)),
            consistency_check=bool(data.get("consistency_check", False)),
        )


@dataclass
class SynthSelection:
    """Persisted under artifacts/synth/selection.json so a resumed run keeps its strategy."""
    synth_specialists: list[str] = field(default_factory=list)
    allow_assumptions: bool = False


class WorkItemKind(str, Enum):
    RUN_CLARIFIER = "run_clarifier"
    RUN_REMAINING = "run_remaining"


@dataclass
class PipelineWorkItem:
    """A queued unit of background work for one run."""
    kind: WorkItemKind
    run_id: str
    run_path: str
    options: PipelineOptions = field(default_factory=PipelineOptions)
    answers: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "run_id": self.run_id,
            "run_path": self.run_path,
            "options": self.options.to_dict(),
            "answers": dict(self.answers),
        }

    @classmethod
    def from_dict(cls, data: dict) -> PipelineWorkItem:
        return cls(
            kind=WorkItemKind(data["kind"]),
            run_id=data["run_id"],
            run_path=data["run_path"],
            options=PipelineOptions.from_dict(data.get("options") or {}),
            answers=dict(data.get("answers") or {}),
        )
