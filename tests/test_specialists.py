import asyncio
import json

import pytest

from activities.specialists import (
    MERGE_PRECEDENCE,
    merge_partials,
    overlay_missing,
    parse_specialist_keys,
    synthesize_hybrid,
)
from conftest import FULL_DESIGN, FakeGenerator, make_runner
from models.schemas import (
    ArchitectureSpec,
    ComponentSpec,
    ProposedDesign,
    SecuritySpec,
    SpecialistKey,
    SpecialistSynthOutput,
)
from utils.errors import InvalidRequest


def _partial(**sections) -> SpecialistSynthOutput:
    return SpecialistSynthOutput(partial_design=ProposedDesign(**sections))


def _specialist(sections: dict, questions: list | None = None) -> str:
    return json.dumps({"questions": questions or [], "partial_design": sections, "coverage": {"provides": list(sections)}})


def test_parse_specialist_keys_accepts_list_or_comma_string() -> None:
    assert parse_specialist_keys("architecture, ops,architecture") == [SpecialistKey.ARCHITECTURE, SpecialistKey.OPS]
    assert parse_specialist_keys(["Security"]) == [SpecialistKey.SECURITY]
    assert parse_specialist_keys(None) == []
    assert parse_specialist_keys("") == []


def test_parse_specialist_keys_rejects_unknown() -> None:
    with pytest.raises(InvalidRequest) as excinfo:
        parse_specialist_keys(["architecture", "marketing"])
    assert "marketing" in excinfo.value.detail


def test_higher_precedence_specialist_wins_overlap() -> None:
    assert MERGE_PRECEDENCE[0] == SpecialistKey.REQUIREMENTS
    outputs = {
        SpecialistKey.ARCHITECTURE: _partial(
            overview="architecture overview",
            architecture=ArchitectureSpec(components=[ComponentSpec(name="api", responsibility="serve")]),
        ),
        SpecialistKey.REQUIREMENTS: _partial(overview="requirements overview"),
    }

    merged, conflicts = merge_partials(outputs)

    assert merged.overview == "requirements overview"
    assert merged.architecture.components[0].name == "api"
    assert [c.area for c in conflicts] == ["overview"]


def test_identical_overlap_is_not_a_conflict() -> None:
    outputs = {
        SpecialistKey.REQUIREMENTS: _partial(overview="same"),
        SpecialistKey.ARCHITECTURE: _partial(overview="same"),
    }
    _, conflicts = merge_partials(outputs)
    assert conflicts == []


def test_overlay_never_displaces_specialist_sections() -> None:
    base = ProposedDesign(overview="from specialist")
    candidate = ProposedDesign(
        overview="from judge",
        security=SecuritySpec(authn="oidc", authz="rbac", data_handling="encrypted"),
        data_model=[],
    )

    result, conflicts = overlay_missing(base, candidate, ["security", "data_model"], "Fill stage")

    assert result.overview == "from specialist"
    assert result.security.authn == "oidc"
    assert result.data_model is None
    assert [c.area for c in conflicts] == ["overview"]


def test_overlay_only_fills_allowed_keys() -> None:
    candidate = ProposedDesign(**FULL_DESIGN)
    result, _ = overlay_missing(ProposedDesign(), candidate, ["security"], "Fill stage")
    assert result.populated_sections() == ["security"]


def test_hybrid_fills_only_missing_sections_and_persists_artifacts(store) -> None:
    generator = FakeGenerator({
        "Populate ONLY these ProposedDesign keys": json.dumps({**FULL_DESIGN, "overview": "fill overview"}),
        "Architecture specialist": _specialist({
            "overview": "arch overview",
            "architecture": FULL_DESIGN["architecture"],
        }),
        "Security specialist": _specialist({"security": FULL_DESIGN["security"]}),
        "Merger agent": json.dumps({"proposed_design": {"overview": "merger overview"}, "conflicts": []}),
        "Consistency Checker": json.dumps({"issues": [{"area": "security", "issue": "authz vague"}]}),
    })
    runner = make_runner(generator, store)

    outcome = asyncio.run(synthesize_hybrid(
        runner, "{}", "", [SpecialistKey.ARCHITECTURE, SpecialistKey.SECURITY], consistency_check=True,
    ))

    assert not outcome.paused
    design = outcome.design
    assert design.overview == "arch overview"
    assert design.security.authn == "mTLS"
    assert design.missing_sections() == []
    fill_prompt = generator.calls_for("Populate ONLY these ProposedDesign keys")[0][1]
    assert "api_contracts, data_model, failure_modes, observability" in fill_prompt

    assert store.has("artifacts/synth/specialists/architecture.json")
    assert store.has("artifacts/synth/specialists/security.json")
    merged = store.read_json("artifacts/synth/mergedPartial.json")
    assert merged["missing_sections"] == ["api_contracts", "data_model", "failure_modes", "observability"]
    assert any(c["area"] == "overview" for c in merged["conflicts"])
    assert store.read_json("artifacts/synth/consistencyReport.json")["issues"][0]["area"] == "security"


def test_hybrid_pauses_on_blocking_specialist_question(store) -> None:
    question = {"id": "S1", "text": "Multi-region?", "blocking": True}
    generator = FakeGenerator({
        "Ops (Reliability/Operability) specialist": _specialist(
            {"failure_modes": FULL_DESIGN["failure_modes"]}, questions=[question],
        ),
        "Merger agent": json.dumps({"proposed_design": {}}),
    })
    runner = make_runner(generator, store)

    outcome = asyncio.run(synthesize_hybrid(runner, "{}", "", [SpecialistKey.OPS]))

    assert outcome.paused
    assert [q.id for q in outcome.pending_questions] == ["S1"]
    assert store.read_json("artifacts/synth/questions.json") == [question]
    assert generator.calls_for("Populate ONLY") == []


def test_hybrid_builds_assumptions_instead_of_pausing(store) -> None:
    generator = FakeGenerator({
        "Populate ONLY these ProposedDesign keys": json.dumps(FULL_DESIGN),
        "Security specialist": _specialist(
            {"security": FULL_DESIGN["security"]},
            questions=[{"id": "S1", "text": "PII stored?", "blocking": True}],
        ),
        "Merger agent": json.dumps({"proposed_design": {}}),
        "Assumption Builder": "not json",
    })
    runner = make_runner(generator, store)

    outcome = asyncio.run(synthesize_hybrid(runner, "{}", "", [SpecialistKey.SECURITY], allow_pause=False))

    assert not outcome.paused
    assert [a.question_id for a in outcome.assumptions] == ["S1"]
    assert outcome.assumptions[0].assumption == "Assume TBD; design uses configurable defaults"
    assert store.read_json("artifacts/synth/assumptions.json")[0]["question_id"] == "S1"
    assert not store.has("artifacts/synth/questions.json")
    fill_prompt = generator.calls_for("Populate ONLY")[0][1]
    assert "S1: Assume TBD" in fill_prompt


def test_answered_questions_do_not_pause(store) -> None:
    generator = FakeGenerator({
        "Populate ONLY these ProposedDesign keys": json.dumps(FULL_DESIGN),
        "Security specialist": _specialist(
            {"security": FULL_DESIGN["security"]},
            questions=[{"id": "S1", "text": "PII stored?", "blocking": True}],
        ),
        "Merger agent": json.dumps({"proposed_design": {}}),
    })
    runner = make_runner(generator, store)

    outcome = asyncio.run(synthesize_hybrid(
        runner, "{}", "\n\nanswers", [SpecialistKey.SECURITY], answered_ids={"S1"},
    ))

    assert not outcome.paused
    assert outcome.assumptions == []
