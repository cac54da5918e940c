import asyncio

import pytest

from activities.stage_runner import JSON_RETRY_PROMPT, Agent
from conftest import FakeGenerator, make_runner
from features.runs.trace import read_trace
from models.schemas import Critique
from utils.errors import GenerationUnavailable, InvalidShape
from utils.json_extract import parser_for

AGENT = Agent(name="Challenger", stage="Challenger", instructions="You are the Challenger agent.")


def _kinds(run_store) -> list[str]:
    return [e.kind.value for e in read_trace(run_store)]


def test_valid_first_response_uses_one_call(store) -> None:
    generator = FakeGenerator({"Challenger": '{"risks": []}'})
    runner = make_runner(generator, store)

    result = asyncio.run(runner.run(AGENT, "prompt", parser_for(Critique)))

    assert result.risks == []
    assert len(generator.calls) == 1
    assert _kinds(store) == ["stage_start", "model_call", "stage_end"]
    assert not store.has("artifacts/Challenger.raw.txt")


def test_single_retry_recovers_and_keeps_first_raw_text(store) -> None:
    generator = FakeGenerator({"Challenger": ["oops, not json", '{"risks": []}']})
    runner = make_runner(generator, store)

    result = asyncio.run(runner.run(AGENT, "prompt", parser_for(Critique)))

    assert isinstance(result, Critique)
    assert len(generator.calls) == 2
    retry_prompt = generator.calls[1][1]
    assert retry_prompt.startswith(JSON_RETRY_PROMPT)
    assert retry_prompt.endswith("Original response:\noops, not json")
    assert store.read_text("artifacts/Challenger.raw.txt") == "oops, not json"
    assert _kinds(store) == [
        "stage_start", "model_call", "json_parse_failure", "retry_used", "model_call", "stage_end",
    ]


def test_second_failure_raises_invalid_shape_with_retry_text(store) -> None:
    generator = FakeGenerator({"Challenger": ["first bad", "second bad"]})
    runner = make_runner(generator, store)

    with pytest.raises(InvalidShape) as excinfo:
        asyncio.run(runner.run(AGENT, "prompt", parser_for(Critique)))

    assert len(generator.calls) == 2
    assert excinfo.value.agent_name == "Challenger"
    assert excinfo.value.artifact_path == "artifacts/Challenger.raw.txt"
    assert store.read_text("artifacts/Challenger.raw.txt") == "second bad"
    assert _kinds(store) == [
        "stage_start", "model_call", "json_parse_failure", "retry_used", "model_call", "json_parse_failure",
    ]


def test_generation_unavailable_is_not_retried(store) -> None:
    class Unavailable:
        calls = 0

        async def generate(self, instructions: str, prompt: str) -> str:
            Unavailable.calls += 1
            raise GenerationUnavailable("rate limited")

    runner = make_runner(Unavailable(), store)
    with pytest.raises(GenerationUnavailable):
        asyncio.run(runner.run(AGENT, "prompt", parser_for(Critique)))
    assert Unavailable.calls == 1


def test_trace_never_contains_prompt_or_response(store) -> None:
    generator = FakeGenerator({"Challenger": ["SECRET-RESPONSE", '{"risks": []}']})
    runner = make_runner(generator, store)
    asyncio.run(runner.run(AGENT, "SECRET-PROMPT", parser_for(Critique)))

    trace_text = store.read_text("artifacts/trace.jsonl")
    assert "SECRET-PROMPT" not in trace_text
    assert "SECRET-RESPONSE" not in trace_text


def test_disabled_trace_writes_no_file(store) -> None:
    generator = FakeGenerator({"Challenger": '{"risks": []}'})
    runner = make_runner(generator, store, trace=False)
    asyncio.run(runner.run(AGENT, "prompt", parser_for(Critique)))

    assert not store.has("artifacts/trace.jsonl")
    assert [e.kind.value for e in runner.trace.events] == ["stage_start", "model_call", "stage_end"]


def test_each_model_call_reports_its_own_duration(store) -> None:
    class SlowFirstCall(FakeGenerator):
        async def generate(self, instructions: str, prompt: str) -> str:
            if not self.calls:
                await asyncio.sleep(0.3)
            return await super().generate(instructions, prompt)

    runner = make_runner(SlowFirstCall({"Challenger": ["not json", '{"risks": []}']}), store)
    asyncio.run(runner.run(AGENT, "prompt", parser_for(Critique)))

    first, retry = [e.duration_ms for e in read_trace(store) if e.kind.value == "model_call"]
    assert first >= 300
    assert retry < 200
    assert read_trace(store)[-1].duration_ms >= 300
