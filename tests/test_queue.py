import asyncio

from conftest import FakeGenerator, pipeline_routes
from features.runs.models import RunStatus
from features.runs.store import RunStore
from workflows.queue import BackgroundPipelineQueue
from workflows.runs import RunService


async def _run_through_queue(base_dir, generator, runs: list[dict]) -> list[RunStore]:
    queue = BackgroundPipelineQueue(generator)
    service = RunService(queue, base_dir=base_dir)
    queue.start()
    try:
        envelopes = [await service.create_run(**kwargs) for kwargs in runs]
        await asyncio.wait_for(queue.join(), timeout=10)
    finally:
        await queue.stop()
    return [RunStore(e["runPath"]) for e in envelopes]


def test_queue_completes_runs_in_order(base_dir) -> None:
    generator = FakeGenerator(pipeline_routes())
    stores = asyncio.run(_run_through_queue(base_dir, generator, runs=[
        {"title": "First", "prompt": "p1"},
        {"title": "Second", "prompt": "p2"},
    ]))

    assert [s.load_state().status for s in stores] == [RunStatus.COMPLETED, RunStatus.COMPLETED]
    clarifier_prompts = [prompt for _, prompt in generator.calls_for("Clarifier agent")]
    assert clarifier_prompts[0].startswith("Title: First")
    assert clarifier_prompts[1].startswith("Title: Second")


def test_failing_item_marks_run_failed_and_consumer_survives(base_dir) -> None:
    failing = {"title": "Broken", "prompt": "p"}
    healthy = {"title": "Healthy", "prompt": "p"}

    class FailFirstClarifier(FakeGenerator):
        async def generate(self, instructions: str, prompt: str) -> str:
            if "Title: Broken" in prompt:
                raise RuntimeError("transport exploded")
            return await super().generate(instructions, prompt)

    stores = asyncio.run(_run_through_queue(
        base_dir, FailFirstClarifier(pipeline_routes()), runs=[failing, healthy],
    ))

    assert stores[0].load_state().status == RunStatus.FAILED
    assert stores[1].load_state().status == RunStatus.COMPLETED
