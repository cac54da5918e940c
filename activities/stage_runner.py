"""
Stage Runner — runs one JSON-producing stage with a single corrective retry.

Protocol for every stage:
  stage_start → model call → parse
  on parse failure: json_parse_failure, persist raw text, retry_used,
  one corrective call, parse again; a second failure persists the retry's
  raw text over the first and raises InvalidShape.

GenerationUnavailable from the generator is never retried here.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from features.runs import store as keys
from features.runs.models import TraceKind
from features.runs.store import RunStore
from features.runs.trace import TraceWriter
from utils.errors import InvalidShape
from utils.llm import Generator

log = logging.getLogger(__name__)

T = TypeVar("T")

JSON_RETRY_PROMPT = (
    "Your previous response was not valid JSON. "
    "You must output valid JSON matching the schema."
)


@dataclass(frozen=True)
class Agent:
    """An instruction set bound to a stage, e.g. Clarifier or Synth_architecture."""
    name: str
    instructions: str
    stage: str


class StageRunner:
    """Runs stages for one run: shared generator, store and trace."""

    def __init__(self, generator: Generator, store: RunStore, trace: TraceWriter | None = None):
        self.generator = generator
        self.store = store
        self.trace = trace or TraceWriter(store, enabled=False)

    async def run(self, agent: Agent, prompt: str, parse: Callable[[str], T | None]) -> T:
        started = time.monotonic()
        self.trace.emit(TraceKind.STAGE_START, agent.stage, agent.name)
        log.info("[STAGE] %s started", agent.name)

        text = await self.generator.generate(agent.instructions, prompt)
        self.trace.emit(TraceKind.MODEL_CALL, agent.stage, agent.name, duration_ms=_elapsed_ms(started))

        result = parse(text)
        if result is not None:
            return self._finish(agent, started, result)

        raw_key = keys.raw_output_key(agent.name)
        self.trace.emit(TraceKind.JSON_PARSE_FAILURE, agent.stage, agent.name, message="First parse failed")
        self.store.write_text(raw_key, text)
        self.trace.emit(TraceKind.RETRY_USED, agent.stage, agent.name)
        log.warning("[STAGE] %s returned invalid JSON; retrying once", agent.name)

        retry_started = time.monotonic()
        retry_text = await self.generator.generate(
            agent.instructions,
            f"{JSON_RETRY_PROMPT}\n\nOriginal response:\n{text}",
        )
        self.trace.emit(TraceKind.MODEL_CALL, agent.stage, agent.name, duration_ms=_elapsed_ms(retry_started))

        result = parse(retry_text)
        if result is not None:
            return self._finish(agent, started, result)

        self.trace.emit(TraceKind.JSON_PARSE_FAILURE, agent.stage, agent.name, message="Retry parse failed")
        self.store.write_text(raw_key, retry_text)
        log.error("[STAGE] %s produced invalid JSON after retry", agent.name)
        raise InvalidShape(agent.name, raw_key)

    def _finish(self, agent: Agent, started: float, result: T) -> T:
        duration = _elapsed_ms(started)
        self.trace.emit(TraceKind.STAGE_END, agent.stage, agent.name, duration_ms=duration)
        log.info("[STAGE] %s completed (%dms)", agent.name, duration)
        return result


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
