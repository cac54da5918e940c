"""
Background Pipeline Queue — single in-process consumer for work items.

One unbounded FIFO drained by exactly one task, so stages of all runs
execute one at a time. A work item that raises marks its run Failed.
"""

from __future__ import annotations

import asyncio
import logging

from features.runs.state_machine import mark_failed
from features.runs.store import RunStore
from models.schemas import PipelineWorkItem
from utils.llm import Generator
from workflows.pipeline import process_work_item

log = logging.getLogger(__name__)


class BackgroundPipelineQueue:
    def __init__(self, generator: Generator):
        self.generator = generator
        self._queue: asyncio.Queue[PipelineWorkItem] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None

    async def enqueue(self, item: PipelineWorkItem) -> None:
        await self._queue.put(item)
        log.info("Queued %s for run %s (%d pending)", item.kind.value, item.run_id, self._queue.qsize())

    def start(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._drain(), name="design-pipeline-consumer")

    async def stop(self) -> None:
        if self._consumer is None:
            return
        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None

    async def join(self) -> None:
        """Wait until every queued item has been handled."""
        await self._queue.join()

    async def _drain(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self.handle(item)
            finally:
                self._queue.task_done()

    async def handle(self, item: PipelineWorkItem) -> None:
        try:
            await process_work_item(item, self.generator)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("Work item %s for run %s failed", item.kind.value, item.run_id)
            mark_failed(RunStore(item.run_path), str(e))
