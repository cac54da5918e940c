"""
Temporal Workflow: Design Run Work Item

Wraps one pipeline work item (start at the Clarifier, or resume after
answers) in a single activity. The worker runs at most one activity at a
time, so runs progress one stage at a time as with the in-process queue.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta

from temporalio import activity, workflow
from temporalio.client import Client
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    import config
    from features.runs.state_machine import mark_failed
    from features.runs.store import RunStore
    from models.schemas import PipelineWorkItem
    from utils.llm import OpenAIGenerator
    from workflows.pipeline import process_work_item

log = logging.getLogger(__name__)


@activity.defn
async def run_work_item(item_data: dict) -> str:
    item = PipelineWorkItem.from_dict(item_data)
    try:
        await process_work_item(item, OpenAIGenerator())
    except Exception as e:
        mark_failed(RunStore(item.run_path), str(e))
        raise
    return RunStore(item.run_path).load_state().status.value


@workflow.defn
class DesignRunWorkflow:
    """Runs one work item; no retries, a failed item leaves its run Failed."""

    @workflow.run
    async def run(self, item_data: dict) -> str:
        return await workflow.execute_activity(
            run_work_item,
            args=[item_data],
            start_to_close_timeout=timedelta(minutes=config.STAGE_TIMEOUT_MINUTES),
            retry_policy=RetryPolicy(maximum_attempts=1),
        )


class TemporalDispatcher:
    """Starts a DesignRunWorkflow per work item on the configured task queue."""

    def __init__(self, client: Client):
        self.client = client

    async def enqueue(self, item: PipelineWorkItem) -> None:
        workflow_id = f"{item.run_id}-{item.kind.value}-{uuid.uuid4().hex[:6]}"
        await self.client.start_workflow(
            DesignRunWorkflow.run,
            item.to_dict(),
            id=workflow_id,
            task_queue=config.TEMPORAL_TASK_QUEUE,
        )
        log.info("Dispatched %s to Temporal (workflow %s)", item.kind.value, workflow_id)
