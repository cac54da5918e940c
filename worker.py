"""
Temporal Worker — registers the design run workflow and its activity, then polls for tasks.

Usage:
    python worker.py
"""

from __future__ import annotations

import asyncio
import logging

from temporalio.client import Client
from temporalio.worker import Worker

import config
from workflows.temporal import DesignRunWorkflow, run_work_item

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)


async def main():
    log.info("Connecting to Temporal at %s", config.TEMPORAL_HOST)
    client = await Client.connect(config.TEMPORAL_HOST, namespace=config.TEMPORAL_NAMESPACE)

    log.info("Starting worker on queue: %s", config.TEMPORAL_TASK_QUEUE)
    worker = Worker(
        client,
        task_queue=config.TEMPORAL_TASK_QUEUE,
        workflows=[DesignRunWorkflow],
        activities=[run_work_item],
        # One work item at a time across all runs
        max_concurrent_activities=1,
    )

    log.info("Worker ready — listening for tasks")
    await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
