"""
FastAPI application — REST API for the Design Agent.

Endpoints:
  POST /api/design/runs                  — Start a design run (queued)
  POST /api/design/runs/{run_id}/answers — Answer blocking questions and resume
  GET  /api/design/runs                  — List recent runs
  GET  /api/design/runs/{run_id}         — Run metadata
  GET  /api/design/runs/{run_id}/execution — Execution status
  GET  /api/design/runs/{run_id}/trace   — Trace events
  GET  /api/design/runs/{run_id}/design  — Published DESIGN.md
  GET  /health                           — Health check
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field
from temporalio.client import Client

import config
from utils.errors import DesignAgentError
from utils.llm import Generator, OpenAIGenerator
from workflows.queue import BackgroundPipelineQueue
from workflows.runs import RunService
from workflows.temporal import TemporalDispatcher

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RunContext(_Request):
    links: list[str] | None = None
    notes: str | None = None


class CreateRunRequest(_Request):
    title: str = ""
    prompt: str = ""
    context: RunContext | None = None
    included_sections: list[str] | None = Field(default=None, alias="includedSections")
    synth_specialists: list[str] | str | None = Field(default=None, alias="synthSpecialists")
    allow_assumptions: bool = Field(default=False, alias="allowAssumptions")
    variants: int = 1
    deep_critique: bool = Field(default=False, alias="deepCritique")
    consistency_check: bool = Field(default=False, alias="consistencyCheck")


class SubmitAnswersRequest(_Request):
    answers: dict[str, str] = {}
    allow_assumptions: bool | None = Field(default=None, alias="allowAssumptions")


def create_app(
    generator: Generator | None = None,
    base_dir: str | Path | None = None,
    use_temporal: bool = True,
) -> FastAPI:
    queue = BackgroundPipelineQueue(generator or OpenAIGenerator())
    service = RunService(queue, base_dir=base_dir)
    status = {"temporal_connected": False}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        queue.start()
        if use_temporal:
            # Connect to Temporal; otherwise work items run on the in-process queue
            try:
                client = await Client.connect(config.TEMPORAL_HOST, namespace=config.TEMPORAL_NAMESPACE)
                service.dispatcher = TemporalDispatcher(client)
                status["temporal_connected"] = True
                log.info("Connected to Temporal at %s", config.TEMPORAL_HOST)
            except Exception as e:
                log.warning("Could not connect to Temporal: %s (pipeline will run in-process)", e)
        yield
        await queue.stop()

    app = FastAPI(
        title="Design Agent",
        description="Multi-stage design document pipeline with optional Temporal orchestration",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.queue = queue

    @app.exception_handler(DesignAgentError)
    async def design_agent_error_handler(request: Request, exc: DesignAgentError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    # ── Health ────────────────────────────────────────────────────────

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "service": config.AGENT_NAME,
            "temporal_connected": status["temporal_connected"],
        }

    # ── Runs ──────────────────────────────────────────────────────────

    @app.post("/api/design/runs", status_code=202)
    async def create_run(req: CreateRunRequest):
        context = req.context or RunContext()
        return await service.create_run(
            title=req.title,
            prompt=req.prompt,
            links=context.links,
            notes=context.notes,
            included_sections=req.included_sections,
            synth_specialists=req.synth_specialists,
            allow_assumptions=req.allow_assumptions,
            variants=req.variants,
            deep_critique=req.deep_critique,
            consistency_check=req.consistency_check,
        )

    @app.post("/api/design/runs/{run_id}/answers")
    async def submit_answers(run_id: str, req: SubmitAnswersRequest):
        return await service.submit_answers(run_id, req.answers, req.allow_assumptions)

    @app.get("/api/design/runs")
    def list_runs(limit: int = config.MAX_LISTED_RUNS):
        return {"runs": service.list_runs(limit=limit)}

    @app.get("/api/design/runs/{run_id}")
    def get_run(run_id: str):
        return service.get_metadata(run_id)

    @app.get("/api/design/runs/{run_id}/execution")
    def get_execution(run_id: str):
        return service.get_execution(run_id)

    @app.get("/api/design/runs/{run_id}/trace")
    def get_trace(run_id: str):
        return {"runId": run_id, "events": service.get_trace(run_id)}

    @app.get("/api/design/runs/{run_id}/design", response_class=PlainTextResponse)
    def get_design(run_id: str):
        return PlainTextResponse(service.get_design(run_id), media_type="text/markdown")

    return app


app = create_app()
