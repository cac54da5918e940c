import time

import pytest
from fastapi.testclient import TestClient

from app import create_app
from conftest import CLARIFIER_BLOCKING, FakeGenerator, pipeline_routes


def _wait_for(client: TestClient, run_id: str, status: str, timeout: float = 10.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/design/runs/{run_id}").json()
        if body["status"] == status:
            return body
        time.sleep(0.05)
    raise AssertionError(f"run {run_id} never reached {status}")


@pytest.fixture
def make_client(base_dir):
    def _make(routes: dict) -> TestClient:
        return TestClient(create_app(FakeGenerator(routes), base_dir=base_dir, use_temporal=False))
    return _make


def test_health(make_client) -> None:
    with make_client(pipeline_routes()) as client:
        body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["temporal_connected"] is False


def test_create_run_completes_and_serves_design(make_client) -> None:
    with make_client(pipeline_routes()) as client:
        response = client.post("/api/design/runs", json={
            "title": "Rate limiter",
            "prompt": "design a distributed rate limiter",
            "context": {"links": ["https://example.com/rfc"], "notes": "Prefer Redis"},
            "allowAssumptions": True,
        })
        assert response.status_code == 202
        envelope = response.json()
        assert envelope["status"] == "Running"
        assert envelope["includedSections"] == [
            "title", "problem_statement", "goals_non_goals", "requirements", "proposed_design",
        ]
        run_id = envelope["runId"]

        metadata = _wait_for(client, run_id, "Completed")
        assert metadata["hasDesignDoc"] is True
        assert metadata["executionStatus"]["currentStage"] == "Completed"
        assert metadata["executionStatus"]["progress"] == {"current": 5, "total": 5}

        design = client.get(f"/api/design/runs/{run_id}/design")
        assert design.status_code == 200
        assert design.text.startswith("## Title")

        trace = client.get(f"/api/design/runs/{run_id}/trace").json()
        assert trace["events"][0]["kind"] == "stage_start"

        runs = client.get("/api/design/runs").json()["runs"]
        assert [r["runId"] for r in runs] == [run_id]


def test_prompt_context_reaches_the_clarifier(make_client) -> None:
    with make_client(pipeline_routes()) as client:
        run_id = client.post("/api/design/runs", json={
            "title": "t", "prompt": "p", "context": {"links": ["L1"], "notes": "N1"},
        }).json()["runId"]
        _wait_for(client, run_id, "Completed")
        generator = client.app.state.queue.generator
    clarifier_prompt = generator.calls_for("Clarifier agent")[0][1]
    assert "Links:\n- L1" in clarifier_prompt
    assert "Notes:\nN1" in clarifier_prompt


def test_pause_and_answer_over_http(make_client) -> None:
    with make_client(pipeline_routes(**{"Clarifier agent": CLARIFIER_BLOCKING})) as client:
        run_id = client.post("/api/design/runs", json={"title": "t", "prompt": "p"}).json()["runId"]
        paused = _wait_for(client, run_id, "AwaitingClarifications")
        assert [q["id"] for q in paused["blockingQuestions"]] == ["Q1"]
        assert paused["executionStatus"]["currentStage"] == "AwaitingClarifications"

        assert client.get(f"/api/design/runs/{run_id}/design").status_code == 404

        answered = client.post(f"/api/design/runs/{run_id}/answers", json={"answers": {"Q1": "Redis"}})
        assert answered.status_code == 200
        _wait_for(client, run_id, "Completed")

        again = client.post(f"/api/design/runs/{run_id}/answers", json={"answers": {"Q1": "Redis"}})
        assert again.status_code == 400


def test_error_mapping(make_client) -> None:
    with make_client(pipeline_routes()) as client:
        bad_section = client.post("/api/design/runs", json={
            "title": "t", "prompt": "p", "includedSections": ["title", "bogus"],
        })
        assert bad_section.status_code == 400
        assert "bogus" in bad_section.json()["detail"]

        bad_specialist = client.post("/api/design/runs", json={
            "title": "t", "prompt": "p", "synthSpecialists": "ops,marketing",
        })
        assert bad_specialist.status_code == 400

        empty_title = client.post("/api/design/runs", json={"title": " ", "prompt": "p"})
        assert empty_title.status_code == 400

        missing = client.get("/api/design/runs/no-such-run")
        assert missing.status_code == 404
        assert missing.json() == {"detail": "Run not found: no-such-run"}

        assert client.get("/api/design/runs").json() == {"runs": []}
