"""Tests for the HTTP API: submission, status, report, cancellation."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from agent_verifier.config import Settings
from agent_verifier.main import app
from agent_verifier.models.enums import RunStatus, ScanStatus, VerificationPhase
from agent_verifier.models.report import VerificationReport
from agent_verifier.queue import VerificationQueue


def _payload(**submission) -> dict:
    body = {
        "subtask_id": "sub-1",
        "agent_role": "Python Agent",
        "runtime": "python",
        "artifacts": [{"filename": "main.py", "content": "x = 1\n", "type": "source"}],
    }
    body.update(submission)
    return {"meta": {"task_id": "task-1"}, "submission": body}


@pytest.fixture
def queue(fake_redis) -> VerificationQueue:
    return VerificationQueue(fake_redis)


@pytest.fixture
def client(queue):
    """Test client wired to an in-memory queue; the lifespan is not started."""
    app.state.settings = Settings()
    app.state.queue = queue
    app.state.worker_task = None
    return TestClient(app)


# ======================================================================
# Probes
# ======================================================================


class TestProbes:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_ready(self, client):
        assert client.get("/ready").status_code == 200

    def test_not_ready_when_redis_is_down(self, client, fake_redis):
        fake_redis.healthy = False
        resp = client.get("/ready")
        assert resp.status_code == 503
        assert resp.json() == {"status": "not_ready", "checks": {"redis": False, "worker": True}}

    def test_not_ready_when_worker_died(self, client):
        worker_task = MagicMock()
        worker_task.done.return_value = True
        app.state.worker_task = worker_task

        resp = client.get("/ready")

        assert resp.status_code == 503
        assert resp.json()["checks"] == {"redis": True, "worker": False}


# ======================================================================
# Submission
# ======================================================================


class TestSubmit:
    def test_queues_run(self, client, queue, fake_redis):
        resp = client.post("/v1/verifications", json=_payload())

        assert resp.status_code == 201
        body = resp.json()
        assert body["task_id"] == "task-1"
        assert body["status"] == "QUEUED"
        assert body["run_id"].startswith("run_")
        assert asyncio.run(queue.get_status(body["run_id"])) == RunStatus.QUEUED
        assert len(fake_redis.streams["verifier:runs:stream"]) == 1

    def test_empty_artifacts_rejected(self, client, fake_redis):
        resp = client.post("/v1/verifications", json=_payload(artifacts=[]))

        assert resp.status_code == 400
        assert not fake_redis.streams

    def test_unknown_runtime_is_unprocessable(self, client):
        resp = client.post("/v1/verifications", json=_payload(runtime="cobol"))
        assert resp.status_code == 422

    def test_path_traversal_is_unprocessable(self, client):
        artifact = {"filename": "../etc/passwd", "content": "", "type": "source"}
        resp = client.post("/v1/verifications", json=_payload(artifacts=[artifact]))
        assert resp.status_code == 422

    def test_oversized_submission(self, client):
        app.state.settings = Settings(max_submission_bytes=4)
        resp = client.post("/v1/verifications", json=_payload())

        assert resp.status_code == 413
        assert "exceed" in resp.json()["detail"]


# ======================================================================
# Status, report, list
# ======================================================================


class TestRunQueries:
    def test_unknown_run_status(self, client):
        assert client.get("/v1/verifications/run_missing").status_code == 404

    def test_status_with_phase_and_error(self, client, queue):
        report = VerificationReport(task_id="task-1", status=ScanStatus.FAILED)
        asyncio.run(queue.store_snapshot("run_1", report, VerificationPhase.FAILED))
        asyncio.run(queue.set_status("run_1", RunStatus.FAILED, error="executor: no docker"))

        resp = client.get("/v1/verifications/run_1")

        assert resp.status_code == 200
        assert resp.json() == {
            "run_id": "run_1",
            "status": "FAILED",
            "phase": "failed",
            "error": "executor: no docker",
        }

    def test_report_not_yet_available(self, client, queue):
        asyncio.run(queue.set_status("run_1", RunStatus.QUEUED))
        assert client.get("/v1/verifications/run_1/report").status_code == 404

    def test_report_snapshot(self, client, queue):
        report = VerificationReport(task_id="task-1", status=ScanStatus.RUNNING)
        asyncio.run(queue.store_snapshot("run_1", report, VerificationPhase.TESTS))

        resp = client.get("/v1/verifications/run_1/report")

        assert resp.status_code == 200
        assert resp.json()["report_id"] == report.report_id
        assert resp.json()["status"] == "RUNNING"

    def test_list_runs(self, client):
        first = client.post("/v1/verifications", json=_payload()).json()["run_id"]
        second = client.post("/v1/verifications", json=_payload()).json()["run_id"]

        resp = client.get("/v1/verifications", params={"limit": 10})

        assert resp.status_code == 200
        assert {r["run_id"] for r in resp.json()} == {first, second}
        assert all(r["status"] == "QUEUED" for r in resp.json())

    def test_list_limit_is_bounded(self, client):
        assert client.get("/v1/verifications", params={"limit": 0}).status_code == 422
        assert client.get("/v1/verifications", params={"limit": 201}).status_code == 422


# ======================================================================
# Cancellation
# ======================================================================


class TestCancel:
    def test_cancel_queued_run(self, client, queue):
        run_id = client.post("/v1/verifications", json=_payload()).json()["run_id"]

        resp = client.post(f"/v1/verifications/{run_id}/cancel")

        assert resp.status_code == 202
        assert resp.json() == {"run_id": run_id, "status": "QUEUED", "cancel_requested": True}
        assert asyncio.run(queue.is_cancel_requested(run_id)) is True

    def test_cancel_unknown_run(self, client):
        assert client.post("/v1/verifications/run_missing/cancel").status_code == 404

    @pytest.mark.parametrize(
        "status",
        [RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED, RunStatus.REJECTED],
    )
    def test_cancel_finished_run_conflicts(self, client, queue, status):
        asyncio.run(queue.set_status("run_1", status))

        resp = client.post("/v1/verifications/run_1/cancel")

        assert resp.status_code == 409
        assert asyncio.run(queue.is_cancel_requested("run_1")) is False
