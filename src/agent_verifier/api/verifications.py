"""Submit/status/report/cancel endpoints for verification runs."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from agent_verifier.errors import InvalidRequestError
from agent_verifier.models.enums import RunStatus, VerificationPhase
from agent_verifier.models.run import VerificationRun
from agent_verifier.models.task import TaskSchema
from agent_verifier.sandbox.request import build_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/verifications", tags=["verifications"])

_TERMINAL_STATUSES: frozenset[RunStatus] = frozenset({
    RunStatus.COMPLETED,
    RunStatus.FAILED,
    RunStatus.CANCELLED,
    RunStatus.REJECTED,
})


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class SubmitVerificationResponse(BaseModel):
    """Response body for ``POST /v1/verifications``."""

    run_id: str
    task_id: str
    status: RunStatus


class RunStatusResponse(BaseModel):
    """Response body for ``GET /v1/verifications/{run_id}``."""

    run_id: str
    status: str
    phase: VerificationPhase | None = None
    error: str | None = None


class CancelResponse(BaseModel):
    run_id: str
    status: RunStatus
    cancel_requested: bool


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=SubmitVerificationResponse, status_code=201)
async def submit_verification(body: TaskSchema, request: Request) -> SubmitVerificationResponse:
    """Queue a task submission for verification.

    The submission is checked the same way the orchestrator checks it
    (non-empty artifacts, supported runtime) so malformed requests are
    refused with 400 instead of being queued.
    """
    settings = request.app.state.settings
    queue = request.app.state.queue

    size = sum(len(a.content.encode("utf-8")) for a in body.submission.artifacts)
    if size > settings.max_submission_bytes:
        raise HTTPException(
            status_code=413,
            detail=(
                f"Submitted artifacts exceed maximum allowed size "
                f"({size:,} bytes > {settings.max_submission_bytes:,} bytes)."
            ),
        )

    submission = body.submission
    try:
        build_request(
            task_id=body.task_id,
            subtask_id=submission.subtask_id,
            agent_role=submission.agent_role,
            artifacts=submission.artifacts,
            runtime=submission.runtime,
        )
    except InvalidRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    run = VerificationRun(task=body)
    await queue.enqueue(run)

    logger.info(
        "Verification submitted: run=%s task=%s runtime=%s artifacts=%d",
        run.run_id,
        run.task_id,
        submission.runtime.value,
        len(submission.artifacts),
    )
    return SubmitVerificationResponse(
        run_id=run.run_id,
        task_id=run.task_id,
        status=RunStatus.QUEUED,
    )


@router.get("/{run_id}", response_model=RunStatusResponse)
async def get_run_status(run_id: str, request: Request) -> RunStatusResponse:
    """Get the current status and phase of a verification run."""
    queue = request.app.state.queue

    status = await queue.get_status(run_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found.")

    return RunStatusResponse(
        run_id=run_id,
        status=status.value,
        phase=await queue.get_phase(run_id),
        error=await queue.get_error(run_id),
    )


@router.get("/{run_id}/report")
async def get_run_report(run_id: str, request: Request) -> dict:
    """Get the latest report snapshot of a run.

    While the run is in progress this is the most recent snapshot; once
    it has finished it is the final report.  Returns 404 until the first
    snapshot has been stored.
    """
    queue = request.app.state.queue

    report = await queue.get_report(run_id)
    if report is None:
        raise HTTPException(
            status_code=404,
            detail=f"No report found for run {run_id}. The run may still be queued.",
        )

    return report.model_dump(mode="json")


@router.post("/{run_id}/cancel", response_model=CancelResponse, status_code=202)
async def cancel_run(run_id: str, request: Request) -> CancelResponse:
    """Request cancellation of a queued or running verification.

    Cancellation is best effort: a run that has already started
    finalizing completes normally.
    """
    queue = request.app.state.queue

    status = await queue.get_status(run_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found.")
    if status in _TERMINAL_STATUSES:
        raise HTTPException(
            status_code=409,
            detail=f"Run {run_id} has already finished ({status.value}).",
        )

    await queue.request_cancel(run_id)
    return CancelResponse(run_id=run_id, status=status, cancel_requested=True)


@router.get("", response_model=list[RunStatusResponse])
async def list_runs(
    request: Request,
    limit: int = Query(default=50, ge=1, le=200, description="Maximum number of runs to return."),
) -> list[RunStatusResponse]:
    """List recent verification runs ordered by creation time (newest first)."""
    queue = request.app.state.queue

    runs = await queue.list_recent_runs(limit=limit)
    return [RunStatusResponse(run_id=r["run_id"], status=r["status"]) for r in runs]
