"""Liveness and readiness probes."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    """Liveness probe: OK whenever the process can serve requests."""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request) -> JSONResponse:
    """Readiness probe.

    Ready means runs can be both accepted and verified: the queue's Redis
    backend answers and, once started, the background worker is still
    alive.  Each check is reported so an operator can tell them apart.
    """
    queue = getattr(request.app.state, "queue", None)
    worker_task = getattr(request.app.state, "worker_task", None)

    checks = {
        "redis": queue is not None and await queue.health_check(),
        "worker": worker_task is None or not worker_task.done(),
    }
    ready_ = all(checks.values())
    return JSONResponse(
        content={"status": "ready" if ready_ else "not_ready", "checks": checks},
        status_code=200 if ready_ else 503,
    )
