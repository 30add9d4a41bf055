"""FastAPI application entry point.

The lifespan wires the run queue to Redis, builds the verification
pipeline (sandbox executor, dependency vetter, contract validator) and
runs the background worker for as long as the app is up.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agent_verifier.api.router import api_router
from agent_verifier.config import Settings
from agent_verifier.contracts import OpenApiContractValidator
from agent_verifier.queue import VerificationQueue
from agent_verifier.sandbox import DockerSandboxExecutor
from agent_verifier.vetting import ManifestDependencyVetter, OsvClient
from agent_verifier.worker import run_worker

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Collaborators shared by every verification run in this process."""

    executor: DockerSandboxExecutor
    dependency_vetter: ManifestDependencyVetter
    contract_validator: OpenApiContractValidator
    osv_client: OsvClient | None = None

    async def close(self) -> None:
        await self.contract_validator.close()
        if self.osv_client is not None:
            await self.osv_client.close()


def build_pipeline(settings: Settings) -> Pipeline:
    """Create the executor, dependency vetter and contract validator.

    The executor connects to Docker lazily on the first run, so building
    the pipeline never touches the daemon.
    """
    osv_client = OsvClient(api_url=settings.osv_api_url) if settings.osv_enabled else None
    return Pipeline(
        executor=DockerSandboxExecutor(settings),
        dependency_vetter=ManifestDependencyVetter(
            banned=settings.banned_dependencies,
            osv_client=osv_client,
        ),
        contract_validator=OpenApiContractValidator(
            fetch_timeout=settings.contract_fetch_timeout_seconds
        ),
        osv_client=osv_client,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan.

    Startup loads :class:`Settings`, connects the :class:`VerificationQueue`
    to Redis, builds the :class:`Pipeline` and starts the background
    worker.  Shutdown cancels the worker, which cancels its in-flight runs,
    then closes the HTTP clients and the Redis connection.
    """
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(
        "Starting agent-verifier (log_level=%s, max_concurrent_runs=%d, osv=%s)",
        settings.log_level,
        settings.max_concurrent_runs,
        settings.osv_enabled,
    )

    queue = VerificationQueue(aioredis.from_url(settings.redis_url, decode_responses=False))
    pipeline = build_pipeline(settings)

    worker_task = asyncio.create_task(
        run_worker(
            queue=queue,
            executor=pipeline.executor,
            dependency_vetter=pipeline.dependency_vetter,
            contract_validator=pipeline.contract_validator,
            settings=settings,
        ),
        name="verification-worker",
    )
    app.state.settings = settings
    app.state.queue = queue
    app.state.worker_task = worker_task

    try:
        yield
    finally:
        logger.info("Shutting down agent-verifier")
        worker_task.cancel()
        await asyncio.gather(worker_task, return_exceptions=True)
        await pipeline.close()
        await queue.close()
        logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Application instance
# ---------------------------------------------------------------------------

app = FastAPI(
    title="agent-verifier",
    description="Sandboxed verification pipeline for agent-generated code.",
    version="0.1.0",
    lifespan=lifespan,
)

# ---- Middleware ----------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=Settings().cors_allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)

# ---- Routes --------------------------------------------------------------

app.include_router(api_router)
