"""Background worker that runs queued verifications.

The worker uses Redis Streams consumer groups so that multiple worker
instances can share the workload.  Each worker admits at most
``max_concurrent_runs`` runs at a time; it only reads the stream while a
slot is free, so excess runs stay queued.  A message is acknowledged once
its run has finished (or has irrecoverably failed).
"""

from __future__ import annotations

import asyncio
import logging

from agent_verifier.config import Settings
from agent_verifier.contracts import BaseContractValidator
from agent_verifier.errors import InvalidRequestError, VerificationCancelledError
from agent_verifier.models.enums import AgentRole, RunStatus, ScanStatus, VerificationPhase
from agent_verifier.models.report import VerificationReport
from agent_verifier.models.run import RepairRequest, VerificationRun
from agent_verifier.orchestrator import VerificationOrchestrator
from agent_verifier.queue import VerificationQueue
from agent_verifier.sandbox.executor import BaseSandboxExecutor
from agent_verifier.vetting import BaseDependencyVetter

logger = logging.getLogger(__name__)

CONSUMER_GROUP = "verifier-workers"

# How often a running verification checks its cancellation flag.
CANCEL_POLL_SECONDS = 1.0


async def run_worker(
    queue: VerificationQueue,
    executor: BaseSandboxExecutor,
    dependency_vetter: BaseDependencyVetter,
    contract_validator: BaseContractValidator,
    settings: Settings,
    consumer_name: str = "worker-1",
) -> None:
    """Long-running coroutine that pulls runs from the queue and verifies them.

    Parameters
    ----------
    queue:
        The Redis-backed run queue.
    executor:
        Sandbox executor shared by every run.
    dependency_vetter:
        Dependency vetter shared by every run.
    contract_validator:
        Contract validator shared by every run.
    settings:
        Service settings (admission limit, phase SLAs).
    consumer_name:
        Unique name for this consumer within the consumer group.
    """
    logger.info(
        "Worker %s starting (group=%s, max_concurrent_runs=%d)",
        consumer_name,
        CONSUMER_GROUP,
        settings.max_concurrent_runs,
    )
    slots = asyncio.Semaphore(settings.max_concurrent_runs)
    in_flight: set[asyncio.Task[None]] = set()

    async def handle(msg_id: str, run: VerificationRun) -> None:
        try:
            await process_run(
                queue, executor, dependency_vetter, contract_validator, settings, run
            )
        except asyncio.CancelledError:
            # The message is acknowledged below, so the run must not stay RUNNING.
            logger.warning("Run %s interrupted by worker shutdown", run.run_id)
            await queue.set_status(run.run_id, RunStatus.CANCELLED, error="worker shutdown")
            raise
        except Exception:
            logger.exception("Failed to process run %s", run.run_id)
            await queue.set_status(run.run_id, RunStatus.FAILED, error="internal worker error")
        finally:
            await queue.acknowledge(msg_id, CONSUMER_GROUP)
            slots.release()

    try:
        while True:
            await slots.acquire()
            try:
                messages = await queue.dequeue(
                    group=CONSUMER_GROUP,
                    consumer=consumer_name,
                    count=1,
                    block_ms=5000,
                )
            except asyncio.CancelledError:
                slots.release()
                raise
            except Exception:
                slots.release()
                logger.exception("Worker loop error, retrying in 1 s")
                await asyncio.sleep(1)
                continue

            if not messages:
                slots.release()
                continue

            for index, (msg_id, run) in enumerate(messages):
                if index:
                    await slots.acquire()
                task = asyncio.create_task(handle(msg_id, run), name=f"verify-{run.run_id}")
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)

    except asyncio.CancelledError:
        logger.info("Worker %s shutting down (%d runs in flight)", consumer_name, len(in_flight))
        for task in in_flight:
            task.cancel()
        await asyncio.gather(*in_flight, return_exceptions=True)


async def process_run(
    queue: VerificationQueue,
    executor: BaseSandboxExecutor,
    dependency_vetter: BaseDependencyVetter,
    contract_validator: BaseContractValidator,
    settings: Settings,
    run: VerificationRun,
) -> VerificationReport | None:
    """Verify a single run end-to-end.

    1. Honour a cancellation requested while the run was still queued.
    2. Mark the run RUNNING and drive a fresh orchestrator over its task,
       storing every report snapshot and publishing the repair request
       of a failed verdict.
    3. Record the final run status.

    Returns the finished report, or ``None`` when no report was produced
    (rejected or cancelled runs).
    """
    if await queue.is_cancel_requested(run.run_id):
        await queue.set_status(run.run_id, RunStatus.CANCELLED)
        logger.info("Run %s cancelled before it started", run.run_id)
        return None

    await queue.set_status(run.run_id, RunStatus.RUNNING)

    async def on_progress(snapshot: VerificationReport, phase: VerificationPhase) -> None:
        await queue.store_snapshot(run.run_id, snapshot, phase)

    async def on_repair_request(target: AgentRole, suggestion: str) -> None:
        await queue.publish_repair_request(
            RepairRequest(
                run_id=run.run_id,
                task_id=run.task_id,
                subtask_id=run.task.submission.subtask_id,
                target_agent=target,
                repair_suggestion=suggestion,
            )
        )

    orchestrator = VerificationOrchestrator(
        executor=executor,
        dependency_vetter=dependency_vetter,
        contract_validator=contract_validator,
        settings=settings,
        on_progress=on_progress,
        on_repair_request=on_repair_request,
    )
    watcher = asyncio.create_task(_watch_cancellation(queue, run.run_id, orchestrator))
    try:
        report = await orchestrator.run_verification(run.task)
    except InvalidRequestError as exc:
        await queue.set_status(run.run_id, RunStatus.REJECTED, error=str(exc))
        logger.warning("Run %s rejected: %s", run.run_id, exc)
        return None
    except VerificationCancelledError:
        await queue.set_status(run.run_id, RunStatus.CANCELLED)
        return None
    finally:
        watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)

    if report.status == ScanStatus.FAILED:
        await queue.set_status(run.run_id, RunStatus.FAILED, error=_abort_reason(report))
    else:
        await queue.set_status(run.run_id, RunStatus.COMPLETED)
    return report


async def _watch_cancellation(
    queue: VerificationQueue,
    run_id: str,
    orchestrator: VerificationOrchestrator,
) -> None:
    while not await queue.is_cancel_requested(run_id):
        await asyncio.sleep(CANCEL_POLL_SECONDS)
    orchestrator.cancel()


def _abort_reason(report: VerificationReport) -> str | None:
    return next(
        (phase.error for phase in report.phases() if phase.status == ScanStatus.FAILED), None
    )
