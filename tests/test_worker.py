"""Tests for the background worker: run lifecycle and admission control."""

from __future__ import annotations

import asyncio

import pytest

from agent_verifier import worker
from agent_verifier.config import Settings
from agent_verifier.contracts import BaseContractValidator
from agent_verifier.errors import CollaboratorUnavailableError
from agent_verifier.models.enums import (
    ArtifactType,
    ExecutionStatus,
    RunStatus,
    Runtime,
    ScanStatus,
    TestStatus,
    Verdict,
    VerificationPhase,
)
from agent_verifier.models.findings import ContractValidationResult, TestResult
from agent_verifier.models.run import RepairRequest, VerificationRun
from agent_verifier.models.sandbox import CodeArtifact, ExecutionResult
from agent_verifier.models.task import Submission, TaskMeta, TaskSchema
from agent_verifier.queue import VerificationQueue
from agent_verifier.queue.redis_queue import REPAIR_STREAM_KEY
from agent_verifier.sandbox.executor import BaseSandboxExecutor
from agent_verifier.vetting import BaseDependencyVetter


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeExecutor(BaseSandboxExecutor):
    def __init__(self, tests_outcome=None, static_outcome=None):
        self.tests_outcome = tests_outcome
        self.static_outcome = static_outcome
        self.calls = 0

    async def execute(self, request):
        self.calls += 1
        outcome = self.tests_outcome if request.test_command else self.static_outcome
        if callable(outcome):
            return await outcome(request)
        if outcome is not None:
            return outcome
        return _result(test_results=(TestResult(name="test_ok", status=TestStatus.PASSED),))


class FakeVetter(BaseDependencyVetter):
    def __init__(self, error: Exception | None = None):
        self.error = error

    async def vet(self, artifacts, constraints):
        if self.error is not None:
            raise self.error
        return []


class FakeValidator(BaseContractValidator):
    async def validate(self, spec_url, artifacts, endpoints=()):
        return ContractValidationResult(validator="fake", spec_url=spec_url, passed=True)


def _result(status: ExecutionStatus = ExecutionStatus.SUCCESS, **kwargs) -> ExecutionResult:
    kwargs.setdefault("exit_code", 0 if status == ExecutionStatus.SUCCESS else 1)
    return ExecutionResult(task_id="task-1", subtask_id="sub-1", status=status, **kwargs)


def _run(artifacts: list[CodeArtifact] | None = None) -> VerificationRun:
    if artifacts is None:
        artifacts = [
            CodeArtifact(filename="main.py", content="x = 1\n", type=ArtifactType.SOURCE),
            CodeArtifact(filename="test_main.py", content="", type=ArtifactType.TEST),
        ]
    return VerificationRun(
        task=TaskSchema(
            meta=TaskMeta(task_id="task-1"),
            submission=Submission(
                subtask_id="sub-1",
                agent_role="Python Agent",
                runtime=Runtime.PYTHON,
                artifacts=artifacts,
            ),
        )
    )


async def _process(queue, run, executor=None, vetter=None):
    return await worker.process_run(
        queue,
        executor or FakeExecutor(),
        vetter or FakeVetter(),
        FakeValidator(),
        Settings(),
        run,
    )


# ======================================================================
# process_run
# ======================================================================


@pytest.mark.asyncio
class TestProcessRun:
    async def test_passing_run_completes(self, fake_redis):
        queue = VerificationQueue(fake_redis)
        run = _run()

        report = await _process(queue, run)

        assert report.output.verdict == Verdict.PASS
        assert await queue.get_status(run.run_id) == RunStatus.COMPLETED
        assert await queue.get_phase(run.run_id) == VerificationPhase.COMPLETE
        stored = await queue.get_report(run.run_id)
        assert stored.report_id == report.report_id
        assert stored.status == ScanStatus.COMPLETED
        assert REPAIR_STREAM_KEY not in fake_redis.streams

    async def test_failing_run_publishes_repair_request(self, fake_redis):
        queue = VerificationQueue(fake_redis)
        run = _run()
        executor = FakeExecutor(
            tests_outcome=_result(
                ExecutionStatus.FAILURE,
                test_results=(
                    TestResult(name="test_login", status=TestStatus.FAILED, error_message="boom"),
                ),
            )
        )

        report = await _process(queue, run, executor=executor)

        assert report.output.verdict == Verdict.FAIL
        # A FAIL verdict is still a completed verification.
        assert await queue.get_status(run.run_id) == RunStatus.COMPLETED
        (_, fields), = fake_redis.streams[REPAIR_STREAM_KEY]
        request = RepairRequest.model_validate_json(fields[b"data"])
        assert request.run_id == run.run_id
        assert request.subtask_id == "sub-1"
        assert request.target_agent == report.output.target_agent

    async def test_empty_submission_is_rejected(self, fake_redis):
        queue = VerificationQueue(fake_redis)
        run = _run(artifacts=[])

        assert await _process(queue, run) is None
        assert await queue.get_status(run.run_id) == RunStatus.REJECTED
        assert await queue.get_error(run.run_id)
        assert await queue.get_report(run.run_id) is None

    async def test_cancel_before_start_skips_verification(self, fake_redis):
        queue = VerificationQueue(fake_redis)
        run = _run()
        executor = FakeExecutor()
        await queue.request_cancel(run.run_id)

        assert await _process(queue, run, executor=executor) is None
        assert await queue.get_status(run.run_id) == RunStatus.CANCELLED
        assert executor.calls == 0

    async def test_cancel_while_running(self, fake_redis, monkeypatch):
        monkeypatch.setattr(worker, "CANCEL_POLL_SECONDS", 0.01)
        queue = VerificationQueue(fake_redis)
        run = _run()

        async def hang(request):
            await queue.request_cancel(run.run_id)
            await asyncio.Event().wait()

        report = await _process(queue, run, executor=FakeExecutor(static_outcome=hang))

        assert report is None
        assert await queue.get_status(run.run_id) == RunStatus.CANCELLED

    async def test_collaborator_failure_marks_run_failed(self, fake_redis):
        queue = VerificationQueue(fake_redis)
        run = _run()
        vetter = FakeVetter(CollaboratorUnavailableError("dependency vetter", "OSV unreachable"))

        report = await _process(queue, run, vetter=vetter)

        assert report.status == ScanStatus.FAILED
        assert await queue.get_status(run.run_id) == RunStatus.FAILED
        assert await queue.get_error(run.run_id) == "dependency vetter: OSV unreachable"


# ======================================================================
# run_worker
# ======================================================================


class StubQueue:
    """Hands out pre-loaded runs one at a time and records acknowledgements."""

    def __init__(self, runs: list[VerificationRun]) -> None:
        self.pending = [(f"{i}-0", run) for i, run in enumerate(runs, start=1)]
        self.acked: list[str] = []
        self.statuses: dict[str, tuple[RunStatus, str | None]] = {}

    async def dequeue(self, group, consumer, count=1, block_ms=5000):
        if not self.pending:
            await asyncio.sleep(0.01)
            return []
        batch, self.pending = self.pending[:count], self.pending[count:]
        return batch

    async def acknowledge(self, msg_id, group):
        self.acked.append(msg_id)

    async def set_status(self, run_id, status, error=None):
        self.statuses[run_id] = (status, error)


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


@pytest.mark.asyncio
class TestRunWorker:
    async def test_admission_is_bounded_by_max_concurrent_runs(self, monkeypatch):
        runs = [_run() for _ in range(5)]
        queue = StubQueue(runs)
        release = asyncio.Event()
        active = 0
        peak = 0

        async def gated_process_run(queue, executor, vetter, validator, settings, run):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await release.wait()
            active -= 1

        monkeypatch.setattr(worker, "process_run", gated_process_run)
        task = asyncio.create_task(
            worker.run_worker(
                queue,
                FakeExecutor(),
                FakeVetter(),
                FakeValidator(),
                Settings(max_concurrent_runs=2),
            )
        )
        try:
            await _wait_for(lambda: active == 2)
            await asyncio.sleep(0.05)
            # The rest stay queued until a slot frees up.
            assert len(queue.pending) == 3

            release.set()
            await _wait_for(lambda: len(queue.acked) == 5)
            assert peak == 2
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def test_unexpected_error_marks_run_failed_and_acknowledges(self, monkeypatch):
        run = _run()
        queue = StubQueue([run])

        async def broken_process_run(*args):
            raise RuntimeError("kaboom")

        monkeypatch.setattr(worker, "process_run", broken_process_run)
        task = asyncio.create_task(
            worker.run_worker(queue, FakeExecutor(), FakeVetter(), FakeValidator(), Settings())
        )
        try:
            await _wait_for(lambda: queue.acked == ["1-0"])
            assert queue.statuses[run.run_id] == (RunStatus.FAILED, "internal worker error")
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def test_shutdown_cancels_in_flight_runs(self, monkeypatch):
        run = _run()
        queue = StubQueue([run])
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def slow_process_run(queue, executor, vetter, validator, settings, run):
            await queue.set_status(run.run_id, RunStatus.RUNNING)
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

        monkeypatch.setattr(worker, "process_run", slow_process_run)
        task = asyncio.create_task(
            worker.run_worker(queue, FakeExecutor(), FakeVetter(), FakeValidator(), Settings())
        )
        await asyncio.wait_for(started.wait(), timeout=2)

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert cancelled.is_set()
        # The message is still acknowledged, so the run is closed out rather
        # than left RUNNING.
        assert queue.acked == ["1-0"]
        assert queue.statuses[run.run_id] == (RunStatus.CANCELLED, "worker shutdown")
