"""Sandbox executors: run one :class:`ExecutionRequest`, return one :class:`ExecutionResult`."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path

import docker.errors
import requests.exceptions

from agent_verifier.config import Settings
from agent_verifier.errors import CollaboratorUnavailableError
from agent_verifier.models.enums import ExecutionStatus, LogStream, Runtime
from agent_verifier.models.sandbox import (
    ExecutionLog,
    ExecutionRequest,
    ExecutionResult,
    ResourceUsage,
)
from agent_verifier.runners import BaseRunner, PreparedCommand, get_runner
from agent_verifier.sandbox.container import ContainerSandbox, SandboxResult

logger = logging.getLogger(__name__)

COLLABORATOR_NAME = "sandbox executor"


class BaseSandboxExecutor(ABC):
    """Runs a request's artifacts in isolation.

    Implementations must return exactly one :class:`ExecutionResult` per
    call, enforce the attached :class:`SandboxConfig`, and raise
    :class:`CollaboratorUnavailableError` when they cannot run at all.
    Blocked actions and resource exhaustion are reported in the result,
    never raised.
    """

    @abstractmethod
    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        ...


class DockerSandboxExecutor(BaseSandboxExecutor):
    """Executor backed by ephemeral Docker containers.

    Every command on the request runs in its own fresh container built
    from the runtime's image; the per-command results are merged into a
    single :class:`ExecutionResult`.

    Parameters
    ----------
    settings:
        Service settings (images per runtime, seccomp profile path).
    sandbox:
        Container sandbox to use.  Created lazily from the environment's
        Docker daemon when omitted.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        sandbox: ContainerSandbox | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._sandbox = sandbox
        self._images: dict[Runtime, str] = {
            Runtime.PYTHON: self._settings.python_image,
            Runtime.NODE: self._settings.node_image,
            Runtime.TYPESCRIPT: self._settings.node_image,
        }
        self._seccomp_profile_json = _load_seccomp_profile(self._settings.seccomp_profile_path)

    def _get_sandbox(self) -> ContainerSandbox:
        if self._sandbox is None:
            try:
                self._sandbox = ContainerSandbox(allowed_images=set(self._images.values()))
            except docker.errors.DockerException as exc:
                raise CollaboratorUnavailableError(
                    COLLABORATOR_NAME, f"Docker daemon is not reachable: {exc}"
                ) from exc
        return self._sandbox

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        runner = get_runner(request.runtime)
        prepared = runner.prepare(request, image=self._images[request.runtime])
        sandbox = self._get_sandbox()

        result: ExecutionResult | None = None
        for command in prepared.commands:
            started = datetime.now(UTC)
            try:
                outcome = await sandbox.run(
                    image=prepared.image,
                    command=command.argv,
                    code_files=prepared.code_files,
                    config=request.config,
                    env_vars=prepared.env_vars,
                    seccomp_profile_json=self._seccomp_profile_json,
                )
            except docker.errors.ImageNotFound as exc:
                raise CollaboratorUnavailableError(
                    COLLABORATOR_NAME, f"image {prepared.image} is not available"
                ) from exc
            except (docker.errors.DockerException, requests.exceptions.ConnectionError) as exc:
                raise CollaboratorUnavailableError(COLLABORATOR_NAME, str(exc)) from exc

            step = self._to_result(request, runner, command, outcome, started)
            logger.info(
                "Sandbox %s for %s/%s finished: status=%s exit=%d time=%.3fs",
                command.kind.value,
                request.task_id,
                request.subtask_id,
                step.status.value,
                outcome.exit_code,
                outcome.execution_time_seconds,
            )
            result = step if result is None else result.merge(step)

        if result is None:
            # Nothing to run for this stage.
            return ExecutionResult(
                task_id=request.task_id,
                subtask_id=request.subtask_id,
                status=ExecutionStatus.SUCCESS,
                exit_code=0,
            )
        return result

    @staticmethod
    def _to_result(
        request: ExecutionRequest,
        runner: BaseRunner,
        command: PreparedCommand,
        outcome: SandboxResult,
        started: datetime,
    ) -> ExecutionResult:
        parsed = runner.parse_output(
            command.kind, outcome.exit_code, outcome.stdout, outcome.stderr
        )

        if outcome.timed_out:
            status = ExecutionStatus.TIMEOUT
        elif outcome.oom_killed:
            status = ExecutionStatus.ERROR
        elif runner.is_crash(command.kind, outcome.exit_code, parsed):
            status = ExecutionStatus.ERROR
        elif outcome.exit_code == 0:
            status = ExecutionStatus.SUCCESS
        else:
            status = ExecutionStatus.FAILURE

        logs: list[ExecutionLog] = []
        if outcome.stdout:
            logs.append(ExecutionLog(stream=LogStream.STDOUT, content=outcome.stdout))
        if outcome.stderr:
            logs.append(ExecutionLog(stream=LogStream.STDERR, content=outcome.stderr))

        return ExecutionResult(
            task_id=request.task_id,
            subtask_id=request.subtask_id,
            status=status,
            exit_code=outcome.exit_code,
            start_time=started,
            end_time=datetime.now(UTC),
            duration_ms=int(outcome.execution_time_seconds * 1000),
            logs=tuple(logs),
            test_results=tuple(parsed.test_results),
            security_findings=tuple(parsed.security_findings),
            lint_violations=tuple(parsed.lint_violations),
            resource_usage=ResourceUsage(
                peak_memory_mb=outcome.peak_memory_mb,
                cpu_time_ms=outcome.cpu_time_ms,
            ),
        )


def _load_seccomp_profile(path: str) -> str | None:
    if not path:
        return None
    profile = Path(path).read_text(encoding="utf-8")
    logger.info("Loaded seccomp profile from %s", path)
    return profile
