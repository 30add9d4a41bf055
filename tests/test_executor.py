"""Tests for the Docker-backed sandbox executor."""

from __future__ import annotations

import asyncio
import json

import docker.errors
import pytest

from agent_verifier.config import Settings
from agent_verifier.errors import CollaboratorUnavailableError
from agent_verifier.models.enums import (
    ArtifactType,
    ExecutionStage,
    ExecutionStatus,
    LogStream,
    Runtime,
)
from agent_verifier.models.sandbox import CodeArtifact
from agent_verifier.sandbox import DockerSandboxExecutor, SandboxResult, build_request


class FakeSandbox:
    """Stands in for :class:`ContainerSandbox`; replays canned outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []

    async def run(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _request(runtime: Runtime = Runtime.PYTHON, stage: ExecutionStage | None = None):
    request = build_request(
        task_id="task-1",
        subtask_id="sub-1",
        agent_role="Python Agent",
        artifacts=[CodeArtifact(filename="main.py", content="x = 1\n", type=ArtifactType.SOURCE)],
        runtime=runtime,
    )
    return request.for_stage(stage) if stage else request


def _execute(sandbox: FakeSandbox, request, settings: Settings | None = None):
    executor = DockerSandboxExecutor(settings or Settings(), sandbox=sandbox)
    return asyncio.run(executor.execute(request))


BANDIT_CLEAN = json.dumps({"results": []})
PYTEST_FAILED = (
    "test_main.py::test_ok PASSED\n"
    "test_main.py::test_bad FAILED\n"
    "FAILED test_main.py::test_bad - assert 1 == 2\n"
)


class TestDockerSandboxExecutor:
    def test_static_stage_runs_lint_then_scan(self):
        sandbox = FakeSandbox(
            SandboxResult(exit_code=1, stdout="main.py:1:1: F821 undefined name 'y'\n", stderr=""),
            SandboxResult(exit_code=0, stdout=BANDIT_CLEAN, stderr=""),
        )
        result = _execute(sandbox, _request(stage=ExecutionStage.STATIC_ANALYSIS))

        assert [c["command"][-1] for c in sandbox.calls] == [
            "flake8 . && pylint *.py",
            "bandit -r . -f json",
        ]
        assert result.status == ExecutionStatus.FAILURE
        assert result.exit_code == 1
        assert [v.rule for v in result.lint_violations] == ["F821"]
        assert result.test_results == ()

    def test_test_stage_parses_results(self):
        sandbox = FakeSandbox(SandboxResult(exit_code=1, stdout=PYTEST_FAILED, stderr="boom"))
        result = _execute(sandbox, _request(stage=ExecutionStage.TESTS))

        assert len(sandbox.calls) == 1
        assert result.status == ExecutionStatus.FAILURE
        assert [t.status.value for t in result.test_results] == ["passed", "failed"]
        assert result.stream_text(LogStream.STDERR) == "boom"

    def test_clean_run_is_success(self):
        sandbox = FakeSandbox(
            SandboxResult(exit_code=0, stdout="test_main.py::test_ok PASSED\n", stderr="")
        )
        result = _execute(sandbox, _request(stage=ExecutionStage.TESTS))
        assert result.status == ExecutionStatus.SUCCESS
        assert result.exit_code == 0

    def test_timeout(self):
        sandbox = FakeSandbox(SandboxResult(exit_code=-1, stdout="", stderr="", timed_out=True))
        result = _execute(sandbox, _request(stage=ExecutionStage.TESTS))
        assert result.status == ExecutionStatus.TIMEOUT

    def test_oom_is_error(self):
        sandbox = FakeSandbox(
            SandboxResult(
                exit_code=137, stdout=PYTEST_FAILED, stderr="", oom_killed=True
            )
        )
        result = _execute(sandbox, _request(stage=ExecutionStage.TESTS))
        assert result.status == ExecutionStatus.ERROR

    def test_tool_crash_is_error(self):
        sandbox = FakeSandbox(
            SandboxResult(exit_code=127, stdout="", stderr="sh: flake8: not found"),
            SandboxResult(exit_code=0, stdout=BANDIT_CLEAN, stderr=""),
        )
        result = _execute(sandbox, _request(stage=ExecutionStage.STATIC_ANALYSIS))
        assert result.status == ExecutionStatus.ERROR

    def test_no_tests_collected_is_not_a_crash(self):
        sandbox = FakeSandbox(SandboxResult(exit_code=5, stdout="no tests ran", stderr=""))
        result = _execute(sandbox, _request(stage=ExecutionStage.TESTS))
        assert result.status == ExecutionStatus.FAILURE

    def test_resource_usage_recorded(self):
        sandbox = FakeSandbox(
            SandboxResult(
                exit_code=0,
                stdout="",
                stderr="",
                execution_time_seconds=1.25,
                peak_memory_mb=42.0,
                cpu_time_ms=900,
            )
        )
        result = _execute(sandbox, _request(stage=ExecutionStage.TESTS))
        assert result.duration_ms == 1250
        assert result.resource_usage.peak_memory_mb == 42.0
        assert result.resource_usage.cpu_time_ms == 900

    def test_image_per_runtime(self):
        settings = Settings(node_image="node-runner:test")
        sandbox = FakeSandbox(SandboxResult(exit_code=0, stdout="ok 1 - works\n", stderr=""))
        _execute(sandbox, _request(Runtime.TYPESCRIPT, ExecutionStage.TESTS), settings)
        assert sandbox.calls[0]["image"] == "node-runner:test"

    def test_sandbox_config_forwarded(self):
        sandbox = FakeSandbox(SandboxResult(exit_code=0, stdout="", stderr=""))
        request = _request(stage=ExecutionStage.TESTS)
        _execute(sandbox, request)
        assert sandbox.calls[0]["config"] == request.config
        assert sandbox.calls[0]["code_files"] == {"main.py": "x = 1\n"}

    def test_seccomp_profile_loaded(self, tmp_path):
        profile = tmp_path / "seccomp.json"
        profile.write_text('{"defaultAction": "SCMP_ACT_ERRNO"}')
        sandbox = FakeSandbox(SandboxResult(exit_code=0, stdout="", stderr=""))
        _execute(
            sandbox,
            _request(stage=ExecutionStage.TESTS),
            Settings(seccomp_profile_path=str(profile)),
        )
        assert sandbox.calls[0]["seccomp_profile_json"] == '{"defaultAction": "SCMP_ACT_ERRNO"}'

    def test_nothing_to_run(self):
        request = _request().model_copy(
            update={"test_command": None, "lint_command": None, "security_scan_command": None}
        )
        result = _execute(FakeSandbox(), request)
        assert result.status == ExecutionStatus.SUCCESS
        assert result.exit_code == 0


class TestExecutorUnavailable:
    def test_missing_image(self):
        sandbox = FakeSandbox(docker.errors.ImageNotFound("no such image"))
        with pytest.raises(CollaboratorUnavailableError, match="is not available"):
            _execute(sandbox, _request(stage=ExecutionStage.TESTS))

    def test_docker_failure(self):
        sandbox = FakeSandbox(docker.errors.DockerException("daemon gone"))
        with pytest.raises(CollaboratorUnavailableError) as exc_info:
            _execute(sandbox, _request(stage=ExecutionStage.TESTS))
        assert exc_info.value.collaborator == "sandbox executor"
