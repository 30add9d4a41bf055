"""Execution request builder."""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import ValidationError

from agent_verifier.errors import InvalidRequestError
from agent_verifier.models.enums import Runtime
from agent_verifier.models.sandbox import CodeArtifact, ExecutionRequest
from agent_verifier.runners import get_runner
from agent_verifier.sandbox.security import build_config


def build_request(
    task_id: str,
    subtask_id: str,
    agent_role: str,
    artifacts: Sequence[CodeArtifact],
    runtime: Runtime | str,
) -> ExecutionRequest:
    """Package *artifacts* and the runtime's fixed command table into a request.

    The test, lint and security-scan commands come from the runtime's
    runner; the isolation policy is the restrictive default from
    :func:`~agent_verifier.sandbox.security.build_config`.  Artifact
    content is not inspected.

    Raises
    ------
    InvalidRequestError
        If *artifacts* is empty, *runtime* is unsupported, or the ids and
        artifacts exceed the request bounds.  Nothing has been started
        when this is raised.
    """
    if not artifacts:
        raise InvalidRequestError("An execution request needs at least one artifact.")
    try:
        runtime = Runtime(runtime)
        runner = get_runner(runtime)
    except ValueError as exc:
        raise InvalidRequestError(f"Unsupported runtime: {runtime!r}") from exc

    try:
        return ExecutionRequest(
            task_id=task_id,
            subtask_id=subtask_id,
            agent_role=agent_role,
            artifacts=tuple(artifacts),
            test_command=runner.test_command,
            lint_command=runner.lint_command,
            security_scan_command=runner.security_scan_command,
            config=build_config(runtime),
        )
    except ValidationError as exc:
        raise InvalidRequestError(str(exc)) from exc
