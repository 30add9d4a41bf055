"""Execution runners for all supported artifact runtimes.

Each runner translates an :class:`~agent_verifier.models.sandbox.ExecutionRequest`
into a :class:`PreparedExecution` that the sandbox can run, and parses
container output back into a :class:`RunnerOutput`.

Use :func:`get_runner` to obtain the correct runner instance for a given
:class:`~agent_verifier.models.enums.Runtime`.
"""

from __future__ import annotations

from agent_verifier.models.enums import Runtime
from agent_verifier.runners.base import (
    BaseRunner,
    CommandKind,
    PreparedCommand,
    PreparedExecution,
    RunnerOutput,
)
from agent_verifier.runners.node_runner import NodeRunner, TypeScriptRunner
from agent_verifier.runners.python_runner import PythonRunner

__all__ = [
    "BaseRunner",
    "CommandKind",
    "NodeRunner",
    "PreparedCommand",
    "PreparedExecution",
    "PythonRunner",
    "RunnerOutput",
    "TypeScriptRunner",
    "get_runner",
    "supported_runtimes",
]

# ---------------------------------------------------------------------------
# Runtime -> runner class mapping
# ---------------------------------------------------------------------------

_RUNNER_MAP: dict[Runtime, type[BaseRunner]] = {
    Runtime.PYTHON: PythonRunner,
    Runtime.NODE: NodeRunner,
    Runtime.TYPESCRIPT: TypeScriptRunner,
}


def supported_runtimes() -> list[Runtime]:
    """Runtimes that have a runner, in declaration order."""
    return list(_RUNNER_MAP)


def get_runner(runtime: Runtime | str) -> BaseRunner:
    """Return a runner instance appropriate for the given *runtime*.

    Parameters
    ----------
    runtime:
        The :class:`~agent_verifier.models.enums.Runtime` (or its string
        value) identifying the execution environment.

    Returns
    -------
    BaseRunner
        An instance of the concrete runner subclass.

    Raises
    ------
    ValueError
        If *runtime* is not supported.
    """
    runner_cls = _RUNNER_MAP.get(runtime)  # type: ignore[call-overload]
    if runner_cls is None:
        raise ValueError(
            f"Unsupported runtime: {runtime!r}. "
            f"Supported runtimes: {sorted(_RUNNER_MAP.keys())}"
        )
    return runner_cls()
