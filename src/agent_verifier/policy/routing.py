"""Failure routing: which remediation actor receives a failed run."""

from __future__ import annotations

from agent_verifier.models.enums import AgentRole, FailureCategory, Runtime, SeverityLevel

_CATEGORY_AGENTS: dict[FailureCategory, AgentRole] = {
    FailureCategory.SYNTAX: AgentRole.AUTO_LINTER_AGENT,
    FailureCategory.SECURITY: AgentRole.SECOPS_AGENT,
    FailureCategory.CONTRACT: AgentRole.CONTRACT_NEGOTIATOR,
}

_RUNTIME_AGENTS: dict[Runtime, AgentRole] = {
    Runtime.PYTHON: AgentRole.PYTHON_AGENT,
    Runtime.NODE: AgentRole.JAVASCRIPT_AGENT,
    Runtime.TYPESCRIPT: AgentRole.TYPESCRIPT_AGENT,
}

_ESCALATING_SEVERITIES: frozenset[SeverityLevel] = frozenset(
    {SeverityLevel.HIGH, SeverityLevel.CRITICAL}
)


def route(
    category: FailureCategory,
    severity: SeverityLevel,
    runtime: Runtime | None = None,
) -> AgentRole:
    """Name the remediation actor for a failure.

    SYNTAX, SECURITY and CONTRACT failures each have a dedicated actor.
    Anything else is a logic failure: high or critical severity escalates
    to the planner, lower severity goes back to the coding agent for
    *runtime* (the Python agent when no runtime is given).
    """
    agent = _CATEGORY_AGENTS.get(category)
    if agent is not None:
        return agent
    if severity in _ESCALATING_SEVERITIES:
        return AgentRole.PLANNER_AGENT
    if runtime is None:
        return AgentRole.PYTHON_AGENT
    return _RUNTIME_AGENTS[runtime]
