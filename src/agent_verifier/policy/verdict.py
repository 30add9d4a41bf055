"""Reduce a raw execution result to a verdict and failure category."""

from __future__ import annotations

from agent_verifier.models.enums import ExecutionStatus, FailureCategory, Verdict
from agent_verifier.models.sandbox import ExecutionResult

# Execution-level failures that block every other signal.
_BLOCKING_STATUSES: frozenset[ExecutionStatus] = frozenset(
    {ExecutionStatus.TIMEOUT, ExecutionStatus.ERROR}
)


def map_to_verdict(result: ExecutionResult) -> tuple[Verdict, FailureCategory]:
    """Return ``(verdict, category)`` for *result*.

    Rules are evaluated top to bottom and the first match wins:

    1. any high or critical security finding -> ``FAIL/SECURITY``
    2. any lint violation at ``error`` -> ``FAIL/SYNTAX``
    3. any failed or errored test -> ``FAIL/LOGIC``
    4. execution status ``timeout`` or ``error`` -> ``FAIL/LOGIC``
    5. otherwise ``PASS/NONE``
    """
    if any(finding.is_blocking for finding in result.security_findings):
        return Verdict.FAIL, FailureCategory.SECURITY
    if any(violation.is_blocking for violation in result.lint_violations):
        return Verdict.FAIL, FailureCategory.SYNTAX
    if any(test.is_failure for test in result.test_results):
        return Verdict.FAIL, FailureCategory.LOGIC
    if result.status in _BLOCKING_STATUSES:
        return Verdict.FAIL, FailureCategory.LOGIC
    return Verdict.PASS, FailureCategory.NONE
