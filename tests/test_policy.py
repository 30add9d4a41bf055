"""Tests for verdict mapping, failure routing and the repair budget."""

from __future__ import annotations

import itertools

import pytest

from agent_verifier.models.enums import (
    AgentRole,
    ExecutionStatus,
    FailureCategory,
    FindingSeverity,
    LintSeverity,
    Runtime,
    SeverityLevel,
    TestStatus,
    Verdict,
)
from agent_verifier.models.findings import LintViolation, SecurityFinding, TestResult
from agent_verifier.models.sandbox import ExecutionResult
from agent_verifier.policy import map_to_verdict, route, should_retry


def _result(status: ExecutionStatus = ExecutionStatus.SUCCESS, **kwargs) -> ExecutionResult:
    return ExecutionResult(task_id="task-1", subtask_id="sub-1", status=status, **kwargs)


def _finding(severity: FindingSeverity) -> SecurityFinding:
    return SecurityFinding(severity=severity, type="exec_used", file="main.py", message="exec")


def _lint(severity: LintSeverity) -> LintViolation:
    return LintViolation(rule="F821", severity=severity, file="main.py", message="undefined")


def _test(status: TestStatus) -> TestResult:
    return TestResult(name="test_login", status=status)


# ======================================================================
# map_to_verdict
# ======================================================================


class TestMapToVerdict:
    def test_clean_result_passes(self):
        assert map_to_verdict(_result()) == (Verdict.PASS, FailureCategory.NONE)

    @pytest.mark.parametrize("severity", [FindingSeverity.HIGH, FindingSeverity.CRITICAL])
    def test_blocking_security_finding(self, severity):
        result = _result(security_findings=(_finding(severity),))
        assert map_to_verdict(result) == (Verdict.FAIL, FailureCategory.SECURITY)

    @pytest.mark.parametrize("severity", [FindingSeverity.LOW, FindingSeverity.MEDIUM])
    def test_minor_security_finding_passes(self, severity):
        result = _result(security_findings=(_finding(severity),))
        assert map_to_verdict(result) == (Verdict.PASS, FailureCategory.NONE)

    def test_lint_error_is_syntax(self):
        result = _result(lint_violations=(_lint(LintSeverity.ERROR),))
        assert map_to_verdict(result) == (Verdict.FAIL, FailureCategory.SYNTAX)

    def test_lint_warning_passes(self):
        result = _result(lint_violations=(_lint(LintSeverity.WARNING),))
        assert map_to_verdict(result)[0] == Verdict.PASS

    @pytest.mark.parametrize("status", [TestStatus.FAILED, TestStatus.ERROR])
    def test_failed_test_is_logic(self, status):
        result = _result(ExecutionStatus.FAILURE, test_results=(_test(status),))
        assert map_to_verdict(result) == (Verdict.FAIL, FailureCategory.LOGIC)

    @pytest.mark.parametrize("status", [ExecutionStatus.TIMEOUT, ExecutionStatus.ERROR])
    def test_execution_failure_is_logic(self, status):
        assert map_to_verdict(_result(status)) == (Verdict.FAIL, FailureCategory.LOGIC)

    def test_security_outranks_everything(self):
        result = _result(
            ExecutionStatus.TIMEOUT,
            security_findings=(_finding(FindingSeverity.CRITICAL),),
            lint_violations=(_lint(LintSeverity.ERROR),),
            test_results=(_test(TestStatus.FAILED),),
        )
        assert map_to_verdict(result) == (Verdict.FAIL, FailureCategory.SECURITY)

    def test_syntax_outranks_logic(self):
        result = _result(
            lint_violations=(_lint(LintSeverity.ERROR),),
            test_results=(_test(TestStatus.FAILED),),
        )
        assert map_to_verdict(result) == (Verdict.FAIL, FailureCategory.SYNTAX)

    def test_pass_iff_category_none(self):
        for result in (
            _result(),
            _result(ExecutionStatus.ERROR),
            _result(lint_violations=(_lint(LintSeverity.ERROR),)),
        ):
            verdict, category = map_to_verdict(result)
            assert (verdict == Verdict.PASS) == (category == FailureCategory.NONE)

    def test_deterministic(self):
        result = _result(test_results=(_test(TestStatus.FAILED),))
        assert map_to_verdict(result) == map_to_verdict(result)


# ======================================================================
# route
# ======================================================================


class TestRoute:
    @pytest.mark.parametrize(
        "category, agent",
        [
            (FailureCategory.SYNTAX, AgentRole.AUTO_LINTER_AGENT),
            (FailureCategory.SECURITY, AgentRole.SECOPS_AGENT),
            (FailureCategory.CONTRACT, AgentRole.CONTRACT_NEGOTIATOR),
        ],
    )
    def test_dedicated_agents_ignore_severity(self, category, agent):
        for severity in SeverityLevel:
            assert route(category, severity) == agent

    @pytest.mark.parametrize("severity", [SeverityLevel.HIGH, SeverityLevel.CRITICAL])
    def test_severe_logic_escalates_to_planner(self, severity):
        assert route(FailureCategory.LOGIC, severity, Runtime.NODE) == AgentRole.PLANNER_AGENT

    @pytest.mark.parametrize(
        "runtime, agent",
        [
            (Runtime.PYTHON, AgentRole.PYTHON_AGENT),
            (Runtime.NODE, AgentRole.JAVASCRIPT_AGENT),
            (Runtime.TYPESCRIPT, AgentRole.TYPESCRIPT_AGENT),
            (None, AgentRole.PYTHON_AGENT),
        ],
    )
    def test_minor_logic_goes_to_runtime_agent(self, runtime, agent):
        assert route(FailureCategory.LOGIC, SeverityLevel.MEDIUM, runtime) == agent
        assert route(FailureCategory.LOGIC, SeverityLevel.LOW, runtime) == agent

    def test_total_over_enums(self):
        for category, severity in itertools.product(FailureCategory, SeverityLevel):
            assert isinstance(route(category, severity), AgentRole)


# ======================================================================
# should_retry
# ======================================================================


class TestShouldRetry:
    def test_within_budget(self):
        assert should_retry(4, 5, FailureCategory.SYNTAX) is True

    def test_budget_exhausted(self):
        for category in FailureCategory:
            assert should_retry(5, 5, category) is False
            assert should_retry(6, 5, category) is False

    def test_security_gets_half_the_budget(self):
        assert should_retry(1, 5, FailureCategory.SECURITY) is True
        assert should_retry(2, 5, FailureCategory.SECURITY) is False

    def test_zero_budget(self):
        assert should_retry(0, 0, FailureCategory.LOGIC) is False

    def test_never_retries_past_budget(self):
        for iteration, budget in itertools.product(range(8), range(8)):
            for category in FailureCategory:
                if should_retry(iteration, budget, category):
                    assert iteration < budget
