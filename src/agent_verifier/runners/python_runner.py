"""Python runner: pytest, flake8/pylint, and bandit."""

from __future__ import annotations

import json
import logging
import re

from agent_verifier.models.enums import FindingSeverity, LintSeverity, Runtime, TestStatus
from agent_verifier.models.findings import LintViolation, SecurityFinding, TestResult
from agent_verifier.runners.base import BaseRunner, CommandKind, RunnerOutput, relative_path

logger = logging.getLogger(__name__)

# ``test_main.py::test_login PASSED    [ 50%]``
_PYTEST_LINE_RE: re.Pattern[str] = re.compile(
    r"^(?P<file>[^\s:]+\.py)::(?P<name>\S+)\s+"
    r"(?P<status>PASSED|FAILED|SKIPPED|ERROR|XFAIL|XPASS)\b"
)
# ``FAILED test_main.py::test_login - AssertionError: assert 500 == 401``
_PYTEST_SUMMARY_RE: re.Pattern[str] = re.compile(
    r"^(?:FAILED|ERROR) (?P<file>[^\s:]+\.py)::(?P<name>\S+)(?: - (?P<message>.*))?$"
)
# ``TOTAL   120   12   90%`` from pytest-cov's terminal report.
_COVERAGE_TOTAL_RE: re.Pattern[str] = re.compile(r"^TOTAL\s+\d+\s+\d+.*?(\d+(?:\.\d+)?)%\s*$")

# flake8: ``./main.py:3:1: E302 expected 2 blank lines``
# pylint: ``main.py:1:0: C0114: Missing module docstring (missing-module-docstring)``
_LINT_LINE_RE: re.Pattern[str] = re.compile(
    r"^(?P<file>[^:\s][^:]*):(?P<line>\d+):(?P<col>\d+): (?P<rule>[A-Z]+\d+):? (?P<message>.+)$"
)
# flake8 codes that mean the file will not run (syntax errors, undefined names).
_FLAKE8_ERROR_PREFIXES: tuple[str, ...] = ("E9", "F63", "F7", "F82")

_PYTEST_STATUS: dict[str, TestStatus] = {
    "PASSED": TestStatus.PASSED,
    "XPASS": TestStatus.PASSED,
    "FAILED": TestStatus.FAILED,
    "ERROR": TestStatus.ERROR,
    "SKIPPED": TestStatus.SKIPPED,
    "XFAIL": TestStatus.SKIPPED,
}

_BANDIT_SEVERITY: dict[str, FindingSeverity] = {
    "UNDEFINED": FindingSeverity.LOW,
    "LOW": FindingSeverity.LOW,
    "MEDIUM": FindingSeverity.MEDIUM,
    "HIGH": FindingSeverity.HIGH,
}
# Hardcoded password checks are escalated: a leaked secret is exploitable as-is.
_BANDIT_CRITICAL_TESTS: frozenset[str] = frozenset({"B105", "B106", "B107"})

# pytest exit code when no tests were collected.
_PYTEST_NO_TESTS = 5


class PythonRunner(BaseRunner):
    """Runner for Python artifacts.

    Tests run with ``pytest --tb=short -v``, linting with flake8 then
    pylint, and the security scan with bandit's JSON reporter.  Bytecode
    and pytest's cache are disabled because the workspace is read-only.
    """

    runtime: Runtime = Runtime.PYTHON
    default_image: str = "agent-verifier-runner-python:latest"
    test_framework: str = "pytest"
    test_command: str = "pytest --tb=short -v"
    lint_command: str = "flake8 . && pylint *.py"
    security_scan_command: str = "bandit -r . -f json"
    env_vars: dict[str, str] = {
        "PYTHONDONTWRITEBYTECODE": "1",
        "PYTEST_ADDOPTS": "-p no:cacheprovider",
        "PYLINTHOME": "/scratch/.pylint.d",
    }

    def is_crash(self, kind: CommandKind, exit_code: int, output: RunnerOutput) -> bool:
        if kind == CommandKind.TESTS and exit_code == _PYTEST_NO_TESTS:
            return False
        return super().is_crash(kind, exit_code, output)

    def parse_tests(self, stdout: str, stderr: str) -> list[TestResult]:
        messages: dict[tuple[str, str], str] = {}
        coverage: float | None = None
        for line in stdout.splitlines():
            summary = _PYTEST_SUMMARY_RE.match(line)
            if summary and summary.group("message"):
                messages[(summary.group("file"), summary.group("name"))] = summary.group("message")
            total = _COVERAGE_TOTAL_RE.match(line)
            if total:
                coverage = float(total.group(1))

        results: list[TestResult] = []
        seen: set[tuple[str, str, TestStatus]] = set()
        for line in stdout.splitlines():
            match = _PYTEST_LINE_RE.match(line)
            if match is None:
                continue
            file = relative_path(match.group("file"))
            name = match.group("name")
            status = _PYTEST_STATUS[match.group("status")]
            # pytest prints a test twice when teardown errors after a pass.
            if (file, name, status) in seen:
                continue
            seen.add((file, name, status))
            results.append(
                TestResult(
                    name=name,
                    file=file,
                    status=status,
                    error_message=messages.get((match.group("file"), name)),
                    coverage_percentage=coverage,
                )
            )
        return results

    def parse_lint(self, stdout: str, stderr: str) -> list[LintViolation]:
        violations: list[LintViolation] = []
        for line in stdout.splitlines():
            match = _LINT_LINE_RE.match(line.strip())
            if match is None:
                continue
            rule = match.group("rule")
            violations.append(
                LintViolation(
                    rule=rule,
                    severity=_lint_severity(rule),
                    file=relative_path(match.group("file")),
                    line=int(match.group("line")),
                    column=int(match.group("col")),
                    message=match.group("message").strip(),
                )
            )
        return violations

    def parse_security_scan(self, stdout: str, stderr: str) -> list[SecurityFinding]:
        start = stdout.find("{")
        if start == -1:
            return []
        try:
            report = json.loads(stdout[start:])
        except json.JSONDecodeError:
            logger.warning("bandit produced unparseable JSON output")
            return []

        findings: list[SecurityFinding] = []
        for issue in report.get("results", []):
            test_id = issue.get("test_id", "")
            raw_severity = issue.get("issue_severity", "").upper()
            severity = _BANDIT_SEVERITY.get(raw_severity, FindingSeverity.LOW)
            if test_id in _BANDIT_CRITICAL_TESTS:
                severity = FindingSeverity.CRITICAL
            cwe = issue.get("issue_cwe") or {}
            findings.append(
                SecurityFinding(
                    severity=severity,
                    type=issue.get("test_name") or test_id or "bandit",
                    file=relative_path(issue.get("filename", "")),
                    line=issue.get("line_number"),
                    message=issue.get("issue_text", ""),
                    cwe=f"CWE-{cwe['id']}" if cwe.get("id") else None,
                    remediation=issue.get("more_info"),
                )
            )
        return findings


def _lint_severity(rule: str) -> LintSeverity:
    # Single-letter prefixes belong to pylint (C/R/W/E/F + 4 digits).
    if re.fullmatch(r"[CRWEFI]\d{4}", rule):
        return LintSeverity.ERROR if rule[0] in ("E", "F") else LintSeverity.WARNING
    if rule.startswith(_FLAKE8_ERROR_PREFIXES):
        return LintSeverity.ERROR
    return LintSeverity.WARNING
