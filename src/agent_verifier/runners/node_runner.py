"""Node.js and TypeScript runner: npm test, eslint, and npm audit."""

from __future__ import annotations

import json
import logging
import re

from agent_verifier.models.enums import FindingSeverity, LintSeverity, Runtime, TestStatus
from agent_verifier.models.findings import LintViolation, SecurityFinding, TestResult
from agent_verifier.runners.base import BaseRunner, relative_path

logger = logging.getLogger(__name__)

# TAP (node --test, tape, ava --tap): ``ok 1 - adds numbers`` / ``not ok 2 - fails # SKIP``
_TAP_LINE_RE: re.Pattern[str] = re.compile(
    r"^\s*(?P<result>not ok|ok)\s+\d+\s*(?:-\s*)?(?P<name>.*?)"
    r"(?:\s+#\s*(?P<directive>SKIP|TODO)\b.*)?\s*$",
    re.IGNORECASE,
)
# jest / mocha spec reporters: ``✓ adds numbers (3 ms)`` / ``✕ fails (12 ms)``
_SPEC_LINE_RE: re.Pattern[str] = re.compile(
    r"^\s*(?P<mark>✓|√|✔|✕|×|✖|○)\s+(?:skipped\s+)?(?P<name>.+?)"
    r"(?:\s+\((?P<ms>\d+(?:\.\d+)?)\s*ms\))?\s*$"
)
_SPEC_MARKS: dict[str, TestStatus] = {
    "✓": TestStatus.PASSED,
    "√": TestStatus.PASSED,
    "✔": TestStatus.PASSED,
    "✕": TestStatus.FAILED,
    "×": TestStatus.FAILED,
    "✖": TestStatus.FAILED,
    "○": TestStatus.SKIPPED,
}
# TAP diagnostic duration: ``  duration_ms: 1.23``
_TAP_DURATION_RE: re.Pattern[str] = re.compile(r"^\s*duration_ms:\s*(?P<ms>\d+(?:\.\d+)?)")

# eslint "stylish" formatter: file header, then ``  12:5  error  msg  rule-id``
_ESLINT_LINE_RE: re.Pattern[str] = re.compile(
    r"^\s+(?P<line>\d+):(?P<col>\d+)\s+(?P<severity>error|warning)\s+"
    r"(?P<message>.*?)(?:\s{2,}(?P<rule>[\w@/-]+))?\s*$"
)

_AUDIT_SEVERITY: dict[str, FindingSeverity] = {
    "info": FindingSeverity.LOW,
    "low": FindingSeverity.LOW,
    "moderate": FindingSeverity.MEDIUM,
    "high": FindingSeverity.HIGH,
    "critical": FindingSeverity.CRITICAL,
}


class NodeRunner(BaseRunner):
    """Runner for JavaScript artifacts executed with Node.js.

    ``npm test`` output is read as TAP or as a jest/mocha spec reporter,
    ``eslint`` output in its default stylish format, and ``npm audit``
    output as JSON.
    """

    runtime: Runtime = Runtime.NODE
    default_image: str = "agent-verifier-runner-node:latest"
    test_framework: str = "npm test"
    test_command: str = "npm test"
    lint_command: str = "eslint . --ext .ts,.tsx,.js,.jsx"
    security_scan_command: str = "npm audit --json"
    env_vars: dict[str, str] = {
        "CI": "true",
        "npm_config_cache": "/scratch/.npm",
        "npm_config_update_notifier": "false",
    }

    def parse_tests(self, stdout: str, stderr: str) -> list[TestResult]:
        results: list[TestResult] = []
        # jest writes its reporter to stderr.
        for line in (stdout + "\n" + stderr).splitlines():
            duration = _TAP_DURATION_RE.match(line)
            if duration and results:
                results[-1] = results[-1].model_copy(
                    update={"duration_ms": float(duration.group("ms"))}
                )
                continue

            tap = _TAP_LINE_RE.match(line)
            if tap and tap.group("name"):
                if tap.group("directive"):
                    status = TestStatus.SKIPPED
                elif tap.group("result").lower() == "ok":
                    status = TestStatus.PASSED
                else:
                    status = TestStatus.FAILED
                results.append(TestResult(name=tap.group("name"), status=status))
                continue

            spec = _SPEC_LINE_RE.match(line)
            if spec:
                results.append(
                    TestResult(
                        name=spec.group("name"),
                        status=_SPEC_MARKS[spec.group("mark")],
                        duration_ms=float(spec.group("ms") or 0),
                    )
                )
        return results

    def parse_lint(self, stdout: str, stderr: str) -> list[LintViolation]:
        violations: list[LintViolation] = []
        current_file = ""
        for line in stdout.splitlines():
            if not line.strip():
                continue
            if not line[0].isspace():
                # File header line, or the trailing "✖ N problems" summary.
                if not line.startswith(("✖", "✔")):
                    current_file = relative_path(line.strip())
                continue
            match = _ESLINT_LINE_RE.match(line)
            if match is None:
                continue
            violations.append(
                LintViolation(
                    rule=match.group("rule") or "parse-error",
                    severity=LintSeverity(match.group("severity")),
                    file=current_file,
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
            logger.warning("npm audit produced unparseable JSON output")
            return []

        if "error" in report:
            # No registry under a network-less policy; record it, do not fail on it.
            error = report["error"] or {}
            reason = error.get("summary") or error.get("code") or "unknown error"
            return [
                SecurityFinding(
                    severity=FindingSeverity.LOW,
                    type="AUDIT_UNAVAILABLE",
                    file="package.json",
                    message=f"npm audit could not complete: {reason}",
                )
            ]

        findings: list[SecurityFinding] = []
        for name, vuln in (report.get("vulnerabilities") or {}).items():
            advisories = [v for v in vuln.get("via", []) if isinstance(v, dict)]
            advisory = advisories[0] if advisories else {}
            cwes = advisory.get("cwe") or []
            fix = vuln.get("fixAvailable")
            if isinstance(fix, dict):
                target = fix.get("version", "a fixed version")
                remediation = f"Upgrade {fix.get('name', name)} to {target}"
            elif fix:
                remediation = "Run `npm audit fix`"
            else:
                remediation = None
            findings.append(
                SecurityFinding(
                    severity=_AUDIT_SEVERITY.get(vuln.get("severity", "low"), FindingSeverity.LOW),
                    type="vulnerable_dependency",
                    file="package.json",
                    message=f"{name}: {advisory.get('title') or 'known vulnerability'}",
                    cwe=cwes[0] if cwes else None,
                    remediation=remediation,
                )
            )
        return findings


class TypeScriptRunner(NodeRunner):
    """Runner for TypeScript artifacts; same toolchain as :class:`NodeRunner`."""

    runtime: Runtime = Runtime.TYPESCRIPT
