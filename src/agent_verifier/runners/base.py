"""Abstract runner interface and shared data structures."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum

from agent_verifier.models.enums import FindingSeverity, Runtime
from agent_verifier.models.findings import LintViolation, SecurityFinding, TestResult
from agent_verifier.models.sandbox import ExecutionRequest

# Artifacts are mounted read-only here inside the container.
WORKSPACE_DIR = "/workspace"

# Messages the kernel / libc emit when the sandbox blocks an action.  They
# are reported as findings rather than raised.
_NETWORK_BLOCKED_RE: re.Pattern[str] = re.compile(
    r"Network is unreachable|Temporary failure in name resolution|"
    r"Name or service not known|getaddrinfo (?:ENOTFOUND|EAI_AGAIN)"
)
_FILESYSTEM_BLOCKED_RE: re.Pattern[str] = re.compile(r"Read-only file system|EROFS")


class CommandKind(StrEnum):
    TESTS = "tests"
    LINT = "lint"
    SECURITY_SCAN = "security_scan"


@dataclass
class PreparedCommand:
    kind: CommandKind
    shell_command: str

    @property
    def argv(self) -> list[str]:
        # Table commands use shell operators such as ``&&``.
        return ["sh", "-c", self.shell_command]


@dataclass
class PreparedExecution:
    """Everything the sandbox needs to execute one request.

    Attributes
    ----------
    image:
        Docker image name:tag to run.
    commands:
        Commands to run, each in its own fresh container, in order.
    code_files:
        Mapping of ``relative_path -> content`` placed under ``/workspace/``.
    env_vars:
        Environment variables the runtime needs inside the container.
    """

    image: str
    commands: list[PreparedCommand]
    code_files: dict[str, str]  # filename -> content
    env_vars: dict[str, str] = field(default_factory=dict)


@dataclass
class RunnerOutput:
    """Findings parsed from one command's output."""

    test_results: list[TestResult] = field(default_factory=list)
    lint_violations: list[LintViolation] = field(default_factory=list)
    security_findings: list[SecurityFinding] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.test_results or self.lint_violations or self.security_findings)


class BaseRunner(ABC):
    """Abstract base class for all runtime-specific runners.

    Subclasses set the class-level command table (``test_command``,
    ``lint_command``, ``security_scan_command``), ``default_image`` and
    ``test_framework``, and implement the three output parsers.
    """

    runtime: Runtime
    default_image: str
    test_framework: str
    test_command: str
    lint_command: str
    security_scan_command: str
    env_vars: dict[str, str] = {}

    # ------------------------------------------------------------------
    # Request side
    # ------------------------------------------------------------------

    def prepare(self, request: ExecutionRequest, image: str | None = None) -> PreparedExecution:
        """Translate *request* into a concrete execution plan.

        Only the commands present on the request are planned, so a
        request narrowed with :meth:`ExecutionRequest.for_stage` runs
        just that stage.
        """
        planned = {
            CommandKind.LINT: request.lint_command,
            CommandKind.SECURITY_SCAN: request.security_scan_command,
            CommandKind.TESTS: request.test_command,
        }
        commands = [
            PreparedCommand(kind=kind, shell_command=command)
            for kind, command in planned.items()
            if command
        ]
        return PreparedExecution(
            image=image or self.default_image,
            commands=commands,
            code_files={a.filename: a.content for a in request.artifacts},
            env_vars={**request.config.environment, **self.env_vars},
        )

    # ------------------------------------------------------------------
    # Result side
    # ------------------------------------------------------------------

    def parse_output(
        self,
        kind: CommandKind,
        exit_code: int,
        stdout: str,
        stderr: str,
    ) -> RunnerOutput:
        """Parse one command's output into findings."""
        if kind == CommandKind.TESTS:
            output = RunnerOutput(test_results=self.parse_tests(stdout, stderr))
            # Tests are the only stage that exercises the artifact's own code.
            output.security_findings.extend(self.detect_policy_violations(stdout + "\n" + stderr))
            return output
        if kind == CommandKind.LINT:
            return RunnerOutput(lint_violations=self.parse_lint(stdout, stderr))
        return RunnerOutput(security_findings=self.parse_security_scan(stdout, stderr))

    def is_crash(self, kind: CommandKind, exit_code: int, output: RunnerOutput) -> bool:
        """Whether a non-zero exit means the tool itself failed to run.

        Linters, scanners and test runners exit non-zero when they find
        problems; that only counts as a crash when nothing was parsed.
        """
        return exit_code != 0 and output.empty

    def detect_policy_violations(self, text: str) -> list[SecurityFinding]:
        """Report actions the sandbox blocked (network egress, filesystem writes)."""
        findings: list[SecurityFinding] = []
        match = _NETWORK_BLOCKED_RE.search(text)
        if match:
            findings.append(
                SecurityFinding(
                    severity=FindingSeverity.HIGH,
                    type="NETWORK_EGRESS_BLOCKED",
                    file="<sandbox>",
                    message=f"Attempted network access was blocked: {match.group(0)}",
                    cwe="CWE-200",
                    remediation="Remove network calls from code under test or mock them.",
                )
            )
        match = _FILESYSTEM_BLOCKED_RE.search(text)
        if match:
            findings.append(
                SecurityFinding(
                    severity=FindingSeverity.HIGH,
                    type="FILESYSTEM_WRITE_BLOCKED",
                    file="<sandbox>",
                    message=f"Attempted write outside the scratch area: {match.group(0)}",
                    remediation="Write temporary files under the scratch directory only.",
                )
            )
        return findings

    @abstractmethod
    def parse_tests(self, stdout: str, stderr: str) -> list[TestResult]:
        """Parse the test command's output into per-test results."""
        ...

    @abstractmethod
    def parse_lint(self, stdout: str, stderr: str) -> list[LintViolation]:
        """Parse the lint command's output into violations."""
        ...

    @abstractmethod
    def parse_security_scan(self, stdout: str, stderr: str) -> list[SecurityFinding]:
        """Parse the security scanner's output into findings."""
        ...


def relative_path(path: str) -> str:
    """Strip the in-container workspace prefix from a reported path."""
    for prefix in (WORKSPACE_DIR + "/", "./"):
        if path.startswith(prefix):
            return path[len(prefix):]
    return path
