"""Enumerations shared by the sandbox contract, findings, and reports."""

from enum import StrEnum


class Runtime(StrEnum):
    """Execution runtimes the sandbox knows how to run."""

    PYTHON = "python"
    NODE = "node"
    TYPESCRIPT = "typescript"


class ExecutionStatus(StrEnum):
    """Lifecycle / outcome of a single sandbox execution."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    ERROR = "error"


class ExecutionStage(StrEnum):
    """Subset of a request's commands that an executor call should run."""

    STATIC_ANALYSIS = "static_analysis"
    TESTS = "tests"


class ArtifactType(StrEnum):
    SOURCE = "source"
    TEST = "test"
    CONFIG = "config"
    REQUIREMENTS = "requirements"


class NetworkMode(StrEnum):
    NONE = "none"
    RESTRICTED = "restricted"
    BUILD_ONLY = "build-only"


class SeccompProfile(StrEnum):
    DEFAULT = "default"
    STRICT = "strict"


class LogStream(StrEnum):
    STDOUT = "stdout"
    STDERR = "stderr"


class FindingSeverity(StrEnum):
    """Severity scale reported by security scanners."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class LintSeverity(StrEnum):
    WARNING = "warning"
    ERROR = "error"


class TestStatus(StrEnum):
    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


class SeverityLevel(StrEnum):
    """Task-level severity scale used for routing and contract violations."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class DependencyStatus(StrEnum):
    APPROVED = "APPROVED"
    BANNED = "BANNED"
    UNPINNED = "UNPINNED"
    OUTDATED = "OUTDATED"


class ContractViolationType(StrEnum):
    MISSING_ENDPOINT = "missing_endpoint"
    SCHEMA_MISMATCH = "schema_mismatch"
    WRONG_STATUS_CODE = "wrong_status_code"
    MISSING_FIELD = "missing_field"


class ScanStatus(StrEnum):
    """Status of a verification report and of each of its phases."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Verdict(StrEnum):
    PASS = "PASS"
    FAIL = "FAIL"


class FailureCategory(StrEnum):
    """Single class assigned to a FAIL verdict, used for routing."""

    SYNTAX = "SYNTAX"
    LOGIC = "LOGIC"
    SECURITY = "SECURITY"
    CONTRACT = "CONTRACT"
    NONE = "NONE"


class AgentRole(StrEnum):
    """Remediation actors a failure can be routed to."""

    PYTHON_AGENT = "Python Agent"
    JAVASCRIPT_AGENT = "JavaScript Agent"
    TYPESCRIPT_AGENT = "TypeScript Agent"
    SECOPS_AGENT = "SecOps Agent"
    PLANNER_AGENT = "Planner Agent"
    CONTRACT_NEGOTIATOR = "Contract Negotiator"
    AUTO_LINTER_AGENT = "Auto-Linter Agent"


class VerificationPhase(StrEnum):
    """States of the orchestrator's phase state machine.

    Transitions are forward-only:
    ``idle -> dependencies -> linting -> tests -> contract -> finalizing -> complete``.
    ``failed`` is absorbing and reachable from any phase on a fatal
    collaborator error.
    """

    IDLE = "idle"
    DEPENDENCIES = "dependencies"
    LINTING = "linting"
    TESTS = "tests"
    CONTRACT = "contract"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


class RunStatus(StrEnum):
    """Lifecycle of a queued verification run."""

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
