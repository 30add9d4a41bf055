"""Structured findings produced by the analyzers behind each verification phase.

Every finding kind carries a ``kind`` literal so that a heterogeneous
collection can be parsed as a discriminated union (:data:`Finding`).
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from agent_verifier.models.enums import (
    ContractViolationType,
    DependencyStatus,
    FindingSeverity,
    LintSeverity,
    SeverityLevel,
    TestStatus,
)


class TestResult(BaseModel):
    """Outcome of a single test case."""

    __test__ = False
    model_config = ConfigDict(frozen=True)

    kind: Literal["test_result"] = "test_result"
    name: str
    file: str = ""
    status: TestStatus
    duration_ms: float = Field(default=0.0, ge=0)
    error_message: str | None = None
    stack_trace: str | None = None
    coverage_percentage: float | None = Field(default=None, ge=0, le=100)

    @property
    def is_failure(self) -> bool:
        return self.status in (TestStatus.FAILED, TestStatus.ERROR)


class SecurityFinding(BaseModel):
    """A finding reported by a security scanner (or by the sandbox itself)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["security_finding"] = "security_finding"
    severity: FindingSeverity
    type: str
    file: str
    line: int | None = None
    message: str
    cwe: str | None = None
    cve_id: str | None = None
    remediation: str | None = None

    @property
    def is_blocking(self) -> bool:
        return self.severity in (FindingSeverity.HIGH, FindingSeverity.CRITICAL)


class LintViolation(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["lint_violation"] = "lint_violation"
    rule: str
    severity: LintSeverity
    file: str
    line: int = 0
    column: int = 0
    message: str
    fix_available: bool = False
    suggested_fix: str | None = None

    @property
    def is_blocking(self) -> bool:
        return self.severity == LintSeverity.ERROR


class VulnerabilityInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    cve_id: str
    severity: SeverityLevel
    description: str
    fix_version: str | None = None
    cvss_score: float | None = Field(default=None, ge=0, le=10)


class DependencyVet(BaseModel):
    """Classification of one declared dependency."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["dependency_vet"] = "dependency_vet"
    name: str
    version: str
    status: DependencyStatus
    source_file: str
    vulnerability: VulnerabilityInfo | None = None
    reason: str | None = None


class ContractViolation(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["contract_violation"] = "contract_violation"
    endpoint: str
    method: str
    violation_type: ContractViolationType
    expected: str
    actual: str
    severity: SeverityLevel


Finding = Annotated[
    TestResult | SecurityFinding | LintViolation | DependencyVet | ContractViolation,
    Field(discriminator="kind"),
]


class TestSuiteResult(BaseModel):
    """Aggregated results for one test suite (one file, one framework)."""

    __test__ = False
    model_config = ConfigDict(frozen=True)

    framework: str
    total_tests: int = Field(default=0, ge=0)
    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)
    duration_ms: float = Field(default=0.0, ge=0)
    coverage_percentage: float = Field(default=0.0, ge=0, le=100)
    test_results: tuple[TestResult, ...] = ()

    @classmethod
    def from_results(cls, framework: str, results: list[TestResult]) -> TestSuiteResult:
        """Summarise *results* into counts by status."""
        coverages = [r.coverage_percentage for r in results if r.coverage_percentage is not None]
        return cls(
            framework=framework,
            total_tests=len(results),
            passed=sum(1 for r in results if r.status == TestStatus.PASSED),
            failed=sum(1 for r in results if r.status == TestStatus.FAILED),
            skipped=sum(1 for r in results if r.status == TestStatus.SKIPPED),
            errors=sum(1 for r in results if r.status == TestStatus.ERROR),
            duration_ms=sum(r.duration_ms for r in results),
            coverage_percentage=round(sum(coverages) / len(coverages), 2) if coverages else 0.0,
            test_results=tuple(results),
        )


class ContractValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    validator: str
    spec_url: str
    total_endpoints: int = Field(default=0, ge=0)
    validated: int = Field(default=0, ge=0)
    violations: tuple[ContractViolation, ...] = ()
    passed: bool
