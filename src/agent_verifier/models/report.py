"""VerificationReport, its per-phase slots, and the final VerifierOutput."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Generic, TypeVar
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from agent_verifier.models.enums import AgentRole, FailureCategory, ScanStatus, Verdict
from agent_verifier.models.findings import (
    ContractValidationResult,
    DependencyVet,
    LintViolation,
    SecurityFinding,
    TestSuiteResult,
)

DataT = TypeVar("DataT", bound=BaseModel)


class DependencyVettingData(BaseModel):
    dependencies: list[DependencyVet] = Field(default_factory=list)
    banned_found: int = 0
    unpinned_found: int = 0


class StaticAnalysisData(BaseModel):
    linting_results: list[LintViolation] = Field(default_factory=list)
    security_scans: list[SecurityFinding] = Field(default_factory=list)
    total_issues: int = 0
    critical_issues: int = 0
    execution_status: str | None = Field(
        default=None,
        description="Underlying sandbox ExecutionStatus for the lint and scan run.",
    )


class TestExecutionData(BaseModel):
    __test__ = False

    suites: list[TestSuiteResult] = Field(default_factory=list)
    overall_coverage: float = 0.0
    execution_status: str | None = Field(
        default=None,
        description="Underlying sandbox ExecutionStatus for the test run.",
    )


class ContractValidationData(BaseModel):
    result: ContractValidationResult | None = None


class VerificationPhaseResult(BaseModel, Generic[DataT]):
    """One phase's slot in the report: ``{status, passed, data}``."""

    status: ScanStatus = ScanStatus.PENDING
    passed: bool = False
    data: DataT
    error: str | None = Field(
        default=None,
        description=(
            "Why the phase produced no data: a collaborator error (status FAILED) "
            "or an SLA timeout (status COMPLETED)."
        ),
    )


class ExecutionLogs(BaseModel):
    stdout: str = ""
    stderr: str = ""
    exit_code: int = -1
    execution_time_ms: int = 0


class VerifierOutput(BaseModel):
    """Adjudicated outcome of a verification run.

    ``target_agent`` is set if and only if the verdict is ``FAIL``.
    """

    verdict: Verdict
    failure_category: FailureCategory
    logs: ExecutionLogs = Field(default_factory=ExecutionLogs)
    feedback_to_agent: str = ""
    repair_suggestion: str = ""
    retry_recommended: bool = False
    target_agent: AgentRole | None = None
    iteration_count: int = 0
    budget_remaining: int = 0

    @model_validator(mode="after")
    def _check_consistency(self) -> VerifierOutput:
        if self.verdict == Verdict.FAIL:
            if self.target_agent is None:
                raise ValueError("A FAIL verdict must name a target_agent.")
            if self.failure_category == FailureCategory.NONE:
                raise ValueError("A FAIL verdict needs a failure category other than NONE.")
            if not self.feedback_to_agent:
                raise ValueError("A FAIL verdict must carry feedback_to_agent.")
        else:
            if self.target_agent is not None:
                raise ValueError("A PASS verdict must not name a target_agent.")
            if self.failure_category != FailureCategory.NONE:
                raise ValueError("A PASS verdict has failure category NONE.")
        return self


class VerificationReport(BaseModel):
    """Complete record of one verification run.

    Owned and mutated by exactly one orchestrator while the run is in
    progress; readers only ever receive deep-copied snapshots.
    """

    report_id: str = Field(default_factory=lambda: f"report_{uuid4().hex[:12]}")
    task_id: str
    sandbox_id: str = ""
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    status: ScanStatus = ScanStatus.PENDING

    dependency_vetting: VerificationPhaseResult[DependencyVettingData] = Field(
        default_factory=lambda: VerificationPhaseResult[DependencyVettingData](
            data=DependencyVettingData()
        )
    )
    static_analysis: VerificationPhaseResult[StaticAnalysisData] = Field(
        default_factory=lambda: VerificationPhaseResult[StaticAnalysisData](
            data=StaticAnalysisData()
        )
    )
    test_execution: VerificationPhaseResult[TestExecutionData] = Field(
        default_factory=lambda: VerificationPhaseResult[TestExecutionData](
            data=TestExecutionData()
        )
    )
    contract_validation: VerificationPhaseResult[ContractValidationData] = Field(
        default_factory=lambda: VerificationPhaseResult[ContractValidationData](
            data=ContractValidationData()
        )
    )

    output: VerifierOutput | None = None

    def phases(self) -> list[VerificationPhaseResult]:
        """Phase slots in execution order."""
        return [
            self.dependency_vetting,
            self.static_analysis,
            self.test_execution,
            self.contract_validation,
        ]

    @property
    def all_passed(self) -> bool:
        return all(phase.passed for phase in self.phases())

    def snapshot(self) -> VerificationReport:
        return self.model_copy(deep=True)
