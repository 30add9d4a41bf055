"""Verification orchestrator: drives the four-phase state machine for one run.

``idle -> dependencies -> linting -> tests -> contract -> finalizing -> complete``

All four phases always run; only finalization decides the aggregate
verdict.  A collaborator that cannot run at all moves the machine to the
absorbing ``failed`` state, leaves the remaining phases ``PENDING`` and
still produces a FAIL report.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from datetime import UTC, datetime
from typing import Any, TypeVar
from uuid import uuid4

from agent_verifier.config import Settings
from agent_verifier.contracts import BaseContractValidator
from agent_verifier.errors import CollaboratorUnavailableError, VerificationCancelledError
from agent_verifier.models.enums import (
    AgentRole,
    DependencyStatus,
    ExecutionStage,
    ExecutionStatus,
    FailureCategory,
    LintSeverity,
    LogStream,
    ScanStatus,
    SeverityLevel,
    Verdict,
    VerificationPhase,
)
from agent_verifier.models.findings import SecurityFinding, TestResult, TestSuiteResult
from agent_verifier.models.report import (
    ContractValidationData,
    DependencyVettingData,
    ExecutionLogs,
    StaticAnalysisData,
    TestExecutionData,
    VerificationPhaseResult,
    VerificationReport,
    VerifierOutput,
)
from agent_verifier.models.sandbox import ExecutionRequest, ExecutionResult
from agent_verifier.models.task import TaskSchema
from agent_verifier.policy import route, should_retry
from agent_verifier.runners import get_runner
from agent_verifier.sandbox.executor import BaseSandboxExecutor
from agent_verifier.sandbox.request import build_request
from agent_verifier.vetting import BaseDependencyVetter

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[VerificationReport, VerificationPhase], Awaitable[None]]
RepairListener = Callable[[AgentRole, str], Awaitable[None]]

# Container create/start/teardown overhead allowed on top of the sandbox's
# own wall-clock limit before the orchestrator gives up on the executor.
_SANDBOX_GRACE_SECONDS = 10.0

# Commands each executor stage runs (lint + scan, tests).
_STAGE_COMMANDS: dict[ExecutionStage, int] = {
    ExecutionStage.STATIC_ANALYSIS: 2,
    ExecutionStage.TESTS: 1,
}

_EXECUTION_FAILURES: frozenset[str] = frozenset({ExecutionStatus.TIMEOUT, ExecutionStatus.ERROR})

# Captured output carried in the verifier output's log summary.
_LOG_SUMMARY_CHARS = 4000

_PHASE_LABELS: dict[VerificationPhase, str] = {
    VerificationPhase.DEPENDENCIES: "dependency vetting",
    VerificationPhase.LINTING: "static analysis",
    VerificationPhase.TESTS: "test execution",
    VerificationPhase.CONTRACT: "contract validation",
}


class _PhaseTimeout(Exception):
    """A collaborator call exceeded its phase SLA."""


class VerificationOrchestrator:
    """Runs verification for a task and produces a :class:`VerificationReport`.

    One orchestrator drives at most one run at a time and is the only
    writer of that run's report.  Progress listeners receive deep-copied
    snapshots, never the live report.

    Parameters
    ----------
    executor:
        Sandbox executor used by the static-analysis and test phases.
    dependency_vetter:
        Classifies declared dependencies.
    contract_validator:
        Checks the artifacts against the task's shared contract.
    settings:
        Phase SLAs are read from here.
    on_progress:
        Awaited with a report snapshot after every state change.
    on_repair_request:
        Awaited exactly once per FAIL verdict with the target agent and
        the repair suggestion.
    """

    def __init__(
        self,
        executor: BaseSandboxExecutor,
        dependency_vetter: BaseDependencyVetter,
        contract_validator: BaseContractValidator,
        settings: Settings | None = None,
        on_progress: ProgressCallback | None = None,
        on_repair_request: RepairListener | None = None,
    ) -> None:
        self._executor = executor
        self._vetter = dependency_vetter
        self._validator = contract_validator
        self._settings = settings or Settings()
        self._on_progress = on_progress
        self._on_repair_request = on_repair_request

        self._phase = VerificationPhase.IDLE
        self._cancel_requested = asyncio.Event()
        self._running = False

    @property
    def phase(self) -> VerificationPhase:
        return self._phase

    def cancel(self) -> None:
        """Request cancellation of the current run.

        Honoured between phases and during an in-flight collaborator call;
        ignored once finalization has started.
        """
        if self._phase in (VerificationPhase.FINALIZING, VerificationPhase.COMPLETE):
            logger.info("Cancellation ignored: run is already %s", self._phase.value)
            return
        self._cancel_requested.set()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run_verification(self, task: TaskSchema) -> VerificationReport:
        """Verify *task*'s submission and return the finished report.

        Raises
        ------
        InvalidRequestError
            If the submission has no artifacts or an unsupported runtime.
            No report is produced.
        VerificationCancelledError
            If :meth:`cancel` was called before finalization started.
        """
        if self._running:
            raise RuntimeError("This orchestrator is already running a verification.")

        submission = task.submission
        request = build_request(
            task_id=task.task_id,
            subtask_id=submission.subtask_id,
            agent_role=submission.agent_role,
            artifacts=submission.artifacts,
            runtime=submission.runtime,
        )

        self._running = True
        try:
            return await self._run(task, request)
        except VerificationCancelledError:
            self._phase = VerificationPhase.FAILED
            logger.info("Verification of task %s cancelled", task.task_id)
            raise
        finally:
            self._running = False
            self._cancel_requested.clear()

    async def _run(self, task: TaskSchema, request: ExecutionRequest) -> VerificationReport:
        report = VerificationReport(
            task_id=task.task_id,
            sandbox_id=f"sandbox_{uuid4().hex[:12]}",
            status=ScanStatus.RUNNING,
        )
        logger.info(
            "Verifying task %s (subtask=%s iteration=%d report=%s)",
            task.task_id,
            task.submission.subtask_id,
            task.meta.iteration,
            report.report_id,
        )
        executions: list[ExecutionResult] = []

        phases: list[tuple[VerificationPhase, Callable[[], Coroutine[Any, Any, None]]]] = [
            (VerificationPhase.DEPENDENCIES, lambda: self._dependency_phase(task, report)),
            (VerificationPhase.LINTING, lambda: self._static_phase(request, report, executions)),
            (VerificationPhase.TESTS, lambda: self._test_phase(request, report, executions)),
            (VerificationPhase.CONTRACT, lambda: self._contract_phase(task, report)),
        ]

        fatal: tuple[VerificationPhase, CollaboratorUnavailableError] | None = None
        for phase, run_phase in phases:
            self._check_cancelled()
            await self._enter(phase, report)
            try:
                await run_phase()
            except CollaboratorUnavailableError as exc:
                logger.error("Phase %s aborted: %s", phase.value, exc)
                self._slot(report, phase).status = ScanStatus.FAILED
                self._slot(report, phase).error = str(exc)
                fatal = (phase, exc)
                break

        if fatal is not None:
            self._phase = VerificationPhase.FAILED
            output = self._aborted_output(task, report, executions, *fatal)
            report.status = ScanStatus.FAILED
        else:
            self._check_cancelled()
            await self._enter(VerificationPhase.FINALIZING, report)
            output = self._finalize(task, report, executions)
            report.status = ScanStatus.COMPLETED
            self._phase = VerificationPhase.COMPLETE

        report.output = output
        report.completed_at = datetime.now(UTC)
        await self._publish(report)

        logger.info(
            "Task %s verdict=%s category=%s target=%s retry=%s",
            task.task_id,
            output.verdict.value,
            output.failure_category.value,
            output.target_agent.value if output.target_agent else None,
            output.retry_recommended,
        )
        if output.verdict == Verdict.FAIL and self._on_repair_request is not None:
            await self._on_repair_request(output.target_agent, output.repair_suggestion)
        return report

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _dependency_phase(self, task: TaskSchema, report: VerificationReport) -> None:
        try:
            vets = await self._call(
                self._vetter.vet(task.submission.artifacts, task.security_constraints),
                self._settings.dependency_vetting_seconds,
            )
        except _PhaseTimeout as exc:
            report.dependency_vetting = _timed_out(DependencyVettingData(), exc)
            return

        banned = sum(1 for v in vets if v.status == DependencyStatus.BANNED)
        report.dependency_vetting = VerificationPhaseResult[DependencyVettingData](
            status=ScanStatus.COMPLETED,
            passed=banned == 0,
            data=DependencyVettingData(
                dependencies=vets,
                banned_found=banned,
                unpinned_found=sum(1 for v in vets if v.status == DependencyStatus.UNPINNED),
            ),
        )

    async def _static_phase(
        self,
        request: ExecutionRequest,
        report: VerificationReport,
        executions: list[ExecutionResult],
    ) -> None:
        try:
            result = await self._execute(request, ExecutionStage.STATIC_ANALYSIS)
        except _PhaseTimeout as exc:
            report.static_analysis = _timed_out(
                StaticAnalysisData(execution_status=ExecutionStatus.TIMEOUT), exc
            )
            return
        executions.append(result)

        lint = list(result.lint_violations)
        security = list(result.security_findings)
        # Lint errors rank as high on the uniform severity scale.
        critical = sum(1 for f in security if f.is_blocking) + sum(1 for v in lint if v.is_blocking)
        report.static_analysis = VerificationPhaseResult[StaticAnalysisData](
            status=ScanStatus.COMPLETED,
            passed=critical == 0 and result.status not in _EXECUTION_FAILURES,
            data=StaticAnalysisData(
                linting_results=lint,
                security_scans=security,
                total_issues=len(lint) + len(security),
                critical_issues=critical,
                execution_status=result.status,
            ),
        )

    async def _test_phase(
        self,
        request: ExecutionRequest,
        report: VerificationReport,
        executions: list[ExecutionResult],
    ) -> None:
        try:
            result = await self._execute(request, ExecutionStage.TESTS)
        except _PhaseTimeout as exc:
            report.test_execution = _timed_out(
                TestExecutionData(execution_status=ExecutionStatus.TIMEOUT), exc
            )
            return
        executions.append(result)

        framework = get_runner(request.runtime).test_framework
        by_file: dict[str, list[TestResult]] = {}
        for test in result.test_results:
            by_file.setdefault(test.file, []).append(test)
        suites = [TestSuiteResult.from_results(framework, tests) for tests in by_file.values()]
        coverages = [
            t.coverage_percentage for t in result.test_results if t.coverage_percentage is not None
        ]
        failed = sum(1 for t in result.test_results if t.is_failure)

        report.test_execution = VerificationPhaseResult[TestExecutionData](
            status=ScanStatus.COMPLETED,
            passed=failed == 0 and result.status not in _EXECUTION_FAILURES,
            data=TestExecutionData(
                suites=suites,
                overall_coverage=max(coverages, default=0.0),
                execution_status=result.status,
            ),
        )
        if result.security_findings:
            _record_sandbox_violations(report, result.security_findings)

    async def _contract_phase(self, task: TaskSchema, report: VerificationReport) -> None:
        contract = task.shared_contract
        if not contract.spec_url:
            report.contract_validation = VerificationPhaseResult[ContractValidationData](
                status=ScanStatus.COMPLETED,
                passed=True,
                data=ContractValidationData(result=None),
            )
            return

        try:
            result = await self._call(
                self._validator.validate(
                    contract.spec_url, task.submission.artifacts, contract.endpoints
                ),
                self._settings.contract_validation_seconds,
            )
        except _PhaseTimeout as exc:
            report.contract_validation = _timed_out(ContractValidationData(), exc)
            return

        report.contract_validation = VerificationPhaseResult[ContractValidationData](
            status=ScanStatus.COMPLETED,
            passed=not result.violations,
            data=ContractValidationData(result=result),
        )

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def _finalize(
        self,
        task: TaskSchema,
        report: VerificationReport,
        executions: list[ExecutionResult],
    ) -> VerifierOutput:
        logs = self._logs_summary(report, executions)
        if report.all_passed:
            return VerifierOutput(
                verdict=Verdict.PASS,
                failure_category=FailureCategory.NONE,
                logs=logs,
                iteration_count=task.meta.iteration,
                budget_remaining=task.meta.max_repair_budget - task.meta.iteration,
            )

        category, severity, feedback, suggestion = _classify_failure(report)
        return self._fail_output(task, category, severity, feedback, suggestion, logs)

    def _aborted_output(
        self,
        task: TaskSchema,
        report: VerificationReport,
        executions: list[ExecutionResult],
        phase: VerificationPhase,
        error: CollaboratorUnavailableError,
    ) -> VerifierOutput:
        skipped = [
            _PHASE_LABELS[p]
            for p, slot in zip(_PHASE_LABELS, report.phases(), strict=True)
            if slot.status == ScanStatus.PENDING
        ]
        feedback = f"Verification aborted during {_PHASE_LABELS[phase]}: {error}."
        if skipped:
            feedback += f" Phases not run: {', '.join(skipped)}."
        suggestion = (
            f"Make sure the artifacts can be installed and run in the "
            f"{task.submission.runtime.value} sandbox, then resubmit."
        )
        return self._fail_output(
            task,
            FailureCategory.LOGIC,
            SeverityLevel.HIGH,
            feedback,
            suggestion,
            self._logs_summary(report, executions),
        )

    def _fail_output(
        self,
        task: TaskSchema,
        category: FailureCategory,
        severity: SeverityLevel,
        feedback: str,
        suggestion: str,
        logs: ExecutionLogs,
    ) -> VerifierOutput:
        meta = task.meta
        return VerifierOutput(
            verdict=Verdict.FAIL,
            failure_category=category,
            logs=logs,
            feedback_to_agent=feedback,
            repair_suggestion=suggestion,
            retry_recommended=should_retry(meta.iteration, meta.max_repair_budget, category),
            target_agent=route(category, severity, task.submission.runtime),
            iteration_count=meta.iteration,
            budget_remaining=meta.max_repair_budget - meta.iteration,
        )

    @staticmethod
    def _logs_summary(
        report: VerificationReport, executions: list[ExecutionResult]
    ) -> ExecutionLogs:
        if not executions:
            merged = None
        else:
            merged = executions[0]
            for execution in executions[1:]:
                merged = merged.merge(execution)
        elapsed = datetime.now(UTC) - report.started_at
        return ExecutionLogs(
            stdout=merged.stream_text(LogStream.STDOUT)[-_LOG_SUMMARY_CHARS:] if merged else "",
            stderr=merged.stream_text(LogStream.STDERR)[-_LOG_SUMMARY_CHARS:] if merged else "",
            exit_code=merged.exit_code if merged else -1,
            execution_time_ms=int(elapsed.total_seconds() * 1000),
        )

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _execute(self, request: ExecutionRequest, stage: ExecutionStage) -> ExecutionResult:
        sandbox_budget = request.config.resource_limits.timeout_seconds * _STAGE_COMMANDS[stage]
        sla = (
            self._settings.static_analysis_seconds
            if stage == ExecutionStage.STATIC_ANALYSIS
            else self._settings.test_execution_seconds
        )
        return await self._call(
            self._executor.execute(request.for_stage(stage)),
            min(sla, sandbox_budget + _SANDBOX_GRACE_SECONDS),
        )

    async def _call(self, coro: Coroutine[Any, Any, T], timeout: float) -> T:
        """Await a collaborator call under *timeout*, abandoning it on cancellation."""
        call = asyncio.ensure_future(coro)
        cancelled = asyncio.ensure_future(self._cancel_requested.wait())
        try:
            done, _ = await asyncio.wait(
                {call, cancelled},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            call.cancel()
            raise
        finally:
            cancelled.cancel()

        if call in done:
            return call.result()

        # Either the SLA ran out or the run was cancelled: tear the call down.
        call.cancel()
        await asyncio.gather(call, return_exceptions=True)
        if self._cancel_requested.is_set():
            raise VerificationCancelledError("Verification cancelled during a collaborator call.")
        raise _PhaseTimeout(f"{_PHASE_LABELS[self._phase]} exceeded its {timeout:g}s limit")

    def _check_cancelled(self) -> None:
        if self._cancel_requested.is_set():
            raise VerificationCancelledError("Verification cancelled between phases.")

    async def _enter(self, phase: VerificationPhase, report: VerificationReport) -> None:
        self._phase = phase
        await self._publish(report)

    async def _publish(self, report: VerificationReport) -> None:
        if self._on_progress is not None:
            await self._on_progress(report.snapshot(), self._phase)

    @staticmethod
    def _slot(report: VerificationReport, phase: VerificationPhase) -> VerificationPhaseResult:
        slots = dict(zip(_PHASE_LABELS, report.phases(), strict=True))
        return slots[phase]


def _timed_out(data, exc: _PhaseTimeout) -> VerificationPhaseResult:
    logger.warning("%s", exc)
    return VerificationPhaseResult[type(data)](
        status=ScanStatus.COMPLETED,
        passed=False,
        data=data,
        error=f"timeout: {exc}",
    )


def _record_sandbox_violations(
    report: VerificationReport, findings: Sequence[SecurityFinding]
) -> None:
    """Add actions the sandbox blocked during the test run to static analysis.

    They are security findings like any scanner result, so they count
    toward the static-analysis issue totals and fail that phase when
    blocking.
    """
    slot = report.static_analysis
    data = slot.data
    blocking = sum(1 for f in findings if f.is_blocking)
    logger.warning("Sandbox blocked %d action(s) during the test run", len(findings))
    slot.data = data.model_copy(
        update={
            "security_scans": [*data.security_scans, *findings],
            "total_issues": data.total_issues + len(findings),
            "critical_issues": data.critical_issues + blocking,
        }
    )
    if blocking:
        slot.passed = False


def _classify_failure(
    report: VerificationReport,
) -> tuple[FailureCategory, SeverityLevel, str, str]:
    """Pick the single failure category and describe its first offending finding.

    Precedence: SECURITY > CONTRACT > LOGIC > SYNTAX.
    """
    static = report.static_analysis.data
    tests = report.test_execution.data
    contract = report.contract_validation.data.result

    # ---- SECURITY ----------------------------------------------------------
    blocking = [f for f in static.security_scans if f.is_blocking]
    banned = [
        d for d in report.dependency_vetting.data.dependencies
        if d.status == DependencyStatus.BANNED
    ]
    if blocking or banned:
        count = len(blocking) + len(banned)
        if blocking:
            finding = blocking[0]
            location = f"{finding.file}:{finding.line}" if finding.line else finding.file
            first = f"{finding.severity.value} {finding.type} in {location}: {finding.message}"
            suggestion = finding.remediation or (
                f"Remove or rewrite the code flagged as {finding.type} in {finding.file}."
            )
        else:
            dep = banned[0]
            first = f"banned dependency {dep.name} in {dep.source_file} ({dep.reason or 'banned'})"
            suggestion = f"Remove {dep.name} from {dep.source_file}; use an approved alternative."
        return (
            FailureCategory.SECURITY,
            SeverityLevel.CRITICAL,
            f"Security checks found {count} blocking issue(s); first: {first}.",
            suggestion,
        )

    # ---- CONTRACT ----------------------------------------------------------
    if contract is not None and contract.violations:
        violation = contract.violations[0]
        return (
            FailureCategory.CONTRACT,
            violation.severity,
            (
                f"Contract validation failed: {len(contract.violations)} violation(s); first: "
                f"{violation.method} {violation.endpoint} {violation.violation_type.value} "
                f"(expected {violation.expected}, got {violation.actual})."
            ),
            f"Make {violation.method} {violation.endpoint} match {contract.spec_url}: "
            f"{violation.expected}.",
        )

    # ---- LOGIC -------------------------------------------------------------
    failed_tests: list[TestResult] = [
        t for suite in tests.suites for t in suite.test_results if t.is_failure
    ]
    if failed_tests:
        test = failed_tests[0]
        detail = test.error_message or "see test output"
        return (
            FailureCategory.LOGIC,
            SeverityLevel.MEDIUM,
            (
                f"Test execution failed: {len(failed_tests)} test(s) failed; first: "
                f"{test.name} in {test.file or 'tests'}: {detail}."
            ),
            f"Fix {test.name}: {detail}.",
        )
    for label, slot, status in (
        ("dependency vetting", report.dependency_vetting, None),
        ("static analysis", report.static_analysis, static.execution_status),
        ("test execution", report.test_execution, tests.execution_status),
        ("contract validation", report.contract_validation, None),
    ):
        if slot.error or status in _EXECUTION_FAILURES:
            reason = slot.error or f"sandbox status {status}"
            return (
                FailureCategory.LOGIC,
                SeverityLevel.HIGH,
                f"{label.capitalize()} did not complete: {reason}.",
                (
                    "Make sure the code terminates within the sandbox time and memory "
                    "limits and that its tools can run."
                ),
            )

    # ---- SYNTAX ------------------------------------------------------------
    errors = [v for v in static.linting_results if v.severity == LintSeverity.ERROR]
    violation = (errors or static.linting_results or [None])[0]
    if violation is None:
        return (
            FailureCategory.SYNTAX,
            SeverityLevel.LOW,
            f"Static analysis found {static.total_issues} issue(s).",
            "Run the auto-fixer and resubmit.",
        )
    return (
        FailureCategory.SYNTAX,
        SeverityLevel.LOW,
        (
            f"Static analysis found {static.total_issues} issue(s); first: {violation.rule} at "
            f"{violation.file}:{violation.line}:{violation.column}: {violation.message}."
        ),
        violation.suggested_fix or f"Fix {violation.rule} at {violation.file}:{violation.line}.",
    )
