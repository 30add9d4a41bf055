"""Core domain models for the agent-verifier service."""

from agent_verifier.models.enums import (
    AgentRole,
    ArtifactType,
    ContractViolationType,
    DependencyStatus,
    ExecutionStage,
    ExecutionStatus,
    FailureCategory,
    FindingSeverity,
    LintSeverity,
    LogStream,
    NetworkMode,
    RunStatus,
    Runtime,
    ScanStatus,
    SeccompProfile,
    SeverityLevel,
    TestStatus,
    Verdict,
    VerificationPhase,
)
from agent_verifier.models.findings import (
    ContractValidationResult,
    ContractViolation,
    DependencyVet,
    Finding,
    LintViolation,
    SecurityFinding,
    TestResult,
    TestSuiteResult,
    VulnerabilityInfo,
)
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
from agent_verifier.models.run import RepairRequest, VerificationRun
from agent_verifier.models.sandbox import (
    CodeArtifact,
    ExecutionLog,
    ExecutionRequest,
    ExecutionResult,
    NetworkPolicy,
    ResourceLimits,
    ResourceUsage,
    SandboxConfig,
    SecurityConfig,
)
from agent_verifier.models.task import (
    ContractEndpoint,
    SecurityConstraints,
    SharedContract,
    Submission,
    TaskMeta,
    TaskSchema,
)

__all__ = [
    "AgentRole",
    "ArtifactType",
    "CodeArtifact",
    "ContractEndpoint",
    "ContractValidationData",
    "ContractValidationResult",
    "ContractViolation",
    "ContractViolationType",
    "DependencyStatus",
    "DependencyVet",
    "DependencyVettingData",
    "ExecutionLog",
    "ExecutionLogs",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionStage",
    "ExecutionStatus",
    "FailureCategory",
    "Finding",
    "FindingSeverity",
    "LintSeverity",
    "LintViolation",
    "LogStream",
    "NetworkMode",
    "NetworkPolicy",
    "RepairRequest",
    "ResourceLimits",
    "ResourceUsage",
    "RunStatus",
    "Runtime",
    "SandboxConfig",
    "ScanStatus",
    "SeccompProfile",
    "SecurityConfig",
    "SecurityConstraints",
    "SecurityFinding",
    "SeverityLevel",
    "SharedContract",
    "StaticAnalysisData",
    "Submission",
    "TaskMeta",
    "TaskSchema",
    "TestExecutionData",
    "TestResult",
    "TestStatus",
    "TestSuiteResult",
    "Verdict",
    "VerificationPhase",
    "VerificationPhaseResult",
    "VerificationReport",
    "VerificationRun",
    "VerifierOutput",
    "VulnerabilityInfo",
]
