"""Sandbox configuration, code artifacts, and the execution request/result contract."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from agent_verifier.models.enums import (
    ArtifactType,
    ExecutionStage,
    ExecutionStatus,
    LogStream,
    NetworkMode,
    Runtime,
    SeccompProfile,
)
from agent_verifier.models.findings import LintViolation, SecurityFinding, TestResult

# Hard bounds accepted for a sandbox, independent of the defaults.
MIN_MEMORY_MB = 64
MAX_MEMORY_MB = 4096
MIN_CPU_CORES = 0.1
MAX_CPU_CORES = 4.0
MIN_TIMEOUT_SECONDS = 5
MAX_TIMEOUT_SECONDS = 300

MAX_ARTIFACTS = 50
MAX_ARTIFACT_BYTES = 1_000_000


class ResourceLimits(BaseModel):
    """Hard resource limits enforced by the sandbox."""

    model_config = ConfigDict(frozen=True)

    memory_mb: int = Field(
        default=512,
        ge=MIN_MEMORY_MB,
        le=MAX_MEMORY_MB,
        description="Maximum resident memory in megabytes.",
    )
    cpu_cores: float = Field(
        default=0.5,
        ge=MIN_CPU_CORES,
        le=MAX_CPU_CORES,
        description="Fractional CPU cores available to the sandbox.",
    )
    timeout_seconds: int = Field(
        default=30,
        ge=MIN_TIMEOUT_SECONDS,
        le=MAX_TIMEOUT_SECONDS,
        description="Wall-clock timeout for a single sandbox execution.",
    )
    max_output_bytes: int = Field(
        default=1024 * 1024,
        gt=0,
        description="Maximum bytes of stdout/stderr captured per stream.",
    )


class NetworkPolicy(BaseModel):
    """Egress policy for the sandbox.

    The default denies all network access.  Relaxing it is an explicit
    act: a ``restricted`` policy must name the hosts it allows.
    """

    model_config = ConfigDict(frozen=True)

    mode: NetworkMode = NetworkMode.NONE
    allowed_hosts: tuple[str, ...] = ()
    block_exfiltration: bool = True

    @model_validator(mode="after")
    def _check_relaxation(self) -> NetworkPolicy:
        if self.mode == NetworkMode.RESTRICTED and not self.allowed_hosts:
            raise ValueError("A restricted network policy must list its allowed_hosts.")
        if self.mode == NetworkMode.NONE and self.allowed_hosts:
            raise ValueError("allowed_hosts has no effect when network mode is 'none'.")
        return self


class SecurityConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    read_only_filesystem: bool = True
    no_new_privileges: bool = True
    drop_capabilities: tuple[str, ...] = ("ALL",)
    seccomp_profile: SeccompProfile = SeccompProfile.STRICT


class SandboxConfig(BaseModel):
    """Complete isolation policy attached to an execution request."""

    model_config = ConfigDict(frozen=True)

    runtime: Runtime
    resource_limits: ResourceLimits = Field(default_factory=ResourceLimits)
    network_policy: NetworkPolicy = Field(default_factory=NetworkPolicy)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    environment: dict[str, str] = Field(default_factory=dict)


class CodeArtifact(BaseModel):
    """A named file submitted for execution."""

    model_config = ConfigDict(frozen=True)

    filename: str = Field(min_length=1, max_length=255)
    content: str = Field(max_length=MAX_ARTIFACT_BYTES)
    type: ArtifactType

    @field_validator("filename")
    @classmethod
    def _reject_traversal(cls, value: str) -> str:
        if value.startswith("/") or ".." in value.split("/"):
            raise ValueError(f"Artifact filename must be a relative path: {value!r}")
        return value


class ExecutionRequest(BaseModel):
    """Everything a sandbox executor needs to run one batch of artifacts."""

    model_config = ConfigDict(frozen=True)

    task_id: str = Field(min_length=1, max_length=100)
    subtask_id: str = Field(min_length=1, max_length=100)
    agent_role: str = Field(max_length=50)
    artifacts: tuple[CodeArtifact, ...] = Field(min_length=1, max_length=MAX_ARTIFACTS)
    test_command: str | None = Field(default=None, max_length=500)
    lint_command: str | None = Field(default=None, max_length=500)
    security_scan_command: str | None = Field(default=None, max_length=500)
    config: SandboxConfig

    @property
    def runtime(self) -> Runtime:
        return self.config.runtime

    def for_stage(self, stage: ExecutionStage) -> ExecutionRequest:
        """Return a copy of this request that only carries *stage*'s commands."""
        if stage == ExecutionStage.STATIC_ANALYSIS:
            return self.model_copy(update={"test_command": None})
        return self.model_copy(update={"lint_command": None, "security_scan_command": None})


class ExecutionLog(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    stream: LogStream
    content: str


class ResourceUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    peak_memory_mb: float = Field(default=0.0, ge=0)
    cpu_time_ms: int = Field(default=0, ge=0)


# Merge order: a merged result takes the worst of its parts' statuses.
_STATUS_RANK: dict[ExecutionStatus, int] = {
    ExecutionStatus.SUCCESS: 0,
    ExecutionStatus.PENDING: 1,
    ExecutionStatus.RUNNING: 2,
    ExecutionStatus.FAILURE: 3,
    ExecutionStatus.TIMEOUT: 4,
    ExecutionStatus.ERROR: 5,
}


class ExecutionResult(BaseModel):
    """Raw outcome of one sandbox execution.  Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    subtask_id: str
    status: ExecutionStatus
    exit_code: int = -1
    start_time: datetime = Field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime = Field(default_factory=lambda: datetime.now(UTC))
    duration_ms: int = Field(default=0, ge=0)
    logs: tuple[ExecutionLog, ...] = ()
    test_results: tuple[TestResult, ...] = ()
    security_findings: tuple[SecurityFinding, ...] = ()
    lint_violations: tuple[LintViolation, ...] = ()
    resource_usage: ResourceUsage = Field(default_factory=ResourceUsage)

    def stream_text(self, stream: LogStream) -> str:
        return "\n".join(log.content for log in self.logs if log.stream == stream)

    def merge(self, other: ExecutionResult) -> ExecutionResult:
        """Combine two results produced for the same request."""
        status = max(self.status, other.status, key=_STATUS_RANK.__getitem__)
        exit_code = self.exit_code if self.exit_code != 0 else other.exit_code
        return ExecutionResult(
            task_id=self.task_id,
            subtask_id=self.subtask_id,
            status=status,
            exit_code=exit_code,
            start_time=min(self.start_time, other.start_time),
            end_time=max(self.end_time, other.end_time),
            duration_ms=self.duration_ms + other.duration_ms,
            logs=self.logs + other.logs,
            test_results=self.test_results + other.test_results,
            security_findings=self.security_findings + other.security_findings,
            lint_violations=self.lint_violations + other.lint_violations,
            resource_usage=ResourceUsage(
                peak_memory_mb=max(
                    self.resource_usage.peak_memory_mb,
                    other.resource_usage.peak_memory_mb,
                ),
                cpu_time_ms=self.resource_usage.cpu_time_ms + other.resource_usage.cpu_time_ms,
            ),
        )
