"""Task schema supplied by the planning layer for each verification run."""

from __future__ import annotations

from pydantic import BaseModel, Field

from agent_verifier.models.enums import Runtime
from agent_verifier.models.sandbox import CodeArtifact


class TaskMeta(BaseModel):
    """Identity and repair budget of the task being verified."""

    task_id: str = Field(min_length=1, max_length=100)
    project_id: str = ""
    iteration: int = Field(
        default=1,
        ge=0,
        description="Repair iteration this submission belongs to.",
    )
    max_repair_budget: int = Field(
        default=5,
        ge=0,
        description="Maximum number of remediation iterations permitted for the task.",
    )


class ContractEndpoint(BaseModel):
    path: str
    method: str = "GET"
    description: str = ""


class SharedContract(BaseModel):
    """The negotiated interface the generated code must honour."""

    spec_url: str = Field(
        default="",
        description="Location of the API contract (http(s) URL or artifact filename).",
    )
    format: str = "OpenAPI 3.1"
    version: str = "1.0.0"
    endpoints: list[ContractEndpoint] = Field(default_factory=list)


class SecurityConstraints(BaseModel):
    allowed_dependencies: list[str] = Field(
        default_factory=list,
        description="Requirement specifiers the task is allowed to depend on (empty = any).",
    )
    banned_dependencies: list[str] = Field(
        default_factory=list,
        description="Package names that must never appear in a manifest.",
    )


class Submission(BaseModel):
    """The code artifacts an implementing agent handed over for verification."""

    subtask_id: str = Field(min_length=1, max_length=100)
    agent_role: str = Field(max_length=50)
    runtime: Runtime
    artifacts: list[CodeArtifact]


class TaskSchema(BaseModel):
    """Inbound contract for :meth:`VerificationOrchestrator.run_verification`."""

    meta: TaskMeta
    shared_contract: SharedContract = Field(default_factory=SharedContract)
    security_constraints: SecurityConstraints = Field(default_factory=SecurityConstraints)
    submission: Submission

    @property
    def task_id(self) -> str:
        return self.meta.task_id
