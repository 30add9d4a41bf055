"""Queued verification runs and the repair requests they emit."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from agent_verifier.models.enums import AgentRole
from agent_verifier.models.task import TaskSchema


def _new_run_id() -> str:
    return f"run_{uuid4().hex}"


class VerificationRun(BaseModel):
    """A task submission waiting in, or taken from, the run queue."""

    run_id: str = Field(default_factory=_new_run_id)
    task: TaskSchema
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def task_id(self) -> str:
        return self.task.task_id


class RepairRequest(BaseModel):
    """Published once per failed run so the target agent can fix its code."""

    run_id: str
    task_id: str
    subtask_id: str
    target_agent: AgentRole
    repair_suggestion: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
