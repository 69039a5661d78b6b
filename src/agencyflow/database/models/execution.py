"""Execution models for Agencyflow.

Defines two tables:

- ``agent_execution_logs`` (ExecutionRecord): one row per specialist
  delegation attempt. Rows are write-once; a late result for a timed-out
  attempt is stored as a new row that references the original.
- ``workflow_executions`` (WorkflowExecution): one row per run of the
  workflow step engine, holding per-step results and run status.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Float, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.base import Base, JSONType, TimestampMixin, utcnow


class ExecutionRecord(Base):
    """Log of one specialist invocation.

    Attributes:
        id: UUID primary key.
        project_id: Project the delegation worked on, if any.
        task_id: Task the delegation was bound to, if any.
        workflow_run_id: Workflow run that issued the delegation, if any.
        agent_type: Specialist that was invoked.
        input: Validated delegation input.
        output: Validated output (success only).
        error: Error message; ``"timeout"`` for timed-out attempts.
        error_kind: DelegationErrorKind value on failure.
        duration_ms: Wall-clock duration of the attempt.
        token_usage: ``{"prompt", "completion", "total"}`` when reported.
        reconciles_id: Timed-out record this late result reconciles.
        created_at: When the record was written.
    """

    __tablename__ = "agent_execution_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    task_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    workflow_run_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    agent_type: Mapped[AgentType] = mapped_column(nullable=False)
    input: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    output: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_kind: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    token_usage: Mapped[dict[str, int] | None] = mapped_column(JSONType, nullable=True)
    reconciles_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("agent_execution_logs.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    @property
    def succeeded(self) -> bool:
        return self.error is None


class WorkflowRunStatus(enum.Enum):
    """Run states: running -> suspended | completed | failed; suspended -> running."""

    running = "running"
    suspended = "suspended"
    completed = "completed"
    failed = "failed"


class WorkflowExecution(TimestampMixin, Base):
    """One run of a named workflow.

    Attributes:
        workflow_id: Stable workflow identifier (e.g. ``project-lifecycle``).
        workflow_name: Human-readable workflow name.
        project_id: Project the run drives (set once known for onboarding).
        run_id: Unique run identifier.
        status: Run state.
        input: Trigger data.
        output: Final output once completed.
        current_step: Step being executed or awaiting execution.
        steps: Per-step results keyed by step name.
        context: Run bookkeeping (approved steps, client id, handoff run).
        error: Failure message for failed runs.
        error_detail: Structured failure (error type and fields).
        completed_at: When the run reached completed or failed.
    """

    __tablename__ = "workflow_executions"

    workflow_id: Mapped[str] = mapped_column(Text, nullable=False)
    workflow_name: Mapped[str] = mapped_column(Text, nullable=False)
    project_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("projects.id"),
        nullable=True,
        index=True,
    )
    run_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    status: Mapped[WorkflowRunStatus] = mapped_column(
        default=WorkflowRunStatus.running,
        nullable=False,
    )
    input: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    output: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    current_step: Mapped[str | None] = mapped_column(Text, nullable=True)
    steps: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    context: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_detail: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
