"""Task model for Agencyflow.

Defines the Task table with its status and priority enums. A task is one
unit of delegated work: it names the specialist that should perform it,
carries the structured input for the delegation, and records the result,
retry budget and dependencies on other tasks.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.base import Base, JSONType, TimestampMixin
from agencyflow.database.models.project import ProjectStatus


class TaskStatus(enum.Enum):
    """State machine for task lifecycle.

    States:
        pending: Waiting to be claimed (new, or re-queued after a failure).
        in_progress: Claimed and being delegated.
        blocked: Held back by an external factor.
        completed: Delegation succeeded and the result is recorded.
        failed: Retry budget exhausted.
        cancelled: Withdrawn; no further work.
    """

    pending = "pending"
    in_progress = "in_progress"
    blocked = "blocked"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class TaskPriority(enum.Enum):
    """Scheduling priority. Tasks with a lower rank are claimed first."""

    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.urgent: 0,
    TaskPriority.high: 1,
    TaskPriority.medium: 2,
    TaskPriority.low: 3,
}


class DependencyType(enum.Enum):
    """How a task relates to another task."""

    blocks = "blocks"
    blocked_by = "blocked_by"
    related = "related"


class Task(TimestampMixin, Base):
    """A unit of work delegated to a specialist.

    Attributes:
        id: UUID primary key (from TimestampMixin).
        project_id: Owning project.
        name: Short task name.
        description: What the specialist is asked to do.
        assigned_agent: Specialist the task is assigned to.
        status: Current lifecycle state.
        priority: Scheduling priority.
        dependencies: Typed links to other tasks, each
                      ``{"task_id": str, "type": "blocks|blocked_by|related"}``.
        input: Structured delegation input.
        result: ``{"success", "output", "error", "artifacts"}`` once known.
        artifact_ids: Artifacts produced by this task (UUID strings).
        retry_count: Retries consumed so far.
        max_retries: Retry budget before terminal failure.
        phase: Lifecycle phase this task is required for, if any.
        workflow_run_id: Workflow run that created the task, if any.
        step_name: Workflow step that created the task, if any.
        last_error: Most recent failure message.
        started_at: When the task was last claimed.
        completed_at: When the task reached a terminal state.
    """

    __tablename__ = "tasks"

    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    assigned_agent: Mapped[AgentType | None] = mapped_column(nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        default=TaskStatus.pending,
        nullable=False,
    )
    priority: Mapped[TaskPriority] = mapped_column(
        default=TaskPriority.medium,
        nullable=False,
    )
    dependencies: Mapped[list[dict[str, str]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    input: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
    )
    artifact_ids: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    retry_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        default=3,
        nullable=False,
    )
    phase: Mapped[ProjectStatus | None] = mapped_column(nullable=True)
    workflow_run_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    step_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def blocked_by_ids(self) -> list[uuid.UUID]:
        """Return the IDs of tasks this task waits on."""
        return [
            uuid.UUID(dep["task_id"])
            for dep in self.dependencies or []
            if dep.get("type") == DependencyType.blocked_by.value
        ]
