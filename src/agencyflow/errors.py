"""Error taxonomy for the Agencyflow orchestration core.

Every failure the core can report to a trigger caller is one of the
exceptions below. Store failures are not wrapped: SQLAlchemy errors
propagate unchanged so callers see them as fatal for the operation.
"""

from __future__ import annotations

import enum
from typing import Any


class AgencyflowError(Exception):
    """Base class for all domain errors raised by the orchestration core."""

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for workflow records and API responses."""
        return {"type": type(self).__name__, "message": str(self)}


class ValidationError(AgencyflowError):
    """Raised when a delegation input or an event payload fails its schema.

    Attributes:
        errors: Structured validation errors (pydantic ``errors()`` format).
    """

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        self.errors = errors or []
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class NotFoundError(AgencyflowError):
    """Raised when a referenced project, task, artifact or run does not exist.

    Attributes:
        entity: Kind of record that was looked up.
        entity_id: Identifier that was not found.
    """

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidTransitionError(AgencyflowError):
    """Raised when an illegal phase or task status change is attempted.

    Attributes:
        current: The current phase or status value.
        target: The attempted target value.
        project_id: The ID of the project that failed to transition.
        task_id: The ID of the task that failed to transition.
    """

    def __init__(
        self,
        current: str,
        target: str,
        project_id: str | None = None,
        task_id: str | None = None,
    ):
        self.current = current
        self.target = target
        self.project_id = project_id
        self.task_id = task_id
        msg = f"Invalid transition from {current} to {target}"
        if task_id:
            msg += f" for task {task_id}"
        elif project_id:
            msg += f" for project {project_id}"
        super().__init__(msg)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(current=self.current, target=self.target)
        return data


class ConcurrentTransitionError(AgencyflowError):
    """Raised when a phase transition races another uncommitted transition."""

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Another phase transition is in flight for project {project_id}")


class DependencyNotSatisfiedError(AgencyflowError):
    """Raised when work starts before the work it depends on has completed.

    Attributes:
        task_id: Task (or phase label) whose start was refused.
        unmet: Identifiers of the dependencies that are not completed.
    """

    def __init__(self, task_id: str, unmet: list[str], reason: str | None = None):
        self.task_id = task_id
        self.unmet = unmet
        msg = reason or f"Task {task_id} has unmet dependencies: {', '.join(unmet)}"
        super().__init__(msg)


class TaskAlreadyClaimedError(AgencyflowError):
    """Raised when a task was claimed by another caller first."""

    def __init__(self, task_id: str, status: str):
        self.task_id = task_id
        self.status = status
        super().__init__(f"Task {task_id} is already {status}")


class DelegationErrorKind(str, enum.Enum):
    """Failure categories for a specialist delegation."""

    TIMEOUT = "timeout"
    INVALID_OUTPUT = "invalid_output"
    UPSTREAM_FAILURE = "upstream_failure"


class DelegationError(AgencyflowError):
    """Raised when a specialist delegation fails after dispatch.

    Attributes:
        kind: Failure category.
        agent_type: Specialist that was invoked.
        execution_id: ID of the execution record written for the attempt.
        task_id: Owning task, if the delegation was task-bound.
    """

    def __init__(
        self,
        kind: DelegationErrorKind,
        agent_type: str,
        message: str,
        execution_id: str | None = None,
        task_id: str | None = None,
    ):
        self.kind = kind
        self.agent_type = agent_type
        self.execution_id = execution_id
        self.task_id = task_id
        super().__init__(f"{agent_type} delegation failed ({kind.value}): {message}")

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            kind=self.kind.value,
            agent_type=self.agent_type,
            execution_id=self.execution_id,
            task_id=self.task_id,
        )
        return data
