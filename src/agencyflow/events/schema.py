"""Payload schemas for domain events.

Each EventType has exactly one payload model. Payloads are validated when
an event is built, so the log never stores an untyped blob: readers can
rely on the fields documented here for every event of a given type.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from agencyflow.database.models.event import EventType


class EventPayload(BaseModel):
    """Base for event payloads. Unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")


class ProjectCreatedPayload(EventPayload):
    name: str
    status: str
    client_id: str | None = None


class ProjectUpdatedPayload(EventPayload):
    fields: list[str] = Field(default_factory=list)


class ProjectStatusChangedPayload(EventPayload):
    previous_status: str
    new_status: str
    notes: str | None = None


class TaskCreatedPayload(EventPayload):
    name: str
    priority: str
    assigned_agent: str | None = None
    phase: str | None = None
    workflow_run_id: str | None = None


class TaskAssignedPayload(EventPayload):
    assigned_agent: str
    previous_agent: str | None = None


class TaskCompletedPayload(EventPayload):
    artifact_ids: list[str] = Field(default_factory=list)
    execution_id: str | None = None


class TaskFailedPayload(EventPayload):
    error: str
    retry_count: int
    max_retries: int


class TaskRetriedPayload(EventPayload):
    retry_count: int
    max_retries: int
    automatic: bool
    error: str | None = None


class AgentStartedPayload(EventPayload):
    timeout_seconds: float | None = None
    workflow_run_id: str | None = None


class AgentCompletedPayload(EventPayload):
    execution_id: str
    duration_ms: float
    artifact_id: str | None = None
    late: bool = False


class AgentErrorPayload(EventPayload):
    execution_id: str
    kind: str
    error: str
    duration_ms: float


class WorkflowStartedPayload(EventPayload):
    run_id: str
    workflow_id: str


class WorkflowSuspendedPayload(EventPayload):
    run_id: str
    reason: str
    step: str | None = None


class WorkflowResumedPayload(EventPayload):
    run_id: str
    approved: bool = False
    step: str | None = None


class WorkflowCompletedPayload(EventPayload):
    run_id: str
    workflow_id: str
    handoff_run_id: str | None = None


class WorkflowFailedPayload(EventPayload):
    run_id: str
    workflow_id: str
    error: str
    error_type: str
    step: str | None = None


class ArtifactCreatedPayload(EventPayload):
    artifact_id: str
    name: str
    type: str
    version: int
    previous_version_id: str | None = None


class ClientCreatedPayload(EventPayload):
    client_id: str
    name: str
    status: str


EVENT_PAYLOADS: dict[EventType, type[EventPayload]] = {
    EventType.project_created: ProjectCreatedPayload,
    EventType.project_updated: ProjectUpdatedPayload,
    EventType.project_status_changed: ProjectStatusChangedPayload,
    EventType.task_created: TaskCreatedPayload,
    EventType.task_assigned: TaskAssignedPayload,
    EventType.task_completed: TaskCompletedPayload,
    EventType.task_failed: TaskFailedPayload,
    EventType.task_retried: TaskRetriedPayload,
    EventType.agent_started: AgentStartedPayload,
    EventType.agent_completed: AgentCompletedPayload,
    EventType.agent_error: AgentErrorPayload,
    EventType.workflow_started: WorkflowStartedPayload,
    EventType.workflow_suspended: WorkflowSuspendedPayload,
    EventType.workflow_resumed: WorkflowResumedPayload,
    EventType.workflow_completed: WorkflowCompletedPayload,
    EventType.workflow_failed: WorkflowFailedPayload,
    EventType.artifact_created: ArtifactCreatedPayload,
    EventType.client_created: ClientCreatedPayload,
}
