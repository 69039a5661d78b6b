"""SQLAlchemy ORM models for Agencyflow.

This module defines the database schema: clients, projects, tasks,
artifacts, the event log, specialist execution records and workflow runs.

All models use SQLAlchemy 2.0 declarative style with Mapped[] type annotations.
"""

from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.artifact import Artifact, ArtifactType
from agencyflow.database.models.base import Base, JSONType, TimestampMixin
from agencyflow.database.models.client import Client, ClientStatus
from agencyflow.database.models.event import Event, EventType
from agencyflow.database.models.execution import (
    ExecutionRecord,
    WorkflowExecution,
    WorkflowRunStatus,
)
from agencyflow.database.models.project import Project, ProjectStatus
from agencyflow.database.models.task import (
    DependencyType,
    Task,
    TaskPriority,
    TaskStatus,
)

__all__ = [
    "Base",
    "JSONType",
    "TimestampMixin",
    "AgentType",
    "Artifact",
    "ArtifactType",
    "Client",
    "ClientStatus",
    "Event",
    "EventType",
    "ExecutionRecord",
    "WorkflowExecution",
    "WorkflowRunStatus",
    "Project",
    "ProjectStatus",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "DependencyType",
]
