"""Event model for Agencyflow.

The events table is the append-only audit log. Rows are inserted and never
updated or deleted; the integer primary key gives a total insertion order
that breaks ties between events sharing a timestamp.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, Integer, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.base import Base, JSONType, utcnow


class EventType(enum.Enum):
    """Domain occurrences recorded in the event log."""

    project_created = "project_created"
    project_updated = "project_updated"
    project_status_changed = "project_status_changed"
    task_created = "task_created"
    task_assigned = "task_assigned"
    task_completed = "task_completed"
    task_failed = "task_failed"
    task_retried = "task_retried"
    agent_started = "agent_started"
    agent_completed = "agent_completed"
    agent_error = "agent_error"
    workflow_started = "workflow_started"
    workflow_suspended = "workflow_suspended"
    workflow_resumed = "workflow_resumed"
    workflow_completed = "workflow_completed"
    workflow_failed = "workflow_failed"
    artifact_created = "artifact_created"
    client_created = "client_created"


class Event(Base):
    """An immutable domain event.

    Attributes:
        id: Monotonic sequence number.
        type: Event type.
        project_id: Project the event belongs to, if any.
        task_id: Task the event concerns, if any.
        agent_type: Specialist involved, if any.
        payload: Type-specific payload, validated on append.
        event_metadata: Correlation data (run id, correlation id).
        timestamp: When the event was appended.
    """

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    type: Mapped[EventType] = mapped_column(nullable=False, index=True)
    project_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    task_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    agent_type: Mapped[AgentType | None] = mapped_column(nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )
