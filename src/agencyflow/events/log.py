"""Append-only event log for Agencyflow.

The event log is the audit trail of the orchestration core. Every phase
change, task state change, specialist invocation and workflow run
transition is recorded here, and project history is reconstructed from
these rows alone.

Events are built (and their payloads validated) without touching the
database, so operations can return them as effects for the caller to
persist in the same transaction as the state change they describe.
Writers only ever insert; nothing in this module updates or deletes an
event.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.base import utcnow
from agencyflow.database.models.event import Event, EventType
from agencyflow.errors import ValidationError
from agencyflow.events.schema import EVENT_PAYLOADS, EventPayload
from agencyflow.logging import get_correlation_id

logger = structlog.get_logger(__name__)


def build_event(
    event_type: EventType,
    payload: dict[str, Any] | EventPayload,
    *,
    project_id: uuid.UUID | None = None,
    task_id: uuid.UUID | None = None,
    agent_type: AgentType | None = None,
    metadata: dict[str, Any] | None = None,
) -> Event:
    """Build a validated, not yet persisted event.

    Args:
        event_type: Type of the event.
        payload: Payload as a dict or as the matching payload model.
        project_id: Project the event belongs to.
        task_id: Task the event concerns.
        agent_type: Specialist involved.
        metadata: Extra correlation data.

    Returns:
        A transient Event instance.

    Raises:
        ValidationError: If the payload does not match the event type's schema.
    """
    schema = EVENT_PAYLOADS[event_type]
    if isinstance(payload, EventPayload) and not isinstance(payload, schema):
        raise ValidationError(
            f"{type(payload).__name__} is not a valid payload for {event_type.value} events"
        )

    try:
        model = payload if isinstance(payload, schema) else schema.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid payload for {event_type.value} event",
            errors=json.loads(e.json(include_url=False)),
        ) from e

    event_metadata = dict(metadata or {})
    correlation_id = get_correlation_id()
    if correlation_id is not None:
        event_metadata.setdefault("correlation_id", correlation_id)

    return Event(
        type=event_type,
        project_id=project_id,
        task_id=task_id,
        agent_type=agent_type,
        payload=model.model_dump(mode="json", exclude_none=True),
        event_metadata=event_metadata,
        timestamp=utcnow(),
    )


@dataclass(frozen=True)
class PhaseHistoryEntry:
    """One step of a project's status history, as recorded in the log.

    Attributes:
        status: Status the project entered.
        previous_status: Status it left (None for creation).
        timestamp: When the change was recorded.
        notes: Notes supplied with the change.
    """

    status: str
    previous_status: str | None
    timestamp: datetime
    notes: str | None = None


class EventLog:
    """Append and read access to the event log."""

    def __init__(self) -> None:
        self._logger = logger.bind(component="EventLog")

    async def append(
        self,
        session: AsyncSession,
        event_type: EventType,
        payload: dict[str, Any] | EventPayload,
        **refs: Any,
    ) -> Event:
        """Validate and insert a single event.

        The insert is flushed but not committed; commit is handled by caller.

        Args:
            session: Active database session.
            event_type: Type of the event.
            payload: Event payload.
            **refs: project_id, task_id, agent_type, metadata.

        Returns:
            The persisted Event.
        """
        event = build_event(event_type, payload, **refs)
        session.add(event)
        await session.flush()

        self._logger.debug(
            "event_appended",
            event_id=event.id,
            event_type=event_type.value,
            project_id=str(event.project_id) if event.project_id else None,
        )
        return event

    async def list_events(
        self,
        session: AsyncSession,
        project_id: uuid.UUID | None = None,
        types: list[EventType] | None = None,
        task_id: uuid.UUID | None = None,
        since_id: int | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        """List events in append order.

        Args:
            session: Active database session.
            project_id: Restrict to one project.
            types: Restrict to these event types.
            task_id: Restrict to one task.
            since_id: Only events appended after this sequence number.
            limit: Maximum number of events to return.

        Returns:
            Events ordered by timestamp, then sequence number.
        """
        stmt = select(Event)
        if project_id is not None:
            stmt = stmt.where(Event.project_id == project_id)
        if types:
            stmt = stmt.where(Event.type.in_(types))
        if task_id is not None:
            stmt = stmt.where(Event.task_id == task_id)
        if since_id is not None:
            stmt = stmt.where(Event.id > since_id)
        stmt = stmt.order_by(Event.timestamp.asc(), Event.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def replay_phase_history(
        self,
        session: AsyncSession,
        project_id: uuid.UUID,
    ) -> list[PhaseHistoryEntry]:
        """Reconstruct a project's status history from the log.

        Args:
            session: Active database session.
            project_id: Project to replay.

        Returns:
            Ordered history entries, starting with the creation status.
        """
        events = await self.list_events(
            session,
            project_id=project_id,
            types=[EventType.project_created, EventType.project_status_changed],
        )

        history: list[PhaseHistoryEntry] = []
        for event in events:
            if event.type == EventType.project_created:
                history.append(
                    PhaseHistoryEntry(
                        status=event.payload["status"],
                        previous_status=None,
                        timestamp=event.timestamp,
                    )
                )
            else:
                history.append(
                    PhaseHistoryEntry(
                        status=event.payload["new_status"],
                        previous_status=event.payload["previous_status"],
                        timestamp=event.timestamp,
                        notes=event.payload.get("notes"),
                    )
                )
        return history
