"""Project endpoints for Agencyflow.

This module exposes read access to a project's phase, tasks, artifacts,
workflow runs and event log, and the manual status change endpoint, which
goes through the phase state machine like every other transition.

Example:
    >>> from fastapi import FastAPI
    >>> from agencyflow.web.routes.projects import create_projects_router
    >>>
    >>> app = FastAPI()
    >>> app.include_router(create_projects_router())
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi import status as http_status
from pydantic import BaseModel, Field

from agencyflow.database.models.artifact import ArtifactType
from agencyflow.database.models.event import EventType
from agencyflow.database.models.project import Project, ProjectStatus
from agencyflow.database.models.task import TaskStatus
from agencyflow.database.queries import artifact as artifact_queries
from agencyflow.database.queries import project as project_queries
from agencyflow.database.queries import task as task_queries
from agencyflow.logging import get_logger
from agencyflow.orchestrator.context import OrchestratorContext
from agencyflow.orchestrator.phase_machine import legal_targets

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


class PhaseResponse(BaseModel):
    """Current phase of a project.

    Attributes:
        project_id: Project UUID
        phase: Current phase
        held_phase: Phase to resume into while on hold
        legal_targets: Phases reachable in one transition
        phases: Phase records, oldest first
    """

    project_id: UUID
    phase: ProjectStatus
    held_phase: ProjectStatus | None = None
    legal_targets: list[ProjectStatus]
    phases: list[dict[str, Any]]


class StatusChangeRequest(BaseModel):
    """Request body for a manual status change.

    Attributes:
        status: Requested phase
        notes: Optional notes recorded on the status change event
    """

    status: ProjectStatus
    notes: str | None = Field(None, max_length=2000)


class TaskResponse(BaseModel):
    """Task summary."""

    id: UUID
    name: str
    status: TaskStatus
    assigned_agent: str | None
    priority: str
    phase: ProjectStatus | None
    step_name: str | None
    workflow_run_id: str | None
    retry_count: int
    max_retries: int
    last_error: str | None
    artifact_ids: list[str]
    created_at: datetime
    completed_at: datetime | None


class ArtifactResponse(BaseModel):
    """Artifact summary (content included)."""

    id: UUID
    type: ArtifactType
    name: str
    description: str | None
    content: str
    created_by: str
    version: int
    previous_version_id: UUID | None
    task_id: UUID | None
    created_at: datetime


class EventResponse(BaseModel):
    """One event log entry."""

    id: int
    type: EventType
    project_id: UUID | None
    task_id: UUID | None
    agent_type: str | None
    payload: dict[str, Any]
    metadata: dict[str, Any]
    timestamp: datetime


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """Dependency that retrieves the session factory from app state."""
    return request.app.state.session_factory  # type: ignore[return-value]


def get_orchestrator(request: Request) -> OrchestratorContext:
    """Dependency that retrieves the orchestrator context from app state."""
    return request.app.state.orchestrator  # type: ignore[no-any-return]


def _parse_enum(enum_type: type[Any], value: str | None, field: str) -> Any:
    if value is None:
        return None
    try:
        return enum_type(value)
    except ValueError:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {field}: {value}. Valid values: {[e.value for e in enum_type]}",
        ) from None


def _phase_response(project: Project) -> PhaseResponse:
    return PhaseResponse(
        project_id=project.id,
        phase=project.current_phase,
        held_phase=project.held_phase,
        legal_targets=sorted(
            legal_targets(project.current_phase, project.held_phase),
            key=lambda phase: phase.value,
        ),
        phases=list(project.phases),
    )


def create_projects_router() -> APIRouter:
    """Create the projects router.

    Routes:
        GET /projects/{project_id}/phase - Current phase and legal targets
        POST /projects/{project_id}/status - Manual status change
        GET /projects/{project_id}/tasks - Tasks, optionally by status
        GET /projects/{project_id}/artifacts - Artifacts, optionally by type
        GET /projects/{project_id}/workflows - Workflow runs
        GET /projects/{project_id}/events - Event log
        GET /projects/{project_id}/history - Status history replayed from events
    """
    router = APIRouter(prefix="/projects", tags=["projects"])

    @router.get("/{project_id}/phase", response_model=PhaseResponse)
    async def get_phase(
        project_id: UUID,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> PhaseResponse:
        async with session_factory() as session:
            project = await project_queries.require_project(session, project_id)

        return _phase_response(project)

    @router.post("/{project_id}/status", response_model=PhaseResponse)
    async def change_status(
        project_id: UUID,
        body: StatusChangeRequest,
        orchestrator: OrchestratorContext = Depends(get_orchestrator),  # noqa: B008
    ) -> PhaseResponse:
        """Request a status change through the phase state machine.

        Raises:
            InvalidTransitionError: Rendered as 409 when the change is illegal.
            ConcurrentTransitionError: Rendered as 409 when another
                transition of the project is in flight.
        """
        async with orchestrator.session_factory() as session:
            project = await orchestrator.phase_machine.transition(
                session, project_id, body.status, notes=body.notes
            )

        logger.info(
            "project_status_requested",
            project_id=str(project_id),
            status=body.status.value,
        )
        return _phase_response(project)

    @router.get("/{project_id}/tasks", response_model=list[TaskResponse])
    async def list_project_tasks(
        project_id: UUID,
        status: str | None = None,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> list[TaskResponse]:
        status_filter = _parse_enum(TaskStatus, status, "status")
        async with session_factory() as session:
            await project_queries.require_project(session, project_id)
            tasks = await task_queries.list_tasks(
                session, project_id=project_id, status_filter=status_filter
            )

        return [
            TaskResponse(
                id=task.id,
                name=task.name,
                status=task.status,
                assigned_agent=task.assigned_agent.value if task.assigned_agent else None,
                priority=task.priority.value,
                phase=task.phase,
                step_name=task.step_name,
                workflow_run_id=task.workflow_run_id,
                retry_count=task.retry_count,
                max_retries=task.max_retries,
                last_error=task.last_error,
                artifact_ids=list(task.artifact_ids or []),
                created_at=task.created_at,
                completed_at=task.completed_at,
            )
            for task in tasks
        ]

    @router.get("/{project_id}/artifacts", response_model=list[ArtifactResponse])
    async def list_project_artifacts(
        project_id: UUID,
        type: str | None = None,
        latest_only: bool = True,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> list[ArtifactResponse]:
        artifact_type = _parse_enum(ArtifactType, type, "type")
        async with session_factory() as session:
            artifacts = await artifact_queries.list_artifacts(
                session,
                project_id=project_id,
                artifact_type=artifact_type,
                latest_only=latest_only,
            )

        return [
            ArtifactResponse(
                id=artifact.id,
                type=artifact.type,
                name=artifact.name,
                description=artifact.description,
                content=artifact.content,
                created_by=artifact.created_by.value,
                version=artifact.version,
                previous_version_id=artifact.previous_version_id,
                task_id=artifact.task_id,
                created_at=artifact.created_at,
            )
            for artifact in artifacts
        ]

    @router.get("/{project_id}/workflows")
    async def list_project_workflows(
        project_id: UUID,
        request: Request,
    ) -> list[dict[str, Any]]:
        engine = request.app.state.workflow_engine
        return await engine.list_runs(project_id)

    @router.get("/{project_id}/events", response_model=list[EventResponse])
    async def list_project_events(
        project_id: UUID,
        types: list[str] | None = Query(None),  # noqa: B008
        since_id: int | None = None,
        limit: int | None = Query(None, ge=1, le=1000),  # noqa: B008
        orchestrator: OrchestratorContext = Depends(get_orchestrator),  # noqa: B008
    ) -> list[EventResponse]:
        event_types = [_parse_enum(EventType, value, "type") for value in types or []]
        async with orchestrator.session_factory() as session:
            events = await orchestrator.event_log.list_events(
                session,
                project_id=project_id,
                types=event_types or None,
                since_id=since_id,
                limit=limit,
            )

        return [
            EventResponse(
                id=event.id,
                type=event.type,
                project_id=event.project_id,
                task_id=event.task_id,
                agent_type=event.agent_type.value if event.agent_type else None,
                payload=event.payload,
                metadata=event.event_metadata,
                timestamp=event.timestamp,
            )
            for event in events
        ]

    @router.get("/{project_id}/history")
    async def get_phase_history(
        project_id: UUID,
        orchestrator: OrchestratorContext = Depends(get_orchestrator),  # noqa: B008
    ) -> list[dict[str, Any]]:
        async with orchestrator.session_factory() as session:
            await project_queries.require_project(session, project_id)
            history = await orchestrator.event_log.replay_phase_history(session, project_id)

        return [
            {
                "status": entry.status,
                "previous_status": entry.previous_status,
                "timestamp": entry.timestamp.isoformat(),
                "notes": entry.notes,
            }
            for entry in history
        ]

    return router
