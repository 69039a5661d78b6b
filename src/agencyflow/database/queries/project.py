"""Project query functions for Agencyflow.

Provides async functions for creating and reading Project records.
Status changes are deliberately absent: they go through the phase state
machine. Functions flush but do not commit; commit is handled by caller.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.base import utcnow
from agencyflow.database.models.event import EventType
from agencyflow.database.models.project import Project, ProjectStatus
from agencyflow.errors import NotFoundError
from agencyflow.events.log import build_event
from agencyflow.events.effects import Effects

logger = structlog.get_logger(__name__)

# Fields that may be edited outside the phase state machine
EDITABLE_FIELDS = frozenset(
    {"name", "description", "requirements", "timeline", "budget", "project_metadata"}
)


def phase_record(
    status: ProjectStatus,
    assigned_agents: list[str] | None = None,
) -> dict[str, Any]:
    """Build a new, active phase record for a project's phase list."""
    return {
        "name": status.value.replace("_", " ").title(),
        "status": status.value,
        "started_at": utcnow().isoformat(),
        "completed_at": None,
        "assigned_agents": list(assigned_agents or []),
    }


async def create_project(
    session: AsyncSession,
    name: str,
    description: str = "",
    client_id: uuid.UUID | None = None,
    requirements: dict[str, Any] | None = None,
    timeline: dict[str, Any] | None = None,
    budget: float | None = None,
    metadata: dict[str, Any] | None = None,
) -> Project:
    """Create a project in the intake phase.

    Args:
        session: Active async database session.
        name: Human-readable project name.
        description: Free-text description.
        client_id: Owning client, if any.
        requirements: Features, technical stack and constraints.
        timeline: Estimated dates and milestones.
        budget: Optional budget.
        metadata: Free-form metadata.

    Returns:
        The newly created Project instance.
    """
    agents = [AgentType.project_manager.value]
    project = Project(
        id=uuid.uuid4(),
        name=name,
        description=description,
        client_id=client_id,
        status=ProjectStatus.intake,
        current_phase=ProjectStatus.intake,
        phases=[phase_record(ProjectStatus.intake, agents)],
        requirements=requirements or {},
        timeline={"milestones": [], **(timeline or {})},
        budget=budget,
        assigned_agents=agents,
        project_metadata=metadata or {},
    )

    effects = Effects().add(
        project,
        build_event(
            EventType.project_created,
            {
                "name": name,
                "status": ProjectStatus.intake.value,
                "client_id": str(client_id) if client_id else None,
            },
            project_id=project.id,
        ),
    )
    await effects.apply(session)

    logger.info(
        "project_created",
        project_id=str(project.id),
        name=name,
        status=project.status.value,
    )
    return project


async def get_project(
    session: AsyncSession,
    project_id: uuid.UUID,
    refresh: bool = False,
) -> Project | None:
    """Retrieve a project by ID, or None.

    Args:
        session: Active async database session.
        project_id: Project to load.
        refresh: Overwrite any copy already held by the session with the
                 stored row.
    """
    stmt = select(Project).where(Project.id == project_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_project(
    session: AsyncSession,
    project_id: uuid.UUID,
    refresh: bool = False,
) -> Project:
    """Retrieve a project by ID.

    Raises:
        NotFoundError: If the project does not exist.
    """
    project = await get_project(session, project_id, refresh=refresh)
    if project is None:
        raise NotFoundError("Project", project_id)
    return project


async def get_current_phase(
    session: AsyncSession,
    project_id: uuid.UUID,
) -> ProjectStatus:
    """Return the current phase of a project.

    Raises:
        NotFoundError: If the project does not exist.
    """
    stmt = select(Project.current_phase).where(Project.id == project_id)
    result = await session.execute(stmt)
    phase = result.scalar_one_or_none()
    if phase is None:
        raise NotFoundError("Project", project_id)
    return phase


async def list_projects(
    session: AsyncSession,
    status_filter: ProjectStatus | None = None,
    client_id: uuid.UUID | None = None,
) -> list[Project]:
    """List projects, newest first, with optional filters."""
    stmt = select(Project)
    if status_filter is not None:
        stmt = stmt.where(Project.status == status_filter)
    if client_id is not None:
        stmt = stmt.where(Project.client_id == client_id)
    stmt = stmt.order_by(Project.created_at.desc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_project_details(
    session: AsyncSession,
    project_id: uuid.UUID,
    **fields: Any,
) -> Project:
    """Update descriptive project fields and record a project_updated event.

    Args:
        session: Active async database session.
        project_id: Project to update.
        **fields: Subset of EDITABLE_FIELDS.

    Returns:
        The updated Project.

    Raises:
        ValueError: If a field is not editable here (status changes go
                    through the phase state machine).
        NotFoundError: If the project does not exist.
    """
    invalid = set(fields) - EDITABLE_FIELDS
    if invalid:
        raise ValueError(f"Fields cannot be updated directly: {sorted(invalid)}")

    project = await require_project(session, project_id)
    for key, value in fields.items():
        setattr(project, key, value)
    project.updated_at = utcnow()

    await Effects().add(
        build_event(
            EventType.project_updated,
            {"fields": sorted(fields)},
            project_id=project.id,
        )
    ).apply(session)

    logger.info("project_updated", project_id=str(project_id), fields=sorted(fields))
    return project
