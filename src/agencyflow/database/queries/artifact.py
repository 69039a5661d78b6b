"""Artifact query functions for Agencyflow.

Artifacts are immutable per version. ``revise_artifact`` never edits the
prior row: it inserts a new version linked to it, and only the latest
version of a chain may be revised, so a chain never forks.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.artifact import Artifact, ArtifactType
from agencyflow.database.models.event import Event, EventType
from agencyflow.errors import NotFoundError, ValidationError
from agencyflow.events.effects import Effects
from agencyflow.events.log import build_event

logger = structlog.get_logger(__name__)


def build_artifact(
    artifact_type: ArtifactType,
    name: str,
    content: str,
    created_by: AgentType,
    project_id: uuid.UUID | None = None,
    task_id: uuid.UUID | None = None,
    client_id: uuid.UUID | None = None,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
    previous: Artifact | None = None,
) -> tuple[Artifact, Event]:
    """Build a new artifact version and its artifact_created event.

    Nothing is written; the caller persists both rows together.

    Args:
        artifact_type: Kind of work product.
        name: Document name.
        content: Textual content.
        created_by: Producing specialist.
        project_id: Owning project.
        task_id: Producing task.
        client_id: Owning client.
        description: Optional short description.
        metadata: Free-form metadata.
        previous: Prior version when this is a revision.

    Returns:
        The transient Artifact and Event.
    """
    artifact = Artifact(
        id=uuid.uuid4(),
        project_id=project_id,
        task_id=task_id,
        client_id=client_id,
        type=artifact_type,
        name=name,
        description=description,
        content=content,
        artifact_metadata=metadata or {},
        created_by=created_by,
        version=previous.version + 1 if previous else 1,
        previous_version_id=previous.id if previous else None,
    )
    event = build_event(
        EventType.artifact_created,
        {
            "artifact_id": str(artifact.id),
            "name": name,
            "type": artifact_type.value,
            "version": artifact.version,
            "previous_version_id": str(previous.id) if previous else None,
        },
        project_id=project_id,
        task_id=task_id,
        agent_type=created_by,
    )
    return artifact, event


async def create_artifact(
    session: AsyncSession,
    artifact_type: ArtifactType,
    name: str,
    content: str,
    created_by: AgentType,
    project_id: uuid.UUID | None = None,
    task_id: uuid.UUID | None = None,
    client_id: uuid.UUID | None = None,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Artifact:
    """Create version 1 of a new artifact.

    Returns:
        The persisted Artifact (flushed, not committed).
    """
    artifact, event = build_artifact(
        artifact_type,
        name,
        content,
        created_by,
        project_id=project_id,
        task_id=task_id,
        client_id=client_id,
        description=description,
        metadata=metadata,
    )
    await Effects().add(artifact, event).apply(session)

    logger.info(
        "artifact_created",
        artifact_id=str(artifact.id),
        name=name,
        type=artifact_type.value,
        version=artifact.version,
    )
    return artifact


async def get_artifact(
    session: AsyncSession,
    artifact_id: uuid.UUID,
) -> Artifact | None:
    """Retrieve an artifact version by ID."""
    stmt = select(Artifact).where(Artifact.id == artifact_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_artifact(
    session: AsyncSession,
    artifact_id: uuid.UUID,
) -> Artifact:
    """Retrieve an artifact version, raising NotFoundError if missing."""
    artifact = await get_artifact(session, artifact_id)
    if artifact is None:
        raise NotFoundError("Artifact", artifact_id)
    return artifact


async def get_next_version(
    session: AsyncSession,
    artifact_id: uuid.UUID,
) -> Artifact | None:
    """Return the version that revises the given one, if any."""
    stmt = select(Artifact).where(Artifact.previous_version_id == artifact_id)
    result = await session.execute(stmt)
    return result.scalars().first()


async def revise_artifact(
    session: AsyncSession,
    previous_id: uuid.UUID,
    content: str,
    created_by: AgentType,
    task_id: uuid.UUID | None = None,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Artifact:
    """Create a new version of an artifact.

    The new version keeps the chain's name, type and owners, has
    ``version = previous.version + 1`` and links back to the previous
    version. The previous version is left untouched.

    Args:
        session: Active async database session.
        previous_id: The latest version of the document.
        content: Content of the new version.
        created_by: Specialist producing the revision.
        task_id: Task producing the revision (defaults to the previous one).
        description: Description (defaults to the previous one).
        metadata: Metadata (defaults to the previous one).

    Returns:
        The new Artifact version.

    Raises:
        NotFoundError: If ``previous_id`` does not exist.
        ValidationError: If ``previous_id`` is not the latest version.
    """
    previous = await require_artifact(session, previous_id)
    newer = await get_next_version(session, previous_id)
    if newer is not None:
        raise ValidationError(
            f"Artifact {previous_id} is version {previous.version}; "
            f"revise the latest version {newer.id} instead"
        )

    artifact, event = build_artifact(
        previous.type,
        previous.name,
        content,
        created_by,
        project_id=previous.project_id,
        task_id=task_id or previous.task_id,
        client_id=previous.client_id,
        description=description if description is not None else previous.description,
        metadata=metadata if metadata is not None else dict(previous.artifact_metadata),
        previous=previous,
    )
    await Effects().add(artifact, event).apply(session)

    logger.info(
        "artifact_revised",
        artifact_id=str(artifact.id),
        previous_version_id=str(previous_id),
        version=artifact.version,
    )
    return artifact


async def list_artifacts(
    session: AsyncSession,
    project_id: uuid.UUID | None = None,
    artifact_type: ArtifactType | None = None,
    task_id: uuid.UUID | None = None,
    client_id: uuid.UUID | None = None,
    latest_only: bool = False,
) -> list[Artifact]:
    """List artifact versions, oldest first.

    Args:
        session: Active async database session.
        project_id: Optional project filter.
        artifact_type: Optional type filter.
        task_id: Optional producing-task filter.
        client_id: Optional client filter.
        latest_only: Exclude versions that have been revised.

    Returns:
        Matching Artifact rows.
    """
    stmt = select(Artifact)
    if project_id is not None:
        stmt = stmt.where(Artifact.project_id == project_id)
    if artifact_type is not None:
        stmt = stmt.where(Artifact.type == artifact_type)
    if task_id is not None:
        stmt = stmt.where(Artifact.task_id == task_id)
    if client_id is not None:
        stmt = stmt.where(Artifact.client_id == client_id)
    if latest_only:
        newer = aliased(Artifact)
        stmt = stmt.where(
            ~select(newer.id).where(newer.previous_version_id == Artifact.id).exists()
        )
    stmt = stmt.order_by(Artifact.created_at.asc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_version_history(
    session: AsyncSession,
    artifact_id: uuid.UUID,
) -> list[Artifact]:
    """Return every version of the artifact's chain, oldest first.

    Args:
        session: Active async database session.
        artifact_id: Any version in the chain.

    Returns:
        The full chain from version 1 to the latest version.

    Raises:
        NotFoundError: If ``artifact_id`` does not exist.
    """
    current = await require_artifact(session, artifact_id)

    earlier: list[Artifact] = []
    cursor = current
    while cursor.previous_version_id is not None:
        cursor = await require_artifact(session, cursor.previous_version_id)
        earlier.append(cursor)

    later: list[Artifact] = []
    cursor = current
    while True:
        following = await get_next_version(session, cursor.id)
        if following is None:
            break
        later.append(following)
        cursor = following

    return list(reversed(earlier)) + [current] + later
