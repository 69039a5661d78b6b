"""Client query functions for Agencyflow.

A client is created as a lead by the onboarding workflow, qualified by the
client-acquisition specialist, and becomes active once a project is
created for it.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agencyflow.database.models.base import utcnow
from agencyflow.database.models.client import Client, ClientStatus
from agencyflow.database.models.event import EventType
from agencyflow.errors import NotFoundError, ValidationError
from agencyflow.events.effects import Effects
from agencyflow.events.log import build_event

logger = structlog.get_logger(__name__)


async def create_client(
    session: AsyncSession,
    name: str,
    contact_info: dict[str, Any] | None = None,
    industry: str | None = None,
    preferences: dict[str, Any] | None = None,
    lead_source: str | None = None,
    notes: str | None = None,
) -> Client:
    """Create a client in the ``lead`` status and record client_created.

    Args:
        session: Active async database session.
        name: Client or contact name.
        contact_info: Email, phone, company, website, address.
        industry: Optional industry label.
        preferences: Communication, design and budget preferences.
        lead_source: Where the lead came from.
        notes: Free-form notes.

    Returns:
        The newly created Client instance.
    """
    client = Client(
        id=uuid.uuid4(),
        name=name,
        contact_info=contact_info or {},
        status=ClientStatus.lead,
        industry=industry,
        preferences=preferences or {},
        project_ids=[],
        lead_source=lead_source,
        notes=notes,
    )
    await Effects().add(
        client,
        build_event(
            EventType.client_created,
            {
                "client_id": str(client.id),
                "name": name,
                "status": ClientStatus.lead.value,
            },
        ),
    ).apply(session)

    logger.info("client_created", client_id=str(client.id), name=name)
    return client


async def get_client(
    session: AsyncSession,
    client_id: uuid.UUID,
) -> Client | None:
    """Retrieve a client by ID."""
    stmt = select(Client).where(Client.id == client_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_client(
    session: AsyncSession,
    client_id: uuid.UUID,
) -> Client:
    """Retrieve a client by ID, raising NotFoundError if missing."""
    client = await get_client(session, client_id)
    if client is None:
        raise NotFoundError("Client", client_id)
    return client


async def list_clients(
    session: AsyncSession,
    status_filter: ClientStatus | None = None,
) -> list[Client]:
    """List clients, newest first."""
    stmt = select(Client)
    if status_filter is not None:
        stmt = stmt.where(Client.status == status_filter)
    stmt = stmt.order_by(Client.created_at.desc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def qualify_client(
    session: AsyncSession,
    client_id: uuid.UUID,
    score: int | None,
    notes: str | None = None,
) -> Client:
    """Mark a lead as qualified with its qualification score.

    Raises:
        ValidationError: If the score is outside 0-100.
        NotFoundError: If the client does not exist.
    """
    if score is not None and not 0 <= score <= 100:
        raise ValidationError(f"Qualification score must be within 0-100, got {score}")

    client = await require_client(session, client_id)
    client.status = ClientStatus.qualified
    client.qualification_score = score
    if notes:
        client.notes = notes
    client.updated_at = utcnow()
    await session.flush()

    logger.info("client_qualified", client_id=str(client_id), score=score)
    return client


async def link_project(
    session: AsyncSession,
    client_id: uuid.UUID,
    project_id: uuid.UUID,
) -> Client:
    """Attach a project to a client and mark the client active."""
    client = await require_client(session, client_id)
    if str(project_id) not in client.project_ids:
        client.project_ids = list(client.project_ids) + [str(project_id)]
    client.status = ClientStatus.active
    client.updated_at = utcnow()
    await session.flush()

    logger.info("client_project_linked", client_id=str(client_id), project_id=str(project_id))
    return client
