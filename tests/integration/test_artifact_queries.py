"""Integration tests for artifact versioning and client records."""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.artifact import ArtifactType
from agencyflow.database.models.client import ClientStatus
from agencyflow.database.models.event import EventType
from agencyflow.database.models.project import Project
from agencyflow.database.queries.artifact import (
    create_artifact,
    get_version_history,
    list_artifacts,
    revise_artifact,
)
from agencyflow.database.queries.client import (
    create_client,
    link_project,
    list_clients,
    qualify_client,
)
from agencyflow.errors import NotFoundError, ValidationError
from agencyflow.events.log import EventLog


@pytest.mark.asyncio
async def test_create_first_version(db_session: AsyncSession, project: Project) -> None:
    artifact = await create_artifact(
        db_session,
        ArtifactType.design,
        "Homepage design",
        "Two-column layout",
        AgentType.design,
        project_id=project.id,
    )
    await db_session.commit()

    assert artifact.version == 1
    assert artifact.previous_version_id is None

    events = await EventLog().list_events(
        db_session, project_id=project.id, types=[EventType.artifact_created]
    )
    assert events[0].payload["artifact_id"] == str(artifact.id)
    assert events[0].payload["version"] == 1


@pytest.mark.asyncio
async def test_revision_chain(db_session: AsyncSession, project: Project) -> None:
    """Test that revisions link back and leave earlier versions untouched."""
    v1 = await create_artifact(
        db_session,
        ArtifactType.design,
        "Homepage design",
        "Two-column layout",
        AgentType.design,
        project_id=project.id,
        metadata={"components": ["Header"]},
    )
    v2 = await revise_artifact(db_session, v1.id, "Single column", AgentType.design)
    v3 = await revise_artifact(db_session, v2.id, "Single column, dark", AgentType.design)
    await db_session.commit()

    assert (v2.version, v2.previous_version_id) == (2, v1.id)
    assert (v3.version, v3.previous_version_id) == (3, v2.id)
    assert v3.name == "Homepage design"
    assert v3.project_id == project.id
    assert v3.artifact_metadata == {"components": ["Header"]}
    assert v1.content == "Two-column layout"

    for any_version in (v1, v2, v3):
        history = await get_version_history(db_session, any_version.id)
        assert [a.version for a in history] == [1, 2, 3]


@pytest.mark.asyncio
async def test_revising_old_version_rejected(db_session: AsyncSession, project: Project) -> None:
    v1 = await create_artifact(
        db_session,
        ArtifactType.api,
        "app/api/route.ts",
        "v1",
        AgentType.backend,
        project_id=project.id,
    )
    await revise_artifact(db_session, v1.id, "v2", AgentType.backend)

    with pytest.raises(ValidationError, match="revise the latest version"):
        await revise_artifact(db_session, v1.id, "branch", AgentType.backend)

    with pytest.raises(NotFoundError):
        await revise_artifact(db_session, uuid.uuid4(), "v1", AgentType.backend)


@pytest.mark.asyncio
async def test_list_filters(db_session: AsyncSession, project: Project) -> None:
    design = await create_artifact(
        db_session,
        ArtifactType.design,
        "Homepage design",
        "v1",
        AgentType.design,
        project_id=project.id,
    )
    await revise_artifact(db_session, design.id, "v2", AgentType.design)
    await create_artifact(
        db_session,
        ArtifactType.research,
        "Market research",
        "findings",
        AgentType.deep_research,
        project_id=project.id,
    )
    await db_session.commit()

    everything = await list_artifacts(db_session, project_id=project.id)
    latest = await list_artifacts(db_session, project_id=project.id, latest_only=True)
    designs = await list_artifacts(
        db_session, project_id=project.id, artifact_type=ArtifactType.design
    )

    assert len(everything) == 3
    assert sorted((a.name, a.version) for a in latest) == [
        ("Homepage design", 2),
        ("Market research", 1),
    ]
    assert [a.version for a in designs] == [1, 2]


class TestClients:
    """Test client records."""

    @pytest.mark.asyncio
    async def test_lead_lifecycle(self, db_session: AsyncSession, project: Project) -> None:
        client = await create_client(
            db_session,
            "Jane Baker",
            contact_info={"email": "jane@example.com"},
            lead_source="website",
        )
        assert client.status == ClientStatus.lead

        await qualify_client(db_session, client.id, 75, notes="Good fit")
        assert client.status == ClientStatus.qualified
        assert client.qualification_score == 75

        await link_project(db_session, client.id, project.id)
        await link_project(db_session, client.id, project.id)
        await db_session.commit()

        assert client.status == ClientStatus.active
        assert client.project_ids == [str(project.id)]
        assert [c.id for c in await list_clients(db_session, ClientStatus.active)] == [client.id]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("score", [-5, 101])
    async def test_score_out_of_range(self, db_session: AsyncSession, score: int) -> None:
        client = await create_client(db_session, "Jane Baker")
        with pytest.raises(ValidationError):
            await qualify_client(db_session, client.id, score)

    @pytest.mark.asyncio
    async def test_unknown_client(self, db_session: AsyncSession) -> None:
        with pytest.raises(NotFoundError):
            await qualify_client(db_session, uuid.uuid4(), 50)
