"""Integration tests for phase transitions against the database.

Tests cover:
- Walking the canonical sequence and recording each change as an event
- Rejected skips and terminal phases
- Hold and resume
- Two concurrent transitions of the same project
- Replaying status history from the event log
"""

from __future__ import annotations

import asyncio
import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agencyflow.database.models.event import EventType
from agencyflow.database.models.project import Project, ProjectStatus
from agencyflow.database.queries.project import (
    get_current_phase,
    require_project,
    update_project_details,
)
from agencyflow.errors import ConcurrentTransitionError, InvalidTransitionError, NotFoundError
from agencyflow.orchestrator.context import OrchestratorContext


async def _transition(
    orchestrator: OrchestratorContext,
    project_id: uuid.UUID,
    target: ProjectStatus,
) -> Project:
    async with orchestrator.session_factory() as session:
        return await orchestrator.phase_machine.transition(session, project_id, target)


@pytest.mark.asyncio
async def test_walks_full_sequence(
    orchestrator: OrchestratorContext,
    project: Project,
    db_session: AsyncSession,
) -> None:
    """Test that each phase is reachable only from its predecessor."""
    for target in (
        ProjectStatus.research,
        ProjectStatus.design,
        ProjectStatus.development,
        ProjectStatus.qa,
        ProjectStatus.review,
        ProjectStatus.completed,
    ):
        updated = await _transition(orchestrator, project.id, target)
        assert updated.current_phase == target

    assert await get_current_phase(db_session, project.id) == ProjectStatus.completed

    events = await orchestrator.event_log.list_events(
        db_session, project_id=project.id, types=[EventType.project_status_changed]
    )
    assert [e.payload["new_status"] for e in events] == [
        "research",
        "design",
        "development",
        "qa",
        "review",
        "completed",
    ]


@pytest.mark.asyncio
async def test_skip_is_rejected_and_leaves_project_unchanged(
    orchestrator: OrchestratorContext,
    project: Project,
    db_session: AsyncSession,
) -> None:
    with pytest.raises(InvalidTransitionError):
        await _transition(orchestrator, project.id, ProjectStatus.development)

    assert await get_current_phase(db_session, project.id) == ProjectStatus.intake
    events = await orchestrator.event_log.list_events(
        db_session, project_id=project.id, types=[EventType.project_status_changed]
    )
    assert events == []
    assert not orchestrator.phase_machine.in_flight(project.id)


@pytest.mark.asyncio
async def test_cancelled_project_accepts_no_transition(
    orchestrator: OrchestratorContext,
    project: Project,
) -> None:
    await _transition(orchestrator, project.id, ProjectStatus.cancelled)

    for target in (ProjectStatus.intake, ProjectStatus.research, ProjectStatus.on_hold):
        with pytest.raises(InvalidTransitionError):
            await _transition(orchestrator, project.id, target)


@pytest.mark.asyncio
async def test_hold_and_resume(
    orchestrator: OrchestratorContext,
    project: Project,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    await _transition(orchestrator, project.id, ProjectStatus.research)
    held = await _transition(orchestrator, project.id, ProjectStatus.on_hold)
    assert held.held_phase == ProjectStatus.research

    with pytest.raises(InvalidTransitionError):
        await _transition(orchestrator, project.id, ProjectStatus.design)

    resumed = await _transition(orchestrator, project.id, ProjectStatus.research)
    assert resumed.current_phase == ProjectStatus.research
    assert resumed.held_phase is None

    async with session_factory() as session:
        stored = await require_project(session, project.id)
        assert [r["status"] for r in stored.phases] == [
            "intake",
            "research",
            "on_hold",
            "research",
        ]
        assert "resumed_at" in stored.phases[-1]


@pytest.mark.asyncio
async def test_concurrent_transitions_one_wins(
    orchestrator: OrchestratorContext,
    project: Project,
    db_session: AsyncSession,
) -> None:
    """Test that of two simultaneous transitions exactly one commits."""
    outcomes = await asyncio.gather(
        _transition(orchestrator, project.id, ProjectStatus.research),
        _transition(orchestrator, project.id, ProjectStatus.cancelled),
        return_exceptions=True,
    )

    winners = [o for o in outcomes if isinstance(o, Project)]
    losers = [o for o in outcomes if isinstance(o, ConcurrentTransitionError)]
    assert len(winners) == 1
    assert len(losers) == 1

    phase = await get_current_phase(db_session, project.id)
    assert phase == winners[0].current_phase
    events = await orchestrator.event_log.list_events(
        db_session, project_id=project.id, types=[EventType.project_status_changed]
    )
    assert len(events) == 1


@pytest.mark.asyncio
async def test_can_transition(
    orchestrator: OrchestratorContext,
    project: Project,
    db_session: AsyncSession,
) -> None:
    machine = orchestrator.phase_machine
    assert await machine.can_transition(db_session, project.id, ProjectStatus.research)
    assert not await machine.can_transition(db_session, project.id, ProjectStatus.qa)
    with pytest.raises(NotFoundError):
        await machine.can_transition(db_session, uuid.uuid4(), ProjectStatus.research)


@pytest.mark.asyncio
async def test_replay_phase_history(
    orchestrator: OrchestratorContext,
    project: Project,
    db_session: AsyncSession,
) -> None:
    await _transition(orchestrator, project.id, ProjectStatus.research)
    async with orchestrator.session_factory() as session:
        await orchestrator.phase_machine.transition(
            session, project.id, ProjectStatus.on_hold, notes="client vacation"
        )

    history = await orchestrator.event_log.replay_phase_history(db_session, project.id)

    assert [(h.previous_status, h.status) for h in history] == [
        (None, "intake"),
        ("intake", "research"),
        ("research", "on_hold"),
    ]
    assert history[-1].notes == "client vacation"


@pytest.mark.asyncio
async def test_detail_update_records_event_without_phase_change(
    orchestrator: OrchestratorContext,
    project: Project,
    db_session: AsyncSession,
) -> None:
    updated = await update_project_details(
        db_session, project.id, name="Bakery storefront", budget=4000.0
    )
    await db_session.commit()

    assert updated.name == "Bakery storefront"
    assert updated.current_phase == ProjectStatus.intake
    events = await orchestrator.event_log.list_events(
        db_session, project_id=project.id, types=[EventType.project_updated]
    )
    assert [e.payload["fields"] for e in events] == [["budget", "name"]]


@pytest.mark.asyncio
async def test_detail_update_rejects_status(project: Project, db_session: AsyncSession) -> None:
    with pytest.raises(ValueError, match="status"):
        await update_project_details(db_session, project.id, status=ProjectStatus.qa)

    assert await get_current_phase(db_session, project.id) == ProjectStatus.intake
