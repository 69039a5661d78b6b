"""Integration tests for the delegation protocol.

Tests cover:
- Input validation before dispatch
- Successful delegation: record, artifact, events, task completion
- Invalid output and upstream failures
- Timeouts and late result reconciliation
- Concurrent delegations that settle independently
- Overlapping delegations for one task and run-scoped reclaiming
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agencyflow.agents.delegation import DelegationRequest, DelegationResult
from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.artifact import ArtifactType
from agencyflow.database.models.event import EventType
from agencyflow.database.models.project import Project
from agencyflow.database.models.task import Task, TaskStatus
from agencyflow.database.queries.artifact import list_artifacts
from agencyflow.database.queries.execution import (
    find_reconciliation,
    get_execution_record,
    list_execution_records,
)
from agencyflow.database.queries.task import require_task
from agencyflow.errors import (
    DelegationError,
    DelegationErrorKind,
    InvalidTransitionError,
    NotFoundError,
    TaskAlreadyClaimedError,
    ValidationError,
)
from agencyflow.orchestrator.context import OrchestratorContext

if TYPE_CHECKING:
    from tests.conftest import FakeSpecialistClient

DESIGN_INPUT = {"task": "Design the homepage", "requirements": "Online ordering"}


async def _design_task(orchestrator: OrchestratorContext, project: Project) -> Task:
    async with orchestrator.session_factory() as session:
        task = await orchestrator.tasks.create(
            session,
            project.id,
            "Homepage design",
            assigned_agent=AgentType.design,
            input_data=DESIGN_INPUT,
        )
        await session.commit()
    return task


@pytest.mark.asyncio
async def test_invalid_input_is_never_dispatched(
    orchestrator: OrchestratorContext,
    fake_client: FakeSpecialistClient,
    project: Project,
    db_session: AsyncSession,
) -> None:
    """Test that a schema violation raises before any record is written."""
    task = await _design_task(orchestrator, project)

    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.delegation.delegate(
            DelegationRequest(
                agent=AgentType.design,
                input={"task": "", "palette": "blue"},
                project_id=project.id,
                task_id=task.id,
            )
        )

    fields = {e["loc"][0] for e in exc_info.value.errors}
    assert {"task", "palette"} <= fields
    assert fake_client.calls == []
    assert await list_execution_records(db_session, project_id=project.id) == []
    assert (await require_task(db_session, task.id)).status == TaskStatus.pending


@pytest.mark.asyncio
async def test_successful_delegation(
    orchestrator: OrchestratorContext,
    project: Project,
    db_session: AsyncSession,
) -> None:
    task = await _design_task(orchestrator, project)

    result = await orchestrator.delegation.delegate(
        DelegationRequest(
            agent=AgentType.design,
            input=DESIGN_INPUT,
            project_id=project.id,
            task_id=task.id,
        )
    )

    assert isinstance(result, DelegationResult)
    assert result.output["design_spec"].startswith("Two-column layout")
    assert result.token_usage == {"prompt": 120, "completion": 80, "total": 200}

    [record] = await list_execution_records(db_session, task_id=task.id)
    assert record is await get_execution_record(db_session, result.execution_id)
    assert record.error is None
    assert record.input["task"] == "Design the homepage"
    assert record.output == result.output

    [artifact] = await list_artifacts(db_session, task_id=task.id)
    assert artifact.id == result.artifact_id
    assert artifact.type == ArtifactType.design
    assert artifact.artifact_metadata["execution_id"] == str(record.id)

    stored = await require_task(db_session, task.id)
    assert stored.status == TaskStatus.completed
    assert stored.artifact_ids == [str(artifact.id)]
    assert stored.result["output"] == result.output

    events = await orchestrator.event_log.list_events(db_session, task_id=task.id)
    assert [e.type for e in events] == [
        EventType.task_created,
        EventType.agent_started,
        EventType.artifact_created,
        EventType.agent_completed,
        EventType.task_completed,
    ]


@pytest.mark.asyncio
async def test_invalid_output_requeues_task(
    orchestrator: OrchestratorContext,
    fake_client: FakeSpecialistClient,
    project: Project,
    db_session: AsyncSession,
) -> None:
    fake_client.raw[AgentType.design] = "I made a lovely design, trust me."
    task = await _design_task(orchestrator, project)

    with pytest.raises(DelegationError) as exc_info:
        await orchestrator.delegation.delegate(
            DelegationRequest(
                agent=AgentType.design,
                input=DESIGN_INPUT,
                project_id=project.id,
                task_id=task.id,
            )
        )

    assert exc_info.value.kind == DelegationErrorKind.INVALID_OUTPUT
    [record] = await list_execution_records(db_session, task_id=task.id)
    assert record.error_kind == "invalid_output"
    assert record.output is None
    assert str(record.id) == exc_info.value.execution_id

    stored = await require_task(db_session, task.id)
    assert stored.status == TaskStatus.pending
    assert stored.retry_count == 1
    assert await list_artifacts(db_session, task_id=task.id) == []


@pytest.mark.asyncio
async def test_schema_mismatch_is_invalid_output(
    orchestrator: OrchestratorContext,
    fake_client: FakeSpecialistClient,
) -> None:
    fake_client.outputs[AgentType.qa] = {"issues": [], "score": 140}

    with pytest.raises(DelegationError) as exc_info:
        await orchestrator.delegation.delegate(
            DelegationRequest(agent=AgentType.qa, input={"task": "Review", "code": "x = 1"})
        )
    assert exc_info.value.kind == DelegationErrorKind.INVALID_OUTPUT


@pytest.mark.asyncio
async def test_upstream_failure_exhausts_retries(
    orchestrator: OrchestratorContext,
    fake_client: FakeSpecialistClient,
    project: Project,
    db_session: AsyncSession,
) -> None:
    """Test that every attempt is recorded and the last one fails the task."""
    fake_client.fail(AgentType.design)
    task = await _design_task(orchestrator, project)
    request = DelegationRequest(
        agent=AgentType.design,
        input=DESIGN_INPUT,
        project_id=project.id,
        task_id=task.id,
    )

    for _ in range(4):
        with pytest.raises(DelegationError) as exc_info:
            await orchestrator.delegation.delegate(request)
        assert exc_info.value.kind == DelegationErrorKind.UPSTREAM_FAILURE

    records = await list_execution_records(db_session, task_id=task.id)
    assert len(records) == 4
    assert all("SpecialistAPIError" in r.error for r in records)

    stored = await require_task(db_session, task.id)
    assert stored.status == TaskStatus.failed
    assert stored.retry_count == 3

    with pytest.raises(InvalidTransitionError):
        await orchestrator.delegation.delegate(request)


@pytest.mark.asyncio
async def test_timeout_then_late_result_is_reconciled(
    orchestrator: OrchestratorContext,
    fake_client: FakeSpecialistClient,
    project: Project,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    fake_client.delays[AgentType.design] = 0.5
    task = await _design_task(orchestrator, project)

    with pytest.raises(DelegationError) as exc_info:
        await orchestrator.delegation.delegate(
            DelegationRequest(
                agent=AgentType.design,
                input=DESIGN_INPUT,
                project_id=project.id,
                task_id=task.id,
                timeout_seconds=0.05,
            )
        )
    assert exc_info.value.kind == DelegationErrorKind.TIMEOUT
    assert orchestrator.delegation.outstanding_late_calls == 1

    async with session_factory() as session:
        [timed_out] = await list_execution_records(session, task_id=task.id)
        assert timed_out.error == "timeout"
        stored = await require_task(session, task.id)
        assert stored.status == TaskStatus.pending
        assert stored.retry_count == 1

    await orchestrator.delegation.drain()
    assert orchestrator.delegation.outstanding_late_calls == 0

    async with session_factory() as session:
        late = await find_reconciliation(session, timed_out.id)
        assert late is not None
        assert late.error is None
        assert late.output["design_spec"].startswith("Two-column layout")
        assert late.task_id == task.id

        # The late result is recorded only; the task stays re-queued
        stored = await require_task(session, task.id)
        assert stored.status == TaskStatus.pending
        assert stored.artifact_ids == []

        completed = await orchestrator.event_log.list_events(
            session, task_id=task.id, types=[EventType.agent_completed]
        )
        assert [e.payload["late"] for e in completed] == [True]


@pytest.mark.asyncio
async def test_timeout_with_cancellation_leaves_no_late_call(
    orchestrator: OrchestratorContext,
    fake_client: FakeSpecialistClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    orchestrator.delegation.config = orchestrator.delegation.config.model_copy(
        update={"cancel_on_timeout": True}
    )
    fake_client.delays[AgentType.design] = 0.5

    with pytest.raises(DelegationError):
        await orchestrator.delegation.delegate(
            DelegationRequest(agent=AgentType.design, input=DESIGN_INPUT, timeout_seconds=0.05)
        )

    assert orchestrator.delegation.outstanding_late_calls == 0
    await orchestrator.delegation.drain()
    async with session_factory() as session:
        records = await list_execution_records(session, agent_type=AgentType.design)
    assert [r.reconciles_id for r in records] == [None]


@pytest.mark.asyncio
async def test_delegate_many_settles_independently(
    orchestrator: OrchestratorContext,
    fake_client: FakeSpecialistClient,
    project: Project,
    db_session: AsyncSession,
) -> None:
    fake_client.fail(AgentType.backend)

    outcomes = await orchestrator.delegation.delegate_many(
        [
            DelegationRequest(
                agent=AgentType.frontend,
                input={"task": "Build the homepage"},
                project_id=project.id,
            ),
            DelegationRequest(
                agent=AgentType.backend,
                input={"task": "Build the orders API"},
                project_id=project.id,
            ),
        ]
    )

    assert isinstance(outcomes[0], DelegationResult)
    assert isinstance(outcomes[1], DelegationError)
    records = await list_execution_records(db_session, project_id=project.id)
    assert {r.agent_type for r in records} == {AgentType.frontend, AgentType.backend}


@pytest.mark.asyncio
async def test_task_assigned_elsewhere_rejected(
    orchestrator: OrchestratorContext,
    fake_client: FakeSpecialistClient,
    project: Project,
) -> None:
    task = await _design_task(orchestrator, project)

    with pytest.raises(ValidationError, match="assigned to design"):
        await orchestrator.delegation.delegate(
            DelegationRequest(
                agent=AgentType.frontend,
                input={"task": "Build it"},
                project_id=project.id,
                task_id=task.id,
            )
        )
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_unknown_task_rejected(orchestrator: OrchestratorContext) -> None:
    with pytest.raises(NotFoundError):
        await orchestrator.delegation.delegate(
            DelegationRequest(agent=AgentType.design, input=DESIGN_INPUT, task_id=uuid.uuid4())
        )


@pytest.mark.asyncio
async def test_overlapping_delegation_for_claimed_task_is_rejected(
    orchestrator: OrchestratorContext,
    fake_client: FakeSpecialistClient,
    project: Project,
    db_session: AsyncSession,
) -> None:
    """Test that a second caller cannot run the specialist for a claimed task."""
    fake_client.delays[AgentType.design] = 0.3
    task = await _design_task(orchestrator, project)
    request = DelegationRequest(
        agent=AgentType.design,
        input=DESIGN_INPUT,
        project_id=project.id,
        task_id=task.id,
    )

    async def _second() -> DelegationResult:
        await asyncio.sleep(0.1)
        return await orchestrator.delegation.delegate(request)

    first, second = await asyncio.gather(
        orchestrator.delegation.delegate(request), _second(), return_exceptions=True
    )

    assert isinstance(first, DelegationResult)
    assert isinstance(second, TaskAlreadyClaimedError)
    assert second.status == TaskStatus.in_progress.value
    assert fake_client.calls_for(AgentType.design) == 1
    assert len(await list_execution_records(db_session, task_id=task.id)) == 1
    assert (await require_task(db_session, task.id)).status == TaskStatus.completed


@pytest.mark.asyncio
async def test_interrupted_run_reclaims_its_task(
    orchestrator: OrchestratorContext,
    fake_client: FakeSpecialistClient,
    project: Project,
    db_session: AsyncSession,
) -> None:
    """Test that only the creating run can take over an in-progress task."""
    async with orchestrator.session_factory() as session:
        task = await orchestrator.tasks.create(
            session,
            project.id,
            "Homepage design",
            assigned_agent=AgentType.design,
            input_data=DESIGN_INPUT,
            workflow_run_id="project-lifecycle-abc123",
        )
        await session.commit()
        await orchestrator.tasks.claim(session, task.id)

    def _request(run_id: str) -> DelegationRequest:
        return DelegationRequest(
            agent=AgentType.design,
            input=DESIGN_INPUT,
            project_id=project.id,
            task_id=task.id,
            workflow_run_id=run_id,
            reclaim=True,
        )

    with pytest.raises(TaskAlreadyClaimedError):
        await orchestrator.delegation.delegate(_request("project-lifecycle-other"))
    assert fake_client.calls == []

    result = await orchestrator.delegation.delegate(_request("project-lifecycle-abc123"))

    assert result.task_id == task.id
    assert (await require_task(db_session, task.id)).status == TaskStatus.completed
