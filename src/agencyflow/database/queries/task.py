"""Task query functions for Agencyflow.

Provides async functions for creating and reading Task records, the
dependency-aware eligibility queries used for claiming, and the
conditional update that makes a claim atomic. Status changes beyond the
claim go through the TaskRegistry.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.base import utcnow
from agencyflow.database.models.event import EventType
from agencyflow.database.models.project import ProjectStatus
from agencyflow.database.models.task import (
    DependencyType,
    Task,
    TaskPriority,
    TaskStatus,
)
from agencyflow.errors import NotFoundError
from agencyflow.events.effects import Effects
from agencyflow.events.log import build_event

logger = structlog.get_logger(__name__)


async def create_task(
    session: AsyncSession,
    project_id: uuid.UUID,
    name: str,
    description: str = "",
    assigned_agent: AgentType | None = None,
    priority: TaskPriority = TaskPriority.medium,
    dependencies: list[dict[str, str]] | None = None,
    input_data: dict[str, Any] | None = None,
    max_retries: int = 3,
    phase: ProjectStatus | None = None,
    workflow_run_id: str | None = None,
    step_name: str | None = None,
) -> Task:
    """Create a new pending task and record a task_created event.

    Args:
        session: Active async database session.
        project_id: UUID of the owning project.
        name: Short task name.
        description: What the specialist is asked to do.
        assigned_agent: Specialist the task is assigned to.
        priority: Scheduling priority.
        dependencies: Typed links, ``{"task_id": str, "type": str}``.
        input_data: Structured delegation input.
        max_retries: Retry budget before terminal failure.
        phase: Lifecycle phase the task is required for.
        workflow_run_id: Workflow run creating the task.
        step_name: Workflow step creating the task.

    Returns:
        The newly created Task instance.
    """
    task = Task(
        id=uuid.uuid4(),
        project_id=project_id,
        name=name,
        description=description,
        assigned_agent=assigned_agent,
        status=TaskStatus.pending,
        priority=priority,
        dependencies=list(dependencies or []),
        input=input_data or {},
        max_retries=max_retries,
        retry_count=0,
        artifact_ids=[],
        phase=phase,
        workflow_run_id=workflow_run_id,
        step_name=step_name,
    )

    await Effects().add(
        task,
        build_event(
            EventType.task_created,
            {
                "name": name,
                "priority": priority.value,
                "assigned_agent": assigned_agent.value if assigned_agent else None,
                "phase": phase.value if phase else None,
                "workflow_run_id": workflow_run_id,
            },
            project_id=project_id,
            task_id=task.id,
            agent_type=assigned_agent,
        ),
    ).apply(session)

    logger.info(
        "task_created",
        task_id=str(task.id),
        project_id=str(project_id),
        name=name,
        assigned_agent=assigned_agent.value if assigned_agent else None,
        priority=priority.value,
    )
    return task


async def get_task(
    session: AsyncSession,
    task_id: uuid.UUID,
    refresh: bool = False,
) -> Task | None:
    """Retrieve a task by ID.

    Args:
        session: Active async database session.
        task_id: UUID of the task to retrieve.
        refresh: Overwrite any copy already held by the session.

    Returns:
        The Task instance if found, None otherwise.
    """
    stmt = select(Task).where(Task.id == task_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_task(
    session: AsyncSession,
    task_id: uuid.UUID,
    refresh: bool = False,
) -> Task:
    """Retrieve a task by ID, raising NotFoundError if missing."""
    task = await get_task(session, task_id, refresh=refresh)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


async def get_tasks_by_ids(
    session: AsyncSession,
    task_ids: list[uuid.UUID],
) -> dict[uuid.UUID, Task]:
    """Load several tasks at once, keyed by ID. Missing IDs are absent."""
    if not task_ids:
        return {}
    stmt = select(Task).where(Task.id.in_(task_ids))
    result = await session.execute(stmt)
    return {task.id: task for task in result.scalars().all()}


async def list_tasks(
    session: AsyncSession,
    project_id: uuid.UUID | None = None,
    status_filter: TaskStatus | None = None,
    assigned_agent: AgentType | None = None,
    phase: ProjectStatus | None = None,
    workflow_run_id: str | None = None,
) -> list[Task]:
    """List tasks with optional filters, oldest first.

    Args:
        session: Active async database session.
        project_id: Optional project UUID to filter by.
        status_filter: Optional status to filter by.
        assigned_agent: Optional specialist to filter by.
        phase: Optional phase to filter by.
        workflow_run_id: Optional workflow run to filter by.

    Returns:
        List of matching Task instances.
    """
    stmt = select(Task)

    if project_id is not None:
        stmt = stmt.where(Task.project_id == project_id)
    if status_filter is not None:
        stmt = stmt.where(Task.status == status_filter)
    if assigned_agent is not None:
        stmt = stmt.where(Task.assigned_agent == assigned_agent)
    if phase is not None:
        stmt = stmt.where(Task.phase == phase)
    if workflow_run_id is not None:
        stmt = stmt.where(Task.workflow_run_id == workflow_run_id)

    stmt = stmt.order_by(Task.created_at.asc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_step_task(
    session: AsyncSession,
    workflow_run_id: str,
    step_name: str,
    assigned_agent: AgentType,
) -> Task | None:
    """Return the task a workflow step created for a specialist, if any."""
    stmt = (
        select(Task)
        .where(Task.workflow_run_id == workflow_run_id)
        .where(Task.step_name == step_name)
        .where(Task.assigned_agent == assigned_agent)
        .order_by(Task.created_at.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def unmet_dependencies(
    session: AsyncSession,
    task: Task,
) -> list[uuid.UUID]:
    """Return the blocked_by dependencies of a task that are not completed.

    A dependency that no longer resolves to a task counts as unmet.
    """
    blocker_ids = task.blocked_by_ids()
    if not blocker_ids:
        return []

    blockers = await get_tasks_by_ids(session, blocker_ids)
    return [
        dep_id
        for dep_id in blocker_ids
        if dep_id not in blockers or blockers[dep_id].status != TaskStatus.completed
    ]


async def get_eligible_tasks(
    session: AsyncSession,
    assigned_agent: AgentType,
    project_id: uuid.UUID | None = None,
) -> list[Task]:
    """Get pending tasks for a specialist whose dependencies are completed.

    Tasks are ordered urgent, high, medium, low; ties are broken by
    creation order.

    Args:
        session: Active async database session.
        assigned_agent: Specialist whose queue is read.
        project_id: Optional project to restrict the queue to.

    Returns:
        Eligible Task instances in claim order.
    """
    stmt = (
        select(Task)
        .where(Task.status == TaskStatus.pending)
        .where(Task.assigned_agent == assigned_agent)
        .order_by(Task.created_at.asc())
    )
    if project_id is not None:
        stmt = stmt.where(Task.project_id == project_id)

    result = await session.execute(stmt)
    candidates = list(result.scalars().all())

    blocker_ids = {dep_id for task in candidates for dep_id in task.blocked_by_ids()}
    blockers = await get_tasks_by_ids(session, list(blocker_ids))

    eligible = [
        task
        for task in candidates
        if all(
            dep_id in blockers and blockers[dep_id].status == TaskStatus.completed
            for dep_id in task.blocked_by_ids()
        )
    ]

    # Stable sort keeps FIFO order within a priority
    eligible.sort(key=lambda t: t.priority.rank)
    return eligible


async def claim_pending_task(
    session: AsyncSession,
    task_id: uuid.UUID,
) -> bool:
    """Atomically move a task from pending to in_progress.

    The update only matches while the task is still pending, so of two
    concurrent callers exactly one sees a matched row.

    Args:
        session: Active async database session.
        task_id: Task to claim.

    Returns:
        True if this call claimed the task.
    """
    stmt = (
        update(Task)
        .where(Task.id == task_id)
        .where(Task.status == TaskStatus.pending)
        .values(status=TaskStatus.in_progress, started_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def reclaim_stale_task(
    session: AsyncSession,
    task_id: uuid.UUID,
    workflow_run_id: str,
    started_at: datetime | None,
) -> bool:
    """Atomically take over an in-progress task left behind by a workflow run.

    The update only matches while the task still carries the start time the
    caller observed, so of two concurrent reclaimers exactly one wins.

    Args:
        session: Active async database session.
        task_id: Task to reclaim.
        workflow_run_id: Run that created the task.
        started_at: Start time read from the task before reclaiming.

    Returns:
        True if this call reclaimed the task.
    """
    stmt = (
        update(Task)
        .where(Task.id == task_id)
        .where(Task.status == TaskStatus.in_progress)
        .where(Task.workflow_run_id == workflow_run_id)
        .where(
            Task.started_at.is_(None) if started_at is None else Task.started_at == started_at
        )
        .values(started_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def find_terminal_failures(
    session: AsyncSession,
    project_id: uuid.UUID,
    phase: ProjectStatus | None = None,
) -> list[Task]:
    """Return the terminally failed tasks of a project, optionally per phase."""
    stmt = (
        select(Task)
        .where(Task.project_id == project_id)
        .where(Task.status == TaskStatus.failed)
    )
    if phase is not None:
        stmt = stmt.where(Task.phase == phase)

    result = await session.execute(stmt)
    return list(result.scalars().all())


def dependency(task_id: uuid.UUID, dep_type: DependencyType) -> dict[str, str]:
    """Build a typed dependency entry for Task.dependencies."""
    return {"task_id": str(task_id), "type": dep_type.value}
