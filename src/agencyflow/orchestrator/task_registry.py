"""Task registry for the Agencyflow orchestrator.

This module owns the task lifecycle: creation, assignment, claiming,
completion, failure with automatic re-queueing, manual retry and
cancellation. Every status change is validated against TASK_TRANSITIONS
and recorded in the event log in the same transaction.

Claims are committed immediately so competing callers observe them; all
other operations flush and leave the commit to the caller.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from agencyflow.config import AgentConfig
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
from agencyflow.database.queries.project import require_project
from agencyflow.database.queries.task import (
    claim_pending_task,
    create_task,
    dependency,
    find_terminal_failures,
    get_eligible_tasks,
    get_tasks_by_ids,
    reclaim_stale_task,
    require_task,
    unmet_dependencies,
)
from agencyflow.errors import (
    DependencyNotSatisfiedError,
    InvalidTransitionError,
    NotFoundError,
    TaskAlreadyClaimedError,
)
from agencyflow.events.effects import Effects
from agencyflow.events.log import build_event

logger = structlog.get_logger(__name__)


# Authoritative task state machine definition
TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.pending: {TaskStatus.in_progress, TaskStatus.blocked, TaskStatus.cancelled},
    TaskStatus.in_progress: {
        TaskStatus.completed,
        TaskStatus.failed,
        TaskStatus.pending,  # re-queued after a retryable failure
        TaskStatus.blocked,
        TaskStatus.cancelled,
    },
    TaskStatus.blocked: {TaskStatus.pending, TaskStatus.cancelled},
    TaskStatus.failed: {TaskStatus.pending},  # manual retry
    TaskStatus.completed: set(),
    TaskStatus.cancelled: set(),
}


def validate_task_transition(current: TaskStatus, target: TaskStatus) -> bool:
    """Return True if the task status change is allowed."""
    return target in TASK_TRANSITIONS.get(current, set())


def _check_transition(task: Task, target: TaskStatus) -> None:
    if not validate_task_transition(task.status, target):
        raise InvalidTransitionError(
            task.status.value, target.value, task_id=str(task.id)
        )


def plan_failure(task: Task, error: str) -> tuple[Effects, bool]:
    """Apply a delegation failure to a loaded task.

    While retries remain the task is re-queued as pending with its retry
    count incremented; once ``retry_count`` has reached ``max_retries`` the
    failure is terminal.

    Args:
        task: In-progress task that failed.
        error: Failure message.

    Returns:
        The events to persist and whether the failure was terminal.
    """
    _check_transition(task, TaskStatus.failed)

    task.last_error = error
    task.updated_at = utcnow()

    if task.retry_count < task.max_retries:
        task.retry_count += 1
        task.status = TaskStatus.pending
        task.started_at = None
        event = build_event(
            EventType.task_retried,
            {
                "retry_count": task.retry_count,
                "max_retries": task.max_retries,
                "automatic": True,
                "error": error,
            },
            project_id=task.project_id,
            task_id=task.id,
            agent_type=task.assigned_agent,
        )
        return Effects().add(event), False

    task.status = TaskStatus.failed
    task.completed_at = utcnow()
    task.result = {
        "success": False,
        "output": None,
        "error": error,
        "artifacts": list(task.artifact_ids or []),
    }
    event = build_event(
        EventType.task_failed,
        {
            "error": error,
            "retry_count": task.retry_count,
            "max_retries": task.max_retries,
        },
        project_id=task.project_id,
        task_id=task.id,
        agent_type=task.assigned_agent,
    )
    return Effects().add(event), True


def plan_completion(
    task: Task,
    output: dict[str, Any],
    artifact_ids: list[uuid.UUID] | None = None,
    execution_id: uuid.UUID | None = None,
) -> Effects:
    """Apply a successful result to a loaded in-progress task."""
    _check_transition(task, TaskStatus.completed)

    produced = [str(a) for a in artifact_ids or []]
    task.status = TaskStatus.completed
    task.completed_at = utcnow()
    task.updated_at = utcnow()
    task.last_error = None
    task.artifact_ids = list(task.artifact_ids or []) + produced
    task.result = {
        "success": True,
        "output": output,
        "error": None,
        "artifacts": produced,
    }
    return Effects().add(
        build_event(
            EventType.task_completed,
            {
                "artifact_ids": produced,
                "execution_id": str(execution_id) if execution_id else None,
            },
            project_id=task.project_id,
            task_id=task.id,
            agent_type=task.assigned_agent,
        )
    )


class TaskRegistry:
    """Tracks units of delegated work and their retry state.

    Attributes:
        default_max_retries: Retry budget for tasks created without one.
    """

    def __init__(self, config: AgentConfig | None = None) -> None:
        """Initialize the registry.

        Args:
            config: Agent configuration supplying the default retry budget.
        """
        self.default_max_retries = (config or AgentConfig()).max_retries
        self._logger = logger.bind(component="TaskRegistry")

    async def create(
        self,
        session: AsyncSession,
        project_id: uuid.UUID,
        name: str,
        description: str = "",
        assigned_agent: AgentType | None = None,
        priority: TaskPriority = TaskPriority.medium,
        blocked_by: list[uuid.UUID] | None = None,
        blocks: list[uuid.UUID] | None = None,
        related: list[uuid.UUID] | None = None,
        input_data: dict[str, Any] | None = None,
        max_retries: int | None = None,
        phase: ProjectStatus | None = None,
        workflow_run_id: str | None = None,
        step_name: str | None = None,
    ) -> Task:
        """Create a pending task.

        Args:
            session: Database session.
            project_id: Owning project; must exist.
            name: Short task name.
            description: What the specialist is asked to do.
            assigned_agent: Specialist to assign.
            priority: Scheduling priority.
            blocked_by: Tasks that must complete before this one starts.
            blocks: Tasks this one holds back; each gains a blocked_by
                entry naming the new task.
            related: Informational links.
            input_data: Structured delegation input.
            max_retries: Retry budget (defaults to the configured budget).
            phase: Lifecycle phase the task is required for.
            workflow_run_id: Workflow run creating the task.
            step_name: Workflow step creating the task.

        Returns:
            The created Task.

        Raises:
            NotFoundError: If the project or a referenced task is missing.
        """
        await require_project(session, project_id)

        links = [
            (dep_id, dep_type)
            for ids, dep_type in (
                (blocked_by, DependencyType.blocked_by),
                (blocks, DependencyType.blocks),
                (related, DependencyType.related),
            )
            for dep_id in ids or []
        ]
        referenced = await get_tasks_by_ids(session, [dep_id for dep_id, _ in links])
        for dep_id, _ in links:
            if dep_id not in referenced:
                raise NotFoundError("Task", dep_id)

        task = await create_task(
            session,
            project_id=project_id,
            name=name,
            description=description,
            assigned_agent=assigned_agent,
            priority=priority,
            dependencies=[dependency(dep_id, dep_type) for dep_id, dep_type in links],
            input_data=input_data,
            max_retries=self.default_max_retries if max_retries is None else max_retries,
            phase=phase,
            workflow_run_id=workflow_run_id,
            step_name=step_name,
        )

        # Each blocks link is also a blocked_by entry on the held-back task
        for blocked_id in blocks or []:
            blocked = referenced[blocked_id]
            blocked.dependencies = [
                *(blocked.dependencies or []),
                dependency(task.id, DependencyType.blocked_by),
            ]
            blocked.updated_at = utcnow()
        if blocks:
            await session.flush()

        return task

    async def assign(
        self,
        session: AsyncSession,
        task_id: uuid.UUID,
        agent: AgentType,
    ) -> Task:
        """Assign (or reassign) a non-terminal task to a specialist.

        Raises:
            InvalidTransitionError: If the task is completed or cancelled.
        """
        task = await require_task(session, task_id)
        if not TASK_TRANSITIONS[task.status]:
            raise InvalidTransitionError(
                task.status.value, task.status.value, task_id=str(task_id)
            )

        previous = task.assigned_agent
        task.assigned_agent = agent
        task.updated_at = utcnow()

        await Effects().add(
            build_event(
                EventType.task_assigned,
                {
                    "assigned_agent": agent.value,
                    "previous_agent": previous.value if previous else None,
                },
                project_id=task.project_id,
                task_id=task.id,
                agent_type=agent,
            )
        ).apply(session)

        self._logger.info(
            "task_assigned",
            task_id=str(task_id),
            agent=agent.value,
            previous_agent=previous.value if previous else None,
        )
        return task

    async def claim(
        self,
        session: AsyncSession,
        task_id: uuid.UUID,
    ) -> Task | None:
        """Claim a pending task for execution and commit the claim.

        Args:
            session: Database session.
            task_id: Task to claim.

        Returns:
            The in-progress Task, or None if another caller claimed it first.

        Raises:
            DependencyNotSatisfiedError: If a blocked_by dependency is not
                completed.
            NotFoundError: If the task does not exist.
        """
        task = await require_task(session, task_id, refresh=True)
        if task.status != TaskStatus.pending:
            self._logger.debug(
                "task_claim_skipped", task_id=str(task_id), status=task.status.value
            )
            return None

        unmet = await unmet_dependencies(session, task)
        if unmet:
            raise DependencyNotSatisfiedError(str(task_id), [str(d) for d in unmet])

        claimed = await claim_pending_task(session, task_id)
        await session.commit()

        task = await require_task(session, task_id, refresh=True)
        if not claimed:
            self._logger.info(
                "task_claim_lost", task_id=str(task_id), status=task.status.value
            )
            return None

        self._logger.info(
            "task_claimed",
            task_id=str(task_id),
            agent=task.assigned_agent.value if task.assigned_agent else None,
        )
        return task

    async def reclaim(
        self,
        session: AsyncSession,
        task_id: uuid.UUID,
        workflow_run_id: str,
    ) -> Task | None:
        """Take over an in-progress task created by an interrupted workflow run.

        Only the run that created the task may reclaim it, and of two
        concurrent reclaimers only one succeeds.

        Returns:
            The reclaimed Task, or None if it is not an in-progress task of
            that run or another caller reclaimed it first.
        """
        task = await require_task(session, task_id, refresh=True)
        if task.status != TaskStatus.in_progress or task.workflow_run_id != workflow_run_id:
            return None

        reclaimed = await reclaim_stale_task(session, task_id, workflow_run_id, task.started_at)
        await session.commit()
        if not reclaimed:
            self._logger.info("task_reclaim_lost", task_id=str(task_id))
            return None

        self._logger.warning(
            "task_reclaimed", task_id=str(task_id), workflow_run_id=workflow_run_id
        )
        return await require_task(session, task_id, refresh=True)

    async def mark_in_progress(
        self,
        session: AsyncSession,
        task_id: uuid.UUID,
    ) -> Task:
        """Move a pending task to in_progress, raising if that is not possible.

        Raises:
            DependencyNotSatisfiedError: If a blocked_by dependency is not
                completed.
            InvalidTransitionError: If the task is not pending.
            TaskAlreadyClaimedError: If a concurrent caller claimed it first.
        """
        task = await require_task(session, task_id, refresh=True)
        _check_transition(task, TaskStatus.in_progress)

        claimed = await self.claim(session, task_id)
        if claimed is None:
            current = await require_task(session, task_id)
            raise TaskAlreadyClaimedError(str(task_id), current.status.value)
        return claimed

    async def next_task_for_agent(
        self,
        session: AsyncSession,
        agent: AgentType,
        project_id: uuid.UUID | None = None,
    ) -> Task | None:
        """Return the next eligible pending task for a specialist, unclaimed."""
        eligible = await get_eligible_tasks(session, agent, project_id)
        return eligible[0] if eligible else None

    async def claim_next(
        self,
        session: AsyncSession,
        agent: AgentType,
        project_id: uuid.UUID | None = None,
    ) -> Task | None:
        """Claim the next eligible task for a specialist.

        Candidates lost to a concurrent claimer are skipped.

        Returns:
            The claimed Task, or None if the queue is empty.
        """
        for candidate in await get_eligible_tasks(session, agent, project_id):
            task = await self.claim(session, candidate.id)
            if task is not None:
                return task
        return None

    async def mark_completed(
        self,
        session: AsyncSession,
        task_id: uuid.UUID,
        output: dict[str, Any],
        artifact_ids: list[uuid.UUID] | None = None,
        execution_id: uuid.UUID | None = None,
    ) -> Task:
        """Record a successful result on an in-progress task.

        Raises:
            InvalidTransitionError: If the task is not in progress.
        """
        task = await require_task(session, task_id)
        effects = plan_completion(task, output, artifact_ids, execution_id)
        await effects.apply(session)

        self._logger.info(
            "task_completed",
            task_id=str(task_id),
            artifact_count=len(artifact_ids or []),
        )
        return task

    async def mark_failed(
        self,
        session: AsyncSession,
        task_id: uuid.UUID,
        error: str,
    ) -> Task:
        """Record a failed delegation on an in-progress task.

        The task is re-queued as pending while ``retry_count`` is below
        ``max_retries`` and becomes terminally failed otherwise.

        Raises:
            InvalidTransitionError: If the task is not in progress.
        """
        task = await require_task(session, task_id)
        effects, terminal = plan_failure(task, error)
        await effects.apply(session)

        if terminal:
            self._logger.error(
                "task_failed_terminal",
                task_id=str(task_id),
                retry_count=task.retry_count,
                max_retries=task.max_retries,
                error=error,
            )
        else:
            self._logger.warning(
                "task_requeued",
                task_id=str(task_id),
                retry_count=task.retry_count,
                max_retries=task.max_retries,
                error=error,
            )
        return task

    async def retry(
        self,
        session: AsyncSession,
        task_id: uuid.UUID,
    ) -> Task:
        """Manually re-queue a terminally failed task with a fresh retry budget.

        Raises:
            InvalidTransitionError: If the task is not failed.
        """
        task = await require_task(session, task_id)
        if task.status != TaskStatus.failed:
            raise InvalidTransitionError(
                task.status.value, TaskStatus.pending.value, task_id=str(task_id)
            )

        task.status = TaskStatus.pending
        task.retry_count = 0
        task.completed_at = None
        task.started_at = None
        task.result = None
        task.updated_at = utcnow()

        await Effects().add(
            build_event(
                EventType.task_retried,
                {
                    "retry_count": 0,
                    "max_retries": task.max_retries,
                    "automatic": False,
                    "error": task.last_error,
                },
                project_id=task.project_id,
                task_id=task.id,
                agent_type=task.assigned_agent,
            )
        ).apply(session)

        self._logger.info("task_retried", task_id=str(task_id))
        return task

    async def block(self, session: AsyncSession, task_id: uuid.UUID, reason: str) -> Task:
        """Hold a pending or in-progress task back."""
        task = await require_task(session, task_id)
        _check_transition(task, TaskStatus.blocked)
        task.status = TaskStatus.blocked
        task.last_error = reason
        task.updated_at = utcnow()
        await session.flush()

        self._logger.info("task_blocked", task_id=str(task_id), reason=reason)
        return task

    async def unblock(self, session: AsyncSession, task_id: uuid.UUID) -> Task:
        """Return a blocked task to the pending queue."""
        task = await require_task(session, task_id)
        _check_transition(task, TaskStatus.pending)
        if task.status != TaskStatus.blocked:
            raise InvalidTransitionError(
                task.status.value, TaskStatus.pending.value, task_id=str(task_id)
            )
        task.status = TaskStatus.pending
        task.updated_at = utcnow()
        await session.flush()

        self._logger.info("task_unblocked", task_id=str(task_id))
        return task

    async def cancel(self, session: AsyncSession, task_id: uuid.UUID) -> Task:
        """Withdraw a task. Cancelled tasks are never delegated again."""
        task = await require_task(session, task_id)
        _check_transition(task, TaskStatus.cancelled)
        task.status = TaskStatus.cancelled
        task.completed_at = utcnow()
        task.updated_at = utcnow()
        await session.flush()

        self._logger.info("task_cancelled", task_id=str(task_id))
        return task

    async def terminal_failures(
        self,
        session: AsyncSession,
        project_id: uuid.UUID,
        phase: ProjectStatus | None = None,
    ) -> list[Task]:
        """Return the terminally failed tasks blocking a project or phase."""
        return await find_terminal_failures(session, project_id, phase)
