"""Workflow execution query functions for Agencyflow."""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agencyflow.database.models.execution import WorkflowExecution, WorkflowRunStatus
from agencyflow.errors import NotFoundError

logger = structlog.get_logger(__name__)


async def create_workflow_execution(
    session: AsyncSession,
    workflow_id: str,
    workflow_name: str,
    input_data: dict[str, Any],
    project_id: uuid.UUID | None = None,
    run_id: str | None = None,
) -> WorkflowExecution:
    """Create a running workflow execution.

    Args:
        session: Active async database session.
        workflow_id: Stable workflow identifier.
        workflow_name: Human-readable workflow name.
        input_data: Trigger data.
        project_id: Project the run drives, when already known.
        run_id: Run identifier (generated when omitted).

    Returns:
        The new WorkflowExecution (flushed, not committed).
    """
    execution = WorkflowExecution(
        workflow_id=workflow_id,
        workflow_name=workflow_name,
        project_id=project_id,
        run_id=run_id or f"{workflow_id}-{uuid.uuid4().hex[:12]}",
        status=WorkflowRunStatus.running,
        input=input_data,
        steps={},
        context={},
    )
    session.add(execution)
    await session.flush()

    logger.info(
        "workflow_execution_created",
        run_id=execution.run_id,
        workflow_id=workflow_id,
        project_id=str(project_id) if project_id else None,
    )
    return execution


async def get_workflow_execution(
    session: AsyncSession,
    run_id: str,
    refresh: bool = False,
) -> WorkflowExecution | None:
    """Retrieve a workflow execution by run ID."""
    stmt = select(WorkflowExecution).where(WorkflowExecution.run_id == run_id)
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_workflow_execution(
    session: AsyncSession,
    run_id: str,
    refresh: bool = False,
) -> WorkflowExecution:
    """Retrieve a workflow execution, raising NotFoundError if missing."""
    execution = await get_workflow_execution(session, run_id, refresh=refresh)
    if execution is None:
        raise NotFoundError("WorkflowExecution", run_id)
    return execution


async def list_workflow_executions(
    session: AsyncSession,
    project_id: uuid.UUID | None = None,
    status_filter: WorkflowRunStatus | None = None,
    workflow_id: str | None = None,
) -> list[WorkflowExecution]:
    """List workflow executions, newest first."""
    stmt = select(WorkflowExecution)
    if project_id is not None:
        stmt = stmt.where(WorkflowExecution.project_id == project_id)
    if status_filter is not None:
        stmt = stmt.where(WorkflowExecution.status == status_filter)
    if workflow_id is not None:
        stmt = stmt.where(WorkflowExecution.workflow_id == workflow_id)
    stmt = stmt.order_by(WorkflowExecution.created_at.desc())

    result = await session.execute(stmt)
    return list(result.scalars().all())
