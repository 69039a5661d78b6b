"""Execution record query functions for Agencyflow.

Execution records are written by the ExecutionRecorder and never updated;
this module only reads them.
"""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.execution import ExecutionRecord


async def get_execution_record(
    session: AsyncSession,
    record_id: uuid.UUID,
) -> ExecutionRecord | None:
    """Retrieve an execution record by ID."""
    stmt = select(ExecutionRecord).where(ExecutionRecord.id == record_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_execution_records(
    session: AsyncSession,
    project_id: uuid.UUID | None = None,
    task_id: uuid.UUID | None = None,
    agent_type: AgentType | None = None,
    workflow_run_id: str | None = None,
) -> list[ExecutionRecord]:
    """List execution records in the order they were written.

    Args:
        session: Active async database session.
        project_id: Optional project filter.
        task_id: Optional task filter.
        agent_type: Optional specialist filter.
        workflow_run_id: Optional workflow run filter.

    Returns:
        Matching ExecutionRecord rows, oldest first.
    """
    stmt = select(ExecutionRecord)
    if project_id is not None:
        stmt = stmt.where(ExecutionRecord.project_id == project_id)
    if task_id is not None:
        stmt = stmt.where(ExecutionRecord.task_id == task_id)
    if agent_type is not None:
        stmt = stmt.where(ExecutionRecord.agent_type == agent_type)
    if workflow_run_id is not None:
        stmt = stmt.where(ExecutionRecord.workflow_run_id == workflow_run_id)
    stmt = stmt.order_by(ExecutionRecord.created_at.asc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_reconciliation(
    session: AsyncSession,
    record_id: uuid.UUID,
) -> ExecutionRecord | None:
    """Return the late-result record reconciling a timed-out record, if any."""
    stmt = select(ExecutionRecord).where(ExecutionRecord.reconciles_id == record_id)
    result = await session.execute(stmt)
    return result.scalars().first()
