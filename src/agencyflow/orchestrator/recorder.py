"""Execution recorder for the Agencyflow orchestrator.

Writes one ExecutionRecord per specialist delegation attempt. Each record
is committed in its own transaction before the attempt's result is
applied, so the ledger can show an attempt whose result was never applied
but never a result without its attempt. Records are never updated: a late
result for a timed-out attempt is written as a new reconciliation record.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.base import utcnow
from agencyflow.database.models.execution import ExecutionRecord
from agencyflow.errors import DelegationErrorKind
from agencyflow.events.effects import Effects

logger = structlog.get_logger(__name__)

TIMEOUT_ERROR = "timeout"


class ExecutionRecorder:
    """Builds and persists execution records.

    Attributes:
        session_factory: Factory for the short-lived sessions records are
            committed in.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory
        self._logger = logger.bind(component="ExecutionRecorder")

    @staticmethod
    def build(
        agent_type: AgentType,
        input_data: dict[str, Any],
        duration_ms: float,
        output: dict[str, Any] | None = None,
        error: str | None = None,
        error_kind: DelegationErrorKind | None = None,
        project_id: uuid.UUID | None = None,
        task_id: uuid.UUID | None = None,
        workflow_run_id: str | None = None,
        token_usage: dict[str, int] | None = None,
        reconciles_id: uuid.UUID | None = None,
    ) -> ExecutionRecord:
        """Build a transient execution record.

        A timed-out attempt always carries ``error="timeout"``.
        """
        if error_kind == DelegationErrorKind.TIMEOUT:
            error = TIMEOUT_ERROR
        return ExecutionRecord(
            id=uuid.uuid4(),
            project_id=project_id,
            task_id=task_id,
            workflow_run_id=workflow_run_id,
            agent_type=agent_type,
            input=input_data,
            output=output,
            error=error,
            error_kind=error_kind.value if error_kind else None,
            duration_ms=round(duration_ms, 3),
            token_usage=token_usage,
            reconciles_id=reconciles_id,
            created_at=utcnow(),
        )

    async def persist(self, record: ExecutionRecord) -> ExecutionRecord:
        """Commit a record in its own transaction.

        Args:
            record: Transient record from ``build``.

        Returns:
            The committed record.
        """
        async with self.session_factory() as session:
            await Effects().add(record).apply(session)
            await session.commit()

        self._logger.info(
            "execution_recorded",
            execution_id=str(record.id),
            agent=record.agent_type.value,
            task_id=str(record.task_id) if record.task_id else None,
            duration_ms=record.duration_ms,
            error_kind=record.error_kind,
            reconciles_id=str(record.reconciles_id) if record.reconciles_id else None,
        )
        return record

    async def record(
        self,
        agent_type: AgentType,
        input_data: dict[str, Any],
        duration_ms: float,
        **fields: Any,
    ) -> ExecutionRecord:
        """Build and commit a record. See ``build`` for the accepted fields."""
        return await self.persist(self.build(agent_type, input_data, duration_ms, **fields))

    async def reconcile(
        self,
        original: ExecutionRecord,
        duration_ms: float,
        output: dict[str, Any] | None = None,
        error: str | None = None,
        error_kind: DelegationErrorKind | None = None,
        token_usage: dict[str, int] | None = None,
    ) -> ExecutionRecord:
        """Commit the late outcome of a timed-out attempt as a new record.

        Args:
            original: The timed-out record being reconciled.
            duration_ms: Total duration of the call, from dispatch to outcome.
            output: Validated output when the late call succeeded.
            error: Error message when the late call failed.
            error_kind: Failure kind when the late call failed.
            token_usage: Token usage reported by the late call.

        Returns:
            The reconciliation record.
        """
        return await self.record(
            original.agent_type,
            original.input,
            duration_ms,
            output=output,
            error=error,
            error_kind=error_kind,
            project_id=original.project_id,
            task_id=original.task_id,
            workflow_run_id=original.workflow_run_id,
            token_usage=token_usage,
            reconciles_id=original.id,
        )
