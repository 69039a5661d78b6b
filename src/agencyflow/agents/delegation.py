"""Agent delegation protocol for Agencyflow.

A delegation is one request/response invocation of a specialist:

1. The input is validated against the specialist's input schema. Invalid
   input raises ValidationError and is never dispatched.
2. ``agent_started`` is recorded and the specialist call is dispatched
   with a caller-supplied timeout.
3. The output is extracted from the response and validated against the
   specialist's output schema.
4. An ExecutionRecord is committed for the attempt (success or failure)
   before anything else is written.
5. The result is applied in a second transaction: on success the
   artifact, ``artifact_created``, ``agent_completed`` and the task
   completion; on failure ``agent_error`` and the task failure (which
   re-queues the task while retries remain).

A timed-out call is not cancelled unless configured to be. If it returns
later, its outcome is written as a reconciliation record pointing at the
timed-out record.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agencyflow.agents.registry import SpecialistRegistry, SpecialistSpec
from agencyflow.agents.result_schema import SpecialistInput, parse_specialist_output
from agencyflow.agents.sdk_wrapper import SpecialistClient, SpecialistResponse, ToolCall
from agencyflow.config import AgentConfig
from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.event import Event, EventType
from agencyflow.database.models.execution import ExecutionRecord
from agencyflow.database.models.task import TaskStatus
from agencyflow.database.queries.artifact import build_artifact
from agencyflow.database.queries.task import require_task
from agencyflow.errors import (
    DelegationError,
    DelegationErrorKind,
    InvalidTransitionError,
    TaskAlreadyClaimedError,
    ValidationError,
)
from agencyflow.events.effects import Effects
from agencyflow.events.log import build_event

if TYPE_CHECKING:
    from agencyflow.orchestrator.recorder import ExecutionRecorder
    from agencyflow.orchestrator.task_registry import TaskRegistry

logger = structlog.get_logger(__name__)


@dataclass
class DelegationRequest:
    """One delegation to a specialist.

    Attributes:
        agent: Specialist to invoke.
        input: Structured input, validated against the specialist's schema.
        project_id: Project the work belongs to.
        task_id: Owning task; claimed if pending, completed or failed with
            the outcome.
        client_id: Client the work belongs to (onboarding).
        workflow_run_id: Workflow run issuing the delegation.
        timeout_seconds: Caller timeout (defaults to the configured one).
        reclaim: Take over the owning task if it is still in progress from
            an interrupted run of workflow_run_id.
    """

    agent: AgentType
    input: dict[str, Any]
    project_id: uuid.UUID | None = None
    task_id: uuid.UUID | None = None
    client_id: uuid.UUID | None = None
    workflow_run_id: str | None = None
    timeout_seconds: float | None = None
    reclaim: bool = False


@dataclass
class DelegationResult:
    """A successful, validated and applied delegation.

    Attributes:
        agent: Specialist that was invoked.
        output: Validated output.
        execution_id: ID of the execution record.
        duration_ms: Call duration.
        artifact_id: Artifact created from the output, if any.
        task_id: Task completed by the delegation, if any.
        token_usage: Token usage reported by the provider.
        tool_calls: Tool calls made while answering.
    """

    agent: AgentType
    output: dict[str, Any]
    execution_id: uuid.UUID
    duration_ms: float
    artifact_id: uuid.UUID | None = None
    task_id: uuid.UUID | None = None
    token_usage: dict[str, int] | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for workflow step results."""
        return {
            "agent": self.agent.value,
            "output": self.output,
            "execution_id": str(self.execution_id),
            "duration_ms": self.duration_ms,
            "artifact_id": str(self.artifact_id) if self.artifact_id else None,
            "task_id": str(self.task_id) if self.task_id else None,
        }


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


class DelegationProtocol:
    """Invokes specialists and captures their structured results.

    Attributes:
        registry: Specialist catalogue.
        client: Underlying specialist invocation surface.
        recorder: Execution recorder.
        tasks: Task registry updated with delegation outcomes.
        config: Agent configuration (timeouts, concurrency, cancellation).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: SpecialistRegistry,
        client: SpecialistClient,
        recorder: ExecutionRecorder,
        tasks: TaskRegistry,
        config: AgentConfig | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.registry = registry
        self.client = client
        self.recorder = recorder
        self.tasks = tasks
        self.config = config or AgentConfig()
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_delegations)
        self._late: set[asyncio.Task[None]] = set()
        self._logger = logger.bind(component="DelegationProtocol")

    @property
    def outstanding_late_calls(self) -> int:
        """Number of timed-out calls still awaiting reconciliation."""
        return sum(1 for task in self._late if not task.done())

    async def delegate(self, request: DelegationRequest) -> DelegationResult:
        """Run one delegation.

        Args:
            request: The delegation to run.

        Returns:
            The applied DelegationResult.

        Raises:
            ValidationError: If the input fails the specialist's schema.
            NotFoundError: If the specialist or task does not exist.
            InvalidTransitionError: If the owning task cannot be worked on.
            TaskAlreadyClaimedError: If the owning task was claimed elsewhere.
            DelegationError: If the call times out, fails upstream, or
                returns output that fails the schema.
        """
        spec = self.registry.get(request.agent)
        validated = self._validate_input(spec, request.input)
        input_data = validated.model_dump(mode="json")

        if request.task_id is not None:
            await self._ensure_claimed(request, request.task_id)

        timeout = request.timeout_seconds or self.config.delegation_timeout_seconds
        await self._emit(
            self._event(
                EventType.agent_started,
                request,
                {
                    "timeout_seconds": timeout,
                    "workflow_run_id": request.workflow_run_id,
                },
            )
        )
        self._logger.info(
            "delegation_started",
            agent=spec.agent.value,
            task_id=str(request.task_id) if request.task_id else None,
            timeout_seconds=timeout,
        )

        prompt = self.registry.build_prompt(spec, validated)
        started = time.monotonic()
        call = asyncio.create_task(self._invoke(spec, prompt))

        try:
            response = await asyncio.wait_for(asyncio.shield(call), timeout)
        except asyncio.TimeoutError:
            record = await self.recorder.record(
                spec.agent,
                input_data,
                _elapsed_ms(started),
                error_kind=DelegationErrorKind.TIMEOUT,
                project_id=request.project_id,
                task_id=request.task_id,
                workflow_run_id=request.workflow_run_id,
            )
            if self.config.cancel_on_timeout:
                call.cancel()
            else:
                self._track_late_call(call, record, spec, started)
            await self._apply_failure(
                request,
                record,
                DelegationErrorKind.TIMEOUT,
                f"Delegation timed out after {timeout}s",
            )
            raise DelegationError(
                DelegationErrorKind.TIMEOUT,
                spec.agent.value,
                f"timed out after {timeout}s",
                execution_id=str(record.id),
                task_id=str(request.task_id) if request.task_id else None,
            ) from None
        except Exception as e:
            raise await self._record_failure(
                request,
                input_data,
                DelegationErrorKind.UPSTREAM_FAILURE,
                f"{type(e).__name__}: {e}",
                _elapsed_ms(started),
            ) from e

        duration_ms = _elapsed_ms(started)
        try:
            output = parse_specialist_output(response.text, spec.output_model)
        except (ValueError, PydanticValidationError) as e:
            raise await self._record_failure(
                request,
                input_data,
                DelegationErrorKind.INVALID_OUTPUT,
                str(e),
                duration_ms,
                token_usage=response.usage,
            ) from e

        output_data = output.model_dump(mode="json")
        record = await self.recorder.record(
            spec.agent,
            input_data,
            duration_ms,
            output=output_data,
            project_id=request.project_id,
            task_id=request.task_id,
            workflow_run_id=request.workflow_run_id,
            token_usage=response.usage,
        )
        artifact_id = await self._apply_success(request, spec, validated, output, record)

        self._logger.info(
            "delegation_completed",
            agent=spec.agent.value,
            execution_id=str(record.id),
            duration_ms=round(duration_ms, 3),
            artifact_id=str(artifact_id) if artifact_id else None,
        )
        return DelegationResult(
            agent=spec.agent,
            output=output_data,
            execution_id=record.id,
            duration_ms=record.duration_ms,
            artifact_id=artifact_id,
            task_id=request.task_id,
            token_usage=response.usage,
            tool_calls=list(response.tool_calls),
        )

    async def delegate_many(
        self,
        requests: Sequence[DelegationRequest],
    ) -> list[DelegationResult | BaseException]:
        """Run independent delegations concurrently and wait for all to settle.

        A failing delegation does not cancel the others.

        Returns:
            One DelegationResult or exception per request, in request order.
        """
        return await asyncio.gather(
            *(self.delegate(request) for request in requests),
            return_exceptions=True,
        )

    async def drain(self) -> None:
        """Wait until every timed-out call has returned and been reconciled."""
        while True:
            pending = [task for task in self._late if not task.done()]
            if not pending:
                return
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    self._logger.error("late_reconciliation_failed", error=str(result))

    def _validate_input(
        self,
        spec: SpecialistSpec,
        data: dict[str, Any],
    ) -> SpecialistInput:
        try:
            return spec.input_model.model_validate(data)
        except PydanticValidationError as e:
            self._logger.warning(
                "delegation_input_invalid",
                agent=spec.agent.value,
                error_count=e.error_count(),
            )
            raise ValidationError(
                f"Invalid input for {spec.agent.value} specialist",
                errors=json.loads(e.json(include_url=False)),
            ) from e

    async def _ensure_claimed(self, request: DelegationRequest, task_id: uuid.UUID) -> None:
        """Claim the owning task before dispatch.

        A pending task is claimed; an in-progress one only when the request
        reclaims it for the run that created it.
        """
        async with self.session_factory() as session:
            task = await require_task(session, task_id)
            if task.assigned_agent is not None and task.assigned_agent != request.agent:
                raise ValidationError(
                    f"Task {task.id} is assigned to {task.assigned_agent.value}, "
                    f"not {request.agent.value}"
                )
            if task.status == TaskStatus.in_progress:
                if request.reclaim and request.workflow_run_id is not None:
                    reclaimed = await self.tasks.reclaim(
                        session, task.id, request.workflow_run_id
                    )
                    if reclaimed is not None:
                        return
                raise TaskAlreadyClaimedError(str(task.id), task.status.value)
            if task.status != TaskStatus.pending:
                raise InvalidTransitionError(
                    task.status.value,
                    TaskStatus.in_progress.value,
                    task_id=str(task.id),
                )
            claimed = await self.tasks.claim(session, task.id)
            if claimed is None:
                current = await require_task(session, task.id, refresh=True)
                raise TaskAlreadyClaimedError(str(task.id), current.status.value)

    async def _invoke(self, spec: SpecialistSpec, prompt: str) -> SpecialistResponse:
        async with self._semaphore:
            return await self.client.generate(spec.agent, spec.system_prompt, prompt)

    def _event(
        self,
        event_type: EventType,
        request: DelegationRequest,
        payload: dict[str, Any],
    ) -> Event:
        return build_event(
            event_type,
            payload,
            project_id=request.project_id,
            task_id=request.task_id,
            agent_type=request.agent,
            metadata={"workflow_run_id": request.workflow_run_id}
            if request.workflow_run_id
            else None,
        )

    async def _emit(self, *events: Event) -> None:
        async with self.session_factory() as session:
            await Effects().add(*events).apply(session)
            await session.commit()

    async def _apply_success(
        self,
        request: DelegationRequest,
        spec: SpecialistSpec,
        validated: SpecialistInput,
        output: Any,
        record: ExecutionRecord,
    ) -> uuid.UUID | None:
        """Persist the artifact, events and task completion in one transaction."""
        effects = Effects()
        artifact_id: uuid.UUID | None = None

        draft = spec.extract_artifact(validated, output)
        if draft is not None:
            artifact, artifact_event = build_artifact(
                draft.type,
                draft.name,
                draft.content,
                spec.agent,
                project_id=request.project_id,
                task_id=request.task_id,
                client_id=request.client_id,
                description=draft.description,
                metadata={**draft.metadata, "execution_id": str(record.id)},
            )
            artifact_id = artifact.id
            effects.add(artifact, artifact_event)

        effects.add(
            self._event(
                EventType.agent_completed,
                request,
                {
                    "execution_id": str(record.id),
                    "duration_ms": record.duration_ms,
                    "artifact_id": str(artifact_id) if artifact_id else None,
                },
            )
        )

        async with self.session_factory() as session:
            await effects.apply(session)
            if request.task_id is not None:
                await self.tasks.mark_completed(
                    session,
                    request.task_id,
                    record.output or {},
                    [artifact_id] if artifact_id else [],
                    execution_id=record.id,
                )
            await session.commit()

        return artifact_id

    async def _apply_failure(
        self,
        request: DelegationRequest,
        record: ExecutionRecord,
        kind: DelegationErrorKind,
        message: str,
    ) -> None:
        """Persist agent_error and the task failure in one transaction."""
        event = self._event(
            EventType.agent_error,
            request,
            {
                "execution_id": str(record.id),
                "kind": kind.value,
                "error": record.error or message,
                "duration_ms": record.duration_ms,
            },
        )
        async with self.session_factory() as session:
            await Effects().add(event).apply(session)
            if request.task_id is not None:
                await self.tasks.mark_failed(session, request.task_id, message)
            await session.commit()

        self._logger.warning(
            "delegation_failed",
            agent=request.agent.value,
            kind=kind.value,
            execution_id=str(record.id),
            task_id=str(request.task_id) if request.task_id else None,
            error=message,
        )

    async def _record_failure(
        self,
        request: DelegationRequest,
        input_data: dict[str, Any],
        kind: DelegationErrorKind,
        message: str,
        duration_ms: float,
        token_usage: dict[str, int] | None = None,
    ) -> DelegationError:
        """Record a failed attempt, apply it, and return the error to raise."""
        record = await self.recorder.record(
            request.agent,
            input_data,
            duration_ms,
            error=message,
            error_kind=kind,
            project_id=request.project_id,
            task_id=request.task_id,
            workflow_run_id=request.workflow_run_id,
            token_usage=token_usage,
        )
        await self._apply_failure(request, record, kind, message)
        return DelegationError(
            kind,
            request.agent.value,
            message,
            execution_id=str(record.id),
            task_id=str(request.task_id) if request.task_id else None,
        )

    def _track_late_call(
        self,
        call: asyncio.Task[SpecialistResponse],
        record: ExecutionRecord,
        spec: SpecialistSpec,
        started: float,
    ) -> None:
        late = asyncio.create_task(self._reconcile_late(call, record, spec, started))
        self._late.add(late)
        late.add_done_callback(self._late.discard)

    async def _reconcile_late(
        self,
        call: asyncio.Task[SpecialistResponse],
        original: ExecutionRecord,
        spec: SpecialistSpec,
        started: float,
    ) -> None:
        """Write the outcome of a timed-out call once it arrives."""
        try:
            response = await call
        except Exception as e:
            await self.recorder.reconcile(
                original,
                _elapsed_ms(started),
                error=f"{type(e).__name__}: {e}",
                error_kind=DelegationErrorKind.UPSTREAM_FAILURE,
            )
            self._logger.warning(
                "late_call_failed",
                agent=spec.agent.value,
                reconciles_id=str(original.id),
                error=str(e),
            )
            return

        duration_ms = _elapsed_ms(started)
        try:
            output = parse_specialist_output(response.text, spec.output_model)
        except (ValueError, PydanticValidationError) as e:
            await self.recorder.reconcile(
                original,
                duration_ms,
                error=str(e),
                error_kind=DelegationErrorKind.INVALID_OUTPUT,
                token_usage=response.usage,
            )
            return

        record = await self.recorder.reconcile(
            original,
            duration_ms,
            output=output.model_dump(mode="json"),
            token_usage=response.usage,
        )
        await self._emit(
            build_event(
                EventType.agent_completed,
                {
                    "execution_id": str(record.id),
                    "duration_ms": record.duration_ms,
                    "late": True,
                },
                project_id=original.project_id,
                task_id=original.task_id,
                agent_type=original.agent_type,
            )
        )
        self._logger.info(
            "late_result_reconciled",
            agent=spec.agent.value,
            execution_id=str(record.id),
            reconciles_id=str(original.id),
        )
