"""Workflow engine for Agencyflow.

Drives workflow runs step by step. For each step the engine:

1. Returns the cached result if the step already completed in this run.
2. Stops if the run was suspended, or suspends it before a step that
   requires approval and has not been approved.
3. Checks that the step's phase is a legal next phase for the project.
4. Creates (or reuses) one task per delegation and delegates them
   concurrently.
5. Transitions the project into the step's phase once every delegation
   succeeded and no task of the phase failed terminally.

Any domain error marks the run failed, records ``workflow_failed`` and
leaves the project in the phase it was in. Store errors propagate.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from agencyflow.agents.delegation import DelegationRequest
from agencyflow.database.models.base import utcnow
from agencyflow.database.models.event import EventType
from agencyflow.database.models.execution import WorkflowExecution, WorkflowRunStatus
from agencyflow.database.models.project import Project
from agencyflow.database.models.task import Task, TaskStatus
from agencyflow.database.queries.project import get_project, require_project
from agencyflow.database.queries.task import find_step_task
from agencyflow.database.queries.workflow import (
    create_workflow_execution,
    list_workflow_executions,
    require_workflow_execution,
)
from agencyflow.errors import (
    AgencyflowError,
    DependencyNotSatisfiedError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from agencyflow.events.effects import Effects
from agencyflow.events.log import build_event
from agencyflow.logging import bind_workflow_context, clear_workflow_context
from agencyflow.orchestrator.context import OrchestratorContext
from agencyflow.orchestrator.phase_machine import validate_phase_transition
from agencyflow.orchestrator.workflows import (
    StepContext,
    WorkflowDefinition,
    WorkflowStep,
    default_workflows,
)

logger = structlog.get_logger(__name__)

STEP_COMPLETED = "completed"


def _as_uuid(value: Any) -> uuid.UUID | None:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _reused_result(task: Task) -> dict[str, Any]:
    """Step result entry for a task completed by an earlier attempt."""
    result = task.result or {}
    artifacts = task.artifact_ids or []
    return {
        "agent": task.assigned_agent.value if task.assigned_agent else None,
        "output": result.get("output") or {},
        "execution_id": None,
        "artifact_id": artifacts[-1] if artifacts else None,
        "task_id": str(task.id),
        "reused": True,
    }


class WorkflowEngine:
    """Runs, suspends and resumes workflow runs.

    Attributes:
        context: Orchestrator services.
    """

    def __init__(
        self,
        context: OrchestratorContext,
        workflows: Iterable[WorkflowDefinition] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            context: Orchestrator services.
            workflows: Workflow definitions (defaults to the standard ones
                built from the workflow configuration).
        """
        self.context = context
        self._workflows: dict[str, WorkflowDefinition] = {}
        if workflows is None:
            workflows = default_workflows(context.config.workflow)
        for workflow in workflows:
            self.register(workflow)
        self._logger = logger.bind(component="WorkflowEngine")

    def register(self, workflow: WorkflowDefinition) -> None:
        """Add or replace a workflow definition."""
        self._workflows[workflow.id] = workflow

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """Return a workflow definition.

        Raises:
            NotFoundError: If no workflow has that id.
        """
        try:
            return self._workflows[workflow_id]
        except KeyError:
            raise NotFoundError("Workflow", workflow_id) from None

    def workflows(self) -> list[WorkflowDefinition]:
        """Return the registered workflow definitions."""
        return list(self._workflows.values())

    async def run(self, workflow_id: str, trigger_data: dict[str, Any]) -> dict[str, Any]:
        """Start a workflow run and drive it until it completes, fails or suspends.

        Args:
            workflow_id: Workflow to run.
            trigger_data: Trigger payload, validated by the workflow.

        Returns:
            Run summary (see ``get_status``). A completed run that handed
            off to another workflow carries that run's summary under
            ``handoff``.

        Raises:
            NotFoundError: If the workflow does not exist.
        """
        workflow = self.get_workflow(workflow_id)
        async with self.context.session_factory() as session:
            run = await self._start_run(session, workflow, trigger_data)
            await session.commit()
        return await self._drive(run.run_id)

    async def execute_step(self, run_id: str, step_name: str) -> dict[str, Any]:
        """Execute a single step of a run.

        A step that already completed in the run is not executed again; its
        recorded result is returned.

        Returns:
            ``{"run_id", "step", "status", "result", "error"}`` where
            ``status`` is the run status and ``result`` the step result.

        Raises:
            NotFoundError: If the run or step does not exist.
        """
        async with self.context.session_factory() as session:
            run = await require_workflow_execution(session, run_id, refresh=True)
            workflow = self.get_workflow(run.workflow_id)
            try:
                workflow.step(step_name)
            except KeyError:
                raise NotFoundError("WorkflowStep", step_name) from None
            cached = run.steps.get(step_name)

        if cached and cached.get("status") == STEP_COMPLETED:
            return {
                "run_id": run_id,
                "step": step_name,
                "status": run.status.value,
                "result": cached,
                "error": run.error,
            }

        summary = await self._drive(run_id, only_step=step_name)
        return {
            "run_id": run_id,
            "step": step_name,
            "status": summary["status"],
            "result": summary["results"].get(step_name),
            "error": summary["error"],
        }

    async def resume(self, run_id: str, approve: bool = True) -> dict[str, Any]:
        """Resume a suspended or failed run.

        Resuming a suspended run with ``approve`` approves the step it is
        waiting on. Resuming a failed run retries it from the failed step;
        steps that completed are not repeated, and delegations whose tasks
        completed are reused.

        Returns:
            Run summary after driving the run again.

        Raises:
            NotFoundError: If the run does not exist.
            InvalidTransitionError: If the run is still running.
        """
        async with self.context.session_factory() as session:
            run = await require_workflow_execution(session, run_id, refresh=True)
            if run.status == WorkflowRunStatus.completed:
                return self._summarize(run)
            if run.status == WorkflowRunStatus.running:
                raise InvalidTransitionError(
                    run.status.value,
                    WorkflowRunStatus.running.value,
                    project_id=str(run.project_id) if run.project_id else None,
                )

            step = run.current_step
            approved = list(run.context.get("approved_steps", []))
            if approve and run.status == WorkflowRunStatus.suspended and step:
                if step not in approved:
                    approved.append(step)

            previous = run.status
            run.context = {**run.context, "approved_steps": approved}
            run.status = WorkflowRunStatus.running
            run.error = None
            run.error_detail = None
            run.completed_at = None
            await Effects().add(
                build_event(
                    EventType.workflow_resumed,
                    {"run_id": run.run_id, "approved": step in approved, "step": step},
                    project_id=run.project_id,
                )
            ).apply(session)
            await session.commit()

        self._logger.info(
            "workflow_resumed",
            run_id=run_id,
            previous_status=previous.value,
            step=step,
            approved=step in approved,
        )
        return await self._drive(run_id)

    async def suspend(self, run_id: str, reason: str = "manual") -> dict[str, Any]:
        """Suspend a running run before its next step.

        Raises:
            NotFoundError: If the run does not exist.
            InvalidTransitionError: If the run is not running.
        """
        async with self.context.session_factory() as session:
            run = await require_workflow_execution(session, run_id, refresh=True)
            if run.status != WorkflowRunStatus.running:
                raise InvalidTransitionError(
                    run.status.value,
                    WorkflowRunStatus.suspended.value,
                    project_id=str(run.project_id) if run.project_id else None,
                )
            await self._suspend(session, run, reason, run.current_step)
            return self._summarize(run)

    async def get_status(self, run_id: str) -> dict[str, Any]:
        """Return the summary of a run.

        Raises:
            NotFoundError: If the run does not exist.
        """
        async with self.context.session_factory() as session:
            run = await require_workflow_execution(session, run_id)
            return self._summarize(run)

    async def list_runs(
        self,
        project_id: uuid.UUID | None = None,
        status_filter: WorkflowRunStatus | None = None,
    ) -> list[dict[str, Any]]:
        """Return run summaries, newest first."""
        async with self.context.session_factory() as session:
            runs = await list_workflow_executions(session, project_id, status_filter)
            return [self._summarize(run) for run in runs]

    async def _start_run(
        self,
        session: AsyncSession,
        workflow: WorkflowDefinition,
        trigger_data: dict[str, Any],
    ) -> WorkflowExecution:
        project_id = _as_uuid(trigger_data.get("project_id"))
        if project_id is not None and await get_project(session, project_id) is None:
            project_id = None

        run = await create_workflow_execution(
            session,
            workflow.id,
            workflow.name,
            dict(trigger_data),
            project_id=project_id,
        )
        await Effects().add(
            build_event(
                EventType.workflow_started,
                {"run_id": run.run_id, "workflow_id": workflow.id},
                project_id=project_id,
            )
        ).apply(session)

        self._logger.info("workflow_started", run_id=run.run_id, workflow_id=workflow.id)
        return run

    async def _drive(self, run_id: str, only_step: str | None = None) -> dict[str, Any]:
        """Drive a run through its remaining steps (or a single step)."""
        handoff_run_id: str | None = None

        async with self.context.session_factory() as session:
            run = await require_workflow_execution(session, run_id, refresh=True)
            workflow = self.get_workflow(run.workflow_id)
            bind_workflow_context(run.run_id, str(run.project_id) if run.project_id else None)
            step_name: str | None = None

            try:
                trigger = self._validate_trigger(workflow, run.input)
                if not run.context.get("prepared"):
                    ctx = StepContext(session, run, trigger)
                    if workflow.prepare is not None:
                        await workflow.prepare(ctx)
                    ctx.remember(prepared=True)
                    await session.commit()

                steps = workflow.steps if only_step is None else (workflow.step(only_step),)
                for step in steps:
                    step_name = step.name
                    if run.project_id is not None:
                        bind_workflow_context(run.run_id, str(run.project_id))
                    if not await self._execute_step(session, workflow, run, step, trigger):
                        break
                else:
                    if only_step is None:
                        handoff_run_id = await self._complete(session, workflow, run)
            except AgencyflowError as e:
                await session.rollback()
                run = await self._fail(session, workflow, run_id, e, step_name)
            finally:
                clear_workflow_context()

            summary = self._summarize(run)

        if handoff_run_id is not None:
            summary["handoff"] = await self._drive(handoff_run_id)
        return summary

    async def _execute_step(
        self,
        session: AsyncSession,
        workflow: WorkflowDefinition,
        run: WorkflowExecution,
        step: WorkflowStep,
        trigger: dict[str, Any],
    ) -> bool:
        """Execute one step. Returns False when the run stops before it."""
        cached = run.steps.get(step.name)
        if cached and cached.get("status") == STEP_COMPLETED:
            return True

        # Pick up a suspension committed by another caller
        await session.refresh(run)
        if run.status != WorkflowRunStatus.running:
            self._logger.info("workflow_halted", status=run.status.value, step=step.name)
            return False

        if step.requires_approval and step.name not in run.context.get("approved_steps", []):
            await self._suspend(session, run, "approval_required", step.name)
            return False

        run.current_step = step.name
        ctx = StepContext(session, run, trigger)
        needs_transition = False
        if step.phase is not None:
            project = await self._require_run_project(session, run)
            ctx.project = project
            if project.current_phase != step.phase:
                if not validate_phase_transition(
                    project.current_phase, step.phase, project.held_phase
                ):
                    raise InvalidTransitionError(
                        project.current_phase.value,
                        step.phase.value,
                        project_id=str(project.id),
                    )
                needs_transition = True
        elif run.project_id is not None:
            ctx.project = await require_project(session, run.project_id, refresh=True)

        if step.before is not None:
            await step.before(ctx)
        await session.commit()

        self._logger.info("workflow_step_started", step=step.name, phase=_phase(step))
        results = await self._delegate(session, run, step, ctx)
        outputs = {agent: result["output"] for agent, result in results.items()}
        if step.after is not None:
            await step.after(ctx, outputs)

        if needs_transition:
            failed = await self.context.tasks.terminal_failures(session, run.project_id, step.phase)
            if failed:
                raise DependencyNotSatisfiedError(
                    step.phase.value,
                    [str(task.id) for task in failed],
                    reason=(
                        f"Phase {step.phase.value} has terminally failed tasks: "
                        f"{', '.join(str(task.id) for task in failed)}"
                    ),
                )
            await self.context.phase_machine.transition(
                session,
                run.project_id,
                step.phase,
                notes=f"{workflow.id} run {run.run_id}, step {step.name}",
            )

        run.steps = {
            **run.steps,
            step.name: {
                "status": STEP_COMPLETED,
                "phase": _phase(step),
                "outputs": outputs,
                "delegations": {
                    agent: {key: value for key, value in result.items() if key != "output"}
                    for agent, result in results.items()
                },
                "completed_at": utcnow().isoformat(),
            },
        }
        await session.commit()

        self._logger.info("workflow_step_completed", step=step.name, phase=_phase(step))
        return True

    async def _delegate(
        self,
        session: AsyncSession,
        run: WorkflowExecution,
        step: WorkflowStep,
        ctx: StepContext,
    ) -> dict[str, dict[str, Any]]:
        """Delegate a step's work concurrently, reusing completed tasks.

        Returns:
            Result entry per specialist, in declaration order.

        Raises:
            DelegationError: The first failed delegation, after all settled.
            DependencyNotSatisfiedError: If a step task failed terminally.
        """
        results: dict[str, dict[str, Any]] = {}
        requests: list[DelegationRequest] = []

        for delegation in step.delegations:
            agent = delegation.agent
            input_data = delegation.build_input(ctx)
            task_id: uuid.UUID | None = None
            reclaim = False

            if run.project_id is not None:
                task = await find_step_task(session, run.run_id, step.name, agent)
                if task is None:
                    task = await self.context.tasks.create(
                        session,
                        run.project_id,
                        name=f"{step.name}: {agent.value}",
                        description=input_data.get("task", ""),
                        assigned_agent=agent,
                        priority=delegation.priority,
                        input_data=input_data,
                        phase=step.phase,
                        workflow_run_id=run.run_id,
                        step_name=step.name,
                    )
                elif task.status == TaskStatus.completed:
                    results[agent.value] = _reused_result(task)
                    continue
                elif task.status in (TaskStatus.pending, TaskStatus.in_progress):
                    # In progress here means an earlier drive of this run was interrupted
                    reclaim = task.status == TaskStatus.in_progress
                    input_data = task.input or input_data
                else:
                    raise DependencyNotSatisfiedError(
                        str(task.id),
                        [str(task.id)],
                        reason=(
                            f"Task {task.id} for step {step.name} is {task.status.value}; "
                            "retry it before resuming the run"
                        ),
                    )
                task_id = task.id

            requests.append(
                DelegationRequest(
                    agent=agent,
                    input=input_data,
                    project_id=run.project_id,
                    task_id=task_id,
                    client_id=ctx.client_id,
                    workflow_run_id=run.run_id,
                    reclaim=reclaim,
                )
            )

        # Tasks must be visible to the delegations' own sessions
        await session.commit()

        errors: list[AgencyflowError] = []
        outcomes = await self.context.delegation.delegate_many(requests)
        for request, outcome in zip(requests, outcomes):
            if isinstance(outcome, AgencyflowError):
                errors.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[request.agent.value] = {**outcome.to_dict(), "reused": False}

        if errors:
            for error in errors:
                self._logger.warning(
                    "workflow_delegation_failed",
                    step=step.name,
                    error=str(error),
                    error_type=type(error).__name__,
                )
            raise errors[0]

        return {d.agent.value: results[d.agent.value] for d in step.delegations}

    async def _require_run_project(
        self,
        session: AsyncSession,
        run: WorkflowExecution,
    ) -> Project:
        if run.project_id is None:
            raise ValidationError(f"Workflow run {run.run_id} has no project")
        return await require_project(session, run.project_id, refresh=True)

    async def _suspend(
        self,
        session: AsyncSession,
        run: WorkflowExecution,
        reason: str,
        step: str | None,
    ) -> None:
        run.status = WorkflowRunStatus.suspended
        run.current_step = step
        await Effects().add(
            build_event(
                EventType.workflow_suspended,
                {"run_id": run.run_id, "reason": reason, "step": step},
                project_id=run.project_id,
            )
        ).apply(session)
        await session.commit()

        self._logger.info("workflow_suspended", run_id=run.run_id, reason=reason, step=step)

    async def _complete(
        self,
        session: AsyncSession,
        workflow: WorkflowDefinition,
        run: WorkflowExecution,
    ) -> str | None:
        """Mark a run completed; start its hand-off run if it has one."""
        handoff_run: WorkflowExecution | None = None
        if workflow.handoff is not None:
            target = workflow.handoff(run)
            if target is not None:
                next_workflow, trigger_data = target
                handoff_run = await self._start_run(
                    session, self.get_workflow(next_workflow), trigger_data
                )

        handoff_run_id = handoff_run.run_id if handoff_run is not None else None
        if handoff_run_id is not None:
            run.context = {**run.context, "handoff_run_id": handoff_run_id}
        run.status = WorkflowRunStatus.completed
        run.current_step = None
        run.completed_at = utcnow()
        run.output = {
            "project_id": str(run.project_id) if run.project_id else None,
            "steps": list(run.steps),
            "handoff_run_id": handoff_run_id,
        }
        await Effects().add(
            build_event(
                EventType.workflow_completed,
                {
                    "run_id": run.run_id,
                    "workflow_id": workflow.id,
                    "handoff_run_id": handoff_run_id,
                },
                project_id=run.project_id,
            )
        ).apply(session)
        await session.commit()

        self._logger.info(
            "workflow_completed",
            run_id=run.run_id,
            workflow_id=workflow.id,
            handoff_run_id=handoff_run_id,
        )
        return handoff_run_id

    async def _fail(
        self,
        session: AsyncSession,
        workflow: WorkflowDefinition,
        run_id: str,
        error: AgencyflowError,
        step: str | None,
    ) -> WorkflowExecution:
        run = await require_workflow_execution(session, run_id, refresh=True)
        run.status = WorkflowRunStatus.failed
        run.error = str(error)
        run.error_detail = {**error.to_dict(), "step": step}
        run.completed_at = utcnow()
        await Effects().add(
            build_event(
                EventType.workflow_failed,
                {
                    "run_id": run.run_id,
                    "workflow_id": workflow.id,
                    "error": str(error),
                    "error_type": type(error).__name__,
                    "step": step,
                },
                project_id=run.project_id,
            )
        ).apply(session)
        await session.commit()

        self._logger.error(
            "workflow_failed",
            run_id=run.run_id,
            workflow_id=workflow.id,
            step=step,
            error=str(error),
            error_type=type(error).__name__,
        )
        return run

    @staticmethod
    def _validate_trigger(workflow: WorkflowDefinition, data: dict[str, Any]) -> dict[str, Any]:
        try:
            return workflow.trigger_model.model_validate(data).model_dump(mode="json")
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid trigger data for workflow {workflow.id}",
                errors=json.loads(e.json(include_url=False)),
            ) from e

    @staticmethod
    def _summarize(run: WorkflowExecution) -> dict[str, Any]:
        return {
            "run_id": run.run_id,
            "workflow_id": run.workflow_id,
            "workflow_name": run.workflow_name,
            "status": run.status.value,
            "project_id": str(run.project_id) if run.project_id else None,
            "current_step": run.current_step,
            "results": dict(run.steps),
            "output": run.output,
            "error": run.error,
            "error_detail": run.error_detail,
            "created_at": run.created_at.isoformat() if run.created_at else None,
            "completed_at": run.completed_at.isoformat() if run.completed_at else None,
        }


def _phase(step: WorkflowStep) -> str | None:
    return step.phase.value if step.phase is not None else None
