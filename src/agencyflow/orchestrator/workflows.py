"""Workflow definitions for the Agencyflow workflow engine.

A workflow is a named, ordered list of steps. Each step may name the
project phase it completes and the specialists it delegates to; steps can
require approval, and can run hooks before and after their delegations.

Two workflows are defined here:

- ``project-lifecycle``: one step per phase, intake through completed.
- ``client-onboarding``: qualify lead, create proposal, initialize project,
  then hand off to ``project-lifecycle`` for the new project.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from agencyflow.config import WorkflowConfig
from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.execution import WorkflowExecution
from agencyflow.database.models.project import Project, ProjectStatus
from agencyflow.database.models.task import TaskPriority
from agencyflow.database.queries.client import create_client, link_project, qualify_client
from agencyflow.database.queries.project import create_project, require_project

PROJECT_LIFECYCLE = "project-lifecycle"
CLIENT_ONBOARDING = "client-onboarding"


@dataclass
class StepContext:
    """What a step's input builders and hooks can see.

    Attributes:
        session: Session of the run being driven.
        run: The workflow execution.
        trigger: Validated trigger data.
        project: The run's project as loaded for this step, if any.
    """

    session: AsyncSession
    run: WorkflowExecution
    trigger: dict[str, Any]
    project: Project | None = None

    @property
    def project_id(self) -> uuid.UUID | None:
        return self.run.project_id

    @property
    def client_id(self) -> uuid.UUID | None:
        value = self.run.context.get("client_id")
        return uuid.UUID(value) if value else None

    def output(self, step_name: str, agent: AgentType) -> dict[str, Any]:
        """Return a specialist's output from an earlier step ({} if absent)."""
        step = self.run.steps.get(step_name) or {}
        return (step.get("outputs") or {}).get(agent.value) or {}

    def remember(self, **values: Any) -> None:
        """Store values in the run context."""
        self.run.context = {**self.run.context, **values}


InputBuilder = Callable[[StepContext], dict[str, Any]]
StepHook = Callable[[StepContext], Awaitable[None]]
ResultHook = Callable[[StepContext, dict[str, dict[str, Any]]], Awaitable[None]]


@dataclass(frozen=True)
class Delegation:
    """One specialist a step delegates to.

    Attributes:
        agent: Specialist to invoke.
        build_input: Builds the delegation input from the step context.
        priority: Priority of the task created for the delegation.
    """

    agent: AgentType
    build_input: InputBuilder
    priority: TaskPriority = TaskPriority.medium


@dataclass(frozen=True)
class WorkflowStep:
    """One step of a workflow.

    Attributes:
        name: Step name, unique within the workflow.
        phase: Phase the project enters when the step completes.
        delegations: Specialists invoked, concurrently, by the step.
        requires_approval: Suspend the run before the step until approved.
        before: Hook run before delegating.
        after: Hook run with the step's outputs (keyed by specialist)
            after all delegations succeed.
    """

    name: str
    phase: ProjectStatus | None = None
    delegations: tuple[Delegation, ...] = ()
    requires_approval: bool = False
    before: StepHook | None = None
    after: ResultHook | None = None


@dataclass(frozen=True)
class WorkflowDefinition:
    """A named, ordered list of steps.

    Attributes:
        id: Stable workflow identifier.
        name: Human-readable name.
        trigger_model: Schema of the trigger data.
        steps: Ordered steps.
        prepare: Hook run once per run before the first step.
        handoff: Returns ``(workflow_id, trigger_data)`` for a follow-up run
            started when this one completes, or None.
    """

    id: str
    name: str
    trigger_model: type[BaseModel]
    steps: tuple[WorkflowStep, ...]
    prepare: StepHook | None = None
    handoff: Callable[[WorkflowExecution], tuple[str, dict[str, Any]] | None] | None = None
    description: str = field(default="")

    def step(self, name: str) -> WorkflowStep:
        """Return a step by name.

        Raises:
            KeyError: If the workflow has no such step.
        """
        for step in self.steps:
            if step.name == name:
                return step
        raise KeyError(name)


# --- project-lifecycle -----------------------------------------------------


class ProjectLifecycleTrigger(BaseModel):
    """Trigger for ``project-lifecycle``: an existing project or a new one."""

    model_config = ConfigDict(extra="forbid")

    project_id: uuid.UUID | None = None
    name: str | None = Field(None, min_length=1)
    description: str = ""
    client_id: uuid.UUID | None = None
    requirements: dict[str, Any] = Field(default_factory=dict)
    timeline: dict[str, Any] = Field(default_factory=dict)
    budget: float | None = None

    @model_validator(mode="after")
    def check_project(self) -> ProjectLifecycleTrigger:
        if self.project_id is None and not self.name:
            raise ValueError("Either project_id or name is required")
        return self


async def _prepare_lifecycle(ctx: StepContext) -> None:
    if ctx.run.project_id is not None:
        await require_project(ctx.session, ctx.run.project_id)
        return

    if ctx.trigger.get("project_id"):
        project = await require_project(ctx.session, uuid.UUID(ctx.trigger["project_id"]))
    else:
        client_id = ctx.trigger.get("client_id")
        project = await create_project(
            ctx.session,
            name=ctx.trigger["name"],
            description=ctx.trigger.get("description", ""),
            client_id=uuid.UUID(client_id) if client_id else None,
            requirements=ctx.trigger.get("requirements"),
            timeline=ctx.trigger.get("timeline"),
            budget=ctx.trigger.get("budget"),
        )
        if client_id:
            await link_project(ctx.session, uuid.UUID(client_id), project.id)
    ctx.run.project_id = project.id
    ctx.project = project


def _project_summary(ctx: StepContext) -> dict[str, Any]:
    project = ctx.project
    if project is None:
        return {}
    return {
        "project_id": str(project.id),
        "name": project.name,
        "description": project.description,
        "phase": project.current_phase.value,
        "requirements": project.requirements,
        "timeline": project.timeline,
    }


def _project_name(ctx: StepContext) -> str:
    return ctx.project.name if ctx.project is not None else "the project"


def _intake_input(ctx: StepContext) -> dict[str, Any]:
    return {
        "task": (
            f"Plan {_project_name(ctx)}: confirm scope and requirements, "
            "identify risks and outline the phase plan."
        ),
        "project_context": _project_summary(ctx),
    }


def _research_input(ctx: StepContext) -> dict[str, Any]:
    plan = ctx.output("intake", AgentType.project_manager)
    return {
        "task": (
            f"Research {_project_name(ctx)}: analyze competitors, gather technical "
            "requirements and summarize the market."
        ),
        "context": json.dumps(
            {"requirements": _project_summary(ctx).get("requirements", {}), "plan": plan}
        ),
        "depth": "standard",
    }


def _design_input(ctx: StepContext) -> dict[str, Any]:
    research = ctx.output("research", AgentType.deep_research)
    return {
        "task": f"Create the design specification for {_project_name(ctx)}.",
        "requirements": research.get("findings"),
        "target_platform": "web",
    }


def _frontend_input(ctx: StepContext) -> dict[str, Any]:
    design = ctx.output("design", AgentType.design)
    return {
        "task": f"Implement the user interface of {_project_name(ctx)}.",
        "design_spec": design.get("design_spec"),
        "component_type": "page",
    }


def _backend_input(ctx: StepContext) -> dict[str, Any]:
    design = ctx.output("design", AgentType.design)
    return {
        "task": f"Implement the API of {_project_name(ctx)}.",
        "requirements": design.get("design_spec"),
        "endpoint_type": "api-route",
    }


def _qa_input(ctx: StepContext) -> dict[str, Any]:
    sources = [
        ctx.output("development", AgentType.frontend),
        ctx.output("development", AgentType.backend),
    ]
    code = "\n\n".join(
        f"// {source.get('file_path', 'unknown')}\n{source.get('code', '')}"
        for source in sources
        if source.get("code")
    )
    return {
        "task": f"Review the implementation of {_project_name(ctx)}.",
        "code": code or "// no code produced",
        "focus_areas": ["security", "performance", "accessibility", "maintainability"],
    }


def _review_input(ctx: StepContext) -> dict[str, Any]:
    qa = ctx.output("qa", AgentType.qa)
    return {
        "task": f"Review the deliverables of {_project_name(ctx)} before completion.",
        "project_context": {
            **_project_summary(ctx),
            "qa_score": qa.get("score"),
            "qa_issue_count": len(qa.get("issues") or []),
        },
    }


def project_lifecycle_workflow(config: WorkflowConfig | None = None) -> WorkflowDefinition:
    """Build the project lifecycle workflow."""
    config = config or WorkflowConfig()
    return WorkflowDefinition(
        id=PROJECT_LIFECYCLE,
        name="Project Lifecycle",
        description="Moves a project from intake through completion, one step per phase.",
        trigger_model=ProjectLifecycleTrigger,
        prepare=_prepare_lifecycle,
        steps=(
            WorkflowStep(
                name="intake",
                phase=ProjectStatus.intake,
                delegations=(Delegation(AgentType.project_manager, _intake_input),),
            ),
            WorkflowStep(
                name="research",
                phase=ProjectStatus.research,
                delegations=(Delegation(AgentType.deep_research, _research_input),),
            ),
            WorkflowStep(
                name="design",
                phase=ProjectStatus.design,
                delegations=(Delegation(AgentType.design, _design_input),),
            ),
            WorkflowStep(
                name="development",
                phase=ProjectStatus.development,
                delegations=(
                    Delegation(AgentType.frontend, _frontend_input, TaskPriority.high),
                    Delegation(AgentType.backend, _backend_input, TaskPriority.high),
                ),
            ),
            WorkflowStep(
                name="qa",
                phase=ProjectStatus.qa,
                delegations=(Delegation(AgentType.qa, _qa_input),),
            ),
            WorkflowStep(
                name="review",
                phase=ProjectStatus.review,
                delegations=(Delegation(AgentType.project_manager, _review_input),),
            ),
            WorkflowStep(
                name="completed",
                phase=ProjectStatus.completed,
                requires_approval=config.require_completion_approval,
            ),
        ),
    )


# --- client-onboarding -----------------------------------------------------


class ClientOnboardingTrigger(BaseModel):
    """Trigger for ``client-onboarding``: an inbound lead."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    company: str | None = None
    project_description: str = Field(..., min_length=1)
    budget: str | None = None
    timeline: str | None = None
    lead_source: str | None = None


def _client_info(ctx: StepContext) -> dict[str, Any]:
    return {
        key: ctx.trigger.get(key)
        for key in ("name", "email", "company", "project_description", "budget", "timeline")
        if ctx.trigger.get(key) is not None
    }


async def _prepare_onboarding(ctx: StepContext) -> None:
    if ctx.client_id is not None:
        return
    client = await create_client(
        ctx.session,
        name=ctx.trigger["name"],
        contact_info={
            key: ctx.trigger[key] for key in ("email", "company") if ctx.trigger.get(key)
        },
        lead_source=ctx.trigger.get("lead_source") or CLIENT_ONBOARDING,
    )
    ctx.remember(client_id=str(client.id))


def _qualify_input(ctx: StepContext) -> dict[str, Any]:
    return {
        "task": "Qualify this lead and score it from 0 to 100.",
        "task_type": "qualification",
        "client_info": _client_info(ctx),
    }


async def _after_qualify(ctx: StepContext, outputs: dict[str, dict[str, Any]]) -> None:
    result = outputs.get(AgentType.client_acquisition.value, {})
    await qualify_client(
        ctx.session,
        ctx.client_id,
        score=result.get("qualification_score"),
        notes=result.get("content"),
    )


def _proposal_input(ctx: StepContext) -> dict[str, Any]:
    return {
        "task": (
            f"Create a project proposal. Scope: {ctx.trigger['project_description']}. "
            f"Timeline: {ctx.trigger.get('timeline') or '8-12 weeks'}. "
            f"Budget: {ctx.trigger.get('budget') or 'To be determined'}."
        ),
        "task_type": "proposal",
        "client_info": _client_info(ctx),
    }


async def _initialize_project(ctx: StepContext) -> None:
    if ctx.run.project_id is not None:
        ctx.project = await require_project(ctx.session, ctx.run.project_id)
        return
    project = await create_project(
        ctx.session,
        name=f"{ctx.trigger['name']}'s Project",
        description=ctx.trigger["project_description"],
        client_id=ctx.client_id,
        requirements={"summary": ctx.trigger["project_description"]},
        timeline={"estimate": ctx.trigger.get("timeline") or "8-12 weeks"},
        metadata={"budget": ctx.trigger.get("budget")},
    )
    await link_project(ctx.session, ctx.client_id, project.id)
    ctx.run.project_id = project.id
    ctx.project = project


def _kickoff_input(ctx: StepContext) -> dict[str, Any]:
    return {
        "task": f"Prepare the kickoff plan for {_project_name(ctx)}.",
        "project_context": {
            **_project_summary(ctx),
            "client_id": str(ctx.client_id) if ctx.client_id else None,
        },
    }


def _handoff_to_lifecycle(run: WorkflowExecution) -> tuple[str, dict[str, Any]] | None:
    if run.project_id is None:
        return None
    return PROJECT_LIFECYCLE, {"project_id": str(run.project_id)}


def client_onboarding_workflow(config: WorkflowConfig | None = None) -> WorkflowDefinition:
    """Build the client onboarding workflow."""
    config = config or WorkflowConfig()
    return WorkflowDefinition(
        id=CLIENT_ONBOARDING,
        name="Client Onboarding",
        description="Qualifies a lead, writes a proposal and starts the project.",
        trigger_model=ClientOnboardingTrigger,
        prepare=_prepare_onboarding,
        handoff=_handoff_to_lifecycle if config.auto_handoff else None,
        steps=(
            WorkflowStep(
                name="qualify-lead",
                delegations=(Delegation(AgentType.client_acquisition, _qualify_input),),
                after=_after_qualify,
            ),
            WorkflowStep(
                name="create-proposal",
                delegations=(Delegation(AgentType.client_acquisition, _proposal_input),),
            ),
            WorkflowStep(
                name="initialize-project",
                delegations=(Delegation(AgentType.project_manager, _kickoff_input),),
                requires_approval=config.require_project_approval,
                before=_initialize_project,
            ),
        ),
    )


def default_workflows(config: WorkflowConfig | None = None) -> list[WorkflowDefinition]:
    """Return the standard workflows."""
    return [project_lifecycle_workflow(config), client_onboarding_workflow(config)]
