"""Workflow endpoints for Agencyflow.

- ``POST /workflows/execute`` starts a workflow run and drives it until it
  completes, fails or suspends.
- ``POST /workflows/{run_id}/resume`` resumes a suspended or failed run.
- ``POST /workflows/{run_id}/suspend`` suspends a running run.
- ``GET /workflows/{run_id}`` returns a run's status.

Domain errors raised by the engine are rendered by the application's
exception handlers.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from agencyflow.logging import get_logger
from agencyflow.orchestrator.engine import WorkflowEngine

logger = get_logger(__name__)


class WorkflowExecuteRequest(BaseModel):
    """Request body for starting a workflow run.

    Attributes:
        workflow_name: Workflow id (``project-lifecycle``, ``client-onboarding``)
        trigger_data: Trigger payload validated by the workflow
    """

    model_config = ConfigDict(populate_by_name=True)

    workflow_name: str = Field(..., alias="workflowName", min_length=1)
    trigger_data: dict[str, Any] = Field(default_factory=dict, alias="triggerData")


class WorkflowResumeRequest(BaseModel):
    """Request body for resuming a run.

    Attributes:
        approve: Approve the step the run is waiting on
    """

    approve: bool = True


class WorkflowSuspendRequest(BaseModel):
    """Request body for suspending a run."""

    reason: str = "manual"


class WorkflowRunResponse(BaseModel):
    """Summary of a workflow run.

    Attributes:
        status: running, suspended, completed or failed
        run_id: Run identifier
        workflow_id: Workflow the run belongs to
        project_id: Project the run drives, once known
        current_step: Step the run is at or waiting on
        results: Recorded result per completed step
        error: Failure message of a failed run
        handoff: Summary of the run this one handed off to
    """

    model_config = ConfigDict(populate_by_name=True)

    status: str
    run_id: str = Field(..., alias="runId")
    workflow_id: str = Field(..., alias="workflowId")
    project_id: str | None = Field(None, alias="projectId")
    current_step: str | None = Field(None, alias="currentStep")
    results: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    error_detail: dict[str, Any] | None = Field(None, alias="errorDetail")
    handoff: WorkflowRunResponse | None = None

    @classmethod
    def from_summary(cls, summary: dict[str, Any]) -> WorkflowRunResponse:
        handoff = summary.get("handoff")
        return cls(
            status=summary["status"],
            run_id=summary["run_id"],
            workflow_id=summary["workflow_id"],
            project_id=summary.get("project_id"),
            current_step=summary.get("current_step"),
            results=summary.get("results") or {},
            error=summary.get("error"),
            error_detail=summary.get("error_detail"),
            handoff=cls.from_summary(handoff) if handoff else None,
        )


def get_workflow_engine(request: Request) -> WorkflowEngine:
    """Dependency that retrieves the workflow engine from app state."""
    return request.app.state.workflow_engine  # type: ignore[no-any-return]


def create_workflows_router() -> APIRouter:
    """Create the workflows router.

    Routes:
        POST /workflows/execute - Start a workflow run
        POST /workflows/{run_id}/resume - Resume a suspended or failed run
        POST /workflows/{run_id}/suspend - Suspend a running run
        GET /workflows/{run_id} - Get a run's status
    """
    router = APIRouter(prefix="/workflows", tags=["workflows"])

    @router.post("/execute", response_model=WorkflowRunResponse)
    async def execute_workflow(
        body: WorkflowExecuteRequest,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
    ) -> WorkflowRunResponse:
        """Start a workflow run.

        The response carries the run status; a run that failed or is waiting
        for approval is still a successful request.
        """
        summary = await engine.run(body.workflow_name, body.trigger_data)
        logger.info(
            "workflow_executed",
            workflow=body.workflow_name,
            run_id=summary["run_id"],
            status=summary["status"],
        )
        return WorkflowRunResponse.from_summary(summary)

    @router.post("/{run_id}/resume", response_model=WorkflowRunResponse)
    async def resume_workflow(
        run_id: str,
        body: WorkflowResumeRequest | None = None,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
    ) -> WorkflowRunResponse:
        approve = body.approve if body is not None else True
        summary = await engine.resume(run_id, approve=approve)
        return WorkflowRunResponse.from_summary(summary)

    @router.post("/{run_id}/suspend", response_model=WorkflowRunResponse)
    async def suspend_workflow(
        run_id: str,
        body: WorkflowSuspendRequest | None = None,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
    ) -> WorkflowRunResponse:
        reason = body.reason if body is not None else "manual"
        summary = await engine.suspend(run_id, reason=reason)
        return WorkflowRunResponse.from_summary(summary)

    @router.get("/{run_id}", response_model=WorkflowRunResponse)
    async def get_workflow_run(
        run_id: str,
        engine: WorkflowEngine = Depends(get_workflow_engine),  # noqa: B008
    ) -> WorkflowRunResponse:
        summary = await engine.get_status(run_id)
        return WorkflowRunResponse.from_summary(summary)

    return router
