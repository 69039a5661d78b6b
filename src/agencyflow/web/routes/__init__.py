"""FastAPI route definitions for the Agencyflow web interface.

This module contains the workflow, project and health route factories.
"""

from __future__ import annotations

from agencyflow.web.routes.health import (
    HealthResponse,
    ReadinessResponse,
    create_health_router,
)
from agencyflow.web.routes.projects import (
    ArtifactResponse,
    EventResponse,
    PhaseResponse,
    StatusChangeRequest,
    TaskResponse,
    create_projects_router,
)
from agencyflow.web.routes.workflows import (
    WorkflowExecuteRequest,
    WorkflowResumeRequest,
    WorkflowRunResponse,
    create_workflows_router,
)

__all__ = [
    # Health
    "HealthResponse",
    "ReadinessResponse",
    "create_health_router",
    # Projects
    "ArtifactResponse",
    "EventResponse",
    "PhaseResponse",
    "StatusChangeRequest",
    "TaskResponse",
    "create_projects_router",
    # Workflows
    "WorkflowExecuteRequest",
    "WorkflowResumeRequest",
    "WorkflowRunResponse",
    "create_workflows_router",
]
