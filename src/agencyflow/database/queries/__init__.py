"""Database query functions for Agencyflow.

This module provides async query functions for all database entities:
- Project creation and reads (status changes go through the phase state machine)
- Client creation, qualification and project linking
- Task creation, dependency-aware eligibility and atomic claims
- Versioned artifact creation, revision and history
- Execution record and workflow execution reads
"""

from agencyflow.database.queries.artifact import (
    build_artifact,
    create_artifact,
    get_artifact,
    get_version_history,
    list_artifacts,
    revise_artifact,
)
from agencyflow.database.queries.client import (
    create_client,
    get_client,
    link_project,
    list_clients,
    qualify_client,
)
from agencyflow.database.queries.execution import (
    find_reconciliation,
    get_execution_record,
    list_execution_records,
)
from agencyflow.database.queries.project import (
    create_project,
    get_current_phase,
    get_project,
    list_projects,
    require_project,
    update_project_details,
)
from agencyflow.database.queries.task import (
    claim_pending_task,
    create_task,
    get_eligible_tasks,
    get_task,
    list_tasks,
    require_task,
)
from agencyflow.database.queries.workflow import (
    create_workflow_execution,
    get_workflow_execution,
    list_workflow_executions,
    require_workflow_execution,
)

__all__ = [
    # Project queries
    "create_project",
    "get_project",
    "require_project",
    "get_current_phase",
    "list_projects",
    "update_project_details",
    # Client queries
    "create_client",
    "get_client",
    "list_clients",
    "qualify_client",
    "link_project",
    # Task queries
    "create_task",
    "get_task",
    "require_task",
    "list_tasks",
    "get_eligible_tasks",
    "claim_pending_task",
    # Artifact queries
    "build_artifact",
    "create_artifact",
    "get_artifact",
    "revise_artifact",
    "list_artifacts",
    "get_version_history",
    # Execution record queries
    "get_execution_record",
    "list_execution_records",
    "find_reconciliation",
    # Workflow execution queries
    "create_workflow_execution",
    "get_workflow_execution",
    "require_workflow_execution",
    "list_workflow_executions",
]
