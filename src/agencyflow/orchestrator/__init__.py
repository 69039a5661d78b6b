"""Orchestrator subsystem for Agencyflow.

This module implements the project phase state machine, the task registry,
the execution recorder, the workflow definitions and the workflow engine
that drives them.
"""

from __future__ import annotations

from agencyflow.orchestrator.context import OrchestratorContext
from agencyflow.orchestrator.engine import WorkflowEngine
from agencyflow.orchestrator.phase_machine import (
    PHASE_AGENTS,
    PHASE_SEQUENCE,
    TERMINAL_PHASES,
    PhaseStateMachine,
    PhaseTransition,
    legal_targets,
    next_phase,
    plan_transition,
    validate_phase_transition,
)
from agencyflow.orchestrator.recorder import TIMEOUT_ERROR, ExecutionRecorder
from agencyflow.orchestrator.task_registry import (
    TASK_TRANSITIONS,
    TaskRegistry,
    validate_task_transition,
)
from agencyflow.orchestrator.workflows import (
    CLIENT_ONBOARDING,
    PROJECT_LIFECYCLE,
    Delegation,
    StepContext,
    WorkflowDefinition,
    WorkflowStep,
    client_onboarding_workflow,
    default_workflows,
    project_lifecycle_workflow,
)

__all__ = [
    # Wiring
    "OrchestratorContext",
    "WorkflowEngine",
    # Phases
    "PHASE_AGENTS",
    "PHASE_SEQUENCE",
    "TERMINAL_PHASES",
    "PhaseStateMachine",
    "PhaseTransition",
    "legal_targets",
    "next_phase",
    "plan_transition",
    "validate_phase_transition",
    # Tasks and executions
    "TASK_TRANSITIONS",
    "TaskRegistry",
    "validate_task_transition",
    "ExecutionRecorder",
    "TIMEOUT_ERROR",
    # Workflows
    "CLIENT_ONBOARDING",
    "PROJECT_LIFECYCLE",
    "Delegation",
    "StepContext",
    "WorkflowDefinition",
    "WorkflowStep",
    "client_onboarding_workflow",
    "default_workflows",
    "project_lifecycle_workflow",
]
