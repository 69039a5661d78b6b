"""Pytest fixtures for E2E tests.

Provides workflow engines wired to the shared test database and the fake
specialist client, so complete workflow runs can be driven without a live
model provider.
"""

from __future__ import annotations

from typing import Any, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agencyflow.config import AgencyflowConfig
from agencyflow.orchestrator.context import OrchestratorContext
from agencyflow.orchestrator.engine import WorkflowEngine


@pytest.fixture
def workflow_engine(orchestrator: OrchestratorContext) -> WorkflowEngine:
    """Workflow engine with both approval gates enabled."""
    return WorkflowEngine(orchestrator)


@pytest.fixture
def make_engine(
    config: AgencyflowConfig,
    session_factory: async_sessionmaker[AsyncSession],
    fake_client: Any,
) -> Callable[..., WorkflowEngine]:
    """Factory for engines with workflow settings overridden.

    Returns:
        Callable taking WorkflowConfig field overrides as keyword arguments.
    """

    def _make(**workflow_overrides: Any) -> WorkflowEngine:
        overridden = config.model_copy(
            update={"workflow": config.workflow.model_copy(update=workflow_overrides)}
        )
        context = OrchestratorContext.build(overridden, session_factory, fake_client)
        return WorkflowEngine(context)

    return _make
