"""Pytest fixtures for integration tests.

The database, session factory, fake specialist client and orchestrator
fixtures live in the top-level conftest. This module adds a committed
sample project and an HTTP client bound to the FastAPI application.
"""

from __future__ import annotations

from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agencyflow.database.models.project import Project
from agencyflow.database.queries.project import create_project
from agencyflow.orchestrator.context import OrchestratorContext
from agencyflow.web.app import create_app


@pytest_asyncio.fixture
async def project(session_factory: async_sessionmaker[AsyncSession]) -> Project:
    """A committed project in the intake phase."""
    async with session_factory() as session:
        created = await create_project(
            session,
            name="Bakery website",
            description="Online ordering for a neighbourhood bakery",
            requirements={"features": ["menu", "ordering"]},
        )
        await session.commit()
    return created


@pytest_asyncio.fixture
async def api_client(
    orchestrator: OrchestratorContext,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client for an app wired to the test orchestrator.

    Yields:
        AsyncClient sending requests to the app in-process.
    """
    app = create_app(orchestrator=orchestrator)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
