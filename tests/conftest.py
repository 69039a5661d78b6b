"""Shared pytest fixtures for Agencyflow tests.

Provides a file-backed SQLite database (so concurrent sessions see each
other's commits), a session factory, and an in-process specialist client
that returns canned, schema-valid outputs for every specialist.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from agencyflow.agents.sdk_wrapper import SpecialistAPIError, SpecialistResponse
from agencyflow.config import AgencyflowConfig, AgentConfig, DatabaseConfig, WorkflowConfig
from agencyflow.database.connection import get_engine, get_session_factory, init_models
from agencyflow.database.models.agent import AgentType
from agencyflow.orchestrator.context import OrchestratorContext

SAMPLE_OUTPUTS: dict[AgentType, dict[str, Any]] = {
    AgentType.project_manager: {
        "summary": "Scope confirmed, plan ready",
        "decisions": ["Use Next.js with a headless CMS"],
        "next_steps": ["Start competitor research"],
        "risks": ["Tight launch date"],
    },
    AgentType.deep_research: {
        "findings": "Three direct competitors, none offer online booking",
        "sources": ["https://example.com/market-report"],
        "recommendations": "Lead with the booking flow",
    },
    AgentType.design: {
        "design_spec": "Two-column layout with a sticky booking panel",
        "components": ["Header", "BookingPanel", "Footer"],
        "guidelines": "Brand blue, 8px spacing grid, WCAG AA contrast",
    },
    AgentType.frontend: {
        "code": "export default function Page() { return <main /> }",
        "file_path": "app/page.tsx",
        "dependencies": ["react"],
    },
    AgentType.backend: {
        "code": "export async function GET() { return Response.json([]) }",
        "file_path": "app/api/bookings/route.ts",
        "dependencies": [],
    },
    AgentType.qa: {
        "issues": [
            {
                "severity": "low",
                "category": "accessibility",
                "description": "Main landmark has no label",
                "suggestion": "Add aria-label to <main>",
            }
        ],
        "score": 91,
        "recommendations": "Ready to ship after the label fix",
    },
    AgentType.client_acquisition: {
        "content": "Strong fit: clear scope and budget",
        "next_steps": ["Send proposal"],
        "materials": [],
        "qualification_score": 82,
    },
}


def fenced(data: dict[str, Any]) -> str:
    """Render an output the way specialists answer: prose plus a json block."""
    return f"Here is my result.\n\n```json\n{json.dumps(data)}\n```\n"


class FakeSpecialistClient:
    """In-process SpecialistClient with per-specialist failure and delay knobs.

    Attributes:
        outputs: Output returned per specialist.
        failures: Exception raised per specialist.
        delays: Seconds to sleep before answering, per specialist.
        raw: Literal response text per specialist (overrides outputs).
        calls: Every (agent, prompt) received, in call order.
        on_call: Optional coroutine run with the agent before answering.
    """

    def __init__(self, outputs: dict[AgentType, dict[str, Any]] | None = None) -> None:
        self.outputs = {**SAMPLE_OUTPUTS, **(outputs or {})}
        self.failures: dict[AgentType, Exception] = {}
        self.delays: dict[AgentType, float] = {}
        self.raw: dict[AgentType, str] = {}
        self.calls: list[tuple[AgentType, str]] = []
        self.on_call: Callable[[AgentType], Awaitable[None]] | None = None

    def fail(self, agent: AgentType, error: Exception | None = None) -> None:
        self.failures[agent] = error or SpecialistAPIError("API error: HTTP 500")

    def heal(self, agent: AgentType) -> None:
        self.failures.pop(agent, None)

    def calls_for(self, agent: AgentType) -> int:
        return sum(1 for called, _ in self.calls if called == agent)

    async def generate(
        self,
        agent: AgentType,
        system_prompt: str,
        prompt: str,
    ) -> SpecialistResponse:
        self.calls.append((agent, prompt))
        if self.on_call is not None:
            await self.on_call(agent)
        delay = self.delays.get(agent)
        if delay:
            await asyncio.sleep(delay)
        if agent in self.failures:
            raise self.failures[agent]
        text = self.raw.get(agent) or fenced(self.outputs[agent])
        return SpecialistResponse(
            text=text,
            usage={"prompt": 120, "completion": 80, "total": 200},
        )


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """SQLite database file unique to the test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'agencyflow.db'}"


@pytest_asyncio.fixture
async def engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Create a file-backed SQLite engine with all tables.

    Yields:
        AsyncEngine with the schema created.
    """
    test_engine = get_engine(DatabaseConfig(url=database_url))
    await init_models(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return get_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A session for arranging and asserting state directly."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_client() -> FakeSpecialistClient:
    """Specialist client answering every specialist successfully."""
    return FakeSpecialistClient()


@pytest.fixture
def config(database_url: str) -> AgencyflowConfig:
    """Configuration with both approval gates enabled."""
    return AgencyflowConfig(
        database=DatabaseConfig(url=database_url),
        agent=AgentConfig(max_retries=3, delegation_timeout_seconds=5.0),
        workflow=WorkflowConfig(
            auto_handoff=True,
            require_project_approval=True,
            require_completion_approval=True,
        ),
    )


@pytest.fixture
def orchestrator(
    config: AgencyflowConfig,
    session_factory: async_sessionmaker[AsyncSession],
    fake_client: FakeSpecialistClient,
) -> OrchestratorContext:
    """Orchestrator services wired to the test database and fake client."""
    return OrchestratorContext.build(config, session_factory, fake_client)
