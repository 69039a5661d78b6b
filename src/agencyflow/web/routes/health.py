"""Health check endpoints for Agencyflow.

Provides a liveness endpoint (``/health/``) and a readiness endpoint
(``/health/ready``) that verifies database connectivity and reports how
many timed-out specialist calls are still awaiting reconciliation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from agencyflow.logging import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Liveness response.

    Attributes:
        status: "ok" while the process serves requests
    """

    status: str


class ReadinessResponse(BaseModel):
    """Readiness response.

    Attributes:
        status: "ok" or "unhealthy"
        database: "connected" or "disconnected"
        late_calls: Timed-out specialist calls not yet reconciled
    """

    status: str
    database: str
    late_calls: int = 0


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """Dependency that retrieves the session factory from app state."""
    return request.app.state.session_factory  # type: ignore[return-value]


def create_health_router() -> APIRouter:
    """Create health check router.

    Routes:
        GET /health/ - Liveness check
        GET /health/ready - Readiness check with database verification
    """
    router = APIRouter(prefix="/health", tags=["health"])

    @router.get("/", response_model=HealthResponse)
    async def health() -> dict[str, Any]:
        return {"status": "ok"}

    @router.get("/ready", response_model=ReadinessResponse)
    async def readiness(
        request: Request,
        session_factory: async_sessionmaker[AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
    ) -> dict[str, Any]:
        """Readiness check: the database must accept a trivial query."""
        orchestrator = request.app.state.orchestrator
        late_calls = orchestrator.delegation.outstanding_late_calls if orchestrator else 0

        try:
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("readiness_check_failed", database="disconnected", error=str(exc))
            return {"status": "unhealthy", "database": "disconnected", "late_calls": late_calls}

        logger.debug("readiness_check_passed", database="connected")
        return {"status": "ok", "database": "connected", "late_calls": late_calls}

    return router
