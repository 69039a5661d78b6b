"""FastAPI application factory for Agencyflow.

This module provides the application factory that creates and configures
a FastAPI application with:
- CORS middleware for cross-origin requests
- Request logging middleware with correlation IDs
- Database, specialist client and workflow engine lifecycle management
- Domain error to HTTP status mapping
- Workflow, project and health endpoints

Example usage:
    >>> from agencyflow.config import AgencyflowConfig
    >>> from agencyflow.web.app import create_app
    >>>
    >>> app = create_app(AgencyflowConfig())
    >>>
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi import status as http_status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from agencyflow import __version__
from agencyflow.agents.sdk_wrapper import MessagesApiClient
from agencyflow.config import AgencyflowConfig
from agencyflow.database.connection import get_engine, get_session_factory
from agencyflow.errors import (
    AgencyflowError,
    ConcurrentTransitionError,
    DelegationError,
    DependencyNotSatisfiedError,
    InvalidTransitionError,
    NotFoundError,
    TaskAlreadyClaimedError,
    ValidationError,
)
from agencyflow.logging import get_logger
from agencyflow.orchestrator.context import OrchestratorContext
from agencyflow.orchestrator.engine import WorkflowEngine
from agencyflow.web.middleware import RequestLoggingMiddleware
from agencyflow.web.routes.health import create_health_router
from agencyflow.web.routes.projects import create_projects_router
from agencyflow.web.routes.workflows import create_workflows_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)

_STATUS_BY_ERROR: list[tuple[type[AgencyflowError], int]] = [
    (NotFoundError, http_status.HTTP_404_NOT_FOUND),
    (ValidationError, 422),
    (InvalidTransitionError, http_status.HTTP_409_CONFLICT),
    (ConcurrentTransitionError, http_status.HTTP_409_CONFLICT),
    (DependencyNotSatisfiedError, http_status.HTTP_409_CONFLICT),
    (TaskAlreadyClaimedError, http_status.HTTP_409_CONFLICT),
    (DelegationError, http_status.HTTP_502_BAD_GATEWAY),
]


def status_for_error(exc: AgencyflowError) -> int:
    """Return the HTTP status code for a domain error."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return http_status.HTTP_400_BAD_REQUEST


async def agencyflow_error_handler(request: Request, exc: AgencyflowError) -> JSONResponse:
    """Render a domain error as JSON with its mapped status code."""
    status_code = status_for_error(exc)
    logger.warning(
        "request_domain_error",
        path=request.url.path,
        status_code=status_code,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render a database failure as a 500 response."""
    logger.error(
        "request_store_error",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=exc,
    )
    return JSONResponse(
        status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"type": "StoreError", "message": "Database operation failed"}},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle.

    When no orchestrator context was supplied to ``create_app``, this
    creates the database engine, session factory and specialist client on
    startup and disposes of them on shutdown.

    Args:
        app: FastAPI application instance

    Yields:
        None after startup, cleans up on context exit
    """
    config: AgencyflowConfig = app.state.config
    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    if getattr(app.state, "orchestrator", None) is not None:
        yield
        await app.state.orchestrator.delegation.drain()
        logger.info("app_shutdown_complete")
        return

    engine = get_engine(config.database)
    session_factory = get_session_factory(engine)
    app.state.engine = engine

    async with MessagesApiClient(config.agent) as client:
        _install_orchestrator(
            app, OrchestratorContext.build(config, session_factory, client)
        )
        logger.info(
            "database_pool_initialized",
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
        )

        yield

        logger.info("app_shutdown_begin")
        await app.state.orchestrator.delegation.drain()

    await engine.dispose()
    logger.info("database_pool_disposed")


def _install_orchestrator(app: FastAPI, context: OrchestratorContext) -> None:
    app.state.orchestrator = context
    app.state.session_factory = context.session_factory
    app.state.workflow_engine = WorkflowEngine(context)


def create_app(
    config: AgencyflowConfig | None = None,
    orchestrator: OrchestratorContext | None = None,
) -> FastAPI:
    """Create and configure a FastAPI application.

    Args:
        config: Optional AgencyflowConfig. If None, creates default config.
        orchestrator: Optional prebuilt orchestrator context. When given,
            the app uses its session factory and specialist client instead
            of creating its own.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = orchestrator.config if orchestrator is not None else AgencyflowConfig()

    app = FastAPI(
        title="Agencyflow",
        version=__version__,
        description="Workflow orchestration for a specialist-agent design agency",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.orchestrator = None
    if orchestrator is not None:
        _install_orchestrator(app, orchestrator)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(AgencyflowError, agencyflow_error_handler)
    app.add_exception_handler(SQLAlchemyError, store_error_handler)

    app.include_router(create_health_router())
    app.include_router(create_workflows_router())
    app.include_router(create_projects_router())

    logger.info("app_created", cors_origins=config.web.cors_origins, version=__version__)
    return app
