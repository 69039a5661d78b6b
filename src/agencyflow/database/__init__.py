"""Database layer for Agencyflow.

This module handles database connections, session management, and the
SQLAlchemy async engine configuration.

Public API:
    get_engine: Create an AsyncEngine from DatabaseConfig.
    get_session_factory: Create an async_sessionmaker from an engine.
    init_models: Create missing tables.
    Base: SQLAlchemy declarative base for all models.
"""

from agencyflow.database.connection import get_engine, get_session_factory, init_models
from agencyflow.database.models import (
    AgentType,
    Artifact,
    ArtifactType,
    Base,
    Client,
    ClientStatus,
    Event,
    EventType,
    ExecutionRecord,
    Project,
    ProjectStatus,
    Task,
    TaskPriority,
    TaskStatus,
    TimestampMixin,
    WorkflowExecution,
    WorkflowRunStatus,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_models",
    "Base",
    "TimestampMixin",
    "AgentType",
    "Artifact",
    "ArtifactType",
    "Client",
    "ClientStatus",
    "Event",
    "EventType",
    "ExecutionRecord",
    "Project",
    "ProjectStatus",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "WorkflowExecution",
    "WorkflowRunStatus",
]
