"""Artifact model for Agencyflow.

Artifacts are the work product of specialists (research summaries, design
specifications, generated code, QA reports). Each row is immutable: a
revision is a new row whose previous_version_id points at the prior
version, so the full history of a document is a linked chain.
"""

from __future__ import annotations

import enum
import uuid
from typing import Any

from sqlalchemy import ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.base import Base, JSONType, TimestampMixin


class ArtifactType(enum.Enum):
    """Kinds of work product."""

    design = "design"
    code = "code"
    documentation = "documentation"
    research = "research"
    wireframe = "wireframe"
    component = "component"
    api = "api"
    test = "test"
    report = "report"


class Artifact(TimestampMixin, Base):
    """One version of a work product.

    Attributes:
        project_id: Owning project (None for pre-project onboarding work).
        task_id: Task that produced this version, if any.
        client_id: Owning client for onboarding documents.
        type: Kind of work product.
        name: Document name, shared by every version in a chain.
        description: Optional short description.
        content: Textual content (code, spec, serialized JSON, ...).
        artifact_metadata: Free-form metadata (language, framework, tags, ...).
        created_by: Specialist that produced the version.
        version: 1 for the first version, previous + 1 for revisions.
        previous_version_id: Prior version in the chain.
    """

    __tablename__ = "artifacts"

    project_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("projects.id"),
        nullable=True,
        index=True,
    )
    task_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("tasks.id"),
        nullable=True,
    )
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("clients.id"),
        nullable=True,
    )
    type: Mapped[ArtifactType] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    artifact_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
    created_by: Mapped[AgentType] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    previous_version_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("artifacts.id"),
        nullable=True,
        unique=True,
    )
