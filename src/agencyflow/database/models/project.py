"""Project model for Agencyflow.

Defines the Project table and ProjectStatus enum. A project is the
aggregate root of the lifecycle: its status and phase history change only
through the phase state machine, and it is never deleted (cancellation is
a terminal status).

Document-shaped attributes (phase history, requirements, timeline) are
stored as JSON.
"""

from __future__ import annotations

import enum
import uuid
from typing import Any

from sqlalchemy import Float, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from agencyflow.database.models.base import Base, JSONType, TimestampMixin


class ProjectStatus(enum.Enum):
    """Lifecycle phase of a project.

    The canonical sequence is intake, research, design, development, qa,
    review, completed. on_hold and cancelled are side-states reachable from
    any non-terminal phase.
    """

    intake = "intake"
    research = "research"
    design = "design"
    development = "development"
    qa = "qa"
    review = "review"
    completed = "completed"
    cancelled = "cancelled"
    on_hold = "on_hold"


class Project(TimestampMixin, Base):
    """A client project moving through the agency lifecycle.

    Attributes:
        id: UUID primary key (from TimestampMixin).
        name: Human-readable project name.
        description: Free-text project description.
        client_id: Owning client, if the project came through onboarding.
        status: Current lifecycle phase.
        current_phase: Mirror of status; always equals the last phase record.
        held_phase: Phase that was active when the project went on hold.
        phases: Ordered phase records (name, status, started_at,
                completed_at, assigned_agents).
        requirements: Feature list, technical stack and constraints.
        timeline: Estimated/actual dates and milestones.
        budget: Optional budget.
        assigned_agents: Specialists currently assigned to the project.
        project_metadata: Free-form metadata bag.
        version: Optimistic concurrency counter for phase transitions.
    """

    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("clients.id"),
        nullable=True,
    )
    status: Mapped[ProjectStatus] = mapped_column(
        default=ProjectStatus.intake,
        nullable=False,
    )
    current_phase: Mapped[ProjectStatus] = mapped_column(
        default=ProjectStatus.intake,
        nullable=False,
    )
    held_phase: Mapped[ProjectStatus | None] = mapped_column(nullable=True)
    phases: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    requirements: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
    timeline: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
    budget: Mapped[float | None] = mapped_column(Float, nullable=True)
    assigned_agents: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    project_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
